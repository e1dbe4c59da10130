from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator

from apps.api.app.core.time import as_utc


# SQLite returns naive values; responses always carry an explicit UTC offset
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]
