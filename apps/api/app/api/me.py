from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_clock, get_current_user
from apps.api.app.db.session import get_db
from apps.api.app.models.user import User
from apps.api.app.schemas.user import MeEnvelope, MeOut
from apps.api.app.services.plan import build_plan_summary

router = APIRouter(prefix="/me", tags=["users"])


@router.get("", response_model=MeEnvelope)
def me(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return MeEnvelope(user=MeOut(**build_plan_summary(db, current_user, clock())))
