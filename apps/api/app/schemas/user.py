from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    plan: str


class MeOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: str
    plan: str
    trade_count: int = Field(alias="tradeCount")
    trade_limit: Optional[int] = Field(default=None, alias="tradeLimit")
    free_days_total: Optional[int] = Field(default=None, alias="freeDaysTotal")
    free_days_remaining: Optional[int] = Field(default=None, alias="freeDaysRemaining")
    free_expires_at: Optional[datetime] = Field(default=None, alias="freeExpiresAt")
    free_expired: bool = Field(alias="freeExpired")
    can_use_pro_features: bool = Field(alias="canUseProFeatures")


class MeEnvelope(BaseModel):
    user: MeOut
