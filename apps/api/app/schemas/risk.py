from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from apps.api.app.models.risk_settings import MAX_LOSS_STREAK_LIMIT
from apps.api.app.schemas.common import UtcDatetime


RiskTriggerReason = Literal["daily_max_loss", "loss_streak", "combined"]


class RiskSettingsUpdate(BaseModel):
    """Partial patch: omitted fields keep their value, null clears a threshold."""

    model_config = ConfigDict(allow_inf_nan=False, extra="ignore")

    enabled: Optional[bool] = None
    daily_max_loss: Optional[float] = Field(default=None, ge=0)
    max_consecutive_losses: Optional[int] = Field(default=None, ge=1, le=MAX_LOSS_STREAK_LIMIT)
    cooldown_minutes: Optional[int] = Field(default=None, ge=1, le=600)


class RiskSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    enabled: bool
    daily_max_loss: Optional[float] = None
    max_consecutive_losses: Optional[int] = None
    cooldown_minutes: int
    lockout_until: Optional[UtcDatetime] = None
    last_trigger_reason: Optional[RiskTriggerReason] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


class RiskStatusOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_locked: bool = Field(alias="isLocked")
    lockout_until: Optional[UtcDatetime] = Field(default=None, alias="lockoutUntil")
    reason: Optional[RiskTriggerReason] = None


class RiskSettingsEnvelope(BaseModel):
    settings: RiskSettingsOut
    status: RiskStatusOut
