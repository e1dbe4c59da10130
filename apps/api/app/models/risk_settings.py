from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.sql import func

from apps.api.app.db.session import Base


REASON_DAILY_MAX_LOSS = "daily_max_loss"
REASON_LOSS_STREAK = "loss_streak"
REASON_COMBINED = "combined"
RISK_TRIGGER_REASONS = (REASON_DAILY_MAX_LOSS, REASON_LOSS_STREAK, REASON_COMBINED)

# upper bound for max_consecutive_losses
MAX_LOSS_STREAK_LIMIT = 20


class RiskSettings(Base):
    __tablename__ = "risk_settings"

    user_id = Column(String, primary_key=True, index=True)

    enabled = Column(Boolean, nullable=False, default=True)
    daily_max_loss = Column(Float, nullable=True)
    max_consecutive_losses = Column(Integer, nullable=True)
    cooldown_minutes = Column(Integer, nullable=False, default=45)

    # exclusive end of the current lockout; only meaningful while enabled
    lockout_until = Column(DateTime(timezone=True), nullable=True)
    last_trigger_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now(), nullable=False)
