from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apps.api.app.core.time import as_utc, utcnow
from apps.api.app.models.risk_settings import RiskSettings


DEFAULT_COOLDOWN_MINUTES = 45

# fields a settings patch may touch; lockout fields are owned by the evaluator
PATCHABLE_FIELDS = ("enabled", "daily_max_loss", "max_consecutive_losses", "cooldown_minutes")
# null for these means "keep the current value"
NON_NULLABLE_FIELDS = ("enabled", "cooldown_minutes")


def default_risk_settings(user_id: str, now: Optional[datetime] = None) -> RiskSettings:
    now = now or utcnow()
    return RiskSettings(
        user_id=user_id,
        enabled=True,
        daily_max_loss=None,
        max_consecutive_losses=None,
        cooldown_minutes=DEFAULT_COOLDOWN_MINUTES,
        lockout_until=None,
        last_trigger_reason=None,
        created_at=now,
        updated_at=now,
    )


def get_risk_settings(db: Session, user_id: str) -> Optional[RiskSettings]:
    return (
        db.execute(select(RiskSettings).where(RiskSettings.user_id == user_id))
        .scalar_one_or_none()
    )


def get_or_create_risk_settings(
    db: Session,
    user_id: str,
    now: Optional[datetime] = None,
) -> RiskSettings:
    row = get_risk_settings(db, user_id)
    if row:
        return row

    row = default_risk_settings(user_id, now)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # another request created the row first
        db.rollback()
        row = get_risk_settings(db, user_id)
        if row is None:
            raise
        return row
    db.refresh(row)
    return row


def update_risk_settings(
    db: Session,
    user_id: str,
    patch: dict,
    now: Optional[datetime] = None,
) -> RiskSettings:
    row = get_or_create_risk_settings(db, user_id, now)

    for field in PATCHABLE_FIELDS:
        if field not in patch:
            continue
        value = patch[field]
        if value is None and field in NON_NULLABLE_FIELDS:
            continue
        setattr(row, field, value)

    if patch.get("enabled") is False:
        row.lockout_until = None
        row.last_trigger_reason = None

    row.updated_at = now or utcnow()
    db.flush()
    return row


def clear_lockout(
    db: Session,
    user_id: str,
    now: Optional[datetime] = None,
) -> RiskSettings:
    row = get_or_create_risk_settings(db, user_id, now)
    row.lockout_until = None
    row.last_trigger_reason = None
    row.updated_at = now or utcnow()
    db.flush()
    return row


def apply_lockout(
    row: RiskSettings,
    *,
    reason: str,
    lockout_until: datetime,
    now: Optional[datetime] = None,
) -> RiskSettings:
    # overwrites any previous (possibly expired) lockout
    row.lockout_until = lockout_until
    row.last_trigger_reason = reason
    row.updated_at = now or utcnow()
    return row


def is_lockout_active(lockout_until: Optional[datetime], now: datetime) -> bool:
    if lockout_until is None:
        return False
    return as_utc(lockout_until) > as_utc(now)


def compute_status(settings: RiskSettings, now: datetime) -> dict:
    """
    Projects the stored lockout onto "now". Expired lockouts read as unlocked
    with null fields, without writing anything back.
    """
    locked = is_lockout_active(settings.lockout_until, now)
    return {
        "is_locked": locked,
        "lockout_until": as_utc(settings.lockout_until) if locked else None,
        "reason": settings.last_trigger_reason if locked else None,
    }
