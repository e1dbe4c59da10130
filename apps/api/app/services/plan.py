from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from apps.api.app.core.config import settings
from apps.api.app.core.time import as_utc, utcnow
from apps.api.app.models.trade import Trade
from apps.api.app.models.user import PLAN_FREE, PLAN_PRO, User


def count_trades(db: Session, user_id: str) -> int:
    return int(
        db.execute(
            select(func.count(Trade.id)).where(Trade.user_id == user_id)
        ).scalar_one()
    )


def trade_limit_for(user: User) -> Optional[int]:
    if user.plan == PLAN_FREE:
        return int(settings.FREE_TRADE_LIMIT)
    return None


def free_expiry_date(created_at: Optional[datetime]) -> datetime:
    start = as_utc(created_at) if created_at else utcnow()
    return start + timedelta(days=int(settings.FREE_PLAN_MAX_DAYS))


def free_days_remaining(created_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    expiry = free_expiry_date(created_at)
    if now >= expiry:
        return 0
    return math.ceil((expiry - now).total_seconds() / 86400)


def is_free_expired(user: User, now: Optional[datetime] = None) -> bool:
    if user.plan != PLAN_FREE:
        return False
    return free_days_remaining(user.created_at, now) <= 0


def build_plan_summary(db: Session, user: User, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    is_free = user.plan == PLAN_FREE
    remaining = free_days_remaining(user.created_at, now) if is_free else None
    return {
        "id": user.id,
        "email": user.email,
        "plan": user.plan,
        "trade_count": count_trades(db, user.id),
        "trade_limit": trade_limit_for(user),
        "free_days_total": int(settings.FREE_PLAN_MAX_DAYS) if is_free else None,
        "free_days_remaining": remaining,
        "free_expires_at": free_expiry_date(user.created_at) if is_free else None,
        "free_expired": bool(is_free and remaining == 0),
        "can_use_pro_features": user.plan == PLAN_PRO,
    }
