from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from apps.api.app.core.config import settings as app_settings
from apps.api.app.core.time import trading_day, trading_day_bounds
from apps.api.app.models.risk_settings import (
    MAX_LOSS_STREAK_LIMIT,
    REASON_COMBINED,
    REASON_DAILY_MAX_LOSS,
    REASON_LOSS_STREAK,
    RiskSettings,
)
from apps.api.app.models.trade import Trade
from apps.api.app.services.risk_settings import DEFAULT_COOLDOWN_MINUTES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskEvaluation:
    """Outcome of one guardrail run. reason/lockout_until are set only when triggered."""

    triggered: bool
    daily_pnl: float
    loss_streak: int
    reason: Optional[str] = None
    lockout_until: Optional[datetime] = None


def daily_realized_pnl(db: Session, user_id: str, opened_at: datetime) -> float:
    """
    Realized PnL of every closed trade opened on the same trading day as
    ``opened_at``. Calendar day, not a rolling 24h window: a loss at 23:59 and
    one at 00:01 the next day are never summed together.
    """
    start, end = trading_day_bounds(trading_day(opened_at))
    total = db.execute(
        select(func.coalesce(func.sum(Trade.pnl), 0.0)).where(
            Trade.user_id == user_id,
            Trade.pnl.is_not(None),
            Trade.opened_at >= start,
            Trade.opened_at < end,
        )
    ).scalar_one()
    return float(total or 0.0)


def recent_closed_pnls(db: Session, user_id: str, limit: Optional[int] = None) -> list[float]:
    if limit is None:
        # the window must be able to hold the longest allowed streak
        limit = max(MAX_LOSS_STREAK_LIMIT, int(app_settings.RISK_STREAK_LOOKBACK))
    rows = db.execute(
        select(Trade.pnl)
        .where(Trade.user_id == user_id, Trade.pnl.is_not(None))
        .order_by(Trade.opened_at.desc(), Trade.created_at.desc())
        .limit(limit)
    ).scalars().all()
    return [float(p) for p in rows]


def count_loss_streak(pnls: Iterable[float]) -> int:
    """Trailing losses, newest first; the first pnl >= 0 ends the streak."""
    streak = 0
    for pnl in pnls:
        if pnl < 0:
            streak += 1
            continue
        break
    return streak


def _is_set(value) -> bool:
    return value is not None and math.isfinite(float(value))


def decide_trigger(
    *,
    daily_pnl: float,
    loss_streak: int,
    daily_max_loss: Optional[float],
    max_consecutive_losses: Optional[int],
    cooldown_minutes: Optional[int],
    now: datetime,
) -> RiskEvaluation:
    daily_triggered = _is_set(daily_max_loss) and daily_pnl <= -abs(float(daily_max_loss))
    streak_triggered = _is_set(max_consecutive_losses) and loss_streak >= max(
        1, math.floor(float(max_consecutive_losses))
    )

    if not daily_triggered and not streak_triggered:
        return RiskEvaluation(triggered=False, daily_pnl=daily_pnl, loss_streak=loss_streak)

    if daily_triggered and streak_triggered:
        reason = REASON_COMBINED
    elif daily_triggered:
        reason = REASON_DAILY_MAX_LOSS
    else:
        reason = REASON_LOSS_STREAK

    minutes = max(1, math.floor(float(cooldown_minutes or DEFAULT_COOLDOWN_MINUTES)))
    return RiskEvaluation(
        triggered=True,
        daily_pnl=daily_pnl,
        loss_streak=loss_streak,
        reason=reason,
        lockout_until=now + timedelta(minutes=minutes),
    )


def evaluate_risk_guardrail(
    db: Session,
    *,
    user_id: str,
    opened_at: datetime,
    settings: RiskSettings,
    now: datetime,
) -> RiskEvaluation:
    """
    Runs right after a trade is flushed, so both signals already include it.
    The caller checks ``settings.enabled``. Store errors propagate.
    """
    daily_pnl = daily_realized_pnl(db, user_id, opened_at)
    loss_streak = count_loss_streak(recent_closed_pnls(db, user_id))

    evaluation = decide_trigger(
        daily_pnl=daily_pnl,
        loss_streak=loss_streak,
        daily_max_loss=settings.daily_max_loss,
        max_consecutive_losses=settings.max_consecutive_losses,
        cooldown_minutes=settings.cooldown_minutes,
        now=now,
    )
    if evaluation.triggered:
        logger.info(
            "risk guardrail triggered user=%s reason=%s daily_pnl=%.4f loss_streak=%d lockout_until=%s",
            user_id,
            evaluation.reason,
            daily_pnl,
            loss_streak,
            evaluation.lockout_until.isoformat(),
        )
    return evaluation
