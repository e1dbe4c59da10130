from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from apps.api.app.core.time import as_utc
from apps.api.app.models.trade import Trade
from apps.api.app.models.user import User
from apps.api.app.services.audit import log_audit_event
from apps.api.app.services.plan import count_trades, trade_limit_for
from apps.api.app.services.risk_guardrails import RiskEvaluation, evaluate_risk_guardrail
from apps.api.app.services.risk_settings import (
    apply_lockout,
    get_or_create_risk_settings,
    is_lockout_active,
)

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("setup", "timeframe", "notes", "mistakes")
PNL_FIELDS = ("direction", "entry_price", "exit_price", "size", "fees")
REQUIRED_FIELDS = ("opened_at", "symbol", "asset_class", "direction", "entry_price", "size", "plan_adherence")


class TradeQuotaExceeded(HTTPException):
    def __init__(self, limit: int):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Free plan limited to {limit} trades. Upgrade to Pro.",
        )
        self.limit = limit


class TradeLockoutActive(HTTPException):
    def __init__(self, lockout_until: datetime, reason: Optional[str]):
        self.lockout_until = as_utc(lockout_until)
        self.reason = reason
        super().__init__(
            status_code=status.HTTP_423_LOCKED,
            detail={
                "message": "Risk guardrail lockout active. Pause trading until lockout expires.",
                "lockoutUntil": self.lockout_until.isoformat(),
                "reason": reason,
            },
        )


@dataclass(frozen=True)
class TradeCreation:
    trade: Trade
    risk: Optional[RiskEvaluation] = None

    @property
    def risk_triggered(self) -> Optional[dict]:
        if self.risk is None or not self.risk.triggered:
            return None
        return {"reason": self.risk.reason, "lockout_until": self.risk.lockout_until}


def compute_trade_pnl(
    *,
    direction: str,
    entry_price: float,
    exit_price: Optional[float],
    size: float,
    fees: float = 0.0,
) -> Optional[float]:
    """Net realized PnL, or None while the trade is still open."""
    if exit_price is None:
        return None
    if direction == "long":
        gross = (float(exit_price) - float(entry_price)) * float(size)
    else:
        gross = (float(entry_price) - float(exit_price)) * float(size)
    return round(gross - float(fees or 0.0), 4)


def _clean_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_trade_fields(data: dict) -> dict:
    out = dict(data)
    if "symbol" in out and out["symbol"] is not None:
        out["symbol"] = str(out["symbol"]).strip().upper()
    for field in TEXT_FIELDS:
        if field in out:
            out[field] = _clean_text(out[field])
    for field in ("opened_at", "closed_at"):
        if out.get(field) is not None:
            out[field] = as_utc(out[field])
    if "fees" in out and out["fees"] is None:
        out["fees"] = 0.0
    return out


def _assert_within_quota(db: Session, user: User):
    limit = trade_limit_for(user)
    if limit is None:
        return
    used = count_trades(db, user.id)
    if used < limit:
        return
    log_audit_event(
        db,
        action="trade.blocked.quota",
        user_id=user.id,
        entity_type="trade",
        details={"plan": user.plan, "trade_count": used, "trade_limit": limit},
    )
    db.commit()
    logger.info("trade rejected user=%s reason=quota trade_count=%d limit=%d", user.id, used, limit)
    raise TradeQuotaExceeded(limit)


def create_trade(
    db: Session,
    *,
    user: User,
    data: dict,
    now: datetime,
    before_commit: Optional[Callable[[TradeCreation], None]] = None,
) -> TradeCreation:
    """
    Admission gate for a new trade: quota, then active lockout, then insert,
    then guardrail evaluation over history that includes the new trade.
    The insert and any resulting lockout are committed together, along with
    whatever ``before_commit`` adds to the session.
    """
    _assert_within_quota(db, user)

    risk = get_or_create_risk_settings(db, user.id, now)
    if risk.enabled and is_lockout_active(risk.lockout_until, now):
        log_audit_event(
            db,
            action="trade.blocked.lockout",
            user_id=user.id,
            entity_type="risk_settings",
            entity_id=user.id,
            details={"lockout_until": as_utc(risk.lockout_until), "reason": risk.last_trigger_reason},
        )
        db.commit()
        logger.info("trade rejected user=%s reason=lockout until=%s", user.id, risk.lockout_until)
        raise TradeLockoutActive(risk.lockout_until, risk.last_trigger_reason)

    fields = normalize_trade_fields(data)
    trade = Trade(
        id=str(uuid.uuid4()),
        user_id=user.id,
        pnl=compute_trade_pnl(**{k: fields.get(k) for k in PNL_FIELDS}),
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.add(trade)
    db.flush()

    evaluation = None
    if risk.enabled:
        evaluation = evaluate_risk_guardrail(
            db,
            user_id=user.id,
            opened_at=trade.opened_at,
            settings=risk,
            now=now,
        )
        if evaluation.triggered:
            apply_lockout(risk, reason=evaluation.reason, lockout_until=evaluation.lockout_until, now=now)
            log_audit_event(
                db,
                action="risk.lockout.triggered",
                user_id=user.id,
                entity_type="risk_settings",
                entity_id=user.id,
                details={
                    "trade_id": trade.id,
                    "reason": evaluation.reason,
                    "lockout_until": evaluation.lockout_until,
                    "daily_pnl": evaluation.daily_pnl,
                    "loss_streak": evaluation.loss_streak,
                },
            )

    log_audit_event(
        db,
        action="trade.create",
        user_id=user.id,
        entity_type="trade",
        entity_id=trade.id,
        details={"symbol": trade.symbol, "direction": trade.direction, "pnl": trade.pnl},
    )
    creation = TradeCreation(trade=trade, risk=evaluation)
    if before_commit is not None:
        before_commit(creation)
    db.commit()
    db.refresh(trade)
    return creation


def get_trade_or_404(db: Session, user_id: str, trade_id: str) -> Trade:
    trade = db.execute(
        select(Trade).where(Trade.id == trade_id, Trade.user_id == user_id)
    ).scalar_one_or_none()
    if not trade:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trade not found")
    return trade


def list_trades(
    db: Session,
    user_id: str,
    *,
    search: Optional[str] = None,
    symbol: Optional[str] = None,
    from_: Optional[datetime] = None,
    to: Optional[datetime] = None,
    setup: Optional[str] = None,
) -> list[Trade]:
    query = select(Trade).where(Trade.user_id == user_id)
    if symbol:
        query = query.where(Trade.symbol == symbol.strip().upper())
    if setup:
        query = query.where(Trade.setup == setup.strip())
    if from_:
        query = query.where(Trade.opened_at >= as_utc(from_))
    if to:
        query = query.where(Trade.opened_at <= as_utc(to))
    if search:
        wildcard = f"%{search.strip()}%"
        query = query.where(
            or_(
                Trade.symbol.ilike(wildcard),
                Trade.setup.ilike(wildcard),
                Trade.notes.ilike(wildcard),
                Trade.mistakes.ilike(wildcard),
            )
        )
    query = query.order_by(Trade.opened_at.desc(), Trade.created_at.desc())
    return list(db.execute(query).scalars().all())


def update_trade(
    db: Session,
    *,
    trade: Trade,
    patch: dict,
    now: datetime,
) -> Trade:
    if not patch:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No trade fields supplied")

    # explicit nulls only clear nullable columns
    patch = {k: v for k, v in patch.items() if v is not None or k not in REQUIRED_FIELDS}
    fields = normalize_trade_fields(patch)
    for key, value in fields.items():
        setattr(trade, key, value)
    trade.pnl = compute_trade_pnl(**{k: getattr(trade, k) for k in PNL_FIELDS})
    trade.updated_at = now

    log_audit_event(
        db,
        action="trade.update",
        user_id=trade.user_id,
        entity_type="trade",
        entity_id=trade.id,
        details={"fields": sorted(fields.keys()), "pnl": trade.pnl},
    )
    db.commit()
    db.refresh(trade)
    return trade


def delete_trade(db: Session, *, trade: Trade):
    log_audit_event(
        db,
        action="trade.delete",
        user_id=trade.user_id,
        entity_type="trade",
        entity_id=trade.id,
        details={"symbol": trade.symbol},
    )
    db.delete(trade)
    db.commit()
