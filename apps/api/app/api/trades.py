from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_clock, get_current_user, require_active_plan
from apps.api.app.db.session import get_db
from apps.api.app.models.user import User
from apps.api.app.schemas.trade import (
    TradeCreate,
    TradeCreateOut,
    TradeEnvelope,
    TradeListOut,
    TradeOut,
    TradeUpdate,
)
from apps.api.app.services.idempotency import (
    consume_idempotent_response,
    stage_idempotent_response,
)
from apps.api.app.services.trades import (
    TradeCreation,
    create_trade,
    delete_trade,
    get_trade_or_404,
    list_trades,
    update_trade,
)

router = APIRouter(prefix="/trades", tags=["trades"])

CREATE_ENDPOINT = "POST /trades"


def _creation_out(creation: TradeCreation) -> TradeCreateOut:
    return TradeCreateOut(
        trade=TradeOut.model_validate(creation.trade),
        risk_triggered=creation.risk_triggered,
    )


@router.get("", response_model=TradeListOut)
def list_trades_route(
    search: Optional[str] = Query(default=None, max_length=120),
    symbol: Optional[str] = Query(default=None, max_length=20),
    from_: Optional[datetime] = Query(default=None, alias="from"),
    to: Optional[datetime] = Query(default=None),
    setup: Optional[str] = Query(default=None, max_length=120),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = list_trades(
        db,
        current_user.id,
        search=search,
        symbol=symbol,
        from_=from_,
        to=to,
        setup=setup,
    )
    return {"trades": rows}


@router.post("", response_model=TradeCreateOut, status_code=status.HTTP_201_CREATED)
def create_trade_route(
    payload: TradeCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="X-Idempotency-Key"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_active_plan),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    req_payload = payload.model_dump(mode="json")
    cached = consume_idempotent_response(
        db,
        user_id=current_user.id,
        endpoint=CREATE_ENDPOINT,
        idempotency_key=idempotency_key,
        request_payload=req_payload,
    )
    if cached is not None:
        status_code, body = cached
        return JSONResponse(status_code=status_code, content=body)

    def _stage_response(creation):
        # the key row commits with the trade or not at all
        stage_idempotent_response(
            db,
            user_id=current_user.id,
            endpoint=CREATE_ENDPOINT,
            idempotency_key=idempotency_key,
            request_payload=req_payload,
            response_payload=_creation_out(creation).model_dump(mode="json", by_alias=True),
        )

    try:
        creation = create_trade(
            db,
            user=current_user,
            data=payload.model_dump(),
            now=clock(),
            before_commit=_stage_response,
        )
    except IntegrityError:
        db.rollback()
        # a concurrent request took the key first; answer from its stored response
        cached = consume_idempotent_response(
            db,
            user_id=current_user.id,
            endpoint=CREATE_ENDPOINT,
            idempotency_key=idempotency_key,
            request_payload=req_payload,
        )
        if cached is None:
            raise
        status_code, body = cached
        return JSONResponse(status_code=status_code, content=body)
    return _creation_out(creation)


@router.get("/{trade_id}", response_model=TradeEnvelope)
def get_trade_route(
    trade_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_active_plan),
):
    return {"trade": get_trade_or_404(db, current_user.id, trade_id)}


@router.put("/{trade_id}", response_model=TradeEnvelope)
def update_trade_route(
    trade_id: str,
    payload: TradeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_active_plan),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    trade = get_trade_or_404(db, current_user.id, trade_id)
    trade = update_trade(
        db,
        trade=trade,
        patch=payload.model_dump(exclude_unset=True),
        now=clock(),
    )
    return {"trade": trade}


@router.delete("/{trade_id}")
def delete_trade_route(
    trade_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_active_plan),
):
    trade = get_trade_or_404(db, current_user.id, trade_id)
    delete_trade(db, trade=trade)
    return {"success": True}
