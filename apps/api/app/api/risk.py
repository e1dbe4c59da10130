from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_clock, require_active_plan
from apps.api.app.db.session import get_db
from apps.api.app.models.risk_settings import RiskSettings
from apps.api.app.models.user import User
from apps.api.app.schemas.risk import (
    RiskSettingsEnvelope,
    RiskSettingsOut,
    RiskSettingsUpdate,
    RiskStatusOut,
)
from apps.api.app.services.audit import log_audit_event
from apps.api.app.services.risk_settings import (
    clear_lockout,
    compute_status,
    get_or_create_risk_settings,
    update_risk_settings,
)

router = APIRouter(prefix="/risk-settings", tags=["risk"])


def _envelope(row: RiskSettings, now: datetime) -> RiskSettingsEnvelope:
    return RiskSettingsEnvelope(
        settings=RiskSettingsOut.model_validate(row),
        status=RiskStatusOut(**compute_status(row, now)),
    )


@router.get("", response_model=RiskSettingsEnvelope)
def get_risk_settings_route(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_active_plan),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    now = clock()
    row = get_or_create_risk_settings(db, current_user.id, now)
    return _envelope(row, now)


@router.put("", response_model=RiskSettingsEnvelope)
def update_risk_settings_route(
    payload: RiskSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_active_plan),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    now = clock()
    patch = payload.model_dump(exclude_unset=True)
    row = update_risk_settings(db, current_user.id, patch, now)
    log_audit_event(
        db,
        action="risk_settings.update",
        user_id=current_user.id,
        entity_type="risk_settings",
        entity_id=current_user.id,
        details=patch,
    )
    db.commit()
    db.refresh(row)
    return _envelope(row, now)


@router.post("/unlock", response_model=RiskSettingsEnvelope)
def unlock_route(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_active_plan),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    now = clock()
    row = clear_lockout(db, current_user.id, now)
    log_audit_event(
        db,
        action="risk_settings.unlock",
        user_id=current_user.id,
        entity_type="risk_settings",
        entity_id=current_user.id,
    )
    db.commit()
    db.refresh(row)
    return _envelope(row, now)
