import json
from typing import Any, Optional

from sqlalchemy.orm import Session

from apps.api.app.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    action: str,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
):
    """Adds an audit row to the current transaction; the caller commits."""
    event = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        # datetimes (lockout_until, opened_at) go out as ISO strings
        details=json.dumps(details, default=_json_default, sort_keys=True) if details else None,
    )
    db.add(event)
    db.flush()
    return event


def _json_default(value: Any):
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
