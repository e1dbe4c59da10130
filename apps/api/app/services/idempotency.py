import hashlib
import json
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from apps.api.app.core.config import settings
from apps.api.app.core.time import utcnow
from apps.api.app.models.idempotency_key import IdempotencyKey

MAX_KEY_LENGTH = 128


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _canonical(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)


def _normalize_key(idempotency_key: Optional[str]) -> Optional[str]:
    if not idempotency_key:
        return None
    key = idempotency_key.strip()
    if not key:
        return None
    if len(key) > MAX_KEY_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Idempotency key too long (max {MAX_KEY_LENGTH} chars)",
        )
    return key


def _find(db: Session, user_id: str, endpoint: str, key_hash: str) -> Optional[IdempotencyKey]:
    return (
        db.execute(
            select(IdempotencyKey).where(
                IdempotencyKey.user_id == user_id,
                IdempotencyKey.endpoint == endpoint,
                IdempotencyKey.key_hash == key_hash,
            )
        )
        .scalar_one_or_none()
    )


def consume_idempotent_response(
    db: Session,
    *,
    user_id: str,
    endpoint: str,
    idempotency_key: Optional[str],
    request_payload: dict,
) -> Optional[tuple[int, dict]]:
    """Returns (status_code, body) of an earlier identical request, if any."""
    key = _normalize_key(idempotency_key)
    if key is None:
        return None

    row = _find(db, user_id, endpoint, _sha256(key))
    if not row:
        return None
    if row.request_hash != _sha256(_canonical(request_payload)):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Idempotency key already used with different payload",
        )
    return int(row.status_code), json.loads(row.response_json)


def stage_idempotent_response(
    db: Session,
    *,
    user_id: str,
    endpoint: str,
    idempotency_key: Optional[str],
    request_payload: dict,
    response_payload: dict,
    status_code: int = status.HTTP_201_CREATED,
):
    """
    Adds the key row to the caller's transaction. A concurrent request that
    already holds the key surfaces as IntegrityError on flush, before the
    caller commits anything.
    """
    key = _normalize_key(idempotency_key)
    if key is None:
        return

    key_hash = _sha256(key)
    request_hash = _sha256(_canonical(request_payload))
    db.add(
        IdempotencyKey(
            user_id=user_id,
            endpoint=endpoint,
            key_hash=key_hash,
            request_hash=request_hash,
            response_json=_canonical(response_payload),
            status_code=status_code,
        )
    )
    db.flush()


def cleanup_old_idempotency_keys(db: Session, now: Optional[datetime] = None) -> int:
    max_days = max(1, int(settings.IDEMPOTENCY_KEY_MAX_AGE_DAYS))
    cutoff = (now or utcnow()) - timedelta(days=max_days)
    result = db.execute(
        delete(IdempotencyKey).where(IdempotencyKey.created_at < cutoff)
    )
    db.commit()
    return int(result.rowcount or 0)
