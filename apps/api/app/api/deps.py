from datetime import datetime
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from apps.api.app.db.session import get_db
from apps.api.app.models.revoked_token import RevokedToken
from apps.api.app.models.user import User
from apps.api.app.core.security import decode_token
from apps.api.app.core.time import utcnow
from apps.api.app.core.config import settings
from apps.api.app.services.plan import is_free_expired


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class FreePlanExpired(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=(
                f"Free plan access expired after {settings.FREE_PLAN_MAX_DAYS} days. "
                "Upgrade to Starter or Pro to continue."
            ),
        )


def get_clock() -> Callable[[], datetime]:
    """
    Source of "now" for lockout windows and status projection.
    Tests swap it through app.dependency_overrides.
    """
    return utcnow


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Validates JWT token and returns the authenticated user.
    """

    payload = decode_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    user_id = payload.get("uid")
    token_type = payload.get("typ")
    token_jti = payload.get("jti")

    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    if token_type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )
    if token_jti:
        revoked = (
            db.query(RevokedToken)
            .filter(RevokedToken.jti == token_jti)
            .first()
        )
        if revoked:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token revoked",
            )

    user = (
        db.query(User)
        .filter(User.id == user_id)
        .first()
    )

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


def require_active_plan(
    current_user: User = Depends(get_current_user),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> User:
    """
    Expired free accounts keep read access to their journal only.
    Usage:
        current_user: User = Depends(require_active_plan)
    """
    if is_free_expired(current_user, clock()):
        raise FreePlanExpired()
    return current_user
