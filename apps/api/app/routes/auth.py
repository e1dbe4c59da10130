from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_current_user, oauth2_scheme
from apps.api.app.db.session import get_db
from apps.api.app.models.revoked_token import RevokedToken
from apps.api.app.models.user import PLAN_FREE, User
from apps.api.app.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    decode_token,
)
from apps.api.app.schemas.user import UserCreate, UserOut
from apps.api.app.services.audit import log_audit_event

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_exp_to_datetime(exp_value) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(exp_value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(
    payload: UserCreate,
    db: Session = Depends(get_db),
):
    email = payload.email.strip().lower()
    existing = db.execute(
        select(User).where(User.email == email)
    ).scalar_one_or_none()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already exists",
        )

    user = User(
        email=email,
        hashed_password=get_password_hash(payload.password),
        plan=PLAN_FREE,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    db.flush()
    log_audit_event(
        db,
        action="auth.register",
        user_id=user.id,
        entity_type="user",
        entity_id=user.id,
    )
    db.commit()
    db.refresh(user)
    return user


@router.post("/login")
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    user = (
        db.query(User)
        .filter(User.email == form_data.username.strip().lower())
        .first()
    )

    if not user or not verify_password(
        form_data.password,
        user.hashed_password,
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    access_token = create_access_token(
        data={
            "sub": user.email,
            "uid": user.id,
            "plan": user.plan,
        },
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/logout")
def logout(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    payload = decode_token(token) or {}
    jti = payload.get("jti")
    if jti:
        db.add(
            RevokedToken(
                jti=jti,
                user_id=current_user.id,
                expires_at=_token_exp_to_datetime(payload.get("exp")),
            )
        )
    log_audit_event(
        db,
        action="auth.logout",
        user_id=current_user.id,
        entity_type="user",
        entity_id=current_user.id,
    )
    db.commit()
    return {"message": "Logged out"}
