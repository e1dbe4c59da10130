from contextlib import asynccontextmanager

from apps.api.app.api.me import router as me_router
from apps.api.app.api.risk import router as risk_router
from apps.api.app.api.trades import router as trades_router
from apps.api.app.routes.auth import router as auth_router

import apps.api.app.models.user
import apps.api.app.models.trade
import apps.api.app.models.risk_settings
import apps.api.app.models.audit_log
import apps.api.app.models.idempotency_key
import apps.api.app.models.revoked_token

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from apps.api.app.core.logging_utils import init_logging
from apps.api.app.db.session import engine, Base, SessionLocal
from apps.api.app.services.idempotency import cleanup_old_idempotency_keys
from apps.api.app.services.trades import TradeLockoutActive


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_logging()
    db = SessionLocal()
    try:
        cleanup_old_idempotency_keys(db)
    finally:
        db.close()
    yield


app = FastAPI(title="trading-journal API", lifespan=lifespan)

Base.metadata.create_all(bind=engine)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request payload",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(TradeLockoutActive)
async def lockout_handler(request: Request, exc: TradeLockoutActive):
    # lockoutUntil/reason at top level so clients can render a countdown
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "lockoutUntil": exc.lockout_until.isoformat(),
            "reason": exc.reason,
        },
    )


app.include_router(auth_router)
app.include_router(me_router)
app.include_router(trades_router)
app.include_router(risk_router)

@app.get("/healthz")
def healthz():
    return {"status": "ok"}

@app.get("/")
def root():
    return {"app": "trading-journal", "docs": "/docs"}
