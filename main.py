"""
FastAPI application factory.

Run with ``uvicorn main:create_app --factory`` or ``python main.py``.
"""

import asyncio
import time
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from auth import TokenService, hash_password
from config import Settings, get_settings
from crud import AccountRepository
from database import Database
from dependencies import enforce_access_policy, limiter
from exceptions import (
    ConsistencyFault,
    DomainError,
    DuplicatePeriod,
    Forbidden,
    NoChangeApplied,
    NotFound,
    StorageFailure,
    Unauthenticated,
    ValidationFailure,
)
from ledger import KeyedLocks
from logger import configure_logging, logger
from model import AccountType
from routers import messages, payroll, session, users, work

_ERROR_STATUS = {
    Unauthenticated: 401,
    Forbidden: 403,
    NotFound: 404,
    DuplicatePeriod: 409,
    NoChangeApplied: 409,
    ValidationFailure: 422,
    ConsistencyFault: 500,
    StorageFailure: 503,
}


def _status_for(exc: DomainError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return 400


async def _domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def _storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


class _RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, client IP, response status and latency (ms)."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        client_ip = request.client.host if request.client else "unknown"
        logger.info(
            "%s %s | client=%s status=%d latency=%.1fms",
            request.method,
            request.url.path,
            client_ip,
            response.status_code,
            elapsed_ms,
        )
        return response


async def ensure_first_admin(database: Database, settings: Settings) -> None:
    if not (settings.first_admin_email and settings.first_admin_password):
        return

    async with database.session_factory() as db:
        accounts = AccountRepository(db)
        if await accounts.get_by_email(settings.first_admin_email):
            return
        await accounts.create(
            email=settings.first_admin_email,
            password_hash=hash_password(settings.first_admin_password),
            username="Administrator",
            account_type=AccountType.ADMIN.value,
            salary=0,
            is_verified=True,
        )
        await accounts.commit()
        logger.info("Seeded first admin account %s", settings.first_admin_email)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="HR Payroll API", version="1.0.0")
    app.state.settings = settings
    app.state.database = Database(
        settings.database_url,
        echo=settings.db_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    app.state.token_service = TokenService.from_settings(settings)
    app.state.salary_locks = KeyedLocks()

    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(DomainError, _domain_error_handler)
    app.add_exception_handler(SQLAlchemyError, _storage_error_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def request_deadline(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("%s %s exceeded %.1fs deadline", request.method, request.url.path,
                           settings.request_timeout_seconds)
            return JSONResponse(status_code=504, content={"detail": "Request timed out"})

    # Outermost, so requests that hit the deadline are logged too
    app.add_middleware(_RequestLogMiddleware)

    @app.on_event("startup")
    async def startup():
        if settings.auto_create_tables:
            await app.state.database.create_tables()
        await ensure_first_admin(app.state.database, settings)
        logger.info("HR payroll service starting up (%s)", settings.environment)

    @app.on_event("shutdown")
    async def shutdown():
        await app.state.database.dispose()
        logger.info("HR payroll service shutting down")

    @app.get("/health", dependencies=[Depends(enforce_access_policy)])
    async def health():
        await app.state.database.ping()
        return {"status": "ok"}

    # Include routers
    app.include_router(session.router)
    app.include_router(users.router)
    app.include_router(work.router)
    app.include_router(payroll.router)
    app.include_router(messages.router)

    return app


def run() -> None:
    import uvicorn

    uvicorn.run(create_app(), port=8000)


if __name__ == "__main__":
    run()
