"""
FastAPI application factory.

Errors are returned as ``{"erro": "..."}``:
400 invalid input, 401 token/session problems, 403 entity not allowed,
404 missing records, 429 login throttling, 502 ERP failures.
"""

import logging
from contextlib import asynccontextmanager

import anyio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .. import __version__
from ..config import get_config
from ..core.sankhya_client import SankhyaError, SankhyaSessionExpiredError, get_sankhya_client
from ..core.security import QueryValidationError, RateLimiter
from ..core.sessions import get_session_store
from ..purchasing.rows import RecordNotFoundError
from . import auth, purchasing

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"erro": message})


async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        return _error(400, f"{location}: {first.get('msg')}" if location else str(first.get("msg")))
    return _error(400, "Requisição inválida")


async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
    return _error(400, str(exc))


async def _permission_error(request: Request, exc: PermissionError) -> JSONResponse:
    return _error(403, str(exc))


async def _not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return _error(404, str(exc))


async def _session_expired(request: Request, exc: SankhyaSessionExpiredError) -> JSONResponse:
    session = getattr(request.state, "session", None)
    if session is not None:
        get_session_store().pop(session.jti)
        logger.info(f"ERP session of {session.usuario} expired, session dropped")
    return _error(401, "Sessão Sankhya expirada")


async def _sankhya_error(request: Request, exc: SankhyaError) -> JSONResponse:
    logger.error(f"Sankhya error on {request.method} {request.url.path}: {exc}")
    return _error(502, str(exc))


async def purge_expired_sessions() -> int:
    """Remove expired sessions and log them out on the ERP.

    Returns:
        Number of sessions removed.
    """
    expired = get_session_store().purge_expired()
    client = get_sankhya_client()
    for session in expired:
        await client.logout(session.jsessionid)
    if expired:
        logger.info(f"Purged {len(expired)} expired session(s)")
    return len(expired)


async def _purge_periodically(interval: float) -> None:
    while True:
        await anyio.sleep(interval)
        await purge_expired_sessions()


@asynccontextmanager
async def lifespan(app: FastAPI):
    interval = float(get_config().auth["session_purge_seconds"])
    async with anyio.create_task_group() as tg:
        if interval > 0:
            tg.start_soon(_purge_periodically, interval)
        try:
            yield
        finally:
            tg.cancel_scope.cancel()

    for session in get_session_store().drain():
        await get_sankhya_client().logout(session.jsessionid)
    await get_sankhya_client().close()


def create_app() -> FastAPI:
    """Create the HTTP API.

    Returns:
        Configured FastAPI application.
    """
    config = get_config()
    app = FastAPI(title="Painel de Compras", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in config.cors_origin.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    auth_settings = config.auth
    app.state.login_limiter = RateLimiter(
        max_requests=int(auth_settings["login_max_attempts"]),
        window_seconds=int(auth_settings["login_window_seconds"]),
        enforce=bool(auth_settings["enforce_login_limit"]),
    )

    app.add_exception_handler(HTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(QueryValidationError, _value_error)
    app.add_exception_handler(ValueError, _value_error)
    app.add_exception_handler(PermissionError, _permission_error)
    app.add_exception_handler(RecordNotFoundError, _not_found)
    app.add_exception_handler(SankhyaSessionExpiredError, _session_expired)
    app.add_exception_handler(SankhyaError, _sankhya_error)

    app.include_router(auth.router)
    app.include_router(purchasing.router)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict:
        return {"status": "ok", "sankhya": get_sankhya_client().is_configured}

    return app
