"""
Authentication and raw query routes.
"""

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ..config import get_config
from ..core.sankhya_client import SankhyaError, get_sankhya_client
from ..core.security import QueryValidator
from ..core.sessions import ErpSession, get_session_store
from ..core.tokens import issue_token
from ..purchasing import queries
from ..purchasing.rows import as_int, as_text
from .deps import current_session
from .models import LoginRequest, QueryRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

_validator = QueryValidator(readonly=True)


def _sign(session: ErpSession) -> str:
    config = get_config()
    return issue_token(
        jti=session.jti,
        usuario=session.usuario,
        name=session.name,
        codusu=session.codusu,
        codvend=session.codvend,
        secret=config.jwt_secret,
        ttl_seconds=config.token_ttl_seconds,
    )


@router.post("/auth/login")
async def login(body: LoginRequest, request: Request) -> dict[str, Any]:
    """Open an ERP session with the user's own credentials."""
    usuario = (body.usuario or "").strip().upper()
    senha = body.senha or ""
    if not usuario or not senha:
        raise HTTPException(status_code=400, detail="Usuário e senha são obrigatórios")

    limiter = request.app.state.login_limiter
    if not limiter.record_request(usuario):
        wait = int(limiter.get_reset_time(usuario)) + 1
        raise HTTPException(
            status_code=429, detail=f"Muitas tentativas de login. Tente novamente em {wait}s"
        )

    client = get_sankhya_client()
    try:
        jsessionid = await client.login(usuario, senha)
    except SankhyaError as e:
        logger.warning(f"Login failed for {usuario}: {e}")
        raise HTTPException(status_code=401, detail="Falha no login") from e

    try:
        rows = await client.execute_query(jsessionid, queries.user_lookup(usuario))
    except SankhyaError as e:
        logger.warning(f"User lookup failed for {usuario}: {e}")
        await client.logout(jsessionid)
        raise HTTPException(status_code=401, detail="Falha no login") from e

    row = rows[0] if rows else {}
    session = get_session_store().create(
        jti=uuid.uuid4().hex,
        jsessionid=jsessionid,
        usuario=usuario,
        codusu=as_int(row.get("CODUSU")) if row.get("CODUSU") is not None else None,
        codvend=as_int(row.get("CODVEND")),
        name=as_text(row.get("NOMEUSU")) or usuario,
    )
    limiter.clear(usuario)
    logger.info(f"User {usuario} logged in (codvend={session.codvend})")

    return {
        "token": _sign(session),
        "name": session.name,
        "codusu": session.codusu,
        "codvend": session.codvend,
    }


@router.post("/auth/logout")
async def logout(session: ErpSession = Depends(current_session)) -> dict[str, Any]:
    get_session_store().pop(session.jti)
    await get_sankhya_client().logout(session.jsessionid)
    logger.info(f"User {session.usuario} logged out")
    return {"sucesso": True}


@router.get("/whoami")
async def whoami(request: Request, session: ErpSession = Depends(current_session)) -> dict[str, Any]:
    return {
        "user": request.state.claims,
        "session": session.public_dict(),
        "sankhyaSession": bool(session.jsessionid),
    }


@router.get("/ping-sankhya")
async def ping_sankhya(session: ErpSession = Depends(current_session)) -> dict[str, Any]:
    rows = await get_sankhya_client().execute_query(session.jsessionid, "SELECT 1 AS OK FROM DUAL")
    return {"ok": True, "rows": rows}


@router.post("/obter-reg")
async def obter_reg(
    body: QueryRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    """Run a read-only query page by page.

    With ``refreshToken`` the session lifetime restarts and a new token is
    returned.

    Raises:
        QueryValidationError: The statement is not a plain SELECT.
    """
    _validator.validate_or_raise(body.consulta)
    rows = await get_sankhya_client().execute_query_paged(
        session.jsessionid,
        body.consulta.strip().rstrip(";"),
        page_size=body.pageSize,
        max_pages=body.maxPages,
    )
    result: dict[str, Any] = {"rows": rows}
    if body.refreshToken and get_session_store().extend(session.jti) is not None:
        result["token"] = _sign(session)
    return result
