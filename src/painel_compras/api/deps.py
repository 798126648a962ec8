"""
Request dependencies: bearer token -> ERP session.
"""

import logging
from typing import Any

from fastapi import Header, HTTPException, Request

from ..config import get_config
from ..core.sankhya_client import get_sankhya_client
from ..core.sessions import ErpSession, get_session_store
from ..core.tokens import TokenError, bearer_token, decode_token

logger = logging.getLogger(__name__)


def _claims(authorization: str | None) -> dict[str, Any]:
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Token ausente")
    try:
        return decode_token(token, get_config().jwt_secret)
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e


async def current_session(
    request: Request,
    authorization: str | None = Header(None),
) -> ErpSession:
    """Resolve the caller's ERP session from the Authorization header.

    The session and the token claims are also stored on ``request.state``
    so error handlers can drop a session the ERP has expired. A session
    found expired here is removed and logged out on the ERP.

    Raises:
        HTTPException: 401 for a missing/invalid token or unknown session.
    """
    claims = _claims(authorization)
    store = get_session_store()
    session = store.get(claims["jti"])
    if session is None:
        expired = store.pop_expired(claims["jti"])
        if expired is not None:
            logger.info(f"Session of {expired.usuario} expired, closing ERP session")
            await get_sankhya_client().logout(expired.jsessionid)
        raise HTTPException(status_code=401, detail="Sessão expirada")

    request.state.session = session
    request.state.claims = claims
    return session
