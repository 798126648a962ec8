"""
Signed bearer tokens for the dashboard.

Tokens carry the user's identity and the id of the server-side ERP session.
Passwords and JSESSIONIDs are never placed in a token.
"""

import time
from typing import Any

import jwt

ALGORITHM = "HS256"


class TokenError(Exception):
    """Raised when a token is missing, malformed, tampered with or expired."""

    pass


def issue_token(
    *,
    jti: str,
    usuario: str,
    name: str,
    codusu: int | None,
    codvend: int | None,
    secret: str,
    ttl_seconds: int,
) -> str:
    """Sign a token for an ERP session.

    Args:
        jti: Session id in the session store.
        usuario: ERP user (token subject).
        name: Display name.
        codusu: ERP user code.
        codvend: Buyer code.
        secret: HMAC secret.
        ttl_seconds: Lifetime in seconds.

    Returns:
        Encoded JWT.
    """
    now = int(time.time())
    claims = {
        "sub": usuario,
        "name": name,
        "codusu": codusu,
        "codvend": codvend,
        "jti": jti,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> dict[str, Any]:
    """Verify a token and return its claims.

    Raises:
        TokenError: Invalid signature, malformed token, missing jti or expired.
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expirado") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Token inválido") from e

    if not claims.get("jti"):
        raise TokenError("Token inválido")
    return claims


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None
