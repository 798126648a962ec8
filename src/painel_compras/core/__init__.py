"""
Core infrastructure modules for Painel de Compras.

- sankhya_client: Sankhya service gateway HTTP client
- sessions: Token id -> ERP session map
- tokens: Signed bearer tokens
- security: Query validation, SQL escaping, dates, throttling
- audit: Operation logging
"""

from .audit import AuditLogger, audit_call, get_audit_logger
from .sankhya_client import (
    SankhyaAuthError,
    SankhyaClient,
    SankhyaConnectionError,
    SankhyaError,
    SankhyaServiceError,
    SankhyaSessionExpiredError,
    get_sankhya_client,
    reset_sankhya_client,
)
from .security import QueryValidationError, QueryValidator, RateLimiter
from .sessions import ErpSession, SessionStore, get_session_store
from .tokens import TokenError, bearer_token, decode_token, issue_token

__all__ = [
    "AuditLogger",
    "ErpSession",
    "QueryValidationError",
    "QueryValidator",
    "RateLimiter",
    "SankhyaAuthError",
    "SankhyaClient",
    "SankhyaConnectionError",
    "SankhyaError",
    "SankhyaServiceError",
    "SankhyaSessionExpiredError",
    "SessionStore",
    "TokenError",
    "audit_call",
    "bearer_token",
    "decode_token",
    "get_audit_logger",
    "get_sankhya_client",
    "get_session_store",
    "issue_token",
    "reset_sankhya_client",
]
