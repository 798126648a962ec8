"""
Audit trail for Painel de Compras.

Every ERP write and every assistant tool call is appended to
``audit.jsonl`` with the ERP user, the call arguments (credentials and
session ids redacted) and the outcome.
"""

import functools
import json
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
MAX_TEXT = 1000


class AuditLogger:
    """Appends audit entries to a JSON-lines file."""

    SENSITIVE_KEYS = ("password", "senha", "secret", "token", "jsessionid", "credential")

    def __init__(self, log_dir: Path | None = None):
        """Initialize the audit logger.

        Args:
            log_dir: Directory for audit logs. Defaults to $PAINEL_LOG_DIR
                or the project logs/ directory.
        """
        if log_dir is None:
            env_dir = os.getenv("PAINEL_LOG_DIR")
            log_dir = Path(env_dir) if env_dir else Path(__file__).parents[3] / "logs"

        self.log_dir = log_dir
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / "audit.jsonl"

    def log_operation(
        self,
        operation: str,
        params: dict[str, Any],
        result_summary: str | None = None,
        success: bool = True,
        error: str | None = None,
        user: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Append one entry.

        Args:
            operation: Name of the operation (e.g. orders.update_forecast).
            params: Call arguments, redacted before writing.
            result_summary: Short description of the result.
            success: Whether the operation succeeded.
            error: Error message if it failed.
            user: ERP user that performed the operation.
            duration_ms: Operation duration in milliseconds.
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operation": operation,
            "user": user,
            "params": self._sanitize_params(params),
            "success": success,
            "result_summary": result_summary,
            "error": error,
            "duration_ms": round(duration_ms, 2) if duration_ms is not None else None,
        }
        line = json.dumps(
            {k: v for k, v in entry.items() if v is not None},
            default=str,
            ensure_ascii=False,
        )
        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error(f"Failed to write audit log: {e}")

    def _is_sensitive(self, key: Any) -> bool:
        name = str(key).lower()
        return any(s in name for s in self.SENSITIVE_KEYS)

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self._sanitize_params(value)
        if isinstance(value, (list, tuple)):
            return [self._sanitize_value(v) for v in value]
        if isinstance(value, str):
            return value if len(value) <= MAX_TEXT else value[:MAX_TEXT] + "... [truncated]"
        if value is None or isinstance(value, (int, float, bool)):
            return value
        return repr(value)

    def _sanitize_params(self, params: dict[str, Any]) -> dict[str, Any]:
        """Redact sensitive keys at any depth and truncate long text.

        Args:
            params: Original parameters.

        Returns:
            JSON-safe copy of the parameters.
        """
        return {
            str(key): REDACTED if self._is_sensitive(key) else self._sanitize_value(value)
            for key, value in params.items()
        }


# Global audit logger instance
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    """Get the global audit logger instance.

    Returns:
        The AuditLogger singleton instance.
    """
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def _summarize(result: Any) -> str:
    if isinstance(result, str):
        return result[:200]
    if isinstance(result, dict):
        if "STATUS" in result:
            return f"ERP status {result['STATUS']}"
        return f"Dict with keys: {list(result.keys())}"
    if isinstance(result, list):
        return f"List with {len(result)} items"
    return type(result).__name__


def audit_call(operation: str):
    """Decorator to audit async operations.

    The ERP user is taken from a ``session`` keyword argument (or the
    first positional ErpSession-like argument) when present.

    Args:
        operation: Name recorded in the audit log.

    Returns:
        Decorator function.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            session = kwargs.get("session") or next(
                (a for a in args if hasattr(a, "jsessionid")), None
            )
            record = functools.partial(
                get_audit_logger().log_operation,
                operation=operation,
                params={k: v for k, v in kwargs.items() if k != "session"},
                user=getattr(session, "usuario", None),
            )
            start_time = time.time()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                record(
                    success=False,
                    error=str(e),
                    duration_ms=(time.time() - start_time) * 1000,
                )
                raise

            record(
                result_summary=_summarize(result),
                duration_ms=(time.time() - start_time) * 1000,
            )
            return result

        return wrapper

    return decorator
