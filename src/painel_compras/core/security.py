"""
Security utilities for Painel de Compras.

Provides query validation, SQL literal escaping, date parsing for the
dd/mm/yyyy convention used by the ERP, and login throttling.
"""

import re
import threading
import time
from datetime import date, datetime
from typing import Any, ClassVar


class QueryValidationError(Exception):
    """Raised when a query fails validation."""

    pass


class QueryValidator:
    """Validates SQL queries sent through the ad-hoc query endpoint."""

    # Patterns that indicate potentially dangerous operations (Oracle flavour)
    DANGEROUS_PATTERNS: ClassVar[list[str]] = [
        r"\bDROP\b",
        r"\bTRUNCATE\b",
        r"\bDELETE\b",
        r"\bINSERT\b",
        r"\bUPDATE\b",
        r"\bMERGE\b",
        r"\bALTER\b",
        r"\bCREATE\b",
        r"\bGRANT\b",
        r"\bREVOKE\b",
        r"\bEXECUTE\s+IMMEDIATE\b",
        r"\bBEGIN\b",
        r"\bDECLARE\b",
        r"\bCALL\b",
        r"\bDBMS_",
        r"\bUTL_",
        r"--",
        r"/\*",
        r";\s*\w",
    ]

    READONLY_PATTERNS: ClassVar[list[str]] = [
        r"^\s*SELECT\b",
        r"^\s*WITH\b",
    ]

    def __init__(self, readonly: bool = True):
        """Initialize the query validator.

        Args:
            readonly: If True, only SELECT/WITH queries are allowed.
        """
        self.readonly = readonly
        self._dangerous_re = [re.compile(p, re.IGNORECASE) for p in self.DANGEROUS_PATTERNS]
        self._readonly_re = [re.compile(p, re.IGNORECASE) for p in self.READONLY_PATTERNS]

    def validate(self, sql: str) -> tuple[bool, str]:
        """Validate a SQL query.

        String literals are blanked before pattern matching so that a
        supplier called "UPDATE NAUTICA" does not trip the filter.

        Args:
            sql: SQL query to validate.

        Returns:
            Tuple of (is_valid, error_message).
        """
        if not sql or not sql.strip():
            return False, "Query cannot be empty"

        code = _blank_literals(sql.strip())

        for pattern in self._dangerous_re:
            if pattern.search(code):
                match = pattern.pattern.replace(r"\b", "").replace(r"\s+", " ").replace("\\", "")
                return False, f"Query contains disallowed pattern: {match}"

        if self.readonly and not any(p.match(code) for p in self._readonly_re):
            return False, "Only SELECT queries are allowed in read-only mode"

        return True, ""

    def validate_or_raise(self, sql: str) -> None:
        """Validate a SQL query, raising an exception if invalid.

        Raises:
            QueryValidationError: If query fails validation.
        """
        is_valid, error = self.validate(sql)
        if not is_valid:
            raise QueryValidationError(error)


def _blank_literals(sql: str) -> str:
    """Replace the content of '...' literals with spaces."""
    return re.sub(r"'(?:[^']|'')*'", lambda m: "'" + " " * (len(m.group(0)) - 2) + "'", sql)


def sql_literal(value: Any) -> str:
    """Render a value as a quoted SQL string literal.

    Args:
        value: Any value; None becomes NULL.

    Returns:
        Literal with embedded quotes doubled.
    """
    if value is None:
        return "NULL"
    return "'" + str(value).replace("'", "''") + "'"


def sql_like(value: str) -> str:
    """Upper-cased ``'%value%'`` literal for LIKE filters."""
    return sql_literal(f"%{str(value).strip().upper()}%")


def sql_int(value: Any) -> int:
    """Coerce to int for interpolation, raising ValueError on garbage."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid number: {value!r}")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid number: {value!r}") from e


def sanitize_identifier(identifier: str) -> str:
    """Sanitize an entity or field name.

    Args:
        identifier: The identifier to sanitize.

    Returns:
        The identifier unchanged.

    Raises:
        ValueError: If identifier contains invalid characters.
    """
    if not identifier:
        raise ValueError("Identifier cannot be empty")

    if not re.match(r"^[A-Za-z_][\w]*$", identifier):
        raise ValueError(f"Invalid identifier: {identifier}")

    return identifier


# === Dates ===

def parse_br_date(value: str | date | None) -> date | None:
    """Parse a dd/mm/yyyy or yyyy-mm-dd string.

    Args:
        value: Text, date or None.

    Returns:
        The date, or None for empty input.

    Raises:
        ValueError: If the text is not a valid date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    for fmt in ("%d/%m/%Y", "%Y-%m-%d", "%d%m%Y %H:%M:%S", "%d%m%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    # ISO timestamps ("2025-09-05T00:00:00", "2025-09-05 00:00:00.0")
    try:
        return datetime.fromisoformat(text[:19]).date()
    except ValueError:
        raise ValueError(f"Data inválida: {text}") from None


def to_br_date(value: date | None) -> str:
    """Format a date as dd/mm/yyyy (empty string for None)."""
    return value.strftime("%d/%m/%Y") if value else ""


def to_iso_date(value: Any) -> str | None:
    """Normalize an ERP date value to yyyy-mm-dd (None when empty/invalid)."""
    try:
        parsed = parse_br_date(value)
    except ValueError:
        return None
    return parsed.isoformat() if parsed else None


# === Throttling ===

class RateLimiter:
    """Thread-safe sliding window rate limiter.

    Tracks attempts per identifier (user name, IP) and limits the number
    of attempts within a configurable time window.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: int = 300,
        enforce: bool = True,
    ):
        """Initialize rate limiter.

        Args:
            max_requests: Maximum attempts per window.
            window_seconds: Time window in seconds.
            enforce: If False, every attempt is allowed.
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.enforce = enforce
        self._requests: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def _cleanup_old_requests(self, identifier: str, now: float) -> None:
        cutoff = now - self.window_seconds
        if identifier in self._requests:
            self._requests[identifier] = [
                ts for ts in self._requests[identifier] if ts > cutoff
            ]
            if not self._requests[identifier]:
                del self._requests[identifier]

    def record_request(self, identifier: str) -> bool:
        """Record an attempt and return whether it was allowed.

        Args:
            identifier: Unique identifier.

        Returns:
            False if the limit is exceeded. Always True if enforce=False.
        """
        if not self.enforce:
            return True

        now = time.time()
        with self._lock:
            self._cleanup_old_requests(identifier, now)
            attempts = self._requests.setdefault(identifier, [])
            if len(attempts) >= self.max_requests:
                return False
            attempts.append(now)
            return True

    def get_reset_time(self, identifier: str) -> float:
        """Seconds until the oldest attempt leaves the window (0.0 if none)."""
        now = time.time()
        with self._lock:
            self._cleanup_old_requests(identifier, now)
            attempts = self._requests.get(identifier, [])
            if not attempts:
                return 0.0
            return max(0.0, (min(attempts) + self.window_seconds) - now)

    def clear(self, identifier: str | None = None) -> None:
        """Clear history for one identifier, or for all when None."""
        with self._lock:
            if identifier is None:
                self._requests.clear()
            else:
                self._requests.pop(identifier, None)
