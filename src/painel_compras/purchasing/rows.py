"""
Coercion helpers for DbExplorer rows.

DbExplorer returns numbers as JSON numbers or strings depending on the
column type, and NULL as null or "".
"""

from typing import Any


def as_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(str(value).replace(",", ".")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return default


def as_int(value: Any, default: int = 0) -> int:
    return int(as_float(value, default))


def as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class RecordNotFoundError(LookupError):
    """Raised when an order, request or supplier does not exist."""

    pass
