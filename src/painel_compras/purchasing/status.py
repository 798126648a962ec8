"""
Purchase order status vocabulary.

AD_STATUSPED is a custom header field on TGFCAB tracking the import/logistics
stage of a purchase order. The schedule status is derived from DTPREVENT.
"""

from datetime import date
from typing import Any

from ..core.security import parse_br_date

STATUSPED_LABELS: dict[str, str] = {
    "1": "Pedido em aprovação",
    "2": "Em Produção",
    "3": "Aguardando embarque",
    "4": "Em Trânsito",
    "5": "Aguardando Liberação",
    "6": "Desembaraçado",
    "7": "Recebido",
    "8": "Perdimento/Avaria",
    "9": "Cancelado",
}

DEFAULT_STATUSPED = "1"

# Substring hints, checked in order, for free-text status values
_STATUS_HINTS: list[tuple[tuple[str, ...], str]] = [
    (("aprova",), "1"),
    (("produ",), "2"),
    (("embar",), "3"),
    (("trâns", "trans"), "4"),
    (("libera",), "5"),
    (("desemb",), "6"),
    (("receb",), "7"),
    (("avaria", "perdiment"), "8"),
    (("cancel",), "9"),
]

SEM_PREVISAO = "SEM PREVISÃO"
ATRASADO = "ATRASADO"
PLANEJADO = "PLANEJADO"
SCHEDULE_STATUSES = (SEM_PREVISAO, ATRASADO, PLANEJADO)

NO_RELEASE_STATUS = "(Sem status)"


def guess_status_code(value: Any) -> str | None:
    """Map a STATUSPED code or label (any case) to its code.

    Args:
        value: "3", "Aguardando embarque", "em transito", ...

    Returns:
        The code "1".."9", or None if nothing matches.
    """
    text = str(value or "").strip().lower()
    if not text:
        return None

    for code, label in STATUSPED_LABELS.items():
        if text == code or text == label.lower():
            return code

    for hints, code in _STATUS_HINTS:
        if any(h in text for h in hints):
            return code
    return None


def status_label(code: Any) -> str:
    """Label for a STATUSPED code; unknown and empty codes map to code 1."""
    return STATUSPED_LABELS.get(str(code or "").strip(), STATUSPED_LABELS[DEFAULT_STATUSPED])


def normalize_release_status(value: Any) -> str:
    """Release (liberação) status text, with a placeholder for empty values."""
    text = str(value or "").strip()
    return text or NO_RELEASE_STATUS


def schedule_status(dtprevent: Any, today: date | None = None) -> str:
    """Derive the schedule status from the expected delivery date.

    Args:
        dtprevent: DTPREVENT as returned by the ERP (or None).
        today: Reference date (defaults to today).

    Returns:
        SEM PREVISÃO when there is no date, ATRASADO when it is in the past,
        PLANEJADO otherwise.
    """
    try:
        expected = parse_br_date(dtprevent)
    except ValueError:
        expected = None
    if expected is None:
        return SEM_PREVISAO
    if expected < (today or date.today()):
        return ATRASADO
    return PLANEJADO


def normalize_schedule_filter(value: str | None) -> str | None:
    """Accept SEM_PREV / SEM PREVISAO / ATRASADO / PLANEJADO (any case)."""
    text = str(value or "").strip().upper().replace("_", " ")
    if not text or text in ("ALL", "TODOS"):
        return None
    if text.startswith("SEM PREV"):
        return SEM_PREVISAO
    if text in (ATRASADO, PLANEJADO):
        return text
    raise ValueError(f"Status inválido: {value}")
