"""
Receiving divergences (avarias) per supplier.
"""

from datetime import date
from typing import Any

from ..config import get_config
from ..core.sankhya_client import get_sankhya_client
from ..core.security import parse_br_date, sql_int, to_iso_date
from ..core.sessions import ErpSession
from . import queries
from .rows import RecordNotFoundError, as_float, as_int, as_text


def _table() -> str:
    return get_config().divergences["table"]


def _line(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "codavaria": as_int(row.get("CODAVARIA")),
        "nunota": as_int(row.get("NUNOTA")),
        "dtneg": to_iso_date(row.get("DTNEG")),
        "dtnegBR": as_text(row.get("DTNEG")) or None,
        "status": as_text(row.get("STATUS")),
        "sequencia": as_int(row.get("SEQUENCIA")),
        "codprod": as_int(row.get("CODPROD")),
        "descrprod": as_text(row.get("DESCRPROD")),
        "codvol": as_text(row.get("CODVOL")),
        "qtdneg": as_float(row.get("QTDNEG")),
        "vlrunit": as_float(row.get("VLRUNIT")),
        "vlrtot": round(as_float(row.get("VLRTOT")), 2),
        "ocorrencia": as_text(row.get("OCORRENCIA")),
    }


async def summary(
    session: ErpSession,
    *,
    fornecedor: str | None = None,
    status: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
) -> list[dict[str, Any]]:
    """Divergences grouped by supplier.

    Returns:
        ``[{codparc, fornecedor, qtdOcorr, qtdItens, vlrTot, dtnegMax,
        percentual}]`` where percentual is the supplier's share of the total
        divergent value, sorted by value descending.
    """
    sql = queries.divergences(_table(), fornecedor=fornecedor, status=status, ini=ini, fim=fim)
    rows = await get_sankhya_client().execute_query_paged(session.jsessionid, sql)

    groups: dict[int, dict[str, Any]] = {}
    occurrences: dict[int, set[int]] = {}
    latest: dict[int, date] = {}
    for row in rows:
        codparc = as_int(row.get("CODPARC"))
        entry = groups.setdefault(
            codparc,
            {"codparc": codparc, "fornecedor": as_text(row.get("NOMEPARC")),
             "qtdOcorr": 0, "qtdItens": 0, "vlrTot": 0.0, "dtnegMax": None},
        )
        occurrences.setdefault(codparc, set()).add(as_int(row.get("CODAVARIA")))
        entry["qtdItens"] += 1
        entry["vlrTot"] += as_float(row.get("VLRTOT"))

        try:
            dtneg = parse_br_date(row.get("DTNEG"))
        except ValueError:
            dtneg = None
        if dtneg and (codparc not in latest or dtneg > latest[codparc]):
            latest[codparc] = dtneg
            entry["dtnegMax"] = dtneg.isoformat()

    total_value = sum(e["vlrTot"] for e in groups.values())
    for codparc, entry in groups.items():
        entry["qtdOcorr"] = len(occurrences[codparc])
        entry["percentual"] = (
            round(entry["vlrTot"] / total_value * 100, 1) if total_value else 0.0
        )
        entry["vlrTot"] = round(entry["vlrTot"], 2)

    return sorted(groups.values(), key=lambda e: (-e["vlrTot"], e["fornecedor"]))


async def supplier_detail(
    session: ErpSession,
    codparc: int,
    *,
    status: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
) -> dict[str, Any]:
    """Divergence lines of one supplier.

    Raises:
        RecordNotFoundError: Unknown supplier.
    """
    codparc = sql_int(codparc)
    client = get_sankhya_client()
    sql = queries.divergences(_table(), codparc=codparc, status=status, ini=ini, fim=fim)
    rows = await client.execute_query_paged(session.jsessionid, sql)

    if rows:
        nomeparc = as_text(rows[0].get("NOMEPARC"))
    else:
        partners = await client.execute_query(session.jsessionid, queries.partner_name(codparc))
        if not partners:
            raise RecordNotFoundError(f"Fornecedor {codparc} não encontrado")
        nomeparc = as_text(partners[0].get("NOMEPARC"))

    return {
        "fornecedor": {"codparc": codparc, "nomeparc": nomeparc},
        "items": [_line(row) for row in rows],
    }
