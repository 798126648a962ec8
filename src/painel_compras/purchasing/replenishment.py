"""
Replenishment risk analysis.

Per product: availability (stock - commitments + pending purchases),
daily consumption, stock coverage in days and the latest date an order
can be placed so the goods arrive before the stock runs out.
"""

import logging
import math
import re
from collections import defaultdict
from datetime import date, timedelta
from typing import Any

from ..config import get_config
from ..core.sankhya_client import get_sankhya_client
from ..core.security import sql_int, to_br_date
from ..core.sessions import ErpSession
from . import queries
from .rows import RecordNotFoundError, as_float, as_int, as_text

logger = logging.getLogger(__name__)

# A name runs until punctuation, a digit or the next keyword
_NAME_END = r"(?=\s+(?:fornecedor|grupo|com|no|na|em)\b|[\d,.;:!?\n]|$)"
_SUPPLIER_RE = re.compile(r"\bfornecedor\s+(.+?)" + _NAME_END, re.IGNORECASE)
_GROUP_RE = re.compile(r"\bgrupo\s+(.+?)" + _NAME_END, re.IGNORECASE)


def item_metrics(
    row: dict[str, Any],
    safety_days: float,
    today: date | None = None,
) -> dict[str, Any]:
    """Compute coverage and purchase suggestion for one product row.

    Args:
        row: Row from :func:`queries.replenishment_base`.
        safety_days: Safety stock expressed in days of consumption.
        today: Reference date.

    Returns:
        The product fields plus disp, consumoDia, coberturaDias,
        dtmelhorped (ISO, with a dd/mm/yyyy dtmelhorpedBR copy), risco and
        sugestaoCompra. Products without consumption
        have no coverage and are never at risk.
    """
    today = today or date.today()
    leadtime = as_float(row.get("LEADTIME"))
    estoque = as_float(row.get("ESTOQUE"))
    empenho = as_float(row.get("EMPENHO"))
    comprapen = as_float(row.get("COMPRAPEN"))
    giromensal = as_float(row.get("GIROMENSAL"))

    disp = estoque - empenho + comprapen
    consumo_dia = giromensal / 30

    cobertura: float | None = None
    best_date: date | None = None
    risco = False
    sugestao = 0
    necessidade = 0
    if consumo_dia > 0:
        cobertura = disp / consumo_dia
        best_date = today + timedelta(days=math.floor(cobertura - leadtime))
        risco = cobertura < leadtime + safety_days
        necessidade = math.ceil(consumo_dia * (leadtime + safety_days))
        sugestao = max(0, math.ceil(consumo_dia * (leadtime + safety_days) - disp))

    return {
        "codparc": as_int(row.get("CODPARC")),
        "fornecedor": as_text(row.get("FORNECEDOR")),
        "codprod": as_int(row.get("CODPROD")),
        "descrprod": as_text(row.get("DESCRPROD")),
        "codvol": as_text(row.get("CODVOL")),
        "codgrupo": as_int(row.get("CODGRUPO")),
        "descrgru": as_text(row.get("DESCRGRU")),
        "leadtime": leadtime,
        "estoque": estoque,
        "empenho": empenho,
        "comprapen": comprapen,
        "giromensal": round(giromensal, 2),
        "disp": disp,
        "consumoDia": round(consumo_dia, 4),
        "coberturaDias": round(cobertura, 1) if cobertura is not None else None,
        "dtmelhorped": best_date.isoformat() if best_date else None,
        "dtmelhorpedBR": to_br_date(best_date) or None,
        "_dtmelhorped": best_date,
        "risco": risco,
        "necessidade": necessidade,
        "sugestaoCompra": sugestao,
        "preco": as_float(row.get("PRECO")) or None,
    }


def _public(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if not k.startswith("_")}


def is_critical(item: dict[str, Any], dias: int, today: date | None = None) -> bool:
    """True when the best order date is at least ``dias`` days in the past."""
    best_date = item.get("_dtmelhorped")
    if best_date is None:
        return False
    return best_date <= (today or date.today()) - timedelta(days=dias)


async def _load(
    session: ErpSession,
    safety_days: float,
    today: date | None,
    codparc: int | None = None,
    fornecedor: str | None = None,
    grupo: str | None = None,
) -> list[dict[str, Any]]:
    window = int(get_config().replenishment["consumption_window_days"])
    sql = queries.replenishment_base(window, codparc, fornecedor, grupo)
    rows = await get_sankhya_client().execute_query_paged(session.jsessionid, sql)
    return [item_metrics(row, safety_days, today) for row in rows]


def _settings_int(value: int | None, key: str, low: int, high: int) -> int:
    if value is None:
        value = int(get_config().replenishment[key])
    value = sql_int(value)
    if value < low or value > high:
        raise ValueError(f"{key} deve estar entre {low} e {high}")
    return value


async def critical_suppliers(
    session: ErpSession,
    *,
    dias: int | None = None,
    fornecedor: str | None = None,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Suppliers with products whose best order date has passed.

    Args:
        dias: How many days late the best order date must be
            (default replenishment.late_days).
        fornecedor: Supplier name fragment.

    Returns:
        ``[{codparc, fornecedor, qtdprod, leadtime, percentual}]`` sorted by
        the number of critical products, descending.
    """
    dias = _settings_int(dias, "late_days", 0, 365)
    safety = int(get_config().replenishment["safety_days"])
    today = today or date.today()
    items = await _load(session, safety, today, fornecedor=fornecedor)

    suppliers: dict[int, dict[str, Any]] = {}
    for item in items:
        entry = suppliers.setdefault(
            item["codparc"],
            {"codparc": item["codparc"], "fornecedor": item["fornecedor"],
             "total": 0, "qtdprod": 0, "leadtime": 0.0},
        )
        entry["total"] += 1
        if is_critical(item, dias, today):
            entry["qtdprod"] += 1
            entry["leadtime"] = max(entry["leadtime"], item["leadtime"])

    result = []
    for entry in suppliers.values():
        if not entry["qtdprod"]:
            continue
        total = entry.pop("total")
        entry["percentual"] = round(entry["qtdprod"] / total * 100, 1)
        result.append(entry)

    result.sort(key=lambda e: (-e["qtdprod"], e["fornecedor"]))
    return result


async def supplier_items(
    session: ErpSession,
    codparc: int,
    *,
    dias: int | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Critical products of one supplier with purchase suggestions.

    Raises:
        RecordNotFoundError: Unknown supplier.
    """
    codparc = sql_int(codparc)
    dias = _settings_int(dias, "late_days", 0, 365)
    safety = int(get_config().replenishment["safety_days"])
    today = today or date.today()
    items = await _load(session, safety, today, codparc=codparc)

    if items:
        nomeparc = items[0]["fornecedor"]
    else:
        rows = await get_sankhya_client().execute_query(
            session.jsessionid, queries.partner_name(codparc)
        )
        if not rows:
            raise RecordNotFoundError(f"Fornecedor {codparc} não encontrado")
        nomeparc = as_text(rows[0].get("NOMEPARC"))

    critical = [
        {
            "codprod": i["codprod"],
            "descrprod": i["descrprod"],
            "codvol": i["codvol"],
            "leadtime": i["leadtime"],
            "estoque": i["estoque"],
            "empenho": i["empenho"],
            "comprapen": i["comprapen"],
            "necessidade": i["necessidade"],
            "giromensal": i["giromensal"],
            "dtmelhorped": i["dtmelhorped"],
            "dtmelhorpedBR": i["dtmelhorpedBR"],
            "sugestaoQtd": i["sugestaoCompra"],
            "preco": i["preco"],
        }
        for i in sorted(items, key=lambda i: i["_dtmelhorped"] or today)
        if is_critical(i, dias, today)
    ]
    return {"fornecedor": {"codparc": codparc, "nomeparc": nomeparc}, "items": critical}


async def analyze_risk(
    session: ErpSession,
    *,
    safety_days: int | None = None,
    top: int | None = None,
    fornecedor: str | None = None,
    grupo: str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Rank products at risk of stock-out.

    Returns:
        ``{"risco": [...], "porFornecedor": [...], "porGrupo": [...],
        "totalRisco": n}``; ``risco`` holds the ``top`` items with the
        lowest coverage, the aggregates cover every item at risk.
    """
    safety_days = _settings_int(safety_days, "safety_days", 0, 365)
    top = _settings_int(top, "top", 1, 500)
    items = await _load(session, safety_days, today, fornecedor=fornecedor, grupo=grupo)

    at_risk = sorted(
        (i for i in items if i["risco"]),
        key=lambda i: (i["coberturaDias"], -i["sugestaoCompra"]),
    )

    by_supplier: dict[int, dict[str, Any]] = defaultdict(
        lambda: {"codparc": 0, "fornecedor": "", "itens": 0, "sugestaoTotal": 0, "dispTotal": 0.0}
    )
    by_group: dict[int, dict[str, Any]] = defaultdict(
        lambda: {"codgrupo": 0, "grupo": "", "itens": 0, "sugestaoTotal": 0, "dispTotal": 0.0}
    )
    for item in at_risk:
        supplier = by_supplier[item["codparc"]]
        supplier.update(codparc=item["codparc"], fornecedor=item["fornecedor"])
        supplier["itens"] += 1
        supplier["sugestaoTotal"] += item["sugestaoCompra"]
        supplier["dispTotal"] += item["disp"]

        group = by_group[item["codgrupo"]]
        group.update(codgrupo=item["codgrupo"], grupo=item["descrgru"])
        group["itens"] += 1
        group["sugestaoTotal"] += item["sugestaoCompra"]
        group["dispTotal"] += item["disp"]

    return {
        "risco": [_public(i) for i in at_risk[:top]],
        "porFornecedor": sorted(by_supplier.values(), key=lambda s: -s["itens"]),
        "porGrupo": sorted(by_group.values(), key=lambda g: -g["itens"]),
        "totalRisco": len(at_risk),
        "safetyDays": safety_days,
    }


def extract_filters(message: str) -> tuple[str | None, str | None]:
    """Pull "fornecedor X" and "grupo Y" out of a chat message."""
    supplier = _SUPPLIER_RE.search(message or "")
    group = _GROUP_RE.search(message or "")
    return (
        supplier.group(1).strip() if supplier else None,
        group.group(1).strip() if group else None,
    )


def _fmt(value: float) -> str:
    return f"{value:.0f}" if value == int(value) else f"{value:.1f}"


def compose_reply(
    analysis: dict[str, Any],
    fornecedor: str | None = None,
    grupo: str | None = None,
) -> str:
    """Portuguese summary of :func:`analyze_risk` output."""
    scope = ""
    if fornecedor:
        scope += f" do fornecedor {fornecedor}"
    if grupo:
        scope += f" no grupo {grupo}"

    total = analysis["totalRisco"]
    if not total:
        return (
            f"Nenhum item{scope} com risco de ruptura considerando "
            f"{analysis['safetyDays']} dias de estoque de segurança."
        )

    lines = [
        f"Encontrei {total} item(ns){scope} com risco de ruptura "
        f"(estoque de segurança de {analysis['safetyDays']} dias)."
    ]
    lines.append("Mais críticos:")
    for item in analysis["risco"][:5]:
        lines.append(
            f"- {item['descrprod']} ({item['codprod']}): cobertura de "
            f"{_fmt(item['coberturaDias'])} dias, lead time {_fmt(item['leadtime'])} dias, "
            f"comprar {item['sugestaoCompra']} {item['codvol']}."
        )

    suppliers = analysis["porFornecedor"][:3]
    if suppliers:
        lines.append(
            "Fornecedores mais afetados: "
            + ", ".join(f"{s['fornecedor']} ({s['itens']})" for s in suppliers)
            + "."
        )
    return "\n".join(lines)


async def chat(
    session: ErpSession,
    *,
    message: str,
    safety_days: int | None = None,
    top: int | None = None,
    fornecedor: str | None = None,
    grupo: str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Answer a buyer's question about replenishment risk.

    Supplier and group filters are taken from the message when not given.

    Returns:
        ``{"reply": str, "analysis": {...}}``
    """
    if not message or not message.strip():
        raise ValueError("Mensagem vazia")

    found_supplier, found_group = extract_filters(message)
    fornecedor = fornecedor or found_supplier
    grupo = grupo or found_group
    logger.info(f"Chat analysis: fornecedor={fornecedor!r} grupo={grupo!r}")

    analysis = await analyze_risk(
        session,
        safety_days=safety_days,
        top=top,
        fornecedor=fornecedor,
        grupo=grupo,
        today=today,
    )
    return {"reply": compose_reply(analysis, fornecedor, grupo), "analysis": analysis}
