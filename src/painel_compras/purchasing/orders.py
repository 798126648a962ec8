"""
Purchase order operations.

Reads go through DbExplorerSP.executeQuery; writes go through
DatasetSP.save (CabecalhoNota / ItemNota) and CACSP.incluirNota. All
functions take the caller's ErpSession so the ERP records the real user.
"""

import logging
from datetime import date
from typing import Any

from ..config import get_config
from ..core.audit import audit_call
from ..core.sankhya_client import SankhyaServiceError, get_sankhya_client, wrap
from ..core.security import (
    parse_br_date,
    sanitize_identifier,
    sql_int,
    to_br_date,
    to_iso_date,
)
from ..core.sessions import ErpSession
from . import queries
from .rows import RecordNotFoundError, as_float, as_int, as_text
from .status import (
    DEFAULT_STATUSPED,
    SCHEDULE_STATUSES,
    STATUSPED_LABELS,
    guess_status_code,
    normalize_release_status,
    normalize_schedule_filter,
    schedule_status,
    status_label,
)

logger = logging.getLogger(__name__)

HEADER_ENTITY = "CabecalhoNota"
ITEM_ENTITY = "ItemNota"


# === Reads ===

def _order_item(row: dict[str, Any], today: date | None = None) -> dict[str, Any]:
    code = as_text(row.get("AD_STATUSPED")) or DEFAULT_STATUSPED
    return {
        "nunota": as_int(row.get("NUNOTA")),
        "codparc": as_int(row.get("CODPARC")),
        "fornecedor": as_text(row.get("NOMEPARC")),
        "vlrpedi": round(as_float(row.get("VLRPEDI")), 2),
        "dtneg": to_iso_date(row.get("DTNEG")),
        "dtnegBR": as_text(row.get("DTNEG")) or None,
        "vlrnota": round(as_float(row.get("VLRNOTA")), 2),
        "dtprevent": to_iso_date(row.get("DTPREVENT")),
        "dtpreventBR": as_text(row.get("DTPREVENT")) or None,
        "status": schedule_status(row.get("DTPREVENT"), today),
        "statusped": status_label(code),
        "statuspedCode": code if code in STATUSPED_LABELS else DEFAULT_STATUSPED,
        "statuslib": normalize_release_status(row.get("STATUSLIB")),
        "obsreprovado": as_text(row.get("OBSREPROVADO")) or None,
    }


def summarize_orders(items: list[dict[str, Any]]) -> dict[str, Any]:
    """Totals of an order list by schedule status and by STATUSPED code."""
    by_status = {s: 0 for s in SCHEDULE_STATUSES}
    by_statusped = {code: 0 for code in STATUSPED_LABELS}
    for item in items:
        by_status[item["status"]] = by_status.get(item["status"], 0) + 1
        by_statusped[item["statuspedCode"]] = by_statusped.get(item["statuspedCode"], 0) + 1

    return {
        "quantidade": len(items),
        "vlrpedi": round(sum(i["vlrpedi"] for i in items), 2),
        "porStatus": by_status,
        "porStatusped": by_statusped,
    }


async def list_orders(
    session: ErpSession,
    *,
    fornecedor: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
    status: str | None = None,
    statusped: str | None = None,
    statuslib: str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """List the buyer's pending purchase orders.

    Args:
        session: Caller's ERP session (CODVEND restricts the suppliers).
        fornecedor: Supplier name fragment.
        ini: Negotiation date from (dd/mm/yyyy).
        fim: Negotiation date to (dd/mm/yyyy).
        status: Schedule status (SEM PREVISÃO, ATRASADO, PLANEJADO).
        statusped: STATUSPED code or label.
        statuslib: Release status text (exact, case-insensitive).
        today: Reference date for the schedule status.

    Returns:
        ``{"items": [...], "totais": {...}}``; totals cover the filtered items.

    Raises:
        ValueError: Invalid date or status filter.
    """
    schedule_filter = normalize_schedule_filter(status)
    statusped_filter = None
    if statusped and statusped.strip():
        statusped_filter = guess_status_code(statusped)
        if statusped_filter is None:
            raise ValueError(f"Status de pedido inválido: {statusped}")

    sql = queries.open_orders(session.codvend, fornecedor, ini, fim)
    rows = await get_sankhya_client().execute_query(session.jsessionid, sql)
    items = [_order_item(row, today) for row in rows]

    if schedule_filter:
        items = [i for i in items if i["status"] == schedule_filter]
    if statusped_filter:
        items = [i for i in items if i["statuspedCode"] == statusped_filter]
    if statuslib and statuslib.strip():
        wanted = statuslib.strip().upper()
        items = [i for i in items if i["statuslib"].upper() == wanted]

    return {"items": items, "totais": summarize_orders(items)}


async def get_order(session: ErpSession, nunota: int) -> dict[str, Any]:
    """Header and pending items of one purchase order.

    Raises:
        RecordNotFoundError: No purchase order with that NUNOTA.
    """
    client = get_sankhya_client()
    nunota = sql_int(nunota)
    headers = await client.execute_query(session.jsessionid, queries.order_header(nunota))
    if not headers:
        raise RecordNotFoundError(f"Pedido {nunota} não encontrado")

    row = headers[0]
    code = as_text(row.get("AD_STATUSPED")) or DEFAULT_STATUSPED
    header = {
        "nunota": as_int(row.get("NUNOTA")),
        "codparc": as_int(row.get("CODPARC")),
        "fornecedor": as_text(row.get("NOMEPARC")),
        "dtneg": to_iso_date(row.get("DTNEG")),
        "dtnegBR": as_text(row.get("DTNEG")) or None,
        "dtprevent": to_iso_date(row.get("DTPREVENT")),
        "dtpreventBR": as_text(row.get("DTPREVENT")) or None,
        "vlrnota": round(as_float(row.get("VLRNOTA")), 2),
        "statusped": status_label(code),
        "statuspedCode": code,
        "obsstatus": as_text(row.get("AD_OBSSTATUS")) or None,
        "observacao": as_text(row.get("OBSERVACAO")) or None,
        "ad_invoice": as_text(row.get("AD_INVOICE")) or None,
        "ad_proforma": as_text(row.get("AD_PROFORMA")) or None,
    }

    item_rows = await client.execute_query(session.jsessionid, queries.order_items(nunota))
    items = [
        {
            "nunota": as_int(r.get("NUNOTA")),
            "sequencia": as_int(r.get("SEQUENCIA")),
            "codprod": as_int(r.get("CODPROD")),
            "descrprod": as_text(r.get("DESCRPROD")),
            "codvol": as_text(r.get("CODVOL")),
            "qtd": as_float(r.get("QTD")),
            "vlrunit": as_float(r.get("VLRUNIT")),
            "vlrpedi": round(as_float(r.get("VLRPEDI")), 2),
        }
        for r in item_rows
    ]
    return {"header": header, "items": items}


async def status_summary(session: ErpSession) -> dict[str, Any]:
    """Pending order count per STATUSPED code (all nine codes listed)."""
    rows = await get_sankhya_client().execute_query(
        session.jsessionid, queries.order_status_counts(session.codvend)
    )
    counts = {code: 0 for code in STATUSPED_LABELS}
    for row in rows:
        code = guess_status_code(row.get("AD_STATUSPED")) or DEFAULT_STATUSPED
        counts[code] += as_int(row.get("QTD"))

    return {
        "total": sum(counts.values()),
        "status": [
            {"code": code, "label": STATUSPED_LABELS[code], "qtd": qtd}
            for code, qtd in counts.items()
        ],
    }


async def monthly_orders(session: ErpSession, months: int = 6) -> list[dict[str, Any]]:
    """Orders negotiated per month (yyyy-mm), oldest first."""
    if months < 1 or months > 36:
        raise ValueError("months deve estar entre 1 e 36")
    rows = await get_sankhya_client().execute_query(
        session.jsessionid, queries.monthly_orders(months, session.codvend)
    )
    return [
        {
            "mes": as_text(r.get("MES")),
            "pedidos": as_int(r.get("PEDIDOS")),
            "valor": round(as_float(r.get("VALOR")), 2),
        }
        for r in rows
    ]


# === Dataset writes ===

async def _save(
    session: ErpSession,
    entity: str,
    pk: dict[str, Any],
    values: dict[str, Any],
) -> dict[str, Any]:
    """DatasetSP.save with named values, converted to index keys."""
    fields = list(values)
    indexed = {str(i): values[name] for i, name in enumerate(fields)}
    return await get_sankhya_client().dataset_save(
        session.jsessionid, entity, fields, pk, indexed
    )


def _required_date(value: Any) -> date:
    parsed = parse_br_date(value)
    if parsed is None:
        raise ValueError("Data obrigatória")
    return parsed


@audit_call("dataset.save")
async def save_record(
    session: ErpSession,
    *,
    entity: str,
    fields: list[str],
    pk: dict[str, Any],
    values: dict[str, Any],
) -> dict[str, Any]:
    """Generic DatasetSP.save restricted to the configured entities.

    ``values`` may be keyed by field index ("0", "1", ...) or by field name.

    An ERP rejection (status 0) is returned like in :func:`include_order`.

    Returns:
        ``{"STATUS", "RETORNO"}``, plus ``StatusMessage`` on rejection.

    Raises:
        PermissionError: Entity not in the allowlist.
        ValueError: Bad field names, empty pk or unknown value keys.
    """
    if not get_config().is_entity_allowed(entity):
        raise PermissionError(f"Entidade não permitida: {entity}")
    if not fields or not pk:
        raise ValueError("fields e pk são obrigatórios")
    fields = [sanitize_identifier(f) for f in fields]
    for key in pk:
        sanitize_identifier(key)

    indexed: dict[str, Any] = {}
    for key, value in values.items():
        key = str(key)
        if key.isdigit() and int(key) < len(fields):
            indexed[key] = value
        elif key in fields:
            indexed[str(fields.index(key))] = value
        else:
            raise ValueError(f"Valor sem campo correspondente: {key}")

    try:
        response = await get_sankhya_client().dataset_save(
            session.jsessionid, entity, fields, pk, indexed
        )
    except SankhyaServiceError as e:
        if e.service_status is None:
            raise
        logger.warning(f"DatasetSP.save on {entity} rejected: {e}")
        return {"STATUS": e.service_status, "StatusMessage": str(e), "RETORNO": e.raw_response}
    return {"STATUS": str(response.get("status", "1")), "RETORNO": response}


@audit_call("orders.update_forecast")
async def update_forecast(session: ErpSession, *, nunota: int, data: str) -> dict[str, Any]:
    """Set the expected delivery date (DTPREVENT).

    Returns:
        ``{"nunota", "dataBR", "dataISO"}``
    """
    expected = _required_date(data)
    nunota = sql_int(nunota)
    await _save(session, HEADER_ENTITY, {"NUNOTA": nunota}, {"DTPREVENT": to_br_date(expected)})
    logger.info(f"Order {nunota}: DTPREVENT set to {expected.isoformat()}")
    return {"nunota": nunota, "dataBR": to_br_date(expected), "dataISO": expected.isoformat()}


def _status_code(statusped: Any) -> str:
    code = guess_status_code(statusped)
    if code is None:
        raise ValueError(f"Status de pedido inválido: {statusped}")
    return code


@audit_call("orders.update_status")
async def update_status(
    session: ErpSession,
    *,
    nunota: int,
    statusped: str,
    dtprevent: str | None = None,
    observacao: str | None = None,
) -> dict[str, Any]:
    """Change AD_STATUSPED, optionally with DTPREVENT and OBSERVACAO."""
    code = _status_code(statusped)
    values: dict[str, Any] = {"AD_STATUSPED": code}
    if dtprevent:
        values["DTPREVENT"] = to_br_date(_required_date(dtprevent))
    if observacao is not None:
        values["OBSERVACAO"] = observacao.strip().upper()

    nunota = sql_int(nunota)
    await _save(session, HEADER_ENTITY, {"NUNOTA": nunota}, values)
    return {"nunota": nunota, "statuspedCode": code, "statusped": STATUSPED_LABELS[code]}


@audit_call("orders.follow_up")
async def follow_up(
    session: ErpSession,
    *,
    nunota: int,
    statusped: str,
    obs: str | None = None,
    dtprevent: str | None = None,
) -> dict[str, Any]:
    """Record a follow-up: AD_STATUSPED, AD_OBSSTATUS and DTPREVENT."""
    code = _status_code(statusped)
    values: dict[str, Any] = {"AD_STATUSPED": code, "AD_OBSSTATUS": (obs or "").strip()}
    if dtprevent:
        values["DTPREVENT"] = to_br_date(_required_date(dtprevent))

    nunota = sql_int(nunota)
    await _save(session, HEADER_ENTITY, {"NUNOTA": nunota}, values)
    return {"nunota": nunota, "statuspedCode": code, "statusped": STATUSPED_LABELS[code]}


@audit_call("orders.update_header")
async def update_header(
    session: ErpSession,
    *,
    nunota: int,
    observacao: str | None = None,
    ad_invoice: str | None = None,
    ad_proforma: str | None = None,
) -> dict[str, Any]:
    """Edit OBSERVACAO / AD_INVOICE / AD_PROFORMA; None fields are left alone."""
    values: dict[str, Any] = {}
    if observacao is not None:
        values["OBSERVACAO"] = observacao.strip().upper()
    if ad_invoice is not None:
        values["AD_INVOICE"] = ad_invoice.strip()
    if ad_proforma is not None:
        values["AD_PROFORMA"] = ad_proforma.strip()
    if not values:
        raise ValueError("Nenhum campo para atualizar")

    nunota = sql_int(nunota)
    await _save(session, HEADER_ENTITY, {"NUNOTA": nunota}, values)
    return {"nunota": nunota, "campos": list(values)}


@audit_call("orders.cancel")
async def cancel_order(session: ErpSession, *, nunota: int) -> dict[str, Any]:
    """Close the order for receiving (PENDENTE = 'N')."""
    nunota = sql_int(nunota)
    await _save(session, HEADER_ENTITY, {"NUNOTA": nunota}, {"PENDENTE": "N"})
    logger.info(f"Order {nunota} cancelled by {session.usuario}")
    return {"nunota": nunota, "pendente": "N"}


@audit_call("orders.update_items")
async def update_items(
    session: ErpSession,
    *,
    nunota: int,
    itens: list[dict[str, Any]],
) -> dict[str, Any]:
    """Edit QTDNEG / VLRUNIT of order items, one DatasetSP.save per item.

    A failing item does not stop the others; an expired ERP session does.

    Args:
        itens: ``[{"sequencia": 1, "qtdneg": 10, "vlrunit": 2.5}, ...]``

    Returns:
        ``{"nunota", "ok": [sequencias], "falhas": [{"sequencia", "erro"}]}``
    """
    if not itens:
        raise ValueError("Nenhum item informado")
    nunota = sql_int(nunota)

    edits: list[tuple[int, dict[str, Any]]] = []
    for item in itens:
        sequencia = sql_int(item.get("sequencia"))
        values: dict[str, Any] = {}
        if item.get("qtdneg") is not None:
            qtd = as_float(item["qtdneg"], -1)
            if qtd <= 0:
                raise ValueError(f"Quantidade inválida na sequência {sequencia}")
            values["QTDNEG"] = qtd
        if item.get("vlrunit") is not None:
            price = as_float(item["vlrunit"], -1)
            if price < 0:
                raise ValueError(f"Preço inválido na sequência {sequencia}")
            values["VLRUNIT"] = price
        if not values:
            raise ValueError(f"Nada para alterar na sequência {sequencia}")
        edits.append((sequencia, values))

    ok: list[int] = []
    failures: list[dict[str, Any]] = []
    for sequencia, values in edits:
        try:
            await _save(
                session, ITEM_ENTITY, {"NUNOTA": nunota, "SEQUENCIA": sequencia}, values
            )
            ok.append(sequencia)
        except SankhyaServiceError as e:
            logger.warning(f"Order {nunota} item {sequencia} not saved: {e}")
            failures.append({"sequencia": sequencia, "erro": str(e)})

    return {"nunota": nunota, "ok": ok, "falhas": failures}


# === Order creation ===

def _wrap_record(record: dict[str, Any]) -> dict[str, Any]:
    return {k: v if isinstance(v, dict) and "$" in v else wrap(v) for k, v in record.items()}


def build_order_header(
    session: ErpSession,
    codparc: int,
    codtipoper: str | None = None,
    observacao: str | None = None,
    requisicao: str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """CACSP.incluirNota header for a new purchase order.

    Raises:
        ValueError: TOP not in the allowed list.
    """
    settings = get_config().orders
    top = str(codtipoper or settings["default_top"])
    if top not in [str(t) for t in settings["allowed_tops"]]:
        raise ValueError(f"TOP não permitida: {top}")

    header = {
        "NUNOTA": "",
        "CODEMP": settings["codemp"],
        "CODEMPNEGOC": settings["codempnegoc"],
        "CODCENCUS": settings["codcencus"],
        "SERIENOTA": settings["serienota"],
        "CODNAT": settings["codnat"],
        "CODTIPOPER": top,
        "CODPARC": sql_int(codparc),
        "DTNEG": to_br_date(today or date.today()),
        "CODTIPVENDA": settings["codtipvenda"],
        "CODVEND": session.codvend or 0,
        "TIPMOV": "O",
        "OBSERVACAO": (observacao or "").strip().upper(),
        "CODUSU": session.codusu or 0,
    }
    if requisicao:
        header["AD_NUM_REQUISICAO"] = str(requisicao).strip()
    return {k: wrap(v) for k, v in header.items()}


def build_order_item(codprod: int, qtd: float, codvol: str, price: float) -> dict[str, Any]:
    settings = get_config().orders
    return {
        "NUNOTA": wrap(""),
        "CODPROD": wrap(codprod),
        "CONTROLE": wrap(" "),
        "QTDNEG": wrap(qtd),
        "CODLOCALORIG": wrap(settings["codlocalorig"]),
        "VLRUNIT": wrap(price),
        "CODVOL": wrap(codvol),
        "VLRDESC": wrap(0),
        "PERCDESC": wrap(0),
    }


@audit_call("orders.generate")
async def generate_order(
    session: ErpSession,
    *,
    codparc: int,
    itens: list[dict[str, Any]],
    codtipoper: str | None = None,
    observacao: str | None = None,
    requisicao: str | None = None,
) -> dict[str, Any]:
    """Create a purchase order for one supplier.

    Units come from TGFPRO and prices from the last purchase from the same
    supplier, falling back to 1 when the product was never bought there.

    Args:
        codparc: Supplier.
        itens: ``[{"codprod": 10, "qtd": 5}, ...]``

    Returns:
        ``{"nunota": <new NUNOTA>}``
    """
    codparc = sql_int(codparc)
    if not itens:
        raise ValueError("Nenhum item informado")

    lines: list[tuple[int, float]] = []
    for item in itens:
        codprod = sql_int(item.get("codprod"))
        qtd = as_float(item.get("qtd"), 0)
        if qtd <= 0:
            raise ValueError(f"Quantidade inválida para o produto {codprod}")
        lines.append((codprod, qtd))

    client = get_sankhya_client()
    rows = await client.execute_query(
        session.jsessionid, queries.products_for_order(codparc, [c for c, _ in lines])
    )
    products = {as_int(r.get("CODPROD")): r for r in rows}
    missing = [c for c, _ in lines if c not in products]
    if missing:
        raise RecordNotFoundError(f"Produtos não encontrados: {missing}")

    item_records = []
    for codprod, qtd in lines:
        product = products[codprod]
        price = as_float(product.get("PRECO")) or 1.0
        item_records.append(build_order_item(codprod, qtd, as_text(product.get("CODVOL")), price))

    header = build_order_header(session, codparc, codtipoper, observacao, requisicao)
    response = await client.include_note(
        session.jsessionid, header, item_records, informar_preco=True
    )
    nunota = client.extract_nunota(response)
    if nunota is None:
        raise SankhyaServiceError("CACSP.incluirNota: NUNOTA não retornado", raw_response=response)

    logger.info(f"Order {nunota} generated for supplier {codparc} ({len(item_records)} items)")
    return {"nunota": nunota}


@audit_call("orders.include")
async def include_order(
    session: ErpSession,
    *,
    cabecalho: dict[str, Any],
    items: list[dict[str, Any]],
    informar_preco: bool = False,
) -> dict[str, Any]:
    """Raw CACSP.incluirNota passthrough.

    Plain values are wrapped as ``{"$": value}``. An ERP rejection (status
    0) is returned rather than raised so the caller can show StatusMessage.

    Returns:
        ``{"STATUS", "StatusMessage", "RETORNO"}``
    """
    if not cabecalho or not items:
        raise ValueError("cabecalho e items são obrigatórios")

    client = get_sankhya_client()
    try:
        response = await client.include_note(
            session.jsessionid,
            _wrap_record(cabecalho),
            [_wrap_record(i) for i in items],
            informar_preco=informar_preco,
        )
    except SankhyaServiceError as e:
        if e.service_status is None:
            raise
        return {"STATUS": e.service_status, "StatusMessage": str(e), "RETORNO": e.raw_response}

    messages = client.extract_service_errors(response)
    return {
        "STATUS": str(response.get("status", "1")),
        "StatusMessage": messages[0] if messages else "",
        "RETORNO": response,
    }


async def print_order(session: ErpSession, nunota: int) -> bytes:
    """Render the purchase order report as PDF.

    Raises:
        ValueError: No report configured (orders.report_id).
    """
    report_id = int(get_config().orders.get("report_id") or 0)
    if not report_id:
        raise ValueError("Relatório de pedido não configurado")
    return await get_sankhya_client().print_report(session.jsessionid, report_id, sql_int(nunota))
