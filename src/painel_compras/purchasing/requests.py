"""
Purchase requests (solicitações de compra, TIPMOV 'J') and quotations.
"""

import logging
from typing import Any

from ..core.audit import audit_call
from ..core.sankhya_client import get_sankhya_client
from ..core.security import sql_int, to_iso_date
from ..core.sessions import ErpSession
from . import queries
from .rows import RecordNotFoundError, as_float, as_int, as_text

logger = logging.getLogger(__name__)


def _header(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "codsol": as_int(row.get("CODSOL")),
        "solicitante": as_text(row.get("SOLICITANTE")),
        "dtsol": to_iso_date(row.get("DTSOL")),
        "dtsolBR": as_text(row.get("DTSOL")) or None,
        "status": as_text(row.get("STATUS")),
        "setor": as_text(row.get("SETOR")),
    }


async def list_requests(
    session: ErpSession,
    *,
    status: str | None = None,
    setor: str | None = None,
    solicitante: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
) -> list[dict[str, Any]]:
    """Purchase requests, newest first, filtered by text fragments and dates."""
    sql = queries.purchase_requests(status, setor, solicitante, ini, fim)
    rows = await get_sankhya_client().execute_query_paged(session.jsessionid, sql)
    return [_header(row) for row in rows]


async def get_request(session: ErpSession, codsol: int) -> dict[str, Any]:
    """Header and items of a purchase request.

    Raises:
        RecordNotFoundError: No request with that number.
    """
    codsol = sql_int(codsol)
    client = get_sankhya_client()
    headers = await client.execute_query(session.jsessionid, queries.purchase_request_header(codsol))
    if not headers:
        raise RecordNotFoundError(f"Solicitação {codsol} não encontrada")

    rows = await client.execute_query(session.jsessionid, queries.purchase_request_items(codsol))
    items = [
        {
            "seq": as_int(r.get("SEQ")),
            "codprod": as_int(r.get("CODPROD")),
            "descrprod": as_text(r.get("DESCRPROD")),
            "codvol": as_text(r.get("CODVOL")),
            "qtd": as_float(r.get("QTD")),
            "obs": as_text(r.get("OBS")),
        }
        for r in rows
    ]
    return {"header": _header(headers[0]), "items": items}


async def suggest_suppliers(
    session: ErpSession,
    codsol: int,
    codprod: int,
    limit: int = 10,
) -> list[dict[str, Any]]:
    """Suppliers that sold the product before, for quotation.

    The product must belong to the request.
    """
    detail = await get_request(session, codsol)
    codprod = sql_int(codprod)
    if not any(item["codprod"] == codprod for item in detail["items"]):
        raise RecordNotFoundError(f"Produto {codprod} não pertence à solicitação {codsol}")

    rows = await get_sankhya_client().execute_query(
        session.jsessionid, queries.supplier_history(codprod, limit)
    )
    return [
        {
            "codparc": as_int(r.get("CODPARC")),
            "fornecedor": as_text(r.get("FORNECEDOR")),
            "precoMedio": as_float(r.get("PRECOMEDIO")),
            "ultCompra": as_text(r.get("ULTCOMPRA")) or None,
            "qtdCompras": as_int(r.get("QTDCOMPRAS")),
        }
        for r in rows
    ]


def validate_proposals(propostas: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Normalize quotation proposals.

    Each proposal needs ``seq``, ``codprod``, ``codparc``, a positive
    ``qtd`` and a non-negative ``preco``; ``obs`` is optional.

    Raises:
        ValueError: Empty list or invalid proposal.
    """
    if not propostas:
        raise ValueError("Nenhuma proposta informada")

    normalized = []
    for index, proposal in enumerate(propostas, start=1):
        try:
            entry = {
                "seq": sql_int(proposal.get("seq")),
                "codprod": sql_int(proposal.get("codprod")),
                "codparc": sql_int(proposal.get("codparc")),
            }
        except ValueError as e:
            raise ValueError(f"Proposta {index}: {e}") from e

        qtd = as_float(proposal.get("qtd"), -1)
        preco = as_float(proposal.get("preco"), -1)
        if qtd <= 0:
            raise ValueError(f"Proposta {index}: quantidade inválida")
        if preco < 0:
            raise ValueError(f"Proposta {index}: preço inválido")
        entry.update(qtd=qtd, preco=preco, obs=as_text(proposal.get("obs")))
        normalized.append(entry)
    return normalized


@audit_call("requests.submit_quotes")
async def submit_quotes(
    session: ErpSession,
    *,
    codsol: int,
    propostas: list[dict[str, Any]],
) -> dict[str, Any]:
    """Record supplier proposals for a request.

    Proposals are checked against the request items and kept in the audit
    trail; nothing is written to the ERP.

    Returns:
        ``{"codsol", "total"}`` with the number of accepted proposals.
    """
    normalized = validate_proposals(propostas)
    detail = await get_request(session, codsol)
    products = {(item["seq"], item["codprod"]) for item in detail["items"]}

    for proposal in normalized:
        if (proposal["seq"], proposal["codprod"]) not in products:
            raise ValueError(
                f"Item {proposal['seq']}/{proposal['codprod']} não pertence à solicitação"
            )

    codsol = detail["header"]["codsol"]
    logger.info(f"Request {codsol}: {len(normalized)} proposals recorded")
    return {"codsol": codsol, "total": len(normalized)}
