"""
Purchasing tools for assistants.

The tools run under a service ERP account (SANKHYA_SERVICE_USER) because
an MCP client has no interactive login. The session is opened on first use
and reopened once when the ERP reports it expired.

Tools:
- order_status_summary: Pending orders per STATUSPED
- list_open_orders: Pending purchase orders with filters
- replenishment_risk: Products at risk of stock-out
- critical_suppliers: Suppliers with overdue replenishment
- receiving_divergences: Receiving divergences per supplier
"""

import dataclasses
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from mcp.server.fastmcp import FastMCP

from ..config import get_config
from ..core.audit import audit_call
from ..core.sankhya_client import (
    SankhyaAuthError,
    SankhyaError,
    SankhyaSessionExpiredError,
    get_sankhya_client,
)
from ..core.sessions import ErpSession
from ..purchasing import divergences, orders, queries, replenishment
from ..purchasing.rows import as_int, as_text
from .base import format_money, format_table_results

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Service account session shared by all tools
_service_session: ErpSession | None = None


async def get_service_session() -> ErpSession:
    """Open (or reuse) the service account ERP session.

    Raises:
        SankhyaAuthError: Service account not configured or login rejected.
    """
    global _service_session
    if _service_session is not None:
        return _service_session

    config = get_config()
    usuario = config.service_user.strip().upper()
    if not usuario:
        raise SankhyaAuthError("SANKHYA_SERVICE_USER not configured")

    client = get_sankhya_client()
    jsessionid = await client.login(usuario, config.service_password)
    rows = await client.execute_query(jsessionid, queries.user_lookup(usuario))
    row = rows[0] if rows else {}

    _service_session = ErpSession(
        jti="service",
        jsessionid=jsessionid,
        usuario=usuario,
        codusu=as_int(row.get("CODUSU")) or None,
        codvend=as_int(row.get("CODVEND")),
        name=as_text(row.get("NOMEUSU")) or usuario,
    )
    logger.info(f"Service session opened for {usuario}")
    return _service_session


def reset_service_session() -> None:
    """Forget the service session (next tool call logs in again)."""
    global _service_session
    _service_session = None


async def run_with_service_session(
    operation: Callable[[ErpSession], Awaitable[T]],
) -> T:
    """Run an operation under the service session, re-logging once on expiry."""
    session = await get_service_session()
    try:
        return await operation(session)
    except SankhyaSessionExpiredError:
        logger.info("Service session expired, logging in again")
        reset_service_session()
        session = await get_service_session()
        return await operation(session)


def _scoped(session: ErpSession, codvend: int | None) -> ErpSession:
    return dataclasses.replace(session, codvend=codvend) if codvend else session


def _format_error(error: Exception) -> str:
    lines = [f"Error: {error}"]
    status_code = getattr(error, "status_code", None)
    if status_code:
        lines.append(f"Status: {status_code}")
    return "\n".join(lines)


def register_purchasing_tools(mcp: FastMCP) -> None:
    """Register purchasing tools with the MCP server.

    Args:
        mcp: The FastMCP server instance.
    """

    @mcp.tool()
    @audit_call("order_status_summary")
    async def order_status_summary(codvend: int | None = None) -> str:
        """Count pending purchase orders per order status (STATUSPED).

        Args:
            codvend: Buyer code to restrict to (default: service account's buyer,
                or every buyer when the account has none).

        Returns:
            Table of status code, label and order count.
        """
        try:
            summary = await run_with_service_session(
                lambda s: orders.status_summary(_scoped(s, codvend))
            )
        except SankhyaError as e:
            return _format_error(e)

        lines = ["# Pending purchase orders by status", ""]
        lines.append(format_table_results(summary["status"], ["code", "label", "qtd"]))
        lines.append("")
        lines.append(f"Total: {summary['total']}")
        return "\n".join(lines)

    @mcp.tool()
    @audit_call("list_open_orders")
    async def list_open_orders(
        fornecedor: str | None = None,
        status: str | None = None,
        statusped: str | None = None,
        ini: str | None = None,
        fim: str | None = None,
        codvend: int | None = None,
        limit: int = 50,
    ) -> str:
        """List pending purchase orders.

        Args:
            fornecedor: Supplier name fragment.
            status: Schedule status: SEM PREVISÃO, ATRASADO or PLANEJADO.
            statusped: Order status code (1-9) or label, e.g. "Em Trânsito".
            ini: Negotiation date from (dd/mm/yyyy).
            fim: Negotiation date to (dd/mm/yyyy).
            codvend: Buyer code to restrict to.
            limit: Maximum rows shown (default: 50).

        Returns:
            Orders table followed by totals.
        """
        try:
            result = await run_with_service_session(
                lambda s: orders.list_orders(
                    _scoped(s, codvend),
                    fornecedor=fornecedor,
                    ini=ini,
                    fim=fim,
                    status=status,
                    statusped=statusped,
                )
            )
        except (SankhyaError, ValueError) as e:
            return _format_error(e)

        items = result["items"]
        totals = result["totais"]
        lines = [f"# Pending purchase orders ({totals['quantidade']})", ""]
        lines.append(
            format_table_results(
                items[:limit],
                ["nunota", "fornecedor", "dtneg", "dtprevent", "status", "statusped", "vlrpedi"],
            )
        )
        if len(items) > limit:
            lines.append(f"... {len(items) - limit} more")
        lines.append("")
        lines.append(f"Pending value: {format_money(totals['vlrpedi'])}")
        lines.append(
            "By schedule: "
            + ", ".join(f"{k}: {v}" for k, v in totals["porStatus"].items())
        )
        return "\n".join(lines)

    @mcp.tool()
    @audit_call("replenishment_risk")
    async def replenishment_risk(
        safety_days: int | None = None,
        top: int | None = None,
        fornecedor: str | None = None,
        grupo: str | None = None,
    ) -> str:
        """Rank products at risk of stock-out.

        A product is at risk when its stock coverage (available stock over
        daily consumption) is shorter than its lead time plus the safety days.

        Args:
            safety_days: Safety stock in days (default from settings).
            top: Maximum products listed (default from settings).
            fornecedor: Supplier name fragment.
            grupo: Product group name fragment.

        Returns:
            Summary text and table of the most critical products.
        """
        try:
            analysis = await run_with_service_session(
                lambda s: replenishment.analyze_risk(
                    s, safety_days=safety_days, top=top, fornecedor=fornecedor, grupo=grupo
                )
            )
        except (SankhyaError, ValueError) as e:
            return _format_error(e)

        lines = [replenishment.compose_reply(analysis, fornecedor, grupo), ""]
        if analysis["risco"]:
            lines.append(
                format_table_results(
                    analysis["risco"],
                    ["codprod", "descrprod", "fornecedor", "disp", "coberturaDias",
                     "leadtime", "dtmelhorped", "sugestaoCompra", "codvol"],
                )
            )
        return "\n".join(lines)

    @mcp.tool()
    @audit_call("critical_suppliers")
    async def critical_suppliers(dias: int | None = None, fornecedor: str | None = None) -> str:
        """List suppliers whose products should already have been ordered.

        Args:
            dias: Days the best order date must be overdue (default from settings).
            fornecedor: Supplier name fragment.

        Returns:
            Table of suppliers with critical product counts.
        """
        try:
            suppliers = await run_with_service_session(
                lambda s: replenishment.critical_suppliers(s, dias=dias, fornecedor=fornecedor)
            )
        except (SankhyaError, ValueError) as e:
            return _format_error(e)

        if not suppliers:
            return "No critical suppliers."
        lines = [f"# Critical suppliers ({len(suppliers)})", ""]
        lines.append(
            format_table_results(
                suppliers, ["codparc", "fornecedor", "qtdprod", "leadtime", "percentual"]
            )
        )
        return "\n".join(lines)

    @mcp.tool()
    @audit_call("receiving_divergences")
    async def receiving_divergences(
        fornecedor: str | None = None,
        status: str | None = None,
        ini: str | None = None,
        fim: str | None = None,
    ) -> str:
        """Summarize receiving divergences per supplier.

        Args:
            fornecedor: Supplier name fragment.
            status: Divergence status fragment.
            ini: Order date from (dd/mm/yyyy).
            fim: Order date to (dd/mm/yyyy).

        Returns:
            Table of suppliers with occurrence counts and divergent value.
        """
        try:
            summary = await run_with_service_session(
                lambda s: divergences.summary(
                    s, fornecedor=fornecedor, status=status, ini=ini, fim=fim
                )
            )
        except (SankhyaError, ValueError) as e:
            return _format_error(e)

        if not summary:
            return "No divergences found."
        total = sum(e["vlrTot"] for e in summary)
        lines = [f"# Receiving divergences ({len(summary)} suppliers)", ""]
        lines.append(
            format_table_results(
                summary,
                ["codparc", "fornecedor", "qtdOcorr", "qtdItens", "vlrTot", "dtnegMax", "percentual"],
            )
        )
        lines.append("")
        lines.append(f"Total divergent value: {format_money(total)}")
        return "\n".join(lines)
