"""
Purchasing routes: orders, dashboard, replenishment, divergences,
purchase requests and the generic dataset save.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, Response

from ..core.sessions import ErpSession
from ..purchasing import divergences, orders, replenishment, requests
from .deps import current_session
from .models import (
    ChatRequest,
    DatasetSaveRequest,
    FollowUpRequest,
    ForecastRequest,
    GenerateOrderRequest,
    HeaderUpdateRequest,
    IncludeOrderRequest,
    ItemsUpdateRequest,
    QuotesRequest,
    StatusUpdateRequest,
)

router = APIRouter(prefix="/api", tags=["purchasing"])


# === Orders ===

@router.get("/pedidos")
async def list_orders(
    fornecedor: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
    status: str | None = None,
    statusped: str | None = None,
    statuslib: str | None = None,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.list_orders(
        session,
        fornecedor=fornecedor,
        ini=ini,
        fim=fim,
        status=status,
        statusped=statusped,
        statuslib=statuslib,
    )


@router.post("/pedidos/gerar")
async def generate_order(
    body: GenerateOrderRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.generate_order(
        session,
        codparc=body.codparc,
        itens=[line.model_dump() for line in body.itens],
        codtipoper=body.codtipoper,
        observacao=body.observacao,
        requisicao=body.requisicao,
    )


@router.post("/pedidos/incluir")
async def include_order(
    body: IncludeOrderRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.include_order(
        session,
        cabecalho=body.cabecalho,
        items=body.items,
        informar_preco=body.informarPreco,
    )


@router.get("/pedidos/{nunota}")
async def get_order(nunota: int, session: ErpSession = Depends(current_session)) -> dict[str, Any]:
    return await orders.get_order(session, nunota)


@router.api_route("/pedidos/{nunota}/print", methods=["GET", "POST"])
async def print_order(nunota: int, session: ErpSession = Depends(current_session)) -> Response:
    pdf = await orders.print_order(session, nunota)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="pedido-{nunota}.pdf"'},
    )


@router.post("/pedidos/{nunota}/previsao")
async def update_forecast(
    nunota: int,
    body: ForecastRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.update_forecast(session, nunota=nunota, data=body.data)


@router.post("/pedidos/{nunota}/status")
async def update_status(
    nunota: int,
    body: StatusUpdateRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.update_status(
        session,
        nunota=nunota,
        statusped=body.statusped,
        dtprevent=body.dtprevent,
        observacao=body.observacao,
    )


@router.post("/pedidos/{nunota}/followup")
async def follow_up(
    nunota: int,
    body: FollowUpRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.follow_up(
        session, nunota=nunota, statusped=body.statusped, obs=body.obs, dtprevent=body.dtprevent
    )


@router.post("/pedidos/{nunota}/cabecalho")
async def update_header(
    nunota: int,
    body: HeaderUpdateRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.update_header(
        session,
        nunota=nunota,
        observacao=body.observacao,
        ad_invoice=body.ad_invoice,
        ad_proforma=body.ad_proforma,
    )


@router.post("/pedidos/{nunota}/cancelar")
async def cancel_order(nunota: int, session: ErpSession = Depends(current_session)) -> dict[str, Any]:
    return await orders.cancel_order(session, nunota=nunota)


@router.post("/pedidos/{nunota}/itens")
async def update_items(
    nunota: int,
    body: ItemsUpdateRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.update_items(
        session, nunota=nunota, itens=[item.model_dump() for item in body.itens]
    )


@router.post("/sankhya/dataset/save")
async def dataset_save(
    body: DatasetSaveRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await orders.save_record(
        session, entity=body.entity, fields=body.fields, pk=body.pk, values=body.values
    )


# === Dashboard ===

@router.get("/dashboard/status")
async def dashboard_status(session: ErpSession = Depends(current_session)) -> dict[str, Any]:
    return await orders.status_summary(session)


@router.get("/dashboard/mensal")
async def dashboard_monthly(
    meses: int = Query(6, ge=1, le=36),
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return {"items": await orders.monthly_orders(session, meses)}


# === Replenishment ===

@router.get("/produtos-criticos")
async def critical_suppliers(
    dias: int | None = None,
    fornecedor: str | None = None,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    items = await replenishment.critical_suppliers(session, dias=dias, fornecedor=fornecedor)
    return {"items": items}


@router.get("/produtos-criticos/{codparc}")
async def critical_items(
    codparc: int,
    dias: int | None = None,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await replenishment.supplier_items(session, codparc, dias=dias)


@router.post("/ai/chat")
async def chat(body: ChatRequest, session: ErpSession = Depends(current_session)) -> dict[str, Any]:
    return await replenishment.chat(
        session,
        message=body.message,
        safety_days=body.safetyDays,
        top=body.top,
        fornecedor=body.fornecedor,
        grupo=body.grupo,
    )


# === Divergences ===

@router.get("/divergencias")
async def divergence_summary(
    fornecedor: str | None = None,
    status: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    items = await divergences.summary(
        session, fornecedor=fornecedor, status=status, ini=ini, fim=fim
    )
    return {"items": items}


@router.get("/divergencias/{codparc}")
async def divergence_detail(
    codparc: int,
    status: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await divergences.supplier_detail(session, codparc, status=status, ini=ini, fim=fim)


# === Purchase requests ===

@router.get("/solicitacoes")
async def list_requests(
    status: str | None = None,
    setor: str | None = None,
    solicitante: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    items = await requests.list_requests(
        session, status=status, setor=setor, solicitante=solicitante, ini=ini, fim=fim
    )
    return {"items": items}


@router.get("/solicitacoes/{codsol}")
async def get_request(codsol: int, session: ErpSession = Depends(current_session)) -> dict[str, Any]:
    return await requests.get_request(session, codsol)


@router.get("/solicitacoes/{codsol}/fornecedores")
async def request_suppliers(
    codsol: int,
    codprod: int,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return {"items": await requests.suggest_suppliers(session, codsol, codprod)}


@router.post("/solicitacoes/{codsol}/cotacoes")
async def submit_quotes(
    codsol: int,
    body: QuotesRequest,
    session: ErpSession = Depends(current_session),
) -> dict[str, Any]:
    return await requests.submit_quotes(
        session, codsol=codsol, propostas=[p.model_dump() for p in body.propostas]
    )
