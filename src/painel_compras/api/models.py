"""
Request bodies for the HTTP API.

Field names follow the JSON the dashboard sends (Portuguese, camelCase
where the pages use it).
"""

from typing import Any

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    # Optional so that missing fields produce the 400 of the login route
    usuario: str | None = None
    senha: str | None = None


class QueryRequest(BaseModel):
    consulta: str = Field(..., description="SELECT statement")
    refreshToken: bool = Field(False, description="Return a newly signed token as well")
    pageSize: int = Field(4500, ge=1, le=5000)
    maxPages: int = Field(25, ge=1, le=100)


class ForecastRequest(BaseModel):
    data: str = Field(..., description="Expected delivery date, dd/mm/yyyy")


class StatusUpdateRequest(BaseModel):
    statusped: str
    dtprevent: str | None = None
    observacao: str | None = None


class FollowUpRequest(BaseModel):
    statusped: str
    obs: str | None = None
    dtprevent: str | None = None


class HeaderUpdateRequest(BaseModel):
    observacao: str | None = None
    ad_invoice: str | None = None
    ad_proforma: str | None = None


class ItemEdit(BaseModel):
    sequencia: int
    qtdneg: float | None = None
    vlrunit: float | None = None


class ItemsUpdateRequest(BaseModel):
    itens: list[ItemEdit]


class OrderLine(BaseModel):
    codprod: int
    qtd: float = Field(..., gt=0)


class GenerateOrderRequest(BaseModel):
    codparc: int
    itens: list[OrderLine]
    codtipoper: str | None = None
    observacao: str | None = None
    requisicao: str | None = None


class IncludeOrderRequest(BaseModel):
    cabecalho: dict[str, Any]
    items: list[dict[str, Any]]
    informarPreco: bool = False


class DatasetSaveRequest(BaseModel):
    entity: str
    fields: list[str]
    pk: dict[str, Any]
    values: dict[str, Any]


class ChatRequest(BaseModel):
    message: str
    safetyDays: int | None = None
    top: int | None = None
    fornecedor: str | None = None
    grupo: str | None = None


class Proposal(BaseModel):
    seq: int
    codprod: int
    codparc: int
    preco: float
    qtd: float
    obs: str | None = None


class QuotesRequest(BaseModel):
    propostas: list[Proposal]
