"""
SQL builders for the purchasing reports.

All statements target the Sankhya Oracle schema (TGFCAB/TGFITE/TGFPAR/...)
and are sent through DbExplorerSP.executeQuery. Every user-supplied value
goes through sql_literal/sql_like/sql_int; dates are rendered with
TO_CHAR so the ERP returns dd/mm/yyyy text.
"""

from collections.abc import Iterable

from ..core.security import parse_br_date, sanitize_identifier, sql_int, sql_like, sql_literal, to_br_date

# Pending purchase orders: TIPMOV 'O', not cancelled, with pending items
OPEN_ORDER_FILTER = """CAB.TIPMOV = 'O'
  AND ITE.PENDENTE = 'S'
  AND CAB.STATUSNOTA IN ('A','P')
  AND CAB.CODTIPOPER <> 4"""


def _date_range(column: str, ini: str | None, fim: str | None) -> list[str]:
    """Inclusive TRUNC(column) range conditions for dd/mm/yyyy bounds."""
    conditions = []
    start = parse_br_date(ini)
    end = parse_br_date(fim)
    if start:
        conditions.append(f"TRUNC({column}) >= TO_DATE({sql_literal(to_br_date(start))}, 'DD/MM/YYYY')")
    if end:
        conditions.append(f"TRUNC({column}) <= TO_DATE({sql_literal(to_br_date(end))}, 'DD/MM/YYYY')")
    return conditions


def _and(conditions: Iterable[str]) -> str:
    return "".join(f"\n  AND {c}" for c in conditions)


def user_lookup(usuario: str) -> str:
    """ERP user code, buyer code and display name for a login."""
    return f"""SELECT CODUSU, NVL(CODVEND, 0) AS CODVEND, NOMEUSU
FROM TSIUSU
WHERE UPPER(NOMEUSU) = {sql_literal(usuario.strip().upper())}"""


def partner_name(codparc: int) -> str:
    return f"SELECT CODPARC, NOMEPARC FROM TGFPAR WHERE CODPARC = {sql_int(codparc)}"


# === Purchase orders ===

def open_orders(
    codvend: int | None = None,
    fornecedor: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
) -> str:
    """Pending purchase orders with release (TSILIB) status.

    Args:
        codvend: Buyer code; restricts to the buyer's suppliers when set.
        fornecedor: Supplier name fragment.
        ini: Negotiation date lower bound (dd/mm/yyyy).
        fim: Negotiation date upper bound (dd/mm/yyyy).
    """
    conditions: list[str] = []
    if codvend:
        conditions.append(f"PAR.CODVEND = {sql_int(codvend)}")
    if fornecedor and fornecedor.strip():
        conditions.append(f"UPPER(PAR.NOMEPARC) LIKE {sql_like(fornecedor)}")
    conditions.extend(_date_range("CAB.DTNEG", ini, fim))

    return f"""SELECT
  CAB.NUNOTA,
  PAR.CODPARC,
  PAR.NOMEPARC,
  TO_CHAR(CAB.DTNEG, 'DD/MM/YYYY') AS DTNEG,
  TO_CHAR(CAB.DTPREVENT, 'DD/MM/YYYY') AS DTPREVENT,
  CAB.VLRNOTA,
  SUM((ITE.QTDNEG - ITE.QTDENTREGUE) * ITE.VLRUNIT) AS VLRPEDI,
  NVL(CAB.AD_STATUSPED, '1') AS AD_STATUSPED,
  (SELECT MAX(CASE WHEN LIB.REPROVADO = 'S' THEN 'Reprovado'
                   WHEN LIB.DHLIB IS NULL THEN 'Pendente'
                   ELSE 'Liberado' END)
     FROM TSILIB LIB
    WHERE LIB.NUCHAVE = CAB.NUNOTA AND LIB.TABELA = 'TGFCAB') AS STATUSLIB,
  (SELECT MAX(LIB.OBSLIB)
     FROM TSILIB LIB
    WHERE LIB.NUCHAVE = CAB.NUNOTA AND LIB.TABELA = 'TGFCAB'
      AND LIB.REPROVADO = 'S') AS OBSREPROVADO
FROM TGFCAB CAB
JOIN TGFITE ITE ON ITE.NUNOTA = CAB.NUNOTA
JOIN TGFPAR PAR ON PAR.CODPARC = CAB.CODPARC
WHERE {OPEN_ORDER_FILTER}{_and(conditions)}
GROUP BY CAB.NUNOTA, PAR.CODPARC, PAR.NOMEPARC, CAB.DTNEG, CAB.DTPREVENT,
         CAB.VLRNOTA, CAB.AD_STATUSPED
ORDER BY CAB.DTNEG DESC, CAB.NUNOTA DESC"""


def order_header(nunota: int) -> str:
    return f"""SELECT
  CAB.NUNOTA,
  PAR.CODPARC,
  PAR.NOMEPARC,
  TO_CHAR(CAB.DTNEG, 'DD/MM/YYYY') AS DTNEG,
  TO_CHAR(CAB.DTPREVENT, 'DD/MM/YYYY') AS DTPREVENT,
  CAB.VLRNOTA,
  NVL(CAB.AD_STATUSPED, '1') AS AD_STATUSPED,
  CAB.AD_OBSSTATUS,
  CAB.OBSERVACAO,
  CAB.AD_INVOICE,
  CAB.AD_PROFORMA,
  CAB.PENDENTE
FROM TGFCAB CAB
JOIN TGFPAR PAR ON PAR.CODPARC = CAB.CODPARC
WHERE CAB.NUNOTA = {sql_int(nunota)}
  AND CAB.TIPMOV = 'O'"""


def order_items(nunota: int) -> str:
    return f"""SELECT
  ITE.NUNOTA,
  ITE.SEQUENCIA,
  ITE.CODPROD,
  PRO.DESCRPROD,
  ITE.CODVOL,
  ITE.QTDNEG - ITE.QTDENTREGUE AS QTD,
  ITE.VLRUNIT,
  (ITE.QTDNEG - ITE.QTDENTREGUE) * ITE.VLRUNIT AS VLRPEDI
FROM TGFITE ITE
JOIN TGFPRO PRO ON PRO.CODPROD = ITE.CODPROD
WHERE ITE.NUNOTA = {sql_int(nunota)}
  AND ITE.PENDENTE = 'S'
ORDER BY ITE.SEQUENCIA"""


def order_status_counts(codvend: int | None = None) -> str:
    """Pending orders grouped by AD_STATUSPED (dashboard pie)."""
    conditions = [f"PAR.CODVEND = {sql_int(codvend)}"] if codvend else []
    return f"""SELECT
  NVL(CAB.AD_STATUSPED, '1') AS AD_STATUSPED,
  COUNT(DISTINCT CAB.NUNOTA) AS QTD
FROM TGFCAB CAB
JOIN TGFITE ITE ON ITE.NUNOTA = CAB.NUNOTA
JOIN TGFPAR PAR ON PAR.CODPARC = CAB.CODPARC
WHERE {OPEN_ORDER_FILTER}{_and(conditions)}
GROUP BY NVL(CAB.AD_STATUSPED, '1')
ORDER BY 1"""


def monthly_orders(months: int = 6, codvend: int | None = None) -> str:
    """Purchase orders negotiated per month over the last ``months`` months."""
    conditions = [f"PAR.CODVEND = {sql_int(codvend)}"] if codvend else []
    return f"""SELECT
  TO_CHAR(CAB.DTNEG, 'YYYY-MM') AS MES,
  COUNT(*) AS PEDIDOS,
  SUM(CAB.VLRNOTA) AS VALOR
FROM TGFCAB CAB
JOIN TGFPAR PAR ON PAR.CODPARC = CAB.CODPARC
WHERE CAB.TIPMOV = 'O'
  AND CAB.CODTIPOPER <> 4
  AND CAB.DTNEG >= ADD_MONTHS(TRUNC(SYSDATE, 'MM'), -{max(sql_int(months), 1) - 1}){_and(conditions)}
GROUP BY TO_CHAR(CAB.DTNEG, 'YYYY-MM')
ORDER BY 1"""


# === Replenishment ===

def replenishment_base(
    window_days: int = 90,
    codparc: int | None = None,
    fornecedor: str | None = None,
    grupo: str | None = None,
) -> str:
    """Per-product stock, commitments, pending purchases and consumption.

    GIROMENSAL is the consumption (sales and requisitions) over the last
    ``window_days`` days scaled to 30 days. PRECO is the unit price of the
    most recent purchase or order from the product's default supplier.
    """
    window = max(sql_int(window_days), 1)
    conditions: list[str] = []
    if codparc:
        conditions.append(f"PAR.CODPARC = {sql_int(codparc)}")
    if fornecedor and fornecedor.strip():
        conditions.append(f"UPPER(PAR.NOMEPARC) LIKE {sql_like(fornecedor)}")
    if grupo and grupo.strip():
        conditions.append(f"UPPER(GRU.DESCRGRUPOPROD) LIKE {sql_like(grupo)}")

    return f"""SELECT
  PAR.CODPARC,
  PAR.NOMEPARC AS FORNECEDOR,
  PRO.CODPROD,
  PRO.DESCRPROD,
  PRO.CODVOL,
  PRO.CODGRUPOPROD AS CODGRUPO,
  GRU.DESCRGRUPOPROD AS DESCRGRU,
  NVL(PRO.AD_LEADTIME, 0) AS LEADTIME,
  NVL((SELECT SUM(EST.ESTOQUE) FROM TGFEST EST
        WHERE EST.CODPROD = PRO.CODPROD), 0) AS ESTOQUE,
  NVL((SELECT SUM(EST.RESERVADO) FROM TGFEST EST
        WHERE EST.CODPROD = PRO.CODPROD), 0) AS EMPENHO,
  NVL((SELECT SUM(I.QTDNEG - I.QTDENTREGUE)
         FROM TGFITE I JOIN TGFCAB C ON C.NUNOTA = I.NUNOTA
        WHERE I.CODPROD = PRO.CODPROD AND C.TIPMOV = 'O'
          AND I.PENDENTE = 'S' AND C.STATUSNOTA IN ('A','P')), 0) AS COMPRAPEN,
  NVL((SELECT SUM(I.QTDNEG)
         FROM TGFITE I JOIN TGFCAB C ON C.NUNOTA = I.NUNOTA
        WHERE I.CODPROD = PRO.CODPROD AND C.TIPMOV IN ('V','Q')
          AND C.STATUSNOTA = 'L'
          AND C.DTNEG >= TRUNC(SYSDATE) - {window}), 0) * 30 / {window} AS GIROMENSAL,
  (SELECT MAX(I.VLRUNIT) KEEP (DENSE_RANK LAST ORDER BY C.DTNEG, I.NUNOTA)
     FROM TGFITE I JOIN TGFCAB C ON C.NUNOTA = I.NUNOTA
    WHERE I.CODPROD = PRO.CODPROD AND C.CODPARC = PAR.CODPARC
      AND C.TIPMOV IN ('C','O')) AS PRECO
FROM TGFPRO PRO
JOIN TGFPAR PAR ON PAR.CODPARC = PRO.CODPARCFORN
LEFT JOIN TGFGRU GRU ON GRU.CODGRUPOPROD = PRO.CODGRUPOPROD
WHERE PRO.ATIVO = 'S'{_and(conditions)}
ORDER BY PAR.NOMEPARC, PRO.DESCRPROD"""


def products_for_order(codparc: int, codprods: Iterable[int]) -> str:
    """Unit, and last price from the supplier, for the products of a new order."""
    codes = ", ".join(str(sql_int(c)) for c in codprods) or "NULL"
    return f"""SELECT
  PRO.CODPROD,
  PRO.DESCRPROD,
  PRO.CODVOL,
  (SELECT MAX(I.VLRUNIT) KEEP (DENSE_RANK LAST ORDER BY C.DTNEG, I.NUNOTA)
     FROM TGFITE I JOIN TGFCAB C ON C.NUNOTA = I.NUNOTA
    WHERE I.CODPROD = PRO.CODPROD AND C.CODPARC = {sql_int(codparc)}
      AND C.TIPMOV IN ('C','O')) AS PRECO
FROM TGFPRO PRO
WHERE PRO.CODPROD IN ({codes})"""


# === Receiving divergences ===

def divergences(
    table: str,
    codparc: int | None = None,
    fornecedor: str | None = None,
    status: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
) -> str:
    """Divergence occurrences registered at receiving, one row per item.

    Args:
        table: Custom divergence table (CODAVARIA, NUNOTA, SEQUENCIA,
            STATUS, OCORRENCIA).
    """
    table = sanitize_identifier(table)
    conditions: list[str] = []
    if codparc:
        conditions.append(f"PAR.CODPARC = {sql_int(codparc)}")
    if fornecedor and fornecedor.strip():
        conditions.append(f"UPPER(PAR.NOMEPARC) LIKE {sql_like(fornecedor)}")
    if status and status.strip():
        conditions.append(f"UPPER(DIV.STATUS) LIKE {sql_like(status)}")
    conditions.extend(_date_range("CAB.DTNEG", ini, fim))

    return f"""SELECT
  DIV.CODAVARIA,
  DIV.NUNOTA,
  TO_CHAR(CAB.DTNEG, 'DD/MM/YYYY') AS DTNEG,
  DIV.STATUS,
  DIV.SEQUENCIA,
  ITE.CODPROD,
  PRO.DESCRPROD,
  ITE.CODVOL,
  ITE.QTDNEG,
  ITE.VLRUNIT,
  ITE.VLRTOT,
  DIV.OCORRENCIA,
  PAR.CODPARC,
  PAR.NOMEPARC
FROM {table} DIV
JOIN TGFCAB CAB ON CAB.NUNOTA = DIV.NUNOTA
JOIN TGFITE ITE ON ITE.NUNOTA = DIV.NUNOTA AND ITE.SEQUENCIA = DIV.SEQUENCIA
JOIN TGFPRO PRO ON PRO.CODPROD = ITE.CODPROD
JOIN TGFPAR PAR ON PAR.CODPARC = CAB.CODPARC
WHERE 1 = 1{_and(conditions)}
ORDER BY CAB.DTNEG DESC, DIV.CODAVARIA, DIV.SEQUENCIA"""


# === Purchase requests (solicitações, TIPMOV 'J') ===

_REQUEST_HEADER = """SELECT
  CAB.NUNOTA AS CODSOL,
  NVL(USU.NOMEUSU, ' ') AS SOLICITANTE,
  TO_CHAR(CAB.DTNEG, 'DD/MM/YYYY') AS DTSOL,
  CASE CAB.STATUSNOTA WHEN 'L' THEN 'LIBERADA'
                      WHEN 'P' THEN 'PENDENTE'
                      ELSE 'ABERTA' END AS STATUS,
  NVL(CUS.DESCRCENCUS, ' ') AS SETOR,
  CAB.DTNEG AS DTNEG_ORD
FROM TGFCAB CAB
LEFT JOIN TSIUSU USU ON USU.CODUSU = CAB.CODUSU
LEFT JOIN TSICUS CUS ON CUS.CODCENCUS = CAB.CODCENCUS
WHERE CAB.TIPMOV = 'J'"""


def purchase_requests(
    status: str | None = None,
    setor: str | None = None,
    solicitante: str | None = None,
    ini: str | None = None,
    fim: str | None = None,
) -> str:
    inner = _REQUEST_HEADER + _and(_date_range("CAB.DTNEG", ini, fim))
    conditions: list[str] = []
    if status and status.strip():
        conditions.append(f"UPPER(S.STATUS) LIKE {sql_like(status)}")
    if setor and setor.strip():
        conditions.append(f"UPPER(S.SETOR) LIKE {sql_like(setor)}")
    if solicitante and solicitante.strip():
        conditions.append(f"UPPER(S.SOLICITANTE) LIKE {sql_like(solicitante)}")

    return f"""SELECT S.CODSOL, S.SOLICITANTE, S.DTSOL, S.STATUS, S.SETOR
FROM (
{inner}
) S
WHERE 1 = 1{_and(conditions)}
ORDER BY S.DTNEG_ORD DESC, S.CODSOL DESC"""


def purchase_request_header(codsol: int) -> str:
    return f"{_REQUEST_HEADER}\n  AND CAB.NUNOTA = {sql_int(codsol)}"


def purchase_request_items(codsol: int) -> str:
    return f"""SELECT
  ITE.SEQUENCIA AS SEQ,
  ITE.CODPROD,
  PRO.DESCRPROD,
  ITE.CODVOL,
  ITE.QTDNEG AS QTD,
  NVL(ITE.OBSERVACAO, ' ') AS OBS
FROM TGFITE ITE
JOIN TGFPRO PRO ON PRO.CODPROD = ITE.CODPROD
WHERE ITE.NUNOTA = {sql_int(codsol)}
ORDER BY ITE.SEQUENCIA"""


def supplier_history(codprod: int, limit: int = 10) -> str:
    """Suppliers that sold a product before, most frequent first."""
    return f"""SELECT * FROM (
  SELECT
    PAR.CODPARC,
    PAR.NOMEPARC AS FORNECEDOR,
    ROUND(AVG(ITE.VLRUNIT), 4) AS PRECOMEDIO,
    TO_CHAR(MAX(CAB.DTNEG), 'DD/MM/YYYY') AS ULTCOMPRA,
    COUNT(DISTINCT CAB.NUNOTA) AS QTDCOMPRAS
  FROM TGFITE ITE
  JOIN TGFCAB CAB ON CAB.NUNOTA = ITE.NUNOTA
  JOIN TGFPAR PAR ON PAR.CODPARC = CAB.CODPARC
  WHERE ITE.CODPROD = {sql_int(codprod)}
    AND CAB.TIPMOV = 'C'
    AND CAB.STATUSNOTA = 'L'
  GROUP BY PAR.CODPARC, PAR.NOMEPARC
  ORDER BY COUNT(DISTINCT CAB.NUNOTA) DESC, MAX(CAB.DTNEG) DESC
) WHERE ROWNUM <= {max(sql_int(limit), 1)}"""
