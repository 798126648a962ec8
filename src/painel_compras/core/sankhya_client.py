"""
Sankhya API client for Painel de Compras.

Provides an async HTTP client for the Sankhya service gateway
(``/mge/service.sbr``) with retry logic, session cookies and
Sankhya error parsing.
"""

import asyncio
import base64
import logging
from typing import Any

import httpx

from ..config import get_config

logger = logging.getLogger(__name__)

MGE_SERVICE = "/mge/service.sbr"
MGECOM_SERVICE = "/mgecom/service.sbr"
FILE_VIEWER = "/mge/visualizadorArquivos.mge"

# Services that live under the commercial module gateway
MGECOM_PREFIXES = ("CACSP.",)

STATUS_ERROR = "0"
STATUS_OK = "1"
STATUS_TIMEOUT = "2"
STATUS_SESSION_EXPIRED = "3"


class SankhyaError(Exception):
    """Base exception for Sankhya API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        service_status: str | None = None,
        raw_response: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.service_status = service_status
        self.raw_response = raw_response


class SankhyaConnectionError(SankhyaError):
    """Connection, network or timeout error."""

    pass


class SankhyaAuthError(SankhyaError):
    """Login rejected by the ERP."""

    pass


class SankhyaSessionExpiredError(SankhyaError):
    """JSESSIONID no longer valid on the ERP side."""

    pass


class SankhyaServiceError(SankhyaError):
    """Service returned status 0 or an HTTP error."""

    pass


def wrap(value: Any) -> dict[str, str]:
    """Wrap a value in the Sankhya ``{"$": value}`` envelope."""
    return {"$": "" if value is None else str(value)}


def unwrap(value: Any) -> Any:
    """Inverse of :func:`wrap`; plain values pass through."""
    if isinstance(value, dict) and "$" in value:
        return value["$"]
    return value


class SankhyaClient:
    """Async HTTP client for the Sankhya service gateway.

    Handles:
    - JSESSIONID cookie per call (sessions are owned by the caller)
    - Retry with exponential backoff on network errors
    - Sankhya status/statusMessage parsing
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        retry_backoff: float | None = None,
    ):
        """Initialize Sankhya client.

        Args:
            base_url: Sankhya base URL (defaults to SANKHYA_URL)
            timeout: Request timeout in seconds
            max_retries: Number of retry attempts on network errors
            retry_delay: Initial delay between retries
            retry_backoff: Exponential backoff multiplier
        """
        config = get_config()
        settings = config.sankhya

        self.base_url = (base_url or config.sankhya_url).rstrip("/")
        self.timeout = timeout if timeout is not None else float(settings["timeout"])
        self.max_retries = max_retries if max_retries is not None else int(settings["max_retries"])
        self.retry_delay = retry_delay if retry_delay is not None else float(settings["retry_delay"])
        self.retry_backoff = (
            retry_backoff if retry_backoff is not None else float(settings["retry_backoff"])
        )

        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        """Check if client has a base URL."""
        return bool(self.base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def service_url(service_name: str) -> str:
        """Build the gateway URL for a service.

        Args:
            service_name: e.g. ``DbExplorerSP.executeQuery``

        Returns:
            Relative URL with serviceName and outputType query parameters.
        """
        gateway = MGECOM_SERVICE if service_name.startswith(MGECOM_PREFIXES) else MGE_SERVICE
        return f"{gateway}?serviceName={service_name}&outputType=json"

    @staticmethod
    def extract_service_errors(response_data: dict[str, Any] | str) -> list[str]:
        """Extract error messages from a Sankhya response.

        ``statusMessage`` is sometimes base64 encoded by the gateway; it is
        decoded when it looks like base64 and decodes to text.

        Args:
            response_data: Response data (dict or string)

        Returns:
            List of error messages.
        """
        if isinstance(response_data, str):
            text = response_data.strip()
            return [text] if text else []

        if not isinstance(response_data, dict):
            return []

        errors: list[str] = []
        message = response_data.get("statusMessage")
        if message:
            errors.append(_maybe_b64(str(message)))

        ts_error = response_data.get("tsError")
        if isinstance(ts_error, dict):
            ts_message = ts_error.get("tsErrorMessage") or ts_error.get("message")
            if ts_message and ts_message not in errors:
                errors.append(str(ts_message))

        return errors

    async def call_service(
        self,
        service_name: str,
        request_body: dict[str, Any],
        jsessionid: str | None = None,
    ) -> dict[str, Any]:
        """Call a Sankhya service with retry logic.

        Args:
            service_name: Service name (e.g. DatasetSP.save)
            request_body: Value of ``requestBody``
            jsessionid: Session id, sent as the JSESSIONID cookie

        Returns:
            Full response envelope (status, responseBody, ...)

        Raises:
            SankhyaConnectionError: Network/timeout error after retries
            SankhyaSessionExpiredError: ERP status 3
            SankhyaServiceError: ERP status 0 or HTTP error
        """
        if not self.is_configured:
            raise SankhyaConnectionError("SANKHYA_URL not configured")

        client = await self._get_client()
        payload = {"serviceName": service_name, "requestBody": request_body}
        headers = {"Cookie": f"JSESSIONID={jsessionid}"} if jsessionid else None
        url = self.service_url(service_name)

        last_error: Exception | None = None
        delay = self.retry_delay

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.post(url, json=payload, headers=headers)

                try:
                    response_data = response.json()
                except Exception:
                    response_data = {"raw": response.text}

                if response.status_code >= 400:
                    errors = self.extract_service_errors(response_data)
                    error_msg = errors[0] if errors else f"HTTP {response.status_code}"
                    raise SankhyaServiceError(
                        f"{service_name}: {error_msg}",
                        status_code=response.status_code,
                        raw_response=response_data,
                    )

                return self._check_status(service_name, response_data, response.status_code)

            except SankhyaError:
                raise

            except httpx.TimeoutException as e:
                last_error = SankhyaConnectionError(f"Request timeout: {e}")
                logger.warning(
                    f"Sankhya {service_name} timeout (attempt {attempt + 1}/{self.max_retries + 1})"
                )

            except httpx.ConnectError as e:
                last_error = SankhyaConnectionError(f"Connection error: {e}")
                logger.warning(
                    f"Sankhya {service_name} connection error "
                    f"(attempt {attempt + 1}/{self.max_retries + 1}): {e}"
                )

            if attempt < self.max_retries:
                await asyncio.sleep(delay)
                delay *= self.retry_backoff

        if last_error:
            raise last_error
        raise SankhyaConnectionError("Request failed after all retries")

    def _check_status(
        self, service_name: str, response_data: Any, http_status: int
    ) -> dict[str, Any]:
        """Raise for non-OK Sankhya status codes."""
        if not isinstance(response_data, dict):
            raise SankhyaServiceError(
                f"{service_name}: unexpected response", status_code=http_status,
                raw_response=response_data,
            )

        status = str(response_data.get("status", STATUS_OK))
        if status == STATUS_OK:
            return response_data

        errors = self.extract_service_errors(response_data)
        error_msg = errors[0] if errors else f"status {status}"

        if status == STATUS_SESSION_EXPIRED:
            raise SankhyaSessionExpiredError(
                f"{service_name}: {error_msg}",
                status_code=http_status,
                service_status=status,
                raw_response=response_data,
            )
        raise SankhyaServiceError(
            f"{service_name}: {error_msg}",
            status_code=http_status,
            service_status=status,
            raw_response=response_data,
        )

    # === Session ===

    async def login(self, user: str, password: str) -> str:
        """Open an ERP session.

        Args:
            user: ERP user name (NOMUSU)
            password: ERP password

        Returns:
            The JSESSIONID.

        Raises:
            SankhyaAuthError: Login rejected or no JSESSIONID returned
        """
        body = {
            "NOMUSU": wrap(user),
            "INTERNO": wrap(password),
            "KEEPCONNECTED": wrap("S"),
        }
        try:
            data = await self.call_service("MobileLoginSP.login", body)
        except SankhyaServiceError as e:
            raise SankhyaAuthError(
                str(e), status_code=e.status_code, service_status=e.service_status,
                raw_response=e.raw_response,
            ) from e

        jsessionid = unwrap((data.get("responseBody") or {}).get("jsessionid"))
        if not jsessionid:
            raise SankhyaAuthError("JSESSIONID missing from login response", raw_response=data)
        return str(jsessionid)

    async def logout(self, jsessionid: str) -> None:
        """Close an ERP session. Failures are logged, never raised."""
        try:
            await self.call_service("LogoutSP.logout", {}, jsessionid=jsessionid)
        except SankhyaError as e:
            logger.warning(f"Sankhya logout failed: {e}")

    # === Queries ===

    async def execute_query(self, jsessionid: str, sql: str) -> list[dict[str, Any]]:
        """Run a SQL statement through DbExplorerSP.executeQuery.

        Args:
            jsessionid: ERP session
            sql: SQL text (already validated/escaped by the caller)

        Returns:
            Rows as dictionaries keyed by column name.
        """
        data = await self.call_service(
            "DbExplorerSP.executeQuery",
            {"sql": sql, "outputType": "json"},
            jsessionid=jsessionid,
        )
        return rows_to_dicts(data.get("responseBody") or {})

    async def execute_query_paged(
        self,
        jsessionid: str,
        sql: str,
        page_size: int = 4500,
        max_pages: int = 25,
    ) -> list[dict[str, Any]]:
        """Run a query page by page using Oracle ROWNUM windows.

        Stops at the first short page or after ``max_pages`` pages.

        Args:
            jsessionid: ERP session
            sql: SELECT statement
            page_size: Rows per page
            max_pages: Upper bound on pages fetched

        Returns:
            Concatenated rows without the pagination column.
        """
        rows: list[dict[str, Any]] = []
        for page in range(max_pages):
            low = page * page_size
            high = low + page_size
            paged_sql = (
                f"SELECT * FROM (SELECT Q__.*, ROWNUM RN__ FROM ({sql}) Q__ "
                f"WHERE ROWNUM <= {high}) WHERE RN__ > {low}"
            )
            chunk = await self.execute_query(jsessionid, paged_sql)
            for row in chunk:
                row.pop("RN__", None)
            rows.extend(chunk)
            if len(chunk) < page_size:
                break
        else:
            logger.info(f"Paged query stopped at max_pages={max_pages} ({len(rows)} rows)")
        return rows

    # === Writes ===

    async def dataset_save(
        self,
        jsessionid: str,
        entity: str,
        fields: list[str],
        pk: dict[str, Any],
        values: dict[str, Any],
    ) -> dict[str, Any]:
        """Update one record through DatasetSP.save.

        Args:
            jsessionid: ERP session
            entity: Entity name (CabecalhoNota, ItemNota, ...)
            fields: Field names, in index order
            pk: Primary key of the record
            values: Values keyed by field index ("0", "1", ...)

        Returns:
            Full response envelope.
        """
        body = {
            "entityName": entity,
            "standAlone": False,
            "fields": list(fields),
            "records": [
                {
                    "pk": {k: str(v) for k, v in pk.items()},
                    "values": {str(k): "" if v is None else str(v) for k, v in values.items()},
                }
            ],
        }
        return await self.call_service("DatasetSP.save", body, jsessionid=jsessionid)

    async def include_note(
        self,
        jsessionid: str,
        header: dict[str, Any],
        items: list[dict[str, Any]],
        informar_preco: bool = False,
    ) -> dict[str, Any]:
        """Create a purchase order through CACSP.incluirNota.

        Args:
            jsessionid: ERP session
            header: Header fields, already wrapped
            items: Item records, already wrapped
            informar_preco: Whether item prices are taken from the payload

        Returns:
            Full response envelope.
        """
        body = {
            "nota": {
                "cabecalho": header,
                "itens": {
                    "INFORMARPRECO": "True" if informar_preco else "False",
                    "item": items,
                },
            }
        }
        return await self.call_service("CACSP.incluirNota", body, jsessionid=jsessionid)

    @staticmethod
    def extract_nunota(response_data: dict[str, Any]) -> int | None:
        """Find the new NUNOTA in an incluirNota response.

        Args:
            response_data: Response envelope

        Returns:
            NUNOTA, or None when no known layout matches.
        """
        body = response_data.get("responseBody") or {}
        candidates = [
            ((body.get("nota") or {}).get("cabecalho") or {}).get("NUNOTA"),
            (body.get("pk") or {}).get("NUNOTA"),
            body.get("numeroNota"),
            body.get("nunota"),
        ]
        for candidate in candidates:
            value = unwrap(candidate)
            if value not in (None, "", {}):
                try:
                    return int(value)
                except (TypeError, ValueError):
                    continue
        return None

    async def print_report(self, jsessionid: str, report_id: int, nunota: int) -> bytes:
        """Render a report for one order and download the PDF.

        Args:
            jsessionid: ERP session
            report_id: Report NURFE
            nunota: Order number passed as the NUNOTA parameter

        Returns:
            PDF bytes.
        """
        body = {
            "relatorio": {
                "nuRfe": str(report_id),
                "isApp": "N",
                "parametros": {
                    "parametro": [
                        {
                            "classe": "java.math.BigDecimal",
                            "nome": "NUNOTA",
                            "valor": str(nunota),
                        }
                    ]
                },
            }
        }
        data = await self.call_service(
            "VisualizadorRelatorios.visualizarRelatorio", body, jsessionid=jsessionid
        )
        key = unwrap(((data.get("responseBody") or {}).get("chave") or {}).get("valor"))
        if not key:
            raise SankhyaServiceError("Report key missing from response", raw_response=data)

        client = await self._get_client()
        try:
            response = await client.get(
                FILE_VIEWER,
                params={"chaveArquivo": key},
                headers={"Cookie": f"JSESSIONID={jsessionid}"},
            )
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            raise SankhyaConnectionError(f"Report download failed: {e}") from e

        if response.status_code >= 400:
            raise SankhyaServiceError(
                f"Report download failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response.content


def rows_to_dicts(response_body: dict[str, Any]) -> list[dict[str, Any]]:
    """Convert a DbExplorer responseBody into a list of dicts.

    Args:
        response_body: ``responseBody`` with ``fieldsMetadata`` and ``rows``

    Returns:
        Rows keyed by column name.
    """
    rows = response_body.get("rows") or []
    names = [f.get("name") for f in response_body.get("fieldsMetadata") or []]

    records: list[dict[str, Any]] = []
    for row in rows:
        if isinstance(row, dict):
            records.append(dict(row))
        elif names:
            records.append(dict(zip(names, row)))
        else:
            records.append({str(i): v for i, v in enumerate(row)})
    return records


def _maybe_b64(message: str) -> str:
    """Decode base64 status messages, leaving plain text untouched."""
    if " " in message or len(message) % 4:
        return message
    try:
        return base64.b64decode(message, validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return message


# Global client instance
_sankhya_client: SankhyaClient | None = None


def get_sankhya_client() -> SankhyaClient:
    """Get the global Sankhya client instance.

    Returns:
        The SankhyaClient singleton instance.
    """
    global _sankhya_client
    if _sankhya_client is None:
        _sankhya_client = SankhyaClient()
    return _sankhya_client


def reset_sankhya_client() -> None:
    """Reset the global Sankhya client instance.

    Useful for testing or reconfiguration.
    """
    global _sankhya_client
    _sankhya_client = None
