"""Shared test fixtures for Painel de Compras tests.

This module provides common fixtures for the Sankhya client, ERP sessions,
configuration and security components.
"""

from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from painel_compras.core.sankhya_client import SankhyaClient
from painel_compras.core.security import QueryValidator
from painel_compras.core.sessions import ErpSession

# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point config and audit directories at a temp dir and set test secrets."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    monkeypatch.setenv("PAINEL_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("PAINEL_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("SANKHYA_URL", "http://sankhya.test:8180")
    monkeypatch.delenv("SANKHYA_SERVICE_USER", raising=False)
    monkeypatch.delenv("SANKHYA_SERVICE_PASSWORD", raising=False)


# =============================================================================
# Singleton Reset Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset singleton instances between tests.

    This ensures test isolation by clearing global state.
    """
    import painel_compras.config as config_module
    import painel_compras.core.audit as audit_module
    import painel_compras.core.sankhya_client as sankhya_module
    import painel_compras.core.sessions as sessions_module
    import painel_compras.tools.purchasing as tools_module

    # Store originals
    orig_config = config_module._config
    orig_audit = audit_module._audit_logger
    orig_client = sankhya_module._sankhya_client
    orig_store = sessions_module._session_store
    orig_service = tools_module._service_session

    # Reset to None
    config_module._config = None
    audit_module._audit_logger = None
    sankhya_module._sankhya_client = None
    sessions_module._session_store = None
    tools_module._service_session = None

    yield

    # Restore originals (in case tests depend on them persisting)
    config_module._config = orig_config
    audit_module._audit_logger = orig_audit
    sankhya_module._sankhya_client = orig_client
    sessions_module._session_store = orig_store
    tools_module._service_session = orig_service


# =============================================================================
# Sankhya Fixtures
# =============================================================================


@pytest.fixture
def mock_client() -> MagicMock:
    """Install a mocked SankhyaClient as the global client."""
    import painel_compras.core.sankhya_client as sankhya_module

    client = MagicMock(spec=SankhyaClient)
    client.is_configured = True
    client.login = AsyncMock(return_value="JSESSION-1")
    client.logout = AsyncMock(return_value=None)
    client.execute_query = AsyncMock(return_value=[])
    client.execute_query_paged = AsyncMock(return_value=[])
    client.dataset_save = AsyncMock(return_value={"status": "1", "responseBody": {}})
    client.include_note = AsyncMock(return_value={"status": "1", "responseBody": {}})
    client.print_report = AsyncMock(return_value=b"%PDF-1.4")
    client.extract_nunota = MagicMock(side_effect=SankhyaClient.extract_nunota)
    client.extract_service_errors = MagicMock(side_effect=SankhyaClient.extract_service_errors)
    client.close = AsyncMock(return_value=None)

    sankhya_module._sankhya_client = client
    return client


@pytest.fixture
def session() -> ErpSession:
    """Provide a buyer's ERP session."""
    return ErpSession(
        jti="jti-1",
        jsessionid="JSESSION-1",
        usuario="COMPRADOR",
        codusu=42,
        codvend=7,
        name="Comprador Teste",
    )


@pytest.fixture
def order_rows() -> list[dict[str, Any]]:
    """Provide DbExplorer rows of the open orders query."""
    return [
        {
            "NUNOTA": 1001, "CODPARC": 10, "NOMEPARC": "VOLVO PENTA",
            "DTNEG": "01/08/2025", "DTPREVENT": "10/09/2025", "VLRNOTA": 5000,
            "VLRPEDI": 2500.5, "AD_STATUSPED": "4", "STATUSLIB": "Liberado",
            "OBSREPROVADO": None,
        },
        {
            "NUNOTA": 1002, "CODPARC": 11, "NOMEPARC": "MERCURY MARINE",
            "DTNEG": "05/08/2025", "DTPREVENT": None, "VLRNOTA": "1200.00",
            "VLRPEDI": "1200.00", "AD_STATUSPED": None, "STATUSLIB": None,
            "OBSREPROVADO": None,
        },
        {
            "NUNOTA": 1003, "CODPARC": 10, "NOMEPARC": "VOLVO PENTA",
            "DTNEG": "06/08/2025", "DTPREVENT": "30/09/2025", "VLRNOTA": 800,
            "VLRPEDI": 800, "AD_STATUSPED": "2", "STATUSLIB": "Reprovado",
            "OBSREPROVADO": "Preço acima da tabela",
        },
    ]


@pytest.fixture
def replenishment_rows() -> list[dict[str, Any]]:
    """Provide rows of the replenishment base query.

    Consumption of 30/month means 1 unit per day.
    """
    return [
        {   # disp 5, coverage 5 days, lead time 20 -> at risk
            "CODPARC": 10, "FORNECEDOR": "VOLVO PENTA", "CODPROD": 501,
            "DESCRPROD": "HELICE INOX", "CODVOL": "UN", "CODGRUPO": 3,
            "DESCRGRU": "PROPULSAO", "LEADTIME": 20, "ESTOQUE": 10,
            "EMPENHO": 5, "COMPRAPEN": 0, "GIROMENSAL": 30, "PRECO": 150.0,
        },
        {   # disp 100, coverage 100 days -> safe
            "CODPARC": 10, "FORNECEDOR": "VOLVO PENTA", "CODPROD": 502,
            "DESCRPROD": "FILTRO OLEO", "CODVOL": "UN", "CODGRUPO": 4,
            "DESCRGRU": "MOTOR", "LEADTIME": 10, "ESTOQUE": 100,
            "EMPENHO": 0, "COMPRAPEN": 0, "GIROMENSAL": 30, "PRECO": 20.0,
        },
        {   # disp 12, coverage 12 days, lead time 10 + 5 safety -> at risk
            "CODPARC": 11, "FORNECEDOR": "MERCURY MARINE", "CODPROD": 601,
            "DESCRPROD": "BOMBA PORAO", "CODVOL": "PC", "CODGRUPO": 3,
            "DESCRGRU": "PROPULSAO", "LEADTIME": 10, "ESTOQUE": 2,
            "EMPENHO": 0, "COMPRAPEN": 10, "GIROMENSAL": 30, "PRECO": None,
        },
        {   # no consumption -> never at risk
            "CODPARC": 11, "FORNECEDOR": "MERCURY MARINE", "CODPROD": 602,
            "DESCRPROD": "CABO ACO", "CODVOL": "M", "CODGRUPO": 5,
            "DESCRGRU": "CASCO", "LEADTIME": 30, "ESTOQUE": 0,
            "EMPENHO": 0, "COMPRAPEN": 0, "GIROMENSAL": 0, "PRECO": 5.0,
        },
    ]


# =============================================================================
# Security Fixtures
# =============================================================================


@pytest.fixture
def query_validator() -> QueryValidator:
    """Provide a QueryValidator instance in read-only mode."""
    return QueryValidator(readonly=True)


@pytest.fixture
def query_validator_unrestricted() -> QueryValidator:
    """Provide a QueryValidator instance without read-only restriction."""
    return QueryValidator(readonly=False)


# =============================================================================
# Test Data Fixtures
# =============================================================================


@pytest.fixture
def valid_select_queries() -> list[str]:
    """Provide a list of valid SELECT queries."""
    return [
        "SELECT * FROM TGFCAB",
        "SELECT NUNOTA, VLRNOTA FROM TGFCAB WHERE ROWNUM <= 10",
        "  SELECT * FROM TGFPAR  ",
        "select codparc from tgfpar",
        "SELECT P.* FROM TGFPAR P WHERE P.NOMEPARC = 'UPDATE NAUTICA'",
        "SELECT COUNT(*) FROM TGFPRO",
        """
        SELECT
            CODPARC,
            SUM(VLRNOTA) AS TOTAL
        FROM TGFCAB
        GROUP BY CODPARC
        """,
    ]


@pytest.fixture
def dangerous_queries() -> list[tuple[str, str]]:
    """Provide dangerous queries with expected blocked patterns.

    Returns:
        List of (query, expected_blocked_pattern) tuples.
    """
    return [
        ("DROP TABLE TGFCAB", "DROP"),
        ("DELETE FROM TGFCAB WHERE 1=1", "DELETE"),
        ("INSERT INTO TGFPAR VALUES (1, 'X')", "INSERT"),
        ("UPDATE TGFCAB SET PENDENTE = 'N'", "UPDATE"),
        ("TRUNCATE TABLE TSILIB", "TRUNCATE"),
        ("MERGE INTO TGFPRO P USING DUAL ON (1=1)", "MERGE"),
        ("ALTER TABLE TGFCAB ADD X NUMBER", "ALTER"),
        ("CREATE TABLE HACK (ID NUMBER)", "CREATE"),
        ("GRANT SELECT ON TGFCAB TO PUBLIC", "GRANT"),
        ("BEGIN NULL; END;", "BEGIN"),
        ("SELECT DBMS_RANDOM.VALUE FROM DUAL", "DBMS_"),
        ("SELECT UTL_HTTP.REQUEST('http://x') FROM DUAL", "UTL_"),
        ("SELECT * FROM TGFCAB; DROP TABLE TGFITE", "DROP"),
        ("SELECT * FROM TGFCAB -- comment", "--"),
        ("SELECT * FROM TGFCAB /* block */", "/*"),
    ]
