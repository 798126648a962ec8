"""Tests for the HTTP API."""

import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from painel_compras.api import create_app
from painel_compras.api.app import purge_expired_sessions
from painel_compras.api.auth import _sign
from painel_compras.config import reload_config
from painel_compras.core.sankhya_client import (
    SankhyaAuthError,
    SankhyaConnectionError,
    SankhyaServiceError,
    SankhyaSessionExpiredError,
)
from painel_compras.core.sessions import ErpSession, get_session_store
from painel_compras.core.tokens import decode_token


@pytest.fixture
def client(mock_client: MagicMock) -> TestClient:
    """Create a test client backed by the mocked Sankhya client."""
    return TestClient(create_app())


@pytest.fixture
def erp_session() -> ErpSession:
    """Register a live session in the global store."""
    return get_session_store().create(
        jti="jti-1", jsessionid="JSESSION-1", usuario="COMPRADOR",
        codusu=42, codvend=7, name="Comprador Teste",
    )


@pytest.fixture
def auth_headers(erp_session: ErpSession) -> dict[str, str]:
    return {"Authorization": f"Bearer {_sign(erp_session)}"}


class TestLogin:
    """Test /api/auth/login and /api/auth/logout."""

    def test_login_success(self, client: TestClient, mock_client: MagicMock) -> None:
        mock_client.execute_query.return_value = [
            {"CODUSU": 42, "CODVEND": 7, "NOMEUSU": "Comprador Teste"}
        ]

        response = client.post("/api/auth/login", json={"usuario": " comprador ", "senha": "x"})

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Comprador Teste"
        assert data["codusu"] == 42
        assert data["codvend"] == 7
        mock_client.login.assert_awaited_once_with("COMPRADOR", "x")

        claims = decode_token(data["token"], "test-secret")
        assert claims["sub"] == "COMPRADOR"
        session = get_session_store().get(claims["jti"])
        assert session.jsessionid == "JSESSION-1"
        assert "JSESSION" not in response.text

    def test_login_user_without_buyer(self, client: TestClient, mock_client: MagicMock) -> None:
        response = client.post("/api/auth/login", json={"usuario": "novo", "senha": "x"})

        assert response.status_code == 200
        assert response.json()["codvend"] == 0
        assert response.json()["name"] == "NOVO"

    @pytest.mark.parametrize("body", [{}, {"usuario": "x"}, {"usuario": " ", "senha": "y"}])
    def test_login_missing_fields(self, client: TestClient, body: dict) -> None:
        response = client.post("/api/auth/login", json=body)

        assert response.status_code == 400
        assert response.json() == {"erro": "Usuário e senha são obrigatórios"}

    def test_login_rejected(self, client: TestClient, mock_client: MagicMock) -> None:
        mock_client.login.side_effect = SankhyaAuthError("Usuário/Senha inválido.")

        response = client.post("/api/auth/login", json={"usuario": "x", "senha": "y"})

        assert response.status_code == 401
        assert response.json() == {"erro": "Falha no login"}
        assert len(get_session_store()) == 0

    def test_lookup_failure_closes_erp_session(
        self, client: TestClient, mock_client: MagicMock
    ) -> None:
        mock_client.execute_query.side_effect = SankhyaConnectionError("down")

        response = client.post("/api/auth/login", json={"usuario": "x", "senha": "y"})

        assert response.status_code == 401
        mock_client.logout.assert_awaited_once_with("JSESSION-1")

    def test_login_throttled(self, tmp_path: Path, mock_client: MagicMock) -> None:
        (tmp_path / "config" / "settings.yaml").write_text("auth:\n  login_max_attempts: 2\n")
        mock_client.login.side_effect = SankhyaAuthError("inválido")
        client = TestClient(create_app())

        codes = [
            client.post("/api/auth/login", json={"usuario": "x", "senha": "y"}).status_code
            for _ in range(3)
        ]

        assert codes == [401, 401, 429]

    def test_logout(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        response = client.post("/api/auth/logout", headers=auth_headers)

        assert response.json() == {"sucesso": True}
        assert "jti-1" not in get_session_store()
        mock_client.logout.assert_awaited_once_with("JSESSION-1")

        again = client.get("/api/whoami", headers=auth_headers)
        assert again.status_code == 401
        assert again.json() == {"erro": "Sessão expirada"}


class TestAuthentication:
    """Test token handling on protected routes."""

    def test_missing_token(self, client: TestClient) -> None:
        response = client.get("/api/pedidos")
        assert response.status_code == 401
        assert response.json() == {"erro": "Token ausente"}

    def test_invalid_token(self, client: TestClient) -> None:
        response = client.get("/api/pedidos", headers={"Authorization": "Bearer abc"})
        assert response.status_code == 401
        assert response.json() == {"erro": "Token inválido"}

    def test_whoami(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        data = client.get("/api/whoami", headers=auth_headers).json()

        assert data["sankhyaSession"] is True
        assert data["user"]["sub"] == "COMPRADOR"
        assert data["user"]["codvend"] == 7
        assert data["session"]["usuario"] == "COMPRADOR"
        assert "jsessionid" not in data["session"]
        assert "JSESSION-1" not in str(data)

    def test_expired_session_logged_out_on_erp(
        self, client: TestClient, mock_client: MagicMock, erp_session: ErpSession,
        auth_headers: dict[str, str],
    ) -> None:
        erp_session.expires_at = time.time() - 1

        response = client.get("/api/whoami", headers=auth_headers)

        assert response.status_code == 401
        assert response.json() == {"erro": "Sessão expirada"}
        assert "jti-1" not in get_session_store()
        mock_client.logout.assert_awaited_once_with("JSESSION-1")

    def test_erp_session_expired(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        mock_client.execute_query.side_effect = SankhyaSessionExpiredError("status 3")

        response = client.get("/api/pedidos", headers=auth_headers)

        assert response.status_code == 401
        assert response.json() == {"erro": "Sessão Sankhya expirada"}
        assert "jti-1" not in get_session_store()

    def test_erp_failure_is_bad_gateway(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        mock_client.execute_query.side_effect = SankhyaConnectionError("Connection error: refused")

        response = client.get("/api/ping-sankhya", headers=auth_headers)

        assert response.status_code == 502
        assert response.json() == {"erro": "Connection error: refused"}

    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok", "sankhya": True}

    def test_unknown_route(self, client: TestClient) -> None:
        response = client.get("/api/nada")
        assert response.status_code == 404
        assert "erro" in response.json()


class TestRawQuery:
    """Test /api/obter-reg."""

    def test_select(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        mock_client.execute_query_paged.return_value = [{"CODPARC": 10}]

        response = client.post(
            "/api/obter-reg",
            json={"consulta": "SELECT CODPARC FROM TGFPAR;", "refreshToken": True},
            headers=auth_headers,
        )

        data = response.json()
        assert data["rows"] == [{"CODPARC": 10}]
        assert decode_token(data["token"], "test-secret")["jti"] == "jti-1"
        mock_client.execute_query_paged.assert_awaited_once_with(
            "JSESSION-1", "SELECT CODPARC FROM TGFPAR", page_size=4500, max_pages=25
        )

    def test_refresh_extends_session(
        self, client: TestClient, mock_client: MagicMock, erp_session: ErpSession,
        auth_headers: dict[str, str],
    ) -> None:
        erp_session.expires_at = time.time() + 5

        data = client.post(
            "/api/obter-reg",
            json={"consulta": "SELECT 1 FROM DUAL", "refreshToken": True},
            headers=auth_headers,
        ).json()

        assert erp_session.expires_at > time.time() + 7 * 3600
        refreshed = {"Authorization": f"Bearer {data['token']}"}
        assert client.get("/api/whoami", headers=refreshed).status_code == 200

    def test_no_refresh_keeps_lifetime(
        self, client: TestClient, mock_client: MagicMock, erp_session: ErpSession,
        auth_headers: dict[str, str],
    ) -> None:
        erp_session.expires_at = expires_at = time.time() + 5

        data = client.post(
            "/api/obter-reg", json={"consulta": "SELECT 1 FROM DUAL"}, headers=auth_headers
        ).json()

        assert "token" not in data
        assert erp_session.expires_at == expires_at

    def test_write_rejected(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/obter-reg", json={"consulta": "DELETE FROM TGFCAB"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert "DELETE" in response.json()["erro"]
        mock_client.execute_query_paged.assert_not_called()


class TestOrderRoutes:
    """Test the order routes end to end."""

    def test_list(
        self,
        client: TestClient,
        mock_client: MagicMock,
        auth_headers: dict[str, str],
        order_rows: list,
    ) -> None:
        mock_client.execute_query.return_value = order_rows

        response = client.get("/api/pedidos?statuslib=Liberado", headers=auth_headers)

        data = response.json()
        assert [i["nunota"] for i in data["items"]] == [1001]
        assert data["totais"]["quantidade"] == 1

    def test_invalid_filter(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        response = client.get("/api/pedidos?ini=ontem", headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"erro": "Data inválida: ontem"}

    def test_order_not_found(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        response = client.get("/api/pedidos/1001", headers=auth_headers)
        assert response.status_code == 404
        assert response.json() == {"erro": "Pedido 1001 não encontrado"}

    def test_order_detail(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        mock_client.execute_query.side_effect = [
            [{"NUNOTA": 1001, "CODPARC": 10, "NOMEPARC": "VOLVO PENTA",
              "DTNEG": "05/09/2025", "DTPREVENT": "20/10/2025", "VLRNOTA": 5000}],
            [{"NUNOTA": 1001, "SEQUENCIA": 1, "CODPROD": 501, "QTD": 2}],
        ]

        data = client.get("/api/pedidos/1001", headers=auth_headers).json()

        assert set(data) == {"header", "items"}
        assert data["header"]["dtneg"] == "2025-09-05"
        assert data["header"]["dtprevent"] == "2025-10-20"
        assert data["items"][0]["sequencia"] == 1

    def test_dataset_rejection_returned(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        mock_client.dataset_save.side_effect = SankhyaServiceError(
            "DatasetSP.save: Nota já confirmada",
            service_status="0",
            raw_response={"status": "0", "statusMessage": "Nota já confirmada"},
        )

        response = client.post(
            "/api/sankhya/dataset/save",
            json={"entity": "CabecalhoNota", "fields": ["DTPREVENT"],
                  "pk": {"NUNOTA": 1001}, "values": {"0": "01/10/2025"}},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["STATUS"] == "0"
        assert data["RETORNO"]["statusMessage"] == "Nota já confirmada"

    def test_forecast(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/pedidos/1001/previsao", json={"data": "20/10/2025"}, headers=auth_headers
        )

        assert response.json() == {"nunota": 1001, "dataBR": "20/10/2025", "dataISO": "2025-10-20"}

    def test_generate_validation(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        response = client.post(
            "/api/pedidos/gerar",
            json={"codparc": 10, "itens": [{"codprod": 501, "qtd": 0}]},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["erro"].startswith("itens.0.qtd")

    def test_dataset_entity_forbidden(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/sankhya/dataset/save",
            json={"entity": "Usuario", "fields": ["X"], "pk": {"CODUSU": 1}, "values": {"0": 1}},
            headers=auth_headers,
        )

        assert response.status_code == 403

    @pytest.mark.parametrize("method", ["GET", "POST"])
    def test_print(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str],
        tmp_path: Path, method: str,
    ) -> None:
        (tmp_path / "config" / "settings.yaml").write_text("orders:\n  report_id: 88\n")
        reload_config()

        response = client.request(method, "/api/pedidos/1001/print", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == b"%PDF-1.4"

    def test_dashboard(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        mock_client.execute_query.return_value = [{"AD_STATUSPED": "2", "QTD": 5}]

        data = client.get("/api/dashboard/status", headers=auth_headers).json()

        assert data["total"] == 5
        assert client.get("/api/dashboard/mensal?meses=40", headers=auth_headers).status_code == 400


class TestOtherRoutes:
    """Smoke tests for replenishment, divergence and request routes."""

    def test_critical_suppliers(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str],
        replenishment_rows: list,
    ) -> None:
        mock_client.execute_query_paged.return_value = replenishment_rows

        data = client.get("/api/produtos-criticos?dias=0", headers=auth_headers).json()

        assert [s["codparc"] for s in data["items"]] == [10]

    def test_chat(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        response = client.post("/api/ai/chat", json={"message": "risco?"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["reply"].startswith("Nenhum item")

    def test_divergences(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        assert client.get("/api/divergencias", headers=auth_headers).json() == {"items": []}
        assert client.get("/api/divergencias/99", headers=auth_headers).status_code == 404

    def test_requests(
        self, client: TestClient, mock_client: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        assert client.get("/api/solicitacoes", headers=auth_headers).json() == {"items": []}
        assert client.get("/api/solicitacoes/300", headers=auth_headers).status_code == 404


def test_shutdown_logs_sessions_out(mock_client: MagicMock) -> None:
    get_session_store().create("a", "JS-A", "A")
    get_session_store().create("b", "JS-B", "B")

    with TestClient(create_app()):
        pass

    assert len(get_session_store()) == 0
    assert {c.args[0] for c in mock_client.logout.await_args_list} == {"JS-A", "JS-B"}
    mock_client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_purge_expired_sessions(mock_client: MagicMock) -> None:
    store = get_session_store()
    store.create("old", "JS-OLD", "A").expires_at = time.time() - 1
    store.create("new", "JS-NEW", "B")

    assert await purge_expired_sessions() == 1

    assert "old" not in store
    assert "new" in store
    mock_client.logout.assert_awaited_once_with("JS-OLD")


def test_expired_sessions_purged_in_background(tmp_path: Path, mock_client: MagicMock) -> None:
    (tmp_path / "config" / "settings.yaml").write_text("auth:\n  session_purge_seconds: 0.05\n")
    get_session_store().create("old", "JS-OLD", "A").expires_at = time.time() - 1

    with TestClient(create_app()):
        deadline = time.time() + 5
        while "old" in get_session_store() and time.time() < deadline:
            time.sleep(0.02)
        assert "old" not in get_session_store()

    mock_client.logout.assert_any_await("JS-OLD")
