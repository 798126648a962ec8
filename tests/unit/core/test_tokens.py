"""Tests for signed bearer tokens."""

import jwt
import pytest

from painel_compras.core.tokens import (
    ALGORITHM,
    TokenError,
    bearer_token,
    decode_token,
    issue_token,
)


def _issue(**overrides) -> str:
    params = {
        "jti": "abc",
        "usuario": "COMPRADOR",
        "name": "Comprador",
        "codusu": 42,
        "codvend": 7,
        "secret": "s",
        "ttl_seconds": 60,
    }
    params.update(overrides)
    return issue_token(**params)


class TestTokens:
    """Test issue/decode."""

    def test_round_trip_claims(self) -> None:
        claims = decode_token(_issue(), "s")

        assert claims["sub"] == "COMPRADOR"
        assert claims["jti"] == "abc"
        assert claims["codvend"] == 7
        assert claims["exp"] - claims["iat"] == 60

    def test_no_secrets_in_claims(self) -> None:
        claims = jwt.decode(_issue(), options={"verify_signature": False})
        assert set(claims) == {"sub", "name", "codusu", "codvend", "jti", "iat", "exp"}

    def test_wrong_secret(self) -> None:
        with pytest.raises(TokenError, match="inválido"):
            decode_token(_issue(), "other")

    def test_expired(self) -> None:
        with pytest.raises(TokenError, match="expirado"):
            decode_token(_issue(ttl_seconds=-10), "s")

    def test_garbage(self) -> None:
        with pytest.raises(TokenError):
            decode_token("not-a-token", "s")

    def test_missing_jti(self) -> None:
        token = jwt.encode({"sub": "X"}, "s", algorithm=ALGORITHM)
        with pytest.raises(TokenError):
            decode_token(token, "s")


class TestBearerToken:
    """Test Authorization header parsing."""

    def test_extracts_token(self) -> None:
        assert bearer_token("Bearer abc.def") == "abc.def"

    @pytest.mark.parametrize("header", [None, "", "Basic xyz", "Bearer ", "bearer abc"])
    def test_rejects_other_headers(self, header) -> None:
        assert bearer_token(header) is None
