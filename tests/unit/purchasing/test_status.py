"""Tests for the order status vocabulary."""

from datetime import date

import pytest

from painel_compras.purchasing.status import (
    ATRASADO,
    NO_RELEASE_STATUS,
    PLANEJADO,
    SEM_PREVISAO,
    STATUSPED_LABELS,
    guess_status_code,
    normalize_release_status,
    normalize_schedule_filter,
    schedule_status,
    status_label,
)

TODAY = date(2025, 9, 15)


class TestStatusCodes:
    """Test STATUSPED code/label mapping."""

    def test_nine_codes(self) -> None:
        assert list(STATUSPED_LABELS) == [str(i) for i in range(1, 10)]

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("3", "3"),
            (7, "7"),
            ("Em Trânsito", "4"),
            ("em transito", "4"),
            ("AGUARDANDO EMBARQUE", "3"),
            ("produção", "2"),
            ("desembaraçado", "6"),
            ("perdimento", "8"),
            ("cancelado", "9"),
            ("aguardando liberação", "5"),
        ],
    )
    def test_guess_status_code(self, value, expected: str) -> None:
        assert guess_status_code(value) == expected

    @pytest.mark.parametrize("value", [None, "", "  ", "xyz", "10"])
    def test_guess_status_code_unknown(self, value) -> None:
        assert guess_status_code(value) is None

    def test_status_label(self) -> None:
        assert status_label("4") == "Em Trânsito"
        assert status_label(9) == "Cancelado"

    def test_status_label_defaults_to_approval(self) -> None:
        assert status_label(None) == "Pedido em aprovação"
        assert status_label("42") == "Pedido em aprovação"

    def test_release_status_placeholder(self) -> None:
        assert normalize_release_status(None) == NO_RELEASE_STATUS
        assert normalize_release_status(" Liberado ") == "Liberado"


class TestScheduleStatus:
    """Test the DTPREVENT-derived schedule status."""

    def test_no_date(self) -> None:
        assert schedule_status(None, TODAY) == SEM_PREVISAO
        assert schedule_status("", TODAY) == SEM_PREVISAO

    def test_unparseable_date_counts_as_missing(self) -> None:
        assert schedule_status("99/99/9999", TODAY) == SEM_PREVISAO

    def test_past_is_late(self) -> None:
        assert schedule_status("14/09/2025", TODAY) == ATRASADO

    def test_today_is_planned(self) -> None:
        assert schedule_status("15/09/2025", TODAY) == PLANEJADO
        assert schedule_status("2025-12-01", TODAY) == PLANEJADO

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("SEM_PREV", SEM_PREVISAO),
            ("sem previsao", SEM_PREVISAO),
            ("SEM PREVISÃO", SEM_PREVISAO),
            ("atrasado", ATRASADO),
            ("PLANEJADO", PLANEJADO),
            (None, None),
            ("", None),
            ("todos", None),
            ("ALL", None),
        ],
    )
    def test_normalize_filter(self, value, expected) -> None:
        assert normalize_schedule_filter(value) == expected

    def test_normalize_filter_rejects_unknown(self) -> None:
        with pytest.raises(ValueError, match="Status inválido"):
            normalize_schedule_filter("ontem")
