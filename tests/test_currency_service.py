"""Currency conversion tests with the exchange API mocked out."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests

from spendflow.services import currency_service


def rates_response(rates):
    response = MagicMock()
    response.json.return_value = {"base": "EUR", "rates": rates}
    response.raise_for_status.return_value = None
    return response


class TestConvertCurrency:
    """Test converting amounts into the organization currency."""

    def test_same_currency_skips_lookup(self, app_ctx):
        with patch("spendflow.services.currency_service.requests.get") as get:
            assert currency_service.convert_currency(Decimal("12.345"), "usd", "USD") == Decimal("12.35")
        get.assert_not_called()

    def test_converts_with_fetched_rate(self, app_ctx):
        with patch(
            "spendflow.services.currency_service.requests.get",
            return_value=rates_response({"USD": 1.1}),
        ) as get:
            assert currency_service.convert_currency(Decimal("100"), "EUR", "USD") == Decimal("110.00")

        url = get.call_args.args[0]
        assert url.endswith("/EUR")
        assert get.call_args.kwargs["timeout"] == app_ctx.config["EXCHANGE_API_TIMEOUT"]

    def test_missing_rate_returns_none(self, app_ctx):
        with patch(
            "spendflow.services.currency_service.requests.get",
            return_value=rates_response({"GBP": 0.8}),
        ):
            assert currency_service.convert_currency(Decimal("100"), "EUR", "USD") is None

    def test_network_failure_returns_none(self, app_ctx):
        with patch(
            "spendflow.services.currency_service.requests.get",
            side_effect=requests.ConnectionError("offline"),
        ):
            assert currency_service.fetch_exchange_rates("EUR") == {}
            assert currency_service.convert_currency(Decimal("5"), "EUR", "USD") is None
