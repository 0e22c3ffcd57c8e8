"""Currency conversion for workflow routing amounts."""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

import requests
from flask import current_app

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def fetch_exchange_rates(base_currency: str) -> Dict[str, float]:
    """Fetch exchange rates for the given base currency."""
    url = current_app.config["EXCHANGE_API_URL"].format(base=base_currency.upper())
    try:
        response = requests.get(url, timeout=current_app.config["EXCHANGE_API_TIMEOUT"])
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Exchange rate lookup for %s failed: %s", base_currency, exc)
        return {}

    return payload.get("rates", {})


def convert_currency(
    amount: Decimal | float, source_currency: str, target_currency: str
) -> Optional[Decimal]:
    """Convert an amount between currencies.

    Returns None when no rate is available, so callers can keep routing on
    the original amount.
    """
    if source_currency.upper() == target_currency.upper():
        return Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)

    rates = fetch_exchange_rates(source_currency)
    rate = rates.get(target_currency.upper())
    if not rate:
        logger.warning("No %s->%s rate available", source_currency, target_currency)
        return None

    return (Decimal(str(rate)) * Decimal(str(amount))).quantize(CENTS, rounding=ROUND_HALF_UP)
