"""Pure equity math: classification and payoff estimation."""

from __future__ import annotations

import math
from typing import Any

from tradeup_mcp.constants import EQUITY_BREAKEVEN, EQUITY_NEGATIVE, EQUITY_POSITIVE
from tradeup_mcp.errors import InvalidInputError

DEFAULT_BREAKEVEN_BAND = (-500.0, 500.0)


def _as_number(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be a number", details={name: value})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be a number", details={name: value}) from None
    if not math.isfinite(number):
        raise InvalidInputError(f"{name} must be a finite number", details={name: str(value)})
    return number


def classify_equity(
    market_value: float,
    payoff_amount: float,
    band: tuple[float, float] = DEFAULT_BREAKEVEN_BAND,
) -> dict[str, Any]:
    """Classify the equity position of a vehicle.

    ``equityAmount`` is the exact difference. ``equityType`` is ``positive``
    above the band's upper edge, ``negative`` below its lower edge, and
    ``breakeven`` anywhere inside the band, both edges included.
    """
    mv = _as_number("marketValue", market_value)
    payoff = _as_number("payoffAmount", payoff_amount)
    if mv <= 0:
        raise InvalidInputError(
            "Market value must be greater than 0", details={"marketValue": market_value}
        )
    low, high = band
    if low > high:
        raise InvalidInputError(
            "Breakeven band is inverted", details={"low": low, "high": high}
        )

    amount = mv - payoff
    if amount > high:
        equity_type = EQUITY_POSITIVE
    elif amount < low:
        equity_type = EQUITY_NEGATIVE
    else:
        equity_type = EQUITY_BREAKEVEN

    return {
        "equityAmount": amount,
        "equityPercent": round(amount / mv * 100, 2),
        "equityType": equity_type,
    }


def estimate_payoff(
    retail_value: float,
    age_years: int,
    *,
    term_months: int = 60,
    loan_to_value: float = 0.90,
) -> float:
    """Remaining balance of a straight-line loan originated at a share of retail."""
    original_loan = float(retail_value) * loan_to_value
    elapsed = min(max(int(age_years), 0) * 12, term_months)
    return round(original_loan * (1 - elapsed / term_months), 2)
