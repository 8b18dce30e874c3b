"""Pricing providers.

Every provider answers ``quote(vin, mileage)`` with a dict of
``{source, wholesale, retail, tradeIn}``. The mock providers derive their
numbers from the VIN alone so that demos and tests are reproducible.
"""

from __future__ import annotations

import math
from typing import Any, Protocol, runtime_checkable

from tradeup_mcp.clock import Clock, SystemClock
from tradeup_mcp.errors import InvalidInputError

# VIN position 10 model-year codes (I, O, Q, U, Z and 0 are never used).
YEAR_CODES: dict[str, int] = {
    "A": 2010, "B": 2011, "C": 2012, "D": 2013, "E": 2014,
    "F": 2015, "G": 2016, "H": 2017, "J": 2018, "K": 2019,
    "L": 2020, "M": 2021, "N": 2022, "P": 2023, "R": 2024,
    "S": 2025, "T": 2026, "V": 2027, "W": 2028, "X": 2029,
    "Y": 2030,
    "1": 2031, "2": 2032, "3": 2033, "4": 2034, "5": 2035,
    "6": 2036, "7": 2037, "8": 2038, "9": 2039,
}
DEFAULT_MODEL_YEAR = 2020

RETAIL_MARKUP = 1.18
TRADE_IN_MARKUP = 1.06
MILEAGE_STEP = 15000
MILEAGE_STEP_DEDUCTION = 800
MIN_WHOLESALE = 1000.0

# source name -> variance factor applied to the shared base value
MOCK_SOURCE_FACTORS: dict[str, float] = {
    "kbb_mock": 1.00,
    "nada_mock": 1.03,
    "blackbook_mock": 0.97,
}


@runtime_checkable
class PricingProvider(Protocol):
    source: str

    async def quote(self, vin: str, mileage: int) -> dict[str, Any]: ...


def round_half_up(value: float, places: int = 2) -> float:
    """Round half away from zero, the way a price tag is rounded."""
    scale = 10 ** places
    scaled = abs(value) * scale
    rounded = math.floor(scaled + 0.5) / scale
    return rounded if value >= 0 else -rounded


def vin_hash(vin: str) -> int:
    """DJB2-style hash folded to signed 32 bits, returned as a non-negative int."""
    h = 0
    for ch in vin:
        h = (h << 5) - h + ord(ch)
        h = ((h + 2**31) % 2**32) - 2**31
    return abs(h)


def model_year_from_vin(vin: str) -> int:
    if len(vin) < 10:
        return DEFAULT_MODEL_YEAR
    return YEAR_CODES.get(vin[9].upper(), DEFAULT_MODEL_YEAR)


def base_wholesale_value(vin: str, mileage: int, current_year: int) -> float:
    """Deterministic depreciated wholesale value for a VIN and odometer reading.

    Base MSRP comes from the VIN hash ($22k to $55k). Depreciation is 15% in
    year one, 10% per year through year five, then 7% per year. Every full
    15,000 miles knocks $800 off. The result never drops below $1,000.
    """
    value = 22000 + (vin_hash(vin) % 33001)
    age = max(0, current_year - model_year_from_vin(vin))
    for year in range(1, age + 1):
        if year == 1:
            value *= 0.85
        elif year <= 5:
            value *= 0.90
        else:
            value *= 0.93
    value -= (int(mileage) // MILEAGE_STEP) * MILEAGE_STEP_DEDUCTION
    return max(round_half_up(value), MIN_WHOLESALE)


def price_from_wholesale(source: str, wholesale: float) -> dict[str, Any]:
    return {
        "source": source,
        "wholesale": wholesale,
        "retail": round_half_up(wholesale * RETAIL_MARKUP),
        "tradeIn": round_half_up(wholesale * TRADE_IN_MARKUP),
    }


class MockPricingProvider:
    """Deterministic pricing source keyed off the VIN."""

    def __init__(self, source: str, factor: float = 1.0, *, clock: Clock | None = None) -> None:
        self.source = source
        self.factor = factor
        self._clock = clock or SystemClock()

    def __repr__(self) -> str:
        return f"MockPricingProvider(source={self.source!r}, factor={self.factor})"

    async def quote(self, vin: str, mileage: int) -> dict[str, Any]:
        if not vin:
            raise InvalidInputError("VIN is required for a valuation")
        if mileage is None or int(mileage) < 0:
            raise InvalidInputError(
                "Mileage must be a non-negative integer", details={"mileage": mileage}
            )
        base = base_wholesale_value(vin, int(mileage), self._clock.now().year)
        return price_from_wholesale(self.source, round_half_up(base * self.factor))


def build_providers(sources: list[str], *, clock: Clock | None = None) -> list[PricingProvider]:
    """Instantiate the configured pricing sources by name."""
    providers: list[PricingProvider] = []
    for name in sources:
        if name not in MOCK_SOURCE_FACTORS:
            raise InvalidInputError(
                f"Unknown pricing source: {name}",
                details={"available": sorted(MOCK_SOURCE_FACTORS)},
            )
        providers.append(MockPricingProvider(name, MOCK_SOURCE_FACTORS[name], clock=clock))
    return providers
