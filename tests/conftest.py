"""Shared test fixtures: in-memory stores, a fixed clock, fake pricing and spec sources."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from tradeup_mcp.clock import FixedClock
from tradeup_mcp.config import TradeUpConfig
from tradeup_mcp.data.seed import seed_demo_data
from tradeup_mcp.data.store import SqliteOpportunityStore
from tradeup_mcp.services import Services, build_services

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakePricingProvider:
    """Pricing source whose quote can be changed (or broken) mid-test."""

    def __init__(self, source: str, wholesale: float, retail: float, trade_in: float) -> None:
        self.source = source
        self.quote_data: dict[str, Any] = {
            "wholesale": wholesale,
            "retail": retail,
            "tradeIn": trade_in,
        }
        self.error: Exception | None = None
        self.calls: list[tuple[str, int]] = []

    async def quote(self, vin: str, mileage: int) -> dict[str, Any]:
        self.calls.append((vin, mileage))
        if self.error is not None:
            raise self.error
        return {"source": self.source, **self.quote_data}


class FakeSpecDecoder:
    def __init__(self) -> None:
        self.result: dict[str, Any] | None = {
            "bodyClass": "Sedan/Saloon",
            "driveType": "FWD/Front-Wheel Drive",
            "engineCylinders": "4",
            "displacementL": "1.5",
            "fuelType": "Gasoline",
            "transmission": "CVT",
            "doors": "4",
            "plantCountry": "UNITED STATES (USA)",
        }
        self.error: Exception | None = None

    async def decode(self, vin: str) -> dict[str, Any] | None:
        if self.error is not None:
            raise self.error
        if self.result is None:
            return None
        return {"vin": vin, **self.result}


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(FIXED_NOW)


@pytest.fixture()
def store():
    """A fresh in-memory store for each test."""
    s = SqliteOpportunityStore(":memory:")
    yield s
    s.close()


@pytest.fixture()
def seeded_store(store: SqliteOpportunityStore) -> SqliteOpportunityStore:
    seed_demo_data(store)
    return store


@pytest.fixture()
def providers() -> list[FakePricingProvider]:
    # composite: wholesale 21000, retail 25000, tradeIn 22000
    return [
        FakePricingProvider("kbb_mock", 20000, 24000, 21000),
        FakePricingProvider("nada_mock", 22000, 26000, 23000),
    ]


@pytest.fixture()
def spec_decoder() -> FakeSpecDecoder:
    return FakeSpecDecoder()


@pytest.fixture()
def config() -> TradeUpConfig:
    return TradeUpConfig(db_path=":memory:")


@pytest.fixture()
def services(
    seeded_store: SqliteOpportunityStore,
    clock: FixedClock,
    config: TradeUpConfig,
    providers: list[FakePricingProvider],
    spec_decoder: FakeSpecDecoder,
) -> Services:
    return build_services(
        seeded_store,
        clock=clock,
        config=config,
        providers=providers,
        spec_decoder=spec_decoder,
    )


@pytest.fixture()
def make_provider():
    """Factory for extra fake pricing sources."""
    return FakePricingProvider
