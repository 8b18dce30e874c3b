"""Runtime configuration for the TradeUp equity pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

_DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "data", "tradeup.db")
_DEFAULT_SOURCES = ("kbb_mock", "nada_mock", "blackbook_mock")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class TradeUpConfig:
    """Configuration shared by the services and the MCP server."""
    db_path: str = _DEFAULT_DB_PATH
    offer_base_url: str = ""
    offer_ttl_days: int = 30
    breakeven_low: float = -500.0
    breakeven_high: float = 500.0
    loan_term_months: int = 60
    loan_to_value: float = 0.90
    pricing_sources: list[str] = field(default_factory=lambda: list(_DEFAULT_SOURCES))

    def __post_init__(self) -> None:
        if self.breakeven_low > self.breakeven_high:
            raise ValueError(
                f"breakeven_low ({self.breakeven_low}) must not exceed "
                f"breakeven_high ({self.breakeven_high})"
            )
        if self.offer_ttl_days <= 0:
            raise ValueError("offer_ttl_days must be greater than 0")
        if self.loan_term_months <= 0:
            raise ValueError("loan_term_months must be greater than 0")
        if not self.pricing_sources:
            raise ValueError("at least one pricing source must be configured")

    @property
    def breakeven_band(self) -> tuple[float, float]:
        return (self.breakeven_low, self.breakeven_high)

    def offer_url(self, token: str) -> str:
        return f"{self.offer_base_url.rstrip('/')}/offer/{token}"

    @classmethod
    def from_env(cls) -> TradeUpConfig:
        raw_sources = os.environ.get("TRADEUP_PRICING_SOURCES", "")
        sources = [s.strip() for s in raw_sources.split(",") if s.strip()]
        return cls(
            db_path=os.environ.get("TRADEUP_DB_PATH", _DEFAULT_DB_PATH),
            offer_base_url=os.environ.get("TRADEUP_OFFER_BASE_URL", ""),
            offer_ttl_days=_env_int("TRADEUP_OFFER_TTL_DAYS", 30),
            breakeven_low=_env_float("TRADEUP_BREAKEVEN_LOW", -500.0),
            breakeven_high=_env_float("TRADEUP_BREAKEVEN_HIGH", 500.0),
            pricing_sources=sources or list(_DEFAULT_SOURCES),
        )
