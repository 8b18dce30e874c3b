"""Multi-source valuation aggregation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from tradeup_mcp.errors import InvalidInputError, ProviderError
from tradeup_mcp.valuation.providers import PricingProvider, round_half_up

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("wholesale", "retail", "tradeIn")


def _validate_quote(source: str, quote: Any) -> dict[str, Any]:
    if not isinstance(quote, dict):
        raise ProviderError(f"Pricing source {source} returned no quote")
    cleaned: dict[str, Any] = {"source": quote.get("source") or source}
    for key in PRICE_FIELDS:
        value = quote.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ProviderError(
                f"Pricing source {source} returned an unusable {key}",
                details={"source": source, "field": key, "value": value},
            )
        cleaned[key] = float(value)
    return cleaned


def composite_of(sources: list[dict[str, Any]]) -> dict[str, float]:
    """Field-wise arithmetic mean rounded to cents."""
    if not sources:
        raise ProviderError("No pricing sources answered")
    return {
        key: round_half_up(sum(s[key] for s in sources) / len(sources))
        for key in PRICE_FIELDS
    }


class ValuationAggregator:
    """Queries every configured pricing source and averages the answers.

    All sources must answer. A single failure fails the whole valuation so
    that a missing source can never skew the composite.
    """

    def __init__(self, providers: list[PricingProvider]) -> None:
        if not providers:
            raise ValueError("ValuationAggregator needs at least one pricing provider")
        self._providers = list(providers)

    @property
    def sources(self) -> list[str]:
        return [p.source for p in self._providers]

    async def get_multi_source_valuation(self, vin: str, mileage: int) -> dict[str, Any]:
        results = await asyncio.gather(
            *(p.quote(vin, mileage) for p in self._providers),
            return_exceptions=True,
        )

        quotes: list[dict[str, Any]] = []
        failures: dict[str, str] = {}
        for provider, result in zip(self._providers, results):
            if isinstance(result, InvalidInputError):
                raise result
            if isinstance(result, BaseException):
                logger.error("Pricing source %s failed for %s: %s", provider.source, vin, result)
                failures[provider.source] = str(result) or type(result).__name__
                continue
            try:
                quotes.append(_validate_quote(provider.source, result))
            except ProviderError as exc:
                logger.error("%s", exc)
                failures[provider.source] = str(exc)

        if failures:
            raise ProviderError(
                f"Pricing sources unavailable: {', '.join(sorted(failures))}",
                details={"vin": vin, "failed": failures},
            )

        return {"composite": composite_of(quotes), "sources": quotes}

    async def get_valuation(self, vin: str, mileage: int) -> dict[str, Any]:
        """Quote from the primary (first configured) source only."""
        provider = self._providers[0]
        try:
            result = await provider.quote(vin, mileage)
        except InvalidInputError:
            raise
        except Exception as exc:
            logger.error("Pricing source %s failed for %s: %s", provider.source, vin, exc)
            raise ProviderError(
                f"Pricing source unavailable: {provider.source}",
                details={"vin": vin, "failed": {provider.source: str(exc)}},
            ) from exc
        return _validate_quote(provider.source, result)
