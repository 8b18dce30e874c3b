"""Composition of the equity pipeline services around one store."""

from __future__ import annotations

from dataclasses import dataclass

from tradeup_mcp.clients.nhtsa import NHTSASpecDecoder
from tradeup_mcp.clock import Clock, SystemClock
from tradeup_mcp.config import TradeUpConfig
from tradeup_mcp.data.store import OpportunityStore
from tradeup_mcp.deals.client_offer import ClientOfferIssuer
from tradeup_mcp.deals.deal_sheet import DealSheetService, SpecDecoder
from tradeup_mcp.equity.analyzer import EquityAnalyzer
from tradeup_mcp.pipeline.tracker import PipelineTracker
from tradeup_mcp.valuation.aggregator import ValuationAggregator
from tradeup_mcp.valuation.providers import PricingProvider, build_providers


@dataclass
class Services:
    store: OpportunityStore
    clock: Clock
    config: TradeUpConfig
    aggregator: ValuationAggregator
    tracker: PipelineTracker
    analyzer: EquityAnalyzer
    deal_sheets: DealSheetService
    offers: ClientOfferIssuer


def build_services(
    store: OpportunityStore,
    *,
    clock: Clock | None = None,
    config: TradeUpConfig | None = None,
    providers: list[PricingProvider] | None = None,
    spec_decoder: SpecDecoder | None = None,
) -> Services:
    """Wire every service to the same store, clock, and config."""
    clock = clock or SystemClock()
    config = config or TradeUpConfig()
    aggregator = ValuationAggregator(
        providers or build_providers(config.pricing_sources, clock=clock)
    )
    tracker = PipelineTracker(store, clock)
    offers = ClientOfferIssuer(store, tracker=tracker, clock=clock, config=config)
    deal_sheets = DealSheetService(
        store,
        aggregator,
        spec_decoder=spec_decoder if spec_decoder is not None else NHTSASpecDecoder(),
        tracker=tracker,
        issuer=offers,
        clock=clock,
        config=config,
    )
    analyzer = EquityAnalyzer(store, aggregator, tracker=tracker, clock=clock, config=config)
    return Services(
        store=store,
        clock=clock,
        config=config,
        aggregator=aggregator,
        tracker=tracker,
        analyzer=analyzer,
        deal_sheets=deal_sheets,
        offers=offers,
    )
