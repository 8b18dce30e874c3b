"""Internal deal sheets: generation, retrieval, and presentation."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

from tradeup_mcp.clock import Clock, SystemClock, to_iso
from tradeup_mcp.config import TradeUpConfig
from tradeup_mcp.constants import (
    DS_CLIENT_OFFER_SENT,
    DS_GENERATED,
    DS_PRESENTED,
    STAGE_OFFER_GENERATED,
)
from tradeup_mcp.data.store import OpportunityStore
from tradeup_mcp.deals.client_offer import (
    BRAND_PRIMARY_COLOR,
    BRAND_SECONDARY_COLOR,
    ClientOfferIssuer,
)
from tradeup_mcp.deals.messages import build_recommendation, source_display_name
from tradeup_mcp.deals.rendering import INTERNAL_DEAL_SHEET, render
from tradeup_mcp.errors import NotFoundError, StateError
from tradeup_mcp.pipeline.tracker import PipelineTracker
from tradeup_mcp.valuation.aggregator import ValuationAggregator

logger = logging.getLogger(__name__)

_DECODED_SPEC_KEYS = (
    "bodyClass", "driveType", "engineCylinders", "displacementL",
    "fuelType", "transmission", "doors", "plantCountry",
)


class SpecDecoder(Protocol):
    async def decode(self, vin: str) -> dict[str, Any] | None: ...


def build_vehicle_specs(context: dict[str, Any], decoded: dict[str, Any] | None) -> dict[str, Any]:
    """Merge decoded specs over the bare asset record."""
    decoded = decoded or {}
    specs: dict[str, Any] = {
        "vin": decoded.get("vin") or context.get("vin"),
        "year": decoded.get("year") or context.get("year"),
        "make": decoded.get("make") or context.get("make"),
        "model": decoded.get("model") or context.get("model"),
        "trim": decoded.get("trim") or context.get("trim"),
    }
    for key in _DECODED_SPEC_KEYS:
        specs[key] = decoded.get(key) or None
    specs["mileage"] = context.get("mileage")
    specs["color"] = context.get("color")
    return specs


def build_equity_summary(context: dict[str, Any]) -> dict[str, Any]:
    market_value = float(context["market_value"])
    equity_amount = float(context["equity_amount"])
    return {
        "marketValue": market_value,
        "payoffAmount": float(context["payoff_amount"]),
        "equityAmount": equity_amount,
        "equityType": context["equity_type"],
        "equityPercent": round(equity_amount / market_value * 100, 2),
    }


class DealSheetService:
    """Generates and advances internal deal sheets."""

    def __init__(
        self,
        store: OpportunityStore,
        aggregator: ValuationAggregator,
        *,
        spec_decoder: SpecDecoder | None = None,
        tracker: PipelineTracker | None = None,
        issuer: ClientOfferIssuer | None = None,
        clock: Clock | None = None,
        config: TradeUpConfig | None = None,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._spec_decoder = spec_decoder
        self._clock = clock or SystemClock()
        self._config = config or TradeUpConfig()
        self._tracker = tracker or PipelineTracker(store, self._clock)
        self._issuer = issuer or ClientOfferIssuer(
            store, tracker=self._tracker, clock=self._clock, config=self._config
        )

    @property
    def issuer(self) -> ClientOfferIssuer:
        return self._issuer

    def _require(self, deal_sheet_id: str) -> dict[str, Any]:
        deal_sheet = self._store.get_deal_sheet(deal_sheet_id)
        if deal_sheet is None:
            raise NotFoundError(
                f"Deal sheet not found: {deal_sheet_id}",
                details={"deal_sheet_id": deal_sheet_id},
            )
        return deal_sheet

    async def _decode_specs(self, vin: str) -> dict[str, Any] | None:
        if self._spec_decoder is None or not vin:
            return None
        try:
            return await self._spec_decoder.decode(vin)
        except Exception as exc:
            logger.warning("VIN decode failed for %s, using asset record: %s", vin, exc)
            return None

    async def generate(self, equity_analysis_id: str) -> dict[str, Any]:
        """Build and persist a deal sheet for one equity analysis."""
        context = self._store.get_equity_analysis_context(equity_analysis_id)
        if context is None:
            raise NotFoundError(
                f"Equity analysis not found: {equity_analysis_id}",
                details={"equity_analysis_id": equity_analysis_id},
            )

        specs = build_vehicle_specs(context, await self._decode_specs(context["vin"]))
        valuation = await self._aggregator.get_multi_source_valuation(
            context["vin"], context["mileage"]
        )
        equity = build_equity_summary(context)

        customer_name = f"{context['first_name']} {context['last_name']}".strip()
        vehicle = f"{context['year']} {context['make']} {context['model']}"
        recommendation = build_recommendation(
            equity["equityType"], equity["equityAmount"], customer_name, vehicle
        )

        now = self._clock.now()
        html = render(
            INTERNAL_DEAL_SHEET,
            {
                "customer": {
                    "first_name": context["first_name"],
                    "last_name": context["last_name"],
                    "email": context.get("email"),
                    "phone": context.get("phone"),
                },
                "specs": specs,
                "composite": valuation["composite"],
                "valuation_sources": [
                    {**s, "name": source_display_name(s["source"])}
                    for s in valuation["sources"]
                ],
                "equity": equity,
                "recommended_approach": recommendation,
                "brand_primary_color": BRAND_PRIMARY_COLOR,
                "brand_secondary_color": BRAND_SECONDARY_COLOR,
                "dealership_name": context.get("org_name") or "Dealership",
                "generated_date": now,
            },
        )

        deal_sheet_id = f"ds-{uuid.uuid4().hex[:12]}"
        self._store.insert_deal_sheet(
            {
                "id": deal_sheet_id,
                "equity_analysis_id": equity_analysis_id,
                "asset_id": context["asset_id"],
                "contact_id": context["contact_id"],
                "organization_id": context["organization_id"],
                "vehicle_specs": specs,
                "valuation_breakdown": valuation,
                "equity_summary": equity,
                "recommended_approach": recommendation,
                "rendered_html": html,
                "status": DS_GENERATED,
                "created_at": to_iso(now),
            }
        )
        logger.info(
            "Deal sheet %s generated for analysis %s", deal_sheet_id, equity_analysis_id
        )
        return {"id": deal_sheet_id, "html": html, "record": self._require(deal_sheet_id)}

    def get(self, deal_sheet_id: str) -> dict[str, Any]:
        """Fetch a deal sheet. The first retrieval marks it viewed."""
        deal_sheet = self._require(deal_sheet_id)
        if deal_sheet["status"] == DS_GENERATED:
            if self._store.mark_deal_sheet_viewed(deal_sheet_id, now=to_iso(self._clock.now())):
                logger.info("Deal sheet %s viewed", deal_sheet_id)
            deal_sheet = self._require(deal_sheet_id)
        return {"record": deal_sheet, "html": deal_sheet["rendered_html"]}

    def mark_presented(
        self, deal_sheet_id: str, presented_by: str | None = None
    ) -> dict[str, Any]:
        deal_sheet = self._require(deal_sheet_id)
        status = deal_sheet["status"]
        if status == DS_CLIENT_OFFER_SENT:
            raise StateError(
                "Deal sheet already has a client offer and cannot be presented again",
                details={"deal_sheet_id": deal_sheet_id, "status": status},
            )
        if status == DS_PRESENTED:
            return {"record": deal_sheet, "status": status}

        self._store.mark_deal_sheet_presented(
            deal_sheet_id, now=to_iso(self._clock.now()), presented_by=presented_by
        )
        self._tracker.advance_to(deal_sheet["asset_id"], STAGE_OFFER_GENERATED)
        logger.info("Deal sheet %s presented", deal_sheet_id)
        deal_sheet = self._require(deal_sheet_id)
        return {"record": deal_sheet, "status": deal_sheet["status"]}

    def generate_client_offer(self, deal_sheet_id: str) -> dict[str, Any]:
        return self._issuer.issue(deal_sheet_id)
