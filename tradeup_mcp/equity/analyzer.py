"""Equity analysis: single-asset analyze-and-persist plus per-organization batch."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from tradeup_mcp.clock import Clock, SystemClock, to_iso
from tradeup_mcp.config import TradeUpConfig
from tradeup_mcp.constants import EQUITY_POSITIVE, STAGE_IDS
from tradeup_mcp.data.store import OpportunityStore
from tradeup_mcp.equity.classifier import classify_equity, estimate_payoff
from tradeup_mcp.equity.eligibility import breakeven_band, check_eligibility, resolve_rules
from tradeup_mcp.errors import InvalidInputError, NotFoundError
from tradeup_mcp.pipeline.tracker import PipelineTracker
from tradeup_mcp.valuation.aggregator import ValuationAggregator

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "manual"
COMPOSITE_SOURCE = "composite"

# stage hops made after every persisted analysis, in order
_ANALYSIS_HOPS = (
    (STAGE_IDS["identified"], STAGE_IDS["data_enriched"]),
    (STAGE_IDS["data_enriched"], STAGE_IDS["valuation_complete"]),
    (STAGE_IDS["valuation_complete"], STAGE_IDS["equity_calculated"]),
)


def analysis_to_public(row: dict[str, Any]) -> dict[str, Any]:
    """Map a stored analysis row to the camelCase shape returned to callers."""
    return {
        "id": row["id"],
        "assetId": row["asset_id"],
        "contactId": row["contact_id"],
        "marketValue": row["market_value"],
        "payoffAmount": row["payoff_amount"],
        "equityAmount": row["equity_amount"],
        "equityPercent": row["equity_percent"],
        "equityType": row["equity_type"],
        "valuationSource": row["valuation_source"],
        "createdAt": row["created_at"],
    }


class EquityAnalyzer:
    def __init__(
        self,
        store: OpportunityStore,
        aggregator: ValuationAggregator,
        *,
        tracker: PipelineTracker | None = None,
        clock: Clock | None = None,
        config: TradeUpConfig | None = None,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._clock = clock or SystemClock()
        self._config = config or TradeUpConfig()
        self._tracker = tracker or PipelineTracker(store, self._clock)

    def _band_for(self, organization_id: str) -> tuple[float, float]:
        rules = resolve_rules(self._store, organization_id)
        return breakeven_band(rules, self._config.breakeven_band)

    def analyze(
        self,
        asset_id: str,
        contact_id: str,
        market_value: float,
        payoff_amount: float,
        *,
        valuation_source: str = MANUAL_SOURCE,
        analysis_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Classify and persist one immutable EquityAnalysis row.

        The asset is enrolled in the pipeline if needed and moved up to
        ``equity_calculated``; records already past that stage stay put.
        """
        asset = self._store.get_asset(asset_id)
        if asset is None:
            raise NotFoundError(f"Asset not found: {asset_id}", details={"asset_id": asset_id})
        if self._store.get_contact(contact_id) is None:
            raise NotFoundError(
                f"Contact not found: {contact_id}", details={"contact_id": contact_id}
            )

        result = classify_equity(
            market_value, payoff_amount, self._band_for(asset["organization_id"])
        )
        row = {
            "id": f"ea-{uuid.uuid4().hex[:12]}",
            "asset_id": asset_id,
            "contact_id": contact_id,
            "market_value": float(market_value),
            "payoff_amount": float(payoff_amount),
            "equity_amount": result["equityAmount"],
            "equity_percent": result["equityPercent"],
            "equity_type": result["equityType"],
            "valuation_source": valuation_source,
            "analysis_data": analysis_data or {},
            "created_at": to_iso(self._clock.now()),
        }
        self._store.insert_equity_analysis(row)
        self._tracker.enroll(asset_id)
        for src, dst in _ANALYSIS_HOPS:
            self._tracker.advance(asset_id, src, dst)
        logger.info(
            "Equity analysis %s for asset %s: %s (%.2f)",
            row["id"], asset_id, row["equity_type"], row["equity_amount"],
        )
        return analysis_to_public(row)

    def latest(self, asset_id: str) -> dict[str, Any] | None:
        row = self._store.get_latest_equity_analysis(asset_id)
        return analysis_to_public(row) if row else None

    async def _analyze_asset(self, asset: dict[str, Any], current_year: int) -> dict[str, Any]:
        if not asset.get("contact_id"):
            raise InvalidInputError(f"Asset {asset['id']} has no owner contact")

        self._tracker.enroll(asset["id"])
        valuation = await self._aggregator.get_multi_source_valuation(
            asset["vin"], int(asset["mileage"])
        )
        composite = valuation["composite"]
        age = max(0, current_year - int(asset["year"]))
        payoff = estimate_payoff(
            composite["retail"],
            age,
            term_months=self._config.loan_term_months,
            loan_to_value=self._config.loan_to_value,
        )
        analysis = self.analyze(
            asset["id"],
            asset["contact_id"],
            composite["tradeIn"],
            payoff,
            valuation_source=COMPOSITE_SOURCE,
            analysis_data={"valuation": valuation, "vehicleAgeYears": age},
        )
        return analysis

    async def batch_analyze(self, organization_id: str) -> dict[str, Any]:
        """Analyze every vehicle asset of an organization, one asset at a time.

        A failing asset is logged and counted; it never aborts the batch.
        """
        if self._store.get_organization(organization_id) is None:
            raise NotFoundError(
                f"Organization not found: {organization_id}",
                details={"organization_id": organization_id},
            )

        stats = {"processed": 0, "opportunities": 0, "errors": 0, "skipped": 0}
        rules = resolve_rules(self._store, organization_id)
        current_year = self._clock.now().year

        for asset in self._store.list_org_vehicle_assets(organization_id):
            reason = check_eligibility(asset, rules, current_year)
            if reason is not None:
                logger.info("Skipping asset %s: %s", asset["id"], reason)
                stats["skipped"] += 1
                continue
            try:
                analysis = await self._analyze_asset(asset, current_year)
            except Exception as exc:
                logger.error("Equity analysis failed for asset %s: %s", asset["id"], exc)
                stats["errors"] += 1
                continue
            stats["processed"] += 1
            if analysis["equityType"] == EQUITY_POSITIVE:
                stats["opportunities"] += 1

        logger.info(
            "Batch analysis for %s: processed=%d opportunities=%d errors=%d skipped=%d",
            organization_id,
            stats["processed"],
            stats["opportunities"],
            stats["errors"],
            stats["skipped"],
        )
        return stats
