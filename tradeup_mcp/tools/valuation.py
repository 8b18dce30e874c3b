"""Vehicle valuation tool implementation."""

from __future__ import annotations

from tradeup_mcp.data.store import OpportunityStore
from tradeup_mcp.errors import NotFoundError, TradeUpError
from tradeup_mcp.tools.common import build_error_response, build_tool_response, require_text
from tradeup_mcp.valuation.aggregator import ValuationAggregator


async def get_asset_valuation_impl(
    store: OpportunityStore,
    aggregator: ValuationAggregator,
    *,
    asset_id: str,
    multi_source: bool = False,
) -> str:
    """Primary-source quote for an asset, or the full multi-source breakdown."""
    try:
        key = require_text("asset_id", asset_id)
        asset = store.get_asset(key)
        if asset is None:
            raise NotFoundError(f"Asset not found: {key}", details={"asset_id": key})
        if multi_source:
            valuation = await aggregator.get_multi_source_valuation(
                asset["vin"], asset["mileage"]
            )
        else:
            valuation = await aggregator.get_valuation(asset["vin"], asset["mileage"])
    except TradeUpError as exc:
        return build_error_response("get_asset_valuation", exc)
    return build_tool_response(
        "get_asset_valuation", {"asset_id": key, "vin": asset["vin"], "valuation": valuation}
    )
