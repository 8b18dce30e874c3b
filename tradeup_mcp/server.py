"""TradeUp MCP server: FastMCP entry point for the equity opportunity pipeline."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from tradeup_mcp.config import TradeUpConfig
from tradeup_mcp.data.registry import get_store
from tradeup_mcp.services import Services, build_services
from tradeup_mcp.tools.common import log_and_return_tool_error
from tradeup_mcp.tools.deal_sheets import (
    generate_deal_sheet_impl,
    get_deal_sheet_impl,
    mark_presented_impl,
)
from tradeup_mcp.tools.equity import (
    analyze_equity_impl,
    batch_analyze_impl,
    get_equity_summary_impl,
    get_latest_equity_analysis_impl,
    set_equity_rules_impl,
)
from tradeup_mcp.tools.offers import (
    generate_client_offer_impl,
    list_client_offers_impl,
    reissue_client_offer_impl,
    resolve_client_offer_impl,
    revoke_client_offer_impl,
)
from tradeup_mcp.tools.pipeline import (
    advance_pipeline_stage_impl,
    get_pipeline_status_impl,
    get_pipeline_summary_impl,
)
from tradeup_mcp.tools.valuation import get_asset_valuation_impl

# Load .env from project root (no extra dependency)
_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
if _ENV_FILE.is_file():
    for line in _ENV_FILE.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            os.environ.setdefault(k.strip(), v.strip())

mcp = FastMCP("TradeUp")
logger = logging.getLogger(__name__)

_services: Services | None = None

_RETRY_MESSAGE = "Please try again in a moment."


def _get_services() -> Services:
    """Lazy accessor: builds the service graph around the registry store."""
    global _services  # noqa: PLW0603
    if _services is None:
        config = TradeUpConfig.from_env()
        _services = build_services(get_store(config), config=config)
    return _services


def set_services_override(services: Services | None) -> None:
    """Inject a service graph (e.g. with a fixed clock and fake providers) for testing."""
    global _services  # noqa: PLW0603
    _services = services


# ── Equity ──────────────────────────────────────────────────────────


@mcp.tool()
def analyze_equity(
    asset_id: str, contact_id: str, market_value: float, payoff_amount: float
) -> str:
    """Compute and store the equity position of one vehicle.

    Equity is market value minus loan payoff, classified as positive,
    breakeven, or negative against the organization's breakeven band.
    """
    try:
        return analyze_equity_impl(
            _get_services().analyzer,
            asset_id=asset_id,
            contact_id=contact_id,
            market_value=market_value,
            payoff_amount=payoff_amount,
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="analyze_equity",
            exc=exc,
            user_message=f"I am having trouble analyzing equity right now. {_RETRY_MESSAGE}",
        )


@mcp.tool()
async def batch_analyze(organization_id: str) -> str:
    """Analyze every eligible vehicle of a dealership and advance its pipeline record.

    Returns counts of processed, opportunities (positive equity), errors, and skipped.
    """
    try:
        return await batch_analyze_impl(
            _get_services().analyzer, organization_id=organization_id
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="batch_analyze",
            exc=exc,
            user_message=f"I am having trouble running the batch analysis. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def get_latest_equity_analysis(asset_id: str) -> str:
    """Return the most recent equity analysis for a vehicle."""
    try:
        return get_latest_equity_analysis_impl(_get_services().analyzer, asset_id=asset_id)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_latest_equity_analysis",
            exc=exc,
            user_message=f"I am having trouble loading that analysis. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def get_equity_summary(organization_id: str) -> str:
    """Dealership equity totals plus each vehicle with its latest analysis."""
    try:
        return get_equity_summary_impl(_get_services().store, organization_id=organization_id)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_equity_summary",
            exc=exc,
            user_message=f"I am having trouble loading the equity summary. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def set_equity_rules(rules: dict[str, Any], organization_id: str = "") -> str:
    """Set batch eligibility rules. Leave organization_id empty for the global default.

    Keys: minVehicleAgeYears, maxVehicleAgeYears, minMileage, maxMileage,
    breakeven_low, breakeven_high.
    """
    try:
        return set_equity_rules_impl(
            _get_services().store, organization_id=organization_id, rules=rules
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="set_equity_rules",
            exc=exc,
            user_message=f"I am having trouble saving those rules. {_RETRY_MESSAGE}",
        )


@mcp.tool()
async def get_asset_valuation(asset_id: str, multi_source: bool = False) -> str:
    """Price a vehicle from the primary source, or from every source with a composite."""
    try:
        services = _get_services()
        return await get_asset_valuation_impl(
            services.store, services.aggregator, asset_id=asset_id, multi_source=multi_source
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_asset_valuation",
            exc=exc,
            user_message=f"I am having trouble pricing that vehicle. {_RETRY_MESSAGE}",
        )


# ── Deal sheets ─────────────────────────────────────────────────────


@mcp.tool()
async def generate_deal_sheet(equity_analysis_id: str) -> str:
    """Generate the internal deal sheet for an equity analysis."""
    try:
        return await generate_deal_sheet_impl(
            _get_services().deal_sheets, equity_analysis_id=equity_analysis_id
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="generate_deal_sheet",
            exc=exc,
            user_message=f"I am having trouble generating the deal sheet. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def get_deal_sheet(deal_sheet_id: str) -> str:
    """Fetch a deal sheet. The first retrieval marks it as viewed."""
    try:
        return get_deal_sheet_impl(_get_services().deal_sheets, deal_sheet_id=deal_sheet_id)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_deal_sheet",
            exc=exc,
            user_message=f"I am having trouble loading that deal sheet. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def mark_presented(deal_sheet_id: str, presented_by: str = "") -> str:
    """Record that a salesperson presented the deal sheet to the customer."""
    try:
        return mark_presented_impl(
            _get_services().deal_sheets,
            deal_sheet_id=deal_sheet_id,
            presented_by=presented_by,
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="mark_presented",
            exc=exc,
            user_message=f"I am having trouble updating that deal sheet. {_RETRY_MESSAGE}",
        )


# ── Client offers ───────────────────────────────────────────────────


@mcp.tool()
def generate_client_offer(deal_sheet_id: str) -> str:
    """Issue the customer-facing offer link. The deal sheet must be presented first."""
    try:
        return generate_client_offer_impl(_get_services().offers, deal_sheet_id=deal_sheet_id)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="generate_client_offer",
            exc=exc,
            user_message=f"I am having trouble creating the client offer. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def reissue_client_offer(deal_sheet_id: str) -> str:
    """Replace a sent offer link with a fresh one; previous links are revoked."""
    try:
        return reissue_client_offer_impl(_get_services().offers, deal_sheet_id=deal_sheet_id)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="reissue_client_offer",
            exc=exc,
            user_message=f"I am having trouble re-issuing the client offer. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def resolve_client_offer(token: str) -> str:
    """Open a client offer by token. Expired or revoked links return expired=true."""
    try:
        return resolve_client_offer_impl(_get_services().offers, token=token)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="resolve_client_offer",
            exc=exc,
            user_message=f"I am having trouble loading that offer. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def revoke_client_offer(token: str) -> str:
    """Revoke a client offer link."""
    try:
        return revoke_client_offer_impl(_get_services().offers, token=token)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="revoke_client_offer",
            exc=exc,
            user_message=f"I am having trouble revoking that offer. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def list_client_offers(deal_sheet_id: str) -> str:
    """List every offer link issued for a deal sheet, newest (current) first."""
    try:
        return list_client_offers_impl(_get_services().offers, deal_sheet_id=deal_sheet_id)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="list_client_offers",
            exc=exc,
            user_message=f"I am having trouble listing offers. {_RETRY_MESSAGE}",
        )


# ── Pipeline ────────────────────────────────────────────────────────


@mcp.tool()
def get_pipeline_summary(organization_id: str) -> str:
    """Equity pipeline stages in order with the dealership's vehicle count per stage."""
    try:
        services = _get_services()
        return get_pipeline_summary_impl(
            services.store, services.tracker, organization_id=organization_id
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_pipeline_summary",
            exc=exc,
            user_message=f"I am having trouble loading the pipeline. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def get_pipeline_status(asset_id: str) -> str:
    """Current pipeline stage of one vehicle."""
    try:
        return get_pipeline_status_impl(_get_services().tracker, asset_id=asset_id)
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="get_pipeline_status",
            exc=exc,
            user_message=f"I am having trouble loading that pipeline record. {_RETRY_MESSAGE}",
        )


@mcp.tool()
def advance_pipeline_stage(asset_id: str, target_stage: str) -> str:
    """Move a vehicle to a later stage, e.g. customer_responded or converted."""
    try:
        return advance_pipeline_stage_impl(
            _get_services().tracker, asset_id=asset_id, target_stage=target_stage
        )
    except Exception as exc:
        return log_and_return_tool_error(
            tool_name="advance_pipeline_stage",
            exc=exc,
            user_message=f"I am having trouble advancing that vehicle. {_RETRY_MESSAGE}",
        )


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run()


if __name__ == "__main__":
    main()
