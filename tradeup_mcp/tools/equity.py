"""Equity analysis tool implementations."""

from __future__ import annotations

from typing import Any

from tradeup_mcp.data.store import OpportunityStore
from tradeup_mcp.equity.analyzer import EquityAnalyzer
from tradeup_mcp.equity.eligibility import GLOBAL_RULES_KEY, resolve_rules
from tradeup_mcp.errors import InvalidInputError, NotFoundError, TradeUpError
from tradeup_mcp.tools.common import build_error_response, build_tool_response, require_text

_RULE_KEYS = (
    "minVehicleAgeYears",
    "maxVehicleAgeYears",
    "minMileage",
    "maxMileage",
    "breakeven_low",
    "breakeven_high",
)


def analyze_equity_impl(
    analyzer: EquityAnalyzer,
    *,
    asset_id: str,
    contact_id: str,
    market_value: float,
    payoff_amount: float,
) -> str:
    """Classify one vehicle's equity and persist the analysis."""
    try:
        analysis = analyzer.analyze(
            require_text("asset_id", asset_id),
            require_text("contact_id", contact_id),
            market_value,
            payoff_amount,
        )
    except TradeUpError as exc:
        return build_error_response("analyze_equity", exc)
    return build_tool_response("analyze_equity", analysis)


async def batch_analyze_impl(analyzer: EquityAnalyzer, *, organization_id: str) -> str:
    try:
        stats = await analyzer.batch_analyze(require_text("organization_id", organization_id))
    except TradeUpError as exc:
        return build_error_response("batch_analyze", exc)
    return build_tool_response("batch_analyze", stats)


def get_latest_equity_analysis_impl(analyzer: EquityAnalyzer, *, asset_id: str) -> str:
    try:
        key = require_text("asset_id", asset_id)
        analysis = analyzer.latest(key)
        if analysis is None:
            raise NotFoundError(f"No equity analysis for asset: {key}", details={"asset_id": key})
    except TradeUpError as exc:
        return build_error_response("get_latest_equity_analysis", exc)
    return build_tool_response("get_latest_equity_analysis", analysis)


def get_equity_summary_impl(store: OpportunityStore, *, organization_id: str) -> str:
    """Organization totals plus every vehicle with its latest analysis."""
    try:
        org_id = require_text("organization_id", organization_id)
        if store.get_organization(org_id) is None:
            raise NotFoundError(
                f"Organization not found: {org_id}", details={"organization_id": org_id}
            )
    except TradeUpError as exc:
        return build_error_response("get_equity_summary", exc)
    return build_tool_response(
        "get_equity_summary",
        {
            "organization_id": org_id,
            "summary": store.get_org_equity_summary(org_id),
            "assets": store.list_org_assets_with_latest_analysis(org_id),
        },
    )


def set_equity_rules_impl(
    store: OpportunityStore,
    *,
    organization_id: str = GLOBAL_RULES_KEY,
    rules: dict[str, Any],
) -> str:
    """Store eligibility overrides. An empty organization id sets the global default."""
    try:
        unknown = sorted(set(rules) - set(_RULE_KEYS))
        if unknown:
            raise InvalidInputError(
                f"Unknown rule keys: {', '.join(unknown)}", details={"allowed": list(_RULE_KEYS)}
            )
        cleaned: dict[str, Any] = {}
        for key, value in rules.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidInputError(f"Rule {key} must be a number", details={key: value})
            cleaned[key] = value
        org_id = (organization_id or "").strip()
        if org_id and store.get_organization(org_id) is None:
            raise NotFoundError(
                f"Organization not found: {org_id}", details={"organization_id": org_id}
            )
    except TradeUpError as exc:
        return build_error_response("set_equity_rules", exc)

    store.set_equity_rules(org_id, cleaned)
    return build_tool_response(
        "set_equity_rules",
        {"organization_id": org_id, "effective_rules": resolve_rules(store, org_id)},
    )
