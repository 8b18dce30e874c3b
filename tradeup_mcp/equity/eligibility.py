"""Per-organization eligibility rules for batch equity analysis."""

from __future__ import annotations

from typing import Any

from tradeup_mcp.constants import VIN_RE
from tradeup_mcp.data.store import OpportunityStore

GLOBAL_RULES_KEY = ""

DEFAULT_RULES: dict[str, Any] = {
    "minVehicleAgeYears": 1,
    "maxVehicleAgeYears": 10,
    "minMileage": 0,
    "maxMileage": 150000,
}


def resolve_rules(store: OpportunityStore, organization_id: str) -> dict[str, Any]:
    """Built-in defaults, then the stored global rule set, then org overrides."""
    rules = dict(DEFAULT_RULES)
    rules.update(store.get_equity_rules(GLOBAL_RULES_KEY) or {})
    if organization_id:
        rules.update(store.get_equity_rules(organization_id) or {})
    return rules


def breakeven_band(rules: dict[str, Any], fallback: tuple[float, float]) -> tuple[float, float]:
    low = rules.get("breakeven_low", fallback[0])
    high = rules.get("breakeven_high", fallback[1])
    return (float(low), float(high))


def check_eligibility(
    asset: dict[str, Any], rules: dict[str, Any], current_year: int
) -> str | None:
    """Return the reason an asset is ineligible, or None when it qualifies."""
    vin = (asset.get("vin") or "").strip()
    if not vin:
        return "missing VIN"
    if not VIN_RE.match(vin):
        return "malformed VIN"
    mileage = asset.get("mileage")
    if mileage is None:
        return "missing mileage"
    year = asset.get("year")
    if year is None:
        return "missing model year"

    age = current_year - int(year)
    if not rules["minVehicleAgeYears"] <= age <= rules["maxVehicleAgeYears"]:
        return f"age {age} outside [{rules['minVehicleAgeYears']}, {rules['maxVehicleAgeYears']}]"
    if not rules["minMileage"] <= int(mileage) <= rules["maxMileage"]:
        return f"mileage {mileage} outside [{rules['minMileage']}, {rules['maxMileage']}]"
    return None
