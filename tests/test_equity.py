"""Tests for equity classification, payoff estimation, and eligibility rules."""

from __future__ import annotations

import pytest

from tradeup_mcp.data.store import SqliteOpportunityStore
from tradeup_mcp.equity.classifier import classify_equity, estimate_payoff
from tradeup_mcp.equity.eligibility import (
    DEFAULT_RULES,
    breakeven_band,
    check_eligibility,
    resolve_rules,
)
from tradeup_mcp.errors import InvalidInputError

BAND = (-500.0, 500.0)


class TestClassifyEquity:
    def test_positive_scenario(self):
        result = classify_equity(25000, 18000, BAND)
        assert result == {"equityAmount": 7000, "equityPercent": 28.0, "equityType": "positive"}

    def test_low_edge_is_breakeven(self):
        result = classify_equity(20000, 20500, BAND)
        assert result["equityAmount"] == -500
        assert result["equityType"] == "breakeven"
        assert result["equityPercent"] == -2.5

    def test_high_edge_is_breakeven(self):
        assert classify_equity(20500, 20000, BAND)["equityType"] == "breakeven"

    def test_just_outside_band(self):
        assert classify_equity(20500.01, 20000, BAND)["equityType"] == "positive"
        assert classify_equity(20000, 20500.01, BAND)["equityType"] == "negative"

    def test_amount_is_exact_difference(self):
        result = classify_equity(18765.43, 12000.21, BAND)
        assert result["equityAmount"] == 18765.43 - 12000.21

    def test_custom_band(self):
        assert classify_equity(20000, 19000, (-2000, 2000))["equityType"] == "breakeven"

    @pytest.mark.parametrize("market_value", [0, -100])
    def test_non_positive_market_value_rejected(self, market_value):
        with pytest.raises(InvalidInputError, match="greater than 0"):
            classify_equity(market_value, 1000, BAND)

    def test_non_numeric_rejected(self):
        with pytest.raises(InvalidInputError):
            classify_equity("lots", 1000, BAND)

    @pytest.mark.parametrize(
        ("market_value", "payoff"),
        [
            (float("nan"), 1000),
            (25000, float("nan")),
            (float("inf"), 1000),
            (25000, float("-inf")),
            ("nan", 1000),
        ],
    )
    def test_non_finite_rejected(self, market_value, payoff):
        with pytest.raises(InvalidInputError, match="finite"):
            classify_equity(market_value, payoff, BAND)

    def test_invalid_input_is_value_error(self):
        with pytest.raises(ValueError):
            classify_equity(0, 0, BAND)


class TestEstimatePayoff:
    def test_new_loan_is_ninety_percent_of_retail(self):
        assert estimate_payoff(30000, 0) == 27000

    def test_partial_term(self):
        # 2 years of 5 elapsed: 60% of the loan remains
        assert estimate_payoff(30000, 2) == 16200

    def test_elapsed_capped_at_term(self):
        assert estimate_payoff(30000, 5) == 0
        assert estimate_payoff(30000, 9) == 0


class TestEligibility:
    RULES = dict(DEFAULT_RULES)

    def _asset(self, **overrides):
        asset = {"id": "a", "vin": "1HGCV1F30MA012345", "year": 2021, "mileage": 40000}
        asset.update(overrides)
        return asset

    def test_eligible(self):
        assert check_eligibility(self._asset(), self.RULES, 2026) is None

    def test_missing_vin(self):
        assert check_eligibility(self._asset(vin=""), self.RULES, 2026) == "missing VIN"

    def test_malformed_vin(self):
        assert check_eligibility(self._asset(vin="SHORT"), self.RULES, 2026) == "malformed VIN"

    def test_missing_mileage(self):
        assert check_eligibility(self._asset(mileage=None), self.RULES, 2026) == "missing mileage"

    def test_age_bounds_inclusive(self):
        assert check_eligibility(self._asset(year=2025), self.RULES, 2026) is None
        assert check_eligibility(self._asset(year=2016), self.RULES, 2026) is None
        assert "age" in check_eligibility(self._asset(year=2026), self.RULES, 2026)
        assert "age" in check_eligibility(self._asset(year=2015), self.RULES, 2026)

    def test_mileage_bounds(self):
        assert check_eligibility(self._asset(mileage=150000), self.RULES, 2026) is None
        assert "mileage" in check_eligibility(self._asset(mileage=150001), self.RULES, 2026)

    def test_rules_merge_key_by_key(self, store: SqliteOpportunityStore):
        store.set_equity_rules("", {"maxMileage": 120000, "minVehicleAgeYears": 2})
        store.set_equity_rules("org-1", {"maxMileage": 90000})
        rules = resolve_rules(store, "org-1")
        assert rules["maxMileage"] == 90000
        assert rules["minVehicleAgeYears"] == 2
        assert rules["maxVehicleAgeYears"] == DEFAULT_RULES["maxVehicleAgeYears"]
        assert resolve_rules(store, "org-2")["maxMileage"] == 120000

    def test_defaults_without_stored_rules(self, store: SqliteOpportunityStore):
        assert resolve_rules(store, "org-1") == DEFAULT_RULES

    def test_breakeven_band_override(self):
        assert breakeven_band({"breakeven_high": 1000}, BAND) == (-500.0, 1000.0)
        assert breakeven_band({}, BAND) == BAND
