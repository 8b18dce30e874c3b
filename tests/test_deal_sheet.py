"""Tests for deal sheet generation, retrieval, and presentation."""

from __future__ import annotations

import pytest

from tradeup_mcp.errors import NotFoundError, ProviderError, StateError


@pytest.fixture()
def analysis(services):
    return services.analyzer.analyze("as-demo-01", "ct-demo-01", 25000, 18000)


def _enroll_at_equity_calculated(services, asset_id: str = "as-demo-01") -> None:
    services.tracker.enroll(asset_id)
    for src, dst in (("ps-eq-01", "ps-eq-02"), ("ps-eq-02", "ps-eq-03"),
                     ("ps-eq-03", "ps-eq-04")):
        services.tracker.advance(asset_id, src, dst)


class TestGenerate:
    async def test_returns_html_and_generated_record(self, services, analysis):
        result = await services.deal_sheets.generate(analysis["id"])
        assert result["id"].startswith("ds-")
        html = result["html"]
        assert "INTERNAL DEAL SHEET" in html
        assert "Valuation Breakdown" in html
        assert "KBB" in html and "NADA" in html
        assert "Maria" in html
        assert "Honda" in html
        assert "$7,000.00" in html

        record = result["record"]
        assert record["status"] == "generated"
        assert record["equity_analysis_id"] == analysis["id"]
        assert record["organization_id"] == "org-demo-01"
        assert record["rendered_html"] == html

    async def test_snapshots(self, services, analysis):
        record = (await services.deal_sheets.generate(analysis["id"]))["record"]
        assert record["equity_summary"] == {
            "marketValue": 25000.0,
            "payoffAmount": 18000.0,
            "equityAmount": 7000.0,
            "equityType": "positive",
            "equityPercent": 28.0,
        }
        assert record["valuation_breakdown"]["composite"]["tradeIn"] == 22000
        specs = record["vehicle_specs"]
        assert specs["bodyClass"] == "Sedan/Saloon"
        assert specs["mileage"] == 38500
        assert specs["color"] == "Platinum White"

    async def test_recommendation_by_equity_type(self, services):
        positive = services.analyzer.analyze("as-demo-01", "ct-demo-01", 25000, 18000)
        negative = services.analyzer.analyze("as-demo-02", "ct-demo-02", 20000, 26000)
        pos = (await services.deal_sheets.generate(positive["id"]))["record"]
        neg = (await services.deal_sheets.generate(negative["id"]))["record"]
        assert pos["recommended_approach"].startswith(
            "Maria Lopez has $7,000.00 in positive equity on their 2021 Honda Accord."
        )
        assert neg["recommended_approach"].startswith(
            "James Carter has $6,000.00 in negative equity on their 2022 Ford F-150."
        )
        assert "Proceed with caution" in neg["recommended_approach"]

    async def test_decoder_failure_falls_back_to_asset(self, services, spec_decoder, analysis):
        spec_decoder.error = RuntimeError("vPIC unavailable")
        record = (await services.deal_sheets.generate(analysis["id"]))["record"]
        specs = record["vehicle_specs"]
        assert specs["make"] == "Honda"
        assert specs["model"] == "Accord"
        assert specs["bodyClass"] is None

    async def test_decoder_empty_result_falls_back(self, services, spec_decoder, analysis):
        spec_decoder.result = None
        record = (await services.deal_sheets.generate(analysis["id"]))["record"]
        assert record["vehicle_specs"]["trim"] == "Sport"

    async def test_fresh_valuation_is_used(self, services, providers, analysis):
        providers[0].quote_data["tradeIn"] = 31000
        record = (await services.deal_sheets.generate(analysis["id"]))["record"]
        assert record["valuation_breakdown"]["composite"]["tradeIn"] == 27000
        # equity summary still comes from the analysis
        assert record["equity_summary"]["marketValue"] == 25000

    async def test_provider_error_propagates(self, services, providers, analysis):
        providers[1].error = ConnectionError("down")
        with pytest.raises(ProviderError):
            await services.deal_sheets.generate(analysis["id"])

    async def test_unknown_analysis(self, services):
        with pytest.raises(NotFoundError):
            await services.deal_sheets.generate("ea-missing")

    async def test_customer_data_is_escaped(self, services):
        services.store.upsert_contact(
            {"id": "ct-demo-01", "first_name": "<script>alert(1)</script>", "last_name": "O'Neil"}
        )
        analysis = services.analyzer.analyze("as-demo-01", "ct-demo-01", 25000, 18000)
        html = (await services.deal_sheets.generate(analysis["id"]))["html"]
        assert "<script>alert(1)</script>" not in html
        assert "&lt;script&gt;" in html


class TestGetDealSheet:
    async def test_first_retrieval_marks_viewed(self, services, analysis, clock):
        ds_id = (await services.deal_sheets.generate(analysis["id"]))["id"]
        clock.advance(minutes=10)
        first = services.deal_sheets.get(ds_id)
        assert first["record"]["status"] == "viewed"
        assert first["record"]["viewed_at"] == "2026-01-15T12:10:00+00:00"
        assert first["html"] == first["record"]["rendered_html"]

        clock.advance(minutes=10)
        second = services.deal_sheets.get(ds_id)
        assert second["record"]["viewed_at"] == "2026-01-15T12:10:00+00:00"

    def test_unknown(self, services):
        with pytest.raises(NotFoundError):
            services.deal_sheets.get("ds-missing")


class TestMarkPresented:
    async def test_presented_advances_pipeline(self, services, analysis):
        _enroll_at_equity_calculated(services)
        ds_id = (await services.deal_sheets.generate(analysis["id"]))["id"]
        result = services.deal_sheets.mark_presented(ds_id, "sp-42")
        assert result["status"] == "presented"
        assert result["record"]["presented_by"] == "sp-42"
        assert result["record"]["presented_at"] is not None
        assert services.tracker.current_stage("as-demo-01")["pipeline_stage_id"] == "ps-eq-05"

    async def test_from_viewed(self, services, analysis):
        ds_id = (await services.deal_sheets.generate(analysis["id"]))["id"]
        services.deal_sheets.get(ds_id)
        assert services.deal_sheets.mark_presented(ds_id)["status"] == "presented"

    async def test_early_stage_record_jumps_to_offer_generated(self, services):
        services.store.insert_equity_analysis(
            {"id": "ea-imported", "asset_id": "as-demo-01", "contact_id": "ct-demo-01",
             "market_value": 25000, "payoff_amount": 18000, "equity_amount": 7000,
             "equity_percent": 28.0, "equity_type": "positive",
             "valuation_source": "manual", "created_at": "2026-01-15T12:00:00+00:00"}
        )
        services.tracker.enroll("as-demo-01")
        ds_id = (await services.deal_sheets.generate("ea-imported"))["id"]
        services.deal_sheets.mark_presented(ds_id)
        assert services.tracker.current_stage("as-demo-01")["pipeline_stage_id"] == "ps-eq-05"

    async def test_repeat_is_noop(self, services, analysis, clock):
        ds_id = (await services.deal_sheets.generate(analysis["id"]))["id"]
        first = services.deal_sheets.mark_presented(ds_id, "sp-1")
        clock.advance(hours=1)
        again = services.deal_sheets.mark_presented(ds_id, "sp-2")
        assert again["status"] == "presented"
        assert again["record"]["presented_at"] == first["record"]["presented_at"]
        assert again["record"]["presented_by"] == "sp-1"

    async def test_after_offer_sent_rejected(self, services, analysis):
        ds_id = (await services.deal_sheets.generate(analysis["id"]))["id"]
        services.deal_sheets.mark_presented(ds_id)
        services.deal_sheets.generate_client_offer(ds_id)
        with pytest.raises(StateError):
            services.deal_sheets.mark_presented(ds_id)

    def test_unknown(self, services):
        with pytest.raises(NotFoundError):
            services.deal_sheets.mark_presented("ds-missing")
