"""Unit tests for OpportunityStore protocol and SqliteOpportunityStore implementation."""

from __future__ import annotations

import sqlite3

import pytest

from tradeup_mcp.constants import (
    DS_CLIENT_OFFER_SENT,
    DS_GENERATED,
    DS_PRESENTED,
    DS_VIEWED,
    TOKEN_ACTIVE,
    TOKEN_EXPIRED,
    TOKEN_REVOKED,
)
from tradeup_mcp.data.seed import DEMO_ASSETS, DEMO_ORG_ID
from tradeup_mcp.data.store import OpportunityStore, SqliteOpportunityStore

T0 = "2026-01-15T12:00:00+00:00"
T1 = "2026-01-15T13:00:00+00:00"
T2 = "2026-01-15T14:00:00+00:00"


def _analysis(analysis_id: str, created_at: str, **overrides) -> dict:
    row = {
        "id": analysis_id,
        "asset_id": "as-demo-01",
        "contact_id": "ct-demo-01",
        "market_value": 25000,
        "payoff_amount": 18000,
        "equity_amount": 7000,
        "equity_percent": 28.0,
        "equity_type": "positive",
        "valuation_source": "manual",
        "created_at": created_at,
    }
    row.update(overrides)
    return row


def _deal_sheet(store: SqliteOpportunityStore, deal_sheet_id: str = "ds-1") -> None:
    store.insert_equity_analysis(_analysis("ea-1", T0))
    store.insert_deal_sheet(
        {
            "id": deal_sheet_id,
            "equity_analysis_id": "ea-1",
            "asset_id": "as-demo-01",
            "contact_id": "ct-demo-01",
            "organization_id": DEMO_ORG_ID,
            "vehicle_specs": {"vin": "1HGCV1F30MA012345", "make": "Honda"},
            "valuation_breakdown": {"composite": {"tradeIn": 22000}, "sources": []},
            "equity_summary": {"equityType": "positive", "equityAmount": 7000},
            "recommended_approach": "Call them.",
            "rendered_html": "<p>sheet</p>",
            "created_at": T0,
        }
    )


def _token_row(token: str, created_at: str = T0) -> dict:
    return {
        "id": f"cot-{token}",
        "deal_sheet_id": "ds-1",
        "token": token,
        "expires_at": "2026-02-14T12:00:00+00:00",
        "created_at": created_at,
    }


def _token(store: SqliteOpportunityStore, token: str, created_at: str = T0) -> None:
    store.insert_client_offer_token(_token_row(token, created_at))


# ── Protocol compliance ────────────────────────────────────────


class TestProtocolCompliance:
    def test_sqlite_store_satisfies_protocol(self, store: SqliteOpportunityStore):
        assert isinstance(store, OpportunityStore)


# ── Schema / reference data ────────────────────────────────────


class TestReferenceData:
    def test_equity_stages_seeded_in_order(self, store: SqliteOpportunityStore):
        stages = store.list_pipeline_stages()
        assert [s["id"] for s in stages] == [f"ps-eq-{i:02d}" for i in range(1, 11)]
        assert stages[0]["stage_name"] == "identified"
        assert stages[-1]["stage_name"] == "converted"
        assert [s["stage_order"] for s in stages] == list(range(1, 11))

    def test_reopening_schema_does_not_duplicate_stages(self, tmp_path):
        path = str(tmp_path / "tradeup.db")
        SqliteOpportunityStore(path).close()
        again = SqliteOpportunityStore(path)
        assert len(again.list_pipeline_stages()) == 10
        again.close()

    def test_asset_round_trip_normalizes_vin(self, seeded_store: SqliteOpportunityStore):
        seeded_store.upsert_asset(
            {
                "id": "as-x",
                "organization_id": DEMO_ORG_ID,
                "contact_id": "ct-demo-01",
                "vin": " 1hgcv1f30ma012345 ",
                "year": "2021",
                "mileage": "",
            }
        )
        asset = seeded_store.get_asset("as-x")
        assert asset["vin"] == "1HGCV1F30MA012345"
        assert asset["year"] == 2021
        assert asset["mileage"] is None
        assert asset["asset_type"] == "vehicle"

    def test_list_org_vehicle_assets(self, seeded_store: SqliteOpportunityStore):
        assets = seeded_store.list_org_vehicle_assets(DEMO_ORG_ID)
        assert len(assets) == len(DEMO_ASSETS)
        assert seeded_store.list_org_vehicle_assets("org-missing") == []

    def test_equity_rules_round_trip(self, store: SqliteOpportunityStore):
        assert store.get_equity_rules("") is None
        store.set_equity_rules("", {"maxMileage": 120000})
        store.set_equity_rules("", {"maxMileage": 100000})
        assert store.get_equity_rules("") == {"maxMileage": 100000}


# ── Equity analyses ────────────────────────────────────────────


class TestEquityAnalyses:
    def test_latest_is_most_recent_created(self, seeded_store: SqliteOpportunityStore):
        seeded_store.insert_equity_analysis(_analysis("ea-new", T2, equity_amount=9000))
        seeded_store.insert_equity_analysis(_analysis("ea-old", T0))
        assert seeded_store.get_latest_equity_analysis("as-demo-01")["id"] == "ea-new"

    def test_context_joins_asset_contact_and_org(self, seeded_store: SqliteOpportunityStore):
        seeded_store.insert_equity_analysis(_analysis("ea-1", T0))
        ctx = seeded_store.get_equity_analysis_context("ea-1")
        assert ctx["first_name"] == "Maria"
        assert ctx["make"] == "Honda"
        assert ctx["org_name"] == "Lakeside Motors"
        assert ctx["organization_id"] == DEMO_ORG_ID

    def test_org_summary_counts(self, seeded_store: SqliteOpportunityStore):
        seeded_store.insert_equity_analysis(_analysis("ea-1", T0))
        seeded_store.insert_equity_analysis(
            _analysis("ea-2", T1, asset_id="as-demo-02", contact_id="ct-demo-02",
                      equity_amount=-3000, equity_type="negative")
        )
        summary = seeded_store.get_org_equity_summary(DEMO_ORG_ID)
        assert summary["total"] == 2
        assert summary["positive_count"] == 1
        assert summary["negative_count"] == 1
        assert summary["breakeven_count"] == 0
        assert summary["total_equity"] == 4000
        assert summary["avg_equity"] == 2000

    def test_assets_with_latest_analysis(self, seeded_store: SqliteOpportunityStore):
        seeded_store.insert_equity_analysis(_analysis("ea-1", T0))
        seeded_store.insert_equity_analysis(_analysis("ea-2", T1, equity_amount=100,
                                                      equity_type="breakeven"))
        rows = {r["id"]: r for r in seeded_store.list_org_assets_with_latest_analysis(DEMO_ORG_ID)}
        assert rows["as-demo-01"]["analysis_id"] == "ea-2"
        assert rows["as-demo-02"]["analysis_id"] is None


# ── Pipeline records ───────────────────────────────────────────


class TestPipelineRecords:
    def test_create_is_unique_per_asset(self, seeded_store: SqliteOpportunityStore):
        assert seeded_store.create_pipeline_record(
            record_id="pr-1", asset_id="as-demo-01", stage_id="ps-eq-01", now=T0
        )
        assert not seeded_store.create_pipeline_record(
            record_id="pr-2", asset_id="as-demo-01", stage_id="ps-eq-01", now=T1
        )
        assert seeded_store.get_pipeline_record("as-demo-01")["id"] == "pr-1"

    def test_conditional_advance(self, seeded_store: SqliteOpportunityStore):
        seeded_store.create_pipeline_record(
            record_id="pr-1", asset_id="as-demo-01", stage_id="ps-eq-01", now=T0
        )
        assert seeded_store.advance_pipeline_record(
            asset_id="as-demo-01", from_stage_id="ps-eq-01", to_stage_id="ps-eq-02", now=T1
        )
        assert not seeded_store.advance_pipeline_record(
            asset_id="as-demo-01", from_stage_id="ps-eq-01", to_stage_id="ps-eq-02", now=T2
        )
        record = seeded_store.get_pipeline_record("as-demo-01")
        assert record["pipeline_stage_id"] == "ps-eq-02"
        assert record["entered_stage_at"] == T1
        assert record["created_at"] == T0

    def test_org_pipeline_summary_lists_every_stage(self, seeded_store: SqliteOpportunityStore):
        seeded_store.create_pipeline_record(
            record_id="pr-1", asset_id="as-demo-01", stage_id="ps-eq-01", now=T0
        )
        seeded_store.create_pipeline_record(
            record_id="pr-2", asset_id="as-demo-02", stage_id="ps-eq-01", now=T0
        )
        summary = seeded_store.get_org_pipeline_summary(DEMO_ORG_ID)
        assert len(summary) == 10
        assert summary[0]["record_count"] == 2
        assert sum(s["record_count"] for s in summary) == 2
        other = seeded_store.get_org_pipeline_summary("org-missing")
        assert sum(s["record_count"] for s in other) == 0


# ── Deal sheets ────────────────────────────────────────────────


class TestDealSheets:
    def test_snapshots_decode_as_dicts(self, seeded_store: SqliteOpportunityStore):
        _deal_sheet(seeded_store)
        ds = seeded_store.get_deal_sheet("ds-1")
        assert ds["status"] == DS_GENERATED
        assert ds["vehicle_specs"]["make"] == "Honda"
        assert ds["equity_summary"]["equityAmount"] == 7000

    def test_status_transitions_are_conditional(self, seeded_store: SqliteOpportunityStore):
        _deal_sheet(seeded_store)
        assert not seeded_store.issue_client_offer_token(_token_row("tok-early"), now=T1)
        assert seeded_store.get_client_offer_token("tok-early") is None
        assert seeded_store.mark_deal_sheet_viewed("ds-1", now=T1)
        assert not seeded_store.mark_deal_sheet_viewed("ds-1", now=T2)
        assert seeded_store.get_deal_sheet("ds-1")["status"] == DS_VIEWED

        assert seeded_store.mark_deal_sheet_presented("ds-1", now=T1, presented_by="sp-7")
        assert seeded_store.issue_client_offer_token(_token_row("tok-a"), now=T2)
        assert not seeded_store.mark_deal_sheet_presented("ds-1", now=T2)
        ds = seeded_store.get_deal_sheet("ds-1")
        assert ds["status"] == DS_CLIENT_OFFER_SENT
        assert ds["presented_by"] == "sp-7"
        assert ds["presented_at"] == T1
        assert seeded_store.get_client_offer_token("tok-a")["status"] == TOKEN_ACTIVE

    def test_issue_is_atomic(self, seeded_store: SqliteOpportunityStore):
        _deal_sheet(seeded_store)
        seeded_store.mark_deal_sheet_presented("ds-1", now=T1)
        _token(seeded_store, "tok-taken")
        with pytest.raises(sqlite3.IntegrityError):
            seeded_store.issue_client_offer_token(_token_row("tok-taken"), now=T2)
        assert seeded_store.get_deal_sheet("ds-1")["status"] == DS_PRESENTED
        assert len(seeded_store.list_client_offer_tokens("ds-1")) == 1

    def test_presented_without_presenter(self, seeded_store: SqliteOpportunityStore):
        _deal_sheet(seeded_store)
        assert seeded_store.mark_deal_sheet_presented("ds-1", now=T1)
        ds = seeded_store.get_deal_sheet("ds-1")
        assert ds["status"] == DS_PRESENTED
        assert ds["presented_by"] is None

    def test_offer_context(self, seeded_store: SqliteOpportunityStore):
        _deal_sheet(seeded_store)
        ctx = seeded_store.get_offer_context("ds-1")
        assert ctx["first_name"] == "Maria"
        assert ctx["org_phone"] == "(555) 010-2200"
        assert ctx["equity_summary"]["equityType"] == "positive"


# ── Client offer tokens ────────────────────────────────────────


class TestClientOfferTokens:
    def test_record_access_sets_first_once(self, seeded_store: SqliteOpportunityStore):
        _deal_sheet(seeded_store)
        _token(seeded_store, "tok-a")

        row, first = seeded_store.record_token_access("tok-a", now=T1)
        assert first is True
        assert row["access_count"] == 1
        assert row["first_accessed_at"] == row["last_accessed_at"] == T1

        row, first = seeded_store.record_token_access("tok-a", now=T2)
        assert first is False
        assert row["access_count"] == 2
        assert row["first_accessed_at"] == T1
        assert row["last_accessed_at"] == T2

    def test_record_access_unknown_token(self, seeded_store: SqliteOpportunityStore):
        with pytest.raises(KeyError):
            seeded_store.record_token_access("nope", now=T1)

    def test_list_newest_first(self, seeded_store: SqliteOpportunityStore):
        _deal_sheet(seeded_store)
        _token(seeded_store, "tok-old", T0)
        _token(seeded_store, "tok-new", T1)
        tokens = seeded_store.list_client_offer_tokens("ds-1")
        assert [t["token"] for t in tokens] == ["tok-new", "tok-old"]

    def test_status_changes(self, seeded_store: SqliteOpportunityStore):
        _deal_sheet(seeded_store)
        _token(seeded_store, "tok-a")
        _token(seeded_store, "tok-b", T1)
        assert seeded_store.set_token_status("tok-a", TOKEN_EXPIRED, from_statuses=(TOKEN_ACTIVE,))
        assert not seeded_store.set_token_status(
            "tok-a", TOKEN_EXPIRED, from_statuses=(TOKEN_ACTIVE,)
        )
        assert seeded_store.revoke_active_tokens("ds-1") == 1
        assert seeded_store.get_client_offer_token("tok-a")["status"] == TOKEN_EXPIRED
        assert seeded_store.get_client_offer_token("tok-b")["status"] == TOKEN_REVOKED
