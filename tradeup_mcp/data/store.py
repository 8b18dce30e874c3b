"""OpportunityStore protocol and SQLite implementation for the equity pipeline."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from typing import (
    Any,
    Protocol,
    runtime_checkable,
)

from tradeup_mcp.constants import (
    ASSET_TYPE_VEHICLE,
    DS_CLIENT_OFFER_SENT,
    DS_GENERATED,
    DS_PRESENTED,
    DS_VIEWED,
    EQUITY_NEGATIVE,
    EQUITY_PIPELINE,
    EQUITY_POSITIVE,
    EQUITY_BREAKEVEN,
    EQUITY_STAGES,
    TOKEN_ACTIVE,
    TOKEN_REVOKED,
)

# JSON-encoded snapshot columns on deal_sheets.
_DEAL_SHEET_JSON_FIELDS = ("vehicle_specs", "valuation_breakdown", "equity_summary")

ASSET_FIELDS = (
    "id", "organization_id", "contact_id", "asset_type", "vin", "year",
    "make", "model", "trim", "mileage", "color",
)


# ── Protocol ────────────────────────────────────────────────────────


@runtime_checkable
class OpportunityStore(Protocol):
    """Minimal interface for opportunity persistence."""

    # Reference data
    def upsert_organization(self, organization: dict[str, Any]) -> None: ...
    def get_organization(self, organization_id: str) -> dict[str, Any] | None: ...
    def upsert_contact(self, contact: dict[str, Any]) -> None: ...
    def get_contact(self, contact_id: str) -> dict[str, Any] | None: ...
    def upsert_asset(self, asset: dict[str, Any]) -> None: ...
    def get_asset(self, asset_id: str) -> dict[str, Any] | None: ...
    def list_org_vehicle_assets(self, organization_id: str) -> list[dict[str, Any]]: ...
    def set_equity_rules(self, organization_id: str, rules: dict[str, Any]) -> None: ...
    def get_equity_rules(self, organization_id: str) -> dict[str, Any] | None: ...

    # Equity analyses
    def insert_equity_analysis(self, analysis: dict[str, Any]) -> None: ...
    def get_equity_analysis(self, analysis_id: str) -> dict[str, Any] | None: ...
    def get_equity_analysis_context(self, analysis_id: str) -> dict[str, Any] | None: ...
    def get_latest_equity_analysis(self, asset_id: str) -> dict[str, Any] | None: ...
    def list_org_assets_with_latest_analysis(
        self, organization_id: str
    ) -> list[dict[str, Any]]: ...
    def get_org_equity_summary(self, organization_id: str) -> dict[str, Any]: ...

    # Pipeline
    def list_pipeline_stages(self, pipeline_name: str = EQUITY_PIPELINE) -> list[dict[str, Any]]: ...
    def get_pipeline_record(
        self, asset_id: str, pipeline_name: str = EQUITY_PIPELINE
    ) -> dict[str, Any] | None: ...
    def create_pipeline_record(
        self,
        *,
        record_id: str,
        asset_id: str,
        stage_id: str,
        now: str,
        pipeline_name: str = EQUITY_PIPELINE,
    ) -> bool: ...
    def advance_pipeline_record(
        self,
        *,
        asset_id: str,
        from_stage_id: str,
        to_stage_id: str,
        now: str,
        pipeline_name: str = EQUITY_PIPELINE,
    ) -> bool: ...
    def get_org_pipeline_summary(
        self, organization_id: str, pipeline_name: str = EQUITY_PIPELINE
    ) -> list[dict[str, Any]]: ...

    # Deal sheets
    def insert_deal_sheet(self, deal_sheet: dict[str, Any]) -> None: ...
    def get_deal_sheet(self, deal_sheet_id: str) -> dict[str, Any] | None: ...
    def mark_deal_sheet_viewed(self, deal_sheet_id: str, *, now: str) -> bool: ...
    def mark_deal_sheet_presented(
        self, deal_sheet_id: str, *, now: str, presented_by: str | None = None
    ) -> bool: ...
    def touch_deal_sheet(self, deal_sheet_id: str, *, now: str) -> None: ...
    def get_offer_context(self, deal_sheet_id: str) -> dict[str, Any] | None: ...

    # Client offer tokens
    def insert_client_offer_token(self, token: dict[str, Any]) -> None: ...
    def issue_client_offer_token(self, token: dict[str, Any], *, now: str) -> bool: ...
    def get_client_offer_token(self, token: str) -> dict[str, Any] | None: ...
    def list_client_offer_tokens(self, deal_sheet_id: str) -> list[dict[str, Any]]: ...
    def record_token_access(self, token: str, *, now: str) -> tuple[dict[str, Any], bool]: ...
    def set_token_status(
        self, token: str, status: str, *, from_statuses: tuple[str, ...]
    ) -> bool: ...
    def revoke_active_tokens(self, deal_sheet_id: str) -> int: ...


class SqliteOpportunityStore:
    """SQLite-backed opportunity store with WAL mode and foreign keys."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA temp_store=MEMORY")
            self._create_schema()
            self._seed_pipeline_stages()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Schema ─────────────────────────────────────────────────────

    def _create_schema(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS organizations (
                id              TEXT PRIMARY KEY,
                name            TEXT NOT NULL,
                phone           TEXT NOT NULL DEFAULT '',
                website         TEXT NOT NULL DEFAULT '',
                created_at      TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS contacts (
                id              TEXT PRIMARY KEY,
                first_name      TEXT NOT NULL DEFAULT '',
                last_name       TEXT NOT NULL DEFAULT '',
                email           TEXT NOT NULL DEFAULT '',
                phone           TEXT NOT NULL DEFAULT '',
                created_at      TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS assets (
                id              TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                contact_id      TEXT NOT NULL,
                asset_type      TEXT NOT NULL DEFAULT 'vehicle',
                vin             TEXT NOT NULL DEFAULT '',
                year            INTEGER,
                make            TEXT NOT NULL DEFAULT '',
                model           TEXT NOT NULL DEFAULT '',
                trim            TEXT NOT NULL DEFAULT '',
                mileage         INTEGER,
                color           TEXT NOT NULL DEFAULT '',
                created_at      TEXT NOT NULL,
                FOREIGN KEY (organization_id) REFERENCES organizations(id),
                FOREIGN KEY (contact_id) REFERENCES contacts(id)
            );

            CREATE TABLE IF NOT EXISTS equity_rules (
                organization_id TEXT PRIMARY KEY,
                rules           TEXT NOT NULL DEFAULT '{}',
                updated_at      TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS equity_analyses (
                id              TEXT PRIMARY KEY,
                asset_id        TEXT NOT NULL,
                contact_id      TEXT NOT NULL,
                market_value    REAL NOT NULL,
                payoff_amount   REAL NOT NULL,
                equity_amount   REAL NOT NULL,
                equity_percent  REAL NOT NULL,
                equity_type     TEXT NOT NULL,
                valuation_source TEXT NOT NULL DEFAULT '',
                analysis_data   TEXT NOT NULL DEFAULT '{}',
                created_at      TEXT NOT NULL,
                FOREIGN KEY (asset_id) REFERENCES assets(id),
                FOREIGN KEY (contact_id) REFERENCES contacts(id)
            );

            CREATE TABLE IF NOT EXISTS pipeline_stages (
                id              TEXT PRIMARY KEY,
                pipeline_name   TEXT NOT NULL,
                stage_name      TEXT NOT NULL,
                stage_order     INTEGER NOT NULL,
                description     TEXT NOT NULL DEFAULT '',
                UNIQUE (pipeline_name, stage_order)
            );

            CREATE TABLE IF NOT EXISTS pipeline_records (
                id                TEXT PRIMARY KEY,
                asset_id          TEXT NOT NULL,
                pipeline_name     TEXT NOT NULL,
                pipeline_stage_id TEXT NOT NULL,
                entered_stage_at  TEXT NOT NULL,
                created_at        TEXT NOT NULL,
                updated_at        TEXT NOT NULL,
                UNIQUE (asset_id, pipeline_name),
                FOREIGN KEY (asset_id) REFERENCES assets(id),
                FOREIGN KEY (pipeline_stage_id) REFERENCES pipeline_stages(id)
            );

            CREATE TABLE IF NOT EXISTS deal_sheets (
                id                  TEXT PRIMARY KEY,
                equity_analysis_id  TEXT NOT NULL,
                asset_id            TEXT NOT NULL,
                contact_id          TEXT NOT NULL,
                organization_id     TEXT NOT NULL,
                vehicle_specs       TEXT NOT NULL DEFAULT '{}',
                valuation_breakdown TEXT NOT NULL DEFAULT '{}',
                equity_summary      TEXT NOT NULL DEFAULT '{}',
                recommended_approach TEXT NOT NULL DEFAULT '',
                rendered_html       TEXT NOT NULL DEFAULT '',
                status              TEXT NOT NULL DEFAULT 'generated',
                presented_at        TEXT,
                presented_by        TEXT,
                viewed_at           TEXT,
                created_at          TEXT NOT NULL,
                updated_at          TEXT NOT NULL,
                FOREIGN KEY (equity_analysis_id) REFERENCES equity_analyses(id)
            );

            CREATE TABLE IF NOT EXISTS client_offer_tokens (
                id                TEXT PRIMARY KEY,
                deal_sheet_id     TEXT NOT NULL,
                token             TEXT NOT NULL UNIQUE,
                status            TEXT NOT NULL DEFAULT 'active',
                expires_at        TEXT NOT NULL,
                first_accessed_at TEXT,
                last_accessed_at  TEXT,
                access_count      INTEGER NOT NULL DEFAULT 0,
                created_at        TEXT NOT NULL,
                FOREIGN KEY (deal_sheet_id) REFERENCES deal_sheets(id)
            );

            CREATE INDEX IF NOT EXISTS idx_assets_organization
                ON assets(organization_id, asset_type);
            CREATE INDEX IF NOT EXISTS idx_equity_analyses_asset_created
                ON equity_analyses(asset_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_pipeline_records_stage
                ON pipeline_records(pipeline_stage_id);
            CREATE INDEX IF NOT EXISTS idx_deal_sheets_asset
                ON deal_sheets(asset_id);
            CREATE INDEX IF NOT EXISTS idx_client_offer_tokens_deal_sheet
                ON client_offer_tokens(deal_sheet_id, created_at);
        """)

    def _seed_pipeline_stages(self) -> None:
        self._conn.executemany(
            """INSERT OR IGNORE INTO pipeline_stages
               (id, pipeline_name, stage_name, stage_order, description)
               VALUES (?, ?, ?, ?, ?)""",
            [
                (stage_id, EQUITY_PIPELINE, name, order, description)
                for order, (stage_id, name, description) in enumerate(EQUITY_STAGES, start=1)
            ],
        )
        self._conn.commit()

    # ── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _as_text(value: Any, default: str = "") -> str:
        if value is None:
            return default
        if isinstance(value, str):
            return value
        return str(value)

    @staticmethod
    def _as_optional_int(value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str) and not value.strip():
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _load_json(raw: Any, default: Any) -> Any:
        if raw is None or raw == "":
            return default
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return default

    @classmethod
    def _deal_sheet_row_to_dict(cls, row: sqlite3.Row) -> dict[str, Any]:
        d = dict(row)
        for key in _DEAL_SHEET_JSON_FIELDS:
            d[key] = cls._load_json(d.get(key), {})
        return d

    @classmethod
    def _analysis_row_to_dict(cls, row: sqlite3.Row) -> dict[str, Any]:
        d = dict(row)
        if "analysis_data" in d:
            d["analysis_data"] = cls._load_json(d["analysis_data"], {})
        return d

    # ── Reference data ─────────────────────────────────────────────

    def upsert_organization(self, organization: dict[str, Any]) -> None:
        g = organization.get
        with self._lock:
            self._conn.execute(
                """INSERT INTO organizations (id, name, phone, website, created_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name,
                       phone = excluded.phone,
                       website = excluded.website""",
                (
                    self._as_text(g("id")),
                    self._as_text(g("name")),
                    self._as_text(g("phone")),
                    self._as_text(g("website")),
                    self._as_text(g("created_at")) or self._now(),
                ),
            )
            self._conn.commit()

    def get_organization(self, organization_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM organizations WHERE id = ?", (organization_id,)
            ).fetchone()
        return dict(row) if row else None

    def upsert_contact(self, contact: dict[str, Any]) -> None:
        g = contact.get
        with self._lock:
            self._conn.execute(
                """INSERT INTO contacts (id, first_name, last_name, email, phone, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       first_name = excluded.first_name,
                       last_name = excluded.last_name,
                       email = excluded.email,
                       phone = excluded.phone""",
                (
                    self._as_text(g("id")),
                    self._as_text(g("first_name")),
                    self._as_text(g("last_name")),
                    self._as_text(g("email")),
                    self._as_text(g("phone")),
                    self._as_text(g("created_at")) or self._now(),
                ),
            )
            self._conn.commit()

    def get_contact(self, contact_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM contacts WHERE id = ?", (contact_id,)
            ).fetchone()
        return dict(row) if row else None

    def upsert_asset(self, asset: dict[str, Any]) -> None:
        g = asset.get
        _t = self._as_text
        _oi = self._as_optional_int
        with self._lock:
            self._conn.execute(
                """INSERT INTO assets (
                       id, organization_id, contact_id, asset_type, vin, year,
                       make, model, trim, mileage, color, created_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       organization_id = excluded.organization_id,
                       contact_id = excluded.contact_id,
                       asset_type = excluded.asset_type,
                       vin = excluded.vin,
                       year = excluded.year,
                       make = excluded.make,
                       model = excluded.model,
                       trim = excluded.trim,
                       mileage = excluded.mileage,
                       color = excluded.color""",
                (
                    _t(g("id")),
                    _t(g("organization_id")),
                    _t(g("contact_id")),
                    _t(g("asset_type"), ASSET_TYPE_VEHICLE) or ASSET_TYPE_VEHICLE,
                    _t(g("vin")).strip().upper(),
                    _oi(g("year")),
                    _t(g("make")),
                    _t(g("model")),
                    _t(g("trim")),
                    _oi(g("mileage")),
                    _t(g("color")),
                    _t(g("created_at")) or self._now(),
                ),
            )
            self._conn.commit()

    def get_asset(self, asset_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {', '.join(ASSET_FIELDS)} FROM assets WHERE id = ?",
                (asset_id,),
            ).fetchone()
        return dict(row) if row else None

    def list_org_vehicle_assets(self, organization_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT {', '.join(ASSET_FIELDS)} FROM assets
                    WHERE organization_id = ? AND asset_type = ?
                    ORDER BY created_at, id""",
                (organization_id, ASSET_TYPE_VEHICLE),
            ).fetchall()
        return [dict(r) for r in rows]

    def set_equity_rules(self, organization_id: str, rules: dict[str, Any]) -> None:
        """Store a rule set. ``organization_id=""`` is the global default."""
        with self._lock:
            self._conn.execute(
                """INSERT INTO equity_rules (organization_id, rules, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(organization_id) DO UPDATE SET
                       rules = excluded.rules,
                       updated_at = excluded.updated_at""",
                (organization_id, json.dumps(rules), self._now()),
            )
            self._conn.commit()

    def get_equity_rules(self, organization_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT rules FROM equity_rules WHERE organization_id = ?",
                (organization_id,),
            ).fetchone()
        if not row:
            return None
        parsed = self._load_json(row["rules"], {})
        return parsed if isinstance(parsed, dict) else {}

    # ── Equity analyses ────────────────────────────────────────────

    def insert_equity_analysis(self, analysis: dict[str, Any]) -> None:
        """Insert an immutable analysis row. There is no update counterpart."""
        with self._lock:
            self._conn.execute(
                """INSERT INTO equity_analyses (
                       id, asset_id, contact_id, market_value, payoff_amount,
                       equity_amount, equity_percent, equity_type, valuation_source,
                       analysis_data, created_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    analysis["id"],
                    analysis["asset_id"],
                    analysis["contact_id"],
                    float(analysis["market_value"]),
                    float(analysis["payoff_amount"]),
                    float(analysis["equity_amount"]),
                    float(analysis["equity_percent"]),
                    analysis["equity_type"],
                    analysis.get("valuation_source", ""),
                    json.dumps(analysis.get("analysis_data") or {}),
                    analysis["created_at"],
                ),
            )
            self._conn.commit()

    def get_equity_analysis(self, analysis_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM equity_analyses WHERE id = ?", (analysis_id,)
            ).fetchone()
        return self._analysis_row_to_dict(row) if row else None

    def get_equity_analysis_context(self, analysis_id: str) -> dict[str, Any] | None:
        """Analysis joined with its asset, contact, and organization."""
        with self._lock:
            row = self._conn.execute(
                """SELECT ea.*,
                          a.vin, a.year, a.make, a.model, a.trim, a.mileage, a.color,
                          a.organization_id,
                          c.first_name, c.last_name, c.email, c.phone,
                          o.name AS org_name, o.phone AS org_phone,
                          o.website AS org_website
                   FROM equity_analyses ea
                   JOIN assets a ON ea.asset_id = a.id
                   JOIN contacts c ON ea.contact_id = c.id
                   LEFT JOIN organizations o ON a.organization_id = o.id
                   WHERE ea.id = ?""",
                (analysis_id,),
            ).fetchone()
        return self._analysis_row_to_dict(row) if row else None

    def get_latest_equity_analysis(self, asset_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                """SELECT * FROM equity_analyses
                   WHERE asset_id = ?
                   ORDER BY created_at DESC, rowid DESC
                   LIMIT 1""",
                (asset_id,),
            ).fetchone()
        return self._analysis_row_to_dict(row) if row else None

    def list_org_assets_with_latest_analysis(
        self, organization_id: str
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """SELECT a.id, a.vin, a.year, a.make, a.model, a.trim, a.mileage,
                          a.color, a.contact_id,
                          c.first_name, c.last_name, c.email,
                          ea.id AS analysis_id, ea.market_value, ea.payoff_amount,
                          ea.equity_amount, ea.equity_percent, ea.equity_type,
                          ea.created_at AS analysis_date
                   FROM assets a
                   LEFT JOIN contacts c ON a.contact_id = c.id
                   LEFT JOIN equity_analyses ea ON ea.id = (
                       SELECT ea2.id FROM equity_analyses ea2
                       WHERE ea2.asset_id = a.id
                       ORDER BY ea2.created_at DESC, ea2.rowid DESC
                       LIMIT 1
                   )
                   WHERE a.organization_id = ? AND a.asset_type = ?
                   ORDER BY a.year DESC, a.make, a.model""",
                (organization_id, ASSET_TYPE_VEHICLE),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_org_equity_summary(self, organization_id: str) -> dict[str, Any]:
        with self._lock:
            row = self._conn.execute(
                """SELECT
                       COUNT(*) AS total,
                       COUNT(CASE WHEN ea.equity_type = ? THEN 1 END) AS positive_count,
                       COUNT(CASE WHEN ea.equity_type = ? THEN 1 END) AS negative_count,
                       COUNT(CASE WHEN ea.equity_type = ? THEN 1 END) AS breakeven_count,
                       COALESCE(SUM(ea.equity_amount), 0) AS total_equity,
                       COALESCE(AVG(ea.equity_amount), 0) AS avg_equity
                   FROM equity_analyses ea
                   JOIN assets a ON ea.asset_id = a.id
                   WHERE a.organization_id = ?""",
                (EQUITY_POSITIVE, EQUITY_NEGATIVE, EQUITY_BREAKEVEN, organization_id),
            ).fetchone()
        summary = dict(row)
        summary["total_equity"] = round(float(summary["total_equity"]), 2)
        summary["avg_equity"] = round(float(summary["avg_equity"]), 2)
        return summary

    # ── Pipeline ───────────────────────────────────────────────────

    def list_pipeline_stages(self, pipeline_name: str = EQUITY_PIPELINE) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """SELECT id, pipeline_name, stage_name, stage_order, description
                   FROM pipeline_stages
                   WHERE pipeline_name = ?
                   ORDER BY stage_order""",
                (pipeline_name,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_pipeline_record(
        self, asset_id: str, pipeline_name: str = EQUITY_PIPELINE
    ) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                """SELECT pr.*, ps.stage_name, ps.stage_order
                   FROM pipeline_records pr
                   JOIN pipeline_stages ps ON ps.id = pr.pipeline_stage_id
                   WHERE pr.asset_id = ? AND pr.pipeline_name = ?""",
                (asset_id, pipeline_name),
            ).fetchone()
        return dict(row) if row else None

    def create_pipeline_record(
        self,
        *,
        record_id: str,
        asset_id: str,
        stage_id: str,
        now: str,
        pipeline_name: str = EQUITY_PIPELINE,
    ) -> bool:
        """Insert the asset's record unless one already exists for the pipeline."""
        with self._lock:
            cursor = self._conn.execute(
                """INSERT OR IGNORE INTO pipeline_records (
                       id, asset_id, pipeline_name, pipeline_stage_id,
                       entered_stage_at, created_at, updated_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (record_id, asset_id, pipeline_name, stage_id, now, now, now),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def advance_pipeline_record(
        self,
        *,
        asset_id: str,
        from_stage_id: str,
        to_stage_id: str,
        now: str,
        pipeline_name: str = EQUITY_PIPELINE,
    ) -> bool:
        """Move the record only if it currently sits in ``from_stage_id``."""
        with self._lock:
            cursor = self._conn.execute(
                """UPDATE pipeline_records
                   SET pipeline_stage_id = ?, entered_stage_at = ?, updated_at = ?
                   WHERE asset_id = ? AND pipeline_name = ? AND pipeline_stage_id = ?""",
                (to_stage_id, now, now, asset_id, pipeline_name, from_stage_id),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def get_org_pipeline_summary(
        self, organization_id: str, pipeline_name: str = EQUITY_PIPELINE
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """SELECT ps.id, ps.stage_name, ps.stage_order, ps.description,
                          COUNT(pr.id) AS record_count
                   FROM pipeline_stages ps
                   LEFT JOIN pipeline_records pr
                       ON pr.pipeline_stage_id = ps.id
                      AND pr.asset_id IN (
                          SELECT a.id FROM assets a WHERE a.organization_id = ?
                      )
                   WHERE ps.pipeline_name = ?
                   GROUP BY ps.id, ps.stage_name, ps.stage_order, ps.description
                   ORDER BY ps.stage_order""",
                (organization_id, pipeline_name),
            ).fetchall()
        return [dict(r) for r in rows]

    # ── Deal sheets ────────────────────────────────────────────────

    def insert_deal_sheet(self, deal_sheet: dict[str, Any]) -> None:
        with self._lock:
            self._conn.execute(
                """INSERT INTO deal_sheets (
                       id, equity_analysis_id, asset_id, contact_id, organization_id,
                       vehicle_specs, valuation_breakdown, equity_summary,
                       recommended_approach, rendered_html, status,
                       created_at, updated_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    deal_sheet["id"],
                    deal_sheet["equity_analysis_id"],
                    deal_sheet["asset_id"],
                    deal_sheet["contact_id"],
                    deal_sheet["organization_id"],
                    json.dumps(deal_sheet["vehicle_specs"]),
                    json.dumps(deal_sheet["valuation_breakdown"]),
                    json.dumps(deal_sheet["equity_summary"]),
                    deal_sheet["recommended_approach"],
                    deal_sheet["rendered_html"],
                    deal_sheet.get("status", DS_GENERATED),
                    deal_sheet["created_at"],
                    deal_sheet["created_at"],
                ),
            )
            self._conn.commit()

    def get_deal_sheet(self, deal_sheet_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM deal_sheets WHERE id = ?", (deal_sheet_id,)
            ).fetchone()
        return self._deal_sheet_row_to_dict(row) if row else None

    def mark_deal_sheet_viewed(self, deal_sheet_id: str, *, now: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                """UPDATE deal_sheets
                   SET status = ?, viewed_at = ?, updated_at = ?
                   WHERE id = ? AND status = ?""",
                (DS_VIEWED, now, now, deal_sheet_id, DS_GENERATED),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def mark_deal_sheet_presented(
        self, deal_sheet_id: str, *, now: str, presented_by: str | None = None
    ) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                """UPDATE deal_sheets
                   SET status = ?, presented_at = ?,
                       presented_by = COALESCE(?, presented_by),
                       updated_at = ?
                   WHERE id = ? AND status IN (?, ?)""",
                (
                    DS_PRESENTED,
                    now,
                    presented_by,
                    now,
                    deal_sheet_id,
                    DS_GENERATED,
                    DS_VIEWED,
                ),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def touch_deal_sheet(self, deal_sheet_id: str, *, now: str) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE deal_sheets SET updated_at = ? WHERE id = ?",
                (now, deal_sheet_id),
            )
            self._conn.commit()

    def get_offer_context(self, deal_sheet_id: str) -> dict[str, Any] | None:
        """Deal sheet joined with current contact, asset, and organization data."""
        with self._lock:
            row = self._conn.execute(
                """SELECT ds.*,
                          c.first_name, c.last_name, c.email, c.phone,
                          a.year, a.make, a.model, a.trim, a.vin,
                          o.name AS org_name, o.phone AS org_phone,
                          o.website AS org_website
                   FROM deal_sheets ds
                   JOIN contacts c ON c.id = ds.contact_id
                   JOIN assets a ON a.id = ds.asset_id
                   LEFT JOIN organizations o ON o.id = ds.organization_id
                   WHERE ds.id = ?""",
                (deal_sheet_id,),
            ).fetchone()
        return self._deal_sheet_row_to_dict(row) if row else None

    # ── Client offer tokens ────────────────────────────────────────

    def _insert_token_row(self, token: dict[str, Any]) -> None:
        self._conn.execute(
            """INSERT INTO client_offer_tokens (
                   id, deal_sheet_id, token, status, expires_at,
                   access_count, created_at
               ) VALUES (?, ?, ?, ?, ?, 0, ?)""",
            (
                token["id"],
                token["deal_sheet_id"],
                token["token"],
                token.get("status", TOKEN_ACTIVE),
                token["expires_at"],
                token["created_at"],
            ),
        )

    def insert_client_offer_token(self, token: dict[str, Any]) -> None:
        with self._lock:
            self._insert_token_row(token)
            self._conn.commit()

    def issue_client_offer_token(self, token: dict[str, Any], *, now: str) -> bool:
        """Insert the first token and move its deal sheet presented -> client_offer_sent.

        Both writes commit together. Returns False, writing nothing, when the
        sheet is no longer ``presented``; a failed insert leaves the sheet as is.
        """
        with self._lock, self._conn:
            self._insert_token_row(token)
            cursor = self._conn.execute(
                """UPDATE deal_sheets
                   SET status = ?, updated_at = ?
                   WHERE id = ? AND status = ?""",
                (DS_CLIENT_OFFER_SENT, now, token["deal_sheet_id"], DS_PRESENTED),
            )
            if cursor.rowcount == 0:
                self._conn.rollback()
                return False
        return True

    def get_client_offer_token(self, token: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM client_offer_tokens WHERE token = ?", (token,)
            ).fetchone()
        return dict(row) if row else None

    def list_client_offer_tokens(self, deal_sheet_id: str) -> list[dict[str, Any]]:
        """All tokens for a deal sheet, newest first."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT * FROM client_offer_tokens
                   WHERE deal_sheet_id = ?
                   ORDER BY created_at DESC, rowid DESC""",
                (deal_sheet_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def record_token_access(self, token: str, *, now: str) -> tuple[dict[str, Any], bool]:
        """Count one successful access. Returns (updated row, is_first_access)."""
        with self._lock:
            before = self._conn.execute(
                "SELECT first_accessed_at FROM client_offer_tokens WHERE token = ?",
                (token,),
            ).fetchone()
            if before is None:
                raise KeyError(token)
            is_first = before["first_accessed_at"] is None
            self._conn.execute(
                """UPDATE client_offer_tokens
                   SET first_accessed_at = COALESCE(first_accessed_at, ?),
                       last_accessed_at = ?,
                       access_count = access_count + 1
                   WHERE token = ?""",
                (now, now, token),
            )
            self._conn.commit()
            row = self._conn.execute(
                "SELECT * FROM client_offer_tokens WHERE token = ?", (token,)
            ).fetchone()
        return dict(row), is_first

    def set_token_status(
        self, token: str, status: str, *, from_statuses: tuple[str, ...]
    ) -> bool:
        if not from_statuses:
            return False
        placeholders = ", ".join("?" for _ in from_statuses)
        with self._lock:
            cursor = self._conn.execute(
                f"""UPDATE client_offer_tokens
                    SET status = ?
                    WHERE token = ? AND status IN ({placeholders})""",
                (status, token, *from_statuses),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def revoke_active_tokens(self, deal_sheet_id: str) -> int:
        with self._lock:
            cursor = self._conn.execute(
                """UPDATE client_offer_tokens
                   SET status = ?
                   WHERE deal_sheet_id = ? AND status = ?""",
                (TOKEN_REVOKED, deal_sheet_id, TOKEN_ACTIVE),
            )
            self._conn.commit()
            return cursor.rowcount
