"""Token-gated client offers: issuance, resolution, access tracking, revocation."""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any

from tradeup_mcp.clock import Clock, SystemClock, parse_iso, to_iso
from tradeup_mcp.config import TradeUpConfig
from tradeup_mcp.constants import (
    DS_CLIENT_OFFER_SENT,
    DS_PRESENTED,
    EQUITY_POSITIVE,
    STAGE_OFFER_OPENED,
    STAGE_OFFER_SENT,
    TOKEN_ACTIVE,
    TOKEN_EXPIRED,
    TOKEN_REVOKED,
)
from tradeup_mcp.data.store import OpportunityStore
from tradeup_mcp.deals.messages import build_client_message
from tradeup_mcp.deals.rendering import CLIENT_OFFER, render
from tradeup_mcp.errors import NotFoundError, StateError
from tradeup_mcp.pipeline.tracker import PipelineTracker

logger = logging.getLogger(__name__)

BRAND_PRIMARY_COLOR = "#333333"
BRAND_SECONDARY_COLOR = "#555555"

_TOKEN_BYTES = 32


def render_client_offer(context: dict[str, Any], token: str, expires_at: datetime) -> str:
    """Render the customer page from a deal sheet's frozen equity summary."""
    summary = context["equity_summary"]
    equity_type = summary.get("equityType")
    equity_amount = float(summary.get("equityAmount") or 0)
    return render(
        CLIENT_OFFER,
        {
            "first_name": context.get("first_name") or "",
            "last_name": context.get("last_name") or "",
            "year": context.get("year") or "",
            "make": context.get("make") or "",
            "model": context.get("model") or "",
            "market_value": summary.get("marketValue"),
            "equity_amount": abs(equity_amount),
            "show_equity": equity_type == EQUITY_POSITIVE,
            "client_message": build_client_message(equity_type, equity_amount),
            "token": token,
            "expires_at": expires_at,
            "brand_primary_color": BRAND_PRIMARY_COLOR,
            "brand_secondary_color": BRAND_SECONDARY_COLOR,
            "dealership_name": context.get("org_name") or "Dealership",
            "dealership_phone": context.get("org_phone") or "",
            "dealership_website": context.get("org_website") or "",
        },
    )


class ClientOfferIssuer:
    def __init__(
        self,
        store: OpportunityStore,
        *,
        tracker: PipelineTracker | None = None,
        clock: Clock | None = None,
        config: TradeUpConfig | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or TradeUpConfig()
        self._tracker = tracker or PipelineTracker(store, self._clock)

    def _require_deal_sheet(self, deal_sheet_id: str) -> dict[str, Any]:
        deal_sheet = self._store.get_deal_sheet(deal_sheet_id)
        if deal_sheet is None:
            raise NotFoundError(
                f"Deal sheet not found: {deal_sheet_id}",
                details={"deal_sheet_id": deal_sheet_id},
            )
        return deal_sheet

    def _prepare_token(
        self, deal_sheet_id: str, now: datetime
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Render the offer page and build its token row. Nothing is written."""
        context = self._store.get_offer_context(deal_sheet_id)
        if context is None:
            raise NotFoundError(
                "Could not load contact/asset data for client offer",
                details={"deal_sheet_id": deal_sheet_id},
            )
        token = secrets.token_urlsafe(_TOKEN_BYTES)
        expires_at = now + timedelta(days=self._config.offer_ttl_days)
        html = render_client_offer(context, token, expires_at)
        row = {
            "id": f"cot-{uuid.uuid4().hex[:12]}",
            "deal_sheet_id": deal_sheet_id,
            "token": token,
            "status": TOKEN_ACTIVE,
            "expires_at": to_iso(expires_at),
            "created_at": to_iso(now),
        }
        return row, {"token": token, "url": self._config.offer_url(token), "html": html}

    def issue(self, deal_sheet_id: str) -> dict[str, Any]:
        """Issue the first client offer for a presented deal sheet."""
        deal_sheet = self._require_deal_sheet(deal_sheet_id)
        if deal_sheet["status"] != DS_PRESENTED:
            raise StateError(
                "Deal sheet must be presented before generating client offer",
                details={"deal_sheet_id": deal_sheet_id, "status": deal_sheet["status"]},
            )

        now = self._clock.now()
        row, offer = self._prepare_token(deal_sheet_id, now)
        if not self._store.issue_client_offer_token(row, now=to_iso(now)):
            current = self._require_deal_sheet(deal_sheet_id)
            raise StateError(
                "Deal sheet must be presented before generating client offer",
                details={"deal_sheet_id": deal_sheet_id, "status": current["status"]},
            )
        self._tracker.advance_to(deal_sheet["asset_id"], STAGE_OFFER_SENT)
        logger.info("Client offer issued for deal sheet %s", deal_sheet_id)
        return offer

    def reissue(self, deal_sheet_id: str) -> dict[str, Any]:
        """Replace the live link of an already-sent offer. Older links stop working."""
        deal_sheet = self._require_deal_sheet(deal_sheet_id)
        if deal_sheet["status"] != DS_CLIENT_OFFER_SENT:
            raise StateError(
                "Client offer can only be re-issued after it has been sent",
                details={"deal_sheet_id": deal_sheet_id, "status": deal_sheet["status"]},
            )
        now = self._clock.now()
        row, offer = self._prepare_token(deal_sheet_id, now)
        revoked = self._store.revoke_active_tokens(deal_sheet_id)
        self._store.insert_client_offer_token(row)
        self._store.touch_deal_sheet(deal_sheet_id, now=to_iso(now))
        logger.info(
            "Client offer re-issued for deal sheet %s (%d token(s) revoked)",
            deal_sheet_id,
            revoked,
        )
        return {**offer, "revoked": revoked}

    def resolve(self, token: str) -> dict[str, Any]:
        """Public lookup of an offer page by its token.

        Expired and revoked tokens are a normal result, not an error.
        """
        record = self._store.get_client_offer_token(token)
        if record is None:
            raise NotFoundError("Offer not found")

        if record["status"] == TOKEN_REVOKED:
            logger.warning("Revoked client offer token resolved (%s)", record["id"])
            return {"html": None, "expired": True}

        now = self._clock.now()
        expires_at = parse_iso(record["expires_at"])
        if record["status"] == TOKEN_EXPIRED or expires_at is None or expires_at < now:
            self._store.set_token_status(token, TOKEN_EXPIRED, from_statuses=(TOKEN_ACTIVE,))
            logger.warning("Expired client offer token resolved (%s)", record["id"])
            return {"html": None, "expired": True}

        _, is_first = self._store.record_token_access(token, now=to_iso(now))
        context = self._store.get_offer_context(record["deal_sheet_id"])
        if context is None:
            raise NotFoundError("Offer not found")
        html = render_client_offer(context, token, expires_at)

        if is_first:
            self._tracker.advance(context["asset_id"], STAGE_OFFER_SENT, STAGE_OFFER_OPENED)
            logger.info("Client offer %s opened for the first time", record["id"])
        return {"html": html, "expired": False}

    def revoke(self, token: str) -> dict[str, Any]:
        record = self._store.get_client_offer_token(token)
        if record is None:
            raise NotFoundError("Offer not found")
        changed = self._store.set_token_status(
            token, TOKEN_REVOKED, from_statuses=(TOKEN_ACTIVE, TOKEN_EXPIRED)
        )
        if changed:
            logger.info("Client offer token %s revoked", record["id"])
        return {"token": token, "status": TOKEN_REVOKED, "revoked": changed}

    def list_tokens(self, deal_sheet_id: str) -> list[dict[str, Any]]:
        """All tokens of a deal sheet, newest first; the first one is current."""
        self._require_deal_sheet(deal_sheet_id)
        tokens = self._store.list_client_offer_tokens(deal_sheet_id)
        return [{**t, "current": i == 0} for i, t in enumerate(tokens)]
