"""Shared constants used across the pipeline, deal-sheet, and offer modules.

Single source of truth for stage ids, status values, and the VIN regex.
"""

from __future__ import annotations

import re

VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$", re.IGNORECASE)

EQUITY_PIPELINE = "equity"

# (stage id, stage name, description) in pipeline order.
EQUITY_STAGES: tuple[tuple[str, str, str], ...] = (
    ("ps-eq-01", "identified", "Vehicle and owner identified from dealer records"),
    ("ps-eq-02", "data_enriched", "Vehicle data decoded and enriched"),
    ("ps-eq-03", "valuation_complete", "Multi-source market valuation obtained"),
    ("ps-eq-04", "equity_calculated", "Equity position calculated"),
    ("ps-eq-05", "offer_generated", "Deal sheet presented and offer prepared"),
    ("ps-eq-06", "offer_sent", "Client offer link issued to the customer"),
    ("ps-eq-07", "offer_opened", "Customer opened the client offer"),
    ("ps-eq-08", "customer_responded", "Customer responded to the offer"),
    ("ps-eq-09", "appointment_set", "Appointment scheduled with the customer"),
    ("ps-eq-10", "converted", "Trade-up sale completed"),
)

STAGE_IDS: dict[str, str] = {name: stage_id for stage_id, name, _ in EQUITY_STAGES}
STAGE_ORDER: dict[str, int] = {
    stage_id: order for order, (stage_id, _, _) in enumerate(EQUITY_STAGES, start=1)
}

STAGE_IDENTIFIED = STAGE_IDS["identified"]
STAGE_DATA_ENRICHED = STAGE_IDS["data_enriched"]
STAGE_VALUATION_COMPLETE = STAGE_IDS["valuation_complete"]
STAGE_EQUITY_CALCULATED = STAGE_IDS["equity_calculated"]
STAGE_OFFER_GENERATED = STAGE_IDS["offer_generated"]
STAGE_OFFER_SENT = STAGE_IDS["offer_sent"]
STAGE_OFFER_OPENED = STAGE_IDS["offer_opened"]

EQUITY_POSITIVE = "positive"
EQUITY_BREAKEVEN = "breakeven"
EQUITY_NEGATIVE = "negative"
EQUITY_TYPES = (EQUITY_POSITIVE, EQUITY_BREAKEVEN, EQUITY_NEGATIVE)

# Deal sheet status machine.
DS_GENERATED = "generated"
DS_VIEWED = "viewed"
DS_PRESENTED = "presented"
DS_CLIENT_OFFER_SENT = "client_offer_sent"

# Client offer token status.
TOKEN_ACTIVE = "active"
TOKEN_EXPIRED = "expired"
TOKEN_REVOKED = "revoked"

ASSET_TYPE_VEHICLE = "vehicle"
