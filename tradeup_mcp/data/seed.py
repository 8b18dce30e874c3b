"""Demo dealership, customers, and vehicles for local runs and tests."""

from __future__ import annotations

from typing import Any

from tradeup_mcp.data.store import OpportunityStore

DEMO_ORG_ID = "org-demo-01"

DEMO_ORGANIZATION: dict[str, Any] = {
    "id": DEMO_ORG_ID,
    "name": "Lakeside Motors",
    "phone": "(555) 010-2200",
    "website": "https://lakeside-motors.example",
}

DEMO_CONTACTS: list[dict[str, Any]] = [
    {"id": "ct-demo-01", "first_name": "Maria", "last_name": "Lopez",
     "email": "maria.lopez@example.com", "phone": "(555) 010-3101"},
    {"id": "ct-demo-02", "first_name": "James", "last_name": "Carter",
     "email": "james.carter@example.com", "phone": "(555) 010-3102"},
    {"id": "ct-demo-03", "first_name": "Priya", "last_name": "Shah",
     "email": "priya.shah@example.com", "phone": "(555) 010-3103"},
]

# VIN position 10 carries the model-year code used by the mock pricing sources.
DEMO_ASSETS: list[dict[str, Any]] = [
    {"id": "as-demo-01", "contact_id": "ct-demo-01", "vin": "1HGCV1F30MA012345",
     "year": 2021, "make": "Honda", "model": "Accord", "trim": "Sport",
     "mileage": 38500, "color": "Platinum White"},
    {"id": "as-demo-02", "contact_id": "ct-demo-02", "vin": "1FTFW1E50NFA23456",
     "year": 2022, "make": "Ford", "model": "F-150", "trim": "XLT",
     "mileage": 27100, "color": "Agate Black"},
    {"id": "as-demo-03", "contact_id": "ct-demo-03", "vin": "5YJ3E1EA4LF034567",
     "year": 2020, "make": "Tesla", "model": "Model 3", "trim": "Long Range",
     "mileage": 61200, "color": "Deep Blue"},
    # No VIN on file: skipped by the eligibility gate.
    {"id": "as-demo-04", "contact_id": "ct-demo-03", "vin": "",
     "year": 2019, "make": "Toyota", "model": "RAV4", "trim": "XLE",
     "mileage": 72000, "color": "Magnetic Gray"},
]


def seed_demo_data(store: OpportunityStore) -> int:
    """Insert the demo organization, contacts, and vehicle assets. Returns asset count."""
    store.upsert_organization(DEMO_ORGANIZATION)
    for contact in DEMO_CONTACTS:
        store.upsert_contact(contact)
    for asset in DEMO_ASSETS:
        store.upsert_asset({**asset, "organization_id": DEMO_ORG_ID})
    return len(DEMO_ASSETS)
