"""Jinja2 document renderer for deal sheets and client offers.

Autoescaping is always on: every interpolated value is customer or dealer
data and is treated as untrusted text.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")

INTERNAL_DEAL_SHEET = "internal_deal_sheet.html"
CLIENT_OFFER = "client_offer.html"

PLACEHOLDER = "—"


def format_currency(value: Any) -> str:
    """``12345.5`` -> ``$12,345.50``; negatives as ``-$500.00``."""
    if value is None or value == "":
        return PLACEHOLDER
    amount = float(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_long_date(value: datetime | None) -> str:
    """``2026-11-16`` -> ``November 16, 2026``."""
    if value is None:
        return PLACEHOLDER
    return f"{value:%B} {value.day}, {value.year}"


def or_placeholder(value: Any) -> Any:
    if value is None or value == "":
        return PLACEHOLDER
    return value


def _build_environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        autoescape=select_autoescape(enabled_extensions=("html",), default=True),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["currency"] = format_currency
    env.filters["long_date"] = format_long_date
    env.filters["or_dash"] = or_placeholder
    return env


_env = _build_environment()


def render(template_name: str, data: dict[str, Any]) -> str:
    """Render a template with ``data``. Pure: no I/O beyond the template load."""
    return _env.get_template(template_name).render(**data)
