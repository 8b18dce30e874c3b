"""Fixed message templates selected by equity type."""

from __future__ import annotations

from tradeup_mcp.constants import EQUITY_BREAKEVEN, EQUITY_POSITIVE
from tradeup_mcp.deals.rendering import format_currency

SOURCE_DISPLAY_NAMES = {
    "kbb_mock": "KBB",
    "nada_mock": "NADA",
    "blackbook_mock": "Blackbook",
}


def source_display_name(source: str) -> str:
    return SOURCE_DISPLAY_NAMES.get(source, source)


def build_recommendation(
    equity_type: str, equity_amount: float, customer_name: str, vehicle: str
) -> str:
    """Sales-facing recommendation with talking points."""
    magnitude = format_currency(abs(float(equity_amount)))

    if equity_type == EQUITY_POSITIVE:
        return (
            f"{customer_name} has {magnitude} in positive equity on their {vehicle}. "
            "This is a strong trade-up candidate.\n\n"
            "Talking points:\n"
            "- Their vehicle is worth more than they owe, so the equity can go toward a new purchase\n"
            "- Current market conditions favor pre-owned vehicles like theirs\n"
            "- Highlight monthly payment reduction potential or upgrade options\n"
            "- Create urgency: market values fluctuate, now is a great time to act"
        )
    if equity_type == EQUITY_BREAKEVEN:
        return (
            f"{customer_name} is near breakeven on their {vehicle}. "
            "With the right incentive, this is still a viable opportunity.\n\n"
            "Talking points:\n"
            "- Their loan is nearly paid down to the vehicle's current value\n"
            "- Even a small incentive or rebate could tip the balance\n"
            "- Focus on the benefits of a newer vehicle (warranty, features, safety)\n"
            '- Present as a low-pressure "no cost to switch" opportunity'
        )
    return (
        f"{customer_name} has {magnitude} in negative equity on their {vehicle}. "
        "Proceed with caution.\n\n"
        "Talking points:\n"
        "- Negative equity can be rolled into a new loan if the customer is motivated\n"
        "- Focus on situations where the customer needs a different vehicle "
        "(growing family, commute change)\n"
        "- Manufacturer rebates or dealer incentives may offset the gap\n"
        "- Only pursue if the customer expresses genuine interest in upgrading"
    )


def build_client_message(equity_type: str, equity_amount: float) -> str:
    """Customer-safe message. Only positive equity is ever stated as a figure."""
    if equity_type == EQUITY_POSITIVE:
        return (
            "Great news! Based on our analysis, your vehicle has built up "
            f"{format_currency(abs(float(equity_amount)))} in equity. "
            "This means your vehicle is worth more than what you owe on it. "
            "You could use this equity toward a newer model, lower your monthly "
            "payments, or both. Now is an excellent time to take advantage of "
            "strong market demand for pre-owned vehicles like yours."
        )
    if equity_type == EQUITY_BREAKEVEN:
        return (
            "Based on current market conditions, your vehicle's value closely "
            "matches your remaining balance. This puts you in a great position to "
            "upgrade to a newer model with little to no additional cost. We'd love "
            "to show you what's possible. Stop by for a test drive and let us walk "
            "you through your options."
        )
    return (
        "We've been keeping an eye on market conditions for vehicles like yours. "
        "While the market continues to evolve, we have some exciting options that "
        "could work well for your situation. We'd love to sit down with you and "
        "explore the possibilities. Schedule a visit to see what we can do for you."
    )
