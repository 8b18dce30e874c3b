"""Client offer tool implementations."""

from __future__ import annotations

from tradeup_mcp.deals.client_offer import ClientOfferIssuer
from tradeup_mcp.errors import TradeUpError
from tradeup_mcp.tools.common import build_error_response, build_tool_response, require_text


def generate_client_offer_impl(issuer: ClientOfferIssuer, *, deal_sheet_id: str) -> str:
    try:
        offer = issuer.issue(require_text("deal_sheet_id", deal_sheet_id))
    except TradeUpError as exc:
        return build_error_response("generate_client_offer", exc)
    return build_tool_response("generate_client_offer", offer)


def reissue_client_offer_impl(issuer: ClientOfferIssuer, *, deal_sheet_id: str) -> str:
    try:
        offer = issuer.reissue(require_text("deal_sheet_id", deal_sheet_id))
    except TradeUpError as exc:
        return build_error_response("reissue_client_offer", exc)
    return build_tool_response("reissue_client_offer", offer)


def resolve_client_offer_impl(issuer: ClientOfferIssuer, *, token: str) -> str:
    try:
        result = issuer.resolve(require_text("token", token))
    except TradeUpError as exc:
        return build_error_response("resolve_client_offer", exc)
    return build_tool_response("resolve_client_offer", result)


def revoke_client_offer_impl(issuer: ClientOfferIssuer, *, token: str) -> str:
    try:
        result = issuer.revoke(require_text("token", token))
    except TradeUpError as exc:
        return build_error_response("revoke_client_offer", exc)
    return build_tool_response("revoke_client_offer", result)


def list_client_offers_impl(issuer: ClientOfferIssuer, *, deal_sheet_id: str) -> str:
    try:
        key = require_text("deal_sheet_id", deal_sheet_id)
        tokens = issuer.list_tokens(key)
    except TradeUpError as exc:
        return build_error_response("list_client_offers", exc)
    return build_tool_response(
        "list_client_offers", {"deal_sheet_id": key, "count": len(tokens), "tokens": tokens}
    )
