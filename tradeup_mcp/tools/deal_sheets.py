"""Deal sheet tool implementations."""

from __future__ import annotations

from typing import Any

from tradeup_mcp.deals.deal_sheet import DealSheetService
from tradeup_mcp.errors import TradeUpError
from tradeup_mcp.tools.common import build_error_response, build_tool_response, require_text


def _record_summary(record: dict[str, Any]) -> dict[str, Any]:
    """Deal sheet record without the rendered document (returned separately)."""
    return {k: v for k, v in record.items() if k != "rendered_html"}


async def generate_deal_sheet_impl(
    service: DealSheetService, *, equity_analysis_id: str
) -> str:
    try:
        result = await service.generate(require_text("equity_analysis_id", equity_analysis_id))
    except TradeUpError as exc:
        return build_error_response("generate_deal_sheet", exc)
    return build_tool_response(
        "generate_deal_sheet",
        {"id": result["id"], "html": result["html"], "record": _record_summary(result["record"])},
    )


def get_deal_sheet_impl(service: DealSheetService, *, deal_sheet_id: str) -> str:
    try:
        result = service.get(require_text("deal_sheet_id", deal_sheet_id))
    except TradeUpError as exc:
        return build_error_response("get_deal_sheet", exc)
    return build_tool_response(
        "get_deal_sheet",
        {"record": _record_summary(result["record"]), "html": result["html"]},
    )


def mark_presented_impl(
    service: DealSheetService, *, deal_sheet_id: str, presented_by: str = ""
) -> str:
    try:
        result = service.mark_presented(
            require_text("deal_sheet_id", deal_sheet_id),
            presented_by.strip() or None,
        )
    except TradeUpError as exc:
        return build_error_response("mark_presented", exc)
    return build_tool_response(
        "mark_presented",
        {"record": _record_summary(result["record"]), "status": result["status"]},
    )
