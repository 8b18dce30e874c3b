"""Shared helpers for tool implementations: JSON payloads and error shaping."""

from __future__ import annotations

import json
import logging
from typing import Any

from tradeup_mcp.errors import InvalidInputError, TradeUpError

logger = logging.getLogger(__name__)


def build_tool_response(tool_name: str, data: Any) -> str:
    payload = {
        "_tool": tool_name,
        "_meta": {"schema_version": 1},
        "data": data,
    }
    return json.dumps(payload, indent=2, default=str)


def build_error_response(tool_name: str, exc: TradeUpError) -> str:
    return json.dumps({"_tool": tool_name, **exc.to_payload()}, indent=2, default=str)


def log_and_return_tool_error(*, tool_name: str, exc: Exception, user_message: str) -> str:
    """Log an unexpected failure and return a generic, non-leaking payload."""
    logger.exception("Tool %s failed: %s", tool_name, exc)
    return json.dumps(
        {"_tool": tool_name, "error": True, "code": "INTERNAL_ERROR", "message": user_message},
        indent=2,
    )


def require_text(name: str, value: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidInputError(f"{name} is required.", details={"field": name})
    return cleaned
