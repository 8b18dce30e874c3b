"""Error taxonomy shared by every service module."""

from __future__ import annotations

from typing import Any


class TradeUpError(RuntimeError):
    """Base error with structured metadata for tool payloads."""

    code = "TRADEUP_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": str(self),
            "details": self.details,
        }


class NotFoundError(TradeUpError):
    """Unknown id or token."""

    code = "NOT_FOUND"


class StateError(TradeUpError):
    """Operation invalid for the record's current status."""

    code = "INVALID_STATE"


class InvalidInputError(TradeUpError, ValueError):
    """Malformed identifiers or out-of-range numeric input."""

    code = "INVALID_INPUT"


class ProviderError(TradeUpError):
    """External valuation or specification source unavailable or unusable."""

    code = "PROVIDER_ERROR"
