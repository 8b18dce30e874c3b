"""Shared external API clients."""

from tradeup_mcp.clients.nhtsa import (
    SHARED_NHTSA_CACHE,
    NHTSAClient,
    NHTSASpecDecoder,
)

__all__ = [
    "NHTSAClient",
    "NHTSASpecDecoder",
    "SHARED_NHTSA_CACHE",
]
