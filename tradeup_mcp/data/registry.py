"""Process-level store handle for the MCP server composition root.

Services never import this module; they receive a store explicitly.
"""

from __future__ import annotations

from tradeup_mcp.config import TradeUpConfig
from tradeup_mcp.data.store import OpportunityStore, SqliteOpportunityStore

_store: OpportunityStore | None = None


def get_store(config: TradeUpConfig | None = None) -> OpportunityStore:
    """Return the active OpportunityStore, creating + seeding if needed."""
    global _store  # noqa: PLW0603
    if _store is None:
        cfg = config or TradeUpConfig.from_env()
        store = SqliteOpportunityStore(cfg.db_path)
        if store.get_organization("org-demo-01") is None:
            from tradeup_mcp.data.seed import seed_demo_data
            seed_demo_data(store)
        _store = store
    return _store


def set_store(store: OpportunityStore | None) -> None:
    """Inject a store instance for testing."""
    global _store  # noqa: PLW0603
    _store = store
