"""Per-asset position in the equity opportunity pipeline."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from tradeup_mcp.clock import Clock, SystemClock, to_iso
from tradeup_mcp.constants import (
    EQUITY_PIPELINE,
    STAGE_IDS,
    STAGE_ORDER,
)
from tradeup_mcp.data.store import OpportunityStore
from tradeup_mcp.errors import InvalidInputError

logger = logging.getLogger(__name__)

# target stage -> stages a record may currently occupy to move there
TRANSITIONS: dict[str, tuple[str, ...]] = {
    "ps-eq-02": ("ps-eq-01",),
    "ps-eq-03": ("ps-eq-02",),
    "ps-eq-04": ("ps-eq-03",),
    "ps-eq-05": ("ps-eq-01", "ps-eq-02", "ps-eq-03", "ps-eq-04"),
    "ps-eq-06": ("ps-eq-04", "ps-eq-05"),
    "ps-eq-07": ("ps-eq-06",),
    "ps-eq-08": ("ps-eq-07",),
    "ps-eq-09": ("ps-eq-08",),
    "ps-eq-10": ("ps-eq-09",),
}


def resolve_stage_id(stage: str) -> str:
    """Accept either a stage id (``ps-eq-04``) or a stage name (``equity_calculated``)."""
    if stage in STAGE_ORDER:
        return stage
    if stage in STAGE_IDS:
        return STAGE_IDS[stage]
    raise InvalidInputError(
        f"Unknown pipeline stage: {stage}", details={"stages": list(STAGE_IDS)}
    )


class PipelineTracker:
    """Moves pipeline records forward. Never backward, never duplicated."""

    def __init__(
        self,
        store: OpportunityStore,
        clock: Clock | None = None,
        *,
        pipeline_name: str = EQUITY_PIPELINE,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._pipeline = pipeline_name

    def enroll(self, asset_id: str) -> bool:
        """Create the asset's record at the first stage. False if already enrolled."""
        created = self._store.create_pipeline_record(
            record_id=f"pr-{uuid.uuid4().hex[:12]}",
            asset_id=asset_id,
            stage_id=STAGE_IDS["identified"],
            now=to_iso(self._clock.now()),
            pipeline_name=self._pipeline,
        )
        if created:
            logger.info("Enrolled asset %s in %s pipeline", asset_id, self._pipeline)
        return created

    def advance(self, asset_id: str, from_stage_id: str, to_stage_id: str) -> bool:
        """Move the record from ``from_stage_id`` to ``to_stage_id``.

        Returns False without touching anything when the record is not
        currently in ``from_stage_id``, so redundant calls are harmless.
        """
        src = resolve_stage_id(from_stage_id)
        dst = resolve_stage_id(to_stage_id)
        if STAGE_ORDER[dst] <= STAGE_ORDER[src]:
            raise InvalidInputError(
                f"Pipeline stages only move forward ({src} -> {dst})",
                details={"from": src, "to": dst},
            )
        moved = self._store.advance_pipeline_record(
            asset_id=asset_id,
            from_stage_id=src,
            to_stage_id=dst,
            now=to_iso(self._clock.now()),
            pipeline_name=self._pipeline,
        )
        if moved:
            logger.info("Asset %s advanced %s -> %s", asset_id, src, dst)
        return moved

    def advance_to(self, asset_id: str, target_stage: str) -> bool:
        """Advance from wherever the record is, if the transition table allows it."""
        target = resolve_stage_id(target_stage)
        candidates = TRANSITIONS.get(target, ())
        record = self._store.get_pipeline_record(asset_id, self._pipeline)
        if record is None:
            return False
        current = record["pipeline_stage_id"]
        if current not in candidates:
            return False
        return self.advance(asset_id, current, target)

    def current_stage(self, asset_id: str) -> dict[str, Any] | None:
        return self._store.get_pipeline_record(asset_id, self._pipeline)

    def summary(self, organization_id: str) -> list[dict[str, Any]]:
        return self._store.get_org_pipeline_summary(organization_id, self._pipeline)
