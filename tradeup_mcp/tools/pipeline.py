"""Pipeline tool implementations."""

from __future__ import annotations

from tradeup_mcp.data.store import OpportunityStore
from tradeup_mcp.errors import NotFoundError, StateError, TradeUpError
from tradeup_mcp.pipeline.tracker import PipelineTracker, resolve_stage_id
from tradeup_mcp.tools.common import build_error_response, build_tool_response, require_text


def get_pipeline_summary_impl(
    store: OpportunityStore, tracker: PipelineTracker, *, organization_id: str
) -> str:
    """Every stage in order with the organization's asset count in it."""
    try:
        org_id = require_text("organization_id", organization_id)
        if store.get_organization(org_id) is None:
            raise NotFoundError(
                f"Organization not found: {org_id}", details={"organization_id": org_id}
            )
    except TradeUpError as exc:
        return build_error_response("get_pipeline_summary", exc)
    stages = tracker.summary(org_id)
    return build_tool_response(
        "get_pipeline_summary",
        {
            "organization_id": org_id,
            "total": sum(s["record_count"] for s in stages),
            "stages": stages,
        },
    )


def get_pipeline_status_impl(tracker: PipelineTracker, *, asset_id: str) -> str:
    try:
        key = require_text("asset_id", asset_id)
        record = tracker.current_stage(key)
        if record is None:
            raise NotFoundError(
                f"Asset is not in the pipeline: {key}", details={"asset_id": key}
            )
    except TradeUpError as exc:
        return build_error_response("get_pipeline_status", exc)
    return build_tool_response("get_pipeline_status", record)


def advance_pipeline_stage_impl(
    tracker: PipelineTracker, *, asset_id: str, target_stage: str
) -> str:
    """Manual advance for human-driven stages (responded, appointment, converted)."""
    try:
        key = require_text("asset_id", asset_id)
        target = resolve_stage_id(require_text("target_stage", target_stage))
        before = tracker.current_stage(key)
        if before is None:
            raise NotFoundError(
                f"Asset is not in the pipeline: {key}", details={"asset_id": key}
            )
        if not tracker.advance_to(key, target):
            raise StateError(
                f"Cannot advance from {before['pipeline_stage_id']} to {target}",
                details={"from": before["pipeline_stage_id"], "to": target},
            )
    except TradeUpError as exc:
        return build_error_response("advance_pipeline_stage", exc)
    return build_tool_response("advance_pipeline_stage", tracker.current_stage(key))
