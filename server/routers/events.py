"""Event ingestion and trigger inspection routes."""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from constants import TRIGGER_TYPES
from core.container import container
from core.logging import get_logger
from routers.flows import get_team_id
from services.execution.dlq import DLQHandlerProtocol
from services.triggers.firing import TriggerFiring
from services.triggers.registry import TriggerRegistry

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1", tags=["events"])


@router.post("/events/{trigger_type}")
async def ingest_event(
    trigger_type: str,
    event_data: Dict[str, Any] = Body(default={}),
    team_id: str = Depends(get_team_id),
    firing: TriggerFiring = Depends(lambda: container.trigger_firing())
):
    """Fire a domain event; every matching active flow of the team starts."""
    if trigger_type not in TRIGGER_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown trigger type: {trigger_type}")

    executions = await firing.fire(trigger_type, {**event_data, "teamId": team_id})
    return {
        "success": True,
        "trigger_type": trigger_type,
        "executions": [execution.to_dict() for execution in executions],
        "count": len(executions),
    }


@router.get("/triggers")
async def list_triggers(
    team_id: str = Depends(get_team_id),
    registry: TriggerRegistry = Depends(lambda: container.trigger_registry())
):
    """Registered triggers of the caller's team, grouped by trigger type."""
    triggers = {
        trigger_type: [r.to_dict() for r in registrations if r.team_id == team_id]
        for trigger_type, registrations in registry.all().items()
    }
    triggers = {trigger_type: regs for trigger_type, regs in triggers.items() if regs}
    return {
        "success": True,
        "triggers": triggers,
        "count": sum(len(regs) for regs in triggers.values()),
    }


@router.get("/dlq")
async def list_dlq(
    limit: int = Query(default=100, ge=1, le=1000),
    dlq: DLQHandlerProtocol = Depends(lambda: container.dlq())
):
    """Abandoned flow jobs, newest first. Empty when the DLQ is disabled."""
    entries = await dlq.list_entries(limit)
    return {
        "success": True,
        "enabled": dlq.enabled,
        "entries": [entry.to_dict() for entry in entries],
        "count": len(entries),
    }
