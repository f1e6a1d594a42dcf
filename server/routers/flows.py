"""Flow authoring, activation and execution routes."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, status
from pydantic import BaseModel, Field

from core.container import container
from core.logging import get_logger
from models.flows import Flow
from services.flows import FlowService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1/flows", tags=["flows"])


async def get_team_id(x_team_id: str = Header(..., alias="X-Team-Id")) -> str:
    """Caller's team; authentication happens upstream."""
    return x_team_id


class FlowCreateRequest(BaseModel):
    model_config = {"populate_by_name": True}

    name: str
    description: Optional[str] = None
    trigger_type: str = Field(alias="triggerType")
    trigger_config: Dict[str, Any] = Field(default_factory=dict, alias="triggerConfig")
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = Field(default=False, alias="isActive")


class FlowUpdateRequest(BaseModel):
    model_config = {"populate_by_name": True}

    name: Optional[str] = None
    description: Optional[str] = None
    trigger_type: Optional[str] = Field(default=None, alias="triggerType")
    trigger_config: Optional[Dict[str, Any]] = Field(default=None, alias="triggerConfig")
    nodes: Optional[List[Dict[str, Any]]] = None
    edges: Optional[List[Dict[str, Any]]] = None
    variables: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class FlowTriggerRequest(BaseModel):
    model_config = {"populate_by_name": True}

    contact_id: str = Field(alias="contactId")
    data: Dict[str, Any] = Field(default_factory=dict)


class FlowTestRequest(BaseModel):
    model_config = {"populate_by_name": True}

    contact_id: str = Field(alias="contactId")
    triggered_by: Optional[str] = Field(default=None, alias="triggeredBy")


def _flow_response(flow: Flow) -> Dict[str, Any]:
    return flow.model_dump(mode="json", by_alias=True)


def _flow_service() -> FlowService:
    return container.flow_service()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_flow(
    request: FlowCreateRequest,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    """Create a flow; it is validated before it is stored."""
    flow = await flow_service.create_flow(team_id, request.model_dump())
    return {"success": True, "flow": _flow_response(flow)}


@router.get("")
async def list_flows(
    active: Optional[bool] = Query(default=None),
    trigger_type: Optional[str] = Query(default=None, alias="triggerType"),
    search: Optional[str] = Query(default=None),
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    flows = await flow_service.list_flows(team_id, active=active, trigger_type=trigger_type, search=search)
    return {"success": True, "flows": [_flow_response(flow) for flow in flows], "count": len(flows)}


@router.get("/executions/{execution_id}")
async def get_execution(
    execution_id: str,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    execution = await flow_service.get_execution(execution_id, team_id)
    return {"success": True, "execution": execution.to_dict()}


@router.get("/{flow_id}")
async def get_flow(
    flow_id: str,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    flow = await flow_service.get_flow(flow_id, team_id)
    return {"success": True, "flow": _flow_response(flow)}


@router.put("/{flow_id}")
async def update_flow(
    flow_id: str,
    request: FlowUpdateRequest,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    """Update editable fields; omitted fields are left unchanged."""
    flow = await flow_service.update_flow(flow_id, team_id, request.model_dump(exclude_none=True))
    return {"success": True, "flow": _flow_response(flow)}


@router.delete("/{flow_id}")
async def delete_flow(
    flow_id: str,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    await flow_service.delete_flow(flow_id, team_id)
    return {"success": True, "flow_id": flow_id}


@router.post("/{flow_id}/activate")
async def activate_flow(
    flow_id: str,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    flow = await flow_service.activate_flow(flow_id, team_id)
    return {"success": True, "flow": _flow_response(flow)}


@router.post("/{flow_id}/deactivate")
async def deactivate_flow(
    flow_id: str,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    flow = await flow_service.deactivate_flow(flow_id, team_id)
    return {"success": True, "flow": _flow_response(flow)}


@router.get("/{flow_id}/stats")
async def flow_stats(
    flow_id: str,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    stats = await flow_service.flow_stats(flow_id, team_id)
    return {"success": True, "stats": stats}


@router.get("/{flow_id}/executions")
async def list_executions(
    flow_id: str,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    executions = await flow_service.list_executions(flow_id, team_id, status=status_filter,
                                                    limit=limit, offset=offset)
    total = await flow_service.count_executions(flow_id, team_id, status=status_filter)
    return {
        "success": True,
        "executions": [execution.to_dict() for execution in executions],
        "count": len(executions),
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.post("/{flow_id}/trigger", status_code=status.HTTP_202_ACCEPTED)
async def trigger_flow(
    flow_id: str,
    request: FlowTriggerRequest,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    """Start the flow for one contact; steps run in the background."""
    execution = await flow_service.trigger_flow(flow_id, team_id, request.contact_id, request.data)
    logger.info("Flow triggered manually", flow_id=flow_id, execution_id=execution.id)
    return {"success": True, "execution": execution.to_dict()}


@router.post("/{flow_id}/test", status_code=status.HTTP_202_ACCEPTED)
async def test_flow(
    flow_id: str,
    request: FlowTestRequest,
    team_id: str = Depends(get_team_id),
    flow_service: FlowService = Depends(_flow_service)
):
    """Run the flow in test mode: messages are not actually sent."""
    execution = await flow_service.test_flow(flow_id, team_id, request.contact_id,
                                             triggered_by=request.triggered_by)
    return {"success": True, "execution": execution.to_dict()}
