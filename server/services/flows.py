"""Flow Service - team-scoped authoring and lifecycle of flows.

Owns everything around the engine that changes a flow: create, update,
soft delete, activation. Keeps the trigger registry in step with the
active flag and exposes execution queries for the API.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.database import Database
from core.logging import get_logger
from models.flows import Flow
from services.execution.errors import ExecutionNotFound, FlowNotFound
from services.execution.executor import FlowExecutor
from services.execution.models import Execution, ExecutionStatus
from services.execution.validation import validate_flow
from services.triggers.registry import TriggerRegistry

logger = get_logger(__name__)

# Fields a client may set on create/update
EDITABLE_FIELDS = ("name", "description", "trigger_type", "trigger_config", "nodes", "edges", "variables")


def _flow_data(flow: Flow) -> Dict[str, Any]:
    """Flow as the raw dict the validator accepts."""
    data = flow.model_dump(exclude={"nodes", "edges"})
    data.update(flow.graph_dict())
    return data


class FlowService:
    """Flow CRUD, activation and execution queries.

    Every operation takes the caller's team id; flows of other teams are
    reported as not found.
    """

    def __init__(self, database: Database, registry: TriggerRegistry, executor: FlowExecutor):
        self.database = database
        self.registry = registry
        self.executor = executor

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_flow(self, team_id: str, data: Dict[str, Any]) -> Flow:
        """Validate and store a new flow.

        Raises:
            FlowValidationError: definition rejected.
        """
        now = datetime.now(timezone.utc)
        flow_data = {key: data[key] for key in EDITABLE_FIELDS if key in data}
        flow_data.update(
            id=str(uuid.uuid4()),
            team_id=team_id,
            is_active=bool(data.get("is_active", False)),
            version=1,
            created_at=now,
            updated_at=now,
        )

        flow = validate_flow(flow_data)
        flow = await self.database.save_flow(flow)

        if flow.is_active:
            self._register(flow)

        logger.info("Flow created", flow_id=flow.id, team_id=team_id, trigger_type=flow.trigger_type)
        return flow

    async def get_flow(self, flow_id: str, team_id: str) -> Flow:
        """Raises FlowNotFound for missing, deleted or foreign flows."""
        flow = await self.database.load_flow(flow_id)
        if flow is None or flow.is_deleted or flow.team_id != team_id:
            raise FlowNotFound(flow_id)
        return flow

    async def list_flows(self, team_id: str, active: Optional[bool] = None,
                         trigger_type: Optional[str] = None, search: Optional[str] = None) -> List[Flow]:
        return await self.database.list_flows(team_id, active=active, trigger_type=trigger_type,
                                              search=search)

    async def update_flow(self, flow_id: str, team_id: str, updates: Dict[str, Any]) -> Flow:
        """Apply editable fields; ``version`` increments when nodes or edges change.

        Active flows are re-registered so trigger changes take effect at once.
        """
        flow = await self.get_flow(flow_id, team_id)
        current = _flow_data(flow)

        merged = dict(current)
        merged.update({key: updates[key] for key in EDITABLE_FIELDS if key in updates})
        if "is_active" in updates:
            merged["is_active"] = bool(updates["is_active"])

        updated = validate_flow(merged)
        if updated.graph_dict() != flow.graph_dict():
            updated.version = flow.version + 1

        updated = await self.database.save_flow(updated)

        if updated.is_active:
            self._register(updated)
        elif flow.is_active:
            self.registry.unregister(flow.id)

        logger.info("Flow updated", flow_id=flow_id, version=updated.version)
        return updated

    async def delete_flow(self, flow_id: str, team_id: str) -> Flow:
        """Soft delete; the flow is deactivated and unregistered first."""
        flow = await self.get_flow(flow_id, team_id)
        self.registry.unregister(flow.id)

        flow.is_active = False
        flow.deleted_at = datetime.now(timezone.utc)
        flow = await self.database.save_flow(flow)

        logger.info("Flow deleted", flow_id=flow_id)
        return flow

    # =========================================================================
    # ACTIVATION
    # =========================================================================

    async def activate_flow(self, flow_id: str, team_id: str) -> Flow:
        """Validate the stored definition, then mark active and register.

        Raises:
            FlowValidationError: the stored definition is no longer valid.
        """
        flow = await self.get_flow(flow_id, team_id)
        validate_flow(_flow_data(flow))

        flow.is_active = True
        flow = await self.database.save_flow(flow)
        self._register(flow)

        logger.info("Flow activated", flow_id=flow_id)
        return flow

    async def deactivate_flow(self, flow_id: str, team_id: str) -> Flow:
        flow = await self.get_flow(flow_id, team_id)

        flow.is_active = False
        flow = await self.database.save_flow(flow)
        self.registry.unregister(flow.id)

        logger.info("Flow deactivated", flow_id=flow_id)
        return flow

    def _register(self, flow: Flow) -> None:
        self.registry.register(flow.id, flow.team_id, flow.trigger_type, flow.trigger_config)

    # =========================================================================
    # EXECUTIONS
    # =========================================================================

    async def trigger_flow(self, flow_id: str, team_id: str, contact_id: str,
                           data: Optional[Dict[str, Any]] = None) -> Execution:
        """Manual start on behalf of a team."""
        await self.get_flow(flow_id, team_id)
        return await self.executor.start_manual(flow_id, contact_id, data or {})

    async def test_flow(self, flow_id: str, team_id: str, contact_id: str,
                        triggered_by: Optional[str] = None) -> Execution:
        """Manual start with real message sends suppressed."""
        await self.get_flow(flow_id, team_id)
        return await self.executor.start_test(flow_id, contact_id, triggered_by)

    async def flow_stats(self, flow_id: str, team_id: str) -> Dict[str, Any]:
        """Execution counts by status, plus the total."""
        flow = await self.get_flow(flow_id, team_id)
        counts = await self.database.count_executions_by_status(flow.id)

        by_status = {status.value: counts.get(status.value, 0) for status in ExecutionStatus}
        total = sum(by_status.values())
        completed = by_status[ExecutionStatus.COMPLETED.value]

        return {
            "flow_id": flow.id,
            "version": flow.version,
            "is_active": flow.is_active,
            "total_executions": total,
            "by_status": by_status,
            "completion_rate": round(completed / total, 4) if total else 0.0,
        }

    async def list_executions(self, flow_id: str, team_id: str, status: Optional[str] = None,
                              limit: int = 50, offset: int = 0) -> List[Execution]:
        await self.get_flow(flow_id, team_id)
        return await self.database.list_executions(flow_id, status=status, limit=limit, offset=offset)

    async def count_executions(self, flow_id: str, team_id: str, status: Optional[str] = None) -> int:
        await self.get_flow(flow_id, team_id)
        return await self.database.count_executions(flow_id, status=status)

    async def get_execution(self, execution_id: str, team_id: str) -> Execution:
        """Raises ExecutionNotFound for missing or foreign executions."""
        execution = await self.database.load_execution(execution_id)
        if execution is None or execution.team_id != team_id:
            raise ExecutionNotFound(execution_id)
        return execution
