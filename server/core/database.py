"""Async database service with SQLModel and SQLAlchemy 2.0.

Implements the persistence contract of the flow engine (flows and
executions). Reads return None when a row is missing; writes raise, since
the engine relies on every execution write being durable.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from core.config import Settings
from core.logging import get_logger
from models.database import FlowRecord, FlowExecutionRecord, ContactRecord  # noqa: F401 - table registration
from models.flows import Flow
from services.execution.models import Execution, ExecutionStatus

logger = get_logger(__name__)


def _to_flow(record: FlowRecord) -> Flow:
    return Flow(
        id=record.id,
        team_id=record.team_id,
        name=record.name,
        description=record.description,
        trigger_type=record.trigger_type,
        trigger_config=record.trigger_config or {},
        nodes=record.nodes or [],
        edges=record.edges or [],
        variables=record.variables or {},
        is_active=record.is_active,
        version=record.version,
        created_at=record.created_at,
        updated_at=record.updated_at,
        deleted_at=record.deleted_at,
    )


def _to_execution(record: FlowExecutionRecord) -> Execution:
    return Execution.from_dict(record.model_dump())


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            logging.getLogger("aiosqlite").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

            engine_kwargs: Dict[str, Any] = {"echo": self.settings.database_echo}
            if not self.settings.is_sqlite:
                engine_kwargs["pool_size"] = self.settings.database_pool_size
                engine_kwargs["max_overflow"] = self.settings.database_max_overflow

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # ============================================================================
    # Flows
    # ============================================================================

    async def save_flow(self, flow: Flow) -> Flow:
        """Insert or update a flow definition."""
        graph = flow.graph_dict()
        try:
            async with self.get_session() as session:
                record = await session.get(FlowRecord, flow.id)
                if record is None:
                    record = FlowRecord(id=flow.id, team_id=flow.team_id, name=flow.name,
                                        trigger_type=flow.trigger_type)
                    session.add(record)

                record.team_id = flow.team_id
                record.name = flow.name
                record.description = flow.description
                record.trigger_type = flow.trigger_type
                record.trigger_config = dict(flow.trigger_config)
                record.nodes = graph["nodes"]
                record.edges = graph["edges"]
                record.variables = dict(flow.variables)
                record.is_active = flow.is_active
                record.version = flow.version
                record.deleted_at = flow.deleted_at
                record.updated_at = datetime.now(timezone.utc)

                await session.commit()
                await session.refresh(record)
                return _to_flow(record)

        except Exception as e:
            logger.error("Failed to save flow", flow_id=flow.id, error=str(e))
            raise

    async def load_flow(self, flow_id: str) -> Optional[Flow]:
        """Load a flow by id, including soft-deleted ones."""
        async with self.get_session() as session:
            record = await session.get(FlowRecord, flow_id)
            return _to_flow(record) if record else None

    async def list_flows(self, team_id: str, active: Optional[bool] = None,
                         trigger_type: Optional[str] = None, search: Optional[str] = None) -> List[Flow]:
        """Non-deleted flows of a team, newest first.

        ``search`` matches name or description, case-insensitively.
        """
        try:
            async with self.get_session() as session:
                stmt = select(FlowRecord).where(
                    FlowRecord.team_id == team_id,
                    FlowRecord.deleted_at.is_(None),
                )
                if active is not None:
                    stmt = stmt.where(FlowRecord.is_active == active)
                if trigger_type:
                    stmt = stmt.where(FlowRecord.trigger_type == trigger_type)
                if search:
                    pattern = f"%{search}%"
                    stmt = stmt.where(or_(FlowRecord.name.ilike(pattern),
                                          FlowRecord.description.ilike(pattern)))
                stmt = stmt.order_by(FlowRecord.created_at.desc())

                result = await session.execute(stmt)
                return [_to_flow(record) for record in result.scalars().all()]

        except Exception as e:
            logger.error("Failed to list flows", team_id=team_id, error=str(e))
            return []

    async def list_active_flows(self) -> List[Flow]:
        """Every active, non-deleted flow across all teams."""
        async with self.get_session() as session:
            stmt = select(FlowRecord).where(
                FlowRecord.is_active == True,  # noqa: E712
                FlowRecord.deleted_at.is_(None),
            )
            result = await session.execute(stmt)
            return [_to_flow(record) for record in result.scalars().all()]

    # ============================================================================
    # Executions
    # ============================================================================

    async def save_execution(self, execution: Execution) -> None:
        """Insert or update an execution record."""
        data = execution.to_dict()
        try:
            async with self.get_session() as session:
                record = await session.get(FlowExecutionRecord, execution.id)
                if record is None:
                    record = FlowExecutionRecord(id=execution.id, flow_id=execution.flow_id,
                                                 team_id=execution.team_id)
                    session.add(record)

                record.contact_id = execution.contact_id
                record.conversation_id = execution.conversation_id
                record.status = data["status"]
                record.current_node_id = execution.current_node_id
                record.next_node_id = execution.next_node_id
                record.step = execution.step
                record.step_state = data["step_state"]
                record.test_mode = execution.test_mode
                record.variables = dict(execution.variables)
                record.error_message = (execution.error_message or "")[:2000] or None
                record.started_at = execution.started_at
                record.last_activity_at = execution.last_activity_at
                record.completed_at = execution.completed_at
                record.resume_at = execution.resume_at

                await session.commit()

        except Exception as e:
            logger.error("Failed to save execution", execution_id=execution.id, error=str(e))
            raise

    async def load_execution(self, execution_id: str) -> Optional[Execution]:
        """Load an execution by id."""
        async with self.get_session() as session:
            record = await session.get(FlowExecutionRecord, execution_id)
            return _to_execution(record) if record else None

    async def list_executions(self, flow_id: str, status: Optional[str] = None,
                              limit: int = 50, offset: int = 0) -> List[Execution]:
        """Executions of a flow, newest first."""
        try:
            async with self.get_session() as session:
                stmt = select(FlowExecutionRecord).where(FlowExecutionRecord.flow_id == flow_id)
                if status:
                    stmt = stmt.where(FlowExecutionRecord.status == status)
                stmt = stmt.order_by(FlowExecutionRecord.started_at.desc()).offset(offset).limit(limit)

                result = await session.execute(stmt)
                return [_to_execution(record) for record in result.scalars().all()]

        except Exception as e:
            logger.error("Failed to list executions", flow_id=flow_id, error=str(e))
            return []

    async def count_executions(self, flow_id: str, status: Optional[str] = None) -> int:
        try:
            async with self.get_session() as session:
                stmt = select(func.count()).select_from(FlowExecutionRecord).where(
                    FlowExecutionRecord.flow_id == flow_id
                )
                if status:
                    stmt = stmt.where(FlowExecutionRecord.status == status)
                result = await session.execute(stmt)
                return result.scalar_one()

        except Exception as e:
            logger.error("Failed to count executions", flow_id=flow_id, error=str(e))
            return 0

    async def list_running_executions(self) -> List[Execution]:
        """Every execution still in the running state."""
        async with self.get_session() as session:
            stmt = select(FlowExecutionRecord).where(
                FlowExecutionRecord.status == ExecutionStatus.RUNNING.value
            )
            result = await session.execute(stmt)
            return [_to_execution(record) for record in result.scalars().all()]

    async def count_executions_by_status(self, flow_id: str) -> Dict[str, int]:
        """Execution counts of a flow keyed by status."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(FlowExecutionRecord.status, func.count())
                    .where(FlowExecutionRecord.flow_id == flow_id)
                    .group_by(FlowExecutionRecord.status)
                )
                result = await session.execute(stmt)
                return {status: count for status, count in result.all()}

        except Exception as e:
            logger.error("Failed to count executions", flow_id=flow_id, error=str(e))
            return {}
