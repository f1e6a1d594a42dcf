"""SQLModel database models and tables."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import func


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowRecord(SQLModel, table=True):
    """Automation flow definitions."""

    __tablename__ = "flows"

    id: str = Field(primary_key=True, max_length=255)
    team_id: str = Field(index=True, max_length=255)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    trigger_type: str = Field(index=True, max_length=50)
    trigger_config: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    nodes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    edges: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    variables: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    is_active: bool = Field(default=False, index=True)
    version: int = Field(default=1)
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )
    deleted_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class FlowExecutionRecord(SQLModel, table=True):
    """One run of a flow against one contact."""

    __tablename__ = "flow_executions"

    id: str = Field(primary_key=True, max_length=255)
    flow_id: str = Field(index=True, max_length=255)
    team_id: str = Field(index=True, max_length=255)
    contact_id: Optional[str] = Field(default=None, index=True, max_length=255)
    conversation_id: Optional[str] = Field(default=None, max_length=255)
    status: str = Field(default="running", index=True, max_length=50)
    current_node_id: Optional[str] = Field(default=None, max_length=255)
    next_node_id: Optional[str] = Field(default=None, max_length=255)
    step: int = Field(default=0)
    step_state: str = Field(default="done", max_length=20)
    test_mode: bool = Field(default=False)
    variables: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    error_message: Optional[str] = Field(default=None, max_length=2000)
    started_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True))
    )
    last_activity_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True))
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resume_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class ContactRecord(SQLModel, table=True):
    """CRM contact with free-form custom fields and tag names."""

    __tablename__ = "contacts"

    id: str = Field(primary_key=True, max_length=255)
    team_id: str = Field(index=True, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    custom_fields: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )
