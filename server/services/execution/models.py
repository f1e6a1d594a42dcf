"""Execution engine state models.

All models are JSON-serializable for Redis persistence and API responses.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from models.flows import Flow


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return _as_utc(value)
    return _as_utc(datetime.fromisoformat(value))


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ExecutionStatus(str, Enum):
    """Execution lifecycle.

    State transitions:
        RUNNING -> COMPLETED
                -> FAILED
    Terminal states are never reopened.
    """
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class StepState(str, Enum):
    """Progress of the node the execution currently points at."""
    ENTERED = "entered"    # current_node_id persisted, handler not finished
    DONE = "done"          # handler result merged and persisted


@dataclass
class Execution:
    """One run of a flow against one contact.

    ``step`` counts node entries and, together with the execution and node
    ids, forms the step key used to deduplicate side effects.
    """
    id: str
    flow_id: str
    team_id: str
    contact_id: Optional[str]
    conversation_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.RUNNING
    current_node_id: Optional[str] = None
    next_node_id: Optional[str] = None
    step: int = 0
    step_state: StepState = StepState.DONE
    test_mode: bool = False
    variables: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    resume_at: Optional[datetime] = None

    @classmethod
    def create(cls, flow_id: str, team_id: str, contact_id: Optional[str],
               variables: Dict[str, Any], conversation_id: Optional[str] = None,
               test_mode: bool = False) -> "Execution":
        """Factory for a fresh running execution that has not entered any node."""
        return cls(
            id=str(uuid.uuid4()),
            flow_id=flow_id,
            team_id=team_id,
            contact_id=contact_id,
            conversation_id=conversation_id,
            variables=variables,
            test_mode=test_mode,
        )

    def step_key(self, node_id: str) -> str:
        """Deterministic identifier of the current node entry."""
        return f"{self.id}:{self.step}:{node_id}"

    def touch(self) -> None:
        self.last_activity_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "flow_id": self.flow_id,
            "team_id": self.team_id,
            "contact_id": self.contact_id,
            "conversation_id": self.conversation_id,
            "status": self.status.value,
            "current_node_id": self.current_node_id,
            "next_node_id": self.next_node_id,
            "step": self.step,
            "step_state": self.step_state.value,
            "test_mode": self.test_mode,
            "variables": self.variables,
            "error_message": self.error_message,
            "started_at": _format_datetime(self.started_at),
            "last_activity_at": _format_datetime(self.last_activity_at),
            "completed_at": _format_datetime(self.completed_at),
            "resume_at": _format_datetime(self.resume_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Execution":
        """Create from dict (API payloads, database rows via model_dump)."""
        return cls(
            id=data["id"],
            flow_id=data["flow_id"],
            team_id=data["team_id"],
            contact_id=data.get("contact_id"),
            conversation_id=data.get("conversation_id"),
            status=ExecutionStatus(data.get("status", ExecutionStatus.RUNNING.value)),
            current_node_id=data.get("current_node_id"),
            next_node_id=data.get("next_node_id"),
            step=data.get("step", 0),
            step_state=StepState(data.get("step_state", StepState.DONE.value)),
            test_mode=data.get("test_mode", False),
            variables=dict(data.get("variables") or {}),
            error_message=data.get("error_message"),
            started_at=_parse_datetime(data.get("started_at")) or utcnow(),
            last_activity_at=_parse_datetime(data.get("last_activity_at")) or utcnow(),
            completed_at=_parse_datetime(data.get("completed_at")),
            resume_at=_parse_datetime(data.get("resume_at")),
        )


@dataclass
class RetryPolicy:
    """Exponential backoff between job attempts.

    Delay formula: min(initial_delay_ms * (backoff_multiplier ^ attempt), max_delay_ms)
    """
    max_attempts: int = 3
    initial_delay_ms: int = 5000
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 60 * 60 * 1000

    def calculate_delay(self, attempt: int) -> int:
        """Delay in milliseconds before the retry that follows failed attempt ``attempt`` (0-indexed)."""
        delay = self.initial_delay_ms * (self.backoff_multiplier ** attempt)
        return int(min(delay, self.max_delay_ms))

    def should_retry(self, error: BaseException, attempts_made: int) -> bool:
        """Whether a job that has failed ``attempts_made`` times gets another attempt."""
        if attempts_made >= self.max_attempts:
            return False
        return getattr(error, "retryable", True)


@dataclass
class JobOptions:
    """Per-job delivery options."""
    delay_ms: int = 0
    attempts: int = 3
    backoff_type: str = "exponential"
    backoff_delay_ms: int = 5000

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.attempts, initial_delay_ms=self.backoff_delay_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delay_ms": self.delay_ms,
            "attempts": self.attempts,
            "backoff": {"type": self.backoff_type, "delay": self.backoff_delay_ms},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobOptions":
        backoff = data.get("backoff") or {}
        return cls(
            delay_ms=data.get("delay_ms", 0),
            attempts=data.get("attempts", 3),
            backoff_type=backoff.get("type", "exponential"),
            backoff_delay_ms=backoff.get("delay", 5000),
        )


@dataclass
class Job:
    """Queued unit of work. The payload carries only the execution id."""
    id: str
    queue: str
    data: Dict[str, Any]
    options: JobOptions = field(default_factory=JobOptions)
    attempts_made: int = 0
    last_error: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @classmethod
    def create(cls, queue: str, data: Dict[str, Any], options: JobOptions) -> "Job":
        return cls(id=str(uuid.uuid4()), queue=queue, data=data, options=options)

    @property
    def execution_id(self) -> Optional[str]:
        return self.data.get("executionId")

    @property
    def is_final_attempt(self) -> bool:
        """True when the attempt about to run is the last one allowed."""
        return self.attempts_made + 1 >= self.options.attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "data": self.data,
            "options": self.options.to_dict(),
            "attempts_made": self.attempts_made,
            "last_error": self.last_error,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=data["id"],
            queue=data["queue"],
            data=data.get("data", {}),
            options=JobOptions.from_dict(data.get("options", {})),
            attempts_made=data.get("attempts_made", 0),
            last_error=data.get("last_error"),
            created_at=data.get("created_at", time.time()),
        )


@dataclass
class DLQEntry:
    """Dead Letter Queue entry for an abandoned flow job.

    Stores the failure details for manual review.
    """
    id: str
    job_id: str
    execution_id: Optional[str]
    flow_id: Optional[str]
    node_id: Optional[str]
    error: str
    attempts: int
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "execution_id": self.execution_id,
            "flow_id": self.flow_id,
            "node_id": self.node_id,
            "error": self.error,
            "attempts": self.attempts,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DLQEntry":
        """Create from dict."""
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            execution_id=data.get("execution_id"),
            flow_id=data.get("flow_id"),
            node_id=data.get("node_id"),
            error=data["error"],
            attempts=data.get("attempts", 0),
            created_at=data.get("created_at", time.time()),
        )

    @classmethod
    def create(cls, job: Job, error: str, execution: Optional[Execution] = None) -> "DLQEntry":
        """Factory method to create DLQ entry from an abandoned job."""
        return cls(
            id=str(uuid.uuid4()),
            job_id=job.id,
            execution_id=job.execution_id,
            flow_id=execution.flow_id if execution else None,
            node_id=execution.current_node_id if execution else None,
            error=error or "Unknown error",
            attempts=job.attempts_made,
        )


@dataclass
class NodeResult:
    """Outcome of one node handler.

    ``delay_ms`` defers the next step, ``next_node_id`` overrides the first
    outgoing edge, ``complete`` ends the run. Otherwise the run continues
    immediately.
    """
    variables: Dict[str, Any] = field(default_factory=dict)
    delay_ms: Optional[int] = None
    next_node_id: Optional[str] = None
    complete: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variables": self.variables,
            "delay_ms": self.delay_ms,
            "next_node_id": self.next_node_id,
            "complete": self.complete,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeResult":
        return cls(
            variables=dict(data.get("variables") or {}),
            delay_ms=data.get("delay_ms"),
            next_node_id=data.get("next_node_id"),
            complete=data.get("complete", False),
        )


@dataclass
class NodeContext:
    """What a handler sees: the running execution, its flow and its contact."""
    execution: Execution
    flow: "Flow"
    contact: Dict[str, Any]

    @property
    def variables(self) -> Dict[str, Any]:
        return self.execution.variables

    @property
    def contact_id(self) -> Optional[str]:
        return self.contact.get("id") or self.execution.contact_id

    def step_key(self, node_id: str) -> str:
        return self.execution.step_key(node_id)
