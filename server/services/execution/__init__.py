"""Execution engine package.

Queue-driven flow execution with:
- One-node-per-job state machine with persisted step tracking
- Registry-based node dispatch with step-keyed side-effect deduplication
- Redis or in-memory job queues with exponential backoff retries
- Dead letter queue for abandoned jobs
- Startup recovery of interrupted executions
"""

from .models import (
    ExecutionStatus,
    StepState,
    Execution,
    RetryPolicy,
    JobOptions,
    Job,
    DLQEntry,
    NodeResult,
    NodeContext,
)
from .errors import (
    FlowEngineError,
    FlowNotFound,
    FlowNotActive,
    ContactNotFound,
    ExecutionNotFound,
    UnknownNodeType,
    HandlerError,
    FlowValidationError,
)
from .templates import render_template, render_value
from .conditions import (
    evaluate_condition,
    evaluate_conditions,
    get_nested_value,
)
from .queue import (
    MemoryJobQueue,
    RedisJobQueue,
    create_job_queue,
)
from .scheduler import ContinuationScheduler
from .cache import StepResultCache
from .dlq import (
    DLQHandler,
    NullDLQHandler,
    DLQHandlerProtocol,
    create_dlq_handler,
)
# NodeDispatcher is imported from .dispatcher directly; it depends on services.handlers
from .executor import FlowExecutor
from .worker import FlowWorker
from .recovery import RecoverySweeper
from .validation import validate_flow

__all__ = [
    # Models
    "ExecutionStatus",
    "StepState",
    "Execution",
    "RetryPolicy",
    "JobOptions",
    "Job",
    "DLQEntry",
    "NodeResult",
    "NodeContext",
    # Errors
    "FlowEngineError",
    "FlowNotFound",
    "FlowNotActive",
    "ContactNotFound",
    "ExecutionNotFound",
    "UnknownNodeType",
    "HandlerError",
    "FlowValidationError",
    # Substitution and conditions
    "render_template",
    "render_value",
    "evaluate_condition",
    "evaluate_conditions",
    "get_nested_value",
    # Queue
    "MemoryJobQueue",
    "RedisJobQueue",
    "create_job_queue",
    "ContinuationScheduler",
    # Cache and DLQ
    "StepResultCache",
    "DLQHandler",
    "NullDLQHandler",
    "DLQHandlerProtocol",
    "create_dlq_handler",
    # Engine
    "FlowExecutor",
    "FlowWorker",
    "RecoverySweeper",
    "validate_flow",
]
