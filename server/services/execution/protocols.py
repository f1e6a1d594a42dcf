"""Collaborator interfaces consumed by the flow engine.

The engine depends only on these narrow protocols; concrete implementations
(SQL database, contact store, messaging client, job queues) are injected by
the container.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from models.flows import Flow
from .models import Execution, Job, JobOptions


class FlowStore(Protocol):
    """Persistence of flows and executions."""

    async def load_flow(self, flow_id: str) -> Optional[Flow]:
        ...

    async def load_execution(self, execution_id: str) -> Optional[Execution]:
        ...

    async def save_execution(self, execution: Execution) -> None:
        ...

    async def list_active_flows(self) -> List[Flow]:
        ...

    async def list_running_executions(self) -> List[Execution]:
        ...


class ContactDirectory(Protocol):
    """Contact and tag storage."""

    async def get_contact(self, contact_id: Optional[str]) -> Optional[Dict[str, Any]]:
        ...

    async def add_tag(self, contact_id: str, tag_name: str, team_id: str) -> bool:
        ...

    async def remove_tag(self, contact_id: str, tag_name: str, team_id: str) -> bool:
        ...

    async def update_field(self, contact_id: str, field: str, value: Any) -> None:
        ...

    async def update_custom_field(self, contact_id: str, name: str, value: Any) -> None:
        ...


class MessageSender(Protocol):
    """Outbound messaging."""

    async def send(self, account_id: str, contact_id: str, message_type: str, content: str,
                   media_url: Optional[str] = None,
                   idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        ...


QueueListener = Callable[..., Union[None, Awaitable[None]]]


class JobQueue(Protocol):
    """At-least-once job queue with delayed delivery."""

    name: str

    async def enqueue(self, data: Dict[str, Any], options: JobOptions) -> Job:
        ...

    async def next_job(self, timeout: float = 1.0) -> Optional[Job]:
        ...

    async def ack(self, job: Job, result: Any = None) -> None:
        ...

    async def retry(self, job: Job, delay_ms: int) -> None:
        ...

    async def fail(self, job: Job, error: BaseException) -> None:
        ...

    def on(self, event: str, listener: QueueListener) -> None:
        ...
