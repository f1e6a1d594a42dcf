"""Shared fixtures: in-memory collaborators and a fully wired flow engine."""

import copy
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("FLOW_WORKER_ENABLED", "false")

import pytest
import pytest_asyncio

from core.cache import CacheService
from core.config import Settings
from models.flows import Flow
from services.execution.cache import StepResultCache
from services.execution.dispatcher import NodeDispatcher
from services.execution.dlq import create_dlq_handler
from services.execution.executor import FlowExecutor
from services.execution.models import Execution, ExecutionStatus, NodeContext
from services.execution.queue import MemoryJobQueue
from services.execution.scheduler import ContinuationScheduler
from services.execution.validation import validate_flow
from services.execution.worker import FlowWorker
from services.triggers.firing import TriggerFiring
from services.triggers.registry import TriggerRegistry

TEAM_ID = "team-1"
OTHER_TEAM_ID = "team-2"


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeStore:
    """Flow store keeping copies, so tests observe only persisted state."""

    def __init__(self):
        self.flows: Dict[str, Flow] = {}
        self.executions: Dict[str, Dict[str, Any]] = {}

    def add_flow(self, flow: Flow) -> Flow:
        self.flows[flow.id] = flow.model_copy(deep=True)
        return flow

    async def load_flow(self, flow_id: str) -> Optional[Flow]:
        flow = self.flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    async def load_execution(self, execution_id: str) -> Optional[Execution]:
        data = self.executions.get(execution_id)
        return Execution.from_dict(copy.deepcopy(data)) if data else None

    async def save_execution(self, execution: Execution) -> None:
        self.executions[execution.id] = copy.deepcopy(execution.to_dict())

    async def list_active_flows(self) -> List[Flow]:
        return [flow.model_copy(deep=True) for flow in self.flows.values()
                if flow.is_active and not flow.is_deleted]

    async def list_running_executions(self) -> List[Execution]:
        return [Execution.from_dict(copy.deepcopy(data)) for data in self.executions.values()
                if data["status"] == ExecutionStatus.RUNNING.value]


class FakeContacts:
    def __init__(self):
        self.contacts: Dict[str, Dict[str, Any]] = {}

    def add(self, contact_id: str, team_id: str = TEAM_ID, **fields: Any) -> Dict[str, Any]:
        contact = {"id": contact_id, "team_id": team_id, "custom_fields": {}, "tags": [], **fields}
        self.contacts[contact_id] = contact
        return contact

    async def get_contact(self, contact_id: Optional[str]) -> Optional[Dict[str, Any]]:
        contact = self.contacts.get(contact_id) if contact_id else None
        return copy.deepcopy(contact) if contact else None

    def _for_team(self, contact_id: str, team_id: str) -> Dict[str, Any]:
        contact = self.contacts.get(contact_id)
        if contact is None or contact["team_id"] != team_id:
            raise LookupError(f"Contact not found: {contact_id}")
        return contact

    async def add_tag(self, contact_id: str, tag_name: str, team_id: str) -> bool:
        contact = self._for_team(contact_id, team_id)
        if tag_name in contact["tags"]:
            return False
        contact["tags"].append(tag_name)
        return True

    async def remove_tag(self, contact_id: str, tag_name: str, team_id: str) -> bool:
        contact = self._for_team(contact_id, team_id)
        if tag_name not in contact["tags"]:
            return False
        contact["tags"].remove(tag_name)
        return True

    async def update_field(self, contact_id: str, field: str, value: Any) -> None:
        self.contacts[contact_id][field] = value

    async def update_custom_field(self, contact_id: str, name: str, value: Any) -> None:
        self.contacts[contact_id]["custom_fields"][name] = value


class FakeMessaging:
    """Records sends; ``failures`` makes the next N sends raise."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.failures = 0

    async def send(self, account_id: str, contact_id: str, message_type: str, content: str,
                   media_url: Optional[str] = None,
                   idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        if self.failures:
            self.failures -= 1
            raise ConnectionError("messaging service unavailable")

        message = {
            "id": f"msg-{len(self.sent) + 1}",
            "account_id": account_id,
            "contact_id": contact_id,
            "type": message_type,
            "content": content,
            "media_url": media_url,
            "idempotency_key": idempotency_key,
        }
        self.sent.append(message)
        return message


# =============================================================================
# BUILDERS
# =============================================================================

def node(node_id: str, node_type: str, **config: Any) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "config": config}


def edge(source: str, target: str, label: Optional[str] = None) -> Dict[str, Any]:
    data = {"id": f"{source}->{target}", "source": source, "target": target}
    if label:
        data["label"] = label
    return data


def make_flow(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]],
              trigger_type: str = "manual", trigger_config: Optional[Dict[str, Any]] = None,
              team_id: str = TEAM_ID, is_active: bool = True,
              variables: Optional[Dict[str, Any]] = None, validate: bool = True) -> Flow:
    """Flow from raw nodes and edges; ``validate=False`` skips the validator."""
    data = {
        "id": str(uuid.uuid4()),
        "team_id": team_id,
        "name": "Test flow",
        "trigger_type": trigger_type,
        "trigger_config": trigger_config or {},
        "nodes": nodes,
        "edges": edges,
        "variables": variables or {},
        "is_active": is_active,
    }
    return validate_flow(data) if validate else Flow.model_validate(data)


def make_context(flow: Flow, contact: Dict[str, Any], variables: Optional[Dict[str, Any]] = None,
                 test_mode: bool = False, step: int = 1) -> NodeContext:
    execution = Execution.create(flow.id, flow.team_id, contact.get("id"), variables or {},
                                 test_mode=test_mode)
    execution.step = step
    return NodeContext(execution=execution, flow=flow, contact=contact)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_enabled=False,
        http_request_timeout=2.0,
        dlq_enabled=True,
    )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def contacts() -> FakeContacts:
    contacts = FakeContacts()
    contacts.add("contact-1", first_name="Ana", custom_fields={"engagement_score": 80})
    return contacts


@pytest.fixture
def messaging() -> FakeMessaging:
    return FakeMessaging()


@pytest.fixture
def step_cache(settings) -> StepResultCache:
    return StepResultCache(CacheService(settings), ttl=3600, dlq_name="test-flows")


@pytest.fixture
def dispatcher(messaging, contacts, step_cache, settings) -> NodeDispatcher:
    return NodeDispatcher(messaging=messaging, contacts=contacts, step_cache=step_cache,
                          settings=settings)


@dataclass
class Engine:
    store: FakeStore
    contacts: FakeContacts
    messaging: FakeMessaging
    queue: MemoryJobQueue
    scheduler: ContinuationScheduler
    step_cache: StepResultCache
    dispatcher: NodeDispatcher
    executor: FlowExecutor
    dlq: Any
    worker: FlowWorker
    registry: TriggerRegistry
    firing: TriggerFiring

    async def run_until_idle(self, max_jobs: int = 100, timeout: float = 0.2) -> int:
        """Process queued jobs one at a time until none arrives within ``timeout``."""
        processed = 0
        while processed < max_jobs:
            job = await self.queue.next_job(timeout=timeout)
            if job is None:
                break
            await self.worker.process_job(job)
            processed += 1
        return processed


@pytest_asyncio.fixture
async def engine(store, contacts, messaging, step_cache, dispatcher):
    queue = MemoryJobQueue("test-flows")
    scheduler = ContinuationScheduler(queue, attempts=3, backoff_delay_ms=10)
    executor = FlowExecutor(store=store, contacts=contacts, scheduler=scheduler, dispatcher=dispatcher)
    dlq = create_dlq_handler(step_cache, enabled=True)
    worker = FlowWorker(queue=queue, executor=executor, dlq=dlq, store=store,
                        concurrency=1, poll_timeout=0.01)
    registry = TriggerRegistry(store)

    yield Engine(
        store=store,
        contacts=contacts,
        messaging=messaging,
        queue=queue,
        scheduler=scheduler,
        step_cache=step_cache,
        dispatcher=dispatcher,
        executor=executor,
        dlq=dlq,
        worker=worker,
        registry=registry,
        firing=TriggerFiring(registry, executor),
    )

    await worker.stop()
    await queue.close()
