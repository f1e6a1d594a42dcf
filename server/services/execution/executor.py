"""Flow executor - the execution state machine.

One ``advance`` call moves an execution forward by exactly one node. The
persisted ``current_node_id``, ``step_state`` and ``next_node_id`` fully
determine which node runs next, so a job that is delivered again after a
crash resumes at the node it was on and never re-resolves an earlier one.

Lifecycle per step:
    resolve next node -> persist (entered) -> dispatch -> merge + persist (done)
    -> schedule continuation | complete
"""

from datetime import timedelta
from typing import Any, Dict, Optional, TYPE_CHECKING

from core.logging import bind_execution_context, clear_execution_context, get_logger
from models.flows import Flow, Node
from .errors import (
    ContactNotFound,
    ExecutionNotFound,
    FlowNotActive,
    FlowNotFound,
)
from .models import Execution, ExecutionStatus, NodeContext, StepState, utcnow
from .protocols import ContactDirectory, FlowStore
from .scheduler import ContinuationScheduler

if TYPE_CHECKING:
    from .dispatcher import NodeDispatcher

logger = get_logger(__name__)


class FlowExecutor:
    """Starts executions and advances them one node per queued job."""

    def __init__(self, store: FlowStore, contacts: ContactDirectory,
                 scheduler: ContinuationScheduler, dispatcher: "NodeDispatcher"):
        self.store = store
        self.contacts = contacts
        self.scheduler = scheduler
        self.dispatcher = dispatcher

    # =========================================================================
    # START
    # =========================================================================

    async def start(self, flow_id: str, contact_id: Optional[str],
                    trigger_payload: Dict[str, Any],
                    conversation_id: Optional[str] = None,
                    test_mode: bool = False) -> Execution:
        """Create a running execution and schedule its first step.

        Raises:
            FlowNotFound: flow missing or deleted.
            FlowNotActive: flow exists but is not activated.
            ContactNotFound: the event carries no contact.
        """
        flow = await self.store.load_flow(flow_id)
        if flow is None or flow.is_deleted:
            raise FlowNotFound(flow_id)
        if not flow.is_active:
            raise FlowNotActive(flow_id)
        if not contact_id:
            raise ContactNotFound(contact_id)

        execution = Execution.create(
            flow_id=flow.id,
            team_id=flow.team_id,
            contact_id=contact_id,
            variables={**flow.variables, "trigger": trigger_payload},
            conversation_id=conversation_id,
            test_mode=test_mode,
        )
        await self.store.save_execution(execution)
        await self.scheduler.schedule(execution.id)

        logger.info("Flow execution started",
                   execution_id=execution.id,
                   flow_id=flow.id,
                   contact_id=contact_id,
                   test_mode=test_mode)
        return execution

    async def start_manual(self, flow_id: str, contact_id: str,
                           data: Optional[Dict[str, Any]] = None,
                           test_mode: bool = False) -> Execution:
        """Start a flow for one contact outside of any event.

        Raises:
            FlowNotFound: flow missing or deleted.
            ContactNotFound: contact missing or owned by another team.
        """
        flow = await self.store.load_flow(flow_id)
        if flow is None or flow.is_deleted:
            raise FlowNotFound(flow_id)

        contact = await self.contacts.get_contact(contact_id)
        if contact is None or contact.get("team_id") not in (None, flow.team_id):
            raise ContactNotFound(contact_id)

        payload = {"type": "manual", **(data or {})}
        return await self.start(flow_id, contact_id, payload, test_mode=test_mode)

    async def start_test(self, flow_id: str, contact_id: str,
                         triggered_by: Optional[str] = None) -> Execution:
        """Manual start with real sends suppressed."""
        return await self.start_manual(
            flow_id, contact_id,
            {"testMode": True, "triggeredBy": triggered_by},
            test_mode=True,
        )

    # =========================================================================
    # ADVANCE
    # =========================================================================

    async def advance(self, execution_id: str, final_attempt: bool = True) -> Optional[Execution]:
        """Run one step of an execution.

        Args:
            execution_id: Execution to advance
            final_attempt: False when the queue will deliver this job again on
                failure; a retryable error then leaves the execution running.

        Returns:
            The execution after the step, or None when it was not running.

        Raises:
            ExecutionNotFound: no such execution.
            FlowEngineError / Exception: the step failed; the execution is
                marked failed unless a retry is still possible.
        """
        execution = await self.store.load_execution(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id)

        if execution.status is not ExecutionStatus.RUNNING:
            logger.debug("Execution not running, nothing to do",
                        execution_id=execution_id,
                        status=execution.status.value)
            return None

        bind_execution_context(execution_id=execution.id, flow_id=execution.flow_id)
        try:
            return await self._step(execution)
        except Exception as e:
            await self._fail(execution, e, final_attempt)
            raise
        finally:
            clear_execution_context()

    async def _step(self, execution: Execution) -> Execution:
        flow = await self.store.load_flow(execution.flow_id)
        if flow is None:
            raise FlowNotFound(execution.flow_id)

        node = self._resolve_next_node(flow, execution)
        if node is None:
            await self._complete(execution)
            return execution

        if node.id != execution.current_node_id or execution.step_state is not StepState.ENTERED:
            execution.current_node_id = node.id
            execution.step += 1
            execution.step_state = StepState.ENTERED
            execution.next_node_id = None
            execution.resume_at = None
            execution.touch()
            await self.store.save_execution(execution)
        else:
            logger.info("Re-entering unfinished node", node_id=node.id, step=execution.step)

        bind_execution_context(node_id=node.id)

        contact = await self.contacts.get_contact(execution.contact_id)
        if contact is None:
            raise ContactNotFound(execution.contact_id)

        context = NodeContext(execution=execution, flow=flow, contact=contact)
        result = await self.dispatcher.dispatch(node, context)

        execution.variables.update(result.variables)
        execution.step_state = StepState.DONE
        execution.next_node_id = result.next_node_id
        execution.error_message = None
        execution.touch()

        if result.complete:
            await self._complete(execution)
            return execution

        if result.delay_ms:
            execution.resume_at = utcnow() + timedelta(milliseconds=result.delay_ms)
            await self.store.save_execution(execution)
            await self.scheduler.schedule(execution.id, result.delay_ms)
            logger.info("Execution waiting", node_id=node.id, delay_ms=result.delay_ms)
            return execution

        await self.store.save_execution(execution)
        await self.scheduler.schedule(execution.id)
        return execution

    def _resolve_next_node(self, flow: Flow, execution: Execution) -> Optional[Node]:
        """Pick the node to run from the persisted position alone."""
        if execution.current_node_id is None:
            return flow.trigger_node()

        if execution.step_state is StepState.ENTERED:
            return flow.get_node(execution.current_node_id)

        if execution.next_node_id:
            return flow.get_node(execution.next_node_id)

        edges = flow.outgoing_edges(execution.current_node_id)
        if not edges:
            return None
        return flow.get_node(edges[0].target)

    async def _complete(self, execution: Execution) -> None:
        execution.status = ExecutionStatus.COMPLETED
        execution.completed_at = utcnow()
        execution.resume_at = None
        execution.touch()
        await self.store.save_execution(execution)
        logger.info("Flow execution completed", steps=execution.step)

    async def _fail(self, execution: Execution, error: Exception, final_attempt: bool) -> None:
        """Record a step failure; terminal unless the queue will retry."""
        execution.error_message = str(error) or type(error).__name__
        execution.touch()

        retryable = getattr(error, "retryable", True)
        if retryable and not final_attempt:
            logger.warning("Flow step failed, will retry",
                          node_id=execution.current_node_id,
                          error=execution.error_message)
        else:
            execution.status = ExecutionStatus.FAILED
            execution.completed_at = utcnow()
            execution.resume_at = None
            logger.error("Flow execution failed",
                        node_id=execution.current_node_id,
                        error=execution.error_message)

        await self.store.save_execution(execution)
