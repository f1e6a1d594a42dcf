"""Execution state machine: one node per advance, driven through the job queue."""

from datetime import timedelta

import pytest

from constants import TEST_MESSAGE_ID
from services.execution.errors import (
    ContactNotFound,
    ExecutionNotFound,
    FlowNotActive,
    FlowNotFound,
    HandlerError,
    UnknownNodeType,
)
from services.execution.models import ExecutionStatus, NodeResult, StepState, utcnow

from conftest import OTHER_TEAM_ID, edge, make_flow, node


def welcome_flow(**kwargs):
    return make_flow(
        [
            node("t", "trigger"),
            node("m", "send_message", message="Hi {{contact.first_name}}, welcome to {{brand}}"),
            node("tag", "add_tag", tags=["welcomed"]),
            node("e", "end"),
        ],
        [edge("t", "m"), edge("m", "tag"), edge("tag", "e")],
        variables={"brand": "Acme"},
        **kwargs,
    )


async def test_linear_flow_runs_to_completion(engine):
    flow = engine.store.add_flow(welcome_flow())

    execution = await engine.executor.start(flow.id, "contact-1", {"type": "manual"})
    assert execution.status is ExecutionStatus.RUNNING
    assert engine.queue.pending_count() == 1

    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.completed_at is not None
    assert execution.current_node_id == "e"
    assert execution.step == 4
    assert execution.variables["lastMessageId"] == "msg-1"
    assert execution.variables["trigger"] == {"type": "manual"}
    assert [m["content"] for m in engine.messaging.sent] == ["Hi Ana, welcome to Acme"]
    assert engine.contacts.contacts["contact-1"]["tags"] == ["welcomed"]
    assert engine.queue.pending_count() == 0


async def test_flow_completes_when_no_edge_leaves_the_last_node(engine):
    flow = engine.store.add_flow(make_flow(
        [node("t", "trigger"), node("tag", "add_tag", tags=["lead"])],
        [edge("t", "tag")],
    ))

    execution = await engine.executor.start(flow.id, "contact-1", {})
    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.step == 2


async def test_wait_suspends_execution(engine):
    flow = engine.store.add_flow(make_flow(
        [node("t", "trigger"), node("w", "wait", duration=2, unit="minutes"),
         node("m", "send_message", message="Still there?")],
        [edge("t", "w"), edge("w", "m")],
    ))

    execution = await engine.executor.start(flow.id, "contact-1", {})
    before = utcnow()
    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.status is ExecutionStatus.RUNNING
    assert execution.current_node_id == "w"
    assert execution.step_state is StepState.DONE
    assert before + timedelta(seconds=115) < execution.resume_at < utcnow() + timedelta(seconds=125)
    assert engine.queue.delayed_count() == 1
    assert engine.messaging.sent == []

    # The delayed job fires: the run continues after the wait node
    await engine.executor.advance(execution.id)
    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.resume_at is None
    assert [m["content"] for m in engine.messaging.sent] == ["Still there?"]


@pytest.mark.parametrize("score,tag", [(80, "hot"), (10, "cold")])
async def test_condition_branching(engine, score, tag):
    flow = engine.store.add_flow(make_flow(
        [
            node("t", "trigger"),
            node("c", "condition", conditions=[
                {"field": "contact.engagement_score", "operator": "greater_than", "value": 50},
            ]),
            node("hot", "add_tag", tags=["hot"]),
            node("cold", "add_tag", tags=["cold"]),
        ],
        [edge("t", "c"), edge("c", "hot", "true"), edge("c", "cold", "false")],
    ))
    engine.contacts.add("lead-1", custom_fields={"engagement_score": score})

    execution = await engine.executor.start(flow.id, "lead-1", {})
    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.variables["conditionResult"] is (score > 50)
    assert engine.contacts.contacts["lead-1"]["tags"] == [tag]


async def test_crashed_step_is_resumed_without_repeating_side_effects(engine):
    flow = engine.store.add_flow(welcome_flow())
    execution = await engine.executor.start(flow.id, "contact-1", {})

    # Trigger node
    await engine.executor.advance(execution.id)

    # Simulate a worker that persisted entry into "m", sent, and died before merging
    execution = await engine.store.load_execution(execution.id)
    execution.current_node_id = "m"
    execution.step += 1
    execution.step_state = StepState.ENTERED
    await engine.store.save_execution(execution)
    await engine.step_cache.record(execution.step_key("m"),
                                   NodeResult(variables={"lastMessageId": "msg-before-crash"}).to_dict())

    await engine.executor.advance(execution.id)

    resumed = await engine.store.load_execution(execution.id)
    assert resumed.step == execution.step
    assert resumed.step_state is StepState.DONE
    assert resumed.variables["lastMessageId"] == "msg-before-crash"
    assert engine.messaging.sent == []


async def test_retryable_failure_keeps_execution_running(engine):
    flow = engine.store.add_flow(welcome_flow())
    execution = await engine.executor.start(flow.id, "contact-1", {})
    await engine.executor.advance(execution.id)
    engine.messaging.failures = 1

    with pytest.raises(HandlerError):
        await engine.executor.advance(execution.id, final_attempt=False)

    failed_once = await engine.store.load_execution(execution.id)
    assert failed_once.status is ExecutionStatus.RUNNING
    assert failed_once.step_state is StepState.ENTERED
    assert "messaging service unavailable" in failed_once.error_message

    await engine.executor.advance(execution.id, final_attempt=False)

    recovered = await engine.store.load_execution(execution.id)
    assert recovered.step == failed_once.step
    assert recovered.error_message is None
    assert len(engine.messaging.sent) == 1


async def test_final_attempt_failure_fails_execution(engine):
    flow = engine.store.add_flow(welcome_flow())
    execution = await engine.executor.start(flow.id, "contact-1", {})
    await engine.executor.advance(execution.id)
    engine.messaging.failures = 1

    with pytest.raises(HandlerError):
        await engine.executor.advance(execution.id, final_attempt=True)

    failed = await engine.store.load_execution(execution.id)
    assert failed.status is ExecutionStatus.FAILED
    assert failed.completed_at is not None
    assert await engine.executor.advance(execution.id) is None


async def test_unknown_node_type_fails_execution(engine):
    flow = engine.store.add_flow(make_flow(
        [node("t", "trigger"), node("mystery-1", "mystery")],
        [edge("t", "mystery-1")],
        validate=False,
    ))

    execution = await engine.executor.start(flow.id, "contact-1", {})
    await engine.executor.advance(execution.id)

    with pytest.raises(UnknownNodeType):
        await engine.executor.advance(execution.id, final_attempt=False)

    failed = await engine.store.load_execution(execution.id)
    assert failed.status is ExecutionStatus.FAILED
    assert failed.error_message == "Unknown node type: mystery"


async def test_http_failure_does_not_fail_the_run(engine):
    flow = engine.store.add_flow(make_flow(
        [node("t", "trigger"),
         node("h", "http_request", url="http://127.0.0.1:1/hook", method="POST", body={"a": 1}),
         node("e", "end")],
        [edge("t", "h"), edge("h", "e")],
    ))

    execution = await engine.executor.start(flow.id, "contact-1", {})
    await engine.executor.advance(execution.id)
    await engine.executor.advance(execution.id)

    after_request = await engine.store.load_execution(execution.id)
    assert after_request.status is ExecutionStatus.RUNNING
    assert after_request.current_node_id == "h"
    assert after_request.variables["httpStatus"] == 0
    assert after_request.variables["httpError"]

    await engine.run_until_idle()
    assert (await engine.store.load_execution(execution.id)).status is ExecutionStatus.COMPLETED


async def test_test_mode_suppresses_sends(engine):
    flow = engine.store.add_flow(welcome_flow())

    execution = await engine.executor.start_test(flow.id, "contact-1", triggered_by="user-7")
    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.test_mode is True
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.variables["trigger"] == {"type": "manual", "testMode": True, "triggeredBy": "user-7"}
    assert execution.variables["lastMessageId"] == TEST_MESSAGE_ID
    assert engine.messaging.sent == []


async def test_start_manual_merges_payload(engine):
    flow = engine.store.add_flow(welcome_flow())

    execution = await engine.executor.start_manual(flow.id, "contact-1", {"source": "crm"})

    assert execution.variables["trigger"] == {"type": "manual", "source": "crm"}
    assert execution.variables["brand"] == "Acme"
    assert execution.step == 0
    assert execution.current_node_id is None


async def test_start_errors(engine):
    inactive = engine.store.add_flow(welcome_flow(is_active=False))
    active = engine.store.add_flow(welcome_flow())
    engine.contacts.add("foreign", team_id=OTHER_TEAM_ID)

    with pytest.raises(FlowNotFound):
        await engine.executor.start("no-such-flow", "contact-1", {})
    with pytest.raises(FlowNotActive):
        await engine.executor.start(inactive.id, "contact-1", {})
    with pytest.raises(ContactNotFound):
        await engine.executor.start(active.id, None, {})
    with pytest.raises(ContactNotFound):
        await engine.executor.start_manual(active.id, "foreign")
    with pytest.raises(ContactNotFound):
        await engine.executor.start_manual(active.id, "nobody")

    assert engine.store.executions == {}


async def test_deleted_flow_cannot_start(engine):
    flow = welcome_flow()
    flow.deleted_at = utcnow()
    engine.store.add_flow(flow)

    with pytest.raises(FlowNotFound):
        await engine.executor.start(flow.id, "contact-1", {})


async def test_advance_unknown_execution(engine):
    with pytest.raises(ExecutionNotFound):
        await engine.executor.advance("missing")


async def test_missing_contact_fails_execution(engine):
    flow = engine.store.add_flow(welcome_flow())
    execution = await engine.executor.start(flow.id, "contact-1", {})
    del engine.contacts.contacts["contact-1"]

    with pytest.raises(ContactNotFound):
        await engine.executor.advance(execution.id, final_attempt=False)

    failed = await engine.store.load_execution(execution.id)
    assert failed.status is ExecutionStatus.FAILED
