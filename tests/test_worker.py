"""Flow worker: retries with backoff, dead letters and the task pool."""

import asyncio

import pytest

from services.execution.errors import FlowNotFound, HandlerError
from services.execution.models import ExecutionStatus, Job, JobOptions, RetryPolicy
from services.execution.recovery import RecoverySweeper

from conftest import edge, make_flow, node


def send_flow():
    return make_flow(
        [node("t", "trigger"), node("m", "send_message", message="hello"), node("e", "end")],
        [edge("t", "m"), edge("m", "e")],
    )


async def test_failed_step_is_retried_until_it_succeeds(engine):
    flow = engine.store.add_flow(send_flow())
    engine.messaging.failures = 2

    execution = await engine.executor.start(flow.id, "contact-1", {})
    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.error_message is None
    assert len(engine.messaging.sent) == 1
    assert await engine.dlq.list_entries() == []


async def test_exhausted_job_fails_execution_and_is_dead_lettered(engine):
    flow = engine.store.add_flow(send_flow())
    engine.messaging.failures = 10
    abandoned = []
    engine.queue.on("failed", lambda job, error: abandoned.append((job, error)))

    execution = await engine.executor.start(flow.id, "contact-1", {})
    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.status is ExecutionStatus.FAILED
    assert "messaging service unavailable" in execution.error_message
    assert engine.messaging.failures == 7

    entries = await engine.dlq.list_entries()
    assert len(entries) == 1
    assert entries[0].execution_id == execution.id
    assert entries[0].flow_id == flow.id
    assert entries[0].node_id == "m"
    assert entries[0].attempts == 3

    assert len(abandoned) == 1
    assert isinstance(abandoned[0][1], HandlerError)
    assert engine.queue.pending_count() == 0


async def test_non_retryable_error_is_not_retried(engine):
    flow = engine.store.add_flow(send_flow())
    execution = await engine.executor.start(flow.id, "contact-1", {})
    del engine.store.flows[flow.id]

    await engine.run_until_idle()

    execution = await engine.store.load_execution(execution.id)
    assert execution.status is ExecutionStatus.FAILED
    entries = await engine.dlq.list_entries()
    assert entries[0].attempts == 1


async def test_job_for_finished_execution_is_acknowledged(engine):
    flow = engine.store.add_flow(send_flow())
    execution = await engine.executor.start(flow.id, "contact-1", {})
    await engine.run_until_idle()

    completed = []
    engine.queue.on("completed", lambda job, result: completed.append(result))
    await engine.scheduler.schedule(execution.id)
    await engine.run_until_idle()

    assert completed == [None]
    assert len(engine.messaging.sent) == 1


async def test_job_without_execution_id_is_dropped(engine):
    await engine.queue.enqueue({"unexpected": True}, JobOptions())
    assert await engine.run_until_idle() == 1
    assert engine.queue.pending_count() == 0


async def test_worker_pool_drains_queue(engine):
    flow = engine.store.add_flow(send_flow())
    executions = [await engine.executor.start(flow.id, "contact-1", {}) for _ in range(3)]

    await engine.worker.start()
    assert engine.worker.is_running

    for _ in range(200):
        loaded = [await engine.store.load_execution(e.id) for e in executions]
        if all(e.status is ExecutionStatus.COMPLETED for e in loaded):
            break
        await asyncio.sleep(0.01)

    await engine.worker.stop()

    assert not engine.worker.is_running
    assert all(e.status is ExecutionStatus.COMPLETED for e in loaded)
    assert len(engine.messaging.sent) == 3


async def test_recovery_reschedules_running_executions(engine):
    flow = engine.store.add_flow(make_flow(
        [node("t", "trigger"), node("w", "wait", duration=1, unit="hours"), node("e", "end")],
        [edge("t", "w"), edge("w", "e")],
    ))
    waiting = await engine.executor.start(flow.id, "contact-1", {})
    fresh = await engine.executor.start(flow.id, "contact-1", {})
    await engine.executor.advance(waiting.id)
    await engine.executor.advance(waiting.id)

    # Restart: queued jobs are gone, executions remain
    await engine.queue.close()
    sweeper = RecoverySweeper(engine.store, engine.scheduler)

    recovered = await sweeper.scan_on_startup()

    assert sorted(recovered) == sorted([waiting.id, fresh.id])
    assert engine.queue.delayed_count() == 1
    assert engine.queue.pending_count() == 2


def test_retry_policy_delays():
    policy = RetryPolicy(max_attempts=5, initial_delay_ms=5000, max_delay_ms=30000)

    assert policy.calculate_delay(0) == 5000
    assert policy.calculate_delay(1) == 10000
    assert policy.calculate_delay(2) == 20000
    assert policy.calculate_delay(3) == 30000


def test_retry_policy_respects_attempts_and_retryability():
    policy = RetryPolicy(max_attempts=3)

    assert policy.should_retry(HandlerError("m", "send_message", "boom"), 1) is True
    assert policy.should_retry(ConnectionError("boom"), 2) is True
    assert policy.should_retry(HandlerError("m", "send_message", "boom"), 3) is False
    assert policy.should_retry(FlowNotFound("f"), 1) is False


@pytest.mark.parametrize("attempts_made,expected", [(0, False), (1, False), (2, True)])
def test_job_final_attempt(attempts_made, expected):
    job = Job.create("q", {"executionId": "e"}, JobOptions(attempts=3))
    job.attempts_made = attempts_made
    assert job.is_final_attempt is expected


def test_job_options_round_trip_backoff():
    options = JobOptions.from_dict({"delay_ms": 10, "attempts": 4, "backoff": {"type": "exponential", "delay": 250}})
    assert options.retry_policy().initial_delay_ms == 250
    assert options.to_dict()["backoff"] == {"type": "exponential", "delay": 250}
