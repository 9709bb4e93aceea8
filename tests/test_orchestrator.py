"""Test the end-to-end messaging workflow against the in-memory backend"""
import json

import pytest

from topoflow.messaging.clients import ClientHandles, MessagingServices
from topoflow.messaging.config import BatchSettings, Settings, SettlePolicy
from topoflow.messaging.graph import RunState, StepStatus
from topoflow.messaging.memory_backend import InMemoryBackend
from topoflow.messaging.models import QueueRef
from topoflow.messaging.orchestrator import QUEUE_DETAIL, WorkflowOrchestrator, run_workflow


FAST_SETTLE = SettlePolicy(initial_delay=0, max_attempts=2, backoff_initial=0.01, receive_wait_seconds=0)
FAST_BATCHES = BatchSettings(inspect_wait_seconds=0, delete_wait_seconds=0)


@pytest.fixture
def settings():
    return Settings(backend="memory", settle=FAST_SETTLE, batches=FAST_BATCHES, call_timeout=5)


async def _queue_ref(services, name="demo-queue"):
    url = await services.queues.create_queue(name)
    return QueueRef(locator=url, identity=await services.queues.resolve_identity(url))


@pytest.mark.asyncio
async def test_full_workflow_completes(settings):
    """Test that every step succeeds on a healthy backend"""
    report = await run_workflow(settings)

    assert report.state is RunState.COMPLETED
    assert all(step.status is StepStatus.SUCCEEDED for step in report.steps)
    assert report.error is None
    assert len(report.trace()) == len(report.steps) + 1


@pytest.mark.asyncio
async def test_workflow_step_order(settings, services):
    """Test the plan's steps and key dependencies"""
    orchestrator = WorkflowOrchestrator(services, settle=settings.settle, batches=settings.batches)
    graph = orchestrator.build_plan()

    assert graph.step_names[:5] == ["queue.create", "queue.resolve", "topic.create", "topic.subscribe", "bus.create"]
    assert graph.step_names[-1] == "queue.purge"
    assert set(graph.dependencies_of("topic.subscribe")) == {"queue.resolve", "topic.create"}
    assert set(graph.dependencies_of("queue.purge")) >= {"inventory.queues", "inventory.topics", "inventory.rules"}


@pytest.mark.asyncio
async def test_routed_events_are_drained(settings, backend):
    """Test that both routed events reach the queue and are consumed"""
    report = await run_workflow(settings, backend=backend)

    drained = report.results["queue.drain"]
    assert drained.received == 2
    assert drained.deleted == 2

    bodies = [json.loads(body) for body in drained.bodies]
    notifications = [body for body in bodies if body.get("Type") == "Notification"]
    assert len(notifications) == 1
    event = json.loads(notifications[0]["Message"])
    assert event["detail-type"] == "sns-target-rule"
    assert event["detail"]["orderId"] == "ORDER-001"
    assert QUEUE_DETAIL in bodies


@pytest.mark.asyncio
async def test_inventory_lists_created_resources(settings, backend):
    """Test that the listing steps see the workflow's resources"""
    report = await run_workflow(settings, backend=backend)

    assert len(report.results["inventory.queues"]) == 1
    assert len(report.results["inventory.topics"]) == 1
    rules = report.results["inventory.rules"]
    assert {rule.name for rule in rules} == {"sns-target-rule", "sqs-target-rule"}
    [subscription] = report.results["topic.list_subscriptions"]
    assert subscription.protocol == "sqs"


@pytest.mark.asyncio
async def test_empty_drain_is_a_no_op(services, backend):
    """Test that draining an empty queue deletes nothing and succeeds"""
    orchestrator = WorkflowOrchestrator(services, settle=FAST_SETTLE)
    queue = await _queue_ref(services)

    result = await orchestrator.drain(queue)

    assert result.empty
    assert result.attempts == 2
    assert backend.operation_count("delete_message") == 0


@pytest.mark.asyncio
async def test_drain_polls_until_messages_arrive():
    """Test that late deliveries are picked up by the backoff retries"""
    async with InMemoryBackend(delivery_delay=0.1) as backend:
        delayed = MessagingServices.from_handles(ClientHandles(backend.sqs, backend.sns, backend.events), timeout=5)
        settle = SettlePolicy(initial_delay=0, max_attempts=4, backoff_initial=0.05, receive_wait_seconds=0)
        orchestrator = WorkflowOrchestrator(delayed, settle=settle)
        queue = await _queue_ref(delayed)
        topic = await delayed.topics.create_topic("demo-topic")
        await delayed.topics.subscribe_queue(topic, queue.identity)

        await delayed.topics.publish(topic, "late")
        result = await orchestrator.drain(queue)

    assert result.received == 1
    assert result.attempts > 1


@pytest.mark.asyncio
async def test_drain_consumes_more_than_one_batch(services):
    """Test that draining continues until a receive comes back empty"""
    orchestrator = WorkflowOrchestrator(services, settle=FAST_SETTLE)
    queue = await _queue_ref(services)
    for i in range(13):
        await services.queues.send(queue.locator, f"message-{i}")

    result = await orchestrator.drain(queue)

    assert result.received == 13
    assert result.deleted == 13


@pytest.mark.asyncio
async def test_hard_failure_skips_dependents(settings, backend):
    """Test that a failed topic blocks its dependents but not the queue branch"""
    backend.inject_failure("create_topic", "InternalFailure")

    report = await run_workflow(settings, backend=backend)

    assert report.state is RunState.FAILED
    assert report.step("topic.create").status is StepStatus.FAILED
    assert report.step("topic.subscribe").status is StepStatus.SKIPPED
    assert report.step("queue.purge").status is StepStatus.SKIPPED
    assert report.step("queue.create").status is StepStatus.SUCCEEDED
    assert report.step("queue.resolve").status is StepStatus.SUCCEEDED
    assert report.step("bus.create").status is StepStatus.SUCCEEDED
    assert report.error.startswith("topic.create:")
    assert "InternalFailure" in report.error


@pytest.mark.asyncio
async def test_rate_limited_purge_is_tolerated(settings, backend):
    """Test that a rate-limited purge does not fail the workflow"""
    backend.inject_failure("purge_queue", "AWS.SimpleQueueService.PurgeQueueInProgress")

    report = await run_workflow(settings, backend=backend)

    assert report.state is RunState.COMPLETED
    assert report.results["queue.purge"] is False
    assert "rate-limited" in report.step("queue.purge").summary


@pytest.mark.asyncio
async def test_existing_bus_is_reused(settings, backend):
    """Test that a pre-existing bus does not fail the workflow"""
    await backend.events.create_event_bus(Name="demo-bus")

    report = await run_workflow(settings, backend=backend)

    assert report.succeeded


@pytest.mark.asyncio
@pytest.mark.parametrize("slow_operation", ["get_queue_attributes", "create_topic"])
async def test_subscription_join_with_slow_branch(settings, backend, slow_operation):
    """Test that the subscription waits for whichever branch finishes last"""
    backend.set_latency(slow_operation, 0.05)

    report = await run_workflow(settings, backend=backend)

    assert report.succeeded
    integration = report.results["topic.subscribe"]
    assert integration.queue == report.results["queue.resolve"]
    assert integration.topic_identity == report.results["topic.create"].identity


@pytest.mark.asyncio
async def test_inspect_then_delete_batch(services):
    """Test that inspected messages stay invisible to the delete step"""
    orchestrator = WorkflowOrchestrator(services, batches=FAST_BATCHES)
    queue = await _queue_ref(services)
    await orchestrator.send_direct(queue)

    inspected = await orchestrator.inspect(queue)
    deleted = await orchestrator.delete_batch(queue)

    assert len(inspected) == 1
    assert inspected[0].decode()["type"] == "direct-sqs"
    assert deleted == 0


@pytest.mark.asyncio
async def test_delete_batch(services):
    """Test deleting a received batch"""
    orchestrator = WorkflowOrchestrator(services, batches=FAST_BATCHES)
    queue = await _queue_ref(services)
    for _ in range(3):
        await orchestrator.send_direct(queue)

    assert await orchestrator.delete_batch(queue) == 2


@pytest.mark.asyncio
async def test_drain_waits_for_every_routed_event(settings):
    """Test that the slower topic route is drained along with the direct queue route"""
    settings.settle = SettlePolicy(initial_delay=0, max_attempts=6, backoff_initial=0.05, receive_wait_seconds=0)

    async with InMemoryBackend(delivery_delay=0.1) as backend:
        report = await run_workflow(settings, backend=backend)

    assert report.succeeded
    drained = report.results["queue.drain"]
    assert drained.received == 2
    assert drained.deleted == 2
    assert any("ORDER-001" in body for body in drained.bodies)
    assert all("ORDER-001" not in message.body for message in report.results["queue.inspect"])


@pytest.mark.asyncio
async def test_drain_keeps_polling_until_expected_count():
    """Test that a visible message does not end the drain while others are in flight"""
    async with InMemoryBackend(delivery_delay=0.1) as backend:
        delayed = MessagingServices.from_handles(ClientHandles(backend.sqs, backend.sns, backend.events), timeout=5)
        settle = SettlePolicy(initial_delay=0, max_attempts=6, backoff_initial=0.05, receive_wait_seconds=0)
        orchestrator = WorkflowOrchestrator(delayed, settle=settle)
        queue = await _queue_ref(delayed)
        topic = await delayed.topics.create_topic("demo-topic")
        await delayed.topics.subscribe_queue(topic, queue.identity)

        await delayed.queues.send(queue.locator, "direct")
        await delayed.topics.publish(topic, "routed")
        result = await orchestrator.drain(queue, expected=2)

    assert result.received == 2
    assert result.attempts > 2


@pytest.mark.asyncio
async def test_drain_gives_up_on_missing_messages(services, caplog):
    """Test that a shortfall ends after the retries and is logged"""
    orchestrator = WorkflowOrchestrator(services, settle=FAST_SETTLE)
    queue = await _queue_ref(services)
    await services.queues.send(queue.locator, "only one")

    with caplog.at_level("WARNING"):
        result = await orchestrator.drain(queue, expected=2)

    assert result.received == 1
    assert result.deleted == 1
    assert "Drained 1 of 2" in caplog.text


@pytest.mark.asyncio
async def test_drain_depends_on_both_publishes(services):
    """Test that the drain step receives both publish results"""
    graph = WorkflowOrchestrator(services).build_plan()

    assert graph.dependencies_of("queue.drain")[:3] == ["queue.resolve", "event.to_topic", "event.to_queue"]
