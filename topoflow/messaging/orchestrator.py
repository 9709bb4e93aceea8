"""Workflow Orchestrator

Builds and runs the end-to-end messaging demonstration as a task graph:

    queue.create -> queue.resolve ─┐
    topic.create ──────────────────┴─> topic.subscribe ─┐
    bus.create ─────────────────────────────────────────┴─> rule.topic_target
        -> rule.queue_target -> event.to_topic -> event.to_queue -> queue.drain
        -> topic.publish -> topic.publish_with_subject -> queue.send
        -> queue.inspect -> queue.delete_batch -> topic.list_subscriptions
        -> {inventory.queues, inventory.topics, inventory.rules} -> queue.purge

Every step receives exactly the upstream results it declares.
"""
import asyncio
import json
import logging
from typing import List, Optional

from topoflow.messaging.clients import MessagingServices, open_services
from topoflow.messaging.config import BatchSettings, Settings, SettlePolicy, WorkflowNames
from topoflow.messaging.graph import GraphReport, TaskGraph
from topoflow.messaging.memory_backend import InMemoryBackend
from topoflow.messaging.models import (
    DrainResult,
    EventPattern,
    IntegrationInfo,
    Message,
    PublishEventsResult,
    QueueRef,
    SubscriptionRef,
    Target,
    TopicRef,
)

# Report type returned by run()
WorkflowReport = GraphReport

ORDER_DETAIL = {
    "orderId": "ORDER-001",
    "customer": "Test User",
    "amount": 100.0,
    "currency": "USD",
}
QUEUE_DETAIL = {"type": "sqs-message", "content": "Direct to SQS"}


class WorkflowOrchestrator:
    """Runs the messaging demonstration against the three services

    The façades are owned by the caller and shared by every step.
    """

    def __init__(
        self,
        services: MessagingServices,
        *,
        names: Optional[WorkflowNames] = None,
        settle: Optional[SettlePolicy] = None,
        batches: Optional[BatchSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.queues = services.queues
        self.topics = services.topics
        self.router = services.router
        self.names = names or WorkflowNames()
        self.settle = settle or SettlePolicy()
        self.batches = batches or BatchSettings()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    # --- Queue branch ---

    async def create_queue(self) -> str:
        return await self.queues.create_queue(self.names.queue)

    async def resolve_queue(self, locator: str) -> QueueRef:
        identity = await self.queues.resolve_identity(locator)
        self._logger.info(f"Queue ARN: {identity}")
        return QueueRef(locator=locator, identity=identity)

    # --- Topic branch ---

    async def create_topic(self) -> TopicRef:
        return TopicRef(identity=await self.topics.create_topic(self.names.topic))

    async def subscribe(self, queue: QueueRef, topic: TopicRef) -> IntegrationInfo:
        subscription = await self.topics.subscribe_queue(topic.identity, queue.identity)
        return IntegrationInfo(
            queue=queue,
            topic_identity=topic.identity,
            subscription=SubscriptionRef(identity=subscription),
        )

    # --- Router branch ---

    async def create_bus(self) -> str:
        await self.router.create_bus(self.names.bus)
        return self.names.bus

    async def route_to_topic(self, integration: IntegrationInfo, bus_name: str) -> Target:
        rule = self.names.sns_rule
        await self.router.define_rule(bus_name, rule, EventPattern(source=self.names.source, detail_type=rule))
        target = Target.for_topic(rule, integration.topic_identity)
        await self.router.attach_target(bus_name, rule, target)
        return target

    async def route_to_queue(self, queue: QueueRef, bus_name: str) -> Target:
        rule = self.names.sqs_rule
        await self.router.define_rule(bus_name, rule, EventPattern(source=self.names.source, detail_type=rule))
        target = Target.for_queue(rule, queue.identity)
        await self.router.attach_target(bus_name, rule, target)
        return target

    async def publish_event(self, bus_name: str, detail_type: str, detail: dict) -> PublishEventsResult:
        return await self.router.publish_event(bus_name, self.names.source, detail_type, detail)

    # --- Consumption ---

    async def drain(self, queue: QueueRef, expected: int = 0) -> DrainResult:
        """Wait for routed messages to become visible and consume them

        The first receive follows the settle delay. Every non-empty batch
        is deleted and followed by another receive. An empty receive ends
        the drain once ``expected`` messages were received (and at least
        one, when nothing is expected); otherwise the messages still on
        their way are treated as not yet visible and the receive is retried
        with backoff, up to the policy's retry limit. Finding nothing at
        all is a no-op result.

        Args:
            queue: Queue to drain
            expected: Number of messages known to be routed to the queue
        """
        policy = self.settle
        result = DrainResult()
        await asyncio.sleep(policy.initial_delay)

        delays = policy.delays()
        batches = 0
        while batches < policy.max_batches:
            result.attempts += 1
            batch = await self.queues.receive(
                queue.locator, self.batches.drain_max_messages, policy.receive_wait_seconds
            )
            if batch:
                batches += 1
                await self._consume(queue, batch, result)
                continue
            if result.received and result.received >= expected:
                break
            delay = next(delays, None)
            if delay is None:
                break
            self._logger.info(f"Received {result.received} of {expected or 'any'} message(s) "
                              f"after attempt {result.attempts}, retrying in {delay:g}s")
            await asyncio.sleep(delay)

        if result.empty:
            self._logger.info(f"No messages in queue: {queue.locator}")
        elif result.received < expected:
            self._logger.warning(f"Drained {result.received} of {expected} routed message(s) "
                                 f"from queue: {queue.locator}")
        return result

    async def drain_routed(self, queue: QueueRef, *published: PublishEventsResult) -> DrainResult:
        """Drain the queue, expecting one message per accepted event"""
        return await self.drain(queue, expected=sum(len(result.event_ids) for result in published))

    async def _consume(self, queue: QueueRef, batch: List[Message], result: DrainResult) -> None:
        self._logger.info(f"Processing {len(batch)} messages from queue: {queue.locator}")
        for message in batch:
            self._logger.info(f"Received message: {message.body}")
            self._logger.info(f"Message ID: {message.id}")
        result.received += len(batch)
        result.bodies.extend(message.body for message in batch)
        deletes = await self.queues.delete_all(queue.locator, batch)
        result.deleted += deletes.succeeded
        deletes.raise_for_failures()

    async def publish_direct(self, topic: TopicRef, subject: Optional[str] = None) -> str:
        if subject is None:
            body = {"type": "direct", "message": "Hello from SNS without subject!"}
        else:
            body = {"type": "direct-with-subject", "message": "Hello from SNS with subject!"}
        return await self.topics.publish(topic.identity, json.dumps(body), subject)

    async def send_direct(self, queue: QueueRef) -> str:
        body = {"type": "direct-sqs", "content": "Hello directly to SQS!"}
        return await self.queues.send(queue.locator, json.dumps(body))

    async def inspect(self, queue: QueueRef) -> List[Message]:
        messages = await self.queues.receive(
            queue.locator, self.batches.inspect_max_messages, self.batches.inspect_wait_seconds
        )
        self._logger.info(f"Received {len(messages)} messages")
        for message in messages:
            self._logger.info(f"  Message ID: {message.id}")
            self._logger.info(f"  Body: {message.body}")
        return messages

    async def delete_batch(self, queue: QueueRef) -> int:
        messages = await self.queues.receive(
            queue.locator, self.batches.delete_max_messages, self.batches.delete_wait_seconds
        )
        if not messages:
            self._logger.info("No messages to delete")
            return 0
        for message in messages:
            self._logger.info(f"Deleting message: {message.id}")
        deletes = await self.queues.delete_all(queue.locator, messages)
        deletes.raise_for_failures()
        return deletes.succeeded

    async def purge(self, queue: QueueRef) -> bool:
        return await self.queues.purge(queue.locator)

    # --- Plan ---

    def build_plan(self) -> TaskGraph:
        """Build the task graph of the demonstration workflow"""
        graph = TaskGraph("messaging workflow", logger=self._logger)
        names = self.names

        queue_url = graph.add("queue.create", self.create_queue, describe=lambda url: f"url={url}")
        queue = graph.add("queue.resolve", self.resolve_queue, requires=[queue_url],
                          describe=lambda ref: f"arn={ref.identity}")
        topic = graph.add("topic.create", self.create_topic, describe=lambda ref: f"arn={ref.identity}")
        integration = graph.add("topic.subscribe", self.subscribe, requires=[queue, topic],
                                describe=lambda info: f"subscription={info.subscription.identity}")
        bus_ready = graph.add("bus.create", self.create_bus, describe=lambda name: f"bus={name}")

        topic_rule = graph.add("rule.topic_target", self.route_to_topic, requires=[integration, bus_ready],
                               describe=lambda target: f"{target.target_id} -> {target.destination_arn}")
        queue_rule = graph.add("rule.queue_target", self.route_to_queue, requires=[queue, bus_ready],
                               after=[topic_rule],
                               describe=lambda target: f"{target.target_id} -> {target.destination_arn}")

        to_topic = graph.add(
            "event.to_topic",
            lambda bus_name: self.publish_event(bus_name, names.sns_rule, ORDER_DETAIL),
            requires=[bus_ready], after=[queue_rule], describe=_describe_publish,
        )
        to_queue = graph.add(
            "event.to_queue",
            lambda bus_name: self.publish_event(bus_name, names.sqs_rule, QUEUE_DETAIL),
            requires=[bus_ready], after=[to_topic], describe=_describe_publish,
        )

        drained = graph.add("queue.drain", self.drain_routed, requires=[queue, to_topic, to_queue],
                            describe=lambda r: f"{r.received} received, {r.deleted} deleted "
                                               f"after {r.attempts} attempt(s)")
        plain = graph.add("topic.publish", self.publish_direct, requires=[topic], after=[drained],
                          describe=lambda message_id: f"message_id={message_id}")
        with_subject = graph.add(
            "topic.publish_with_subject",
            lambda ref: self.publish_direct(ref, subject="Test Subject"),
            requires=[topic], after=[plain], describe=lambda message_id: f"message_id={message_id}",
        )
        sent = graph.add("queue.send", self.send_direct, requires=[queue], after=[with_subject],
                         describe=lambda message_id: f"message_id={message_id}")
        inspected = graph.add("queue.inspect", self.inspect, requires=[queue], after=[sent],
                              describe=lambda messages: f"{len(messages)} message(s)")
        deleted = graph.add("queue.delete_batch", self.delete_batch, requires=[queue], after=[inspected],
                            describe=lambda count: f"{count} deleted")
        subscriptions = graph.add(
            "topic.list_subscriptions",
            lambda ref: self.topics.list_subscriptions(ref.identity),
            requires=[topic], after=[deleted],
            describe=lambda subs: ", ".join(f"{s.protocol}:{s.endpoint}" for s in subs) or "none",
        )

        inventory = [
            graph.add("inventory.queues", self.queues.list_queues, after=[subscriptions],
                      describe=lambda urls: f"{len(urls)} queue(s)"),
            graph.add("inventory.topics", self.topics.list_topics, after=[subscriptions],
                      describe=lambda arns: f"{len(arns)} topic(s)"),
            graph.add("inventory.rules", lambda bus_name: self.router.list_rules(bus_name),
                      requires=[bus_ready], after=[subscriptions],
                      describe=lambda rules: ", ".join(f"{r.name}({r.state})" for r in rules) or "none"),
        ]

        graph.add("queue.purge", self.purge, requires=[queue], after=inventory,
                  describe=lambda purged: "purged" if purged else "purge rate-limited, skipped")
        return graph

    async def run(self) -> WorkflowReport:
        """Run the whole workflow once

        Returns:
            Report with the final state, the first failure (if any) and one
            trace line per step
        """
        return await self.build_plan().run()


def _describe_publish(result: PublishEventsResult) -> str:
    if result.ok:
        return f"event_ids={','.join(result.event_ids)}"
    codes = ",".join(failure.error_code for failure in result.failures)
    return f"{result.failed_entry_count} entry(ies) failed ({codes})"


async def run_workflow(
    settings: Optional[Settings] = None,
    *,
    backend: Optional[InMemoryBackend] = None,
    logger: Optional[logging.Logger] = None,
) -> WorkflowReport:
    """Open the backend clients, run the demonstration workflow, close the clients

    Args:
        settings: Connection and workflow settings, loaded from the
            environment if None
        backend: In-memory backend to run against instead of the network
        logger: Logger instance, uses standard library logging if None

    Returns:
        The workflow report
    """
    settings = settings or Settings()
    logger = logger if logger is not None else logging.getLogger(__name__)
    async with open_services(settings, backend=backend, logger=logger) as services:
        orchestrator = WorkflowOrchestrator(
            services,
            names=settings.names,
            settle=settings.settle,
            batches=settings.batches,
            logger=logger,
        )
        report = await orchestrator.run()
    logger.info("All services demonstration completed" if report.succeeded
                else f"Error in demonstration: {report.error}")
    return report
