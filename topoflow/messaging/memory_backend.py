"""In-memory messaging backend

An in-process stand-in for the queue, pub/sub and event router services.
Each service is exposed as a client object with the same request and
response shapes as the network clients, so the façades run unchanged
against it. Designed for development, testing and demonstrations where
no backend endpoint is available.

Usage:
    from topoflow.messaging.memory_backend import InMemoryBackend

    async with InMemoryBackend() as backend:
        response = await backend.sqs.create_queue(QueueName="orders")
        await backend.sqs.send_message(QueueUrl=response["QueueUrl"], MessageBody="hi")
"""
import asyncio
import json
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from botocore.exceptions import ClientError

from topoflow.messaging.models import BusEvent, Rule
from topoflow.messaging.models import EventPattern as PatternModel


def _client_error(operation: str, code: str, message: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"HTTPStatusCode": 400}},
        operation,
    )


def _select(document: Dict[str, Any], path: Optional[str]) -> Any:
    """Apply a simple ``$.a.b`` input path to a document"""
    if not path or path == "$":
        return document
    if not path.startswith("$."):
        raise ValueError(f"Unsupported input path: {path}")
    value: Any = document
    for key in path[2:].split("."):
        value = value.get(key) if isinstance(value, dict) else None
    return value


class _StoredMessage:
    """A message held by an in-memory queue."""

    def __init__(self, body: str) -> None:
        self.message_id = str(uuid.uuid4())
        self.body = body
        self.sent_at = time.time()
        self.receipt_handle: Optional[str] = None
        self.invisible_until = 0.0
        self.receive_count = 0


class _MemoryQueue:
    """State of one in-memory queue."""

    def __init__(self, name: str, url: str, arn: str, attributes: Dict[str, str]) -> None:
        self.name = name
        self.url = url
        self.arn = arn
        self.attributes = dict(attributes)
        self.messages: List[_StoredMessage] = []
        self.arrival = asyncio.Event()
        self.last_purge: Optional[float] = None

    def put(self, body: str) -> _StoredMessage:
        message = _StoredMessage(body)
        self.messages.append(message)
        self.arrival.set()
        return message

    def take_visible(self, limit: int, visibility_timeout: float) -> List[_StoredMessage]:
        now = time.monotonic()
        batch = []
        for message in self.messages:
            if len(batch) >= limit:
                break
            if message.invisible_until <= now:
                message.receipt_handle = str(uuid.uuid4())
                message.invisible_until = now + visibility_timeout
                message.receive_count += 1
                batch.append(message)
        return batch

    def next_visible_in(self) -> Optional[float]:
        """Seconds until the earliest in-flight message becomes visible again."""
        now = time.monotonic()
        pending = [m.invisible_until - now for m in self.messages if m.invisible_until > now]
        return min(pending) if pending else None


class InMemorySqsClient:
    """Queue service client backed by an InMemoryBackend."""

    def __init__(self, backend: "InMemoryBackend") -> None:
        self._backend = backend

    def _queue(self, operation: str, url: str) -> _MemoryQueue:
        queue = self._backend._queues.get(url)
        if queue is None:
            raise _client_error(
                operation,
                "AWS.SimpleQueueService.NonExistentQueue",
                "The specified queue does not exist.",
            )
        return queue

    async def create_queue(self, QueueName: str, Attributes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        await self._backend._enter("create_queue")
        if Attributes is not None and not Attributes:
            raise _client_error("CreateQueue", "InvalidParameterValue", "Attributes must not be empty")
        backend = self._backend
        url = f"{backend.endpoint}/{backend.account_id}/{QueueName}"
        if url not in backend._queues:
            arn = f"arn:aws:sqs:{backend.region}:{backend.account_id}:{QueueName}"
            queue = _MemoryQueue(QueueName, url, arn, Attributes or {})
            backend._queues[url] = queue
            backend._queue_arns[arn] = url
        return {"QueueUrl": url}

    async def get_queue_attributes(self, QueueUrl: str, AttributeNames: Optional[List[str]] = None) -> Dict[str, Any]:
        await self._backend._enter("get_queue_attributes")
        queue = self._queue("GetQueueAttributes", QueueUrl)
        attributes = {
            **queue.attributes,
            "QueueArn": queue.arn,
            "ApproximateNumberOfMessages": str(len(queue.messages)),
        }
        if AttributeNames and "All" not in AttributeNames:
            attributes = {k: v for k, v in attributes.items() if k in AttributeNames}
        return {"Attributes": attributes}

    async def send_message(self, QueueUrl: str, MessageBody: str) -> Dict[str, Any]:
        await self._backend._enter("send_message")
        queue = self._queue("SendMessage", QueueUrl)
        message = queue.put(MessageBody)
        return {"MessageId": message.message_id}

    async def receive_message(
        self,
        QueueUrl: str,
        MaxNumberOfMessages: int = 1,
        WaitTimeSeconds: int = 0,
    ) -> Dict[str, Any]:
        await self._backend._enter("receive_message")
        if not 1 <= MaxNumberOfMessages <= 10:
            raise _client_error("ReceiveMessage", "InvalidParameterValue", "MaxNumberOfMessages must be 1-10")
        queue = self._queue("ReceiveMessage", QueueUrl)
        deadline = time.monotonic() + WaitTimeSeconds
        while True:
            batch = queue.take_visible(MaxNumberOfMessages, self._backend.visibility_timeout)
            remaining = deadline - time.monotonic()
            if batch or remaining <= 0:
                break
            queue.arrival.clear()
            wake_in = queue.next_visible_in()
            timeout = remaining if wake_in is None else min(remaining, wake_in)
            try:
                await asyncio.wait_for(queue.arrival.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

        response: Dict[str, Any] = {}
        if batch:
            response["Messages"] = [
                {
                    "MessageId": message.message_id,
                    "ReceiptHandle": message.receipt_handle,
                    "Body": message.body,
                    "Attributes": {"ApproximateReceiveCount": str(message.receive_count)},
                }
                for message in batch
            ]
        return response

    async def delete_message(self, QueueUrl: str, ReceiptHandle: str) -> Dict[str, Any]:
        await self._backend._enter("delete_message")
        queue = self._queue("DeleteMessage", QueueUrl)
        for message in queue.messages:
            if message.receipt_handle == ReceiptHandle:
                queue.messages.remove(message)
                return {}
        raise _client_error(
            "DeleteMessage",
            "ReceiptHandleIsInvalid",
            f"The receipt handle '{ReceiptHandle}' is not valid.",
        )

    async def purge_queue(self, QueueUrl: str) -> Dict[str, Any]:
        await self._backend._enter("purge_queue")
        queue = self._queue("PurgeQueue", QueueUrl)
        now = time.monotonic()
        if queue.last_purge is not None and now - queue.last_purge < self._backend.purge_cooldown:
            raise _client_error(
                "PurgeQueue",
                "AWS.SimpleQueueService.PurgeQueueInProgress",
                f"Only one PurgeQueue operation on {queue.name} is allowed every "
                f"{self._backend.purge_cooldown:g} seconds.",
            )
        queue.last_purge = now
        queue.messages.clear()
        return {}

    async def list_queues(self) -> Dict[str, Any]:
        await self._backend._enter("list_queues")
        urls = list(self._backend._queues)
        return {"QueueUrls": urls} if urls else {}


class InMemorySnsClient:
    """Pub/sub service client backed by an InMemoryBackend."""

    def __init__(self, backend: "InMemoryBackend") -> None:
        self._backend = backend

    def _topic(self, operation: str, arn: str) -> List[Dict[str, str]]:
        subscriptions = self._backend._topics.get(arn)
        if subscriptions is None:
            raise _client_error(operation, "NotFound", f"Topic does not exist: {arn}")
        return subscriptions

    async def create_topic(self, Name: str) -> Dict[str, Any]:
        await self._backend._enter("create_topic")
        backend = self._backend
        arn = f"arn:aws:sns:{backend.region}:{backend.account_id}:{Name}"
        backend._topics.setdefault(arn, [])
        return {"TopicArn": arn}

    async def publish(self, TopicArn: str, Message: str, Subject: Optional[str] = None) -> Dict[str, Any]:
        await self._backend._enter("publish")
        if Subject is not None and not Subject:
            raise _client_error("Publish", "InvalidParameter", "Subject must not be empty")
        self._topic("Publish", TopicArn)
        message_id = self._backend._fan_out_topic(TopicArn, Message, Subject)
        return {"MessageId": message_id}

    async def subscribe(self, TopicArn: str, Protocol: str, Endpoint: str) -> Dict[str, Any]:
        await self._backend._enter("subscribe")
        subscriptions = self._topic("Subscribe", TopicArn)
        if Protocol == "sqs" and Endpoint not in self._backend._queue_arns:
            raise _client_error("Subscribe", "InvalidParameter", f"Invalid queue endpoint: {Endpoint}")
        for subscription in subscriptions:
            if subscription["Protocol"] == Protocol and subscription["Endpoint"] == Endpoint:
                return {"SubscriptionArn": subscription["SubscriptionArn"]}
        subscription_arn = f"{TopicArn}:{uuid.uuid4()}"
        subscriptions.append({
            "SubscriptionArn": subscription_arn,
            "Owner": self._backend.account_id,
            "Protocol": Protocol,
            "Endpoint": Endpoint,
            "TopicArn": TopicArn,
        })
        return {"SubscriptionArn": subscription_arn}

    async def list_subscriptions_by_topic(self, TopicArn: str) -> Dict[str, Any]:
        await self._backend._enter("list_subscriptions_by_topic")
        subscriptions = self._topic("ListSubscriptionsByTopic", TopicArn)
        return {"Subscriptions": [dict(s) for s in subscriptions]}

    async def list_topics(self) -> Dict[str, Any]:
        await self._backend._enter("list_topics")
        return {"Topics": [{"TopicArn": arn} for arn in self._backend._topics]}


class InMemoryEventsClient:
    """Event router client backed by an InMemoryBackend."""

    def __init__(self, backend: "InMemoryBackend") -> None:
        self._backend = backend

    def _bus(self, operation: str, name: str) -> Dict[str, Dict[str, Any]]:
        rules = self._backend._buses.get(name)
        if rules is None:
            raise _client_error(operation, "ResourceNotFoundException", f"Event bus {name} does not exist.")
        return rules

    async def create_event_bus(self, Name: str) -> Dict[str, Any]:
        await self._backend._enter("create_event_bus")
        backend = self._backend
        if Name in backend._buses:
            raise _client_error("CreateEventBus", "ResourceAlreadyExistsException", f"Event bus {Name} already exists.")
        backend._buses[Name] = {}
        return {"EventBusArn": f"arn:aws:events:{backend.region}:{backend.account_id}:event-bus/{Name}"}

    async def put_rule(
        self,
        Name: str,
        EventPattern: str,
        EventBusName: str = "default",
        State: str = "ENABLED",
    ) -> Dict[str, Any]:
        await self._backend._enter("put_rule")
        rules = self._bus("PutRule", EventBusName)
        try:
            pattern = PatternModel.from_json(EventPattern)
        except ValueError:
            raise _client_error(
                "PutRule", "InvalidEventPatternException", f"Unsupported event pattern: {EventPattern}"
            ) from None
        backend = self._backend
        arn = f"arn:aws:events:{backend.region}:{backend.account_id}:rule/{EventBusName}/{Name}"
        previous = rules.get(Name)
        rules[Name] = {
            "Rule": Rule(bus_name=EventBusName, name=Name, pattern=pattern, enabled=State == "ENABLED"),
            "Arn": arn,
            "EventPattern": EventPattern,
            "Targets": previous["Targets"] if previous else {},
        }
        return {"RuleArn": arn}

    async def put_targets(self, Rule: str, Targets: List[Dict[str, str]], EventBusName: str = "default") -> Dict[str, Any]:
        await self._backend._enter("put_targets")
        rule = self._bus("PutTargets", EventBusName).get(Rule)
        if rule is None:
            raise _client_error("PutTargets", "ResourceNotFoundException", f"Rule {Rule} does not exist.")
        failed = []
        for target in Targets:
            if not self._backend._is_destination(target["Arn"]):
                failed.append({
                    "TargetId": target["Id"],
                    "ErrorCode": "ResourceNotFoundException",
                    "ErrorMessage": f"Destination does not exist: {target['Arn']}",
                })
                continue
            rule["Targets"][target["Id"]] = dict(target)
        return {"FailedEntryCount": len(failed), "FailedEntries": failed}

    async def put_events(self, Entries: List[Dict[str, str]]) -> Dict[str, Any]:
        await self._backend._enter("put_events")
        results = []
        for entry in Entries:
            results.append(self._backend._route_event(entry))
        failed = sum(1 for result in results if "ErrorCode" in result)
        return {"FailedEntryCount": failed, "Entries": results}

    async def list_rules(self, EventBusName: str = "default") -> Dict[str, Any]:
        await self._backend._enter("list_rules")
        rules = self._bus("ListRules", EventBusName)
        return {
            "Rules": [
                {
                    "Name": entry["Rule"].name,
                    "Arn": entry["Arn"],
                    "EventPattern": entry["EventPattern"],
                    "State": entry["Rule"].state,
                    "EventBusName": entry["Rule"].bus_name,
                }
                for entry in rules.values()
            ]
        }


class InMemoryBackend:
    """In-memory queue, pub/sub and event router services.

    Routing follows the network services: bus rules deliver to queue and
    topic targets, topics fan out to subscribed queues.

    Args:
        endpoint: Base of the generated queue URLs.
        region: Region used in generated ARNs.
        account_id: Account used in generated ARNs.
        visibility_timeout: Seconds a received message stays invisible.
        purge_cooldown: Minimum seconds between two purges of one queue.
        delivery_delay: Seconds before routed messages reach their
            destination; zero delivers synchronously.
    """

    def __init__(
        self,
        endpoint: str = "http://localhost:4566",
        *,
        region: str = "us-east-1",
        account_id: str = "000000000000",
        visibility_timeout: float = 30.0,
        purge_cooldown: float = 60.0,
        delivery_delay: float = 0.0,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.region = region
        self.account_id = account_id
        self.visibility_timeout = visibility_timeout
        self.purge_cooldown = purge_cooldown
        self.delivery_delay = delivery_delay

        self._queues: Dict[str, _MemoryQueue] = {}
        self._queue_arns: Dict[str, str] = {}
        self._topics: Dict[str, List[Dict[str, str]]] = {}
        self._buses: Dict[str, Dict[str, Dict[str, Any]]] = {"default": {}}
        self._delivery_tasks: Set[asyncio.Task] = set()
        self._running = False
        self._stats = {
            "published": 0,
            "delivered": 0,
            "errors": 0,
        }
        self._operations: Counter = Counter()
        self._failures: Dict[str, List[str]] = {}
        self._latency: Dict[str, float] = {}

        self.sqs = InMemorySqsClient(self)
        self.sns = InMemorySnsClient(self)
        self.events = InMemoryEventsClient(self)

    # --- Lifecycle ---

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        """Stop the backend and cancel deliveries still in flight."""
        self._running = False
        for task in list(self._delivery_tasks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._delivery_tasks.clear()

    async def __aenter__(self) -> "InMemoryBackend":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    # --- Test hooks ---

    def inject_failure(self, operation: str, code: str = "InternalFailure", times: int = 1) -> None:
        """Make the next ``times`` calls of an operation fail with ``code``."""
        self._failures.setdefault(operation, []).extend([code] * times)

    def set_latency(self, operation: str, seconds: float) -> None:
        """Delay every call of an operation by ``seconds``."""
        self._latency[operation] = seconds

    def operation_count(self, operation: str) -> int:
        return self._operations[operation]

    async def _enter(self, operation: str) -> None:
        self._operations[operation] += 1
        delay = self._latency.get(operation)
        if delay:
            await asyncio.sleep(delay)
        pending = self._failures.get(operation)
        if pending:
            code = pending.pop(0)
            raise _client_error(operation, code, f"Injected failure for {operation}")

    # --- Routing ---

    def _is_destination(self, arn: str) -> bool:
        return arn in self._queue_arns or arn in self._topics

    def _fan_out_topic(self, topic_arn: str, message: str, subject: Optional[str]) -> str:
        message_id = str(uuid.uuid4())
        notification = {
            "Type": "Notification",
            "MessageId": message_id,
            "TopicArn": topic_arn,
            "Message": message,
            "Timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "SignatureVersion": "1",
        }
        if subject is not None:
            notification["Subject"] = subject
        body = json.dumps(notification)
        for subscription in self._topics.get(topic_arn, []):
            if subscription["Protocol"] == "sqs":
                self._dispatch(subscription["Endpoint"], body)
        self._stats["published"] += 1
        return message_id

    def _route_event(self, entry: Dict[str, str]) -> Dict[str, str]:
        bus_name = entry.get("EventBusName") or "default"
        rules = self._buses.get(bus_name)
        if rules is None:
            return {"ErrorCode": "ResourceNotFoundException", "ErrorMessage": f"Event bus {bus_name} does not exist."}
        try:
            detail = json.loads(entry.get("Detail") or "{}")
        except ValueError:
            detail = None
        if not isinstance(detail, dict):
            return {"ErrorCode": "MalformedDetail", "ErrorMessage": "Detail is malformed."}
        if not entry.get("Source") or not entry.get("DetailType"):
            return {"ErrorCode": "InvalidArgument", "ErrorMessage": "Source and DetailType are required."}

        event = BusEvent(
            bus_name=bus_name,
            source=entry["Source"],
            detail_type=entry["DetailType"],
            account=self.account_id,
            region=self.region,
            detail=detail,
        )
        envelope = event.to_dict()
        for entry in rules.values():
            if not entry["Rule"].applies_to(event.source, event.detail_type):
                continue
            for target in entry["Targets"].values():
                payload = _select(envelope, target.get("InputPath"))
                self._dispatch(target["Arn"], json.dumps(payload))
        self._stats["published"] += 1
        return {"EventId": event.id}

    def _dispatch(self, arn: str, body: str) -> None:
        if self.delivery_delay > 0:
            task = asyncio.create_task(self._deliver_later(arn, body))
            self._delivery_tasks.add(task)
            task.add_done_callback(self._delivery_tasks.discard)
        else:
            self._deliver(arn, body)

    async def _deliver_later(self, arn: str, body: str) -> None:
        await asyncio.sleep(self.delivery_delay)
        self._deliver(arn, body)

    def _deliver(self, arn: str, body: str) -> None:
        url = self._queue_arns.get(arn)
        if url is not None and url in self._queues:
            self._queues[url].put(body)
            self._stats["delivered"] += 1
        elif arn in self._topics:
            self._fan_out_topic(arn, body, None)
        else:
            self._stats["errors"] += 1

    # --- Diagnostics ---

    def get_stats(self) -> Dict[str, Any]:
        """Get backend statistics."""
        return {
            **self._stats,
            "running": self._running,
            "in_flight": len(self._delivery_tasks),
            "queues": len(self._queues),
            "topics": len(self._topics),
            "buses": len(self._buses),
            "queue_depths": {
                url: len(queue.messages)
                for url, queue in self._queues.items()
            },
            "operations": dict(self._operations),
        }
