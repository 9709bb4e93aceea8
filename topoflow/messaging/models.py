"""Messaging Resource Models

Typed references and documents exchanged between the workflow and the
queue, pub/sub and event router services.
References are immutable once created and live for a single workflow run.
"""
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QueueRef(BaseModel):
    """Reference to a point-to-point queue

    - locator: URI-like address used for every queue operation
    - identity: backend-assigned identifier used by rules and subscriptions
    """
    model_config = ConfigDict(frozen=True)

    locator: str = Field(..., description="Queue URL")
    identity: str = Field(..., description="Queue ARN")


class TopicRef(BaseModel):
    """Reference to a pub/sub topic"""
    model_config = ConfigDict(frozen=True)

    identity: str = Field(..., description="Topic ARN")


class SubscriptionRef(BaseModel):
    """Reference to a topic subscription"""
    model_config = ConfigDict(frozen=True)

    identity: str = Field(..., description="Subscription ARN")


class IntegrationInfo(BaseModel):
    """A queue joined with the topic it is subscribed to"""
    model_config = ConfigDict(frozen=True)

    queue: QueueRef
    topic_identity: str
    subscription: Optional[SubscriptionRef] = None


class EventPattern(BaseModel):
    """Equality match on an event's source and detail type

    Only the conjunction ``source == X and detail-type == Y`` is supported.
    """
    model_config = ConfigDict(frozen=True)

    source: str
    detail_type: str

    def matches(self, source: str, detail_type: str) -> bool:
        return self.source == source and self.detail_type == detail_type

    def to_json(self) -> str:
        """Render the pattern document sent to the event router

        Returns:
            JSON string such as ``{"source":["app"],"detail-type":["created"]}``
        """
        return json.dumps(
            {"source": [self.source], "detail-type": [self.detail_type]},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, document: str) -> "EventPattern":
        """Parse a pattern document produced by ``to_json``

        Raises:
            ValueError: If the document does not hold exactly one source and
                one detail type
        """
        data = json.loads(document)
        if not isinstance(data, dict):
            raise ValueError(f"Unsupported event pattern: {document}")
        sources = data.get("source") or []
        detail_types = data.get("detail-type") or []
        if len(sources) != 1 or len(detail_types) != 1:
            raise ValueError(f"Unsupported event pattern: {document}")
        return cls(source=sources[0], detail_type=detail_types[0])


class Rule(BaseModel):
    """Named pattern on an event bus, keyed by (bus_name, name)"""
    model_config = ConfigDict(frozen=True)

    bus_name: str
    name: str
    pattern: EventPattern
    enabled: bool = True

    @property
    def state(self) -> str:
        return "ENABLED" if self.enabled else "DISABLED"

    def applies_to(self, source: str, detail_type: str) -> bool:
        """Whether an event with this source and detail type is routed by the rule"""
        return self.enabled and self.pattern.matches(source, detail_type)


class Target(BaseModel):
    """Destination attached to a rule

    The target id is derived as ``<Kind>Target-<rule_name>`` so that it is
    unique per rule. Queue targets carry ``input_path = "$.detail"`` so only
    the event's detail document reaches the queue.
    """
    model_config = ConfigDict(frozen=True)

    rule_name: str
    target_id: str
    destination_arn: str
    input_path: Optional[str] = None

    @classmethod
    def for_topic(cls, rule_name: str, topic_identity: str) -> "Target":
        return cls(
            rule_name=rule_name,
            target_id=f"SnsTarget-{rule_name}",
            destination_arn=topic_identity,
        )

    @classmethod
    def for_queue(cls, rule_name: str, queue_identity: str) -> "Target":
        return cls(
            rule_name=rule_name,
            target_id=f"SqsTarget-{rule_name}",
            destination_arn=queue_identity,
            input_path="$.detail",
        )

    def to_request(self) -> Dict[str, str]:
        """Convert to the target entry of a put-targets request"""
        entry = {"Id": self.target_id, "Arn": self.destination_arn}
        if self.input_path:
            entry["InputPath"] = self.input_path
        return entry


class BusEvent(BaseModel):
    """Event envelope as routed by the event bus

    Required attributes:
        source: Identifier of the emitting application
        detail_type: Event type, matched by rule patterns
        detail: Structured event payload

    Attributes filled by the bus:
        id, version, account, region, time, resources
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    version: str = "0"
    bus_name: str = Field(default="default", exclude=True)
    source: str
    detail_type: str
    account: str = "000000000000"
    region: str = "us-east-1"
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resources: List[str] = Field(default_factory=list)
    detail: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("source", "detail_type")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("source and detail_type cannot be empty")
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire envelope

        Returns:
            Dictionary using the router's ``detail-type`` key and an
            ISO-8601 ``time``
        """
        return {
            "version": self.version,
            "id": self.id,
            "detail-type": self.detail_type,
            "source": self.source,
            "account": self.account,
            "time": self.time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "region": self.region,
            "resources": list(self.resources),
            "detail": self.detail,
        }


class Message(BaseModel):
    """A received queue message

    The receipt handle is single-use: it becomes invalid once the message
    is deleted or received again after its visibility window expires.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    body: str
    receipt_handle: str
    attributes: Dict[str, str] = Field(default_factory=dict)

    def decode(self) -> Any:
        """Decode the body as JSON"""
        return json.loads(self.body)


class SubscriptionInfo(BaseModel):
    protocol: str
    endpoint: str
    identity: Optional[str] = None


class RuleInfo(BaseModel):
    name: str
    state: str
    event_pattern: Optional[str] = None


class EntryFailure(BaseModel):
    error_code: str
    error_message: Optional[str] = None


class PublishEventsResult(BaseModel):
    """Outcome of an event publish call

    A nonzero ``failed_entry_count`` is a routing-layer condition, reported
    here rather than raised.
    """
    failed_entry_count: int = 0
    event_ids: List[str] = Field(default_factory=list)
    failures: List[EntryFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_entry_count == 0


class DrainResult(BaseModel):
    """Outcome of consuming a queue to empty"""
    attempts: int = 0
    received: int = 0
    deleted: int = 0
    bodies: List[str] = Field(default_factory=list)

    @property
    def empty(self) -> bool:
        return self.received == 0
