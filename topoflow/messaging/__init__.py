"""Messaging Workflow Package

Provides:
1. QueueClient, PubSubClient, EventRouterClient - façades over the queue,
   pub/sub and event router services
2. TaskGraph - dependency-ordered asynchronous step execution
3. WorkflowOrchestrator - the end-to-end messaging demonstration
4. InMemoryBackend - in-process stand-in for the three services
"""

from .config import Settings, SettlePolicy, WorkflowNames, BatchSettings
from .errors import ErrorKind, MessagingError, InvalidHandleError, FanOutError
from .graph import TaskGraph, RunState, StepStatus, fan_out
from .memory_backend import InMemoryBackend
from .models import QueueRef, TopicRef, SubscriptionRef, EventPattern, Target, Message
from .pubsub import PubSubClient
from .queue import QueueClient
from .router import EventRouterClient
from .clients import MessagingServices, open_services
from .orchestrator import WorkflowOrchestrator, WorkflowReport, run_workflow

__all__ = [
    "Settings",
    "SettlePolicy",
    "WorkflowNames",
    "BatchSettings",
    "ErrorKind",
    "MessagingError",
    "InvalidHandleError",
    "FanOutError",
    "TaskGraph",
    "RunState",
    "StepStatus",
    "fan_out",
    "InMemoryBackend",
    "QueueRef",
    "TopicRef",
    "SubscriptionRef",
    "EventPattern",
    "Target",
    "Message",
    "PubSubClient",
    "QueueClient",
    "EventRouterClient",
    "MessagingServices",
    "open_services",
    "WorkflowOrchestrator",
    "WorkflowReport",
    "run_workflow",
]
