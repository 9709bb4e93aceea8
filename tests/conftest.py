"""Shared fixtures for the messaging workflow tests"""
import pytest

from topoflow.messaging.clients import MessagingServices
from topoflow.messaging.memory_backend import InMemoryBackend
from topoflow.messaging.pubsub import PubSubClient
from topoflow.messaging.queue import QueueClient
from topoflow.messaging.router import EventRouterClient


class RecordingClient:
    """Backend client double that records requests and returns canned responses"""

    def __init__(self, responses=None):
        self.calls = []
        self.responses = responses or {}

    def __getattr__(self, operation):
        if operation.startswith("_"):
            raise AttributeError(operation)

        async def call(**params):
            self.calls.append((operation, params))
            return self.responses.get(operation, {})

        return call

    def params(self, operation):
        """Parameters of the last call of an operation"""
        for name, params in reversed(self.calls):
            if name == operation:
                return params
        raise AssertionError(f"{operation} was not called")


@pytest.fixture
async def backend():
    """Create and cleanup an in-memory backend for each test"""
    async with InMemoryBackend() as memory:
        yield memory


@pytest.fixture
def services(backend):
    """Façades bound to the in-memory backend"""
    return MessagingServices(
        queues=QueueClient(backend.sqs, timeout=5),
        topics=PubSubClient(backend.sns, timeout=5),
        router=EventRouterClient(backend.events, timeout=5),
    )
