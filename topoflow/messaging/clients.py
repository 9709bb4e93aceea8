"""Backend connection handles and the façades built on them

The caller owns the handles: they are opened in one scope, shared
read-only by every workflow step and closed when the scope exits,
whether the run completed or failed.
"""
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, NamedTuple, Optional

from aiobotocore.session import get_session

from topoflow.messaging.config import Settings
from topoflow.messaging.memory_backend import InMemoryBackend
from topoflow.messaging.pubsub import PubSubClient
from topoflow.messaging.queue import QueueClient
from topoflow.messaging.router import EventRouterClient


class ClientHandles(NamedTuple):
    """Raw backend clients for the three services"""
    sqs: Any
    sns: Any
    events: Any


class MessagingServices(NamedTuple):
    """Queue, pub/sub and router façades sharing one set of handles"""
    queues: QueueClient
    topics: PubSubClient
    router: EventRouterClient

    @classmethod
    def from_handles(
        cls,
        handles: ClientHandles,
        *,
        timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> "MessagingServices":
        return cls(
            queues=QueueClient(handles.sqs, timeout=timeout, logger=logger),
            topics=PubSubClient(handles.sns, timeout=timeout, logger=logger),
            router=EventRouterClient(handles.events, timeout=timeout, logger=logger),
        )


@asynccontextmanager
async def open_aws_clients(settings: Settings) -> AsyncIterator[ClientHandles]:
    """Open network clients for the queue, pub/sub and router services

    Args:
        settings: Endpoint, region and credentials

    Yields:
        ClientHandles, closed when the context exits
    """
    session = get_session()
    connection = {
        "region_name": settings.region,
        "endpoint_url": settings.endpoint_url,
        "aws_access_key_id": settings.access_key_id,
        "aws_secret_access_key": settings.secret_access_key,
    }
    async with AsyncExitStack() as stack:
        sqs = await stack.enter_async_context(session.create_client("sqs", **connection))
        sns = await stack.enter_async_context(session.create_client("sns", **connection))
        events = await stack.enter_async_context(session.create_client("events", **connection))
        yield ClientHandles(sqs=sqs, sns=sns, events=events)


@asynccontextmanager
async def open_memory_clients(backend: Optional[InMemoryBackend] = None) -> AsyncIterator[ClientHandles]:
    """Open clients on an in-memory backend

    A backend created here is started and stopped with the context; a
    backend passed in is left running.
    """
    if backend is not None:
        yield ClientHandles(sqs=backend.sqs, sns=backend.sns, events=backend.events)
        return
    async with InMemoryBackend() as owned:
        yield ClientHandles(sqs=owned.sqs, sns=owned.sns, events=owned.events)


@asynccontextmanager
async def open_services(
    settings: Settings,
    *,
    backend: Optional[InMemoryBackend] = None,
    logger: Optional[logging.Logger] = None,
) -> AsyncIterator[MessagingServices]:
    """Open the backend selected by ``settings.backend`` and build the façades"""
    if settings.backend == "memory" or backend is not None:
        opener = open_memory_clients(backend)
    else:
        opener = open_aws_clients(settings)
    async with opener as handles:
        yield MessagingServices.from_handles(handles, timeout=settings.call_timeout, logger=logger)
