from typing import Dict, List, Optional

from topoflow.messaging.errors import ErrorKind, MessagingError
from topoflow.messaging.facade import ServiceFacade
from topoflow.messaging.graph import FanOutResult, fan_out
from topoflow.messaging.models import Message


class QueueClient(ServiceFacade):
    """Point-to-point queue operations

    Supports:
    - create / resolve identity / list
    - send, long-poll receive and delete by receipt handle
    - purge, tolerating the backend's purge rate limit
    """
    service_name = "queue"

    async def create_queue(self, name: str, attributes: Optional[Dict[str, str]] = None) -> str:
        """Create a queue, idempotent by name

        An empty attribute map is omitted from the request.

        Returns:
            The queue locator (URL)
        """
        params = {"QueueName": name}
        if attributes:
            params["Attributes"] = dict(attributes)
        response = await self._call("create_queue", **params)
        self._logger.info(f"Queue created: {name}")
        return response["QueueUrl"]

    async def resolve_identity(self, locator: str) -> str:
        """Look up the queue's identity (ARN)

        Raises:
            NotFoundError: If the locator no longer names a queue
        """
        response = await self._call(
            "get_queue_attributes", QueueUrl=locator, AttributeNames=["QueueArn"]
        )
        return response["Attributes"]["QueueArn"]

    async def send(self, locator: str, body: str) -> str:
        response = await self._call("send_message", QueueUrl=locator, MessageBody=body)
        self._logger.info(f"Message sent to queue: {locator}")
        return response["MessageId"]

    async def receive(self, locator: str, max_messages: int = 10, wait_seconds: int = 20) -> List[Message]:
        """Receive a batch of messages

        An empty list means no message was ready within the wait; it is not
        an error.

        Args:
            locator: Queue URL
            max_messages: Upper bound on the batch size, at least 1
            wait_seconds: Long-poll duration
        """
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        response = await self._call(
            "receive_message",
            extra_timeout=wait_seconds,
            QueueUrl=locator,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
        )
        return [
            Message(
                id=raw["MessageId"],
                body=raw["Body"],
                receipt_handle=raw["ReceiptHandle"],
                attributes=raw.get("Attributes", {}),
            )
            for raw in response.get("Messages", [])
        ]

    async def delete(self, locator: str, receipt_handle: str) -> None:
        """Delete (acknowledge) a received message

        Raises:
            InvalidHandleError: If the handle was already consumed or expired
        """
        await self._call("delete_message", QueueUrl=locator, ReceiptHandle=receipt_handle)
        self._logger.info("Message deleted from queue")

    async def delete_all(self, locator: str, messages: List[Message]) -> FanOutResult:
        """Delete messages concurrently

        Every delete is dispatched before any result is awaited. A failed
        delete does not cancel the others; each delete's outcome is kept in
        the returned result.
        """
        return await fan_out(
            "queue.delete",
            messages,
            lambda message: self.delete(locator, message.receipt_handle),
        )

    async def process_messages(self, locator: str) -> int:
        """Receive one default batch, log it and delete every message

        Returns:
            Number of messages processed

        Raises:
            FanOutError: After all deletes settled, if any of them failed
        """
        messages = await self.receive(locator)
        if not messages:
            self._logger.info(f"No messages in queue: {locator}")
            return 0

        self._logger.info(f"Processing {len(messages)} messages from queue: {locator}")
        for message in messages:
            self._logger.info(f"Received message: {message.body}")
            self._logger.info(f"Message ID: {message.id}")
        result = await self.delete_all(locator, messages)
        result.raise_for_failures()
        return result.succeeded

    async def purge(self, locator: str) -> bool:
        """Purge all messages, best-effort

        A rate-limited purge is logged and reported as ``False``; any other
        failure propagates.

        Returns:
            True if the queue was purged
        """
        try:
            await self._call("purge_queue", QueueUrl=locator)
        except MessagingError as e:
            if e.kind is not ErrorKind.RATE_LIMITED:
                raise
            self._logger.warning(f"Could not purge queue: {e}")
            return False
        self._logger.info(f"Queue purged: {locator}")
        return True

    async def list_queues(self) -> List[str]:
        response = await self._call("list_queues")
        urls = response.get("QueueUrls", [])
        self._logger.info("Available queues:")
        if not urls:
            self._logger.info("  No queues found")
        for url in urls:
            self._logger.info(f"  - {url}")
        return urls
