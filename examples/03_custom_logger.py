"""Custom Logger Configuration

Demonstrates:
- Passing a custom logger to the façades
- Logging individual queue and topic operations at debug level
"""
import asyncio
import logging

from topoflow.messaging import InMemoryBackend, PubSubClient, QueueClient


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    """Using a custom logger with the queue and topic façades"""
    print("\n=== Custom Logger Configuration ===\n")

    custom_logger = logging.getLogger("my_messaging")
    custom_logger.setLevel(logging.DEBUG)

    async with InMemoryBackend() as backend:
        queues = QueueClient(backend.sqs, logger=custom_logger)
        topics = PubSubClient(backend.sns, logger=custom_logger)

        url = await queues.create_queue("audit")
        topic = await topics.create_topic("audit-events")
        await topics.subscribe_queue(topic, await queues.resolve_identity(url))

        await topics.publish(topic, '{"action": "login"}', "Audit")
        for message in await queues.receive(url, wait_seconds=0):
            print(f"  ✅ Received: {message.decode()['Subject']} - {message.decode()['Message']}")
            await queues.delete(url, message.receipt_handle)


if __name__ == "__main__":
    asyncio.run(main())
