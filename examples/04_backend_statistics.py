"""Backend Statistics

Demonstrates how to inspect the in-memory backend's routing statistics.
"""
import asyncio

from topoflow.messaging import EventPattern, EventRouterClient, InMemoryBackend, QueueClient, Target


async def main():
    """Route a few events and look at the backend statistics"""
    print("\n=== Backend Statistics ===\n")

    async with InMemoryBackend() as backend:
        queues = QueueClient(backend.sqs)
        router = EventRouterClient(backend.events)

        url = await queues.create_queue("metrics")
        await router.create_bus("metrics-bus")
        await router.define_rule("metrics-bus", "sample", EventPattern(source="app", detail_type="sample"))
        await router.attach_target("metrics-bus", "sample", Target.for_queue("sample", await queues.resolve_identity(url)))

        for i in range(5):
            await router.publish_event("metrics-bus", "app", "sample", {"value": i})
        await router.publish_event("missing-bus", "app", "sample", {"value": -1})

        stats = backend.get_stats()
        print(f"  Published: {stats['published']}")
        print(f"  Delivered: {stats['delivered']}")
        print(f"  Queues:    {stats['queues']}")
        print(f"  Depths:    {stats['queue_depths']}")
        print(f"  Running:   {stats['running']}")


if __name__ == "__main__":
    asyncio.run(main())
