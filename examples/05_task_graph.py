"""Task Graph

Demonstrates:
- Declaring steps with result-passing and ordering-only dependencies
- Joining two concurrent branches
- Skipping the dependents of a failed step
"""
import asyncio

from topoflow.messaging import TaskGraph


async def main():
    """Build and run a small task graph"""
    print("\n=== Task Graph ===\n")

    async def make_queue():
        await asyncio.sleep(0.2)
        return "queue-arn"

    async def make_topic():
        await asyncio.sleep(0.1)
        return "topic-arn"

    async def subscribe(queue, topic):
        return f"{topic} -> {queue}"

    async def broken():
        raise RuntimeError("backend unavailable")

    async def never_runs(value):
        return value

    graph = TaskGraph("example")
    graph.add("queue", make_queue)
    graph.add("topic", make_topic)
    graph.add("subscribe", subscribe, requires=["queue", "topic"], describe=str)
    graph.add("rule", broken)
    graph.add("route", never_runs, requires=["rule"], after=["subscribe"])

    report = await graph.run()
    for line in report.trace():
        print(f"  {line}")


if __name__ == "__main__":
    asyncio.run(main())
