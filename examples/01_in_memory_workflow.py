"""In-Memory Workflow

Demonstrates:
- Running the whole messaging workflow without a backend endpoint
- Reading the per-step trace from the report
"""
import asyncio
import logging

from topoflow.messaging import BatchSettings, Settings, SettlePolicy, run_workflow


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    """Run the workflow on the in-memory backend"""
    print("\n=== In-Memory Workflow ===\n")

    settings = Settings(
        backend="memory",
        settle=SettlePolicy(initial_delay=0.1, receive_wait_seconds=0),
        batches=BatchSettings(inspect_wait_seconds=0, delete_wait_seconds=0),
    )
    report = await run_workflow(settings)

    print()
    for line in report.trace():
        print(f"  {line}")


if __name__ == "__main__":
    asyncio.run(main())
