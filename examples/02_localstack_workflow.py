"""Local Emulator Workflow

Demonstrates:
- Running the workflow against a local AWS emulator
- Overriding connection settings in code

Requires an emulator listening on http://localhost:4566, e.g.:
    docker run -p 4566:4566 localstack/localstack
"""
import asyncio
import logging

from topoflow.messaging import RunState, Settings, run_workflow


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    """Run the workflow against the emulator endpoint"""
    print("\n=== Local Emulator Workflow ===\n")

    settings = Settings(backend="aws", endpoint_url="http://localhost:4566", call_timeout=10)
    report = await run_workflow(settings)

    print()
    for line in report.trace():
        print(f"  {line}")
    if report.state is RunState.FAILED:
        print(f"\n  First failure: {report.error}")


if __name__ == "__main__":
    asyncio.run(main())
