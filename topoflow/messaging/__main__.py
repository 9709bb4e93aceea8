"""Run the messaging demonstration workflow

Connection parameters come from the environment (``TOPOFLOW_*``), e.g.:

    TOPOFLOW_ENDPOINT_URL=http://localhost:4566 python -m topoflow.messaging
    TOPOFLOW_BACKEND=memory python -m topoflow.messaging
"""
import asyncio
import logging
import sys

from topoflow.messaging.config import Settings
from topoflow.messaging.orchestrator import run_workflow


def main() -> int:
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    report = asyncio.run(run_workflow(settings))
    print()
    for line in report.trace():
        print(line)
    return 0 if report.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
