"""Messaging workflow examples

Each script runs standalone against the in-memory backend unless noted.

Examples:
- 01_in_memory_workflow.py: Full workflow on the in-memory backend
- 02_localstack_workflow.py: Full workflow against a local emulator endpoint
- 03_custom_logger.py: Passing a custom logger to the façades and the workflow
- 04_backend_statistics.py: Event routing and backend statistics
- 05_task_graph.py: Building a task graph with joins and skip propagation

Run an example:
    python examples/01_in_memory_workflow.py
"""
