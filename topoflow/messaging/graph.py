"""Task Graph

Executes named asynchronous steps with declared dependencies:
- A step starts only after every step it depends on has resolved,
  whatever order they resolve in;
- Steps without a path between them run concurrently;
- A failed step blocks its dependents, which are skipped, while
  independent branches run to completion;
- The run as a whole moves NOT_STARTED -> RUNNING -> COMPLETED | FAILED.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from topoflow.messaging.errors import FanOutError, WorkflowStateError


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepOutcome(BaseModel):
    """Result of one step, as reported in the run trace"""
    name: str
    status: StepStatus = StepStatus.PENDING
    summary: str = ""
    error: Optional[str] = None
    blocked_by: List[str] = Field(default_factory=list)
    started_at: Optional[float] = None
    duration: Optional[float] = None

    def line(self) -> str:
        """Render as a single human-readable trace line"""
        if self.status is StepStatus.SUCCEEDED:
            detail = self.summary or "ok"
        elif self.status is StepStatus.FAILED:
            detail = self.error or "failed"
        elif self.status is StepStatus.SKIPPED:
            detail = f"blocked by {', '.join(self.blocked_by)}"
        else:
            detail = "not run"
        timing = f" ({self.duration:.2f}s)" if self.duration is not None else ""
        return f"[{self.status.value.upper():9}] {self.name}: {detail}{timing}"


class GraphReport(BaseModel):
    """Outcome of a whole run

    ``error`` and ``cause`` describe the first step that failed, by time of
    failure.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    state: RunState
    steps: List[StepOutcome]
    error: Optional[str] = None
    cause: Optional[BaseException] = Field(default=None, exclude=True)
    results: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.COMPLETED

    def step(self, name: str) -> StepOutcome:
        for outcome in self.steps:
            if outcome.name == name:
                return outcome
        raise KeyError(name)

    def trace(self) -> List[str]:
        lines = [outcome.line() for outcome in self.steps]
        lines.append(f"{self.name}: {self.state.value}" + (f" ({self.error})" if self.error else ""))
        return lines


StepAction = Callable[..., Awaitable[Any]]


class _Step:
    """A node of the task graph."""

    def __init__(
        self,
        name: str,
        action: StepAction,
        requires: Sequence[str],
        after: Sequence[str],
        describe: Optional[Callable[[Any], str]],
    ) -> None:
        self.name = name
        self.action = action
        self.requires = tuple(requires)
        self.after = tuple(after)
        self.describe = describe

    @property
    def dependencies(self) -> List[str]:
        return list(dict.fromkeys(self.requires + self.after))


class TaskGraph:
    """Directed acyclic graph of asynchronous steps

    Steps must be added after the steps they depend on, which keeps the
    graph acyclic. ``requires`` edges pass the upstream results to the
    action as positional arguments in the declared order; ``after`` edges
    only order the steps.

    Example:
        graph = TaskGraph("demo")
        graph.add("queue", lambda: queues.create_queue("q"))
        graph.add("topic", lambda: topics.create_topic("t"))
        graph.add("join", lambda url, arn: link(url, arn), requires=["queue", "topic"])
        report = await graph.run()
    """

    def __init__(self, name: str = "workflow", logger: Optional[logging.Logger] = None):
        self.name = name
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._steps: Dict[str, _Step] = {}
        self._state = RunState.NOT_STARTED
        self._outcomes: Dict[str, StepOutcome] = {}
        self._results: Dict[str, Any] = {}
        self._futures: Dict[str, asyncio.Future] = {}
        self._first_failure: Optional[BaseException] = None
        self._first_failure_step: Optional[str] = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def step_names(self) -> List[str]:
        return list(self._steps)

    def dependencies_of(self, name: str) -> List[str]:
        return self._steps[name].dependencies

    def add(
        self,
        name: str,
        action: StepAction,
        *,
        requires: Iterable[str] = (),
        after: Iterable[str] = (),
        describe: Optional[Callable[[Any], str]] = None,
    ) -> str:
        """Add a step

        Args:
            name: Unique step name
            action: Coroutine function called with the ``requires`` results
            requires: Steps whose results are passed to ``action``
            after: Steps that must resolve first, results not passed
            describe: Renders the step's result for the trace

        Returns:
            The step name, for use in later ``requires``/``after`` lists

        Raises:
            WorkflowStateError: If the graph already started
            ValueError: On duplicate names or unknown dependencies
        """
        if self._state is not RunState.NOT_STARTED:
            raise WorkflowStateError(f"Cannot add step '{name}': graph '{self.name}' is {self._state.value}")
        if name in self._steps:
            raise ValueError(f"Duplicate step name: {name}")
        requires, after = list(requires), list(after)
        unknown = [dep for dep in requires + after if dep not in self._steps]
        if unknown:
            raise ValueError(f"Step '{name}' depends on unknown step(s): {', '.join(unknown)}")
        self._steps[name] = _Step(name, action, requires, after, describe)
        return name

    async def run(self) -> GraphReport:
        """Execute every step and wait for all of them to resolve

        Raises:
            WorkflowStateError: If the graph was already run
        """
        if self._state is not RunState.NOT_STARTED:
            raise WorkflowStateError(f"Graph '{self.name}' is {self._state.value}; it can only run once")
        self._state = RunState.RUNNING
        self._logger.info(f"Starting {self.name} ({len(self._steps)} steps)")

        loop = asyncio.get_running_loop()
        for name in self._steps:
            self._outcomes[name] = StepOutcome(name=name)
            self._futures[name] = loop.create_future()

        tasks = [asyncio.create_task(self._execute(step)) for step in self._steps.values()]
        await asyncio.gather(*tasks)

        failed = any(o.status is not StepStatus.SUCCEEDED for o in self._outcomes.values())
        self._state = RunState.FAILED if failed else RunState.COMPLETED
        report = GraphReport(
            name=self.name,
            state=self._state,
            steps=[self._outcomes[name] for name in self._steps],
            error=f"{self._first_failure_step}: {self._first_failure}" if self._first_failure else None,
            cause=self._first_failure,
            results=dict(self._results),
        )
        if failed:
            self._logger.error(f"{self.name} failed: {report.error}")
        else:
            self._logger.info(f"{self.name} completed")
        return report

    async def _execute(self, step: _Step) -> None:
        outcome = self._outcomes[step.name]
        try:
            dependencies = step.dependencies
            if dependencies:
                await asyncio.gather(*(self._futures[dep] for dep in dependencies))
            blocked = [dep for dep in dependencies if self._outcomes[dep].status is not StepStatus.SUCCEEDED]
            if blocked:
                outcome.status = StepStatus.SKIPPED
                outcome.blocked_by = blocked
                self._logger.warning(f"Step '{step.name}' skipped, blocked by {', '.join(blocked)}")
                return

            args = [self._results[dep] for dep in step.requires]
            outcome.started_at = time.time()
            started = time.monotonic()
            try:
                result = await step.action(*args)
                summary = step.describe(result) if step.describe is not None else ""
            except Exception as e:
                outcome.duration = time.monotonic() - started
                outcome.status = StepStatus.FAILED
                outcome.error = f"{type(e).__name__}: {e}"
                if self._first_failure is None:
                    self._first_failure = e
                    self._first_failure_step = step.name
                self._logger.error(f"Step '{step.name}' failed: {e}")
                return

            outcome.duration = time.monotonic() - started
            self._results[step.name] = result
            outcome.status = StepStatus.SUCCEEDED
            outcome.summary = summary
            self._logger.info(f"Step '{step.name}' succeeded" + (f": {outcome.summary}" if outcome.summary else ""))
        finally:
            self._futures[step.name].set_result(outcome.status)


class FanOutResult:
    """Per-item results of a fan-out, in dispatch order

    Each entry is either the item's return value or the exception it
    raised.
    """

    def __init__(self, label: str, results: Sequence[Any]) -> None:
        self.label = label
        self.results = list(results)

    @property
    def failures(self) -> List[BaseException]:
        return [r for r in self.results if isinstance(r, BaseException)]

    @property
    def succeeded(self) -> int:
        return len(self.results) - len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        """Raise FanOutError if any item failed"""
        failures = self.failures
        if failures:
            raise FanOutError(self.label, failures, self.succeeded) from failures[0]

    def __len__(self) -> int:
        return len(self.results)


async def fan_out(label: str, items: Iterable[Any], action: Callable[[Any], Awaitable[Any]]) -> FanOutResult:
    """Run ``action`` for every item concurrently and wait for all of them

    All items are dispatched before any is awaited; a failing item does
    not cancel its siblings. An empty item list returns immediately.
    """
    items = list(items)
    if not items:
        return FanOutResult(label, [])
    results = await asyncio.gather(*(action(item) for item in items), return_exceptions=True)
    return FanOutResult(label, results)
