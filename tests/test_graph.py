"""Test task graph ordering, joins, skip propagation and fan-out"""
import asyncio

import pytest

from topoflow.messaging.errors import FanOutError, WorkflowStateError
from topoflow.messaging.graph import RunState, StepStatus, TaskGraph, fan_out


def _delayed(value, delay, log=None):
    async def action(*args):
        await asyncio.sleep(delay)
        if log is not None:
            log.append(value)
        return value
    return action


async def _boom(*args):
    raise RuntimeError("boom")


@pytest.mark.asyncio
@pytest.mark.parametrize("queue_delay,topic_delay", [(0.0, 0.05), (0.05, 0.0), (0.0, 0.0)])
async def test_join_waits_for_both_branches(queue_delay, topic_delay):
    """Test that a join sees both upstream results whatever order they resolve in"""
    graph = TaskGraph("join")
    graph.add("queue", _delayed("q", queue_delay))
    graph.add("topic", _delayed("t", topic_delay))
    seen = []

    async def join(queue, topic):
        seen.append((queue, topic))
        return f"{queue}+{topic}"

    graph.add("join", join, requires=["queue", "topic"])
    report = await graph.run()

    assert report.state is RunState.COMPLETED
    assert seen == [("q", "t")]
    assert report.results["join"] == "q+t"


@pytest.mark.asyncio
async def test_independent_steps_run_concurrently():
    """Test that unrelated steps overlap in time"""
    graph = TaskGraph("parallel")
    graph.add("a", _delayed("a", 0.2))
    graph.add("b", _delayed("b", 0.2))

    loop = asyncio.get_running_loop()
    started = loop.time()
    report = await graph.run()

    assert report.succeeded
    assert loop.time() - started < 0.35


@pytest.mark.asyncio
async def test_after_orders_without_passing_results():
    """Test ordering-only edges"""
    log = []
    graph = TaskGraph("ordered")
    graph.add("first", _delayed("first", 0.05, log))

    async def second():
        log.append("second")

    graph.add("second", second, after=["first"])
    report = await graph.run()

    assert report.succeeded
    assert log == ["first", "second"]


@pytest.mark.asyncio
async def test_failure_skips_dependents_only():
    """Test that a failed branch blocks its dependents while others finish"""
    graph = TaskGraph("partial")
    graph.add("topic", _boom)
    graph.add("subscribe", _delayed("s", 0), requires=["topic"])
    graph.add("route", _delayed("r", 0), after=["subscribe"])
    graph.add("queue", _delayed("q", 0.02))
    graph.add("resolve", _delayed("arn", 0), requires=["queue"])

    report = await graph.run()

    assert report.state is RunState.FAILED
    assert report.step("topic").status is StepStatus.FAILED
    assert report.step("subscribe").status is StepStatus.SKIPPED
    assert report.step("subscribe").blocked_by == ["topic"]
    assert report.step("route").blocked_by == ["subscribe"]
    assert report.step("queue").status is StepStatus.SUCCEEDED
    assert report.step("resolve").status is StepStatus.SUCCEEDED
    assert report.error == "topic: boom"
    assert isinstance(report.cause, RuntimeError)


@pytest.mark.asyncio
async def test_first_failure_by_time():
    """Test that the earliest failure is the one reported"""
    async def late():
        await asyncio.sleep(0.05)
        raise ValueError("late")

    async def early():
        await asyncio.sleep(0.01)
        raise ValueError("early")

    graph = TaskGraph("failures")
    graph.add("late", late)
    graph.add("early", early)
    report = await graph.run()

    assert report.error == "early: early"


@pytest.mark.asyncio
async def test_describe_failure_fails_the_step():
    """Test that a broken trace renderer is reported as a step failure"""
    graph = TaskGraph("describe")
    graph.add("step", _delayed(None, 0), describe=lambda result: result.missing)

    report = await graph.run()

    assert report.step("step").status is StepStatus.FAILED


@pytest.mark.asyncio
async def test_trace_lines():
    """Test one trace line per step plus the run summary"""
    graph = TaskGraph("trace")
    graph.add("a", _delayed(3, 0), describe=lambda n: f"{n} item(s)")
    graph.add("b", _boom)

    report = await graph.run()
    lines = report.trace()

    assert len(lines) == 3
    assert lines[0].startswith("[SUCCEEDED]")
    assert "3 item(s)" in lines[0]
    assert lines[1].startswith("[FAILED")
    assert lines[2] == "trace: failed (b: boom)"


@pytest.mark.asyncio
async def test_graph_runs_once():
    """Test that a graph can not be re-run or extended after starting"""
    graph = TaskGraph("once")
    graph.add("a", _delayed("a", 0))
    await graph.run()

    assert graph.state is RunState.COMPLETED
    with pytest.raises(WorkflowStateError):
        await graph.run()
    with pytest.raises(WorkflowStateError):
        graph.add("b", _delayed("b", 0))


def test_unknown_dependency():
    """Test that dependencies must be added first"""
    graph = TaskGraph("invalid")

    with pytest.raises(ValueError):
        graph.add("b", _delayed("b", 0), requires=["a"])


def test_duplicate_step():
    """Test that step names are unique"""
    graph = TaskGraph("invalid")
    graph.add("a", _delayed("a", 0))

    with pytest.raises(ValueError):
        graph.add("a", _delayed("a", 0))


def test_dependencies_of():
    """Test that dependency lists merge requires and after without duplicates"""
    graph = TaskGraph("deps")
    graph.add("a", _delayed("a", 0))
    graph.add("b", _delayed("b", 0))
    graph.add("c", _delayed("c", 0), requires=["a"], after=["a", "b"])

    assert graph.dependencies_of("c") == ["a", "b"]
    assert graph.step_names == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_fan_out_collects_every_outcome():
    """Test that a failing item does not cancel its siblings"""
    finished = []

    async def action(item):
        if item == 2:
            raise ValueError("bad item")
        await asyncio.sleep(0.01)
        finished.append(item)
        return item * 10

    result = await fan_out("items", [1, 2, 3], action)

    assert sorted(finished) == [1, 3]
    assert result.results[0] == 10
    assert isinstance(result.results[1], ValueError)
    assert result.succeeded == 2
    assert not result.ok
    with pytest.raises(FanOutError) as exc_info:
        result.raise_for_failures()
    assert exc_info.value.failures == result.failures


@pytest.mark.asyncio
async def test_fan_out_of_nothing():
    """Test that an empty fan-out completes immediately"""
    called = []

    async def action(item):
        called.append(item)

    result = await fan_out("items", [], action)

    assert result.ok
    assert len(result) == 0
    assert called == []
    result.raise_for_failures()
