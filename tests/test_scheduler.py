import threading

import pytest

from conftest import FakeExecutor
from gateci.dag import build_graph
from gateci.dsl import after_completion, job, sh, wf
from gateci.model import (
    BLOCKED,
    CANCEL_TIMEOUT,
    CANCELLED,
    CONDITION,
    EMPTY_MATRIX,
    ERROR,
    FAILED,
    SKIPPED,
    SUCCEEDED,
)
from gateci.runner import plan
from gateci.scheduler import Scheduler, satisfies


def _job(name, needs=None, **kw):
    return job(name, sh(name, "true"), needs=needs, **kw)


def _execute(workflow, context, executor, **kw):
    graph = build_graph(workflow)
    run = plan(graph, context)
    scheduler = Scheduler(graph, run, executor, **kw)
    scheduler.execute()
    assert scheduler.state == {}
    assert run.complete
    return run


def _status(run, iid):
    r = run.results[iid]
    return r.status, r.reason


def test_failure_blocks_the_whole_downstream_chain(push_main):
    executor = FakeExecutor(exit_codes={"B": 1})
    run = _execute(
        wf(_job("A"), _job("B", needs=["A"]), _job("C", needs=["B"]), _job("D", needs=["C"])),
        push_main,
        executor,
        max_workers=2,
    )

    assert _status(run, "A") == (SUCCEEDED, None)
    assert _status(run, "B") == (FAILED, "exit")
    assert _status(run, "C") == (SKIPPED, BLOCKED)
    assert _status(run, "D") == (SKIPPED, BLOCKED)
    # blocked jobs never reach the executor
    assert executor.calls == ["A", "B"]
    assert run.gate_report().overall == FAILED


def test_failed_root_blocks_a_join_and_its_advisory_dependent(push_main):
    executor = FakeExecutor(exit_codes={"B": 1})
    run = _execute(
        wf(
            _job("A"),
            _job("B"),
            _job("C", needs=["A", "B"], critical=True),
            _job("D", needs=["C"], critical=False, continue_on_error=True),
        ),
        push_main,
        executor,
    )

    assert _status(run, "A") == (SUCCEEDED, None)
    assert _status(run, "B") == (FAILED, "exit")
    assert _status(run, "C") == (SKIPPED, BLOCKED)
    assert _status(run, "D") == (SKIPPED, BLOCKED)
    assert sorted(executor.calls) == ["A", "B"]

    report = run.gate_report()
    assert report.overall == FAILED
    assert not report.passed
    outcomes = {d.id: d for d in report.definitions}
    assert not outcomes["C"].passed
    assert outcomes["D"].critical is False


def test_completion_edge_accepts_condition_skip(push_main):
    executor = FakeExecutor()
    run = _execute(
        wf(
            _job("A"),
            _job("B", when="github.ref == 'refs/heads/staging'"),
            _job("C", needs=["A", after_completion("B")]),
        ),
        push_main,
        executor,
    )

    assert _status(run, "B") == (SKIPPED, CONDITION)
    assert _status(run, "C") == (SUCCEEDED, None)
    assert "B" not in executor.calls
    assert run.gate_report().overall == SUCCEEDED


def test_success_edge_on_condition_skip_blocks(push_main):
    run = _execute(
        wf(
            _job("A"),
            _job("B", when="github.ref == 'refs/heads/staging'"),
            _job("C", needs=["A", "B"]),
        ),
        push_main,
        FakeExecutor(),
    )
    assert _status(run, "C") == (SKIPPED, BLOCKED)


def test_concurrency_limit_and_declaration_order(push_main):
    executor = FakeExecutor(delay=0.05)
    names = ["e1", "e2", "e3", "e4", "e5"]
    run = _execute(wf(*[_job(n) for n in names]), push_main, executor, max_workers=2)

    assert executor.max_running <= 2
    assert run.dispatch_order == names
    assert all(r.status == SUCCEEDED for r in run.results.values())


def test_dependents_start_only_after_all_instances_finish(push_main):
    executor = FakeExecutor(delay=0.02)
    run = _execute(
        wf(
            _job("test", matrix={"os": ["linux", "macos", "windows"]}),
            _job("lint"),
            _job("success", needs=["test", "lint"]),
        ),
        push_main,
        executor,
        max_workers=2,
    )
    order = run.dispatch_order
    assert order[:2] == ["test (os=linux)", "test (os=macos)"]
    assert order[-1] == "success"
    assert _status(run, "success") == (SUCCEEDED, None)


def test_matrix_with_continue_on_error(push_main):
    executor = FakeExecutor(exit_codes={"test (os=macos)": 1})
    run = _execute(
        wf(
            _job("test", matrix={"os": ["linux", "macos"]}, continue_on_error=True),
            _job("summary", needs=[after_completion("test")]),
            _job("deploy", needs=["test"], critical=False),
        ),
        push_main,
        executor,
    )

    failed = run.results["test (os=macos)"]
    assert failed.status == FAILED and failed.allowed
    assert _status(run, "summary") == (SUCCEEDED, None)
    assert _status(run, "deploy") == (SKIPPED, BLOCKED)

    report = run.gate_report()
    test = next(d for d in report.definitions if d.id == "test")
    assert test.status == SUCCEEDED
    assert test.allowed_failures == 1
    assert report.overall == SUCCEEDED


def test_empty_matrix_dependency_terminates(push_main):
    run = _execute(
        wf(
            _job("full", matrix={"os": []}),
            _job("after_any", needs=[after_completion("full")]),
            _job("after_ok", needs=["full"], critical=False),
        ),
        push_main,
        FakeExecutor(),
    )
    assert _status(run, "full") == (SKIPPED, EMPTY_MATRIX)
    assert _status(run, "after_any") == (SUCCEEDED, None)
    assert _status(run, "after_ok") == (SKIPPED, BLOCKED)


def test_executor_exception_is_a_failure(push_main):
    run = _execute(
        wf(_job("A"), _job("B", needs=["A"])),
        push_main,
        FakeExecutor(raises={"A"}),
    )
    result = run.results["A"]
    assert (result.status, result.reason) == (FAILED, ERROR)
    assert "runner vanished" in result.output_tail
    assert _status(run, "B") == (SKIPPED, BLOCKED)


def test_cancellation_with_grace_then_kill(push_main):
    executor = FakeExecutor(delay=5.0, hang={"hung"})
    graph = build_graph(wf(
        _job("slow"),
        _job("hung"),
        _job("after", needs=["slow"]),
    ))
    run = plan(graph, push_main)
    scheduler = Scheduler(graph, run, executor, max_workers=2, grace=0.2)

    timer = threading.Timer(0.2, scheduler.cancel)
    timer.start()
    try:
        scheduler.execute()
    finally:
        timer.cancel()

    assert run.cancelled
    assert scheduler.state == {}
    assert _status(run, "slow") == (FAILED, CANCELLED)
    assert _status(run, "hung") == (FAILED, CANCEL_TIMEOUT)
    assert _status(run, "after") == (SKIPPED, CANCELLED)
    assert executor.killed == ["hung"]
    assert set(executor.cancelled) == {"slow", "hung"}

    report = run.gate_report()
    assert report.overall == FAILED
    assert set(report.cancelled) == {"slow", "after"}
    assert report.cancel_timeouts == ("hung",)


def test_cancel_before_start_skips_everything(push_main):
    executor = FakeExecutor()
    graph = build_graph(wf(_job("A"), _job("B", needs=["A"])))
    run = plan(graph, push_main)
    scheduler = Scheduler(graph, run, executor)
    scheduler.cancel()
    scheduler.execute()

    assert executor.calls == []
    assert {r.reason for r in run.results.values()} == {CANCELLED}


def test_invalid_worker_count(push_main):
    graph = build_graph(wf(_job("A")))
    with pytest.raises(ValueError):
        Scheduler(graph, plan(graph, push_main), FakeExecutor(), max_workers=0)


def test_satisfies_policies(push_main):
    run = _execute(
        wf(
            _job("ok"),
            _job("bad", continue_on_error=True),
            _job("hard"),
            _job("cond", when=False),
        ),
        push_main,
        FakeExecutor(exit_codes={"bad": 1, "hard": 2}),
    )
    r = run.results
    assert satisfies(r["ok"], "success") and satisfies(r["ok"], "completion")
    assert not satisfies(r["bad"], "success") and satisfies(r["bad"], "completion")
    assert not satisfies(r["hard"], "completion")
    assert not satisfies(r["cond"], "success") and satisfies(r["cond"], "completion")
