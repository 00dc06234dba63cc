# scheduler.py
from __future__ import annotations

import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Dict, List

from .dag import JobGraph
from .executor import Executor
from .model import (
    BLOCKED,
    CANCEL_TIMEOUT,
    CANCELLED,
    ERROR,
    FAILED,
    REQUIRE_SUCCESS,
    SKIPPED,
    SUCCEEDED,
    JobInstance,
    Result,
    Run,
)
from .ui.console import get_console

PENDING = "pending"
READY = "ready"
RUNNING = "running"

# dependency readiness
WAIT = "wait"
OK = "ok"


def satisfies(result: Result, require: str) -> bool:
    """Does a terminal dependency result satisfy an edge's require policy?"""
    if require == REQUIRE_SUCCESS:
        return result.status == SUCCEEDED
    # completion: finished without breaking anything downstream cares about
    if result.status == SUCCEEDED or result.is_absent:
        return True
    return result.status == FAILED and result.allowed


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


class Scheduler:
    """
    Dispatches a planned Run's instances in dependency order.

    Instance lifecycle: pending -> ready -> running -> succeeded|failed|skipped.
    A pending instance whose dependencies terminate without satisfying their
    edge goes straight to skipped (reason "blocked") and never runs.

    At most `max_workers` instances run at once. Ready instances start in
    declaration order, then matrix coordinate order. Only this object writes
    to `run.results`, from the thread that called `execute`.
    """

    def __init__(
        self,
        graph: JobGraph,
        run: Run,
        executor: Executor,
        *,
        max_workers: int | None = None,
        grace: float = 10.0,
        poll_interval: float = 0.05,
    ):
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.graph = graph
        self.run = run
        self.executor = executor
        self.max_workers = max_workers or default_workers()
        self.grace = grace
        self.poll_interval = poll_interval

        self._cancel = threading.Event()
        self._started: Dict[str, float] = {}

        self._instances: List[JobInstance] = sorted(
            run.instances, key=lambda i: (graph.order[i.job], i.index)
        )
        self._by_job: Dict[str, List[str]] = {}
        for inst in self._instances:
            self._by_job.setdefault(inst.job, []).append(inst.instance_id)
        self.state: Dict[str, str] = {
            inst.instance_id: PENDING
            for inst in self._instances
            if inst.instance_id not in run.results
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation. Safe to call from a signal handler or another thread."""
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def execute(self) -> Run:
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="gateci")
        in_flight: Dict[Future, JobInstance] = {}
        try:
            while True:
                if self._cancel.is_set():
                    self._cancel_all(in_flight)
                    break

                self._promote()

                for inst in self._instances:
                    if len(in_flight) >= self.max_workers:
                        break
                    if self.state.get(inst.instance_id) == READY:
                        in_flight[self._dispatch(pool, inst)] = inst

                if not in_flight:
                    break

                # suspend only at instance boundaries
                done, _ = wait(list(in_flight), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: self._sort_key(in_flight[f])):
                    inst = in_flight.pop(fut)
                    self._finish(inst, fut.result())
        finally:
            pool.shutdown(wait=not self.run.cancelled, cancel_futures=True)

        if self.state:
            # unreachable for a validated DAG
            raise RuntimeError(f"Scheduler stopped with unresolved instances: {sorted(self.state)}")
        return self.run

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sort_key(self, inst: JobInstance):
        return (self.graph.order[inst.job], inst.index)

    def _dependency_state(self, inst: JobInstance) -> str:
        for need in self.graph.needs[inst.job]:
            ids = self._by_job.get(need.job)
            if ids:
                results = [self.run.results.get(i) for i in ids]
            else:
                # job with no instances: condition-skipped or empty matrix
                results = [self.run.results.get(need.job)]
            if any(r is None for r in results):
                return WAIT
            if not all(satisfies(r, need.require) for r in results):
                return BLOCKED
        return OK

    def _promote(self) -> None:
        changed = True
        while changed:
            changed = False
            for inst in self._instances:
                iid = inst.instance_id
                if self.state.get(iid) != PENDING:
                    continue
                dep = self._dependency_state(inst)
                if dep == OK:
                    self.state[iid] = READY
                elif dep == BLOCKED:
                    self._record(self._skip(inst, BLOCKED))
                    get_console().print_job_skipped(iid, "dependency not satisfied")
                    changed = True

    def _dispatch(self, pool: ThreadPoolExecutor, inst: JobInstance) -> Future:
        iid = inst.instance_id
        self.state[iid] = RUNNING
        self.run.dispatch_order.append(iid)
        self._started[iid] = time.monotonic()
        get_console().print_job_start(iid)
        return pool.submit(self._invoke, inst)

    def _invoke(self, inst: JobInstance) -> Result:
        started = time.monotonic()
        try:
            return self.executor.run(inst)
        except Exception as e:
            return Result(
                instance_id=inst.instance_id,
                job=inst.job,
                coordinate=inst.coordinate,
                status=FAILED,
                duration=time.monotonic() - started,
                reason=ERROR,
                allowed=inst.continue_on_error,
                output_tail=f"{type(e).__name__}: {e}",
            )

    def _finish(self, inst: JobInstance, result: Result) -> None:
        self._record(result)
        get_console().print_job_result(result)

    def _record(self, result: Result) -> None:
        self.state.pop(result.instance_id, None)
        self.run.record(result)

    def _skip(self, inst: JobInstance, reason: str) -> Result:
        return Result(
            instance_id=inst.instance_id,
            job=inst.job,
            coordinate=inst.coordinate,
            status=SKIPPED,
            reason=reason,
        )

    def _cancel_all(self, in_flight: Dict[Future, JobInstance]) -> None:
        console = get_console()
        self.run.cancelled = True

        for inst in self._instances:
            if self.state.get(inst.instance_id) in (PENDING, READY):
                self._record(self._skip(inst, CANCELLED))

        if not in_flight:
            return

        for inst in in_flight.values():
            console.print_info(f"[{inst.instance_id}] cancellation requested")
            self.executor.cancel(inst)

        done, not_done = wait(list(in_flight), timeout=self.grace)

        for fut in sorted(done, key=lambda f: self._sort_key(in_flight[f])):
            inst = in_flight[fut]
            result = fut.result()
            if result.status != SUCCEEDED:
                result = replace(result, status=FAILED, reason=CANCELLED, allowed=False)
            self._finish(inst, result)

        now = time.monotonic()
        for fut in sorted(not_done, key=lambda f: self._sort_key(in_flight[f])):
            inst = in_flight[fut]
            self.executor.kill(inst)
            self._finish(
                inst,
                Result(
                    instance_id=inst.instance_id,
                    job=inst.job,
                    coordinate=inst.coordinate,
                    status=FAILED,
                    duration=now - self._started.get(inst.instance_id, now),
                    reason=CANCEL_TIMEOUT,
                ),
            )
        in_flight.clear()
