# runner.py
from __future__ import annotations

from typing import Callable, Iterable, Optional

from .conditions import evaluate
from .dag import JobGraph
from .executor import Executor, ShellExecutor
from .matrix import expand
from .model import CONDITION, EMPTY_MATRIX, SKIPPED, Result, Run, TriggerContext
from .report import GateReporter, deliver
from .scheduler import Scheduler
from .ui.console import get_console

# local dev ---> push / PR ---> gate ---> merge queue


def _absent(job_id: str, reason: str) -> Result:
    return Result(instance_id=job_id, job=job_id, coordinate=(), status=SKIPPED, reason=reason)


def plan(graph: JobGraph, context: TriggerContext) -> Run:
    """
    Decide what this trigger runs.

    Jobs whose condition is false are recorded as skipped and never expanded.
    Jobs whose matrix has a zero-length axis are recorded as skipped
    (empty-matrix). Everything else is expanded into pending instances.
    """
    console = get_console()
    run = Run(workflow=graph.name, context=context, graph=graph)

    if not graph.workflow.accepts(context):
        run.triggered = False
        for job_id in graph.jobs:
            run.record(_absent(job_id, CONDITION))
        console.print_plan_job_skipped(graph.name, f"workflow not triggered by {context.event_kind} on {context.branch}")
        return run

    for job_id, job in graph.jobs.items():
        if not evaluate(job.condition, context):
            run.record(_absent(job_id, CONDITION))
            console.print_plan_job_skipped(job_id, "condition is false")
            continue

        instances = expand(job, graph.workflow.env)
        if not instances:
            run.record(_absent(job_id, EMPTY_MATRIX))
            console.print_plan_job_skipped(job_id, "matrix has an empty axis")
            continue

        run.instances.extend(instances)
        if len(instances) == 1 and not instances[0].coordinate:
            console.print_plan_job(job_id, "will run")
        else:
            console.print_plan_job(job_id, f"{len(instances)} matrix instances")

    return run


def run_pipeline(
    graph: JobGraph,
    context: TriggerContext,
    executor: Optional[Executor] = None,
    *,
    max_workers: int | None = None,
    grace: float = 10.0,
    reporters: Iterable[GateReporter] = (),
    retries: int = 3,
    on_scheduler: Callable[[Scheduler], None] | None = None,
) -> Run:
    """
    Plan, execute and report one run.

    `on_scheduler` receives the Scheduler before execution starts, so callers
    can wire cancellation (signals, superseding pushes) to `Scheduler.cancel`.
    """
    run = plan(graph, context)
    scheduler = Scheduler(
        graph,
        run,
        executor or ShellExecutor("."),
        max_workers=max_workers,
        grace=grace,
    )
    if on_scheduler is not None:
        on_scheduler(scheduler)
    scheduler.execute()

    run.gate_report()
    deliver(run, reporters, retries=retries)
    return run
