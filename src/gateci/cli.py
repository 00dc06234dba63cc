# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
from pathlib import Path

import click

from gateci.config import Settings
from gateci.errors import ConfigurationError, ReportingFailure
from gateci.executor import ShellExecutor
from gateci.git_facts.git import get_current_ref
from gateci.loader import load_graph
from gateci.model import EVENT_KINDS, TriggerContext
from gateci.report import ConsoleReporter, HttpReporter, JsonFileReporter
from gateci.runner import plan, run_pipeline
from gateci.ui.console import Console, get_console, set_console

WORKFLOW_PATTERNS = ("*_workflow.py", "*_workflow.yml", "*_workflow.yaml")

EXIT_GATE_FAILED = 1
EXIT_CONFIG = 2


def find_workflow_files() -> list[Path]:
    """Workflow files in the current directory, gateci_workflow.py first."""
    current_dir = Path(".")
    workflow_files = []

    default_workflow = current_dir / "gateci_workflow.py"
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for pattern in WORKFLOW_PATTERNS:
        for path in sorted(current_dir.glob(pattern)):
            if path != default_workflow:
                workflow_files.append(path)

    return workflow_files


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Specify a different path:\n  gateci run --workflow ci_workflow.yml",
            )
            sys.exit(EXIT_CONFIG)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", "  gateci_workflow.py", *(f"  {p}" for p in WORKFLOW_PATTERNS)],
            suggestion="Create a workflow file or specify one explicitly:\n  gateci run --workflow ci.yml",
        )
        sys.exit(EXIT_CONFIG)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  gateci run --workflow gateci_workflow.py",
        )
        sys.exit(EXIT_CONFIG)

    return workflow_files[0]


def resolve_trigger(event: str, ref: str | None, branch: str | None) -> TriggerContext:
    """Trigger from flags, falling back to the local checkout for the ref."""
    console = get_console()
    if not ref:
        try:
            ref = get_current_ref()
            console.print_debug(f"Using git ref: {ref}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "No --ref given and the current directory is not a usable git checkout.",
                suggestion="Specify the trigger explicitly:\n  gateci run --event push --ref refs/heads/main",
            )
            sys.exit(EXIT_CONFIG)
    return TriggerContext.from_ref(event, ref, branch=branch)


def _load(workflow):
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_graph(workflow_path)
    except ConfigurationError as e:
        console.print_error(
            "Invalid workflow",
            f"{workflow_path} was rejected before any job ran.",
            details=str(e).splitlines(),
        )
        sys.exit(EXIT_CONFIG)


trigger_options = [
    click.option("--event", type=click.Choice(EVENT_KINDS), default="push", show_default=True,
                 envvar="GATECI_EVENT", help="Trigger event kind"),
    click.option("--ref", default=None, envvar="GATECI_REF",
                 help="Trigger ref, e.g. refs/heads/main (defaults to the local checkout)"),
    click.option("--branch", default=None, envvar="GATECI_BRANCH",
                 help="Branch name (defaults to the branch in --ref)"),
]


def with_trigger_options(f):
    for option in reversed(trigger_options):
        f = option(f)
    return f


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Enable debug mode (stack traces, full output tails)")
@click.option("--quiet", is_flag=True, default=False, help="Only print the gate summary and errors")
@click.pass_context
def cli(ctx, debug, quiet):
    """gateci: job-graph orchestrator with a merge-queue gate."""
    set_console(Console(debug=debug, quiet=quiet))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml, .yaml)")
@click.pass_context
def validate(ctx, workflow):
    """Load and validate a workflow; print its stages."""
    console = get_console()
    workflow_path, graph = _load(workflow)
    console.print_info(f"{workflow_path}: OK ({len(graph.jobs)} jobs)")
    for idx, level in enumerate(graph.levels):
        console.print_info(f"  stage {idx + 1}: {', '.join(level)}")


@cli.command(name="plan")
@click.option("--workflow", default=None, help="Workflow file (.py, .yml, .yaml)")
@with_trigger_options
@click.pass_context
def plan_cmd(ctx, workflow, event, ref, branch):
    """Show which jobs and matrix instances a trigger would run."""
    console = get_console()
    _path, graph = _load(workflow)
    context = resolve_trigger(event, ref, branch)
    console.print_header(f"PLAN for {context.event_kind} {context.ref}")
    run = plan(graph, context)
    for inst in run.instances:
        console.print_info(f"  {inst.instance_id}")
    if not run.instances:
        console.print_info("  (nothing to run)")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml, .yaml)")
@with_trigger_options
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Concurrency limit")
@click.option("--grace", default=None, type=float, help="Seconds a cancelled job gets before it is killed")
@click.option("--status-url", default=None, help="Gate status receiver base URL")
@click.option("--status-file", default=None, type=click.Path(dir_okay=False), help="Write gate status JSON here")
@click.option("--retries", default=None, type=click.IntRange(min=0), help="Retries per reporter")
@click.pass_context
def run(ctx, workflow, event, ref, branch, workers, grace, status_url, status_file, retries):
    """Run a workflow for one trigger and report the gate."""
    console = get_console()
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        console.print_error("Invalid settings", str(e))
        sys.exit(EXIT_CONFIG)

    workflow_path, graph = _load(workflow)
    context = resolve_trigger(event, ref, branch)

    reporters = [ConsoleReporter()]
    if status_file or settings.status_file:
        reporters.append(JsonFileReporter(status_file or settings.status_file))
    if status_url or settings.status_url:
        reporters.append(HttpReporter(status_url or settings.status_url))

    console.print_run_started(
        workflow=f"{graph.name} ({workflow_path.name})",
        event_kind=context.event_kind,
        branch=context.branch,
        ref=context.ref,
        job_count=len(graph.jobs),
    )

    previous = {}

    def install_signals(scheduler):
        def handler(signum, frame):
            console.print_info(f"\nReceived signal {signum}, cancelling run...")
            scheduler.cancel()

        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, handler)

    try:
        result = run_pipeline(
            graph,
            context,
            ShellExecutor("."),
            max_workers=workers or settings.max_workers,
            grace=grace if grace is not None else settings.cancel_grace,
            reporters=reporters,
            retries=retries if retries is not None else settings.report_retries,
            on_scheduler=install_signals,
        )
    except ReportingFailure as e:
        console.print_error(
            "Gate status could not be reported",
            str(e),
            suggestion="The run itself completed; re-reporting is safe once the receiver is reachable.",
        )
        sys.exit(EXIT_GATE_FAILED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_GATE_FAILED)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    console.print_info(f"Run ID: {result.run_id}")
    if not result.gate_report().passed:
        sys.exit(EXIT_GATE_FAILED)


if __name__ == "__main__":
    cli()
