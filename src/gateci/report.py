# report.py
from __future__ import annotations

import json
import os
import tempfile
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple
from urllib.parse import urljoin

from .aggregate import DefinitionOutcome, fold_run, overall_status
from .errors import ReportingFailure
from .model import CANCEL_TIMEOUT, CANCELLED, FAILED, Run
from .ui.console import get_console


@dataclass(frozen=True)
class GateReport:
    """
    The single terminal signal for a run.

    `to_dict()` is the status contract consumed by the merge-queue bot:
    {run_id, overall, definitions: [{id, status, critical}]} plus extra
    detail keys the bot may ignore.
    """
    run_id: str
    workflow: str
    overall: str
    definitions: Tuple[DefinitionOutcome, ...]
    cancelled: Tuple[str, ...]
    cancel_timeouts: Tuple[str, ...]
    context: Tuple[Tuple[str, str], ...]
    triggered: bool = True

    @property
    def passed(self) -> bool:
        return self.overall != FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "overall": self.overall,
            "definitions": [
                {
                    "id": d.id,
                    "status": d.status,
                    "critical": d.critical,
                    "reason": d.reason,
                    "allowed_failures": d.allowed_failures,
                }
                for d in self.definitions
            ],
            "workflow": self.workflow,
            "triggered": self.triggered,
            "cancelled": list(self.cancelled),
            "cancel_timeouts": list(self.cancel_timeouts),
            "context": dict(self.context),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def build_report(run: Run) -> GateReport:
    if run.graph is None:
        raise RuntimeError(f"Run {run.run_id} has no job graph attached")
    if not run.complete:
        missing = [i.instance_id for i in run.instances if i.instance_id not in run.results]
        raise RuntimeError(f"Run {run.run_id} is not complete; unresolved: {missing}")

    outcomes = fold_run(run, run.graph)
    return GateReport(
        run_id=run.run_id,
        workflow=run.workflow,
        overall=overall_status(outcomes),
        definitions=tuple(outcomes),
        cancelled=tuple(
            r.instance_id for r in run.results.values() if r.reason == CANCELLED
        ),
        cancel_timeouts=tuple(
            r.instance_id for r in run.results.values() if r.reason == CANCEL_TIMEOUT
        ),
        context=tuple(sorted(run.context.to_dict().items())),
        triggered=run.triggered,
    )


# ---------------------------------------------------------------------
# Reporters
# ---------------------------------------------------------------------

class GateReporter:
    """Emits a completed run's gate report somewhere. Must be idempotent."""

    name = "reporter"

    def report(self, run: Run) -> None:
        raise NotImplementedError


class ConsoleReporter(GateReporter):
    """Display for the triggering system (the terminal)."""

    name = "console"

    def report(self, run: Run) -> None:
        get_console().print_gate(run.gate_report())


class JsonFileReporter(GateReporter):
    """Writes the status contract to a file, replacing it atomically."""

    name = "file"

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def report(self, run: Run) -> None:
        report = run.gate_report()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".gate-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(report.to_dict(), f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as e:
            raise ReportingFailure(self.name, report.run_id, str(e)) from e


class HttpReporter(GateReporter):
    """
    Pushes the status contract to the gate status receiver
    (POST {base_url}/statuses). The receiver upserts by run_id, so
    re-sending after a failure is safe.
    """

    name = "http"

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def report(self, run: Run) -> None:
        report = run.gate_report()
        url = urljoin(self.base_url + "/", "statuses")
        req = urllib.request.Request(
            url,
            data=report.to_json().encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Idempotency-Key": report.run_id,
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response.read()
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise ReportingFailure(self.name, report.run_id, f"HTTP {e.code} {e.reason}. {error_body}") from e
        except urllib.error.URLError as e:
            raise ReportingFailure(self.name, report.run_id, f"Network error: {e.reason}") from e


def deliver(
    run: Run,
    reporters: Iterable[GateReporter],
    *,
    retries: int = 3,
    backoff: float = 1.0,
    sleep=time.sleep,
) -> None:
    """
    Emit the run's report through every reporter, retrying each on
    ReportingFailure. Re-raises the last failure once retries run out.
    """
    console = get_console()
    for reporter in reporters:
        attempt = 0
        while True:
            try:
                reporter.report(run)
                break
            except ReportingFailure as e:
                attempt += 1
                if attempt > retries:
                    raise
                console.print_debug(f"{e} (retry {attempt}/{retries})")
                sleep(backoff * attempt)
