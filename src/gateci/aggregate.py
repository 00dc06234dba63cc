# aggregate.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .dag import JobGraph
from .model import ABSENT_REASONS, FAILED, SKIPPED, SUCCEEDED, Result, Run


@dataclass(frozen=True)
class DefinitionOutcome:
    """Folded status of one job definition across all of its instances."""
    id: str
    status: str
    critical: bool
    reason: str | None = None
    instances: int = 0
    allowed_failures: int = 0

    @property
    def passed(self) -> bool:
        """Succeeded, or legitimately absent (condition false / empty matrix)."""
        if self.status == SUCCEEDED:
            return True
        return self.status == SKIPPED and self.reason in ABSENT_REASONS


def fold_definition(job_id: str, critical: bool, results: List[Result]) -> DefinitionOutcome:
    """
    One definition's status from its instance results (any order):

    - failed if any instance failed without continue_on_error
    - skipped if nothing ran (blocked, cancelled, condition, empty matrix)
    - succeeded otherwise; continue_on_error failures are only counted
    """
    fatal = [r for r in results if r.status == FAILED and not r.allowed]
    allowed = sum(1 for r in results if r.status == FAILED and r.allowed)
    ran = [r for r in results if r.status != SKIPPED]

    if fatal:
        reasons = sorted({r.reason for r in fatal if r.reason})
        return DefinitionOutcome(job_id, FAILED, critical, ",".join(reasons) or None, len(results), allowed)

    if not ran:
        reasons = sorted({r.reason for r in results if r.reason})
        return DefinitionOutcome(job_id, SKIPPED, critical, ",".join(reasons) or None, len(results), 0)

    skipped = [r for r in results if r.status == SKIPPED and not r.is_absent]
    if skipped:
        # some instances ran, others were blocked or cancelled
        reasons = sorted({r.reason for r in skipped if r.reason})
        return DefinitionOutcome(job_id, SKIPPED, critical, ",".join(reasons) or None, len(results), allowed)

    return DefinitionOutcome(job_id, SUCCEEDED, critical, None, len(results), allowed)


def fold_run(run: Run, graph: JobGraph) -> List[DefinitionOutcome]:
    """Per-definition outcomes in declaration order."""
    return [
        fold_definition(job_id, graph.critical(job_id), run.results_for(job_id))
        for job_id in graph.jobs
    ]


def overall_status(outcomes: List[DefinitionOutcome]) -> str:
    """The gate: failed iff some critical definition did not pass."""
    if any(o.critical and not o.passed for o in outcomes):
        return FAILED
    return SUCCEEDED
