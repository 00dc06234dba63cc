# model.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Any, Dict, List, Optional, Tuple

from .conditions import ALWAYS
from .errors import ConfigurationError

PUSH = "push"
PULL_REQUEST = "pull_request"
EVENT_KINDS = (PUSH, PULL_REQUEST)

# Dependency edge flavours
REQUIRE_SUCCESS = "success"
REQUIRE_COMPLETION = "completion"
REQUIRE_POLICIES = (REQUIRE_SUCCESS, REQUIRE_COMPLETION)

# Terminal statuses
SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"

# Result reasons
EXIT = "exit"
ERROR = "error"
CONDITION = "condition"
EMPTY_MATRIX = "empty-matrix"
BLOCKED = "blocked"
CANCELLED = "cancelled"
CANCEL_TIMEOUT = "cancel-timeout"

# Skips that mean "legitimately absent" rather than "something upstream broke"
ABSENT_REASONS = (CONDITION, EMPTY_MATRIX)

Coordinate = Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class TriggerContext:
    """The event that started a run. Created once, never mutated."""
    event_kind: str
    branch: str
    ref: str

    def __post_init__(self) -> None:
        if self.event_kind not in EVENT_KINDS:
            raise ConfigurationError(
                f"Unknown event kind {self.event_kind!r}",
                details={"expected": "|".join(EVENT_KINDS)},
            )

    @classmethod
    def from_ref(cls, event_kind: str, ref: str, branch: str | None = None) -> TriggerContext:
        if branch is None:
            prefix = "refs/heads/"
            branch = ref[len(prefix):] if ref.startswith(prefix) else ref
        return cls(event_kind=event_kind, branch=branch, ref=ref)

    def to_dict(self) -> Dict[str, str]:
        return {"event_kind": self.event_kind, "branch": self.branch, "ref": self.ref}


@dataclass(frozen=True)
class Step:
    """A single opaque command inside a job."""
    name: str
    run: str | None = None
    cwd: str | None = None
    # Hosting-platform action reference (e.g. actions/checkout@v2); not run locally.
    uses: str | None = None
    # step-only variables, layered over the job env
    env: Tuple[Tuple[str, str], ...] = ()

    @property
    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)


@dataclass(frozen=True)
class Need:
    """One dependency edge. `require=None` defers to the workflow default."""
    job: str
    require: str | None = None


@dataclass
class JobDef:
    """
    A pipeline step as declared: commands + dependencies + run condition +
    matrix axes + gating flags.
    """
    id: str
    steps: List[Step]
    needs: List[Need] = field(default_factory=list)
    condition: Any = ALWAYS
    matrix: Dict[str, List[Any]] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    continue_on_error: bool = False
    # None -> workflow default
    critical: Optional[bool] = None
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass
class Workflow:
    """
    A Job Definition Set before validation.

    `triggers` maps event kind -> branch globs (None = any branch). An empty
    mapping accepts every event.
    """
    name: str
    jobs: List[JobDef]
    triggers: Dict[str, Optional[List[str]]] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    default_require: str = REQUIRE_SUCCESS
    default_critical: bool = True

    def accepts(self, context: TriggerContext) -> bool:
        if not self.triggers:
            return True
        if context.event_kind not in self.triggers:
            return False
        branches = self.triggers[context.event_kind]
        if branches is None:
            return True
        return any(fnmatch(context.branch, pattern) for pattern in branches)


@dataclass(frozen=True)
class JobInstance:
    """One schedulable unit: a job at one matrix coordinate."""
    job: str
    coordinate: Coordinate
    index: int
    steps: Tuple[Step, ...]
    env: Tuple[Tuple[str, str], ...] = ()
    continue_on_error: bool = False

    @property
    def instance_id(self) -> str:
        return instance_id(self.job, self.coordinate)

    @property
    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)


def instance_id(job: str, coordinate: Coordinate) -> str:
    if not coordinate:
        return job
    inner = ", ".join(f"{axis}={value}" for axis, value in coordinate)
    return f"{job} ({inner})"


@dataclass(frozen=True)
class Result:
    """Terminal outcome of one instance. Written once, by the scheduler."""
    instance_id: str
    job: str
    coordinate: Coordinate
    status: str
    exit_code: int | None = None
    duration: float = 0.0
    reason: str | None = None
    # failed under continue_on_error
    allowed: bool = False
    output_tail: str = ""

    @property
    def is_absent(self) -> bool:
        return self.status == SKIPPED and self.reason in ABSENT_REASONS


@dataclass
class Run:
    """
    All instances and results for one Trigger Context.

    Results are only written through `record`, which the scheduler calls from
    its own thread. Once `gate_report()` has been computed the run is frozen.
    """
    workflow: str
    context: TriggerContext
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    triggered: bool = True
    instances: List[JobInstance] = field(default_factory=list)
    results: Dict[str, Result] = field(default_factory=dict)
    dispatch_order: List[str] = field(default_factory=list)
    cancelled: bool = False
    graph: Any = field(default=None, repr=False)
    _report: Any = field(default=None, repr=False)

    def record(self, result: Result) -> None:
        if self._report is not None:
            raise RuntimeError(f"Run {self.run_id} already reported; results are frozen")
        if result.instance_id in self.results:
            raise RuntimeError(f"Result for {result.instance_id!r} already recorded")
        self.results[result.instance_id] = result

    def results_for(self, job: str) -> List[Result]:
        return [r for r in self.results.values() if r.job == job]

    @property
    def complete(self) -> bool:
        return all(inst.instance_id in self.results for inst in self.instances)

    def gate_report(self):
        """Compute the gate report once; later calls return the same object."""
        if self._report is None:
            from .report import build_report
            self._report = build_report(self)
        return self._report
