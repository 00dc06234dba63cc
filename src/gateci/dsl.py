# src/gateci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .model import REQUIRE_COMPLETION, REQUIRE_SUCCESS, JobDef, Need, Step, Workflow

NeedSpec = Union[str, Need]


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, Any]] = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=tuple((k, str(v)) for k, v in (env or {}).items()))


def action(uses: str, name: str | None = None) -> Step:
    """A hosting-platform action step. Recorded, never run locally."""
    return Step(name=name or uses, uses=uses)


# ---------------------------------------------------------------------
# Dependency helpers
# ---------------------------------------------------------------------

def after(job_id: str, require: str | None = None) -> Need:
    """needs=[after("build", REQUIRE_COMPLETION)]"""
    return Need(job=job_id, require=require)


def after_success(job_id: str) -> Need:
    return Need(job=job_id, require=REQUIRE_SUCCESS)


def after_completion(job_id: str) -> Need:
    return Need(job=job_id, require=REQUIRE_COMPLETION)


def _needs(needs: Optional[Sequence[NeedSpec]]) -> List[Need]:
    return [n if isinstance(n, Need) else Need(job=n) for n in (needs or [])]


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    id: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,
    needs: Optional[Sequence[NeedSpec]] = None,
    when: Any = None,  # expression string, bool, or condition node
    matrix: Optional[Mapping[str, Iterable[Any]]] = None,
    env: Optional[Dict[str, str]] = None,
    continue_on_error: bool = False,
    critical: Optional[bool] = None,
    name: str | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> JobDef:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({id!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return JobDef(
        id=id,
        steps=steps_final,
        needs=_needs(needs),
        condition=when,
        matrix={k: list(v) for k, v in (matrix or {}).items()},
        env={k: str(v) for k, v in (env or {}).items()},
        continue_on_error=continue_on_error,
        critical=critical,
        name=name,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, id: str):
        self.id = id
        self._needs: list[Need] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._condition: Any = None
        self._matrix: dict[str, list[Any]] = {}
        self._continue_on_error = False
        self._critical: Optional[bool] = None
        self._name: str | None = None

    def named(self, name: str):
        self._name = name
        return self

    def depends_on(self, *job_ids: str, require: str | None = None):
        self._needs.extend(Need(job=j, require=require) for j in job_ids)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def uses(self, action_ref: str, name: str | None = None):
        self._steps.append(action(action_ref, name))
        return self

    def when(self, condition: Any):
        self._condition = condition
        return self

    def with_matrix(self, **axes: Iterable[Any]):
        self._matrix.update({k: list(v) for k, v in axes.items()})
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def allow_failure(self, enabled: bool = True):
        self._continue_on_error = enabled
        return self

    def advisory(self):
        self._critical = False
        return self

    def gating(self):
        self._critical = True
        return self

    def build(self) -> JobDef:
        if not self._steps:
            raise ValueError(f"Job '{self.id}' has no steps")

        return JobDef(
            id=self.id,
            steps=list(self._steps),
            needs=list(self._needs),
            condition=self._condition,
            matrix=dict(self._matrix),
            env=dict(self._env),
            continue_on_error=self._continue_on_error,
            critical=self._critical,
            name=self._name,
        )


def build(id: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(id)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: JobDef,
    name: str = "workflow",
    on: Optional[Mapping[str, Optional[Sequence[str]]]] = None,
    env: Optional[Dict[str, str]] = None,
    require: str = REQUIRE_SUCCESS,
    critical: bool = True,
) -> Workflow:
    """
    Workflow definition helper.

        from gateci import wf, job, sh

        def workflow():
            return wf(
                job("lint", sh("ruff", "ruff check .")),
                job("test", sh("pytest", "pytest -q"), needs=["lint"]),
                on={"push": ["main", "staging"], "pull_request": ["main"]},
            )
    """
    return Workflow(
        name=name,
        jobs=list(jobs),
        triggers={k: (list(v) if v is not None else None) for k, v in (on or {}).items()},
        env={k: str(v) for k, v in (env or {}).items()},
        default_require=require,
        default_critical=critical,
    )
