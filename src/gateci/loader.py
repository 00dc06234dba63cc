# loader.py
"""
Workflow loading.

Two sources are supported:

- a YAML document in a GitHub Actions subset (`on`, `env`, `jobs.<id>` with
  `needs`, `if`, `strategy.matrix`, `continue-on-error`, `env`, `steps` with
  per-step `env`),
  plus a gateci-specific `gate:` section and per-job `critical:` flag;
- a Python file defining `workflow()` or `JOBS`, built with `gateci.dsl`.

Either way the result is a `Workflow`; `load_graph` also validates it.
"""
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .dag import JobGraph, build_graph
from .errors import ConfigurationError
from .model import JobDef, Need, Step, Workflow

YAML_SUFFIXES = (".yml", ".yaml")

Scalar = Union[str, int, float, bool]


# ----------------------------------------------------------------------
# Document schema
# ----------------------------------------------------------------------

class StepDoc(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    env: Dict[str, Scalar] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _run_or_uses(self) -> StepDoc:
        if (self.run is None) == (self.uses is None):
            raise ValueError("a step needs exactly one of 'run' or 'uses'")
        return self


class NeedDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job: str
    require: Optional[Literal["success", "completion"]] = None


class StrategyDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    matrix: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("matrix")
    @classmethod
    def _no_include_exclude(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        unsupported = sorted(k for k in v if k in ("include", "exclude"))
        if unsupported:
            raise ValueError(f"matrix {unsupported} is not supported; declare plain axes")
        return v


class JobDoc(BaseModel):
    # runs-on, timeout-minutes, ... belong to the hosting platform
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: Optional[str] = None
    needs: Union[str, List[Union[str, NeedDoc]]] = Field(default_factory=list)
    if_: Optional[Union[bool, str]] = Field(default=None, alias="if")
    strategy: Optional[StrategyDoc] = None
    continue_on_error: bool = Field(default=False, alias="continue-on-error")
    critical: Optional[bool] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)
    steps: List[StepDoc] = Field(min_length=1)


class TriggerDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    branches: Optional[List[str]] = None


class GateDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    require: Literal["success", "completion"] = "success"
    critical: bool = True
    advisory: List[str] = Field(default_factory=list)


class WorkflowDoc(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = "workflow"
    on: Union[str, List[str], Dict[str, Optional[TriggerDoc]]] = Field(default_factory=dict)
    env: Dict[str, Scalar] = Field(default_factory=dict)
    gate: GateDoc = Field(default_factory=GateDoc)
    jobs: Dict[str, Optional[JobDoc]]


# ----------------------------------------------------------------------
# Document -> model
# ----------------------------------------------------------------------

def _env(values: Dict[str, Scalar]) -> Dict[str, str]:
    return {k: (str(v).lower() if isinstance(v, bool) else str(v)) for k, v in values.items()}


def _triggers(on) -> Dict[str, Optional[List[str]]]:
    if isinstance(on, str):
        return {on: None}
    if isinstance(on, list):
        return {event: None for event in on}
    return {event: (t.branches if t is not None else None) for event, t in on.items()}


def _job(job_id: str, doc: JobDoc, advisory: List[str]) -> JobDef:
    needs_raw = [doc.needs] if isinstance(doc.needs, str) else doc.needs
    needs = [
        Need(job=n) if isinstance(n, str) else Need(job=n.job, require=n.require)
        for n in needs_raw
    ]
    steps = [
        Step(
            name=s.name or s.run or s.uses or f"step-{i + 1}",
            run=s.run,
            cwd=s.working_directory,
            uses=s.uses,
            env=tuple(_env(s.env).items()),
        )
        for i, s in enumerate(doc.steps)
    ]
    critical = doc.critical
    if job_id in advisory:
        if critical:
            raise ConfigurationError(f"Job '{job_id}' is both critical and listed in gate.advisory", job=job_id)
        critical = False
    return JobDef(
        id=job_id,
        steps=steps,
        needs=needs,
        condition=doc.if_,
        matrix=dict(doc.strategy.matrix) if doc.strategy else {},
        env=_env(doc.env),
        continue_on_error=doc.continue_on_error,
        critical=critical,
        name=doc.name,
    )


def workflow_from_dict(raw: Any, source: str = "<document>") -> Workflow:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Workflow document must be a mapping: {source}")
    raw = dict(raw)
    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in raw and "on" not in raw:
        raw["on"] = raw.pop(True)

    try:
        doc = WorkflowDoc.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid workflow document {source}",
            details={"errors": "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )},
        ) from e

    if not doc.jobs:
        raise ConfigurationError(f"Workflow {source} defines no jobs")
    for job_id, job_doc in doc.jobs.items():
        if job_doc is None:
            raise ConfigurationError(f"Job '{job_id}' is empty", job=job_id)
    unknown_advisory = sorted(set(doc.gate.advisory) - set(doc.jobs))
    if unknown_advisory:
        raise ConfigurationError(f"gate.advisory names unknown jobs: {unknown_advisory}")

    return Workflow(
        name=doc.name,
        jobs=[_job(job_id, job_doc, doc.gate.advisory) for job_id, job_doc in doc.jobs.items()],
        triggers=_triggers(doc.on),
        env=_env(doc.env),
        default_require=doc.gate.require,
        default_critical=doc.gate.critical,
    )


def load_yaml_workflow(path: Path) -> Workflow:
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML in {path}", details={"error": str(e)}) from e
    return workflow_from_dict(raw, source=str(path))


def load_python_workflow(path: Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> Workflow | List[JobDef]
      - JOBS = [JobDef, ...]
    """
    module_name = f"gateci_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    result = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            result = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from gateci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "JOBS" in globals_dict:
        result = globals_dict["JOBS"]

    if isinstance(result, Workflow):
        return result
    if isinstance(result, list) and all(isinstance(j, JobDef) for j in result):
        return Workflow(name=path.stem, jobs=result)
    raise ConfigurationError(
        f"Workflow file {path.name} must return/define a Workflow or List[JobDef]",
        details={"hint": "Define workflow() -> wf(...) or JOBS = [job(...), ...]"},
    )


def load_workflow(path: str | Path) -> Workflow:
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml_workflow(wf_path)
    if wf_path.suffix == ".py":
        return load_python_workflow(wf_path)
    raise ConfigurationError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")


def load_graph(path: str | Path) -> JobGraph:
    """Load and validate. Every ConfigurationError surfaces here, before any job runs."""
    return build_graph(load_workflow(path))
