# matrix.py
from __future__ import annotations

import itertools
import re
from dataclasses import replace
from typing import Any, Dict, List, Mapping

from .errors import ConfigurationError
from .model import Coordinate, JobDef, JobInstance

AXIS_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")
PLACEHOLDER_RE = re.compile(r"\$\{\{\s*matrix\.([A-Za-z_][A-Za-z0-9_\-]*)\s*\}\}")

SCALARS = (str, int, float, bool)


def _placeholders(job: JobDef) -> List[str]:
    texts: List[str] = []
    for step in job.steps:
        texts.extend(t for t in (step.name, step.run, step.cwd) if t)
        texts.extend(v for _, v in step.env)
    texts.extend(job.env.values())
    if job.name:
        texts.append(job.name)
    return [m.group(1) for t in texts for m in PLACEHOLDER_RE.finditer(str(t))]


def validate_matrix(job: JobDef) -> None:
    """Reject malformed axes and placeholders that name an undefined axis."""
    if not isinstance(job.matrix, Mapping):
        raise ConfigurationError("Matrix must be a mapping of axis -> values", job=job.id)

    for axis, values in job.matrix.items():
        if not isinstance(axis, str) or not AXIS_RE.match(axis):
            raise ConfigurationError(f"Invalid matrix axis name {axis!r}", job=job.id)
        if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple)):
            raise ConfigurationError(
                f"Matrix axis '{axis}' must be a list of values",
                job=job.id,
                details={"got": type(values).__name__},
            )
        for v in values:
            if not isinstance(v, SCALARS):
                raise ConfigurationError(
                    f"Matrix axis '{axis}' has a non-scalar value {v!r}",
                    job=job.id,
                )
        # instance ids and MATRIX_* variables use str(value)
        rendered = [str(v) for v in values]
        if len(set(rendered)) != len(rendered):
            dupes = sorted({r for r in rendered if rendered.count(r) > 1})
            raise ConfigurationError(
                f"Matrix axis '{axis}' has duplicate values",
                job=job.id,
                details={"duplicates": dupes},
            )

    env_names: Dict[str, str] = {}
    for axis in job.matrix:
        name = _env_name(axis)
        if name in env_names:
            raise ConfigurationError(
                f"Matrix axes '{env_names[name]}' and '{axis}' both export {name}",
                job=job.id,
            )
        env_names[name] = axis

    for axis in _placeholders(job):
        if axis not in job.matrix:
            raise ConfigurationError(
                f"Placeholder references undefined matrix axis '{axis}'",
                job=job.id,
                details={"axes": sorted(job.matrix)},
            )


def render(text: str | None, values: Mapping[str, Any]) -> str | None:
    """Substitute ${{ matrix.<axis> }} placeholders."""
    if text is None:
        return None
    return PLACEHOLDER_RE.sub(lambda m: str(values[m.group(1)]), text)


def _env_name(axis: str) -> str:
    return "MATRIX_" + axis.upper().replace("-", "_")


def coordinates(matrix: Mapping[str, List[Any]]) -> List[Coordinate]:
    """Cartesian product in axis declaration order, then value order."""
    axes = list(matrix)
    return [tuple(zip(axes, combo)) for combo in itertools.product(*(matrix[a] for a in axes))]


def expand(job: JobDef, base_env: Dict[str, str] | None = None) -> List[JobInstance]:
    """
    Turn one job definition into its instances.

    No matrix -> one instance. A zero-length axis -> no instances; the caller
    records the job as skipped.
    """
    instances: List[JobInstance] = []
    for index, coord in enumerate(coordinates(job.matrix)):
        values = dict(coord)
        steps = tuple(
            replace(
                s,
                name=render(s.name, values),
                run=render(s.run, values),
                cwd=render(s.cwd, values),
                env=tuple((k, render(v, values)) for k, v in s.env),
            )
            for s in job.steps
        )
        env: Dict[str, str] = dict(base_env or {})
        env.update({k: render(str(v), values) for k, v in job.env.items()})
        env.update({_env_name(axis): str(value) for axis, value in coord})
        instances.append(
            JobInstance(
                job=job.id,
                coordinate=coord,
                index=index,
                steps=steps,
                env=tuple(sorted(env.items())),
                continue_on_error=job.continue_on_error,
            )
        )
    return instances
