# gateci_workflow.py
# Workflow for gateci itself: lint and format gate every change, tests fan
# out over Python versions, type checking is advisory.
from __future__ import annotations

from gateci.dsl import wf, job, sh, after_completion


def workflow():
    return wf(
        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
        ),
        job(
            "format-check",
            sh("Ruff format check", "ruff format --check src tests"),
        ),
        job(
            "test",
            sh("Install package", "python${{ matrix.python }} -m pip install -e '.[test]'"),
            sh("Run pytest", "python${{ matrix.python }} -m pytest -q"),
            needs=["lint"],
            matrix={"python": ["3.10", "3.11", "3.12"]},
        ),
        job(
            "type-check",
            sh("Type check", "python -m mypy src/gateci --ignore-missing-imports"),
            needs=[after_completion("lint")],
            continue_on_error=True,
            critical=False,
        ),
        job(
            "config-check",
            sh("Validate pyproject.toml", "python -c 'import tomllib; tomllib.load(open(\"pyproject.toml\", \"rb\"))'"),
            when="event_kind == 'pull_request'",
            critical=False,
        ),
        name="gateci",
        on={"push": ["main", "staging", "trying"], "pull_request": ["main"]},
    )
