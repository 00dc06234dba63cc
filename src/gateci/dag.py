# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Dict, List, Set, Tuple

from .conditions import as_condition
from .errors import ConfigurationError
from .matrix import validate_matrix
from .model import JobDef, Need, REQUIRE_POLICIES, Workflow


@dataclass
class JobGraph:
    """
    A validated Job Definition Set.

    Every need references a known job, every edge has a concrete require
    policy, conditions are parsed, and the dependency relation is acyclic.
    `levels` is the topological staging (jobs in one level are independent).
    """
    workflow: Workflow
    jobs: Dict[str, JobDef]             # declaration order
    order: Dict[str, int]               # job id -> declaration index
    needs: Dict[str, List[Need]]        # job id -> edges with require resolved
    dependents: Dict[str, Set[str]]     # dep -> jobs that need it
    levels: List[List[str]]

    @property
    def name(self) -> str:
        return self.workflow.name

    def critical(self, job_id: str) -> bool:
        crit = self.jobs[job_id].critical
        return self.workflow.default_critical if crit is None else crit


def build_dag(jobs: List[JobDef]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build adjacency (dep -> dependents) and in-degrees from job definitions.

    Raises ConfigurationError on duplicate ids or unknown needs.
    """
    names = [j.id for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigurationError(f"Duplicate job ids found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs:
            if need.job not in name_set:
                raise ConfigurationError(
                    f"Job '{job.id}' needs missing job '{need.job}'",
                    job=job.id,
                    details={"known_jobs": sorted(name_set)},
                )
            if need.job == job.id:
                raise ConfigurationError(f"Job '{job.id}' needs itself", job=job.id)
            if job.id not in adj[need.job]:
                adj[need.job].add(job.id)
                indeg[job.id] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int], order: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (stages), each ordered by
    declaration. Raises ConfigurationError if some jobs can never become ready.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted((n for n, d in indeg.items() if d == 0), key=order.__getitem__))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []
        nxt: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    nxt.append(child)

        q.extend(sorted(nxt, key=order.__getitem__))
        levels.append(level)

    if processed != len(indeg):
        remaining = sorted((n for n, d in indeg.items() if d > 0), key=order.__getitem__)
        raise ConfigurationError(
            "Dependency graph has a cycle",
            details={"stuck_jobs": remaining},
        )

    return levels


def build_graph(workflow: Workflow) -> JobGraph:
    """Validate a workflow into a JobGraph. Everything fatal is raised here."""
    if workflow.default_require not in REQUIRE_POLICIES:
        raise ConfigurationError(
            f"Unknown default dependency policy {workflow.default_require!r}",
            details={"expected": "|".join(REQUIRE_POLICIES)},
        )

    jobs = list(workflow.jobs)
    adj, indeg = build_dag(jobs)
    order = {j.id: i for i, j in enumerate(jobs)}
    levels = topo_levels(adj, indeg, order)

    needs: Dict[str, List[Need]] = {}
    checked: List[JobDef] = []
    for job in jobs:
        if not job.steps:
            raise ConfigurationError(f"Job '{job.id}' has no steps", job=job.id)
        # parsed conditions live on a copy; the caller's workflow is left as written
        job = replace(job, condition=as_condition(job.condition, job=job.id))
        validate_matrix(job)
        checked.append(job)

        resolved: List[Need] = []
        seen: Set[str] = set()
        for need in job.needs:
            require = need.require or workflow.default_require
            if require not in REQUIRE_POLICIES:
                raise ConfigurationError(
                    f"Unknown require policy {require!r} on need '{need.job}'",
                    job=job.id,
                )
            if need.job in seen:
                raise ConfigurationError(f"Job '{job.id}' lists '{need.job}' twice in needs", job=job.id)
            seen.add(need.job)
            resolved.append(Need(need.job, require))
        needs[job.id] = resolved

    return JobGraph(
        workflow=workflow,
        jobs={j.id: j for j in checked},
        order=order,
        needs=needs,
        dependents=adj,
        levels=levels,
    )
