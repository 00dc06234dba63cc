import pytest

from gateci.dag import build_graph
from gateci.dsl import action, after_completion, build, job, sh, wf
from gateci.model import REQUIRE_COMPLETION, Need, Step, TriggerContext


def test_job_helper():
    j = job(
        "test",
        sh("unit", "pytest -q"),
        steps_list=[action("actions/checkout@v4")],
        needs=["lint", after_completion("fmt")],
        env={"RETRIES": 3},
        cwd="pkg",
    )
    assert [s.name for s in j.steps] == ["actions/checkout@v4", "unit"]
    assert j.steps[1] == Step("unit", "pytest -q", cwd="pkg")
    assert j.needs == [Need("lint"), Need("fmt", REQUIRE_COMPLETION)]
    assert j.env == {"RETRIES": "3"}


def test_job_requires_steps():
    with pytest.raises(ValueError):
        job("empty")


def test_builder():
    j = (
        build("deploy")
        .named("Deploy docs")
        .depends_on("test", require=REQUIRE_COMPLETION)
        .uses("actions/checkout@v4")
        .define_step("publish", "make publish")
        .when("branch == 'main'")
        .with_matrix(site=["docs", "blog"])
        .with_env(DRY_RUN=False)
        .allow_failure()
        .advisory()
        .build()
    )
    assert j.display_name == "Deploy docs"
    assert j.needs == [Need("test", REQUIRE_COMPLETION)]
    assert j.matrix == {"site": ["docs", "blog"]}
    assert j.env == {"DRY_RUN": "False"}
    assert j.continue_on_error and j.critical is False

    with pytest.raises(ValueError):
        build("nothing").build()


def test_wf_triggers():
    workflow = wf(
        job("a", sh("a", "true")),
        on={"push": ["main", "release/*"], "pull_request": None},
    )
    assert workflow.accepts(TriggerContext.from_ref("push", "refs/heads/release/1.2"))
    assert not workflow.accepts(TriggerContext.from_ref("push", "refs/heads/dev"))
    assert workflow.accepts(TriggerContext.from_ref("pull_request", "refs/pull/3/merge", branch="dev"))
    assert wf(job("a", sh("a", "true"))).accepts(TriggerContext.from_ref("push", "refs/heads/x"))


def test_repo_workflow_file_is_valid():
    from gateci.loader import load_workflow
    from pathlib import Path

    workflow = load_workflow(Path(__file__).resolve().parent.parent / "gateci_workflow.py")
    graph = build_graph(workflow)
    assert graph.critical("lint")
    assert not graph.critical("type-check")
