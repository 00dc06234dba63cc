import os
import subprocess
import threading
import time

import pytest

from gateci.dsl import action, job, sh
from gateci.executor import ShellExecutor
from gateci.matrix import expand
from gateci.model import CANCELLED, FAILED, SUCCEEDED

pytestmark = pytest.mark.skipif(os.name != "posix", reason="shell steps use POSIX commands")


def _instance(*steps, **kw):
    (inst,) = expand(job("j", *steps, **kw))
    return inst


def test_steps_run_in_order_until_first_failure(tmp_path):
    marker = tmp_path / "ran.txt"
    inst = _instance(
        sh("one", f"echo one >> {marker}"),
        sh("fail", "echo boom; exit 3"),
        sh("never", f"echo never >> {marker}"),
    )
    result = ShellExecutor(tmp_path).run(inst)

    assert result.status == FAILED
    assert result.exit_code == 3
    assert result.reason == "exit"
    assert "boom" in result.output_tail
    assert marker.read_text() == "one\n"


def test_env_and_matrix_values_reach_the_step(tmp_path):
    (inst,) = expand(job(
        "j",
        sh("env", 'test "$GREETING-$MATRIX_OS" = "hi-linux"'),
        env={"GREETING": "hi"},
        matrix={"os": ["linux"]},
    ))
    assert ShellExecutor(tmp_path).run(inst).status == SUCCEEDED


def test_cwd_is_relative_to_repo_root(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "here.txt").write_text("x")
    ok = ShellExecutor(tmp_path).run(_instance(sh("ls", "test -f here.txt", cwd="sub")))
    assert ok.status == SUCCEEDED

    missing = ShellExecutor(tmp_path).run(_instance(sh("ls", "true", cwd="nope")))
    assert missing.status == FAILED
    assert "cwd not found" in missing.output_tail


def test_action_steps_are_not_run_locally(tmp_path):
    result = ShellExecutor(tmp_path).run(_instance(action("actions/checkout@v4"), sh("ok", "true")))
    assert result.status == SUCCEEDED


def test_continue_on_error_marks_failure_allowed(tmp_path):
    result = ShellExecutor(tmp_path).run(_instance(sh("no", "false"), continue_on_error=True))
    assert result.status == FAILED
    assert result.allowed


def test_cancel_terminates_a_running_step(tmp_path):
    executor = ShellExecutor(tmp_path)
    inst = _instance(sh("sleep", "sleep 30"), sh("after", "touch after.txt"))
    out = {}

    worker = threading.Thread(target=lambda: out.setdefault("result", executor.run(inst)))
    worker.start()
    deadline = time.monotonic() + 5
    while not executor._procs and time.monotonic() < deadline:
        time.sleep(0.01)
    executor.cancel(inst)
    worker.join(10)

    assert not worker.is_alive()
    assert out["result"].status == FAILED
    assert out["result"].reason == CANCELLED
    assert not (tmp_path / "after.txt").exists()


def test_step_env_is_scoped_to_its_step(tmp_path):
    inst = _instance(
        sh(
            "flags",
            'test "$GATECI_STEP_FLAGS-$GATECI_COLOR" = "-Zprofile-always"',
            env={"GATECI_STEP_FLAGS": "-Zprofile"},
        ),
        sh("after", 'test -z "$GATECI_STEP_FLAGS" && test "$GATECI_COLOR" = "always"'),
        env={"GATECI_COLOR": "always"},
    )
    assert ShellExecutor(tmp_path).run(inst).status == SUCCEEDED


def test_step_env_overrides_job_env(tmp_path):
    inst = _instance(
        sh("mode", 'test "$GATECI_MODE" = "step"', env={"GATECI_MODE": "step"}),
        env={"GATECI_MODE": "job"},
    )
    assert ShellExecutor(tmp_path).run(inst).status == SUCCEEDED


def test_cancel_before_run_runs_no_steps(tmp_path):
    executor = ShellExecutor(tmp_path)
    inst = _instance(sh("touch", "touch marker.txt"), sh("fail", "exit 1"), continue_on_error=True)
    executor.cancel(inst)
    result = executor.run(inst)

    assert result.status == FAILED
    assert result.reason == CANCELLED
    assert not result.allowed
    assert not (tmp_path / "marker.txt").exists()

    # the cancel is consumed; a later run of the same instance is unaffected
    executor.run(inst)
    assert (tmp_path / "marker.txt").exists()


def test_cancel_between_steps_skips_the_rest(tmp_path, monkeypatch):
    executor = ShellExecutor(tmp_path)
    inst = _instance(sh("first", "touch first.txt"), sh("second", "touch second.txt"))

    class CancelAfterFirstStep(subprocess.Popen):
        def communicate(self, *args, **kwargs):
            out = super().communicate(*args, **kwargs)
            # the step has exited and is still registered; the next one has not started
            executor.cancel(inst)
            return out

    monkeypatch.setattr(subprocess, "Popen", CancelAfterFirstStep)
    result = executor.run(inst)

    assert result.status == FAILED
    assert result.reason == CANCELLED
    assert (tmp_path / "first.txt").exists()
    assert not (tmp_path / "second.txt").exists()
