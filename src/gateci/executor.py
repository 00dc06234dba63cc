# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Dict, Set

from .model import CANCELLED, EXIT, FAILED, SUCCEEDED, JobInstance, Result
from .ui.console import get_console


class Executor:
    """
    Runs one job instance and reports what happened.

    `run` is called on a worker thread and must return a Result rather than
    write it anywhere; the scheduler owns the Run. `cancel` asks a running
    instance to stop, `kill` forces it. Both are called from the scheduler
    thread and may be no-ops.
    """

    def run(self, instance: JobInstance) -> Result:
        raise NotImplementedError

    def cancel(self, instance: JobInstance) -> None:
        pass

    def kill(self, instance: JobInstance) -> None:
        pass


def make_result(
    instance: JobInstance,
    exit_code: int | None,
    duration: float,
    output_tail: str = "",
    reason: str | None = EXIT,
) -> Result:
    """Map an exit code onto a Result, honouring continue_on_error."""
    ok = exit_code == 0
    return Result(
        instance_id=instance.instance_id,
        job=instance.job,
        coordinate=instance.coordinate,
        status=SUCCEEDED if ok else FAILED,
        exit_code=exit_code,
        duration=duration,
        reason=None if ok else reason,
        # a cancelled instance never counts as an allowed failure
        allowed=(not ok) and instance.continue_on_error and reason != CANCELLED,
        output_tail=output_tail,
    )


class ShellExecutor(Executor):
    """
    Runs each step of an instance through the shell, in order, stopping at
    the first non-zero exit. Output is kept only as a tail for display.
    """

    def __init__(self, repo_root: str | Path = ".", tail_chars: int = 4000):
        self.repo_root = Path(repo_root).resolve()
        self.tail_chars = tail_chars
        self._procs: Dict[str, subprocess.Popen] = {}
        self._stopped: Set[str] = set()
        self._lock = threading.Lock()

    def run(self, instance: JobInstance) -> Result:
        console = get_console()
        iid = instance.instance_id
        env = os.environ.copy()
        env.update(instance.env_dict)

        started = time.monotonic()
        output = ""
        exit_code: int | None = 0
        stopped = False
        for step in instance.steps:
            with self._lock:
                stopped = iid in self._stopped
            if stopped:
                break
            if step.run is None:
                # platform actions (uses:) belong to the hosting CI
                console.print_debug(f"[{iid}] skipping action step {step.uses or step.name}")
                continue

            console.print_step(iid, step.name)
            cwd = (self.repo_root / (step.cwd or ".")).resolve()
            if not cwd.exists():
                output += f"\n[{iid}] step '{step.name}' cwd not found: {cwd}"
                exit_code = 1
                break

            step_env = env
            if step.env:
                step_env = dict(env)
                step_env.update(step.env_dict)

            proc = subprocess.Popen(
                step.run,
                shell=True,
                cwd=str(cwd),
                env=step_env,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=(os.name == "posix"),
            )
            with self._lock:
                self._procs[iid] = proc
                # cancel() landed between the check above and registration
                late_cancel = iid in self._stopped
            if late_cancel:
                self._signal(instance, signal.SIGTERM)
            try:
                out, _ = proc.communicate()
            finally:
                with self._lock:
                    self._procs.pop(iid, None)
            output = (output + (out or ""))[-self.tail_chars:]
            exit_code = proc.returncode
            if exit_code != 0:
                with self._lock:
                    stopped = iid in self._stopped
                break

        with self._lock:
            self._stopped.discard(iid)
        duration = time.monotonic() - started
        if stopped:
            # interrupted, or later steps never ran
            return make_result(
                instance,
                exit_code if exit_code else None,
                duration,
                output + f"\n[{iid}] cancelled",
                reason=CANCELLED,
            )
        return make_result(instance, exit_code, duration, output)

    def _signal(self, instance: JobInstance, sig: int) -> None:
        iid = instance.instance_id
        with self._lock:
            self._stopped.add(iid)
            proc = self._procs.get(iid)
        if proc is None or proc.poll() is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        except ProcessLookupError:
            pass

    def cancel(self, instance: JobInstance) -> None:
        self._signal(instance, signal.SIGTERM)

    def kill(self, instance: JobInstance) -> None:
        self._signal(instance, getattr(signal, "SIGKILL", signal.SIGTERM))
