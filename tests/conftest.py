import threading

import pytest

from gateci.executor import Executor, make_result
from gateci.model import TriggerContext
from gateci.ui.console import Console, set_console


class FakeExecutor(Executor):
    """
    Scripted executor for scheduler tests.

    exit_codes: job id or instance id -> exit code (default 0)
    delay:      seconds each instance "runs"; cancel() cuts it short
    hang:       job/instance ids that ignore cancel() until kill()
    """

    def __init__(self, exit_codes=None, delay=0.0, hang=(), raises=()):
        self.exit_codes = exit_codes or {}
        self.delay = delay
        self.hang = set(hang)
        self.raises = set(raises)
        self.calls = []
        self.cancelled = []
        self.killed = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()
        self._stops = {}
        self._released = threading.Event()

    def run(self, instance):
        iid = instance.instance_id
        stop = threading.Event()
        with self._lock:
            self.calls.append(iid)
            self._stops[iid] = stop
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            if iid in self.raises or instance.job in self.raises:
                raise RuntimeError("runner vanished")
            if iid in self.hang or instance.job in self.hang:
                self._released.wait(10)
                code = -9
            elif stop.wait(self.delay):
                code = 143
            else:
                code = self.exit_codes.get(iid, self.exit_codes.get(instance.job, 0))
        finally:
            with self._lock:
                self.running -= 1
        return make_result(instance, code, self.delay)

    def cancel(self, instance):
        self.cancelled.append(instance.instance_id)
        stop = self._stops.get(instance.instance_id)
        if stop is not None:
            stop.set()

    def kill(self, instance):
        self.killed.append(instance.instance_id)
        self._released.set()


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(quiet=True))
    yield
    set_console(Console())


@pytest.fixture
def push_main():
    return TriggerContext.from_ref("push", "refs/heads/main")


@pytest.fixture
def push_staging():
    return TriggerContext.from_ref("push", "refs/heads/staging")
