import threading
import time

import pytest

from waitup.checker import Checker
from waitup.logs import get_engine_logger
from waitup.results import AttemptOutcome, FailureKind

REFUSED = AttemptOutcome.failed(FailureKind.CONNECTION_REFUSED, "connection refused")
OK = AttemptOutcome.succeeded()


class ScriptedChecker(Checker):
    """Replays a list of outcomes per target; the last outcome repeats."""

    def __init__(self, scripts=None, default=REFUSED, delays=None):
        self.scripts = {target: list(outcomes) for target, outcomes in (scripts or {}).items()}
        self.default = default
        self.delays = delays or {}
        self.calls = []
        self._lock = threading.Lock()

    def check(self, target, timeout):
        with self._lock:
            self.calls.append((target, timeout))
        delay = self.delays.get(target, 0)
        if delay:
            time.sleep(delay)
        script = self.scripts.get(target)
        if not script:
            return self.default
        if len(script) > 1:
            return script.pop(0)
        return script[0]

    def attempts_for(self, target):
        with self._lock:
            return sum(1 for t, _ in self.calls if t == target)


class RecordingListener:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def on_attempt_started(self, target, attempt):
        with self._lock:
            self.events.append(("started", target, attempt))

    def on_attempt_result(self, target, attempt, outcome, elapsed):
        with self._lock:
            self.events.append(("result", target, attempt, outcome))

    def on_target_finished(self, target, result):
        with self._lock:
            self.events.append(("finished", target, result))


@pytest.fixture
def scripted():
    return ScriptedChecker


@pytest.fixture
def recording_listener():
    return RecordingListener()


@pytest.fixture(autouse=True)
def reset_engine_logger():
    yield
    logger = get_engine_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
