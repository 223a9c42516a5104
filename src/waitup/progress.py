"""Hooks for observing a wait operation while it runs."""

from typing import Optional

from .logs import get_engine_logger
from .results import AttemptOutcome, TargetResult
from .targets import Target

log = get_engine_logger()


class ProgressListener:
    """Base listener; override the events you care about.

    Methods are called from the worker thread that produced the event, so
    implementations must be thread-safe.
    """

    def on_attempt_started(self, target: Target, attempt: int) -> None:
        pass

    def on_attempt_result(self, target: Target, attempt: int, outcome: AttemptOutcome,
                          elapsed: float) -> None:
        pass

    def on_target_finished(self, target: Target, result: TargetResult) -> None:
        pass


class SafeListener(ProgressListener):
    """Forwards events to a listener and logs, rather than raises, its errors."""

    def __init__(self, listener: Optional[ProgressListener]):
        self.listener = listener

    def _dispatch(self, name: str, *args) -> None:
        if self.listener is None:
            return
        try:
            getattr(self.listener, name)(*args)
        except Exception:
            log.warning(f"Progress listener failed in {name}", exc_info=True)

    def on_attempt_started(self, target, attempt):
        self._dispatch("on_attempt_started", target, attempt)

    def on_attempt_result(self, target, attempt, outcome, elapsed):
        self._dispatch("on_attempt_result", target, attempt, outcome, elapsed)

    def on_target_finished(self, target, result):
        self._dispatch("on_target_finished", target, result)
