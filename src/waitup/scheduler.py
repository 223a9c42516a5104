"""Per-target retry loop with capped exponential backoff."""

import time
from enum import Enum
from typing import List, Optional

from .checker import Checker
from .config import CancellationToken, WaitConfig
from .logs import get_engine_logger
from .progress import ProgressListener, SafeListener
from .results import AttemptOutcome, ExhaustionReason, FailureKind, TargetResult
from .targets import Target

log = get_engine_logger()

BACKOFF_MULTIPLIER = 2.0


class TargetState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


class Backoff:
    """Delays start at initial, grow by multiplier and never exceed maximum."""

    def __init__(self, initial: float, maximum: float, multiplier: float = BACKOFF_MULTIPLIER):
        self.initial = initial
        self.maximum = maximum
        self.multiplier = multiplier
        self.current = min(initial, maximum)

    def next_delay(self) -> float:
        delay = self.current
        self.current = min(self.current * self.multiplier, self.maximum)
        return delay


class RetryScheduler:
    """Drives one target from Pending to Succeeded or Exhausted.

    started is the monotonic time the whole operation began, so every target
    of an operation shares one deadline. Attempts are strictly sequential and
    each one is clamped to the time left before that deadline.
    """

    def __init__(self, target: Target, config: WaitConfig, checker: Checker,
                 token: Optional[CancellationToken] = None, started: Optional[float] = None,
                 listener: Optional[ProgressListener] = None):
        self.target = target
        self.config = config
        self.checker = checker
        self.token = token or CancellationToken()
        self.started = time.monotonic() if started is None else started
        self.deadline = self.started + config.timeout
        self.listener = listener if isinstance(listener, SafeListener) else SafeListener(listener)

        self.state = TargetState.PENDING
        self.attempts = 0
        self.last_failure: Optional[AttemptOutcome] = None
        self.delays: List[float] = []

    def _exhaustion_reason(self) -> Optional[ExhaustionReason]:
        if self.token.is_cancelled():
            return ExhaustionReason.CANCELLED
        if time.monotonic() >= self.deadline:
            return ExhaustionReason.TIMEOUT
        if self.config.max_retries is not None and self.attempts >= self.config.max_retries:
            return ExhaustionReason.RETRY_LIMIT_REACHED
        return None

    def _finish(self, reason: Optional[ExhaustionReason] = None) -> TargetResult:
        elapsed = time.monotonic() - self.started
        success = reason is None
        self.state = TargetState.SUCCEEDED if success else TargetState.EXHAUSTED

        if reason is ExhaustionReason.CANCELLED and self.last_failure is None:
            self.last_failure = AttemptOutcome.failed(FailureKind.CANCELLED, "cancelled before the first attempt")

        result = TargetResult(
            target=self.target,
            success=success,
            elapsed=elapsed,
            attempts=self.attempts,
            last_failure=None if success else self.last_failure,
            reason=reason,
        )
        if success:
            log.info(f"{self.target} is ready after {self.attempts} attempt(s) ({elapsed:.2f}s)")
        else:
            log.info(f"{self.target} gave up: {result.error}")
        self.listener.on_target_finished(self.target, result)
        return result

    def run(self) -> TargetResult:
        backoff = Backoff(self.config.initial_interval, self.config.max_interval)

        while True:
            reason = self._exhaustion_reason()
            if reason is not None:
                return self._finish(reason)

            self.attempts += 1
            self.state = TargetState.ATTEMPTING
            attempt_timeout = min(self.config.connection_timeout, self.deadline - time.monotonic())

            self.listener.on_attempt_started(self.target, self.attempts)
            attempt_started = time.monotonic()
            outcome = self.checker.check(self.target, attempt_timeout)
            self.listener.on_attempt_result(self.target, self.attempts, outcome,
                                            time.monotonic() - attempt_started)

            if outcome.success:
                return self._finish()

            self.last_failure = outcome
            log.debug(f"Attempt {self.attempts}: {self.target} not ready ({outcome.describe()})")

            reason = self._exhaustion_reason()
            if reason is not None:
                return self._finish(reason)

            self.state = TargetState.WAITING
            delay = max(0.0, min(backoff.next_delay(), self.deadline - time.monotonic()))
            self.delays.append(delay)
            log.debug(f"{self.target}: retrying in {delay:.2f}s")
            if self.token.wait(delay):
                return self._finish(ExhaustionReason.CANCELLED)
