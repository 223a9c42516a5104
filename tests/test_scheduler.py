"""Tests for backoff and the per-target retry loop."""

import threading
import time

import pytest

from waitup.config import CancellationToken, WaitConfig
from waitup.results import AttemptOutcome, ExhaustionReason, FailureKind
from waitup.scheduler import Backoff, RetryScheduler, TargetState
from waitup.targets import TcpTarget

DB = TcpTarget("db", 5432)
OK = AttemptOutcome.succeeded()
REFUSED = AttemptOutcome.failed(FailureKind.CONNECTION_REFUSED, "connection refused")


class TestBackoff:
    def test_doubles_up_to_cap(self):
        backoff = Backoff(0.1, 1.0)
        delays = [backoff.next_delay() for _ in range(7)]
        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.0, 1.0, 1.0])

    def test_zero_initial_interval(self):
        backoff = Backoff(0.0, 5.0)
        assert [backoff.next_delay() for _ in range(3)] == [0.0, 0.0, 0.0]


class TestRetryScheduler:
    def test_succeeds_first_attempt(self, scripted):
        checker = scripted({DB: [OK]})
        scheduler = RetryScheduler(DB, WaitConfig(timeout=5), checker)

        result = scheduler.run()

        assert result.success is True
        assert result.attempts == 1
        assert result.reason is None
        assert result.last_failure is None
        assert scheduler.state is TargetState.SUCCEEDED
        assert scheduler.delays == []

    def test_retries_until_success(self, scripted):
        checker = scripted({DB: [REFUSED, REFUSED, OK]})
        config = WaitConfig(timeout=5, initial_interval=0.02, max_interval=1)
        scheduler = RetryScheduler(DB, config, checker)

        result = scheduler.run()

        assert result.success is True
        assert result.attempts == 3
        assert scheduler.delays == pytest.approx([0.02, 0.04], abs=1e-6)

    def test_backoff_delays_are_monotonic_and_capped(self, scripted):
        config = WaitConfig(timeout=30, initial_interval=0.01, max_interval=0.05, max_retries=8)
        scheduler = RetryScheduler(DB, config, scripted())

        scheduler.run()

        delays = scheduler.delays
        assert delays[0] == pytest.approx(0.01)
        assert all(a <= b for a, b in zip(delays, delays[1:]))
        assert all(d <= 0.05 for d in delays)

    def test_retry_limit(self, scripted):
        checker = scripted()
        config = WaitConfig(timeout=30, initial_interval=0.01, max_interval=0.02, max_retries=3)
        scheduler = RetryScheduler(DB, config, checker)

        result = scheduler.run()

        assert result.success is False
        assert result.reason is ExhaustionReason.RETRY_LIMIT_REACHED
        assert result.attempts == 3
        assert len(checker.calls) == 3
        assert len(scheduler.delays) == 2
        assert result.last_failure.kind is FailureKind.CONNECTION_REFUSED
        assert scheduler.state is TargetState.EXHAUSTED

    def test_timeout(self, scripted):
        config = WaitConfig(timeout=0.3, initial_interval=0.05, max_interval=0.1, connection_timeout=0.1)
        result = RetryScheduler(DB, config, scripted()).run()

        assert result.success is False
        assert result.reason is ExhaustionReason.TIMEOUT
        assert result.attempts > 1
        assert 0.3 <= result.elapsed < 0.3 + 0.1 + 0.5
        assert "Timeout" in result.error

    def test_attempt_timeout_clamped_to_remaining_budget(self, scripted):
        checker = scripted({DB: [OK]})
        config = WaitConfig(timeout=0.2, initial_interval=0.1, max_interval=0.1, connection_timeout=10)

        RetryScheduler(DB, config, checker).run()

        _, attempt_timeout = checker.calls[0]
        assert 0 < attempt_timeout <= 0.2

    def test_zero_timeout(self, scripted):
        checker = scripted({DB: [OK]})
        result = RetryScheduler(DB, WaitConfig(timeout=0, initial_interval=0, max_interval=0), checker).run()

        assert result.success is False
        assert result.reason is ExhaustionReason.TIMEOUT
        assert result.attempts == 0
        assert checker.calls == []

    def test_cancelled_before_first_attempt(self, scripted):
        token = CancellationToken()
        token.cancel()
        checker = scripted({DB: [OK]})

        result = RetryScheduler(DB, WaitConfig(), checker, token).run()

        assert result.reason is ExhaustionReason.CANCELLED
        assert result.attempts == 0
        assert result.last_failure.kind is FailureKind.CANCELLED
        assert checker.calls == []

    def test_cancel_interrupts_backoff_sleep(self, scripted):
        token = CancellationToken()
        config = WaitConfig(timeout=30, initial_interval=10, max_interval=10)
        threading.Timer(0.1, token.cancel).start()

        start = time.monotonic()
        result = RetryScheduler(DB, config, scripted(), token).run()

        assert time.monotonic() - start < 2
        assert result.reason is ExhaustionReason.CANCELLED
        assert result.attempts == 1
        assert result.last_failure.kind is FailureKind.CONNECTION_REFUSED

    def test_in_flight_success_after_cancel_counts(self):
        token = CancellationToken()

        class CancelThenSucceed:
            def check(self, target, timeout):
                token.cancel()
                return OK

        result = RetryScheduler(DB, WaitConfig(), CancelThenSucceed(), token).run()

        assert result.success is True

    def test_shared_start_time(self, scripted):
        started = time.monotonic() - 0.5
        config = WaitConfig(timeout=0.4, initial_interval=0.1, max_interval=0.1)

        result = RetryScheduler(DB, config, scripted({DB: [OK]}), started=started).run()

        assert result.reason is ExhaustionReason.TIMEOUT
        assert result.attempts == 0
        assert result.elapsed >= 0.5

    def test_listener_events(self, scripted, recording_listener):
        checker = scripted({DB: [REFUSED, OK]})
        config = WaitConfig(timeout=5, initial_interval=0.01, max_interval=0.01)

        result = RetryScheduler(DB, config, checker, listener=recording_listener).run()

        kinds = [e[0] for e in recording_listener.events]
        assert kinds == ["started", "result", "started", "result", "finished"]
        assert recording_listener.events[1][3] == REFUSED
        assert recording_listener.events[-1][2] is result

    def test_failing_listener_is_ignored(self, scripted):
        class Broken:
            def on_attempt_started(self, target, attempt):
                raise RuntimeError("boom")

            def on_attempt_result(self, target, attempt, outcome, elapsed):
                raise RuntimeError("boom")

            def on_target_finished(self, target, result):
                raise RuntimeError("boom")

        result = RetryScheduler(DB, WaitConfig(timeout=5), scripted({DB: [OK]}), listener=Broken()).run()

        assert result.success is True
