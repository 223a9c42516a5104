"""Concurrent wait strategies over several targets."""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, List, Optional

from .checker import Checker, TargetChecker
from .config import CancellationToken, WaitConfig
from .errors import WaitCancelledError
from .logs import get_engine_logger
from .progress import ProgressListener, SafeListener
from .results import TargetResult, WaitResult
from .scheduler import RetryScheduler
from .targets import Target

log = get_engine_logger()


class Waiter:
    """Runs one retry loop per target on a thread pool and combines the results.

    ALL succeeds when every target succeeds and cancels the others as soon as
    one is exhausted. ANY succeeds on the first ready target and cancels the
    rest. Either way every loop is joined before returning, so the result has
    one entry per target in input order.
    """

    def __init__(self, config: Optional[WaitConfig] = None, checker: Optional[Checker] = None,
                 listener: Optional[ProgressListener] = None):
        self.config = config or WaitConfig()
        self.checker = checker or TargetChecker()
        self.listener = SafeListener(listener)

    def _operation_token(self) -> CancellationToken:
        parent = self.config.cancellation
        if parent is None:
            return CancellationToken()
        if parent.is_cancelled():
            raise WaitCancelledError("Wait was cancelled before it started")
        return parent.child()

    def wait_for_target(self, target: Target) -> TargetResult:
        """Waits for a single target in the calling thread."""
        token = self._operation_token()
        return RetryScheduler(target, self.config, self.checker, token, listener=self.listener).run()

    def wait_for_multiple(self, targets: Iterable[Target]) -> WaitResult:
        targets = list(targets)
        token = self._operation_token()
        started = time.monotonic()

        if not targets:
            return WaitResult(success=True, elapsed=0.0, attempts=0, targets=())

        wait_for_any = self.config.wait_for_any
        log.info(f"Waiting for {'any' if wait_for_any else 'all'} of {len(targets)} target(s), "
                 f"timeout {self.config.timeout:.1f}s")

        # ANY stops on the first success, ALL on the first exhaustion
        stop_on_success = wait_for_any
        futures = []
        with ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix="waitup") as executor:
            try:
                for target in targets:
                    scheduler = RetryScheduler(target, self.config, self.checker, token,
                                               started=started, listener=self.listener)
                    futures.append(executor.submit(scheduler.run))

                for future in as_completed(futures):
                    result = future.result()
                    if result.success == stop_on_success and not token.is_cancelled():
                        log.debug(f"{result.target} decided the outcome, cancelling remaining targets")
                        token.cancel()
            except BaseException:
                token.cancel()
                raise

        results: List[TargetResult] = [f.result() for f in futures]
        if wait_for_any:
            success = any(r.success for r in results)
        else:
            success = all(r.success for r in results)

        wait_result = WaitResult(
            success=success,
            elapsed=time.monotonic() - started,
            attempts=sum(r.attempts for r in results),
            targets=tuple(results),
        )
        if success:
            log.info(f"Wait succeeded in {wait_result.elapsed:.2f}s")
        else:
            failed = ", ".join(r.target.display for r in wait_result.failed)
            log.info(f"Wait failed after {wait_result.elapsed:.2f}s: {failed}")
        return wait_result


def wait(targets: Iterable[Target], config: Optional[WaitConfig] = None,
         listener: Optional[ProgressListener] = None, checker: Optional[Checker] = None) -> WaitResult:
    """Blocks until the configured strategy is satisfied or gives up."""
    return Waiter(config, checker=checker, listener=listener).wait_for_multiple(targets)
