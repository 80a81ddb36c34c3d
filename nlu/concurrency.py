"""
Bounded parallel execution with a shared deadline.

Runs a set of independent, named callables on a thread pool, waits for all of
them (or for the deadline), and reports results, failures and timeouts
separately. Used for the entity extractor fan-out and the pipeline's
extraction / intent / temporal fan-out.
"""
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.05


# =============================================================================
# DEADLINE
# =============================================================================

class Deadline:
    """
    A point in monotonic time after which work should stop, plus an explicit
    cancel signal.

    Usage:
        deadline = Deadline.after(2.0)
        while not deadline.expired:
            ...
    """

    def __init__(self, expires_at: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._expires_at = expires_at
        self._clock = clock
        self._cancelled = threading.Event()

    @classmethod
    def after(cls, seconds: Optional[float], clock: Callable[[], float] = time.monotonic) -> "Deadline":
        """Deadline `seconds` from now; None means no time limit."""
        if seconds is None:
            return cls(None, clock)
        return cls(clock() + seconds, clock)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left, 0.0 once expired, or None when unbounded."""
        if self._cancelled.is_set():
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class ParallelOutcome:
    """Aggregated outcome of a parallel fan-out."""
    results: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)
    timed_out: List[str] = field(default_factory=list)
    elapsed_ms: int = 0


# =============================================================================
# EXECUTION
# =============================================================================

def run_parallel(
    tasks: Mapping[str, Callable[[], Any]],
    deadline: Optional[Deadline] = None,
    max_workers: Optional[int] = None,
) -> ParallelOutcome:
    """
    Run named zero-argument callables concurrently and join on all of them.

    A task that raises is recorded in `errors`; the others still complete.
    When the deadline passes, pending tasks are cancelled and reported in
    `timed_out` and the call returns without waiting for running ones.

    Args:
        tasks: Mapping of task name to callable
        deadline: Optional deadline shared with the tasks
        max_workers: Thread pool bound (default: number of tasks)

    Returns:
        ParallelOutcome with per-task results, errors and timeouts
    """
    outcome = ParallelOutcome()
    if not tasks:
        return outcome

    start_time = time.monotonic()
    if deadline is not None and deadline.expired:
        outcome.timed_out = list(tasks)
        return outcome

    workers = max(1, min(max_workers or len(tasks), len(tasks)))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="nlq")
    futures = {executor.submit(fn): name for name, fn in tasks.items()}
    pending = set(futures)

    try:
        # Wait in slices so a cancel() issued mid-flight is seen promptly
        while pending and not (deadline is not None and deadline.expired):
            timeout = None
            if deadline is not None:
                remaining = deadline.remaining()
                timeout = POLL_INTERVAL_SECONDS if remaining is None else min(remaining, POLL_INTERVAL_SECONDS)
            done, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
            for future in done:
                _record(outcome, futures[future], future)

        if pending:
            for future, name in futures.items():
                if future not in pending:
                    continue
                if future.done() and not future.cancelled():
                    _record(outcome, name, future)
                    continue
                future.cancel()
                outcome.timed_out.append(name)
            if outcome.timed_out:
                logger.warning(
                    f"Deadline reached with {len(outcome.timed_out)} task(s) pending: {outcome.timed_out}"
                )
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    outcome.elapsed_ms = int((time.monotonic() - start_time) * 1000)
    return outcome


def _record(outcome: ParallelOutcome, name: str, future: Future) -> None:
    try:
        outcome.results[name] = future.result()
    except Exception as e:
        logger.debug(f"Parallel task {name} failed: {e}")
        outcome.errors[name] = e
