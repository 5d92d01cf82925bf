"""
Parallel coordination for the randomized search stages.

A race runs several independent search tasks (Pollard Rho seeds, ECM curve
batches) and keeps the first validated proper divisor. Tasks live in a
ProcessPoolExecutor; each worker process receives a shared Event at start-up
that tasks poll at fixed checkpoints, and the event is set as soon as a
winner is known. A worker that dies mid-task surfaces as BrokenProcessPool on
its future and retires the tasks it took down instead of stalling the race.

Task protocol:
    A task is a module-level callable  fn(*args, cancel=<token>)  that returns
    exactly one TaskOutcome: a factor, a stop (cap reached / cancelled), or an
    error. Progress chatter goes through logging, never through the outcome.
"""
from __future__ import annotations

import logging
import multiprocessing
import queue
import threading
from collections import deque
from concurrent.futures import Future, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from functools import partial
from multiprocessing import cpu_count
from typing import Callable, Iterable, Optional

from config import FactorConfig, lookup_tier

logger = logging.getLogger(__name__)

# Cancellation token of the current worker process (set by the pool initializer)
_worker_cancel = None


def _init_worker(cancel_event) -> None:
    global _worker_cancel
    _worker_cancel = cancel_event


def _run_in_worker(fn: Callable, args: tuple) -> "TaskOutcome":
    return fn(*args, cancel=_worker_cancel)


@dataclass(frozen=True)
class TaskOutcome:
    """Terminal message of one task."""
    factor: Optional[int] = None
    stopped: bool = False
    error: Optional[str] = None
    trials: int = 0
    reason: str = ""

    @classmethod
    def found(cls, factor: int, trials: int = 0) -> "TaskOutcome":
        return cls(factor=factor, trials=trials)

    @classmethod
    def exhausted(cls, trials: int = 0, reason: str = "trial cap reached") -> "TaskOutcome":
        return cls(stopped=True, trials=trials, reason=reason)

    @classmethod
    def failed(cls, message: str, trials: int = 0) -> "TaskOutcome":
        return cls(error=message, trials=trials, reason="error")

    @property
    def kind(self) -> str:
        if self.factor is not None:
            return "factor"
        if self.error is not None:
            return "error"
        return "stopped"


def is_proper_divisor(d: int, n: int) -> bool:
    """True when 1 < d < n and d divides n."""
    return 1 < d < n and n % d == 0


def default_worker_count(cores: Optional[int] = None) -> int:
    """
    Size the pool from the hardware, leaving headroom for the host.

    Up to 8 cores: cores - 2. Above that: 60% of the cores. Never below 1.
    """
    if cores is None:
        try:
            cores = cpu_count()
        except NotImplementedError:
            cores = 4
    if cores <= 8:
        return max(1, cores - 2)
    return max(1, int(cores * 0.6))


def task_count_for(n: int, config: FactorConfig) -> int:
    """Number of parallel tasks for a composite of n's size."""
    if config.workers is not None:
        return max(1, config.workers)
    count = lookup_tier(config.task_count_tiers, len(str(n)))
    return count if count is not None else default_worker_count()


class TaskPool:
    """
    Bounded pool of search tasks with submit / cancel / await-next-outcome.

    With inline=True, a single worker, or when worker processes cannot be
    started, tasks run one at a time in the calling process. The API is the
    same either way.
    """

    def __init__(self, workers: int, inline: bool = False):
        self.workers = max(1, workers)
        self._outcomes: queue.Queue = queue.Queue()
        self._pending: deque = deque()
        self._executor: Optional[ProcessPoolExecutor] = None
        self._cancel = None
        self._closed = False

        if not inline and self.workers > 1:
            try:
                self._cancel = multiprocessing.Event()
                self._executor = ProcessPoolExecutor(
                    max_workers=self.workers, initializer=_init_worker, initargs=(self._cancel,),
                )
            except (OSError, NotImplementedError) as exc:
                logger.warning("could not start %d worker processes (%s); running tasks inline",
                               self.workers, exc)
                self._executor = None

        self._inline = self._executor is None
        if self._inline:
            self._cancel = threading.Event()

    @property
    def inline(self) -> bool:
        return self._inline

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def submit(self, task_id: int, fn: Callable, *args) -> None:
        """
        Queue fn(*args) as task `task_id`.

        Raises RuntimeError once cancelled, and BrokenProcessPool (also a
        RuntimeError) once a worker process has died.
        """
        if self._closed or self._cancel.is_set():
            raise RuntimeError("task pool is no longer accepting work")

        if self._inline:
            self._pending.append((task_id, fn, args))
            return

        future = self._executor.submit(_run_in_worker, fn, args)
        future.add_done_callback(partial(self._collect, task_id))

    def _collect(self, task_id: int, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            self._outcomes.put((task_id, future.result()))
            return
        if isinstance(exc, BrokenProcessPool):
            message = f"worker process died: {exc}"
        else:
            message = f"{type(exc).__name__}: {exc}"
        self._outcomes.put((task_id, TaskOutcome.failed(message)))

    def next_outcome(self) -> tuple[int, TaskOutcome]:
        """Block until some task finishes and return (task_id, outcome)."""
        if not self._inline:
            return self._outcomes.get()

        if not self._pending:
            raise RuntimeError("no tasks outstanding")
        task_id, fn, args = self._pending.popleft()
        try:
            outcome = fn(*args, cancel=self._cancel)
        except Exception as exc:
            logger.exception("task %d raised", task_id)
            outcome = TaskOutcome.failed(f"{type(exc).__name__}: {exc}")
        return task_id, outcome

    def cancel(self) -> None:
        """Signal every task to stop, drop queued work and release the workers."""
        self._cancel.set()
        self._pending.clear()
        if self._executor is not None:
            # running tasks see the event at their next checkpoint
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._closed = True

    def __enter__(self) -> "TaskPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        # Anything still running lost the race (or we are unwinding an error)
        self.cancel()


def _submit(pool: TaskPool, task_id: int, fn: Callable, args: tuple, label: str) -> bool:
    try:
        pool.submit(task_id, fn, *args)
    except (OSError, ValueError, RuntimeError) as exc:
        logger.error("%s task %d could not be started: %s", label, task_id, exc)
        return False
    return True


FollowUp = Callable[[int, TaskOutcome], Optional[tuple[Callable, tuple]]]


def race(
    n: int,
    pool: TaskPool,
    initial: Iterable[tuple[int, Callable, tuple]],
    follow_up: FollowUp,
    label: str = "search",
) -> Optional[int]:
    """
    Run tasks until one reports a proper divisor of n.

    Args:
        n: Composite being split
        pool: Where tasks run
        initial: (task_id, fn, args) for the first wave
        follow_up: Called when a task stops without a usable factor; returns
            the next (fn, args) for that task id, or None to retire it
        label: Name used in log messages

    Returns:
        The winning divisor, or None once every task has retired
    """
    active = 0
    for task_id, fn, args in initial:
        if _submit(pool, task_id, fn, args, label):
            active += 1

    while active > 0:
        task_id, outcome = pool.next_outcome()

        if outcome.factor is not None:
            if is_proper_divisor(outcome.factor, n):
                logger.info("%s task %d found factor %d (%d trials)",
                            label, task_id, outcome.factor, outcome.trials)
                pool.cancel()
                return outcome.factor
            logger.debug("%s task %d: discarding invalid candidate %d", label, task_id, outcome.factor)
        elif outcome.error is not None:
            logger.error("%s task %d failed: %s", label, task_id, outcome.error)
            active -= 1
            continue

        nxt = follow_up(task_id, outcome)
        if nxt is None:
            logger.info("%s task %d retired after %d trials (%s)",
                        label, task_id, outcome.trials, outcome.reason or "no factor")
            active -= 1
            continue
        fn, args = nxt
        if not _submit(pool, task_id, fn, args, label):
            active -= 1

    logger.warning("all %s tasks exhausted without a factor of %d", label, n)
    return None
