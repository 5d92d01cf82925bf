"""
Tests for the task pool and the first-success race.

Task functions are module level so worker processes can import them.
"""

import os
import threading
import time

import pytest

from config import FactorConfig
from task_pool import (
    TaskOutcome, TaskPool, default_worker_count, is_proper_divisor, race, task_count_for,
)


def report(value, cancel=None):
    return TaskOutcome.found(value, trials=1)


def give_up(trials, cancel=None):
    return TaskOutcome.exhausted(trials)


def explode(cancel=None):
    raise RuntimeError("boom")


def wait_for_cancel(limit, cancel=None):
    deadline = time.monotonic() + limit
    while time.monotonic() < deadline:
        if cancel is not None and cancel.is_set():
            return TaskOutcome.exhausted(0, "cancelled")
        time.sleep(0.01)
    return TaskOutcome.exhausted(0, "timed out")


def die(cancel=None):
    os._exit(1)


def retire(task_id, outcome):
    return None


# ============================================================================
# OUTCOMES AND SIZING
# ============================================================================

class TestTaskOutcome:

    def test_kinds(self):
        assert TaskOutcome.found(7).kind == "factor"
        assert TaskOutcome.exhausted(10).kind == "stopped"
        assert TaskOutcome.failed("bad").kind == "error"

    def test_exhausted_defaults(self):
        outcome = TaskOutcome.exhausted(42)
        assert outcome.stopped
        assert outcome.trials == 42
        assert outcome.reason == "trial cap reached"

    def test_failed_carries_message(self):
        outcome = TaskOutcome.failed("ValueError: x")
        assert outcome.error == "ValueError: x"
        assert outcome.reason == "error"


class TestSizing:

    @pytest.mark.parametrize("cores,expected", [
        (1, 1), (2, 1), (3, 1), (4, 2), (8, 6), (10, 6), (16, 9), (64, 38),
    ])
    def test_default_worker_count(self, cores, expected):
        assert default_worker_count(cores) == expected

    def test_default_worker_count_uses_host(self):
        assert default_worker_count() >= 1

    def test_small_composites_get_one_task(self):
        assert task_count_for(10 ** 11 + 1, FactorConfig()) == 1

    def test_large_composites_use_hardware(self):
        assert task_count_for(10 ** 30, FactorConfig()) == default_worker_count()

    def test_workers_override(self):
        assert task_count_for(15, FactorConfig(workers=3)) == 3
        assert task_count_for(10 ** 30, FactorConfig(workers=0)) == 1

    def test_is_proper_divisor(self):
        assert is_proper_divisor(7, 91)
        assert not is_proper_divisor(1, 91)
        assert not is_proper_divisor(91, 91)
        assert not is_proper_divisor(5, 91)
        assert not is_proper_divisor(-7, 91)


# ============================================================================
# INLINE POOL
# ============================================================================

class TestInlineRace:

    def test_first_valid_factor_wins(self):
        with TaskPool(2, inline=True) as pool:
            result = race(91, pool, [(0, report, (7,)), (1, report, (13,))], retire)
            assert result == 7
            assert pool.cancelled

    def test_invalid_candidate_is_discarded(self):
        with TaskPool(2, inline=True) as pool:
            result = race(91, pool, [(0, report, (5,)), (1, report, (13,))], retire)
        assert result == 13

    def test_error_retires_only_that_task(self):
        with TaskPool(2, inline=True) as pool:
            result = race(91, pool, [(0, explode, ()), (1, report, (7,))], retire)
        assert result == 7

    def test_all_tasks_exhausted(self):
        with TaskPool(3, inline=True) as pool:
            initial = [(0, give_up, (10,)), (1, explode, ()), (2, report, (91,))]
            assert race(91, pool, initial, retire) is None

    def test_follow_up_reschedules(self):
        calls = []

        def follow_up(task_id, outcome):
            calls.append((task_id, outcome.trials))
            if len(calls) < 3:
                return give_up, (outcome.trials + 10,)
            return report, (13,)

        with TaskPool(1, inline=True) as pool:
            assert race(91, pool, [(0, give_up, (10,))], follow_up) == 13
        assert calls == [(0, 10), (0, 20), (0, 30)]

    def test_submit_after_cancel(self):
        pool = TaskPool(2, inline=True)
        pool.cancel()
        with pytest.raises(RuntimeError):
            pool.submit(0, report, 7)

    def test_inline_token_is_thread_event(self):
        with TaskPool(4, inline=True) as pool:
            assert pool.inline
            assert isinstance(pool._cancel, threading.Event)

    def test_single_worker_runs_inline(self):
        with TaskPool(1) as pool:
            assert pool.inline


# ============================================================================
# PROCESS POOL
# ============================================================================

class TestProcessRace:

    def test_winner_cancels_stragglers(self):
        with TaskPool(2) as pool:
            assert not pool.inline
            start = time.monotonic()
            initial = [(0, wait_for_cancel, (30.0,)), (1, report, (7,))]
            assert race(91, pool, initial, retire) == 7
        assert time.monotonic() - start < 20.0

    def test_worker_error_is_reported(self):
        with TaskPool(2) as pool:
            initial = [(0, explode, ()), (1, give_up, (5,))]
            assert race(91, pool, initial, retire) is None

    def test_dead_worker_does_not_stall_the_race(self):
        result = []

        def run():
            with TaskPool(2) as pool:
                result.append(race(91, pool, [(0, die, ()), (1, give_up, (5,))], retire))

        runner = threading.Thread(target=run, daemon=True)
        runner.start()
        runner.join(timeout=30.0)
        assert not runner.is_alive(), "race never returned after a worker process died"
        assert result == [None]

    def test_dead_worker_is_reported_as_failure(self, caplog):
        with caplog.at_level("ERROR", logger="task_pool"):
            with TaskPool(2) as pool:
                assert race(91, pool, [(0, die, ())], retire) is None
        assert "worker process died" in caplog.text
