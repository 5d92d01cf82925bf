"""
Pollard's Rho with Brent's cycle detection, run as a parallel race.

Each task walks y -> y^2 + c (mod n) from its own seed. The checkpoint x is
refreshed at the start of every block and the block length r grows by the
task's multiplier (2 or 3), so tasks with different (x0, c, growth) fail in
uncorrelated ways. Differences |x - y| are multiplied together over a batch
of 64 steps and only then gcd'ed against n.

When a batched gcd comes back as n the factors cancelled inside the batch;
the batch is replayed one step at a time from its first element. If the
replay also lands on n the task gives up and reports a stop.
"""
from __future__ import annotations

import logging
import random
from typing import Optional

from arithmetic import GcdVariant, gcd, select_gcd_variant
from config import FactorConfig, RhoParams
from task_pool import TaskOutcome, TaskPool, race, task_count_for

logger = logging.getLogger(__name__)


def _linear_recovery(x: int, ys: int, c: int, n: int, limit: int,
                     variant: GcdVariant) -> tuple[int, int]:
    """Replay up to `limit` steps from ys with a gcd per step. Returns (g, steps)."""
    g = 1
    steps = 0
    while g == 1 and steps < limit:
        ys = (ys * ys + c) % n
        g = gcd(abs(x - ys), n, variant)
        steps += 1
    return g, steps


def rho_search(
    n: int,
    x0: int,
    c: int,
    growth: int,
    params: RhoParams,
    variant: GcdVariant = GcdVariant.EUCLID,
    cancel=None,
) -> TaskOutcome:
    """
    One Pollard Rho task (Brent variant, batched gcd).

    Args:
        n: Odd composite to split
        x0: Starting value of the walk
        c: Additive constant of y^2 + c
        growth: Block length multiplier applied after each round
        params: Trial cap, batch size and checkpoint interval
        variant: gcd algorithm
        cancel: Token with is_set(); polled every params.yield_interval steps

    Returns:
        TaskOutcome with the factor, or a stop when the cap is reached, the
        task is cancelled, or a bad collision survives linear recovery
    """
    if n <= 3:
        return TaskOutcome.exhausted(0, "modulus too small")
    if (n & 1) == 0:
        return TaskOutcome.found(2, 0)

    max_trials = params.max_trials
    batch = params.batch_size
    interval = params.yield_interval

    y: int = x0 % n
    x: int = y
    ys: int = y
    r: int = 1
    q: int = 1
    g: int = 1
    trials: int = 0
    last_batch: int = 0
    checkpoint: int = interval

    while g == 1 and trials < max_trials:
        x = y

        # move the hare r steps ahead of the checkpoint
        remaining = min(r, max_trials - trials)
        while remaining > 0:
            chunk = min(remaining, interval)
            for _ in range(chunk):
                y = (y * y + c) % n
            trials += chunk
            remaining -= chunk
            if trials >= checkpoint:
                if cancel is not None and cancel.is_set():
                    return TaskOutcome.exhausted(trials, "cancelled")
                checkpoint += interval

        k = 0
        while k < r and g == 1 and trials < max_trials:
            ys = y
            last_batch = min(batch, r - k, max_trials - trials)
            for _ in range(last_batch):
                y = (y * y + c) % n
                q = (q * abs(x - y)) % n
            trials += last_batch
            k += last_batch
            g = gcd(q, n, variant)

            if trials >= checkpoint:
                if cancel is not None and cancel.is_set():
                    return TaskOutcome.exhausted(trials, "cancelled")
                logger.debug("rho c=%d: %d steps, block length %d", c, trials, r)
                checkpoint += interval

        r *= growth

    if g == n:
        logger.debug("rho c=%d: batched gcd hit n at step %d, replaying batch", c, trials)
        g, extra = _linear_recovery(x, ys, c, n, last_batch, variant)
        trials += extra
        if g == 1 or g == n:
            return TaskOutcome.exhausted(trials, "bad collision persisted after linear recovery")

    if 1 < g < n:
        return TaskOutcome.found(g, trials)
    return TaskOutcome.exhausted(trials)


def _pick_c(rng: random.Random, n: int, c_range: int, used: set[int]) -> int:
    """Random odd constant, avoiding the degenerate 0 and -2 and reusing none."""
    for _ in range(64):
        c = (rng.randrange(c_range) | 1) % n
        if c in (0, n - 2) or c in used:
            continue
        used.add(c)
        return c
    return 1


def _initial_seed(n: int, task_id: int, rng: random.Random) -> int:
    if task_id == 0:
        return 2
    if task_id == 1:
        return n // 2
    return rng.randrange(2, n - 1)


def pollard_rho_factor(
    n: int,
    config: Optional[FactorConfig] = None,
    rng: Optional[random.Random] = None,
) -> Optional[int]:
    """
    Race several Rho tasks for a proper divisor of composite n.

    Tasks that stop without a factor are re-seeded (new x0 and c) up to
    config.rho.max_restarts times before retiring.

    Returns:
        A proper divisor, or None when every task is exhausted (the caller
        escalates to ECM)
    """
    if n < 4:
        return None
    config = config or FactorConfig()
    rng = rng or random.Random(config.seed)
    params = config.rho
    variant = config.gcd_variant or select_gcd_variant(n, config.binary_gcd_min_bits)
    tasks = task_count_for(n, config)

    used_c: set[int] = set()
    growth_of = {}
    restarts = [0] * tasks
    initial = []
    for task_id in range(tasks):
        x0 = _initial_seed(n, task_id, rng)
        c = _pick_c(rng, n, params.c_range, used_c)
        growth_of[task_id] = params.growth_factors[task_id % len(params.growth_factors)]
        initial.append((task_id, rho_search, (n, x0, c, growth_of[task_id], params, variant)))

    logger.info("Pollard rho on %d (%d digits) with %d task(s)", n, len(str(n)), tasks)

    def follow_up(task_id: int, outcome: TaskOutcome):
        if outcome.reason == "cancelled" or restarts[task_id] >= params.max_restarts:
            return None
        restarts[task_id] += 1
        x0 = rng.randrange(2, n - 1)
        c = _pick_c(rng, n, params.c_range, used_c)
        logger.debug("rho task %d stopped (%s); restart %d/%d with c=%d",
                     task_id, outcome.reason, restarts[task_id], params.max_restarts, c)
        return rho_search, (n, x0, c, growth_of[task_id], params, variant)

    with TaskPool(tasks, inline=config.inline) as pool:
        return race(n, pool, initial, follow_up, label="rho")
