"""
Lenstra's Elliptic Curve Method on Montgomery curves, run as a parallel race.

Curves come from Suyama's parametrization of a sigma seed, so a curve is
fully described by (x0 : z0) and a24 = (A + 2) / 4. Only X and Z are ever
tracked:

    - x_double:  [2]P
    - x_add:     P + Q given P - Q (differential addition)
    - ladder:    [k]P by the Montgomery ladder

Stage 1 multiplies the start point by every prime power <= B1 and checks
gcd(Z, n). Stage 2 covers single primes q in (B1, B2] with a baby-step /
giant-step walk over the wheel D = 2310: q = m*D +/- j, and
X(mDQ)*Z(jQ) - X(jQ)*Z(mDQ) vanishes mod p whenever [q]Q is the identity
mod p. The terms go into a running product that is gcd'ed every 200 steps.

Each race task works through the strategy ladder (B1, B2, curves) on its own
block of sigma values; the first proper divisor cancels the rest.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Optional

import numpy as np

from arithmetic import GcdVariant, gcd, select_gcd_variant, sieve_primes
from config import EcmParams, EcmStrategy, FactorConfig
from task_pool import TaskOutcome, TaskPool, race, task_count_for

logger = logging.getLogger(__name__)

Point = tuple[int, int]

# Projective point at infinity (X : Z) = (1 : 0)
INFINITY: Point = (1, 0)


class DegenerateCurve(Exception):
    """The Suyama denominator is not invertible mod n; `divisor` is gcd(den, n)."""

    def __init__(self, sigma: int, divisor: int):
        super().__init__(f"sigma={sigma} gives a singular curve (gcd {divisor})")
        self.sigma = sigma
        self.divisor = divisor


class _Cancelled(Exception):
    pass


@dataclass(frozen=True)
class Curve:
    """Montgomery curve parameters for one attempt."""
    x0: int
    z0: int
    a24: int
    n: int

    @property
    def point(self) -> Point:
        return (self.x0, self.z0)


# ============================================================================
# CURVE ARITHMETIC
# ============================================================================

def suyama_curve(sigma: int, n: int, variant: GcdVariant = GcdVariant.EUCLID) -> Curve:
    """
    Suyama's parametrization.

    u = sigma^2 - 5, v = 4*sigma, start point (u^3 : v^3) and
    a24 = (v - u)^3 (3u + v) / (16 u^3 v).

    Raises:
        DegenerateCurve: 16 u^3 v shares a factor with n
    """
    u = (sigma * sigma - 5) % n
    v = (4 * sigma) % n
    u3 = u * u % n * u % n
    v3 = v * v % n * v % n
    w = (v - u) % n
    num = w * w % n * w % n * ((3 * u + v) % n) % n
    den = 16 * u3 % n * v % n

    g = gcd(den, n, variant)
    if g != 1:
        raise DegenerateCurve(sigma, g)

    a24 = num * pow(den, -1, n) % n
    return Curve(u3, v3, a24, n)


def x_double(p: Point, a24: int, n: int) -> Point:
    """[2]P on a Montgomery curve, X and Z only."""
    x, z = p
    s = (x + z) % n
    s2 = s * s % n
    d = (x - z) % n
    d2 = d * d % n
    t = (s2 - d2) % n
    return (s2 * d2 % n, t * ((d2 + a24 * t) % n) % n)


def x_add(p: Point, q: Point, diff: Point, n: int) -> Point:
    """P + Q given diff = P - Q."""
    xp, zp = p
    xq, zq = q
    xd, zd = diff
    u = (xp - zp) * (xq + zq) % n
    v = (xp + zp) * (xq - zq) % n
    add = (u + v) % n
    sub = (u - v) % n
    return (zd * (add * add % n) % n, xd * (sub * sub % n) % n)


def ladder(k: int, p: Point, a24: int, n: int) -> Point:
    """
    [k]P by the Montgomery ladder.

    Keeps (R0, R1) with R1 - R0 = P; every bit costs one differential
    addition and one doubling.
    """
    if k == 0:
        return INFINITY
    r0, r1 = INFINITY, p
    for bit in bin(k)[2:]:
        if bit == "1":
            r0 = x_add(r1, r0, p, n)
            r1 = x_double(r1, a24, n)
        else:
            r1 = x_add(r1, r0, p, n)
            r0 = x_double(r0, a24, n)
    return r0


# ============================================================================
# STAGES
# ============================================================================

def stage_one(curve: Curve, b1: int, primes: list[int]) -> Point:
    """Multiply the start point by the largest power of each prime <= b1."""
    n = curve.n
    q = curve.point
    for p in primes:
        if p > b1:
            break
        pk = p
        while pk * p <= b1:
            pk *= p
        q = ladder(pk, q, curve.a24, n)
    return q


def _baby_steps(q: Point, a24: int, n: int, wheel: int) -> dict[int, Point]:
    """[j]Q for 1 <= j <= wheel/2 with gcd(j, wheel) == 1."""
    half = wheel // 2
    steps: dict[int, Point] = {1: q}
    prev2, prev = q, x_double(q, a24, n)
    if gcd(2, wheel) == 1:
        steps[2] = prev
    for j in range(3, half + 1):
        nxt = x_add(prev, q, prev2, n)
        prev2, prev = prev, nxt
        if gcd(j, wheel) == 1:
            steps[j] = nxt
    return steps


def stage_two_primes(b1: int, b2: int) -> list[int]:
    """Primes in (b1, b2] as Python ints."""
    primes = sieve_primes(b2)
    start = int(np.searchsorted(primes, b1, side="right"))
    return primes[start:].tolist()


def stage_two(
    curve: Curve,
    q: Point,
    strategy: EcmStrategy,
    params: EcmParams,
    variant: GcdVariant = GcdVariant.EUCLID,
    cancel=None,
) -> Optional[int]:
    """
    Baby-step / giant-step continuation for primes in (B1, B2].

    Returns:
        A proper divisor of n, or None
    """
    n = curve.n
    a24 = curve.a24
    wheel = params.wheel
    half = wheel // 2

    baby = _baby_steps(q, a24, n, wheel)
    giant = ladder(wheel, q, a24, n)

    product = 1
    steps = 0
    m_cur = -1
    t: Point = INFINITY
    t_prev: Point = INFINITY

    for p in stage_two_primes(strategy.b1, strategy.b2):
        r = p % wheel
        if r <= half:
            m, j = (p - r) // wheel, r
        else:
            m, j = (p - r) // wheel + 1, wheel - r

        if m_cur < 0:
            m_cur = m
            t = ladder(m * wheel, q, a24, n)
            t_prev = ladder((m - 1) * wheel, q, a24, n) if m > 0 else INFINITY
        while m_cur < m:
            m_cur += 1
            # differential addition needs a finite difference point
            if m_cur <= 2:
                t_prev, t = t, ladder(m_cur * wheel, q, a24, n)
            else:
                t_prev, t = t, x_add(t, giant, t_prev, n)

        bj = baby.get(j)
        if bj is None:
            continue

        term = (t[0] * bj[1] - bj[0] * t[1]) % n
        if term == 0:
            continue
        product = product * term % n
        steps += 1

        if steps % params.gcd_interval == 0:
            g = gcd(product, n, variant)
            if 1 < g < n:
                return g
            product = 1
            if cancel is not None and cancel.is_set():
                raise _Cancelled()

    g = gcd(product, n, variant)
    if 1 < g < n:
        return g
    return None


# ============================================================================
# TASK
# ============================================================================

def ecm_search(
    n: int,
    task_id: int,
    strategy: EcmStrategy,
    sigma_start: int,
    params: EcmParams,
    variant: GcdVariant = GcdVariant.EUCLID,
    trials_before: int = 0,
    cancel=None,
) -> TaskOutcome:
    """
    Run one strategy's batch of curves with consecutive sigma seeds.

    Args:
        n: Composite to split
        task_id: Race slot (for log messages)
        strategy: B1, B2 and the number of curves to run
        sigma_start: First sigma of this task's block
        params: Wheel size, gcd cadence, log cadence
        variant: gcd algorithm
        trials_before: Curves this task already ran at earlier levels
        cancel: Token with is_set(); polled per curve and per stage-2 gcd

    Returns:
        TaskOutcome with a factor, or a stop carrying the cumulative curve count
    """
    trials = trials_before
    primes = sieve_primes(strategy.b1).tolist()

    try:
        for offset in range(strategy.curves_per_task):
            if cancel is not None and cancel.is_set():
                return TaskOutcome.exhausted(trials, "cancelled")

            trials += 1
            sigma = sigma_start + offset
            if trials % params.log_every_curves == 0:
                logger.info("ecm task %d: %d curves (level %d, sigma=%d)",
                            task_id, trials, strategy.level, sigma)

            try:
                curve = suyama_curve(sigma, n, variant)
            except DegenerateCurve as exc:
                if 1 < exc.divisor < n:
                    return TaskOutcome.found(exc.divisor, trials)
                continue

            q = stage_one(curve, strategy.b1, primes)
            g = gcd(q[1], n, variant)
            if 1 < g < n:
                return TaskOutcome.found(g, trials)
            if g == n:
                # every prime of n hit the identity at once; nothing left for stage 2
                continue

            if strategy.b2 > strategy.b1:
                g = stage_two(curve, q, strategy, params, variant, cancel)
                if g is not None:
                    return TaskOutcome.found(g, trials)
    except _Cancelled:
        return TaskOutcome.exhausted(trials, "cancelled")

    return TaskOutcome.exhausted(trials, f"level {strategy.level} exhausted")


# ============================================================================
# RACE
# ============================================================================

def ecm_factor(
    n: int,
    config: Optional[FactorConfig] = None,
    rng: Optional[random.Random] = None,
) -> Optional[int]:
    """
    Race ECM tasks through the strategy ladder for a proper divisor of n.

    Every task starts at the first strategy and moves to the next one when
    its curve batch is used up. Sigma blocks are laid out as
    base + (level_index * tasks + task_id) * stride, so no two
    (task, level) pairs share a seed.

    Returns:
        A proper divisor, or None once every task has finished the last strategy
    """
    if n < 4:
        return None
    if (n & 1) == 0:
        return 2

    config = config or FactorConfig()
    rng = rng or random.Random(config.seed)
    params = config.ecm
    strategies = params.strategies
    if not strategies:
        raise ValueError("ECM needs at least one strategy")

    variant = config.gcd_variant or select_gcd_variant(n, config.binary_gcd_min_bits)
    tasks = task_count_for(n, config)
    stride = params.sigma_stride
    base = rng.randrange(6, 2 ** 63)

    def sigma_for(task_id: int, level_index: int) -> int:
        return base + (level_index * tasks + task_id) * stride

    level_of = [0] * tasks
    initial = [
        (task_id, ecm_search, (n, task_id, strategies[0], sigma_for(task_id, 0), params, variant, 0))
        for task_id in range(tasks)
    ]

    logger.info("ECM on %d (%d digits) with %d task(s), level 1 B1=%d",
                n, len(str(n)), tasks, strategies[0].b1)

    def follow_up(task_id: int, outcome: TaskOutcome):
        if outcome.reason == "cancelled":
            return None
        nxt = level_of[task_id] + 1
        if nxt >= len(strategies):
            return None
        level_of[task_id] = nxt
        logger.info("ecm task %d finished level %d after %d curves; starting level %d (B1=%d)",
                    task_id, nxt, outcome.trials, nxt + 1, strategies[nxt].b1)
        return ecm_search, (n, task_id, strategies[nxt], sigma_for(task_id, nxt),
                            params, variant, outcome.trials)

    with TaskPool(tasks, inline=config.inline) as pool:
        return race(n, pool, initial, follow_up, label="ecm")
