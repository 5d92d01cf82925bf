"""
Integer factorization using trial division, Pollard's Rho (Brent's variant) and
the Elliptic Curve Method, with the randomized stages raced across processes.

PIPELINE:
1. Miller-Rabin with the twelve prime witnesses 2..37
   - Exact below 318665857834031151167461, probabilistic above
2. Trial division by a NumPy-sieved table of small primes
   - Bound chosen by digit count (FactorConfig.trial_division_tiers)
3. Pollard's Rho for composites of up to 20 digits
   - Several seeds/constants in parallel, batched gcd every 64 steps
   - Exhaustion escalates to ECM on the same number
4. ECM for anything larger
   - Suyama curves, Montgomery ladder, wheel-2310 stage 2
   - Escalating (B1, B2, curves) strategies
5. Every factor found is pushed back through the same dispatch until only
   primes remain. If any composite cannot be split the whole call fails:
   factorize() returns None rather than a partial list.

DEPENDENCIES:
- NumPy: sieving the small-primes table and the stage 2 prime ranges
"""
from __future__ import annotations

import argparse
import logging
import random
import sys
import time
from collections import Counter
from dataclasses import replace
from functools import lru_cache, partial
from numbers import Integral
from pathlib import Path
from typing import Optional, Sequence

from arithmetic import mod_pow, sieve_primes
from config import FactorConfig, lookup_tier
from ecm import ecm_factor
from pollard_rho import pollard_rho_factor

logger = logging.getLogger(__name__)

WITNESSES: tuple[int, ...] = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37)


class PrimeSourceError(ValueError):
    """The small-primes source is empty, unreadable or not ascending."""


class FactorizationFailed(RuntimeError):
    """A composite survived every stage of the cascade."""


# ============================================================================
# SMALL PRIMES
# ============================================================================

@lru_cache(maxsize=4)
def small_primes(limit: int = 500_000) -> tuple[int, ...]:
    """Ascending primes <= limit as Python ints (sieved once per process)."""
    return tuple(sieve_primes(limit).tolist())


@lru_cache(maxsize=4)
def load_primes(path: str) -> tuple[int, ...]:
    """
    Read a whitespace-separated primes file.

    Raises:
        PrimeSourceError: file missing, empty, non-numeric or not strictly ascending
    """
    try:
        tokens = Path(path).read_text().split()
    except OSError as exc:
        raise PrimeSourceError(f"cannot read primes file {path}: {exc}") from exc

    try:
        primes = tuple(int(tok) for tok in tokens)
    except ValueError as exc:
        raise PrimeSourceError(f"non-integer entry in {path}: {exc}") from exc

    if not primes:
        raise PrimeSourceError(f"primes file {path} is empty")
    if any(a >= b for a, b in zip(primes, primes[1:])):
        raise PrimeSourceError(f"primes in {path} are not strictly ascending")
    return primes


def _primes_for(config: FactorConfig) -> Sequence[int]:
    if config.primes_source is None:
        return small_primes(config.small_primes_limit)

    primes = config.primes_source()
    if primes is None or len(primes) == 0:
        raise PrimeSourceError("small primes source returned nothing")
    if any(a >= b for a, b in zip(primes, primes[1:])):
        raise PrimeSourceError("small primes source is not strictly ascending")
    return primes


def clear_caches():
    """Clear all memoization caches. Useful between independent benchmark runs."""
    is_probable_prime.cache_clear()
    small_primes.cache_clear()
    load_primes.cache_clear()
    sieve_primes.cache_clear()


# ============================================================================
# PRIMALITY
# ============================================================================

# Miller–Rabin primality test (memoized)
@lru_cache(maxsize=1024)
def is_probable_prime(n: int) -> bool:
    if n < 2:
        return False
    if n in (2, 3):
        return True
    if (n & 1) == 0:
        return False

    # write n-1 as d * 2^r
    d: int = n - 1
    r: int = 0
    while (d & 1) == 0:
        d >>= 1
        r += 1

    for a in WITNESSES:
        if a >= n:
            continue
        x = mod_pow(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(r - 1):
            x = (x * x) % n
            if x == n - 1:
                break
        else:
            logger.debug("%d is composite (witness %d)", n, a)
            return False
    return True


# ============================================================================
# TRIAL DIVISION
# ============================================================================

def trial_division_bound(n: int, config: Optional[FactorConfig] = None) -> int:
    """Largest prime worth trying for a number of n's size."""
    config = config or FactorConfig()
    return lookup_tier(config.trial_division_tiers, len(str(n)))


def trial_division(n: int, primes: Sequence[int], bound: int) -> tuple[list[int], int]:
    """
    Strip every prime <= bound from n, smallest first.

    Stops early once p^2 exceeds what is left, so the remainder has no prime
    factor <= min(bound, sqrt(remainder)).

    Args:
        n: Number to reduce
        primes: Ascending small primes
        bound: Largest prime to try

    Returns:
        (factors found, remainder)

    Raises:
        PrimeSourceError: primes is empty
    """
    if len(primes) == 0:
        raise PrimeSourceError("trial division needs a non-empty primes sequence")

    factors: list[int] = []
    for p in map(int, primes):
        if p > bound or p * p > n:
            break
        while n % p == 0:
            factors.append(p)
            n //= p
        if n == 1:
            break
    return factors, n


# ============================================================================
# DISPATCH AND ORCHESTRATION
# ============================================================================

def _require_int(n) -> int:
    if isinstance(n, bool) or not isinstance(n, Integral):
        raise TypeError(f"expected an integer, got {type(n).__name__}")
    return int(n)


def find_factor(m: int, config: Optional[FactorConfig] = None,
                rng: Optional[random.Random] = None) -> Optional[int]:
    """
    One dispatch step: a proper divisor of composite m, or None.

    Up to config.rho_max_digits digits Pollard's Rho runs first and ECM takes
    over on exhaustion; above that only ECM is tried.
    """
    config = config or FactorConfig()
    rng = rng or random.Random(config.seed)
    digits = len(str(m))

    if digits <= config.rho_max_digits:
        d = pollard_rho_factor(m, config, rng)
        if d is not None:
            return d
        logger.warning("Pollard rho exhausted on %d; escalating to ECM", m)

    return ecm_factor(m, config, rng)


def _split_completely(m: int, config: FactorConfig, rng: random.Random) -> list[int]:
    """Break m into primes; raises FactorizationFailed if any piece resists."""
    primes: list[int] = []
    stack = [m]
    while stack:
        m = stack.pop()
        if m == 1:
            continue
        if is_probable_prime(m):
            primes.append(m)
            continue

        d = find_factor(m, config, rng)
        if d is None:
            raise FactorizationFailed(f"no factor found for composite {m}")
        logger.info("split %d = %d * %d", m, d, m // d)
        stack.append(d)
        stack.append(m // d)
    return primes


def factorize(n: int, config: Optional[FactorConfig] = None) -> Optional[list[int]]:
    """
    Factorize n into primes.

    Args:
        n: Integer >= 2
        config: Thresholds, caps and pool sizing (defaults if omitted)

    Returns:
        Ascending list of prime factors with multiplicity, or None when some
        composite part could not be split (never a partial list)

    Raises:
        TypeError: n is not an integer
        ValueError: n < 2
        PrimeSourceError: trial division is needed but there are no primes
    """
    n = _require_int(n)
    if n < 2:
        raise ValueError(f"n must be >= 2, got {n}")
    config = config or FactorConfig()

    if is_probable_prime(n):
        return [n]

    primes = _primes_for(config)
    bound = trial_division_bound(n, config)
    factors, remainder = trial_division(n, primes, bound)
    logger.info("trial division up to %d: %d small factor(s), remainder has %d digits",
                bound, len(factors), len(str(remainder)))

    rng = random.Random(config.seed)
    try:
        factors.extend(_split_completely(remainder, config, rng))
    except FactorizationFailed as exc:
        logger.error("factorization of %d failed: %s", n, exc)
        return None

    factors.sort()
    return factors


def format_factors(factors: Sequence[int]) -> str:
    """Render [2, 2, 3, 97] as '2^2 × 3 × 97'."""
    counts = Counter(factors)
    parts = []
    for p in sorted(counts):
        parts.append(f"{p}^{counts[p]}" if counts[p] > 1 else str(p))
    return " × ".join(parts)


# ============================================================================
# COMMAND LINE
# ============================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Factor an integer into primes.")
    parser.add_argument("number", help="integer to factor (>= 2)")
    parser.add_argument("--workers", type=int, default=None,
                        help="parallel tasks per search (default: sized from the CPU count)")
    parser.add_argument("--inline", action="store_true",
                        help="run search tasks in this process instead of a process pool")
    parser.add_argument("--seed", type=int, default=None, help="seed for reproducible runs")
    parser.add_argument("--rho-max-digits", type=int, default=20,
                        help="largest composite (in digits) sent to Pollard's rho first")
    parser.add_argument("--primes-file", default=None,
                        help="whitespace-separated small primes to use for trial division")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=max(logging.DEBUG, logging.WARNING - 10 * args.verbose),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        n = int(args.number.strip().replace("_", ""))
    except ValueError:
        parser.error(f"not an integer: {args.number!r}")

    config = FactorConfig(workers=args.workers, inline=args.inline, seed=args.seed,
                          rho_max_digits=args.rho_max_digits)
    if args.primes_file:
        config = replace(config, primes_source=partial(load_primes, args.primes_file))

    start = time.perf_counter()
    try:
        factors = factorize(n, config)
    except (TypeError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    elapsed = time.perf_counter() - start

    if factors is None:
        print(f"could not factor {n} ({elapsed:.3f} s)", file=sys.stderr)
        return 1
    print(f"{n} = {format_factors(factors)}")
    print(f"time: {elapsed:.3f} s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
