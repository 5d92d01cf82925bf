"""
Timing suite for the factorization engine.

Sections:
1. Primality: Miller-Rabin, cold and memoized
2. Trial division: small-primes table at both digit tiers
3. Pollard Rho: inline single task vs. process race
4. ECM: level 1 curves on 15-20 digit semiprimes
5. End to end: factorize() across the dispatch threshold
6. gcd variants: Euclid vs. binary on wide operands
"""

import random
import statistics
import sys
import time
from typing import Callable, List

from arithmetic import GcdVariant, gcd
from config import FactorConfig
from ecm import ecm_factor
from factorization import (
    clear_caches, factorize, format_factors, is_probable_prime,
    small_primes, trial_division, trial_division_bound,
)
from pollard_rho import pollard_rho_factor


# ============================================================================
# BENCHMARK UTILITIES
# ============================================================================

class BenchmarkResult:
    """Timing samples of one case, with summary statistics."""

    def __init__(self, name: str, times: List[float]):
        self.name = name
        self.times = sorted(times)
        self.min = self.times[0]
        self.max = self.times[-1]
        self.mean = statistics.mean(times)
        self.median = statistics.median(times)
        self.stdev = statistics.stdev(times) if len(times) > 1 else 0.0

    def __str__(self):
        return (f"{self.name:44} | "
                f"Mean: {self.mean*1000:9.3f}ms | "
                f"Median: {self.median*1000:9.3f}ms | "
                f"StdDev: {self.stdev*1000:8.3f}ms | "
                f"Min: {self.min*1000:9.3f}ms")


def benchmark(func: Callable, *args, iterations: int = 5, warmup: bool = True,
              **kwargs) -> BenchmarkResult:
    """
    Time `iterations` calls of func(*args, **kwargs).

    Args:
        func: Callable under test
        iterations: Timed repetitions
        warmup: Make one untimed call first (fills sieves and pools)

    Returns:
        BenchmarkResult named after func
    """
    if warmup:
        func(*args, **kwargs)

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        func(*args, **kwargs)
        times.append(time.perf_counter() - start)
    return BenchmarkResult(getattr(func, "__name__", "call"), times)


def _banner(title: str):
    print("\n" + "=" * 100)
    print(title)
    print("=" * 100)


# ============================================================================
# 1. PRIMALITY
# ============================================================================

def benchmark_primality():
    _banner("MILLER-RABIN (12 WITNESSES)")

    cases = [
        (1_299_709, "7-digit prime"),
        (3_215_031_751, "strong pseudoprime to 2, 3, 5, 7"),
        (2 ** 61 - 1, "Mersenne prime 2^61-1"),
        (2 ** 127 - 1, "Mersenne prime 2^127-1"),
    ]
    for n, description in cases:
        clear_caches()
        cold = benchmark(is_probable_prime.__wrapped__, n, iterations=20)
        cold.name = f"{description} (uncached)"
        print(cold)

        warm = benchmark(is_probable_prime, n, iterations=200)
        warm.name = f"{description} (memoized)"
        print(warm)


# ============================================================================
# 2. TRIAL DIVISION
# ============================================================================

def benchmark_trial_division():
    _banner("TRIAL DIVISION")

    clear_caches()
    start = time.perf_counter()
    primes = small_primes()
    print(f"sieve to 500000: {len(primes)} primes in {(time.perf_counter() - start)*1000:.1f}ms")

    cases = [
        (2 * 2 * 3 * 3 * 3 * 97, "tiny composite"),
        (999_983 * 1_000_003, "13-digit semiprime, no small factor"),
        (2 ** 10 * 3 ** 5 * 1_000_000_007, "smooth part times a large prime"),
    ]
    for n, description in cases:
        bound = trial_division_bound(n)
        result = benchmark(trial_division, n, primes, bound, iterations=5)
        result.name = f"{description} (bound {bound})"
        print(result)


# ============================================================================
# 3. POLLARD RHO
# ============================================================================

def benchmark_pollard_rho():
    _banner("POLLARD RHO (BRENT, BATCHED GCD)")

    cases = [
        (10_403, "101 * 103"),
        (1_000_003 * 1_000_033, "12-digit semiprime"),
        (1_000_000_007 * 998_244_353, "18-digit semiprime"),
    ]
    inline = FactorConfig(inline=True, workers=1, seed=1)
    pooled = FactorConfig(seed=1)
    for n, description in cases:
        result = benchmark(pollard_rho_factor, n, inline, iterations=3)
        result.name = f"{description} (inline)"
        print(result)

        result = benchmark(pollard_rho_factor, n, pooled, iterations=3, warmup=False)
        result.name = f"{description} (process race)"
        print(result)


# ============================================================================
# 4. ECM
# ============================================================================

def benchmark_ecm():
    _banner("ELLIPTIC CURVE METHOD")

    cases = [
        (10_000_019 * 10_000_079, "15-digit semiprime"),
        (1_000_000_007 * 10_000_000_019, "20-digit semiprime"),
    ]
    for n, description in cases:
        config = FactorConfig(seed=random.randrange(2 ** 32))
        result = benchmark(ecm_factor, n, config, iterations=2, warmup=False)
        result.name = description
        print(result)


# ============================================================================
# 5. END TO END
# ============================================================================

def benchmark_factorize():
    _banner("FACTORIZE (TRIAL DIVISION -> RHO -> ECM)")

    cases = [
        360,
        2 ** 64 + 1,
        600_851_475_143,
        1_000_000_007 * 998_244_353,
        1_000_000_007 * 10_000_000_019 * 3,
    ]
    for n in cases:
        clear_caches()
        factors = factorize(n)
        result = benchmark(factorize, n, iterations=2, warmup=False)
        shown = format_factors(factors) if factors else "FAIL"
        result.name = shown if len(shown) <= 44 else shown[:41] + "..."
        print(result)


# ============================================================================
# 6. GCD VARIANTS
# ============================================================================

def benchmark_gcd_variants():
    _banner("GCD: EUCLID vs BINARY")

    rnd = random.Random(7)
    for bits in (64, 128, 256, 512):
        a = rnd.getrandbits(bits) | 1
        b = rnd.getrandbits(bits) | 1
        for variant in GcdVariant:
            result = benchmark(gcd, a, b, variant, iterations=500)
            result.name = f"{bits}-bit operands, {variant.value}"
            print(result)


# ============================================================================
# MAIN BENCHMARK SUITE
# ============================================================================

def run_all_benchmarks(quick: bool = False):
    print("\n" + "#" * 100)
    print("FACTORIZATION ENGINE BENCHMARKS")
    print("#" * 100)

    suites = [benchmark_primality, benchmark_trial_division, benchmark_gcd_variants]
    if not quick:
        suites += [benchmark_pollard_rho, benchmark_ecm, benchmark_factorize]

    try:
        for suite in suites:
            suite()
    except KeyboardInterrupt:
        print("\nBenchmark interrupted by user")
        sys.exit(1)

    print("\n" + "=" * 100)
    print("BENCHMARK COMPLETE")
    print("=" * 100 + "\n")


if __name__ == "__main__":
    run_all_benchmarks(quick="--quick" in sys.argv[1:])
