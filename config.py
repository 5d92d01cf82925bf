"""
Configuration for the factorization engine.

Everything that steers the cascade lives here as plain, immutable data:
digit-count thresholds for dispatch, trial-division bounds, the Pollard Rho
caps and the escalating ECM strategy list. Nothing in the engine keeps
ambient mutable state; each factorization call owns one FactorConfig.

Use dataclasses.replace() to derive a variant:

    cfg = replace(FactorConfig(), rho_max_digits=15, workers=2)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from arithmetic import GcdVariant


@dataclass(frozen=True)
class DigitTier:
    """One row of a digit-count lookup table. max_digits=None matches everything."""
    max_digits: Optional[int]
    value: Optional[int]


def lookup_tier(tiers: Sequence[DigitTier], digits: int) -> Optional[int]:
    """Return the value of the first tier whose max_digits covers `digits`."""
    for tier in tiers:
        if tier.max_digits is None or digits <= tier.max_digits:
            return tier.value
    raise ValueError(f"no tier covers {digits} digits")


@dataclass(frozen=True)
class EcmStrategy:
    """
    One rung of the ECM escalation ladder.

    Attributes:
        level: 1-based rung number (used in log messages)
        b1: Stage 1 smoothness bound
        b2: Stage 2 bound (stage 2 is skipped when b2 <= b1)
        curves_per_task: Curves each task runs before escalating
    """
    level: int
    b1: int
    b2: int
    curves_per_task: int


DEFAULT_ECM_STRATEGIES: tuple[EcmStrategy, ...] = (
    EcmStrategy(level=1, b1=2_000, b2=200_000, curves_per_task=30),
    EcmStrategy(level=2, b1=30_000, b2=3_000_000, curves_per_task=3),
    EcmStrategy(level=3, b1=100_000, b2=10_000_000, curves_per_task=1),
)


@dataclass(frozen=True)
class RhoParams:
    """Caps and tuning for a single Pollard Rho task."""
    max_trials: int = 5_000_000
    batch_size: int = 64
    yield_interval: int = 1_000_000
    max_restarts: int = 2
    growth_factors: tuple[int, ...] = (2, 3)
    c_range: int = 65_536


@dataclass(frozen=True)
class EcmParams:
    """Stage 2 wheel, gcd cadence and the strategy ladder."""
    strategies: tuple[EcmStrategy, ...] = DEFAULT_ECM_STRATEGIES
    wheel: int = 2310  # 2*3*5*7*11
    gcd_interval: int = 200
    log_every_curves: int = 10

    @property
    def sigma_stride(self) -> int:
        return max(s.curves_per_task for s in self.strategies)


@dataclass(frozen=True)
class FactorConfig:
    """
    Top-level configuration owned by one factorize() call.

    Attributes:
        rho_max_digits: Composites with at most this many digits go to Rho
            first; larger ones go straight to ECM.
        trial_division_tiers: Digit count -> largest prime tried.
        task_count_tiers: Digit count -> number of parallel tasks
            (None means "size from the hardware").
        workers: Hard override for the task count.
        inline: Run tasks in the calling process instead of a process pool.
        gcd_variant: Force a gcd variant; None picks by modulus size.
        binary_gcd_min_bits: Moduli at least this wide use binary gcd.
        small_primes_limit: Sieve limit for the default primes source.
        primes_source: Callable returning the ascending small primes.
        seed: Seed for task parameters (None for fresh randomness).
    """
    rho_max_digits: int = 20
    trial_division_tiers: tuple[DigitTier, ...] = (
        DigitTier(max_digits=10, value=100_000),
        DigitTier(max_digits=None, value=499_979),
    )
    task_count_tiers: tuple[DigitTier, ...] = (
        DigitTier(max_digits=12, value=1),
        DigitTier(max_digits=None, value=None),
    )
    workers: Optional[int] = None
    inline: bool = False
    gcd_variant: Optional[GcdVariant] = None
    binary_gcd_min_bits: int = 128
    small_primes_limit: int = 500_000
    primes_source: Optional[Callable[[], Sequence[int]]] = None
    seed: Optional[int] = None
    rho: RhoParams = field(default_factory=RhoParams)
    ecm: EcmParams = field(default_factory=EcmParams)
