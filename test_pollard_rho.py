"""
Tests for Pollard's Rho (Brent variant) and its parallel race.
"""

import random
import threading
from dataclasses import replace
from unittest import mock

import pytest

from arithmetic import GcdVariant
from config import FactorConfig, RhoParams
from pollard_rho import _linear_recovery, _pick_c, pollard_rho_factor, rho_search

INLINE = FactorConfig(inline=True, workers=2, seed=2718)


class TestRhoSearch:

    def test_finds_factor_of_classic_example(self):
        n = 8051  # 83 * 97
        outcomes = [rho_search(n, 2, c, 2, RhoParams()) for c in (1, 3, 5, 7, 9)]
        found = [o.factor for o in outcomes if o.kind == "factor"]
        assert found
        assert set(found) <= {83, 97}

    @pytest.mark.parametrize("variant", list(GcdVariant))
    def test_both_gcd_variants(self, variant):
        n = 1000003 * 1000033
        found = None
        for c in (1, 3, 5, 7):
            outcome = rho_search(n, 2, c, 3, RhoParams(), variant)
            if outcome.factor is not None:
                found = outcome.factor
                break
        assert found in (1000003, 1000033)

    def test_even_modulus(self):
        outcome = rho_search(1000, 2, 1, 2, RhoParams())
        assert outcome.factor == 2

    def test_tiny_modulus(self):
        outcome = rho_search(3, 2, 1, 2, RhoParams())
        assert outcome.kind == "stopped"
        assert outcome.reason == "modulus too small"

    def test_trial_cap_on_prime(self):
        params = RhoParams(max_trials=1000)
        outcome = rho_search(1000000007, 2, 1, 2, params)
        assert outcome.kind == "stopped"
        assert outcome.factor is None
        assert outcome.trials >= 1

    def test_cancelled_token(self):
        cancel = threading.Event()
        cancel.set()
        params = RhoParams(yield_interval=10)
        outcome = rho_search(1000000007, 2, 1, 2, params, cancel=cancel)
        assert outcome.reason == "cancelled"
        assert outcome.trials < 100

    def test_unset_token_does_not_stop(self):
        cancel = threading.Event()
        params = RhoParams(yield_interval=10)
        outcome = rho_search(8051, 2, 1, 2, params, cancel=cancel)
        assert outcome.reason != "cancelled"


class TestBadCollision:
    """Batched gcd equal to n: single-step replay of the last batch"""

    def test_replay_finds_divisor(self):
        # ys=0 steps to 1 and |84 - 1| = 83 divides 8051 = 83 * 97
        assert _linear_recovery(84, 0, 1, 8051, 64, GcdVariant.EUCLID) == (83, 1)

    def test_replay_stops_at_limit(self):
        # 0 -> 1 -> 2 -> 5; none of |9 - y| shares a factor with 8051
        assert _linear_recovery(9, 0, 1, 8051, 3, GcdVariant.BINARY) == (1, 3)

    def test_replay_reports_full_collision(self):
        assert _linear_recovery(1, 0, 1, 8051, 64, GcdVariant.EUCLID) == (8051, 1)

    def test_fixed_point_walk_stops(self):
        # c = -2 makes 2 a fixed point of y^2 + c, so every difference is 0 mod n
        n = 8051
        outcome = rho_search(n, 2, n - 2, 2, RhoParams())
        assert outcome.kind == "stopped"
        assert outcome.factor is None
        assert outcome.reason == "bad collision persisted after linear recovery"

    def test_recovery_turns_collisions_into_factors(self):
        replays = []

        def recording(x, ys, c, n, limit, variant):
            g, steps = _linear_recovery(x, ys, c, n, limit, variant)
            replays.append((n, g))
            return g, steps

        moduli = (1073, 2047, 3127, 8051, 10403)
        with mock.patch("pollard_rho._linear_recovery", side_effect=recording):
            for n in moduli:
                for c in range(1, 200):
                    outcome = rho_search(n, 2, c, 2, RhoParams())
                    if outcome.factor is not None:
                        assert 1 < outcome.factor < n and n % outcome.factor == 0
                    else:
                        assert outcome.kind == "stopped"

        assert replays, "no batched gcd ever collapsed to n"
        assert any(1 < g < n for n, g in replays)


class TestConstants:

    def test_pick_c_unique_and_safe(self):
        rng = random.Random(5)
        n = 1000003 * 1000033
        used = set()
        values = [_pick_c(rng, n, 65536, used) for _ in range(50)]
        assert len(set(values)) == 50
        for c in values:
            assert c % 2 == 1
            assert c not in (0, n - 2)

    def test_pick_c_avoids_minus_two(self):
        rng = random.Random(1)
        n = 9
        for _ in range(20):
            assert _pick_c(rng, n, 65536, set()) not in (0, n - 2)


class TestPollardRhoFactor:

    def test_semiprime(self):
        assert pollard_rho_factor(8051, INLINE) in (83, 97)

    def test_twelve_digit_semiprime(self):
        n = 1000003 * 1000033
        assert pollard_rho_factor(n, INLINE) in (1000003, 1000033)

    def test_reproducible_with_seed(self):
        n = 1000000007 * 998244353
        first = pollard_rho_factor(n, INLINE)
        second = pollard_rho_factor(n, INLINE)
        assert first == second
        assert first in (1000000007, 998244353)

    def test_too_small(self):
        assert pollard_rho_factor(3, INLINE) is None

    def test_exhaustion_returns_none(self, caplog):
        cfg = replace(INLINE, rho=RhoParams(max_trials=200, max_restarts=1))
        with caplog.at_level("WARNING", logger="task_pool"):
            assert pollard_rho_factor(1000000007, cfg) is None
        assert "exhausted" in caplog.text

    def test_process_pool(self):
        n = 1000003 * 1000033
        cfg = FactorConfig(workers=2, seed=11)
        assert pollard_rho_factor(n, cfg) in (1000003, 1000033)
