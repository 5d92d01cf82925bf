"""
Tests for the shared integer arithmetic.

1. gcd: both variants agree with each other and with math.gcd
2. mod_pow: matches the builtin three-argument pow
3. sieve_primes: NumPy sieve contents and caching
"""

import math
import random

import numpy as np
import pytest

from arithmetic import (
    GcdVariant, binary_gcd, euclid_gcd, gcd, mod_pow, select_gcd_variant, sieve_primes,
)


# ============================================================================
# PART 1: GCD
# ============================================================================

class TestGcd:

    @pytest.mark.parametrize("variant", list(GcdVariant))
    def test_identities(self, variant):
        assert gcd(0, 0, variant) == 0
        assert gcd(12, 0, variant) == 12
        assert gcd(0, -12, variant) == 12
        assert gcd(-12, 18, variant) == 6
        assert gcd(17, 5, variant) == 1
        assert gcd(2 ** 40, 2 ** 12 * 3, variant) == 2 ** 12

    @pytest.mark.parametrize("variant", list(GcdVariant))
    def test_matches_math_gcd(self, variant):
        rnd = random.Random(2024)
        for bits in (8, 64, 200, 700):
            for _ in range(50):
                a = rnd.getrandbits(bits) - rnd.getrandbits(bits)
                b = rnd.getrandbits(bits)
                assert gcd(a, b, variant) == math.gcd(a, b)

    def test_variants_agree_on_shared_factor(self):
        p = 1000000007
        a = p * 998244353
        b = p * 2 ** 30 * 3
        assert euclid_gcd(a, b) == binary_gcd(a, b) == p

    def test_default_is_euclid(self):
        assert gcd(48, 180) == 12

    def test_selection_by_width(self):
        assert select_gcd_variant(2 ** 127) is GcdVariant.BINARY
        assert select_gcd_variant(2 ** 127 - 1) is GcdVariant.EUCLID
        assert select_gcd_variant(10 ** 6, min_bits=8) is GcdVariant.BINARY


# ============================================================================
# PART 2: MODULAR EXPONENTIATION
# ============================================================================

class TestModPow:

    def test_matches_builtin(self):
        rnd = random.Random(99)
        for _ in range(200):
            base = rnd.randrange(-10 ** 20, 10 ** 20)
            exp = rnd.randrange(0, 10 ** 6)
            mod = rnd.randrange(1, 10 ** 18)
            assert mod_pow(base, exp, mod) == pow(base, exp, mod)

    def test_edge_values(self):
        assert mod_pow(5, 0, 1) == 0
        assert mod_pow(5, 0, 7) == 1
        assert mod_pow(0, 0, 7) == 1
        assert mod_pow(0, 5, 7) == 0
        assert mod_pow(2, 10, 1000) == 24

    def test_fermat(self):
        p = 1000000007
        assert mod_pow(3, p - 1, p) == 1

    def test_rejects_bad_arguments(self):
        with pytest.raises(ValueError):
            mod_pow(2, 3, 0)
        with pytest.raises(ValueError):
            mod_pow(2, -1, 7)


# ============================================================================
# PART 3: SIEVE
# ============================================================================

class TestSieve:

    def test_small_limit(self):
        assert sieve_primes(30).tolist() == [2, 3, 5, 7, 11, 13, 17, 19, 23, 29]

    def test_limit_is_inclusive(self):
        assert sieve_primes(97)[-1] == 97

    def test_degenerate_limits(self):
        assert sieve_primes(0).size == 0
        assert sieve_primes(1).size == 0
        assert sieve_primes(2).tolist() == [2]

    def test_count_and_dtype(self):
        primes = sieve_primes(100_000)
        assert primes.dtype == np.int64
        assert len(primes) == 9592
        assert np.all(np.diff(primes) > 0)

    def test_cached_and_read_only(self):
        first = sieve_primes(1000)
        assert sieve_primes(1000) is first
        with pytest.raises(ValueError):
            first[0] = 4
