"""
Exact integer arithmetic shared by every stage.

Two gcd variants are provided and selected explicitly by the caller; the
engine picks binary gcd for wide moduli and Euclid otherwise. Both accept
any signed integers and return a non-negative result, with gcd(0, 0) == 0.
"""
from __future__ import annotations

import math
from enum import Enum
from functools import lru_cache

import numpy as np


class GcdVariant(Enum):
    EUCLID = "euclid"
    BINARY = "binary"


def euclid_gcd(a: int, b: int) -> int:
    """Remainder-based gcd (CPython's math.gcd)."""
    return math.gcd(a, b)


def binary_gcd(a: int, b: int) -> int:
    """Stein's gcd: shifts and subtractions only."""
    a = abs(a)
    b = abs(b)
    if a == 0:
        return b
    if b == 0:
        return a

    # common powers of two
    shift = 0
    while ((a | b) & 1) == 0:
        a >>= 1
        b >>= 1
        shift += 1

    while (a & 1) == 0:
        a >>= 1

    while b:
        while (b & 1) == 0:
            b >>= 1
        if a > b:
            a, b = b, a
        b -= a

    return a << shift


_GCD_IMPLS = {
    GcdVariant.EUCLID: euclid_gcd,
    GcdVariant.BINARY: binary_gcd,
}


def gcd(a: int, b: int, variant: GcdVariant = GcdVariant.EUCLID) -> int:
    """
    Greatest common divisor using the requested variant.

    Args:
        a, b: Any integers (signs are normalised)
        variant: Which algorithm to run

    Returns:
        Non-negative gcd; gcd(a, 0) == |a| and gcd(0, 0) == 0
    """
    return _GCD_IMPLS[variant](a, b)


def select_gcd_variant(n: int, min_bits: int = 128) -> GcdVariant:
    """Binary gcd for moduli of at least `min_bits` bits, Euclid below."""
    return GcdVariant.BINARY if n.bit_length() >= min_bits else GcdVariant.EUCLID


def mod_pow(base: int, exp: int, modulus: int) -> int:
    """
    Modular exponentiation by repeated squaring.

    Uses O(log exp) multiplications. Negative bases are reduced first.

    Raises:
        ValueError: exp < 0 or modulus < 1
    """
    if modulus < 1:
        raise ValueError(f"modulus must be positive, got {modulus}")
    if exp < 0:
        raise ValueError(f"exponent must be non-negative, got {exp}")
    if modulus == 1:
        return 0

    result = 1
    base %= modulus
    while exp > 0:
        if exp & 1:
            result = (result * base) % modulus
        exp >>= 1
        base = (base * base) % modulus
    return result


@lru_cache(maxsize=8)
def sieve_primes(limit: int) -> np.ndarray:
    """
    Sieve of Eratosthenes up to and including `limit` (NumPy vectorized).

    The result is cached per process and marked read-only.

    Returns:
        Ascending int64 array of primes <= limit
    """
    if limit < 2:
        primes = np.empty(0, dtype=np.int64)
    else:
        sieve = np.ones(limit + 1, dtype=np.bool_)
        sieve[:2] = False
        sieve[4::2] = False
        for i in range(3, math.isqrt(limit) + 1, 2):
            if sieve[i]:
                sieve[i * i::2 * i] = False
        primes = np.flatnonzero(sieve).astype(np.int64)
    primes.flags.writeable = False
    return primes
