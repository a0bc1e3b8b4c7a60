"""Integer helpers backing discriminant derivation and prime forms."""

from __future__ import annotations

import hashlib
import math
from functools import lru_cache
from typing import List, Optional, Tuple

from ..common import ensure_bytes

_TRIAL_DIVISION_BOUND = 2000
DEFAULT_PRIMALITY_ROUNDS = 32


@lru_cache(maxsize=8)
def _sieve(bound: int) -> Tuple[int, ...]:
    if bound <= 2:
        return tuple()
    flags = bytearray([1]) * bound
    flags[0] = flags[1] = 0
    for p in range(2, math.isqrt(bound - 1) + 1):
        if flags[p]:
            flags[p * p :: p] = bytearray(len(range(p * p, bound, p)))
    return tuple(i for i, flag in enumerate(flags) if flag)


def small_primes(bound: int) -> Tuple[int, ...]:
    """Return every prime strictly below ``bound``."""

    return _sieve(int(bound))


def is_probable_prime(n: int, rounds: int = DEFAULT_PRIMALITY_ROUNDS) -> bool:
    """Miller-Rabin primality test with a fixed witness set.

    The witnesses are the first ``rounds`` primes, so the answer for a given
    ``n`` is identical on every platform and every run.
    """

    if n < 2:
        return False
    trial = small_primes(_TRIAL_DIVISION_BOUND)
    for p in trial:
        if n == p:
            return True
        if n % p == 0:
            return False
    if n < _TRIAL_DIVISION_BOUND * _TRIAL_DIVISION_BOUND:
        return True

    # Write n-1 as 2^r * d
    r, d = 0, n - 1
    while d % 2 == 0:
        r += 1
        d //= 2

    for a in trial[: max(1, rounds)]:
        x = pow(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(r - 1):
            x = pow(x, 2, n)
            if x == n - 1:
                break
        else:
            return False
    return True


def next_prime(
    n: int,
    *,
    residue: Optional[int] = None,
    modulus: Optional[int] = None,
    rounds: int = DEFAULT_PRIMALITY_ROUNDS,
) -> int:
    """Return the smallest probable prime ``>= n`` in the requested residue class."""

    if modulus is None:
        if n <= 2:
            return 2
        modulus, residue = 2, 1
    if residue is None:
        raise ValueError("residue is required when modulus is given")
    if modulus <= 0:
        raise ValueError("modulus must be positive")
    if math.gcd(residue, modulus) != 1:
        raise ValueError("residue class contains at most one prime")
    candidate = n + ((residue - n) % modulus)
    while not is_probable_prime(candidate, rounds):
        candidate += modulus
    return candidate


def jacobi(a: int, n: int) -> int:
    if n <= 0 or n % 2 == 0:
        raise ValueError("jacobi symbol needs a positive odd modulus")
    a %= n
    result = 1
    while a:
        while a % 2 == 0:
            a //= 2
            if n % 8 in (3, 5):
                result = -result
        a, n = n, a
        if a % 4 == 3 and n % 4 == 3:
            result = -result
        a %= n
    return result if n == 1 else 0


def kronecker(d: int, p: int) -> int:
    """Kronecker symbol ``(d/p)`` for a prime ``p``."""

    if p == 2:
        if d % 2 == 0:
            return 0
        return 1 if d % 8 in (1, 7) else -1
    return jacobi(d, p)


def sqrt_mod_prime(n: int, p: int) -> int:
    """Tonelli-Shanks square root of ``n`` modulo the odd prime ``p``."""

    n %= p
    if n == 0 or p == 2:
        return n
    if pow(n, (p - 1) // 2, p) != 1:
        raise ValueError(f"{n} is not a quadratic residue modulo {p}")
    if p % 4 == 3:
        return pow(n, (p + 1) // 4, p)
    q, s = p - 1, 0
    while q % 2 == 0:
        q //= 2
        s += 1
    z = 2
    while pow(z, (p - 1) // 2, p) != p - 1:
        z += 1
    m, c, t, root = s, pow(z, q, p), pow(n, q, p), pow(n, (q + 1) // 2, p)
    while t != 1:
        i, t2 = 1, t * t % p
        while t2 != 1:
            t2 = t2 * t2 % p
            i += 1
        b = pow(c, 1 << (m - i - 1), p)
        m, c = i, b * b % p
        t = t * c % p
        root = root * b % p
    return root


def xgcd(a: int, b: int) -> Tuple[int, int, int]:
    """Return ``(g, x, y)`` with ``x*a + y*b == g == gcd(a, b) >= 0``."""

    old_r, r = a, b
    old_x, x = 1, 0
    old_y, y = 0, 1
    while r:
        q = old_r // r
        old_r, r = r, old_r - q * r
        old_x, x = x, old_x - q * x
        old_y, y = y, old_y - q * y
    if old_r < 0:
        return -old_r, -old_x, -old_y
    return old_r, old_x, old_y


def expand_digest(seed: object, nbytes: int, *, domain: bytes = b"") -> bytes:
    """Stretch ``seed`` to ``nbytes`` bytes with SHA-256 in counter mode."""

    if nbytes <= 0:
        return b""
    material = ensure_bytes(seed)  # type: ignore[arg-type]
    blocks: List[bytes] = []
    counter = 0
    produced = 0
    while produced < nbytes:
        block = hashlib.sha256(domain + material + counter.to_bytes(4, "big")).digest()
        blocks.append(block)
        produced += len(block)
        counter += 1
    return b"".join(blocks)[:nbytes]


def digest_to_int(seed: object, bits: int, *, domain: bytes = b"") -> int:
    """Derive an integer of exactly ``bits`` bits from ``seed``."""

    if bits < 2:
        raise ValueError("bits must be at least 2")
    raw = int.from_bytes(expand_digest(seed, (bits + 7) // 8, domain=domain), "big")
    raw >>= (-bits) % 8
    return raw | (1 << (bits - 1))


__all__ = [
    "DEFAULT_PRIMALITY_ROUNDS",
    "digest_to_int",
    "expand_digest",
    "is_probable_prime",
    "jacobi",
    "kronecker",
    "next_prime",
    "small_primes",
    "sqrt_mod_prime",
    "xgcd",
]
