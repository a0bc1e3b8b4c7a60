"""Binary quadratic form arithmetic over an imaginary quadratic discriminant.

Elements of the class group ``Cl(Δ)`` are represented by reduced, primitive,
positive definite forms ``(a, b, c)`` with ``b*b - 4*a*c == Δ``.  Every public
operation returns a reduced element, so equality of elements is equality of
their triples.

Composition follows the NUCOMP scheme: the composite is computed in the
classical Dirichlet form and, when its leading coefficient is large, a
partial extended-gcd run on ``(a1/d, r)`` produces an equivalent form whose
coefficients are already close to ``sqrt(|Δ|)`` before the final reduction.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional, Tuple, Union

from ..common import InvalidOperand, MalformedElement, canonical_digest
from .numbers import (
    DEFAULT_PRIMALITY_ROUNDS,
    digest_to_int,
    kronecker,
    next_prime,
    sqrt_mod_prime,
    xgcd,
)

logger = logging.getLogger(__name__)

DEFAULT_DISCRIMINANT_BITS = 2048
_DISCRIMINANT_DOMAIN = b"evolver/discriminant/v1"
_ELEMENT_DOMAIN = b"evolver/element/v1"


# ---------------------------------------------------------------------------
# Discriminant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Discriminant:
    """Validated negative discriminant shared by every element of a context."""

    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise MalformedElement("discriminant must be an integer")
        if self.value >= 0:
            raise MalformedElement("discriminant must be negative")
        if self.value % 4 not in (0, 1):
            raise MalformedElement("discriminant must be 0 or 1 modulo 4")

    @classmethod
    def from_context(
        cls,
        label: Union[str, bytes],
        bits: int = DEFAULT_DISCRIMINANT_BITS,
        *,
        rounds: int = DEFAULT_PRIMALITY_ROUNDS,
    ) -> "Discriminant":
        """Derive ``Δ = -M`` for the first prime ``M ≡ 3 (mod 4)`` after a
        ``bits``-bit expansion of ``label``."""

        if bits < 8:
            raise MalformedElement("discriminant needs at least 8 bits")
        start = digest_to_int(label, bits, domain=_DISCRIMINANT_DOMAIN)
        modulus = next_prime(start, residue=3, modulus=4, rounds=rounds)
        logger.debug("Derived %d-bit discriminant for context", modulus.bit_length())
        return cls(-modulus)

    @property
    def bits(self) -> int:
        return (-self.value).bit_length()

    def identity(self) -> "ClassGroupElement":
        return identity(self.value)

    def __int__(self) -> int:
        return self.value


DiscriminantLike = Union[int, Discriminant]


def _delta_value(discriminant: DiscriminantLike) -> int:
    if isinstance(discriminant, Discriminant):
        return discriminant.value
    return Discriminant(int(discriminant)).value


# ---------------------------------------------------------------------------
# Reduction
# ---------------------------------------------------------------------------


def _normalize(a: int, b: int, c: int) -> Tuple[int, int, int]:
    # x -> x + r*y moves b into (-a, a]
    r = (a - b) // (2 * a)
    return a, b + 2 * r * a, a * r * r + b * r + c


def _reduce_triple(a: int, b: int, c: int) -> Tuple[int, int, int]:
    if not -a < b <= a:
        a, b, c = _normalize(a, b, c)
    while a > c:
        a, b, c = _normalize(c, -b, a)
    if a == c and b < 0:
        b = -b
    return a, b, c


def is_reduced(a: int, b: int, c: int) -> bool:
    if not (-a < b <= a <= c):
        return False
    return not (a == c and b < 0)


# ---------------------------------------------------------------------------
# Elements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassGroupElement:
    """Reduced primitive positive definite form ``(a, b, c)``.

    Direct construction validates the invariant and requires a reduced
    triple; :meth:`from_form` accepts any valid form and reduces it.
    """

    a: int
    b: int
    c: int
    discriminant: int = field(default=0, compare=False, repr=False)

    def __post_init__(self) -> None:
        a, b, c = _validated_triple(self.a, self.b, self.c)
        delta = b * b - 4 * a * c
        if self.discriminant and self.discriminant != delta:
            raise MalformedElement(
                f"b^2 - 4ac = {delta} does not match discriminant {self.discriminant}"
            )
        if not is_reduced(a, b, c):
            raise MalformedElement(f"form ({a}, {b}, {c}) is not reduced")
        object.__setattr__(self, "discriminant", delta)

    @classmethod
    def _trusted(cls, a: int, b: int, c: int, discriminant: int) -> "ClassGroupElement":
        element = object.__new__(cls)
        object.__setattr__(element, "a", a)
        object.__setattr__(element, "b", b)
        object.__setattr__(element, "c", c)
        object.__setattr__(element, "discriminant", discriminant)
        return element

    @classmethod
    def from_form(
        cls,
        a: int,
        b: int,
        c: int,
        discriminant: Optional[DiscriminantLike] = None,
    ) -> "ClassGroupElement":
        """Validate an arbitrary form and return its reduced class."""

        a, b, c = _validated_triple(a, b, c)
        delta = b * b - 4 * a * c
        if discriminant is not None and _delta_value(discriminant) != delta:
            raise MalformedElement(
                f"b^2 - 4ac = {delta} does not match discriminant {int(discriminant)}"
            )
        ra, rb, rc = _reduce_triple(a, b, c)
        return cls._trusted(ra, rb, rc, delta)

    @classmethod
    def identity(cls, discriminant: DiscriminantLike) -> "ClassGroupElement":
        return identity(discriminant)

    def compose(self, other: "ClassGroupElement") -> "ClassGroupElement":
        return compose(self, other)

    def inverse(self) -> "ClassGroupElement":
        return inverse(self)

    def square(self) -> "ClassGroupElement":
        return compose(self, self)

    def power(self, exponent: int) -> "ClassGroupElement":
        return power(self, exponent)

    def is_identity(self) -> bool:
        return self.a == 1

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.a, self.b, self.c)

    def as_dict(self) -> Dict[str, int]:
        return {"a": self.a, "b": self.b, "c": self.c}

    def commitment(self) -> str:
        """SHA-256 digest binding the triple and its discriminant."""

        return canonical_digest(
            {"discriminant": self.discriminant, "form": list(self.as_tuple())}
        )

    def __str__(self) -> str:
        return f"({self.a}, {self.b}, {self.c})"


def _validated_triple(a: object, b: object, c: object) -> Tuple[int, int, int]:
    for name, value in (("a", a), ("b", b), ("c", c)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedElement(f"coefficient {name} must be an integer, got {type(value).__name__}")
    a, b, c = int(a), int(b), int(c)  # type: ignore[arg-type]
    if a <= 0:
        raise MalformedElement("leading coefficient must be positive")
    if b * b - 4 * a * c >= 0:
        raise MalformedElement("form is not positive definite")
    if math.gcd(math.gcd(a, b), c) != 1:
        raise MalformedElement("form is not primitive")
    return a, b, c


def reduce(form: Union[ClassGroupElement, Tuple[int, int, int]]) -> ClassGroupElement:
    """Return the canonical reduced representative of ``form``'s class."""

    if isinstance(form, ClassGroupElement):
        a, b, c = _reduce_triple(form.a, form.b, form.c)
        return ClassGroupElement._trusted(a, b, c, form.discriminant)
    a, b, c = form
    return ClassGroupElement.from_form(a, b, c)


def identity(discriminant: DiscriminantLike) -> ClassGroupElement:
    """Principal form ``(1, b, (b^2 - Δ)/4)`` with ``b = Δ mod 2``."""

    delta = _delta_value(discriminant)
    b = delta & 1
    return ClassGroupElement._trusted(1, b, (b - delta) // 4, delta)


def inverse(x: ClassGroupElement) -> ClassGroupElement:
    a, b, c = _reduce_triple(x.a, -x.b, x.c)
    return ClassGroupElement._trusted(a, b, c, x.discriminant)


@lru_cache(maxsize=32)
def _partial_reduction_bound(delta: int) -> int:
    return math.isqrt(math.isqrt(-delta // 4))


def compose(x: ClassGroupElement, y: ClassGroupElement) -> ClassGroupElement:
    """Compose two reduced forms of the same discriminant (NUCOMP)."""

    delta = x.discriminant
    if y.discriminant != delta:
        raise InvalidOperand(
            f"cannot compose elements of discriminants {delta} and {y.discriminant}"
        )
    if x.a < y.a:
        x, y = y, x
    a1, b1 = x.a, x.b
    a2, b2, c2 = y.a, y.b, y.c

    s = (b1 + b2) // 2
    n = b2 - s
    d, y1, _ = xgcd(a2, a1)
    if s % d == 0:
        d1, x2, y2 = d, 0, -1
    else:
        d1, x2, y2 = xgcd(s, d)
        y2 = -y2
    v1 = a1 // d1
    v2 = a2 // d1
    r = (y1 * y2 * n - x2 * c2) % v1
    big_a = v1 * v2

    bound = _partial_reduction_bound(delta)
    r_prev, r_cur = v1, r
    c_prev, c_cur = 0, -1
    steps = 0
    while r_cur > bound:
        q = r_prev // r_cur
        r_prev, r_cur = r_cur, r_prev - q * r_cur
        c_prev, c_cur = c_cur, c_prev - q * c_cur
        steps += 1

    if steps == 0:
        big_b = b2 + 2 * v2 * r
        a3, b3, c3 = big_a, big_b, (big_b * big_b - delta) // (4 * big_a)
    else:
        # Columns (k_i, -C_i) and ±(k_{i-1}, -C_{i-1}) form a unimodular basis
        # in which the composite has coefficients of size about sqrt(|Δ|).
        x_cur = 2 * v2 * r_cur - b2 * c_cur
        x_prev = 2 * v2 * r_prev - b2 * c_prev
        a3 = (x_cur * x_cur - delta * c_cur * c_cur) // (4 * big_a)
        b3 = (x_cur * x_prev - delta * c_cur * c_prev) // (2 * big_a)
        if steps % 2 == 0:
            b3 = -b3
        c3 = (b3 * b3 - delta) // (4 * a3)
    a3, b3, c3 = _reduce_triple(a3, b3, c3)
    return ClassGroupElement._trusted(a3, b3, c3, delta)


def square(x: ClassGroupElement) -> ClassGroupElement:
    return compose(x, x)


def power(x: ClassGroupElement, exponent: int) -> ClassGroupElement:
    """Montgomery ladder ``x ** exponent``; negative exponents use the inverse."""

    if exponent < 0:
        x = inverse(x)
        exponent = -exponent
    low = identity(x.discriminant)
    high = x
    for bit in bin(exponent)[2:]:
        if bit == "1":
            low = compose(low, high)
            high = compose(high, high)
        else:
            high = compose(low, high)
            low = compose(low, low)
    return low


# ---------------------------------------------------------------------------
# Prime forms
# ---------------------------------------------------------------------------


def prime_form(discriminant: DiscriminantLike, p: int) -> Optional[ClassGroupElement]:
    """Reduced class of the form of norm ``p``; ``None`` unless ``p`` splits."""

    delta = _delta_value(discriminant)
    if kronecker(delta, p) != 1:
        return None
    if p == 2:
        b = 1
    else:
        b = sqrt_mod_prime(delta, p)
        if (b - delta) % 2:
            b = p - b
    c = (b * b - delta) // (4 * p)
    a3, b3, c3 = _reduce_triple(p, b, c)
    return ClassGroupElement._trusted(a3, b3, c3, delta)


def next_split_prime(discriminant: DiscriminantLike, start: int) -> int:
    """Smallest prime ``>= start`` that splits in the order of discriminant Δ."""

    delta = _delta_value(discriminant)
    p = next_prime(max(2, start))
    while kronecker(delta, p) != 1:
        p = next_prime(p + 1)
    return p


def element_from_digest(discriminant: DiscriminantLike, seed: object) -> ClassGroupElement:
    """Map ``seed`` deterministically onto a class of discriminant Δ."""

    delta = _delta_value(discriminant)
    bits = max(3, (-delta).bit_length() // 2 - 2)
    start = digest_to_int(seed, bits, domain=_ELEMENT_DOMAIN)
    p = next_split_prime(delta, start)
    element = prime_form(delta, p)
    if element is None:
        raise InvalidOperand(f"no form of norm {p} for discriminant {delta}")
    return element


__all__ = [
    "ClassGroupElement",
    "DEFAULT_DISCRIMINANT_BITS",
    "Discriminant",
    "compose",
    "element_from_digest",
    "identity",
    "inverse",
    "is_reduced",
    "next_split_prime",
    "power",
    "prime_form",
    "reduce",
    "square",
]
