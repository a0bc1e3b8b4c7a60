"""Exact class group arithmetic for imaginary quadratic discriminants."""

from .classgroup import (
    ClassGroupElement,
    Discriminant,
    compose,
    element_from_digest,
    identity,
    inverse,
    power,
    prime_form,
    reduce,
    square,
)

__all__ = [
    "ClassGroupElement",
    "Discriminant",
    "compose",
    "element_from_digest",
    "identity",
    "inverse",
    "power",
    "prime_form",
    "reduce",
    "square",
]
