"""Associative, non-commutative folding of trace segments.

A step ``S -> S**P * Q`` is the affine tuple ``(P, Q)``.  Two consecutive
steps combine as ``(P1, Q1) ⊕ (P2, Q2) = (P1*P2, Q1**P2 * Q2)``; the operator
is associative, so any bracketing of a trace folds to the same tuple, but it
is not commutative, so reordering steps changes the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence

from ..algebra.classgroup import ClassGroupElement, DiscriminantLike, compose, identity, power
from ..common import AffineOverflow

if TYPE_CHECKING:  # pragma: no cover - imported for annotations only
    from ..search.generators import GeneratorPool

MAX_P_BITS = 8192


@dataclass(frozen=True)
class AffineTuple:
    p: int
    q: ClassGroupElement

    def __post_init__(self) -> None:
        if isinstance(self.p, bool) or not isinstance(self.p, int) or self.p < 1:
            raise ValueError("affine exponent must be a positive integer")

    @classmethod
    def identity(cls, discriminant: DiscriminantLike) -> "AffineTuple":
        return cls(1, identity(discriminant))

    @classmethod
    def step(cls, pool: "GeneratorPool", signed_index: int) -> "AffineTuple":
        """Tuple of one optimizer move under the pool's step rule."""

        return cls(pool.dynamics_exponent, pool.resolve(signed_index))

    @property
    def discriminant(self) -> int:
        return self.q.discriminant

    def compose(self, other: "AffineTuple", *, max_p_bits: int = MAX_P_BITS) -> "AffineTuple":
        """``self`` followed by ``other``."""

        p = self.p * other.p
        if p.bit_length() > max_p_bits:
            raise AffineOverflow(
                f"folded exponent needs {p.bit_length()} bits, limit is {max_p_bits}; "
                "fold shorter segments"
            )
        lifted = self.q if other.p == 1 else power(self.q, other.p)
        return AffineTuple(p, compose(lifted, other.q))

    def merge(self, other: "AffineTuple", *, max_p_bits: int = MAX_P_BITS) -> "AffineTuple":
        """Componentwise product ``(P1*P2, Q1*Q2)`` of independent segments.

        Unlike :meth:`compose` this is commutative and does not describe
        sequential replay unless ``other.p == 1``.
        """

        p = self.p * other.p
        if p.bit_length() > max_p_bits:
            raise AffineOverflow(f"merged exponent needs {p.bit_length()} bits, limit is {max_p_bits}")
        return AffineTuple(p, compose(self.q, other.q))

    def apply(self, state: ClassGroupElement) -> ClassGroupElement:
        lifted = state if self.p == 1 else power(state, self.p)
        return compose(lifted, self.q)


def _require_non_empty(
    tuples: Sequence[AffineTuple], discriminant: Optional[DiscriminantLike]
) -> Optional[AffineTuple]:
    if tuples:
        return None
    if discriminant is None:
        raise ValueError("folding an empty segment needs the discriminant")
    return AffineTuple.identity(discriminant)


def fold(
    tuples: Sequence[AffineTuple],
    discriminant: Optional[DiscriminantLike] = None,
    *,
    max_p_bits: int = MAX_P_BITS,
) -> AffineTuple:
    """Balanced-tree fold; equal to :func:`fold_left` by associativity."""

    empty = _require_non_empty(tuples, discriminant)
    if empty is not None:
        return empty
    level: List[AffineTuple] = list(tuples)
    while len(level) > 1:
        merged = [
            level[i].compose(level[i + 1], max_p_bits=max_p_bits)
            for i in range(0, len(level) - 1, 2)
        ]
        if len(level) % 2:
            merged.append(level[-1])
        level = merged
    return level[0]


def fold_left(
    tuples: Sequence[AffineTuple],
    discriminant: Optional[DiscriminantLike] = None,
    *,
    max_p_bits: int = MAX_P_BITS,
) -> AffineTuple:
    empty = _require_non_empty(tuples, discriminant)
    if empty is not None:
        return empty
    acc = tuples[0]
    for item in tuples[1:]:
        acc = acc.compose(item, max_p_bits=max_p_bits)
    return acc


def fold_right(
    tuples: Sequence[AffineTuple],
    discriminant: Optional[DiscriminantLike] = None,
    *,
    max_p_bits: int = MAX_P_BITS,
) -> AffineTuple:
    empty = _require_non_empty(tuples, discriminant)
    if empty is not None:
        return empty
    acc = tuples[-1]
    for item in reversed(tuples[:-1]):
        acc = item.compose(acc, max_p_bits=max_p_bits)
    return acc


class CheckpointTree:
    """Segment tree of folded trace segments.

    ``range_fold(start, stop)`` answers any contiguous segment with
    ``O(log n)`` compositions.  The tree is derived data: it can always be
    rebuilt from the trace it was built from.
    """

    def __init__(
        self,
        tuples: Sequence[AffineTuple],
        discriminant: DiscriminantLike,
        *,
        max_p_bits: int = MAX_P_BITS,
    ) -> None:
        self._identity = AffineTuple.identity(discriminant)
        self._max_p_bits = max_p_bits
        self._length = len(tuples)
        size = 1
        while size < max(1, self._length):
            size *= 2
        self._size = size
        nodes: List[AffineTuple] = [self._identity] * (2 * size)
        nodes[size : size + self._length] = list(tuples)
        for position in range(size - 1, 0, -1):
            nodes[position] = self._combine(nodes[2 * position], nodes[2 * position + 1])
        self._nodes = nodes

    def _combine(self, left: AffineTuple, right: AffineTuple) -> AffineTuple:
        if left is self._identity:
            return right
        if right is self._identity:
            return left
        return left.compose(right, max_p_bits=self._max_p_bits)

    def __len__(self) -> int:
        return self._length

    @property
    def root(self) -> AffineTuple:
        return self._nodes[1]

    def range_fold(self, start: int, stop: int) -> AffineTuple:
        if not 0 <= start <= stop <= self._length:
            raise IndexError(f"segment [{start}, {stop}) outside trace of {self._length}")
        left_acc = self._identity
        right_acc = self._identity
        lo, hi = start + self._size, stop + self._size
        while lo < hi:
            if lo & 1:
                left_acc = self._combine(left_acc, self._nodes[lo])
                lo += 1
            if hi & 1:
                hi -= 1
                right_acc = self._combine(self._nodes[hi], right_acc)
            lo //= 2
            hi //= 2
        return self._combine(left_acc, right_acc)


__all__ = [
    "AffineTuple",
    "CheckpointTree",
    "MAX_P_BITS",
    "fold",
    "fold_left",
    "fold_right",
]
