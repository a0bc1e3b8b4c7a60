from __future__ import annotations

import math
from typing import List

from evolver.algebra.classgroup import ClassGroupElement


def reduced_forms(discriminant: int) -> List[ClassGroupElement]:
    """Enumerate every reduced primitive form of a small discriminant."""

    forms = []
    bound = math.isqrt(-discriminant // 3)
    for a in range(1, bound + 1):
        for b in range(-a + 1, a + 1):
            if (b * b - discriminant) % (4 * a):
                continue
            c = (b * b - discriminant) // (4 * a)
            if c < a or (a == c and b < 0):
                continue
            if math.gcd(math.gcd(a, b), c) != 1:
                continue
            forms.append(ClassGroupElement(a, b, c))
    return forms


POOL_163 = {
    "fine_count": 3,
    "coarse_count": 2,
    "chaos_count": 1,
    "fine_norm_bound": 48,
    "coarse_norm_bound": 100,
}

POOL_23 = {
    "fine_count": 1,
    "coarse_count": 1,
    "chaos_count": 1,
    "fine_norm_bound": 3,
    "coarse_norm_bound": 5,
}

CONTEXT_CONFIG = {
    "discriminant_bits": 96,
    "pool": {
        "fine_count": 4,
        "coarse_count": 4,
        "chaos_count": 2,
        "fine_norm_bound": 200,
        "coarse_norm_bound": 2000,
    },
}
