"""Percentile type shared by the priority-fee and Jito-tip estimators."""

from enum import Enum
from typing import Iterable


class Percentile(str, Enum):
    P25 = "25"
    P50 = "50"
    P75 = "75"
    P95 = "95"
    P99 = "99"
    P50_EMA = "50ema"

    @property
    def rank(self) -> int:
        """Numeric rank; the moving-average variant ranks as the median."""
        if self is Percentile.P50_EMA:
            return 50
        return int(self.value)

    @property
    def basis_points(self) -> int:
        """Rank in hundredths of a percent, as the percentile RPC extension expects."""
        return self.rank * 100


def select_percentile(values: Iterable[int], percentile: Percentile) -> int:
    """
    Pick a percentile from the nonzero entries of ``values``.

    The median averages the two middle entries when the count is even. Other
    ranks use ``floor(n * rank / 100)`` clamped to the last index. Returns 0
    when there are no nonzero entries.
    """
    nonzero = sorted(v for v in values if v > 0)
    if not nonzero:
        return 0

    count = len(nonzero)
    if percentile.rank == 50:
        mid = count // 2
        if count % 2 == 0:
            return (nonzero[mid - 1] + nonzero[mid]) // 2
        return nonzero[mid]

    index = min(count * percentile.rank // 100, count - 1)
    return nonzero[index]
