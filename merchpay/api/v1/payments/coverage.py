"""Installment coverage estimator used to pre-select installments for an amount. Pure functions."""

from decimal import Decimal
from typing import Iterable, List

# A remainder of at least this fraction of one installment counts as a full installment
COVERAGE_THRESHOLD = Decimal("0.98")


def estimate_covered_installments(payment_amount, total_amount, installments: int) -> int:
    """
    How many installments ``payment_amount`` covers for a student owing ``total_amount``
    over ``installments`` equal shares.

    >>> estimate_covered_installments(9800, 30000, 3)
    1
    >>> estimate_covered_installments(9799, 30000, 3)
    0
    """
    amount = Decimal(str(payment_amount))
    total = Decimal(str(total_amount))
    if amount <= 0 or installments < 1 or total <= 0:
        return 0
    if amount >= total:
        return installments

    exact_covered = amount / (total / installments)
    floor_covered = int(exact_covered)
    if exact_covered - floor_covered >= COVERAGE_THRESHOLD:
        floor_covered += 1
    return min(floor_covered, installments)


def suggest_installments(covered: int, installments: int, claimed: Iterable[int]) -> List[int]:
    """The lowest ``covered`` installment numbers that are not already claimed."""
    taken = set(claimed)
    free = [n for n in range(1, installments + 1) if n not in taken]
    return free[:covered]
