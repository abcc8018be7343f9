from decimal import Decimal

import pytest

from merchpay.api.v1.payments.coverage import estimate_covered_installments, suggest_installments


@pytest.mark.parametrize(
    "amount, expected",
    [
        (9800, 1),
        (9799, 0),
        (10000, 1),
        (19600, 1),
        (19800, 2),
        (30000, 3),
        (35000, 3),
        (0, 0),
        (-5, 0),
    ],
)
def test_estimate_covered_installments(amount, expected) -> None:
    assert estimate_covered_installments(amount, 30000, 3) == expected


def test_estimate_accepts_decimal_strings() -> None:
    assert estimate_covered_installments(Decimal("9800.00"), Decimal("30000.00"), 3) == 1


def test_estimate_never_exceeds_installment_count() -> None:
    # 29990 is 2.999 installments: rounded up, but capped
    assert estimate_covered_installments(29990, 30000, 3) == 3


def test_estimate_with_invalid_plan_covers_nothing() -> None:
    assert estimate_covered_installments(1000, 30000, 0) == 0
    assert estimate_covered_installments(1000, 0, 3) == 0


def test_suggest_installments_skips_claimed() -> None:
    assert suggest_installments(2, 5, claimed=[1, 3]) == [2, 4]
    assert suggest_installments(3, 3, claimed=[1, 2]) == [3]
    assert suggest_installments(0, 3, claimed=[]) == []
