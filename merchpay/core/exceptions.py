from decimal import Decimal
from typing import Iterable, List

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _join(numbers: Iterable[int]) -> str:
    return ", ".join(str(n) for n in numbers)


class NotFound(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class InvalidInstallment(ServiceError):
    def __init__(self, numbers: Iterable[int], installments: int) -> None:
        self.numbers: List[int] = sorted(numbers)
        super().__init__(
            f"Invalid installment number(s): {_join(self.numbers)} (valid range 1-{installments})",
            status.HTTP_400_BAD_REQUEST,
        )


class InstallmentAlreadyClaimed(ServiceError):
    def __init__(self, numbers: Iterable[int]) -> None:
        self.numbers: List[int] = sorted(set(numbers))
        if self.numbers:
            message = f"Installment(s) {_join(self.numbers)} already have pending or approved payments"
        else:
            message = "One or more installments already have pending or approved payments"
        super().__init__(message, status.HTTP_409_CONFLICT)


class AmountMismatch(ServiceError):
    def __init__(self, count: int, expected: Decimal, provided: Decimal) -> None:
        self.expected = expected
        self.provided = provided
        super().__init__(
            f"To pay {count} installment(s) the amount must be exactly {expected}; provided {provided}",
            status.HTTP_400_BAD_REQUEST,
        )


class AlreadyReviewed(ServiceError):
    def __init__(self, current_status: str) -> None:
        self.current_status = current_status
        super().__init__(f"Payment already {current_status.lower()}", status.HTTP_400_BAD_REQUEST)


class IllegalTransition(ServiceError):
    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Illegal payment status transition {from_status} -> {to_status}",
            status.HTTP_409_CONFLICT,
        )


class LedgerUpdateError(ServiceError):
    def __init__(self, message: str = "Failed to update student balance") -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ReceiptStorageError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_502_BAD_GATEWAY)


class GatewayError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_502_BAD_GATEWAY)
