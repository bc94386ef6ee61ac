"""
Error Taxonomy Module

Typed failure kinds for the money-movement core and a small Result type
so that callers branch on the kind instead of parsing messages.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar


T = TypeVar("T")


class ErrorKind(Enum):
    """Abstract failure kinds exposed to callers"""
    NOT_FOUND_OR_NOT_ACCESSIBLE = "not_found_or_not_accessible"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CURRENCY_MISMATCH = "currency_mismatch"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class BankingError(Exception):
    """Base class for all business-rule and storage failures"""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {"kind": self.kind.value, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class SourceAccountUnavailableError(BankingError):
    """
    Source account is missing, not owned by the requester, or not active.
    The three cases are reported identically so that non-owners cannot
    probe for account existence.
    """
    kind = ErrorKind.NOT_FOUND_OR_NOT_ACCESSIBLE

    def __init__(self, message: str = "Source account not found or not accessible"):
        super().__init__(message)


class NotFoundError(BankingError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ValidationError(BankingError):
    kind = ErrorKind.VALIDATION


class CurrencyMismatchError(ValidationError):
    kind = ErrorKind.CURRENCY_MISMATCH

    def __init__(self, expected: str, actual: str):
        super().__init__(
            "Transfer currency must match source account currency",
            details={"expected": expected, "actual": actual}
        )


class InsufficientFundsError(BankingError):
    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, available: str, requested: str):
        super().__init__(
            "Insufficient funds for this transaction",
            details={"available_balance": available, "requested_amount": requested}
        )


class ConflictError(BankingError):
    kind = ErrorKind.CONFLICT


class InternalError(BankingError):
    kind = ErrorKind.INTERNAL


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Tagged union of a success value or a BankingError.

    Exactly one of ``value`` / ``error`` is meaningful; check ``ok`` first.
    """
    value: Optional[T] = None
    error: Optional[BankingError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BankingError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        """Error kind, or None on success"""
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error"""
        if self.error is not None:
            raise self.error
        return self.value
