"""
Currency and Money Module

ISO 4217 currency codes with their minor-unit precision and an immutable
Money value type. Monetary values are Decimal end to end; float input is
rejected rather than converted.
"""

from decimal import Decimal, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    GBP = ("GBP", 2)  # British Pound
    JPY = ("JPY", 0)  # Japanese Yen
    CAD = ("CAD", 2)  # Canadian Dollar
    CHF = ("CHF", 2)  # Swiss Franc
    AUD = ("AUD", 2)  # Australian Dollar
    INR = ("INR", 2)  # Indian Rupee
    KWD = ("KWD", 3)  # Kuwaiti Dinar

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, e.g. Decimal('0.01')"""
        return Decimal(1).scaleb(-self.precision)

    @classmethod
    def from_code(cls, code: str) -> "Currency":
        """Look up a currency by ISO code (case-insensitive)"""
        if not isinstance(code, str):
            raise ValidationError("Currency code must be a string")
        try:
            return cls[code.strip().upper()]
        except KeyError:
            raise ValidationError(f"Unsupported currency: {code}") from None


AmountInput = Union[Decimal, str, int]


def parse_amount(value: AmountInput, currency: Currency) -> Decimal:
    """
    Parse a caller-supplied amount into an exact Decimal.

    Args:
        value: Decimal, numeric string or int
        currency: Currency whose precision bounds the fractional digits

    Returns:
        Decimal quantized to the currency precision

    Raises:
        ValidationError: float input, malformed string, non-finite or
            out-of-range value, or more fractional digits than the currency allows
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError("Amount must be a decimal string or integer, not a float")

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}") from None

    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")

    try:
        quantized = amount.quantize(currency.quantum)
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {value!r}") from None

    if amount != quantized:
        raise ValidationError(
            f"Amount has more than {currency.precision} decimal places for {currency.code}"
        )

    return quantized


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and exact precision.
    Arithmetic between different currencies is an error.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        object.__setattr__(self, 'amount', self.amount.quantize(self.currency.quantum))

    def _check(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise ValueError(f"Currency mismatch: {self.currency.code} vs {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount >= other.amount

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
