"""
Pydantic schemas for API requests
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Type, TypeVar, Union
from pydantic import BaseModel, Field, StrictInt, StrictStr

from ..errors import ValidationError


E = TypeVar("E", bound=Enum)

# Decimal string or integer; floats are rejected
Amount = Union[StrictStr, StrictInt]


# Account schemas
class CreateAccountRequest(BaseModel):
    account_type: str = Field(..., description="Account type (CHECKING, SAVINGS, CREDIT)")
    currency: Optional[str] = Field(None, description="Currency code, defaults to USD")
    initial_deposit: Optional[Amount] = Field(None, description="Decimal string or integer")


class UpdateAccountRequest(BaseModel):
    status: str = Field(..., description="New status (ACTIVE, INACTIVE, FROZEN, CLOSED)")


# Transfer schemas
class TransferRequest(BaseModel):
    from_account_id: str = Field(..., min_length=1)
    to_account_id: str = Field(..., min_length=1)
    amount: Amount = Field(..., description="Decimal string or integer")
    currency: Optional[str] = Field(None, description="Currency code, defaults to USD")
    description: Optional[str] = Field(None, max_length=255)


# Statement schemas
class GenerateStatementRequest(BaseModel):
    start_date: datetime
    end_date: datetime


def parse_enum(enum_cls: Type[E], value: Optional[str], field_name: str) -> Optional[E]:
    """Map a case-insensitive string onto an enum member, or raise a 400"""
    if value is None:
        return None
    try:
        return enum_cls[value.strip().upper()]
    except KeyError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field_name}: {value}. Allowed: {allowed}") from None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes from query strings are taken as UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
