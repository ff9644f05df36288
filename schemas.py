import datetime as dt
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import BudgetPeriod, TransactionType

ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
HEX_COLOR = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"
# Largest amount a DECIMAL(12,2) column holds.
MAX_AMOUNT = Decimal("9999999999.99")
CENT = Decimal("0.01")


def _coerce_date(value: object) -> object:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        if not ISO_DATE_PREFIX.match(value):
            raise ValueError("Date must be in YYYY-MM-DD format")
        return value[:10]
    return value


def _round_amount(value: object) -> object:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        return value
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not amount.is_finite():
            return value
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # Left for pydantic to reject with a field error.
        return value


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class TransactionCandidate(BaseModel):
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    category_id: str = Field(..., min_length=1)
    date: dt.date
    type: TransactionType

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_to_cents(cls, value: object) -> object:
        return _round_amount(value)

    @field_validator("date", mode="before")
    @classmethod
    def _date_prefix(cls, value: object) -> object:
        return _coerce_date(value)

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


class TransactionIn(TransactionCandidate):
    pass


class TransactionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(
        default=None, gt=0, le=MAX_AMOUNT, decimal_places=2
    )
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category_id: Optional[str] = Field(default=None, min_length=1)
    date: Optional[dt.date] = None
    type: Optional[TransactionType] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_to_cents(cls, value: object) -> object:
        return _round_amount(value)

    @field_validator("date", mode="before")
    @classmethod
    def _date_prefix(cls, value: object) -> object:
        if value is None:
            return value
        return _coerce_date(value)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(..., pattern=HEX_COLOR)
    icon: Optional[str] = Field(default=None, max_length=50)


class BudgetIn(BaseModel):
    category_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT, decimal_places=2)
    period: BudgetPeriod

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_to_cents(cls, value: object) -> object:
        return _round_amount(value)

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


class BudgetPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, le=MAX_AMOUNT, decimal_places=2
    )
    period: Optional[BudgetPeriod] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_to_cents(cls, value: object) -> object:
        return _round_amount(value)


class SignUpIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8)
    confirm_password: str

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", value):
            raise ValueError("Please enter a valid email address")
        return value

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        if not re.search(r"[A-Z]", value):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[a-z]", value):
            raise ValueError("Password must contain at least one lowercase letter")
        if not re.search(r"[0-9]", value):
            raise ValueError("Password must contain at least one number")
        return value

    @model_validator(mode="after")
    def _passwords_match(self) -> "SignUpIn":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class SignInIn(BaseModel):
    email: str = ""
    password: str = ""
