"""
Core Ledger Models for Finora

These models define the strict schemas for users, accounts,
transactions and budgets. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Amounts are Decimal everywhere in the domain.
Floats never touch a balance. Storage converts to integer minor units.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from finora.errors import FinoraError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Kinds of account a user can hold."""
    SAVINGS = "SAVINGS"
    CURRENT = "CURRENT"
    CREDIT = "CREDIT"
    INVESTMENT = "INVESTMENT"


class TransactionType(str, Enum):
    """
    Direction of a transaction.

    The amount is always positive; the type carries the sign.
    """
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"


class RecurringInterval(str, Enum):
    """How often a recurring transaction repeats."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# =============================================================================
# ENTITIES
# =============================================================================

class User(BaseModel):
    """
    A local user record linked to an external identity.

    The identity provider owns authentication; we only keep
    the link and the details needed for emails.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    external_id: str = Field(
        ...,
        min_length=1,
        description="Opaque identifier from the identity provider"
    )
    email: str = Field(..., min_length=3, max_length=320)
    name: Optional[str] = Field(default=None, max_length=200)
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class Account(BaseModel):
    """
    A user's account.

    CRITICAL: `balance` is only ever changed by the ledger service
    through a relative increment. There is no setter for it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.CURRENT
    currency: str = Field(default="INR", pattern="^[A-Z]{3}$")
    balance: Decimal = Field(
        ...,
        description="Stored balance (opening balance plus all transactions)"
    )
    opening_balance: Decimal = Field(
        ...,
        description="Balance the account was created with"
    )
    is_default: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Transaction(BaseModel):
    """A single income or expense recorded against an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    user_id: UUID
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    date: date
    description: Optional[str] = Field(default=None, max_length=500)
    receipt_url: Optional[str] = None
    is_recurring: bool = False
    recurring_interval: Optional[RecurringInterval] = None
    next_recurring_date: Optional[date] = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def signed_amount(self) -> Decimal:
        """What this transaction contributes to its account's balance."""
        return -self.amount if self.type == TransactionType.EXPENSE else self.amount


class Budget(BaseModel):
    """
    Monthly spending limit for one account.

    `spent` is a shadow of the month-to-date expenses, refreshed by
    the alert job. `last_alert_sent` keys the once-per-month alert.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    name: str = Field(..., min_length=1, max_length=150)
    category: str = "General"
    amount: Decimal = Field(..., ge=0)
    spent: Decimal = Decimal("0")
    last_alert_sent: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# INPUTS - What callers send us
# =============================================================================

class AccountInput(BaseModel):
    """Data for creating an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.CURRENT
    currency: Optional[str] = Field(default=None, pattern="^[A-Z]{3}$")
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Opening balance (may be negative for credit accounts)"
    )
    is_default: bool = False

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class AccountUpdate(BaseModel):
    """
    Editable account details.

    DESIGN DECISION: balance and currency are not editable.
    The balance belongs to the ledger and the currency fixes
    how every stored amount of the account is scaled.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    is_default: Optional[bool] = None


class TransactionInput(BaseModel):
    """Data for creating or replacing a transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: UUID
    type: TransactionType
    amount: Decimal = Field(..., gt=0, allow_inf_nan=False)
    category: str = Field(..., min_length=1, max_length=100)
    date: date
    description: Optional[str] = Field(default=None, max_length=500)
    receipt_url: Optional[str] = None
    is_recurring: bool = False
    recurring_interval: Optional[RecurringInterval] = None

    @model_validator(mode='after')
    def validate_recurrence(self) -> 'TransactionInput':
        if self.is_recurring and self.recurring_interval is None:
            raise ValueError("Recurring interval is required for recurring transactions")
        return self


# =============================================================================
# RESULTS
# =============================================================================

class ActionResult(BaseModel):
    """
    Structured success/failure returned across the service boundary.

    Domain failures (other than identity and ownership) never escape
    as exceptions; they land here with their error code.
    """

    success: bool
    data: Any = None
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "ActionResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def failure(cls, error: FinoraError) -> "ActionResult":
        return cls(success=False, error=error.message, error_code=error.code)


class BudgetStatus(BaseModel):
    """Budget view for the current month."""

    budget: Optional[Budget] = None
    expenses: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")

    @property
    def percentage_used(self) -> float:
        if self.budget is None or self.budget.amount <= 0:
            return 0.0
        return float(self.expenses / self.budget.amount * 100)


class BalanceCheck(BaseModel):
    """Stored balance compared with the balance implied by history."""

    account_id: UUID
    stored_balance: Decimal
    expected_balance: Decimal
    transaction_count: int = Field(ge=0)

    @property
    def drift(self) -> Decimal:
        return self.stored_balance - self.expected_balance

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


class AccountDetail(BaseModel):
    """An account with its transactions, newest first."""

    account: Account
    transactions: list[Transaction] = Field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return len(self.transactions)
