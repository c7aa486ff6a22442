"""
Input Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking, required fields, formats
- Done by the pydantic input models

STAGE 2 - CURRENCY VALIDATION:
- Amounts checked against the account's currency
- Needs the account, so it runs after ownership is established

IMPORTANT: Validation NEVER silently fixes issues. An over-precise
amount is rejected, not rounded.
"""

from decimal import Decimal
from typing import Any, TypeVar, Union

from pydantic import BaseModel, ValidationError

from finora.errors import InvalidInput
from finora.ledger.money import ensure_precision, to_decimal

ModelT = TypeVar("ModelT", bound=BaseModel)


def _describe(error: ValidationError) -> str:
    """First validation issue as a short user-facing message."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
    message = first.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"Invalid {field}: {message}" if field else message


def parse_input(model: type[ModelT], data: Union[ModelT, dict[str, Any]]) -> ModelT:
    """
    Stage 1: coerce caller data into an input model.

    Raises:
        InvalidInput: With the first schema issue found
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidInput(_describe(e)) from e


def parse_signed_amount(value: Any, currency: str, field: str = "balance") -> Decimal:
    """Stage 2 for amounts that may be negative (opening balances)."""
    return ensure_precision(to_decimal(value, field), currency, field)


def parse_budget_amount(value: Any, currency: str) -> Decimal:
    """Stage 2 for budget limits: non-negative, within currency precision."""
    amount = to_decimal(value, "budget amount")
    if amount < 0:
        raise InvalidInput("Invalid budget amount.")
    return ensure_precision(amount, currency, "budget amount")
