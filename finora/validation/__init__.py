"""Validation package."""

from finora.validation.validator import (
    parse_budget_amount,
    parse_input,
    parse_signed_amount,
)

__all__ = ["parse_budget_amount", "parse_input", "parse_signed_amount"]
