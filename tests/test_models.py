"""
Tests for Finora

Test strategy:
1. Unit tests for individual components (models, validators, parsers)
2. Integration tests for flows against a temporary SQLite database
3. No real API calls in tests (Gemini and SMTP are faked)
"""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from finora.errors import InvalidInput, NotFound, PartialFailure
from finora.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finora.models.extraction import ImportPreview, ColumnMapping, ReceiptData
from finora.models.ledger import (
    Account,
    AccountInput,
    ActionResult,
    BalanceCheck,
    Budget,
    BudgetStatus,
    TransactionInput,
    TransactionType,
)
from finora.validation import parse_budget_amount, parse_input, parse_signed_amount


class TestLedgerModels:
    """Tests for ledger Pydantic models."""

    def test_account_input_uppercases_currency(self):
        """Test that currency codes are normalised."""
        data = AccountInput(name="  Wallet  ", currency=" usd ")
        assert data.name == "Wallet"
        assert data.currency == "USD"

    def test_account_rejects_bad_currency(self):
        """Test that a currency must be a 3-letter code."""
        with pytest.raises(ValueError):
            Account(
                user_id=uuid4(),
                name="Wallet",
                currency="RUPEES",
                balance=Decimal("0"),
                opening_balance=Decimal("0"),
            )

    def test_transaction_input_requires_positive_amount(self):
        """Test that amounts must be positive; the type carries the sign."""
        with pytest.raises(ValueError):
            TransactionInput(
                account_id=uuid4(),
                type=TransactionType.EXPENSE,
                amount=Decimal("-5"),
                category="food",
                date=date(2024, 3, 1),
            )

    def test_recurring_needs_interval(self):
        """Test that recurring transactions must say how often."""
        with pytest.raises(ValueError, match="Recurring interval is required"):
            TransactionInput(
                account_id=uuid4(),
                type="INCOME",
                amount="10",
                category="salary",
                date="2024-03-01",
                is_recurring=True,
            )

    def test_budget_status_percentage(self):
        """Test percentage used, including a zero budget."""
        budget = Budget(account_id=uuid4(), name="Main Budget", amount=Decimal("400"))
        status = BudgetStatus(budget=budget, expenses=Decimal("100"), remaining=Decimal("300"))
        assert status.percentage_used == 25.0

        empty = BudgetStatus(budget=budget.model_copy(update={"amount": Decimal("0")}))
        assert empty.percentage_used == 0.0

    def test_balance_check_drift(self):
        """Test drift is stored minus expected."""
        check = BalanceCheck(
            account_id=uuid4(),
            stored_balance=Decimal("105.00"),
            expected_balance=Decimal("100.00"),
            transaction_count=3,
        )
        assert check.drift == Decimal("5.00")
        assert not check.is_consistent


class TestActionResult:
    """Tests for the service-boundary result."""

    def test_failure_carries_code(self):
        result = ActionResult.failure(PartialFailure("Some transactions were not found"))

        assert not result.success
        assert result.error == "Some transactions were not found"
        assert result.error_code == "PARTIAL_FAILURE"

    def test_ok(self):
        result = ActionResult.ok({"id": 1}, message="done")

        assert result.success
        assert result.error_code is None


class TestExtractionModels:
    """Tests for proposed (unverified) data."""

    def test_receipt_defaults(self):
        receipt = ReceiptData(amount=Decimal("10"), date=date(2024, 1, 1), description="Tea")
        assert receipt.merchant_name == "Unknown merchant"
        assert receipt.category == "other-expense"

    def test_mapping_rejects_negative_index(self):
        with pytest.raises(ValueError):
            ColumnMapping(date_index=-1)

    def test_preview_message(self):
        preview = ImportPreview(mapping=ColumnMapping(date_index=0, amount_index=1))
        assert preview.message == "Found 0 transactions in the file"


class TestValidation:
    """Tests for the two validation stages."""

    def test_parse_input_reports_first_issue(self):
        with pytest.raises(InvalidInput, match="Invalid name"):
            parse_input(AccountInput, {"name": ""})

    def test_parse_input_strips_value_error_prefix(self):
        with pytest.raises(InvalidInput) as info:
            parse_input(TransactionInput, {
                "account_id": str(uuid4()),
                "type": "EXPENSE",
                "amount": "5",
                "category": "food",
                "date": "2024-03-01",
                "is_recurring": True,
            })
        assert info.value.message == "Recurring interval is required for recurring transactions"

    def test_parse_input_passes_models_through(self):
        data = AccountInput(name="Wallet")
        assert parse_input(AccountInput, data) is data

    def test_signed_amount(self):
        assert parse_signed_amount("-1,500.50", "INR") == Decimal("-1500.50")
        with pytest.raises(InvalidInput):
            parse_signed_amount("1.5", "JPY")

    def test_budget_amount(self):
        assert parse_budget_amount("0", "INR") == Decimal("0.00")
        with pytest.raises(InvalidInput):
            parse_budget_amount("-10", "INR")

    def test_error_codes(self):
        assert NotFound("x").code == "NOT_FOUND"
        assert InvalidInput("x").message == "x"


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.TRANSACTION_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None
        assert event.timestamp is not None

    def test_audit_event_to_row(self):
        """Test row conversion for the audit_log table."""
        account_id = uuid4()
        event = AuditEventBuilder.balance_drift_detected(account_id, "105.00", "100.00")

        row = event.to_row()

        assert len(row) == 12
        assert row[2] == "balance_drift_detected"
        assert row[3] == "error"
        assert row[5] == str(account_id)
        assert json.loads(row[8]) == {"stored": "105.00", "expected": "100.00"}
        assert row[11] == 0

    def test_builder_transaction_created(self):
        """Test builder for a created transaction."""
        transaction_id, account_id = uuid4(), uuid4()
        event = AuditEventBuilder.transaction_created(transaction_id, account_id, "-250.00")

        assert event.entity_type == "transaction"
        assert event.entity_id == transaction_id
        assert event.details["delta"] == "-250.00"
        assert event.is_user_action

    def test_builder_account_deleted_is_warning(self):
        event = AuditEventBuilder.account_deleted(uuid4(), None)

        assert event.severity == AuditSeverity.WARNING
        assert event.details["promoted_default"] is None
