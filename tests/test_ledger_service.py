"""
Tests for the ledger service: balance arithmetic on create, update
and delete, and its atomicity.
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import aiosqlite
import pytest

from finora.errors import NotFound, Unauthorized
from finora.services.storage import SQLiteUnitOfWork, StorageError


async def balance_of(storage, account_id) -> Decimal:
    account = await storage.get_account(account_id)
    return account.balance


class TestCreateTransaction:
    """Creating a transaction applies its delta."""

    @pytest.mark.asyncio
    async def test_expense_reduces_balance(self, ledger, storage, make_account, external_id, expense_data):
        account = await make_account("1000.00")

        result = await ledger.create_transaction(external_id, expense_data(account.id, "250.00"))

        assert result.success
        assert result.data.amount == Decimal("250.00")
        assert await balance_of(storage, account.id) == Decimal("750.00")

    @pytest.mark.asyncio
    async def test_income_increases_balance(self, ledger, storage, make_account, external_id, income_data):
        account = await make_account("10.00")

        result = await ledger.create_transaction(external_id, income_data(account.id, "0.01"))

        assert result.success
        assert await balance_of(storage, account.id) == Decimal("10.01")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5", "10.001", "abc"])
    async def test_rejects_bad_amounts(self, ledger, storage, make_account, external_id, expense_data, amount):
        account = await make_account("100.00")

        result = await ledger.create_transaction(external_id, expense_data(account.id, amount))

        assert not result.success
        assert result.error_code == "INVALID_INPUT"
        assert await balance_of(storage, account.id) == Decimal("100.00")
        assert await storage.list_transactions(account_id=account.id) == []

    @pytest.mark.asyncio
    async def test_precision_follows_account_currency(self, ledger, storage, make_account, external_id, expense_data):
        account = await make_account("1000", currency="JPY")

        rejected = await ledger.create_transaction(external_id, expense_data(account.id, "10.5"))
        accepted = await ledger.create_transaction(external_id, expense_data(account.id, "10"))

        assert rejected.error_code == "INVALID_INPUT"
        assert accepted.success
        assert await balance_of(storage, account.id) == Decimal("990")

    @pytest.mark.asyncio
    async def test_missing_identity_is_unauthorized(self, ledger, make_account, expense_data):
        account = await make_account("100.00")

        with pytest.raises(Unauthorized):
            await ledger.create_transaction(None, expense_data(account.id, "1.00"))

    @pytest.mark.asyncio
    async def test_other_users_account_is_not_found(
        self, ledger, storage, make_account, other_user, expense_data
    ):
        account = await make_account("100.00")

        with pytest.raises(NotFound):
            await ledger.create_transaction("user_bob", expense_data(account.id, "1.00"))
        assert await balance_of(storage, account.id) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_recurring_monthly_clamps_to_month_end(self, ledger, make_account, external_id, expense_data):
        account = await make_account("100.00")

        result = await ledger.create_transaction(external_id, expense_data(
            account.id, "5.00",
            date="2024-01-31",
            is_recurring=True,
            recurring_interval="MONTHLY",
        ))

        assert result.data.next_recurring_date == date(2024, 2, 29)

    @pytest.mark.asyncio
    async def test_recurring_requires_interval(self, ledger, make_account, external_id, expense_data):
        account = await make_account("100.00")

        result = await ledger.create_transaction(
            external_id, expense_data(account.id, "5.00", is_recurring=True)
        )

        assert result.error_code == "INVALID_INPUT"
        assert "Recurring interval is required" in result.error

    @pytest.mark.asyncio
    async def test_failed_balance_update_rolls_back_row(
        self, ledger, storage, make_account, external_id, expense_data, monkeypatch
    ):
        account = await make_account("100.00")

        async def broken(self, account_id, delta):
            raise StorageError("disk full")

        monkeypatch.setattr(SQLiteUnitOfWork, "adjust_balance", broken)

        result = await ledger.create_transaction(external_id, expense_data(account.id, "40.00"))

        assert result.error_code == "PARTIAL_FAILURE"
        assert "disk full" in result.error
        assert await storage.list_transactions(account_id=account.id) == []
        assert await balance_of(storage, account.id) == Decimal("100.00")


class TestUpdateTransaction:
    """Updating reverses the old delta and applies the new one."""

    @pytest.mark.asyncio
    async def test_expense_to_income_same_account(
        self, ledger, storage, make_account, external_id, expense_data, income_data
    ):
        account = await make_account("1000.00")
        created = await ledger.create_transaction(external_id, expense_data(account.id, "250.00"))
        assert await balance_of(storage, account.id) == Decimal("750.00")

        result = await ledger.update_transaction(
            external_id, created.data.id, income_data(account.id, "100.00")
        )

        assert result.success
        assert result.data.id == created.data.id
        assert result.data.created_at == created.data.created_at
        assert await balance_of(storage, account.id) == Decimal("1100.00")

    @pytest.mark.asyncio
    async def test_move_compensates_both_accounts(
        self, ledger, storage, make_account, external_id, expense_data
    ):
        origin = await make_account("500.00", name="Origin")
        target = await make_account("300.00", name="Target")
        created = await ledger.create_transaction(external_id, expense_data(origin.id, "50.00"))

        result = await ledger.update_transaction(
            external_id, created.data.id, expense_data(target.id, "70.00")
        )

        assert result.success
        assert result.data.account_id == target.id
        assert await balance_of(storage, origin.id) == Decimal("500.00")
        assert await balance_of(storage, target.id) == Decimal("230.00")

    @pytest.mark.asyncio
    async def test_stopping_recurrence_clears_schedule(self, ledger, make_account, external_id, expense_data):
        account = await make_account("100.00")
        created = await ledger.create_transaction(external_id, expense_data(
            account.id, "5.00", is_recurring=True, recurring_interval="WEEKLY"
        ))
        assert created.data.next_recurring_date == date(2024, 3, 17)

        result = await ledger.update_transaction(
            external_id, created.data.id, expense_data(account.id, "5.00", recurring_interval="WEEKLY")
        )

        assert result.data.is_recurring is False
        assert result.data.recurring_interval is None
        assert result.data.next_recurring_date is None

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_everything(self, ledger, storage, make_account, external_id, expense_data):
        account = await make_account("100.00")
        created = await ledger.create_transaction(external_id, expense_data(account.id, "10.00"))

        result = await ledger.update_transaction(
            external_id, created.data.id, expense_data(account.id, "-3")
        )

        assert result.error_code == "INVALID_INPUT"
        stored = await storage.get_transaction(created.data.id)
        assert stored.amount == Decimal("10.00")
        assert await balance_of(storage, account.id) == Decimal("90.00")

    @pytest.mark.asyncio
    async def test_locked_database_returns_failure(
        self, ledger, storage, make_account, external_id, expense_data, monkeypatch
    ):
        origin = await make_account("100.00", name="Origin")
        target = await make_account("50.00", name="Target")
        created = await ledger.create_transaction(external_id, expense_data(origin.id, "10.00"))

        async def locked(self, account_id, delta):
            raise aiosqlite.OperationalError("database is locked")

        monkeypatch.setattr(SQLiteUnitOfWork, "adjust_balance", locked)
        result = await ledger.update_transaction(
            external_id, created.data.id, expense_data(target.id, "30.00")
        )

        assert result.error_code == "PARTIAL_FAILURE"
        assert "database is locked" in result.error
        stored = await storage.get_transaction(created.data.id)
        assert stored.account_id == origin.id
        assert await balance_of(storage, origin.id) == Decimal("90.00")
        assert await balance_of(storage, target.id) == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_not_found(self, ledger, make_account, external_id, expense_data):
        account = await make_account("100.00")

        with pytest.raises(NotFound):
            await ledger.update_transaction(external_id, uuid4(), expense_data(account.id, "1.00"))


class TestDeleteTransactions:
    """Bulk delete compensates every account in one unit of work."""

    @pytest.mark.asyncio
    async def test_bulk_delete_across_accounts(
        self, ledger, storage, make_account, external_id, expense_data, income_data
    ):
        a = await make_account("550.00", name="A")
        b = await make_account("280.00", name="B")
        spent = await ledger.create_transaction(external_id, expense_data(a.id, "50.00"))
        earned = await ledger.create_transaction(external_id, income_data(b.id, "20.00"))
        assert await balance_of(storage, a.id) == Decimal("500.00")
        assert await balance_of(storage, b.id) == Decimal("300.00")

        result = await ledger.delete_transactions(external_id, [spent.data.id, earned.data.id])

        assert result.success
        assert result.data == {"deleted": 2}
        assert result.message == "Successfully deleted 2 transaction(s)"
        assert await balance_of(storage, a.id) == Decimal("550.00")
        assert await balance_of(storage, b.id) == Decimal("280.00")

    @pytest.mark.asyncio
    async def test_create_then_delete_round_trips(self, ledger, storage, make_account, external_id, expense_data):
        account = await make_account("0.30")
        created = await ledger.create_transaction(external_id, expense_data(account.id, "0.10"))
        await ledger.create_transaction(external_id, expense_data(account.id, "0.20"))

        await ledger.delete_transactions(external_id, [created.data.id])

        assert await balance_of(storage, account.id) == Decimal("0.10")

    @pytest.mark.asyncio
    async def test_foreign_id_fails_without_deleting(
        self, ledger, storage, make_account, external_id, expense_data
    ):
        account = await make_account("100.00")
        created = await ledger.create_transaction(external_id, expense_data(account.id, "10.00"))

        result = await ledger.delete_transactions(external_id, [created.data.id, uuid4()])

        assert not result.success
        assert result.error_code == "PARTIAL_FAILURE"
        assert await storage.get_transaction(created.data.id) is not None
        assert await balance_of(storage, account.id) == Decimal("90.00")

    @pytest.mark.asyncio
    async def test_storage_failure_rolls_back(
        self, ledger, storage, make_account, external_id, expense_data, monkeypatch
    ):
        account = await make_account("100.00")
        created = await ledger.create_transaction(external_id, expense_data(account.id, "10.00"))

        async def broken(self, account_id, delta):
            raise StorageError("disk full")

        monkeypatch.setattr(SQLiteUnitOfWork, "adjust_balance", broken)
        result = await ledger.delete_transactions(external_id, [created.data.id])

        assert result.error_code == "PARTIAL_FAILURE"
        assert await storage.get_transaction(created.data.id) is not None
        assert await balance_of(storage, account.id) == Decimal("90.00")

    @pytest.mark.asyncio
    async def test_empty_and_duplicate_ids(self, ledger, storage, make_account, external_id, expense_data):
        account = await make_account("100.00")
        created = await ledger.create_transaction(external_id, expense_data(account.id, "10.00"))

        empty = await ledger.delete_transactions(external_id, [])
        doubled = await ledger.delete_transactions(external_id, [created.data.id, created.data.id])

        assert empty.data == {"deleted": 0}
        assert doubled.data == {"deleted": 1}
        assert await balance_of(storage, account.id) == Decimal("100.00")


class TestReadsAndConsistency:
    """Listing, period sums and the balance invariant."""

    @pytest.mark.asyncio
    async def test_list_newest_first_with_search(
        self, ledger, make_account, external_id, expense_data, income_data
    ):
        account = await make_account("100.00")
        await ledger.create_transaction(external_id, expense_data(account.id, "1.00", date="2024-01-01"))
        await ledger.create_transaction(external_id, income_data(
            account.id, "2.00", date="2024-02-01", description="March bonus"
        ))

        listed = await ledger.list_transactions(external_id, account_id=account.id)
        found = await ledger.list_transactions(external_id, search="BONUS")

        assert [t.date for t in listed] == [date(2024, 2, 1), date(2024, 1, 1)]
        assert [t.description for t in found] == ["March bonus"]

    @pytest.mark.asyncio
    async def test_get_transaction_of_other_user_is_not_found(
        self, ledger, make_account, external_id, other_user, expense_data
    ):
        account = await make_account("100.00")
        created = await ledger.create_transaction(external_id, expense_data(account.id, "1.00"))

        with pytest.raises(NotFound):
            await ledger.get_transaction("user_bob", created.data.id)

    @pytest.mark.asyncio
    async def test_expenses_for_period_are_inclusive(
        self, ledger, make_account, external_id, expense_data, income_data
    ):
        account = await make_account("100.00")
        for day, amount in (("2024-03-01", "1.00"), ("2024-03-31", "2.00"), ("2024-04-01", "4.00")):
            await ledger.create_transaction(external_id, expense_data(account.id, amount, date=day))
        await ledger.create_transaction(external_id, income_data(account.id, "8.00", date="2024-03-15"))

        total = await ledger.recalculate_expenses_for_period(
            account.id, date(2024, 3, 1), date(2024, 3, 31)
        )

        assert total == Decimal("3.00")

    @pytest.mark.asyncio
    async def test_balance_matches_history_after_mixed_operations(
        self, ledger, make_account, external_id, expense_data, income_data
    ):
        a = await make_account("1000.00", name="A")
        b = await make_account("-200.00", name="B")

        first = await ledger.create_transaction(external_id, expense_data(a.id, "19.99"))
        second = await ledger.create_transaction(external_id, income_data(a.id, "350.10"))
        third = await ledger.create_transaction(external_id, expense_data(b.id, "0.01"))
        await ledger.update_transaction(external_id, first.data.id, income_data(b.id, "5.55"))
        await ledger.update_transaction(external_id, third.data.id, expense_data(a.id, "12.00"))
        await ledger.delete_transactions(external_id, [second.data.id])

        for account in (a, b):
            check = await ledger.check_balance_consistency(external_id, account.id)
            assert check.is_consistent, check
        check_a = await ledger.check_balance_consistency(external_id, a.id)
        check_b = await ledger.check_balance_consistency(external_id, b.id)
        assert check_a.stored_balance == Decimal("988.00")
        assert check_b.stored_balance == Decimal("-194.45")

    @pytest.mark.asyncio
    async def test_balance_holds_under_interleaved_mutations(
        self, ledger, storage, user, make_account, external_id, expense_data, income_data
    ):
        a = await make_account("1000.00", name="A")
        b = await make_account("500.00", name="B")

        created = await asyncio.gather(*(
            ledger.create_transaction(
                external_id,
                expense_data(a.id, f"{i + 1}.25") if i % 2 else income_data(b.id, f"{i + 1}.10"),
            )
            for i in range(30)
        ))
        assert all(result.success for result in created)
        ids = [result.data.id for result in created]

        moves = [
            ledger.update_transaction(
                external_id, transaction_id, expense_data(b.id if i % 2 else a.id, "3.33")
            )
            for i, transaction_id in enumerate(ids[:10])
        ]
        results = await asyncio.gather(
            *moves,
            ledger.delete_transactions(external_id, ids[10:20]),
            ledger.create_transaction(external_id, income_data(a.id, "99.99")),
        )
        assert all(result.success for result in results)

        for account in (a, b):
            check = await ledger.check_balance_consistency(external_id, account.id)
            assert check.is_consistent, check
        remaining = await storage.list_transactions(user_id=user.id)
        assert len(remaining) == 21

    @pytest.mark.asyncio
    async def test_drift_is_reported_not_repaired(
        self, ledger, storage, make_account, external_id, audit_storage
    ):
        account = await make_account("100.00")
        async with storage.unit_of_work() as uow:
            await uow.adjust_balance(account.id, Decimal("1.00"))

        check = await ledger.check_balance_consistency(external_id, account.id)

        assert check.drift == Decimal("1.00")
        assert await balance_of(storage, account.id) == Decimal("101.00")
        events = await audit_storage.get_events_by_entity("account", account.id)
        assert any(e.event_type.value == "balance_drift_detected" for e in events)
