"""
Ledger Consistency Service

Keeps every account's stored balance equal to its opening balance
plus the signed sum of its transactions:

    balance == opening_balance + sum(+amount for INCOME, -amount for EXPENSE)

DESIGN DECISION: The stored balance is the single source of truth and is
never recomputed on write. Each mutation computes a delta up front and
applies it with a relative increment inside the same unit of work as the
row change, so the two are committed together or not at all.

CRITICAL: Moving a transaction to another account is a move with
compensation on BOTH sides: the origin account gets -old_delta and the
destination gets +new_delta, inside one unit of work.

Error surface:
- Unauthorized / NotFound (identity and ownership) are raised
- Every other FinoraError comes back as a failed ActionResult
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID, uuid4

from finora.audit import AuditLogger, get_logger
from finora.errors import InvalidInput, NotFound, PartialFailure
from finora.identity import IdentityService
from finora.ledger.money import parse_positive_amount, signed_delta
from finora.ledger.recurrence import next_recurring_date
from finora.models.ledger import (
    ActionResult,
    BalanceCheck,
    Transaction,
    TransactionInput,
    TransactionStatus,
    TransactionType,
    utc_now,
)
from finora.services.storage import LedgerStorageInterface, StorageError
from finora.validation import parse_input

logger = get_logger(__name__)


class LedgerService:
    """
    Transaction mutations and the balance arithmetic that goes with them.

    All public operations take the caller's external identity first.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        identity: IdentityService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._identity = identity
        self._audit_logger = audit_logger

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_transaction(
        self,
        external_id: Optional[str],
        data: Union[TransactionInput, dict[str, Any]],
    ) -> ActionResult:
        """
        Record a transaction and apply its delta to the account balance.

        Raises:
            Unauthorized: No identity
            NotFound: User unknown, or account not owned by the caller

        Returns:
            ActionResult with the new Transaction, or a failure with
            INVALID_INPUT for a bad payload or amount, or PARTIAL_FAILURE
            when the write is rolled back
        """
        user = await self._identity.require_user(external_id)

        try:
            payload = parse_input(TransactionInput, data)
            async with self._storage.unit_of_work() as uow:
                account = await uow.get_account(payload.account_id, user.id)
                if account is None:
                    raise NotFound("Account not found")

                amount = parse_positive_amount(payload.amount, account.currency)
                transaction = self._build_transaction(user.id, payload, amount)
                delta = signed_delta(transaction.type, amount)

                await uow.insert_transaction(transaction)
                await uow.adjust_balance(account.id, delta)
        except InvalidInput as e:
            return ActionResult.failure(e)
        except StorageError as e:
            logger.error("create_transaction_failed", error=str(e), account_id=str(payload.account_id))
            return ActionResult.failure(PartialFailure(f"Failed to create transaction: {e}"))

        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                transaction.id, account.id, delta
            )
        return ActionResult.ok(transaction)

    async def update_transaction(
        self,
        external_id: Optional[str],
        transaction_id: UUID,
        data: Union[TransactionInput, dict[str, Any]],
    ) -> ActionResult:
        """
        Replace a transaction and re-balance the accounts it touches.

        Same account:      balance += new_delta - old_delta
        Different account: origin  -= old_delta
                           target  += new_delta

        Raises:
            Unauthorized: No identity
            NotFound: Transaction or target account not owned by the caller
        """
        user = await self._identity.require_user(external_id)

        try:
            payload = parse_input(TransactionInput, data)
            async with self._storage.unit_of_work() as uow:
                existing = await uow.get_transaction(transaction_id, user.id)
                if existing is None:
                    raise NotFound("Transaction not found")
                target = await uow.get_account(payload.account_id, user.id)
                if target is None:
                    raise NotFound("Account not found")

                amount = parse_positive_amount(payload.amount, target.currency)
                old_delta = existing.signed_amount
                new_delta = signed_delta(payload.type, amount)

                adjustments: dict[UUID, Decimal] = {}
                if existing.account_id == target.id:
                    adjustments[target.id] = new_delta - old_delta
                else:
                    adjustments[existing.account_id] = -old_delta
                    adjustments[target.id] = new_delta

                updated = self._build_transaction(
                    user.id,
                    payload,
                    amount,
                    transaction_id=existing.id,
                    created_at=existing.created_at,
                    status=existing.status,
                )
                await uow.replace_transaction(updated)
                for account_id, delta in adjustments.items():
                    if delta != 0:
                        await uow.adjust_balance(account_id, delta)
        except InvalidInput as e:
            return ActionResult.failure(e)
        except StorageError as e:
            logger.error("update_transaction_failed", error=str(e), transaction_id=str(transaction_id))
            return ActionResult.failure(PartialFailure(f"Failed to update transaction: {e}"))

        if self._audit_logger:
            await self._audit_logger.log_transaction_updated(updated.id, adjustments)
        return ActionResult.ok(updated)

    async def delete_transactions(
        self,
        external_id: Optional[str],
        transaction_ids: list[UUID],
    ) -> ActionResult:
        """
        Delete transactions in bulk, compensating each account once.

        Compensation per account is the negated sum of the deleted rows'
        deltas (+amount for EXPENSE, -amount for INCOME). Rows, balances
        and compensations commit together. If any id is not one of the
        caller's transactions, or any write fails, nothing is committed
        and the result carries PARTIAL_FAILURE.
        """
        user = await self._identity.require_user(external_id)

        ids = list(dict.fromkeys(transaction_ids))
        if not ids:
            return ActionResult.ok(
                {"deleted": 0}, message="Successfully deleted 0 transaction(s)"
            )

        compensations: dict[UUID, Decimal] = defaultdict(Decimal)
        try:
            async with self._storage.unit_of_work() as uow:
                rows = await uow.list_transactions(user_id=user.id, transaction_ids=ids)
                if len(rows) != len(ids):
                    raise PartialFailure(
                        f"Only {len(rows)} of {len(ids)} transactions could be found"
                    )

                for row in rows:
                    compensations[row.account_id] -= row.signed_amount

                deleted = await uow.delete_transactions(ids)
                if deleted != len(ids):
                    raise PartialFailure(
                        f"Only {deleted} of {len(ids)} transactions could be deleted"
                    )

                for account_id, delta in compensations.items():
                    if delta != 0:
                        await uow.adjust_balance(account_id, delta)
        except PartialFailure as e:
            logger.warning("bulk_delete_rolled_back", error=e.message, count=len(ids))
            return ActionResult.failure(e)
        except StorageError as e:
            logger.error("bulk_delete_failed", error=str(e), count=len(ids))
            return ActionResult.failure(
                PartialFailure(f"Failed to delete transactions: {e}")
            )

        if self._audit_logger:
            await self._audit_logger.log_transactions_deleted(ids, dict(compensations))
        return ActionResult.ok(
            {"deleted": len(ids)},
            message=f"Successfully deleted {len(ids)} transaction(s)",
        )

    def _build_transaction(
        self,
        user_id: UUID,
        payload: TransactionInput,
        amount: Decimal,
        transaction_id: Optional[UUID] = None,
        created_at: Optional[datetime] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
    ) -> Transaction:
        now = utc_now()
        return Transaction(
            id=transaction_id or uuid4(),
            account_id=payload.account_id,
            user_id=user_id,
            type=payload.type,
            amount=amount,
            category=payload.category,
            date=payload.date,
            description=payload.description,
            receipt_url=payload.receipt_url,
            is_recurring=payload.is_recurring,
            # cleared whenever the transaction stops recurring
            recurring_interval=payload.recurring_interval if payload.is_recurring else None,
            next_recurring_date=next_recurring_date(
                payload.date, payload.is_recurring, payload.recurring_interval
            ),
            status=status,
            created_at=created_at or now,
            updated_at=now,
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def get_transaction(
        self,
        external_id: Optional[str],
        transaction_id: UUID,
    ) -> Transaction:
        """
        Raises:
            NotFound: Missing or not owned by the caller
        """
        user = await self._identity.require_user(external_id)
        transaction = await self._storage.get_transaction(transaction_id, user.id)
        if transaction is None:
            raise NotFound("Transaction not found")
        return transaction

    async def list_transactions(
        self,
        external_id: Optional[str],
        account_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
    ) -> list[Transaction]:
        """The caller's transactions, newest first, optionally filtered."""
        user = await self._identity.require_user(external_id)
        if account_id is not None:
            if await self._storage.get_account(account_id, user.id) is None:
                raise NotFound("Account not found")

        transactions = await self._storage.list_transactions(
            user_id=user.id,
            account_id=account_id,
            transaction_type=transaction_type,
            date_from=date_from,
            date_to=date_to,
        )
        if search:
            needle = search.strip().lower()
            transactions = [
                t for t in transactions
                if needle in (t.description or "").lower() or needle in t.category.lower()
            ]
        return transactions

    async def recalculate_expenses_for_period(
        self,
        account_id: UUID,
        start: date,
        end: date,
    ) -> Decimal:
        """Sum of EXPENSE amounts on an account with start <= date <= end."""
        return await self._storage.sum_transactions(
            account_id, TransactionType.EXPENSE, start, end
        )

    async def check_balance_consistency(
        self,
        external_id: Optional[str],
        account_id: UUID,
    ) -> BalanceCheck:
        """
        Compare the stored balance with opening balance plus history.

        Read only: a drift is reported and audited, never corrected here.
        """
        user = await self._identity.require_user(external_id)

        async with self._storage.unit_of_work() as uow:
            account = await uow.get_account(account_id, user.id)
            if account is None:
                raise NotFound("Account not found")
            history = await uow.list_transactions(account_id=account.id)

        expected = account.opening_balance + sum(
            (t.signed_amount for t in history), Decimal("0")
        )
        check = BalanceCheck(
            account_id=account.id,
            stored_balance=account.balance,
            expected_balance=expected,
            transaction_count=len(history),
        )
        if not check.is_consistent and self._audit_logger:
            await self._audit_logger.log_balance_drift(
                account.id, account.balance, expected
            )
        return check
