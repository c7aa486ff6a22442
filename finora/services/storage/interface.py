"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap SQLite for a server database later
2. Keep business logic decoupled from storage implementation
3. Make the atomic unit of work an explicit part of the contract

The interface is intentionally simple - we're not building a full ORM.
Reads are available everywhere. Writes are ONLY available on a
UnitOfWork, so every mutation is forced through an atomic step.

CRITICAL: There is no way to set an account balance. The only
primitive is `adjust_balance`, a relative increment.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from finora.models.audit import AuditEvent
from finora.models.ledger import (
    Account,
    AccountType,
    Budget,
    Transaction,
    TransactionType,
    User,
)


class LedgerReader(ABC):
    """Read operations shared by the storage and by a unit of work."""

    @abstractmethod
    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    async def list_users(self) -> list[User]:
        pass

    @abstractmethod
    async def get_account(
        self,
        account_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Account]:
        """
        Retrieve an account.

        Args:
            account_id: The account's identifier
            user_id: When given, only return the account if this user owns it

        Returns:
            The account if found (and owned), None otherwise
        """
        pass

    @abstractmethod
    async def list_accounts(self, user_id: UUID) -> list[Account]:
        """List a user's accounts, most recently created first."""
        pass

    @abstractmethod
    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: Optional[UUID] = None,
        account_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_ids: Optional[list[UUID]] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters, newest date first.

        Args:
            user_id: Only this user's transactions
            account_id: Only this account's transactions
            transaction_type: EXPENSE or INCOME
            date_from: On or after this date
            date_to: On or before this date
            transaction_ids: Only these ids (an empty list matches nothing)
        """
        pass

    @abstractmethod
    async def sum_transactions(
        self,
        account_id: UUID,
        transaction_type: TransactionType,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Decimal:
        """Sum of amounts of one type on one account, dates inclusive."""
        pass

    @abstractmethod
    async def get_budget(self, account_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def list_budgets(self) -> list[Budget]:
        pass


class UnitOfWork(LedgerReader):
    """
    One atomic step.

    Everything done through a unit of work commits together
    when the context exits cleanly, or not at all.
    """

    @abstractmethod
    async def insert_user(self, user: User) -> None:
        """
        Raises:
            DuplicateError: If the email or external id is taken
        """
        pass

    @abstractmethod
    async def link_external_id(self, user_id: UUID, external_id: str) -> None:
        pass

    @abstractmethod
    async def insert_account(self, account: Account) -> None:
        pass

    @abstractmethod
    async def update_account_details(
        self,
        account_id: UUID,
        name: Optional[str] = None,
        account_type: Optional[AccountType] = None,
    ) -> None:
        pass

    @abstractmethod
    async def clear_default_account(self, user_id: UUID) -> None:
        """Unset the default flag on all of a user's accounts."""
        pass

    @abstractmethod
    async def mark_default_account(self, account_id: UUID) -> None:
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        """Delete an account together with its transactions and budget."""
        pass

    @abstractmethod
    async def adjust_balance(self, account_id: UUID, delta: Decimal) -> None:
        """
        Apply `balance += delta` as a relative increment.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def replace_transaction(self, transaction: Transaction) -> None:
        """
        Overwrite every stored field of an existing transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transactions(self, transaction_ids: list[UUID]) -> int:
        """Delete rows by id and return how many were deleted."""
        pass

    @abstractmethod
    async def insert_budget(self, budget: Budget) -> None:
        pass

    @abstractmethod
    async def update_budget_amount(self, budget_id: UUID, amount: Decimal) -> None:
        pass

    @abstractmethod
    async def record_budget_check(
        self,
        budget_id: UUID,
        spent: Decimal,
        alert_sent_at: Optional[datetime] = None,
    ) -> None:
        """Refresh the spent shadow field, and stamp the alert time if one was sent."""
        pass


class LedgerStorageInterface(LedgerReader):
    """
    Abstract interface for ledger storage.

    Any storage implementation (SQLite, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager[UnitOfWork]:
        """
        Open an atomic unit of work.

        Usage:
            async with storage.unit_of_work() as uow:
                await uow.insert_transaction(txn)
                await uow.adjust_balance(txn.account_id, delta)
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, oldest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
