"""
SQLite Storage Implementation

Ledger and audit storage on a single aiosqlite connection in WAL mode.

DESIGN DECISION: The connection runs in autocommit mode
(isolation_level=None) and every write goes through an explicit
BEGIN IMMEDIATE ... COMMIT. A failure anywhere inside the block rolls
everything back, so a unit of work is all-or-nothing.

CRITICAL: One asyncio.Lock guards the connection. Units of work and
reads are serialized through it, so two concurrent units can never
interleave their statements. The lock is not re-entrant: inside a
unit of work, read through the unit of work, never through the storage.

Amounts are stored as integer minor units of the account's currency.
Balances are changed only by `balance_minor = balance_minor + ?`.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, Optional, Union
from uuid import UUID

import aiosqlite
import structlog

from finora.ledger.money import from_minor_units, to_minor_units
from finora.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finora.models.ledger import (
    Account,
    AccountType,
    Budget,
    RecurringInterval,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    utc_now,
)
from finora.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerReader,
    LedgerStorageInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    UnitOfWork,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# SCHEMA
# =============================================================================

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    image_url TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    currency TEXT NOT NULL,
    balance_minor INTEGER NOT NULL,
    opening_balance_minor INTEGER NOT NULL,
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    amount_minor INTEGER NOT NULL CHECK (amount_minor > 0),
    category TEXT NOT NULL,
    date TEXT NOT NULL,
    description TEXT,
    receipt_url TEXT,
    is_recurring INTEGER NOT NULL DEFAULT 0,
    recurring_interval TEXT,
    next_recurring_date TEXT,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_account_date
    ON transactions(account_id, date);
CREATE INDEX IF NOT EXISTS idx_transactions_user_date
    ON transactions(user_id, date);

CREATE TABLE IF NOT EXISTS budgets (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL UNIQUE REFERENCES accounts(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    amount_minor INTEGER NOT NULL CHECK (amount_minor >= 0),
    spent_minor INTEGER NOT NULL DEFAULT 0,
    last_alert_sent TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_code TEXT,
    error_message TEXT,
    is_user_action INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_log(correlation_id);
"""


# =============================================================================
# CONNECTION
# =============================================================================

class SQLiteDatabase:
    """
    Owns the aiosqlite connection and the lock that serializes it.

    Usage:
        db = SQLiteDatabase("data/finora.db")
        await db.connect()
        await db.init_schema()

        async with db.transaction() as conn:
            await conn.execute("INSERT INTO ...")

        await db.close()
    """

    def __init__(self, db_path: Union[Path, str], busy_timeout_ms: int = 30000):
        self.db_path = str(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        if self._conn is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            await conn.execute("PRAGMA foreign_keys=ON")
        except aiosqlite.Error as e:
            raise StorageConnectionError(f"Could not open {self.db_path}: {e}") from e

        self._conn = conn
        logger.info("sqlite_connection_opened", db_path=self.db_path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("sqlite_connection_closed", db_path=self.db_path)

    async def init_schema(self) -> None:
        async with self._lock:
            await self._connection().executescript(SCHEMA)
        logger.info("sqlite_schema_initialized", db_path=self.db_path)

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageConnectionError("Not connected to database")
        return self._conn

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[aiosqlite.Connection]:
        """Exclusive access to the connection for reads."""
        async with self._lock:
            yield self._connection()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Atomic block: commits on clean exit, rolls back on any exception.

        SQLite errors are re-raised as StorageError; any other exception
        (including domain errors raised by the caller) propagates unchanged
        after the rollback.
        """
        async with self._lock:
            conn = self._connection()
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except aiosqlite.Error as e:
                await conn.execute("ROLLBACK")
                logger.warning("transaction_rolled_back", error=str(e))
                raise StorageError(str(e)) from e
            except BaseException:
                await conn.execute("ROLLBACK")
                logger.warning("transaction_rolled_back")
                raise
            else:
                try:
                    await conn.execute("COMMIT")
                except aiosqlite.Error as e:
                    await conn.execute("ROLLBACK")
                    raise StorageError(f"Commit failed: {e}") from e

    async def __aenter__(self) -> "SQLiteDatabase":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# =============================================================================
# ROW MAPPING
# =============================================================================

def _uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None


def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_user(row: aiosqlite.Row) -> User:
    return User(
        id=UUID(row["id"]),
        external_id=row["external_id"],
        email=row["email"],
        name=row["name"],
        image_url=row["image_url"],
        created_at=_datetime(row["created_at"]),
    )


def _row_to_account(row: aiosqlite.Row) -> Account:
    currency = row["currency"]
    return Account(
        id=UUID(row["id"]),
        user_id=UUID(row["user_id"]),
        name=row["name"],
        type=AccountType(row["type"]),
        currency=currency,
        balance=from_minor_units(row["balance_minor"], currency),
        opening_balance=from_minor_units(row["opening_balance_minor"], currency),
        is_default=bool(row["is_default"]),
        created_at=_datetime(row["created_at"]),
        updated_at=_datetime(row["updated_at"]),
    )


def _row_to_transaction(row: aiosqlite.Row) -> Transaction:
    return Transaction(
        id=UUID(row["id"]),
        account_id=UUID(row["account_id"]),
        user_id=UUID(row["user_id"]),
        type=TransactionType(row["type"]),
        amount=from_minor_units(row["amount_minor"], row["currency"]),
        category=row["category"],
        date=_date(row["date"]),
        description=row["description"],
        receipt_url=row["receipt_url"],
        is_recurring=bool(row["is_recurring"]),
        recurring_interval=(
            RecurringInterval(row["recurring_interval"])
            if row["recurring_interval"] else None
        ),
        next_recurring_date=_date(row["next_recurring_date"]),
        status=TransactionStatus(row["status"]),
        created_at=_datetime(row["created_at"]),
        updated_at=_datetime(row["updated_at"]),
    )


def _row_to_budget(row: aiosqlite.Row) -> Budget:
    currency = row["currency"]
    return Budget(
        id=UUID(row["id"]),
        account_id=UUID(row["account_id"]),
        name=row["name"],
        category=row["category"],
        amount=from_minor_units(row["amount_minor"], currency),
        spent=from_minor_units(row["spent_minor"], currency),
        last_alert_sent=_datetime(row["last_alert_sent"]),
        created_at=_datetime(row["created_at"]),
        updated_at=_datetime(row["updated_at"]),
    )


def _row_to_event(row: aiosqlite.Row) -> AuditEvent:
    return AuditEvent(
        event_id=UUID(row["event_id"]),
        timestamp=_datetime(row["timestamp"]),
        event_type=AuditEventType(row["event_type"]),
        severity=AuditSeverity(row["severity"]),
        entity_type=row["entity_type"],
        entity_id=_uuid(row["entity_id"]),
        correlation_id=_uuid(row["correlation_id"]),
        description=row["description"],
        details=json.loads(row["details_json"]) if row["details_json"] else {},
        error_code=row["error_code"],
        error_message=row["error_message"],
        is_user_action=bool(row["is_user_action"]),
    )


TRANSACTION_SELECT = (
    "SELECT t.*, a.currency AS currency FROM transactions t "
    "JOIN accounts a ON a.id = t.account_id"
)

BUDGET_SELECT = (
    "SELECT b.*, a.currency AS currency FROM budgets b "
    "JOIN accounts a ON a.id = b.account_id"
)


# =============================================================================
# QUERIES BOUND TO A CONNECTION
# =============================================================================

class SQLiteUnitOfWork(UnitOfWork):
    """
    Reads and writes on a connection the caller already holds.

    Obtained from SQLiteLedgerStorage.unit_of_work() (inside BEGIN
    IMMEDIATE) and used internally for lock-holding reads.
    """

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def _fetchone(self, sql: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        async with self._conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self._conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def _currency_of(self, account_id: UUID) -> str:
        row = await self._fetchone(
            "SELECT currency FROM accounts WHERE id = ?", (str(account_id),)
        )
        if row is None:
            raise NotFoundError(f"Account {account_id} not found")
        return row["currency"]

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        row = await self._fetchone("SELECT * FROM users WHERE id = ?", (str(user_id),))
        return _row_to_user(row) if row else None

    async def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        row = await self._fetchone(
            "SELECT * FROM users WHERE external_id = ?", (external_id,)
        )
        return _row_to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        row = await self._fetchone(
            "SELECT * FROM users WHERE email = ? COLLATE NOCASE", (email,)
        )
        return _row_to_user(row) if row else None

    async def list_users(self) -> list[User]:
        rows = await self._fetchall("SELECT * FROM users ORDER BY created_at")
        return [_row_to_user(r) for r in rows]

    async def insert_user(self, user: User) -> None:
        try:
            await self._conn.execute(
                "INSERT INTO users (id, external_id, email, name, image_url, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    str(user.id),
                    user.external_id,
                    user.email,
                    user.name,
                    user.image_url,
                    user.created_at.isoformat(),
                ),
            )
        except aiosqlite.IntegrityError as e:
            raise DuplicateError(f"User already exists: {user.email}") from e

    async def link_external_id(self, user_id: UUID, external_id: str) -> None:
        cursor = await self._conn.execute(
            "UPDATE users SET external_id = ? WHERE id = ?",
            (external_id, str(user_id)),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def get_account(
        self,
        account_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Account]:
        sql = "SELECT * FROM accounts WHERE id = ?"
        params: tuple = (str(account_id),)
        if user_id is not None:
            sql += " AND user_id = ?"
            params += (str(user_id),)
        row = await self._fetchone(sql, params)
        return _row_to_account(row) if row else None

    async def list_accounts(self, user_id: UUID) -> list[Account]:
        rows = await self._fetchall(
            "SELECT * FROM accounts WHERE user_id = ? "
            "ORDER BY created_at DESC, rowid DESC",
            (str(user_id),),
        )
        return [_row_to_account(r) for r in rows]

    async def insert_account(self, account: Account) -> None:
        await self._conn.execute(
            "INSERT INTO accounts (id, user_id, name, type, currency, balance_minor, "
            "opening_balance_minor, is_default, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(account.id),
                str(account.user_id),
                account.name,
                account.type.value,
                account.currency,
                to_minor_units(account.balance, account.currency),
                to_minor_units(account.opening_balance, account.currency),
                int(account.is_default),
                account.created_at.isoformat(),
                account.updated_at.isoformat(),
            ),
        )

    async def update_account_details(
        self,
        account_id: UUID,
        name: Optional[str] = None,
        account_type: Optional[AccountType] = None,
    ) -> None:
        assignments = ["updated_at = ?"]
        params: list = [utc_now().isoformat()]
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        if account_type is not None:
            assignments.append("type = ?")
            params.append(account_type.value)
        params.append(str(account_id))

        cursor = await self._conn.execute(
            f"UPDATE accounts SET {', '.join(assignments)} WHERE id = ?",
            tuple(params),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Account {account_id} not found")

    async def clear_default_account(self, user_id: UUID) -> None:
        await self._conn.execute(
            "UPDATE accounts SET is_default = 0, updated_at = ? "
            "WHERE user_id = ? AND is_default = 1",
            (utc_now().isoformat(), str(user_id)),
        )

    async def mark_default_account(self, account_id: UUID) -> None:
        cursor = await self._conn.execute(
            "UPDATE accounts SET is_default = 1, updated_at = ? WHERE id = ?",
            (utc_now().isoformat(), str(account_id)),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Account {account_id} not found")

    async def delete_account(self, account_id: UUID) -> bool:
        # transactions and budget go with it (ON DELETE CASCADE)
        cursor = await self._conn.execute(
            "DELETE FROM accounts WHERE id = ?", (str(account_id),)
        )
        return cursor.rowcount > 0

    async def adjust_balance(self, account_id: UUID, delta: Decimal) -> None:
        currency = await self._currency_of(account_id)
        delta_minor = to_minor_units(delta, currency)
        await self._conn.execute(
            "UPDATE accounts SET balance_minor = balance_minor + ?, updated_at = ? "
            "WHERE id = ?",
            (delta_minor, utc_now().isoformat(), str(account_id)),
        )

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        sql = f"{TRANSACTION_SELECT} WHERE t.id = ?"
        params: tuple = (str(transaction_id),)
        if user_id is not None:
            sql += " AND t.user_id = ?"
            params += (str(user_id),)
        row = await self._fetchone(sql, params)
        return _row_to_transaction(row) if row else None

    async def list_transactions(
        self,
        user_id: Optional[UUID] = None,
        account_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_ids: Optional[list[UUID]] = None,
    ) -> list[Transaction]:
        clauses: list[str] = []
        params: list = []
        if transaction_ids is not None:
            if not transaction_ids:
                return []
            clauses.append(f"t.id IN ({', '.join('?' for _ in transaction_ids)})")
            params.extend(str(t) for t in transaction_ids)
        if user_id is not None:
            clauses.append("t.user_id = ?")
            params.append(str(user_id))
        if account_id is not None:
            clauses.append("t.account_id = ?")
            params.append(str(account_id))
        if transaction_type is not None:
            clauses.append("t.type = ?")
            params.append(transaction_type.value)
        if date_from is not None:
            clauses.append("t.date >= ?")
            params.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("t.date <= ?")
            params.append(date_to.isoformat())

        sql = TRANSACTION_SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY t.date DESC, t.created_at DESC, t.rowid DESC"

        rows = await self._fetchall(sql, tuple(params))
        return [_row_to_transaction(r) for r in rows]

    async def sum_transactions(
        self,
        account_id: UUID,
        transaction_type: TransactionType,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Decimal:
        row = await self._fetchone(
            "SELECT currency FROM accounts WHERE id = ?", (str(account_id),)
        )
        if row is None:
            return Decimal("0")
        currency = row["currency"]

        sql = (
            "SELECT COALESCE(SUM(amount_minor), 0) AS total FROM transactions "
            "WHERE account_id = ? AND type = ?"
        )
        params: list = [str(account_id), transaction_type.value]
        if date_from is not None:
            sql += " AND date >= ?"
            params.append(date_from.isoformat())
        if date_to is not None:
            sql += " AND date <= ?"
            params.append(date_to.isoformat())

        total = await self._fetchone(sql, tuple(params))
        return from_minor_units(total["total"], currency)

    async def insert_transaction(self, transaction: Transaction) -> None:
        currency = await self._currency_of(transaction.account_id)
        await self._conn.execute(
            "INSERT INTO transactions (id, account_id, user_id, type, amount_minor, "
            "category, date, description, receipt_url, is_recurring, "
            "recurring_interval, next_recurring_date, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(transaction.id),
                *self._transaction_values(transaction, currency),
                transaction.created_at.isoformat(),
                transaction.updated_at.isoformat(),
            ),
        )

    async def replace_transaction(self, transaction: Transaction) -> None:
        currency = await self._currency_of(transaction.account_id)
        cursor = await self._conn.execute(
            "UPDATE transactions SET account_id = ?, user_id = ?, type = ?, "
            "amount_minor = ?, category = ?, date = ?, description = ?, "
            "receipt_url = ?, is_recurring = ?, recurring_interval = ?, "
            "next_recurring_date = ?, status = ?, updated_at = ? WHERE id = ?",
            (
                *self._transaction_values(transaction, currency),
                transaction.updated_at.isoformat(),
                str(transaction.id),
            ),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Transaction {transaction.id} not found")

    @staticmethod
    def _transaction_values(transaction: Transaction, currency: str) -> tuple:
        return (
            str(transaction.account_id),
            str(transaction.user_id),
            transaction.type.value,
            to_minor_units(transaction.amount, currency),
            transaction.category,
            transaction.date.isoformat(),
            transaction.description,
            transaction.receipt_url,
            int(transaction.is_recurring),
            transaction.recurring_interval.value if transaction.recurring_interval else None,
            transaction.next_recurring_date.isoformat() if transaction.next_recurring_date else None,
            transaction.status.value,
        )

    async def delete_transactions(self, transaction_ids: list[UUID]) -> int:
        if not transaction_ids:
            return 0
        placeholders = ", ".join("?" for _ in transaction_ids)
        cursor = await self._conn.execute(
            f"DELETE FROM transactions WHERE id IN ({placeholders})",
            tuple(str(t) for t in transaction_ids),
        )
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def get_budget(self, account_id: UUID) -> Optional[Budget]:
        row = await self._fetchone(
            f"{BUDGET_SELECT} WHERE b.account_id = ?", (str(account_id),)
        )
        return _row_to_budget(row) if row else None

    async def list_budgets(self) -> list[Budget]:
        rows = await self._fetchall(f"{BUDGET_SELECT} ORDER BY b.created_at")
        return [_row_to_budget(r) for r in rows]

    async def insert_budget(self, budget: Budget) -> None:
        currency = await self._currency_of(budget.account_id)
        try:
            await self._conn.execute(
                "INSERT INTO budgets (id, account_id, name, category, amount_minor, "
                "spent_minor, last_alert_sent, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(budget.id),
                    str(budget.account_id),
                    budget.name,
                    budget.category,
                    to_minor_units(budget.amount, currency),
                    to_minor_units(budget.spent, currency),
                    budget.last_alert_sent.isoformat() if budget.last_alert_sent else None,
                    budget.created_at.isoformat(),
                    budget.updated_at.isoformat(),
                ),
            )
        except aiosqlite.IntegrityError as e:
            raise DuplicateError(f"Account {budget.account_id} already has a budget") from e

    async def _budget_currency(self, budget_id: UUID) -> str:
        row = await self._fetchone(
            "SELECT a.currency AS currency FROM budgets b "
            "JOIN accounts a ON a.id = b.account_id WHERE b.id = ?",
            (str(budget_id),),
        )
        if row is None:
            raise NotFoundError(f"Budget {budget_id} not found")
        return row["currency"]

    async def update_budget_amount(self, budget_id: UUID, amount: Decimal) -> None:
        currency = await self._budget_currency(budget_id)
        await self._conn.execute(
            "UPDATE budgets SET amount_minor = ?, updated_at = ? WHERE id = ?",
            (to_minor_units(amount, currency), utc_now().isoformat(), str(budget_id)),
        )

    async def record_budget_check(
        self,
        budget_id: UUID,
        spent: Decimal,
        alert_sent_at: Optional[datetime] = None,
    ) -> None:
        currency = await self._budget_currency(budget_id)
        now = utc_now().isoformat()
        if alert_sent_at is not None:
            await self._conn.execute(
                "UPDATE budgets SET spent_minor = ?, last_alert_sent = ?, updated_at = ? "
                "WHERE id = ?",
                (to_minor_units(spent, currency), alert_sent_at.isoformat(), now, str(budget_id)),
            )
        else:
            await self._conn.execute(
                "UPDATE budgets SET spent_minor = ?, updated_at = ? WHERE id = ?",
                (to_minor_units(spent, currency), now, str(budget_id)),
            )


# =============================================================================
# STORAGE
# =============================================================================

class SQLiteLedgerStorage(LedgerStorageInterface):
    """
    Ledger storage on SQLite.

    Each read method takes the connection lock for the duration of the
    query; writes only happen inside `unit_of_work()`.
    """

    def __init__(self, db: SQLiteDatabase):
        self.db = db

    @classmethod
    def from_path(cls, db_path: Union[Path, str], busy_timeout_ms: int = 30000) -> "SQLiteLedgerStorage":
        return cls(SQLiteDatabase(db_path, busy_timeout_ms))

    async def initialize(self) -> None:
        await self.db.connect()
        await self.db.init_schema()

    async def close(self) -> None:
        await self.db.close()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[UnitOfWork]:
        async with self.db.transaction() as conn:
            yield SQLiteUnitOfWork(conn)

    @asynccontextmanager
    async def _reader(self) -> AsyncIterator[LedgerReader]:
        async with self.db.reader() as conn:
            yield SQLiteUnitOfWork(conn)

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        async with self._reader() as r:
            return await r.get_user_by_id(user_id)

    async def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        async with self._reader() as r:
            return await r.get_user_by_external_id(external_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._reader() as r:
            return await r.get_user_by_email(email)

    async def list_users(self) -> list[User]:
        async with self._reader() as r:
            return await r.list_users()

    async def get_account(
        self,
        account_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Account]:
        async with self._reader() as r:
            return await r.get_account(account_id, user_id)

    async def list_accounts(self, user_id: UUID) -> list[Account]:
        async with self._reader() as r:
            return await r.list_accounts(user_id)

    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        async with self._reader() as r:
            return await r.get_transaction(transaction_id, user_id)

    async def list_transactions(
        self,
        user_id: Optional[UUID] = None,
        account_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_ids: Optional[list[UUID]] = None,
    ) -> list[Transaction]:
        async with self._reader() as r:
            return await r.list_transactions(
                user_id=user_id,
                account_id=account_id,
                transaction_type=transaction_type,
                date_from=date_from,
                date_to=date_to,
                transaction_ids=transaction_ids,
            )

    async def sum_transactions(
        self,
        account_id: UUID,
        transaction_type: TransactionType,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Decimal:
        async with self._reader() as r:
            return await r.sum_transactions(account_id, transaction_type, date_from, date_to)

    async def get_budget(self, account_id: UUID) -> Optional[Budget]:
        async with self._reader() as r:
            return await r.get_budget(account_id)

    async def list_budgets(self) -> list[Budget]:
        async with self._reader() as r:
            return await r.list_budgets()


class SQLiteAuditStorage(AuditStorageInterface):
    """Append-only audit log in the `audit_log` table."""

    def __init__(self, db: SQLiteDatabase):
        self.db = db

    async def append_event(self, event: AuditEvent) -> bool:
        async with self.db.transaction() as conn:
            await conn.execute(
                "INSERT INTO audit_log (event_id, timestamp, event_type, severity, "
                "entity_type, entity_id, correlation_id, description, details_json, "
                "error_code, error_message, is_user_action) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                event.to_row(),
            )
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        async with self.db.reader() as conn:
            async with conn.execute(
                "SELECT * FROM audit_log WHERE correlation_id = ? "
                "ORDER BY timestamp, rowid",
                (str(correlation_id),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_event(r) for r in rows]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        async with self.db.reader() as conn:
            async with conn.execute(
                "SELECT * FROM audit_log WHERE entity_type = ? AND entity_id = ? "
                "ORDER BY timestamp, rowid",
                (entity_type, str(entity_id)),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_event(r) for r in rows]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        async with self.db.reader() as conn:
            async with conn.execute(
                "SELECT * FROM audit_log ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_event(r) for r in rows]
