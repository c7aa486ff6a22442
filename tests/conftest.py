"""
Shared fixtures.

Storage is a real SQLite file under tmp_path. External collaborators
(Gemini, SMTP) are replaced by small fakes, so no test makes a network call.
"""

from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Optional

import pytest
import pytest_asyncio

from finora.audit import AuditLogger
from finora.config import AppSettings
from finora.identity import IdentityClaims, IdentityService
from finora.ledger.accounts import AccountService
from finora.ledger.budget import BudgetService
from finora.ledger.service import LedgerService
from finora.models.ledger import Account, AccountType
from finora.services.email import EmailContent, EmailSenderInterface
from finora.services.storage import SQLiteAuditStorage, SQLiteLedgerStorage


class FakeEmailSender(EmailSenderInterface):
    """Records messages instead of sending them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, EmailContent]] = []

    async def send(self, to: str, content: EmailContent) -> bool:
        if self.fail:
            return False
        self.sent.append((to, content))
        return True


class FakeGeminiModel:
    """
    Stands in for genai.GenerativeModel.

    Replies are consumed in order; an Exception instance is raised
    instead of returned.
    """

    def __init__(self, *replies: Any):
        self.replies = list(replies)
        self.calls: list[Any] = []

    async def generate_content_async(self, contents: Any) -> SimpleNamespace:
        self.calls.append(contents)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


@pytest_asyncio.fixture
async def storage(tmp_path):
    storage = SQLiteLedgerStorage.from_path(tmp_path / "finora.db")
    await storage.initialize()
    yield storage
    await storage.close()


@pytest.fixture
def audit_storage(storage):
    return SQLiteAuditStorage(storage.db)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def app_settings():
    return AppSettings(
        default_currency="INR",
        budget_alert_threshold=80.0,
        job_max_attempts=3,
        job_retry_base_seconds=0,
    )


@pytest.fixture
def identity(storage, audit_logger):
    return IdentityService(storage, audit_logger)


@pytest.fixture
def ledger(storage, identity, audit_logger):
    return LedgerService(storage, identity, audit_logger)


@pytest.fixture
def accounts(storage, identity, app_settings, audit_logger):
    return AccountService(storage, identity, app_settings, audit_logger)


@pytest.fixture
def budgets(storage, identity, audit_logger):
    return BudgetService(storage, identity, audit_logger)


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def external_id():
    return "user_alice"


@pytest_asyncio.fixture
async def user(identity, external_id):
    return await identity.check_user(IdentityClaims(
        external_id=external_id,
        email="alice@example.com",
        first_name="Alice",
        last_name="Sharma",
    ))


@pytest_asyncio.fixture
async def other_user(identity):
    return await identity.check_user(IdentityClaims(
        external_id="user_bob",
        email="bob@example.com",
        first_name="Bob",
    ))


@pytest.fixture
def make_account(accounts, user, external_id):
    """Open an account for the default user and return it."""

    async def make(
        balance: str = "0",
        name: str = "Main",
        currency: Optional[str] = None,
        is_default: bool = False,
        owner: Optional[str] = None,
    ) -> Account:
        data = {
            "name": name,
            "type": AccountType.SAVINGS,
            "balance": Decimal(balance),
            "is_default": is_default,
        }
        if currency:
            data["currency"] = currency
        result = await accounts.create_account(owner or external_id, data)
        assert result.success, result.error
        return result.data

    return make


def expense(account_id, amount: str, **overrides) -> dict:
    data = {
        "account_id": account_id,
        "type": "EXPENSE",
        "amount": amount,
        "category": "groceries",
        "date": "2024-03-10",
    }
    data.update(overrides)
    return data


def income(account_id, amount: str, **overrides) -> dict:
    data = expense(account_id, amount, type="INCOME", category="salary")
    data.update(overrides)
    return data


@pytest.fixture
def expense_data():
    return expense


@pytest.fixture
def income_data():
    return income
