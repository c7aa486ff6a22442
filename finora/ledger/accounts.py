"""
Account Management

DESIGN DECISION: Exactly one account per user is the default whenever
the user has any account. Every path that touches the flag clears and
sets it inside one unit of work:
- the first account is always the default
- a new or updated account marked default takes the flag over
- deleting the default promotes the most recently created remaining account

CRITICAL: The balance is not editable here. It starts at the opening
balance and afterwards belongs to the ledger service.
"""

from typing import Any, Optional, Union
from uuid import UUID

from finora.audit import AuditLogger
from finora.config import AppSettings
from finora.errors import InvalidInput, NotFound
from finora.identity import IdentityService
from finora.models.ledger import (
    Account,
    AccountDetail,
    AccountInput,
    AccountUpdate,
    ActionResult,
)
from finora.services.storage import LedgerStorageInterface
from finora.validation import parse_input, parse_signed_amount


class AccountService:
    """Create, edit and remove a user's accounts."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        identity: IdentityService,
        app_settings: AppSettings,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._identity = identity
        self._settings = app_settings
        self._audit_logger = audit_logger

    async def create_account(
        self,
        external_id: Optional[str],
        data: Union[AccountInput, dict[str, Any]],
    ) -> ActionResult:
        """
        Open an account with an opening balance.

        The opening balance may be negative (credit accounts) but must fit
        the currency's minor unit.
        """
        user = await self._identity.require_user(external_id)

        try:
            payload = parse_input(AccountInput, data)
            currency = payload.currency or self._settings.default_currency
            opening = parse_signed_amount(payload.balance, currency)
        except InvalidInput as e:
            return ActionResult.failure(e)

        async with self._storage.unit_of_work() as uow:
            existing = await uow.list_accounts(user.id)
            should_be_default = not existing or payload.is_default
            if should_be_default:
                await uow.clear_default_account(user.id)

            account = Account(
                user_id=user.id,
                name=payload.name,
                type=payload.type,
                currency=currency,
                balance=opening,
                opening_balance=opening,
                is_default=should_be_default,
            )
            await uow.insert_account(account)

        if self._audit_logger:
            await self._audit_logger.log_account_created(
                account.id, account.name, opening, account.is_default
            )
        return ActionResult.ok(account)

    async def list_accounts(self, external_id: Optional[str]) -> list[Account]:
        """The caller's accounts, most recently created first."""
        user = await self._identity.require_user(external_id)
        return await self._storage.list_accounts(user.id)

    async def get_account_with_transactions(
        self,
        external_id: Optional[str],
        account_id: UUID,
    ) -> AccountDetail:
        """
        Raises:
            NotFound: Missing or not owned by the caller
        """
        user = await self._identity.require_user(external_id)

        async with self._storage.unit_of_work() as uow:
            account = await uow.get_account(account_id, user.id)
            if account is None:
                raise NotFound("Account not found")
            transactions = await uow.list_transactions(account_id=account.id)

        return AccountDetail(account=account, transactions=transactions)

    async def update_account(
        self,
        external_id: Optional[str],
        account_id: UUID,
        data: Union[AccountUpdate, dict[str, Any]],
    ) -> ActionResult:
        """Rename, retype or make an account the default."""
        user = await self._identity.require_user(external_id)

        try:
            payload = parse_input(AccountUpdate, data)
            async with self._storage.unit_of_work() as uow:
                account = await uow.get_account(account_id, user.id)
                if account is None:
                    raise NotFound("Account not found")
                if payload.is_default is False and account.is_default:
                    raise InvalidInput(
                        "An account stays the default until another account is made default"
                    )

                if payload.name is not None or payload.type is not None:
                    await uow.update_account_details(
                        account.id, name=payload.name, account_type=payload.type
                    )
                if payload.is_default and not account.is_default:
                    await uow.clear_default_account(user.id)
                    await uow.mark_default_account(account.id)

                updated = await uow.get_account(account.id)
        except InvalidInput as e:
            return ActionResult.failure(e)

        if self._audit_logger:
            await self._audit_logger.log_account_updated(
                account.id, payload.model_dump(mode="json", exclude_none=True)
            )
        return ActionResult.ok(updated)

    async def set_default_account(
        self,
        external_id: Optional[str],
        account_id: UUID,
    ) -> ActionResult:
        user = await self._identity.require_user(external_id)

        async with self._storage.unit_of_work() as uow:
            account = await uow.get_account(account_id, user.id)
            if account is None:
                raise NotFound("Account not found")
            await uow.clear_default_account(user.id)
            await uow.mark_default_account(account.id)
            updated = await uow.get_account(account.id)

        if self._audit_logger:
            await self._audit_logger.log_default_account_changed(account.id)
        return ActionResult.ok(updated)

    async def delete_account(
        self,
        external_id: Optional[str],
        account_id: UUID,
    ) -> ActionResult:
        """
        Delete an account with its transactions and budget.

        Deleting the last account is allowed; the user is then left
        with no default until the next account is created.
        """
        user = await self._identity.require_user(external_id)

        promoted: Optional[Account] = None
        async with self._storage.unit_of_work() as uow:
            account = await uow.get_account(account_id, user.id)
            if account is None:
                raise NotFound("Account not found")

            await uow.delete_account(account.id)

            if account.is_default:
                remaining = await uow.list_accounts(user.id)
                if remaining:
                    promoted = remaining[0]
                    await uow.mark_default_account(promoted.id)

        if self._audit_logger:
            await self._audit_logger.log_account_deleted(
                account.id, promoted.id if promoted else None
            )
        return ActionResult.ok(
            {"promoted_default": promoted.id if promoted else None}
        )
