"""
Budget Service

One budget per account, created lazily the first time a limit is set.
The view compares the limit with the current calendar month's expenses.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finora.audit import AuditLogger
from finora.errors import InvalidInput, NotFound
from finora.identity import IdentityService
from finora.ledger.recurrence import month_bounds
from finora.models.ledger import ActionResult, Budget, BudgetStatus, TransactionType, utc_now
from finora.services.storage import LedgerStorageInterface
from finora.validation import parse_budget_amount


class BudgetService:
    """Read and set monthly budgets."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        identity: IdentityService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._identity = identity
        self._audit_logger = audit_logger

    async def get_budget(
        self,
        external_id: Optional[str],
        account_id: Optional[UUID],
        today: Optional[date] = None,
    ) -> BudgetStatus:
        """
        Budget, month-to-date expenses and what remains.

        With no account there is nothing to report, so an empty
        status comes back rather than an error.

        Raises:
            NotFound: Account not owned by the caller
        """
        if account_id is None:
            return BudgetStatus()

        user = await self._identity.require_user(external_id)
        today = today or utc_now().date()
        start, end = month_bounds(today.year, today.month)

        async with self._storage.unit_of_work() as uow:
            account = await uow.get_account(account_id, user.id)
            if account is None:
                raise NotFound("Account not found or access denied.")
            budget = await uow.get_budget(account.id)
            expenses = await uow.sum_transactions(
                account.id, TransactionType.EXPENSE, start, end
            )

        limit = budget.amount if budget else Decimal("0")
        return BudgetStatus(budget=budget, expenses=expenses, remaining=limit - expenses)

    async def update_budget(
        self,
        external_id: Optional[str],
        account_id: UUID,
        amount: Any,
    ) -> ActionResult:
        """Set an account's monthly limit, creating the budget on first use."""
        user = await self._identity.require_user(external_id)

        try:
            async with self._storage.unit_of_work() as uow:
                account = await uow.get_account(account_id, user.id)
                if account is None:
                    raise NotFound("Account not found or access denied.")
                limit = parse_budget_amount(amount, account.currency)

                budget = await uow.get_budget(account.id)
                if budget is None:
                    budget = Budget(
                        account_id=account.id,
                        name=f"{account.name} Budget",
                        amount=limit,
                    )
                    await uow.insert_budget(budget)
                else:
                    await uow.update_budget_amount(budget.id, limit)
                    budget = budget.model_copy(update={"amount": limit, "updated_at": utc_now()})
        except InvalidInput as e:
            return ActionResult.failure(e)

        if self._audit_logger:
            await self._audit_logger.log_budget_updated(budget.id, account.id, limit)
        return ActionResult.ok(budget)
