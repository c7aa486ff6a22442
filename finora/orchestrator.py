"""
Main Orchestrator for Finora

This module ties together all the components and defines the
end-to-end flows that sit above the ledger services:
1. Receipt Scan (image -> checks -> AI -> proposed transaction fields)
2. Dashboard (accounts -> default account -> recent activity and chart)

DESIGN DECISION: The orchestrator enforces the boundaries:
- A scanned receipt only PROPOSES data; the user submits it through
  `create_transaction` like any other input
- Dashboard figures come from stored transactions, never from the AI
- Every external failure is audited

`create_app_components` wires storage, identity, services, agents and
jobs from settings.
"""

from datetime import date
from typing import Optional, Union
from uuid import UUID

from finora.agents import ColumnInferenceAgent, InsightsAgent, ReceiptScanAgent
from finora.audit import AuditLogger, create_correlation_id, get_logger
from finora.config import AppSettings, Settings, get_settings
from finora.errors import CouldNotExtract, InvalidInput, NotFound
from finora.identity import IdentityService
from finora.importing.importer import TransactionImporter
from finora.jobs import JobContext
from finora.ledger.accounts import AccountService
from finora.ledger.budget import BudgetService
from finora.ledger.service import LedgerService
from finora.models.ledger import ActionResult, utc_now
from finora.models.reports import ChartRange, ChartSeries, DashboardOverview
from finora.queries import account_chart, dashboard_overview
from finora.services.email import EmailSenderInterface, SmtpEmailSender
from finora.services.storage import (
    GoogleSheetsClient,
    SQLiteAuditStorage,
    SQLiteLedgerStorage,
)

logger = get_logger(__name__)


class ReceiptFlow:
    """
    Orchestrates a receipt scan.

    Flow:
    1. Check identity, file type and size
    2. Send the image to the receipt agent
    3. Return the proposed fields for the transaction form

    Nothing is saved here.
    """

    def __init__(
        self,
        identity: IdentityService,
        receipt_agent: ReceiptScanAgent,
        app_settings: AppSettings,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._identity = identity
        self._agent = receipt_agent
        self._settings = app_settings
        self._audit_logger = audit_logger

    def _check_upload(self, image_bytes: bytes, mime_type: str) -> None:
        if not image_bytes:
            raise InvalidInput("No image was uploaded")
        if len(image_bytes) > self._settings.max_upload_size_bytes:
            raise InvalidInput(
                f"File size should be less than {self._settings.max_upload_size_mb}MB"
            )
        subtype = mime_type.split("/")[-1].lower()
        if not mime_type.startswith("image/") or subtype not in self._settings.supported_formats_list:
            raise InvalidInput(f"Unsupported image type: {mime_type}")

    async def scan_receipt(
        self,
        external_id: Optional[str],
        image_bytes: bytes,
        mime_type: str,
        today: Optional[date] = None,
    ) -> ActionResult:
        """
        Returns:
            ActionResult with ReceiptData, or a failure with
            INVALID_INPUT / COULD_NOT_EXTRACT

        Raises:
            Unauthorized / NotFound: Unknown caller
        """
        await self._identity.require_user(external_id)
        correlation_id = create_correlation_id()

        try:
            self._check_upload(image_bytes, mime_type)
            receipt = await self._agent.scan_receipt(image_bytes, mime_type, today=today)
        except InvalidInput as e:
            return ActionResult.failure(e)
        except CouldNotExtract as e:
            if self._audit_logger:
                await self._audit_logger.log_receipt_rejected(e.message)
            return ActionResult.failure(e)
        except Exception as e:
            # The model call itself failed
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="gemini",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return ActionResult.failure(CouldNotExtract("Failed to scan receipt"))

        if self._audit_logger:
            await self._audit_logger.log_receipt_scanned(receipt.merchant_name, receipt.amount)
        return ActionResult.ok(receipt)


class DashboardFlow:
    """Dashboard and account-chart views over the caller's stored transactions."""

    def __init__(self, accounts: AccountService, ledger: LedgerService):
        self._accounts = accounts
        self._ledger = ledger

    async def get_dashboard(
        self,
        external_id: Optional[str],
        account_id: Optional[UUID] = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> DashboardOverview:
        """
        Overview for one account, the default account when none is given.

        Raises:
            Unauthorized / NotFound: Unknown caller or account not owned
        """
        today = utc_now().date()
        accounts = await self._accounts.list_accounts(external_id)
        if account_id is None:
            default = next((a for a in accounts if a.is_default), None)
            account_id = default.id if default else None
        elif not any(a.id == account_id for a in accounts):
            raise NotFound("Account not found")

        if account_id is None:
            return DashboardOverview()

        transactions = await self._ledger.list_transactions(external_id, account_id=account_id)
        return dashboard_overview(
            transactions,
            account_id,
            year or today.year,
            month or today.month,
        )

    async def get_account_chart(
        self,
        external_id: Optional[str],
        account_id: UUID,
        range_key: Union[ChartRange, str] = ChartRange.LAST_MONTH,
        today: Optional[date] = None,
    ) -> ChartSeries:
        """
        Raises:
            Unauthorized / NotFound: Unknown caller or account not owned
            ValueError: Unknown range key
        """
        transactions = await self._ledger.list_transactions(external_id, account_id=account_id)
        return account_chart(transactions, range_key, today or utc_now().date())


class AppComponents:
    """Everything `create_app_components` builds, for the caller to hold on to."""

    def __init__(
        self,
        storage: SQLiteLedgerStorage,
        audit_logger: AuditLogger,
        identity: IdentityService,
        ledger: LedgerService,
        accounts: AccountService,
        budgets: BudgetService,
        importer: TransactionImporter,
        dashboard: DashboardFlow,
        receipts: Optional[ReceiptFlow],
        jobs: JobContext,
    ):
        self.storage = storage
        self.audit_logger = audit_logger
        self.identity = identity
        self.ledger = ledger
        self.accounts = accounts
        self.budgets = budgets
        self.importer = importer
        self.dashboard = dashboard
        self.receipts = receipts
        self.jobs = jobs

    async def close(self) -> None:
        await self.storage.close()


async def create_app_components(
    settings: Optional[Settings] = None,
    use_ai: bool = True,
    email_sender: Optional[EmailSenderInterface] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to get_settings())
        use_ai: Whether to build the Gemini agents. Set to False to run
                without an API key; receipt scanning is then unavailable
                and imports rely on header keywords only.
        email_sender: Override the SMTP sender (e.g. for tests)
    """
    settings = settings or get_settings()
    app_settings = settings.app
    db_settings = settings.database

    db_settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    storage = SQLiteLedgerStorage.from_path(db_settings.db_path, db_settings.busy_timeout_ms)
    await storage.initialize()
    audit_logger = AuditLogger(SQLiteAuditStorage(storage.db))

    receipt_agent = column_agent = insights_agent = None
    if use_ai:
        try:
            gemini = settings.gemini
            receipt_agent = ReceiptScanAgent(settings=gemini)
            column_agent = ColumnInferenceAgent(settings=gemini)
            insights_agent = InsightsAgent(settings=gemini)
        except Exception as e:
            # AI not configured - continue without it
            logger.warning("ai_not_configured", error=str(e))
            receipt_agent = column_agent = insights_agent = None

    sheets_client = None
    try:
        sheets_client = GoogleSheetsClient(settings.google_sheets)
    except Exception as e:
        logger.info("google_sheets_not_configured", error=str(e))

    identity = IdentityService(storage, audit_logger)
    ledger = LedgerService(storage, identity, audit_logger)
    accounts = AccountService(storage, identity, app_settings, audit_logger)
    budgets = BudgetService(storage, identity, audit_logger)
    importer = TransactionImporter(
        ledger,
        identity,
        column_agent=column_agent,
        sheets_client=sheets_client,
        audit_logger=audit_logger,
        sample_rows=app_settings.import_sample_rows,
    )
    receipts = (
        ReceiptFlow(identity, receipt_agent, app_settings, audit_logger)
        if receipt_agent is not None
        else None
    )

    jobs = JobContext(
        storage=storage,
        email_sender=email_sender or SmtpEmailSender(),
        app_settings=app_settings,
        insights_agent=insights_agent,
        audit_logger=audit_logger,
    )

    return AppComponents(
        storage=storage,
        audit_logger=audit_logger,
        identity=identity,
        ledger=ledger,
        accounts=accounts,
        budgets=budgets,
        importer=importer,
        dashboard=DashboardFlow(accounts, ledger),
        receipts=receipts,
        jobs=jobs,
    )
