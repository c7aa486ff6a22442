"""
Transaction Import

Flow:
1. Read rows from a source (.xlsx workbook, CSV text/bytes, in-memory rows,
   Google Sheet), through pandas for files
2. Locate columns by header keywords
3. If date or amount is still missing, ask the AI (best effort)
4. Parse rows into a preview
5. Commit the preview through the ledger service, one row at a time

CRITICAL: A preview is PROPOSED data. Nothing is saved until
`commit_import`, and every committed row goes through the same
validation and balance arithmetic as a hand-entered transaction.
"""

import asyncio
import io
import zipfile
from typing import TYPE_CHECKING, Any, Optional, Sequence, Union
from uuid import UUID

import pandas as pd

from finora.audit import AuditLogger, get_logger
from finora.errors import InvalidInput, UnresolvableSchema
from finora.identity import IdentityService
from finora.importing.columns import match_columns, parse_rows
from finora.ledger.service import LedgerService
from finora.models.extraction import ImportedTransaction, ImportPreview
from finora.models.ledger import ActionResult, TransactionInput

if TYPE_CHECKING:
    from finora.agents.ai_agents import ColumnInferenceAgent
    from finora.services.storage.google_sheets import GoogleSheetsClient

logger = get_logger(__name__)

DEFAULT_IMPORT_CATEGORY = "other-expense"


XLSX_MAGIC = b"PK\x03\x04"


def _frame_rows(frame: pd.DataFrame) -> list[list[Any]]:
    """DataFrame cells as plain rows; NaN and NaT become None."""
    frame = frame.astype(object).where(frame.notna(), None)
    return frame.values.tolist()


def read_csv(content: Union[str, bytes]) -> list[list[Any]]:
    """Rows of a CSV document, header first. A UTF-8 BOM is ignored."""
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise InvalidInput("The file is not UTF-8 encoded text") from e
    if not content.strip():
        return []
    try:
        # blank lines are kept so row numbers match the file
        frame = pd.read_csv(
            io.StringIO(content),
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
        )
    except pd.errors.ParserError as e:
        raise InvalidInput(f"The file could not be read as CSV: {e}") from e
    return _frame_rows(frame)


def read_excel(content: bytes, sheet_name: Union[str, int] = 0) -> list[list[Any]]:
    """Rows of one .xlsx worksheet, header first. Date cells arrive as datetimes."""
    try:
        frame = pd.read_excel(
            io.BytesIO(content),
            sheet_name=sheet_name,
            header=None,
            engine="openpyxl",
        )
    except (ValueError, KeyError, zipfile.BadZipFile) as e:
        raise InvalidInput(f"The file could not be read as an Excel workbook: {e}") from e
    return _frame_rows(frame)


def read_spreadsheet(content: Union[str, bytes], filename: Optional[str] = None) -> list[list[Any]]:
    """Dispatch an upload to the Excel or CSV reader by extension, then by content."""
    if isinstance(content, bytes):
        is_excel = (
            filename.lower().endswith(".xlsx")
            if filename
            else content.startswith(XLSX_MAGIC)
        )
        if is_excel:
            return read_excel(content)
    return read_csv(content)


class TransactionImporter:
    """Builds import previews and commits them."""

    def __init__(
        self,
        ledger: LedgerService,
        identity: IdentityService,
        column_agent: Optional["ColumnInferenceAgent"] = None,
        sheets_client: Optional["GoogleSheetsClient"] = None,
        audit_logger: Optional[AuditLogger] = None,
        sample_rows: int = 5,
    ):
        self._ledger = ledger
        self._identity = identity
        self._column_agent = column_agent
        self._sheets = sheets_client
        self._audit_logger = audit_logger
        self._sample_rows = sample_rows

    # =========================================================================
    # PREVIEW
    # =========================================================================

    async def preview_rows(self, rows: Sequence[Sequence[Any]]) -> ImportPreview:
        """
        Parse a sheet given as rows, header first.

        Raises:
            UnresolvableSchema: Date or amount column not found by
                keywords nor by AI inference
        """
        if not rows:
            raise UnresolvableSchema("The file contains no rows")

        headers, data = rows[0], rows[1:]
        mapping = match_columns(headers)
        used_ai = False

        if not mapping.is_resolved and self._column_agent is not None:
            try:
                inferred = await self._column_agent.infer_columns(
                    headers, data[:self._sample_rows]
                )
            except Exception as e:
                # Best effort: keep whatever the keyword match found
                logger.warning("column_inference_failed", error=str(e))
            else:
                mapping = mapping.merged_with(inferred)
                used_ai = True

        if not mapping.is_resolved:
            raise UnresolvableSchema()

        transactions, skipped = parse_rows(data, mapping)
        return ImportPreview(
            mapping=mapping,
            transactions=transactions,
            skipped_rows=skipped,
            used_ai_inference=used_ai,
        )

    async def preview_csv(self, content: Union[str, bytes]) -> ImportPreview:
        return await self.preview_rows(read_csv(content))

    async def preview_excel(self, content: bytes, sheet_name: Union[str, int] = 0) -> ImportPreview:
        rows = await asyncio.to_thread(read_excel, content, sheet_name)
        return await self.preview_rows(rows)

    async def preview_file(
        self,
        content: Union[str, bytes],
        filename: Optional[str] = None,
    ) -> ImportPreview:
        rows = await asyncio.to_thread(read_spreadsheet, content, filename)
        return await self.preview_rows(rows)

    async def preview_google_sheet(
        self,
        spreadsheet_id: str,
        worksheet: Optional[str] = None,
    ) -> ImportPreview:
        if self._sheets is None:
            raise InvalidInput("Google Sheets import is not configured")
        rows = await asyncio.to_thread(self._sheets.read_rows, spreadsheet_id, worksheet)
        return await self.preview_rows(rows)

    async def import_file(
        self,
        external_id: Optional[str],
        content: Union[str, bytes],
        filename: Optional[str] = None,
    ) -> ActionResult:
        """
        Service-boundary preview of an uploaded .xlsx or CSV file.

        Returns:
            ActionResult whose data is the ImportPreview, or a failure
            with UNRESOLVABLE_SCHEMA / INVALID_INPUT
        """
        await self._identity.require_user(external_id)
        return await self._preview_result(self.preview_file(content, filename))

    async def import_google_sheet(
        self,
        external_id: Optional[str],
        spreadsheet_id: str,
        worksheet: Optional[str] = None,
    ) -> ActionResult:
        await self._identity.require_user(external_id)
        return await self._preview_result(
            self.preview_google_sheet(spreadsheet_id, worksheet)
        )

    async def _preview_result(self, pending) -> ActionResult:
        try:
            preview = await pending
        except (UnresolvableSchema, InvalidInput) as e:
            if self._audit_logger:
                await self._audit_logger.log_import_failed(e.code, e.message)
            return ActionResult.failure(e)

        if self._audit_logger:
            await self._audit_logger.log_import_parsed(
                len(preview.transactions),
                len(preview.skipped_rows),
                preview.used_ai_inference,
            )
        return ActionResult.ok(preview, message=preview.message)

    # =========================================================================
    # COMMIT
    # =========================================================================

    async def commit_import(
        self,
        external_id: Optional[str],
        account_id: UUID,
        transactions: Union[ImportPreview, Sequence[ImportedTransaction]],
        default_category: str = DEFAULT_IMPORT_CATEGORY,
    ) -> ActionResult:
        """
        Save previewed rows to an account, one transaction per row.

        Each row is its own unit of work. A row that fails validation
        (for example a zero amount) is reported and does not stop the rest.

        Raises:
            Unauthorized / NotFound: As for create_transaction
        """
        if isinstance(transactions, ImportPreview):
            rows = list(transactions.transactions)
        else:
            rows = list(transactions)

        created: list[UUID] = []
        failed: dict[int, str] = {}
        for row in rows:
            try:
                payload = TransactionInput(
                    account_id=account_id,
                    type=row.type,
                    amount=row.amount,
                    category=row.category or default_category,
                    date=row.date,
                    description=row.description or None,
                )
            except ValueError as e:
                failed[row.row_number] = str(e)
                continue

            result = await self._ledger.create_transaction(external_id, payload)
            if result.success:
                created.append(result.data.id)
            else:
                failed[row.row_number] = result.error or "Failed"

        if failed:
            logger.info("import_rows_rejected", rejected=len(failed), created=len(created))

        return ActionResult.ok(
            {"created": created, "failed": failed},
            message=f"Imported {len(created)} of {len(rows)} transactions",
        )
