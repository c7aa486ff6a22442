"""
Tests for spreadsheet import: column matching, cell parsing,
the AI fallback and committing rows through the ledger.
"""

import io
from datetime import date, datetime
from decimal import Decimal

import pytest
from openpyxl import Workbook

from finora.agents import ColumnInferenceAgent
from finora.errors import InvalidInput, UnresolvableSchema
from finora.importing import (
    infer_type,
    match_columns,
    parse_amount_cell,
    parse_date_cell,
    parse_rows,
)
from finora.importing.importer import (
    TransactionImporter,
    read_csv,
    read_excel,
    read_spreadsheet,
)
from finora.models.extraction import ColumnMapping
from finora.models.ledger import TransactionType

from conftest import FakeGeminiModel


class TestColumnMatching:

    def test_headers_without_type_column(self):
        mapping = match_columns(["Txn Date", "Amt", "Notes"])

        assert mapping.date_index == 0
        assert mapping.amount_index == 1
        assert mapping.description_index == 2
        assert mapping.type_index is None
        assert mapping.category_index is None
        assert mapping.is_resolved

    def test_case_insensitive_and_first_match_wins(self):
        mapping = match_columns(["TIMESTAMP", "Posting Date", "Total Value", "Tag"])

        assert mapping.date_index == 0
        assert mapping.amount_index == 2
        assert mapping.category_index == 3

    def test_unresolved_without_amount(self):
        mapping = match_columns(["Date", "Payee", None, ""])

        assert mapping.date_index == 0
        assert not mapping.is_resolved

    def test_merge_keeps_matched_columns(self):
        found = ColumnMapping(date_index=0)
        inferred = ColumnMapping(date_index=3, amount_index=2, type_index=1)

        merged = found.merged_with(inferred)

        assert (merged.date_index, merged.amount_index, merged.type_index) == (0, 2, 1)


class TestCellParsing:

    @pytest.mark.parametrize("value, expected", [
        ("2024-01-05", date(2024, 1, 5)),
        ("2024-01-05T10:30:00", date(2024, 1, 5)),
        ("05/01/2024", date(2024, 1, 5)),
        ("12/25/2024", date(2024, 12, 25)),
        ("31.12.2023", date(2023, 12, 31)),
        ("2024/03/07", date(2024, 3, 7)),
        ("5-1-24", date(2024, 1, 5)),
        (datetime(2024, 2, 3, 8, 0), date(2024, 2, 3)),
        (date(2024, 2, 3), date(2024, 2, 3)),
    ])
    def test_dates(self, value, expected):
        assert parse_date_cell(value) == expected

    @pytest.mark.parametrize("value", ["", "   ", None, "yesterday", "31/31/2024", "1/2"])
    def test_bad_dates(self, value):
        assert parse_date_cell(value) is None

    @pytest.mark.parametrize("value, expected", [
        ("-45.00", Decimal("-45.00")),
        ("₹1,234.50", Decimal("1234.50")),
        ("$ 12", Decimal("12")),
        (19.99, Decimal("19.99")),
        (7, Decimal("7")),
    ])
    def test_amounts(self, value, expected):
        assert parse_amount_cell(value) == expected

    @pytest.mark.parametrize("value", ["", None, "n/a", "-", "1.2.3", True])
    def test_bad_amounts(self, value):
        assert parse_amount_cell(value) is None

    def test_type_from_keywords_then_sign(self):
        assert infer_type("Debit card", Decimal("10")) == TransactionType.EXPENSE
        assert infer_type("CREDIT", Decimal("-10")) == TransactionType.INCOME
        assert infer_type("", Decimal("-10")) == TransactionType.EXPENSE
        assert infer_type(None, Decimal("10")) == TransactionType.INCOME
        assert infer_type("transfer", Decimal("10")) == TransactionType.INCOME


class TestParseRows:

    def test_negative_amount_without_type_is_expense(self):
        mapping = match_columns(["Txn Date", "Amt", "Notes"])

        parsed, skipped = parse_rows([["2024-01-05", "-45.00", "Coffee"]], mapping)

        assert skipped == []
        assert len(parsed) == 1
        row = parsed[0]
        assert row.type == TransactionType.EXPENSE
        assert row.amount == Decimal("45.00")
        assert row.description == "Coffee"
        assert row.row_number == 2

    def test_skips_unparseable_and_ignores_blank_rows(self):
        mapping = match_columns(["Date", "Amount", "Type", "Category"])
        rows = [
            ["2024-01-05", "100", "Deposit", "salary"],
            ["", "", "", ""],
            ["not a date", "5", "", ""],
            ["2024-01-07", "", "", ""],
            ["2024-01-08", "12.50", "withdrawal", ""],
        ]

        parsed, skipped = parse_rows(rows, mapping)

        assert skipped == [4, 5]
        assert [(r.row_number, r.type, r.amount) for r in parsed] == [
            (2, TransactionType.INCOME, Decimal("100")),
            (6, TransactionType.EXPENSE, Decimal("12.50")),
        ]
        assert parsed[0].category == "salary"
        assert parsed[1].category == ""

    def test_short_rows(self):
        mapping = match_columns(["Date", "Amount", "Description"])

        parsed, _ = parse_rows([["2024-01-05", "3"]], mapping)

        assert parsed[0].description == ""

    def test_requires_resolved_mapping(self):
        with pytest.raises(ValueError):
            parse_rows([["x"]], ColumnMapping(date_index=0))


def workbook_bytes(rows, title="Statement"):
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = title
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


STATEMENT_ROWS = [
    ["Posting Date", "Details", "Amount", "Type"],
    [datetime(2024, 3, 1), "Salary March", 52000, "credit"],
    [datetime(2024, 3, 2), "Groceries", -1249.5, None],
    [datetime(2024, 3, 3), "Pending", None, None],
    ["not a date", "Broken row", 10, None],
]


class TestSpreadsheetReaders:

    def test_read_excel_keeps_native_cells(self):
        rows = read_excel(workbook_bytes(STATEMENT_ROWS))

        assert rows[0] == ["Posting Date", "Details", "Amount", "Type"]
        assert rows[1][0].date() == date(2024, 3, 1)
        assert rows[3][2] is None

    def test_read_excel_rejects_other_bytes(self):
        with pytest.raises(InvalidInput, match="Excel workbook"):
            read_excel(b"Date,Amount\n2024-01-05,10\n")

    def test_read_csv_keeps_blank_lines(self):
        rows = read_csv("Date,Amount\n2024-01-05,10\n\n2024-01-06,\n")

        assert rows == [["Date", "Amount"], ["2024-01-05", "10"], [None, None], ["2024-01-06", ""]]

    def test_dispatch_by_filename_and_content(self):
        xlsx = workbook_bytes(STATEMENT_ROWS)

        assert read_spreadsheet(xlsx)[0][0] == "Posting Date"
        assert read_spreadsheet(xlsx, "statement.XLSX")[0][0] == "Posting Date"
        assert read_spreadsheet(b"Date,Amount\n", "statement.csv") == [["Date", "Amount"]]


class FakeSheets:
    def __init__(self, rows):
        self.rows = rows
        self.requests = []

    def read_rows(self, spreadsheet_id, worksheet=None):
        self.requests.append((spreadsheet_id, worksheet))
        return self.rows


class TestTransactionImporter:

    @pytest.fixture
    def importer(self, ledger, identity, audit_logger):
        return TransactionImporter(ledger, identity, audit_logger=audit_logger)

    def test_read_csv_strips_bom(self):
        rows = read_csv("\ufeffDate,Amount\n2024-01-05,10\n".encode("utf-8"))

        assert rows == [["Date", "Amount"], ["2024-01-05", "10"]]

    def test_read_csv_rejects_binary(self):
        with pytest.raises(InvalidInput):
            read_csv(b"\xff\xfe\x00\x81")

    @pytest.mark.asyncio
    async def test_preview_does_not_save(self, importer, storage, user):
        preview = await importer.preview_csv("Date,Amount,Description\n2024-01-05,-45.00,Coffee\n")

        assert preview.message == "Found 1 transactions in the file"
        assert preview.used_ai_inference is False
        assert await storage.list_transactions() == []

    @pytest.mark.asyncio
    async def test_excel_statement_preview(self, importer):
        preview = await importer.preview_rows(read_excel(workbook_bytes(STATEMENT_ROWS)))

        assert preview.mapping.date_index == 0
        assert preview.mapping.amount_index == 2
        assert [(t.row_number, t.type, t.amount) for t in preview.transactions] == [
            (2, TransactionType.INCOME, Decimal("52000")),
            (3, TransactionType.EXPENSE, Decimal("1249.5")),
        ]
        assert preview.transactions[0].date == date(2024, 3, 1)
        assert preview.skipped_rows == [4, 5]

    @pytest.mark.asyncio
    async def test_import_excel_upload(self, importer, make_account, storage, user, external_id):
        account = await make_account("0")
        upload = workbook_bytes(STATEMENT_ROWS, title="March")

        result = await importer.import_file(external_id, upload)
        committed = await importer.commit_import(external_id, account.id, result.data)

        assert result.success
        assert result.message == "Found 2 transactions in the file"
        assert committed.message == "Imported 2 of 2 transactions"
        assert (await storage.get_account(account.id)).balance == Decimal("50750.50")

    @pytest.mark.asyncio
    async def test_import_corrupt_workbook(self, importer, user, external_id):
        result = await importer.import_file(external_id, b"PK\x03\x04garbage", "statement.xlsx")

        assert result.error_code == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_empty_file(self, importer):
        with pytest.raises(UnresolvableSchema):
            await importer.preview_csv("")

    @pytest.mark.asyncio
    async def test_unresolvable_without_ai(self, importer):
        with pytest.raises(UnresolvableSchema):
            await importer.preview_rows([["When", "How much"], ["2024-01-05", "5"]])

    @pytest.mark.asyncio
    async def test_ai_fills_missing_columns(self, ledger, identity):
        model = FakeGeminiModel('Sure! {"dateIndex": 1, "amountIndex": 2, "typeIndex": null, '
                                '"descriptionIndex": 3, "categoryIndex": 9}')
        importer = TransactionImporter(ledger, identity, column_agent=ColumnInferenceAgent(model=model))

        preview = await importer.preview_rows([
            ["When", "How much", "What"],
            ["2024-01-05", "-5", "Tea"],
        ])

        assert preview.used_ai_inference
        assert preview.mapping.date_index == 0
        assert preview.mapping.amount_index == 1
        assert preview.mapping.description_index == 2
        assert preview.mapping.category_index is None
        assert preview.transactions[0].description == "Tea"

    @pytest.mark.asyncio
    async def test_ai_not_called_when_headers_match(self, ledger, identity):
        model = FakeGeminiModel()
        importer = TransactionImporter(ledger, identity, column_agent=ColumnInferenceAgent(model=model))

        await importer.preview_rows([["Date", "Amount"], ["2024-01-05", "1"]])

        assert model.calls == []

    @pytest.mark.asyncio
    async def test_ai_failure_is_ignored(self, ledger, identity):
        model = FakeGeminiModel(RuntimeError("service unavailable"))
        importer = TransactionImporter(ledger, identity, column_agent=ColumnInferenceAgent(model=model))

        with pytest.raises(UnresolvableSchema):
            await importer.preview_rows([["When", "How much"], ["2024-01-05", "5"]])

    @pytest.mark.asyncio
    async def test_import_file_reports_failure(self, importer, user, external_id, audit_storage):
        result = await importer.import_file(external_id, b"Payee,Memo\nShop,hi\n")

        assert not result.success
        assert result.error_code == "UNRESOLVABLE_SCHEMA"
        events = await audit_storage.get_recent_events()
        assert events[0].event_type.value == "import_failed"

    @pytest.mark.asyncio
    async def test_google_sheet_source(self, ledger, identity, user, external_id):
        sheets = FakeSheets([["Date", "Amount"], ["2024-01-05", "250"]])
        importer = TransactionImporter(ledger, identity, sheets_client=sheets)

        result = await importer.import_google_sheet(external_id, "sheet-123", "March")

        assert result.success
        assert len(result.data.transactions) == 1
        assert sheets.requests == [("sheet-123", "March")]

    @pytest.mark.asyncio
    async def test_google_sheet_not_configured(self, importer, user, external_id):
        result = await importer.import_google_sheet(external_id, "sheet-123")

        assert result.error_code == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_commit_creates_transactions(self, importer, storage, make_account, external_id):
        account = await make_account("100.00")
        preview = await importer.preview_csv(
            "Date,Amount,Type,Category\n"
            "2024-01-05,-45.00,,\n"
            "2024-01-06,200,income,salary\n"
            "2024-01-07,0,,\n"
        )

        result = await importer.commit_import(external_id, account.id, preview)

        assert result.success
        assert result.message == "Imported 2 of 3 transactions"
        assert list(result.data["failed"]) == [4]
        assert (await storage.get_account(account.id)).balance == Decimal("255.00")
        categories = {t.category for t in await storage.list_transactions(account_id=account.id)}
        assert categories == {"other-expense", "salary"}
