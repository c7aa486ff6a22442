"""
Spreadsheet Column and Row Heuristics

Pure functions: no I/O, no AI. The importer layers the AI fallback
on top of `match_columns`.

DESIGN DECISION: Column matching is a case-insensitive substring match
against a fixed keyword list per field. The first header containing any
keyword wins. Nothing beyond the keyword lists is guessed here.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from finora.models.extraction import ColumnMapping, ImportedTransaction
from finora.models.ledger import TransactionType


FIELD_KEYWORDS: dict[str, tuple[str, ...]] = {
    "date": ("date", "time"),
    "amount": ("amount", "amt", "sum", "total", "value"),
    "type": ("type",),
    "description": ("description", "desc", "details", "note", "memo"),
    "category": ("category", "tag", "label"),
}

EXPENSE_WORDS = ("expense", "debit", "withdrawal")
INCOME_WORDS = ("income", "credit", "deposit")

_DATE_SEPARATORS = re.compile(r"[/\-.]")
_NON_AMOUNT_CHARS = re.compile(r"[^\d.\-]")


# =============================================================================
# COLUMNS
# =============================================================================

def find_column_index(headers: Sequence[Any], keywords: Sequence[str]) -> Optional[int]:
    """Index of the first header containing any keyword, case-insensitive."""
    for index, header in enumerate(headers):
        if header is None:
            continue
        name = str(header).strip().lower()
        if not name:
            continue
        if any(keyword in name for keyword in keywords):
            return index
    return None


def match_columns(headers: Sequence[Any]) -> ColumnMapping:
    """Locate every known field by header name. Unmatched fields are None."""
    return ColumnMapping(
        date_index=find_column_index(headers, FIELD_KEYWORDS["date"]),
        amount_index=find_column_index(headers, FIELD_KEYWORDS["amount"]),
        type_index=find_column_index(headers, FIELD_KEYWORDS["type"]),
        description_index=find_column_index(headers, FIELD_KEYWORDS["description"]),
        category_index=find_column_index(headers, FIELD_KEYWORDS["category"]),
    )


# =============================================================================
# CELLS
# =============================================================================

def _cell(row: Sequence[Any], index: Optional[int]) -> Any:
    if index is None or index >= len(row):
        return None
    return row[index]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date_cell(value: Any) -> Optional[date]:
    """
    Parse a date cell.

    Tried in order: native date/datetime, ISO 8601, then three-part
    dates split on '/', '-' or '.' read as D/M/Y and finally M/D/Y.
    A four-digit first part is read as Y/M/D.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if _is_blank(value):
        return None

    text = str(value).strip()
    for candidate in (text, text[:10]):
        try:
            return datetime.fromisoformat(candidate).date()
        except ValueError:
            pass

    parts = _DATE_SEPARATORS.split(text.split(" ")[0])
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        return None
    first, second, third = (int(p) for p in parts)

    if len(parts[0]) == 4:
        return _safe_date(first, second, third)
    return _safe_date(third, second, first) or _safe_date(third, first, second)


def parse_amount_cell(value: Any) -> Optional[Decimal]:
    """Keep digits, '.' and '-' and read what is left as a decimal."""
    if isinstance(value, bool) or _is_blank(value):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        value = str(value)

    cleaned = _NON_AMOUNT_CHARS.sub("", str(value))
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def infer_type(type_cell: Any, raw_amount: Decimal) -> TransactionType:
    """Explicit type keywords first, otherwise the sign of the amount."""
    if not _is_blank(type_cell):
        text = str(type_cell).lower()
        if any(word in text for word in EXPENSE_WORDS):
            return TransactionType.EXPENSE
        if any(word in text for word in INCOME_WORDS):
            return TransactionType.INCOME
    return TransactionType.EXPENSE if raw_amount < 0 else TransactionType.INCOME


# =============================================================================
# ROWS
# =============================================================================

def parse_rows(
    rows: Sequence[Sequence[Any]],
    mapping: ColumnMapping,
    first_row_number: int = 2,
) -> tuple[list[ImportedTransaction], list[int]]:
    """
    Turn data rows into proposed transactions.

    Blank rows are ignored. Rows whose date or amount is empty or
    unparseable are skipped and their row numbers returned. Amounts
    become absolute values; the type carries the sign.

    Args:
        rows: Data rows, without the header
        mapping: Resolved column mapping
        first_row_number: Sheet row number of rows[0] (header is row 1)
    """
    if not mapping.is_resolved:
        raise ValueError("Column mapping must locate date and amount")

    parsed: list[ImportedTransaction] = []
    skipped: list[int] = []

    for offset, row in enumerate(rows):
        row_number = first_row_number + offset
        if all(_is_blank(cell) for cell in row):
            continue

        when = parse_date_cell(_cell(row, mapping.date_index))
        raw_amount = parse_amount_cell(_cell(row, mapping.amount_index))
        if when is None or raw_amount is None:
            skipped.append(row_number)
            continue

        description = _cell(row, mapping.description_index)
        category = _cell(row, mapping.category_index)
        parsed.append(ImportedTransaction(
            row_number=row_number,
            date=when,
            amount=abs(raw_amount),
            type=infer_type(_cell(row, mapping.type_index), raw_amount),
            description="" if _is_blank(description) else str(description).strip(),
            category="" if _is_blank(category) else str(category).strip(),
        ))

    return parsed, skipped
