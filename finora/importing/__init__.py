"""Spreadsheet import package."""

from finora.importing.columns import (
    FIELD_KEYWORDS,
    find_column_index,
    infer_type,
    match_columns,
    parse_amount_cell,
    parse_date_cell,
    parse_rows,
)

__all__ = [
    "FIELD_KEYWORDS",
    "find_column_index",
    "infer_type",
    "match_columns",
    "parse_amount_cell",
    "parse_date_cell",
    "parse_rows",
]
