"""
Extraction Models

Data proposed by the receipt scanner and the spreadsheet importer.

CRITICAL: Everything here is PROPOSED data, NOT verified.
It only becomes a Transaction after it passes through the ledger
service's validation like any other user input.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from finora.models.ledger import TransactionType


class ReceiptData(BaseModel):
    """Fields read off a receipt image by the AI model."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        ge=0,
        description="Total amount on the receipt"
    )
    date: date
    description: str = Field(..., min_length=1, max_length=500)
    merchant_name: str = Field(default="Unknown merchant", max_length=200)
    category: str = Field(default="other-expense", max_length=100)


class ColumnMapping(BaseModel):
    """
    Zero-based column positions located in an import sheet.

    None means the column was not found.
    """

    date_index: Optional[int] = Field(default=None, ge=0)
    amount_index: Optional[int] = Field(default=None, ge=0)
    type_index: Optional[int] = Field(default=None, ge=0)
    description_index: Optional[int] = Field(default=None, ge=0)
    category_index: Optional[int] = Field(default=None, ge=0)

    @property
    def is_resolved(self) -> bool:
        """Date and amount are the only columns an import cannot do without."""
        return self.date_index is not None and self.amount_index is not None

    def merged_with(self, other: "ColumnMapping") -> "ColumnMapping":
        """Fill the columns we are missing from another mapping."""
        return ColumnMapping(
            date_index=self.date_index if self.date_index is not None else other.date_index,
            amount_index=self.amount_index if self.amount_index is not None else other.amount_index,
            type_index=self.type_index if self.type_index is not None else other.type_index,
            description_index=(
                self.description_index
                if self.description_index is not None
                else other.description_index
            ),
            category_index=(
                self.category_index
                if self.category_index is not None
                else other.category_index
            ),
        )


class ImportedTransaction(BaseModel):
    """One parsed row of an import sheet."""

    row_number: int = Field(..., ge=1, description="1-based row in the sheet")
    date: date
    amount: Decimal = Field(..., ge=0)
    type: TransactionType
    description: str = ""
    category: str = ""


class ImportPreview(BaseModel):
    """Everything parsed from a sheet, before anything is saved."""

    mapping: ColumnMapping
    transactions: list[ImportedTransaction] = Field(default_factory=list)
    skipped_rows: list[int] = Field(
        default_factory=list,
        description="1-based rows skipped for an empty or unparseable date/amount"
    )
    used_ai_inference: bool = False

    @property
    def message(self) -> str:
        return f"Found {len(self.transactions)} transactions in the file"
