"""AI agents package."""

from finora.agents.ai_agents import (
    FALLBACK_INSIGHTS,
    RECEIPT_CATEGORIES,
    ColumnInferenceAgent,
    InsightsAgent,
    ReceiptScanAgent,
    extract_json,
    parse_column_response,
    parse_receipt_response,
)

__all__ = [
    "FALLBACK_INSIGHTS",
    "RECEIPT_CATEGORIES",
    "ColumnInferenceAgent",
    "InsightsAgent",
    "ReceiptScanAgent",
    "extract_json",
    "parse_column_response",
    "parse_receipt_response",
]
