"""
AI Agents for Finora

DESIGN DECISION: Every AI call goes through Gemini and every answer is
treated as unreliable. Responses are parsed defensively:
- code fences are stripped
- leading chatter before the JSON is skipped
- anything that still does not parse becomes CouldNotExtract

CRITICAL BOUNDARIES:

1. RECEIPT SCAN AGENT:
   - CAN: Propose amount, date, description, merchant and category
   - CANNOT: Create a transaction (the user confirms the form first)

2. COLUMN INFERENCE AGENT:
   - CAN: Point at columns the keyword match missed
   - CANNOT: Override a column the keyword match found

3. INSIGHTS AGENT:
   - CAN: Phrase advice FROM the month's computed totals
   - CANNOT: Invent figures; on any failure a fixed list is used

The LLM is a TRANSLATOR, not an ORACLE.
"""

import json
import re
from datetime import date
from typing import Any, Optional, Sequence

import google.generativeai as genai

from finora.audit import get_logger
from finora.config import GeminiSettings, get_settings
from finora.errors import CouldNotExtract
from finora.importing.columns import parse_amount_cell, parse_date_cell
from finora.ledger.money import format_currency
from finora.models.extraction import ColumnMapping, ReceiptData
from finora.models.ledger import utc_now
from finora.models.reports import MonthlyStats

logger = get_logger(__name__)


RECEIPT_CATEGORIES = (
    "housing",
    "transportation",
    "groceries",
    "utilities",
    "entertainment",
    "food",
    "shopping",
    "healthcare",
    "education",
    "personal",
    "travel",
    "insurance",
    "gifts",
    "bills",
    "other-expense",
)

FALLBACK_INSIGHTS = [
    "Your highest expense category this month might need attention.",
    "Consider setting up a budget for better financial management.",
    "Track your recurring expenses to identify potential savings.",
]

_FENCE = re.compile(r"```(?:json)?\n?")


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text).replace("```", "").strip()


def extract_json(text: str, opener: str = "{") -> Any:
    """
    Pull the first JSON object (or array, with opener='[') out of a reply.

    Raises:
        CouldNotExtract: Nothing parseable in the text
    """
    closer = "}" if opener == "{" else "]"
    cleaned = strip_code_fences(text or "")
    start = cleaned.find(opener)
    end = cleaned.rfind(closer)
    if start < 0 or end < start:
        raise CouldNotExtract("The AI response did not contain any data")
    try:
        return json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise CouldNotExtract(f"The AI response could not be parsed: {e.msg}") from e


def response_text(response: Any) -> str:
    """Text of a Gemini response; blocked or empty responses become CouldNotExtract."""
    try:
        text = response.text
    except ValueError as e:
        raise CouldNotExtract("The AI returned no content") from e
    if not text or not text.strip():
        raise CouldNotExtract("The AI returned no content")
    return text


def parse_receipt_response(text: str, today: Optional[date] = None) -> ReceiptData:
    """
    Turn a receipt-scan reply into ReceiptData, filling the documented fallbacks.

    A missing or zero total is CouldNotExtract. Fallbacks: date -> today,
    description -> merchant -> "Receipt scan",
    category -> "other-expense", merchant -> "Unknown merchant".
    """
    if strip_code_fences(text or "") == "{}":
        raise CouldNotExtract("Could not detect a valid receipt in the image.")
    try:
        data = extract_json(text, "{")
    except CouldNotExtract as e:
        raise CouldNotExtract(
            "Could not read receipt data clearly. Please try with a clearer image."
        ) from e
    if not isinstance(data, dict) or not data:
        raise CouldNotExtract("Could not detect a valid receipt in the image.")

    amount = parse_amount_cell(data.get("amount"))
    if not amount:
        raise CouldNotExtract("Could not find a total amount on the receipt.")
    when = parse_date_cell(data.get("date"))
    merchant = str(data.get("merchantName") or "").strip()
    description = str(data.get("description") or "").strip()
    category = str(data.get("category") or "").strip().lower()

    return ReceiptData(
        amount=abs(amount),
        date=when or today or utc_now().date(),
        description=description or merchant or "Receipt scan",
        merchant_name=merchant or "Unknown merchant",
        category=category if category in RECEIPT_CATEGORIES else "other-expense",
    )


def parse_column_response(text: str, column_count: int) -> ColumnMapping:
    """Read 1-based column indices from a reply and convert them to 0-based."""
    data = extract_json(text, "{")
    if not isinstance(data, dict):
        raise CouldNotExtract("Column inference returned an unexpected shape")

    def position(key: str) -> Optional[int]:
        value = data.get(key)
        if isinstance(value, bool):
            return None
        try:
            index = int(value)
        except (TypeError, ValueError):
            return None
        return index - 1 if 1 <= index <= column_count else None

    return ColumnMapping(
        date_index=position("dateIndex"),
        amount_index=position("amountIndex"),
        type_index=position("typeIndex"),
        description_index=position("descriptionIndex"),
        category_index=position("categoryIndex"),
    )


# =============================================================================
# AGENTS
# =============================================================================

class _GeminiAgent:
    """Shared model setup. A model can be injected for tests."""

    temperature: Optional[float] = None

    def __init__(
        self,
        model: Optional[Any] = None,
        settings: Optional[GeminiSettings] = None,
    ):
        if model is not None:
            self._model = model
            return

        self._settings = settings or get_settings().gemini
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": (
                    self.temperature
                    if self.temperature is not None
                    else self._settings.temperature
                ),
                "max_output_tokens": self._settings.max_tokens,
            },
        )

    async def _generate(self, contents: Any) -> str:
        response = await self._model.generate_content_async(contents)
        return response_text(response)


class ReceiptScanAgent(_GeminiAgent):
    """
    Reads a receipt photo.

    BOUNDARIES:
    - Output is a proposal for the transaction form
    - "{}" from the model means "not a receipt"
    """

    temperature = 0.2

    PROMPT = """
Analyze this receipt image and extract the following information in JSON format:
- Total amount (just the number)
- Date (in ISO format)
- Description or items purchased (brief summary)
- Merchant/store name
- Suggested category (one of: {categories})

Only respond with valid JSON in this exact format:
{{
  "amount": number,
  "date": "ISO date string",
  "description": "string",
  "merchantName": "string",
  "category": "string"
}}

If it's not a receipt, return an empty object: {{}}
"""

    async def scan_receipt(
        self,
        image_bytes: bytes,
        mime_type: str,
        today: Optional[date] = None,
    ) -> ReceiptData:
        """
        Raises:
            CouldNotExtract: Empty image, "{}" reply, or unparseable reply
        """
        if not image_bytes:
            raise CouldNotExtract("No image data was provided")

        prompt = self.PROMPT.format(categories=",".join(RECEIPT_CATEGORIES))
        text = await self._generate([
            {"mime_type": mime_type, "data": image_bytes},
            prompt,
        ])
        return parse_receipt_response(text, today)


class ColumnInferenceAgent(_GeminiAgent):
    """Finds the date/amount/type/description/category columns of a sheet."""

    temperature = 0.0

    PROMPT = """
Analyze this spreadsheet data where the first row is headers and identify the columns for:
- Transaction date
- Amount
- Type (income/expense)
- Description
- Category

Data sample:
{headers}
{rows}

Return JSON with column indices (1-based), using null for a column that is not present:
{{
  "dateIndex": number,
  "amountIndex": number,
  "typeIndex": number,
  "descriptionIndex": number,
  "categoryIndex": number
}}
"""

    async def infer_columns(
        self,
        headers: Sequence[Any],
        sample_rows: Sequence[Sequence[Any]],
    ) -> ColumnMapping:
        """
        Raises:
            CouldNotExtract: The reply could not be read as a column mapping
        """
        prompt = self.PROMPT.format(
            headers=json.dumps([str(h) for h in headers]),
            rows=json.dumps([[str(c) for c in row] for row in sample_rows]),
        )
        text = await self._generate(prompt)
        return parse_column_response(text, len(headers))


class InsightsAgent(_GeminiAgent):
    """Three short pieces of advice for the monthly report."""

    PROMPT = """
Analyze this financial data and provide 3 concise, actionable insights.
Focus on spending patterns and practical advice.
Keep it friendly and conversational.

Financial Data for {month}:
- Total Income: {income}
- Total Expenses: {expenses}
- Net Income: {net}
- Expense Categories: {categories}

Format the response as a JSON array of strings, like this:
["insight 1", "insight 2", "insight 3"]
"""

    async def generate_insights(
        self,
        stats: MonthlyStats,
        month_name: str,
        currency: str = "INR",
    ) -> list[str]:
        """Never raises: any failure yields FALLBACK_INSIGHTS."""
        prompt = self.PROMPT.format(
            month=month_name,
            income=format_currency(stats.total_income, currency),
            expenses=format_currency(stats.total_expenses, currency),
            net=format_currency(stats.net_income, currency),
            categories=", ".join(
                f"{category}: {format_currency(amount, currency)}"
                for category, amount in stats.by_category.items()
            ) or "none",
        )

        try:
            text = await self._generate(prompt)
            data = extract_json(text, "[")
        except Exception as e:
            logger.warning("insights_generation_failed", error=str(e), month=month_name)
            return list(FALLBACK_INSIGHTS)

        insights = [str(item).strip() for item in data if str(item).strip()] if isinstance(data, list) else []
        if not insights:
            logger.warning("insights_response_empty", month=month_name)
            return list(FALLBACK_INSIGHTS)
        return insights[:3]
