"""
Email Rendering

Two messages leave the system: the budget alert and the monthly report.
Each renders to a subject, a plain-text body and an HTML body from the
Jinja2 templates in `templates/`. All amounts are formatted here; callers
pass Decimals.

DESIGN DECISION: HTML templates are autoescaped, so account names and
AI-written insights cannot inject markup. The plain-text templates use a
separate environment without escaping.
"""

from decimal import Decimal
from typing import Mapping, Optional, Sequence

from jinja2 import Environment, PackageLoader
from pydantic import BaseModel

from finora.ledger.money import format_currency
from finora.models.reports import MonthlyStats

_LOADER = PackageLoader("finora.services.email", "templates")
_html = Environment(loader=_LOADER, autoescape=True, trim_blocks=True, lstrip_blocks=True)
_text = Environment(loader=_LOADER, autoescape=False, trim_blocks=True, lstrip_blocks=True)


class EmailContent(BaseModel):
    subject: str
    text: str
    html: str


def _render(name: str, **context) -> tuple[str, str]:
    text = _text.get_template(f"{name}.txt").render(**context)
    html = _html.get_template(f"{name}.html").render(**context)
    return text.rstrip("\n"), html


# =============================================================================
# BUDGET ALERT
# =============================================================================

def render_budget_alert(
    user_name: Optional[str],
    account_name: str,
    percentage_used: float,
    budget_amount: Decimal,
    total_expenses: Decimal,
    currency: str = "INR",
) -> EmailContent:
    """The 'you have used N% of your budget' message."""
    remaining = budget_amount - total_expenses
    text, html = _render(
        "budget_alert",
        title="Budget Alert",
        user_name=user_name,
        account_name=account_name,
        percentage_used=percentage_used,
        rows=[
            ("Budget Amount", format_currency(budget_amount, currency)),
            ("Spent So Far", format_currency(total_expenses, currency)),
            ("Remaining", format_currency(remaining, currency)),
        ],
    )
    return EmailContent(subject=f"Budget Alert for {account_name}", text=text, html=html)


# =============================================================================
# MONTHLY REPORT
# =============================================================================

def _report_section(currency: str, stats: MonthlyStats) -> dict:
    categories = sorted(stats.by_category.items(), key=lambda item: item[1], reverse=True)
    return {
        "currency": currency,
        "summary": [
            ("Total Income", format_currency(stats.total_income, currency)),
            ("Total Expenses", format_currency(stats.total_expenses, currency)),
            ("Net", format_currency(stats.net_income, currency)),
        ],
        "categories": [(name, format_currency(amount, currency)) for name, amount in categories],
    }


def render_monthly_report(
    user_name: Optional[str],
    month_name: str,
    stats: MonthlyStats,
    insights: Sequence[str],
    currency: str = "INR",
    other_currencies: Optional[Mapping[str, MonthlyStats]] = None,
) -> EmailContent:
    """
    Last month's totals, expense breakdown and AI insights.

    `stats` are the figures in `currency`. Accounts held in other
    currencies are never added to them; each gets its own section from
    `other_currencies`, headed by its currency code.
    """
    sections = [_report_section(currency, stats)]
    for code in sorted(other_currencies or {}):
        sections.append(_report_section(code, other_currencies[code]))

    text, html = _render(
        "monthly_report",
        title="Monthly Financial Report",
        user_name=user_name,
        month_name=month_name,
        sections=sections,
        insights=list(insights),
    )
    return EmailContent(
        subject=f"Your Monthly Financial Report - {month_name}",
        text=text,
        html=html,
    )
