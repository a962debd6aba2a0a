"""Plain-text renderings of the ledger views printed by the CLI."""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Sequence, Tuple, Union

from .data_manager import PurchaseRow, SaleRow
from .ledger import BatchStats, PeriodSummary, money, sale_expenses, sale_revenue

CENTS = Decimal("0.01")
TENTHS = Decimal("0.1")
BAR_WIDTH = 20

EXCEEDED_WARNING = (
    "You have exceeded the {limit} trading allowance. You likely need to "
    "register for Self Assessment. Please verify with a parent or accountant."
)
ALLOWANCE_NOTE = (
    "Information Note: If your Total Income (Turnover) is {limit} or less, you "
    "generally do not need to register for Self Assessment due to the UK "
    "Trading Allowance. If it is over {limit}, you must register."
)
DISCLAIMER = "This app is for record-keeping only and does not constitute legal or financial advice."


def format_currency(amount: object) -> str:
    """Format ``amount`` as pounds, e.g. ``£1,234.56`` or ``-£1.10``.

    Anything that is not a finite number renders as ``£0.00``.
    """
    value = money(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    return f"{sign}£{abs(value):,.2f}"


def format_limit(amount: object) -> str:
    """Format an allowance limit, dropping the pence when it is a whole number."""
    value = money(amount)
    if value == value.to_integral_value():
        return f"£{value:,.0f}"
    return format_currency(value)


def _period_text(start: Union[date, str], end: Union[date, str]) -> str:
    return f"{start} to {end}"


def allowance_bar(percent: Decimal) -> str:
    filled = int(percent / Decimal(100 // BAR_WIDTH)) if percent > 0 else 0
    filled = min(filled, BAR_WIDTH)
    return "[" + "#" * filled + "." * (BAR_WIDTH - filled) + "]"


def allowance_status(summary: PeriodSummary) -> str:
    if summary.limit_reached:
        return "Limit Reached"
    remaining = summary.percent_remaining.quantize(TENTHS, rounding=ROUND_HALF_UP)
    return f"{remaining}% remaining"


def render_dashboard(summary: PeriodSummary, start: Union[date, str], end: Union[date, str]) -> str:
    """Render headline figures and trading-allowance progress."""
    limit = format_limit(summary.allowance_limit)
    lines = [
        f"Dashboard ({_period_text(start, end)})",
        "",
        f"Total Revenue:      {format_currency(summary.total_revenue)}",
        f"Stock & Expenses:   {format_currency(summary.total_expenses)}",
        f"Net Profit:         {format_currency(summary.net_profit)}",
        f"Items Sold:         {summary.items_sold}",
        "",
        f"Trading Allowance (Limit: {limit})",
        f"{allowance_bar(summary.allowance_percent)} "
        f"{format_currency(summary.total_revenue)} earned | {allowance_status(summary)}",
        f"Allowance remaining: {format_currency(summary.allowance_remaining)}",
    ]
    if summary.allowance_exceeded:
        lines.extend(["", "WARNING: " + EXCEEDED_WARNING.format(limit=limit)])
    return "\n".join(lines)


def render_inventory(rows: Sequence[Tuple[PurchaseRow, BatchStats]]) -> str:
    """Render one line per batch with stock and profit figures."""
    if not rows:
        return "No purchases recorded yet."

    header = (
        f"{'ID':<22} {'Date':<10} {'Item':<24} {'Supplier':<14} "
        f"{'Bought':>6} {'Sold':>5} {'Left':>5} {'Cost':>11} {'Profit':>11}"
    )
    lines: List[str] = [header, "-" * len(header)]
    for purchase, stats in rows:
        left = f"{stats.quantity_left}"
        line = (
            f"{purchase.purchase_id:<22} {purchase.date:<10} {purchase.item_name[:24]:<24} "
            f"{purchase.supplier[:14]:<14} {purchase.quantity:>6} {stats.quantity_sold:>5} "
            f"{left:>5} {format_currency(stats.total_batch_cost):>11} "
            f"{format_currency(stats.profit):>11}"
        )
        if stats.oversold:
            line += "  OVERSOLD"
        lines.append(line)
    return "\n".join(lines)


def render_sales(rows: Sequence[Tuple[SaleRow, str]]) -> str:
    """Render one line per sale with its identifier, item and revenue."""
    if not rows:
        return "No sales recorded yet."

    header = (
        f"{'ID':<22} {'Date':<10} {'Item':<24} {'Platform':<20} "
        f"{'Qty':>4} {'Revenue':>11} {'Expenses':>11}"
    )
    lines: List[str] = [header, "-" * len(header)]
    for sale, item_name in rows:
        lines.append(
            f"{sale.sale_id:<22} {sale.date:<10} {item_name[:24]:<24} {sale.platform[:20]:<20} "
            f"{sale.quantity_sold:>4} {format_currency(sale_revenue(sale)):>11} "
            f"{format_currency(sale_expenses(sale)):>11}"
        )
    return "\n".join(lines)


def render_available(rows: Sequence[Tuple[PurchaseRow, int]]) -> str:
    """Render the batches a sale can be recorded against."""
    if not rows:
        return "No stock available. Record a purchase first."
    return "\n".join(
        f"{purchase.purchase_id}  {purchase.item_name} ({left} left) - Bought {purchase.date}"
        for purchase, left in rows
    )


def render_tax_summary(summary: PeriodSummary, start: Union[date, str], end: Union[date, str]) -> str:
    """Render the cash-basis summary handed to HMRC."""
    limit = format_limit(summary.allowance_limit)
    return "\n".join(
        [
            "HMRC Summary",
            f"Cash Basis Accounting: {_period_text(start, end)}",
            "",
            f"Total Income (Turnover):   {format_currency(summary.total_revenue)}",
            f"Total Allowable Expenses: -{format_currency(summary.total_expenses)}",
            f"Net Profit / Loss:         {format_currency(summary.net_profit)}",
            "",
            ALLOWANCE_NOTE.format(limit=limit),
            DISCLAIMER,
        ]
    )
