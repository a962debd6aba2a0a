"""Tests for the plain-text report renderings."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from resell_ledger import ledger, reports

START = date(2023, 4, 6)
END = date(2024, 4, 5)
LIMIT = Decimal("1000")


def _summary(purchases, sales):
    return ledger.summarize_period(purchases, sales, start=START, end=END, allowance_limit=LIMIT)


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("1234.5"), "£1,234.50"),
        (Decimal("-1.10"), "-£1.10"),
        (Decimal("0"), "£0.00"),
        (Decimal("0.005"), "£0.01"),
        (None, "£0.00"),
        ("not money", "£0.00"),
    ],
)
def test_format_currency(amount, expected):
    assert reports.format_currency(amount) == expected


def test_allowance_bar_fills_proportionally():
    assert reports.allowance_bar(Decimal("0")) == "[" + "." * 20 + "]"
    assert reports.allowance_bar(Decimal("50")) == "[" + "#" * 10 + "." * 10 + "]"
    assert reports.allowance_bar(Decimal("100")) == "[" + "#" * 20 + "]"


def test_render_dashboard_shows_totals(purchase_factory, sale_factory):
    """The dashboard shows headline figures and the remaining allowance."""

    text = reports.render_dashboard(_summary([purchase_factory()], [sale_factory()]), START, END)

    assert "Dashboard (2023-04-06 to 2024-04-05)" in text
    assert "Total Revenue:      £25.50" in text
    assert "Stock & Expenses:   £26.60" in text
    assert "Net Profit:         -£1.10" in text
    assert "Items Sold:         4" in text
    assert "Trading Allowance (Limit: £1,000)" in text
    assert "97.5% remaining" in text
    assert "Allowance remaining: £974.50" in text
    assert "WARNING" not in text


def test_render_dashboard_at_limit_is_reached_not_exceeded(sale_factory):
    sale = sale_factory(quantity_sold=1, sale_price_per_unit="1000.00", buyer_postage_paid="0")

    text = reports.render_dashboard(_summary([], [sale]), START, END)

    assert "Limit Reached" in text
    assert "WARNING" not in text


def test_render_dashboard_warns_when_exceeded(sale_factory):
    sale = sale_factory(quantity_sold=2, sale_price_per_unit="600.00", buyer_postage_paid="0")

    text = reports.render_dashboard(_summary([], [sale]), START, END)

    assert "WARNING: You have exceeded the £1,000 trading allowance." in text
    assert "Allowance remaining: -£200.00" in text


def test_render_inventory_empty():
    assert reports.render_inventory([]) == "No purchases recorded yet."


def test_render_inventory_flags_oversold_batches(purchase_factory, sale_factory):
    healthy = purchase_factory("P1")
    oversold = purchase_factory("P2", item_name="Mug", quantity=1)
    sales = [sale_factory("S1"), sale_factory("S2", purchase_id="P2", quantity_sold=2)]
    rows = [(purchase, ledger.batch_stats(purchase, sales)) for purchase in (oversold, healthy)]

    lines = reports.render_inventory(rows).splitlines()

    assert lines[0].startswith("ID")
    assert "Mug" in lines[2] and lines[2].endswith("OVERSOLD")
    assert "-1" in lines[2]
    assert "Phone Case" in lines[3] and not lines[3].endswith("OVERSOLD")


def test_render_tax_summary(purchase_factory, sale_factory):
    """The HMRC summary lists income, allowable expenses and net result."""

    text = reports.render_tax_summary(_summary([purchase_factory()], [sale_factory()]), START, END)

    assert "Cash Basis Accounting: 2023-04-06 to 2024-04-05" in text
    assert "Total Income (Turnover):   £25.50" in text
    assert "Total Allowable Expenses: -£26.60" in text
    assert "Net Profit / Loss:         -£1.10" in text
    assert "is £1,000 or less, you" in text
    assert reports.DISCLAIMER in text


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("1000"), "£1,000"),
        (Decimal("1000.00"), "£1,000"),
        (Decimal("1000.50"), "£1,000.50"),
        (Decimal("500"), "£500"),
    ],
)
def test_format_limit_drops_pence_for_whole_pounds(amount, expected):
    assert reports.format_limit(amount) == expected


def test_render_dashboard_shows_fractional_limit_with_pence():
    summary = ledger.summarize_period([], [], start=START, end=END, allowance_limit=Decimal("1000.50"))

    assert "Trading Allowance (Limit: £1,000.50)" in reports.render_dashboard(summary, START, END)


def test_render_sales_empty():
    assert reports.render_sales([]) == "No sales recorded yet."


def test_render_sales_lists_ids_and_revenue(sale_factory):
    """Each sale line leads with the ID needed to delete it."""

    rows = [(sale_factory("S2", platform="eBay"), "Unknown Item"), (sale_factory("S1"), "Phone Case")]

    lines = reports.render_sales(rows).splitlines()

    assert lines[0].startswith("ID") and "Revenue" in lines[0]
    assert lines[2].startswith("S2") and "Unknown Item" in lines[2] and "eBay" in lines[2]
    assert lines[3].startswith("S1") and "Phone Case" in lines[3]
    assert "£25.50" in lines[3] and "£1.60" in lines[3]


def test_render_available(purchase_factory):
    assert reports.render_available([]) == "No stock available. Record a purchase first."
    assert reports.render_available([(purchase_factory("P1"), 6)]) == (
        "P1  Phone Case (6 left) - Bought 2023-05-01"
    )
