"""Tests for the accountant CSV serialisation."""

from __future__ import annotations

import csv
from datetime import date
from decimal import Decimal

from resell_ledger import export, ledger
from resell_ledger.constants import ExportLineType

START = date(2023, 4, 6)
END = date(2024, 4, 5)


def test_render_export_csv_writes_header_and_rows(purchase_factory, sale_factory):
    """The CSV has a fixed header and blank cells where no money moved."""

    lines = ledger.build_export_lines([purchase_factory()], [sale_factory()], start=START, end=END)

    text = export.render_export_csv(lines)

    assert text.splitlines() == [
        "Type,Date,Description,Money In,Money Out",
        "Purchase,2023-05-01,Phone Case (x10) from AliExpress,,25.00",
        "Sale,2023-06-01,Sold: Phone Case on Vinted,25.50,",
        "Sale Expense,2023-06-01,Fees & Postage for Phone Case,,1.60",
    ]


def test_render_export_csv_quotes_fields_with_delimiters(purchase_factory):
    """Descriptions containing commas or quotes stay a single field."""

    purchase = purchase_factory(item_name='Mug, "large"', supplier="Shop, Ltd")
    lines = ledger.build_export_lines([purchase], [], start=START, end=END)

    text = export.render_export_csv(lines)
    rows = list(csv.reader(text.splitlines()))

    assert rows[1][2] == 'Mug, "large" (x10) from Shop, Ltd'
    assert '"Mug, ""large"" (x10) from Shop, Ltd"' in text


def test_render_export_csv_with_no_lines_is_header_only():
    assert export.render_export_csv([]) == "Type,Date,Description,Money In,Money Out\n"


def test_format_amount_rounds_half_up():
    assert export.format_amount(Decimal("1.005")) == "1.01"
    assert export.format_amount(Decimal("3")) == "3.00"
    assert export.format_amount(None) == ""


def test_export_row_uses_line_type_label():
    line = ledger.ExportLine(
        line_type=ExportLineType.SALE_EXPENSE,
        date="2023-06-01",
        description="Fees & Postage for Mug",
        money_in=None,
        money_out=Decimal("0.5"),
    )

    assert export.export_row(line) == ["Sale Expense", "2023-06-01", "Fees & Postage for Mug", "", "0.50"]


def test_default_export_filename_uses_period():
    assert export.default_export_filename(START, END) == "tax_return_2023-04-06_2024-04-05.csv"
    assert export.default_export_filename("2023-04-06", "2024-04-05") == "tax_return_2023-04-06_2024-04-05.csv"


def test_write_export_csv_creates_parent_directories(tmp_path, purchase_factory):
    lines = ledger.build_export_lines([purchase_factory()], [], start=START, end=END)
    destination = tmp_path / "exports" / "out.csv"

    written = export.write_export_csv(lines, destination)

    assert written == destination.resolve()
    assert written.read_text(encoding="utf-8").splitlines()[1].startswith("Purchase,2023-05-01,")
