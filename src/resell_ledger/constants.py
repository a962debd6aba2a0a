"""Enumerations and configuration defaults shared across Resell Ledger modules.

Centralises domain constants so that the data access layer, the ledger
computations, and the command-line front-end rely on a single source of truth
for sheet names, record kinds, and the tax-year configuration.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# UK tax year runs from 6 April to 5 April. Both dates are inclusive.
TAX_YEAR_START = "2023-04-06"
TAX_YEAR_END = "2024-04-05"

TRADING_ALLOWANCE_LIMIT = Decimal("1000")

DEFAULT_SUPPLIER = "AliExpress"
PLATFORM_OPTIONS: tuple[str, ...] = (
    "Vinted",
    "Depop",
    "eBay",
    "Facebook Marketplace",
    "Other",
)

UNKNOWN_ITEM_LABEL = "Unknown Item"

EXPORT_COLUMNS: tuple[str, ...] = ("Type", "Date", "Description", "Money In", "Money Out")


class RecordKind(str, Enum):
    """Enumerate the two record collections held by the store."""

    PURCHASE = "purchase"
    SALE = "sale"


class ExportLineType(str, Enum):
    """Enumerate the line types emitted for the accountant export."""

    PURCHASE = "Purchase"
    SALE = "Sale"
    SALE_EXPENSE = "Sale Expense"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PURCHASES = "Purchases"
    SALES = "Sales"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "TAX_YEAR_START",
    "TAX_YEAR_END",
    "TRADING_ALLOWANCE_LIMIT",
    "DEFAULT_SUPPLIER",
    "PLATFORM_OPTIONS",
    "UNKNOWN_ITEM_LABEL",
    "EXPORT_COLUMNS",
    "RecordKind",
    "ExportLineType",
    "SheetName",
]
