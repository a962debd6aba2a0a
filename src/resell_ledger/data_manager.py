"""Data access layer for Resell Ledger.

This module provides low-level helpers that read from and write to the
``resell_ledger.xlsx`` workbook. Ledger computations belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: loading sanitised records, appending new rows and
   deleting existing ones.

Every value read from the workbook passes through the ``coerce_*`` helpers,
so blank or malformed cells reach the ledger as zeros and empty strings
instead of raising or turning into ``NaN``.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_SUPPLIER,
    TAX_YEAR_END,
    TAX_YEAR_START,
    TRADING_ALLOWANCE_LIMIT,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PURCHASES_SHEET = SheetName.PURCHASES.value
SALES_SHEET = SheetName.SALES.value

PURCHASE_COLUMNS: tuple[str, ...] = (
    "PurchaseID",
    "Date",
    "Supplier",
    "ItemName",
    "Quantity",
    "CostPerUnit",
    "ShippingFees",
)

SALE_COLUMNS: tuple[str, ...] = (
    "SaleID",
    "PurchaseID",
    "Date",
    "Platform",
    "QuantitySold",
    "SalePricePerUnit",
    "BuyerPostagePaid",
    "ActualPostageCost",
    "PlatformFees",
)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    tax_year_start: date
    tax_year_end: date
    trading_allowance_limit: Decimal
    default_supplier: str
    strict_stock: bool = False


@dataclass(frozen=True)
class PurchaseRow:
    """In-memory view of a row from the ``Purchases`` sheet."""

    purchase_id: str
    date: str
    supplier: str
    item_name: str
    quantity: int
    cost_per_unit: Decimal
    shipping_fees: Decimal


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    purchase_id: str
    date: str
    platform: str
    quantity_sold: int
    sale_price_per_unit: Decimal
    buyer_postage_paid: Decimal
    actual_postage_cost: Decimal
    platform_fees: Decimal


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. The tax year, the trading allowance,
    the default supplier and the stock strictness flag are optional and fall
    back to the defaults in :mod:`resell_ledger.constants`. Relative
    ``DataFile`` entries are anchored to ``base_path`` (or the current working
    directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If the tax year dates are malformed or reversed, or the
            allowance limit is not a positive amount.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    start_raw = parser.get("TaxYear", "Start", fallback=TAX_YEAR_START)
    end_raw = parser.get("TaxYear", "End", fallback=TAX_YEAR_END)
    try:
        tax_year_start = date.fromisoformat(start_raw.strip())
        tax_year_end = date.fromisoformat(end_raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid tax year date in configuration: {exc}") from exc
    if tax_year_start > tax_year_end:
        raise ValueError(
            f"Tax year start {tax_year_start} is after tax year end {tax_year_end}")

    limit_raw = parser.get(
        "Allowance", "TradingAllowanceLimit", fallback=str(TRADING_ALLOWANCE_LIMIT))
    try:
        allowance_limit = Decimal(limit_raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid trading allowance limit: {limit_raw!r}") from exc
    if not allowance_limit.is_finite() or allowance_limit <= Decimal("0"):
        raise ValueError(f"Trading allowance limit must be positive: {limit_raw!r}")

    default_supplier = parser.get("Defaults", "Supplier", fallback=DEFAULT_SUPPLIER)
    strict_stock = parser.getboolean("Defaults", "StrictStock", fallback=False)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        tax_year_start=tax_year_start,
        tax_year_end=tax_year_end,
        trading_allowance_limit=allowance_limit,
        default_supplier=default_supplier,
        strict_stock=strict_stock,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_purchases(workbook: Workbook) -> Iterable[PurchaseRow]:
    """Iterate over purchase batches stored on the ``Purchases`` worksheet.

    Header and fully empty rows are skipped. Rows are yielded in sheet order,
    which is the order in which they were recorded.

    Args:
        workbook (Workbook): Workbook containing the ``Purchases`` sheet.

    Yields:
        PurchaseRow: One sanitised record for each meaningful row.
    """

    sheet = workbook[PURCHASES_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_purchase(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Iterate over the ``Sales`` worksheet and yield sanitised records.

    Args:
        workbook (Workbook): Workbook containing the ``Sales`` sheet.

    Yields:
        SaleRow: One sanitised record for each meaningful row.
    """

    sheet = workbook[SALES_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_sale(raw)


def append_purchase(workbook: Workbook, record: PurchaseRow) -> None:
    """Append a purchase record to the ``Purchases`` worksheet."""

    sheet = workbook[PURCHASES_SHEET]
    sheet.append(serialize_purchase(record))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sale record to the ``Sales`` worksheet."""

    sheet = workbook[SALES_SHEET]
    sheet.append(serialize_sale(record))


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> bool:
    """Remove the first row whose ``key_column`` equals ``key_value``.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to modify.
        key_column (str): Header title of the identifier column.
        key_value (str): Identifier of the row to remove.

    Returns:
        bool: ``True`` when a row was removed, ``False`` when no row matched.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        return False
    workbook[sheet_name].delete_rows(row_index)
    return True


def clear_sheet(workbook: Workbook, sheet_name: str) -> int:
    """Delete every data row of ``sheet_name`` while keeping the header.

    Returns:
        int: Number of worksheet rows removed.
    """

    sheet = workbook[sheet_name]
    data_rows = max(sheet.max_row - 1, 0)
    if data_rows:
        sheet.delete_rows(2, data_rows)
    return data_rows


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    # Build header -> column index map
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_purchase(record: PurchaseRow) -> list[object]:
    """Convert a purchase dataclass into the worksheet column ordering."""

    return [
        record.purchase_id,
        record.date,
        record.supplier,
        record.item_name,
        record.quantity,
        record.cost_per_unit,
        record.shipping_fees,
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale dataclass into the worksheet column ordering."""

    return [
        record.sale_id,
        record.purchase_id,
        record.date,
        record.platform,
        record.quantity_sold,
        record.sale_price_per_unit,
        record.buyer_postage_paid,
        record.actual_postage_cost,
        record.platform_fees,
    ]


def deserialize_purchase(raw_row: Sequence[object]) -> PurchaseRow:
    """Convert a raw worksheet row into a sanitised purchase record.

    Short rows are padded with blanks so a truncated row still yields a record
    with zeroed amounts instead of an unpacking error.
    """

    (
        purchase_id,
        date_raw,
        supplier,
        item_name,
        quantity_raw,
        cost_raw,
        shipping_raw,
    ) = _pad(raw_row, len(PURCHASE_COLUMNS))

    return PurchaseRow(
        purchase_id=coerce_text(purchase_id),
        date=coerce_date_text(date_raw),
        supplier=coerce_text(supplier),
        item_name=coerce_text(item_name),
        quantity=coerce_int(quantity_raw),
        cost_per_unit=coerce_decimal(cost_raw),
        shipping_fees=coerce_decimal(shipping_raw),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a sanitised sale record."""

    (
        sale_id,
        purchase_id,
        date_raw,
        platform,
        quantity_raw,
        price_raw,
        buyer_postage_raw,
        actual_postage_raw,
        fees_raw,
    ) = _pad(raw_row, len(SALE_COLUMNS))

    return SaleRow(
        sale_id=coerce_text(sale_id),
        purchase_id=coerce_text(purchase_id),
        date=coerce_date_text(date_raw),
        platform=coerce_text(platform),
        quantity_sold=coerce_int(quantity_raw),
        sale_price_per_unit=coerce_decimal(price_raw),
        buyer_postage_paid=coerce_decimal(buyer_postage_raw),
        actual_postage_cost=coerce_decimal(actual_postage_raw),
        platform_fees=coerce_decimal(fees_raw),
    )


def coerce_decimal(raw: object) -> Decimal:
    """Convert a stored cell value into a finite ``Decimal``.

    ``None``, booleans, non-numeric text, ``NaN`` and infinities all become
    ``Decimal("0")``.
    """

    if raw is None or isinstance(raw, bool):
        return Decimal("0")
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        log.debug("Coercing non-numeric value %r to zero", raw)
        return Decimal("0")
    if not value.is_finite():
        log.debug("Coercing non-finite value %r to zero", raw)
        return Decimal("0")
    return value


def coerce_int(raw: object) -> int:
    """Convert a stored cell value into an ``int`` count, zero when invalid."""

    return int(coerce_decimal(raw))


def coerce_text(raw: object) -> str:
    """Convert a stored cell value into text, mapping blanks to ``""``."""

    return str(raw) if raw is not None else ""


def coerce_date_text(raw: object) -> str:
    """Normalize a date cell into ISO ``YYYY-MM-DD`` text.

    Excel may turn typed dates into ``datetime`` cells; those are converted
    back to ISO text. Anything else is kept as text so the period filter can
    decide whether it parses.
    """

    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    return coerce_text(raw).strip()


def _pad(raw_row: Sequence[object], width: int) -> tuple[object, ...]:
    values = tuple(raw_row[:width])
    return values + (None,) * (width - len(values))
