"""Record store and business rules for Resell Ledger.

This module owns the purchase and sale collections held in the workbook. It
consumes the Data Access Layer (DAL) for all I/O, enforces the entry-time
rules for new records, and hands immutable snapshots to :mod:`ledger` for
every figure the application displays or exports.

Mutations follow an optimistic pattern: they are applied to the in-memory
workbook first and committed with :func:`commit_changes`. A failed commit
discards the local changes by reloading the workbook from disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, ledger, log
from .constants import EXPECTED_SCHEMA_VERSION, PLATFORM_OPTIONS, RecordKind


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced purchase or sale is unknown."""


class PersistenceError(Exception):
    """Raised when committing the workbook fails.

    Local changes have already been discarded; ``recovered_context`` holds a
    context reloaded from the last saved workbook so callers can retry.
    """

    def __init__(self, message: str, *, recovered_context: Optional["RuntimeContext"] = None) -> None:
        super().__init__(message)
        self.recovered_context = recovered_context


class StorageUnavailableError(PersistenceError):
    """Raised when the backing workbook cannot be reached at all."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of both record collections at one point in time."""

    purchases: Tuple[data_manager.PurchaseRow, ...]
    sales: Tuple[data_manager.SaleRow, ...]


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording a purchase batch."""

    item_name: str
    quantity: int
    cost_per_unit: Decimal
    shipping_fees: Decimal = Decimal("0.00")
    supplier: Optional[str] = None
    date: Optional[str] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale against a purchase batch."""

    purchase_id: str
    platform: str
    quantity_sold: int
    sale_price_per_unit: Decimal
    buyer_postage_paid: Decimal = Decimal("0.00")
    actual_postage_cost: Decimal = Decimal("0.00")
    platform_fees: Decimal = Decimal("0.00")
    date: Optional[str] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_purchases_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the purchase cache bucket on demand.

    The bucket stores the records in sheet order under ``all`` and a
    ``by_id`` lookup dictionary.
    """

    bucket = _get_cache_bucket(context, "purchases")
    if "all" not in bucket:
        all_purchases = tuple(data_manager.iter_purchases(context.workbook))
        bucket["all"] = all_purchases
        bucket["by_id"] = {purchase.purchase_id: purchase for purchase in all_purchases}
        log.debug("Populated purchases cache with %d entries", len(all_purchases))
    return bucket


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the sale cache bucket on demand."""

    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        all_sales = tuple(data_manager.iter_sales(context.workbook))
        bucket["all"] = all_sales
        bucket["by_id"] = {sale.sale_id: sale for sale in all_sales}
        log.debug("Populated sales cache with %d entries", len(all_sales))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
        ValueError: When configured values are malformed.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def snapshot(context: RuntimeContext) -> LedgerSnapshot:
    """Return the current purchase and sale collections as one snapshot.

    Both tuples come from the context caches, which are rebuilt from the
    workbook after every mutation.
    """
    return LedgerSnapshot(
        purchases=_ensure_purchases_cache(context)["all"],
        sales=_ensure_sales_cache(context)["all"],
    )


def list_purchases(context: RuntimeContext, *, newest_first: bool = False) -> List[data_manager.PurchaseRow]:
    """Return purchase batches in sheet order, or most recent first."""
    purchases = list(_ensure_purchases_cache(context)["all"])
    if newest_first:
        purchases.reverse()
    return purchases


def list_sales(context: RuntimeContext, *, newest_first: bool = False) -> List[data_manager.SaleRow]:
    """Return sales in sheet order, or most recent first."""
    sales = list(_ensure_sales_cache(context)["all"])
    if newest_first:
        sales.reverse()
    return sales


def get_purchase(context: RuntimeContext, purchase_id: str) -> data_manager.PurchaseRow:
    """Resolve a purchase batch by its identifier.

    Raises:
        MissingReferenceError: If ``purchase_id`` is absent from the workbook.
    """
    cache = _ensure_purchases_cache(context)
    try:
        return cache["by_id"][purchase_id]
    except KeyError as exc:
        log.warning("Purchase lookup failed for id '%s'", purchase_id)
        raise MissingReferenceError(f"Unknown purchase id: {purchase_id}") from exc


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Resolve a sale by its identifier.

    Raises:
        MissingReferenceError: If ``sale_id`` is absent from the workbook.
    """
    cache = _ensure_sales_cache(context)
    try:
        return cache["by_id"][sale_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Unknown sale id: {sale_id}") from exc


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> data_manager.PurchaseRow:
    """Validate and append a purchase batch.

    Missing supplier and date fall back to the configured default supplier
    and today's date.

    Returns:
        data_manager.PurchaseRow: The record as appended to the workbook.

    Raises:
        ValueError: When the quantity, amounts, item name or date are invalid.
    """
    if not command.item_name or not command.item_name.strip():
        log.error("Purchase rejected: empty item name")
        raise ValueError("Item name must not be empty")
    require_positive_quantity(command.quantity)
    require_nonnegative_money(command.cost_per_unit)
    require_nonnegative_money(command.shipping_fees)
    entry_date = resolve_entry_date(command.date)

    record = data_manager.PurchaseRow(
        purchase_id=generate_record_id(prefix="P"),
        date=entry_date,
        supplier=(command.supplier or "").strip() or context.settings.default_supplier,
        item_name=command.item_name.strip(),
        quantity=command.quantity,
        cost_per_unit=command.cost_per_unit,
        shipping_fees=command.shipping_fees,
    )
    data_manager.append_purchase(context.workbook, record)
    _invalidate_cache(context, "purchases")
    log.info(
        "Recorded purchase '%s' of %s x %d (cost=%s)",
        record.purchase_id,
        record.item_name,
        record.quantity,
        ledger.purchase_cost(record),
    )
    return record


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.SaleRow:
    """Validate and append a sale against an existing purchase batch.

    The referenced batch must exist when the sale is entered. Selling more
    units than remain is allowed and logged, unless the configuration sets
    ``StrictStock``, in which case it is rejected.

    Returns:
        data_manager.SaleRow: The record as appended to the workbook.

    Raises:
        MissingReferenceError: If the purchase batch is unknown.
        BusinessRuleViolation: If ``StrictStock`` is on and the sale exceeds
            the remaining stock.
        ValueError: When the quantity, amounts, platform or date are invalid.
    """
    purchase = get_purchase(context, command.purchase_id)
    require_positive_quantity(command.quantity_sold)
    for amount in (
        command.sale_price_per_unit,
        command.buyer_postage_paid,
        command.actual_postage_cost,
        command.platform_fees,
    ):
        require_nonnegative_money(amount)
    if not command.platform or not command.platform.strip():
        log.error("Sale rejected: empty platform")
        raise ValueError("Platform must not be empty")
    if command.platform not in PLATFORM_OPTIONS:
        log.warning("Recording sale on unlisted platform '%s'", command.platform)
    entry_date = resolve_entry_date(command.date)

    available = ledger.remaining_stock(purchase, _ensure_sales_cache(context)["all"])
    if command.quantity_sold > available:
        if context.settings.strict_stock:
            log.error(
                "Sale rejected: %d requested but only %d left in batch '%s'",
                command.quantity_sold,
                available,
                purchase.purchase_id,
            )
            raise BusinessRuleViolation(
                f"Only {available} unit(s) left in batch '{purchase.purchase_id}'"
            )
        log.warning(
            "Sale of %d exceeds remaining stock %d for batch '%s'",
            command.quantity_sold,
            available,
            purchase.purchase_id,
        )

    record = data_manager.SaleRow(
        sale_id=generate_record_id(prefix="S"),
        purchase_id=purchase.purchase_id,
        date=entry_date,
        platform=command.platform.strip(),
        quantity_sold=command.quantity_sold,
        sale_price_per_unit=command.sale_price_per_unit,
        buyer_postage_paid=command.buyer_postage_paid,
        actual_postage_cost=command.actual_postage_cost,
        platform_fees=command.platform_fees,
    )
    data_manager.append_sale(context.workbook, record)
    _invalidate_cache(context, "sales")
    log.info(
        "Recorded sale '%s' of %d from batch '%s' on %s (revenue=%s)",
        record.sale_id,
        record.quantity_sold,
        record.purchase_id,
        record.platform,
        ledger.sale_revenue(record),
    )
    return record


def delete_record(context: RuntimeContext, kind: RecordKind, record_id: str) -> None:
    """Delete a purchase or a sale by identifier.

    Deleting a purchase leaves its sales in place; they become orphaned and
    keep counting towards the period totals.

    Raises:
        MissingReferenceError: If no record of ``kind`` has ``record_id``.
    """
    if kind is RecordKind.PURCHASE:
        orphaned = [sale for sale in _ensure_sales_cache(context)["all"] if sale.purchase_id == record_id]
        removed = data_manager.delete_row(
            context.workbook, data_manager.PURCHASES_SHEET, "PurchaseID", record_id)
        bucket = "purchases"
        if removed and orphaned:
            log.warning("Deleting purchase '%s' orphans %d sale(s)", record_id, len(orphaned))
    elif kind is RecordKind.SALE:
        removed = data_manager.delete_row(
            context.workbook, data_manager.SALES_SHEET, "SaleID", record_id)
        bucket = "sales"
    else:
        raise BusinessRuleViolation(f"Unsupported record kind: {kind}")

    if not removed:
        log.warning("Delete failed: no %s with id '%s'", kind.value, record_id)
        raise MissingReferenceError(f"Unknown {kind.value} id: {record_id}")

    _invalidate_cache(context, bucket)
    log.info("Deleted %s '%s'", kind.value, record_id)


def delete_purchase(context: RuntimeContext, purchase_id: str) -> None:
    delete_record(context, RecordKind.PURCHASE, purchase_id)


def delete_sale(context: RuntimeContext, sale_id: str) -> None:
    delete_record(context, RecordKind.SALE, sale_id)


def reset_data(context: RuntimeContext) -> Tuple[int, int]:
    """Remove every purchase and sale from the workbook.

    Returns:
        tuple[int, int]: Number of purchase and sale rows removed.
    """
    purchases_removed = data_manager.clear_sheet(context.workbook, data_manager.PURCHASES_SHEET)
    sales_removed = data_manager.clear_sheet(context.workbook, data_manager.SALES_SHEET)
    _invalidate_cache(context, "purchases", "sales")
    log.warning(
        "Reset ledger data: removed %d purchase(s) and %d sale(s)",
        purchases_removed,
        sales_removed,
    )
    return purchases_removed, sales_removed


def tax_year_summary(context: RuntimeContext) -> ledger.PeriodSummary:
    """Aggregate the configured tax year from the current snapshot."""
    current = snapshot(context)
    settings = context.settings
    return ledger.summarize_period(
        current.purchases,
        current.sales,
        start=settings.tax_year_start,
        end=settings.tax_year_end,
        allowance_limit=settings.trading_allowance_limit,
    )


def inventory_report(context: RuntimeContext) -> List[Tuple[data_manager.PurchaseRow, ledger.BatchStats]]:
    """Pair each purchase batch, most recent first, with its batch figures."""
    sales = _ensure_sales_cache(context)["all"]
    return [(purchase, ledger.batch_stats(purchase, sales)) for purchase in list_purchases(context, newest_first=True)]


def sales_report(context: RuntimeContext) -> List[Tuple[data_manager.SaleRow, str]]:
    """Pair each sale, most recent first, with the item name of its batch.

    Sales whose batch was deleted resolve to the unknown-item label.
    """
    purchases = _ensure_purchases_cache(context)["all"]
    return [
        (sale, ledger.resolve_item_name(sale.purchase_id, purchases))
        for sale in list_sales(context, newest_first=True)
    ]


def available_stock(context: RuntimeContext) -> List[Tuple[data_manager.PurchaseRow, int]]:
    """Batches that still have units to sell, most recent first, with the units left."""
    sales = _ensure_sales_cache(context)["all"]
    return [
        (purchase, ledger.remaining_stock(purchase, sales))
        for purchase in ledger.available_batches(list_purchases(context, newest_first=True), sales)
    ]


def export_lines(context: RuntimeContext) -> List[ledger.ExportLine]:
    """Select the accountant export lines for the configured tax year."""
    current = snapshot(context)
    return ledger.build_export_lines(
        current.purchases,
        current.sales,
        start=context.settings.tax_year_start,
        end=context.settings.tax_year_end,
    )


def generate_record_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable record identifier using UTC timestamps.

    Args:
        prefix (str): Designator prepended to the identifier, ``"P"`` for
            purchases and ``"S"`` for sales.
        when (datetime | None): Timestamp used for deterministically producing
            the identifier. When ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def resolve_entry_date(candidate: Optional[str]) -> str:
    """Validate an entry date, defaulting to today's local date.

    Raises:
        ValueError: If ``candidate`` is not an ISO ``YYYY-MM-DD`` date.
    """
    if candidate is None or not candidate.strip():
        return date.today().isoformat()
    try:
        return date.fromisoformat(candidate.strip()).isoformat()
    except ValueError as exc:
        log.error("Date validation failed: %s", candidate)
        raise ValueError(f"Date must be in YYYY-MM-DD format: {candidate!r}") from exc


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a whole number of at least one.

    Raises:
        ValueError: If ``quantity`` is zero, negative, or not an integer.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be a whole number greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is finite and nonnegative.

    Raises:
        ValueError: If ``amount`` is negative, ``NaN`` or infinite.
    """
    if not isinstance(amount, Decimal) or not amount.is_finite() or amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to disk."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def commit_changes(context: RuntimeContext) -> RuntimeContext:
    """Persist local mutations, reverting to the saved workbook on failure.

    Returns:
        RuntimeContext: ``context`` itself once the save succeeded.

    Raises:
        PersistenceError: The save failed; local changes were discarded and
            ``recovered_context`` holds the reloaded state.
        StorageUnavailableError: The save failed and the workbook could not
            be reloaded either.
    """
    try:
        persist_context(context)
        return context
    except OSError as exc:
        log.error("Failed to persist workbook '%s': %s", context.settings.data_file, exc)
        save_error = exc

    try:
        recovered = refresh_context(context)
    except OSError as exc:
        log.error("Workbook '%s' is unavailable: %s", context.settings.data_file, exc)
        raise StorageUnavailableError(
            f"Workbook unavailable: {context.settings.data_file}"
        ) from exc

    log.warning("Discarded unsaved changes after failed save")
    raise PersistenceError(
        f"Could not save workbook: {save_error}",
        recovered_context=recovered,
    ) from save_error
