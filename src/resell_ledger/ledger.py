"""Ledger computations for Resell Ledger.

Every function in this module is a pure fold over the purchase and sale
snapshots it receives. Nothing here reads the workbook, the configuration, or
the system clock: callers pass the records and the tax-year window
explicitly, so the same snapshot always produces the same figures.

The module covers four concerns:

* stock ledger: remaining stock and per-batch financials;
* period filter: inclusive tax-year date checks;
* aggregate calculator: cash-basis totals and trading-allowance status;
* export selector: the ordered line items handed to the accountant.

Accounting is cash-basis. A batch's whole acquisition cost counts against the
period it was bought in, regardless of how much of it has sold.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Sequence, TypeVar, Union

from . import log
from .constants import UNKNOWN_ITEM_LABEL, ExportLineType
from .data_manager import PurchaseRow, SaleRow


DateLike = Union[str, date, datetime, None]
_RecordT = TypeVar("_RecordT", PurchaseRow, SaleRow)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BatchStats:
    """Derived figures for one purchase batch."""

    quantity_sold: int
    quantity_left: int
    revenue: Decimal
    sale_expenses: Decimal
    total_batch_cost: Decimal
    profit: Decimal

    @property
    def oversold(self) -> bool:
        return self.quantity_left < 0


@dataclass(frozen=True)
class PeriodSummary:
    """Cash-basis totals and trading-allowance status for one tax period."""

    total_revenue: Decimal
    total_stock_cost: Decimal
    total_selling_expenses: Decimal
    net_profit: Decimal
    items_sold: int
    allowance_limit: Decimal
    allowance_percent: Decimal
    allowance_remaining: Decimal

    @property
    def total_expenses(self) -> Decimal:
        return self.total_stock_cost + self.total_selling_expenses

    @property
    def allowance_exceeded(self) -> bool:
        """Revenue strictly above the limit; reaching it exactly is not a breach."""
        return self.total_revenue > self.allowance_limit

    @property
    def limit_reached(self) -> bool:
        return self.allowance_percent >= HUNDRED

    @property
    def percent_remaining(self) -> Decimal:
        return HUNDRED - self.allowance_percent


@dataclass(frozen=True)
class ExportLine:
    """One row of the accountant export."""

    line_type: ExportLineType
    date: str
    description: str
    money_in: Optional[Decimal]
    money_out: Optional[Decimal]


def money(value: object) -> Decimal:
    """Return ``value`` as a finite ``Decimal``, or zero when it is not one.

    Records normally arrive sanitised from the data layer; this guard keeps a
    stray ``None``, ``NaN`` or text value from poisoning a total.
    """

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    try:
        converted = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    return converted if converted.is_finite() else ZERO


def count(value: object) -> int:
    """Return ``value`` as an integer quantity, or zero when it is not one."""

    return int(money(value))


# ---------------------------------------------------------------------------
# Per-record amounts
# ---------------------------------------------------------------------------


def purchase_cost(purchase: PurchaseRow) -> Decimal:
    """Full acquisition cost of a batch: ``cost_per_unit * quantity + shipping``."""

    return money(purchase.cost_per_unit) * count(purchase.quantity) + money(purchase.shipping_fees)


def sale_revenue(sale: SaleRow) -> Decimal:
    """Money received for a sale, postage charged to the buyer included."""

    return money(sale.sale_price_per_unit) * count(sale.quantity_sold) + money(sale.buyer_postage_paid)


def sale_expenses(sale: SaleRow) -> Decimal:
    """Platform fees plus the postage actually paid to ship the sale."""

    return money(sale.platform_fees) + money(sale.actual_postage_cost)


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------


def linked_sales(purchase: PurchaseRow, all_sales: Iterable[SaleRow]) -> List[SaleRow]:
    """Return the sales that reference ``purchase``."""

    return [sale for sale in all_sales if sale.purchase_id == purchase.purchase_id]


def remaining_stock(purchase: PurchaseRow, all_sales: Iterable[SaleRow]) -> int:
    """Units of ``purchase`` not yet sold.

    The result goes negative when more units were sold than bought. It is
    never clamped so oversold batches stay visible.
    """

    sold = sum(count(sale.quantity_sold) for sale in linked_sales(purchase, all_sales))
    return count(purchase.quantity) - sold


def batch_stats(purchase: PurchaseRow, all_sales: Iterable[SaleRow]) -> BatchStats:
    """Compute sold/left counts and profit for one purchase batch.

    The batch cost is charged in full against the batch, so a batch with no
    sales reports a loss equal to its total cost.

    Args:
        purchase (PurchaseRow): Batch to evaluate.
        all_sales (Iterable[SaleRow]): Every known sale; unrelated sales are
            ignored.

    Returns:
        BatchStats: Quantities and money figures for the batch.
    """

    sales = linked_sales(purchase, all_sales)
    quantity_sold = sum(count(sale.quantity_sold) for sale in sales)
    revenue = sum((sale_revenue(sale) for sale in sales), ZERO)
    expenses = sum((sale_expenses(sale) for sale in sales), ZERO)
    total_batch_cost = purchase_cost(purchase)
    quantity_left = count(purchase.quantity) - quantity_sold
    if quantity_left < 0:
        log.debug(
            "Batch '%s' is oversold by %d unit(s)",
            purchase.purchase_id,
            -quantity_left,
        )
    return BatchStats(
        quantity_sold=quantity_sold,
        quantity_left=quantity_left,
        revenue=revenue,
        sale_expenses=expenses,
        total_batch_cost=total_batch_cost,
        profit=revenue - total_batch_cost - expenses,
    )


def available_batches(purchases: Iterable[PurchaseRow], all_sales: Sequence[SaleRow]) -> List[PurchaseRow]:
    """Return the batches that still have stock to sell."""

    return [purchase for purchase in purchases if remaining_stock(purchase, all_sales) > 0]


# ---------------------------------------------------------------------------
# Period filter
# ---------------------------------------------------------------------------


def parse_date(value: DateLike) -> Optional[date]:
    """Parse an ISO date (or ``date``/``datetime``) into a ``date``.

    Returns ``None`` for blanks and anything that does not parse.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def in_period(date_value: DateLike, start: DateLike, end: DateLike) -> bool:
    """Return ``True`` when ``start <= date_value <= end``.

    Both bounds are inclusive. An empty or malformed ``date_value`` is simply
    outside the period.
    """

    when = parse_date(date_value)
    if when is None:
        return False
    start_date = parse_date(start)
    end_date = parse_date(end)
    if start_date is None or end_date is None:
        raise ValueError(f"Invalid period bounds: {start!r} .. {end!r}")
    return start_date <= when <= end_date


def filter_period(records: Iterable[_RecordT], start: DateLike, end: DateLike) -> List[_RecordT]:
    """Keep the records dated inside the period, preserving their order."""

    return [record for record in records if in_period(record.date, start, end)]


# ---------------------------------------------------------------------------
# Aggregate calculator
# ---------------------------------------------------------------------------


def trading_allowance_percent(total_revenue: Decimal, allowance_limit: Decimal) -> Decimal:
    """Share of the allowance used, as a percentage clamped to ``[0, 100]``."""

    limit = money(allowance_limit)
    if limit <= ZERO:
        raise ValueError("Trading allowance limit must be positive")
    percent = money(total_revenue) / limit * HUNDRED
    return max(ZERO, min(HUNDRED, percent))


def summarize(
    purchases: Iterable[PurchaseRow],
    sales: Iterable[SaleRow],
    *,
    allowance_limit: Decimal,
) -> PeriodSummary:
    """Aggregate already-filtered purchases and sales into a summary.

    Stock cost counts every batch passed in, sold or not.
    """

    purchases = list(purchases)
    sales = list(sales)
    total_revenue = sum((sale_revenue(sale) for sale in sales), ZERO)
    total_stock_cost = sum((purchase_cost(purchase) for purchase in purchases), ZERO)
    total_selling_expenses = sum((sale_expenses(sale) for sale in sales), ZERO)
    items_sold = sum(count(sale.quantity_sold) for sale in sales)
    limit = money(allowance_limit)
    summary = PeriodSummary(
        total_revenue=total_revenue,
        total_stock_cost=total_stock_cost,
        total_selling_expenses=total_selling_expenses,
        net_profit=total_revenue - total_stock_cost - total_selling_expenses,
        items_sold=items_sold,
        allowance_limit=limit,
        allowance_percent=trading_allowance_percent(total_revenue, limit),
        allowance_remaining=limit - total_revenue,
    )
    log.debug(
        "Summarized %d purchases and %d sales: revenue=%s profit=%s",
        len(purchases),
        len(sales),
        summary.total_revenue,
        summary.net_profit,
    )
    return summary


def summarize_period(
    purchases: Iterable[PurchaseRow],
    sales: Iterable[SaleRow],
    *,
    start: DateLike,
    end: DateLike,
    allowance_limit: Decimal,
) -> PeriodSummary:
    """Filter both collections to the tax period and aggregate them."""

    return summarize(
        filter_period(purchases, start, end),
        filter_period(sales, start, end),
        allowance_limit=allowance_limit,
    )


# ---------------------------------------------------------------------------
# Export selector
# ---------------------------------------------------------------------------


def resolve_item_name(purchase_id: str, purchases: Iterable[PurchaseRow]) -> str:
    """Return the item name of ``purchase_id`` or the unknown-item label."""

    for purchase in purchases:
        if purchase.purchase_id == purchase_id and purchase.item_name:
            return purchase.item_name
    return UNKNOWN_ITEM_LABEL


def build_export_lines(
    purchases: Sequence[PurchaseRow],
    sales: Sequence[SaleRow],
    *,
    start: DateLike,
    end: DateLike,
) -> List[ExportLine]:
    """Select the accountant export lines for the tax period.

    One ``Purchase`` line per period purchase, then a ``Sale`` and a
    ``Sale Expense`` line per period sale. Lines follow snapshot order within
    each block and are not re-sorted by date. Item names are looked up in
    ``purchases`` as a whole, so a sale of stock bought in an earlier period
    still gets its name.

    Args:
        purchases (Sequence[PurchaseRow]): Every known purchase.
        sales (Sequence[SaleRow]): Every known sale.
        start: First day of the period (inclusive).
        end: Last day of the period (inclusive).

    Returns:
        list[ExportLine]: ``m + 2n`` lines for ``m`` purchases and ``n`` sales
            inside the period.
    """

    lines: List[ExportLine] = []
    for purchase in filter_period(purchases, start, end):
        lines.append(
            ExportLine(
                line_type=ExportLineType.PURCHASE,
                date=purchase.date,
                description=f"{purchase.item_name} (x{count(purchase.quantity)}) from {purchase.supplier}",
                money_in=None,
                money_out=purchase_cost(purchase),
            )
        )

    for sale in filter_period(sales, start, end):
        item_name = resolve_item_name(sale.purchase_id, purchases)
        if item_name == UNKNOWN_ITEM_LABEL:
            log.warning("Sale '%s' references unknown purchase '%s'", sale.sale_id, sale.purchase_id)
        lines.append(
            ExportLine(
                line_type=ExportLineType.SALE,
                date=sale.date,
                description=f"Sold: {item_name} on {sale.platform}",
                money_in=sale_revenue(sale),
                money_out=None,
            )
        )
        lines.append(
            ExportLine(
                line_type=ExportLineType.SALE_EXPENSE,
                date=sale.date,
                description=f"Fees & Postage for {item_name}",
                money_in=None,
                money_out=sale_expenses(sale),
            )
        )

    log.debug("Selected %d export lines", len(lines))
    return lines
