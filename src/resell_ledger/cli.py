"""Command-line entry points for the Resell Ledger toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing the rendered reports. Keeping the CLI thin ensures the
same parser configuration can be reused by tests, scripts, or any alternative
front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, export, log, reports
from .constants import PLATFORM_OPTIONS


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def money_argument(value: str) -> Decimal:
    """argparse ``type`` for non-negative currency amounts."""
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise argparse.ArgumentTypeError(f"amount must be zero or positive: {value!r}")
    return amount


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="resell-ledger",
        description="Track Resell Ledger purchases, sales and tax-year profit.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as purchases and sales."""
    specs = {
        "add-purchase": register_add_purchase_command(subparsers),
        "add-sale": register_add_sale_command(subparsers),
        "delete-purchase": register_delete_purchase_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
        "reset": register_reset_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports and the export."""
    specs = {
        "dashboard": register_dashboard_command(subparsers),
        "inventory": register_inventory_command(subparsers),
        "sales": register_sales_command(subparsers),
        "available": register_available_command(subparsers),
        "tax-summary": register_tax_summary_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-purchase``."""
    name = "add-purchase"
    help_text = "Record a batch of identical items bought together."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-name", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--cost-per-unit", type=money_argument, required=True)
        parser.add_argument(
            "--shipping-fees",
            type=money_argument,
            default=Decimal("0"),
            help="Total postage/import fees for the whole batch.",
        )
        parser.add_argument("--supplier", default=None, help="Defaults to the configured supplier.")
        parser.add_argument("--date", default=None, help="YYYY-MM-DD, defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_purchase, mutates=True)


def register_add_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-sale``."""
    name = "add-sale"
    help_text = "Record a sale from an existing purchase batch."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--purchase-id", required=True, help="Batch to sell from; see the available command.")
        parser.add_argument("--platform", choices=PLATFORM_OPTIONS, required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--sale-price", type=money_argument, required=True, help="Price per unit.")
        parser.add_argument("--buyer-postage", type=money_argument, default=Decimal("0"))
        parser.add_argument("--actual-postage", type=money_argument, default=Decimal("0"))
        parser.add_argument("--platform-fees", type=money_argument, default=Decimal("0"))
        parser.add_argument("--date", default=None, help="YYYY-MM-DD, defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_sale, mutates=True)


def register_delete_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-purchase``."""
    name = "delete-purchase"
    help_text = "Delete a purchase batch; its sales are kept."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--purchase-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_purchase, mutates=True)


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    name = "delete-sale"
    help_text = "Delete a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_sale, mutates=True)


def register_reset_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reset``."""
    name = "reset"
    help_text = "Delete ALL purchases and sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--yes", action="store_true", help="Confirm that all data should be deleted.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reset, mutates=True)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display tax-year totals and trading-allowance progress."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_inventory_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``inventory``."""
    name = "inventory"
    help_text = "Display every batch with stock left and profit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_inventory)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List every sale with its ID, item and revenue."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales)


def register_available_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``available``."""
    name = "available"
    help_text = "List the batches with stock left to sell."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_available)


def register_tax_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``tax-summary``."""
    name = "tax-summary"
    help_text = "Display the cash-basis HMRC summary for the tax year."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_tax_summary)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write the tax-year CSV for an accountant."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--output",
            type=Path,
            default=None,
            help="Destination file (defaults to tax_return_<start>_<end>.csv).",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_add_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(
        item_name=args.item_name,
        quantity=args.quantity,
        cost_per_unit=args.cost_per_unit,
        shipping_fees=args.shipping_fees,
        supplier=args.supplier,
        date=args.date,
    )


def translate_add_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        purchase_id=args.purchase_id,
        platform=args.platform,
        quantity_sold=args.quantity,
        sale_price_per_unit=args.sale_price,
        buyer_postage_paid=args.buyer_postage,
        actual_postage_cost=args.actual_postage,
        platform_fees=args.platform_fees,
        date=args.date,
    )


def run_add_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    command = translate_add_purchase(args)
    record = core_logic.record_purchase(context, command)
    print(f"Recorded purchase {record.purchase_id}")
    return 0


def run_add_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    command = translate_add_sale(args)
    record = core_logic.record_sale(context, command)
    print(f"Recorded sale {record.sale_id}")
    return 0


def run_delete_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_purchase(context, args.purchase_id)
    print(f"Deleted purchase {args.purchase_id}")
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sale = core_logic.get_sale(context, args.sale_id)
    core_logic.delete_sale(context, args.sale_id)
    print(f"Deleted sale {args.sale_id} ({sale.quantity_sold} on {sale.platform}, {sale.date})")
    return 0


def run_reset(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Clear all records once the user has confirmed with ``--yes``."""
    if not getattr(args, "yes", False):
        log.error("Refusing to reset without --yes")
        return 1
    purchases, sales = core_logic.reset_data(context)
    print(f"Deleted {purchases} purchase(s) and {sales} sale(s)")
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print tax-year totals and allowance progress."""
    summary = core_logic.tax_year_summary(context)
    settings = context.settings
    print(reports.render_dashboard(summary, settings.tax_year_start, settings.tax_year_end))
    return 0


def run_inventory(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every batch with stock and profit figures."""
    print(reports.render_inventory(core_logic.inventory_report(context)))
    return 0


def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every sale, most recent first, with the IDs used by ``delete-sale``."""
    print(reports.render_sales(core_logic.sales_report(context)))
    return 0


def run_available(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the batches ``add-sale`` can sell from and how many units each has left."""
    print(reports.render_available(core_logic.available_stock(context)))
    return 0


def run_tax_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the cash-basis HMRC summary."""
    summary = core_logic.tax_year_summary(context)
    settings = context.settings
    print(reports.render_tax_summary(summary, settings.tax_year_start, settings.tax_year_end))
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the accountant CSV for the configured tax year."""
    settings = context.settings
    destination = getattr(args, "output", None)
    if destination is None:
        destination = Path.cwd() / export.default_export_filename(settings.tax_year_start, settings.tax_year_end)
    written = export.write_export_csv(core_logic.export_lines(context), destination)
    print(f"Exported tax year to {written}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (core_logic.BusinessRuleViolation, ValueError)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.StorageUnavailableError):
        log.error("%s. Check that the workbook exists and is accessible.", error)
        return 5
    if isinstance(error, core_logic.PersistenceError):
        log.error("%s. No changes were saved; please try again.", error)
        return 4
    log.error("%s", error)
    return 1


def commit_workbook(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Commit workbook changes after a successful mutating command."""
    return core_logic.commit_changes(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        spec = command_table.get(args.command)
        if exit_code == 0 and spec is not None and spec.mutates:
            commit_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
