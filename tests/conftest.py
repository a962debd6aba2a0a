"""Shared pytest fixtures and utilities for Resell Ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from resell_ledger import constants, core_logic, data_manager  # noqa: E402
from resell_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[TaxYear]\n"
    "Start = {start}\n"
    "End = {end}\n\n"
    "[Allowance]\n"
    "TradingAllowanceLimit = {limit}\n\n"
    "[Defaults]\n"
    "Supplier = {supplier}\n"
    "StrictStock = {strict_stock}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "resell_ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        start: str = "2023-04-06",
        end: str = "2024-04-05",
        limit: str = "1000",
        supplier: str = "AliExpress",
        strict_stock: str = "no",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                schema_version=schema_version,
                start=start,
                end=end,
                limit=limit,
                supplier=supplier,
                strict_stock=strict_stock,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="resell-ledger", description="Resell Ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "resell_ledger.xlsx",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        tax_year_start=date(2023, 4, 6),
        tax_year_end=date(2024, 4, 5),
        trading_allowance_limit=Decimal("1000"),
        default_supplier="AliExpress",
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def make_purchase(
    purchase_id: str = "P1",
    *,
    date: str = "2023-05-01",
    supplier: str = "AliExpress",
    item_name: str = "Phone Case",
    quantity: int = 10,
    cost_per_unit: str = "2.00",
    shipping_fees: str = "5.00",
) -> data_manager.PurchaseRow:
    return data_manager.PurchaseRow(
        purchase_id=purchase_id,
        date=date,
        supplier=supplier,
        item_name=item_name,
        quantity=quantity,
        cost_per_unit=Decimal(cost_per_unit),
        shipping_fees=Decimal(shipping_fees),
    )


def make_sale(
    sale_id: str = "S1",
    *,
    purchase_id: str = "P1",
    date: str = "2023-06-01",
    platform: str = "Vinted",
    quantity_sold: int = 4,
    sale_price_per_unit: str = "6.00",
    buyer_postage_paid: str = "1.50",
    actual_postage_cost: str = "1.00",
    platform_fees: str = "0.60",
) -> data_manager.SaleRow:
    return data_manager.SaleRow(
        sale_id=sale_id,
        purchase_id=purchase_id,
        date=date,
        platform=platform,
        quantity_sold=quantity_sold,
        sale_price_per_unit=Decimal(sale_price_per_unit),
        buyer_postage_paid=Decimal(buyer_postage_paid),
        actual_postage_cost=Decimal(actual_postage_cost),
        platform_fees=Decimal(platform_fees),
    )


@pytest.fixture
def purchase_factory() -> Callable[..., data_manager.PurchaseRow]:
    return make_purchase


@pytest.fixture
def sale_factory() -> Callable[..., data_manager.SaleRow]:
    return make_sale
