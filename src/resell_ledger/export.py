"""Delimited-text serialisation of the accountant export.

The ledger selects the lines (:func:`resell_ledger.ledger.build_export_lines`);
this module only formats them: a fixed header, one record per line, money
with two decimals and blank cells where no money moved in that direction.
"""

from __future__ import annotations

import csv
import io
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Iterable, List, Optional, Union

from . import log
from .constants import EXPORT_COLUMNS
from .ledger import ExportLine

CENTS = Decimal("0.01")


def format_amount(amount: Optional[Decimal]) -> str:
    """Render an export amount with two decimals, or ``""`` for ``None``."""

    if amount is None:
        return ""
    return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


def export_row(line: ExportLine) -> List[str]:
    return [
        line.line_type.value,
        line.date,
        line.description,
        format_amount(line.money_in),
        format_amount(line.money_out),
    ]


def render_export_csv(lines: Iterable[ExportLine]) -> str:
    """Serialise export lines, header first, into CSV text.

    Fields are quoted only when they contain the delimiter, a quote or a line
    break.
    """

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for line in lines:
        writer.writerow(export_row(line))
    return buffer.getvalue()


def default_export_filename(start: Union[date, str], end: Union[date, str]) -> str:
    """Return ``tax_return_<start>_<end>.csv`` for the given period."""

    start_text = start.isoformat() if isinstance(start, date) else str(start)
    end_text = end.isoformat() if isinstance(end, date) else str(end)
    return f"tax_return_{start_text}_{end_text}.csv"


def write_export_csv(lines: Iterable[ExportLine], destination: Path) -> Path:
    """Write the export to ``destination`` and return the resolved path.

    Parent directories are created on demand.
    """

    lines = list(lines)
    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(render_export_csv(lines), encoding="utf-8")
    log.info("Wrote %d export lines to '%s'", len(lines), dest)
    return dest
