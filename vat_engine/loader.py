"""
Data-source loading and saving.

A data directory holds three JSON collections, plus the ledger import
trail when one has been written:

    vat_returns.json     - list of returns
    transactions.json    - list of ledger transactions
    vendors.json         - list of vendors
    ledger_activity.json - import audit trail (optional)

Any failure to read or parse them raises DataSourceError; a failed load
never degrades into an empty dataset.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, TypeVar, Union

import pandas as pd

from vat_engine.errors import DataSourceError
from vat_engine.models import ActivityEntry, Transaction, VatReturn, Vendor

logger = logging.getLogger(__name__)

RETURNS_FILE = "vat_returns.json"
TRANSACTIONS_FILE = "transactions.json"
VENDORS_FILE = "vendors.json"
LEDGER_ACTIVITY_FILE = "ledger_activity.json"  # optional

# Ledger CSV columns, in export order
CSV_TRANSACTION_COLUMNS = [
    "date",
    "type",
    "vendor",
    "invoiceNumber",
    "amount",
    "vatAmount",
    "vatCategory",
    "category",
]

T = TypeVar("T")


@dataclass
class DataSet:
    returns: list[VatReturn] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    vendors: list[Vendor] = field(default_factory=list)
    ledger_activity: list[ActivityEntry] = field(default_factory=list)


def _read_collection(path: Path, parse: Callable[[dict], T]) -> list[T]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise DataSourceError(str(path), "file not found") from e
    except (OSError, UnicodeDecodeError) as e:
        raise DataSourceError(str(path), str(e)) from e
    except json.JSONDecodeError as e:
        raise DataSourceError(str(path), f"invalid JSON: {e}") from e

    if not isinstance(raw, list):
        raise DataSourceError(str(path), "expected a JSON list")

    items: list[T] = []
    for i, entry in enumerate(raw):
        try:
            items.append(parse(entry))
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise DataSourceError(str(path), f"entry {i}: {e!r}") from e
    return items


def load_dataset(data_dir: Union[str, Path]) -> DataSet:
    """Load returns, transactions and vendors from ``data_dir``."""
    base = Path(data_dir)
    dataset = DataSet(
        returns=_read_collection(base / RETURNS_FILE, VatReturn.from_dict),
        transactions=_read_collection(base / TRANSACTIONS_FILE, Transaction.from_dict),
        vendors=_read_collection(base / VENDORS_FILE, Vendor.from_dict),
    )
    activity_path = base / LEDGER_ACTIVITY_FILE
    if activity_path.exists():
        dataset.ledger_activity = _read_collection(activity_path, ActivityEntry.from_dict)
    logger.info(
        "Loaded %d returns, %d transactions, %d vendors from %s",
        len(dataset.returns),
        len(dataset.transactions),
        len(dataset.vendors),
        base,
    )
    return dataset


def _write_collection(path: Path, items: list[Any]) -> None:
    payload = json.dumps([item.to_dict() for item in items], indent=2)
    try:
        path.write_text(payload + "\n", encoding="utf-8")
    except OSError as e:
        raise DataSourceError(str(path), str(e)) from e


def save_dataset(dataset: DataSet, data_dir: Union[str, Path]) -> None:
    """Write every collection to ``data_dir``, creating it if needed."""
    base = Path(data_dir)
    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DataSourceError(str(base), str(e)) from e
    _write_collection(base / RETURNS_FILE, dataset.returns)
    _write_collection(base / TRANSACTIONS_FILE, dataset.transactions)
    _write_collection(base / VENDORS_FILE, dataset.vendors)
    _write_collection(base / LEDGER_ACTIVITY_FILE, dataset.ledger_activity)
    logger.info("Saved dataset to %s", base)


def read_transactions_csv(path: Union[str, Path]) -> list[dict[str, str]]:
    """
    Read a ledger CSV into raw import rows.

    Every cell is kept as text so the importer decides what counts as
    malformed. Unknown columns are ignored; missing ones are absent.
    """
    csv_path = Path(path)
    try:
        frame = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    except FileNotFoundError as e:
        raise DataSourceError(str(csv_path), "file not found") from e
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise DataSourceError(str(csv_path), str(e)) from e

    frame.columns = [str(c).strip() for c in frame.columns]
    columns = [c for c in CSV_TRANSACTION_COLUMNS if c in frame.columns]
    rows = frame[columns].to_dict(orient="records")
    logger.debug("Read %d ledger rows from %s", len(rows), csv_path)
    return rows
