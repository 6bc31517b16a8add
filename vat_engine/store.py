"""
In-memory repositories behind the engine.

- ReturnRepository  - VAT returns keyed by id, newest first
- TransactionStore  - the imported ledger shared by all returns
- VendorDirectory   - read-only vendor reference data

Every repository guards its collection with a lock and hands out copies,
so callers never hold a reference into stored state.
"""

from __future__ import annotations

import copy
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any, Iterable, Optional

from vat_engine.errors import NotFoundError
from vat_engine.models import (
    ZERO,
    ActivityEntry,
    ImportRowResult,
    ImportStatus,
    Transaction,
    TransactionType,
    VatCategory,
    VatReturn,
    VatStatus,
    Vendor,
    new_id,
    round_money,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------


class ReturnRepository:
    """Thread-safe store of VAT returns."""

    def __init__(self, returns: Optional[Iterable[VatReturn]] = None) -> None:
        self._lock = Lock()
        self._returns: dict[str, VatReturn] = {}
        for vr in returns or []:
            self._returns[vr.id] = copy.deepcopy(vr)

    def __len__(self) -> int:
        with self._lock:
            return len(self._returns)

    def __contains__(self, return_id: object) -> bool:
        with self._lock:
            return return_id in self._returns

    def get(self, return_id: str) -> VatReturn:
        with self._lock:
            vr = self._returns.get(return_id)
            if vr is None:
                raise NotFoundError("Return", return_id)
            return copy.deepcopy(vr)

    def add(self, vr: VatReturn) -> None:
        with self._lock:
            self._returns[vr.id] = copy.deepcopy(vr)

    def replace(self, vr: VatReturn) -> None:
        with self._lock:
            if vr.id not in self._returns:
                raise NotFoundError("Return", vr.id)
            self._returns[vr.id] = copy.deepcopy(vr)

    def remove(self, return_id: str) -> None:
        with self._lock:
            if self._returns.pop(return_id, None) is None:
                raise NotFoundError("Return", return_id)

    def all(self) -> list[VatReturn]:
        """All returns, most recently created first."""
        with self._lock:
            returns = [copy.deepcopy(vr) for vr in self._returns.values()]
        # Later insertion wins ties on created_at
        ordered = sorted(
            enumerate(returns), key=lambda pair: (pair[1].created_at, pair[0])
        )
        return [vr for _, vr in reversed(ordered)]

    def filed(self) -> list[VatReturn]:
        with self._lock:
            return [
                copy.deepcopy(vr)
                for vr in self._returns.values()
                if vr.status == VatStatus.FILED
            ]


# ---------------------------------------------------------------------------
# Vendors
# ---------------------------------------------------------------------------


class VendorDirectory:
    """Reference lookup of vendors by id or name."""

    def __init__(self, vendors: Optional[Iterable[Vendor]] = None) -> None:
        self._vendors: dict[str, Vendor] = {v.id: v for v in vendors or []}

    def __len__(self) -> int:
        return len(self._vendors)

    def get(self, vendor_id: str) -> Vendor:
        vendor = self._vendors.get(vendor_id)
        if vendor is None:
            raise NotFoundError("Vendor", vendor_id)
        return vendor

    def resolve(self, name_or_id: Any) -> Optional[Vendor]:
        """Find a vendor by exact id, then by case-insensitive name."""
        if not name_or_id:
            return None
        key = str(name_or_id).strip()
        if key in self._vendors:
            return self._vendors[key]
        lowered = key.lower()
        for vendor in self._vendors.values():
            if vendor.name.lower() == lowered:
                return vendor
        return None

    def all(self) -> list[Vendor]:
        return sorted(self._vendors.values(), key=lambda v: v.name.lower())


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------

# Accepted spellings for each ledger column (CSV headers are camelCase)
_ROW_KEYS: dict[str, tuple[str, ...]] = {
    "date": ("date",),
    "type": ("type",),
    "vendor": ("vendor", "vendor_id", "vendorId"),
    "invoice_number": ("invoice_number", "invoiceNumber"),
    "amount": ("amount",),
    "vat_amount": ("vat_amount", "vatAmount"),
    "vat_category": ("vat_category", "vatCategory"),
    "category": ("category",),
}


def _field(row: dict, name: str) -> Any:
    for key in _ROW_KEYS[name]:
        value = row.get(key)
        if value is not None and str(value).strip() != "":
            return value
    return None


def _normalize_label(value: Any) -> str:
    return str(value).strip().lower().replace("_", "-").replace(" ", "-")


_TYPE_LOOKUP = {_normalize_label(t.value): t for t in TransactionType}
_CATEGORY_LOOKUP = {_normalize_label(c.value): c for c in VatCategory}


def _parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a monetary field; ``None`` means malformed."""
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
        if not amount.is_finite():
            return None
        return round_money(amount)
    except InvalidOperation:
        # Unparseable, or too many digits to quantize to cents
        return None


def normalize_row(
    index: int,
    row: Any,
    vendors: Optional[VendorDirectory] = None,
    today: Optional[date] = None,
) -> ImportRowResult:
    """
    Turn one raw ledger row into a full Transaction.

    Absent fields take their defaults silently. Malformed amounts and a
    missing date fall back to defaults and are reported as ``defaulted``;
    an unreadable date or an unknown type/category rejects the row.
    """
    if not isinstance(row, dict):
        return ImportRowResult(
            index, ImportStatus.REJECTED, issues=["row is not a mapping"]
        )

    issues: list[str] = []
    rejected: list[str] = []

    raw_date = _field(row, "date")
    if raw_date is None:
        txn_date = today or date.today()
        issues.append(f"date missing; defaulted to {txn_date.isoformat()}")
    else:
        try:
            txn_date = date.fromisoformat(str(raw_date).strip()[:10])
        except ValueError:
            rejected.append(f"unreadable date {raw_date!r}")

    raw_type = _field(row, "type")
    txn_type = TransactionType.SALE
    if raw_type is not None:
        found_type = _TYPE_LOOKUP.get(_normalize_label(raw_type))
        if found_type is None:
            rejected.append(f"unknown transaction type {raw_type!r}")
        else:
            txn_type = found_type

    raw_category = _field(row, "vat_category")
    vat_category = VatCategory.VATABLE
    if raw_category is not None:
        found_category = _CATEGORY_LOOKUP.get(_normalize_label(raw_category))
        if found_category is None:
            rejected.append(f"unknown VAT category {raw_category!r}")
        else:
            vat_category = found_category

    if rejected:
        return ImportRowResult(index, ImportStatus.REJECTED, issues=rejected)

    amounts: dict[str, Decimal] = {}
    for name in ("amount", "vat_amount"):
        raw = _field(row, name)
        if raw is None:
            amounts[name] = ZERO
            continue
        parsed = _parse_amount(raw)
        if parsed is None:
            issues.append(f"malformed {name} {raw!r}; defaulted to 0.00")
            amounts[name] = ZERO
        else:
            amounts[name] = parsed

    vendor = vendors.resolve(_field(row, "vendor")) if vendors else None

    txn = Transaction(
        id=new_id(),
        date=txn_date,
        type=txn_type,
        amount=amounts["amount"],
        vat_amount=amounts["vat_amount"],
        vat_category=vat_category,
        vendor_id=vendor.id if vendor else None,
        invoice_number=str(_field(row, "invoice_number") or "").strip(),
        category=str(_field(row, "category") or "").strip(),
    )
    status = ImportStatus.DEFAULTED if issues else ImportStatus.IMPORTED
    return ImportRowResult(index, status, transaction=txn, issues=issues)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionStore:
    """
    The ingested ledger, newest imports first.

    Transactions are only ever added by import and changed by matching
    or releasing; the store never deletes them.
    """

    def __init__(
        self,
        transactions: Optional[Iterable[Transaction]] = None,
        activity: Optional[Iterable[ActivityEntry]] = None,
    ) -> None:
        self._lock = Lock()
        self._transactions: list[Transaction] = [
            copy.deepcopy(t) for t in transactions or []
        ]
        self._index: dict[str, Transaction] = {
            t.id: t for t in self._transactions
        }
        self._activity: list[ActivityEntry] = list(activity or [])

    def __len__(self) -> int:
        with self._lock:
            return len(self._transactions)

    @property
    def activity(self) -> list[ActivityEntry]:
        """Import audit trail for the ledger."""
        with self._lock:
            return list(self._activity)

    def record(self, entry: ActivityEntry) -> None:
        with self._lock:
            self._activity.append(entry)

    def get(self, txn_id: str) -> Transaction:
        with self._lock:
            txn = self._index.get(txn_id)
            if txn is None:
                raise NotFoundError("Transaction", txn_id)
            return copy.deepcopy(txn)

    def snapshot(self) -> list[Transaction]:
        """Stable copy of the whole ledger at this instant."""
        with self._lock:
            return [copy.deepcopy(t) for t in self._transactions]

    def select(self, matched: Optional[bool] = None) -> list[Transaction]:
        txns = self.snapshot()
        if matched is None:
            return txns
        return [t for t in txns if t.matched == matched]

    def add(self, transactions: list[Transaction]) -> None:
        """Prepend freshly imported transactions, keeping their order."""
        with self._lock:
            fresh = [copy.deepcopy(t) for t in transactions]
            self._transactions[:0] = fresh
            for t in fresh:
                self._index[t.id] = t

    def match(self, txn_id: str, return_id: Optional[str] = None) -> tuple[Transaction, bool]:
        """
        Flag one transaction as matched.

        Returns the transaction and whether this call changed it. An
        already-matched transaction keeps its existing claim.
        """
        with self._lock:
            txn = self._index.get(txn_id)
            if txn is None:
                raise NotFoundError("Transaction", txn_id)
            changed = not txn.matched
            if changed:
                txn.matched = True
                txn.matched_return_id = return_id
            return copy.deepcopy(txn), changed

    def claim(self, txn_ids: Iterable[str], return_id: str) -> list[Transaction]:
        """
        Match every listed transaction that is still unmatched.

        Ids that were matched concurrently, or that are unknown, are skipped.
        """
        claimed: list[Transaction] = []
        with self._lock:
            for txn_id in txn_ids:
                txn = self._index.get(txn_id)
                if txn is None or txn.matched:
                    continue
                txn.matched = True
                txn.matched_return_id = return_id
                claimed.append(copy.deepcopy(txn))
        return claimed

    def release(self, return_id: str) -> int:
        """Unmatch every transaction claimed by ``return_id``."""
        released = 0
        with self._lock:
            for txn in self._transactions:
                if txn.matched_return_id == return_id:
                    txn.matched = False
                    txn.matched_return_id = None
                    released += 1
        return released
