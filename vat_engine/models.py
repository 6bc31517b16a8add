"""
Core data model for VAT returns and the transaction ledger.

Handles:
- Return lifecycle status and editable figures
- Version snapshots and the append-only activity trail
- Ledger transactions with their reconciliation claim
- Vendor reference data
- Plain-dict (JSON-ready) conversion for every persisted type
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional


class VatStatus(Enum):
    DRAFT = "Draft"
    READY = "Ready"
    FILED = "Filed"


class TransactionType(Enum):
    SALE = "Sale"
    PURCHASE = "Purchase"


class VatCategory(Enum):
    VATABLE = "VATable"
    ZERO_RATED = "Zero-rated"
    EXEMPT = "Exempt"


class ImportStatus(Enum):
    IMPORTED = "imported"
    DEFAULTED = "defaulted"  # stored, but some fields fell back to defaults
    REJECTED = "rejected"


ZERO = Decimal("0.00")


def round_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to the nearest cent, halves away from zero."""
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_output_vat(taxable_sales: Decimal, vat_rate: Decimal) -> Decimal:
    return round_money(taxable_sales * vat_rate)


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _money(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


@dataclass(frozen=True)
class Period:
    """An inclusive filing period."""

    start: date
    end: date

    @property
    def is_ordered(self) -> bool:
        return self.start <= self.end

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlaps(self, other: "Period") -> bool:
        # Inclusive on both ends: sharing a boundary day is an overlap
        return self.start <= other.end and other.start <= self.end

    @property
    def label(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "Period":
        return cls(start=_parse_date(data["start"]), end=_parse_date(data["end"]))


@dataclass
class ReturnInput:
    """
    Caller-supplied figures for creating or updating a return.

    ``output_vat`` may be supplied but is always replaced by the value
    derived from ``taxable_sales`` and the VAT rate.
    """

    period_start: date
    period_end: date
    taxable_sales: Decimal = ZERO
    zero_rated_sales: Decimal = ZERO
    exempt_sales: Decimal = ZERO
    input_vat: Decimal = ZERO
    adjustments: Decimal = ZERO
    credits: Decimal = ZERO
    penalties: Decimal = ZERO
    output_vat: Optional[Decimal] = None

    @property
    def period(self) -> Period:
        return Period(self.period_start, self.period_end)

    @classmethod
    def from_dict(cls, data: dict) -> "ReturnInput":
        output_vat = data.get("output_vat")
        return cls(
            period_start=_parse_date(data["period_start"]),
            period_end=_parse_date(data["period_end"]),
            taxable_sales=_money(data.get("taxable_sales")),
            zero_rated_sales=_money(data.get("zero_rated_sales")),
            exempt_sales=_money(data.get("exempt_sales")),
            input_vat=_money(data.get("input_vat")),
            adjustments=_money(data.get("adjustments")),
            credits=_money(data.get("credits")),
            penalties=_money(data.get("penalties")),
            output_vat=_money(output_vat) if output_vat is not None else None,
        )


@dataclass(frozen=True)
class ReturnFigures:
    """Point-in-time copy of a return's editable fields."""

    period: Period
    taxable_sales: Decimal
    zero_rated_sales: Decimal
    exempt_sales: Decimal
    output_vat: Decimal
    input_vat: Decimal
    adjustments: Decimal
    credits: Decimal
    penalties: Decimal
    vat_rate: Decimal  # rate the output VAT was derived with

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "taxable_sales": str(self.taxable_sales),
            "zero_rated_sales": str(self.zero_rated_sales),
            "exempt_sales": str(self.exempt_sales),
            "output_vat": str(self.output_vat),
            "input_vat": str(self.input_vat),
            "adjustments": str(self.adjustments),
            "credits": str(self.credits),
            "penalties": str(self.penalties),
            "vat_rate": str(self.vat_rate),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReturnFigures":
        return cls(
            period=Period.from_dict(data["period"]),
            taxable_sales=_money(data.get("taxable_sales")),
            zero_rated_sales=_money(data.get("zero_rated_sales")),
            exempt_sales=_money(data.get("exempt_sales")),
            output_vat=_money(data.get("output_vat")),
            input_vat=_money(data.get("input_vat")),
            adjustments=_money(data.get("adjustments")),
            credits=_money(data.get("credits")),
            penalties=_money(data.get("penalties")),
            vat_rate=_money(data.get("vat_rate")),
        )


@dataclass(frozen=True)
class ReturnVersion:
    id: str
    timestamp: datetime
    snapshot: ReturnFigures

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "snapshot": self.snapshot.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReturnVersion":
        return cls(
            id=data["id"],
            timestamp=_parse_datetime(data["timestamp"]),
            snapshot=ReturnFigures.from_dict(data["snapshot"]),
        )


@dataclass(frozen=True)
class ActivityEntry:
    """One line of the human-readable audit trail."""

    id: str
    timestamp: datetime
    type: str  # create, update, status, filed, attachment, warning
    message: str

    @classmethod
    def new(cls, type_: str, message: str) -> "ActivityEntry":
        return cls(id=new_id(), timestamp=utc_now(), type=type_, message=message)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActivityEntry":
        return cls(
            id=data["id"],
            timestamp=_parse_datetime(data["timestamp"]),
            type=data["type"],
            message=data["message"],
        )


@dataclass(frozen=True)
class Attachment:
    id: str
    name: str
    size: int = 0
    type: str = ""
    url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "type": self.type,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Attachment":
        return cls(
            id=data["id"],
            name=data["name"],
            size=int(data.get("size", 0)),
            type=data.get("type", ""),
            url=data.get("url"),
        )


@dataclass(frozen=True)
class FilingInfo:
    reference: str
    filed_at: Optional[datetime] = None
    filed_by: str = ""
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "filed_at": self.filed_at.isoformat() if self.filed_at else None,
            "filed_by": self.filed_by,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FilingInfo":
        filed_at = data.get("filed_at")
        return cls(
            reference=data.get("reference", ""),
            filed_at=_parse_datetime(filed_at) if filed_at else None,
            filed_by=data.get("filed_by", ""),
            notes=data.get("notes", ""),
        )


@dataclass
class VatReturn:
    """A tax-filing record for one period."""

    id: str
    period: Period
    status: VatStatus
    taxable_sales: Decimal
    zero_rated_sales: Decimal
    exempt_sales: Decimal
    output_vat: Decimal
    input_vat: Decimal
    adjustments: Decimal
    credits: Decimal
    penalties: Decimal
    vat_rate: Decimal
    created_at: datetime
    attachments: list[Attachment] = field(default_factory=list)
    versions: list[ReturnVersion] = field(default_factory=list)
    activity: list[ActivityEntry] = field(default_factory=list)
    filing: Optional[FilingInfo] = None
    revision: int = 1  # bumped on every write

    @property
    def is_filed(self) -> bool:
        return self.status == VatStatus.FILED

    @property
    def net_vat(self) -> Decimal:
        return self.output_vat - self.input_vat

    @property
    def amount_payable(self) -> Decimal:
        return self.net_vat + self.adjustments + self.penalties - self.credits

    @property
    def total_sales(self) -> Decimal:
        return self.taxable_sales + self.zero_rated_sales + self.exempt_sales

    def figures(self) -> ReturnFigures:
        return ReturnFigures(
            period=self.period,
            taxable_sales=self.taxable_sales,
            zero_rated_sales=self.zero_rated_sales,
            exempt_sales=self.exempt_sales,
            output_vat=self.output_vat,
            input_vat=self.input_vat,
            adjustments=self.adjustments,
            credits=self.credits,
            penalties=self.penalties,
            vat_rate=self.vat_rate,
        )

    def apply(self, figures: ReturnFigures) -> None:
        self.period = figures.period
        self.taxable_sales = figures.taxable_sales
        self.zero_rated_sales = figures.zero_rated_sales
        self.exempt_sales = figures.exempt_sales
        self.output_vat = figures.output_vat
        self.input_vat = figures.input_vat
        self.adjustments = figures.adjustments
        self.credits = figures.credits
        self.penalties = figures.penalties
        self.vat_rate = figures.vat_rate

    def to_dict(self) -> dict[str, Any]:
        data = self.figures().to_dict()
        data.update(
            {
                "id": self.id,
                "status": self.status.value,
                "created_at": self.created_at.isoformat(),
                "revision": self.revision,
                "attachments": [a.to_dict() for a in self.attachments],
                "versions": [v.to_dict() for v in self.versions],
                "activity": [a.to_dict() for a in self.activity],
                "filing": self.filing.to_dict() if self.filing else None,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "VatReturn":
        figures = ReturnFigures.from_dict(data)
        vr = cls(
            id=data["id"],
            period=figures.period,
            status=VatStatus(data.get("status", VatStatus.DRAFT.value)),
            taxable_sales=figures.taxable_sales,
            zero_rated_sales=figures.zero_rated_sales,
            exempt_sales=figures.exempt_sales,
            output_vat=figures.output_vat,
            input_vat=figures.input_vat,
            adjustments=figures.adjustments,
            credits=figures.credits,
            penalties=figures.penalties,
            vat_rate=figures.vat_rate,
            created_at=_parse_datetime(data["created_at"]),
            attachments=[Attachment.from_dict(a) for a in data.get("attachments", [])],
            versions=[ReturnVersion.from_dict(v) for v in data.get("versions", [])],
            activity=[ActivityEntry.from_dict(a) for a in data.get("activity", [])],
            revision=int(data.get("revision", 1)),
        )
        if data.get("filing"):
            vr.filing = FilingInfo.from_dict(data["filing"])
        return vr


@dataclass
class Transaction:
    """A single ledger record (sale or purchase)."""

    id: str
    date: date
    type: TransactionType
    amount: Decimal
    vat_amount: Decimal
    vat_category: VatCategory = VatCategory.VATABLE
    vendor_id: Optional[str] = None
    invoice_number: str = ""
    category: str = ""
    matched: bool = False
    matched_return_id: Optional[str] = None  # return that claimed it

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "type": self.type.value,
            "amount": str(self.amount),
            "vat_amount": str(self.vat_amount),
            "vat_category": self.vat_category.value,
            "vendor_id": self.vendor_id,
            "invoice_number": self.invoice_number,
            "category": self.category,
            "matched": self.matched,
            "matched_return_id": self.matched_return_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        return cls(
            id=data["id"],
            date=_parse_date(data["date"]),
            type=TransactionType(data.get("type", TransactionType.SALE.value)),
            amount=_money(data.get("amount")),
            vat_amount=_money(data.get("vat_amount")),
            vat_category=VatCategory(
                data.get("vat_category", VatCategory.VATABLE.value)
            ),
            vendor_id=data.get("vendor_id"),
            invoice_number=data.get("invoice_number", ""),
            category=data.get("category", ""),
            matched=bool(data.get("matched", False)),
            matched_return_id=data.get("matched_return_id"),
        )


@dataclass(frozen=True)
class Vendor:
    id: str
    name: str
    vat_number: Optional[str] = None
    country: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "vat_number": self.vat_number,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Vendor":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            vat_number=data.get("vat_number"),
            country=data.get("country"),
        )


@dataclass
class ImportRowResult:
    """Outcome of importing a single ledger row."""

    index: int
    status: ImportStatus
    transaction: Optional[Transaction] = None
    issues: list[str] = field(default_factory=list)
