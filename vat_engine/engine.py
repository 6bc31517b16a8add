"""
VAT return engine.

Owns the return lifecycle (Draft -> Ready -> Filed), the filed-period
overlap rule, output VAT derivation, version snapshots and the activity
trail, and drives reconciliation of the shared transaction ledger.

All commands that change a return run one at a time through a single
write lock, so overlap checks always see a consistent set of filed
returns. Reads take copies and never wait on more than one store access.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from threading import RLock
from typing import Any, Iterable, Optional, Union

from vat_engine.compliance import ComplianceAlert, ComplianceChecker, DashboardSummary
from vat_engine.config import RateConfig, RateSnapshot, validate_rate
from vat_engine.errors import (
    ConflictError,
    InvalidTransitionError,
    OverlapError,
    ValidationError,
    VatEngineError,
)
from vat_engine.export import ExportDocument, ExportFormatter
from vat_engine.loader import DataSet
from vat_engine.models import (
    ActivityEntry,
    Attachment,
    FilingInfo,
    ImportRowResult,
    ImportStatus,
    Period,
    ReturnFigures,
    ReturnInput,
    ReturnVersion,
    Transaction,
    VatReturn,
    VatStatus,
    Vendor,
    compute_output_vat,
    new_id,
    round_money,
    utc_now,
)
from vat_engine.reconciliation import (
    ReconciliationGap,
    ReconciliationResult,
    reconcile,
    reconciliation_gap,
)
from vat_engine.store import (
    ReturnRepository,
    TransactionStore,
    VendorDirectory,
    normalize_row,
)

logger = logging.getLogger(__name__)

# Figures that may never be negative
_NON_NEGATIVE_FIELDS = (
    "taxable_sales",
    "zero_rated_sales",
    "exempt_sales",
    "input_vat",
    "credits",
    "penalties",
)

_MONEY_FIELDS = _NON_NEGATIVE_FIELDS + ("adjustments",)


class VatReturnEngine:
    """
    Command surface for VAT returns and ledger reconciliation.

    Usage:
        engine = VatReturnEngine(rate_config=RateConfig(Decimal("0.20")))
        vr = engine.create_return(ReturnInput(date(2024, 1, 1), date(2024, 1, 31),
                                              taxable_sales=Decimal("1000")))
        engine.import_transactions([{"date": "2024-01-15", "amount": "100"}])
        engine.auto_reconcile(vr.id)
        engine.mark_filed(vr.id, FilingInfo(reference="VAT-2024-01"))
        doc = engine.export_return(vr.id, "csv")
    """

    def __init__(
        self,
        returns: Optional[ReturnRepository] = None,
        transactions: Optional[TransactionStore] = None,
        vendors: Optional[VendorDirectory] = None,
        rate_config: Optional[RateConfig] = None,
        formatter: Optional[ExportFormatter] = None,
        checker: Optional[ComplianceChecker] = None,
    ) -> None:
        # Repositories define __len__, so an empty one is falsy
        self.returns = returns if returns is not None else ReturnRepository()
        self.transactions = (
            transactions if transactions is not None else TransactionStore()
        )
        self.vendors = vendors if vendors is not None else VendorDirectory()
        self.rates = rate_config or RateConfig()
        self.formatter = formatter or ExportFormatter()
        self.checker = checker or ComplianceChecker()
        self._write_lock = RLock()

    @classmethod
    def from_dataset(
        cls, dataset: DataSet, rate_config: Optional[RateConfig] = None
    ) -> "VatReturnEngine":
        return cls(
            returns=ReturnRepository(dataset.returns),
            transactions=TransactionStore(dataset.transactions, dataset.ledger_activity),
            vendors=VendorDirectory(dataset.vendors),
            rate_config=rate_config,
        )

    def dataset(self) -> DataSet:
        return DataSet(
            returns=self.returns.all(),
            transactions=self.transactions.snapshot(),
            vendors=self.vendors.all(),
            ledger_activity=self.transactions.activity,
        )

    # ------------------------------------------------------------------
    # Rate
    # ------------------------------------------------------------------

    @property
    def vat_rate(self) -> Decimal:
        return self.rates.current().rate

    def set_vat_rate(self, rate: Decimal) -> RateSnapshot:
        """Change the rate used by future create/update commands."""
        return self.rates.set_rate(rate)

    def _resolve_rate(self, vat_rate: Optional[Decimal]) -> Decimal:
        if vat_rate is None:
            return self.rates.current().rate
        return validate_rate(vat_rate)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_return(self, return_id: str) -> VatReturn:
        return self.returns.get(return_id)

    def list_returns(
        self,
        query: Optional[str] = None,
        status: Optional[Union[VatStatus, str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[VatReturn]:
        """
        Returns matching every given filter, newest first.

        ``query`` matches the id or filing reference; the date filters
        keep returns whose period intersects ``[date_from, date_to]``.
        """
        wanted_status = VatStatus(status) if isinstance(status, str) else status
        needle = query.strip().lower() if query else ""
        results: list[VatReturn] = []
        for vr in self.returns.all():
            if wanted_status is not None and vr.status != wanted_status:
                continue
            if needle:
                reference = vr.filing.reference.lower() if vr.filing else ""
                if needle not in vr.id.lower() and needle not in reference:
                    continue
            if date_from is not None and vr.period.end < date_from:
                continue
            if date_to is not None and vr.period.start > date_to:
                continue
            results.append(vr)
        return results

    def list_transactions(self, matched: Optional[bool] = None) -> list[Transaction]:
        return self.transactions.select(matched)

    def get_vendor(self, vendor_id: str) -> Vendor:
        return self.vendors.get(vendor_id)

    def list_vendors(self) -> list[Vendor]:
        return self.vendors.all()

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_input(data: Union[ReturnInput, dict]) -> ReturnInput:
        if isinstance(data, ReturnInput):
            return data
        try:
            return ReturnInput.from_dict(data)
        except (KeyError, ValueError, ArithmeticError) as e:
            raise ValidationError([f"invalid return input: {e}"]) from e

    def _reject(self, error: VatEngineError) -> VatEngineError:
        logger.warning("Command refused: %s", error)
        return error

    def _validate(self, inp: ReturnInput) -> None:
        errors: list[str] = []
        if inp.period_start > inp.period_end:
            errors.append(
                f"period_start {inp.period_start.isoformat()} is after "
                f"period_end {inp.period_end.isoformat()}"
            )
        for name in _MONEY_FIELDS:
            value = getattr(inp, name)
            if not value.is_finite():
                errors.append(f"{name} must be a finite amount")
            elif name in _NON_NEGATIVE_FIELDS and value < 0:
                errors.append(f"{name} must not be negative")
        if errors:
            raise self._reject(ValidationError(errors))

    def _check_overlap(self, period: Period, exclude_id: Optional[str] = None) -> None:
        for filed in self.returns.filed():
            if filed.id != exclude_id and filed.period.overlaps(period):
                raise self._reject(OverlapError(filed.id, filed.period.label))

    def _check_revision(self, vr: VatReturn, expected_revision: Optional[int]) -> None:
        if expected_revision is not None and expected_revision != vr.revision:
            raise self._reject(ConflictError(vr.id, expected_revision, vr.revision))

    def _require_not_filed(self, vr: VatReturn, action: str) -> None:
        if vr.is_filed:
            raise self._reject(
                InvalidTransitionError(vr.id, vr.status.value, action)
            )

    def _figures(self, inp: ReturnInput, rate: Decimal) -> ReturnFigures:
        try:
            return self._round_figures(inp, rate)
        except InvalidOperation as e:
            raise self._reject(
                ValidationError(["amounts are too large to round to cents"])
            ) from e

    @staticmethod
    def _round_figures(inp: ReturnInput, rate: Decimal) -> ReturnFigures:
        taxable = round_money(inp.taxable_sales)
        return ReturnFigures(
            period=inp.period,
            taxable_sales=taxable,
            zero_rated_sales=round_money(inp.zero_rated_sales),
            exempt_sales=round_money(inp.exempt_sales),
            output_vat=compute_output_vat(taxable, rate),
            input_vat=round_money(inp.input_vat),
            adjustments=round_money(inp.adjustments),
            credits=round_money(inp.credits),
            penalties=round_money(inp.penalties),
            vat_rate=rate,
        )

    def _save(self, vr: VatReturn, entry: ActivityEntry) -> VatReturn:
        vr.activity.append(entry)
        vr.revision += 1
        self.returns.replace(vr)
        return vr

    # ------------------------------------------------------------------
    # Lifecycle commands
    # ------------------------------------------------------------------

    def create_return(
        self,
        data: Union[ReturnInput, dict],
        vat_rate: Optional[Decimal] = None,
    ) -> VatReturn:
        """
        Create a Draft return.

        Raises ValidationError for a reversed period or negative figures,
        OverlapError if the period touches a filed return.
        """
        inp = self._coerce_input(data)
        rate = self._resolve_rate(vat_rate)
        with self._write_lock:
            self._validate(inp)
            self._check_overlap(inp.period)

            figures = self._figures(inp, rate)
            now = utc_now()
            vr = VatReturn(
                id=new_id(),
                period=figures.period,
                status=VatStatus.DRAFT,
                taxable_sales=figures.taxable_sales,
                zero_rated_sales=figures.zero_rated_sales,
                exempt_sales=figures.exempt_sales,
                output_vat=figures.output_vat,
                input_vat=figures.input_vat,
                adjustments=figures.adjustments,
                credits=figures.credits,
                penalties=figures.penalties,
                vat_rate=rate,
                created_at=now,
                versions=[ReturnVersion(new_id(), now, figures)],
                activity=[ActivityEntry.new("create", "Return created")],
            )
            self.returns.add(vr)
        logger.info("Created return %s for %s", vr.id, vr.period.label)
        return vr

    def update_return(
        self,
        return_id: str,
        data: Union[ReturnInput, dict],
        vat_rate: Optional[Decimal] = None,
        expected_revision: Optional[int] = None,
    ) -> VatReturn:
        """
        Replace a return's editable figures and append a version.

        Output VAT is always recomputed from taxable sales and the rate;
        a supplied ``output_vat`` is ignored.
        """
        inp = self._coerce_input(data)
        rate = self._resolve_rate(vat_rate)
        with self._write_lock:
            vr = self.returns.get(return_id)
            self._require_not_filed(vr, "update")
            self._check_revision(vr, expected_revision)
            self._validate(inp)
            self._check_overlap(inp.period, exclude_id=return_id)

            figures = self._figures(inp, rate)
            vr.apply(figures)
            vr.versions.append(ReturnVersion(new_id(), utc_now(), figures))
            self._save(vr, ActivityEntry.new("update", "Return updated"))
        logger.info("Updated return %s (version %d)", vr.id, len(vr.versions))
        return vr

    def mark_ready(
        self, return_id: str, expected_revision: Optional[int] = None
    ) -> VatReturn:
        """Move a Draft return to Ready; a Ready return is left as is."""
        with self._write_lock:
            vr = self.returns.get(return_id)
            self._require_not_filed(vr, "mark ready")
            self._check_revision(vr, expected_revision)
            if vr.status == VatStatus.READY:
                return vr
            vr.status = VatStatus.READY
            self._save(vr, ActivityEntry.new("status", "Marked Ready"))
        logger.info("Return %s marked Ready", vr.id)
        return vr

    def mark_filed(
        self,
        return_id: str,
        filing: Union[FilingInfo, dict],
        expected_revision: Optional[int] = None,
    ) -> VatReturn:
        """
        File a Draft or Ready return.

        The period is checked again against every other filed return
        before the transition is recorded.
        """
        info = filing if isinstance(filing, FilingInfo) else FilingInfo.from_dict(filing)
        with self._write_lock:
            vr = self.returns.get(return_id)
            self._require_not_filed(vr, "file")
            self._check_revision(vr, expected_revision)
            self._check_overlap(vr.period, exclude_id=return_id)

            if info.filed_at is None:
                info = FilingInfo(
                    reference=info.reference,
                    filed_at=utc_now(),
                    filed_by=info.filed_by,
                    notes=info.notes,
                )
            vr.status = VatStatus.FILED
            vr.filing = info
            message = f"Filed {info.reference}".rstrip()
            self._save(vr, ActivityEntry.new("filed", message))
        logger.info("Return %s filed (reference %r)", vr.id, info.reference)
        return vr

    def delete_return(self, return_id: str) -> int:
        """
        Remove a non-filed return.

        Transactions it had claimed are released. Returns how many.
        """
        with self._write_lock:
            vr = self.returns.get(return_id)
            self._require_not_filed(vr, "delete")
            self.returns.remove(return_id)
            released = self.transactions.release(return_id)
        logger.info("Deleted return %s, released %d transactions", return_id, released)
        return released

    def add_attachment(
        self,
        return_id: str,
        name: str,
        size: int = 0,
        type_: str = "",
        url: Optional[str] = None,
    ) -> Attachment:
        with self._write_lock:
            vr = self.returns.get(return_id)
            self._require_not_filed(vr, "attach documents to")
            attachment = Attachment(new_id(), name, size, type_, url)
            vr.attachments.append(attachment)
            self._save(vr, ActivityEntry.new("attachment", f"Attached {name}"))
        logger.info("Attached %s to return %s", name, return_id)
        return attachment

    # ------------------------------------------------------------------
    # Ledger commands
    # ------------------------------------------------------------------

    def import_transactions(
        self, rows: Iterable[Any], return_id: Optional[str] = None
    ) -> list[ImportRowResult]:
        """
        Import raw ledger rows.

        Each row gets its own result (imported, defaulted or rejected);
        the import as a whole never fails. Defaulted and rejected rows are
        written to the ledger's activity trail as warnings, and to the
        trail of ``return_id`` when one is given.

        Binding an import to a Filed return is refused before any row is
        stored.
        """
        rows = list(rows)
        if return_id is None:
            return self._import_rows(rows, None)
        with self._write_lock:
            vr = self.returns.get(return_id)
            self._require_not_filed(vr, "import transactions for")
            return self._import_rows(rows, vr)

    def _import_rows(
        self, rows: list[Any], vr: Optional[VatReturn]
    ) -> list[ImportRowResult]:
        results = [normalize_row(i, row, self.vendors) for i, row in enumerate(rows)]
        imported = [r.transaction for r in results if r.transaction is not None]
        self.transactions.add(imported)

        warnings: list[ActivityEntry] = []
        for r in results:
            if r.status == ImportStatus.IMPORTED:
                continue
            message = f"Import row {r.index + 1} {r.status.value}: {'; '.join(r.issues)}"
            logger.warning(message)
            warnings.append(ActivityEntry.new("warning", message))
        for entry in warnings:
            self.transactions.record(entry)
        self.transactions.record(
            ActivityEntry.new("import", f"Imported {len(imported)} of {len(rows)} rows")
        )

        # Caller holds the write lock whenever vr is given
        if vr is not None and warnings:
            vr.activity.extend(warnings[:-1])
            self._save(vr, warnings[-1])

        logger.info("Imported %d of %d ledger rows", len(imported), len(rows))
        return results

    def match_transaction(
        self, txn_id: str, return_id: Optional[str] = None
    ) -> Transaction:
        """
        Flag a transaction as matched, optionally claiming it for a return.

        Matching an already-matched transaction succeeds without change.
        """
        if return_id is None:
            txn, changed = self.transactions.match(txn_id)
        else:
            with self._write_lock:
                vr = self.returns.get(return_id)
                self._require_not_filed(vr, "match transactions to")
                txn, changed = self.transactions.match(txn_id, return_id)
        if changed:
            logger.info("Matched transaction %s", txn_id)
        return txn

    def auto_reconcile(self, return_id: str) -> ReconciliationResult:
        """
        Claim every unmatched transaction dated inside the return's period.

        Works on a snapshot of the ledger taken at call time; rows imported
        while the pass runs are picked up by the next pass. Repeating the
        call changes nothing.
        """
        with self._write_lock:
            vr = self.returns.get(return_id)
            self._require_not_filed(vr, "reconcile")
            ledger = self.transactions.snapshot()
            proposed = reconcile(vr.id, vr.period, ledger)
            claimed = self.transactions.claim(proposed.matched_ids, vr.id)
            # Rows matched elsewhere since the snapshot keep their snapshot state
            by_id = {t.id: t for t in claimed}
            result = ReconciliationResult(
                return_id=vr.id,
                period=vr.period,
                transactions=[by_id.get(t.id, t) for t in ledger],
                matched_ids=[t.id for t in claimed],
            )
            if claimed:
                self._save(
                    vr,
                    ActivityEntry.new(
                        "reconcile", f"Auto-reconciled {len(claimed)} transactions"
                    ),
                )
        logger.info(
            "Reconciled return %s: %d transactions matched",
            return_id,
            result.matched_count,
        )
        return result

    def reconciliation_gap(self, return_id: str) -> ReconciliationGap:
        vr = self.returns.get(return_id)
        return reconciliation_gap(vr, self.transactions.snapshot())

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_return(self, return_id: str, fmt: str = "csv") -> ExportDocument:
        """Render a return and its matched transactions; changes nothing."""
        vr = self.returns.get(return_id)
        document = self.formatter.export(vr, self.transactions.snapshot(), fmt)
        logger.debug("Exported return %s as %s", return_id, fmt)
        return document

    # ------------------------------------------------------------------
    # Compliance
    # ------------------------------------------------------------------

    def dashboard(self, as_of: Optional[date] = None) -> DashboardSummary:
        return self.checker.dashboard(
            self.returns.all(), self.transactions.snapshot(), as_of
        )

    def alerts(self, as_of: Optional[date] = None) -> list[ComplianceAlert]:
        return self.checker.generate_alerts(
            self.returns.all(), self.transactions.snapshot(), as_of
        )
