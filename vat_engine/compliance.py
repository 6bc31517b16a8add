"""
VAT compliance monitoring.

Monitors:
- Overdue returns (period ended, still not filed)
- Unusually large adjustments
- Ready returns with unreconciled ledger activity
- Dashboard totals and the next filing deadline
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from vat_engine.models import ZERO, Transaction, VatReturn, VatStatus

# A return is overdue this many days after its period ends
_OVERDUE_AFTER_DAYS = 30

# Adjustments above this share of (output VAT + input VAT) are flagged
_LARGE_ADJUSTMENT_SHARE = Decimal("0.2")

# Returns are due on this day of the month following the reference date
_FILING_DUE_DAY = 15

_SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}


@dataclass
class ComplianceAlert:
    """An actionable compliance alert for one return."""

    severity: str  # critical, warning, info
    code: str  # overdue, large_adjustment, unreconciled
    return_id: str
    message: str
    action_required: str
    deadline: Optional[date] = None


@dataclass
class DashboardSummary:
    """Headline figures across all returns."""

    total_output_vat: Decimal
    total_input_vat: Decimal
    return_count: int
    unmatched_transactions: int
    next_deadline: date
    status_counts: dict[str, int] = field(default_factory=dict)

    @property
    def net_vat(self) -> Decimal:
        return self.total_output_vat - self.total_input_vat


def next_filing_deadline(as_of: date) -> date:
    """The filing day in the month after ``as_of``."""
    if as_of.month == 12:
        return date(as_of.year + 1, 1, _FILING_DUE_DAY)
    return date(as_of.year, as_of.month + 1, _FILING_DUE_DAY)


class ComplianceChecker:
    """
    Evaluates returns against filing obligations.

    Thresholds are constructor arguments so callers can tighten them.
    """

    def __init__(
        self,
        overdue_after_days: int = _OVERDUE_AFTER_DAYS,
        large_adjustment_share: Decimal = _LARGE_ADJUSTMENT_SHARE,
    ) -> None:
        self.overdue_after_days = overdue_after_days
        self.large_adjustment_share = large_adjustment_share

    def dashboard(
        self,
        returns: list[VatReturn],
        transactions: list[Transaction],
        as_of: Optional[date] = None,
    ) -> DashboardSummary:
        ref_date = as_of or date.today()
        counts = {s.value: 0 for s in VatStatus}
        for r in returns:
            counts[r.status.value] += 1
        return DashboardSummary(
            total_output_vat=sum((r.output_vat for r in returns), ZERO),
            total_input_vat=sum((r.input_vat for r in returns), ZERO),
            return_count=len(returns),
            unmatched_transactions=sum(1 for t in transactions if not t.matched),
            next_deadline=next_filing_deadline(ref_date),
            status_counts=counts,
        )

    def check_return(
        self,
        vat_return: VatReturn,
        transactions: list[Transaction],
        as_of: Optional[date] = None,
    ) -> list[ComplianceAlert]:
        ref_date = as_of or date.today()
        r = vat_return
        alerts: list[ComplianceAlert] = []

        if r.status != VatStatus.FILED:
            due = r.period.end + timedelta(days=self.overdue_after_days)
            if due < ref_date:
                days_late = (ref_date - due).days
                alerts.append(
                    ComplianceAlert(
                        severity="critical",
                        code="overdue",
                        return_id=r.id,
                        message=(
                            f"Return for {r.period.label} is {days_late} "
                            f"days past due"
                        ),
                        action_required="File the return immediately. Late penalties may apply.",
                        deadline=due,
                    )
                )

        limit = (r.output_vat + r.input_vat) * self.large_adjustment_share
        if abs(r.adjustments) > limit:
            alerts.append(
                ComplianceAlert(
                    severity="warning",
                    code="large_adjustment",
                    return_id=r.id,
                    message=(
                        f"Adjustments of {r.adjustments:,.2f} exceed "
                        f"{self.large_adjustment_share:.0%} of VAT totals"
                    ),
                    action_required="Attach supporting documents for the adjustment.",
                )
            )

        if r.status == VatStatus.READY:
            pending = [
                t for t in transactions if not t.matched and r.period.contains(t.date)
            ]
            if pending:
                alerts.append(
                    ComplianceAlert(
                        severity="info",
                        code="unreconciled",
                        return_id=r.id,
                        message=(
                            f"{len(pending)} unmatched transactions fall in "
                            f"{r.period.label}"
                        ),
                        action_required="Run reconciliation before filing.",
                    )
                )

        return alerts

    def generate_alerts(
        self,
        returns: list[VatReturn],
        transactions: list[Transaction],
        as_of: Optional[date] = None,
    ) -> list[ComplianceAlert]:
        """All alerts across returns, most severe first."""
        alerts: list[ComplianceAlert] = []
        for r in returns:
            alerts.extend(self.check_return(r, transactions, as_of))
        return sorted(alerts, key=lambda a: _SEVERITY_ORDER.get(a.severity, 3))
