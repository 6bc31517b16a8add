"""
Transaction reconciliation against a filing period.

The matching pass is a pure set-membership operation: every unmatched
transaction dated inside the inclusive period is claimed for the return.
It does not check that amounts add up; ``reconciliation_gap`` reports how
far the matched ledger is from the figures declared on the return.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from vat_engine.models import (
    ZERO,
    Period,
    Transaction,
    TransactionType,
    VatCategory,
    VatReturn,
)


@dataclass
class ReconciliationResult:
    """Updated ledger produced by one reconciliation pass."""

    return_id: str
    period: Period
    transactions: list[Transaction]
    matched_ids: list[str]

    @property
    def matched_count(self) -> int:
        return len(self.matched_ids)


@dataclass
class ReconciliationGap:
    """Difference between declared return figures and the matched ledger."""

    return_id: str
    declared_sales: Decimal
    matched_sales: Decimal
    declared_taxable_sales: Decimal
    matched_taxable_sales: Decimal
    declared_input_vat: Decimal
    matched_input_vat: Decimal
    transaction_count: int

    @property
    def sales_difference(self) -> Decimal:
        return self.declared_sales - self.matched_sales

    @property
    def taxable_sales_difference(self) -> Decimal:
        return self.declared_taxable_sales - self.matched_taxable_sales

    @property
    def input_vat_difference(self) -> Decimal:
        return self.declared_input_vat - self.matched_input_vat

    @property
    def is_balanced(self) -> bool:
        return (
            self.sales_difference == ZERO
            and self.taxable_sales_difference == ZERO
            and self.input_vat_difference == ZERO
        )


def reconcile(
    return_id: str, period: Period, transactions: list[Transaction]
) -> ReconciliationResult:
    """
    Claim every unmatched transaction dated within ``period``.

    Transactions already matched, or outside the period, come back
    unchanged. The input list is not modified.
    """
    updated: list[Transaction] = []
    matched_ids: list[str] = []
    for txn in transactions:
        if not txn.matched and period.contains(txn.date):
            updated.append(replace(txn, matched=True, matched_return_id=return_id))
            matched_ids.append(txn.id)
        else:
            updated.append(txn)
    return ReconciliationResult(return_id, period, updated, matched_ids)


def transactions_for_return(
    vat_return: VatReturn, transactions: list[Transaction]
) -> list[Transaction]:
    """
    Matched transactions that belong to ``vat_return``.

    A transaction belongs to the return it was claimed for. Transactions
    matched by hand without a claiming return are attributed by date.
    """
    selected = [
        t
        for t in transactions
        if t.matched
        and (
            t.matched_return_id == vat_return.id
            or (t.matched_return_id is None and vat_return.period.contains(t.date))
        )
    ]
    return sorted(selected, key=lambda t: (t.date, t.invoice_number, t.id))


def reconciliation_gap(
    vat_return: VatReturn, transactions: list[Transaction]
) -> ReconciliationGap:
    """Compare the return's declared figures with its matched transactions."""
    matched = transactions_for_return(vat_return, transactions)
    sales = [t for t in matched if t.type == TransactionType.SALE]
    purchases = [t for t in matched if t.type == TransactionType.PURCHASE]
    return ReconciliationGap(
        return_id=vat_return.id,
        declared_sales=vat_return.total_sales,
        matched_sales=sum((t.amount for t in sales), ZERO),
        declared_taxable_sales=vat_return.taxable_sales,
        matched_taxable_sales=sum(
            (t.amount for t in sales if t.vat_category == VatCategory.VATABLE),
            ZERO,
        ),
        declared_input_vat=vat_return.input_vat,
        matched_input_vat=sum((t.vat_amount for t in purchases), ZERO),
        transaction_count=len(matched),
    )
