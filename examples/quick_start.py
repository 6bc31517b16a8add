#!/usr/bin/env python3
"""
Quick Start Example
===================

Creates a January return, imports a small ledger, reconciles it, files
the return and prints the CSV filing sheet.

Usage:
    python examples/quick_start.py
"""

from datetime import date
from decimal import Decimal

from vat_engine import FilingInfo, RateConfig, ReturnInput, VatReturnEngine


def main() -> None:
    engine = VatReturnEngine(rate_config=RateConfig(Decimal("0.20")))

    # January return: 1,000.00 taxable sales at 20% -> 200.00 output VAT
    vr = engine.create_return(
        ReturnInput(
            period_start=date(2024, 1, 1),
            period_end=date(2024, 1, 31),
            taxable_sales=Decimal("1000.00"),
            input_vat=Decimal("40.00"),
        )
    )
    print(f"Return:      {vr.id}")
    print(f"Output VAT:  {vr.output_vat:.2f}")
    print(f"Net VAT:     {vr.net_vat:.2f}")

    results = engine.import_transactions(
        [
            {"date": "2024-01-10", "type": "Sale", "invoiceNumber": "INV-1", "amount": "600", "vatAmount": "120"},
            {"date": "2024-01-20", "type": "Sale", "invoiceNumber": "INV-2", "amount": "400", "vatAmount": "80"},
            {"date": "2024-01-25", "type": "Purchase", "invoiceNumber": "SUP-9", "amount": "200", "vatAmount": "40"},
            {"date": "2024-02-02", "type": "Sale", "invoiceNumber": "INV-3", "amount": "oops"},
        ]
    )
    for r in results:
        if r.issues:
            print(f"Row {r.index + 1} {r.status.value}: {'; '.join(r.issues)}")

    result = engine.auto_reconcile(vr.id)
    print(f"Matched:     {result.matched_count} transactions")

    gap = engine.reconciliation_gap(vr.id)
    print(f"Balanced:    {gap.is_balanced}")

    engine.mark_ready(vr.id)
    engine.mark_filed(vr.id, FilingInfo(reference="VAT-2024-01", filed_by="accounts"))

    print()
    print(engine.export_return(vr.id, "csv").text())


if __name__ == "__main__":
    main()
