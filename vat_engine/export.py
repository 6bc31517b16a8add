"""
Filing export formatter.

Produces:
- CSV filing sheets (return summary, matched transactions, totals)
- Print-ready plain-text filing documents
- JSON documents

Every formatter is a pure function of the return and its transactions:
the same inputs always produce the same bytes.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from vat_engine.errors import UnsupportedFormatError
from vat_engine.models import ZERO, Transaction, VatReturn
from vat_engine.reconciliation import transactions_for_return


@dataclass(frozen=True)
class ExportDocument:
    """A rendered export, ready to be written or streamed."""

    filename: str
    media_type: str
    content: bytes

    def text(self) -> str:
        return self.content.decode("utf-8")


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that writes money as fixed two-decimal strings."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return _fmt(o)
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        return super().default(o)


def _fmt(amount: Decimal) -> str:
    return f"{amount:.2f}"


RETURN_COLUMNS = [
    "return_id",
    "period_start",
    "period_end",
    "status",
    "taxable_sales",
    "zero_rated_sales",
    "exempt_sales",
    "output_vat",
    "input_vat",
    "adjustments",
    "credits",
    "penalties",
    "net_vat",
    "amount_payable",
]

TRANSACTION_COLUMNS = [
    "date",
    "type",
    "invoice_number",
    "amount",
    "vat_amount",
    "category",
    "vat_category",
]


def _return_row(r: VatReturn) -> list[str]:
    return [
        r.id,
        r.period.start.isoformat(),
        r.period.end.isoformat(),
        r.status.value,
        _fmt(r.taxable_sales),
        _fmt(r.zero_rated_sales),
        _fmt(r.exempt_sales),
        _fmt(r.output_vat),
        _fmt(r.input_vat),
        _fmt(r.adjustments),
        _fmt(r.credits),
        _fmt(r.penalties),
        _fmt(r.net_vat),
        _fmt(r.amount_payable),
    ]


def _transaction_row(t: Transaction) -> list[str]:
    return [
        t.date.isoformat(),
        t.type.value,
        t.invoice_number,
        _fmt(t.amount),
        _fmt(t.vat_amount),
        t.category,
        t.vat_category.value,
    ]


class ExportFormatter:
    """
    Renders a VAT return and its matched transactions for filing.

    Only transactions that belong to the return are included; see
    ``transactions_for_return`` for the attribution rule.
    """

    def __init__(self) -> None:
        self._formats: dict[str, tuple[str, str, Callable[[VatReturn, list[Transaction]], str]]] = {
            "csv": ("text/csv", "csv", self.to_csv),
            "text": ("text/plain", "txt", self.to_print_document),
            "json": ("application/json", "json", self.to_json),
        }

    @property
    def formats(self) -> list[str]:
        return sorted(self._formats)

    def export(
        self, vat_return: VatReturn, transactions: list[Transaction], fmt: str
    ) -> ExportDocument:
        entry = self._formats.get(fmt.lower())
        if entry is None:
            raise UnsupportedFormatError(fmt, self.formats)
        media_type, extension, render = entry
        body = render(vat_return, transactions)
        return ExportDocument(
            filename=f"vat-return-{vat_return.id}.{extension}",
            media_type=media_type,
            content=body.encode("utf-8"),
        )

    # ------------------------------------------------------------------
    # CSV
    # ------------------------------------------------------------------

    def to_csv(self, vat_return: VatReturn, transactions: list[Transaction]) -> str:
        """
        CSV filing sheet.

        Layout: return header and values, a blank line, the transaction
        header, one row per matched transaction, then a TOTAL row.
        """
        matched = transactions_for_return(vat_return, transactions)
        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")

        writer.writerow(RETURN_COLUMNS)
        writer.writerow(_return_row(vat_return))
        writer.writerow([])
        writer.writerow(TRANSACTION_COLUMNS)
        for t in matched:
            writer.writerow(_transaction_row(t))
        writer.writerow(
            [
                "TOTAL",
                "",
                f"{len(matched)} transactions",
                _fmt(sum((t.amount for t in matched), ZERO)),
                _fmt(sum((t.vat_amount for t in matched), ZERO)),
                "",
                "",
            ]
        )
        return output.getvalue()

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def to_json(self, vat_return: VatReturn, transactions: list[Transaction]) -> str:
        matched = transactions_for_return(vat_return, transactions)
        document = {
            "return": dict(zip(RETURN_COLUMNS, _return_row(vat_return))),
            "filing": vat_return.filing.to_dict() if vat_return.filing else None,
            "transactions": [
                dict(zip(TRANSACTION_COLUMNS, _transaction_row(t))) for t in matched
            ],
            "totals": {
                "transaction_count": len(matched),
                "amount": sum((t.amount for t in matched), ZERO),
                "vat_amount": sum((t.vat_amount for t in matched), ZERO),
            },
        }
        return json.dumps(document, indent=2, cls=_DecimalEncoder) + "\n"

    # ------------------------------------------------------------------
    # Print-ready text
    # ------------------------------------------------------------------

    def to_print_document(
        self, vat_return: VatReturn, transactions: list[Transaction]
    ) -> str:
        """Format a return as a human-readable filing document."""
        r = vat_return
        matched = transactions_for_return(r, transactions)
        lines: list[str] = []
        lines.append("=" * 60)
        lines.append("  VAT Return")
        lines.append(f"  Return: {r.id}")
        lines.append(f"  Period: {r.period.label}")
        lines.append(f"  Status: {r.status.value}")
        if r.filing:
            lines.append(f"  Filing reference: {r.filing.reference}")
            if r.filing.filed_at:
                lines.append(f"  Filed at: {r.filing.filed_at.isoformat()}")
            if r.filing.filed_by:
                lines.append(f"  Filed by: {r.filing.filed_by}")
        lines.append("=" * 60)
        lines.append("")

        lines.append("SALES")
        lines.append("-" * 40)
        lines.append(f"  Taxable Sales:     {r.taxable_sales:>14,.2f}")
        lines.append(f"  Zero-rated Sales:  {r.zero_rated_sales:>14,.2f}")
        lines.append(f"  Exempt Sales:      {r.exempt_sales:>14,.2f}")
        lines.append("")

        lines.append("VAT")
        lines.append("-" * 40)
        lines.append(f"  Output VAT ({r.vat_rate:.2%}): {r.output_vat:>10,.2f}")
        lines.append(f"  Input VAT:         {r.input_vat:>14,.2f}")
        lines.append(f"  Net VAT:           {r.net_vat:>14,.2f}")
        lines.append(f"  Adjustments:       {r.adjustments:>14,.2f}")
        lines.append(f"  Credits:           {r.credits:>14,.2f}")
        lines.append(f"  Penalties:         {r.penalties:>14,.2f}")
        lines.append(f"  Amount Payable:    {r.amount_payable:>14,.2f}")
        lines.append("")

        lines.append(f"MATCHED TRANSACTIONS ({len(matched)})")
        lines.append("-" * 40)
        for t in matched:
            lines.append(
                f"  {t.date.isoformat()}  {t.type.value:<8} "
                f"{t.invoice_number or '-':<12} {t.amount:>12,.2f} "
                f"{t.vat_amount:>10,.2f}  {t.category}"
            )
        lines.append(
            f"  {'TOTAL':<32} "
            f"{sum((t.amount for t in matched), ZERO):>12,.2f} "
            f"{sum((t.vat_amount for t in matched), ZERO):>10,.2f}"
        )
        lines.append("")
        return "\n".join(lines)
