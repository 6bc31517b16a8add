"""
Command-line interface for the VAT Return Engine.

Every command loads the data directory, runs one engine command and, when
state changed, writes the data directory back.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vat_engine.config import RateConfig, get_settings
from vat_engine.engine import VatReturnEngine
from vat_engine.errors import VatEngineError
from vat_engine.loader import (
    RETURNS_FILE,
    DataSet,
    load_dataset,
    read_transactions_csv,
    save_dataset,
)
from vat_engine.logging_config import configure_logging
from vat_engine.models import FilingInfo, ImportStatus, VatReturn

console = Console()

_STATUS_STYLE = {"Draft": "yellow", "Ready": "cyan", "Filed": "green"}

_MONEY_FIELDS = [
    ("taxable", "taxable_sales"),
    ("zero_rated", "zero_rated_sales"),
    ("exempt", "exempt_sales"),
    ("input_vat", "input_vat"),
    ("adjustments", "adjustments"),
    ("credits", "credits"),
    ("penalties", "penalties"),
]


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}")


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


def _status_cell(r: VatReturn) -> str:
    style = _STATUS_STYLE.get(r.status.value, "white")
    return f"[{style}]{r.status.value}[/{style}]"


# -----------------------------------------------------------------------
# Subcommand: returns / show
# -----------------------------------------------------------------------


def cmd_returns(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    """List returns with optional filters."""
    returns = engine.list_returns(
        query=args.query,
        status=args.status,
        date_from=args.date_from,
        date_to=args.date_to,
    )
    if not returns:
        console.print("[yellow]No returns match.[/yellow]")
        return False

    table = Table(title="VAT Returns", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Period")
    table.add_column("Status", justify="center")
    table.add_column("Output VAT", justify="right")
    table.add_column("Input VAT", justify="right")
    table.add_column("Net", justify="right", style="bold")
    table.add_column("Reference")

    for r in returns:
        table.add_row(
            r.id,
            r.period.label,
            _status_cell(r),
            f"{r.output_vat:,.2f}",
            f"{r.input_vat:,.2f}",
            f"{r.net_vat:,.2f}",
            r.filing.reference if r.filing else "-",
        )
    console.print(table)
    return False


def cmd_show(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    """Show one return with its versions and activity."""
    r = engine.get_return(args.return_id)
    console.print(
        Panel(
            f"[bold]Period:[/bold] {r.period.label}\n"
            f"[bold]Status:[/bold] {_status_cell(r)}\n"
            f"[bold]Taxable Sales:[/bold] {r.taxable_sales:,.2f}\n"
            f"[bold]Zero-rated Sales:[/bold] {r.zero_rated_sales:,.2f}\n"
            f"[bold]Exempt Sales:[/bold] {r.exempt_sales:,.2f}\n"
            f"[bold]Output VAT:[/bold] {r.output_vat:,.2f} (rate {r.vat_rate:.2%})\n"
            f"[bold]Input VAT:[/bold] {r.input_vat:,.2f}\n"
            f"[bold]Adjustments / Credits / Penalties:[/bold] "
            f"{r.adjustments:,.2f} / {r.credits:,.2f} / {r.penalties:,.2f}\n"
            f"[bold]Amount Payable:[/bold] {r.amount_payable:,.2f}\n"
            f"[bold]Versions:[/bold] {len(r.versions)}  "
            f"[bold]Attachments:[/bold] {len(r.attachments)}  "
            f"[bold]Revision:[/bold] {r.revision}",
            title=f"Return {r.id}",
            border_style="blue",
        )
    )

    table = Table(title="Activity", box=box.SIMPLE)
    table.add_column("When", style="dim")
    table.add_column("Type")
    table.add_column("Message")
    for entry in r.activity:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"), entry.type, entry.message
        )
    console.print(table)

    gap = engine.reconciliation_gap(r.id)
    if not gap.is_balanced:
        console.print(
            f"[yellow]Ledger gap: sales {gap.sales_difference:,.2f}, "
            f"input VAT {gap.input_vat_difference:,.2f} "
            f"across {gap.transaction_count} matched transactions[/yellow]"
        )
    return False


# -----------------------------------------------------------------------
# Subcommands: create / update / ready / file / delete
# -----------------------------------------------------------------------


def _return_payload(args: argparse.Namespace, base: Optional[VatReturn] = None) -> dict:
    payload: dict = {
        "period_start": args.start or (base.period.start if base else None),
        "period_end": args.end or (base.period.end if base else None),
    }
    for arg_name, field_name in _MONEY_FIELDS:
        value = getattr(args, arg_name)
        if value is None and base is not None:
            value = getattr(base, field_name)
        payload[field_name] = value
    return payload


def cmd_create(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    r = engine.create_return(_return_payload(args))
    console.print(
        f"[green]Created return {r.id}[/green] for {r.period.label} "
        f"(output VAT {r.output_vat:,.2f})"
    )
    return True


def cmd_update(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    current = engine.get_return(args.return_id)
    r = engine.update_return(
        args.return_id,
        _return_payload(args, base=current),
        expected_revision=args.revision,
    )
    console.print(
        f"[green]Updated return {r.id}[/green] "
        f"(version {len(r.versions)}, output VAT {r.output_vat:,.2f})"
    )
    return True


def cmd_ready(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    r = engine.mark_ready(args.return_id)
    console.print(f"Return {r.id} is {_status_cell(r)}")
    return True


def cmd_file(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    r = engine.mark_filed(
        args.return_id,
        FilingInfo(reference=args.reference, filed_by=args.by or "", notes=args.notes or ""),
    )
    console.print(
        f"Return {r.id} is {_status_cell(r)} (reference {r.filing.reference})"
    )
    return True


def cmd_delete(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    released = engine.delete_return(args.return_id)
    console.print(
        f"[green]Deleted return {args.return_id}[/green]; "
        f"{released} transactions released"
    )
    return True


# -----------------------------------------------------------------------
# Subcommands: import / match / reconcile
# -----------------------------------------------------------------------


def cmd_import(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    """Import ledger rows from a CSV file."""
    rows = read_transactions_csv(args.file)
    results = engine.import_transactions(rows, return_id=args.return_id)

    imported = sum(1 for r in results if r.status == ImportStatus.IMPORTED)
    defaulted = [r for r in results if r.status == ImportStatus.DEFAULTED]
    rejected = [r for r in results if r.status == ImportStatus.REJECTED]

    if defaulted or rejected:
        table = Table(title="Rows Needing Attention", box=box.ROUNDED)
        table.add_column("Row", justify="right")
        table.add_column("Status")
        table.add_column("Issues")
        for r in defaulted + rejected:
            color = "yellow" if r.status == ImportStatus.DEFAULTED else "red"
            table.add_row(
                str(r.index + 1),
                f"[{color}]{r.status.value}[/{color}]",
                "; ".join(r.issues),
            )
        console.print(table)

    console.print(
        Panel(
            f"[bold]Imported:[/bold] {imported}\n"
            f"[bold]Defaulted:[/bold] {len(defaulted)}\n"
            f"[bold]Rejected:[/bold] {len(rejected)}",
            title="Import Summary",
            border_style="green" if not rejected else "yellow",
        )
    )
    return True


def cmd_match(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    txn = engine.match_transaction(args.transaction_id, return_id=args.return_id)
    console.print(f"Transaction {txn.id} matched")
    return True


def cmd_reconcile(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    result = engine.auto_reconcile(args.return_id)
    console.print(
        f"[green]{result.matched_count} transactions matched[/green] "
        f"to return {args.return_id} ({result.period.label})"
    )
    gap = engine.reconciliation_gap(args.return_id)
    if not gap.is_balanced:
        console.print(
            f"[yellow]Declared sales differ from matched ledger by "
            f"{gap.sales_difference:,.2f}; input VAT by "
            f"{gap.input_vat_difference:,.2f}[/yellow]"
        )
    return result.matched_count > 0


# -----------------------------------------------------------------------
# Subcommand: export
# -----------------------------------------------------------------------


def cmd_export(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    document = engine.export_return(args.return_id, args.format)
    if args.output == "-":
        sys.stdout.write(document.text())
        return False

    path = Path(args.output) if args.output else Path(args.output_dir) / document.filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(document.content)
    console.print(f"[green]Exported {document.media_type} to {path}[/green]")
    return False


# -----------------------------------------------------------------------
# Subcommands: dashboard / alerts
# -----------------------------------------------------------------------


def cmd_dashboard(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    summary = engine.dashboard(as_of=args.as_of)
    counts = ", ".join(f"{k}: {v}" for k, v in summary.status_counts.items())
    console.print(
        Panel(
            f"[bold]Total Output VAT:[/bold] {summary.total_output_vat:,.2f}\n"
            f"[bold]Total Input VAT:[/bold] {summary.total_input_vat:,.2f}\n"
            f"[bold]Net VAT:[/bold] {summary.net_vat:,.2f}\n"
            f"[bold]Returns:[/bold] {summary.return_count} ({counts})\n"
            f"[bold]Unmatched Transactions:[/bold] {summary.unmatched_transactions}\n"
            f"[bold]Next Deadline:[/bold] {summary.next_deadline.isoformat()}",
            title="VAT Dashboard",
            border_style="blue",
        )
    )
    return False


def cmd_alerts(engine: VatReturnEngine, args: argparse.Namespace) -> bool:
    alerts = engine.alerts(as_of=args.as_of)
    if not alerts:
        console.print("[green]No compliance alerts.[/green]")
        return False
    for alert in alerts:
        color = {
            "critical": "red",
            "warning": "yellow",
            "info": "blue",
        }.get(alert.severity, "white")
        console.print(
            Panel(
                f"{alert.message}\n\n[bold]Action:[/bold] {alert.action_required}",
                title=f"[{color}]{alert.severity.upper()}[/{color}] - {alert.return_id}",
                border_style=color,
            )
        )
    return False


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def _add_figures(parser: argparse.ArgumentParser, required: bool) -> None:
    parser.add_argument("--start", type=_iso_date, required=required, help="Period start (YYYY-MM-DD)")
    parser.add_argument("--end", type=_iso_date, required=required, help="Period end (YYYY-MM-DD)")
    parser.add_argument("--taxable", type=_decimal, help="Taxable sales")
    parser.add_argument("--zero-rated", type=_decimal, help="Zero-rated sales")
    parser.add_argument("--exempt", type=_decimal, help="Exempt sales")
    parser.add_argument("--input-vat", type=_decimal, help="Input VAT")
    parser.add_argument("--adjustments", type=_decimal, help="Adjustments")
    parser.add_argument("--credits", type=_decimal, help="Credits")
    parser.add_argument("--penalties", type=_decimal, help="Penalties")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vat-engine",
        description="VAT Return Engine - return lifecycle, ledger reconciliation and filing exports",
    )
    parser.add_argument("--data-dir", help="Data directory (default: $VAT_ENGINE_DATA_DIR or ./data)")
    parser.add_argument("--rate", type=_decimal, help="VAT rate override, e.g. 0.20")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log engine activity")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_p = subparsers.add_parser("init", help="Create an empty data directory")
    init_p.set_defaults(func=None)

    returns_p = subparsers.add_parser("returns", help="List VAT returns")
    returns_p.add_argument("--query", "-q", help="Match id or filing reference")
    returns_p.add_argument("--status", choices=["Draft", "Ready", "Filed"])
    returns_p.add_argument("--from", dest="date_from", type=_iso_date)
    returns_p.add_argument("--to", dest="date_to", type=_iso_date)
    returns_p.set_defaults(func=cmd_returns)

    show_p = subparsers.add_parser("show", help="Show one return")
    show_p.add_argument("return_id")
    show_p.set_defaults(func=cmd_show)

    create_p = subparsers.add_parser("create", help="Create a Draft return")
    _add_figures(create_p, required=True)
    create_p.set_defaults(func=cmd_create)

    update_p = subparsers.add_parser("update", help="Update a return's figures")
    update_p.add_argument("return_id")
    _add_figures(update_p, required=False)
    update_p.add_argument("--revision", type=int, help="Fail unless the return is at this revision")
    update_p.set_defaults(func=cmd_update)

    ready_p = subparsers.add_parser("ready", help="Mark a return Ready")
    ready_p.add_argument("return_id")
    ready_p.set_defaults(func=cmd_ready)

    file_p = subparsers.add_parser("file", help="Mark a return Filed")
    file_p.add_argument("return_id")
    file_p.add_argument("--reference", required=True, help="Filing reference")
    file_p.add_argument("--by", help="Who filed it")
    file_p.add_argument("--notes")
    file_p.set_defaults(func=cmd_file)

    delete_p = subparsers.add_parser("delete", help="Delete a non-filed return")
    delete_p.add_argument("return_id")
    delete_p.set_defaults(func=cmd_delete)

    import_p = subparsers.add_parser("import", help="Import ledger transactions from CSV")
    import_p.add_argument("--file", "-f", required=True, help="CSV file with transactions")
    import_p.add_argument("--return", dest="return_id", help="Record import warnings on this return")
    import_p.set_defaults(func=cmd_import)

    match_p = subparsers.add_parser("match", help="Mark a transaction matched")
    match_p.add_argument("transaction_id")
    match_p.add_argument("--return", dest="return_id", help="Claim it for this return")
    match_p.set_defaults(func=cmd_match)

    reconcile_p = subparsers.add_parser("reconcile", help="Auto-reconcile a return's period")
    reconcile_p.add_argument("return_id")
    reconcile_p.set_defaults(func=cmd_reconcile)

    export_p = subparsers.add_parser("export", help="Export a return for filing")
    export_p.add_argument("return_id")
    export_p.add_argument("--format", default="csv", help="csv, text or json")
    export_p.add_argument("--output", "-o", help="Output file, or - for stdout")
    export_p.add_argument("--output-dir", help="Output directory")
    export_p.set_defaults(func=cmd_export)

    dash_p = subparsers.add_parser("dashboard", help="Show VAT totals")
    dash_p.add_argument("--as-of", type=_iso_date)
    dash_p.set_defaults(func=cmd_dashboard)

    alerts_p = subparsers.add_parser("alerts", help="Show compliance alerts")
    alerts_p.add_argument("--as-of", type=_iso_date)
    alerts_p.set_defaults(func=cmd_alerts)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging("INFO" if args.verbose else settings.log_level)
    data_dir = Path(args.data_dir) if args.data_dir else settings.data_dir
    if getattr(args, "output_dir", None) is None:
        args.output_dir = str(settings.output_dir)

    try:
        if args.command == "init":
            if (data_dir / RETURNS_FILE).exists():
                console.print(f"[yellow]{data_dir} already holds data; nothing written[/yellow]")
                return
            save_dataset(DataSet(), data_dir)
            console.print(f"[green]Initialised data directory {data_dir}[/green]")
            return

        rates = RateConfig(args.rate if args.rate is not None else settings.vat_rate)
        engine = VatReturnEngine.from_dataset(load_dataset(data_dir), rates)
        func: Callable[[VatReturnEngine, argparse.Namespace], bool] = args.func
        if func(engine, args):
            save_dataset(engine.dataset(), data_dir)
    except VatEngineError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
