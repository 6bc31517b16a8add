"""
VAT Return Engine
=================

Lifecycle management for VAT returns, with ledger reconciliation and
filing exports.

Modules:
    models          - Returns, transactions, vendors and audit records
    config          - Environment settings and the versioned VAT rate
    store           - Thread-safe in-memory repositories
    reconciliation  - Period-based transaction matching and gap reports
    engine          - Command surface: create, update, file, reconcile, export
    export          - CSV, print-ready text and JSON filing documents
    compliance      - Dashboard totals and compliance alerts
    loader          - JSON data directories and ledger CSV files
    cli             - Command-line interface
"""

__version__ = "1.0.0"

from vat_engine.config import RateConfig
from vat_engine.engine import VatReturnEngine
from vat_engine.export import ExportFormatter
from vat_engine.compliance import ComplianceChecker
from vat_engine.models import FilingInfo, ReturnInput, VatStatus

__all__ = [
    "RateConfig",
    "VatReturnEngine",
    "ExportFormatter",
    "ComplianceChecker",
    "FilingInfo",
    "ReturnInput",
    "VatStatus",
]
