#!/usr/bin/env python3
"""
VAT Return Engine - Entry Point

Manages VAT returns through Draft, Ready and Filed, reconciles an imported
transaction ledger against filing periods, and exports returns for filing.

Usage:
    python main.py init --data-dir data
    python main.py create --start 2024-01-01 --end 2024-01-31 --taxable 1000 --input-vat 40
    python main.py import --file data/ledger.csv
    python main.py reconcile <return-id>
    python main.py file <return-id> --reference VAT-2024-01
    python main.py export <return-id> --format csv --output vat-2024-01.csv
"""

from vat_engine.cli import main

if __name__ == "__main__":
    main()
