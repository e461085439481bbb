#!/usr/bin/env python3
"""
Company Bootstrap Script

Creates a company and its first super_admin so someone can log in and
configure approval rules and users through the API.

Usage:
    python scripts/bootstrap_company.py --name "Acme Ltda" \
        --admin-email admin@acme.test --admin-name "Ana Admin" --admin-password 'change-me-now'

Environment Variables:
    INVOICEFLOW_DB_PATH - SQLite file (default invoiceflow.db)
    DATABASE_URL - Postgres DSN, used instead of SQLite when set
"""

import argparse
import json
import sys

from invoiceflow.core.database import InvoiceflowDB
from invoiceflow.services.companies import bootstrap_company
from invoiceflow.services.errors import InvoiceflowError


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a company and its first administrator")
    parser.add_argument("--name", required=True, help="Company name")
    parser.add_argument("--tax-id", default=None, help="Company tax id")
    parser.add_argument("--auto-approve-limit", default="0", help="Company auto-approve limit")
    parser.add_argument("--admin-name", required=True)
    parser.add_argument("--admin-email", required=True)
    parser.add_argument("--admin-password", required=True)
    args = parser.parse_args()

    db = InvoiceflowDB.from_env()
    try:
        result = bootstrap_company(
            db,
            name=args.name,
            tax_id=args.tax_id,
            auto_approve_limit=args.auto_approve_limit,
            admin_name=args.admin_name,
            admin_email=args.admin_email,
            admin_password=args.admin_password,
        )
    except InvoiceflowError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
