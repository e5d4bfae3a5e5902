#!/usr/bin/env python3
"""
Reconcile a tenant's pending payments.

Pending payments whose invoice already has an approved payment are
cancelled; the rest are approved (placeholder receipt numbers replaced with
real ones) and their invoices marked paid when covered.

Select payments by gateway reference / transaction id, or every pending
payment that carries one with --all.

Usage:
  python scripts/reconcile_pending.py --tenant <uuid> --refs T123 T456 \\
      --actor-id <uuid> --role agency_admin --company-id <uuid>
  python scripts/reconcile_pending.py --tenant <uuid> --all --actor-id <uuid> --role super_admin
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlalchemy.orm import Session  # noqa: E402

from settlement_kernel.config import load_settings  # noqa: E402
from settlement_kernel.db.engine import init_engine_from_url, session_scope  # noqa: E402
from settlement_kernel.domain.access_policy import Actor, Role  # noqa: E402
from settlement_kernel.domain.clock import Clock  # noqa: E402
from settlement_kernel.domain.dtos import ReconciliationSummary  # noqa: E402
from settlement_kernel.exceptions import SettlementKernelError  # noqa: E402
from settlement_kernel.logging_config import configure_logging  # noqa: E402
from settlement_kernel.services.reconciliation_service import ReconciliationService  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Approve or cancel a tenant's pending payments",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--tenant", required=True, type=UUID, help="Tenant id")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--refs", nargs="+", default=[], help="Reference numbers or transaction ids")
    group.add_argument(
        "--all",
        dest="include_all",
        action="store_true",
        help="Every pending payment with a reference or transaction id",
    )
    parser.add_argument("--actor-id", required=True, type=UUID, help="Operator user id")
    parser.add_argument(
        "--role",
        default=Role.SUPER_ADMIN.value,
        choices=[r.value for r in Role],
        help="Operator role (default: super_admin)",
    )
    parser.add_argument("--company-id", type=UUID, default=None, help="Operator company id")
    parser.add_argument("--config", default=None, help="YAML settings file")
    return parser


def run(
    session: Session,
    args: argparse.Namespace,
    clock: Clock | None = None,
) -> ReconciliationSummary:
    """Reconcile inside ``session``; the caller commits."""
    actor = Actor(user_id=args.actor_id, role=Role.parse(args.role), company_id=args.company_id)
    service = ReconciliationService(session, clock=clock)
    return service.reconcile_pending(
        args.tenant,
        actor,
        references=args.refs,
        include_all=args.include_all,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(level=settings.log_level)
    init_engine_from_url(settings.database_url, echo=settings.sql_echo, pool_size=settings.pool_size)

    try:
        with session_scope() as session:
            summary = run(session, args)
    except SettlementKernelError as exc:
        print(f"error: {exc.code}: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(
        {
            "examined": summary.examined,
            "approved": [str(i) for i in summary.approved],
            "cancelled": [str(i) for i in summary.cancelled],
            "skipped": [str(i) for i in summary.skipped],
            "invoices_paid": [str(i) for i in summary.invoices_paid],
        },
        indent=2,
    ))
    return 0


if __name__ == "__main__":
    sys.exit(main())
