#!/usr/bin/env python3
"""
Partner commission wallet reconciliation

Compares every partner's stored commission balance with the sum of its
commission ledger rows and wallet history.

Usage (from the project root):
    python scripts/reconcile_wallets.py
    python scripts/reconcile_wallets.py --partner-id 42
    python scripts/reconcile_wallets.py --json

Exit code 0 when every wallet is consistent, 1 otherwise.
"""
import sys
import json
import asyncio
import argparse
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from cashmitra.core.config import settings  # noqa: E402
from cashmitra.core.exceptions import PartnerNotFoundError  # noqa: E402
from cashmitra.core.logging import get_logger, set_correlation_id, setup_logging  # noqa: E402
from cashmitra.db.database import session_scope  # noqa: E402
from cashmitra.db.models.partner import Partner  # noqa: E402
from cashmitra.domain.services.commission_ledger_service import (  # noqa: E402
    CommissionLedgerService,
    WalletReconciliation,
)

logger = get_logger(__name__)


class Colors:
    GREEN = "\033[92m"
    RED = "\033[91m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


async def reconcile_partners(
    db: AsyncSession, partner_id: int | None = None
) -> list[WalletReconciliation]:
    """Reconcile one partner, or all of them in id order"""
    ledger = CommissionLedgerService(db)

    if partner_id is not None:
        return [await ledger.reconcile_partner_wallet(partner_id)]

    result = await db.execute(select(Partner.id).order_by(Partner.id))
    return [await ledger.reconcile_partner_wallet(pid) for pid in result.scalars().all()]


def format_report(reports: list[WalletReconciliation]) -> str:
    lines = []
    for report in reports:
        if report.is_consistent:
            status = f"{Colors.GREEN}✓ OK{Colors.RESET}"
        else:
            status = f"{Colors.RED}✗ MISMATCH{Colors.RESET}"
        lines.append(
            f"  {status} partner {report.partner_id}: balance={report.commission_balance} "
            f"ledger={report.ledger_net} wallet={report.wallet_net} "
            f"discrepancy={report.discrepancy}"
        )
    inconsistent = sum(1 for r in reports if not r.is_consistent)
    lines.append(
        f"\n{Colors.BOLD}{len(reports)} wallet(s) checked, {inconsistent} out of balance{Colors.RESET}"
    )
    return "\n".join(lines)


def report_to_dict(report: WalletReconciliation) -> dict:
    return {
        "partner_id": report.partner_id,
        "commission_balance": str(report.commission_balance),
        "ledger_net": str(report.ledger_net),
        "wallet_net": str(report.wallet_net),
        "discrepancy": str(report.discrepancy),
        "is_consistent": report.is_consistent,
    }


async def run(partner_id: int | None, as_json: bool) -> int:
    async with session_scope() as db:
        try:
            reports = await reconcile_partners(db, partner_id)
        except PartnerNotFoundError as e:
            print(e.message, file=sys.stderr)
            return 2

    if as_json:
        print(json.dumps([report_to_dict(r) for r in reports], indent=2))
    else:
        print(format_report(reports))

    return 0 if all(r.is_consistent for r in reports) else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile partner commission wallets")
    parser.add_argument("--partner-id", type=int, help="Only reconcile this partner")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args(argv)

    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    set_correlation_id()
    logger.info(
        "Wallet reconciliation started",
        extra_data={"partner_id": args.partner_id}
    )

    return asyncio.run(run(args.partner_id, args.json))


if __name__ == "__main__":
    sys.exit(main())
