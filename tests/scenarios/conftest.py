"""
Helpers for end-to-end commission scenarios.

Provides DB assertions that always re-read from the database
(partner balance, ledger rows, wallet entries).
"""
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from cashmitra.db.models.partner import Partner
from cashmitra.db.models.partner_wallet_transaction import PartnerWalletTransaction
from cashmitra.db.models.transaction import Transaction, TransactionType


async def assert_partner_balance(
    db_session: AsyncSession,
    partner_id: int,
    expected_balance: Any,
) -> Partner:
    """Fresh read of the partner's commission balance"""
    result = await db_session.execute(
        select(Partner).where(Partner.id == partner_id).execution_options(
            populate_existing=True
        )
    )
    partner = result.scalar_one()
    assert partner.commission_balance == Decimal(str(expected_balance)), (
        f"expected: {expected_balance}, actual: {partner.commission_balance}"
    )
    return partner


async def get_ledger_rows(
    db_session: AsyncSession,
    partner_id: int,
    transaction_type: TransactionType | None = None,
) -> list[Transaction]:
    """Partner ledger rows in insertion order"""
    query = select(Transaction).where(Transaction.partner_id == partner_id)
    if transaction_type is not None:
        query = query.where(Transaction.transaction_type == transaction_type)
    result = await db_session.execute(query.order_by(Transaction.id))
    return list(result.scalars().all())


async def assert_wallet_entry_count(
    db_session: AsyncSession,
    partner_id: int,
    expected_count: int,
) -> None:
    """Number of wallet history entries of a partner"""
    result = await db_session.execute(
        select(func.count(PartnerWalletTransaction.id)).where(
            PartnerWalletTransaction.partner_id == partner_id
        )
    )
    count = result.scalar()
    assert count == expected_count, (
        f"expected {expected_count} wallet entries, found {count}"
    )
