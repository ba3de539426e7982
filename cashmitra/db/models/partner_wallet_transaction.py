"""
Partner Wallet Transaction Model - the partner's own wallet history

Append-only. "debit" entries raise the commission owed, "credit" entries
lower it (rollbacks and payments). Amounts are always stored positive; the
entry type carries the direction.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey, String, Enum as SQLEnum
from sqlalchemy.orm import relationship

from cashmitra.db.database import Base
from cashmitra.db.models.order import OrderModel


class WalletEntryType(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class WalletEntryCategory(str, enum.Enum):
    COMMISSION = "commission"


class PartnerWalletTransaction(Base):
    """One line of a partner's wallet history"""

    __tablename__ = "partner_wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)

    type = Column(SQLEnum(WalletEntryType), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    description = Column(String(500), nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Order this entry refers to; reference_model says which table
    reference = Column(Integer, nullable=True)
    reference_model = Column(SQLEnum(OrderModel), nullable=True)
    transaction_category = Column(
        SQLEnum(WalletEntryCategory), nullable=False, default=WalletEntryCategory.COMMISSION
    )

    partner = relationship("Partner")
