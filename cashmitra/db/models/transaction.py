"""
Transaction Model - standalone, immutable commission ledger

Independent audit trail next to the partner wallet history. Amounts are
signed: charges positive, rollbacks and payments negative, so the net sum
of a partner's rows is the commission it should currently owe.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey, String, Enum as SQLEnum
from sqlalchemy.types import JSON

from cashmitra.db.database import Base

TRANSACTION_STATUS_COMPLETED = "completed"


class TransactionType(str, enum.Enum):
    COMMISSION_CHARGE = "commission_charge"
    COMMISSION_ROLLBACK = "commission_rollback"
    COMMISSION_PAYMENT = "commission_payment"


class PaymentMethod(str, enum.Enum):
    SYSTEM = "System"
    BANK_TRANSFER = "Bank Transfer"
    UPI = "UPI"


class Transaction(Base):
    """Ledger row written once per commission operation, never updated"""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_type = Column(SQLEnum(TransactionType), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)

    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)
    # Only set for buy orders; sell orders are referenced through metadata
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)

    payment_method = Column(SQLEnum(PaymentMethod), nullable=False, default=PaymentMethod.SYSTEM)
    status = Column(String(20), nullable=False, default=TRANSACTION_STATUS_COMPLETED)
    description = Column(String(500), nullable=True)

    # previous_balance / new_balance snapshots plus operation context
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
