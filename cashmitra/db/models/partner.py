"""
Partner Model - shop accepting orders, with its commission wallet
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, CheckConstraint

from cashmitra.db.database import Base


class Partner(Base):
    """Marketplace partner and its commission balance"""

    __tablename__ = "partners"
    __table_args__ = (
        CheckConstraint(
            "commission_balance >= 0",
            name="ck_partners_commission_balance_non_negative",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_name = Column(String(200), nullable=False)
    shop_email = Column(String(255), unique=True, nullable=True)
    is_active = Column(Boolean, default=True)

    # Commission owed by the partner; grows on charges, shrinks on rollbacks and payments
    commission_balance = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_commission_paid = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
