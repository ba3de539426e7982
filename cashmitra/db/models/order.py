"""
Order Models - buy orders (with line items) and sell orders

Both carry the commission fields written by the order commission workflow.
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from cashmitra.db.database import Base


class OrderModel(str, enum.Enum):
    """Which order table a wallet entry or ledger row refers to"""
    ORDER = "Order"
    SELL_ORDER = "SellOrder"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class OrderCommissionMixin:
    """Commission summary stored on the order itself"""

    commission_rate = Column(Numeric(5, 2), nullable=True)
    commission_amount = Column(Numeric(10, 2), nullable=True)
    commission_is_applied = Column(Boolean, nullable=False, default=False)
    commission_applied_at = Column(DateTime, nullable=True)


class Order(OrderCommissionMixin, Base):
    """Buy order: a customer buying one or more refurbished products"""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=True, index=True)
    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )


class OrderItem(Base):
    """Line item of a buy order"""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    # Snapshot of the product at order time (name, brand, category, category_id)
    product = Column(JSON, nullable=False, default=dict)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    commission_rate = Column(Numeric(5, 2), nullable=True)
    commission_amount = Column(Numeric(10, 2), nullable=True)
    commission_category = Column(String(20), nullable=True)

    order = relationship("Order", back_populates="items")


class SellOrder(OrderCommissionMixin, Base):
    """Sell order: a customer selling a used device to a partner"""

    __tablename__ = "sell_orders"

    id = Column(Integer, primary_key=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=True, index=True)
    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING)

    product = Column(JSON, nullable=False, default=dict)
    quote_amount = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
