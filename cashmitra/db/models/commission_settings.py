"""
Commission Settings Model - global commission rates and partner overrides

Rates are percentages of order value, keyed by order type and product
category: {"buy": {"mobile": 5, ...}, "sell": {...}}.
"""
import copy
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.types import JSON

from cashmitra.db.database import Base


class OrderType(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


class ProductCategory(str, enum.Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    LAPTOP = "laptop"
    ACCESSORIES = "accessories"


# Used when no active settings row exists or the settings lookup fails
DEFAULT_COMMISSION_RATES: dict[str, dict[str, float]] = {
    OrderType.BUY.value: {
        ProductCategory.MOBILE.value: 5,
        ProductCategory.TABLET.value: 4,
        ProductCategory.LAPTOP.value: 3,
        ProductCategory.ACCESSORIES.value: 2,
    },
    OrderType.SELL.value: {
        ProductCategory.MOBILE.value: 3,
        ProductCategory.TABLET.value: 2.5,
        ProductCategory.LAPTOP.value: 2,
        ProductCategory.ACCESSORIES.value: 1.5,
    },
}


def default_rates_copy() -> dict[str, dict[str, float]]:
    return copy.deepcopy(DEFAULT_COMMISSION_RATES)


class CommissionSettings(Base):
    """Global commission rate table; only one row is active at a time"""

    __tablename__ = "commission_settings"

    id = Column(Integer, primary_key=True, index=True)
    default_rates = Column(JSON, nullable=False, default=default_rates_copy)
    is_active = Column(Boolean, default=True, index=True)
    # user id of the admin who last changed the rates
    updated_by = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PartnerCommissionOverride(Base):
    """Partner-specific rates; may define only some order types / categories"""

    __tablename__ = "partner_commission_overrides"

    id = Column(Integer, primary_key=True, index=True)
    settings_id = Column(Integer, ForeignKey("commission_settings.id"), nullable=False)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)

    rates = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('settings_id', 'partner_id', name='uq_settings_partner_override'),
    )
