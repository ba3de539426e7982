"""
Database Models
"""
from cashmitra.db.models.partner import Partner
from cashmitra.db.models.partner_wallet_transaction import PartnerWalletTransaction
from cashmitra.db.models.transaction import Transaction
from cashmitra.db.models.commission_settings import CommissionSettings, PartnerCommissionOverride
from cashmitra.db.models.order import Order, OrderItem, SellOrder

__all__ = [
    "Partner",
    "PartnerWalletTransaction",
    "Transaction",
    "CommissionSettings",
    "PartnerCommissionOverride",
    "Order",
    "OrderItem",
    "SellOrder",
]
