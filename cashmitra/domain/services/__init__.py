"""
Domain Services
"""
from cashmitra.domain.services.commission_rules_service import CommissionRulesService
from cashmitra.domain.services.commission_ledger_service import CommissionLedgerService
from cashmitra.domain.services.order_commission_service import OrderCommissionService

__all__ = [
    "CommissionRulesService",
    "CommissionLedgerService",
    "OrderCommissionService",
]
