"""
Order Commission Service - commission side of the order lifecycle

Orchestrates:
1. Partner accepts a buy order → per-category commission for its items
2. Partner accepts a sell order → single-category commission on the quote
3. Order cancelled / rejected → commission rolled back if it was charged

Order state, including the commission_is_applied flag, only moves forward
when the ledger write succeeds; both are committed in the same transaction.
"""
from typing import Tuple, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cashmitra.core.exceptions import AppException, OrderNotFoundError, OrderStatusError
from cashmitra.core.logging import get_logger
from cashmitra.core.validation import format_number
from cashmitra.db.models.commission_settings import OrderType
from cashmitra.db.models.order import Order, OrderModel, OrderStatus, SellOrder
from cashmitra.db.models.partner import Partner
from cashmitra.domain.categories import get_category_from_product
from cashmitra.domain.services.commission_ledger_service import (
    CommissionLedgerService,
    normalize_order_model,
)
from cashmitra.domain.services.commission_rules_service import CommissionRulesService

logger = get_logger(__name__)

COMMISSION_FAILED_MESSAGE = "Could not apply commission. The order was not accepted."
ROLLBACK_FAILED_MESSAGE = "Could not roll back commission. The order was not cancelled."

CLOSED_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REJECTED)


class OrderCommissionService:
    """Accept / cancel orders together with their commission ledger entries"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.rules_service = CommissionRulesService(db)
        self.ledger_service = CommissionLedgerService(db, rules_service=self.rules_service)

    async def _get_order_for_update(
        self, order_model: OrderModel, order_id: int
    ) -> Union[Order, SellOrder]:
        """Lock a buy or sell order row; raises OrderNotFoundError"""
        model_cls = Order if order_model == OrderModel.ORDER else SellOrder
        result = await self.db.execute(
            select(model_cls)
            .where(model_cls.id == order_id)
            .with_for_update()
        )
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_model.value, order_id)
        return order

    @staticmethod
    def _require_pending(order: Union[Order, SellOrder], order_model: OrderModel) -> None:
        if order.status != OrderStatus.PENDING:
            raise OrderStatusError(
                order_model.value, order.id, order.status.value, OrderStatus.PENDING.value
            )

    async def _check_partner(self, partner_id: int) -> Optional[str]:
        partner = await self.db.get(Partner, partner_id)
        if partner is None:
            return "Partner not found."
        if not partner.is_active:
            return "Partner account is not active."
        return None

    async def _release(self, error: AppException) -> Tuple[bool, str, None]:
        # drops the row lock taken by _get_order_for_update
        await self.db.rollback()
        logger.warning(
            "Order commission request refused",
            extra_data={"error_code": error.error_code.value, "details": error.details}
        )
        return False, error.message, None

    async def accept_buy_order(
        self, order_id: int, partner_id: int
    ) -> Tuple[bool, str, Optional[Order]]:
        """
        Accept a buy order and charge commission for all of its items.

        Item annotations, order totals, the commission_is_applied flag, the
        partner's balance and the ledger rows are committed together.
        """
        try:
            order = await self._get_order_for_update(OrderModel.ORDER, order_id)
            self._require_pending(order, OrderModel.ORDER)
        except AppException as e:
            return await self._release(e)

        if not order.items:
            return False, "Order has no items.", None

        partner_error = await self._check_partner(partner_id)
        if partner_error:
            return False, partner_error, None

        items_payload = [
            {"product": dict(item.product or {}), "price": item.price, "quantity": item.quantity}
            for item in order.items
        ]

        try:
            commission_data = await self.ledger_service.calculate_commission_for_items(
                items_payload, OrderType.BUY.value, partner_id
            )
        except AppException as e:
            return await self._release(e)

        for item, annotated in zip(order.items, commission_data.items):
            item_commission = annotated["commission"]
            item.commission_rate = item_commission["rate"]
            item.commission_amount = item_commission["amount"]
            item.commission_category = item_commission["category"]

        order.commission_rate = commission_data.total_rate
        order.commission_amount = commission_data.total_amount
        order.partner_id = partner_id
        order.status = OrderStatus.ACCEPTED
        order.commission_is_applied = True

        try:
            await self.ledger_service.apply_commission_for_items(
                partner_id, commission_data, order_id, OrderModel.ORDER
            )
        except AppException as e:
            return False, e.message, None
        except SQLAlchemyError:
            return False, COMMISSION_FAILED_MESSAGE, None

        # only stamps commission_applied_at; the flag above is already durable
        await self.ledger_service.mark_commission_as_applied(order)

        logger.info(
            "Buy order accepted",
            extra_data={
                "order_id": order_id,
                "partner_id": partner_id,
                "commission_amount": commission_data.total_amount,
                "commission_rate": commission_data.total_rate,
            }
        )
        return True, f"Order accepted. Commission of ₹{commission_data.total_amount} charged.", order

    async def accept_sell_order(
        self, sell_order_id: int, partner_id: int
    ) -> Tuple[bool, str, Optional[SellOrder]]:
        """Accept a sell order and charge commission on its quote"""
        try:
            sell_order = await self._get_order_for_update(OrderModel.SELL_ORDER, sell_order_id)
            self._require_pending(sell_order, OrderModel.SELL_ORDER)
        except AppException as e:
            return await self._release(e)

        partner_error = await self._check_partner(partner_id)
        if partner_error:
            return False, partner_error, None

        category = get_category_from_product(sell_order.product)

        try:
            quote = await self.rules_service.calculate_commission_for_order(
                sell_order.quote_amount, category, OrderType.SELL.value, partner_id
            )
        except AppException as e:
            return await self._release(e)

        sell_order.commission_rate = quote.rate
        sell_order.commission_amount = quote.amount
        sell_order.partner_id = partner_id
        sell_order.status = OrderStatus.ACCEPTED
        sell_order.commission_is_applied = True

        try:
            await self.ledger_service.apply_commission_to_partner(
                partner_id,
                sell_order.quote_amount,
                category,
                OrderType.SELL.value,
                sell_order_id,
                OrderModel.SELL_ORDER,
            )
        except AppException as e:
            return False, e.message, None
        except SQLAlchemyError:
            return False, COMMISSION_FAILED_MESSAGE, None

        await self.ledger_service.mark_commission_as_applied(sell_order)

        logger.info(
            "Sell order accepted",
            extra_data={
                "sell_order_id": sell_order_id,
                "partner_id": partner_id,
                "category": category,
                "commission_amount": quote.amount,
            }
        )
        return True, f"Sell order accepted. Commission of ₹{quote.amount} charged.", sell_order

    async def cancel_order(
        self,
        order_id: int,
        order_model: Union[OrderModel, str] = OrderModel.ORDER,
        reason: str = "Order cancelled",
        new_status: OrderStatus = OrderStatus.CANCELLED,
    ) -> Tuple[bool, str, Optional[Union[Order, SellOrder]]]:
        """
        Cancel (or reject) an order, rolling back its commission if charged.
        """
        if new_status not in CLOSED_STATUSES:
            return False, f"Invalid target status {new_status.value}.", None

        try:
            order_model = normalize_order_model(order_model)
            order = await self._get_order_for_update(order_model, order_id)
            if order.status in CLOSED_STATUSES:
                raise OrderStatusError(
                    order_model.value, order_id, order.status.value, "pending or accepted"
                )
        except AppException as e:
            return await self._release(e)

        charged = bool(order.commission_is_applied and order.commission_amount and order.partner_id)

        order.status = new_status
        order.commission_is_applied = False

        if not charged:
            await self.db.commit()
            logger.info(
                "Order cancelled without commission",
                extra_data={"order_id": order_id, "order_model": order_model.value}
            )
            return True, "Order cancelled.", order

        try:
            if order_model == OrderModel.ORDER:
                rollback = await self.ledger_service.rollback_commission_for_items(
                    order.partner_id, order.commission_amount, order_id, order_model, reason
                )
            else:
                rollback = await self.ledger_service.rollback_commission_from_partner(
                    order.partner_id, order.commission_amount, order_id, order_model, reason
                )
        except AppException as e:
            return False, e.message, None
        except SQLAlchemyError:
            return False, ROLLBACK_FAILED_MESSAGE, None

        logger.info(
            "Order cancelled and commission rolled back",
            extra_data={
                "order_id": order_id,
                "order_model": order_model.value,
                "partner_id": order.partner_id,
                "rollback_amount": rollback.rollback_amount,
                "reason": reason,
            }
        )
        reversed_amount = format_number(rollback.rollback_amount)
        return True, f"Order cancelled. Commission of ₹{reversed_amount} reversed.", order
