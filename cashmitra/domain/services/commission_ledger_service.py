"""
Commission Ledger Service - partner commission wallet operations

Every balance-changing operation follows the same atomic pattern:
1. Lock the partner row (SELECT ... FOR UPDATE)
2. Snapshot the balance and apply the change
3. Append a wallet history entry
4. Insert an immutable Transaction row with before/after balances
5. Commit, or roll back everything and re-raise

Signs: wallet entries store positive amounts with a debit/credit type;
Transaction rows are signed (charges positive, rollbacks and payments
negative) so that summing them reproduces the balance.
"""
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cashmitra.core.config import settings
from cashmitra.core.exceptions import (
    ErrorCode,
    InsufficientCommissionBalanceError,
    PartnerNotFoundError,
    ValidationException,
)
from cashmitra.core.logging import get_logger, log_async_operation
from cashmitra.core.validation import (
    AmountValidator,
    HUNDRED,
    TWO_PLACES,
    format_number,
    round_currency,
    round_rate,
    to_decimal,
)
from cashmitra.db.models.order import OrderModel
from cashmitra.db.models.partner import Partner
from cashmitra.db.models.partner_wallet_transaction import (
    PartnerWalletTransaction,
    WalletEntryCategory,
    WalletEntryType,
)
from cashmitra.db.models.transaction import (
    TRANSACTION_STATUS_COMPLETED,
    PaymentMethod,
    Transaction,
    TransactionType,
)
from cashmitra.domain.categories import get_category_from_product
from cashmitra.domain.services.commission_rules_service import (
    CommissionQuote,
    CommissionRulesService,
    normalize_order_type,
)

logger = get_logger(__name__)

ZERO = Decimal("0")

COMMISSION_TRANSACTION_TYPES = (
    TransactionType.COMMISSION_CHARGE,
    TransactionType.COMMISSION_ROLLBACK,
    TransactionType.COMMISSION_PAYMENT,
)

PAYOUT_METHODS = (PaymentMethod.BANK_TRANSFER, PaymentMethod.UPI)


@dataclass
class CategoryBreakdown:
    """Commission accumulated for one category of a multi-item order"""
    category: str
    rate: Decimal
    amount: Decimal = ZERO
    item_count: int = 0
    item_value: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "rate": float(self.rate),
            "amount": float(self.amount),
            "item_count": self.item_count,
            "item_value": float(self.item_value),
        }


@dataclass
class ItemsCommission:
    """Result of calculate_commission_for_items"""
    total_rate: Decimal
    total_amount: Decimal
    breakdown: list[CategoryBreakdown] = field(default_factory=list)
    items: list[MutableMapping] = field(default_factory=list)


@dataclass
class LedgerResult:
    """Outcome of a balance-changing ledger operation"""
    success: bool
    transaction_id: int
    previous_balance: Decimal
    new_balance: Decimal
    commission: Optional[CommissionQuote | ItemsCommission] = None
    rollback_amount: Optional[Decimal] = None
    payment_amount: Optional[Decimal] = None


@dataclass
class WalletReconciliation:
    """Stored balance compared with what the ledger and wallet history imply"""
    partner_id: int
    commission_balance: Decimal
    ledger_net: Decimal
    wallet_net: Decimal
    discrepancy: Decimal
    is_consistent: bool


def normalize_order_model(order_model: Any) -> OrderModel:
    try:
        return OrderModel(order_model)
    except ValueError:
        raise ValidationException(
            f"Unknown order model: {order_model!r}",
            field="order_model",
            details={"allowed": [m.value for m in OrderModel]},
        )


def _positive_amount(value: Any, field_name: str) -> Decimal:
    is_valid, error = AmountValidator.validate(value, allow_zero=False)
    if not is_valid:
        raise ValidationException(error, field=field_name, error_code=ErrorCode.INVALID_AMOUNT)
    return to_decimal(value)


def _money(value: Decimal) -> float:
    # JSON columns cannot hold Decimal
    return float(value)


class CommissionLedgerService:
    """Applies, rolls back and settles partner commission"""

    def __init__(
        self,
        db: AsyncSession,
        rules_service: CommissionRulesService | None = None,
        strict_rollback: bool | None = None,
    ):
        self.db = db
        self.rules_service = rules_service or CommissionRulesService(db)
        self.strict_rollback = (
            settings.COMMISSION_STRICT_ROLLBACK if strict_rollback is None else strict_rollback
        )

    # ==================== Building blocks ====================

    async def _get_partner_for_update(self, partner_id: int) -> Partner:
        """Lock the partner row and re-read its balance"""
        result = await self.db.execute(
            select(Partner)
            .where(Partner.id == partner_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        partner = result.scalar_one_or_none()
        if partner is None:
            raise PartnerNotFoundError(partner_id)
        return partner

    def _append_wallet_entry(
        self,
        partner_id: int,
        entry_type: WalletEntryType,
        amount: Decimal,
        description: str,
        order_id: int | None = None,
        order_model: OrderModel | None = None,
    ) -> PartnerWalletTransaction:
        entry = PartnerWalletTransaction(
            partner_id=partner_id,
            type=entry_type,
            amount=amount,
            description=description,
            timestamp=datetime.utcnow(),
            reference=order_id,
            reference_model=order_model,
            transaction_category=WalletEntryCategory.COMMISSION,
        )
        self.db.add(entry)
        return entry

    async def _create_ledger_transaction(
        self,
        transaction_type: TransactionType,
        amount: Decimal,
        partner_id: int,
        description: str,
        metadata: dict[str, Any],
        order_id: int | None = None,
        payment_method: PaymentMethod = PaymentMethod.SYSTEM,
    ) -> Transaction:
        transaction = Transaction(
            transaction_type=transaction_type,
            amount=amount,
            partner_id=partner_id,
            order_id=order_id,
            payment_method=payment_method,
            status=TRANSACTION_STATUS_COMPLETED,
            description=description,
            metadata_=metadata,
        )
        self.db.add(transaction)
        await self.db.flush()
        return transaction

    async def _charge_partner(
        self,
        partner_id: int,
        amount: Decimal,
        wallet_description: str,
        ledger_description: str,
        order_id: int | None,
        order_model: OrderModel,
        metadata: dict[str, Any],
    ) -> tuple[Transaction, Decimal, Decimal]:
        """Debit step shared by single- and multi-category charges; caller commits"""
        partner = await self._get_partner_for_update(partner_id)

        previous_balance = partner.commission_balance or ZERO
        new_balance = previous_balance + amount
        partner.commission_balance = new_balance

        self._append_wallet_entry(
            partner.id,
            WalletEntryType.DEBIT,
            amount,
            wallet_description,
            order_id=order_id,
            order_model=order_model,
        )
        await self.db.flush()

        metadata.update({
            "order_id": order_id,
            "order_model": order_model.value,
            "previous_balance": _money(previous_balance),
            "new_balance": _money(new_balance),
            "applied_at": datetime.utcnow().isoformat(),
        })
        transaction = await self._create_ledger_transaction(
            TransactionType.COMMISSION_CHARGE,
            amount,
            partner.id,
            ledger_description,
            metadata,
            # sell orders live in another table; they are referenced through metadata only
            order_id=order_id if order_model == OrderModel.ORDER else None,
        )
        return transaction, previous_balance, new_balance

    # ==================== Apply / rollback ====================

    async def apply_commission_to_partner(
        self,
        partner_id: int,
        order_value: Any,
        category: str,
        order_type: str,
        order_id: int | None,
        order_model: OrderModel | str = OrderModel.ORDER,
    ) -> LedgerResult:
        """
        Charge commission for an accepted order to the partner's wallet.

        Returns:
            LedgerResult with the commission quote and balances before/after.

        Raises:
            PartnerNotFoundError, ValidationException, or any database error;
            nothing is persisted in that case.
        """
        try:
            order_model = normalize_order_model(order_model)
            order_type = normalize_order_type(order_type)
            commission = await self.rules_service.calculate_commission_for_order(
                order_value, category, order_type, partner_id
            )

            description = (
                f"Commission charge for {order_type} order - {commission.category} "
                f"({format_number(commission.rate)}%)"
            )
            transaction, previous_balance, new_balance = await self._charge_partner(
                partner_id,
                commission.amount,
                wallet_description=description,
                ledger_description=description,
                order_id=order_id,
                order_model=order_model,
                metadata={
                    "order_type": order_type,
                    "category": commission.category,
                    "commission_rate": float(commission.rate),
                    "order_value": _money(to_decimal(order_value)),
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error(
                "Apply commission failed",
                extra_data={
                    "partner_id": partner_id,
                    "order_id": order_id,
                    "category": category,
                    "order_type": order_type,
                },
                exc_info=True
            )
            raise

        logger.info(
            "Commission applied to partner",
            extra_data={
                "partner_id": partner_id,
                "order_id": order_id,
                "order_type": order_type,
                "category": commission.category,
                "order_value": order_value,
                "commission_rate": commission.rate,
                "commission_amount": commission.amount,
                "previous_balance": previous_balance,
                "new_balance": new_balance,
            }
        )
        return LedgerResult(
            success=True,
            commission=commission,
            transaction_id=transaction.id,
            previous_balance=previous_balance,
            new_balance=new_balance,
        )

    async def rollback_commission_from_partner(
        self,
        partner_id: int,
        commission_amount: Any,
        order_id: int | None,
        order_model: OrderModel | str = OrderModel.ORDER,
        reason: str = "Order cancelled",
    ) -> LedgerResult:
        """
        Reverse a commission charge when an order is cancelled or rejected.

        The balance never goes below zero. When it cannot cover the amount the
        rollback is still recorded in full and a warning is logged, unless
        strict rollback is enabled, in which case
        InsufficientCommissionBalanceError is raised and nothing changes.
        """
        try:
            order_model = normalize_order_model(order_model)
            amount = _positive_amount(commission_amount, "commission_amount")

            partner = await self._get_partner_for_update(partner_id)
            previous_balance = partner.commission_balance or ZERO

            if previous_balance < amount:
                if self.strict_rollback:
                    raise InsufficientCommissionBalanceError(partner_id, previous_balance, amount)
                logger.warning(
                    "Insufficient commission balance for rollback, flooring at zero",
                    extra_data={
                        "partner_id": partner_id,
                        "order_id": order_id,
                        "current_balance": previous_balance,
                        "rollback_amount": amount,
                    }
                )

            new_balance = max(ZERO, previous_balance - amount)
            partner.commission_balance = new_balance

            description = f"Commission rollback - {reason}"
            self._append_wallet_entry(
                partner.id,
                WalletEntryType.CREDIT,
                amount,
                description,
                order_id=order_id,
                order_model=order_model,
            )
            await self.db.flush()

            transaction = await self._create_ledger_transaction(
                TransactionType.COMMISSION_ROLLBACK,
                -amount,
                partner.id,
                description,
                {
                    "order_id": order_id,
                    "order_model": order_model.value,
                    "reason": reason,
                    "rollback_amount": _money(amount),
                    "previous_balance": _money(previous_balance),
                    "new_balance": _money(new_balance),
                    "rolled_back_at": datetime.utcnow().isoformat(),
                },
                order_id=order_id if order_model == OrderModel.ORDER else None,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error(
                "Rollback commission failed",
                extra_data={
                    "partner_id": partner_id,
                    "order_id": order_id,
                    "commission_amount": commission_amount,
                },
                exc_info=True
            )
            raise

        logger.info(
            "Commission rolled back for partner",
            extra_data={
                "partner_id": partner_id,
                "order_id": order_id,
                "reason": reason,
                "rollback_amount": amount,
                "previous_balance": previous_balance,
                "new_balance": new_balance,
            }
        )
        return LedgerResult(
            success=True,
            rollback_amount=amount,
            transaction_id=transaction.id,
            previous_balance=previous_balance,
            new_balance=new_balance,
        )

    # ==================== Multi-category orders ====================

    @log_async_operation("calculate_commission_for_items")
    async def calculate_commission_for_items(
        self,
        items: list[MutableMapping],
        order_type: str,
        partner_id: int | None,
    ) -> ItemsCommission:
        """
        Commission for an order whose items may span several categories.

        Each item mapping needs ``product``, ``price`` and ``quantity`` and gets
        a ``commission`` key ({rate, amount, category}) added in place.

        Item amounts and breakdown amounts are rounded independently, so the sum
        of item amounts can differ by one unit from a breakdown amount.
        ``total_rate`` is the value-weighted rate, rounded to two decimals.
        """
        if not isinstance(items, (list, tuple)):
            raise ValidationException(
                "Order items must be a list",
                field="items",
                details={"received_type": type(items).__name__},
            )

        breakdown: dict[str, CategoryBreakdown] = {}
        total_commission = ZERO
        total_value = ZERO

        for index, item in enumerate(items):
            if not isinstance(item, MutableMapping):
                raise ValidationException(
                    "Order item must be a mapping", field=f"items[{index}]"
                )
            if "price" not in item or "quantity" not in item:
                raise ValidationException(
                    "Order item requires price and quantity", field=f"items[{index}]"
                )

            price = to_decimal(item["price"])
            quantity = item["quantity"]
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise ValidationException(
                    "Quantity must be a positive integer", field=f"items[{index}].quantity"
                )

            category = get_category_from_product(item.get("product"))
            item_value = price * quantity

            quote = await self.rules_service.calculate_commission_for_order(
                item_value, category, order_type, partner_id
            )

            entry = breakdown.get(category)
            if entry is None:
                entry = CategoryBreakdown(category=category, rate=quote.rate)
                breakdown[category] = entry

            entry.amount += quote.amount
            entry.item_count += quantity
            entry.item_value += item_value

            total_commission += quote.amount
            total_value += item_value

            item["commission"] = {
                "rate": quote.rate,
                "amount": round_currency(quote.amount),
                "category": quote.category,
            }

        for entry in breakdown.values():
            entry.amount = round_currency(entry.amount)

        total_rate = (
            round_rate(total_commission / total_value * HUNDRED) if total_value > 0 else ZERO
        )

        return ItemsCommission(
            total_rate=total_rate,
            total_amount=round_currency(total_commission),
            breakdown=list(breakdown.values()),
            items=list(items),
        )

    async def apply_commission_for_items(
        self,
        partner_id: int,
        commission_data: ItemsCommission,
        order_id: int | None,
        order_model: OrderModel | str = OrderModel.ORDER,
    ) -> LedgerResult:
        """Charge a multi-category commission (from calculate_commission_for_items)"""
        try:
            order_model = normalize_order_model(order_model)
            amount = to_decimal(commission_data.total_amount)
            if amount < 0:
                raise ValidationException(
                    "Commission total cannot be negative",
                    field="total_amount",
                    error_code=ErrorCode.INVALID_AMOUNT,
                )

            category_breakdown = ", ".join(
                f"{b.category}: ₹{format_number(b.amount)} ({format_number(b.rate)}%)"
                for b in commission_data.breakdown
            )
            transaction, previous_balance, new_balance = await self._charge_partner(
                partner_id,
                amount,
                wallet_description=f"Commission charge - {category_breakdown}",
                ledger_description="Commission charge - Multi-category order",
                order_id=order_id,
                order_model=order_model,
                metadata={
                    "order_type": "buy" if order_model == OrderModel.ORDER else "sell",
                    "commission_breakdown": [b.to_dict() for b in commission_data.breakdown],
                    "total_rate": float(commission_data.total_rate),
                    "total_amount": _money(amount),
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error(
                "Apply commission for items failed",
                extra_data={"partner_id": partner_id, "order_id": order_id},
                exc_info=True
            )
            raise

        logger.info(
            "Multi-category commission applied to partner",
            extra_data={
                "partner_id": partner_id,
                "order_id": order_id,
                "total_amount": amount,
                "total_rate": commission_data.total_rate,
                "breakdown": [b.to_dict() for b in commission_data.breakdown],
                "previous_balance": previous_balance,
                "new_balance": new_balance,
            }
        )
        return LedgerResult(
            success=True,
            commission=commission_data,
            transaction_id=transaction.id,
            previous_balance=previous_balance,
            new_balance=new_balance,
        )

    async def rollback_commission_for_items(
        self,
        partner_id: int,
        total_commission_amount: Any,
        order_id: int | None,
        order_model: OrderModel | str = OrderModel.ORDER,
        reason: str = "Order cancelled",
    ) -> LedgerResult:
        """Reverse a multi-category commission; same rules as a single rollback"""
        return await self.rollback_commission_from_partner(
            partner_id, total_commission_amount, order_id, order_model, reason
        )

    # ==================== Order bookkeeping ====================

    async def mark_commission_as_applied(self, order: Any) -> bool:
        """
        Flag an order's commission as applied.

        Not critical: failures are logged and swallowed so the surrounding
        workflow is never interrupted.
        """
        try:
            order.commission_is_applied = True
            order.commission_applied_at = datetime.utcnow()
            await self.db.commit()
        except Exception:
            logger.error(
                "Mark commission as applied failed",
                extra_data={"order_id": getattr(order, "id", None)},
                exc_info=True
            )
            await self._safe_rollback()
            return False

        logger.info(
            "Commission marked as applied",
            extra_data={"order_id": order.id}
        )
        return True

    async def _safe_rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            logger.error("Session rollback failed", exc_info=True)

    # ==================== Payments ====================

    async def settle_commission_payment(
        self,
        partner_id: int,
        amount: Any,
        payment_method: PaymentMethod | str = PaymentMethod.BANK_TRANSFER,
        request_reference: str | None = None,
        processed_by: int | None = None,
    ) -> LedgerResult:
        """
        Record a partner paying off commission.

        Unlike rollbacks this is strict: the payment may not exceed the
        current commission balance.
        """
        try:
            amount = _positive_amount(amount, "amount")
            try:
                payment_method = PaymentMethod(payment_method)
            except ValueError:
                payment_method = None
            if payment_method not in PAYOUT_METHODS:
                raise ValidationException(
                    "Unsupported payment method",
                    field="payment_method",
                    details={"allowed": [m.value for m in PAYOUT_METHODS]},
                )

            partner = await self._get_partner_for_update(partner_id)
            previous_balance = partner.commission_balance or ZERO
            if previous_balance < amount:
                raise InsufficientCommissionBalanceError(partner_id, previous_balance, amount)

            new_balance = previous_balance - amount
            partner.commission_balance = new_balance
            partner.total_commission_paid = (partner.total_commission_paid or ZERO) + amount

            description = (
                f"Commission payment - Request #{request_reference}"
                if request_reference else "Commission payment"
            )
            self._append_wallet_entry(partner.id, WalletEntryType.CREDIT, amount, description)
            await self.db.flush()

            transaction = await self._create_ledger_transaction(
                TransactionType.COMMISSION_PAYMENT,
                -amount,
                partner.id,
                description,
                {
                    "request_reference": request_reference,
                    "processed_by": processed_by,
                    "processed_at": datetime.utcnow().isoformat(),
                    "previous_balance": _money(previous_balance),
                    "new_balance": _money(new_balance),
                },
                payment_method=payment_method,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error(
                "Commission payment failed",
                extra_data={"partner_id": partner_id, "amount": amount},
                exc_info=True
            )
            raise

        logger.info(
            "Commission payment settled",
            extra_data={
                "partner_id": partner_id,
                "amount": amount,
                "payment_method": payment_method.value,
                "previous_balance": previous_balance,
                "new_balance": new_balance,
            }
        )
        return LedgerResult(
            success=True,
            payment_amount=amount,
            transaction_id=transaction.id,
            previous_balance=previous_balance,
            new_balance=new_balance,
        )

    # ==================== Read side ====================

    async def get_wallet_history(
        self, partner_id: int, limit: int | None = None
    ) -> list[PartnerWalletTransaction]:
        """Partner wallet entries, newest first"""
        result = await self.db.execute(
            select(PartnerWalletTransaction)
            .where(PartnerWalletTransaction.partner_id == partner_id)
            .order_by(PartnerWalletTransaction.timestamp.desc(), PartnerWalletTransaction.id.desc())
            .limit(settings.WALLET_HISTORY_DEFAULT_LIMIT if limit is None else limit)
        )
        return list(result.scalars().all())

    async def get_ledger_history(
        self, partner_id: int, limit: int | None = None
    ) -> list[Transaction]:
        """Standalone ledger rows of a partner, newest first"""
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.partner_id == partner_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(settings.WALLET_HISTORY_DEFAULT_LIMIT if limit is None else limit)
        )
        return list(result.scalars().all())

    async def _sum(self, query) -> Decimal:
        value = (await self.db.execute(query)).scalar()
        return to_decimal(value or 0).quantize(TWO_PLACES)

    @log_async_operation("reconcile_partner_wallet")
    async def reconcile_partner_wallet(self, partner_id: int) -> WalletReconciliation:
        """
        Compare the stored commission balance with the ledger.

        Read-only. A floored rollback, or a balance seeded outside the ledger,
        shows up as a non-zero discrepancy.
        """
        partner = await self.db.get(Partner, partner_id)
        if partner is None:
            raise PartnerNotFoundError(partner_id)

        ledger_net = await self._sum(
            select(func.sum(Transaction.amount)).where(
                Transaction.partner_id == partner_id,
                Transaction.transaction_type.in_(COMMISSION_TRANSACTION_TYPES),
            )
        )

        def _wallet_total(entry_type: WalletEntryType):
            return select(func.sum(PartnerWalletTransaction.amount)).where(
                PartnerWalletTransaction.partner_id == partner_id,
                PartnerWalletTransaction.type == entry_type,
                PartnerWalletTransaction.transaction_category == WalletEntryCategory.COMMISSION,
            )

        debits = await self._sum(_wallet_total(WalletEntryType.DEBIT))
        credits = await self._sum(_wallet_total(WalletEntryType.CREDIT))
        wallet_net = debits - credits

        balance = to_decimal(partner.commission_balance or ZERO).quantize(TWO_PLACES)
        discrepancy = balance - ledger_net
        is_consistent = discrepancy == 0 and wallet_net == ledger_net

        if not is_consistent:
            logger.warning(
                "Partner commission wallet out of balance",
                extra_data={
                    "partner_id": partner_id,
                    "commission_balance": balance,
                    "ledger_net": ledger_net,
                    "wallet_net": wallet_net,
                    "discrepancy": discrepancy,
                }
            )

        return WalletReconciliation(
            partner_id=partner_id,
            commission_balance=balance,
            ledger_net=ledger_net,
            wallet_net=wallet_net,
            discrepancy=discrepancy,
            is_consistent=is_consistent,
        )
