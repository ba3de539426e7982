"""
Commission Rules Service - commission rate lookup and calculation

Resolves the rate for (partner, category, order type) from the active
settings row, honouring partner overrides, and turns an order value into a
commission quote. Also administers the rate tables.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cashmitra.core.exceptions import ErrorCode, PartnerNotFoundError, ValidationException
from cashmitra.core.logging import get_logger
from cashmitra.core.validation import AmountValidator, HUNDRED, round_currency, to_decimal
from cashmitra.db.models.commission_settings import (
    DEFAULT_COMMISSION_RATES,
    CommissionSettings,
    OrderType,
    PartnerCommissionOverride,
    ProductCategory,
    default_rates_copy,
)
from cashmitra.db.models.partner import Partner
from cashmitra.domain.schemas import CommissionRateTable, PartnerRateOverride

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommissionQuote:
    """Commission for one order value: rate in percent, amount in whole units"""
    rate: Decimal
    amount: Decimal
    category: str


def normalize_order_type(order_type: Any) -> str:
    try:
        return OrderType(order_type).value
    except ValueError:
        raise ValidationException(
            f"Unknown order type: {order_type!r}",
            field="order_type",
            details={"allowed": [t.value for t in OrderType]},
        )


def normalize_category(category: Any) -> str:
    try:
        return ProductCategory(category).value
    except ValueError:
        raise ValidationException(
            f"Unknown product category: {category!r}",
            field="category",
            details={"allowed": [c.value for c in ProductCategory]},
        )


def _rate_from_table(rates: Optional[dict], order_type: str, category: str) -> Optional[Decimal]:
    value = ((rates or {}).get(order_type) or {}).get(category)
    if value is None:
        return None
    return to_decimal(value)


def _pydantic_error_details(error: ValidationError) -> dict[str, Any]:
    return {
        "errors": [
            {"location": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
            for e in error.errors()
        ]
    }


class CommissionRulesService:
    """Commission rates and per-order commission calculation"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_settings(
        self,
        create_if_missing: bool = False,
        updated_by: int | None = None,
    ) -> Optional[CommissionSettings]:
        """The active settings row; optionally seeded with the built-in defaults"""
        result = await self.db.execute(
            select(CommissionSettings)
            .where(CommissionSettings.is_active.is_(True))
            .order_by(CommissionSettings.id.desc())
            .limit(1)
        )
        settings_row = result.scalar_one_or_none()

        if settings_row is None and create_if_missing:
            settings_row = CommissionSettings(
                default_rates=default_rates_copy(),
                is_active=True,
                updated_by=updated_by,
            )
            self.db.add(settings_row)
            await self.db.commit()
            logger.info(
                "Commission settings created with default rates",
                extra_data={"settings_id": settings_row.id, "updated_by": updated_by}
            )

        return settings_row

    async def _get_override(
        self, settings_id: int, partner_id: int, active_only: bool = False
    ) -> Optional[PartnerCommissionOverride]:
        query = select(PartnerCommissionOverride).where(
            PartnerCommissionOverride.settings_id == settings_id,
            PartnerCommissionOverride.partner_id == partner_id,
        )
        if active_only:
            query = query.where(PartnerCommissionOverride.is_active.is_(True))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_commission_rate(
        self,
        partner_id: int | None,
        category: str,
        order_type: str,
    ) -> Decimal:
        """
        Rate in percent for a partner / category / order type.

        Partner override first, then the settings defaults. Without an active
        settings row, or when the lookup itself fails, the built-in table is used.
        """
        order_type = normalize_order_type(order_type)
        category = normalize_category(category)
        builtin = to_decimal(DEFAULT_COMMISSION_RATES[order_type][category])

        try:
            # a failed read must not abort the caller's transaction
            async with self.db.begin_nested():
                rate = await self._lookup_rate(partner_id, category, order_type)
        except SQLAlchemyError:
            logger.error(
                "Commission settings lookup failed, using built-in rates",
                extra_data={
                    "partner_id": partner_id,
                    "category": category,
                    "order_type": order_type,
                },
                exc_info=True
            )
            return builtin

        return builtin if rate is None else rate

    async def _lookup_rate(
        self, partner_id: int | None, category: str, order_type: str
    ) -> Decimal | None:
        """Configured rate, or None when no settings row is active"""
        settings_row = await self.get_active_settings()
        if settings_row is None:
            return None

        if partner_id is not None:
            override = await self._get_override(settings_row.id, partner_id, active_only=True)
            if override is not None:
                rate = _rate_from_table(override.rates, order_type, category)
                if rate is not None:
                    return rate

        rate = _rate_from_table(settings_row.default_rates, order_type, category)
        return rate if rate is not None else Decimal("0")

    async def calculate_commission_for_order(
        self,
        order_value: Any,
        category: str,
        order_type: str,
        partner_id: int | None = None,
    ) -> CommissionQuote:
        """Commission for a single order value, rounded to whole currency units"""
        is_valid, error = AmountValidator.validate(order_value)
        if not is_valid:
            raise ValidationException(
                error, field="order_value", error_code=ErrorCode.INVALID_AMOUNT
            )

        category = normalize_category(category)
        rate = await self.get_commission_rate(partner_id, category, order_type)
        amount = round_currency(to_decimal(order_value) * rate / HUNDRED)

        return CommissionQuote(rate=rate, amount=amount, category=category)

    # ==================== Rate administration ====================

    async def update_global_rates(
        self, default_rates: dict, updated_by: int | None = None
    ) -> CommissionSettings:
        """Replace the global default table; every order type and category is required"""
        try:
            table = CommissionRateTable.model_validate(default_rates)
        except ValidationError as e:
            raise ValidationException(
                "Invalid commission rate table",
                field="default_rates",
                details=_pydantic_error_details(e),
                error_code=ErrorCode.INVALID_COMMISSION_RATE,
            )

        settings_row = await self.get_active_settings(create_if_missing=True, updated_by=updated_by)
        old_rates = settings_row.default_rates
        settings_row.default_rates = table.model_dump()
        settings_row.updated_by = updated_by
        settings_row.updated_at = datetime.utcnow()
        await self.db.commit()

        logger.info(
            "Global commission rates updated",
            extra_data={
                "settings_id": settings_row.id,
                "updated_by": updated_by,
                "old_rates": old_rates,
                "new_rates": settings_row.default_rates,
            }
        )
        return settings_row

    async def set_partner_rates(
        self, partner_id: int, rates: dict, updated_by: int | None = None
    ) -> PartnerCommissionOverride:
        """Create or replace a partner's override; partial tables are allowed"""
        try:
            override_rates = PartnerRateOverride.model_validate(rates).to_rates()
        except ValidationError as e:
            raise ValidationException(
                "Invalid partner commission rates",
                field="rates",
                details=_pydantic_error_details(e),
                error_code=ErrorCode.INVALID_COMMISSION_RATE,
            )

        partner = await self.db.get(Partner, partner_id)
        if partner is None:
            raise PartnerNotFoundError(partner_id)

        settings_row = await self.get_active_settings(create_if_missing=True, updated_by=updated_by)
        override = await self._get_override(settings_row.id, partner_id)

        if override is None:
            override = PartnerCommissionOverride(
                settings_id=settings_row.id,
                partner_id=partner_id,
                rates=override_rates,
                is_active=True,
            )
            self.db.add(override)
        else:
            override.rates = override_rates
            override.is_active = True
            override.updated_at = datetime.utcnow()

        settings_row.updated_by = updated_by
        await self.db.commit()

        logger.info(
            "Partner commission rates set",
            extra_data={
                "partner_id": partner_id,
                "updated_by": updated_by,
                "rates": override_rates,
            }
        )
        return override

    async def get_partner_rates(self, partner_id: int) -> dict[str, Any]:
        """Effective rates for a partner: defaults merged with its active override"""
        partner = await self.db.get(Partner, partner_id)
        if partner is None:
            raise PartnerNotFoundError(partner_id)

        settings_row = await self.get_active_settings()
        effective = settings_row.default_rates if settings_row else default_rates_copy()
        effective = {order_type: dict(rates) for order_type, rates in effective.items()}

        override = None
        if settings_row is not None:
            override = await self._get_override(settings_row.id, partner_id, active_only=True)

        if override is not None:
            for order_type, rates in (override.rates or {}).items():
                effective.setdefault(order_type, {}).update(rates)

        return {
            "partner_id": partner_id,
            "rates": effective,
            "has_override": override is not None,
            "override_rates": override.rates if override is not None else None,
        }

    async def remove_partner_rates(self, partner_id: int) -> bool:
        """Delete a partner's override; returns False when it had none"""
        settings_row = await self.get_active_settings()
        if settings_row is None:
            return False

        override = await self._get_override(settings_row.id, partner_id)
        if override is None:
            return False

        await self.db.delete(override)
        await self.db.commit()

        logger.info(
            "Partner commission rates removed",
            extra_data={"partner_id": partner_id}
        )
        return True
