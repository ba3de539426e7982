"""
Tests for CommissionRulesService - rate lookup, overrides and calculation
"""
import pytest
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from cashmitra.core.exceptions import ErrorCode, PartnerNotFoundError, ValidationException
from cashmitra.db.models.commission_settings import CommissionSettings, DEFAULT_COMMISSION_RATES


class TestRateLookup:
    """get_commission_rate resolution order"""

    @pytest.mark.unit
    async def test_builtin_rates_without_settings_row(self, rules_service):
        assert await rules_service.get_commission_rate(None, "mobile", "buy") == Decimal("5")
        assert await rules_service.get_commission_rate(None, "tablet", "sell") == Decimal("2.5")

    @pytest.mark.unit
    async def test_settings_defaults_are_used(self, rules_service, commission_settings_factory):
        rates = {
            "buy": {"mobile": 7, "tablet": 4, "laptop": 3, "accessories": 2},
            "sell": {"mobile": 3, "tablet": 2.5, "laptop": 2, "accessories": 1.5},
        }
        await commission_settings_factory(default_rates=rates)

        assert await rules_service.get_commission_rate(None, "mobile", "buy") == Decimal("7")

    @pytest.mark.unit
    async def test_missing_entry_in_settings_is_zero(self, rules_service, commission_settings_factory):
        await commission_settings_factory(default_rates={"buy": {"mobile": 5}})

        assert await rules_service.get_commission_rate(None, "laptop", "buy") == Decimal("0")

    @pytest.mark.unit
    async def test_partner_override_wins(self, rules_service, partner_factory):
        partner = await partner_factory()
        await rules_service.set_partner_rates(partner.id, {"buy": {"mobile": 10}})

        assert await rules_service.get_commission_rate(partner.id, "mobile", "buy") == Decimal("10")
        # Not overridden -> default
        assert await rules_service.get_commission_rate(partner.id, "laptop", "buy") == Decimal("3")
        # Other partners are unaffected
        assert await rules_service.get_commission_rate(None, "mobile", "buy") == Decimal("5")

    @pytest.mark.unit
    async def test_database_failure_falls_back_to_builtin(self, rules_service):
        with patch.object(
            rules_service, "get_active_settings",
            side_effect=OperationalError("SELECT", {}, Exception("db down"))
        ):
            rate = await rules_service.get_commission_rate(1, "laptop", "sell")

        assert rate == Decimal(str(DEFAULT_COMMISSION_RATES["sell"]["laptop"]))

    @pytest.mark.unit
    async def test_failed_lookup_keeps_ledger_transaction_usable(
        self, ledger_service, partner_factory, db_session
    ):
        partner = await partner_factory(commission_balance=1000)
        nested_states = []

        async def broken_settings_read(*args, **kwargs):
            nested_states.append(db_session.in_nested_transaction())
            await db_session.execute(text("SELECT default_rates FROM no_such_settings_table"))

        with patch.object(ledger_service.rules_service, "get_active_settings", side_effect=broken_settings_read):
            result = await ledger_service.apply_commission_to_partner(
                partner.id, 5000, "mobile", "sell", order_id=None
            )

        assert nested_states == [True]
        assert result.commission.rate == Decimal("3")
        assert result.new_balance == Decimal("1150")
        await db_session.refresh(partner)
        assert partner.commission_balance == Decimal("1150")

    @pytest.mark.unit
    @pytest.mark.parametrize("category, order_type", [
        ("wearables", "buy"),
        ("mobile", "rent"),
    ])
    async def test_unknown_inputs_rejected(self, rules_service, category, order_type):
        with pytest.raises(ValidationException) as exc_info:
            await rules_service.get_commission_rate(None, category, order_type)

        assert exc_info.value.error_code == ErrorCode.VALIDATION_ERROR
        assert "allowed" in exc_info.value.details


class TestCalculateCommission:
    """calculate_commission_for_order"""

    @pytest.mark.unit
    async def test_amount_is_rounded_to_whole_units(self, rules_service):
        quote = await rules_service.calculate_commission_for_order(3000, "mobile", "buy")

        assert quote.rate == Decimal("5")
        assert quote.amount == Decimal("150")
        assert quote.category == "mobile"

    @pytest.mark.unit
    async def test_half_rounds_up(self, rules_service):
        # 1010 * 2.5% = 25.25 -> 25 ; 1030 * 2.5% = 25.75 -> 26 ; 1020 * 2.5% = 25.5 -> 26
        assert (await rules_service.calculate_commission_for_order(1010, "tablet", "sell")).amount == 25
        assert (await rules_service.calculate_commission_for_order(1030, "tablet", "sell")).amount == 26
        assert (await rules_service.calculate_commission_for_order(1020, "tablet", "sell")).amount == 26

    @pytest.mark.unit
    async def test_accepts_string_and_decimal_values(self, rules_service):
        a = await rules_service.calculate_commission_for_order("2000.00", "laptop", "buy")
        b = await rules_service.calculate_commission_for_order(Decimal("2000"), "laptop", "buy")

        assert a.amount == b.amount == Decimal("60")

    @pytest.mark.unit
    async def test_zero_value_gives_zero_commission(self, rules_service):
        quote = await rules_service.calculate_commission_for_order(0, "mobile", "buy")
        assert quote.amount == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [-1, "abc", "10.001", float("nan"), True])
    async def test_invalid_order_value(self, rules_service, value):
        with pytest.raises(ValidationException) as exc_info:
            await rules_service.calculate_commission_for_order(value, "mobile", "buy")

        assert exc_info.value.error_code == ErrorCode.INVALID_AMOUNT
        assert exc_info.value.details["field"] == "order_value"


class TestRateAdministration:
    """Global table and partner override management"""

    @pytest.mark.unit
    async def test_update_global_rates_creates_settings(self, rules_service, db_session):
        rates = {
            "buy": {"mobile": 6, "tablet": 5, "laptop": 4, "accessories": 3},
            "sell": {"mobile": 3, "tablet": 2, "laptop": 2, "accessories": 1},
        }
        settings_row = await rules_service.update_global_rates(rates, updated_by=7)

        assert settings_row.updated_by == 7
        assert settings_row.default_rates["buy"]["mobile"] == 6

        result = await db_session.execute(select(CommissionSettings))
        assert len(result.scalars().all()) == 1
        assert await rules_service.get_commission_rate(None, "accessories", "buy") == Decimal("3")

    @pytest.mark.unit
    async def test_update_global_rates_requires_full_table(self, rules_service):
        with pytest.raises(ValidationException) as exc_info:
            await rules_service.update_global_rates({"buy": {"mobile": 5}})

        assert exc_info.value.error_code == ErrorCode.INVALID_COMMISSION_RATE
        assert exc_info.value.details["errors"]

    @pytest.mark.unit
    async def test_rate_above_hundred_rejected(self, rules_service, partner_factory):
        partner = await partner_factory()

        with pytest.raises(ValidationException):
            await rules_service.set_partner_rates(partner.id, {"buy": {"mobile": 150}})

    @pytest.mark.unit
    async def test_unknown_category_in_override_rejected(self, rules_service, partner_factory):
        partner = await partner_factory()

        with pytest.raises(ValidationException):
            await rules_service.set_partner_rates(partner.id, {"buy": {"drones": 5}})

    @pytest.mark.unit
    async def test_set_partner_rates_unknown_partner(self, rules_service):
        with pytest.raises(PartnerNotFoundError):
            await rules_service.set_partner_rates(999, {"buy": {"mobile": 4}})

    @pytest.mark.unit
    async def test_set_partner_rates_replaces_existing_override(self, rules_service, partner_factory):
        partner = await partner_factory()
        first = await rules_service.set_partner_rates(partner.id, {"buy": {"mobile": 4}})
        second = await rules_service.set_partner_rates(partner.id, {"sell": {"laptop": 1}})

        assert first.id == second.id
        assert second.rates == {"sell": {"laptop": 1}}
        assert await rules_service.get_commission_rate(partner.id, "mobile", "buy") == Decimal("5")

    @pytest.mark.unit
    async def test_get_partner_rates_merges_override(self, rules_service, partner_factory):
        partner = await partner_factory()
        await rules_service.set_partner_rates(partner.id, {"buy": {"tablet": 9}})

        rates = await rules_service.get_partner_rates(partner.id)

        assert rates["has_override"] is True
        assert rates["rates"]["buy"]["tablet"] == 9
        assert rates["rates"]["buy"]["mobile"] == 5
        assert rates["override_rates"] == {"buy": {"tablet": 9}}

    @pytest.mark.unit
    async def test_get_partner_rates_without_override(self, rules_service, partner_factory):
        partner = await partner_factory()

        rates = await rules_service.get_partner_rates(partner.id)

        assert rates["has_override"] is False
        assert rates["rates"] == DEFAULT_COMMISSION_RATES

    @pytest.mark.unit
    async def test_remove_partner_rates(self, rules_service, partner_factory):
        partner = await partner_factory()
        await rules_service.set_partner_rates(partner.id, {"buy": {"mobile": 12}})

        assert await rules_service.remove_partner_rates(partner.id) is True
        assert await rules_service.remove_partner_rates(partner.id) is False
        assert await rules_service.get_commission_rate(partner.id, "mobile", "buy") == Decimal("5")
