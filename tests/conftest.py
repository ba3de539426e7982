"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- Commission services bound to the test session
- Test data factories (partners, settings, buy / sell orders)
"""
import pytest
from decimal import Decimal
from typing import AsyncGenerator, Any
from unittest.mock import patch

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from cashmitra.db.database import Base
from cashmitra.db.models.commission_settings import CommissionSettings, default_rates_copy
from cashmitra.db.models.order import Order, OrderItem, OrderStatus, SellOrder
from cashmitra.db.models.partner import Partner
from cashmitra.domain.services.commission_ledger_service import CommissionLedgerService
from cashmitra.domain.services.commission_rules_service import CommissionRulesService
from cashmitra.domain.services.order_commission_service import OrderCommissionService
from cashmitra.core.config import settings


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Note: no custom event_loop fixture; pytest-asyncio 0.23+ handles it with
# asyncio_mode=auto and asyncio_default_fixture_loop_scope=function


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine) -> async_sessionmaker:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Services
# ============================================================================

@pytest.fixture
def rules_service(db_session: AsyncSession) -> CommissionRulesService:
    return CommissionRulesService(db_session)


@pytest.fixture
def ledger_service(db_session: AsyncSession, rules_service) -> CommissionLedgerService:
    return CommissionLedgerService(db_session, rules_service=rules_service)


@pytest.fixture
def order_service(db_session: AsyncSession) -> OrderCommissionService:
    return OrderCommissionService(db_session)


@pytest.fixture
def strict_rollback():
    """Reject rollbacks larger than the balance instead of flooring at zero"""
    with patch.object(settings, "COMMISSION_STRICT_ROLLBACK", True):
        yield


# ============================================================================
# Test Data Factories
# ============================================================================

_partner_counter = 0


@pytest.fixture(autouse=True)
def reset_partner_counter():
    global _partner_counter
    _partner_counter = 0
    yield


@pytest.fixture
def partner_factory(db_session: AsyncSession):
    """Factory for creating test partners"""
    async def _create_partner(
        shop_name: str | None = None,
        shop_email: str | None = None,
        commission_balance: Any = 0,
        is_active: bool = True,
    ) -> Partner:
        global _partner_counter
        _partner_counter += 1
        partner = Partner(
            shop_name=shop_name or f"Test Shop {_partner_counter}",
            shop_email=shop_email or f"shop{_partner_counter}@example.com",
            commission_balance=Decimal(str(commission_balance)),
            is_active=is_active,
        )
        db_session.add(partner)
        await db_session.commit()
        await db_session.refresh(partner)
        return partner

    return _create_partner


@pytest.fixture
def commission_settings_factory(db_session: AsyncSession):
    """Factory for the active commission settings row"""
    async def _create_settings(default_rates: dict | None = None) -> CommissionSettings:
        settings_row = CommissionSettings(
            default_rates=default_rates if default_rates is not None else default_rates_copy(),
            is_active=True,
        )
        db_session.add(settings_row)
        await db_session.commit()
        await db_session.refresh(settings_row)
        return settings_row

    return _create_settings


def make_product(category: str | None = None, name: str = "Device", brand: str = "Generic") -> dict:
    """Product snapshot the way orders store it"""
    product: dict[str, Any] = {"name": name, "brand": brand}
    if category is not None:
        product["category_id"] = {"name": category}
    return product


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Factory for creating buy orders with items: [(product, price, quantity), ...]"""
    async def _create_order(
        items: list[tuple[dict, Any, int]],
        status: OrderStatus = OrderStatus.PENDING,
        partner_id: int | None = None,
    ) -> Order:
        order = Order(
            status=status,
            partner_id=partner_id,
            total_amount=sum(Decimal(str(price)) * qty for _, price, qty in items),
            items=[
                OrderItem(product=product, price=Decimal(str(price)), quantity=qty)
                for product, price, qty in items
            ],
        )
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


@pytest.fixture
def sell_order_factory(db_session: AsyncSession):
    """Factory for creating sell orders"""
    async def _create_sell_order(
        product: dict,
        quote_amount: Any,
        status: OrderStatus = OrderStatus.PENDING,
    ) -> SellOrder:
        sell_order = SellOrder(
            product=product,
            quote_amount=Decimal(str(quote_amount)),
            status=status,
        )
        db_session.add(sell_order)
        await db_session.commit()
        await db_session.refresh(sell_order)
        return sell_order

    return _create_sell_order
