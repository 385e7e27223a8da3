import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from storefront.application.create_order import CreateOrderDTO, CreateOrderUseCase, CustomerDTO
from storefront.application.interfaces import EventPublisher, PaymentGateway
from storefront.application.payments import GatewayPolicy
from storefront.application.process_payment import ChargeOrderUseCase
from storefront.domain.models import CartLine, Product
from storefront.infrastructure.db_schema import metadata
from storefront.infrastructure.unit_of_work import UnitOfWork


class FakePaymentGateway(PaymentGateway):
    """Deterministic gateway: queue exceptions to make the next calls fail"""

    def __init__(self):
        self.charges = []
        self.refunds = []
        self.charge_attempts = 0
        self.refund_attempts = 0
        self.charge_failures = []
        self.refund_failures = []
        self.delay = 0.0

    async def charge(self, order_id: str, amount: Decimal, idempotency_key: Optional[str] = None) -> str:
        self.charge_attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.charge_failures:
            raise self.charge_failures.pop(0)
        ref = f"pay_{uuid.uuid4().hex[:8]}"
        self.charges.append({"order_id": order_id, "amount": amount, "ref": ref, "key": idempotency_key})
        return ref

    async def refund(
        self, order_id: str, amount: Decimal, external_ref: str, idempotency_key: Optional[str] = None
    ) -> str:
        self.refund_attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.refund_failures:
            raise self.refund_failures.pop(0)
        ref = f"re_{uuid.uuid4().hex[:8]}"
        self.refunds.append(
            {"order_id": order_id, "amount": amount, "payment_ref": external_ref, "ref": ref, "key": idempotency_key}
        )
        return ref


class FakePublisher(EventPublisher):
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.published = []

    async def publish(self, event_type: str, order_id: str, payload: dict) -> bool:
        if not self.succeed:
            return False
        self.published.append((event_type, order_id, payload))
        return True


@pytest.fixture
async def engine(tmp_path):
    # File database with one connection per session so concurrent units of work really contend
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def uow(session_factory):
    return UnitOfWork(session_factory)


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def policy():
    return GatewayPolicy(timeout=0.5, max_attempts=3, retry_delay=0)


@pytest.fixture
def add_product(uow):
    async def _add(stock: int = 10, price: str = "10.00", name: Optional[str] = None) -> str:
        product_id = f"prod_{uuid.uuid4().hex[:8]}"
        async with uow() as u:
            await u.products.create(
                Product(
                    id=product_id,
                    name=name or f"Product {product_id}",
                    price=Decimal(price),
                    stock_quantity=stock,
                    created_at=datetime.now(timezone.utc)
                )
            )
            await u.commit()
        return product_id

    return _add


@pytest.fixture
def stock_of(uow):
    async def _stock(product_id: str):
        async with uow() as u:
            product = await u.products.get_by_id(product_id)
        return product.stock_quantity, product.reserved_quantity

    return _stock


@pytest.fixture
def place_order(uow):
    async def _place(quantities: Dict[str, int], idempotency_key: Optional[str] = None):
        dto = CreateOrderDTO(
            lines=[CartLine(product_id=pid, quantity=q) for pid, q in quantities.items()],
            customer=CustomerDTO(name="Ada Lovelace", email="ada@example.com", shipping_address="12 Analytical St"),
            idempotency_key=idempotency_key
        )
        return await CreateOrderUseCase(uow)(dto)

    return _place


@pytest.fixture
def pay(uow, gateway, policy):
    async def _pay(order_id: str):
        return await ChargeOrderUseCase(uow, gateway, policy)(order_id)

    return _pay


@pytest.fixture
def load_order(uow):
    async def _load(order_id: str):
        async with uow() as u:
            return await u.orders.get_by_id(order_id)

    return _load
