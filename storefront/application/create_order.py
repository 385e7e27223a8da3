import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel

from storefront.domain.models import (
    CartLine, Order, OrderItem, OrderStatus, PaymentStatus, PricedCart, TransitionTrigger,
)
from storefront.domain.exceptions import (
    DuplicateOrderError, InsufficientStockError, ProductNotFoundError,
)
from storefront.application.validate_cart import CartSnapshotValidator

logger = logging.getLogger(__name__)


class CustomerDTO(BaseModel):
    name: str
    email: str
    shipping_address: Optional[str] = None


class CreateOrderDTO(BaseModel):
    lines: List[CartLine]
    customer: CustomerDTO
    idempotency_key: Optional[str] = None


class OrderFactory:
    """Turns a priced cart into a persisted order.

    Reservations, the order row, its items and the audit/outbox rows are
    written in one transaction: either everything commits or nothing does.
    """

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(
        self,
        cart: PricedCart,
        customer: CustomerDTO,
        idempotency_key: Optional[str] = None
    ) -> Order:
        order_id = str(uuid.uuid4())

        async with self._uow() as uow:
            reserved = []
            try:
                for line in cart.lines:
                    reserved.append(await uow.stock.reserve(line.product_id, line.quantity))
            except (InsufficientStockError, ProductNotFoundError) as e:
                logger.warning(
                    f"Reservation failed for product {e.product_id}, "
                    f"releasing {len(reserved)} reservation(s) of attempt {order_id}"
                )
                await uow.rollback()
                raise

            now = datetime.now(timezone.utc)
            order = Order(
                id=order_id,
                status=OrderStatus.PENDING_PAYMENT,
                payment_status=PaymentStatus.UNPAID,
                total=cart.total,
                items=[
                    OrderItem(
                        id=str(uuid.uuid4()),
                        order_id=order_id,
                        product_id=line.product_id,
                        product_name=line.product_name,
                        quantity=line.quantity,
                        unit_price=line.unit_price
                    )
                    for line in cart.lines
                ],
                customer_name=customer.name,
                customer_email=customer.email,
                shipping_address=customer.shipping_address,
                idempotency_key=idempotency_key,
                stock_reserved=True,
                created_at=now,
                updated_at=now
            )
            if order.total != order.items_total():
                raise ValueError(f"Cart total {order.total} does not match its lines ({order.items_total()})")
            await uow.orders.create(order)
            await uow.transitions.record(
                order.id, "status", "", OrderStatus.PENDING_PAYMENT.value, TransitionTrigger.CHECKOUT
            )
            await uow.outbox.create(
                event_type="order.created",
                event_data={
                    "order_id": order.id,
                    "total": str(order.total),
                    "items": [
                        {"product_id": item.product_id, "quantity": item.quantity}
                        for item in order.items
                    ]
                },
                order_id=order.id
            )
            await uow.commit()

        logger.info(f"Order created: {order.id}, total {order.total}, {len(reserved)} reservation(s)")
        return order


class CreateOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work
        self._validate = CartSnapshotValidator(unit_of_work)
        self._factory = OrderFactory(unit_of_work)

    async def __call__(self, order_data: CreateOrderDTO) -> Order:
        logger.info(f"Checkout for {order_data.customer.email}, {len(order_data.lines)} cart line(s)")

        if order_data.idempotency_key:
            existing = await self._find_existing(order_data.idempotency_key)
            if existing:
                logger.info(f"Order already exists: {existing.id}")
                return existing

        cart = await self._validate(order_data.lines)
        try:
            return await self._factory(cart, order_data.customer, order_data.idempotency_key)
        except DuplicateOrderError as e:
            # Lost the race against an identical checkout
            existing = await self._find_existing(e.idempotency_key)
            if not existing:
                raise
            return existing

    async def _find_existing(self, key: str) -> Optional[Order]:
        async with self._uow() as uow:
            return await uow.orders.get_by_idempotency_key(key)
