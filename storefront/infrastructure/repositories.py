import uuid
from decimal import Decimal
from typing import Optional, List, Sequence, Tuple
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, func, or_, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.domain.models import (
    Order, OrderItem, OrderStatus, PaymentStatus, Product, Refund, RefundStatus, Reservation,
    TransitionRecord, TransitionTrigger, to_money,
)
from storefront.domain.exceptions import (
    ConcurrentModificationError, DuplicateOrderError, InsufficientStockError, InvalidQuantityError,
    ProductNotFoundError,
)
from storefront.infrastructure.db_schema import (
    products_tbl, orders_tbl, order_items_tbl, refunds_tbl, order_transitions_tbl, outbox_events_tbl,
)
from storefront.application.interfaces import (
    ProductRepository, StockLedger, OrderRepository, RefundRepository, TransitionRepository,
    OutboxRepository,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SQLAlchemyProductRepository(ProductRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id == product_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def get_many(self, product_ids: Sequence[str]) -> List[Product]:
        if not product_ids:
            return []
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id.in_(list(product_ids)))
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def create(self, product: Product) -> None:
        stmt = insert(products_tbl).values(
            id=product.id,
            name=product.name,
            price=to_money(product.price),
            stock_quantity=product.stock_quantity,
            reserved_quantity=product.reserved_quantity,
            created_at=product.created_at
        )
        await self._session.execute(stmt)

    def _to_domain(self, row) -> Product:
        return Product(
            id=row.id,
            name=row.name,
            price=to_money(row.price),
            stock_quantity=row.stock_quantity,
            reserved_quantity=row.reserved_quantity,
            created_at=row.created_at
        )


class SQLAlchemyStockLedger(StockLedger):
    """Per-product stock counters.

    Every mutation is one conditional UPDATE on the product row, so the
    database serializes concurrent reservations of the same product: the
    check ``stock_quantity >= quantity`` and the decrement happen atomically.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def reserve(self, product_id: str, quantity: int) -> Reservation:
        if quantity <= 0:
            raise InvalidQuantityError(product_id, quantity)

        stmt = (
            update(products_tbl)
            .where(
                products_tbl.c.id == product_id,
                products_tbl.c.stock_quantity >= quantity
            )
            .values(
                stock_quantity=products_tbl.c.stock_quantity - quantity,
                reserved_quantity=products_tbl.c.reserved_quantity + quantity
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            available = await self._stock_of(product_id)
            if available is None:
                raise ProductNotFoundError(product_id)
            raise InsufficientStockError(product_id, available, quantity)

        return Reservation(
            id=str(uuid.uuid4()),
            product_id=product_id,
            quantity=quantity,
            reserved_at=_now()
        )

    async def release(self, product_id: str, quantity: int) -> None:
        # Pairing with a prior reserve is the caller's job; stock grows by exactly `quantity`
        if quantity <= 0:
            raise InvalidQuantityError(product_id, quantity)

        stmt = (
            update(products_tbl)
            .where(products_tbl.c.id == product_id)
            .values(
                stock_quantity=products_tbl.c.stock_quantity + quantity,
                reserved_quantity=self._reserved_minus(quantity)
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ProductNotFoundError(product_id)

    async def fulfil(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            raise InvalidQuantityError(product_id, quantity)

        stmt = (
            update(products_tbl)
            .where(products_tbl.c.id == product_id)
            .values(reserved_quantity=self._reserved_minus(quantity))
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ProductNotFoundError(product_id)

    async def available(self, product_id: str) -> int:
        stock = await self._stock_of(product_id)
        if stock is None:
            raise ProductNotFoundError(product_id)
        return stock

    async def _stock_of(self, product_id: str) -> Optional[int]:
        result = await self._session.execute(
            select(products_tbl.c.stock_quantity).where(products_tbl.c.id == product_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _reserved_minus(quantity: int):
        reserved = products_tbl.c.reserved_quantity
        return case((reserved >= quantity, reserved - quantity), else_=0)


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        query = select(orders_tbl).where(orders_tbl.c.id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        row = result.fetchone()
        if not row:
            return None
        items = await self._items_for([order_id])
        return self._to_domain(row, items.get(order_id, []))

    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.idempotency_key == key)
        )
        row = result.fetchone()
        if not row:
            return None
        items = await self._items_for([row.id])
        return self._to_domain(row, items.get(row.id, []))

    async def create(self, order: Order) -> None:
        stmt = insert(orders_tbl).values(
            id=order.id,
            status=order.status,
            payment_status=order.payment_status,
            total=order.total,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            shipping_address=order.shipping_address,
            idempotency_key=order.idempotency_key,
            payment_ref=order.payment_ref,
            stock_reserved=order.stock_reserved,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at
        )
        try:
            await self._session.execute(stmt)
        except IntegrityError:
            if order.idempotency_key:
                raise DuplicateOrderError(order.idempotency_key)
            raise

        if order.items:
            await self._session.execute(
                insert(order_items_tbl),
                [
                    {
                        "id": item.id,
                        "order_id": order.id,
                        "product_id": item.product_id,
                        "product_name": item.product_name,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                    }
                    for item in order.items
                ]
            )

    async def save_state(self, order: Order, expected_version: int) -> None:
        """Compare-and-swap on ``version``: a stale read never overwrites a newer state"""
        now = _now()
        stmt = (
            update(orders_tbl)
            .where(
                orders_tbl.c.id == order.id,
                orders_tbl.c.version == expected_version
            )
            .values(
                status=order.status,
                payment_status=order.payment_status,
                payment_ref=order.payment_ref,
                stock_reserved=order.stock_reserved,
                version=expected_version + 1,
                updated_at=now
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrentModificationError("Order", order.id)
        order.version = expected_version + 1
        order.updated_at = now

    async def list(
        self,
        offset: int,
        limit: int,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[Order], int]:
        conditions = []
        if status is not None:
            conditions.append(orders_tbl.c.status == status)
        if payment_status is not None:
            conditions.append(orders_tbl.c.payment_status == payment_status)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                orders_tbl.c.id.ilike(pattern),
                orders_tbl.c.customer_name.ilike(pattern),
                orders_tbl.c.customer_email.ilike(pattern)
            ))

        total = await self._session.scalar(
            select(func.count()).select_from(orders_tbl).where(*conditions)
        )
        result = await self._session.execute(
            select(orders_tbl)
            .where(*conditions)
            .order_by(orders_tbl.c.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = result.fetchall()
        items = await self._items_for([row.id for row in rows])
        return [self._to_domain(row, items.get(row.id, [])) for row in rows], total or 0

    async def list_stale_unpaid(self, created_before: datetime, limit: int) -> List[str]:
        result = await self._session.execute(
            select(orders_tbl.c.id)
            .where(
                orders_tbl.c.status == OrderStatus.PENDING_PAYMENT,
                orders_tbl.c.payment_status == PaymentStatus.UNPAID,
                orders_tbl.c.created_at < created_before
            )
            .order_by(orders_tbl.c.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _items_for(self, order_ids: List[str]) -> dict:
        if not order_ids:
            return {}
        result = await self._session.execute(
            select(order_items_tbl)
            .where(order_items_tbl.c.order_id.in_(order_ids))
            .order_by(order_items_tbl.c.order_id, order_items_tbl.c.id)
        )
        grouped = {}
        for row in result.fetchall():
            grouped.setdefault(row.order_id, []).append(
                OrderItem(
                    id=row.id,
                    order_id=row.order_id,
                    product_id=row.product_id,
                    product_name=row.product_name,
                    quantity=row.quantity,
                    unit_price=to_money(row.unit_price)
                )
            )
        return grouped

    def _to_domain(self, row, items: List[OrderItem]) -> Order:
        """DB -> Domain"""
        return Order(
            id=row.id,
            status=OrderStatus(row.status),
            payment_status=PaymentStatus(row.payment_status),
            total=to_money(row.total),
            items=items,
            customer_name=row.customer_name,
            customer_email=row.customer_email,
            shipping_address=row.shipping_address,
            idempotency_key=row.idempotency_key,
            payment_ref=row.payment_ref,
            stock_reserved=row.stock_reserved,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at
        )


class SQLAlchemyRefundRepository(RefundRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, refund: Refund) -> None:
        stmt = insert(refunds_tbl).values(
            id=refund.id,
            order_id=refund.order_id,
            amount=refund.amount,
            reason=refund.reason,
            status=refund.status,
            external_ref=refund.external_ref,
            created_at=refund.created_at,
            completed_at=refund.completed_at
        )
        await self._session.execute(stmt)

    async def finish(self, refund_id: str, status: RefundStatus, external_ref: Optional[str]) -> None:
        stmt = (
            update(refunds_tbl)
            .where(
                refunds_tbl.c.id == refund_id,
                refunds_tbl.c.status == RefundStatus.REQUESTED
            )
            .values(
                status=status,
                external_ref=external_ref,
                completed_at=_now()
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrentModificationError("Refund", refund_id)

    async def list_for_order(self, order_id: str) -> List[Refund]:
        result = await self._session.execute(
            select(refunds_tbl)
            .where(refunds_tbl.c.order_id == order_id)
            .order_by(refunds_tbl.c.created_at.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def claimed_amount(self, order_id: str) -> Decimal:
        """Completed refunds plus the ones still in flight"""
        return await self._sum(order_id, (RefundStatus.REQUESTED, RefundStatus.COMPLETED))

    async def completed_amount(self, order_id: str) -> Decimal:
        return await self._sum(order_id, (RefundStatus.COMPLETED,))

    async def has_in_flight(self, order_id: str) -> bool:
        result = await self._session.execute(
            select(refunds_tbl.c.id).where(
                refunds_tbl.c.order_id == order_id,
                refunds_tbl.c.status == RefundStatus.REQUESTED
            ).limit(1)
        )
        return result.first() is not None

    async def _sum(self, order_id: str, statuses) -> Decimal:
        result = await self._session.execute(
            select(refunds_tbl.c.amount).where(
                refunds_tbl.c.order_id == order_id,
                refunds_tbl.c.status.in_(statuses)
            )
        )
        return to_money(sum((to_money(amount) for amount in result.scalars().all()), Decimal("0")))

    def _to_domain(self, row) -> Refund:
        return Refund(
            id=row.id,
            order_id=row.order_id,
            amount=to_money(row.amount),
            reason=row.reason,
            status=RefundStatus(row.status),
            external_ref=row.external_ref,
            created_at=row.created_at,
            completed_at=row.completed_at
        )


class SQLAlchemyTransitionRepository(TransitionRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def record(
        self, order_id: str, field: str, from_state: str, to_state: str, trigger: TransitionTrigger
    ) -> None:
        stmt = insert(order_transitions_tbl).values(
            order_id=order_id,
            field=field,
            from_state=from_state,
            to_state=to_state,
            trigger=trigger.value,
            created_at=_now()
        )
        await self._session.execute(stmt)

    async def list_for_order(self, order_id: str) -> List[TransitionRecord]:
        result = await self._session.execute(
            select(order_transitions_tbl)
            .where(order_transitions_tbl.c.order_id == order_id)
            .order_by(order_transitions_tbl.c.id.asc())
        )
        return [
            TransitionRecord(
                order_id=row.order_id,
                field=row.field,
                from_state=row.from_state,
                to_state=row.to_state,
                trigger=TransitionTrigger(row.trigger),
                created_at=row.created_at
            )
            for row in result.fetchall()
        ]


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,  # JSON column serializes it
            order_id=order_id,
            status="pending",
            created_at=_now()
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(outbox_events_tbl)
            .where(outbox_events_tbl.c.status == "pending")
            .order_by(outbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id
            }
            for row in rows
        ]

    async def mark_as_published(self, event_id: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="published")
        )
        await self._session.execute(stmt)
