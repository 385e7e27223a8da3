import math
from typing import List, Optional
from pydantic import BaseModel

from storefront.domain.models import Order, OrderStatus, PaymentStatus, Refund, TransitionRecord
from storefront.domain.exceptions import OrderNotFoundError


class OrderDetails(BaseModel):
    order: Order
    refunds: List[Refund]
    transitions: List[TransitionRecord]


class OrdersPage(BaseModel):
    orders: List[Order]
    total: int
    page: int
    limit: int
    total_pages: int


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(order_id)
            return order


class GetOrderDetailsUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str) -> OrderDetails:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(order_id)
            return OrderDetails(
                order=order,
                refunds=await uow.refunds.list_for_order(order_id),
                transitions=await uow.transitions.list_for_order(order_id)
            )


class ListOrdersUseCase:
    MAX_LIMIT = 100

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        search: Optional[str] = None,
    ) -> OrdersPage:
        page = max(page, 1)
        limit = min(max(limit, 1), self.MAX_LIMIT)

        async with self._uow() as uow:
            orders, total = await uow.orders.list(
                offset=(page - 1) * limit,
                limit=limit,
                status=status,
                payment_status=payment_status,
                search=search
            )

        return OrdersPage(
            orders=orders,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0
        )


class GetStockUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, product_id: str) -> int:
        async with self._uow() as uow:
            return await uow.stock.available(product_id)
