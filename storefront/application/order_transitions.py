import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from storefront.domain.models import (
    Order, OrderStatus, PaymentStatus, TransitionTrigger,
)
from storefront.domain.exceptions import (
    ConcurrentModificationError, OrderNotFoundError, ProductNotFoundError,
)
from storefront.domain.state_machine import SideEffect, TransitionPlan, plan_transition

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


def _event_type(plan: TransitionPlan) -> str:
    if plan.new_status == OrderStatus.CANCELLED:
        return "order.cancelled"
    if plan.new_payment_status == PaymentStatus.PAID:
        return "order.paid"
    if plan.new_payment_status == PaymentStatus.FAILED:
        return "order.payment_failed"
    if plan.new_payment_status in (PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED):
        return "order.refunded"
    return "order.status_changed"


class OrderStateMachine:
    """Applies transition plans to an order inside an open unit of work.

    Every status or payment-status change in the service goes through
    :meth:`apply`. The order row is written with a compare-and-swap on its
    version, so two transitions racing on the same order cannot both commit
    from the same stale state.
    """

    async def load(self, uow, order_id: str) -> Order:
        order = await uow.orders.get_by_id(order_id, for_update=True)
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    async def apply(
        self,
        uow,
        order: Order,
        *,
        trigger: TransitionTrigger,
        target_status: Optional[OrderStatus] = None,
        target_payment_status: Optional[PaymentStatus] = None,
        payment_ref: Optional[str] = None,
    ) -> TransitionPlan:
        if await uow.refunds.has_in_flight(order.id):
            raise ConcurrentModificationError("Order", order.id)

        plan = plan_transition(
            order.status,
            order.payment_status,
            trigger=trigger,
            target_status=target_status,
            target_payment_status=target_payment_status,
        )

        expected_version = order.version
        if plan.status_change:
            order.status = plan.new_status
        if plan.payment_change:
            order.payment_status = plan.new_payment_status
        if payment_ref:
            order.payment_ref = payment_ref

        holds_stock = order.stock_reserved
        if holds_stock and plan.side_effects & {SideEffect.RELEASE_STOCK, SideEffect.FULFIL_STOCK}:
            order.stock_reserved = False

        await uow.orders.save_state(order, expected_version)

        if holds_stock and SideEffect.RELEASE_STOCK in plan.side_effects:
            await self._release_stock(uow, order)
        if holds_stock and SideEffect.FULFIL_STOCK in plan.side_effects:
            for item in order.items:
                await uow.stock.fulfil(item.product_id, item.quantity)

        for field, change in (("status", plan.status_change), ("payment_status", plan.payment_change)):
            if change:
                await uow.transitions.record(order.id, field, change[0].value, change[1].value, trigger)

        await uow.outbox.create(
            event_type=_event_type(plan),
            event_data={
                "order_id": order.id,
                "status": order.status.value,
                "payment_status": order.payment_status.value,
                "trigger": trigger.value,
                "version": order.version
            },
            order_id=order.id
        )

        logger.info(
            f"Order {order.id}: status {plan.status_change or '-'}, "
            f"payment {plan.payment_change or '-'} ({trigger.value})"
        )
        return plan

    async def _release_stock(self, uow, order: Order) -> None:
        for item in order.items:
            try:
                await uow.stock.release(item.product_id, item.quantity)
            except ProductNotFoundError:
                logger.warning(f"Product {item.product_id} is gone, {item.quantity} unit(s) of order {order.id} not restocked")


async def retry_on_conflict(
    operation: Callable[[], Awaitable[ResultT]],
    attempts: int = 3,
    delay: float = 0.05,
) -> ResultT:
    """Re-run a short transaction that lost a compare-and-swap race"""
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConcurrentModificationError:
            if attempt == attempts:
                raise
            logger.warning(f"Concurrent modification, retrying (attempt {attempt}/{attempts})")
            await asyncio.sleep(delay)
