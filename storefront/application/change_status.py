import logging

from storefront.domain.models import Order, OrderStatus, PaymentStatus, TransitionTrigger
from storefront.application.order_transitions import OrderStateMachine

logger = logging.getLogger(__name__)


class ChangeOrderStatusUseCase:
    """Admin-driven fulfillment step; same legality rules as every other caller"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work
        self._machine = OrderStateMachine()

    async def __call__(self, order_id: str, target: OrderStatus) -> Order:
        async with self._uow() as uow:
            order = await self._machine.load(uow, order_id)
            await self._machine.apply(uow, order, trigger=TransitionTrigger.ADMIN, target_status=target)
            await uow.commit()

        logger.info(f"Admin moved order {order_id} to {target.value}")
        return order


class ChangePaymentStatusUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work
        self._machine = OrderStateMachine()

    async def __call__(self, order_id: str, target: PaymentStatus) -> Order:
        async with self._uow() as uow:
            order = await self._machine.load(uow, order_id)
            await self._machine.apply(
                uow, order, trigger=TransitionTrigger.ADMIN, target_payment_status=target
            )
            await uow.commit()

        logger.info(f"Admin set payment status of order {order_id} to {target.value}")
        return order
