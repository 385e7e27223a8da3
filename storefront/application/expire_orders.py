import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from storefront.domain.models import OrderStatus, TransitionTrigger
from storefront.domain.exceptions import ConcurrentModificationError, InvalidTransitionError
from storefront.application.order_transitions import OrderStateMachine

logger = logging.getLogger(__name__)


class ExpireStaleOrdersUseCase:
    """Cancels unpaid orders whose reservation outlived the TTL, releasing their stock"""

    def __init__(self, unit_of_work, ttl_minutes: int):
        self._uow = unit_of_work
        self._ttl = timedelta(minutes=ttl_minutes)
        self._machine = OrderStateMachine()

    async def __call__(self, now: Optional[datetime] = None, limit: int = 100) -> List[str]:
        cutoff = (now or datetime.now(timezone.utc)) - self._ttl

        async with self._uow() as uow:
            candidates = await uow.orders.list_stale_unpaid(cutoff, limit)

        expired = []
        for order_id in candidates:
            try:
                async with self._uow() as uow:
                    order = await self._machine.load(uow, order_id)
                    # Paid or cancelled since the scan
                    if not order.can_be_charged():
                        continue
                    await self._machine.apply(
                        uow, order, trigger=TransitionTrigger.EXPIRY, target_status=OrderStatus.CANCELLED
                    )
                    await uow.commit()
                expired.append(order_id)
            except (ConcurrentModificationError, InvalidTransitionError) as e:
                logger.info(f"Order {order_id} skipped by expiry: {e}")

        if expired:
            logger.info(f"Expired {len(expired)} unpaid order(s)")
        return expired
