"""Refunds and cancellations.

Money moves outside the database transaction, so both flows run in three
steps: claim (persist a REQUESTED refund and bump the order version), call
the gateway, then finalise (COMPLETED or FAILED). While a refund is in
flight the state machine refuses every other mutation of the order.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple

from storefront.domain.models import (
    Order, OrderStatus, PaymentStatus, Refund, RefundStatus, TransitionTrigger, to_money,
)
from storefront.domain.exceptions import (
    ConcurrentModificationError, InvalidAmountError, InvalidTransitionError, PaymentAdapterError,
    RefundDeclinedError,
)
from storefront.domain.state_machine import plan_transition
from storefront.application.interfaces import PaymentGateway
from storefront.application.order_transitions import OrderStateMachine, retry_on_conflict
from storefront.application.payments import GatewayPolicy, call_gateway

logger = logging.getLogger(__name__)


class _RefundFlow:
    def __init__(self, unit_of_work, gateway: PaymentGateway, policy: GatewayPolicy):
        self._uow = unit_of_work
        self._gateway = gateway
        self._policy = policy
        self._machine = OrderStateMachine()

    async def _claim(self, uow, order: Order, amount: Decimal, reason: str) -> Refund:
        refund = Refund(
            id=str(uuid.uuid4()),
            order_id=order.id,
            amount=amount,
            reason=reason,
            status=RefundStatus.REQUESTED,
            created_at=datetime.now(timezone.utc)
        )
        await uow.refunds.create(refund)
        # Version bump serializes the claim against concurrent transitions
        await uow.orders.save_state(order, order.version)
        await uow.outbox.create(
            event_type="order.refund_requested",
            event_data={"order_id": order.id, "refund_id": refund.id, "amount": str(amount)},
            order_id=order.id
        )
        return refund

    async def _execute(self, order: Order, refund: Refund) -> str:
        try:
            return await call_gateway(
                lambda: self._gateway.refund(
                    order.id, refund.amount, order.payment_ref, idempotency_key=f"refund_{refund.id}"
                ),
                self._policy,
                f"Refund {refund.id} for order {order.id}"
            )
        except (RefundDeclinedError, PaymentAdapterError) as e:
            logger.warning(f"Refund {refund.id} for order {order.id} failed: {e}")
            await retry_on_conflict(lambda: self._mark_failed(refund))
            raise
        except (Exception, asyncio.CancelledError):
            # A REQUESTED refund blocks the order until it is finalised
            logger.exception(f"Refund {refund.id} for order {order.id} aborted")
            await retry_on_conflict(lambda: self._mark_failed(refund))
            raise

    async def _mark_failed(self, refund: Refund) -> None:
        async with self._uow() as uow:
            await uow.refunds.finish(refund.id, RefundStatus.FAILED, None)
            await uow.outbox.create(
                event_type="order.refund_failed",
                event_data={"order_id": refund.order_id, "refund_id": refund.id, "amount": str(refund.amount)},
                order_id=refund.order_id
            )
            await uow.commit()

    @staticmethod
    def _ensure_refundable(order: Order, target: PaymentStatus, trigger: TransitionTrigger) -> None:
        plan_transition(order.status, order.payment_status, trigger=trigger, target_payment_status=target)
        if not order.payment_ref:
            raise InvalidTransitionError(
                order.payment_status.value, target.value, "order has no captured payment to refund"
            )


class ProcessRefundUseCase(_RefundFlow):
    async def __call__(self, order_id: str, amount: Decimal, reason: str) -> Tuple[Order, Refund]:
        logger.info(f"Refund requested for order {order_id}: {amount} ({reason})")

        async with self._uow() as uow:
            order = await self._machine.load(uow, order_id)
            if await uow.refunds.has_in_flight(order_id):
                raise ConcurrentModificationError("Order", order_id)

            refundable = to_money(order.total - await uow.refunds.claimed_amount(order_id))
            if amount <= 0 or to_money(amount) != amount or amount > refundable:
                raise InvalidAmountError(amount, refundable)

            target = PaymentStatus.REFUNDED if amount == refundable else PaymentStatus.PARTIALLY_REFUNDED
            self._ensure_refundable(order, target, TransitionTrigger.REFUND)

            refund = await self._claim(uow, order, to_money(amount), reason)
            await uow.commit()

        external_ref = await self._execute(order, refund)
        order = await retry_on_conflict(lambda: self._complete(order_id, refund, external_ref))
        refund.status = RefundStatus.COMPLETED
        refund.external_ref = external_ref
        return order, refund

    async def _complete(self, order_id: str, refund: Refund, external_ref: str) -> Order:
        async with self._uow() as uow:
            await uow.refunds.finish(refund.id, RefundStatus.COMPLETED, external_ref)
            order = await self._machine.load(uow, order_id)
            refunded = await uow.refunds.completed_amount(order_id)
            target = PaymentStatus.REFUNDED if refunded >= order.total else PaymentStatus.PARTIALLY_REFUNDED
            await self._machine.apply(uow, order, trigger=TransitionTrigger.REFUND, target_payment_status=target)
            await uow.commit()

        logger.info(f"Refund {refund.id} completed for order {order_id}: {refund.amount}, total refunded {refunded}")
        return order


class CancelOrderUseCase(_RefundFlow):
    """Cancels an order that has not entered fulfillment.

    Unpaid orders are cancelled directly. Orders with captured money are
    refunded in full first; cancellation restocks the items either way.
    """

    async def __call__(self, order_id: str, reason: Optional[str] = None) -> Order:
        logger.info(f"Cancelling order {order_id}")

        async with self._uow() as uow:
            order = await self._machine.load(uow, order_id)
            if not order.can_be_cancelled():
                raise InvalidTransitionError(order.status.value, OrderStatus.CANCELLED.value)

            if not order.can_be_refunded():
                await self._machine.apply(
                    uow, order, trigger=TransitionTrigger.CANCELLATION, target_status=OrderStatus.CANCELLED
                )
                await uow.commit()
                logger.info(f"Order {order_id} cancelled without refund")
                return order

            if await uow.refunds.has_in_flight(order_id):
                raise ConcurrentModificationError("Order", order_id)
            self._ensure_refundable(order, PaymentStatus.REFUNDED, TransitionTrigger.CANCELLATION)

            outstanding = to_money(order.total - await uow.refunds.claimed_amount(order_id))
            refund = await self._claim(uow, order, outstanding, reason or f"Order {order_id} cancelled")
            await uow.commit()

        external_ref = await self._execute(order, refund)
        return await retry_on_conflict(lambda: self._complete(order_id, refund, external_ref))

    async def _complete(self, order_id: str, refund: Refund, external_ref: str) -> Order:
        async with self._uow() as uow:
            await uow.refunds.finish(refund.id, RefundStatus.COMPLETED, external_ref)
            order = await self._machine.load(uow, order_id)
            await self._machine.apply(
                uow, order,
                trigger=TransitionTrigger.CANCELLATION,
                target_status=OrderStatus.CANCELLED,
                target_payment_status=PaymentStatus.REFUNDED
            )
            await uow.commit()

        logger.info(f"Order {order_id} cancelled, {refund.amount} refunded, stock released")
        return order
