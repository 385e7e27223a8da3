import logging
from typing import Optional
from pydantic import BaseModel

from storefront.domain.models import Order, PaymentStatus, TransitionTrigger
from storefront.domain.exceptions import (
    InvalidTransitionError, OrderNotFoundError, PaymentAdapterError, PaymentDeclinedError,
    RefundDeclinedError,
)
from storefront.application.interfaces import PaymentGateway
from storefront.application.order_transitions import OrderStateMachine, retry_on_conflict
from storefront.application.payments import GatewayPolicy, call_gateway

logger = logging.getLogger(__name__)


class PaymentCallbackDTO(BaseModel):
    order_id: str
    status: str
    payment_ref: str
    error_message: Optional[str] = None


class PaymentOutcomeRecorder:
    """Writes the result of a charge onto the order"""

    def __init__(self, unit_of_work, gateway: PaymentGateway, policy: GatewayPolicy):
        self._uow = unit_of_work
        self._gateway = gateway
        self._policy = policy
        self._machine = OrderStateMachine()

    async def succeeded(self, order_id: str, payment_ref: str) -> Order:
        try:
            return await retry_on_conflict(lambda: self._mark_paid(order_id, payment_ref))
        except InvalidTransitionError:
            logger.error(f"Payment {payment_ref} captured for order {order_id} that can no longer be paid, refunding")
            await self._compensate(order_id, payment_ref)
            raise

    async def failed(self, order_id: str, reason: str) -> Order:
        return await retry_on_conflict(lambda: self._mark_failed(order_id, reason))

    async def _mark_paid(self, order_id: str, payment_ref: str) -> Order:
        async with self._uow() as uow:
            order = await self._machine.load(uow, order_id)

            # Idempotency
            if order.payment_status == PaymentStatus.PAID and order.payment_ref == payment_ref:
                logger.info(f"Order {order_id} already paid with {payment_ref}")
                return order

            await self._machine.apply(
                uow, order,
                trigger=TransitionTrigger.PAYMENT,
                target_payment_status=PaymentStatus.PAID,
                payment_ref=payment_ref
            )
            await uow.commit()
            return order

    async def _mark_failed(self, order_id: str, reason: str) -> Order:
        async with self._uow() as uow:
            order = await self._machine.load(uow, order_id)
            if order.payment_status == PaymentStatus.FAILED:
                return order

            await self._machine.apply(
                uow, order,
                trigger=TransitionTrigger.PAYMENT,
                target_payment_status=PaymentStatus.FAILED
            )
            await uow.commit()
            logger.info(f"Payment for order {order_id} failed: {reason}, stock released")
            return order

    async def _compensate(self, order_id: str, payment_ref: str) -> None:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
        try:
            await call_gateway(
                lambda: self._gateway.refund(
                    order_id, order.total, payment_ref, idempotency_key=f"void_{payment_ref}"
                ),
                self._policy,
                f"Refund of orphaned payment {payment_ref}"
            )
        except (RefundDeclinedError, PaymentAdapterError) as e:
            logger.error(f"Could not refund orphaned payment {payment_ref} for order {order_id}: {e}")
            await self._record_orphan(order, payment_ref, str(e))

    async def _record_orphan(self, order: Order, payment_ref: str, reason: str) -> None:
        # Captured money with no order to attach it to, left for manual reconciliation
        async with self._uow() as uow:
            await uow.outbox.create(
                event_type="order.orphaned_payment",
                event_data={
                    "order_id": order.id,
                    "payment_ref": payment_ref,
                    "amount": str(order.total),
                    "reason": reason
                },
                order_id=order.id
            )
            await uow.commit()


class ChargeOrderUseCase:
    def __init__(self, unit_of_work, gateway: PaymentGateway, policy: GatewayPolicy):
        self._uow = unit_of_work
        self._gateway = gateway
        self._policy = policy
        self._recorder = PaymentOutcomeRecorder(unit_of_work, gateway, policy)

    async def __call__(self, order_id: str) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(order_id)

        if not order.can_be_charged():
            raise InvalidTransitionError(
                order.payment_status.value, PaymentStatus.PAID.value, f"order status is {order.status.value}"
            )

        logger.info(f"Charging order {order_id}: {order.total}")
        try:
            payment_ref = await call_gateway(
                lambda: self._gateway.charge(order.id, order.total, idempotency_key=f"charge_{order.id}"),
                self._policy,
                f"Charge for order {order_id}"
            )
        except (PaymentDeclinedError, PaymentAdapterError) as e:
            # A timeout is never treated as success
            try:
                await self._recorder.failed(order_id, str(e))
            except InvalidTransitionError as moved:
                logger.warning(f"Order {order_id} changed during the charge, failure not recorded: {moved}")
            raise e

        return await self._recorder.succeeded(order_id, payment_ref)


class ProcessPaymentCallbackUseCase:
    def __init__(self, unit_of_work, gateway: PaymentGateway, policy: GatewayPolicy):
        self._uow = unit_of_work
        self._recorder = PaymentOutcomeRecorder(unit_of_work, gateway, policy)

    async def __call__(self, dto: PaymentCallbackDTO) -> Order:
        logger.info(f"Payment callback: {dto}")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id)
            if not order:
                raise OrderNotFoundError(dto.order_id)

        if dto.status == "succeeded":
            return await self._recorder.succeeded(dto.order_id, dto.payment_ref)

        if dto.status == "failed":
            if not order.can_be_charged():
                logger.info(f"Late failure callback for order {order.id} ignored (status {order.status.value})")
                return order
            return await self._recorder.failed(dto.order_id, dto.error_message or "payment failed")

        raise ValueError(f"Unknown payment status: {dto.status}")
