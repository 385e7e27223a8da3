"""Transition table for the two order state axes.

``status`` tracks physical progress of the order, ``payment_status`` tracks
money. Both axes are validated here and nowhere else: every mutating use
case asks :func:`plan_transition` for a plan and applies exactly that plan.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from storefront.domain.exceptions import InvalidTransitionError
from storefront.domain.models import OrderStatus, PaymentStatus, TransitionTrigger


class SideEffect(str, Enum):
    RELEASE_STOCK = "release_stock"
    FULFIL_STOCK = "fulfil_stock"


@dataclass(frozen=True)
class TransitionRule:
    triggers: FrozenSet[TransitionTrigger]
    side_effects: FrozenSet[SideEffect] = frozenset()


def _rule(*triggers: TransitionTrigger, effects=()) -> TransitionRule:
    return TransitionRule(frozenset(triggers), frozenset(effects))


T = TransitionTrigger

STATUS_TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], TransitionRule] = {
    (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID): _rule(T.PAYMENT, T.ADMIN),
    (OrderStatus.PAID, OrderStatus.PROCESSING): _rule(T.ADMIN),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED): _rule(T.ADMIN, effects=[SideEffect.FULFIL_STOCK]),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED): _rule(T.ADMIN),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED): _rule(
        T.ADMIN, T.CANCELLATION, T.EXPIRY, effects=[SideEffect.RELEASE_STOCK]
    ),
    (OrderStatus.PAID, OrderStatus.CANCELLED): _rule(
        T.ADMIN, T.CANCELLATION, effects=[SideEffect.RELEASE_STOCK]
    ),
}

PAYMENT_TRANSITIONS: Dict[Tuple[PaymentStatus, PaymentStatus], TransitionRule] = {
    (PaymentStatus.UNPAID, PaymentStatus.PAID): _rule(T.PAYMENT, T.ADMIN),
    (PaymentStatus.UNPAID, PaymentStatus.FAILED): _rule(
        T.PAYMENT, T.ADMIN, effects=[SideEffect.RELEASE_STOCK]
    ),
    (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED): _rule(T.REFUND),
    (PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.PARTIALLY_REFUNDED): _rule(T.REFUND),
    (PaymentStatus.PAID, PaymentStatus.REFUNDED): _rule(T.REFUND, T.CANCELLATION),
    (PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED): _rule(T.REFUND, T.CANCELLATION),
}

# Money already captured: the order can only be cancelled together with a full refund
_CAPTURED = (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED)


@dataclass(frozen=True)
class TransitionPlan:
    status_change: Optional[Tuple[OrderStatus, OrderStatus]]
    payment_change: Optional[Tuple[PaymentStatus, PaymentStatus]]
    trigger: TransitionTrigger
    side_effects: FrozenSet[SideEffect]

    @property
    def new_status(self) -> Optional[OrderStatus]:
        return self.status_change[1] if self.status_change else None

    @property
    def new_payment_status(self) -> Optional[PaymentStatus]:
        return self.payment_change[1] if self.payment_change else None


def _lookup(table, current, target, trigger) -> TransitionRule:
    rule = table.get((current, target))
    if rule is None:
        raise InvalidTransitionError(current.value, target.value)
    if trigger not in rule.triggers:
        raise InvalidTransitionError(
            current.value, target.value, f"not allowed for trigger '{trigger.value}'"
        )
    return rule


def plan_transition(
    status: OrderStatus,
    payment_status: PaymentStatus,
    *,
    trigger: TransitionTrigger,
    target_status: Optional[OrderStatus] = None,
    target_payment_status: Optional[PaymentStatus] = None,
) -> TransitionPlan:
    """Validate a combined transition and return the plan to apply.

    Raises :class:`InvalidTransitionError` naming the offending ``(from, to)``
    pair when any part of the request is illegal.
    """
    if target_status is None and target_payment_status is None:
        raise ValueError("plan_transition needs a target status or payment status")

    # Capturing payment moves the order out of PendingPayment in the same step
    if (
        target_payment_status == PaymentStatus.PAID
        and payment_status == PaymentStatus.UNPAID
        and status == OrderStatus.PENDING_PAYMENT
        and target_status is None
    ):
        target_status = OrderStatus.PAID

    effects = set()
    status_change = None
    payment_change = None

    if target_status is not None:
        rule = _lookup(STATUS_TRANSITIONS, status, target_status, trigger)
        effects |= rule.side_effects
        status_change = (status, target_status)

    if target_payment_status is not None:
        rule = _lookup(PAYMENT_TRANSITIONS, payment_status, target_payment_status, trigger)
        effects |= rule.side_effects
        payment_change = (payment_status, target_payment_status)

    new_status = target_status or status
    new_payment = target_payment_status or payment_status

    if status_change == (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID) and new_payment != PaymentStatus.PAID:
        raise InvalidTransitionError(
            status.value, OrderStatus.PAID.value, "payment has not been captured"
        )

    if payment_change == (PaymentStatus.UNPAID, PaymentStatus.PAID) and new_status != OrderStatus.PAID:
        raise InvalidTransitionError(
            payment_status.value, PaymentStatus.PAID.value, f"order status is {status.value}"
        )

    if new_payment == PaymentStatus.FAILED and payment_change is not None:
        if new_status != OrderStatus.PENDING_PAYMENT:
            raise InvalidTransitionError(
                payment_status.value, PaymentStatus.FAILED.value, f"order status is {status.value}"
            )

    if target_status == OrderStatus.CANCELLED and payment_status in _CAPTURED:
        if new_payment != PaymentStatus.REFUNDED:
            raise InvalidTransitionError(
                status.value, OrderStatus.CANCELLED.value, "paid order must be fully refunded first"
            )

    return TransitionPlan(
        status_change=status_change,
        payment_change=payment_change,
        trigger=trigger,
        side_effects=frozenset(effects),
    )


def allowed_status_targets(
    status: OrderStatus,
    payment_status: PaymentStatus,
    trigger: TransitionTrigger = TransitionTrigger.ADMIN,
) -> List[OrderStatus]:
    """Statuses ``trigger`` can move the order to with a plain status change"""
    targets = []
    for current, target in STATUS_TRANSITIONS:
        if current != status:
            continue
        try:
            plan_transition(status, payment_status, trigger=trigger, target_status=target)
        except InvalidTransitionError:
            continue
        targets.append(target)
    return targets
