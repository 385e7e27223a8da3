import itertools

import pytest

from storefront.domain.exceptions import InvalidTransitionError
from storefront.domain.models import OrderStatus, PaymentStatus, TransitionTrigger
from storefront.domain.state_machine import (
    PAYMENT_TRANSITIONS, STATUS_TRANSITIONS, SideEffect, allowed_status_targets, plan_transition,
)

T = TransitionTrigger

UNLISTED_STATUS_PAIRS = [
    pair for pair in itertools.product(OrderStatus, OrderStatus) if pair not in STATUS_TRANSITIONS
]
UNLISTED_PAYMENT_PAIRS = [
    pair for pair in itertools.product(PaymentStatus, PaymentStatus) if pair not in PAYMENT_TRANSITIONS
]


@pytest.mark.parametrize("current,target", UNLISTED_STATUS_PAIRS)
def test_every_unlisted_status_pair_is_rejected(current, target):
    for trigger, payment_status in itertools.product(TransitionTrigger, PaymentStatus):
        with pytest.raises(InvalidTransitionError) as exc_info:
            plan_transition(current, payment_status, trigger=trigger, target_status=target)
        assert (exc_info.value.from_state, exc_info.value.to_state) == (current.value, target.value)


@pytest.mark.parametrize("current,target", UNLISTED_PAYMENT_PAIRS)
def test_every_unlisted_payment_pair_is_rejected(current, target):
    for trigger, status in itertools.product(TransitionTrigger, OrderStatus):
        with pytest.raises(InvalidTransitionError):
            plan_transition(status, current, trigger=trigger, target_payment_status=target)


@pytest.mark.parametrize("pair,rule", list(STATUS_TRANSITIONS.items()))
def test_listed_status_pair_rejects_other_triggers(pair, rule):
    current, target = pair
    for trigger in set(TransitionTrigger) - rule.triggers:
        with pytest.raises(InvalidTransitionError):
            plan_transition(current, PaymentStatus.PAID, trigger=trigger, target_status=target)


def test_requires_a_target():
    with pytest.raises(ValueError):
        plan_transition(OrderStatus.PAID, PaymentStatus.PAID, trigger=T.ADMIN)


class TestFulfillmentPath:
    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PAID, OrderStatus.PROCESSING),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
    ])
    def test_admin_moves_order_forward(self, current, target):
        plan = plan_transition(current, PaymentStatus.PAID, trigger=T.ADMIN, target_status=target)

        assert plan.status_change == (current, target)
        assert plan.payment_change is None

    def test_shipping_fulfils_reserved_stock(self):
        plan = plan_transition(
            OrderStatus.PROCESSING, PaymentStatus.PAID, trigger=T.ADMIN, target_status=OrderStatus.SHIPPED
        )

        assert plan.side_effects == {SideEffect.FULFIL_STOCK}

    def test_cannot_skip_steps(self):
        with pytest.raises(InvalidTransitionError):
            plan_transition(
                OrderStatus.PAID, PaymentStatus.PAID, trigger=T.ADMIN, target_status=OrderStatus.SHIPPED
            )

    def test_shipped_order_cannot_be_cancelled(self):
        for trigger in TransitionTrigger:
            with pytest.raises(InvalidTransitionError):
                plan_transition(
                    OrderStatus.SHIPPED, PaymentStatus.PAID, trigger=trigger, target_status=OrderStatus.CANCELLED
                )

    def test_allowed_admin_targets(self):
        assert allowed_status_targets(OrderStatus.PENDING_PAYMENT, PaymentStatus.UNPAID) == [OrderStatus.CANCELLED]
        assert allowed_status_targets(OrderStatus.PAID, PaymentStatus.PAID) == [OrderStatus.PROCESSING]
        assert allowed_status_targets(OrderStatus.PROCESSING, PaymentStatus.PAID) == [OrderStatus.SHIPPED]
        assert allowed_status_targets(OrderStatus.DELIVERED, PaymentStatus.PAID) == []
        assert allowed_status_targets(OrderStatus.CANCELLED, PaymentStatus.REFUNDED) == []

    def test_every_offered_target_is_accepted(self):
        for status in OrderStatus:
            for payment_status in PaymentStatus:
                for target in allowed_status_targets(status, payment_status):
                    plan_transition(status, payment_status, trigger=T.ADMIN, target_status=target)

    def test_cancellation_trigger_targets(self):
        targets = allowed_status_targets(OrderStatus.PENDING_PAYMENT, PaymentStatus.UNPAID, T.CANCELLATION)
        assert targets == [OrderStatus.CANCELLED]


class TestPaymentCoupling:
    @pytest.mark.parametrize("trigger", [T.PAYMENT, T.ADMIN])
    def test_capturing_payment_marks_order_paid(self, trigger):
        plan = plan_transition(
            OrderStatus.PENDING_PAYMENT, PaymentStatus.UNPAID,
            trigger=trigger, target_payment_status=PaymentStatus.PAID
        )

        assert plan.new_status == OrderStatus.PAID
        assert plan.new_payment_status == PaymentStatus.PAID
        assert plan.side_effects == frozenset()

    def test_status_cannot_become_paid_without_payment(self):
        with pytest.raises(InvalidTransitionError):
            plan_transition(
                OrderStatus.PENDING_PAYMENT, PaymentStatus.UNPAID, trigger=T.ADMIN, target_status=OrderStatus.PAID
            )

    def test_payment_cannot_be_captured_on_cancelled_order(self):
        with pytest.raises(InvalidTransitionError):
            plan_transition(
                OrderStatus.CANCELLED, PaymentStatus.UNPAID,
                trigger=T.PAYMENT, target_payment_status=PaymentStatus.PAID
            )

    def test_failed_payment_releases_stock_and_keeps_status(self):
        plan = plan_transition(
            OrderStatus.PENDING_PAYMENT, PaymentStatus.UNPAID,
            trigger=T.PAYMENT, target_payment_status=PaymentStatus.FAILED
        )

        assert plan.new_status is None
        assert plan.side_effects == {SideEffect.RELEASE_STOCK}

    def test_failure_only_while_pending_payment(self):
        with pytest.raises(InvalidTransitionError):
            plan_transition(
                OrderStatus.CANCELLED, PaymentStatus.UNPAID,
                trigger=T.PAYMENT, target_payment_status=PaymentStatus.FAILED
            )


class TestRefundAndCancellation:
    def test_partial_refunds_can_repeat(self):
        plan = plan_transition(
            OrderStatus.DELIVERED, PaymentStatus.PARTIALLY_REFUNDED,
            trigger=T.REFUND, target_payment_status=PaymentStatus.PARTIALLY_REFUNDED
        )

        assert plan.payment_change == (PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.PARTIALLY_REFUNDED)
        assert plan.side_effects == frozenset()

    @pytest.mark.parametrize("target", [PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED])
    def test_admin_cannot_set_refund_states(self, target):
        with pytest.raises(InvalidTransitionError):
            plan_transition(OrderStatus.PAID, PaymentStatus.PAID, trigger=T.ADMIN, target_payment_status=target)

    def test_unpaid_order_cancels_with_stock_release(self):
        plan = plan_transition(
            OrderStatus.PENDING_PAYMENT, PaymentStatus.UNPAID,
            trigger=T.CANCELLATION, target_status=OrderStatus.CANCELLED
        )

        assert plan.side_effects == {SideEffect.RELEASE_STOCK}

    def test_expiry_cancels_only_pending_orders(self):
        plan_transition(
            OrderStatus.PENDING_PAYMENT, PaymentStatus.UNPAID, trigger=T.EXPIRY, target_status=OrderStatus.CANCELLED
        )
        with pytest.raises(InvalidTransitionError):
            plan_transition(
                OrderStatus.PAID, PaymentStatus.PAID, trigger=T.EXPIRY, target_status=OrderStatus.CANCELLED
            )

    @pytest.mark.parametrize("payment_status", [PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED])
    def test_paid_order_needs_full_refund_to_cancel(self, payment_status):
        with pytest.raises(InvalidTransitionError):
            plan_transition(
                OrderStatus.PAID, payment_status, trigger=T.CANCELLATION, target_status=OrderStatus.CANCELLED
            )

        plan = plan_transition(
            OrderStatus.PAID, payment_status,
            trigger=T.CANCELLATION,
            target_status=OrderStatus.CANCELLED,
            target_payment_status=PaymentStatus.REFUNDED
        )
        assert plan.new_status == OrderStatus.CANCELLED
        assert plan.new_payment_status == PaymentStatus.REFUNDED
        assert plan.side_effects == {SideEffect.RELEASE_STOCK}
