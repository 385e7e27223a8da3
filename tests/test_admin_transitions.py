import pytest

from storefront.application.change_status import ChangeOrderStatusUseCase, ChangePaymentStatusUseCase
from storefront.application.get_order import GetOrderDetailsUseCase, ListOrdersUseCase
from storefront.domain.exceptions import InvalidTransitionError, OrderNotFoundError
from storefront.domain.models import OrderStatus, PaymentStatus, TransitionTrigger


class TestChangeOrderStatus:
    async def test_walks_fulfillment_path(self, uow, add_product, stock_of, place_order, pay):
        product_id = await add_product(stock=5)
        order = await place_order({product_id: 2})
        await pay(order.id)
        change = ChangeOrderStatusUseCase(uow)

        await change(order.id, OrderStatus.PROCESSING)
        shipped = await change(order.id, OrderStatus.SHIPPED)
        assert shipped.stock_reserved is False
        assert await stock_of(product_id) == (3, 0)

        delivered = await change(order.id, OrderStatus.DELIVERED)
        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.payment_status == PaymentStatus.PAID

        details = await GetOrderDetailsUseCase(uow)(order.id)
        admin_steps = [t for t in details.transitions if t.trigger == TransitionTrigger.ADMIN]
        assert [t.to_state for t in admin_steps] == ["PROCESSING", "SHIPPED", "DELIVERED"]

    async def test_illegal_step_reports_the_pair(self, uow, add_product, place_order, load_order):
        product_id = await add_product()
        order = await place_order({product_id: 1})

        with pytest.raises(InvalidTransitionError) as exc_info:
            await ChangeOrderStatusUseCase(uow)(order.id, OrderStatus.SHIPPED)

        assert exc_info.value.from_state == "PENDING_PAYMENT"
        assert exc_info.value.to_state == "SHIPPED"
        assert (await load_order(order.id)).version == order.version

    async def test_status_paid_requires_captured_payment(self, uow, add_product, place_order):
        product_id = await add_product()
        order = await place_order({product_id: 1})

        with pytest.raises(InvalidTransitionError):
            await ChangeOrderStatusUseCase(uow)(order.id, OrderStatus.PAID)

    async def test_admin_cancel_of_unpaid_order_restocks(self, uow, add_product, stock_of, place_order):
        product_id = await add_product(stock=4)
        order = await place_order({product_id: 3})

        cancelled = await ChangeOrderStatusUseCase(uow)(order.id, OrderStatus.CANCELLED)

        assert cancelled.status == OrderStatus.CANCELLED
        assert await stock_of(product_id) == (4, 0)

    async def test_admin_cannot_cancel_paid_order_without_refund(self, uow, add_product, stock_of, place_order, pay):
        product_id = await add_product(stock=4)
        order = await place_order({product_id: 1})
        await pay(order.id)

        with pytest.raises(InvalidTransitionError):
            await ChangeOrderStatusUseCase(uow)(order.id, OrderStatus.CANCELLED)

        assert await stock_of(product_id) == (3, 1)

    async def test_unknown_order(self, uow):
        with pytest.raises(OrderNotFoundError):
            await ChangeOrderStatusUseCase(uow)("nope", OrderStatus.PROCESSING)


class TestChangePaymentStatus:
    async def test_manual_capture_moves_status_too(self, uow, add_product, place_order):
        product_id = await add_product()
        order = await place_order({product_id: 1})

        updated = await ChangePaymentStatusUseCase(uow)(order.id, PaymentStatus.PAID)

        assert updated.payment_status == PaymentStatus.PAID
        assert updated.status == OrderStatus.PAID

    async def test_manual_failure_releases_stock(self, uow, add_product, stock_of, place_order):
        product_id = await add_product(stock=2)
        order = await place_order({product_id: 2})

        updated = await ChangePaymentStatusUseCase(uow)(order.id, PaymentStatus.FAILED)

        assert updated.status == OrderStatus.PENDING_PAYMENT
        assert await stock_of(product_id) == (2, 0)

    @pytest.mark.parametrize("target", [PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED])
    async def test_refund_states_only_come_from_refunds(self, uow, add_product, place_order, pay, target):
        product_id = await add_product()
        order = await place_order({product_id: 1})
        await pay(order.id)

        with pytest.raises(InvalidTransitionError):
            await ChangePaymentStatusUseCase(uow)(order.id, target)


class TestListOrders:
    async def test_filters_and_paginates(self, uow, add_product, place_order, pay):
        product_id = await add_product(stock=20)
        orders = [await place_order({product_id: 1}) for _ in range(5)]
        await pay(orders[0].id)
        await pay(orders[1].id)
        list_orders = ListOrdersUseCase(uow)

        page = await list_orders(page=1, limit=2)
        assert page.total == 5
        assert page.total_pages == 3
        assert len(page.orders) == 2

        last = await list_orders(page=3, limit=2)
        assert len(last.orders) == 1

        paid = await list_orders(payment_status=PaymentStatus.PAID)
        assert {o.id for o in paid.orders} == {orders[0].id, orders[1].id}

        pending = await list_orders(status=OrderStatus.PENDING_PAYMENT)
        assert pending.total == 3

    async def test_search_by_email_and_id(self, uow, add_product, place_order):
        product_id = await add_product()
        order = await place_order({product_id: 1})
        list_orders = ListOrdersUseCase(uow)

        assert (await list_orders(search="ADA@example")).total == 1
        assert (await list_orders(search=order.id[:8])).orders[0].id == order.id
        assert (await list_orders(search="nobody")).total == 0

    async def test_limit_is_capped(self, uow):
        page = await ListOrdersUseCase(uow)(page=0, limit=1000)

        assert page.page == 1
        assert page.limit == ListOrdersUseCase.MAX_LIMIT
        assert page.total_pages == 0
