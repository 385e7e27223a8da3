from datetime import datetime, timedelta, timezone

from storefront.application.expire_orders import ExpireStaleOrdersUseCase
from storefront.domain.models import OrderStatus, TransitionTrigger


def _in(minutes):
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


async def test_expires_stale_unpaid_orders(uow, add_product, stock_of, place_order, load_order):
    product_id = await add_product(stock=5)
    order = await place_order({product_id: 3})

    expired = await ExpireStaleOrdersUseCase(uow, ttl_minutes=30)(now=_in(31))

    assert expired == [order.id]
    stored = await load_order(order.id)
    assert stored.status == OrderStatus.CANCELLED
    assert await stock_of(product_id) == (5, 0)
    async with uow() as u:
        transitions = await u.transitions.list_for_order(order.id)
    assert transitions[-1].trigger == TransitionTrigger.EXPIRY


async def test_fresh_orders_are_kept(uow, add_product, stock_of, place_order):
    product_id = await add_product(stock=5)
    await place_order({product_id: 3})

    assert await ExpireStaleOrdersUseCase(uow, ttl_minutes=30)(now=_in(5)) == []
    assert await stock_of(product_id) == (2, 3)


async def test_paid_orders_are_skipped(uow, add_product, place_order, pay, load_order):
    product_id = await add_product(stock=5)
    paid = await place_order({product_id: 1})
    await pay(paid.id)

    expired = await ExpireStaleOrdersUseCase(uow, ttl_minutes=30)(now=_in(60))

    assert expired == []
    assert (await load_order(paid.id)).status == OrderStatus.PAID


async def test_running_twice_releases_once(uow, add_product, stock_of, place_order):
    product_id = await add_product(stock=5)
    await place_order({product_id: 2})
    expire = ExpireStaleOrdersUseCase(uow, ttl_minutes=30)

    await expire(now=_in(45))
    assert await expire(now=_in(90)) == []

    assert await stock_of(product_id) == (5, 0)
