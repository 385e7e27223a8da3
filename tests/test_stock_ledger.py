import asyncio

import pytest

from storefront.domain.exceptions import InsufficientStockError, InvalidQuantityError, ProductNotFoundError


class TestReserve:
    async def test_moves_quantity_from_stock_to_reserved(self, uow, add_product, stock_of):
        product_id = await add_product(stock=5)

        async with uow() as u:
            reservation = await u.stock.reserve(product_id, 2)
            await u.commit()

        assert reservation.product_id == product_id
        assert reservation.quantity == 2
        assert await stock_of(product_id) == (3, 2)

    async def test_insufficient_stock_reports_available(self, uow, add_product, stock_of):
        product_id = await add_product(stock=1)

        with pytest.raises(InsufficientStockError) as exc_info:
            async with uow() as u:
                await u.stock.reserve(product_id, 2)

        assert exc_info.value.product_id == product_id
        assert exc_info.value.available == 1
        assert exc_info.value.required == 2
        assert await stock_of(product_id) == (1, 0)

    async def test_unknown_product(self, uow):
        with pytest.raises(ProductNotFoundError):
            async with uow() as u:
                await u.stock.reserve("missing", 1)

    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_rejects_non_positive_quantity(self, uow, add_product, quantity):
        product_id = await add_product(stock=5)

        with pytest.raises(InvalidQuantityError):
            async with uow() as u:
                await u.stock.reserve(product_id, quantity)

    async def test_exact_remaining_stock_can_be_reserved(self, uow, add_product, stock_of):
        product_id = await add_product(stock=3)

        async with uow() as u:
            await u.stock.reserve(product_id, 3)
            await u.commit()

        assert await stock_of(product_id) == (0, 3)

    async def test_uncommitted_reservation_is_rolled_back(self, uow, add_product, stock_of):
        product_id = await add_product(stock=4)

        async with uow() as u:
            await u.stock.reserve(product_id, 4)

        assert await stock_of(product_id) == (4, 0)

    async def test_concurrent_reservations_never_oversell(self, uow, add_product, stock_of):
        product_id = await add_product(stock=10)

        async def attempt(quantity):
            try:
                async with uow() as u:
                    await u.stock.reserve(product_id, quantity)
                    await u.commit()
                return quantity
            except InsufficientStockError:
                return 0

        results = await asyncio.gather(*[attempt(3) for _ in range(8)])

        assert sum(results) <= 10
        assert sum(results) == 9
        assert await stock_of(product_id) == (10 - sum(results), sum(results))


class TestRelease:
    async def test_returns_reserved_stock(self, uow, add_product, stock_of):
        product_id = await add_product(stock=5)
        async with uow() as u:
            await u.stock.reserve(product_id, 3)
            await u.commit()

        async with uow() as u:
            await u.stock.release(product_id, 3)
            await u.commit()

        assert await stock_of(product_id) == (5, 0)

    async def test_increments_by_exact_amount_without_clamping(self, uow, add_product, stock_of):
        product_id = await add_product(stock=5)

        # Nothing was reserved: stock still grows by exactly the released quantity
        async with uow() as u:
            await u.stock.release(product_id, 3)
            await u.commit()

        assert await stock_of(product_id) == (8, 0)

    async def test_unknown_product(self, uow):
        with pytest.raises(ProductNotFoundError):
            async with uow() as u:
                await u.stock.release("missing", 1)


class TestFulfil:
    async def test_consumes_reservation_without_restocking(self, uow, add_product, stock_of):
        product_id = await add_product(stock=5)
        async with uow() as u:
            await u.stock.reserve(product_id, 2)
            await u.commit()

        async with uow() as u:
            await u.stock.fulfil(product_id, 2)
            await u.commit()

        assert await stock_of(product_id) == (3, 0)


class TestAvailable:
    async def test_reads_current_stock(self, uow, add_product):
        product_id = await add_product(stock=7)

        async with uow() as u:
            assert await u.stock.available(product_id) == 7

    async def test_unknown_product(self, uow):
        with pytest.raises(ProductNotFoundError):
            async with uow() as u:
                await u.stock.available("missing")
