import logging
from decimal import Decimal
from typing import Dict, Sequence

from storefront.domain.models import CartLine, PricedCart, PricedLine, to_money
from storefront.domain.exceptions import (
    EmptyCartError, InvalidQuantityError, ProductNotFoundError, InsufficientStockError,
)

logger = logging.getLogger(__name__)


def deduplicate(lines: Sequence[CartLine]) -> Dict[str, int]:
    """Collapse repeated products; the last quantity seen for a product wins"""
    quantities: Dict[str, int] = {}
    for line in lines:
        quantities[line.product_id] = line.quantity
    return quantities


class CartSnapshotValidator:
    """Prices a client cart against the live catalog.

    The stock comparison here is only an optimistic pre-check: nothing is
    reserved, and the reservation in the order factory has the final word.
    """

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, lines: Sequence[CartLine]) -> PricedCart:
        if not lines:
            raise EmptyCartError()

        quantities = deduplicate(lines)
        for product_id, quantity in quantities.items():
            if quantity <= 0:
                raise InvalidQuantityError(product_id, quantity)

        async with self._uow() as uow:
            products = {p.id: p for p in await uow.products.get_many(list(quantities))}

        priced = []
        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            if product.stock_quantity < quantity:
                raise InsufficientStockError(product_id, product.stock_quantity, quantity)
            priced.append(
                PricedLine(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=product.price
                )
            )

        total = to_money(sum((line.subtotal for line in priced), Decimal("0")))
        logger.info(f"Cart validated: {len(priced)} line(s), total {total}")
        return PricedCart(lines=priced, total=total)
