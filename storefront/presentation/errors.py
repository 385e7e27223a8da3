import logging
from fastapi import HTTPException

from storefront.domain.exceptions import (
    DomainException, OrderNotFoundError, ProductNotFoundError, EmptyCartError, InvalidQuantityError,
    InsufficientStockError, InvalidTransitionError, InvalidAmountError, PaymentDeclinedError,
    RefundDeclinedError, PaymentAdapterError, ConcurrentModificationError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    OrderNotFoundError: 404,
    ProductNotFoundError: 404,
    EmptyCartError: 422,
    InvalidQuantityError: 422,
    InvalidAmountError: 422,
    InsufficientStockError: 409,
    InvalidTransitionError: 409,
    ConcurrentModificationError: 409,
    PaymentDeclinedError: 402,
    RefundDeclinedError: 402,
    PaymentAdapterError: 503,
}

# Structured attributes exposed to clients next to code/message
_FIELDS = (
    "order_id", "product_id", "available", "required", "quantity",
    "from_state", "to_state", "amount", "refundable",
)


def to_http_error(e: DomainException) -> HTTPException:
    status_code = _STATUS_CODES.get(type(e), 400)
    detail = {"code": e.code, "message": str(e)}
    for field in _FIELDS:
        if hasattr(e, field):
            value = getattr(e, field)
            detail[field] = str(value) if field in ("amount", "refundable") else value
    if status_code >= 500:
        logger.error(f"{e.code}: {e}")
    return HTTPException(status_code=status_code, detail=detail)
