from decimal import Decimal
from typing import Optional


class DomainException(Exception):
    code = "DomainError"


class OrderNotFoundError(DomainException):
    code = "OrderNotFound"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class ProductNotFoundError(DomainException):
    code = "ProductNotFound"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class EmptyCartError(DomainException):
    code = "EmptyCart"

    def __init__(self):
        super().__init__("Cart is empty")


class InvalidQuantityError(DomainException):
    code = "InvalidQuantity"

    def __init__(self, product_id: str, quantity: int):
        self.product_id = product_id
        self.quantity = quantity
        super().__init__(f"Invalid quantity {quantity} for product {product_id}")


class InsufficientStockError(DomainException):
    code = "InsufficientStock"

    def __init__(self, product_id: str, available: int, required: int):
        self.product_id = product_id
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient stock for product {product_id}. Available: {available}, required: {required}"
        )


class InvalidTransitionError(DomainException):
    code = "InvalidTransition"

    def __init__(self, from_state: str, to_state: str, reason: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        msg = f"Transition {from_state} -> {to_state} is not allowed"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class InvalidAmountError(DomainException):
    code = "InvalidAmount"

    def __init__(self, amount: Decimal, refundable: Decimal):
        self.amount = amount
        self.refundable = refundable
        super().__init__(f"Invalid refund amount {amount}. Refundable balance: {refundable}")


class PaymentDeclinedError(DomainException):
    code = "PaymentDeclined"


class RefundDeclinedError(DomainException):
    code = "RefundDeclined"


class PaymentAdapterError(DomainException):
    """Transient gateway failure: safe to retry, never safe to assume success"""
    code = "PaymentAdapterError"


class ConcurrentModificationError(DomainException):
    code = "ConcurrentModification"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} was modified concurrently, retry the operation")


class DuplicateOrderError(DomainException):
    """An order with the same idempotency key already exists"""
    code = "DuplicateOrder"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Order with idempotency key {idempotency_key} already exists")
