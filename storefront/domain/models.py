from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Fixed-point amount with two decimal places"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class RefundStatus(str, Enum):
    REQUESTED = "REQUESTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TransitionTrigger(str, Enum):
    CHECKOUT = "checkout"
    PAYMENT = "payment"
    ADMIN = "admin"
    REFUND = "refund"
    CANCELLATION = "cancellation"
    EXPIRY = "expiry"


class Product(BaseModel):
    """Catalog product as seen by the stock ledger"""
    id: str
    name: str
    price: Decimal
    stock_quantity: int
    reserved_quantity: int = 0
    created_at: datetime


class Reservation(BaseModel):
    """Claim on stock taken by the ledger"""
    id: str
    product_id: str
    quantity: int
    reserved_at: datetime


class CartLine(BaseModel):
    product_id: str
    quantity: int


class PricedLine(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


class PricedCart(BaseModel):
    lines: List[PricedLine]
    total: Decimal


class OrderItem(BaseModel):
    """Order line with a price/name snapshot taken at purchase"""
    id: str
    order_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal


class Order(BaseModel):
    """Domain Entity: order"""
    id: str
    status: OrderStatus
    payment_status: PaymentStatus
    total: Decimal
    items: List[OrderItem] = []
    customer_name: str
    customer_email: str
    shipping_address: Optional[str] = None
    idempotency_key: Optional[str] = None
    payment_ref: Optional[str] = None
    stock_reserved: bool = True
    version: int = 1
    created_at: datetime
    updated_at: datetime

    def items_total(self) -> Decimal:
        return to_money(sum((item.unit_price * item.quantity for item in self.items), Decimal("0")))

    def can_be_charged(self) -> bool:
        """Business rule: only an unpaid order awaiting payment can be charged"""
        return (
            self.status == OrderStatus.PENDING_PAYMENT
            and self.payment_status == PaymentStatus.UNPAID
        )

    def can_be_cancelled(self) -> bool:
        """Business rule: cancellation is possible before fulfillment starts"""
        return self.status in (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID)

    def can_be_refunded(self) -> bool:
        return self.payment_status in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED)


class Refund(BaseModel):
    id: str
    order_id: str
    amount: Decimal
    reason: str
    status: RefundStatus
    external_ref: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class TransitionRecord(BaseModel):
    """Audit row for a committed transition"""
    order_id: str
    field: str
    from_state: str
    to_state: str
    trigger: TransitionTrigger
    created_at: datetime
