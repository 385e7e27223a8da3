from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from storefront.domain.models import OrderStatus, PaymentStatus, RefundStatus, TransitionTrigger


class CartLineRequest(BaseModel):
    product_id: str
    quantity: int


class CustomerRequest(BaseModel):
    name: str
    email: str
    shipping_address: Optional[str] = None


class CheckoutRequest(BaseModel):
    items: List[CartLineRequest]
    customer: CustomerRequest
    idempotency_key: Optional[str] = None


class OrderItemResponse(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal


class OrderResponse(BaseModel):
    id: str
    status: OrderStatus
    payment_status: PaymentStatus
    total: Decimal
    items: List[OrderItemResponse]
    customer_name: str
    customer_email: str
    shipping_address: Optional[str] = None
    payment_ref: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, order):
        return cls(
            id=order.id,
            status=order.status,
            payment_status=order.payment_status,
            total=order.total,
            items=[
                OrderItemResponse(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=item.unit_price
                )
                for item in order.items
            ],
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            shipping_address=order.shipping_address,
            payment_ref=order.payment_ref,
            created_at=order.created_at,
            updated_at=order.updated_at
        )


class RefundResponse(BaseModel):
    id: str
    amount: Decimal
    reason: str
    status: RefundStatus
    external_ref: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, refund):
        return cls(**refund.model_dump(exclude={"order_id"}))


class TransitionResponse(BaseModel):
    field: str
    from_state: str
    to_state: str
    trigger: TransitionTrigger
    created_at: datetime


class OrderDetailsResponse(BaseModel):
    order: OrderResponse
    refunds: List[RefundResponse]
    transitions: List[TransitionResponse]
    refunded_amount: Decimal
    next_statuses: List[OrderStatus]


class RefundResultResponse(BaseModel):
    order: OrderResponse
    refund: RefundResponse


class OrdersPageResponse(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class PaymentCallbackRequest(BaseModel):
    order_id: str
    status: Literal["succeeded", "failed"]
    payment_ref: str
    error_message: Optional[str] = None


class ChangeStatusRequest(BaseModel):
    status: OrderStatus


class ChangePaymentStatusRequest(BaseModel):
    payment_status: PaymentStatus


class RefundRequest(BaseModel):
    amount: Decimal
    reason: str


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class StockResponse(BaseModel):
    product_id: str
    available: int


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    detail: ErrorBody
