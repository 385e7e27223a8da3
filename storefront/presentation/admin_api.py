from typing import Optional
from fastapi import APIRouter, Depends, Query

from storefront.presentation.schemas import (
    OrderResponse, OrdersPageResponse, OrderDetailsResponse, RefundResponse, RefundResultResponse,
    TransitionResponse, ChangeStatusRequest, ChangePaymentStatusRequest, RefundRequest, CancelRequest,
    ErrorResponse,
)
from storefront.presentation.auth import require_admin
from storefront.presentation.dependencies import get_unit_of_work, get_payment_gateway, get_gateway_policy
from storefront.presentation.errors import to_http_error
from storefront.application.get_order import GetOrderDetailsUseCase, ListOrdersUseCase
from storefront.application.change_status import ChangeOrderStatusUseCase, ChangePaymentStatusUseCase
from storefront.application.refunds import ProcessRefundUseCase, CancelOrderUseCase
from storefront.domain.models import OrderStatus, PaymentStatus, RefundStatus, to_money
from storefront.domain.state_machine import allowed_status_targets
from storefront.domain.exceptions import DomainException

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])

_ERRORS = {
    401: {"description": "Admin authorization required"},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def get_list_orders_use_case(uow=Depends(get_unit_of_work)):
    return ListOrdersUseCase(uow)


def get_order_details_use_case(uow=Depends(get_unit_of_work)):
    return GetOrderDetailsUseCase(uow)


def get_change_status_use_case(uow=Depends(get_unit_of_work)):
    return ChangeOrderStatusUseCase(uow)


def get_change_payment_status_use_case(uow=Depends(get_unit_of_work)):
    return ChangePaymentStatusUseCase(uow)


def get_refund_use_case(
    uow=Depends(get_unit_of_work),
    gateway=Depends(get_payment_gateway),
    policy=Depends(get_gateway_policy)
):
    return ProcessRefundUseCase(uow, gateway, policy)


def get_cancel_use_case(
    uow=Depends(get_unit_of_work),
    gateway=Depends(get_payment_gateway),
    policy=Depends(get_gateway_policy)
):
    return CancelOrderUseCase(uow, gateway, policy)


@router.get("/orders", response_model=OrdersPageResponse, responses={401: _ERRORS[401]})
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=ListOrdersUseCase.MAX_LIMIT),
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    search: Optional[str] = None,
    use_case: ListOrdersUseCase = Depends(get_list_orders_use_case)
):
    """Paginated order list, newest first"""
    result = await use_case(page=page, limit=limit, status=status, payment_status=payment_status, search=search)
    return OrdersPageResponse(
        orders=[OrderResponse.from_domain(order) for order in result.orders],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages
    )


@router.get("/orders/{order_id}", response_model=OrderDetailsResponse, responses=_ERRORS)
async def get_order_details(
    order_id: str,
    use_case: GetOrderDetailsUseCase = Depends(get_order_details_use_case)
):
    try:
        details = await use_case(order_id)
    except DomainException as e:
        raise to_http_error(e)

    refunded = sum(
        (refund.amount for refund in details.refunds if refund.status == RefundStatus.COMPLETED),
        to_money(0)
    )
    return OrderDetailsResponse(
        order=OrderResponse.from_domain(details.order),
        refunds=[RefundResponse.from_domain(refund) for refund in details.refunds],
        transitions=[TransitionResponse(**record.model_dump(exclude={"order_id"})) for record in details.transitions],
        refunded_amount=to_money(refunded),
        next_statuses=allowed_status_targets(details.order.status, details.order.payment_status)
    )


@router.post("/orders/{order_id}/status", response_model=OrderResponse, responses=_ERRORS)
async def change_status(
    order_id: str,
    request: ChangeStatusRequest,
    use_case: ChangeOrderStatusUseCase = Depends(get_change_status_use_case)
):
    """Move the order along the fulfillment path"""
    try:
        order = await use_case(order_id, request.status)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/payment-status", response_model=OrderResponse, responses=_ERRORS)
async def change_payment_status(
    order_id: str,
    request: ChangePaymentStatusRequest,
    use_case: ChangePaymentStatusUseCase = Depends(get_change_payment_status_use_case)
):
    try:
        order = await use_case(order_id, request.payment_status)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post(
    "/orders/{order_id}/refunds",
    response_model=RefundResultResponse,
    responses={**_ERRORS, 402: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def refund_order(
    order_id: str,
    request: RefundRequest,
    use_case: ProcessRefundUseCase = Depends(get_refund_use_case)
):
    """Refund part or all of the captured amount"""
    try:
        order, refund = await use_case(order_id, request.amount, request.reason)
        return RefundResultResponse(order=OrderResponse.from_domain(order), refund=RefundResponse.from_domain(refund))
    except DomainException as e:
        raise to_http_error(e)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderResponse,
    responses={**_ERRORS, 402: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def cancel_order(
    order_id: str,
    request: Optional[CancelRequest] = None,
    use_case: CancelOrderUseCase = Depends(get_cancel_use_case)
):
    """Cancel an order that has not entered fulfillment, refunding captured money"""
    try:
        order = await use_case(order_id, request.reason if request else None)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)
