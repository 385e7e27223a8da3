from fastapi import APIRouter, Depends, status

from storefront.presentation.schemas import (
    CheckoutRequest, OrderResponse, PaymentCallbackRequest, StockResponse, ErrorResponse
)
from storefront.presentation.dependencies import get_unit_of_work, get_payment_gateway, get_gateway_policy
from storefront.presentation.errors import to_http_error
from storefront.application.create_order import CreateOrderUseCase, CreateOrderDTO, CustomerDTO
from storefront.application.get_order import GetOrderUseCase, GetStockUseCase
from storefront.application.process_payment import (
    ChargeOrderUseCase, ProcessPaymentCallbackUseCase, PaymentCallbackDTO
)
from storefront.domain.models import CartLine
from storefront.domain.exceptions import DomainException

router = APIRouter()


def get_create_order_use_case(uow=Depends(get_unit_of_work)):
    return CreateOrderUseCase(uow)


def get_get_order_use_case(uow=Depends(get_unit_of_work)):
    return GetOrderUseCase(uow)


def get_stock_use_case(uow=Depends(get_unit_of_work)):
    return GetStockUseCase(uow)


def get_charge_order_use_case(
    uow=Depends(get_unit_of_work),
    gateway=Depends(get_payment_gateway),
    policy=Depends(get_gateway_policy)
):
    return ChargeOrderUseCase(uow, gateway, policy)


def get_process_payment_use_case(
    uow=Depends(get_unit_of_work),
    gateway=Depends(get_payment_gateway),
    policy=Depends(get_gateway_policy)
):
    return ProcessPaymentCallbackUseCase(uow, gateway, policy)


@router.post(
    "/checkout",
    response_model=OrderResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    status_code=status.HTTP_201_CREATED
)
async def checkout(
    request: CheckoutRequest,
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    """Validate the cart, reserve stock and create a pending order"""
    try:
        dto = CreateOrderDTO(
            lines=[CartLine(product_id=line.product_id, quantity=line.quantity) for line in request.items],
            customer=CustomerDTO(**request.customer.model_dump()),
            idempotency_key=request.idempotency_key
        )
        order = await use_case(dto)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order(
    order_id: str,
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    try:
        order = await use_case(order_id)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post(
    "/orders/{order_id}/pay",
    response_model=OrderResponse,
    responses={
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    }
)
async def pay_order(
    order_id: str,
    use_case: ChargeOrderUseCase = Depends(get_charge_order_use_case)
):
    """Charge the order total through the payment gateway"""
    try:
        order = await use_case(order_id)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/payment-callback", responses={404: {"model": ErrorResponse}})
async def payment_callback(
    callback: PaymentCallbackRequest,
    use_case: ProcessPaymentCallbackUseCase = Depends(get_process_payment_use_case)
):
    """Asynchronous payment outcome pushed by the gateway"""
    try:
        dto = PaymentCallbackDTO(**callback.model_dump())
        order = await use_case(dto)
        return {"status": "ok", "order_status": order.status, "payment_status": order.payment_status}
    except DomainException as e:
        raise to_http_error(e)


@router.get(
    "/products/{product_id}/stock",
    response_model=StockResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_stock(
    product_id: str,
    use_case: GetStockUseCase = Depends(get_stock_use_case)
):
    try:
        available = await use_case(product_id)
        return StockResponse(product_id=product_id, available=available)
    except DomainException as e:
        raise to_http_error(e)
