from fastapi import Depends

from storefront.config import settings
from storefront.database import get_session_factory
from storefront.application.payments import GatewayPolicy
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.http_clients import HTTPPaymentGateway


def get_unit_of_work(session_factory=Depends(get_session_factory)) -> UnitOfWork:
    return UnitOfWork(session_factory)


def get_payment_gateway() -> HTTPPaymentGateway:
    return HTTPPaymentGateway(settings.PAYMENTS_BASE_URL, settings.API_TOKEN, settings.PAYMENT_TIMEOUT_SECONDS)


def get_gateway_policy() -> GatewayPolicy:
    return GatewayPolicy(
        timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        max_attempts=settings.PAYMENT_MAX_ATTEMPTS,
        retry_delay=settings.PAYMENT_RETRY_DELAY_SECONDS
    )
