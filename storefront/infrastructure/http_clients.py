import httpx
import logging
from decimal import Decimal
from typing import Optional

from storefront.domain.exceptions import PaymentAdapterError, PaymentDeclinedError, RefundDeclinedError
from storefront.application.interfaces import PaymentGateway

logger = logging.getLogger(__name__)

_DECLINE_CODES = (402, 409, 422)


class HTTPPaymentGateway(PaymentGateway):
    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport

    async def charge(self, order_id: str, amount: Decimal, idempotency_key: Optional[str] = None) -> str:
        response = await self._post(
            "/api/payments",
            {
                "order_id": order_id,
                "amount": str(amount),
                "idempotency_key": idempotency_key or f"charge_{order_id}"
            }
        )
        if response.status_code == 201:
            return self._created_id(response)
        if response.status_code in _DECLINE_CODES:
            raise PaymentDeclinedError(self._reason(response))
        raise PaymentAdapterError(f"Payment service error: {response.status_code}")

    async def refund(
        self, order_id: str, amount: Decimal, external_ref: str, idempotency_key: Optional[str] = None
    ) -> str:
        response = await self._post(
            f"/api/payments/{external_ref}/refunds",
            {
                "order_id": order_id,
                "amount": str(amount),
                "idempotency_key": idempotency_key or f"refund_{external_ref}_{amount}"
            }
        )
        if response.status_code == 201:
            return self._created_id(response)
        if response.status_code in _DECLINE_CODES:
            raise RefundDeclinedError(self._reason(response))
        raise PaymentAdapterError(f"Payment service error: {response.status_code}")

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                return await client.post(
                    f"{self._base_url}{path}",
                    json=payload,
                    headers={
                        "X-API-Key": self._api_token,
                        "Content-Type": "application/json"
                    },
                    timeout=self._timeout
                )
        except httpx.RequestError as e:
            logger.error(f"Payment service connection error: {e}")
            raise PaymentAdapterError(f"Payment service unavailable: {str(e)}")

    @staticmethod
    def _created_id(response: httpx.Response) -> str:
        try:
            return str(response.json()["id"])
        except (ValueError, KeyError, TypeError):
            logger.error(f"Payment service returned an unreadable body: {response.text[:200]!r}")
            raise PaymentAdapterError("Payment service returned a malformed response")

    @staticmethod
    def _reason(response: httpx.Response) -> str:
        try:
            return response.json().get("detail") or f"declined ({response.status_code})"
        except ValueError:
            return f"declined ({response.status_code})"
