from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Sequence, Tuple

from storefront.domain.models import (
    Order, OrderStatus, PaymentStatus, Product, Refund, RefundStatus, Reservation,
    TransitionRecord, TransitionTrigger,
)


class ProductRepository(ABC):
    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def get_many(self, product_ids: Sequence[str]) -> List[Product]:
        pass

    @abstractmethod
    async def create(self, product: Product) -> None:
        pass


class StockLedger(ABC):
    @abstractmethod
    async def reserve(self, product_id: str, quantity: int) -> Reservation:
        pass

    @abstractmethod
    async def release(self, product_id: str, quantity: int) -> None:
        pass

    @abstractmethod
    async def fulfil(self, product_id: str, quantity: int) -> None:
        pass

    @abstractmethod
    async def available(self, product_id: str) -> int:
        pass


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def save_state(self, order: Order, expected_version: int) -> None:
        pass

    @abstractmethod
    async def list(
        self,
        offset: int,
        limit: int,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[Order], int]:
        pass

    @abstractmethod
    async def list_stale_unpaid(self, created_before: datetime, limit: int) -> List[str]:
        pass


class RefundRepository(ABC):
    @abstractmethod
    async def create(self, refund: Refund) -> None:
        pass

    @abstractmethod
    async def finish(self, refund_id: str, status: RefundStatus, external_ref: Optional[str]) -> None:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> List[Refund]:
        pass

    @abstractmethod
    async def claimed_amount(self, order_id: str) -> Decimal:
        pass

    @abstractmethod
    async def completed_amount(self, order_id: str) -> Decimal:
        pass

    @abstractmethod
    async def has_in_flight(self, order_id: str) -> bool:
        pass


class TransitionRepository(ABC):
    @abstractmethod
    async def record(
        self, order_id: str, field: str, from_state: str, to_state: str, trigger: TransitionTrigger
    ) -> None:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> List[TransitionRecord]:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def products(self) -> ProductRepository:
        pass

    @property
    @abstractmethod
    def stock(self) -> StockLedger:
        pass

    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def refunds(self) -> RefundRepository:
        pass

    @property
    @abstractmethod
    def transitions(self) -> TransitionRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class PaymentGateway(ABC):
    """Opaque payment capability.

    ``charge`` raises PaymentDeclinedError or PaymentAdapterError,
    ``refund`` raises RefundDeclinedError or PaymentAdapterError.
    Both return the gateway's reference for the operation.
    """

    @abstractmethod
    async def charge(self, order_id: str, amount: Decimal, idempotency_key: Optional[str] = None) -> str:
        pass

    @abstractmethod
    async def refund(
        self, order_id: str, amount: Decimal, external_ref: str, idempotency_key: Optional[str] = None
    ) -> str:
        pass


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event_type: str, order_id: str, payload: dict) -> bool:
        pass
