from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from storefront.domain.models import (
    AnalyticsEvent, DiscountCode, Order, OrderStatus, PaymentLog, PaymentStatus, Product
)
from storefront.domain.payments import ConfirmResult, IntentResult, RefundResult, StatusResult


class ProductRepository(ABC):
    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def list_for_inventory(self, low_stock: bool = False, category_id: Optional[str] = None) -> List[Product]:
        pass

    @abstractmethod
    async def set_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        pass

    @abstractmethod
    async def increment_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        pass

    @abstractmethod
    async def decrement_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        """Атомарное списание с отсечкой на нуле"""
        pass

    @abstractmethod
    async def adjust_variant(self, product_id: str, variant_id: str, quantity: int, operation) -> Optional[int]:
        pass

    @abstractmethod
    async def sold_since(self, product_ids: List[str], since: datetime) -> dict:
        pass


class DiscountRepository(ABC):
    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[DiscountCode]:
        pass


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_number_and_email(self, order_number: str, email: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        payment_status: Optional[PaymentStatus] = None,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        expected_status: Optional[OrderStatus] = None,
    ) -> bool:
        pass

    @abstractmethod
    async def update_payment_intent(self, order_id: str, intent_id: str) -> None:
        pass

    @abstractmethod
    async def update_payment_transaction(self, order_id: str, transaction_id: str) -> None:
        pass


class PaymentLogRepository(ABC):
    @abstractmethod
    async def create(self, log: PaymentLog) -> None:
        pass

    @abstractmethod
    async def complete_for_order(self, order_id: str, transaction_id: str) -> int:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> List[PaymentLog]:
        pass


class AnalyticsRepository(ABC):
    @abstractmethod
    async def create(self, event: AnalyticsEvent) -> None:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: Optional[str]) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def register_failure(self, event_id: str, error: str, max_attempts: int) -> None:
        pass


class InboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str, idempotency_key: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_processed(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def mark_as_failed(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def is_processed(self, idempotency_key: str) -> bool:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def products(self) -> ProductRepository:
        pass

    @property
    @abstractmethod
    def discounts(self) -> DiscountRepository:
        pass

    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def payment_logs(self) -> PaymentLogRepository:
        pass

    @property
    @abstractmethod
    def analytics(self) -> AnalyticsRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @property
    @abstractmethod
    def inbox(self) -> InboxRepository:
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
    """Единый интерфейс платежного шлюза. Реализации не пробрасывают исключения наружу."""

    name: str
    # False: оплата при получении, подтверждение шлюза не требуется
    collects_upfront: bool = True

    @abstractmethod
    async def create_intent(self, amount_minor: int, order_ref: str, customer_email: Optional[str] = None) -> IntentResult:
        pass

    @abstractmethod
    async def confirm(self, intent_ref: Optional[str], method_ref: str, signature: Optional[str] = None) -> ConfirmResult:
        pass

    @abstractmethod
    async def status(self, intent_ref: str) -> StatusResult:
        pass

    @abstractmethod
    async def refund(self, payment_ref: str, amount_minor: Optional[int] = None) -> RefundResult:
        pass


class EmailService(ABC):
    @abstractmethod
    async def send(self, to: str, template: str, data: dict, idempotency_key: str) -> bool:
        pass


# Типы сообщений outbox, которые пишет NotificationChannel
EMAIL_EVENT = "email.send"
ANALYTICS_EVENT = "analytics.record"


class NotificationChannel(ABC):
    """Fire-and-forget канал: post никогда не бросает исключений"""

    @abstractmethod
    async def email(self, to: str, template: str, data: dict, reference_id: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def analytics(
        self,
        event_type: str,
        event_name: str,
        user_id: Optional[str] = None,
        page: Optional[str] = None,
        metadata: Optional[dict] = None,
        reference_id: Optional[str] = None,
    ) -> None:
        pass


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event_type: str, key: str, payload: dict) -> bool:
        pass
