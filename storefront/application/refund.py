import logging
import uuid
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from storefront.domain.models import Order, OrderStatus, PaymentLog, PaymentStatus, money, to_minor_units, utcnow
from storefront.domain.exceptions import (
    GatewayError, InvalidStatusTransitionError, OrderNotFoundError, ValidationError
)
from storefront.application.interfaces import NotificationChannel
from storefront.application.inventory import InventoryLedger
from storefront.application.order_status import apply_transition, notify_status_change


logger = logging.getLogger(__name__)


class RefundDTO(BaseModel):
    order_id: str
    amount: Optional[Decimal] = Field(default=None, gt=0)
    reason: Optional[str] = None


class RefundOrderUseCase:
    """Возврат оплаченного заказа через тот же шлюз, которым он оплачен"""

    def __init__(self, unit_of_work, gateways: dict, ledger: InventoryLedger,
                 notifications: NotificationChannel, currency: str = "INR"):
        self._uow = unit_of_work
        self._gateways = gateways
        self._ledger = ledger
        self._notifications = notifications
        self._currency = currency

    async def __call__(self, dto: RefundDTO, actor_id: Optional[str] = None) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id)
        if not order:
            raise OrderNotFoundError(f"Заказ {dto.order_id} не найден")

        if order.status == OrderStatus.REFUNDED:
            logger.info(f"Заказ {order.order_number} уже возвращен")
            return order
        if order.payment_status != PaymentStatus.COMPLETED:
            raise ValidationError(f"Заказ {order.order_number} не оплачен, возвращать нечего")
        if not order.can_transition_to(OrderStatus.REFUNDED):
            raise InvalidStatusTransitionError(order.status, OrderStatus.REFUNDED)

        amount = money(dto.amount) if dto.amount is not None else order.total
        if amount > order.total:
            raise ValidationError(f"Сумма возврата {amount} больше суммы заказа {order.total}")

        gateway = self._gateways.get(order.payment_method)
        if gateway is None:
            raise ValidationError(f"Способ оплаты {order.payment_method.value} не поддерживается")

        payment_ref = order.payment_transaction_id or order.payment_intent_id or order.id
        result = await gateway.refund(payment_ref, to_minor_units(amount))
        if not result.success:
            raise GatewayError(result.error or "Шлюз не выполнил возврат", order_id=order.id)

        async with self._uow() as uow:
            current = await uow.orders.get_by_id(order.id)
            # Частичный возврат тоже переводит заказ в REFUNDED
            updated = await apply_transition(
                uow, current, OrderStatus.REFUNDED, self._ledger, payment_status=PaymentStatus.REFUNDED
            )
            await uow.payment_logs.create(
                PaymentLog(
                    id=str(uuid.uuid4()),
                    order_id=order.id,
                    gateway=gateway.name,
                    payment_method=order.payment_method,
                    amount=amount,
                    currency=self._currency,
                    status=PaymentStatus.REFUNDED,
                    gateway_response={**(result.raw or {}), "reason": dto.reason},
                    gateway_transaction_id=result.refund_id,
                    created_at=utcnow()
                )
            )
            await uow.commit()

        logger.info(f"Заказ {order.order_number}: возврат {amount} ({result.refund_id})")

        await notify_status_change(self._notifications, updated)
        await self._notifications.analytics(
            event_type="REFUND",
            event_name="Order Refunded",
            user_id=actor_id,
            page="/admin/orders",
            metadata={
                "orderId": order.id,
                "amount": str(amount),
                "refundId": result.refund_id,
                "reason": dto.reason
            },
            reference_id=f"{order.id}:refund"
        )
        return updated
