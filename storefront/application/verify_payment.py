import logging
from typing import Optional
from pydantic import BaseModel

from storefront.domain.models import Order, OrderStatus, PaymentStatus
from storefront.domain.exceptions import (
    GatewayError, InvalidStatusTransitionError, OrderNotFoundError, PaymentVerificationError, ValidationError
)
from storefront.application.interfaces import NotificationChannel
from storefront.application.inventory import InventoryLedger
from storefront.application.order_status import apply_transition, notify_status_change


logger = logging.getLogger(__name__)


class VerifyPaymentDTO(BaseModel):
    order_id: str
    payment_id: str
    signature: Optional[str] = None


class VerifyPaymentUseCase:
    """Завершение оплаты: PENDING -> CONFIRMED после подтверждения шлюзом.

    Повторный вызов для уже подтвержденного заказа ничего не меняет и
    не отправляет уведомления второй раз.
    """

    def __init__(self, unit_of_work, gateways: dict, ledger: InventoryLedger, notifications: NotificationChannel):
        self._uow = unit_of_work
        self._gateways = gateways
        self._ledger = ledger
        self._notifications = notifications

    async def __call__(self, dto: VerifyPaymentDTO) -> Order:
        logger.info(f"Подтверждение платежа {dto.payment_id} для заказа {dto.order_id}")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id)
        if not order:
            raise OrderNotFoundError(f"Заказ {dto.order_id} не найден")

        if not order.can_be_paid():
            return self._already_settled(order)

        gateway = self._gateways.get(order.payment_method)
        if gateway is None:
            raise ValidationError(f"Способ оплаты {order.payment_method.value} не поддерживается")

        if not order.payment_intent_id:
            raise PaymentVerificationError(f"Платеж по заказу {order.order_number} не инициирован")

        # Запрос к шлюзу вне транзакции
        result = await gateway.confirm(order.payment_intent_id, dto.payment_id, dto.signature)
        if not result.success:
            logger.warning(f"Платеж {dto.payment_id} не подтвержден: {result.error}")
            if result.status == PaymentStatus.FAILED:
                raise PaymentVerificationError(result.error or "Платеж отклонен")
            raise GatewayError(result.error or "Шлюз не подтвердил платеж", order_id=order.id)

        transaction_id = result.transaction_id or dto.payment_id
        async with self._uow() as uow:
            # Перечитываем: параллельный вызов мог успеть первым
            current = await uow.orders.get_by_id(order.id)
            if not current.can_be_paid():
                return self._already_settled(current)
            try:
                updated = await apply_transition(
                    uow, current, OrderStatus.CONFIRMED, self._ledger, payment_status=PaymentStatus.COMPLETED
                )
            except InvalidStatusTransitionError:
                # compare-and-set проиграл гонку
                updated = None
            else:
                await uow.orders.update_payment_transaction(order.id, transaction_id)
                updated_logs = await uow.payment_logs.complete_for_order(order.id, transaction_id)
                await uow.commit()

        if updated is None:
            logger.info(f"Заказ {order.order_number} подтвержден параллельным запросом")
            return await self._reload(order.id)

        updated = updated.model_copy(update={"payment_transaction_id": transaction_id})
        logger.info(f"Заказ {order.order_number} оплачен, обновлено payment logs: {updated_logs}")

        await notify_status_change(self._notifications, updated)
        await self._notifications.analytics(
            event_type="PURCHASE",
            event_name="Purchase Completed",
            user_id=order.user_id,
            page="/checkout",
            metadata={
                "orderId": order.id,
                "orderNumber": order.order_number,
                "total": str(order.total),
                "paymentMethod": order.payment_method.value,
                "transactionId": transaction_id
            },
            reference_id=order.id
        )
        return updated

    @staticmethod
    def _already_settled(order: Order) -> Order:
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise InvalidStatusTransitionError(order.status, OrderStatus.CONFIRMED)
        logger.info(f"Заказ {order.order_number} уже оплачен ({order.status.value})")
        return order

    async def _reload(self, order_id: str) -> Order:
        async with self._uow() as uow:
            return self._already_settled(await uow.orders.get_by_id(order_id))
