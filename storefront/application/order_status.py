import logging
from typing import Optional
from pydantic import BaseModel

from storefront.domain.models import Identity, Order, OrderStatus, PaymentMethod, PaymentStatus, utcnow
from storefront.domain.exceptions import (
    InvalidStatusTransitionError, OrderNotFoundError, ValidationError
)
from storefront.application.inventory import InventoryLedger


logger = logging.getLogger(__name__)

ORDER_CONFIRMED_EVENT = "order.confirmed"

STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: "Your order has been confirmed! We are preparing it for shipment.",
    OrderStatus.PROCESSING: "Your order is being packed.",
    OrderStatus.SHIPPED: "Your order is on the way! Tracking number: {tracking}",
    OrderStatus.DELIVERED: "Your order has been delivered! Thank you for your purchase.",
    OrderStatus.CANCELLED: "Your order has been cancelled. Please contact support for more information.",
    OrderStatus.REFUNDED: "Your payment has been refunded.",
}


def customer_name(order: Order) -> str:
    if order.guest:
        return f"{order.guest.first_name} {order.guest.last_name}".strip()
    return "Valued Customer"


def confirmed_event(order: Order) -> dict:
    """Событие для fulfillment service"""
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "payment_method": order.payment_method.value,
        "total": str(order.total),
        "items": [
            {"product_id": item.product_id, "quantity": item.quantity}
            for item in order.items
        ],
        "idempotency_key": f"order_confirmed_{order.id}"
    }


async def announce_confirmation(uow, order: Order, ledger: InventoryLedger) -> None:
    """Списание остатков + событие в outbox, в той же транзакции что и смена статуса"""
    await ledger.commit_order(uow, order)
    await uow.outbox.create(event_type=ORDER_CONFIRMED_EVENT, event_data=confirmed_event(order), order_id=order.id)


async def apply_transition(
    uow,
    order: Order,
    target: OrderStatus,
    ledger: InventoryLedger,
    payment_status: Optional[PaymentStatus] = None,
    tracking_number: Optional[str] = None,
    tracking_url: Optional[str] = None,
) -> Order:
    if not order.can_transition_to(target):
        raise InvalidStatusTransitionError(order.status, target)

    leaving_pending = order.status == OrderStatus.PENDING and target not in (
        OrderStatus.PENDING, OrderStatus.CANCELLED, OrderStatus.REFUNDED
    )
    if leaving_pending and order.payment_method.is_hosted_gateway and payment_status != PaymentStatus.COMPLETED:
        # Неоплаченный заказ подтверждает только шлюз через VerifyPaymentUseCase
        raise InvalidStatusTransitionError(order.status, target)

    if payment_status is None and target == OrderStatus.DELIVERED and order.payment_method == PaymentMethod.COD:
        # Наличные получены курьером
        payment_status = PaymentStatus.COMPLETED

    changed = await uow.orders.update_status(
        order.id,
        target,
        payment_status=payment_status,
        tracking_number=tracking_number,
        tracking_url=tracking_url,
        expected_status=order.status
    )
    if not changed:
        raise InvalidStatusTransitionError(order.status, target)

    if leaving_pending:
        await announce_confirmation(uow, order, ledger)
    elif order.holds_stock() and target in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
        await ledger.release_order(uow, order)

    logger.info(f"Заказ {order.order_number}: {order.status.value} -> {target.value}")

    updates = {"status": target, "updated_at": utcnow()}
    if payment_status is not None:
        updates["payment_status"] = payment_status
    if tracking_number is not None:
        updates["tracking_number"] = tracking_number
    if tracking_url is not None:
        updates["tracking_url"] = tracking_url
    return order.model_copy(update=updates)


async def notify_status_change(notifications, order: Order) -> None:
    template = STATUS_MESSAGES.get(order.status, "Order status updated to {status}")
    await notifications.email(
        to=order.email,
        template="shipment",
        data={
            "name": customer_name(order),
            "orderNumber": order.order_number,
            "trackingNumber": order.tracking_number or "TBD",
            "trackingUrl": order.tracking_url,
            "status": order.status.value,
            "message": template.format(tracking=order.tracking_number or "TBD", status=order.status.value)
        },
        reference_id=order.id
    )


class UpdateOrderStatusDTO(BaseModel):
    order_id: str
    status: OrderStatus
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None


class UpdateOrderStatusUseCase:
    def __init__(self, unit_of_work, ledger: InventoryLedger, notifications):
        self._uow = unit_of_work
        self._ledger = ledger
        self._notifications = notifications

    async def __call__(self, dto: UpdateOrderStatusDTO) -> Order:
        if dto.status == OrderStatus.REFUNDED:
            raise ValidationError("Возврат оформляется через /checkout/refunds")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id)
            if not order:
                raise OrderNotFoundError(f"Заказ {dto.order_id} не найден")
            updated = await apply_transition(
                uow, order, dto.status, self._ledger,
                tracking_number=dto.tracking_number,
                tracking_url=dto.tracking_url
            )
            await uow.commit()

        if updated.status != order.status or dto.tracking_number:
            await notify_status_change(self._notifications, updated)
        return updated


class CancelOrderUseCase:
    def __init__(self, unit_of_work, ledger: InventoryLedger, notifications):
        self._uow = unit_of_work
        self._ledger = ledger
        self._notifications = notifications

    async def __call__(self, order_id: str, identity: Identity) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order or not (identity.is_admin or order.user_id == identity.user_id):
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            if order.status == OrderStatus.CANCELLED:
                return order
            updated = await apply_transition(uow, order, OrderStatus.CANCELLED, self._ledger)
            await uow.commit()

        await notify_status_change(self._notifications, updated)
        await self._notifications.analytics(
            event_type="ORDER_CANCELLED",
            event_name="Order Cancelled",
            user_id=identity.user_id,
            page="/orders",
            metadata={"orderId": order.id, "previousStatus": order.status.value},
            reference_id=order.id
        )
        return updated
