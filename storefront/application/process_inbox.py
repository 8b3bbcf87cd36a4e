import logging

from storefront.domain.models import OrderStatus
from storefront.domain.exceptions import InvalidStatusTransitionError
from storefront.application.inventory import InventoryLedger
from storefront.application.order_status import apply_transition, notify_status_change

logger = logging.getLogger(__name__)

FULFILLMENT_EVENTS = {
    "order.processing": OrderStatus.PROCESSING,
    "order.shipped": OrderStatus.SHIPPED,
    "order.delivered": OrderStatus.DELIVERED,
    "order.cancelled": OrderStatus.CANCELLED,
}


class ProcessInboxEventsUseCase:
    """Применяет события fulfillment service к заказам через машину состояний"""

    def __init__(self, unit_of_work, ledger: InventoryLedger, notifications):
        self._uow = unit_of_work
        self._ledger = ledger
        self._notifications = notifications

    async def __call__(self, limit: int = 10) -> int:
        """Обрабатывает pending события из inbox. Возвращает количество обработанных."""

        async with self._uow() as uow:
            pending = await uow.inbox.get_pending(limit=limit)

        if not pending:
            return 0

        logger.info(f"Обработка {len(pending)} inbox events")

        processed = 0
        for event in pending:
            try:
                if await self._apply(event):
                    processed += 1
            except Exception as e:
                logger.error(f"Ошибка обработки inbox event {event['id']}: {e}")

        return processed

    async def _apply(self, event: dict) -> bool:
        event_id = event["id"]
        target = FULFILLMENT_EVENTS.get(event["event_type"])
        event_data = event["event_data"] or {}

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(event["order_id"])
            if not order or target is None:
                logger.error(f"Inbox event {event_id} ({event['event_type']}) не применим: заказ {event['order_id']}")
                await uow.inbox.mark_as_failed(event_id)
                await uow.commit()
                return False

            try:
                updated = await apply_transition(
                    uow, order, target, self._ledger,
                    tracking_number=event_data.get("tracking_number"),
                    tracking_url=event_data.get("tracking_url")
                )
            except InvalidStatusTransitionError as e:
                logger.warning(f"Заказ {order.order_number}: {e}")
                updated = None
            else:
                await uow.inbox.mark_as_processed(event_id)
                await uow.commit()

        if updated is None:
            async with self._uow() as uow:
                await uow.inbox.mark_as_failed(event_id)
                await uow.commit()
            return False

        if updated.status != order.status:
            await notify_status_change(self._notifications, updated)
        return True
