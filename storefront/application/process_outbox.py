import logging
import json
import uuid

from storefront.domain.models import AnalyticsEvent, utcnow
from storefront.domain.exceptions import NotificationError
from storefront.application.interfaces import ANALYTICS_EVENT, EMAIL_EVENT, EmailService, EventPublisher
from storefront.application.order_status import ORDER_CONFIRMED_EVENT

logger = logging.getLogger(__name__)


class ProcessOutboxEventsUseCase:
    """Доставка сообщений outbox: события заказа -> Kafka, письма -> email service, аналитика -> БД.

    Каждое сообщение отмечается отдельной транзакцией, так что сбой одного
    не мешает остальным. После max_attempts неудач сообщение помечается failed.
    """

    def __init__(self, unit_of_work, publisher: EventPublisher, email_service: EmailService, max_attempts: int = 5):
        self._uow = unit_of_work
        self._publisher = publisher
        self._email = email_service
        self._max_attempts = max_attempts

    async def __call__(self, limit: int = 10) -> int:
        """Обрабатывает pending события из outbox. Возвращает количество доставленных."""

        async with self._uow() as uow:
            pending = await uow.outbox.get_pending(limit=limit)

        delivered = 0
        for event in pending:
            event_data = event["event_data"]
            if isinstance(event_data, str):
                event_data = json.loads(event_data)

            try:
                if event["event_type"] == ANALYTICS_EVENT:
                    await self._record_analytics(event, event_data)
                else:
                    await self._dispatch(event, event_data)
                    async with self._uow() as uow:
                        await uow.outbox.mark_as_published(event["id"])
                        await uow.commit()
            except Exception as e:
                logger.error(f"Ошибка обработки outbox event {event['id']} ({event['event_type']}): {e}")
                async with self._uow() as uow:
                    await uow.outbox.register_failure(event["id"], str(e), self._max_attempts)
                    await uow.commit()
                continue

            delivered += 1
            logger.info(f"Опубликовано {event['event_type']} event {event['id']}")

        return delivered

    async def _dispatch(self, event: dict, event_data: dict) -> None:
        if event["event_type"] == ORDER_CONFIRMED_EVENT:
            published = await self._publisher.publish(
                event_type=ORDER_CONFIRMED_EVENT,
                key=event_data["order_id"],
                payload=event_data
            )
            if not published:
                raise RuntimeError("Kafka не приняла сообщение")
        elif event["event_type"] == EMAIL_EVENT:
            sent = await self._email.send(
                to=event_data["to"],
                template=event_data["template"],
                data=event_data.get("data", {}),
                idempotency_key=f"email_{event['id']}"
            )
            if not sent:
                raise NotificationError(f"Письмо {event_data['template']} не отправлено")
        else:
            raise ValueError(f"Неизвестный тип события: {event['event_type']}")

    async def _record_analytics(self, event: dict, event_data: dict) -> None:
        # Запись события и отметка outbox в одной транзакции
        async with self._uow() as uow:
            await uow.analytics.create(
                AnalyticsEvent(
                    id=str(uuid.uuid4()),
                    user_id=event_data.get("user_id"),
                    event_type=event_data["event_type"],
                    event_name=event_data["event_name"],
                    page=event_data.get("page"),
                    metadata=event_data.get("metadata") or {},
                    created_at=utcnow()
                )
            )
            await uow.outbox.mark_as_published(event["id"])
            await uow.commit()
