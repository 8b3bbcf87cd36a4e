import json
import logging
import asyncio
from aiokafka import AIOKafkaConsumer, TopicPartition

logger = logging.getLogger(__name__)


def _decode(raw: bytes):
    try:
        return json.loads(raw.decode())
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.error(f"Некорректное сообщение, пропущено: {raw[:200]!r}")
        return None


class KafkaConsumerClient:
    """Читает события fulfillment service; offset коммитится только после обработки"""

    def __init__(self, bootstrap_servers: str, topic: str, group_id: str = "storefront-fulfillment-group",
                 retry_delay: float = 1.0):
        self._bootstrap_servers = bootstrap_servers
        self._group_id = group_id
        self._topic = topic
        self._retry_delay = retry_delay
        self._consumer: AIOKafkaConsumer | None = None

    async def start(self):
        self._consumer = AIOKafkaConsumer(
            self._topic,
            bootstrap_servers=self._bootstrap_servers,
            group_id=self._group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
            value_deserializer=_decode
        )
        await self._consumer.start()
        logger.info(f"Kafka consumer started: {self._topic}")

    async def stop(self):
        if self._consumer:
            await self._consumer.stop()
            self._consumer = None
            logger.info("Kafka consumer stopped")

    async def consume(self, callback):
        """Бесконечный цикл потребления сообщений"""
        async for msg in self._consumer:
            event_data = msg.value
            if not isinstance(event_data, dict) or not event_data.get("event_type"):
                # Мусор не должен блокировать партицию
                await self._consumer.commit()
                continue
            try:
                logger.info(f"Received {event_data['event_type']} (partition {msg.partition}, offset {msg.offset})")
                await callback(event_data)
                await self._consumer.commit()
            except Exception as e:
                # Следующий commit сдвинул бы offset дальше, поэтому возвращаемся к этому сообщению
                logger.error(f"Error processing message at offset {msg.offset}: {e}")
                self._consumer.seek(TopicPartition(msg.topic, msg.partition), msg.offset)
                await asyncio.sleep(self._retry_delay)
