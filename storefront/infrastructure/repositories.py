import uuid
from decimal import Decimal
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, case, func
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.domain.models import (
    AnalyticsEvent, DiscountCode, GuestContact, InventoryOperation, Order, OrderItem,
    OrderStatus, PaymentLog, PaymentStatus, Product, ProductVariant
)
from storefront.infrastructure.db_schema import (
    analytics_events_tbl, discount_codes_tbl, inbox_events_tbl, order_items_tbl, orders_tbl,
    outbox_messages_tbl, payment_logs_tbl, product_variants_tbl, products_tbl
)
from storefront.application.interfaces import (
    AnalyticsRepository, DiscountRepository, InboxRepository, OrderRepository,
    OutboxRepository, PaymentLogRepository, ProductRepository
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SQLAlchemyProductRepository(ProductRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id == product_id)
        )
        row = result.fetchone()
        if not row:
            return None
        variants = await self._variants_for([product_id])
        return self._to_domain(row, variants.get(product_id, []))

    async def list_for_inventory(self, low_stock: bool = False, category_id: Optional[str] = None) -> List[Product]:
        query = select(products_tbl)
        if low_stock:
            query = query.where(products_tbl.c.inventory <= 10)
        if category_id:
            query = query.where(products_tbl.c.category_id == category_id)
        query = query.order_by(products_tbl.c.inventory.asc(), products_tbl.c.name.asc())

        result = await self._session.execute(query)
        rows = result.fetchall()
        variants = await self._variants_for([row.id for row in rows])
        return [self._to_domain(row, variants.get(row.id, [])) for row in rows]

    async def set_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        return await self._apply(product_id, max(0, quantity))

    async def increment_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        return await self._apply(product_id, products_tbl.c.inventory + quantity)

    async def decrement_inventory(self, product_id: str, quantity: int) -> Optional[int]:
        # Одна инструкция UPDATE: чтение и запись не разнесены по двум вызовам
        clamped = case(
            (products_tbl.c.inventory > quantity, products_tbl.c.inventory - quantity),
            else_=0
        )
        return await self._apply(product_id, clamped)

    async def adjust_variant(self, product_id: str, variant_id: str, quantity: int, operation) -> Optional[int]:
        column = product_variants_tbl.c.quantity
        if operation == InventoryOperation.INCREMENT:
            value = column + quantity
        elif operation == InventoryOperation.DECREMENT:
            value = case((column > quantity, column - quantity), else_=0)
        else:
            value = max(0, quantity)

        result = await self._session.execute(
            update(product_variants_tbl)
            .where(
                product_variants_tbl.c.id == variant_id,
                product_variants_tbl.c.product_id == product_id
            )
            .values(quantity=value)
        )
        if result.rowcount == 0:
            return None
        current = await self._session.execute(
            select(product_variants_tbl.c.quantity).where(product_variants_tbl.c.id == variant_id)
        )
        return current.scalar_one()

    async def sold_since(self, product_ids: List[str], since: datetime) -> dict:
        if not product_ids:
            return {}
        result = await self._session.execute(
            select(order_items_tbl.c.product_id, func.sum(order_items_tbl.c.quantity))
            .join(orders_tbl, orders_tbl.c.id == order_items_tbl.c.order_id)
            .where(
                order_items_tbl.c.product_id.in_(product_ids),
                orders_tbl.c.created_at >= since
            )
            .group_by(order_items_tbl.c.product_id)
        )
        return {product_id: int(total or 0) for product_id, total in result.fetchall()}

    async def _apply(self, product_id: str, value) -> Optional[int]:
        result = await self._session.execute(
            update(products_tbl)
            .where(products_tbl.c.id == product_id)
            .values(inventory=value, updated_at=_now())
        )
        if result.rowcount == 0:
            return None
        current = await self._session.execute(
            select(products_tbl.c.inventory).where(products_tbl.c.id == product_id)
        )
        return current.scalar_one()

    async def _variants_for(self, product_ids: List[str]) -> dict:
        if not product_ids:
            return {}
        result = await self._session.execute(
            select(product_variants_tbl)
            .where(product_variants_tbl.c.product_id.in_(product_ids))
            .order_by(product_variants_tbl.c.id)
        )
        grouped: dict = {}
        for row in result.fetchall():
            grouped.setdefault(row.product_id, []).append(
                ProductVariant(
                    id=row.id,
                    product_id=row.product_id,
                    size=row.size,
                    color=row.color,
                    sku=row.sku,
                    quantity=row.quantity
                )
            )
        return grouped

    def _to_domain(self, row, variants: List[ProductVariant]) -> Product:
        return Product(
            id=row.id,
            name=row.name,
            sku=row.sku,
            slug=row.slug,
            category_id=row.category_id,
            price=Decimal(row.price),
            inventory=row.inventory,
            variants=variants
        )


class SQLAlchemyDiscountRepository(DiscountRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_code(self, code: str) -> Optional[DiscountCode]:
        result = await self._session.execute(
            select(discount_codes_tbl).where(discount_codes_tbl.c.code == code)
        )
        row = result.fetchone()
        if not row:
            return None
        return DiscountCode(
            id=row.id,
            code=row.code,
            discount_type=row.discount_type,
            discount_value=Decimal(row.discount_value),
            is_active=row.is_active,
            valid_from=row.valid_from,
            valid_until=row.valid_until
        )


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        return await self._fetch_one(orders_tbl.c.id == order_id)

    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return await self._fetch_one(orders_tbl.c.idempotency_key == key)

    async def get_by_number_and_email(self, order_number: str, email: str) -> Optional[Order]:
        return await self._fetch_one(
            orders_tbl.c.order_number == order_number,
            orders_tbl.c.email == email
        )

    async def create(self, order: Order) -> None:
        guest = order.guest
        await self._session.execute(
            insert(orders_tbl).values(
                id=order.id,
                order_number=order.order_number,
                user_id=order.user_id,
                email=order.email,
                phone=guest.phone if guest else None,
                guest_first_name=guest.first_name if guest else None,
                guest_last_name=guest.last_name if guest else None,
                guest_address=guest.full_address() if guest else None,
                guest_contact=guest.model_dump() if guest else None,
                status=order.status,
                payment_method=order.payment_method,
                payment_status=order.payment_status,
                subtotal=order.subtotal,
                discount_amount=order.discount_amount,
                shipping_cost=order.shipping_cost,
                total=order.total,
                discount_code_id=order.discount_code_id,
                shipping_address_id=order.shipping_address_id,
                billing_address_id=order.billing_address_id,
                payment_intent_id=order.payment_intent_id,
                idempotency_key=order.idempotency_key,
                created_at=order.created_at,
                updated_at=order.updated_at
            )
        )
        if order.items:
            await self._session.execute(
                insert(order_items_tbl),
                [
                    {
                        "id": item.id,
                        "order_id": order.id,
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        "price": item.price
                    }
                    for item in order.items
                ]
            )

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        payment_status: Optional[PaymentStatus] = None,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        expected_status: Optional[OrderStatus] = None,
    ) -> bool:
        values = {"status": status, "updated_at": _now()}
        if payment_status is not None:
            values["payment_status"] = payment_status
        if tracking_number is not None:
            values["tracking_number"] = tracking_number
        if tracking_url is not None:
            values["tracking_url"] = tracking_url
        criteria = [orders_tbl.c.id == order_id]
        if expected_status is not None:
            # compare-and-set: параллельный переход не пройдет
            criteria.append(orders_tbl.c.status == expected_status)
        result = await self._session.execute(
            update(orders_tbl).where(*criteria).values(**values)
        )
        return result.rowcount > 0

    async def update_payment_intent(self, order_id: str, intent_id: str) -> None:
        await self._session.execute(
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(payment_intent_id=intent_id, updated_at=_now())
        )

    async def update_payment_transaction(self, order_id: str, transaction_id: str) -> None:
        await self._session.execute(
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(payment_transaction_id=transaction_id, updated_at=_now())
        )

    async def _fetch_one(self, *criteria) -> Optional[Order]:
        result = await self._session.execute(select(orders_tbl).where(*criteria))
        row = result.fetchone()
        if not row:
            return None
        items = await self._session.execute(
            select(order_items_tbl)
            .where(order_items_tbl.c.order_id == row.id)
            .order_by(order_items_tbl.c.id)
        )
        return self._to_domain(row, items.fetchall())

    def _to_domain(self, row, item_rows) -> Order:
        """Трансформация DB → Domain"""
        return Order(
            id=row.id,
            order_number=row.order_number,
            user_id=row.user_id,
            email=row.email,
            guest=GuestContact(**row.guest_contact) if row.guest_contact else None,
            status=OrderStatus(row.status),
            payment_method=row.payment_method,
            payment_status=row.payment_status,
            subtotal=Decimal(row.subtotal),
            discount_amount=Decimal(row.discount_amount),
            shipping_cost=Decimal(row.shipping_cost),
            total=Decimal(row.total),
            discount_code_id=row.discount_code_id,
            shipping_address_id=row.shipping_address_id,
            billing_address_id=row.billing_address_id,
            tracking_number=row.tracking_number,
            tracking_url=row.tracking_url,
            payment_intent_id=row.payment_intent_id,
            payment_transaction_id=row.payment_transaction_id,
            idempotency_key=row.idempotency_key,
            items=[
                OrderItem(
                    id=item.id,
                    order_id=item.order_id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=Decimal(item.price)
                )
                for item in item_rows
            ],
            created_at=row.created_at,
            updated_at=row.updated_at
        )


class SQLAlchemyPaymentLogRepository(PaymentLogRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, log: PaymentLog) -> None:
        await self._session.execute(
            insert(payment_logs_tbl).values(
                id=log.id,
                order_id=log.order_id,
                gateway=log.gateway,
                payment_method=log.payment_method,
                amount=log.amount,
                currency=log.currency,
                status=log.status,
                gateway_response=log.gateway_response,
                gateway_transaction_id=log.gateway_transaction_id,
                created_at=log.created_at,
                updated_at=log.created_at
            )
        )

    async def complete_for_order(self, order_id: str, transaction_id: str) -> int:
        result = await self._session.execute(
            update(payment_logs_tbl)
            .where(
                payment_logs_tbl.c.order_id == order_id,
                payment_logs_tbl.c.status == PaymentStatus.PENDING
            )
            .values(
                status=PaymentStatus.COMPLETED,
                gateway_transaction_id=transaction_id,
                updated_at=_now()
            )
        )
        return result.rowcount

    async def list_for_order(self, order_id: str) -> List[PaymentLog]:
        result = await self._session.execute(
            select(payment_logs_tbl)
            .where(payment_logs_tbl.c.order_id == order_id)
            .order_by(payment_logs_tbl.c.created_at.asc())
        )
        return [
            PaymentLog(
                id=row.id,
                order_id=row.order_id,
                gateway=row.gateway,
                payment_method=row.payment_method,
                amount=Decimal(row.amount),
                currency=row.currency,
                status=row.status,
                gateway_response=row.gateway_response,
                gateway_transaction_id=row.gateway_transaction_id,
                created_at=row.created_at
            )
            for row in result.fetchall()
        ]


class SQLAlchemyAnalyticsRepository(AnalyticsRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event: AnalyticsEvent) -> None:
        await self._session.execute(
            insert(analytics_events_tbl).values(
                id=event.id,
                user_id=event.user_id,
                event_type=event.event_type,
                event_name=event.event_name,
                page=event.page,
                event_metadata=event.metadata,
                created_at=event.created_at
            )
        )


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: Optional[str]) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_messages_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,  # SQLAlchemy JSON column сериализует автоматически
            order_id=order_id,
            status="pending",
            attempts=0,
            created_at=_now()
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(outbox_messages_tbl)
            .where(outbox_messages_tbl.c.status == "pending")
            .order_by(outbox_messages_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id,
                "attempts": row.attempts
            }
            for row in rows
        ]

    async def mark_as_published(self, event_id: str) -> None:
        stmt = (
            update(outbox_messages_tbl)
            .where(outbox_messages_tbl.c.id == event_id)
            .values(status="published")
        )
        await self._session.execute(stmt)

    async def register_failure(self, event_id: str, error: str, max_attempts: int) -> None:
        attempts = outbox_messages_tbl.c.attempts + 1
        stmt = (
            update(outbox_messages_tbl)
            .where(outbox_messages_tbl.c.id == event_id)
            .values(
                attempts=attempts,
                last_error=error,
                status=case((attempts >= max_attempts, "failed"), else_="pending")
            )
        )
        await self._session.execute(stmt)


class SQLAlchemyInboxRepository(InboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str, idempotency_key: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(inbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,
            order_id=order_id,
            idempotency_key=idempotency_key,
            status="pending",
            created_at=_now()
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(inbox_events_tbl)
            .where(inbox_events_tbl.c.status == "pending")
            .order_by(inbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id,
                "idempotency_key": row.idempotency_key
            }
            for row in rows
        ]

    async def mark_as_processed(self, event_id: str) -> None:
        stmt = (
            update(inbox_events_tbl)
            .where(inbox_events_tbl.c.id == event_id)
            .values(
                status="processed",
                processed_at=_now()
            )
        )
        await self._session.execute(stmt)

    async def mark_as_failed(self, event_id: str) -> None:
        stmt = (
            update(inbox_events_tbl)
            .where(inbox_events_tbl.c.id == event_id)
            .values(status="failed")
        )
        await self._session.execute(stmt)

    async def is_processed(self, idempotency_key: str) -> bool:
        result = await self._session.execute(
            select(inbox_events_tbl.c.id)
            .where(inbox_events_tbl.c.idempotency_key == idempotency_key)
        )
        return result.fetchone() is not None
