from decimal import Decimal

from sqlalchemy import select

from storefront.domain.models import OrderStatus, PaymentMethod, PaymentStatus
from storefront.application.checkout import Buyer, CheckoutDTO
from storefront.application.pricing import CartLineDTO
from storefront.application.process_inbox import ProcessInboxEventsUseCase
from storefront.application.process_outbox import ProcessOutboxEventsUseCase
from storefront.infrastructure.db_schema import analytics_events_tbl, inbox_events_tbl, outbox_messages_tbl
from storefront.infrastructure.notifications import OutboxNotificationChannel
from storefront.presentation.fulfillment_consumer import store_fulfillment_event

from conftest import FakeEmailService, FakePublisher, UnavailableUnitOfWork, count_rows, inventory_of


async def outbox_rows(engine):
    async with engine.connect() as conn:
        result = await conn.execute(select(outbox_messages_tbl).order_by(outbox_messages_tbl.c.created_at))
        return result.fetchall()


async def place_cod_order(checkout):
    dto = CheckoutDTO(
        items=[CartLineDTO(product_id="p1", quantity=1, price=Decimal("100"))],
        payment_method=PaymentMethod.COD
    )
    return (await checkout(Buyer(user_id="u1", email="buyer@example.com"), dto)).order


async def test_channel_writes_outbox_messages(uow, seeded):
    channel = OutboxNotificationChannel(uow)

    await channel.email("a@b.c", "orderConfirmation", {"orderNumber": "ORD-1"}, reference_id="o1")
    await channel.analytics("CHECKOUT_START", "Checkout Started", user_id="u1", metadata={"orderId": "o1"})

    rows = await outbox_rows(seeded)
    assert [row.event_type for row in rows] == ["email.send", "analytics.record"]
    assert rows[0].event_data["to"] == "a@b.c"
    assert rows[0].order_id == "o1"


async def test_channel_never_raises():
    channel = OutboxNotificationChannel(UnavailableUnitOfWork())

    await channel.email("a@b.c", "orderConfirmation", {})
    await channel.analytics("CHECKOUT_START", "Checkout Started")


async def test_relay_delivers_each_message_kind(uow, seeded):
    channel = OutboxNotificationChannel(uow)
    await channel.email("a@b.c", "shipment", {"orderNumber": "ORD-1"}, reference_id="o1")
    await channel.analytics("PURCHASE", "Purchase Completed", user_id="u1", metadata={"orderId": "o1"})
    async with uow() as tx:
        await tx.outbox.create("order.confirmed", {"order_id": "o1", "items": []}, "o1")
        await tx.commit()

    publisher, email = FakePublisher(), FakeEmailService()
    delivered = await ProcessOutboxEventsUseCase(uow, publisher, email)(limit=10)

    assert delivered == 3
    assert publisher.published[0][:2] == ("order.confirmed", "o1")
    assert email.sent[0][:2] == ("a@b.c", "shipment")
    assert await count_rows(seeded, analytics_events_tbl, analytics_events_tbl.c.event_type == "PURCHASE") == 1
    assert {row.status for row in await outbox_rows(seeded)} == {"published"}


async def test_relay_retries_then_gives_up(uow, seeded):
    await OutboxNotificationChannel(uow).email("a@b.c", "shipment", {})
    relay = ProcessOutboxEventsUseCase(uow, FakePublisher(), FakeEmailService(ok=False), max_attempts=2)

    assert await relay() == 0
    row = (await outbox_rows(seeded))[0]
    assert (row.status, row.attempts) == ("pending", 1)

    assert await relay() == 0
    row = (await outbox_rows(seeded))[0]
    assert (row.status, row.attempts) == ("failed", 2)
    assert row.last_error

    # failed сообщения больше не выбираются
    assert await relay() == 0


async def test_fulfillment_events_drive_the_order(checkout, uow, ledger, channel, seeded):
    order = await place_cod_order(checkout)
    shipped = {
        "event_type": "order.shipped",
        "order_id": order.id,
        "tracking_number": "TRK42",
        "tracking_url": "https://track.test/TRK42"
    }

    assert await store_fulfillment_event(uow, shipped)
    assert not await store_fulfillment_event(uow, shipped)
    assert await count_rows(seeded, inbox_events_tbl) == 1

    processor = ProcessInboxEventsUseCase(uow, ledger, channel)
    assert await processor() == 1

    async with uow() as tx:
        stored = await tx.orders.get_by_id(order.id)
    assert stored.status == OrderStatus.SHIPPED
    assert stored.tracking_number == "TRK42"
    assert channel.emails[-1]["data"]["trackingNumber"] == "TRK42"

    await store_fulfillment_event(uow, {"event_type": "order.delivered", "order_id": order.id})
    assert await processor() == 1
    async with uow() as tx:
        stored = await tx.orders.get_by_id(order.id)
    assert stored.status == OrderStatus.DELIVERED
    assert stored.payment_status == PaymentStatus.COMPLETED


async def test_invalid_fulfillment_event_is_marked_failed(checkout, uow, ledger, channel, seeded):
    order = await place_cod_order(checkout)
    await store_fulfillment_event(uow, {"event_type": "order.delivered", "order_id": order.id})
    await store_fulfillment_event(uow, {"event_type": "order.cancelled", "order_id": order.id})
    await store_fulfillment_event(uow, {"event_type": "order.shipped", "order_id": "missing"})

    processed = await ProcessInboxEventsUseCase(uow, ledger, channel)()

    assert processed == 1
    statuses = await count_rows(seeded, inbox_events_tbl, inbox_events_tbl.c.status == "failed")
    assert statuses == 2
    # Доставленный заказ не отменяется, склад не возвращается
    assert await inventory_of(seeded, "p1") == 2


async def test_fulfillment_cancel_restocks(checkout, uow, ledger, channel, seeded):
    order = await place_cod_order(checkout)
    await store_fulfillment_event(uow, {"event_type": "order.cancelled", "order_id": order.id, "reason": "lost"})

    assert await ProcessInboxEventsUseCase(uow, ledger, channel)() == 1
    assert await inventory_of(seeded, "p1") == 3


async def test_fulfillment_event_for_unpaid_gateway_order_fails(checkout, uow, ledger, channel, seeded):
    dto = CheckoutDTO(
        items=[CartLineDTO(product_id="p1", quantity=1, price=Decimal("100"))],
        payment_method=PaymentMethod.RAZORPAY
    )
    order = (await checkout(Buyer(user_id="u1", email="buyer@example.com"), dto)).order
    await store_fulfillment_event(uow, {"event_type": "order.shipped", "order_id": order.id})

    assert await ProcessInboxEventsUseCase(uow, ledger, channel)() == 0

    async with uow() as tx:
        stored = await tx.orders.get_by_id(order.id)
    assert stored.status == OrderStatus.PENDING
    assert await count_rows(seeded, inbox_events_tbl, inbox_events_tbl.c.status == "failed") == 1
    assert await inventory_of(seeded, "p1") == 3
