from sqlalchemy import (
    Table, Column, String, Integer, Enum, DateTime, JSON, MetaData, Numeric, Boolean, ForeignKey, Text
)
from sqlalchemy.sql import func

from storefront.domain.models import (
    DiscountType, OrderStatus, PaymentMethod, PaymentStatus
)

metadata = MetaData()

Money = Numeric(12, 2, asdecimal=True)


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("sku", String, nullable=True, unique=True),
    Column("slug", String, nullable=True, unique=True),
    Column("category_id", String, nullable=True, index=True),
    Column("price", Money, nullable=False),
    Column("inventory", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


product_variants_tbl = Table(
    "product_variants",
    metadata,
    Column("id", String, primary_key=True),
    Column("product_id", String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("size", String, nullable=True),
    Column("color", String, nullable=True),
    Column("sku", String, nullable=True),
    Column("quantity", Integer, nullable=False, default=0)
)


discount_codes_tbl = Table(
    "discount_codes",
    metadata,
    Column("id", String, primary_key=True),
    Column("code", String, nullable=False, unique=True, index=True),
    Column("discount_type", Enum(DiscountType), nullable=False),
    Column("discount_value", Money, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("valid_from", DateTime(timezone=True), nullable=True),
    Column("valid_until", DateTime(timezone=True), nullable=False)
)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_number", String, nullable=False, unique=True, index=True),
    Column("user_id", String, nullable=True, index=True),
    Column("email", String, nullable=False, index=True),
    Column("phone", String, nullable=True),
    Column("guest_first_name", String, nullable=True),
    Column("guest_last_name", String, nullable=True),
    Column("guest_address", Text, nullable=True),
    Column("guest_contact", JSON, nullable=True),
    Column("status", Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING),
    Column("payment_method", Enum(PaymentMethod), nullable=False),
    Column("payment_status", Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING),
    Column("subtotal", Money, nullable=False),
    Column("discount_amount", Money, nullable=False, default=0),
    Column("shipping_cost", Money, nullable=False, default=0),
    Column("total", Money, nullable=False),
    Column("discount_code_id", String, ForeignKey("discount_codes.id"), nullable=True),
    Column("shipping_address_id", String, nullable=True),
    Column("billing_address_id", String, nullable=True),
    Column("tracking_number", String, nullable=True),
    Column("tracking_url", String, nullable=True),
    Column("payment_intent_id", String, nullable=True, index=True),
    Column("payment_transaction_id", String, nullable=True),
    Column("idempotency_key", String, unique=True, index=True, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("product_id", String, ForeignKey("products.id"), nullable=False, index=True),
    Column("quantity", Integer, nullable=False),
    Column("price", Money, nullable=False)
)


payment_logs_tbl = Table(
    "payment_logs",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("gateway", String, nullable=False),
    Column("payment_method", Enum(PaymentMethod), nullable=False),
    Column("amount", Money, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("status", Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING),
    Column("gateway_response", JSON, nullable=True),
    Column("gateway_transaction_id", String, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


analytics_events_tbl = Table(
    "analytics_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=True, index=True),
    Column("event_type", String, nullable=False, index=True),
    Column("event_name", String, nullable=False),
    Column("page", String, nullable=True),
    Column("event_metadata", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)


outbox_messages_tbl = Table(
    "outbox_messages",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=True),
    Column("status", String, default="pending"),
    Column("attempts", Integer, nullable=False, default=0),
    Column("last_error", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)


inbox_events_tbl = Table(
    "inbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False),
    Column("idempotency_key", String, unique=True, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("processed_at", DateTime(timezone=True), nullable=True)
)
