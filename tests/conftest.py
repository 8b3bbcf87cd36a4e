from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.database import create_tables
from storefront.domain.models import DiscountType, PaymentMethod, PaymentStatus, utcnow
from storefront.domain.payments import ConfirmResult, IntentResult, RefundResult, StatusResult
from storefront.domain.exceptions import StoreUnavailableError
from storefront.application.checkout import CheckoutUseCase
from storefront.application.discounts import DiscountEngine
from storefront.application.interfaces import EmailService, EventPublisher, NotificationChannel, PaymentGateway
from storefront.application.inventory import InventoryLedger
from storefront.application.pricing import PricingValidator
from storefront.infrastructure.db_schema import (
    discount_codes_tbl, product_variants_tbl, products_tbl
)
from storefront.infrastructure.gateways import CashOnDeliveryGateway
from storefront.infrastructure.unit_of_work import UnitOfWork


class FakeGateway(PaymentGateway):
    """Шлюз-заглушка: запоминает вызовы, результат настраивается в тесте"""

    def __init__(self, name: str):
        self.name = name
        self.fail_intent = False
        self.confirm_status = PaymentStatus.COMPLETED
        self.intents = []
        self.confirms = []
        self.refunds = []

    async def create_intent(self, amount_minor: int, order_ref: str, customer_email: Optional[str] = None) -> IntentResult:
        self.intents.append((amount_minor, order_ref))
        if self.fail_intent:
            return IntentResult(success=False, gateway=self.name, error="gateway timeout")
        intent_id = f"{self.name}_intent_{len(self.intents)}"
        return IntentResult(
            success=True,
            gateway=self.name,
            intent_id=intent_id,
            amount=amount_minor,
            currency="INR",
            instructions={"gateway": self.name, "orderId": intent_id, "amount": amount_minor},
            raw={"id": intent_id}
        )

    async def confirm(self, intent_ref: Optional[str], method_ref: str, signature: Optional[str] = None) -> ConfirmResult:
        self.confirms.append((intent_ref, method_ref))
        ok = self.confirm_status == PaymentStatus.COMPLETED
        return ConfirmResult(
            success=ok,
            status=self.confirm_status,
            transaction_id=method_ref if ok else None,
            error=None if ok else "declined"
        )

    async def status(self, intent_ref: str) -> StatusResult:
        return StatusResult(success=True, status=PaymentStatus.PENDING)

    async def refund(self, payment_ref: str, amount_minor: Optional[int] = None) -> RefundResult:
        self.refunds.append((payment_ref, amount_minor))
        return RefundResult(success=True, refund_id=f"rfnd_{len(self.refunds)}", amount=amount_minor)


class RecordingChannel(NotificationChannel):
    def __init__(self):
        self.emails = []
        self.events = []

    async def email(self, to, template, data, reference_id=None):
        self.emails.append({"to": to, "template": template, "data": data, "reference_id": reference_id})

    async def analytics(self, event_type, event_name, user_id=None, page=None, metadata=None, reference_id=None):
        self.events.append({"event_type": event_type, "user_id": user_id, "metadata": metadata or {}})


class FakePublisher(EventPublisher):
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.published = []

    async def publish(self, event_type, key, payload):
        self.published.append((event_type, key, payload))
        return self.ok


class FakeEmailService(EmailService):
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    async def send(self, to, template, data, idempotency_key):
        self.sent.append((to, template, idempotency_key))
        return self.ok


class UnavailableUnitOfWork:
    """Имитирует недоступное хранилище"""

    @asynccontextmanager
    async def __call__(self):
        raise StoreUnavailableError("connection refused")
        yield


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow(engine):
    return UnitOfWork(async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession))


@pytest.fixture
async def seeded(engine):
    now = utcnow()
    async with engine.begin() as conn:
        await conn.execute(
            insert(products_tbl),
            [
                {"id": "p1", "name": "Silk Saree", "sku": "SKU-1", "slug": "silk-saree",
                 "category_id": "sarees", "price": Decimal("100.00"), "inventory": 3},
                {"id": "p2", "name": "Cotton Kurta", "sku": "SKU-2", "slug": "cotton-kurta",
                 "category_id": "kurtas", "price": Decimal("50.00"), "inventory": 20},
                {"id": "p3", "name": "Linen Dupatta", "sku": "SKU-3", "slug": "linen-dupatta",
                 "category_id": "sarees", "price": Decimal("150.00"), "inventory": 0},
            ]
        )
        await conn.execute(
            insert(product_variants_tbl),
            [
                {"id": "v1", "product_id": "p2", "size": "M", "color": "red", "sku": "SKU-2-M", "quantity": 2},
                {"id": "v2", "product_id": "p2", "size": "L", "color": "red", "sku": "SKU-2-L", "quantity": 1},
                {"id": "v3", "product_id": "p3", "size": "free", "color": "white", "sku": "SKU-3-F", "quantity": 4},
            ]
        )
        await conn.execute(
            insert(discount_codes_tbl),
            [
                {"id": "d1", "code": "SAVE20", "discount_type": DiscountType.PERCENTAGE,
                 "discount_value": Decimal("20"), "is_active": True, "valid_until": now + timedelta(days=7)},
                {"id": "d2", "code": "FLAT500", "discount_type": DiscountType.FIXED,
                 "discount_value": Decimal("500"), "is_active": True, "valid_until": now + timedelta(days=7)},
                {"id": "d3", "code": "OLD10", "discount_type": DiscountType.PERCENTAGE,
                 "discount_value": Decimal("10"), "is_active": True, "valid_until": now - timedelta(days=1)},
                {"id": "d4", "code": "PAUSED", "discount_type": DiscountType.PERCENTAGE,
                 "discount_value": Decimal("10"), "is_active": False, "valid_until": now + timedelta(days=7)},
            ]
        )
    return engine


@pytest.fixture
def gateways():
    return {
        PaymentMethod.RAZORPAY: FakeGateway("razorpay"),
        PaymentMethod.STRIPE: FakeGateway("stripe"),
        PaymentMethod.COD: CashOnDeliveryGateway(),
    }


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def ledger():
    return InventoryLedger()


@pytest.fixture
def checkout(uow, gateways, channel, ledger):
    return CheckoutUseCase(
        uow,
        gateways,
        channel,
        PricingValidator(Decimal("0.10")),
        DiscountEngine(),
        ledger,
        currency="INR",
        app_url="https://shop.test"
    )


async def count_rows(engine, table, *criteria) -> int:
    async with engine.connect() as conn:
        query = select(func.count()).select_from(table)
        if criteria:
            query = query.where(*criteria)
        result = await conn.execute(query)
        return result.scalar_one()


async def inventory_of(engine, product_id: str) -> int:
    async with engine.connect() as conn:
        result = await conn.execute(select(products_tbl.c.inventory).where(products_tbl.c.id == product_id))
        return result.scalar_one()
