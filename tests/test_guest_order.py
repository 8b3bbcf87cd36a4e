from decimal import Decimal

import pytest

from storefront.domain.models import GuestContact, OrderStatus, PaymentMethod, PaymentStatus
from storefront.domain.exceptions import OrderNotFoundError, PriceDriftError, StoreUnavailableError, ValidationError
from storefront.application.guest_order import CreateGuestOrderUseCase, GetGuestOrderUseCase, GuestCheckoutDTO
from storefront.application.pricing import CartLineDTO

from conftest import UnavailableUnitOfWork


def guest_dto(email="Guest.Buyer@Example.COM", price="100", method=PaymentMethod.COD):
    return GuestCheckoutDTO(
        contact=GuestContact(
            first_name="Asha", last_name="Rao", email=email, phone="9876543210",
            address="12 MG Road", city="Pune", state="MH", zip_code="411001", country="IN"
        ),
        items=[CartLineDTO(product_id="p1", quantity=2, price=Decimal(price))],
        payment_method=method
    )


async def test_guest_order_is_priced_server_side(checkout, seeded):
    result = await CreateGuestOrderUseCase(checkout)(guest_dto())

    assert not result.demo
    assert result.order.user_id is None
    assert result.order.email == "guest.buyer@example.com"
    assert result.order.total == Decimal("200.00")
    assert result.order.status == OrderStatus.CONFIRMED


async def test_guest_price_drift_is_rejected(checkout, seeded):
    with pytest.raises(PriceDriftError):
        await CreateGuestOrderUseCase(checkout)(guest_dto(price="10"))


async def test_lookup_is_case_insensitive(checkout, uow, seeded):
    created = await CreateGuestOrderUseCase(checkout)(guest_dto())
    lookup = GetGuestOrderUseCase(uow)

    found = await lookup("GUEST.buyer@example.com ", created.order.order_number.lower())

    assert found.order.id == created.order.id
    assert found.order.guest.first_name == "Asha"
    assert not found.demo

    with pytest.raises(OrderNotFoundError):
        await lookup("someone@example.com", created.order.order_number)


async def test_lookup_requires_both_keys(uow, seeded):
    with pytest.raises(ValidationError):
        await GetGuestOrderUseCase(uow)("", "ORD-1")


async def test_outage_without_demo_flag_propagates(checkout):
    checkout._uow = UnavailableUnitOfWork()

    with pytest.raises(StoreUnavailableError):
        await CreateGuestOrderUseCase(checkout, demo_fallback=False)(guest_dto())
    with pytest.raises(StoreUnavailableError):
        await GetGuestOrderUseCase(UnavailableUnitOfWork())("a@b.c", "ORD-1")


async def test_outage_with_demo_flag_synthesizes_order(checkout):
    checkout._uow = UnavailableUnitOfWork()

    result = await CreateGuestOrderUseCase(checkout, demo_fallback=True, shipping_cost=Decimal("99"))(
        guest_dto(price="120", method=PaymentMethod.RAZORPAY)
    )

    assert result.demo
    assert result.order.status == OrderStatus.PENDING
    assert result.order.total == Decimal("339.00")
    assert result.order.id == result.order.order_number.replace("ORD-", "")


async def test_demo_lookup(seeded):
    lookup = await GetGuestOrderUseCase(UnavailableUnitOfWork(), demo_fallback=True)("A@B.C", "ord-9")

    assert lookup.demo
    assert lookup.order.order_number == "ORD-9"
    assert lookup.order.email == "a@b.c"
    assert lookup.order.status == OrderStatus.SHIPPED
    assert lookup.order.payment_status == PaymentStatus.COMPLETED
