from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.domain.exceptions import (
    InvalidDiscountError, PriceDriftError, ProductNotFoundError, ValidationError
)
from storefront.domain.models import utcnow
from storefront.application.discounts import DiscountEngine
from storefront.application.pricing import CartLineDTO, PricingValidator


async def test_server_price_is_persisted_within_tolerance(uow, seeded):
    validator = PricingValidator(Decimal("0.10"))
    async with uow() as tx:
        priced = await validator(tx, [CartLineDTO(product_id="p1", quantity=2, price=Decimal("95"))], "order-1")

    assert priced.subtotal == Decimal("200.00")
    assert priced.items[0].price == Decimal("100.00")
    assert priced.items[0].order_id == "order-1"


async def test_price_drift_identifies_product(uow, seeded):
    validator = PricingValidator(Decimal("0.10"))
    async with uow() as tx:
        with pytest.raises(PriceDriftError) as exc:
            await validator(tx, [CartLineDTO(product_id="p3", quantity=2, price=Decimal("100"))], "order-1")

    assert exc.value.product_id == "p3"
    assert exc.value.server_price == Decimal("150.00")


async def test_drift_exactly_at_tolerance_is_accepted(uow, seeded):
    validator = PricingValidator(Decimal("0.10"))
    async with uow() as tx:
        priced = await validator(tx, [CartLineDTO(product_id="p1", quantity=1, price=Decimal("110"))], "o")
    assert priced.subtotal == Decimal("100.00")


async def test_unknown_product_aborts(uow, seeded):
    validator = PricingValidator()
    async with uow() as tx:
        with pytest.raises(ProductNotFoundError):
            await validator(
                tx,
                [
                    CartLineDTO(product_id="p1", quantity=1, price=Decimal("100")),
                    CartLineDTO(product_id="missing", quantity=1, price=Decimal("10")),
                ],
                "o"
            )


async def test_empty_cart_rejected(uow, seeded):
    async with uow() as tx:
        with pytest.raises(ValidationError):
            await PricingValidator()(tx, [], "o")


async def test_no_code_keeps_subtotal(uow, seeded):
    async with uow() as tx:
        assert await DiscountEngine()(tx, None, Decimal("200.00")) == (Decimal("200.00"), None)


async def test_percentage_code(uow, seeded):
    async with uow() as tx:
        adjusted, discount_id = await DiscountEngine()(tx, "SAVE20", Decimal("200.00"))
    assert adjusted == Decimal("160.00")
    assert discount_id == "d1"


async def test_fixed_code_clamps_at_zero(uow, seeded):
    async with uow() as tx:
        adjusted, _ = await DiscountEngine()(tx, "FLAT500", Decimal("200.00"))
    assert adjusted == Decimal("0.00")


@pytest.mark.parametrize("code", ["OLD10", "PAUSED", "NOPE"])
async def test_unusable_codes_abort(uow, seeded, code):
    async with uow() as tx:
        with pytest.raises(InvalidDiscountError):
            await DiscountEngine()(tx, code, Decimal("200.00"))


async def test_code_expires_by_clock(uow, seeded):
    engine = DiscountEngine(clock=lambda: utcnow() + timedelta(days=30))
    async with uow() as tx:
        with pytest.raises(InvalidDiscountError):
            await engine(tx, "SAVE20", Decimal("200.00"))
