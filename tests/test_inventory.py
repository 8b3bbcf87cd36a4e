import pytest

from storefront.domain.models import InventoryOperation, StockStatus
from storefront.domain.exceptions import ProductNotFoundError, ValidationError, VariantNotFoundError
from storefront.application.inventory import (
    AdjustInventoryDTO, AdjustInventoryUseCase, BulkAdjustInventoryUseCase, BulkAdjustmentDTO,
    GetInventoryReportUseCase, VariantUpdateDTO
)

from conftest import inventory_of


async def test_decrement_clamps_at_zero(uow, ledger, seeded):
    async with uow() as tx:
        remaining = await ledger.adjust(tx, "p1", 10, InventoryOperation.DECREMENT)
        await tx.commit()

    assert remaining == 0
    assert await inventory_of(seeded, "p1") == 0


async def test_set_and_increment(uow, ledger, seeded):
    async with uow() as tx:
        assert await ledger.adjust(tx, "p1", 7, InventoryOperation.SET) == 7
        assert await ledger.adjust(tx, "p1", 3, InventoryOperation.INCREMENT) == 10
        await tx.commit()


async def test_negative_quantity_and_unknown_product(uow, ledger, seeded):
    async with uow() as tx:
        with pytest.raises(ValidationError):
            await ledger.adjust(tx, "p1", -1, InventoryOperation.SET)
        with pytest.raises(ProductNotFoundError):
            await ledger.adjust(tx, "missing", 1, InventoryOperation.INCREMENT)


async def test_bulk_reports_clamped_value(uow, ledger, channel, seeded):
    use_case = BulkAdjustInventoryUseCase(uow, ledger, channel)

    results = await use_case(
        [BulkAdjustmentDTO(product_id="p1", quantity=5, operation=InventoryOperation.DECREMENT)],
        reason=None,
        actor_id="admin"
    )

    assert results[0].success
    assert (results[0].previous_inventory, results[0].new_inventory) == (3, 0)
    event = channel.events[0]
    assert event["event_type"] == "INVENTORY_ADJUSTMENT"
    assert event["metadata"]["reason"] == "Manual adjustment"


async def test_bulk_failure_does_not_abort_siblings(uow, ledger, channel, seeded):
    use_case = BulkAdjustInventoryUseCase(uow, ledger, channel)

    results = await use_case(
        [
            BulkAdjustmentDTO(product_id="missing", quantity=1, operation=InventoryOperation.INCREMENT),
            BulkAdjustmentDTO(product_id="p2", quantity=5, operation=InventoryOperation.INCREMENT),
        ],
        reason="Stock count"
    )

    assert [r.success for r in results] == [False, True]
    assert "missing" in results[0].error
    assert results[1].new_inventory == 25
    assert await inventory_of(seeded, "p2") == 25
    assert len(channel.events) == 1


async def test_adjust_product_with_variants(uow, ledger, seeded):
    use_case = AdjustInventoryUseCase(uow, ledger)

    product = await use_case(
        AdjustInventoryDTO(
            product_id="p2",
            inventory=4,
            operation=InventoryOperation.DECREMENT,
            variant_updates=[VariantUpdateDTO(variant_id="v1", quantity=5)]
        )
    )

    assert product.inventory == 16
    assert {v.id: v.quantity for v in product.variants} == {"v1": 0, "v2": 1}
    assert product.total_stock == 17


async def test_adjust_unknown_variant_rolls_back(uow, ledger, seeded):
    use_case = AdjustInventoryUseCase(uow, ledger)

    with pytest.raises(VariantNotFoundError):
        await use_case(
            AdjustInventoryDTO(
                product_id="p2",
                inventory=1,
                operation=InventoryOperation.SET,
                variant_updates=[VariantUpdateDTO(variant_id="v3", quantity=1)]
            )
        )
    assert await inventory_of(seeded, "p2") == 20


async def test_report_classifies_total_stock(uow, seeded):
    report = await GetInventoryReportUseCase(uow)()

    lines = {line.id: line for line in report.inventory}
    assert [line.id for line in report.inventory] == ["p3", "p1", "p2"]
    assert lines["p1"].status == StockStatus.CRITICAL
    # База 0, но варианты на складе
    assert lines["p3"].total_stock == 4
    assert lines["p3"].status == StockStatus.CRITICAL
    assert lines["p2"].total_stock == 23
    assert lines["p2"].status == StockStatus.IN_STOCK
    assert report.summary.total_products == 3
    assert report.summary.out_of_stock == 0
    assert report.summary.low_stock == 2
    assert report.summary.total_units == 30


async def test_report_filters(uow, seeded):
    low = await GetInventoryReportUseCase(uow)(low_stock=True)
    assert {line.id for line in low.inventory} == {"p1", "p3"}

    kurtas = await GetInventoryReportUseCase(uow)(category_id="kurtas")
    assert [line.id for line in kurtas.inventory] == ["p2"]
