import logging
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

from storefront.domain.models import (
    InventoryOperation, Order, Product, ProductVariant, StockStatus, money, utcnow
)
from storefront.domain.exceptions import ProductNotFoundError, ValidationError, VariantNotFoundError


logger = logging.getLogger(__name__)

SALES_WINDOW = timedelta(days=30)


class InventoryLedger:
    """Атомарные операции над остатками товара"""

    async def adjust(self, uow, product_id: str, quantity: int, operation: InventoryOperation) -> int:
        if quantity < 0:
            raise ValidationError("Количество не может быть отрицательным")

        if operation == InventoryOperation.INCREMENT:
            new_inventory = await uow.products.increment_inventory(product_id, quantity)
        elif operation == InventoryOperation.DECREMENT:
            new_inventory = await uow.products.decrement_inventory(product_id, quantity)
        else:
            new_inventory = await uow.products.set_inventory(product_id, quantity)

        if new_inventory is None:
            raise ProductNotFoundError(product_id)
        return new_inventory

    async def adjust_variant(self, uow, product_id: str, variant_id: str, quantity: int,
                             operation: InventoryOperation) -> int:
        if quantity < 0:
            raise ValidationError("Количество не может быть отрицательным")
        new_quantity = await uow.products.adjust_variant(product_id, variant_id, quantity, operation)
        if new_quantity is None:
            raise VariantNotFoundError(variant_id)
        return new_quantity

    async def commit_order(self, uow, order: Order) -> None:
        """Списывает остатки под подтвержденный заказ"""
        for item in order.items:
            remaining = await uow.products.decrement_inventory(item.product_id, item.quantity)
            logger.info(f"Заказ {order.order_number}: списано {item.quantity} x {item.product_id}, остаток {remaining}")

    async def release_order(self, uow, order: Order) -> None:
        """Возвращает остатки отмененного заказа"""
        for item in order.items:
            await uow.products.increment_inventory(item.product_id, item.quantity)
        logger.info(f"Заказ {order.order_number}: остатки возвращены на склад")


class VariantUpdateDTO(BaseModel):
    variant_id: str
    quantity: int = Field(ge=0)


class AdjustInventoryDTO(BaseModel):
    product_id: str
    inventory: Optional[int] = Field(default=None, ge=0)
    operation: InventoryOperation = InventoryOperation.SET
    variant_updates: List[VariantUpdateDTO] = Field(default_factory=list)


class BulkAdjustmentDTO(BaseModel):
    product_id: str
    quantity: int = Field(ge=0)
    operation: InventoryOperation = InventoryOperation.SET


class AdjustmentResult(BaseModel):
    product_id: str
    success: bool
    previous_inventory: Optional[int] = None
    new_inventory: Optional[int] = None
    error: Optional[str] = None


class InventoryLine(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None
    slug: Optional[str] = None
    category_id: Optional[str] = None
    inventory: int
    variant_stock: int
    total_stock: int
    price: Decimal
    sold_last_30_days: int
    status: StockStatus
    variants: List[ProductVariant]


class InventorySummary(BaseModel):
    total_products: int
    out_of_stock: int
    low_stock: int
    total_value: Decimal
    total_units: int


class InventoryReport(BaseModel):
    inventory: List[InventoryLine]
    summary: InventorySummary


class GetInventoryReportUseCase:
    def __init__(self, unit_of_work, clock=utcnow):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, low_stock: bool = False, category_id: Optional[str] = None) -> InventoryReport:
        async with self._uow() as uow:
            products = await uow.products.list_for_inventory(low_stock=low_stock, category_id=category_id)
            sold = await uow.products.sold_since([p.id for p in products], self._clock() - SALES_WINDOW)

        lines = [
            InventoryLine(
                id=product.id,
                name=product.name,
                sku=product.sku,
                slug=product.slug,
                category_id=product.category_id,
                inventory=product.inventory,
                variant_stock=product.variant_stock,
                total_stock=product.total_stock,
                price=product.price,
                sold_last_30_days=sold.get(product.id, 0),
                status=product.stock_status,
                variants=product.variants
            )
            for product in products
        ]
        summary = InventorySummary(
            total_products=len(lines),
            out_of_stock=sum(1 for line in lines if line.status == StockStatus.OUT_OF_STOCK),
            low_stock=sum(1 for line in lines if line.status in (StockStatus.LOW, StockStatus.CRITICAL)),
            total_value=money(sum((line.price * line.total_stock for line in lines), Decimal(0))),
            total_units=sum(line.total_stock for line in lines)
        )
        return InventoryReport(inventory=lines, summary=summary)


class AdjustInventoryUseCase:
    """Изменение остатков одного товара и его вариантов в одной транзакции"""

    def __init__(self, unit_of_work, ledger: InventoryLedger):
        self._uow = unit_of_work
        self._ledger = ledger

    async def __call__(self, dto: AdjustInventoryDTO) -> Product:
        async with self._uow() as uow:
            if dto.inventory is not None:
                await self._ledger.adjust(uow, dto.product_id, dto.inventory, dto.operation)
            elif not await uow.products.get_by_id(dto.product_id):
                raise ProductNotFoundError(dto.product_id)

            for variant in dto.variant_updates:
                await self._ledger.adjust_variant(
                    uow, dto.product_id, variant.variant_id, variant.quantity, dto.operation
                )

            product = await uow.products.get_by_id(dto.product_id)
            await uow.commit()

        logger.info(f"Остатки товара {dto.product_id} обновлены ({dto.operation.value}): {product.inventory}")
        return product


class BulkAdjustInventoryUseCase:
    """Каждая корректировка независима: ошибка одной не отменяет остальные"""

    def __init__(self, unit_of_work, ledger: InventoryLedger, notifications):
        self._uow = unit_of_work
        self._ledger = ledger
        self._notifications = notifications

    async def __call__(self, adjustments: List[BulkAdjustmentDTO], reason: Optional[str],
                       actor_id: Optional[str] = None) -> List[AdjustmentResult]:
        results = []
        for adjustment in adjustments:
            try:
                async with self._uow() as uow:
                    product = await uow.products.get_by_id(adjustment.product_id)
                    if not product:
                        raise ProductNotFoundError(adjustment.product_id)
                    new_inventory = await self._ledger.adjust(
                        uow, adjustment.product_id, adjustment.quantity, adjustment.operation
                    )
                    await uow.commit()
            except Exception as e:
                logger.error(f"Корректировка остатков {adjustment.product_id} не выполнена: {e}")
                results.append(AdjustmentResult(product_id=adjustment.product_id, success=False, error=str(e)))
                continue

            results.append(
                AdjustmentResult(
                    product_id=adjustment.product_id,
                    success=True,
                    previous_inventory=product.inventory,
                    new_inventory=new_inventory
                )
            )
            await self._notifications.analytics(
                event_type="INVENTORY_ADJUSTMENT",
                event_name="Inventory Adjusted",
                user_id=actor_id,
                page="/admin/inventory",
                metadata={
                    "productId": adjustment.product_id,
                    "operation": adjustment.operation.value,
                    "quantity": adjustment.quantity,
                    "reason": reason or "Manual adjustment",
                    "previousInventory": product.inventory,
                    "newInventory": new_inventory
                }
            )
        return results
