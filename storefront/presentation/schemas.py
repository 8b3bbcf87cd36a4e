from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from storefront.domain.models import (
    InventoryOperation, OrderStatus, PaymentMethod, PaymentStatus, StockStatus
)


class CamelModel(BaseModel):
    """JSON в camelCase, как его шлет витрина"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CartItemRequest(CamelModel):
    product_id: str
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)


class CheckoutRequest(CamelModel):
    items: List[CartItemRequest] = Field(min_length=1)
    payment_method: PaymentMethod
    address_id: Optional[str] = None
    discount_code: Optional[str] = None


class VerifyPaymentRequest(CamelModel):
    order_id: str
    payment_id: str
    signature: Optional[str] = None


class RefundRequest(CamelModel):
    order_id: str
    amount: Optional[Decimal] = Field(default=None, gt=0)
    reason: Optional[str] = None


class GuestOrderRequest(CamelModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: str = Field(min_length=1)
    address: str = Field(min_length=1)
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""
    items: List[CartItemRequest] = Field(min_length=1)
    payment_method: PaymentMethod = PaymentMethod.RAZORPAY
    discount_code: Optional[str] = None


class UpdateOrderStatusRequest(CamelModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None


class OrderSummary(CamelModel):
    id: str
    order_number: str
    email: str
    total: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    created_at: datetime


class CheckoutResponse(CamelModel):
    order: OrderSummary
    payment: Optional[dict] = None
    demo: bool = False

    @classmethod
    def from_result(cls, result):
        return cls(order=OrderSummary.model_validate(result.order), payment=result.payment, demo=result.demo)


class OrderItemResponse(CamelModel):
    product_id: str
    quantity: int
    price: Decimal


class OrderResponse(CamelModel):
    id: str
    order_number: str
    email: str
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    total: Decimal
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: datetime
    updated_at: datetime


class GuestOrderResponse(CamelModel):
    order: OrderResponse
    demo: bool = False


class VariantResponse(CamelModel):
    id: str
    size: Optional[str] = None
    color: Optional[str] = None
    sku: Optional[str] = None
    quantity: int


class ProductStockResponse(CamelModel):
    id: str
    name: str
    inventory: int
    variant_stock: int
    total_stock: int
    status: StockStatus = Field(validation_alias="stock_status")
    variants: List[VariantResponse]


class InventoryLineResponse(CamelModel):
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
    variants: List[VariantResponse]


class InventorySummaryResponse(CamelModel):
    total_products: int
    out_of_stock: int
    low_stock: int
    total_value: Decimal
    total_units: int


class InventoryReportResponse(CamelModel):
    inventory: List[InventoryLineResponse]
    summary: InventorySummaryResponse


class VariantUpdateRequest(CamelModel):
    variant_id: str
    quantity: int = Field(ge=0)


class InventoryUpdateRequest(CamelModel):
    product_id: str
    inventory: Optional[int] = Field(default=None, ge=0)
    operation: InventoryOperation = InventoryOperation.SET
    variant_updates: List[VariantUpdateRequest] = Field(default_factory=list)


class BulkAdjustmentRequest(CamelModel):
    product_id: str
    quantity: int = Field(ge=0)
    operation: InventoryOperation = InventoryOperation.SET


class BulkInventoryRequest(CamelModel):
    adjustments: List[BulkAdjustmentRequest] = Field(min_length=1)
    reason: Optional[str] = None


class AdjustmentResultResponse(CamelModel):
    product_id: str
    success: bool
    previous_inventory: Optional[int] = None
    new_inventory: Optional[int] = None
    error: Optional[str] = None


class BulkInventoryResponse(CamelModel):
    results: List[AdjustmentResultResponse]
    succeeded: int
    failed: int


class ErrorResponse(BaseModel):
    detail: str
    order_id: Optional[str] = None
