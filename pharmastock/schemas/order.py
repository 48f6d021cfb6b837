import json
from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from pharmastock.models.order import OrderStatus, OrderType


class OrderItemSizeCreate(BaseModel):
    size_id: str
    quantity: int = Field(..., gt=0)
    price: float | None = Field(None, ge=0)  # empty = size's selling price
    batch_number: str = ""
    lot_number: str = ""
    expiry_date: date | None = None


class OrderItemCreate(BaseModel):
    product_id: str
    notes: str = ""
    sizes: list[OrderItemSizeCreate]


class OrderCreate(BaseModel):
    order_type: OrderType = OrderType.SALE
    customer_name: str = ""
    customer_email: str = ""
    items: list[OrderItemCreate]
    tax_amount: float = Field(0.0, ge=0)
    shipping_cost: float = Field(0.0, ge=0)
    discount_amount: float = Field(0.0, ge=0)
    notes: str = ""


class OrderChargesUpdate(BaseModel):
    tax_amount: float | None = Field(None, ge=0)
    shipping_cost: float | None = Field(None, ge=0)
    discount_amount: float | None = Field(None, ge=0)
    paid_amount: float | None = Field(None, ge=0)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: str = ""


class PurchaseOrderApprove(BaseModel):
    handling_charges: float = Field(0.0, ge=0)
    fred_charges: float = Field(0.0, ge=0)


class OrderItemSizeOut(BaseModel):
    id: str
    size_id: str
    size_value: str
    size_unit: str
    quantity: int
    price: float
    batch_number: str = ""
    lot_number: str = ""
    expiry_date: date | None = None
    batch_id: str = ""

    model_config = {"from_attributes": True}


class OrderItemOut(BaseModel):
    id: str
    product_id: str
    name: str
    notes: str
    quantity: int
    sizes: list[OrderItemSizeOut]

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: str
    order_number: str
    order_type: str
    customer_name: str
    customer_email: str
    status: str
    status_history: list[dict] = []
    items: list[OrderItemOut]
    subtotal: float
    tax_amount: float
    shipping_cost: float
    discount_amount: float
    po_handling_charges: float
    po_fred_charges: float
    total_amount: float
    paid_amount: float
    balance_due: float
    payment_status: str
    po_approved: bool
    po_rejected: bool
    notes: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("status_history", mode="before")
    @classmethod
    def parse_status_history(cls, v):
        if isinstance(v, str):
            return json.loads(v) if v else []
        return v
