from datetime import datetime

from pydantic import BaseModel, Field


# --- Size schemas ---

class SizeCreate(BaseModel):
    sku: str
    size_value: str = ""
    size_unit: str = ""
    price: float = Field(0.0, ge=0)
    cost_price: float | None = Field(None, ge=0)
    stock: int = Field(0, ge=0)


class SizeUpdate(BaseModel):
    size_value: str | None = None
    size_unit: str | None = None
    price: float | None = Field(None, ge=0)


class SizeOut(BaseModel):
    id: str
    product_id: str
    sku: str
    size_value: str
    size_unit: str
    price: float
    cost_price: float | None = None
    stock: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SizeStockAdjust(BaseModel):
    quantity: int  # positive to add, negative to remove
    reason: str = "adjustment"
    note: str = ""


# --- Product schemas ---

class ProductCreate(BaseModel):
    sku: str
    name: str
    description: str = ""
    category: str = ""
    batch_tracked: bool = False
    sizes: list[SizeCreate] = []


class ProductUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    category: str | None = None


class ProductOut(BaseModel):
    id: str
    sku: str
    name: str
    description: str
    category: str
    batch_tracked: bool
    total_stock: int = 0
    sizes: list[SizeOut] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class InventoryLogOut(BaseModel):
    id: str
    size_id: str
    change: int
    reason: str
    reference_id: str
    balance_after: int
    cost_before: float | None = None
    cost_after: float | None = None
    note: str
    created_at: datetime

    model_config = {"from_attributes": True}
