from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from pharmastock.models.batch import BatchStatus, MovementType


class BatchCreate(BaseModel):
    product_id: str
    size_id: str | None = None
    batch_number: str = ""  # empty = generate one
    lot_number: str = ""
    manufacturing_date: date | None = None
    expiry_date: date
    quantity: int = Field(..., gt=0)
    cost_per_unit: float | None = Field(None, ge=0)
    supplier_id: str | None = None
    status: BatchStatus = BatchStatus.ACTIVE
    notes: str = ""

    @field_validator("status")
    @classmethod
    def receivable_status(cls, v):
        if v in (BatchStatus.DEPLETED, BatchStatus.EXPIRED):
            raise ValueError(f"A batch cannot be received as '{v.value}'")
        return v


class BatchOut(BaseModel):
    id: str
    product_id: str
    size_id: str | None = None
    batch_number: str
    lot_number: str
    manufacturing_date: date | None = None
    expiry_date: date
    quantity: int
    cost_per_unit: float | None = None
    supplier_id: str | None = None
    status: str
    notes: str
    received_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BatchStatusUpdate(BaseModel):
    status: BatchStatus
    notes: str | None = None


class BatchAdjust(BaseModel):
    quantity: int  # positive adds units, negative removes them
    reason: str = "adjustment"
    notes: str = ""


class MovementCreate(BaseModel):
    movement_type: MovementType
    quantity: int
    reference_id: str = ""
    reference_type: str = ""
    notes: str = ""


class MovementOut(BaseModel):
    id: int
    batch_id: str
    movement_type: str
    quantity: int
    balance_after: int
    reference_id: str
    reference_type: str
    notes: str
    created_by: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AllocationRequest(BaseModel):
    product_id: str
    size_id: str | None = None
    quantity: int = Field(..., gt=0)
    reference_id: str = ""
    reference_type: str = ""


class AllocationOut(BaseModel):
    batch_id: str
    batch_number: str
    lot_number: str = ""
    expiry_date: date
    quantity: int


class ExpiringBatchOut(BaseModel):
    batch_id: str
    product_id: str
    product_name: str
    batch_number: str
    lot_number: str = ""
    expiry_date: date
    days_until_expiry: int
    quantity: int
    status: str


class LedgerMismatchOut(BaseModel):
    batch_id: str
    batch_number: str
    product_id: str
    recorded_quantity: int
    ledger_quantity: int
    difference: int
