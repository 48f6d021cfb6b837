from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pharmastock.api.auth import get_current_user
from pharmastock.database import get_db
from pharmastock.models.batch import BatchStatus
from pharmastock.models.user import User
from pharmastock.schemas.batch import (
    AllocationOut,
    AllocationRequest,
    BatchAdjust,
    BatchCreate,
    BatchOut,
    BatchStatusUpdate,
    ExpiringBatchOut,
    LedgerMismatchOut,
    MovementCreate,
    MovementOut,
)
from pharmastock.services import allocation_service, auth_service, batch_service, product_service
from pharmastock.services.batch_service import InsufficientStockError

router = APIRouter(prefix="/batches", tags=["Batches"])


def _stock_error(e: ValueError) -> HTTPException:
    if isinstance(e, InsufficientStockError):
        return HTTPException(409, str(e))
    return HTTPException(400, str(e))


@router.post("", response_model=BatchOut, status_code=201)
def create_batch(data: BatchCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        batch = batch_service.create_batch(db, data, created_by=user.username)
    except ValueError as e:
        raise _stock_error(e)
    auth_service.log_activity(
        db, user, "create_batch", detail=f"{batch.batch_number}: {batch.quantity} units", reference_id=batch.id
    )
    return batch


@router.get("/expiring", response_model=list[ExpiringBatchOut])
def expiring_batches(days: int | None = None, db: Session = Depends(get_db)):
    return batch_service.get_expiring_batches(db, days=days)


@router.post("/expire-overdue", response_model=list[BatchOut])
def expire_overdue(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    expired = batch_service.expire_overdue_batches(db)
    if expired:
        auth_service.log_activity(db, user, "expire_batches", detail=f"Expired {len(expired)} batches")
    return expired


@router.get("/ledger-check", response_model=list[LedgerMismatchOut])
def ledger_check(product_id: str | None = None, db: Session = Depends(get_db)):
    return batch_service.verify_batch_ledger(db, product_id=product_id)


@router.post("/allocate", response_model=list[AllocationOut])
def allocate(data: AllocationRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not product_service.get_product(db, data.product_id):
        raise HTTPException(404, "Product not found")
    try:
        plan = allocation_service.allocate_from_batches(
            db, data.product_id, data.quantity, size_id=data.size_id,
            reference_id=data.reference_id, reference_type=data.reference_type,
            created_by=user.username,
        )
    except ValueError as e:
        raise _stock_error(e)
    auth_service.log_activity(
        db, user, "allocate_stock",
        detail=f"{data.quantity} units across {len(plan)} batches", reference_id=data.reference_id or data.product_id,
    )
    return plan


@router.get("/product/{product_id}", response_model=list[BatchOut])
def list_product_batches(product_id: str, status: BatchStatus | None = None, db: Session = Depends(get_db)):
    return batch_service.list_product_batches(db, product_id, status=status)


@router.get("/product/{product_id}/fefo", response_model=list[BatchOut])
def fefo_batches(product_id: str, size_id: str | None = None, db: Session = Depends(get_db)):
    return allocation_service.get_available_batches_fefo(db, product_id, size_id=size_id)


@router.get("/product/{product_id}/available")
def available_quantity(product_id: str, size_id: str | None = None, db: Session = Depends(get_db)):
    return {
        "product_id": product_id,
        "size_id": size_id,
        "as_of": date.today().isoformat(),
        "available": allocation_service.get_total_available_quantity(db, product_id, size_id=size_id),
    }


@router.get("/product/{product_id}/by-number/{batch_number}", response_model=BatchOut)
def get_batch_by_number(product_id: str, batch_number: str, db: Session = Depends(get_db)):
    batch = batch_service.get_batch_by_number(db, product_id, batch_number)
    if not batch:
        raise HTTPException(404, "Batch not found")
    return batch


@router.get("/{batch_id}", response_model=BatchOut)
def get_batch(batch_id: str, db: Session = Depends(get_db)):
    batch = batch_service.get_batch(db, batch_id)
    if not batch:
        raise HTTPException(404, "Batch not found")
    return batch


@router.get("/{batch_id}/history", response_model=list[MovementOut])
def batch_history(batch_id: str, db: Session = Depends(get_db)):
    if not batch_service.get_batch(db, batch_id):
        raise HTTPException(404, "Batch not found")
    return batch_service.get_batch_history(db, batch_id)


@router.post("/{batch_id}/movements", response_model=MovementOut, status_code=201)
def record_movement(
    batch_id: str, data: MovementCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        movement = batch_service.record_movement(
            db, batch_id, data.movement_type, data.quantity,
            reference_id=data.reference_id, reference_type=data.reference_type,
            notes=data.notes, created_by=user.username,
        )
    except ValueError as e:
        raise _stock_error(e)
    if not movement:
        raise HTTPException(404, "Batch not found")
    auth_service.log_activity(
        db, user, "batch_movement", detail=f"{data.movement_type.value} {data.quantity}", reference_id=batch_id
    )
    return movement


@router.patch("/{batch_id}/status", response_model=BatchOut)
def update_status(
    batch_id: str, data: BatchStatusUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        batch = batch_service.update_batch_status(db, batch_id, data.status, notes=data.notes)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not batch:
        raise HTTPException(404, "Batch not found")
    auth_service.log_activity(db, user, "batch_status", detail=f"{batch.batch_number} -> {data.status.value}", reference_id=batch.id)
    return batch


@router.post("/{batch_id}/adjust", response_model=BatchOut)
def adjust_batch(
    batch_id: str, data: BatchAdjust, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        batch = batch_service.adjust_batch_quantity(
            db, batch_id, data.quantity, reason=data.reason, notes=data.notes, created_by=user.username
        )
    except ValueError as e:
        raise _stock_error(e)
    if not batch:
        raise HTTPException(404, "Batch not found")
    auth_service.log_activity(
        db, user, "adjust_batch", detail=f"{batch.batch_number} {data.quantity:+d} ({data.reason})", reference_id=batch.id
    )
    return batch


@router.post("/{batch_id}/expire", response_model=BatchOut)
def expire_batch(batch_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    batch = batch_service.mark_batch_expired(db, batch_id)
    if not batch:
        raise HTTPException(404, "Batch not found")
    auth_service.log_activity(db, user, "expire_batch", detail=batch.batch_number, reference_id=batch.id)
    return batch
