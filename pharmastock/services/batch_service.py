"""Batch (lot) tracking.

A batch's ``quantity`` is never written directly: every change goes through
``add_movement``, which appends a ``BatchMovement`` row and applies its
signed quantity, so the batch quantity always equals the fold of its ledger.
Batches attached to a size also move that size's stock, logged in
``InventoryLog``.
"""

import logging
import random
from datetime import date, timedelta

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from pharmastock.config import settings
from pharmastock.models.batch import (
    INBOUND_MOVEMENTS,
    BatchMovement,
    BatchStatus,
    MovementType,
    ProductBatch,
    signed_quantity,
)
from pharmastock.models.product import Product, ProductSize
from pharmastock.schemas.batch import BatchCreate
from pharmastock.services.product_service import apply_size_stock_change

logger = logging.getLogger(__name__)


class InsufficientStockError(ValueError):
    """Raised when batches cannot cover a requested quantity."""


def generate_batch_number(prefix: str | None = None, today: date | None = None) -> str:
    today = today or date.today()
    prefix = prefix or settings.BATCH_NUMBER_PREFIX
    return f"{prefix}-{today:%y%m}-{random.randint(0, 9999):04d}"


def _unique_batch_number(db: Session, product_id: str) -> str:
    while True:
        number = generate_batch_number()
        if not get_batch_by_number(db, product_id, number):
            return number


def _validate_quantity(movement_type: MovementType, quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValueError("Movement quantity must be an integer")
    if movement_type == MovementType.ADJUSTMENT:
        if quantity == 0:
            raise ValueError("Adjustment quantity cannot be 0")
    elif quantity <= 0:
        raise ValueError(f"{movement_type.value.capitalize()} quantity must be positive")
    return quantity


def add_movement(
    db: Session,
    batch: ProductBatch,
    movement_type: MovementType | str,
    quantity: int,
    reference_id: str = "",
    reference_type: str = "",
    notes: str = "",
    created_by: str = "",
) -> BatchMovement:
    """Append a ledger entry and apply it to the batch. Flushes, does not commit."""
    movement_type = MovementType(movement_type)
    quantity = _validate_quantity(movement_type, quantity)

    if movement_type == MovementType.SALE and batch.status != BatchStatus.ACTIVE:
        raise ValueError(f"Cannot sell from batch {batch.batch_number} in '{batch.status}' status")

    delta = signed_quantity(movement_type, quantity)
    new_qty = batch.quantity + delta
    if new_qty < 0:
        raise InsufficientStockError(
            f"Batch {batch.batch_number} has {batch.quantity} units; cannot remove {-delta}"
        )

    batch.quantity = new_qty
    if new_qty == 0:
        batch.status = BatchStatus.DEPLETED
    elif batch.status == BatchStatus.DEPLETED:
        batch.status = BatchStatus.ACTIVE

    movement = BatchMovement(
        batch_id=batch.id,
        movement_type=movement_type,
        quantity=quantity,
        balance_after=new_qty,
        reference_id=reference_id,
        reference_type=reference_type,
        notes=notes,
        created_by=created_by,
    )
    db.add(movement)

    if batch.size_id:
        size = db.query(ProductSize).filter(ProductSize.id == batch.size_id).first()
        if size:
            apply_size_stock_change(
                db,
                size,
                delta,
                reason=f"batch_{movement_type.value}",
                reference_id=batch.id,
                note=f"[Batch {batch.batch_number}] {notes}".strip(),
            )

    db.flush()
    logger.info(
        "Batch %s: %s %d -> balance %d", batch.batch_number, movement_type.value, quantity, new_qty
    )
    return movement


def record_movement(
    db: Session,
    batch_id: str,
    movement_type: MovementType | str,
    quantity: int,
    reference_id: str = "",
    reference_type: str = "",
    notes: str = "",
    created_by: str = "",
) -> BatchMovement | None:
    batch = get_batch(db, batch_id)
    if not batch:
        return None
    try:
        movement = add_movement(
            db, batch, movement_type, quantity,
            reference_id=reference_id, reference_type=reference_type,
            notes=notes, created_by=created_by,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(movement)
    return movement


def add_batch(
    db: Session, data: BatchCreate, created_by: str = "", reference_id: str = "", reference_type: str = ""
) -> ProductBatch:
    product = db.query(Product).filter(Product.id == data.product_id).first()
    if not product:
        raise ValueError(f"Product {data.product_id} not found")
    if data.size_id:
        size = db.query(ProductSize).filter(ProductSize.id == data.size_id).first()
        if not size or size.product_id != product.id:
            raise ValueError(f"Size {data.size_id} not found for product {product.sku}")
    elif product.batch_tracked and product.sizes:
        raise ValueError(f"{product.sku} is sold by size; a batch needs a size_id")
    if data.manufacturing_date and data.manufacturing_date >= data.expiry_date:
        raise ValueError("Expiry date must be after the manufacturing date")

    batch_number = data.batch_number.strip() or _unique_batch_number(db, product.id)
    if get_batch_by_number(db, product.id, batch_number):
        raise ValueError(f"Batch {batch_number} already exists for product {product.sku}")

    batch = ProductBatch(
        product_id=product.id,
        size_id=data.size_id,
        batch_number=batch_number,
        lot_number=data.lot_number,
        manufacturing_date=data.manufacturing_date,
        expiry_date=data.expiry_date,
        quantity=0,
        cost_per_unit=data.cost_per_unit,
        supplier_id=data.supplier_id,
        status=data.status,
        notes=data.notes,
    )
    db.add(batch)
    db.flush()

    add_movement(
        db, batch, MovementType.RECEIPT, data.quantity,
        reference_id=reference_id, reference_type=reference_type,
        notes=f"Initial batch receipt: {batch_number}", created_by=created_by,
    )
    return batch


def create_batch(db: Session, data: BatchCreate, created_by: str = "") -> ProductBatch:
    try:
        batch = add_batch(db, data, created_by=created_by)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(batch)
    logger.info("Batch created: %s (%d units)", batch.batch_number, batch.quantity)
    return batch


def get_batch(db: Session, batch_id: str) -> ProductBatch | None:
    return db.query(ProductBatch).filter(ProductBatch.id == batch_id).first()


def get_batch_by_number(db: Session, product_id: str, batch_number: str) -> ProductBatch | None:
    return (
        db.query(ProductBatch)
        .filter(ProductBatch.product_id == product_id, ProductBatch.batch_number == batch_number)
        .first()
    )


def list_product_batches(db: Session, product_id: str, status: BatchStatus | None = None) -> list[ProductBatch]:
    q = db.query(ProductBatch).filter(ProductBatch.product_id == product_id)
    if status:
        q = q.filter(ProductBatch.status == status)
    return q.order_by(ProductBatch.expiry_date.asc(), ProductBatch.received_at.asc()).all()


def get_batch_history(db: Session, batch_id: str) -> list[BatchMovement]:
    return (
        db.query(BatchMovement)
        .filter(BatchMovement.batch_id == batch_id)
        .order_by(BatchMovement.id.desc())
        .all()
    )


def update_batch_status(
    db: Session, batch_id: str, status: BatchStatus, notes: str | None = None, today: date | None = None
) -> ProductBatch | None:
    batch = get_batch(db, batch_id)
    if not batch:
        return None
    if status == BatchStatus.DEPLETED and batch.quantity > 0:
        raise ValueError(f"Batch {batch.batch_number} still holds {batch.quantity} units")
    if status == BatchStatus.ACTIVE:
        if batch.quantity == 0:
            raise ValueError(f"Batch {batch.batch_number} is empty and cannot be activated")
        if batch.is_expired(today):
            raise ValueError(f"Batch {batch.batch_number} expired on {batch.expiry_date}")
    batch.status = status
    if notes is not None:
        batch.notes = notes
    db.commit()
    db.refresh(batch)
    logger.info("Batch %s status updated to %s", batch.batch_number, batch.status)
    return batch


def adjust_batch_quantity(
    db: Session, batch_id: str, delta: int, reason: str = "adjustment", notes: str = "", created_by: str = ""
) -> ProductBatch | None:
    """Correct a batch by ``delta`` units. Adjustment movements record units removed, so
    a positive correction is stored as a negative adjustment."""
    batch = get_batch(db, batch_id)
    if not batch:
        return None
    if delta == 0:
        raise ValueError("Adjustment cannot be 0")
    try:
        add_movement(
            db, batch, MovementType.ADJUSTMENT, -delta,
            reference_type="adjustment", notes=f"{reason}: {notes}".rstrip(": "), created_by=created_by,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(batch)
    return batch


def get_expiring_batches(db: Session, days: int | None = None, today: date | None = None) -> list[dict]:
    today = today or date.today()
    if days is None:
        days = settings.EXPIRY_ALERT_DAYS
    cutoff = today + timedelta(days=days)
    rows = (
        db.query(ProductBatch, Product.name)
        .join(Product, Product.id == ProductBatch.product_id)
        .filter(
            ProductBatch.status == BatchStatus.ACTIVE,
            ProductBatch.quantity > 0,
            ProductBatch.expiry_date <= cutoff,
        )
        .order_by(ProductBatch.expiry_date.asc())
        .all()
    )
    return [
        {
            "batch_id": b.id,
            "product_id": b.product_id,
            "product_name": name,
            "batch_number": b.batch_number,
            "lot_number": b.lot_number,
            "expiry_date": b.expiry_date,
            "days_until_expiry": b.days_until_expiry(today),
            "quantity": b.quantity,
            "status": b.status.value if isinstance(b.status, BatchStatus) else b.status,
        }
        for b, name in rows
    ]


def mark_batch_expired(db: Session, batch_id: str, notes: str = "") -> ProductBatch | None:
    batch = get_batch(db, batch_id)
    if not batch:
        return None
    batch.status = BatchStatus.EXPIRED
    batch.notes = notes or batch.notes or "Batch marked as expired"
    db.commit()
    db.refresh(batch)
    logger.info("Batch %s marked as expired", batch.batch_number)
    return batch


def expire_overdue_batches(db: Session, today: date | None = None) -> list[ProductBatch]:
    """Flip every active batch whose expiry date has been reached to expired."""
    today = today or date.today()
    overdue = (
        db.query(ProductBatch)
        .filter(ProductBatch.status == BatchStatus.ACTIVE, ProductBatch.expiry_date <= today)
        .all()
    )
    for batch in overdue:
        batch.status = BatchStatus.EXPIRED
    db.commit()
    if overdue:
        logger.info("Expired %d overdue batches", len(overdue))
    return overdue


def _ledger_sum():
    return func.coalesce(
        func.sum(
            case(
                (BatchMovement.movement_type.in_(list(INBOUND_MOVEMENTS)), BatchMovement.quantity),
                else_=-BatchMovement.quantity,
            )
        ),
        0,
    )


def ledger_quantity(db: Session, batch_id: str) -> int:
    """Quantity implied by folding the batch's movements."""
    return int(db.query(_ledger_sum()).filter(BatchMovement.batch_id == batch_id).scalar())


def verify_batch_ledger(db: Session, product_id: str | None = None) -> list[dict]:
    """Batches whose stored quantity disagrees with their movement ledger."""
    ledger = (
        db.query(BatchMovement.batch_id.label("batch_id"), _ledger_sum().label("total"))
        .group_by(BatchMovement.batch_id)
        .subquery()
    )
    q = db.query(ProductBatch, func.coalesce(ledger.c.total, 0)).outerjoin(
        ledger, ledger.c.batch_id == ProductBatch.id
    )
    if product_id:
        q = q.filter(ProductBatch.product_id == product_id)

    mismatches = []
    for batch, total in q.all():
        total = int(total)
        if total != batch.quantity:
            mismatches.append({
                "batch_id": batch.id,
                "batch_number": batch.batch_number,
                "product_id": batch.product_id,
                "recorded_quantity": batch.quantity,
                "ledger_quantity": total,
                "difference": batch.quantity - total,
            })
    if mismatches:
        logger.warning("Ledger mismatch on %d batches", len(mismatches))
    return mismatches
