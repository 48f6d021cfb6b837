"""First-Expired-First-Out allocation of stock across product batches."""

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func
from sqlalchemy.orm import Session

from pharmastock.models.batch import BatchStatus, MovementType, ProductBatch
from pharmastock.services.batch_service import InsufficientStockError, add_movement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    batch_id: str
    batch_number: str
    lot_number: str
    expiry_date: date
    quantity: int


def _available_batches_query(db: Session, product_id: str, size_id: str | None, today: date):
    q = db.query(ProductBatch).filter(
        ProductBatch.product_id == product_id,
        ProductBatch.status == BatchStatus.ACTIVE,
        ProductBatch.quantity > 0,
        ProductBatch.expiry_date > today,
    )
    if size_id:
        q = q.filter(ProductBatch.size_id == size_id)
    return q


def get_available_batches_fefo(
    db: Session,
    product_id: str,
    size_id: str | None = None,
    today: date | None = None,
    lock: bool = False,
) -> list[ProductBatch]:
    """Sellable batches, earliest expiry first (receipt order breaks ties)."""
    q = _available_batches_query(db, product_id, size_id, today or date.today()).order_by(
        ProductBatch.expiry_date.asc(),
        ProductBatch.received_at.asc(),
        ProductBatch.batch_number.asc(),
    )
    if lock:
        q = q.with_for_update()
    return q.all()


def get_total_available_quantity(
    db: Session, product_id: str, size_id: str | None = None, today: date | None = None
) -> int:
    q = _available_batches_query(db, product_id, size_id, today or date.today())
    return int(q.with_entities(func.coalesce(func.sum(ProductBatch.quantity), 0)).scalar())


def plan_fefo_allocation(batches: list[ProductBatch], quantity: int) -> list[Allocation]:
    """Greedily draw ``quantity`` from ``batches`` in the given order.

    ``batches`` must already be in FEFO order. Nothing is written; raises
    InsufficientStockError if the batches cannot cover the full quantity.
    """
    plan = []
    remaining = quantity
    for batch in batches:
        if remaining <= 0:
            break
        take = min(batch.quantity, remaining)
        if take <= 0:
            continue
        plan.append(Allocation(
            batch_id=batch.id,
            batch_number=batch.batch_number,
            lot_number=batch.lot_number,
            expiry_date=batch.expiry_date,
            quantity=take,
        ))
        remaining -= take

    if remaining > 0:
        raise InsufficientStockError(f"Insufficient batch stock. Still need {remaining} units")
    return plan


def allocate_in_session(
    db: Session,
    product_id: str,
    quantity: int,
    size_id: str | None = None,
    reference_id: str = "",
    reference_type: str = "",
    created_by: str = "",
    today: date | None = None,
) -> list[Allocation]:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError("Quantity to allocate must be a positive integer")

    batches = get_available_batches_fefo(db, product_id, size_id=size_id, today=today, lock=True)
    plan = plan_fefo_allocation(batches, quantity)

    by_id = {b.id: b for b in batches}
    for allocation in plan:
        add_movement(
            db,
            by_id[allocation.batch_id],
            MovementType.SALE,
            allocation.quantity,
            reference_id=reference_id,
            reference_type=reference_type,
            notes=f"Allocated to {reference_type or 'order'} {reference_id}" if reference_id else "Stock allocation",
            created_by=created_by,
        )

    logger.info(
        "Allocated %d units of product %s across %d batches", quantity, product_id, len(plan)
    )
    return plan


def allocate_from_batches(
    db: Session,
    product_id: str,
    quantity: int,
    size_id: str | None = None,
    reference_id: str = "",
    reference_type: str = "",
    created_by: str = "",
    today: date | None = None,
) -> list[Allocation]:
    """Allocate ``quantity`` FEFO and record one sale movement per batch drawn.

    All-or-nothing: on any failure no movement is kept.
    """
    try:
        plan = allocate_in_session(
            db, product_id, quantity, size_id=size_id,
            reference_id=reference_id, reference_type=reference_type,
            created_by=created_by, today=today,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return plan
