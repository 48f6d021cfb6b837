"""Purchase order approval and rejection.

Approving a PO merges the received quantity into each size's on-hand stock
and blends its unit cost into the size's weighted-average cost. Rejecting an
approved PO applies the algebraic inverse, so approve-then-reject leaves stock
and cost where they started. Each approval or rejection is one transaction.
"""

import logging

from sqlalchemy.orm import Session

from pharmastock.models.batch import MovementType, ProductBatch
from pharmastock.models.inventory_log import InventoryLog
from pharmastock.models.order import Order, OrderItemSize, OrderStatus, OrderType
from pharmastock.models.product import Product, ProductSize
from pharmastock.schemas.batch import BatchCreate
from pharmastock.services.batch_service import add_batch, add_movement
from pharmastock.services.order_service import add_status_history, get_order, recalculate_totals
from pharmastock.services.product_service import apply_size_stock_change

logger = logging.getLogger(__name__)

PO_REFERENCE_TYPE = "purchase_order"


def weighted_average_cost(old_cost: float, old_qty: int, po_price: float, po_qty: int) -> float:
    total_qty = old_qty + po_qty
    if total_qty <= 0:
        raise ValueError("Cannot average cost over zero units")
    return (old_cost * old_qty + po_price * po_qty) / total_qty


def reverse_weighted_average_cost(cost: float, qty: int, po_price: float, po_qty: int) -> float | None:
    """Undo ``weighted_average_cost``. Returns None when no units would remain,
    where the average is undefined."""
    remaining = qty - po_qty
    if remaining < 0:
        raise ValueError(f"Cannot remove {po_qty} units from {qty}")
    if remaining == 0:
        return None
    return (cost * qty - po_price * po_qty) / remaining


def _get_purchase_order(db: Session, order_id: str) -> Order | None:
    order = get_order(db, order_id)
    if order and order.order_type != OrderType.PURCHASE:
        raise ValueError(f"Order {order.order_number} is not a purchase order")
    return order


def _lines(db: Session, order: Order):
    for item in order.items:
        product = db.query(Product).filter(Product.id == item.product_id).first()
        for line in item.sizes:
            size = db.query(ProductSize).filter(ProductSize.id == line.size_id).first()
            if not size:
                raise ValueError(f"Size {line.size_id} on {order.order_number} no longer exists")
            yield product, size, line


def approve_purchase_order(
    db: Session,
    order_id: str,
    handling_charges: float = 0.0,
    fred_charges: float = 0.0,
    created_by: str = "",
) -> Order | None:
    order = _get_purchase_order(db, order_id)
    if not order:
        return None
    if order.po_approved:
        raise ValueError("This purchase order has already been approved")
    if order.po_rejected:
        raise ValueError("This purchase order was rejected and cannot be approved")

    try:
        for product, size, line in _lines(db, order):
            _approve_line(db, order, product, size, line, created_by)

        order.po_approved = True
        order.po_handling_charges = handling_charges
        order.po_fred_charges = fred_charges
        order.status = OrderStatus.CONFIRMED
        recalculate_totals(order)
        add_status_history(order, OrderStatus.CONFIRMED, "Purchase order approved")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Approved purchase order %s", order.order_number)
    return order


def _approve_line(
    db: Session, order: Order, product: Product, size: ProductSize, line: OrderItemSize, created_by: str
) -> None:
    new_cost = weighted_average_cost(size.effective_cost, size.stock, line.price, line.quantity)
    note = f"[PO {order.order_number}] Received {line.quantity} @ {line.price:.2f}"

    if product.batch_tracked:
        if not line.expiry_date:
            raise ValueError(f"{size.sku} is lot-tracked; the PO line needs an expiry date")
        batch = add_batch(
            db,
            BatchCreate(
                product_id=product.id,
                size_id=size.id,
                batch_number=line.batch_number,
                lot_number=line.lot_number,
                expiry_date=line.expiry_date,
                quantity=line.quantity,
                cost_per_unit=line.price,
                supplier_id=order.customer_name or None,
            ),
            created_by=created_by,
            reference_id=order.id,
            reference_type=PO_REFERENCE_TYPE,
        )
        line.batch_id = batch.id
        line.batch_number = batch.batch_number
        # Stock arrived through the batch receipt; log the cost change on its own
        apply_size_stock_change(db, size, 0, "po_approved", reference_id=order.id, note=note, cost_after=new_cost)
    else:
        apply_size_stock_change(
            db, size, line.quantity, "po_approved", reference_id=order.id, note=note, cost_after=new_cost
        )


def reject_purchase_order(db: Session, order_id: str, created_by: str = "") -> Order | None:
    order = _get_purchase_order(db, order_id)
    if not order:
        return None
    if order.po_rejected:
        raise ValueError("This purchase order has already been rejected")

    try:
        if order.po_approved:
            for product, size, line in _lines(db, order):
                _reverse_line(db, order, product, size, line, created_by)
            note = "Purchase order rejected; received stock reversed"
        else:
            note = "Purchase order rejected"

        order.po_approved = False
        order.po_rejected = True
        order.po_handling_charges = 0.0
        order.po_fred_charges = 0.0
        order.status = OrderStatus.CANCELLED
        recalculate_totals(order)
        add_status_history(order, OrderStatus.CANCELLED, note)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Rejected purchase order %s", order.order_number)
    return order


def _reverse_line(
    db: Session, order: Order, product: Product, size: ProductSize, line: OrderItemSize, created_by: str
) -> None:
    if size.stock < line.quantity:
        raise ValueError(
            f"Cannot reject: {size.sku} has {size.stock} units left but {line.quantity} were received"
        )
    restored = reverse_weighted_average_cost(size.effective_cost, size.stock, line.price, line.quantity)
    if restored is None:
        restored = _cost_before_approval(db, order, size)
    elif restored < 0:
        logger.warning("Reversed cost for %s went negative (%.4f); clamping to 0", size.sku, restored)
        restored = 0.0
    note = f"[PO {order.order_number}] Reversed {line.quantity} @ {line.price:.2f}"

    if product.batch_tracked:
        batch = db.query(ProductBatch).filter(ProductBatch.id == line.batch_id).first()
        if not batch:
            raise ValueError(f"Batch received for {size.sku} on {order.order_number} not found")
        if batch.quantity < line.quantity:
            raise ValueError(
                f"Cannot reject: {line.quantity - batch.quantity} units of batch {batch.batch_number} were already used"
            )
        add_movement(
            db, batch, MovementType.ADJUSTMENT, line.quantity,
            reference_id=order.id, reference_type=PO_REFERENCE_TYPE,
            notes=f"Purchase order {order.order_number} rejected", created_by=created_by,
        )
        log = apply_size_stock_change(db, size, 0, "po_rejected", reference_id=order.id, note=note)
    else:
        log = apply_size_stock_change(db, size, -line.quantity, "po_rejected", reference_id=order.id, note=note)

    size.cost_price = restored
    log.cost_after = restored


def _cost_before_approval(db: Session, order: Order, size: ProductSize) -> float | None:
    approval = (
        db.query(InventoryLog)
        .filter(
            InventoryLog.reference_id == order.id,
            InventoryLog.size_id == size.id,
            InventoryLog.reason == "po_approved",
        )
        # Stock only grows during an approval, so the first entry has the lowest balance
        .order_by(InventoryLog.balance_after.asc())
        .first()
    )
    return approval.cost_before if approval else size.cost_price
