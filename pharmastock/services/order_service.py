import json
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from pharmastock.models.batch import BatchMovement, MovementType, ProductBatch
from pharmastock.models.order import Order, OrderItem, OrderItemSize, OrderStatus, OrderType, PaymentStatus
from pharmastock.models.product import Product, ProductSize
from pharmastock.schemas.order import OrderChargesUpdate, OrderCreate, OrderStatusUpdate
from pharmastock.services.allocation_service import allocate_in_session
from pharmastock.services.batch_service import add_movement
from pharmastock.services.product_service import apply_size_stock_change

logger = logging.getLogger(__name__)

ORDER_REFERENCE_TYPE = "order"


def _generate_order_number(order_type: OrderType) -> str:
    prefix = "PO" if order_type == OrderType.PURCHASE else "SO"
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    short = uuid.uuid4().hex[:6].upper()
    return f"{prefix}-{ts}-{short}"


def add_status_history(order: Order, status: str, note: str = "") -> None:
    history = json.loads(order.status_history) if order.status_history else []
    history.append({
        "status": status.value if isinstance(status, OrderStatus) else status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "note": note,
    })
    order.status_history = json.dumps(history)


def recalculate_totals(order: Order) -> None:
    """Recompute subtotal, total and payment status from the lines and charges."""
    subtotal = sum(line.line_total for item in order.items for line in item.sizes)
    total = (
        subtotal
        + (order.tax_amount or 0.0)
        + (order.shipping_cost or 0.0)
        + (order.po_handling_charges or 0.0)
        + (order.po_fred_charges or 0.0)
        - (order.discount_amount or 0.0)
    )
    order.subtotal = round(subtotal, 2)
    order.total_amount = round(max(total, 0.0), 2)

    paid = order.paid_amount or 0.0
    if order.total_amount > 0 and paid >= order.total_amount:
        order.payment_status = PaymentStatus.PAID.value
    elif paid > 0:
        order.payment_status = PaymentStatus.PARTIAL.value
    else:
        order.payment_status = PaymentStatus.UNPAID.value


def create_order(db: Session, data: OrderCreate) -> Order:
    if not data.items:
        raise ValueError("An order needs at least one item")

    order = Order(
        order_number=_generate_order_number(data.order_type),
        order_type=data.order_type,
        customer_name=data.customer_name,
        customer_email=data.customer_email,
        tax_amount=data.tax_amount,
        shipping_cost=data.shipping_cost,
        discount_amount=data.discount_amount,
        paid_amount=0.0,
        po_handling_charges=0.0,
        po_fred_charges=0.0,
        notes=data.notes,
        status=OrderStatus.PENDING,
    )
    db.add(order)

    try:
        for item_data in data.items:
            product = db.query(Product).filter(Product.id == item_data.product_id).first()
            if not product:
                raise ValueError(f"Product {item_data.product_id} not found")
            if not item_data.sizes:
                raise ValueError(f"Item for {product.sku} has no sizes")

            item = OrderItem(product_id=product.id, name=product.name, notes=item_data.notes)
            order.items.append(item)

            for line in item_data.sizes:
                size = db.query(ProductSize).filter(
                    ProductSize.id == line.size_id,
                    ProductSize.product_id == product.id,
                ).first()
                if not size:
                    raise ValueError(f"Size {line.size_id} not found for product {product.sku}")
                if data.order_type == OrderType.PURCHASE:
                    if product.batch_tracked and not line.expiry_date:
                        raise ValueError(f"{size.sku} is lot-tracked; purchase lines need an expiry date")
                    default_price = size.effective_cost
                else:
                    default_price = size.price

                item.sizes.append(OrderItemSize(
                    size_id=size.id,
                    size_value=size.size_value,
                    size_unit=size.size_unit,
                    quantity=line.quantity,
                    price=line.price if line.price is not None else default_price,
                    batch_number=line.batch_number,
                    lot_number=line.lot_number,
                    expiry_date=line.expiry_date,
                ))

        recalculate_totals(order)
        add_status_history(order, OrderStatus.PENDING, "Order created")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Created %s order %s", OrderType(order.order_type).value, order.order_number)
    return order


def get_order(db: Session, order_id: str) -> Order | None:
    return db.query(Order).filter(Order.id == order_id).first()


def get_order_by_number(db: Session, order_number: str) -> Order | None:
    return db.query(Order).filter(Order.order_number == order_number).first()


def list_orders(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    status: OrderStatus | None = None,
    order_type: OrderType | None = None,
) -> list[Order]:
    q = db.query(Order)
    if status:
        q = q.filter(Order.status == status)
    if order_type:
        q = q.filter(Order.order_type == order_type)
    return q.order_by(Order.created_at.desc()).offset(skip).limit(limit).all()


def update_order_charges(db: Session, order_id: str, data: OrderChargesUpdate) -> Order | None:
    order = get_order(db, order_id)
    if not order:
        return None
    if order.status == OrderStatus.CANCELLED:
        raise ValueError("Cannot edit a cancelled order")
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(order, field, value)
    recalculate_totals(order)
    db.commit()
    db.refresh(order)
    return order


def confirm_order(db: Session, order_id: str, created_by: str = "") -> Order | None:
    """Take stock for every line of a pending sales order in one transaction.

    Lot-tracked lines are allocated FEFO across batches; other lines come
    straight off the size's stock.
    """
    order = get_order(db, order_id)
    if not order:
        return None
    if order.order_type != OrderType.SALE:
        raise ValueError("Purchase orders are approved, not confirmed")
    if order.status != OrderStatus.PENDING:
        raise ValueError(f"Cannot confirm order in '{OrderStatus(order.status).value}' status")

    try:
        for item in order.items:
            product = db.query(Product).filter(Product.id == item.product_id).first()
            for line in item.sizes:
                if product.batch_tracked:
                    allocate_in_session(
                        db, product.id, line.quantity, size_id=line.size_id,
                        reference_id=order.id, reference_type=ORDER_REFERENCE_TYPE,
                        created_by=created_by,
                    )
                else:
                    size = db.query(ProductSize).filter(ProductSize.id == line.size_id).first()
                    apply_size_stock_change(
                        db, size, -line.quantity, "order", reference_id=order.id,
                        note=f"Sold on order {order.order_number}",
                    )

        order.status = OrderStatus.CONFIRMED
        add_status_history(order, OrderStatus.CONFIRMED, "Stock allocated")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Confirmed order %s", order.order_number)
    return order


def cancel_order(db: Session, order_id: str, created_by: str = "") -> Order | None:
    order = get_order(db, order_id)
    if not order:
        return None
    if order.order_type != OrderType.SALE:
        raise ValueError("Purchase orders are rejected, not cancelled")
    if order.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED):
        raise ValueError(f"Cannot cancel order in '{OrderStatus(order.status).value}' status")

    try:
        if order.status != OrderStatus.PENDING:
            _restore_stock(db, order, created_by)
        order.status = OrderStatus.CANCELLED
        add_status_history(order, OrderStatus.CANCELLED, "Order cancelled")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Cancelled order %s", order.order_number)
    return order


def _restore_stock(db: Session, order: Order, created_by: str) -> None:
    # Lot-tracked lines: send every unit back to the batch it was drawn from
    sales = (
        db.query(BatchMovement)
        .filter(
            BatchMovement.reference_id == order.id,
            BatchMovement.reference_type == ORDER_REFERENCE_TYPE,
            BatchMovement.movement_type == MovementType.SALE,
        )
        .order_by(BatchMovement.id)
        .all()
    )
    for sale in sales:
        batch = db.query(ProductBatch).filter(ProductBatch.id == sale.batch_id).first()
        add_movement(
            db, batch, MovementType.RETURN, sale.quantity,
            reference_id=order.id, reference_type=ORDER_REFERENCE_TYPE,
            notes=f"Restored from cancelled order {order.order_number}", created_by=created_by,
        )

    for item in order.items:
        product = db.query(Product).filter(Product.id == item.product_id).first()
        if product.batch_tracked:
            continue
        for line in item.sizes:
            size = db.query(ProductSize).filter(ProductSize.id == line.size_id).first()
            apply_size_stock_change(
                db, size, line.quantity, "order_cancelled", reference_id=order.id,
                note=f"Restored from cancelled order {order.order_number}",
            )


def update_order_status(db: Session, order_id: str, data: OrderStatusUpdate) -> Order | None:
    order = get_order(db, order_id)
    if not order:
        return None
    if order.status == OrderStatus.CANCELLED:
        raise ValueError("Cannot change the status of a cancelled order")
    if data.status == OrderStatus.CONFIRMED:
        raise ValueError("Use the confirm action to allocate stock for an order")
    if data.status == OrderStatus.CANCELLED:
        raise ValueError("Use the cancel action to cancel an order")
    if order.status == OrderStatus.PENDING and order.order_type == OrderType.SALE:
        raise ValueError("Confirm the order before changing its fulfilment status")
    order.status = data.status
    add_status_history(order, data.status, data.note)
    db.commit()
    db.refresh(order)
    return order
