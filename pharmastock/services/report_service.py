import csv
import io
from datetime import date, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from pharmastock.config import settings
from pharmastock.models.batch import BatchMovement, ProductBatch
from pharmastock.models.order import Order, OrderItem, OrderItemSize, OrderStatus, OrderType
from pharmastock.models.product import Product
from pharmastock.services import batch_service

BATCH_CSV_COLUMNS = [
    "product_sku", "product_name", "batch_number", "lot_number", "manufacturing_date",
    "expiry_date", "quantity", "cost_per_unit", "status", "supplier_id",
]


def inventory_summary(db: Session) -> dict:
    products = db.query(Product).all()
    sizes = [s for p in products for s in p.sizes]
    total_units = sum(s.stock for s in sizes)
    cost_value = sum(s.stock * s.effective_cost for s in sizes)
    retail_value = sum(s.stock * s.price for s in sizes)
    low_stock = [s for s in sizes if s.stock <= settings.LOW_STOCK_THRESHOLD]

    return {
        "total_products": len(products),
        "total_sizes": len(sizes),
        "total_units_in_stock": total_units,
        "inventory_value_at_cost": round(cost_value, 2),
        "inventory_value_at_price": round(retail_value, 2),
        "low_stock_count": len(low_stock),
        "low_stock_items": [
            {"sku": s.sku, "name": s.product.name, "size": s.label, "stock": s.stock} for s in low_stock
        ],
        "by_category": _group_by_category(products),
    }


def _group_by_category(products: list[Product]) -> list[dict]:
    cats: dict[str, dict] = {}
    for p in products:
        cat = p.category or "Uncategorized"
        if cat not in cats:
            cats[cat] = {"category": cat, "product_count": 0, "total_units": 0, "total_value": 0.0}
        cats[cat]["product_count"] += 1
        for s in p.sizes:
            cats[cat]["total_units"] += s.stock
            cats[cat]["total_value"] += s.stock * s.effective_cost
    for v in cats.values():
        v["total_value"] = round(v["total_value"], 2)
    return list(cats.values())


def expiry_report(db: Session, days: int = 90, today: date | None = None) -> dict:
    """Active stock expiring within ``days``, bucketed by how soon.

    ``beyond_90_days`` only fills when ``days`` is larger than 90.
    """
    today = today or date.today()
    batches = batch_service.get_expiring_batches(db, days=days, today=today)
    buckets = {"expired": [], "within_30_days": [], "within_60_days": [], "within_90_days": [], "beyond_90_days": []}
    for b in batches:
        d = b["days_until_expiry"]
        if d <= 0:
            buckets["expired"].append(b)
        elif d <= 30:
            buckets["within_30_days"].append(b)
        elif d <= 60:
            buckets["within_60_days"].append(b)
        elif d <= 90:
            buckets["within_90_days"].append(b)
        else:
            buckets["beyond_90_days"].append(b)

    return {
        "as_of": today.isoformat(),
        "window_end": (today + timedelta(days=days)).isoformat(),
        "units_at_risk": sum(b["quantity"] for b in batches),
        "counts": {k: len(v) for k, v in buckets.items()},
        "batches": buckets,
    }


def batch_movement_report(db: Session, product_id: str | None = None, limit: int = 50) -> list[dict]:
    q = (
        db.query(BatchMovement, ProductBatch.batch_number, ProductBatch.product_id)
        .join(ProductBatch, ProductBatch.id == BatchMovement.batch_id)
    )
    if product_id:
        q = q.filter(ProductBatch.product_id == product_id)
    rows = q.order_by(BatchMovement.id.desc()).limit(limit).all()
    return [
        {
            "id": m.id,
            "product_id": pid,
            "batch_number": number,
            "movement_type": m.movement_type.value if hasattr(m.movement_type, "value") else m.movement_type,
            "quantity": m.quantity,
            "signed_quantity": m.signed_quantity,
            "balance_after": m.balance_after,
            "reference_id": m.reference_id,
            "reference_type": m.reference_type,
            "created_by": m.created_by,
            "created_at": m.created_at,
        }
        for m, number, pid in rows
    ]


def ledger_reconciliation(db: Session, product_id: str | None = None) -> dict:
    mismatches = batch_service.verify_batch_ledger(db, product_id=product_id)
    checked = db.query(func.count(ProductBatch.id))
    if product_id:
        checked = checked.filter(ProductBatch.product_id == product_id)
    return {
        "batches_checked": int(checked.scalar()),
        "in_sync": not mismatches,
        "mismatches": mismatches,
    }


def top_products(db: Session, limit: int = 10) -> list[dict]:
    results = (
        db.query(
            OrderItem.product_id,
            OrderItem.name,
            func.sum(OrderItemSize.quantity).label("total_sold"),
            func.sum(OrderItemSize.quantity * OrderItemSize.price).label("total_revenue"),
        )
        .join(OrderItemSize, OrderItemSize.item_id == OrderItem.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            Order.order_type == OrderType.SALE,
            Order.status.notin_([OrderStatus.PENDING, OrderStatus.CANCELLED]),
        )
        .group_by(OrderItem.product_id, OrderItem.name)
        .order_by(func.sum(OrderItemSize.quantity).desc())
        .limit(limit)
        .all()
    )

    return [
        {
            "product_id": r.product_id,
            "name": r.name,
            "total_sold": int(r.total_sold),
            "total_revenue": round(float(r.total_revenue), 2),
        }
        for r in results
    ]


def export_batches_csv(db: Session, product_id: str | None = None) -> str:
    q = db.query(ProductBatch, Product).join(Product, Product.id == ProductBatch.product_id)
    if product_id:
        q = q.filter(ProductBatch.product_id == product_id)
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(BATCH_CSV_COLUMNS)
    for batch, product in q.order_by(Product.sku, ProductBatch.expiry_date).all():
        writer.writerow([
            product.sku,
            product.name,
            batch.batch_number,
            batch.lot_number,
            batch.manufacturing_date.isoformat() if batch.manufacturing_date else "",
            batch.expiry_date.isoformat(),
            batch.quantity,
            "" if batch.cost_per_unit is None else f"{batch.cost_per_unit:.2f}",
            batch.status.value if hasattr(batch.status, "value") else batch.status,
            batch.supplier_id or "",
        ])
    return buf.getvalue()
