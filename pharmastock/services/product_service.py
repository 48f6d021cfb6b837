import logging

from sqlalchemy.orm import Session

from pharmastock.config import settings
from pharmastock.models.inventory_log import InventoryLog
from pharmastock.models.product import Product, ProductSize
from pharmastock.schemas.product import ProductCreate, ProductUpdate, SizeCreate, SizeStockAdjust, SizeUpdate

logger = logging.getLogger(__name__)


def create_product(db: Session, data: ProductCreate) -> Product:
    if get_product_by_sku(db, data.sku):
        raise ValueError(f"Product with SKU {data.sku} already exists")

    product = Product(
        sku=data.sku,
        name=data.name,
        description=data.description,
        category=data.category,
        batch_tracked=data.batch_tracked,
    )
    db.add(product)
    try:
        db.flush()
        for s_data in data.sizes:
            _add_size(db, product, s_data)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(product)
    logger.info("Created product %s with %d sizes", product.sku, len(product.sizes))
    return product


def _add_size(db: Session, product: Product, data: SizeCreate) -> ProductSize:
    if get_size_by_sku(db, data.sku):
        raise ValueError(f"Size SKU {data.sku} already exists")
    # Lot-tracked stock is only ever created by receiving batches
    opening_stock = 0 if product.batch_tracked else data.stock
    size = ProductSize(
        product_id=product.id,
        sku=data.sku,
        size_value=data.size_value,
        size_unit=data.size_unit,
        price=data.price,
        cost_price=data.cost_price,
        stock=opening_stock,
    )
    db.add(size)
    db.flush()

    if opening_stock > 0:
        db.add(InventoryLog(
            product_id=product.id,
            size_id=size.id,
            change=opening_stock,
            reason="inbound",
            balance_after=opening_stock,
            cost_after=size.cost_price,
            note="Initial stock on size creation",
        ))
    return size


def get_product(db: Session, product_id: str) -> Product | None:
    return db.query(Product).filter(Product.id == product_id).first()


def get_product_by_sku(db: Session, sku: str) -> Product | None:
    return db.query(Product).filter(Product.sku == sku).first()


def list_products(db: Session, skip: int = 0, limit: int = 100, category: str | None = None) -> list[Product]:
    q = db.query(Product)
    if category:
        q = q.filter(Product.category == category)
    return q.order_by(Product.name).offset(skip).limit(limit).all()


def update_product(db: Session, product_id: str, data: ProductUpdate) -> Product | None:
    product = get_product(db, product_id)
    if not product:
        return None
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)
    return product


# --- Size service ---

def create_size(db: Session, product_id: str, data: SizeCreate) -> ProductSize | None:
    product = get_product(db, product_id)
    if not product:
        return None
    try:
        size = _add_size(db, product, data)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(size)
    return size


def get_size(db: Session, size_id: str) -> ProductSize | None:
    return db.query(ProductSize).filter(ProductSize.id == size_id).first()


def get_size_by_sku(db: Session, sku: str) -> ProductSize | None:
    return db.query(ProductSize).filter(ProductSize.sku == sku).first()


def update_size(db: Session, size_id: str, data: SizeUpdate) -> ProductSize | None:
    size = get_size(db, size_id)
    if not size:
        return None
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(size, field, value)
    db.commit()
    db.refresh(size)
    return size


def apply_size_stock_change(
    db: Session,
    size: ProductSize,
    change: int,
    reason: str,
    reference_id: str = "",
    note: str = "",
    cost_after: float | None = None,
) -> InventoryLog:
    """Change a size's stock (and optionally its cost) and log it. Does not commit."""
    new_qty = size.stock + change
    if new_qty < 0:
        raise ValueError(f"Insufficient stock for {size.sku}. Current: {size.stock}, requested change: {change}")
    cost_before = size.cost_price
    size.stock = new_qty
    if cost_after is not None:
        size.cost_price = cost_after
    log = InventoryLog(
        product_id=size.product_id,
        size_id=size.id,
        change=change,
        reason=reason,
        reference_id=reference_id,
        balance_after=new_qty,
        cost_before=cost_before,
        cost_after=size.cost_price,
        note=note,
    )
    db.add(log)
    return log


def adjust_size_stock(db: Session, size_id: str, data: SizeStockAdjust) -> ProductSize | None:
    size = get_size(db, size_id)
    if not size:
        return None
    if size.product.batch_tracked:
        raise ValueError(f"{size.sku} is lot-tracked; adjust its batches instead")
    apply_size_stock_change(db, size, data.quantity, data.reason, note=data.note)
    db.commit()
    db.refresh(size)
    return size


def get_inventory_logs(db: Session, size_id: str) -> list[InventoryLog]:
    return (
        db.query(InventoryLog)
        .filter(InventoryLog.size_id == size_id)
        .order_by(InventoryLog.created_at.desc())
        .all()
    )


def get_low_stock(db: Session, threshold: int | None = None) -> list[ProductSize]:
    if threshold is None:
        threshold = settings.LOW_STOCK_THRESHOLD
    return db.query(ProductSize).filter(ProductSize.stock <= threshold).order_by(ProductSize.stock).all()
