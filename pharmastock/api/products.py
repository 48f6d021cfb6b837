from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pharmastock.api.auth import get_current_user
from pharmastock.database import get_db
from pharmastock.models.user import User
from pharmastock.schemas.product import (
    InventoryLogOut,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    SizeCreate,
    SizeOut,
    SizeStockAdjust,
    SizeUpdate,
)
from pharmastock.services import auth_service, product_service

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        product = product_service.create_product(db, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    auth_service.log_activity(db, user, "create_product", detail=f"Created {product.sku}", reference_id=product.id)
    return product


@router.get("", response_model=list[ProductOut])
def list_products(skip: int = 0, limit: int = 100, category: str | None = None, db: Session = Depends(get_db)):
    return product_service.list_products(db, skip=skip, limit=limit, category=category)


@router.get("/low-stock", response_model=list[SizeOut])
def low_stock(threshold: int | None = None, db: Session = Depends(get_db)):
    return product_service.get_low_stock(db, threshold)


@router.get("/sizes/{size_id}", response_model=SizeOut)
def get_size(size_id: str, db: Session = Depends(get_db)):
    size = product_service.get_size(db, size_id)
    if not size:
        raise HTTPException(404, "Size not found")
    return size


@router.patch("/sizes/{size_id}", response_model=SizeOut)
def update_size(size_id: str, data: SizeUpdate, db: Session = Depends(get_db)):
    size = product_service.update_size(db, size_id, data)
    if not size:
        raise HTTPException(404, "Size not found")
    return size


@router.post("/sizes/{size_id}/adjust", response_model=SizeOut)
def adjust_size_stock(
    size_id: str, data: SizeStockAdjust, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        size = product_service.adjust_size_stock(db, size_id, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not size:
        raise HTTPException(404, "Size not found")
    auth_service.log_activity(
        db, user, "adjust_stock", detail=f"{size.sku} {data.quantity:+d} ({data.reason})", reference_id=size.id
    )
    return size


@router.get("/sizes/{size_id}/logs", response_model=list[InventoryLogOut])
def size_logs(size_id: str, db: Session = Depends(get_db)):
    if not product_service.get_size(db, size_id):
        raise HTTPException(404, "Size not found")
    return product_service.get_inventory_logs(db, size_id)


@router.get("/by-sku/{sku}", response_model=ProductOut)
def get_product_by_sku(sku: str, db: Session = Depends(get_db)):
    product = product_service.get_product_by_sku(db, sku)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)):
    product = product_service.get_product(db, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(product_id: str, data: ProductUpdate, db: Session = Depends(get_db)):
    product = product_service.update_product(db, product_id, data)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.post("/{product_id}/sizes", response_model=SizeOut, status_code=201)
def create_size(product_id: str, data: SizeCreate, db: Session = Depends(get_db)):
    try:
        size = product_service.create_size(db, product_id, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not size:
        raise HTTPException(404, "Product not found")
    return size
