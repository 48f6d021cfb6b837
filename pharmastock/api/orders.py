import asyncio

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from pharmastock.api.auth import get_current_user
from pharmastock.database import get_db
from pharmastock.models.order import Order, OrderStatus, OrderType
from pharmastock.models.user import User
from pharmastock.schemas.order import OrderChargesUpdate, OrderCreate, OrderOut, OrderStatusUpdate
from pharmastock.services import auth_service, order_service
from pharmastock.services.batch_service import InsufficientStockError
from pharmastock.services.webhook_service import build_payload, send_webhook

router = APIRouter(prefix="/orders", tags=["Orders"])


def _fire_webhook(payload: dict):
    """Run async webhook in background."""
    asyncio.run(send_webhook(payload))


def queue_webhook(background_tasks: BackgroundTasks, order: Order, event: str) -> None:
    background_tasks.add_task(_fire_webhook, build_payload(order, event))


@router.post("", response_model=OrderOut, status_code=201)
def create_order(
    data: OrderCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        order = order_service.create_order(db, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    auth_service.log_activity(db, user, "create_order", detail=order.order_number, reference_id=order.id)
    queue_webhook(background_tasks, order, "order_created")
    return order


@router.get("", response_model=list[OrderOut])
def list_orders(
    skip: int = 0,
    limit: int = 100,
    status: OrderStatus | None = None,
    order_type: OrderType | None = None,
    db: Session = Depends(get_db),
):
    return order_service.list_orders(db, skip=skip, limit=limit, status=status, order_type=order_type)


@router.get("/by-number/{order_number}", response_model=OrderOut)
def get_order_by_number(order_number: str, db: Session = Depends(get_db)):
    order = order_service.get_order_by_number(db, order_number)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db)):
    order = order_service.get_order(db, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@router.patch("/{order_id}/charges", response_model=OrderOut)
def update_charges(
    order_id: str, data: OrderChargesUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    try:
        order = order_service.update_order_charges(db, order_id, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not order:
        raise HTTPException(404, "Order not found")
    auth_service.log_activity(db, user, "update_charges", detail=order.order_number, reference_id=order.id)
    return order


@router.post("/{order_id}/confirm", response_model=OrderOut)
def confirm_order(
    order_id: str,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        order = order_service.confirm_order(db, order_id, created_by=user.username)
    except InsufficientStockError as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not order:
        raise HTTPException(404, "Order not found")
    auth_service.log_activity(db, user, "confirm_order", detail=order.order_number, reference_id=order.id)
    queue_webhook(background_tasks, order, "order_confirmed")
    return order


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: str,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        order = order_service.cancel_order(db, order_id, created_by=user.username)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not order:
        raise HTTPException(404, "Order not found")
    auth_service.log_activity(db, user, "cancel_order", detail=order.order_number, reference_id=order.id)
    queue_webhook(background_tasks, order, "order_cancelled")
    return order


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: str,
    data: OrderStatusUpdate,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        order = order_service.update_order_status(db, order_id, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not order:
        raise HTTPException(404, "Order not found")
    auth_service.log_activity(
        db, user, "order_status", detail=f"{order.order_number} -> {data.status.value}", reference_id=order.id
    )
    queue_webhook(background_tasks, order, "order_update")
    return order
