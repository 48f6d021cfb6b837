from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from pharmastock.api.auth import require_purchase_approver
from pharmastock.api.orders import queue_webhook
from pharmastock.database import get_db
from pharmastock.models.user import User
from pharmastock.schemas.order import OrderOut, PurchaseOrderApprove
from pharmastock.services import auth_service, purchase_order_service

router = APIRouter(prefix="/purchase-orders", tags=["Purchase Orders"])


@router.post("/{order_id}/approve", response_model=OrderOut)
def approve_purchase_order(
    order_id: str,
    background_tasks: BackgroundTasks,
    data: PurchaseOrderApprove | None = None,
    user: User = Depends(require_purchase_approver),
    db: Session = Depends(get_db),
):
    data = data or PurchaseOrderApprove()
    try:
        order = purchase_order_service.approve_purchase_order(
            db, order_id,
            handling_charges=data.handling_charges,
            fred_charges=data.fred_charges,
            created_by=user.username,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not order:
        raise HTTPException(404, "Purchase order not found")
    auth_service.log_activity(db, user, "approve_po", detail=order.order_number, reference_id=order.id)
    queue_webhook(background_tasks, order, "purchase_order_approved")
    return order


@router.post("/{order_id}/reject", response_model=OrderOut)
def reject_purchase_order(
    order_id: str,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_purchase_approver),
    db: Session = Depends(get_db),
):
    try:
        order = purchase_order_service.reject_purchase_order(db, order_id, created_by=user.username)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not order:
        raise HTTPException(404, "Purchase order not found")
    auth_service.log_activity(db, user, "reject_po", detail=order.order_number, reference_id=order.id)
    queue_webhook(background_tasks, order, "purchase_order_rejected")
    return order
