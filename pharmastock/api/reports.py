from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from pharmastock.database import get_db
from pharmastock.services import report_service

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/inventory")
def inventory_report(db: Session = Depends(get_db)):
    return report_service.inventory_summary(db)


@router.get("/expiry")
def expiry_report(days: int = 90, db: Session = Depends(get_db)):
    return report_service.expiry_report(db, days=days)


@router.get("/top-products")
def top_products_report(limit: int = 10, db: Session = Depends(get_db)):
    return report_service.top_products(db, limit=limit)


@router.get("/batch-movements")
def batch_movement_report(product_id: str | None = None, limit: int = 50, db: Session = Depends(get_db)):
    return report_service.batch_movement_report(db, product_id=product_id, limit=limit)


@router.get("/ledger")
def ledger_report(product_id: str | None = None, db: Session = Depends(get_db)):
    return report_service.ledger_reconciliation(db, product_id=product_id)


@router.get("/batches.csv")
def export_batches(product_id: str | None = None, db: Session = Depends(get_db)):
    content = report_service.export_batches_csv(db, product_id=product_id)
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=batches.csv"},
    )
