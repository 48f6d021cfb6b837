import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pharmastock.database import Base


class InventoryLog(Base):
    """Tracks every change to a size's stock or cost for audit trail."""

    __tablename__ = "inventory_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    size_id: Mapped[str] = mapped_column(String, ForeignKey("product_sizes.id"), nullable=False, index=True)
    change: Mapped[int] = mapped_column(Integer, nullable=False)  # positive=in, negative=out
    reason: Mapped[str] = mapped_column(String, nullable=False)  # inbound, batch_sale, po_approved, po_rejected, order, ...
    reference_id: Mapped[str] = mapped_column(String, default="", index=True)  # order_id or batch_id
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_before: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_after: Mapped[float | None] = mapped_column(Float, nullable=True)
    note: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
