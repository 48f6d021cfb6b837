import uuid
from datetime import date, datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmastock.database import Base


class BatchStatus(str, PyEnum):
    ACTIVE = "active"
    QUARANTINE = "quarantine"
    RECALLED = "recalled"
    EXPIRED = "expired"
    DEPLETED = "depleted"


class MovementType(str, PyEnum):
    RECEIPT = "receipt"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    DISPOSAL = "disposal"
    RETURN = "return"


INBOUND_MOVEMENTS = frozenset({MovementType.RECEIPT, MovementType.RETURN})


def signed_quantity(movement_type: MovementType | str, quantity: int) -> int:
    """Effect of a movement on its batch: receipts and returns add, everything else subtracts."""
    if MovementType(movement_type) in INBOUND_MOVEMENTS:
        return quantity
    return -quantity


class ProductBatch(Base):
    __tablename__ = "product_batches"
    __table_args__ = (UniqueConstraint("product_id", "batch_number", name="uq_batch_product_number"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    size_id: Mapped[str | None] = mapped_column(String, ForeignKey("product_sizes.id"), nullable=True, index=True)
    batch_number: Mapped[str] = mapped_column(String, nullable=False)
    lot_number: Mapped[str] = mapped_column(String, default="")
    manufacturing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Service-managed: only add_movement writes this
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    cost_per_unit: Mapped[float | None] = mapped_column(Float, nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(
        Enum(BatchStatus, values_callable=lambda x: [e.value for e in x]),
        default=BatchStatus.ACTIVE,
        index=True,
    )
    notes: Mapped[str] = mapped_column(Text, default="")

    received_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    movements: Mapped[list["BatchMovement"]] = relationship(
        "BatchMovement", back_populates="batch", order_by="BatchMovement.id"
    )

    def days_until_expiry(self, today: date | None = None) -> int:
        return (self.expiry_date - (today or date.today())).days

    def is_expired(self, today: date | None = None) -> bool:
        return self.expiry_date <= (today or date.today())


class BatchMovement(Base):
    """Append-only ledger of everything that happened to a batch."""

    __tablename__ = "batch_movements"

    # Integer key keeps ledger order independent of clock resolution
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(String, ForeignKey("product_batches.id"), nullable=False, index=True)
    movement_type: Mapped[str] = mapped_column(
        Enum(MovementType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_id: Mapped[str] = mapped_column(String, default="", index=True)
    reference_type: Mapped[str] = mapped_column(String, default="")
    notes: Mapped[str] = mapped_column(Text, default="")
    created_by: Mapped[str] = mapped_column(String, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    batch: Mapped["ProductBatch"] = relationship("ProductBatch", back_populates="movements")

    @property
    def signed_quantity(self) -> int:
        return signed_quantity(self.movement_type, self.quantity)
