import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmastock.database import Base


class OrderType(str, PyEnum):
    SALE = "sale"
    PURCHASE = "purchase"


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, PyEnum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    order_type: Mapped[str] = mapped_column(
        Enum(OrderType, values_callable=lambda x: [e.value for e in x]),
        default=OrderType.SALE,
    )
    customer_name: Mapped[str] = mapped_column(String, default="")  # supplier name for purchase orders
    customer_email: Mapped[str] = mapped_column(String, default="")

    status: Mapped[str] = mapped_column(
        Enum(OrderStatus, values_callable=lambda x: [e.value for e in x]),
        default=OrderStatus.PENDING,
    )
    status_history: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of {status, timestamp, note}

    # Pricing, recomputed on every edit
    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    tax_amount: Mapped[float] = mapped_column(Float, default=0.0)
    shipping_cost: Mapped[float] = mapped_column(Float, default=0.0)
    discount_amount: Mapped[float] = mapped_column(Float, default=0.0)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)
    paid_amount: Mapped[float] = mapped_column(Float, default=0.0)
    payment_status: Mapped[str] = mapped_column(String, default=PaymentStatus.UNPAID.value)

    # Purchase order approval
    po_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    po_rejected: Mapped[bool] = mapped_column(Boolean, default=False)
    po_handling_charges: Mapped[float] = mapped_column(Float, default=0.0)
    po_fred_charges: Mapped[float] = mapped_column(Float, default=0.0)

    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    items: Mapped[list["OrderItem"]] = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def is_purchase(self) -> bool:
        return self.order_type == OrderType.PURCHASE

    @property
    def balance_due(self) -> float:
        return round(max(self.total_amount - self.paid_amount, 0.0), 2)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(String, ForeignKey("orders.id"), nullable=False)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    name: Mapped[str] = mapped_column(String, default="")
    notes: Mapped[str] = mapped_column(Text, default="")

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    sizes: Mapped[list["OrderItemSize"]] = relationship(
        "OrderItemSize", back_populates="item", cascade="all, delete-orphan"
    )

    @property
    def quantity(self) -> int:
        return sum(s.quantity for s in self.sizes)


class OrderItemSize(Base):
    __tablename__ = "order_item_sizes"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    item_id: Mapped[str] = mapped_column(String, ForeignKey("order_items.id"), nullable=False)
    size_id: Mapped[str] = mapped_column(String, ForeignKey("product_sizes.id"), nullable=False)
    size_value: Mapped[str] = mapped_column(String, default="")
    size_unit: Mapped[str] = mapped_column(String, default="")
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[float] = mapped_column(Float, default=0.0)

    # Lot details for purchase orders on lot-tracked products
    batch_number: Mapped[str] = mapped_column(String, default="")
    lot_number: Mapped[str] = mapped_column(String, default="")
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    batch_id: Mapped[str] = mapped_column(String, default="")  # batch created when the PO was approved

    item: Mapped["OrderItem"] = relationship("OrderItem", back_populates="sizes")

    @property
    def line_total(self) -> float:
        return self.quantity * self.price
