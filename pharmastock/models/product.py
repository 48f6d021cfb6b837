import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmastock.database import Base


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    sku: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String, default="")

    # Lot-tracked products only change stock through batch movements
    batch_tracked: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    sizes: Mapped[list["ProductSize"]] = relationship(
        "ProductSize", back_populates="product", cascade="all, delete-orphan"
    )

    @property
    def total_stock(self) -> int:
        return sum(s.stock for s in self.sizes)


class ProductSize(Base):
    __tablename__ = "product_sizes"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String, unique=True, index=True)
    size_value: Mapped[str] = mapped_column(String, default="")
    size_unit: Mapped[str] = mapped_column(String, default="")

    price: Mapped[float] = mapped_column(Float, default=0.0)
    # Weighted-average unit cost; NULL until the first purchase order is approved
    cost_price: Mapped[float | None] = mapped_column(Float, nullable=True, default=None)
    stock: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    product: Mapped["Product"] = relationship("Product", back_populates="sizes")

    @property
    def label(self) -> str:
        return f"{self.size_value} {self.size_unit}".strip()

    @property
    def effective_cost(self) -> float:
        """Cost basis, treating stock without a recorded cost as bought at its selling price."""
        return self.price if self.cost_price is None else self.cost_price
