"""SQLAlchemy database models."""

from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Vendor(Base):
    """Model for vendor accounts."""

    __tablename__ = "vendors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    business_name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Vendor(id={self.id}, business_name='{self.business_name}')>"


class Product(Base):
    """Model for catalog products that vendors can list."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    brand: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    base_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name='{self.name}')>"


class VendorProduct(Base):
    """Model for one vendor's listing of one catalog product.

    ``version`` is the optimistic-concurrency counter; the ORM adds the loaded
    value to the WHERE clause of every UPDATE.
    """

    __tablename__ = "vendor_products"
    __table_args__ = (
        UniqueConstraint("vendor_id", "product_id", name="uq_vendor_product"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    vendor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    # Pricing
    cost_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    selling_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    final_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, index=True)
    margin: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    margin_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    has_negative_margin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Inventory
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    min_stock_level: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_stock_level: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    reserved_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Expiry tracking
    has_expiry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    # Availability
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    is_out_of_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    availability_status: Mapped[str] = mapped_column(String, nullable=False, default="available")

    # Settings
    hide_when_out_of_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_discount_near_expiry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    min_order_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_order_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # Versions are assigned by the store; the ORM only guards the UPDATE
    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    # Relationships
    if TYPE_CHECKING:
        product: Mapped["Product"]
        batches: Mapped[list["ItemBatch"]]
    else:
        product = relationship("Product", lazy="joined")
        vendor = relationship("Vendor")
        batches = relationship(
            "ItemBatch",
            back_populates="item",
            cascade="all, delete-orphan",
            order_by="ItemBatch.position",
            lazy="selectin",
        )

    def __repr__(self) -> str:
        return (
            f"<VendorProduct(id={self.id}, vendor_id={self.vendor_id}, "
            f"product_id={self.product_id}, current_stock={self.current_stock})>"
        )


class ItemBatch(Base):
    """Model for an expiry-dated lot of a vendor product.

    ``position`` preserves the FIFO order computed by the batch reconciler.
    """

    __tablename__ = "item_batches"
    __table_args__ = (
        UniqueConstraint("item_id", "batch_number", name="uq_item_batch_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vendor_products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    batch_number: Mapped[str] = mapped_column(String, nullable=False)
    manufacture_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sold_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remaining_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    days_to_expiry: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_near_expiry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    near_expiry_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    item = relationship("VendorProduct", back_populates="batches")

    def __repr__(self) -> str:
        return f"<ItemBatch(id={self.id}, batch_number='{self.batch_number}', expiry_date={self.expiry_date})>"


class BulkOperationLog(Base):
    """Model for logging bulk update runs and their rollback data."""

    __tablename__ = "bulk_operation_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vendor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    operation: Mapped[str] = mapped_column(String, nullable=False)
    filename: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<BulkOperationLog(id={self.id}, operation='{self.operation}', status='{self.status}')>"
