"""CRUD operations for vendors, the product catalog and the bulk operation log."""

import json
import logging
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BulkOperationLog, Product, Vendor

logger = logging.getLogger(__name__)


# ===== Vendor Operations =====


async def create_vendor(
    session: AsyncSession, email: str, hashed_password: str, business_name: str
) -> Vendor:
    """Create a new vendor account.

    Args:
        session: Database session
        email: Vendor's login email
        hashed_password: bcrypt hash of the vendor's password
        business_name: Display name of the vendor's business

    Returns:
        The created vendor
    """
    vendor = Vendor(email=email, hashed_password=hashed_password, business_name=business_name)
    session.add(vendor)
    await session.commit()
    await session.refresh(vendor)
    logger.info(f"Created vendor: {vendor.business_name} (id={vendor.id})")
    return vendor


async def get_vendor(session: AsyncSession, vendor_id: int) -> Optional[Vendor]:
    result = await session.execute(select(Vendor).where(Vendor.id == vendor_id))
    return result.scalar_one_or_none()


async def get_vendor_by_email(session: AsyncSession, email: str) -> Optional[Vendor]:
    """Get a vendor by email address.

    Args:
        session: Database session
        email: Email to look up

    Returns:
        The vendor if found, None otherwise
    """
    result = await session.execute(select(Vendor).where(Vendor.email == email))
    return result.scalar_one_or_none()


# ===== Catalog Operations =====


async def create_product(
    session: AsyncSession,
    name: str,
    brand: Optional[str] = None,
    category: Optional[str] = None,
    description: Optional[str] = None,
    base_price: float = 0.0,
) -> Product:
    """Add a product to the shared catalog."""
    product = Product(
        name=name,
        brand=brand,
        category=category,
        description=description,
        base_price=base_price,
        is_active=True,
    )
    session.add(product)
    await session.commit()
    await session.refresh(product)
    logger.info(f"Created product: {product.name} (id={product.id})")
    return product


async def get_product(session: AsyncSession, product_id: int) -> Optional[Product]:
    """Get an active catalog product by ID."""
    result = await session.execute(
        select(Product).where(Product.id == product_id, Product.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def list_products(
    session: AsyncSession,
    category: Optional[str] = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Product], int]:
    """List active catalog products with optional category filter.

    Args:
        session: Database session
        category: Optional category filter (case-insensitive)
        offset: Number of products to skip
        limit: Page size

    Returns:
        Tuple of (products on this page, total matching products)
    """
    query = select(Product).where(Product.is_active.is_(True))
    if category:
        query = query.where(func.lower(Product.category) == category.lower())

    total = await session.scalar(select(func.count()).select_from(query.subquery()))
    result = await session.execute(query.order_by(Product.name).offset(offset).limit(limit))
    return list(result.scalars().all()), total or 0


async def search_products(session: AsyncSession, query: str, limit: int = 20) -> list[Product]:
    """Case-insensitive substring search on name, brand and description.

    Args:
        session: Database session
        query: Search text
        limit: Maximum number of results

    Returns:
        Matching active products ordered by name
    """
    pattern = f"%{query.lower()}%"
    result = await session.execute(
        select(Product)
        .where(
            Product.is_active.is_(True),
            or_(
                func.lower(Product.name).like(pattern),
                func.lower(Product.brand).like(pattern),
                func.lower(Product.description).like(pattern),
            ),
        )
        .order_by(Product.name)
        .limit(limit)
    )
    return list(result.scalars().all())


# ===== Bulk Operation Log =====


async def log_bulk_operation(
    session: AsyncSession,
    vendor_id: int,
    operation: str,
    data: Optional[dict[str, Any]] = None,
    status: str = "COMPLETED",
    filename: Optional[str] = None,
) -> BulkOperationLog:
    """Record a bulk operation run with its summary and rollback data.

    Args:
        session: Database session
        vendor_id: Vendor who ran the operation
        operation: Operation name (e.g., "bulk_inventory_update")
        data: JSON-serializable summary
        status: Outcome (COMPLETED, PARTIAL, FAILED)
        filename: Uploaded file name, if any

    Returns:
        The created log entry
    """
    entry = BulkOperationLog(
        vendor_id=vendor_id,
        operation=operation,
        filename=filename,
        data=json.dumps(data, default=str) if data else None,
        status=status,
    )
    session.add(entry)
    await session.commit()
    await session.refresh(entry)
    logger.info(f"Logged bulk operation: {operation} (id={entry.id}, status={status})")
    return entry


async def get_bulk_operation(
    session: AsyncSession, vendor_id: int, operation_id: int
) -> Optional[BulkOperationLog]:
    """Get a bulk operation log entry, filtered by vendor for security."""
    result = await session.execute(
        select(BulkOperationLog).where(
            BulkOperationLog.id == operation_id,
            BulkOperationLog.vendor_id == vendor_id,
        )
    )
    return result.scalar_one_or_none()
