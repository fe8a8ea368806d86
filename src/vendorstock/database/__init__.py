"""Database package initialization."""

from .crud import (
    create_product,
    create_vendor,
    get_bulk_operation,
    get_product,
    get_vendor,
    get_vendor_by_email,
    list_products,
    log_bulk_operation,
    search_products,
)
from .engine import AsyncSessionLocal, close_db, get_session, init_db
from .models import Base, BulkOperationLog, ItemBatch, Product, Vendor, VendorProduct
from .store import ItemStore, SqlItemStore

__all__ = [
    # Models
    "Base",
    "BulkOperationLog",
    "ItemBatch",
    "Product",
    "Vendor",
    "VendorProduct",
    # Engine
    "AsyncSessionLocal",
    "init_db",
    "close_db",
    "get_session",
    # Store
    "ItemStore",
    "SqlItemStore",
    # CRUD - Vendors
    "create_vendor",
    "get_vendor",
    "get_vendor_by_email",
    # CRUD - Catalog
    "create_product",
    "get_product",
    "list_products",
    "search_products",
    # CRUD - Bulk log
    "log_bulk_operation",
    "get_bulk_operation",
]
