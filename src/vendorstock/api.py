"""FastAPI REST API for the vendor inventory portal."""

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Annotated, Any, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

# Load environment variables from .env file (find it relative to this file)
_env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(_env_path)

from .auth import (
    DUMMY_HASH,
    AccessTokenResponse,
    RefreshTokenRequest,
    Token,
    TokenData,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    hash_password,
    validate_password,
    verify_password,
)
from .bulk import BulkReconciliationEngine, rollback_rows
from .calculator import effective_price
from .config import settings
from .database.crud import (
    create_vendor,
    get_bulk_operation,
    get_product,
    get_vendor,
    get_vendor_by_email,
    list_products,
    log_bulk_operation,
    search_products,
)
from .database.engine import AsyncSessionLocal, close_db, init_db
from .database.models import Product
from .database.store import SqlItemStore
from .exceptions import (
    ConcurrentModificationError,
    DuplicateItemError,
    ItemNotFoundError,
    MalformedFileError,
    StoreWriteError,
)
from .scheduler import DailyJobScheduler
from .schemas import AvailabilityStatus, BatchInput, InventoryItem, RollbackRecord
from .service import InventoryService
from .sweep import ExpirySweepJob
from .tabular import export_rollback, export_template, read_bulk_rows

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Pydantic models for API
class VendorRegister(BaseModel):
    email: EmailStr = Field(..., description="Vendor login email")
    password: str = Field(..., min_length=8, description="Password (min 8 characters)")
    business_name: str = Field(..., min_length=1, description="Business display name")


class PricingInput(BaseModel):
    cost_price: Optional[float] = Field(None, ge=0)
    selling_price: Optional[float] = Field(None, ge=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)


class StockInput(BaseModel):
    current_stock: Optional[int] = Field(None, ge=0)
    min_stock_level: Optional[int] = Field(None, ge=0)
    max_stock_level: Optional[int] = Field(None, ge=1)
    reserved_stock: Optional[int] = Field(None, ge=0)


class ExpiryInput(BaseModel):
    has_expiry: Optional[bool] = None
    batches: Optional[list[BatchInput]] = None


class SettingsInput(BaseModel):
    hide_when_out_of_stock: Optional[bool] = None
    auto_discount_near_expiry: Optional[bool] = None
    min_order_quantity: Optional[int] = Field(None, ge=1)
    max_order_quantity: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


class ItemDetails(BaseModel):
    pricing: Optional[PricingInput] = None
    inventory: Optional[StockInput] = None
    expiry_tracking: Optional[ExpiryInput] = None
    settings: Optional[SettingsInput] = None

    def changes(self) -> dict[str, Any]:
        """Only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True, exclude={"expected_version", "product_id"})


class ItemCreate(ItemDetails):
    product_id: int = Field(..., description="Catalog product ID")


class ItemUpdate(ItemDetails):
    availability_status: Optional[AvailabilityStatus] = None
    expected_version: Optional[int] = Field(None, description="Reject the update if the item changed since")


class StockAdd(BaseModel):
    quantity: int = Field(..., ge=1)
    batch: Optional[BatchInput] = None


class BatchesUpdate(BaseModel):
    batches: list[BatchInput] = Field(..., min_length=1)
    replace_all: bool = False


class BatchEdit(BaseModel):
    manufacture_date: Optional[date] = None
    expiry_date: Optional[date] = None
    quantity: Optional[int] = Field(None, ge=0)
    sold_quantity: Optional[int] = Field(None, ge=0)


def get_item_store() -> SqlItemStore:
    return SqlItemStore(AsyncSessionLocal)


def get_inventory_service() -> InventoryService:
    return InventoryService(get_item_store(), AsyncSessionLocal, settings)


async def _run_expiry_sweep():
    return await ExpirySweepJob(get_item_store(), settings).run()


sweep_scheduler = DailyJobScheduler(_run_expiry_sweep, name="expiry sweep")


def item_response(item: InventoryItem) -> dict[str, Any]:
    """Serialize an item with its customer-facing price."""
    data = item.model_dump(mode="json")
    data["effective_price"] = effective_price(item)
    return data


def product_response(product: Product) -> dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "brand": product.brand,
        "category": product.category,
        "description": product.description,
        "base_price": product.base_price,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database and scheduler lifecycle."""
    logger.info("Starting Vendor Inventory API...")
    await init_db()
    logger.info("Database initialized")

    if settings.sweep_enabled:
        sweep_scheduler.run_daily_at(settings.sweep_time, settings.sweep_timezone)
    else:
        logger.info("Daily expiry sweep disabled")

    yield
    logger.info("Shutting down...")
    await sweep_scheduler.stop()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title="Vendor Inventory API",
    description="REST API for vendor inventory, expiry tracking and bulk updates",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration from environment
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
ALLOWED_ORIGINS = [origin.strip() for origin in _cors_origins.split(",") if origin.strip()]

# Don't allow wildcard with credentials in production
_is_production = os.getenv("ENV", "development").lower() in ("production", "prod")
if _is_production and "*" in ALLOWED_ORIGINS:
    raise ValueError("CORS_ORIGINS cannot be '*' in production when credentials are enabled")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiting
limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return JSON 429 with Retry-After header."""
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded"},
        headers={"Retry-After": retry_after},
    )


@app.exception_handler(ItemNotFoundError)
async def not_found_handler(request: Request, exc: ItemNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DuplicateItemError)
async def duplicate_handler(request: Request, exc: DuplicateItemError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ConcurrentModificationError)
async def conflict_handler(request: Request, exc: ConcurrentModificationError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "item_id": exc.item_id, "current_version": exc.actual_version},
    )


@app.exception_handler(StoreWriteError)
async def store_write_handler(request: Request, exc: StoreWriteError) -> JSONResponse:
    logger.error(f"Store write failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Failed to save inventory changes"})


@app.get("/health")
async def health_check():
    """Health check endpoint - verifies DB connectivity."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "dependencies": {"database": "healthy"},
            "scheduler": {"expiry_sweep": sweep_scheduler.running},
        }
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "dependencies": {"database": "unhealthy"},
            },
        )


# ===== Authentication =====

# API router mounted at both /api and /api/v1
api_router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


async def get_current_vendor(token: Annotated[Optional[str], Depends(oauth2_scheme)]) -> TokenData:
    """Dependency to get the authenticated vendor from the JWT."""
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_access_token(token)
    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_data


CurrentVendor = Annotated[TokenData, Depends(get_current_vendor)]


@api_router.post("/auth/register", response_model=Token, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(request: Request, vendor_data: VendorRegister):
    """Register a vendor account and return access and refresh tokens."""
    is_valid, error_msg = validate_password(vendor_data.password)
    if not is_valid:
        raise HTTPException(status_code=400, detail=error_msg)

    async with AsyncSessionLocal() as session:
        try:
            vendor = await create_vendor(
                session,
                vendor_data.email,
                hash_password(vendor_data.password),
                vendor_data.business_name,
            )
        except IntegrityError:
            await session.rollback()
            raise HTTPException(status_code=400, detail="Email already registered")

        return Token(
            access_token=create_access_token(vendor.id, vendor.email),
            refresh_token=create_refresh_token(vendor.id, vendor.email),
        )


@api_router.post("/auth/login", response_model=Token)
@limiter.limit("10/minute")
async def login(request: Request, form_data: Annotated[OAuth2PasswordRequestForm, Depends()]):
    """Login and get access/refresh tokens."""
    async with AsyncSessionLocal() as session:
        vendor = await get_vendor_by_email(session, form_data.username)

        # Hash against a dummy when the vendor doesn't exist so timing is uniform
        password_hash = vendor.hashed_password if vendor else DUMMY_HASH
        password_valid = verify_password(form_data.password, password_hash)

        if not vendor or not password_valid:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return Token(
            access_token=create_access_token(vendor.id, vendor.email),
            refresh_token=create_refresh_token(vendor.id, vendor.email),
        )


@api_router.post("/auth/refresh", response_model=AccessTokenResponse)
async def refresh_token(request: RefreshTokenRequest):
    """Get a new access token using a refresh token."""
    token_data = decode_refresh_token(request.refresh_token)
    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AccessTokenResponse(access_token=create_access_token(token_data.vendor_id, token_data.email))


@api_router.get("/auth/me")
async def get_current_vendor_info(current_vendor: CurrentVendor):
    """Get the authenticated vendor's profile."""
    async with AsyncSessionLocal() as session:
        vendor = await get_vendor(session, current_vendor.vendor_id)
        if not vendor:
            raise HTTPException(status_code=404, detail="Vendor not found")
        return {
            "vendor_id": vendor.id,
            "email": vendor.email,
            "business_name": vendor.business_name,
        }


# ===== Catalog Endpoints =====


@api_router.get("/products")
async def get_products(
    current_vendor: CurrentVendor,
    category: Optional[str] = Query(None, description="Filter by category"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Browse the shared product catalog."""
    async with AsyncSessionLocal() as session:
        products, total = await list_products(session, category=category, offset=(page - 1) * limit, limit=limit)
        return {
            "count": len(products),
            "total": total,
            "page": page,
            "pages": (total + limit - 1) // limit,
            "products": [product_response(p) for p in products],
        }


@api_router.get("/products/search")
async def search_catalog(
    current_vendor: CurrentVendor,
    q: str = Query(..., min_length=1, description="Search text"),
    limit: int = Query(20, ge=1, le=100),
):
    """Search the catalog by name, brand or description."""
    async with AsyncSessionLocal() as session:
        products = await search_products(session, q, limit=limit)
        return {"count": len(products), "query": q, "products": [product_response(p) for p in products]}


@api_router.get("/products/{product_id}")
async def get_single_product(current_vendor: CurrentVendor, product_id: int):
    async with AsyncSessionLocal() as session:
        product = await get_product(session, product_id)
        if not product:
            raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
        return product_response(product)


# ===== Inventory Insights =====
# Declared before /inventory/{item_id} so the literal paths win


@api_router.get("/inventory/near-expiry")
async def get_near_expiry_items(current_vendor: CurrentVendor):
    """Items with stock in a batch that expires within the threshold."""
    items = await get_inventory_service().near_expiry_items(current_vendor.vendor_id)
    return {"count": len(items), "items": [item_response(i) for i in items]}


@api_router.get("/inventory/out-of-stock")
async def get_out_of_stock_items(current_vendor: CurrentVendor):
    items = await get_inventory_service().out_of_stock_items(current_vendor.vendor_id)
    return {"count": len(items), "items": [item_response(i) for i in items]}


@api_router.get("/inventory/low-stock")
async def get_low_stock_items(current_vendor: CurrentVendor):
    """Active items at or below their minimum stock level, lowest first."""
    items, summary = await get_inventory_service().low_stock_items(current_vendor.vendor_id)
    return {"items": [item_response(i) for i in items], "summary": summary.model_dump()}


@api_router.post("/inventory/expiry-sweep")
async def trigger_expiry_sweep(current_vendor: CurrentVendor):
    """Run the daily expiry sweep now."""
    logger.info(f"Manual expiry sweep requested by vendor {current_vendor.vendor_id}")
    summary = await sweep_scheduler.run_now()
    return summary.model_dump(mode="json")


# ===== Inventory Endpoints =====


@api_router.get("/inventory")
async def get_inventory(
    current_vendor: CurrentVendor,
    include_inactive: bool = Query(False, description="Include soft-removed items"),
):
    """List the vendor's inventory with totals."""
    items, summary = await get_inventory_service().list_items(current_vendor.vendor_id, include_inactive)
    return {"items": [item_response(i) for i in items], "summary": summary.model_dump()}


@api_router.post("/inventory", status_code=status.HTTP_201_CREATED)
async def add_inventory_item(current_vendor: CurrentVendor, body: ItemCreate):
    """Add a catalog product to the vendor's inventory."""
    try:
        item = await get_inventory_service().add_product(
            current_vendor.vendor_id, body.product_id, body.changes()
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "success", "message": f"Added {item.product_name} to inventory", "item": item_response(item)}


@api_router.get("/inventory/{item_id}")
async def get_inventory_item(current_vendor: CurrentVendor, item_id: int):
    item = await get_inventory_service().get_item(current_vendor.vendor_id, item_id)
    return item_response(item)


@api_router.put("/inventory/{item_id}")
async def update_inventory_item(current_vendor: CurrentVendor, item_id: int, body: ItemUpdate):
    """Sparse update; only sent fields change."""
    changes = body.changes()
    try:
        item = await get_inventory_service().update_item(
            current_vendor.vendor_id, item_id, changes, expected_version=body.expected_version
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "success", "message": f"Updated {item.product_name}", "item": item_response(item)}


@api_router.delete("/inventory/{item_id}")
async def remove_inventory_item(current_vendor: CurrentVendor, item_id: int):
    """Soft-remove an item from the vendor's storefront."""
    item = await get_inventory_service().remove_item(current_vendor.vendor_id, item_id)
    return {"status": "success", "message": f"Removed {item.product_name} from inventory"}


@api_router.post("/inventory/{item_id}/stock")
async def add_item_stock(current_vendor: CurrentVendor, item_id: int, body: StockAdd):
    """Receive stock, optionally into a named batch."""
    try:
        item = await get_inventory_service().add_stock(
            current_vendor.vendor_id, item_id, body.quantity, body.batch
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "success", "message": f"Added {body.quantity} units", "item": item_response(item)}


@api_router.put("/inventory/{item_id}/batches")
async def update_item_batches(current_vendor: CurrentVendor, item_id: int, body: BatchesUpdate):
    """Merge batches by batch number, or replace all batches."""
    try:
        item = await get_inventory_service().update_batches(
            current_vendor.vendor_id, item_id, body.batches, body.replace_all
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "success", "item": item_response(item)}


@api_router.put("/inventory/{item_id}/batches/{batch_number}")
async def update_item_batch(current_vendor: CurrentVendor, item_id: int, batch_number: str, body: BatchEdit):
    try:
        item = await get_inventory_service().update_batch(
            current_vendor.vendor_id, item_id, batch_number, body.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "success", "item": item_response(item)}


# ===== Bulk Operations =====

BULK_UPDATE_OPERATION = "bulk_inventory_update"
BULK_ROLLBACK_OPERATION = "bulk_inventory_rollback"


async def _apply_bulk_rows(vendor_id: int, rows, filename: Optional[str], operation: str) -> dict[str, Any]:
    """Run the bulk engine and record the run in the operation log."""
    engine = BulkReconciliationEngine(get_item_store(), settings)
    try:
        summary = await engine.run(vendor_id, rows)
    except StoreWriteError as e:
        async with AsyncSessionLocal() as session:
            await log_bulk_operation(
                session, vendor_id, operation, {"error": str(e)}, status="FAILED", filename=filename
            )
        raise

    summary.operation = operation
    async with AsyncSessionLocal() as session:
        entry = await log_bulk_operation(
            session,
            vendor_id,
            operation,
            summary.model_dump(mode="json"),
            status="PARTIAL" if summary.partial else "COMPLETED",
            filename=filename,
        )

    return {
        "operation_id": entry.id,
        "results": summary.model_dump(mode="json"),
        "rollback_available": bool(summary.rollback),
        "summary": f"Processed: {summary.processed}, Skipped: {summary.skipped}, Failed: {summary.failed}",
    }


async def _load_rollback(vendor_id: int, operation_id: int) -> list[RollbackRecord]:
    async with AsyncSessionLocal() as session:
        entry = await get_bulk_operation(session, vendor_id, operation_id)
    if not entry:
        raise HTTPException(status_code=404, detail=f"Bulk operation {operation_id} not found")
    data = json.loads(entry.data) if entry.data else {}
    records = [RollbackRecord.model_validate(r) for r in data.get("rollback", [])]
    if not records:
        raise HTTPException(status_code=404, detail="No rollback data for this operation")
    return records


@api_router.post("/bulk/update")
@limiter.limit("10/minute")
async def bulk_update(request: Request, current_vendor: CurrentVendor, file: UploadFile = File(...)):
    """Apply an uploaded CSV/Excel file to the vendor's inventory."""
    content = await file.read()
    if len(content) > settings.bulk_max_file_bytes:
        raise HTTPException(status_code=413, detail="File too large")

    filename = file.filename or ""
    logger.info(f"Processing bulk update file: {filename}")
    try:
        rows = read_bulk_rows(content, filename, max_rows=settings.bulk_max_rows)
    except MalformedFileError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return await _apply_bulk_rows(current_vendor.vendor_id, rows, filename, BULK_UPDATE_OPERATION)


@api_router.get("/bulk/rollback/{operation_id}")
async def download_rollback(current_vendor: CurrentVendor, operation_id: int):
    """Download the pre-update values of a bulk run as a re-uploadable CSV."""
    records = await _load_rollback(current_vendor.vendor_id, operation_id)
    filename = f"inventory_rollback_{datetime.now(timezone.utc).date().isoformat()}.csv"
    return Response(
        content=export_rollback(records),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@api_router.post("/bulk/rollback/{operation_id}")
async def apply_rollback(current_vendor: CurrentVendor, operation_id: int):
    """Restore the values a bulk run overwrote."""
    records = await _load_rollback(current_vendor.vendor_id, operation_id)
    return await _apply_bulk_rows(
        current_vendor.vendor_id, rollback_rows(records), None, BULK_ROLLBACK_OPERATION
    )


@api_router.get("/bulk/template")
async def download_template(current_vendor: CurrentVendor):
    return Response(
        content=export_template(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="inventory_template.csv"'},
    )


# ===== Mount API router at both /api and /api/v1 =====
app.include_router(api_router, prefix="/api/v1")
app.include_router(api_router, prefix="/api")


def run_api():
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec B104


if __name__ == "__main__":
    run_api()
