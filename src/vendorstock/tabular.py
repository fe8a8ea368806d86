"""Spreadsheet row source and CSV exports for bulk inventory updates."""

import io
import logging
from collections.abc import Iterable
from pathlib import PurePath
from typing import Any, Optional

import pandas as pd

from .exceptions import MalformedFileError
from .schemas import BulkRow, RollbackRecord

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xls")

# Lower-cased header text -> BulkRow field
COLUMN_ALIASES: dict[str, str] = {
    "product name": "product_name",
    "productname": "product_name",
    "product_name": "product_name",
    "name": "product_name",
    "product": "product_name",
    "current stock": "current_stock",
    "currentstock": "current_stock",
    "current_stock": "current_stock",
    "stock": "current_stock",
    "quantity": "current_stock",
    "selling price": "selling_price",
    "sellingprice": "selling_price",
    "selling_price": "selling_price",
    "price": "selling_price",
    "sale price": "selling_price",
    "cost price": "cost_price",
    "costprice": "cost_price",
    "cost_price": "cost_price",
    "cost": "cost_price",
    "min stock level": "min_stock_level",
    "minstocklevel": "min_stock_level",
    "min_stock_level": "min_stock_level",
    "min stock": "min_stock_level",
    "minimum stock": "min_stock_level",
    "max stock level": "max_stock_level",
    "maxstocklevel": "max_stock_level",
    "max_stock_level": "max_stock_level",
    "max stock": "max_stock_level",
    "maximum stock": "max_stock_level",
}

# Export column order and headings
EXPORT_COLUMNS: dict[str, str] = {
    "product_name": "Product Name",
    "current_stock": "Current Stock",
    "selling_price": "Selling Price",
    "cost_price": "Cost Price",
    "min_stock_level": "Min Stock Level",
    "max_stock_level": "Max Stock Level",
}

TEMPLATE_ROWS = [
    ["Sample Product 1", "100", "25.99", "18.50", "10", "500"],
    ["Sample Product 2", "50", "15.99", "12.00", "5", "200"],
    ["Sample Product 3", "0", "39.99", "28.75", "15", "300"],
]


def canonical_column(header: Any) -> Optional[str]:
    """Map a header cell to a BulkRow field, or None if it is not recognised."""
    return COLUMN_ALIASES.get(str(header).strip().lower())


def _read_frame(content: bytes, extension: str) -> pd.DataFrame:
    buffer = io.BytesIO(content)
    if extension == ".csv":
        return pd.read_csv(buffer, dtype=str, keep_default_na=False, skipinitialspace=True)
    # First sheet only
    return pd.read_excel(buffer, dtype=str, keep_default_na=False)


def read_bulk_rows(content: bytes, filename: str, max_rows: Optional[int] = None) -> list[BulkRow]:
    """
    Parse an uploaded spreadsheet into normalized bulk rows.

    Headers are matched case-insensitively against ``COLUMN_ALIASES``;
    unrecognised columns are ignored. Cells are kept as stripped strings so
    the engine decides what is numeric. Completely empty rows are dropped,
    rows with values but no product name are kept.

    Args:
        content: Raw file bytes
        filename: Original file name; its extension selects the parser
        max_rows: Optional upper bound on data rows

    Returns:
        Rows in file order

    Raises:
        MalformedFileError: Unsupported extension, unreadable content, no
            headers, no data rows, or more than ``max_rows`` rows
    """
    extension = PurePath(filename.lower()).suffix
    if extension not in SUPPORTED_EXTENSIONS:
        raise MalformedFileError("Unsupported file format. Please upload CSV or Excel files only.")

    try:
        frame = _read_frame(content, extension)
    except pd.errors.EmptyDataError as e:
        raise MalformedFileError("File is empty") from e
    except Exception as e:  # pandas/openpyxl/xlrd raise a wide range of errors on bad input
        logger.warning(f"Failed to parse {filename}: {e}")
        raise MalformedFileError(f"Failed to parse file: {e}") from e

    columns: dict[Any, str] = {}
    for header in frame.columns:
        field = canonical_column(header)
        if field is not None and field not in columns.values():
            columns[header] = field

    if not columns:
        raise MalformedFileError("File has no recognised headers")

    rows: list[BulkRow] = []
    for record in frame[list(columns)].to_dict(orient="records"):
        values = {}
        for header, field in columns.items():
            cell = record[header]
            text = cell.strip() if isinstance(cell, str) else cell
            values[field] = text if text not in ("", None) else None
        if all(value is None for value in values.values()):
            continue
        rows.append(BulkRow(**values))

    if not rows:
        raise MalformedFileError("No valid data found in file")
    if max_rows is not None and len(rows) > max_rows:
        raise MalformedFileError(f"File has {len(rows)} rows; the limit is {max_rows}")

    logger.info(f"Parsed {len(rows)} rows from {filename}")
    return rows


def _to_csv(rows: list[list[Any]]) -> bytes:
    frame = pd.DataFrame(rows, columns=list(EXPORT_COLUMNS.values()))
    return frame.to_csv(index=False, lineterminator="\n").encode("utf-8")


def export_rollback(records: Iterable[RollbackRecord]) -> bytes:
    """CSV of pre-update values; re-uploading it restores them.

    Fields a record does not cover are left blank so the re-upload leaves
    them untouched.
    """
    rows = [
        [record.product_name]
        + [record.original.get(key, "") for key in list(EXPORT_COLUMNS)[1:]]
        for record in records
    ]
    return _to_csv(rows)


def export_template() -> bytes:
    """Sample CSV showing the expected columns."""
    return _to_csv(TEMPLATE_ROWS)
