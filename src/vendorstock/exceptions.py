"""Exception types raised by the inventory engine and store."""

from typing import Optional


class VendorStockError(Exception):
    """Base class for all vendorstock errors."""

    pass


class MalformedFileError(VendorStockError):
    """Raised when an uploaded bulk file cannot be turned into rows.

    Aborts the whole bulk operation before any row is processed.
    """

    pass


class StoreWriteError(VendorStockError):
    """Raised when a batch write against the item store fails.

    None of the queued patches should be considered applied.
    """

    pass


class ItemNotFoundError(VendorStockError):
    """Raised when an inventory item (or one of its batches) does not exist."""

    def __init__(self, message: str, item_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class DuplicateItemError(VendorStockError):
    """Raised when a vendor adds a catalog product it already lists."""

    pass


class ConcurrentModificationError(VendorStockError):
    """Raised when an item's stored version no longer matches the caller's copy."""

    def __init__(self, item_id: int, expected_version: int, actual_version: Optional[int] = None) -> None:
        super().__init__(
            f"Item {item_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.item_id = item_id
        self.expected_version = expected_version
        self.actual_version = actual_version
