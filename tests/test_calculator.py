"""Tests for the derived-field pipeline and single-item edits."""

from datetime import date, timedelta

import pytest

from vendorstock.calculator import (
    add_stock,
    apply_batch_update,
    apply_update,
    availability_pass,
    deactivate,
    effective_price,
    has_near_expiry_stock,
    pricing_pass,
    recalculate,
    update_batch,
)
from vendorstock.exceptions import ItemNotFoundError
from vendorstock.schemas import (
    AvailabilityStatus,
    Batch,
    BatchInput,
    ExpiryTracking,
    InventoryItem,
    ItemSettings,
    Pricing,
    StockLevels,
)

TODAY = date(2025, 3, 1)


def make_item(**sections) -> InventoryItem:
    return InventoryItem(id=1, vendor_id=1, product_id=1, product_name="Red Apples", **sections)


def tracked(*batches: Batch) -> ExpiryTracking:
    return ExpiryTracking(has_expiry=True, batches=batches)


# Items covering the pipeline's edge cases
EDGE_ITEMS = [
    make_item(),
    make_item(pricing=Pricing(cost_price=10, selling_price=8, discount_percentage=150)),
    make_item(pricing=Pricing(selling_price=0, cost_price=3)),
    make_item(inventory=StockLevels(current_stock=-4, reserved_stock=-1)),
    make_item(inventory=StockLevels(current_stock=3, reserved_stock=10, min_stock_level=200, max_stock_level=50)),
    make_item(
        inventory=StockLevels(current_stock=20, min_stock_level=30, max_stock_level=10),
        settings=ItemSettings(min_order_quantity=9, max_order_quantity=2),
    ),
    make_item(
        inventory=StockLevels(current_stock=99),
        expiry_tracking=tracked(
            Batch(batch_number="A", expiry_date=TODAY + timedelta(days=10), quantity=10, sold_quantity=3),
            Batch(batch_number="B", expiry_date=TODAY + timedelta(days=2), quantity=5, sold_quantity=5),
            Batch(batch_number="C", quantity=4),
        ),
    ),
    make_item(settings=ItemSettings(hide_when_out_of_stock=True)),
]


class TestPricingPass:
    """Tests for price derivation."""

    def test_final_price_and_margin(self) -> None:
        pricing = pricing_pass(Pricing(cost_price=18.5, selling_price=25.99, discount_percentage=10))
        assert pricing.final_price == 23.39
        assert pricing.margin == 7.49
        assert pricing.margin_percentage == 28.82
        assert pricing.has_negative_margin is False

    def test_discount_clamped(self) -> None:
        assert pricing_pass(Pricing(selling_price=10, discount_percentage=150)).discount_percentage == 100
        assert pricing_pass(Pricing(selling_price=10, discount_percentage=-5)).discount_percentage == 0

    def test_negative_margin(self) -> None:
        pricing = pricing_pass(Pricing(cost_price=10, selling_price=8))
        assert pricing.margin == -2
        assert pricing.has_negative_margin is True

    def test_zero_selling_price_has_zero_margin_percentage(self) -> None:
        assert pricing_pass(Pricing(cost_price=3, selling_price=0)).margin_percentage == 0


class TestRecalculateProperties:
    """Properties that hold for every item after recalculation."""

    @pytest.mark.parametrize("item", EDGE_ITEMS)
    def test_idempotent(self, item: InventoryItem) -> None:
        once = recalculate(item, TODAY)
        assert recalculate(once, TODAY) == once

    @pytest.mark.parametrize("item", EDGE_ITEMS)
    def test_invariants(self, item: InventoryItem) -> None:
        result = recalculate(item, TODAY)
        stock = result.inventory
        assert stock.available_stock == max(0, stock.current_stock - stock.reserved_stock)
        assert 0 <= result.pricing.discount_percentage <= 100
        assert stock.min_stock_level <= stock.max_stock_level
        assert stock.reserved_stock <= stock.current_stock
        assert result.settings.min_order_quantity <= result.settings.max_order_quantity

    def test_input_is_not_mutated(self) -> None:
        item = make_item(pricing=Pricing(selling_price=10))
        recalculate(item, TODAY)
        assert item.pricing.final_price == 0


class TestBatchDrivenStock:
    def test_current_stock_follows_batches(self) -> None:
        item = make_item(
            inventory=StockLevels(current_stock=100),
            expiry_tracking=tracked(
                Batch(batch_number="A", quantity=10, sold_quantity=3),
                Batch(batch_number="B", quantity=5, sold_quantity=5),
            ),
        )
        assert recalculate(item, TODAY).inventory.current_stock == 7

    def test_untracked_item_keeps_direct_stock(self) -> None:
        item = make_item(
            inventory=StockLevels(current_stock=100),
            expiry_tracking=ExpiryTracking(has_expiry=False, batches=(Batch(batch_number="A", quantity=1),)),
        )
        assert recalculate(item, TODAY).inventory.current_stock == 100

    def test_batches_fifo_ordered(self) -> None:
        item = make_item(
            expiry_tracking=tracked(
                Batch(batch_number="T10", expiry_date=TODAY + timedelta(days=10)),
                Batch(batch_number="T2", expiry_date=TODAY + timedelta(days=2)),
                Batch(batch_number="NONE"),
                Batch(batch_number="T5", expiry_date=TODAY + timedelta(days=5)),
            )
        )
        result = recalculate(item, TODAY)
        assert [b.batch_number for b in result.expiry_tracking.batches] == ["T2", "T5", "T10", "NONE"]


class TestAvailability:
    """Tests for the availability state machine."""

    def test_out_of_stock(self) -> None:
        result = recalculate(make_item(inventory=StockLevels(current_stock=0)), TODAY)
        assert result.availability.availability_status == AvailabilityStatus.OUT_OF_STOCK
        assert result.availability.is_available is False
        assert result.availability.is_out_of_stock is True

    def test_low_stock_at_minimum(self) -> None:
        result = recalculate(make_item(inventory=StockLevels(current_stock=5, min_stock_level=5)), TODAY)
        assert result.availability.availability_status == AvailabilityStatus.LOW_STOCK
        assert result.availability.is_available is True

    def test_available_above_minimum(self) -> None:
        result = recalculate(make_item(inventory=StockLevels(current_stock=6, min_stock_level=5)), TODAY)
        assert result.availability.availability_status == AvailabilityStatus.AVAILABLE

    def test_discontinued_is_kept(self) -> None:
        item = apply_update(
            make_item(inventory=StockLevels(current_stock=50)),
            {"availability_status": "discontinued"},
            TODAY,
        )
        assert item.availability.availability_status == AvailabilityStatus.DISCONTINUED
        assert item.availability.is_available is False
        restocked = apply_update(item, {"inventory": {"current_stock": 80}}, TODAY)
        assert restocked.availability.availability_status == AvailabilityStatus.DISCONTINUED

    def test_automatic_pass_never_assigns_discontinued(self) -> None:
        for item in EDGE_ITEMS:
            assert availability_pass(item).availability.availability_status != AvailabilityStatus.DISCONTINUED

    def test_hide_when_out_of_stock_deactivates(self) -> None:
        item = make_item(inventory=StockLevels(current_stock=0), settings=ItemSettings(hide_when_out_of_stock=True))
        result = recalculate(item, TODAY)
        assert result.settings.is_active is False

    def test_restock_does_not_reactivate(self) -> None:
        hidden = recalculate(
            make_item(inventory=StockLevels(current_stock=0), settings=ItemSettings(hide_when_out_of_stock=True)),
            TODAY,
        )
        restocked = apply_update(hidden, {"inventory": {"current_stock": 10}}, TODAY)
        assert restocked.settings.is_active is False
        assert restocked.availability.is_available is True

    def test_clamped_min_level_is_reflected_in_status(self) -> None:
        item = make_item(inventory=StockLevels(current_stock=20, min_stock_level=30, max_stock_level=10))
        result = recalculate(item, TODAY)
        assert result.inventory.min_stock_level == 10
        assert result.availability.availability_status == AvailabilityStatus.AVAILABLE


class TestEffectivePrice:
    def _item(self, auto_discount: bool = True, has_expiry: bool = True) -> InventoryItem:
        return recalculate(
            make_item(
                pricing=Pricing(selling_price=100),
                expiry_tracking=ExpiryTracking(
                    has_expiry=has_expiry,
                    batches=(
                        Batch(batch_number="A", expiry_date=TODAY + timedelta(days=3), quantity=5),
                        Batch(batch_number="B", expiry_date=TODAY + timedelta(days=6), quantity=5),
                        Batch(batch_number="GONE", expiry_date=TODAY + timedelta(days=1), quantity=5, sold_quantity=5),
                    ),
                ),
                settings=ItemSettings(auto_discount_near_expiry=auto_discount),
            ),
            TODAY,
        )

    def test_highest_discount_of_batches_with_stock(self) -> None:
        assert effective_price(self._item()) == 80.0

    def test_auto_discount_off(self) -> None:
        assert effective_price(self._item(auto_discount=False)) == 100.0

    def test_untracked_item(self) -> None:
        assert effective_price(self._item(has_expiry=False)) == 100.0

    def test_has_near_expiry_stock(self) -> None:
        assert has_near_expiry_stock(self._item()) is True
        assert has_near_expiry_stock(self._item(has_expiry=False)) is False


class TestApplyUpdate:
    def test_sparse_nested_merge(self) -> None:
        item = recalculate(make_item(pricing=Pricing(cost_price=5, selling_price=10)), TODAY)
        updated = apply_update(item, {"pricing": {"selling_price": 12}}, TODAY)
        assert updated.pricing.cost_price == 5
        assert updated.pricing.selling_price == 12
        assert updated.pricing.margin == 7

    def test_rejects_invalid_section_values(self) -> None:
        with pytest.raises(ValueError):
            apply_update(make_item(), {"inventory": {"current_stock": "lots"}}, TODAY)


class TestAddStock:
    def test_untracked_increments_stock(self) -> None:
        item = recalculate(make_item(inventory=StockLevels(current_stock=3)), TODAY)
        assert add_stock(item, 4, TODAY).inventory.current_stock == 7

    def test_new_batch(self) -> None:
        item = recalculate(make_item(expiry_tracking=tracked()), TODAY)
        result = add_stock(item, 6, TODAY, BatchInput(batch_number="B1", expiry_date=TODAY + timedelta(days=30)))
        assert result.inventory.current_stock == 6
        assert result.expiry_tracking.batches[0].quantity == 6

    def test_existing_batch_accumulates(self) -> None:
        item = recalculate(
            make_item(expiry_tracking=tracked(Batch(batch_number="B1", quantity=5, sold_quantity=2))), TODAY
        )
        result = add_stock(item, 4, TODAY, BatchInput(batch_number="B1"))
        batch = result.expiry_tracking.batches[0]
        assert batch.quantity == 9
        assert batch.sold_quantity == 2
        assert result.inventory.current_stock == 7

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_rejects_non_positive(self, quantity: int) -> None:
        with pytest.raises(ValueError):
            add_stock(make_item(), quantity, TODAY)


class TestBatchEdits:
    def test_apply_batch_update_merge_and_replace(self) -> None:
        item = recalculate(make_item(expiry_tracking=tracked(Batch(batch_number="OLD", quantity=5))), TODAY)
        merged = apply_batch_update(item, [BatchInput(batch_number="NEW", quantity=2)], TODAY)
        assert {b.batch_number for b in merged.expiry_tracking.batches} == {"OLD", "NEW"}
        assert merged.inventory.current_stock == 7
        replaced = apply_batch_update(item, [BatchInput(batch_number="NEW", quantity=2)], TODAY, replace_all=True)
        assert [b.batch_number for b in replaced.expiry_tracking.batches] == ["NEW"]
        assert replaced.inventory.current_stock == 2

    def test_update_batch(self) -> None:
        item = recalculate(make_item(expiry_tracking=tracked(Batch(batch_number="B1", quantity=5))), TODAY)
        result = update_batch(item, "B1", {"sold_quantity": 5}, TODAY)
        assert result.inventory.current_stock == 0
        assert result.availability.availability_status == AvailabilityStatus.OUT_OF_STOCK

    def test_update_unknown_batch(self) -> None:
        with pytest.raises(ItemNotFoundError):
            update_batch(make_item(), "NOPE", {"quantity": 1}, TODAY)


class TestDeactivate:
    def test_soft_remove(self) -> None:
        assert deactivate(make_item(), TODAY).settings.is_active is False
