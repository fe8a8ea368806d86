"""Tests for batch merging, refresh and FIFO ordering."""

from datetime import date, timedelta

from vendorstock.batches import (
    batch_stock,
    expiry_classification,
    fifo_order,
    merge_batches,
    reconcile_batches,
    refresh_batch,
)
from vendorstock.schemas import Batch, BatchInput

TODAY = date(2025, 3, 1)


def days(n: int) -> date:
    return TODAY + timedelta(days=n)


class TestRefreshBatch:
    """Tests for per-batch derived fields."""

    def test_expires_today(self) -> None:
        batch = refresh_batch(Batch(batch_number="B1", expiry_date=TODAY, quantity=5), TODAY)
        assert batch.days_to_expiry == 0
        assert batch.is_expired is True
        assert batch.is_near_expiry is False
        assert batch.near_expiry_discount == 50

    def test_seven_days_out(self) -> None:
        batch = refresh_batch(Batch(batch_number="B1", expiry_date=days(7), quantity=5), TODAY)
        assert batch.days_to_expiry == 7
        assert batch.is_near_expiry is True
        assert batch.near_expiry_discount == 8

    def test_eight_days_out(self) -> None:
        batch = refresh_batch(Batch(batch_number="B1", expiry_date=days(8), quantity=5), TODAY)
        assert batch.is_near_expiry is False
        assert batch.near_expiry_discount == 0

    def test_remaining_quantity(self) -> None:
        batch = refresh_batch(Batch(batch_number="B1", quantity=10, sold_quantity=3), TODAY)
        assert batch.remaining_quantity == 7

    def test_oversold_is_capped(self) -> None:
        batch = refresh_batch(Batch(batch_number="B1", quantity=4, sold_quantity=9), TODAY)
        assert batch.sold_quantity == 4
        assert batch.remaining_quantity == 0

    def test_undated_batch_has_no_expiry_fields(self) -> None:
        stale = Batch(batch_number="B1", quantity=3, days_to_expiry=2, is_near_expiry=True, near_expiry_discount=30)
        batch = refresh_batch(stale, TODAY)
        assert batch.days_to_expiry is None
        assert batch.is_near_expiry is False
        assert batch.near_expiry_discount == 0

    def test_custom_threshold(self) -> None:
        batch = refresh_batch(Batch(batch_number="B1", expiry_date=days(10), quantity=1), TODAY, threshold=14)
        assert batch.is_near_expiry is True


class TestFifoOrder:
    def test_sorts_by_expiry_with_undated_last(self) -> None:
        batches = [
            Batch(batch_number="T10", expiry_date=days(10)),
            Batch(batch_number="T2", expiry_date=days(2)),
            Batch(batch_number="NONE", expiry_date=None),
            Batch(batch_number="T5", expiry_date=days(5)),
        ]
        assert [b.batch_number for b in fifo_order(batches)] == ["T2", "T5", "T10", "NONE"]

    def test_undated_batches_keep_input_order(self) -> None:
        batches = [
            Batch(batch_number="X"),
            Batch(batch_number="A", expiry_date=days(1)),
            Batch(batch_number="Y"),
            Batch(batch_number="Z"),
        ]
        assert [b.batch_number for b in fifo_order(batches)] == ["A", "X", "Y", "Z"]


class TestMergeBatches:
    """Tests for merge-by-batch-number semantics."""

    def test_unset_fields_keep_prior_values(self) -> None:
        existing = [Batch(batch_number="B1", expiry_date=days(5), quantity=10, sold_quantity=4)]
        merged = merge_batches(existing, [BatchInput(batch_number="B1", quantity=12)])
        assert merged[0].quantity == 12
        assert merged[0].sold_quantity == 4
        assert merged[0].expiry_date == days(5)

    def test_new_batch_is_appended(self) -> None:
        existing = [Batch(batch_number="B1", quantity=1)]
        merged = merge_batches(existing, [BatchInput(batch_number="B2", quantity=2, expiry_date=days(3))])
        assert [b.batch_number for b in merged] == ["B1", "B2"]
        assert merged[1].quantity == 2

    def test_explicit_null_clears_date(self) -> None:
        existing = [Batch(batch_number="B1", expiry_date=days(5), quantity=3)]
        merged = merge_batches(existing, [BatchInput(batch_number="B1", expiry_date=None)])
        assert merged[0].expiry_date is None

    def test_explicit_null_never_clears_quantity(self) -> None:
        existing = [Batch(batch_number="B1", quantity=3, sold_quantity=1)]
        merged = merge_batches(existing, [BatchInput(batch_number="B1", quantity=None, sold_quantity=None)])
        assert merged[0].quantity == 3
        assert merged[0].sold_quantity == 1

    def test_repeated_batch_number_in_incoming(self) -> None:
        merged = merge_batches(
            [],
            [BatchInput(batch_number="B1", quantity=1), BatchInput(batch_number="B1", sold_quantity=1)],
        )
        assert len(merged) == 1
        assert merged[0].quantity == 1
        assert merged[0].sold_quantity == 1


class TestReconcileBatches:
    def test_merge_mode_refreshes_and_sorts(self) -> None:
        existing = [Batch(batch_number="LATE", expiry_date=days(20), quantity=5)]
        result = reconcile_batches(
            existing, [BatchInput(batch_number="SOON", expiry_date=days(2), quantity=3)], today=TODAY
        )
        assert [b.batch_number for b in result] == ["SOON", "LATE"]
        assert result[0].is_near_expiry is True
        assert result[0].remaining_quantity == 3
        assert result[1].remaining_quantity == 5

    def test_replace_all_discards_existing(self) -> None:
        existing = [Batch(batch_number="OLD", quantity=5)]
        result = reconcile_batches(
            existing, [BatchInput(batch_number="NEW", quantity=1)], replace_all=True, today=TODAY
        )
        assert [b.batch_number for b in result] == ["NEW"]

    def test_returns_tuple(self) -> None:
        assert reconcile_batches([], [], today=TODAY) == ()


class TestBatchStock:
    def test_sums_remaining(self) -> None:
        batches = [Batch(batch_number="A", quantity=10, sold_quantity=3), Batch(batch_number="B", quantity=5, sold_quantity=5)]
        assert batch_stock(batches) == 7


class TestExpiryClassification:
    def test_tracks_sweep_fields_only(self) -> None:
        a = Batch(batch_number="A", is_near_expiry=True, near_expiry_discount=8, days_to_expiry=7)
        b = a.model_copy(update={"days_to_expiry": 6, "quantity": 100})
        assert expiry_classification(a) == expiry_classification(b)
        c = a.model_copy(update={"near_expiry_discount": 10})
        assert expiry_classification(a) != expiry_classification(c)
