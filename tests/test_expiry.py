"""Tests for expiry-date arithmetic."""

from datetime import date, datetime, timedelta

import pytest

from vendorstock.expiry import (
    EXPIRED_DISCOUNT,
    NEAR_EXPIRY_DISCOUNTS,
    days_to_expiry,
    highest_near_expiry_discount,
    is_expired,
    is_near_expiry,
    near_expiry_discount,
    today_in,
)
from vendorstock.schemas import Batch

TODAY = date(2025, 3, 1)


class TestDaysToExpiry:
    """Tests for days_to_expiry."""

    def test_future_date(self) -> None:
        assert days_to_expiry(TODAY, TODAY + timedelta(days=7)) == 7

    def test_same_day_is_zero(self) -> None:
        assert days_to_expiry(TODAY, TODAY) == 0

    def test_past_date_is_negative(self) -> None:
        assert days_to_expiry(TODAY, TODAY - timedelta(days=3)) == -3

    def test_time_of_day_is_ignored(self) -> None:
        late_evening = datetime(2025, 3, 1, 23, 59)
        early_morning = datetime(2025, 3, 2, 0, 1)
        assert days_to_expiry(late_evening, early_morning) == 1
        assert days_to_expiry(late_evening, date(2025, 3, 1)) == 0

    def test_crosses_month_boundary(self) -> None:
        assert days_to_expiry(date(2025, 2, 27), date(2025, 3, 2)) == 3


class TestClassification:
    """Tests for is_expired / is_near_expiry boundaries."""

    @pytest.mark.parametrize("days,expected", [(-5, True), (0, True), (1, False), (30, False)])
    def test_is_expired(self, days: int, expected: bool) -> None:
        assert is_expired(days) is expected

    @pytest.mark.parametrize("days,expected", [(0, False), (1, True), (7, True), (8, False), (-1, False)])
    def test_is_near_expiry_default_threshold(self, days: int, expected: bool) -> None:
        assert is_near_expiry(days) is expected

    def test_is_near_expiry_custom_threshold(self) -> None:
        assert is_near_expiry(10, threshold=14) is True
        assert is_near_expiry(15, threshold=14) is False


class TestNearExpiryDiscount:
    """Tests for the discount table."""

    def test_expired_and_today(self) -> None:
        assert near_expiry_discount(0) == EXPIRED_DISCOUNT == 50
        assert near_expiry_discount(-10) == 50

    def test_table_values(self) -> None:
        assert [near_expiry_discount(d) for d in range(1, 8)] == [40, 30, 20, 15, 12, 10, 8]

    def test_beyond_table_is_zero(self) -> None:
        assert near_expiry_discount(8) == 0
        assert near_expiry_discount(365) == 0

    def test_discounts_shrink_as_expiry_recedes(self) -> None:
        values = [NEAR_EXPIRY_DISCOUNTS[d] for d in sorted(NEAR_EXPIRY_DISCOUNTS)]
        assert values == sorted(values, reverse=True)


class TestHighestNearExpiryDiscount:
    def test_ignores_sold_out_and_expired_batches(self) -> None:
        batches = [
            Batch(batch_number="A", is_near_expiry=True, near_expiry_discount=40, remaining_quantity=0),
            Batch(batch_number="B", is_near_expiry=True, near_expiry_discount=12, remaining_quantity=4),
            Batch(batch_number="C", is_expired=True, near_expiry_discount=50, remaining_quantity=9),
        ]
        assert highest_near_expiry_discount(batches) == 12

    def test_no_batches(self) -> None:
        assert highest_near_expiry_discount([]) == 0


class TestTodayIn:
    def test_known_zone(self) -> None:
        assert isinstance(today_in("Asia/Kolkata"), date)

    def test_unknown_zone_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown timezone"):
            today_in("Mars/Olympus_Mons")
