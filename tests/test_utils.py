"""Tests for utility functions."""

import asyncio
import math

import pytest

from vendorstock.utils import Deadline, is_blank, normalize_product_name, parse_number


class TestNormalizeProductName:
    def test_case_and_whitespace(self):
        assert normalize_product_name("  Red Apples ") == "red apples"
        assert normalize_product_name("RED APPLES") == normalize_product_name("red apples")


class TestIsBlank:
    @pytest.mark.parametrize("value", [None, "", "   ", float("nan")])
    def test_blank_values(self, value):
        assert is_blank(value) is True

    @pytest.mark.parametrize("value", [0, 0.0, "0", "x"])
    def test_non_blank_values(self, value):
        assert is_blank(value) is False


class TestParseNumber:
    """Test cases for parse_number function."""

    def test_numeric_strings(self):
        assert parse_number("25.99") == 25.99
        assert parse_number(" 1,200 ") == 1200.0
        assert parse_number("-3") == -3.0

    def test_native_numbers(self):
        assert parse_number(7) == 7.0
        assert parse_number(2.5) == 2.5

    def test_invalid_input(self):
        """Blank and non-numeric cells return None."""
        assert parse_number("abc") is None
        assert parse_number("") is None
        assert parse_number(None) is None
        assert parse_number(float("nan")) is None
        assert parse_number("inf") is None
        assert parse_number(math.inf) is None

    def test_booleans_are_not_numbers(self):
        assert parse_number(True) is None


class TestDeadline:
    def test_no_limits_never_expires(self):
        assert Deadline().expired() is False

    def test_cancel_event(self):
        event = asyncio.Event()
        deadline = Deadline(cancel_event=event)
        assert deadline.expired() is False
        event.set()
        assert deadline.expired() is True

    def test_timeout(self):
        assert Deadline(timeout=0).expired() is True
        assert Deadline(timeout=3600).expired() is False
