"""
Derived status and bucket policies.
"""

import pytest

from stockflow.domain.stock_rules import (
    StockBucket, StockStatus, derive_status, plan_add, plan_subtract, validate_amount,
)
from stockflow.exceptions import InsufficientStockError, ValidationError


class TestDeriveStatus:

    @pytest.mark.parametrize("quantity,reorder_level,expected", [
        (0, 10, StockStatus.OUT_OF_STOCK),
        (0, 0, StockStatus.OUT_OF_STOCK),
        (1, 10, StockStatus.LOW_STOCK),
        (10, 10, StockStatus.LOW_STOCK),
        (11, 10, StockStatus.IN_STOCK),
        (1, 0, StockStatus.IN_STOCK),
    ])
    def test_thresholds(self, quantity, reorder_level, expected):
        assert derive_status(quantity, reorder_level) == expected


class TestPlanSubtract:

    def test_picking_bin_first_then_overstock(self):
        """Unspecified bucket drains the picking bin before overstock."""
        assert plan_subtract("i", 3, 10, 5) == (0, 8)

    def test_picking_bin_only_when_enough(self):
        assert plan_subtract("i", 7, 10, 5) == (2, 10)

    def test_total_shortfall_is_rejected(self):
        with pytest.raises(InsufficientStockError) as exc:
            plan_subtract("item-1", 3, 2, 6)
        assert exc.value.requested == 6
        assert exc.value.available == 5

    def test_named_bucket_cannot_borrow_from_the_other(self):
        with pytest.raises(InsufficientStockError):
            plan_subtract("i", 2, 100, 3, StockBucket.PICKING_BIN)
        with pytest.raises(InsufficientStockError):
            plan_subtract("i", 100, 2, 3, StockBucket.OVERSTOCK)

    def test_named_bucket(self):
        assert plan_subtract("i", 5, 5, 5, StockBucket.OVERSTOCK) == (5, 0)


class TestPlanAdd:

    def test_adds_to_named_bucket(self):
        assert plan_add(1, 2, 3, StockBucket.PICKING_BIN) == (4, 2)
        assert plan_add(1, 2, 3, StockBucket.OVERSTOCK) == (1, 5)


class TestValidateAmount:

    @pytest.mark.parametrize("amount", [0, -1, 1.5, "3", True, None])
    def test_rejects_non_positive_and_non_integers(self, amount):
        with pytest.raises(ValidationError):
            validate_amount(amount)

    def test_accepts_positive_int(self):
        assert validate_amount(4) == 4
