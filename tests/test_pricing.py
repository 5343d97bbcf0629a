"""
Unit tests for pricing tables and request unit formulas.

Tests formula accuracy, rounding behavior, and lookup errors.
"""

import pytest
from decimal import Decimal

from serverless_cost_calculator.core.errors import InvalidRegion, PricingLookupError
from serverless_cost_calculator.core.pricing import (
    MeteredUnit,
    OperationFormula,
    PricingCatalog,
    PricingTable,
    round_charge,
)
from serverless_cost_calculator.source.models import OperationKind


class TestOperationFormula:
    """Test the base + marginal request unit formula."""

    def test_base_only(self):
        """Verify operations without volume cost only the base."""
        formula = OperationFormula(base_ru=0.125, marginal_ru=1.0, unit_size=65536)
        assert formula.request_units(8, 0, 0) == 1.0

    def test_marginal_bytes(self):
        """Verify bytes are charged per unit_size block."""
        formula = OperationFormula(base_ru=3.0, marginal_ru=3.0, unit_size=1024)
        # 1 * 3 + 2048 / 1024 * 3
        assert formula.request_units(1, 10, 2048) == 9.0

    def test_marginal_rows(self):
        """Verify row-metered formulas ignore bytes."""
        formula = OperationFormula(base_ru=1.0, marginal_ru=0.5, unit=MeteredUnit.ROWS)
        assert formula.request_units(2, 10, 999999) == 2.0 + 5.0

    def test_free_units_per_operation(self):
        """Verify the free allowance scales with operations and never goes negative."""
        formula = OperationFormula(base_ru=1.0, marginal_ru=1.0, unit=MeteredUnit.ROWS, free_units=5)
        assert formula.request_units(2, 12, 0) == 2.0 + 2.0
        assert formula.request_units(2, 3, 0) == 2.0

    def test_negative_parameters_rejected(self):
        """Verify negative formula parameters are invalid."""
        with pytest.raises(ValueError, match="cannot be negative"):
            OperationFormula(base_ru=-1.0, marginal_ru=1.0)

    def test_zero_unit_size_rejected(self):
        """Verify unit_size must be positive."""
        with pytest.raises(ValueError, match="unit_size must be > 0"):
            OperationFormula(base_ru=1.0, marginal_ru=1.0, unit_size=0)


class TestPricingTable:
    """Test pricing table lookups."""

    def test_missing_formula_raises(self):
        """Verify a missing operation kind is an error, not a silent zero."""
        table = PricingTable(
            region="test",
            ru_unit_price=Decimal("0.0000001"),
            storage_price_per_gb_month=Decimal("0.20"),
            formulas={OperationKind.POINT_READ: OperationFormula(0.125, 1.0)},
        )
        with pytest.raises(PricingLookupError, match="range_scan"):
            table.formula_for(OperationKind.RANGE_SCAN)

    def test_egress_request_units(self, us_east):
        """Verify 1 KiB of egress costs one request unit."""
        assert us_east.egress_request_units(2048) == 2.0
        assert us_east.egress_request_units(0) == 0.0

    def test_bundled_prices(self, us_east):
        """Verify the bundled catalog carries per-RU prices."""
        assert us_east.ru_unit_price == Decimal("0.10") / Decimal("1000000")
        assert us_east.storage_price_per_gb_month == Decimal("0.20")
        assert us_east.free_credit == Decimal("6.00")
        assert set(us_east.formulas) == set(OperationKind)


class TestPricingCatalog:
    """Test region resolution."""

    def test_known_region(self, catalog):
        """Verify supported regions resolve."""
        assert catalog.get_region("eu-central-1").storage_price_per_gb_month == Decimal("0.24")

    def test_regions_sorted(self, catalog):
        """Verify the region list is sorted."""
        assert catalog.regions == sorted(catalog.regions)
        assert "us-east-1" in catalog.regions

    def test_unknown_region_raises(self, catalog):
        """Verify unknown regions raise InvalidRegion listing the supported ones."""
        with pytest.raises(InvalidRegion) as exc_info:
            catalog.get_region("mars-north-1")
        assert exc_info.value.region == "mars-north-1"
        assert "us-east-1" in str(exc_info.value)

    def test_empty_catalog(self):
        """Verify an empty catalog rejects every region."""
        with pytest.raises(InvalidRegion):
            PricingCatalog(version="empty", tables={}).get_region("us-east-1")


class TestRounding:
    """Test currency rounding."""

    def test_rounds_up_to_cents(self):
        """Verify charges round UP (conservative bias)."""
        assert round_charge(Decimal("0.001")) == Decimal("0.01")
        assert round_charge(Decimal("1.2501")) == Decimal("1.26")

    def test_exact_cents_unchanged(self):
        """Verify whole cents are kept as they are."""
        assert round_charge(Decimal("2.40")) == Decimal("2.40")
        assert round_charge(Decimal("0")) == Decimal("0.00")
