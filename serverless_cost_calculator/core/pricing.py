"""
Pricing tables and request unit formulas.

Region-scoped unit prices and the per-operation request unit schedule of the
serverless target. Tables are loaded once by the config loader and passed
explicitly into every cost computation.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from enum import Enum
from typing import Dict, List

from serverless_cost_calculator.core.errors import InvalidRegion, PricingLookupError
from serverless_cost_calculator.source.models import OperationKind

CENT = Decimal("0.01")
KIB = 1024


class MeteredUnit(Enum):
    """Volume dimension a formula charges for beyond the per-operation base."""
    ROWS = "rows"
    BYTES = "bytes"


@dataclass(frozen=True)
class OperationFormula:
    """Request unit formula for one operation kind.

    RU = operations * base_ru
         + max(0, units - free_units * operations) / unit_size * marginal_ru
    """
    base_ru: float  # RU charged per operation
    marginal_ru: float  # RU per unit_size block beyond the free allowance
    unit: MeteredUnit = MeteredUnit.BYTES
    unit_size: int = 1
    free_units: float = 0.0  # Free allowance per operation

    def __post_init__(self):
        """Validate formula parameters."""
        if self.base_ru < 0 or self.marginal_ru < 0 or self.free_units < 0:
            raise ValueError("formula parameters cannot be negative")
        if self.unit_size <= 0:
            raise ValueError("unit_size must be > 0")

    def request_units(self, operations: int, rows: int, byte_count: int) -> float:
        """Request units consumed by a batch of operations of this kind."""
        units = rows if self.unit == MeteredUnit.ROWS else byte_count
        billable = max(0.0, units - self.free_units * operations)
        return operations * self.base_ru + billable / self.unit_size * self.marginal_ru


@dataclass(frozen=True)
class PricingTable:
    """Unit prices and RU formulas for one region."""
    region: str
    ru_unit_price: Decimal  # Price of a single RU
    storage_price_per_gb_month: Decimal
    formulas: Dict[OperationKind, OperationFormula]
    egress_ru_per_kib: float = 0.0
    free_credit: Decimal = Decimal("0")

    def formula_for(self, kind: OperationKind) -> OperationFormula:
        """Get the RU formula for an operation kind.

        Raises:
            PricingLookupError: If the table has no formula for the kind
        """
        if kind not in self.formulas:
            raise PricingLookupError(self.region, kind.value)
        return self.formulas[kind]

    def egress_request_units(self, byte_count: int) -> float:
        return byte_count / KIB * self.egress_ru_per_kib


@dataclass(frozen=True)
class PricingCatalog:
    """Versioned set of pricing tables keyed by region."""
    version: str
    tables: Dict[str, PricingTable]

    @property
    def regions(self) -> List[str]:
        return sorted(self.tables)

    def get_region(self, region: str) -> PricingTable:
        """Get the pricing table for a region.

        Raises:
            InvalidRegion: If the region is not supported
        """
        if region not in self.tables:
            raise InvalidRegion(region, self.tables)
        return self.tables[region]


def round_charge(amount: Decimal) -> Decimal:
    """Round a currency amount UP to whole cents (conservative bias)."""
    return amount.quantize(CENT, rounding=ROUND_UP)
