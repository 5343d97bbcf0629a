"""
Row-based storage cost.
"""

from decimal import Decimal
from typing import Sequence

from serverless_cost_calculator.core.pricing import PricingTable, round_charge
from serverless_cost_calculator.source.models import TableStatistics

BYTES_PER_GB = 1024 ** 3


def stored_bytes(tables: Sequence[TableStatistics]) -> int:
    """Total data plus index bytes across all tables."""
    return sum(table.total_bytes for table in tables)


def storage_charge(tables: Sequence[TableStatistics], pricing: PricingTable) -> Decimal:
    """Monthly storage charge for the schema.

    Empty schemas cost nothing; the charge never decreases as bytes grow.
    """
    gigabytes = Decimal(stored_bytes(tables)) / Decimal(BYTES_PER_GB)
    return round_charge(gigabytes * pricing.storage_price_per_gb_month)
