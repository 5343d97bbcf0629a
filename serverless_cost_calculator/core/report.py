"""
Report synthesis.

Merges request unit and storage charges with every note raised upstream
into the single CostEstimate the engine returns.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Sequence, Tuple

from serverless_cost_calculator.core.extrapolation import RateProjection
from serverless_cost_calculator.core.notes import Note
from serverless_cost_calculator.core.pricing import PricingTable
from serverless_cost_calculator.core.request_units import (
    SECONDS_PER_MONTH,
    monthly_request_unit_charge,
)


@dataclass(frozen=True)
class ChargeRange:
    """Monthly charge with its low/high bounds; equal bounds mean a point estimate."""
    expected: Decimal
    low: Decimal
    high: Decimal

    def __post_init__(self):
        if not self.low <= self.expected <= self.high:
            raise ValueError("charge range must satisfy low <= expected <= high")

    @property
    def is_range(self) -> bool:
        return self.low != self.high

    @classmethod
    def point(cls, amount: Decimal) -> "ChargeRange":
        return cls(expected=amount, low=amount, high=amount)


@dataclass(frozen=True)
class CostEstimate:
    """Projected monthly cost of running the schema on the serverless target.

    The total is always the request unit charge plus the storage charge.
    Free credit is reported next to it and only subtracted in
    ``billable_total``.
    """
    schema: str
    region: str
    request_units: ChargeRange
    storage: Decimal
    notes: Tuple[Note, ...]
    monthly_request_units: float
    stored_bytes: int
    free_credit: Decimal = Decimal("0")
    sampled: bool = False

    @property
    def total(self) -> Decimal:
        return self.request_units.expected + self.storage

    @property
    def total_range(self) -> ChargeRange:
        return ChargeRange(
            expected=self.total,
            low=self.request_units.low + self.storage,
            high=self.request_units.high + self.storage,
        )

    @property
    def billable_total(self) -> Decimal:
        return max(self.total - self.free_credit, Decimal("0.00"))

    @property
    def low_confidence(self) -> bool:
        return any(note.is_low_confidence for note in self.notes)

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation for JSON and YAML output."""
        return {
            "schema": self.schema,
            "region": self.region,
            "sampled": self.sampled,
            "workload": {
                "monthly_request_units": self.monthly_request_units,
                "stored_bytes": self.stored_bytes,
            },
            "estimation": {
                "request_units_cost": _range_to_dict(self.request_units),
                "storage_cost": float(self.storage),
                "total": float(self.total),
                "free_credit": float(self.free_credit),
                "billable_total": float(self.billable_total),
            },
            "notes": [note.to_dict() for note in self.notes],
        }


def synthesize(
    schema: str,
    pricing: PricingTable,
    projection: RateProjection,
    storage: Decimal,
    stored_bytes: int,
    notes: Sequence[Note],
    sampled: bool
) -> CostEstimate:
    """Combine stage outputs into the final estimate.

    Notes are kept in the order the stages ran; none are dropped.

    Raises:
        ValueError: If notes are not ordered by pipeline stage
    """
    stages = [note.stage.value for note in notes]
    if stages != sorted(stages):
        raise ValueError("notes must be ordered by the stage that raised them")

    request_units = ChargeRange(
        expected=monthly_request_unit_charge(projection.expected, pricing),
        low=monthly_request_unit_charge(projection.low, pricing),
        high=monthly_request_unit_charge(projection.high, pricing),
    )
    return CostEstimate(
        schema=schema,
        region=pricing.region,
        request_units=request_units,
        storage=storage,
        notes=tuple(notes),
        monthly_request_units=projection.expected * SECONDS_PER_MONTH,
        stored_bytes=stored_bytes,
        free_credit=pricing.free_credit,
        sampled=sampled,
    )


def _range_to_dict(charge: ChargeRange) -> Dict[str, float]:
    return {
        "expected": float(charge.expected),
        "low": float(charge.low),
        "high": float(charge.high),
    }
