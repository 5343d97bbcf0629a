"""
Request unit cost model.

Maps an observed workload, or schema statistics alone when no workload was
observed, to request unit consumption under a region's pricing table.

Both paths are pure: the same inputs always give bit-identical output.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from loguru import logger

from serverless_cost_calculator.core.notes import Note, NoteSeverity, NoteStage
from serverless_cost_calculator.core.pricing import PricingTable, round_charge
from serverless_cost_calculator.source.models import (
    REGION_SIZE_BYTES,
    ObservedWorkload,
    OperationKind,
    TableStatistics,
    UnobservedWorkload,
    Workload,
    WorkloadSummary,
)

SECONDS_PER_DAY = 24 * 60 * 60
SECONDS_PER_MONTH = 30 * SECONDS_PER_DAY


@dataclass(frozen=True)
class RequestUnitEstimate:
    """Request units consumed over a window and the per-second rate."""
    window_ru: float
    duration_seconds: float
    ru_per_second: float
    per_kind: Dict[OperationKind, float]
    bucket_ru: Tuple[float, ...] = ()
    observed: bool = True
    notes: Tuple[Note, ...] = field(default_factory=tuple)

    @property
    def monthly_request_units(self) -> float:
        return self.ru_per_second * SECONDS_PER_MONTH


def estimate_request_units(
    tables: Sequence[TableStatistics],
    workload: Workload,
    pricing: PricingTable,
    full_scans_per_day: float = 1.0
) -> RequestUnitEstimate:
    """Estimate request unit consumption for either workload branch.

    Args:
        tables: Schema statistics from the collector
        workload: Observed or unobserved workload
        pricing: Pricing table of the target region
        full_scans_per_day: Read assumption for the static path

    Returns:
        RequestUnitEstimate with window RU and per-second rate

    Raises:
        PricingLookupError: If a needed formula is missing from the pricing table
        TypeError: If workload is neither branch
    """
    if isinstance(workload, ObservedWorkload):
        return observed_request_units(workload.summary, pricing)
    if isinstance(workload, UnobservedWorkload):
        return static_request_units(tables, pricing, full_scans_per_day, workload.reason)
    raise TypeError(f"Unsupported workload type: {type(workload).__name__}")


def observed_request_units(summary: WorkloadSummary, pricing: PricingTable) -> RequestUnitEstimate:
    """Price the operations observed during a sampling window."""
    per_kind = _price_totals(summary.totals(), pricing)
    window_ru = sum(per_kind.values()) + pricing.egress_request_units(summary.egress_bytes)

    bucket_ru = tuple(
        sum(_price_totals(summary.bucket_totals(bucket), pricing).values())
        + pricing.egress_request_units(summary.egress_by_bucket.get(bucket, 0))
        for bucket in summary.buckets()
    )

    # No rounding before extrapolation
    rate = window_ru / summary.duration_seconds
    logger.debug(
        f"Observed {window_ru:.3f} RU over {summary.duration_seconds:.1f}s ({rate:.3f} RU/s)"
    )
    return RequestUnitEstimate(
        window_ru=window_ru,
        duration_seconds=summary.duration_seconds,
        ru_per_second=rate,
        per_kind=per_kind,
        bucket_ru=bucket_ru,
        observed=True,
    )


def static_request_units(
    tables: Sequence[TableStatistics],
    pricing: PricingTable,
    full_scans_per_day: float = 1.0,
    reason: str = "workload sampling disabled"
) -> RequestUnitEstimate:
    """Heuristic request unit rate from schema size and shape alone.

    Every table is assumed to be read in full ``full_scans_per_day`` times a
    day, one request per storage region of data plus one per secondary
    index. Writes are assumed to be zero, so the figure is only a stand-in
    for the unobserved read load.
    """
    formula = pricing.formula_for(OperationKind.RANGE_SCAN)

    daily_ru = 0.0
    for table in tables:
        requests = max(1, math.ceil(table.data_bytes / REGION_SIZE_BYTES)) + len(table.secondary_indexes)
        daily_ru += formula.request_units(
            requests * full_scans_per_day,
            table.row_count * full_scans_per_day,
            table.total_bytes * full_scans_per_day,
        )

    notes: List[Note] = []
    if tables:
        notes.append(Note(
            stage=NoteStage.REQUEST_UNITS,
            severity=NoteSeverity.LOW_CONFIDENCE,
            message=(
                f"Request units were estimated from schema statistics only ({reason}). "
                f"Reads assume {full_scans_per_day:g} full scan(s) of every table per day "
                f"and writes are assumed to be zero; run with --analyze to observe the "
                f"live workload for a more accurate figure."
            ),
        ))

    return RequestUnitEstimate(
        window_ru=daily_ru,
        duration_seconds=float(SECONDS_PER_DAY),
        ru_per_second=daily_ru / SECONDS_PER_DAY,
        per_kind={OperationKind.RANGE_SCAN: daily_ru} if tables else {},
        observed=False,
        notes=tuple(notes),
    )


def monthly_request_unit_charge(ru_per_second: float, pricing: PricingTable) -> Decimal:
    """Monthly RU charge for a per-second rate, rounded up to cents."""
    return round_charge(Decimal(ru_per_second) * SECONDS_PER_MONTH * pricing.ru_unit_price)


def _price_totals(totals, pricing: PricingTable) -> Dict[OperationKind, float]:
    return {
        kind: pricing.formula_for(kind).request_units(total.operations, total.rows, total.bytes)
        for kind, total in totals.items()
    }
