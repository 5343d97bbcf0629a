"""
Cost estimation pipeline.

Runs one estimate end to end:

1. Region lookup - fails fast before any database query
2. Statistics collection - fatal on failure
3. Optional workload sampling - degrades to the static path on failure
4. Request unit model, extrapolation and storage cost
5. Report synthesis

The pipeline is single-threaded apart from the collector's optional index
fan-out, never retries, and never writes to the source database.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from loguru import logger

from serverless_cost_calculator.config.loader import EstimatorSettings
from serverless_cost_calculator.core.errors import SamplingUnavailable
from serverless_cost_calculator.core.extrapolation import extrapolate
from serverless_cost_calculator.core.notes import Note, NoteSeverity, NoteStage
from serverless_cost_calculator.core.pricing import PricingCatalog
from serverless_cost_calculator.core.report import CostEstimate, synthesize
from serverless_cost_calculator.core.request_units import estimate_request_units
from serverless_cost_calculator.core.storage_cost import storage_charge, stored_bytes
from serverless_cost_calculator.source.collector import (
    StatisticsCollector,
    collection_notes,
    detect_server,
)
from serverless_cost_calculator.source.models import ObservedWorkload, UnobservedWorkload, Workload
from serverless_cost_calculator.source.sampler import WorkloadSampler


@dataclass(frozen=True)
class EstimateRequest:
    """What to estimate and how."""
    schema: str
    region: str
    analyze: bool = False
    sampling_duration: Optional[float] = None

    def __post_init__(self):
        """Validate request values."""
        if not self.schema or not self.schema.strip():
            raise ValueError("schema is required and cannot be empty")
        if self.sampling_duration is not None and self.sampling_duration <= 0:
            raise ValueError("sampling_duration must be > 0")


def estimate_cost(
    connection: Any,
    request: EstimateRequest,
    catalog: PricingCatalog,
    settings: Optional[EstimatorSettings] = None,
    connection_factory: Optional[Callable[[], Any]] = None,
    cancel_event: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
    sleeper: Optional[Callable[[float], bool]] = None
) -> CostEstimate:
    """
    Estimate the monthly serverless cost of a schema.

    Args:
        connection: Open, authenticated DB-API connection to the source database
        request: Schema, region and sampling options
        catalog: Pricing catalog loaded at startup
        settings: Pipeline tunables; defaults when omitted
        connection_factory: Optional callable for the collector's index fan-out
        cancel_event: Event that interrupts the sampling window
        clock: Monotonic clock used to measure the sampling window
        sleeper: Replacement for the sampler's wait, mainly for tests

    Returns:
        CostEstimate for the schema

    Raises:
        InvalidRegion: If the region has no pricing table (before any query)
        AlreadyServerless: If the source already runs on the serverless target
        CollectionError: If schema statistics cannot be collected
        PricingLookupError: If the pricing table lacks a needed formula
    """
    settings = settings or EstimatorSettings()
    pricing = catalog.get_region(request.region)
    logger.info(f"Estimating schema '{request.schema}' in region '{request.region}'")

    flavor = detect_server(connection, request.schema)

    tables = StatisticsCollector(
        connection, connection_factory, settings.collector_workers
    ).collect(request.schema)
    notes: List[Note] = collection_notes(tables, request.schema)

    workload: Workload
    if request.analyze:
        sampler = WorkloadSampler(
            connection,
            flavor=flavor,
            bucket_seconds=settings.bucket_seconds,
            scan_ratio_threshold=settings.scan_ratio_threshold,
            cancel_event=cancel_event,
            clock=clock,
            sleeper=sleeper,
        )
        duration = request.sampling_duration or settings.sampling_duration_seconds
        try:
            workload = ObservedWorkload(sampler.sample(request.schema, tables, duration))
        except SamplingUnavailable as e:
            logger.warning(f"Workload sampling unavailable, using schema statistics: {e}")
            notes.append(Note(
                stage=NoteStage.SAMPLER,
                severity=NoteSeverity.WARNING,
                message=f"Live workload sampling was not possible: {e}",
            ))
            workload = UnobservedWorkload("live workload sampling was unavailable")
    else:
        workload = UnobservedWorkload("workload sampling disabled")

    estimate = estimate_request_units(tables, workload, pricing, settings.full_scans_per_day)
    notes.extend(estimate.notes)

    projection = extrapolate(
        estimate,
        min_window_seconds=settings.min_confidence_window_seconds,
        range_margin=settings.range_margin,
        burstiness_threshold=settings.burstiness_threshold,
    )
    notes.extend(projection.notes)

    result = synthesize(
        schema=request.schema,
        pricing=pricing,
        projection=projection,
        storage=storage_charge(tables, pricing),
        stored_bytes=stored_bytes(tables),
        notes=notes,
        sampled=isinstance(workload, ObservedWorkload),
    )
    logger.info(f"Estimated monthly cost for '{request.schema}': ${result.total}")
    return result
