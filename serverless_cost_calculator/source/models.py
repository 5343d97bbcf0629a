"""
Data models for the source database snapshot.

Defines schema statistics, sampled operations and the workload summary
folded from them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

# Data is split into storage regions of this size; a scan issues one request per region
REGION_SIZE_BYTES = 256 * 1024 * 1024


class OperationKind(Enum):
    """Closed set of operation kinds priced by the request unit model."""
    POINT_READ = "point_read"
    RANGE_SCAN = "range_scan"
    INDEX_WRITE = "index_write"
    ROW_WRITE = "row_write"
    DELETE = "delete"


@dataclass(frozen=True)
class IndexStatistics:
    """Definition and cardinality estimate of one index."""
    name: str
    columns: Tuple[str, ...]
    cardinality: Optional[int] = None

    @property
    def is_primary(self) -> bool:
        return self.name == "PRIMARY"


@dataclass(frozen=True)
class TableStatistics:
    """Engine statistics for a single table.

    Row counts come from the storage engine's estimate, not an exact count.
    Index size is kept apart from data size because index maintenance is
    priced separately from row writes.
    """
    name: str
    row_count: int
    avg_row_length: int
    data_bytes: int
    index_bytes: int
    engine: Optional[str] = None
    indexes: Tuple[IndexStatistics, ...] = ()

    def __post_init__(self):
        """Validate sizes are non-negative."""
        for attr in ("row_count", "avg_row_length", "data_bytes", "index_bytes"):
            if getattr(self, attr) < 0:
                raise ValueError(f"{attr} cannot be negative")

    @property
    def total_bytes(self) -> int:
        return self.data_bytes + self.index_bytes

    @property
    def secondary_indexes(self) -> Tuple[IndexStatistics, ...]:
        return tuple(index for index in self.indexes if not index.is_primary)

    @property
    def row_bytes(self) -> int:
        """Average row size, derived from the data size when the engine reports none."""
        if self.avg_row_length:
            return self.avg_row_length
        return self.data_bytes // max(self.row_count, 1)

    @property
    def index_entry_bytes(self) -> int:
        """Average size of one secondary index entry."""
        secondary = len(self.secondary_indexes)
        if not secondary:
            return 0
        return self.index_bytes // max(self.row_count, 1) // secondary


@dataclass(frozen=True)
class OperationSample:
    """Operations of one kind observed in one timestamp bucket.

    Samples are produced incrementally while the window is open and are
    never modified afterwards.
    """
    kind: OperationKind
    operations: int
    rows_affected: int
    bytes_transferred: int
    bucket: int = 0
    table: Optional[str] = None

    def __post_init__(self):
        """Validate counters are non-negative."""
        if self.operations < 0:
            raise ValueError("operations cannot be negative")
        if self.rows_affected < 0:
            raise ValueError("rows_affected cannot be negative")
        if self.bytes_transferred < 0:
            raise ValueError("bytes_transferred cannot be negative")


@dataclass(frozen=True)
class KindTotals:
    """Aggregated volume of one operation kind."""
    operations: int = 0
    rows: int = 0
    bytes: int = 0

    def add(self, sample: OperationSample) -> "KindTotals":
        return KindTotals(
            operations=self.operations + sample.operations,
            rows=self.rows + sample.rows_affected,
            bytes=self.bytes + sample.bytes_transferred,
        )


@dataclass(frozen=True)
class WorkloadSummary:
    """Operation volumes observed over a closed sampling window."""
    duration_seconds: float
    samples: Tuple[OperationSample, ...] = ()
    egress_bytes: int = 0
    egress_by_bucket: Dict[int, int] = field(default_factory=dict)
    bucket_count: int = 0  # Buckets closed by the sampler, idle ones included

    def __post_init__(self):
        """Validate the window is non-empty."""
        if self.duration_seconds <= 0:
            raise ValueError("duration_seconds must be > 0")
        if self.egress_bytes < 0:
            raise ValueError("egress_bytes cannot be negative")
        if self.bucket_count < 0:
            raise ValueError("bucket_count cannot be negative")

    def totals(self) -> Dict[OperationKind, KindTotals]:
        """Fold all samples into per-kind totals, in enumeration order."""
        return _fold(self.samples)

    def buckets(self) -> List[int]:
        """Sorted bucket identifiers covered by the window, idle buckets included."""
        active = {sample.bucket for sample in self.samples} | set(self.egress_by_bucket)
        return sorted(active | set(range(self.bucket_count)))

    def bucket_totals(self, bucket: int) -> Dict[OperationKind, KindTotals]:
        return _fold(sample for sample in self.samples if sample.bucket == bucket)


def _fold(samples) -> Dict[OperationKind, KindTotals]:
    totals: Dict[OperationKind, KindTotals] = {}
    for sample in samples:
        totals[sample.kind] = totals.get(sample.kind, KindTotals()).add(sample)
    return {kind: totals[kind] for kind in OperationKind if kind in totals}


def summarize(
    samples: List[OperationSample],
    duration_seconds: float,
    egress_by_bucket: Optional[Dict[int, int]] = None,
    bucket_count: int = 0
) -> WorkloadSummary:
    """Close a sampling window into an immutable summary.

    ``bucket_count`` is the number of buckets the window was split into, so
    buckets without any activity still count towards burstiness.
    """
    egress_by_bucket = dict(egress_by_bucket or {})
    return WorkloadSummary(
        duration_seconds=duration_seconds,
        samples=tuple(samples),
        egress_bytes=sum(egress_by_bucket.values()),
        egress_by_bucket=egress_by_bucket,
        bucket_count=bucket_count,
    )


@dataclass(frozen=True)
class ObservedWorkload:
    """Workload measured by the sampler."""
    summary: WorkloadSummary


@dataclass(frozen=True)
class UnobservedWorkload:
    """No live activity is available; only schema statistics can be used."""
    reason: str


Workload = Union[ObservedWorkload, UnobservedWorkload]
