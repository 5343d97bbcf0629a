"""
Extrapolation of a sampled request unit rate.

Decides how far a short or bursty sampling window can be trusted and widens
the projected rate into a low/high range when it cannot.
"""

import statistics
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

from loguru import logger

from serverless_cost_calculator.core.notes import Note, NoteSeverity, NoteStage
from serverless_cost_calculator.core.request_units import RequestUnitEstimate

DEFAULT_MIN_CONFIDENCE_WINDOW_SECONDS = 30.0
DEFAULT_RANGE_MARGIN = 0.5
DEFAULT_BURSTINESS_THRESHOLD = 0.5


class Confidence(Enum):
    """Reliability of a projected rate."""
    HIGH = "high"  # Window long and steady enough for a point estimate
    REDUCED = "reduced"  # Window short or bursty; a range is reported
    STATIC = "static"  # No live workload; heuristic rate only


@dataclass(frozen=True)
class RateProjection:
    """Per-second request unit rate with its uncertainty range."""
    expected: float
    low: float
    high: float
    confidence: Confidence
    notes: Tuple[Note, ...] = ()

    def __post_init__(self):
        """Validate the range brackets the expected rate."""
        if not 0 <= self.low <= self.expected <= self.high:
            raise ValueError("projection range must satisfy 0 <= low <= expected <= high")

    @property
    def is_range(self) -> bool:
        return self.low != self.high


def extrapolate(
    estimate: RequestUnitEstimate,
    min_window_seconds: float = DEFAULT_MIN_CONFIDENCE_WINDOW_SECONDS,
    range_margin: float = DEFAULT_RANGE_MARGIN,
    burstiness_threshold: float = DEFAULT_BURSTINESS_THRESHOLD
) -> RateProjection:
    """Adjust a raw request unit rate for sampling-window reliability.

    Static estimates pass through unchanged; their caveat is already attached
    by the cost model. Observed estimates are widened by ``range_margin`` when
    the window is shorter than ``min_window_seconds``, and by the coefficient
    of variation across timestamp buckets (capped at 1) when activity is
    bursty.

    Args:
        estimate: Output of the request unit cost model
        min_window_seconds: Minimum window considered representative
        range_margin: Relative half-width of the range for short windows
        burstiness_threshold: Coefficient of variation above which a window is bursty

    Returns:
        RateProjection with expected, low and high per-second rates
    """
    rate = estimate.ru_per_second
    if not estimate.observed:
        return RateProjection(expected=rate, low=rate, high=rate, confidence=Confidence.STATIC)

    notes: List[Note] = []
    margin = 0.0

    if estimate.window_ru == 0:
        notes.append(Note(
            stage=NoteStage.EXTRAPOLATOR,
            severity=NoteSeverity.WARNING,
            message=(
                f"No database activity was observed during the {estimate.duration_seconds:.0f}s "
                f"sampling window; the request unit charge reflects an idle workload."
            ),
        ))

    if estimate.duration_seconds < min_window_seconds:
        margin = range_margin
        notes.append(Note(
            stage=NoteStage.EXTRAPOLATOR,
            severity=NoteSeverity.LOW_CONFIDENCE,
            message=(
                f"The sampling window covered only {estimate.duration_seconds:.0f}s, less than the "
                f"{min_window_seconds:.0f}s needed for a representative traffic mix; the request "
                f"unit charge is reported as a range of +/-{margin:.0%}."
            ),
        ))

    variation = coefficient_of_variation(estimate.bucket_ru)
    if variation > burstiness_threshold:
        margin = max(margin, min(variation, 1.0))
        notes.append(Note(
            stage=NoteStage.EXTRAPOLATOR,
            severity=NoteSeverity.LOW_CONFIDENCE,
            message=(
                f"Activity was bursty across the sampling window (coefficient of variation "
                f"{variation:.2f}); the request unit charge is reported as a range of "
                f"+/-{margin:.0%}. Sample for longer to narrow it."
            ),
        ))

    if margin:
        logger.debug(f"Widening projected rate {rate:.3f} RU/s by {margin:.0%}")
        return RateProjection(
            expected=rate,
            low=rate * (1 - margin),
            high=rate * (1 + margin),
            confidence=Confidence.REDUCED,
            notes=tuple(notes),
        )
    return RateProjection(
        expected=rate, low=rate, high=rate, confidence=Confidence.HIGH, notes=tuple(notes)
    )


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population standard deviation over mean; zero for fewer than two values."""
    if len(values) < 2:
        return 0.0
    mean = statistics.fmean(values)
    if mean == 0:
        return 0.0
    return statistics.pstdev(values) / mean
