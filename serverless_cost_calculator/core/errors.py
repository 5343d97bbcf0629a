"""
Error kinds raised by the estimation engine.

Fatal errors abort the run and carry enough context (schema, region,
underlying cause) to diagnose without re-running. SamplingUnavailable is
the only soft failure: the engine absorbs it into a report note.
"""

from typing import Iterable, Optional


class EstimationError(Exception):
    """Base class for every error raised by the engine."""


class CollectionError(EstimationError):
    """Raised when schema metadata cannot be read."""
    def __init__(self, message: str, schema: str, cause: Optional[BaseException] = None):
        super().__init__(f"{message} (schema '{schema}')" + (f": {cause}" if cause else ""))
        self.schema = schema
        self.cause = cause


class SamplingUnavailable(EstimationError):
    """Raised when live query-activity counters cannot be observed."""
    def __init__(self, message: str, schema: str, cause: Optional[BaseException] = None):
        super().__init__(message + (f": {cause}" if cause else ""))
        self.schema = schema
        self.cause = cause


class SamplingCancelled(SamplingUnavailable):
    """Raised when the sampling window is interrupted before it closes."""


class PricingLookupError(EstimationError):
    """Raised when a pricing table lacks a formula the cost model needs."""
    def __init__(self, region: str, kind: str):
        super().__init__(
            f"Pricing for region '{region}' has no request unit formula for '{kind}'; "
            f"the pricing schedule does not match this calculator's cost model"
        )
        self.region = region
        self.kind = kind


class InvalidRegion(EstimationError):
    """Raised when the requested region has no pricing table."""
    def __init__(self, region: str, supported: Iterable[str] = ()):
        supported = sorted(supported)
        message = f"The region '{region}' is invalid"
        if supported:
            message += f"; supported regions: {', '.join(supported)}"
        super().__init__(message)
        self.region = region
        self.supported = supported


class AlreadyServerless(EstimationError):
    """Raised when the source database already runs on the serverless service."""
    def __init__(self, version: str):
        super().__init__(
            "You are already using TiDB Serverless. Please check your billing in the "
            "TiDB Cloud Console for charges. For more information, visit "
            "https://docs.pingcap.com/tidbcloud/tidb-cloud-billing"
        )
        self.version = version
