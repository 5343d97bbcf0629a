"""
Report notes.

Caveats raised by each pipeline stage, carried unchanged into the final estimate.
"""

from dataclasses import dataclass
from enum import Enum


class NoteStage(Enum):
    """Pipeline stages in execution order."""
    COLLECTOR = 1
    SAMPLER = 2
    REQUEST_UNITS = 3
    EXTRAPOLATOR = 4


class NoteSeverity(Enum):
    """How strongly a note qualifies the estimate."""
    INFO = "info"
    WARNING = "warning"
    LOW_CONFIDENCE = "low_confidence"


@dataclass(frozen=True)
class Note:
    """Human-readable caveat attached to a cost estimate."""
    stage: NoteStage
    severity: NoteSeverity
    message: str

    @property
    def is_low_confidence(self) -> bool:
        return self.severity == NoteSeverity.LOW_CONFIDENCE

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.name.lower(),
            "severity": self.severity.value,
            "message": self.message,
        }
