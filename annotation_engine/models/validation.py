"""Validation result data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .annotation import AnnotationCandidate


class RejectionReason(str, Enum):
    """Reason code attached to a candidate that failed validation."""

    LOW_CONFIDENCE = "low_confidence"
    INVALID_CONFIDENCE = "invalid_confidence"
    OUT_OF_BOUNDS = "out_of_bounds"
    EXCEEDS_IMAGE = "exceeds_image"
    TOO_SMALL = "too_small"
    TOO_LARGE = "too_large"
    UNKNOWN_TERM = "unknown_term"
    DUPLICATE = "duplicate"
    EXCESS_COUNT = "excess_count"


GEOMETRY_REASONS = frozenset({
    RejectionReason.OUT_OF_BOUNDS,
    RejectionReason.EXCEEDS_IMAGE,
    RejectionReason.TOO_SMALL,
    RejectionReason.TOO_LARGE,
})


@dataclass(frozen=True)
class RejectedAnnotation:
    """A candidate excluded from the valid set, with every reason that applied."""

    candidate: AnnotationCandidate
    reasons: tuple[RejectionReason, ...]
    messages: tuple[str, ...] = ()
    duplicate_of: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "annotation_id": self.candidate.annotation_id,
            "spanish_term": self.candidate.spanish_term,
            "reasons": [r.value for r in self.reasons],
            "messages": list(self.messages),
            "duplicate_of": self.duplicate_of,
        }


@dataclass
class ValidationMetrics:
    """Counters describing one validation pass."""

    total: int = 0
    valid: int = 0
    rejected: int = 0
    duplicates_removed: int = 0
    low_confidence_count: int = 0
    invalid_bounding_boxes: int = 0
    missing_required_features: list[str] = field(default_factory=list)
    average_confidence: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "valid": self.valid,
            "rejected": self.rejected,
            "duplicates_removed": self.duplicates_removed,
            "low_confidence_count": self.low_confidence_count,
            "invalid_bounding_boxes": self.invalid_bounding_boxes,
            "missing_required_features": list(self.missing_required_features),
            "average_confidence": self.average_confidence,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ValidationResult:
    """Outcome of validating one image's candidate annotations."""

    valid_annotations: list[AnnotationCandidate]
    rejected: list[RejectedAnnotation]
    duplicates_removed: int
    needs_retry: bool
    metrics: ValidationMetrics
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for serialization."""
        return {
            "valid_annotations": [a.to_dict() for a in self.valid_annotations],
            "rejected": [r.to_dict() for r in self.rejected],
            "duplicates_removed": self.duplicates_removed,
            "needs_retry": self.needs_retry,
            "metrics": self.metrics.to_dict(),
            "warnings": list(self.warnings),
        }
