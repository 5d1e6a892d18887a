"""Data models for annotations, learned patterns and reviewer feedback."""

from .annotation import AnnotationCandidate, BoundingBox
from .feedback import (
    ApprovalRecord,
    CorrectionRecord,
    FeedbackEvent,
    FeedbackRecord,
    FeedbackType,
    RejectionRecord,
)
from .pattern import LearnedPattern, PromptRecord
from .positioning import PositioningModel, PositionPrediction
from .prompt import AdaptivePrompt, PromptAdaptations
from .rejection import RejectionCategory, RejectionEntry, RejectionFlag
from .validation import RejectedAnnotation, RejectionReason, ValidationMetrics, ValidationResult

__all__ = [
    "AdaptivePrompt",
    "AnnotationCandidate",
    "ApprovalRecord",
    "BoundingBox",
    "CorrectionRecord",
    "FeedbackEvent",
    "FeedbackRecord",
    "FeedbackType",
    "LearnedPattern",
    "PositionPrediction",
    "PositioningModel",
    "PromptAdaptations",
    "PromptRecord",
    "RejectedAnnotation",
    "RejectionCategory",
    "RejectionEntry",
    "RejectionFlag",
    "RejectionReason",
    "RejectionRecord",
    "ValidationMetrics",
    "ValidationResult",
]
