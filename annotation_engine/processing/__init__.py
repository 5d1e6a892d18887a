"""Validation, learning and feedback processing."""

from .feedback_engine import FeedbackEngine
from .pattern_learner import PatternLearner, QualityMetrics
from .pattern_store import PatternStore
from .positioning_store import PositioningModelStore
from .prompt_generator import AdaptivePromptGenerator
from .rejection_catalog import RejectionCatalog
from .validator import AnnotationValidator, validate

__all__ = [
    "AdaptivePromptGenerator",
    "AnnotationValidator",
    "FeedbackEngine",
    "PatternLearner",
    "PatternStore",
    "PositioningModelStore",
    "QualityMetrics",
    "RejectionCatalog",
    "validate",
]
