"""Adaptive annotation quality and learning engine for bird anatomy annotations."""

from .config import DEFAULT_CONFIG, EngineConfig, load_config
from .engine import AnnotationLearningEngine
from .exceptions import (
    AnnotationEngineError,
    ConfigurationError,
    FeedbackEventError,
    LearningError,
    PersistenceError,
)

__version__ = "0.1.0"
__all__ = [
    "DEFAULT_CONFIG",
    "AnnotationEngineError",
    "AnnotationLearningEngine",
    "ConfigurationError",
    "EngineConfig",
    "FeedbackEventError",
    "LearningError",
    "PersistenceError",
    "load_config",
]
