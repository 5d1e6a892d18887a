"""Custom exceptions for the annotation learning engine."""


class AnnotationEngineError(Exception):
    """Base exception for the annotation learning engine."""

    pass


class ConfigurationError(AnnotationEngineError, ValueError):
    """Raised when engine configuration is invalid."""

    pass


class LearningError(AnnotationEngineError):
    """Raised when a learning update cannot be applied."""

    pass


class FeedbackEventError(LearningError):
    """Raised when a review feedback event is malformed."""

    pass


class PersistenceError(LearningError):
    """Raised when the pattern repository fails to read or write."""

    pass
