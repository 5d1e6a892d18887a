"""Persistence collaborators for the annotation learning engine."""

from .pattern_repository import (
    InMemoryPatternRepository,
    JsonFilePatternRepository,
    PatternRepository,
)

__all__ = ["InMemoryPatternRepository", "JsonFilePatternRepository", "PatternRepository"]
