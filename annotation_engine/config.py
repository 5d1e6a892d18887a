"""Configuration settings for the annotation learning engine."""

import logging
import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Known valid Spanish anatomical terms
SPANISH_TERMS = frozenset({
    "el pico", "la cabeza", "las alas", "el ala", "la cola",
    "las patas", "la pata", "las plumas", "la pluma", "los ojos",
    "el ojo", "el cuello", "el pecho", "el cuerpo", "las garras",
    "la garra", "el lomo", "el vientre", "la cresta", "el copete",
    "las cejas", "la mejilla", "la garganta", "el flanco", "la rabadilla",
    "las coberteras", "las primarias", "las secundarias", "el tarso",
    "los dedos",
})

# Known valid English anatomical terms
ENGLISH_TERMS = frozenset({
    "beak", "bill", "head", "wings", "wing", "tail", "legs", "leg",
    "feathers", "feather", "eyes", "eye", "neck", "breast", "body",
    "talons", "talon", "back", "belly", "feet", "foot", "crest",
    "crown", "eyebrow", "cheek", "throat", "flank", "rump",
    "coverts", "primaries", "secondaries", "tarsus", "toes", "toe",
    "nape", "mantle", "chest",
})

# Core anatomical features every image should ideally cover
REQUIRED_FEATURES = ("pico", "alas", "cola", "cabeza")

# Environment variable prefix for overrides
ENV_PREFIX = "ANNOTATION_ENGINE_"

# Logging configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = "INFO"


class EngineConfig(BaseModel):
    """Validated configuration for validation, learning and feedback analysis.

    Every recognised option is declared here; unknown keys are rejected.
    Invalid values raise ConfigurationError at construction time.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Validation gates
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    max_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    max_duplicate_overlap: float = Field(default=0.05, ge=0.0, le=1.0)
    min_box_area: float = Field(default=0.01, ge=0.0, le=1.0)
    max_box_area: float = Field(default=0.8, gt=0.0, le=1.0)
    min_aspect_ratio: float = Field(default=0.1, gt=0.0)
    max_aspect_ratio: float = Field(default=10.0, gt=0.0)
    bounds_tolerance: float = Field(default=0.01, ge=0.0, le=0.1)
    min_annotations_per_image: int = Field(default=3, ge=0)
    max_annotations_per_image: int = Field(default=15, ge=1)
    term_check_mode: Literal["reject", "warn", "off"] = "reject"
    spanish_terms: frozenset[str] = SPANISH_TERMS
    english_terms: frozenset[str] = ENGLISH_TERMS
    required_features: tuple[str, ...] = REQUIRED_FEATURES
    duplicates_require_same_term: bool = False

    # Pattern learning
    learning_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    approval_weight: float = Field(default=1.5, gt=0.0)
    correction_weight: float = Field(default=3.0, gt=0.0)
    rejection_penalty: float = Field(default=0.1, ge=0.0, le=1.0)
    pattern_decay_factor: float = Field(default=0.95, gt=0.0, le=1.0)
    decay_period_days: float = Field(default=7.0, gt=0.0)
    prune_weight_threshold: float = Field(default=0.5, ge=0.0)
    max_successful_prompts: int = Field(default=10, ge=1)

    # Feedback analysis
    flag_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    position_confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid engine configuration: {e}") from e

    @model_validator(mode="after")
    def _check_ranges(self) -> "EngineConfig":
        if self.min_confidence > self.max_confidence:
            raise ValueError(
                f"min_confidence ({self.min_confidence}) exceeds "
                f"max_confidence ({self.max_confidence})"
            )
        if self.min_box_area >= self.max_box_area:
            raise ValueError(
                f"min_box_area ({self.min_box_area}) must be below "
                f"max_box_area ({self.max_box_area})"
            )
        if self.min_aspect_ratio >= self.max_aspect_ratio:
            raise ValueError(
                f"min_aspect_ratio ({self.min_aspect_ratio}) must be below "
                f"max_aspect_ratio ({self.max_aspect_ratio})"
            )
        if self.min_annotations_per_image > self.max_annotations_per_image:
            raise ValueError(
                f"min_annotations_per_image ({self.min_annotations_per_image}) exceeds "
                f"max_annotations_per_image ({self.max_annotations_per_image})"
            )
        return self

    def with_overrides(self, **overrides: Any) -> "EngineConfig":
        """Return a new validated config with the given options replaced."""
        data = self.model_dump()
        data.update(overrides)
        return EngineConfig(**data)


DEFAULT_CONFIG = EngineConfig()


def _parse_env_value(name: str, raw: str) -> Any:
    """Convert a raw environment string into the type of the named option."""
    annotation = EngineConfig.model_fields[name].annotation
    if annotation is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if annotation in (frozenset[str], tuple[str, ...]):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw.strip()


def load_config(env_path: Path | None = None, **overrides: Any) -> EngineConfig:
    """Build an EngineConfig from a .env file, the environment and overrides.

    Args:
        env_path: Optional .env file to load before reading the environment
        **overrides: Explicit option values that win over the environment

    Returns:
        Validated EngineConfig

    Raises:
        ConfigurationError: If any option is invalid

    """
    if env_path is not None:
        load_dotenv(env_path)

    values: dict[str, Any] = {}
    for name in EngineConfig.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = _parse_env_value(name, raw)

    values.update(overrides)

    if values:
        logger.info(f"Loading engine config with overrides: {sorted(values)}")

    return EngineConfig(**values)
