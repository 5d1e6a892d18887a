"""
Builds generation prompts adapted to what reviewers have taught the engine.
"""

import hashlib
import json
import logging

from ..config import DEFAULT_CONFIG, EngineConfig
from ..constants import (
    COMMON_MISTAKE_MIN_COUNT,
    COMMON_MISTAKES_LIMIT,
    FEATURE_GUIDANCE_PROMPT_LIMIT,
    MIN_SAMPLES_FOR_PATTERN,
    PATTERN_FULL_CONFIDENCE_OBSERVATIONS,
    POSITION_HINT_MIN_SAMPLES,
    PROMPT_CONFIDENCE_PATTERN_WEIGHT,
    PROMPT_CONFIDENCE_POSITIONING_WEIGHT,
    PROMPT_VERSION_LENGTH,
    SPECIES_CONTEXT_FEATURE_LIMIT,
)
from ..models.pattern import LearnedPattern
from ..models.positioning import PositioningModel
from ..models.prompt import AdaptivePrompt, PromptAdaptations
from ..models.rejection import RECOMMENDATIONS
from .pattern_store import PatternStore
from .positioning_store import PositioningModelStore
from .rejection_catalog import RejectionCatalog

logger = logging.getLogger(__name__)


def adaptations_version(adaptations: PromptAdaptations) -> str:
    """Content hash of the adaptations, stable across runs."""
    canonical = json.dumps(adaptations.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:PROMPT_VERSION_LENGTH]


class AdaptivePromptGenerator:
    """Generates prompt enhancements from learned patterns and feedback.

    Output is a pure function of the current store contents: equal state
    always gives an equal prompt and version.
    """

    def __init__(
        self,
        pattern_store: PatternStore,
        positioning: PositioningModelStore,
        rejection_catalog: RejectionCatalog,
        config: EngineConfig | None = None,
    ) -> None:
        self.patterns = pattern_store
        self.positioning = positioning
        self.rejections = rejection_catalog
        self.config = config or DEFAULT_CONFIG

    def generate_prompt(self, species: str, feature_type: str, base_prompt: str) -> AdaptivePrompt:
        """Generate an adaptive prompt for one (species, feature).

        Args:
            species: Species identifier
            feature_type: Feature to annotate
            base_prompt: Prompt the adaptations are appended to

        Returns:
            AdaptivePrompt with a content-hash version

        """
        pattern = self.patterns.get(species, feature_type)
        model = self.positioning.get(species, feature_type)

        adaptations = PromptAdaptations(
            positioning_hints=self._positioning_hints(pattern, model),
            species_context=self._species_context(species),
            feature_guidance=self._feature_guidance(pattern),
            quality_thresholds=self._quality_thresholds(),
            common_mistakes=self._common_mistakes(species, feature_type),
        )

        pattern_confidence = 0.0
        if pattern is not None:
            pattern_confidence = pattern.average_confidence * min(
                1.0, pattern.observation_count / PATTERN_FULL_CONFIDENCE_OBSERVATIONS
            )
        positioning_confidence = model.confidence if model is not None else 0.0
        confidence = (
            PROMPT_CONFIDENCE_PATTERN_WEIGHT * pattern_confidence
            + PROMPT_CONFIDENCE_POSITIONING_WEIGHT * positioning_confidence
        )

        prompt = AdaptivePrompt(
            species=species,
            feature_type=feature_type,
            base_prompt=base_prompt,
            adaptations=adaptations,
            confidence=min(1.0, max(0.0, confidence)),
            version=adaptations_version(adaptations),
        )
        logger.debug(f"Generated prompt {prompt.version} for {species}:{feature_type}")
        return prompt

    def _positioning_hints(
        self,
        pattern: LearnedPattern | None,
        model: PositioningModel | None,
    ) -> list[str]:
        hints = []
        if pattern is not None and pattern.observation_count >= MIN_SAMPLES_FOR_PATTERN:
            cx, cy = pattern.mean_center
            width, height = pattern.mean_size
            hints.append(
                f"Typically centered near x={cx:.2f}, y={cy:.2f} "
                f"with size about {width:.2f} x {height:.2f}"
            )
        if model is not None and model.sample_count >= POSITION_HINT_MIN_SAMPLES:
            delta = model.avg_delta
            hints.append(
                f"Reviewers usually move boxes by dx={delta['x']:+.3f}, dy={delta['y']:+.3f} "
                f"and resize by dw={delta['width']:+.3f}, dh={delta['height']:+.3f}"
            )
        return hints

    def _species_context(self, species: str) -> str:
        features = self.patterns.recommended_features(species, SPECIES_CONTEXT_FEATURE_LIMIT)
        if not features:
            return ""
        return f"Prioritize these well-established features: {', '.join(features)}"

    def _feature_guidance(self, pattern: LearnedPattern | None) -> list[str]:
        if pattern is None:
            return []

        guidance = [
            f'Previously effective instruction ({record.effectiveness:.2f}): "{record.prompt}"'
            for record in pattern.successful_prompts[:FEATURE_GUIDANCE_PROMPT_LIMIT]
        ]
        if pattern.average_confidence < self.config.learning_threshold:
            guidance.append(
                f"Detections of this feature are often uncertain (average confidence "
                f"{pattern.average_confidence:.2f}); only annotate it when clearly visible"
            )
        else:
            guidance.append(
                f"Detections of this feature are usually reliable (average confidence "
                f"{pattern.average_confidence:.2f})"
            )
        return guidance

    def _quality_thresholds(self) -> dict[str, float]:
        return {
            "min_confidence": self.config.min_confidence,
            "min_box_area": self.config.min_box_area,
            "max_box_area": self.config.max_box_area,
            "max_duplicate_overlap": self.config.max_duplicate_overlap,
        }

    def _common_mistakes(self, species: str, feature_type: str) -> list[str]:
        entries = [
            e for e in self.rejections.entries_for(species, feature_type)
            if e.count >= COMMON_MISTAKE_MIN_COUNT
        ]
        return [
            f"{e.category.value} ({e.count} rejections): "
            + RECOMMENDATIONS[e.category].format(feature=feature_type, species=species)
            for e in entries[:COMMON_MISTAKES_LIMIT]
        ]
