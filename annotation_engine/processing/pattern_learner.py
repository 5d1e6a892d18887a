"""
Online learning of per-(species, feature) bounding-box and confidence patterns.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..config import DEFAULT_CONFIG, EngineConfig
from ..constants import (
    DEFAULT_BBOX_QUALITY,
    DEFAULT_PROMPT_EFFECTIVENESS,
    DEFAULT_RECOMMENDED_FEATURES,
    MIN_SAMPLES_FOR_PATTERN,
    PROMPT_EFFECTIVENESS_TARGET_COUNT,
    QUALITY_WEIGHT_BBOX,
    QUALITY_WEIGHT_CONFIDENCE,
    QUALITY_WEIGHT_PROMPT,
    TOP_FEATURES_IN_ANALYTICS,
    VARIANCE_FLOOR,
)
from ..models.annotation import AnnotationCandidate, BoundingBox
from ..models.pattern import LearnedPattern
from ..models.rejection import RejectionCategory, parse_category
from ..utils.error_handling import swallow_learning_errors
from ..utils.geometry import normalized_distance
from .pattern_store import PatternStore
from .positioning_store import PositioningModelStore
from .rejection_catalog import RejectionCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityMetrics:
    """Quality estimate for one candidate against its learned pattern."""

    confidence: float
    bbox_quality: float
    prompt_effectiveness: float
    overall: float
    has_pattern: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidence": self.confidence,
            "bbox_quality": self.bbox_quality,
            "prompt_effectiveness": self.prompt_effectiveness,
            "overall": self.overall,
            "has_pattern": self.has_pattern,
        }


def _context_value(context: dict[str, Any] | None, name: str) -> Any:
    return (context or {}).get(name)


class PatternLearner:
    """Learns positioning and confidence patterns from reviewed annotations.

    Every learn method returns True when the update was applied and False
    when it was skipped or failed. Failures are logged, never raised, so a
    review action always completes even if learning does not.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        pattern_store: PatternStore | None = None,
        positioning: PositioningModelStore | None = None,
        rejection_catalog: RejectionCatalog | None = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.patterns = pattern_store if pattern_store is not None else PatternStore()
        self.positioning = positioning if positioning is not None else PositioningModelStore()
        self.rejections = rejection_catalog if rejection_catalog is not None else RejectionCatalog()

    @swallow_learning_errors(default=False)
    def learn_from_annotations(
        self,
        candidates: list[AnnotationCandidate],
        context: dict[str, Any] | None = None,
    ) -> bool:
        """Learn from a batch of validated annotations for one image.

        Only candidates at or above the learning threshold contribute, each
        with unit weight. When the context carries the generating ``prompt``
        its effectiveness is recorded per feature as
        ``mean_confidence * min(1, n / 5)``.

        Args:
            candidates: Validated annotations
            context: Optional ``prompt`` and ``now`` values

        Returns:
            True if at least one pattern was updated

        """
        prompt = _context_value(context, "prompt")
        now = _context_value(context, "now")

        groups: dict[tuple[str, str], list[AnnotationCandidate]] = defaultdict(list)
        for candidate in candidates:
            if candidate.confidence >= self.config.learning_threshold:
                groups[candidate.key].append(candidate)

        if not groups:
            logger.debug("No annotations above the learning threshold")
            return False

        for (species, feature_type), group in sorted(groups.items()):
            mean_confidence = sum(c.confidence for c in group) / len(group)
            effectiveness = mean_confidence * min(1.0, len(group) / PROMPT_EFFECTIVENESS_TARGET_COUNT)

            def apply(pattern: LearnedPattern, group=group, effectiveness=effectiveness) -> None:
                for candidate in group:
                    pattern.observe(candidate.bounding_box, candidate.confidence, 1.0, now)
                if prompt:
                    pattern.record_prompt(prompt, effectiveness, self.config.max_successful_prompts)

            self.patterns.update(species, feature_type, apply)

        logger.info(
            f"Learned from {sum(len(g) for g in groups.values())} annotations "
            f"across {len(groups)} features"
        )
        return True

    @swallow_learning_errors(default=False)
    def learn_from_approval(
        self,
        candidate: AnnotationCandidate,
        context: dict[str, Any] | None = None,
    ) -> bool:
        """Reinforce the pattern of an approved annotation.

        Approvals below the learning threshold are ignored. Otherwise the
        box and confidence enter with the approval weight and the prompt, if
        any, is recorded with the candidate's confidence as its effectiveness.
        """
        if candidate.confidence < self.config.learning_threshold:
            logger.debug(
                f"Skipping approval learning for {candidate.species_id}:{candidate.feature_type} "
                f"(confidence {candidate.confidence:.2f} below threshold)"
            )
            return False

        prompt = _context_value(context, "prompt")
        now = _context_value(context, "now")

        def apply(pattern: LearnedPattern) -> None:
            pattern.observe(candidate.bounding_box, candidate.confidence, self.config.approval_weight, now)
            if prompt:
                pattern.record_prompt(prompt, candidate.confidence, self.config.max_successful_prompts)

        pattern = self.patterns.update(candidate.species_id, candidate.feature_type, apply)
        if pattern is not None:
            logger.info(
                f"Reinforced pattern {candidate.species_id}:{candidate.feature_type} "
                f"({pattern.observation_count} observations)"
            )
        return pattern is not None

    @swallow_learning_errors(default=False)
    def learn_from_rejection(
        self,
        candidate: AnnotationCandidate,
        category: RejectionCategory | str | None,
        context: dict[str, Any] | None = None,
    ) -> bool:
        """Penalise an existing pattern and catalog the rejection.

        A rejection never creates a pattern.
        """
        resolved = parse_category(category)
        now = _context_value(context, "now")
        notes = _context_value(context, "notes")

        self.patterns.update(
            candidate.species_id,
            candidate.feature_type,
            lambda p: p.penalize(self.config.rejection_penalty, now),
            create=False,
        )
        self.rejections.record_rejection(
            candidate.species_id,
            candidate.feature_type,
            resolved,
            candidate.confidence,
            notes,
            now,
        )
        logger.info(
            f"Recorded rejection for {candidate.species_id}:{candidate.feature_type} "
            f"({resolved.value})"
        )
        return True

    @swallow_learning_errors(default=False)
    def learn_from_correction(
        self,
        original: AnnotationCandidate,
        corrected_box: BoundingBox,
        context: dict[str, Any] | None = None,
    ) -> bool:
        """Learn from a reviewer moving or resizing a box.

        The correction delta trains the positioning model and the corrected
        geometry feeds the pattern, both with the correction weight. The
        pattern's confidence is left untouched.
        """
        now = _context_value(context, "now")
        weight = self.config.correction_weight
        species, feature_type = original.key

        model = self.positioning.record_correction(
            species, feature_type, original.bounding_box, corrected_box, weight, now
        )
        self.patterns.update(
            species,
            feature_type,
            lambda p: p.observe(corrected_box, None, weight, now),
        )
        logger.info(
            f"Learned correction for {species}:{feature_type} "
            f"({model.sample_count} samples, confidence {model.confidence:.2f})"
        )
        return True

    def evaluate_quality(self, candidate: AnnotationCandidate) -> QualityMetrics:
        """Score a candidate against the learned pattern of its feature.

        ``overall = 0.4 * confidence + 0.3 * bbox_quality + 0.3 * prompt_effectiveness``.
        Without an established pattern both learned components fall back to
        their defaults.
        """
        confidence = min(1.0, max(0.0, candidate.confidence))
        pattern = self.patterns.get(candidate.species_id, candidate.feature_type)
        has_pattern = pattern is not None and pattern.observation_count >= MIN_SAMPLES_FOR_PATTERN

        if has_pattern:
            distance = normalized_distance(
                candidate.bounding_box.center,
                pattern.mean_center,
                (pattern.center_x.variance, pattern.center_y.variance),
                VARIANCE_FLOOR,
            )
            bbox_quality = math.exp(-distance / 2)
            best = pattern.best_prompt_effectiveness
            prompt_effectiveness = best if best is not None else pattern.average_confidence
        else:
            bbox_quality = DEFAULT_BBOX_QUALITY
            prompt_effectiveness = DEFAULT_PROMPT_EFFECTIVENESS

        overall = (
            QUALITY_WEIGHT_CONFIDENCE * confidence
            + QUALITY_WEIGHT_BBOX * bbox_quality
            + QUALITY_WEIGHT_PROMPT * prompt_effectiveness
        )
        return QualityMetrics(
            confidence=confidence,
            bbox_quality=bbox_quality,
            prompt_effectiveness=prompt_effectiveness,
            overall=min(1.0, max(0.0, overall)),
            has_pattern=has_pattern,
        )

    def get_recommended_features(
        self,
        species: str,
        limit: int = DEFAULT_RECOMMENDED_FEATURES,
    ) -> list[str]:
        """Get the features most worth annotating for a species."""
        return self.patterns.recommended_features(species, limit)

    def apply_decay(self, now: datetime | None = None) -> dict[str, int]:
        """Fade old evidence and prune patterns that no longer carry weight.

        Returns:
            Dictionary with ``decayed`` and ``pruned`` counts

        """
        now = now or datetime.now()
        decayed, pruned = self.patterns.decay(
            now,
            self.config.pattern_decay_factor,
            self.config.decay_period_days,
            self.config.prune_weight_threshold,
        )
        logger.info(f"Applied decay to {decayed} patterns, pruned {pruned}")
        return {"decayed": decayed, "pruned": pruned}

    def get_analytics(self) -> dict[str, Any]:
        """Summarize the learned state."""
        patterns = self.patterns.patterns()
        models = self.positioning.models()
        entries = self.rejections.entries()

        total_observations = sum(p.observation_count for p in patterns)
        average_confidence = (
            sum(p.average_confidence for p in patterns) / len(patterns) if patterns else 0.0
        )

        top_features = sorted(patterns, key=lambda p: (-p.observation_count, p.species, p.feature_type))
        rejection_counts: dict[str, int] = defaultdict(int)
        for entry in entries:
            rejection_counts[entry.category.value] += entry.count

        return {
            "total_patterns": len(patterns),
            "species_tracked": len({p.species for p in patterns}),
            "total_observations": total_observations,
            "average_confidence": average_confidence,
            "top_features": [
                {
                    "species": p.species,
                    "feature_type": p.feature_type,
                    "observations": p.observation_count,
                    "average_confidence": p.average_confidence,
                }
                for p in top_features[:TOP_FEATURES_IN_ANALYTICS]
            ],
            "positioning_models": len(models),
            "total_corrections": sum(m.sample_count for m in models),
            "total_rejections": self.rejections.total_rejections(),
            "rejections_by_category": dict(sorted(rejection_counts.items())),
        }
