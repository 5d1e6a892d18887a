"""
Quality gate for AI-generated bounding-box annotations.
"""

import logging
import math
from collections.abc import Callable
from datetime import datetime

from ..config import DEFAULT_CONFIG, EngineConfig
from ..constants import DEFAULT_RECOMMENDED_FEATURES, SPANISH_ARTICLES
from ..models.annotation import AnnotationCandidate
from ..models.validation import (
    GEOMETRY_REASONS,
    RejectedAnnotation,
    RejectionReason,
    ValidationMetrics,
    ValidationResult,
)
from ..utils.geometry import pairwise_iou
from .pattern_store import PatternStore

logger = logging.getLogger(__name__)


def _normalize_term(term: str | None) -> str:
    return " ".join((term or "").lower().split())


def _strip_article(term: str) -> str:
    for article in SPANISH_ARTICLES:
        if term.startswith(article):
            return term[len(article):]
    return term


def _is_known_term(term: str, vocabulary: frozenset[str]) -> bool:
    """Exact match or a term that contains a known term, e.g. "las plumas del ala"."""
    if term in vocabulary:
        return True
    return any(known in term for known in vocabulary)


class AnnotationValidator:
    """Validates candidate annotations for one image.

    Validation is a pure function of the candidates, the configuration and
    read-only PatternStore lookups. Failures are reported as rejected
    entries with reason codes, never raised.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        pattern_store: PatternStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.pattern_store = pattern_store
        self._clock = clock

    def validate(
        self,
        candidates: list[AnnotationCandidate],
        timestamp: datetime | None = None,
    ) -> ValidationResult:
        """Validate, de-duplicate and count-check candidates.

        Args:
            candidates: Candidate annotations for a single image
            timestamp: Metrics timestamp; the injected clock is used if omitted

        Returns:
            ValidationResult with valid annotations in input order

        """
        config = self.config
        warnings: list[str] = []
        reasons: list[list[RejectionReason]] = []
        messages: list[list[str]] = []

        for candidate in candidates:
            candidate_reasons: list[RejectionReason] = []
            candidate_messages: list[str] = []
            self._check_confidence(candidate, candidate_reasons, candidate_messages)
            self._check_geometry(candidate, candidate_reasons, candidate_messages, warnings)
            self._check_terms(candidate, candidate_reasons, candidate_messages, warnings)
            reasons.append(candidate_reasons)
            messages.append(candidate_messages)

        duplicate_of = self._find_duplicates(candidates, reasons)
        for index, winner in duplicate_of.items():
            reasons[index].append(RejectionReason.DUPLICATE)
            messages[index].append(
                f"Overlaps {candidates[winner].annotation_id} by more than "
                f"{config.max_duplicate_overlap:.2f} IoU"
            )
        if duplicate_of:
            logger.info(f"Removed {len(duplicate_of)} duplicate annotations")

        survivors = [i for i, r in enumerate(reasons) if not r]
        if len(survivors) > config.max_annotations_per_image:
            ranked = sorted(survivors, key=lambda i: (-candidates[i].confidence, i))
            for index in ranked[config.max_annotations_per_image:]:
                reasons[index].append(RejectionReason.EXCESS_COUNT)
                messages[index].append(
                    f"Exceeds the limit of {config.max_annotations_per_image} annotations per image"
                )
            excess = len(survivors) - config.max_annotations_per_image
            warnings.append(f"Trimmed {excess} lowest-confidence annotations")
            survivors = sorted(ranked[:config.max_annotations_per_image])

        valid = [candidates[i] for i in survivors]
        rejected = [
            RejectedAnnotation(
                candidate=candidates[i],
                reasons=tuple(reasons[i]),
                messages=tuple(messages[i]),
                duplicate_of=candidates[duplicate_of[i]].annotation_id if i in duplicate_of else None,
            )
            for i in range(len(candidates))
            if reasons[i]
        ]

        needs_retry = len(valid) < config.min_annotations_per_image
        if needs_retry:
            logger.info(
                f"Only {len(valid)} valid annotations, "
                f"{config.min_annotations_per_image} required; retry suggested"
            )

        missing = self._missing_features(candidates, valid)
        if missing:
            warnings.append(f"Missing recommended features: {', '.join(missing)}")

        for warning in warnings:
            logger.warning(warning)

        metrics = ValidationMetrics(
            total=len(candidates),
            valid=len(valid),
            rejected=len(candidates) - len(valid),
            duplicates_removed=len(duplicate_of),
            low_confidence_count=sum(1 for r in reasons if RejectionReason.LOW_CONFIDENCE in r),
            invalid_bounding_boxes=sum(1 for r in reasons if GEOMETRY_REASONS.intersection(r)),
            missing_required_features=missing,
            average_confidence=sum(c.confidence for c in valid) / len(valid) if valid else 0.0,
            timestamp=timestamp or self._clock(),
        )

        return ValidationResult(
            valid_annotations=valid,
            rejected=rejected,
            duplicates_removed=len(duplicate_of),
            needs_retry=needs_retry,
            metrics=metrics,
            warnings=warnings,
        )

    def _check_confidence(
        self,
        candidate: AnnotationCandidate,
        reasons: list[RejectionReason],
        messages: list[str],
    ) -> None:
        confidence = candidate.confidence
        if not math.isfinite(confidence) or not 0.0 <= confidence <= self.config.max_confidence:
            reasons.append(RejectionReason.INVALID_CONFIDENCE)
            messages.append(f"Confidence {confidence} outside [0, {self.config.max_confidence}]")
        elif confidence < self.config.min_confidence:
            reasons.append(RejectionReason.LOW_CONFIDENCE)
            messages.append(f"Confidence {confidence:.2f} below {self.config.min_confidence:.2f}")

    def _check_geometry(
        self,
        candidate: AnnotationCandidate,
        reasons: list[RejectionReason],
        messages: list[str],
        warnings: list[str],
    ) -> None:
        box = candidate.bounding_box
        values = (box.x, box.y, box.width, box.height)

        if not all(math.isfinite(v) and 0.0 <= v <= 1.0 for v in values) or box.width <= 0 or box.height <= 0:
            reasons.append(RejectionReason.OUT_OF_BOUNDS)
            messages.append(f"Bounding box {box.to_dict()} outside the normalized image")
            return

        limit = 1.0 + self.config.bounds_tolerance
        if box.x + box.width > limit or box.y + box.height > limit:
            reasons.append(RejectionReason.EXCEEDS_IMAGE)
            messages.append("Bounding box extends past the image edge")

        if box.area < self.config.min_box_area:
            reasons.append(RejectionReason.TOO_SMALL)
            messages.append(f"Box area {box.area:.4f} below {self.config.min_box_area}")
        elif box.area > self.config.max_box_area:
            reasons.append(RejectionReason.TOO_LARGE)
            messages.append(f"Box area {box.area:.4f} above {self.config.max_box_area}")

        ratio = box.aspect_ratio
        if not self.config.min_aspect_ratio <= ratio <= self.config.max_aspect_ratio:
            warnings.append(f"Unusual aspect ratio {ratio:.2f} for {candidate.spanish_term}")

    def _check_terms(
        self,
        candidate: AnnotationCandidate,
        reasons: list[RejectionReason],
        messages: list[str],
        warnings: list[str],
    ) -> None:
        mode = self.config.term_check_mode
        if mode == "off":
            return

        problems = []
        spanish = _normalize_term(candidate.spanish_term)
        english = _normalize_term(candidate.english_term)

        if not spanish:
            problems.append("Spanish term is empty")
        elif not _is_known_term(spanish, self.config.spanish_terms):
            problems.append(f'Unknown Spanish term: "{candidate.spanish_term}"')
        elif not spanish.startswith(SPANISH_ARTICLES):
            warnings.append(f'Spanish term "{candidate.spanish_term}" has no article')

        if not english:
            problems.append("English term is empty")
        elif not _is_known_term(english, self.config.english_terms):
            problems.append(f'Unknown English term: "{candidate.english_term}"')

        if not problems:
            return
        if mode == "reject":
            reasons.append(RejectionReason.UNKNOWN_TERM)
            messages.extend(problems)
        else:
            warnings.extend(problems)

    def _find_duplicates(
        self,
        candidates: list[AnnotationCandidate],
        reasons: list[list[RejectionReason]],
    ) -> dict[int, int]:
        """Greedy de-duplication, highest confidence first, input order on ties.

        Candidates rejected only for low confidence stay in the pool so an
        overlapping weak copy of a strong annotation is still counted as a
        duplicate.

        Returns:
            Mapping of loser index to the index of the annotation it duplicates

        """
        pool = [
            i for i, r in enumerate(reasons)
            if all(reason is RejectionReason.LOW_CONFIDENCE for reason in r)
        ]
        if len(pool) < 2:
            return {}

        iou = pairwise_iou([candidates[i].bounding_box for i in pool])
        position = {index: n for n, index in enumerate(pool)}
        order = sorted(pool, key=lambda i: (-candidates[i].confidence, i))

        kept: list[int] = []
        losers: dict[int, int] = {}
        for index in order:
            for winner in kept:
                if (
                    self.config.duplicates_require_same_term
                    and _normalize_term(candidates[index].spanish_term)
                    != _normalize_term(candidates[winner].spanish_term)
                ):
                    continue
                if iou[position[index], position[winner]] > self.config.max_duplicate_overlap:
                    losers[index] = winner
                    break
            else:
                kept.append(index)

        return losers

    def _missing_features(
        self,
        candidates: list[AnnotationCandidate],
        valid: list[AnnotationCandidate],
    ) -> list[str]:
        required = list(self.config.required_features)
        if self.pattern_store is not None:
            for species in sorted({c.species_id for c in candidates}):
                for feature in self.pattern_store.recommended_features(species, DEFAULT_RECOMMENDED_FEATURES):
                    if feature not in required:
                        required.append(feature)

        present = {_strip_article(_normalize_term(c.spanish_term)) for c in valid}
        present.update(_normalize_term(c.feature_type) for c in valid)

        return [
            feature for feature in required
            if not any(feature.lower() in term for term in present)
        ]


def validate(
    candidates: list[AnnotationCandidate],
    config: EngineConfig | None = None,
    pattern_store: PatternStore | None = None,
    timestamp: datetime | None = None,
) -> ValidationResult:
    """Validate candidate annotations with a one-off AnnotationValidator."""
    return AnnotationValidator(config, pattern_store).validate(candidates, timestamp)
