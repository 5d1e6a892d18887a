"""
Facade tying validation, learning, feedback and prompt adaptation together.
"""

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from .config import DEFAULT_CONFIG, EngineConfig
from .constants import (
    DEFAULT_RECOMMENDED_FEATURES,
    FEEDBACK_KEY_PREFIX,
    PATTERN_KEY_PREFIX,
    POSITIONING_KEY_PREFIX,
    REJECTION_KEY_PREFIX,
    STATE_FORMAT_VERSION,
)
from .exceptions import PersistenceError
from .models.annotation import AnnotationCandidate, BoundingBox
from .models.feedback import FeedbackEvent, FeedbackRecord, record_from_dict
from .models.positioning import PositionPrediction
from .models.prompt import AdaptivePrompt
from .models.rejection import RejectionCategory, RejectionFlag
from .models.validation import ValidationResult
from .processing.feedback_engine import FeedbackEngine
from .processing.pattern_learner import PatternLearner, QualityMetrics
from .processing.pattern_store import PatternStore
from .processing.positioning_store import PositioningModelStore
from .processing.prompt_generator import AdaptivePromptGenerator
from .processing.rejection_catalog import RejectionCatalog
from .processing.validator import AnnotationValidator
from .services.pattern_repository import PatternRepository
from .utils.error_handling import create_error_response

logger = logging.getLogger(__name__)


def _key(*parts: str) -> str:
    return "/".join(parts)


class AnnotationLearningEngine:
    """In-process service validating annotations and learning from reviews.

    One instance owns one set of learned state. Create it explicitly and
    share it between request handlers; all operations are thread-safe.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        repository: PatternRepository | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.repository = repository
        self.patterns = PatternStore()
        self.feedback = FeedbackEngine(self.config, self.patterns, repository)
        self.validator = AnnotationValidator(self.config, self.patterns, clock)
        self.prompts = AdaptivePromptGenerator(
            self.patterns, self.positioning, self.rejections, self.config
        )
        logger.info("Annotation learning engine initialized")

    @property
    def learner(self) -> PatternLearner:
        return self.feedback.learner

    @property
    def positioning(self) -> PositioningModelStore:
        return self.feedback.positioning

    @property
    def rejections(self) -> RejectionCatalog:
        return self.feedback.rejections

    def validate(
        self,
        candidates: list[AnnotationCandidate],
        timestamp: datetime | None = None,
    ) -> ValidationResult:
        """Validate a batch of candidates.

        Results are identical for identical input and learned state, with
        ``metrics.timestamp`` taken from ``timestamp`` or else the engine clock.
        """
        return self.validator.validate(candidates, timestamp)

    def capture_feedback(self, event: FeedbackEvent) -> FeedbackRecord | None:
        return self.feedback.capture_feedback(event)

    def learn_from_annotations(
        self,
        candidates: list[AnnotationCandidate],
        context: dict[str, Any] | None = None,
    ) -> bool:
        return self.learner.learn_from_annotations(candidates, context)

    def learn_from_approval(
        self,
        candidate: AnnotationCandidate,
        context: dict[str, Any] | None = None,
    ) -> bool:
        return self.learner.learn_from_approval(candidate, context)

    def learn_from_rejection(
        self,
        candidate: AnnotationCandidate,
        category: RejectionCategory | str | None = None,
        context: dict[str, Any] | None = None,
    ) -> bool:
        return self.learner.learn_from_rejection(candidate, category, context)

    def learn_from_correction(
        self,
        original: AnnotationCandidate,
        corrected_box: BoundingBox,
        context: dict[str, Any] | None = None,
    ) -> bool:
        return self.learner.learn_from_correction(original, corrected_box, context)

    def evaluate_quality(self, candidate: AnnotationCandidate) -> QualityMetrics:
        return self.learner.evaluate_quality(candidate)

    def get_recommended_features(
        self,
        species: str,
        limit: int = DEFAULT_RECOMMENDED_FEATURES,
    ) -> list[str]:
        return self.learner.get_recommended_features(species, limit)

    def generate_prompt(self, species: str, feature_type: str, base_prompt: str) -> AdaptivePrompt:
        return self.prompts.generate_prompt(species, feature_type, base_prompt)

    def analyze_rejection_patterns(
        self,
        window: timedelta | None = None,
        now: datetime | None = None,
    ) -> list[RejectionFlag]:
        return self.feedback.analyze_rejection_patterns(window, now)

    def predict_position_adjustment(
        self,
        species: str,
        feature_type: str,
        proposed_box: BoundingBox,
    ) -> PositionPrediction:
        return self.feedback.predict_position_adjustment(species, feature_type, proposed_box)

    def get_analytics(self) -> dict[str, Any]:
        """Summarize learned state and feedback volume."""
        analytics = self.learner.get_analytics()
        analytics["feedback_records"] = len(self.feedback.records())
        analytics["high_risk_patterns"] = sum(
            1 for flag in self.feedback.analyze_rejection_patterns() if flag.high_risk
        )
        return analytics

    def apply_decay(self, now: datetime | None = None) -> dict[str, int]:
        return self.learner.apply_decay(now)

    def export_state(self) -> dict[str, Any]:
        """Export all learned state and feedback records as a JSON-ready dict."""
        return {
            "format_version": STATE_FORMAT_VERSION,
            "exported_at": datetime.now().isoformat(),
            "patterns": self.patterns.to_dict(),
            "positioning": self.positioning.to_dict(),
            "rejections": self.rejections.to_dict(),
            "feedback": [r.to_dict() for r in self.feedback.records()],
        }

    def import_state(self, blob: dict[str, Any] | str) -> None:
        """Replace all in-memory state with an exported snapshot.

        The snapshot is fully parsed before anything is replaced, so a bad
        blob leaves the current state untouched.

        Raises:
            PersistenceError: If the blob is malformed or of another format version

        """
        try:
            data = json.loads(blob) if isinstance(blob, str) else blob
            version = data.get("format_version")
            if version != STATE_FORMAT_VERSION:
                raise PersistenceError(f"Unsupported state format version: {version}")

            patterns = PatternStore()
            patterns.load(data.get("patterns", []))
            positioning = PositioningModelStore()
            positioning.load(data.get("positioning", []))
            rejections = RejectionCatalog()
            rejections.load(data.get("rejections", {}))
            records = [record_from_dict(item) for item in data.get("feedback", [])]
        except PersistenceError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed engine state: {e}") from e

        self.patterns.load(patterns.to_dict())
        self.positioning.load(positioning.to_dict())
        self.rejections.load(rejections.to_dict())
        self.feedback.replace_records(records)
        logger.info(
            f"Imported state with {len(patterns)} patterns, {len(positioning)} positioning "
            f"models and {len(records)} feedback records"
        )

    def persist(self, repository: PatternRepository | None = None) -> list[str]:
        """Write learned aggregates to a repository.

        Pattern and positioning keys with no live counterpart in memory,
        such as patterns pruned by decay, are deleted from the repository.
        Failures are logged and reported, never raised, and never touch the
        in-memory state.

        Returns:
            Keys that could not be written or deleted

        """
        if repository is None:
            repository = self.repository
        if repository is None:
            raise PersistenceError("No pattern repository configured")

        items: list[tuple[str, Any]] = []
        for pattern in self.patterns.patterns():
            items.append((_key(PATTERN_KEY_PREFIX, *pattern.key), pattern.to_dict()))
        for model in self.positioning.models():
            items.append((_key(POSITIONING_KEY_PREFIX, *model.key), model.to_dict()))
        items.append((_key(REJECTION_KEY_PREFIX, "catalog"), self.rejections.to_dict()))

        failed = []
        for key, value in items:
            try:
                repository.put(key, value)
            except Exception as e:
                response = create_error_response(e, "persist", {"key": key})
                logger.error(f"Failed to persist engine state: {response}")
                failed.append(key)

        written = len(items) - len(failed)
        live = {key for key, _ in items}
        stale = 0
        for prefix in (PATTERN_KEY_PREFIX, POSITIONING_KEY_PREFIX):
            try:
                stored = repository.list(prefix + "/")
            except Exception as e:
                response = create_error_response(e, "persist", {"prefix": prefix})
                logger.error(f"Failed to list stored engine state: {response}")
                failed.append(prefix + "/")
                continue
            for key in stored:
                if key in live:
                    continue
                try:
                    repository.delete(key)
                    stale += 1
                except Exception as e:
                    response = create_error_response(e, "persist", {"key": key})
                    logger.error(f"Failed to delete stale engine state: {response}")
                    failed.append(key)

        logger.info(
            f"Persisted {written} of {len(items)} items, "
            f"removed {stale} stale keys"
        )
        return failed

    def restore(self, repository: PatternRepository | None = None) -> list[str]:
        """Load aggregates and feedback records from a repository.

        Unreadable keys are skipped and reported.

        Returns:
            Keys that could not be read

        """
        if repository is None:
            repository = self.repository
        if repository is None:
            raise PersistenceError("No pattern repository configured")

        failed: list[str] = []

        def read(prefix: str) -> list[Any]:
            values = []
            for key in repository.list(prefix + "/"):
                try:
                    value = repository.get(key)
                except Exception as e:
                    response = create_error_response(e, "restore", {"key": key})
                    logger.error(f"Failed to restore engine state: {response}")
                    failed.append(key)
                    continue
                if value is not None:
                    values.append(value)
            return values

        catalogs = read(REJECTION_KEY_PREFIX)
        records = sorted(read(FEEDBACK_KEY_PREFIX), key=lambda r: r["created_at"])
        state = {
            "format_version": STATE_FORMAT_VERSION,
            "patterns": read(PATTERN_KEY_PREFIX),
            "positioning": read(POSITIONING_KEY_PREFIX),
            "rejections": catalogs[0] if catalogs else {},
            "feedback": records,
        }
        self.import_state(state)
        return failed
