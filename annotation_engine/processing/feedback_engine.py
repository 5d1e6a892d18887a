"""
Captures reviewer feedback and turns it into learning signals.
"""

import logging
import threading
from datetime import datetime, timedelta

from ..config import DEFAULT_CONFIG, EngineConfig
from ..constants import FEEDBACK_KEY_PREFIX
from ..exceptions import FeedbackEventError
from ..models.annotation import AnnotationCandidate, BoundingBox
from ..models.feedback import (
    ApprovalRecord,
    CorrectionRecord,
    FeedbackEvent,
    FeedbackRecord,
    FeedbackType,
    RejectionRecord,
)
from ..models.positioning import PositionPrediction
from ..models.rejection import (
    RECOMMENDATIONS,
    RejectionFlag,
    extract_rejection_category,
    parse_category,
)
from ..services.pattern_repository import PatternRepository
from ..utils.error_handling import create_error_response, swallow_learning_errors
from .pattern_learner import PatternLearner
from .pattern_store import PatternStore
from .positioning_store import PositioningModelStore
from .rejection_catalog import RejectionCatalog

logger = logging.getLogger(__name__)


class FeedbackEngine:
    """Routes approve / reject / position-fix actions to the pattern learner.

    Every captured event becomes exactly one immutable record in an
    append-only log. Learning and durable writes happen after the record is
    logged, and neither can make ``capture_feedback`` raise.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        pattern_store: PatternStore | None = None,
        repository: PatternRepository | None = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.patterns = pattern_store if pattern_store is not None else PatternStore()
        self.positioning = PositioningModelStore()
        self.rejections = RejectionCatalog()
        self.learner = PatternLearner(self.config, self.patterns, self.positioning, self.rejections)
        self.repository = repository

        self._records: list[FeedbackRecord] = []
        self._records_lock = threading.Lock()

    @swallow_learning_errors(default=None)
    def capture_feedback(self, event: FeedbackEvent) -> FeedbackRecord | None:
        """Record a review action and learn from it.

        Args:
            event: The reviewer's action

        Returns:
            The created record, or None if the event could not be captured

        """
        record = self._build_record(event)

        # Logging a record and applying it stay atomic against rebuild_aggregates
        with self._records_lock:
            self._records.append(record)
            self.rejections.record_review(*record.key)
            self._route(record)
        self._store_record(record)

        logger.info(
            f"Captured {record.feedback_type.value} feedback for "
            f"{record.candidate.species_id}:{record.candidate.feature_type} from {record.user_id}"
        )
        return record

    def _build_record(self, event: FeedbackEvent) -> FeedbackRecord:
        """Validate an event and convert it into its feedback record.

        Raises:
            FeedbackEventError: If the event is malformed

        """
        try:
            event_type = FeedbackType(event.event_type)
        except ValueError as e:
            raise FeedbackEventError(f"Unknown feedback type: {event.event_type!r}") from e

        if not event.annotation_id:
            raise FeedbackEventError("Feedback event has no annotation_id")
        if not event.user_id:
            raise FeedbackEventError("Feedback event has no user_id")
        if not isinstance(event.candidate, AnnotationCandidate):
            raise FeedbackEventError(f"Feedback event {event.event_id} has no candidate annotation")

        common = {
            "event_id": event.event_id,
            "annotation_id": event.annotation_id,
            "user_id": event.user_id,
            "candidate": event.candidate,
            "image_id": event.image_id,
            "created_at": event.created_at,
        }

        if event_type is FeedbackType.APPROVE:
            return ApprovalRecord(prompt=event.prompt, **common)

        if event_type is FeedbackType.REJECT:
            if event.category:
                category = parse_category(event.category)
            else:
                category = extract_rejection_category(event.notes)
            return RejectionRecord(category=category, notes=event.notes or "", **common)

        if not isinstance(event.corrected_bounding_box, BoundingBox):
            raise FeedbackEventError(f"Position fix {event.event_id} has no corrected bounding box")
        return CorrectionRecord(corrected_bounding_box=event.corrected_bounding_box, **common)

    def _route(self, record: FeedbackRecord) -> bool:
        if isinstance(record, ApprovalRecord):
            return self.learner.learn_from_approval(
                record.candidate, {"prompt": record.prompt, "now": record.created_at}
            )
        if isinstance(record, RejectionRecord):
            return self.learner.learn_from_rejection(
                record.candidate, record.category, {"notes": record.notes, "now": record.created_at}
            )
        return self.learner.learn_from_correction(
            record.candidate, record.corrected_bounding_box, {"now": record.created_at}
        )

    def _store_record(self, record: FeedbackRecord) -> None:
        if self.repository is None:
            return
        key = f"{FEEDBACK_KEY_PREFIX}/{record.event_id}"
        try:
            self.repository.put(key, record.to_dict())
        except Exception as e:
            response = create_error_response(e, "store_feedback_record", {"key": key})
            logger.error(f"Failed to persist feedback record: {response}")

    def records(
        self,
        feedback_type: FeedbackType | None = None,
        since: datetime | None = None,
    ) -> list[FeedbackRecord]:
        """Get the captured records, oldest first, optionally filtered."""
        with self._records_lock:
            records = list(self._records)
        return [
            r for r in records
            if (feedback_type is None or r.feedback_type is feedback_type)
            and (since is None or r.created_at >= since)
        ]

    def replace_records(self, records: list[FeedbackRecord]) -> None:
        """Swap the whole log, used when importing a state snapshot."""
        with self._records_lock:
            self._records = list(records)

    def analyze_rejection_patterns(
        self,
        window: timedelta | None = None,
        now: datetime | None = None,
    ) -> list[RejectionFlag]:
        """Compute rejection rates per (species, feature, category).

        ``rejection_rate = category_count / reviews_for_(species, feature)``
        and a group is high-risk when the rate exceeds the flag threshold.
        With a window only records captured inside it are counted.

        Returns:
            Flags sorted by descending rejection rate

        """
        if window is not None:
            since = (now or datetime.now()) - window
            catalog = self._catalog_from_records(self.records(since=since))
        else:
            catalog = self.rejections

        group_counts = catalog.group_counts()
        flags = []
        for entry in catalog.entries():
            # Rejections captured outside capture_feedback have no review tally
            total = max(
                catalog.total_reviews(entry.species, entry.feature_type),
                group_counts[entry.species, entry.feature_type],
            )
            rate = entry.count / total if total else 0.0
            high_risk = rate > self.config.flag_threshold
            flags.append(RejectionFlag(
                species=entry.species,
                feature_type=entry.feature_type,
                category=entry.category,
                rejection_count=entry.count,
                total_annotations=total,
                rejection_rate=rate,
                high_risk=high_risk,
                recommendation=RECOMMENDATIONS[entry.category].format(
                    feature=entry.feature_type, species=entry.species
                ),
            ))

        flags.sort(key=lambda f: (-f.rejection_rate, f.species, f.feature_type, f.category.value))
        high_risk_count = sum(1 for f in flags if f.high_risk)
        if high_risk_count:
            logger.warning(f"{high_risk_count} rejection patterns flagged as high-risk")
        return flags

    def predict_position_adjustment(
        self,
        species: str,
        feature_type: str,
        proposed_box: BoundingBox,
    ) -> PositionPrediction:
        """Suggest a corrected box from the learned average correction.

        The average delta is applied only when the positioning confidence
        reaches the configured threshold; otherwise the proposed box comes
        back unchanged and flagged as low confidence.
        """
        model = self.positioning.get(species, feature_type)
        if model is None:
            return PositionPrediction(bounding_box=proposed_box, confidence=0.0, adjusted=False)

        if model.confidence >= self.config.position_confidence_threshold:
            delta = model.avg_delta
            adjusted = proposed_box.shifted(delta["x"], delta["y"], delta["width"], delta["height"]).clamped()
            return PositionPrediction(
                bounding_box=adjusted,
                confidence=model.confidence,
                adjusted=True,
                sample_count=model.sample_count,
            )

        return PositionPrediction(
            bounding_box=proposed_box,
            confidence=model.confidence,
            adjusted=False,
            sample_count=model.sample_count,
        )

    def rebuild_aggregates(self) -> None:
        """Re-derive positioning models and the rejection catalog from the records.

        The aggregates are built into fresh stores and swapped in while the
        log is locked, so feedback captured during a rebuild is never lost.

        Learned patterns are left as they are. They also absorb batch
        learning and direct learner calls that produce no records, so the
        log cannot reproduce them.
        """
        with self._records_lock:
            records = list(self._records)
            rejections = self._catalog_from_records(records)
            positioning = PositioningModelStore()
            for record in records:
                if isinstance(record, CorrectionRecord):
                    positioning.record_correction(
                        *record.key,
                        record.candidate.bounding_box,
                        record.corrected_bounding_box,
                        self.config.correction_weight,
                        record.created_at,
                    )

            self.positioning.load(positioning.to_dict())
            self.rejections.load(rejections.to_dict())

        logger.info(f"Rebuilt feedback aggregates from {len(records)} records")

    def _catalog_from_records(
        self,
        records: list[FeedbackRecord],
        catalog: RejectionCatalog | None = None,
    ) -> RejectionCatalog:
        catalog = catalog if catalog is not None else RejectionCatalog()
        for record in records:
            catalog.record_review(*record.key)
            if isinstance(record, RejectionRecord):
                catalog.record_rejection(
                    *record.key, record.category, record.candidate.confidence, record.notes, record.created_at
                )
        return catalog
