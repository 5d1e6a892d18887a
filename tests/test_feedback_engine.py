"""
Tests for the FeedbackEngine class.
"""

import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from annotation_engine.models.annotation import BoundingBox
from annotation_engine.models.feedback import (
    ApprovalRecord,
    CorrectionRecord,
    FeedbackEvent,
    FeedbackType,
    RejectionRecord,
)
from annotation_engine.models.rejection import RejectionCategory
from annotation_engine.processing.feedback_engine import FeedbackEngine

T0 = datetime(2024, 6, 1, 10, 0)


@pytest.fixture
def engine():
    """Create a FeedbackEngine instance for testing."""
    return FeedbackEngine()


def make_event(candidate, event_type, **kwargs):
    return FeedbackEvent(
        event_type=event_type,
        annotation_id=candidate.annotation_id,
        user_id=kwargs.pop("user_id", "reviewer-1"),
        candidate=candidate,
        **kwargs,
    )


class TestCaptureFeedback:
    """Routing of review actions"""

    def test_approval(self, engine, make_candidate):
        candidate = make_candidate(confidence=0.9)

        record = engine.capture_feedback(make_event(candidate, FeedbackType.APPROVE, prompt="base"))

        assert isinstance(record, ApprovalRecord)
        assert record.prompt == "base"
        assert engine.patterns.get("cardinal", "pico").observation_count == 1
        assert engine.records() == [record]

    def test_rejection_with_explicit_category(self, engine, make_candidate):
        event = make_event(make_candidate(), FeedbackType.REJECT, category="TOO_SMALL", notes="barely visible")

        record = engine.capture_feedback(event)

        assert isinstance(record, RejectionRecord)
        assert record.category is RejectionCategory.TOO_SMALL
        assert record.notes == "barely visible"

    @pytest.mark.parametrize("notes,expected", [
        ("[OCCLUDED] branch in front", RejectionCategory.OCCLUDED),
        ("Bounding box is off", RejectionCategory.POOR_LOCALIZATION),
        ("Wrong bird entirely", RejectionCategory.INCORRECT_SPECIES),
        (None, RejectionCategory.OTHER),
    ])
    def test_rejection_category_from_notes(self, engine, make_candidate, notes, expected):
        record = engine.capture_feedback(make_event(make_candidate(), "reject", notes=notes))
        assert record.category is expected

    def test_position_fix(self, engine, make_candidate):
        corrected = BoundingBox(0.12, 0.1, 0.15, 0.15)
        event = make_event(make_candidate(), FeedbackType.POSITION_FIX, corrected_bounding_box=corrected)

        record = engine.capture_feedback(event)

        assert isinstance(record, CorrectionRecord)
        assert record.delta["x"] == pytest.approx(0.02)
        assert engine.positioning.get("cardinal", "pico").sample_count == 1

    def test_malformed_event_returns_none(self, engine, make_candidate):
        """A position fix without a box is dropped, not raised"""
        event = make_event(make_candidate(), FeedbackType.POSITION_FIX)

        assert engine.capture_feedback(event) is None
        assert engine.records() == []

    def test_unknown_event_type(self, engine, make_candidate):
        assert engine.capture_feedback(make_event(make_candidate(), "delete")) is None

    def test_missing_user(self, engine, make_candidate):
        assert engine.capture_feedback(make_event(make_candidate(), "approve", user_id="")) is None

    def test_repository_failure_does_not_propagate(self, make_candidate):
        """A failing durable write never reaches the caller"""
        repository = MagicMock()
        repository.put.side_effect = OSError("disk full")
        engine = FeedbackEngine(repository=repository)

        record = engine.capture_feedback(make_event(make_candidate(), FeedbackType.APPROVE))

        assert record is not None
        repository.put.assert_called_once()
        assert engine.patterns.get("cardinal", "pico") is not None

    def test_learning_failure_does_not_propagate(self, engine, make_candidate):
        with patch.object(engine.patterns, "update", side_effect=RuntimeError("boom")):
            record = engine.capture_feedback(make_event(make_candidate(), FeedbackType.APPROVE))

        assert record is not None
        assert len(engine.records()) == 1

    def test_records_are_written(self, make_candidate):
        repository = MagicMock()
        engine = FeedbackEngine(repository=repository)

        record = engine.capture_feedback(make_event(make_candidate(), FeedbackType.APPROVE))

        key, value = repository.put.call_args.args
        assert key == f"feedback/{record.event_id}"
        assert value["type"] == "approve"


class TestRejectionAnalysis:
    """Rejection rate flags"""

    def _review(self, engine, make_candidate, approvals, rejections, category="TOO_SMALL", when=None):
        for _ in range(approvals):
            kwargs = {"created_at": when} if when else {}
            engine.capture_feedback(make_event(make_candidate(feature="cola"), "approve", **kwargs))
        for _ in range(rejections):
            kwargs = {"created_at": when} if when else {}
            engine.capture_feedback(
                make_event(make_candidate(feature="cola"), "reject", category=category, **kwargs)
            )

    def test_high_rejection_rate_flagged(self, engine, make_candidate):
        """Ten of twenty reviews rejected as too small is high-risk"""
        self._review(engine, make_candidate, approvals=10, rejections=10)

        flags = engine.analyze_rejection_patterns()

        assert len(flags) == 1
        flag = flags[0]
        assert (flag.species, flag.feature_type, flag.category) == ("cardinal", "cola", RejectionCategory.TOO_SMALL)
        assert flag.rejection_count == 10
        assert flag.total_annotations == 20
        assert flag.rejection_rate == pytest.approx(0.5)
        assert flag.high_risk is True
        assert "cola" in flag.recommendation and "cardinal" in flag.recommendation

    def test_low_rejection_rate_not_flagged(self, engine, make_candidate):
        self._review(engine, make_candidate, approvals=18, rejections=2)

        flag = engine.analyze_rejection_patterns()[0]

        assert flag.rejection_rate == pytest.approx(0.1)
        assert flag.high_risk is False

    def test_window(self, engine, make_candidate):
        """Only records inside the window are counted"""
        self._review(engine, make_candidate, approvals=0, rejections=5, when=T0 - timedelta(days=30))
        self._review(engine, make_candidate, approvals=9, rejections=1, when=T0 - timedelta(hours=1))

        recent = engine.analyze_rejection_patterns(window=timedelta(days=7), now=T0)
        overall = engine.analyze_rejection_patterns()

        assert recent[0].rejection_count == 1
        assert recent[0].rejection_rate == pytest.approx(0.1)
        assert overall[0].rejection_count == 6
        assert overall[0].rejection_rate == pytest.approx(0.4)

    def test_rebuild_aggregates(self, engine, make_candidate):
        self._review(engine, make_candidate, approvals=3, rejections=2)
        for _ in range(2):
            engine.capture_feedback(make_event(
                make_candidate(), "position_fix", corrected_bounding_box=BoundingBox(0.13, 0.1, 0.15, 0.15)
            ))
        before = engine.analyze_rejection_patterns()
        model_before = engine.positioning.get("cardinal", "pico")

        engine.rebuild_aggregates()

        assert engine.analyze_rejection_patterns() == before
        model_after = engine.positioning.get("cardinal", "pico")
        assert model_after.sample_count == model_before.sample_count
        assert model_after.avg_delta == pytest.approx(model_before.avg_delta)

    def test_rebuild_keeps_learned_patterns(self, engine, make_candidate):
        """Batch learning has no records, so patterns are not re-derived"""
        engine.capture_feedback(make_event(make_candidate(confidence=0.9), "approve"))
        engine.learner.learn_from_annotations([make_candidate(confidence=0.9) for _ in range(3)])
        before = engine.patterns.get("cardinal", "pico")

        engine.rebuild_aggregates()

        assert engine.patterns.get("cardinal", "pico") == before
        assert before.observation_count == 4


class TestPositionPrediction:
    """Position adjustment suggestions"""

    def _correct(self, engine, make_candidate, count, dx=0.02):
        for _ in range(count):
            original = make_candidate(x=0.2, y=0.2, width=0.1, height=0.1)
            corrected = BoundingBox(0.2 + dx, 0.2, 0.1, 0.1)
            engine.capture_feedback(make_event(original, "position_fix", corrected_bounding_box=corrected))

    def test_without_model(self, engine):
        box = BoundingBox(0.3, 0.3, 0.1, 0.1)

        prediction = engine.predict_position_adjustment("cardinal", "pico", box)

        assert prediction.bounding_box == box
        assert prediction.low_confidence is True
        assert prediction.confidence == 0.0

    def test_low_confidence_keeps_box(self, engine, make_candidate):
        self._correct(engine, make_candidate, count=5)
        box = BoundingBox(0.3, 0.3, 0.1, 0.1)

        prediction = engine.predict_position_adjustment("cardinal", "pico", box)

        assert prediction.confidence == pytest.approx(0.25)
        assert prediction.adjusted is False
        assert prediction.bounding_box == box

    def test_confident_adjustment(self, engine, make_candidate):
        self._correct(engine, make_candidate, count=20)

        prediction = engine.predict_position_adjustment("cardinal", "pico", BoundingBox(0.3, 0.3, 0.1, 0.1))

        assert prediction.adjusted is True
        assert prediction.confidence == pytest.approx(1.0)
        assert prediction.sample_count == 20
        assert prediction.bounding_box.x == pytest.approx(0.32)
        assert prediction.bounding_box.y == pytest.approx(0.3)

    def test_adjustment_is_clamped(self, engine, make_candidate):
        self._correct(engine, make_candidate, count=20, dx=0.05)

        prediction = engine.predict_position_adjustment("cardinal", "pico", BoundingBox(0.95, 0.3, 0.05, 0.1))

        box = prediction.bounding_box
        assert box.x <= 1.0
        assert box.x + box.width <= 1.0 + 1e-9


class TestConcurrency:
    """Concurrent feedback on shared keys"""

    def test_two_concurrent_corrections(self, engine, make_candidate):
        """Both corrections land in the positioning model"""
        barrier = threading.Barrier(2)
        events = [
            make_event(
                make_candidate(x=0.2, y=0.2),
                "position_fix",
                corrected_bounding_box=BoundingBox(0.22 + 0.01 * i, 0.2, 0.15, 0.15),
            )
            for i in range(2)
        ]

        def worker(event):
            barrier.wait()
            engine.capture_feedback(event)

        threads = [threading.Thread(target=worker, args=(event,)) for event in events]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        model = engine.positioning.get("cardinal", "pico")
        assert model.sample_count == 2
        assert model.delta_x.weight == pytest.approx(6.0)
        assert model.avg_delta["x"] == pytest.approx(0.025)

    def test_capture_during_rebuild_is_kept(self, engine, make_candidate):
        """Feedback arriving mid-rebuild lands in the rebuilt aggregates"""
        for _ in range(4):
            engine.capture_feedback(make_event(make_candidate(feature="cola"), "approve"))
        late_event = make_event(
            make_candidate(feature="cola"),
            "position_fix",
            corrected_bounding_box=BoundingBox(0.12, 0.1, 0.15, 0.15),
        )
        late = threading.Thread(target=engine.capture_feedback, args=(late_event,))
        build_catalog = engine._catalog_from_records

        def build_then_capture(records, catalog=None):
            late.start()
            return build_catalog(records, catalog)

        with patch.object(engine, "_catalog_from_records", side_effect=build_then_capture):
            engine.rebuild_aggregates()
        late.join()

        assert len(engine.records()) == 5
        assert engine.rejections.total_reviews("cardinal", "cola") == 5
        assert engine.positioning.get("cardinal", "cola").sample_count == 1

    def test_stress_mixed_feedback(self, engine, make_candidate):
        """No lost updates under many concurrent reviewers"""
        threads_count, per_thread = 8, 50
        barrier = threading.Barrier(threads_count)

        def worker(index):
            barrier.wait()
            for n in range(per_thread):
                candidate = make_candidate(feature="pico" if index % 2 else "alas", confidence=0.9)
                if n % 2:
                    engine.capture_feedback(make_event(candidate, "approve", user_id=f"user-{index}"))
                else:
                    engine.capture_feedback(make_event(
                        candidate,
                        "position_fix",
                        user_id=f"user-{index}",
                        corrected_bounding_box=BoundingBox(0.11, 0.1, 0.15, 0.15),
                    ))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(engine.records()) == threads_count * per_thread
        for feature in ("pico", "alas"):
            pattern = engine.patterns.get("cardinal", feature)
            model = engine.positioning.get("cardinal", feature)
            # Four threads per feature, half approvals and half corrections
            assert pattern.observation_count == 4 * per_thread
            assert model.sample_count == 4 * per_thread // 2
            assert pattern.center_x.weight == pytest.approx(100 * 1.5 + 100 * 3.0)
            assert engine.rejections.total_reviews("cardinal", feature) == 4 * per_thread
