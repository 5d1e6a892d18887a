"""
Integration tests for the AnnotationLearningEngine facade.
"""

import json
from datetime import datetime, timedelta
from unittest.mock import MagicMock
from urllib.parse import quote

import pytest

from annotation_engine import AnnotationLearningEngine, EngineConfig, PersistenceError
from annotation_engine.models.annotation import BoundingBox
from annotation_engine.models.feedback import FeedbackEvent, FeedbackType
from annotation_engine.services.pattern_repository import (
    InMemoryPatternRepository,
    JsonFilePatternRepository,
)

T0 = datetime(2024, 2, 1, 9, 0)


@pytest.fixture
def engine():
    return AnnotationLearningEngine()


@pytest.fixture
def trained_engine(engine, make_candidate):
    """Engine with approvals, rejections and corrections on two features"""
    for feature in ("pico", "cola"):
        for i in range(4):
            candidate = make_candidate(feature=feature, x=0.1 + 0.01 * i, confidence=0.85)
            engine.capture_feedback(FeedbackEvent(
                event_type=FeedbackType.APPROVE,
                annotation_id=candidate.annotation_id,
                user_id="reviewer",
                candidate=candidate,
                prompt="outline each feature",
                created_at=T0,
            ))
        rejected = make_candidate(feature=feature, confidence=0.8)
        engine.capture_feedback(FeedbackEvent(
            event_type=FeedbackType.REJECT,
            annotation_id=rejected.annotation_id,
            user_id="reviewer",
            candidate=rejected,
            notes="[TOO_SMALL] hard to see",
            created_at=T0,
        ))
        fixed = make_candidate(feature=feature)
        engine.capture_feedback(FeedbackEvent(
            event_type=FeedbackType.POSITION_FIX,
            annotation_id=fixed.annotation_id,
            user_id="reviewer",
            candidate=fixed,
            corrected_bounding_box=BoundingBox(0.12, 0.1, 0.15, 0.15),
            created_at=T0,
        ))
    return engine


class TestEngine:
    """End-to-end behaviour of the facade"""

    def test_validate_uses_learned_features(self, trained_engine, make_candidate):
        result = trained_engine.validate([make_candidate(feature="alas")], timestamp=T0)
        assert "pico" in result.metrics.missing_required_features
        assert result.metrics.timestamp == T0

    def test_analytics(self, trained_engine):
        analytics = trained_engine.get_analytics()

        assert analytics["total_patterns"] == 2
        assert analytics["species_tracked"] == 1
        assert analytics["total_observations"] == 10
        assert analytics["feedback_records"] == 12
        assert analytics["total_rejections"] == 2
        assert analytics["high_risk_patterns"] == 0

    def test_facade_learning_never_raises(self, engine, make_candidate):
        assert engine.learn_from_approval(make_candidate(confidence=0.9)) is True
        assert engine.learn_from_rejection(make_candidate(), "not a category") is True
        assert engine.rejections.entries()[0].category.value == "other"

    def test_recommended_features(self, trained_engine):
        assert trained_engine.get_recommended_features("cardinal") == ["cola", "pico"]

    def test_generate_prompt(self, trained_engine):
        prompt = trained_engine.generate_prompt("cardinal", "pico", "Find the beak.")
        assert prompt.confidence > 0
        assert "Find the beak." in prompt.render()

    def test_decay(self, trained_engine):
        result = trained_engine.apply_decay(T0 + timedelta(days=14))
        assert result["decayed"] == 2
        assert trained_engine.patterns.get("cardinal", "pico").observation_count == 5


class TestStateRoundTrip:
    """Export and import of learned state"""

    def test_round_trip(self, trained_engine):
        exported = json.dumps(trained_engine.export_state())

        restored = AnnotationLearningEngine()
        restored.import_state(exported)

        assert restored.get_analytics() == trained_engine.get_analytics()
        assert restored.patterns.to_dict() == trained_engine.patterns.to_dict()
        assert restored.positioning.to_dict() == trained_engine.positioning.to_dict()
        assert restored.analyze_rejection_patterns() == trained_engine.analyze_rejection_patterns()
        assert len(restored.feedback.records()) == 12

    def test_bad_version_leaves_state(self, trained_engine):
        before = trained_engine.patterns.to_dict()

        with pytest.raises(PersistenceError):
            trained_engine.import_state({"format_version": 99, "patterns": []})

        assert trained_engine.patterns.to_dict() == before

    def test_malformed_state(self, trained_engine):
        with pytest.raises(PersistenceError):
            trained_engine.import_state({"format_version": 1, "patterns": [{"species": "x"}]})
        assert len(trained_engine.patterns) == 2


class TestRepositoryPersistence:
    """Persisting through a PatternRepository"""

    def test_persist_and_restore(self, make_candidate):
        repository = InMemoryPatternRepository()
        engine = AnnotationLearningEngine(repository=repository)
        candidate = make_candidate(confidence=0.9)
        engine.capture_feedback(FeedbackEvent(
            event_type="approve",
            annotation_id=candidate.annotation_id,
            user_id="reviewer",
            candidate=candidate,
        ))

        assert engine.persist() == []
        assert repository.list("patterns/") == ["patterns/cardinal/pico"]
        assert len(repository.list("feedback/")) == 1

        restored = AnnotationLearningEngine()
        assert restored.restore(repository) == []
        assert restored.patterns.to_dict() == engine.patterns.to_dict()
        assert len(restored.feedback.records()) == 1

    def test_persist_reports_failures(self, trained_engine):
        repository = MagicMock()
        repository.put.side_effect = OSError("unavailable")

        failed = trained_engine.persist(repository)

        assert "patterns/cardinal/pico" in failed
        assert "rejections/catalog" in failed
        assert len(trained_engine.patterns) == 2

    def test_persist_without_repository(self, engine):
        with pytest.raises(PersistenceError):
            engine.persist()

    def test_custom_config_is_shared(self):
        config = EngineConfig(flag_threshold=0.1)
        engine = AnnotationLearningEngine(config)
        assert engine.feedback.config is config
        assert engine.validator.config is config
        assert engine.prompts.config is config

    def test_persist_to_fresh_repository(self, make_candidate):
        """An empty repository passed explicitly is used, not ignored"""
        engine = AnnotationLearningEngine()
        engine.learn_from_approval(make_candidate(confidence=0.9))
        repository = InMemoryPatternRepository()

        assert engine.persist(repository) == []
        assert repository.list("patterns/") == ["patterns/cardinal/pico"]

        restored = AnnotationLearningEngine()
        assert restored.restore(InMemoryPatternRepository()) == []
        assert len(restored.patterns) == 0
        assert restored.restore(repository) == []
        assert restored.patterns.keys() == [("cardinal", "pico")]

    def test_pruned_patterns_are_removed(self, make_candidate):
        repository = InMemoryPatternRepository()
        engine = AnnotationLearningEngine(repository=repository)
        engine.learn_from_approval(make_candidate(confidence=0.9), {"now": T0})
        engine.learn_from_correction(make_candidate(), BoundingBox(0.12, 0.1, 0.15, 0.15), {"now": T0})
        engine.persist()

        assert engine.apply_decay(T0 + timedelta(days=400))["pruned"] == 1
        engine.positioning.clear()
        assert engine.persist() == []

        assert repository.list("patterns/") == []
        assert repository.list("positioning/") == []
        restored = AnnotationLearningEngine()
        restored.restore(repository)
        assert len(restored.patterns) == 0

    def test_restore_skips_corrupt_key(self, tmp_path, make_candidate):
        repository = JsonFilePatternRepository(tmp_path)
        engine = AnnotationLearningEngine(repository=repository)
        for feature in ("pico", "cola"):
            engine.learn_from_approval(make_candidate(feature=feature, confidence=0.9))
        engine.persist()
        corrupt = tmp_path / f"{quote('patterns/cardinal/cola', safe='')}.json"
        corrupt.write_text("{not json")

        restored = AnnotationLearningEngine()
        failed = restored.restore(repository)

        assert failed == ["patterns/cardinal/cola"]
        assert restored.patterns.keys() == [("cardinal", "pico")]


class TestValidationClock:
    def test_injected_clock_makes_results_repeatable(self, make_candidate):
        engine = AnnotationLearningEngine(clock=lambda: T0)
        candidates = [make_candidate(confidence=0.9), make_candidate(feature="cola", x=0.6)]

        first = engine.validate(candidates)
        second = engine.validate(candidates)

        assert first.metrics.timestamp == T0
        assert first.to_dict() == second.to_dict()
