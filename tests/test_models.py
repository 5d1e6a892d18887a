"""
Unit tests for data models.
"""

import pytest

from annotation_engine.models.annotation import AnnotationCandidate, BoundingBox
from annotation_engine.models.feedback import CorrectionRecord, RejectionRecord, record_from_dict
from annotation_engine.models.pattern import LearnedPattern
from annotation_engine.models.rejection import (
    RejectionCategory,
    RejectionEntry,
    extract_rejection_category,
    parse_category,
)


class TestBoundingBox:
    """Test cases for BoundingBox"""

    def test_derived_values(self):
        box = BoundingBox(0.2, 0.4, 0.2, 0.1)
        assert box.center == pytest.approx((0.3, 0.45))
        assert box.area == pytest.approx(0.02)
        assert box.aspect_ratio == pytest.approx(2.0)

    def test_zero_height_aspect_ratio(self):
        assert BoundingBox(0.1, 0.1, 0.2, 0.0).aspect_ratio == float("inf")

    def test_clamped(self):
        box = BoundingBox(-0.1, 0.9, 0.5, 0.3).clamped()
        assert (box.x, box.y, box.width) == (0.0, 0.9, 0.5)
        assert box.height == pytest.approx(0.1)


class TestRejectionCategory:
    """Category parsing"""

    @pytest.mark.parametrize("value,expected", [
        ("too_small", RejectionCategory.TOO_SMALL),
        ("TOO_SMALL", RejectionCategory.TOO_SMALL),
        (" Occluded ", RejectionCategory.OCCLUDED),
        ("nonsense", RejectionCategory.OTHER),
        (None, RejectionCategory.OTHER),
        (RejectionCategory.DUPLICATE, RejectionCategory.DUPLICATE),
    ])
    def test_parse_category(self, value, expected):
        assert parse_category(value) is expected

    @pytest.mark.parametrize("notes,expected", [
        ("[WRONG_TERM] should be la cola", RejectionCategory.WRONG_TERM),
        ("The translation is wrong", RejectionCategory.WRONG_TERM),
        ("tiny, can barely see it", RejectionCategory.TOO_SMALL),
        ("already exists on this image", RejectionCategory.DUPLICATE),
        ("too blurry", RejectionCategory.LOW_QUALITY),
        ("", RejectionCategory.OTHER),
    ])
    def test_extract_from_notes(self, notes, expected):
        assert extract_rejection_category(notes) is expected

    def test_entry_keeps_few_notes(self):
        entry = RejectionEntry("cardinal", "pico", RejectionCategory.TOO_SMALL)
        for i in range(8):
            entry.add(0.5 + i * 0.01, f"note {i}")
        entry.add(0.6, "note 0")

        assert entry.count == 9
        assert len(entry.notes) == 5


class TestFeedbackRecords:
    """Serialization of append-only records"""

    @pytest.fixture
    def candidate(self):
        return AnnotationCandidate(
            species_id="cardinal",
            feature_type="pico",
            bounding_box=BoundingBox(0.1, 0.1, 0.2, 0.2),
            confidence=0.8,
            spanish_term="el pico",
            english_term="beak",
        )

    def test_rejection_record(self, candidate):
        record = RejectionRecord(
            event_id="e1",
            annotation_id=candidate.annotation_id,
            user_id="u1",
            candidate=candidate,
            category=RejectionCategory.OCCLUDED,
            notes="behind a leaf",
        )
        assert record_from_dict(record.to_dict()) == record

    def test_correction_record(self, candidate):
        record = CorrectionRecord(
            event_id="e2",
            annotation_id=candidate.annotation_id,
            user_id="u1",
            candidate=candidate,
            corrected_bounding_box=BoundingBox(0.15, 0.1, 0.2, 0.25),
        )
        restored = record_from_dict(record.to_dict())

        assert restored == record
        assert restored.delta == pytest.approx({"x": 0.05, "y": 0.0, "width": 0.0, "height": 0.05})


class TestLearnedPattern:
    def test_round_trip_preserves_prompts(self):
        pattern = LearnedPattern("cardinal", "pico")
        pattern.observe(BoundingBox(0.1, 0.1, 0.2, 0.2), 0.9)
        pattern.record_prompt("outline the beak", 0.9, limit=10)

        assert LearnedPattern.from_dict(pattern.to_dict()) == pattern

    def test_penalize_keeps_observations(self):
        pattern = LearnedPattern("cardinal", "pico")
        pattern.observe(BoundingBox(0.1, 0.1, 0.2, 0.2), 0.05)
        pattern.penalize(0.1)

        assert pattern.average_confidence == 0.0
        assert pattern.observation_count == 1
