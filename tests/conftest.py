"""Shared fixtures for annotation engine tests."""

from datetime import datetime

import pytest

from annotation_engine.models.annotation import AnnotationCandidate, BoundingBox

TERMS = {
    "pico": ("el pico", "beak"),
    "alas": ("las alas", "wings"),
    "cola": ("la cola", "tail"),
    "cabeza": ("la cabeza", "head"),
    "patas": ("las patas", "legs"),
    "ojo": ("el ojo", "eye"),
}

FIXED_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def make_candidate():
    """Factory for AnnotationCandidates with sensible defaults."""
    counter = {"n": 0}

    def _make(
        x=0.1,
        y=0.1,
        width=0.15,
        height=0.15,
        confidence=0.9,
        feature="pico",
        species="cardinal",
        spanish=None,
        english=None,
    ):
        counter["n"] += 1
        default_spanish, default_english = TERMS.get(feature, ("el pico", "beak"))
        return AnnotationCandidate(
            species_id=species,
            feature_type=feature,
            bounding_box=BoundingBox(x=x, y=y, width=width, height=height),
            confidence=confidence,
            spanish_term=default_spanish if spanish is None else spanish,
            english_term=default_english if english is None else english,
            created_at=FIXED_TIME,
            annotation_id=f"ann-{counter['n']}",
        )

    return _make
