"""Annotation data models produced by the vision provider."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4


@dataclass(frozen=True)
class BoundingBox:
    """Normalized rectangle, all values relative to image dimensions."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        if self.height == 0:
            return float("inf")
        return self.width / self.height

    def shifted(self, dx: float, dy: float, dwidth: float, dheight: float) -> "BoundingBox":
        """Return a new box moved and resized by the given deltas."""
        return BoundingBox(
            x=self.x + dx,
            y=self.y + dy,
            width=self.width + dwidth,
            height=self.height + dheight,
        )

    def clamped(self) -> "BoundingBox":
        """Return the box clipped to the unit square."""
        x = min(1.0, max(0.0, self.x))
        y = min(1.0, max(0.0, self.y))
        width = min(1.0 - x, max(0.0, self.width))
        height = min(1.0 - y, max(0.0, self.height))
        return BoundingBox(x=x, y=y, width=width, height=height)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BoundingBox":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


@dataclass(frozen=True)
class AnnotationCandidate:
    """A single AI-proposed annotation for one anatomical feature."""

    species_id: str
    feature_type: str  # e.g. "pico", "alas", "cola"
    bounding_box: BoundingBox
    confidence: float
    spanish_term: str
    english_term: str
    created_at: datetime = field(default_factory=datetime.now)
    annotation_id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def key(self) -> tuple[str, str]:
        return self.species_id, self.feature_type

    def to_dict(self) -> dict[str, Any]:
        """Convert candidate to dictionary for serialization."""
        return {
            "annotation_id": self.annotation_id,
            "species_id": self.species_id,
            "feature_type": self.feature_type,
            "bounding_box": self.bounding_box.to_dict(),
            "confidence": self.confidence,
            "spanish_term": self.spanish_term,
            "english_term": self.english_term,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnnotationCandidate":
        created_at = data.get("created_at")
        return cls(
            species_id=data["species_id"],
            feature_type=data["feature_type"],
            bounding_box=BoundingBox.from_dict(data["bounding_box"]),
            confidence=float(data["confidence"]),
            spanish_term=data.get("spanish_term", ""),
            english_term=data.get("english_term", ""),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(),
            annotation_id=data.get("annotation_id") or str(uuid4()),
        )
