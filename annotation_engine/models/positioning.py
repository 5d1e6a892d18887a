"""Positioning model built from human bounding-box corrections."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..constants import POSITION_FULL_CONFIDENCE_SAMPLES
from ..utils.statistics import RunningStat
from .annotation import BoundingBox


def positioning_confidence(sample_count: int, std_dev_x: float, std_dev_y: float) -> float:
    """Confidence in an average correction from its sample size and spread.

    ``min(1, n / 20) * (1 - min(1, (std_x + std_y) / 2))``
    """
    sample_size_confidence = min(1.0, sample_count / POSITION_FULL_CONFIDENCE_SAMPLES)
    consistency_confidence = 1.0 - min(1.0, (std_dev_x + std_dev_y) / 2)
    return sample_size_confidence * consistency_confidence


@dataclass
class PositioningModel:
    """Average correction delta for one (species, feature) pair."""

    species: str
    feature_type: str
    delta_x: RunningStat = field(default_factory=RunningStat)
    delta_y: RunningStat = field(default_factory=RunningStat)
    delta_width: RunningStat = field(default_factory=RunningStat)
    delta_height: RunningStat = field(default_factory=RunningStat)
    sample_count: int = 0
    confidence: float = 0.0
    last_trained: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> tuple[str, str]:
        return self.species, self.feature_type

    @property
    def avg_delta(self) -> dict[str, float]:
        return {
            "x": self.delta_x.mean,
            "y": self.delta_y.mean,
            "width": self.delta_width.mean,
            "height": self.delta_height.mean,
        }

    @property
    def std_dev_delta(self) -> dict[str, float]:
        return {
            "x": self.delta_x.std_dev,
            "y": self.delta_y.std_dev,
            "width": self.delta_width.std_dev,
            "height": self.delta_height.std_dev,
        }

    def observe(
        self,
        original: BoundingBox,
        corrected: BoundingBox,
        weight: float,
        now: datetime | None = None,
    ) -> None:
        """Fold one correction delta in with the given pseudo-observation weight."""
        self.delta_x.update(corrected.x - original.x, weight)
        self.delta_y.update(corrected.y - original.y, weight)
        self.delta_width.update(corrected.width - original.width, weight)
        self.delta_height.update(corrected.height - original.height, weight)
        self.sample_count += 1
        self.confidence = positioning_confidence(
            self.sample_count, self.delta_x.std_dev, self.delta_y.std_dev
        )
        self.last_trained = now or datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "species": self.species,
            "feature_type": self.feature_type,
            "delta_x": self.delta_x.to_dict(),
            "delta_y": self.delta_y.to_dict(),
            "delta_width": self.delta_width.to_dict(),
            "delta_height": self.delta_height.to_dict(),
            "sample_count": self.sample_count,
            "confidence": self.confidence,
            "last_trained": self.last_trained.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PositioningModel":
        return cls(
            species=data["species"],
            feature_type=data["feature_type"],
            delta_x=RunningStat.from_dict(data["delta_x"]),
            delta_y=RunningStat.from_dict(data["delta_y"]),
            delta_width=RunningStat.from_dict(data["delta_width"]),
            delta_height=RunningStat.from_dict(data["delta_height"]),
            sample_count=int(data["sample_count"]),
            confidence=float(data["confidence"]),
            last_trained=datetime.fromisoformat(data["last_trained"]),
        )


@dataclass(frozen=True)
class PositionPrediction:
    """Suggested adjustment for a proposed bounding box."""

    bounding_box: BoundingBox
    confidence: float
    adjusted: bool
    sample_count: int = 0

    @property
    def low_confidence(self) -> bool:
        return not self.adjusted
