"""Learned pattern data models for (species, feature) statistics."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..utils.statistics import RunningStat, incremental_mean
from .annotation import BoundingBox


@dataclass
class PromptRecord:
    """A generation prompt that produced approved annotations."""

    prompt: str
    effectiveness: float
    uses: int = 1
    recorded_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "effectiveness": self.effectiveness,
            "uses": self.uses,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PromptRecord":
        return cls(
            prompt=data["prompt"],
            effectiveness=float(data["effectiveness"]),
            uses=int(data.get("uses", 1)),
            recorded_at=datetime.fromisoformat(data["recorded_at"]),
        )


@dataclass
class LearnedPattern:
    """Running bounding-box and confidence statistics for one feature of one species.

    Center and size dimensions are tracked independently with weighted
    Welford accumulators; ``observation_count`` counts learning events and
    never decreases.
    """

    species: str
    feature_type: str
    center_x: RunningStat = field(default_factory=RunningStat)
    center_y: RunningStat = field(default_factory=RunningStat)
    width: RunningStat = field(default_factory=RunningStat)
    height: RunningStat = field(default_factory=RunningStat)
    observation_count: int = 0
    average_confidence: float = 0.0
    confidence_weight: float = 0.0
    successful_prompts: list[PromptRecord] = field(default_factory=list)
    last_updated: datetime = field(default_factory=datetime.now)
    last_decayed: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return self.species, self.feature_type

    @property
    def mean_center(self) -> tuple[float, float]:
        return self.center_x.mean, self.center_y.mean

    @property
    def mean_size(self) -> tuple[float, float]:
        return self.width.mean, self.height.mean

    @property
    def variance(self) -> dict[str, float]:
        return {
            "x": self.center_x.variance,
            "y": self.center_y.variance,
            "width": self.width.variance,
            "height": self.height.variance,
        }

    @property
    def effective_weight(self) -> float:
        """Accumulated (possibly decayed) geometry weight."""
        return self.center_x.weight

    @property
    def best_prompt_effectiveness(self) -> float | None:
        if not self.successful_prompts:
            return None
        return max(p.effectiveness for p in self.successful_prompts)

    def observe(
        self,
        box: BoundingBox,
        confidence: float | None,
        weight: float = 1.0,
        now: datetime | None = None,
    ) -> None:
        """Fold one observed bounding box (and optionally its confidence) in.

        Args:
            box: Observed bounding box
            confidence: Observed confidence, or None to leave it untouched
            weight: Pseudo-observation count for this sample
            now: Update timestamp

        """
        cx, cy = box.center
        self.center_x.update(cx, weight)
        self.center_y.update(cy, weight)
        self.width.update(box.width, weight)
        self.height.update(box.height, weight)

        if confidence is not None:
            self.confidence_weight += weight
            self.average_confidence = min(1.0, max(0.0, incremental_mean(
                self.average_confidence, confidence, weight, self.confidence_weight
            )))

        self.observation_count += 1
        self.last_updated = now or datetime.now()

    def penalize(self, amount: float, now: datetime | None = None) -> None:
        """Lower the average confidence, floored at zero."""
        self.average_confidence = max(0.0, self.average_confidence - amount)
        self.last_updated = now or datetime.now()

    def record_prompt(self, prompt: str, effectiveness: float, limit: int) -> None:
        """Add or reinforce a successful prompt, keeping at most ``limit``.

        A repeated prompt has its effectiveness averaged over its uses. When
        the list overflows the lowest-effectiveness entry is evicted, the
        oldest one on ties.
        """
        for record in self.successful_prompts:
            if record.prompt == prompt:
                record.uses += 1
                record.effectiveness += (effectiveness - record.effectiveness) / record.uses
                break
        else:
            self.successful_prompts.append(PromptRecord(prompt=prompt, effectiveness=effectiveness))

        while len(self.successful_prompts) > limit:
            worst = min(
                range(len(self.successful_prompts)),
                key=lambda i: (self.successful_prompts[i].effectiveness, i),
            )
            del self.successful_prompts[worst]

        self.successful_prompts.sort(key=lambda p: p.effectiveness, reverse=True)

    def decay(self, factor: float, now: datetime) -> None:
        """Shrink accumulated weights so newer observations count for more."""
        for stat in (self.center_x, self.center_y, self.width, self.height):
            stat.decay(factor)
        self.confidence_weight *= factor
        self.last_decayed = now

    def to_dict(self) -> dict[str, Any]:
        """Convert pattern to dictionary for serialization."""
        return {
            "species": self.species,
            "feature_type": self.feature_type,
            "center_x": self.center_x.to_dict(),
            "center_y": self.center_y.to_dict(),
            "width": self.width.to_dict(),
            "height": self.height.to_dict(),
            "observation_count": self.observation_count,
            "average_confidence": self.average_confidence,
            "confidence_weight": self.confidence_weight,
            "successful_prompts": [p.to_dict() for p in self.successful_prompts],
            "last_updated": self.last_updated.isoformat(),
            "last_decayed": self.last_decayed.isoformat() if self.last_decayed else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LearnedPattern":
        return cls(
            species=data["species"],
            feature_type=data["feature_type"],
            center_x=RunningStat.from_dict(data["center_x"]),
            center_y=RunningStat.from_dict(data["center_y"]),
            width=RunningStat.from_dict(data["width"]),
            height=RunningStat.from_dict(data["height"]),
            observation_count=int(data["observation_count"]),
            average_confidence=float(data["average_confidence"]),
            confidence_weight=float(data.get("confidence_weight", 0.0)),
            successful_prompts=[PromptRecord.from_dict(p) for p in data.get("successful_prompts", [])],
            last_updated=datetime.fromisoformat(data["last_updated"]),
            last_decayed=datetime.fromisoformat(data["last_decayed"]) if data.get("last_decayed") else None,
        )
