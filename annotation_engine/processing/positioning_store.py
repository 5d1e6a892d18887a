"""
Positioning models learned from reviewer bounding-box corrections.
"""

from datetime import datetime
from typing import Any

from ..models.annotation import BoundingBox
from ..models.positioning import PositioningModel
from .keyed_store import KeyedStore


class PositioningModelStore:
    """Thread-safe storage of PositioningModels keyed by (species, feature)."""

    def __init__(self) -> None:
        self._store: KeyedStore[tuple[str, str], PositioningModel] = KeyedStore()

    def get(self, species: str, feature_type: str) -> PositioningModel | None:
        return self._store.get((species, feature_type))

    def record_correction(
        self,
        species: str,
        feature_type: str,
        original: BoundingBox,
        corrected: BoundingBox,
        weight: float,
        now: datetime | None = None,
    ) -> PositioningModel:
        """Fold one correction into the (species, feature) model atomically.

        Returns:
            Snapshot of the model after the update

        """
        model = self._store.update(
            (species, feature_type),
            lambda m: m.observe(original, corrected, weight, now),
            factory=lambda: PositioningModel(species=species, feature_type=feature_type),
        )
        assert model is not None
        return model

    def models(self) -> list[PositioningModel]:
        snapshot = self._store.snapshot()
        return [snapshot[key] for key in sorted(snapshot)]

    def clear(self) -> None:
        self._store.clear()

    def to_dict(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self.models()]

    def load(self, data: list[dict[str, Any]]) -> None:
        models = [PositioningModel.from_dict(item) for item in data]
        self._store.replace_all({m.key: m for m in models})

    def __len__(self) -> int:
        return len(self._store)
