"""
Keyed store of learned (species, feature) patterns.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..constants import MIN_SAMPLES_FOR_PATTERN
from ..models.pattern import LearnedPattern
from .keyed_store import KeyedStore

logger = logging.getLogger(__name__)

PatternKey = tuple[str, str]


class PatternStore:
    """Thread-safe in-memory storage of LearnedPatterns keyed by (species, feature).

    A key is present only once its pattern has at least one observation.
    """

    def __init__(self) -> None:
        self._store: KeyedStore[PatternKey, LearnedPattern] = KeyedStore()

    def get(self, species: str, feature_type: str) -> LearnedPattern | None:
        """Get a snapshot of a pattern"""
        return self._store.get((species, feature_type))

    def update(
        self,
        species: str,
        feature_type: str,
        mutate: Callable[[LearnedPattern], None],
        create: bool = True,
    ) -> LearnedPattern | None:
        """Atomically apply mutate to a pattern.

        Args:
            species: Species identifier
            feature_type: Feature identifier
            mutate: In-place update applied inside the key's critical section
            create: Whether to start a new pattern when none exists

        Returns:
            Snapshot of the updated pattern, or None if no pattern was kept

        """
        factory = (lambda: LearnedPattern(species=species, feature_type=feature_type)) if create else None
        return self._store.update(
            (species, feature_type),
            mutate,
            factory=factory,
            keep=lambda p: p.observation_count >= 1,
        )

    def keys(self) -> list[PatternKey]:
        return sorted(self._store.keys())

    def patterns(self) -> list[LearnedPattern]:
        """Get snapshots of all patterns sorted by key."""
        snapshot = self._store.snapshot()
        return [snapshot[key] for key in sorted(snapshot)]

    def patterns_for_species(self, species: str) -> list[LearnedPattern]:
        """Get snapshots of every pattern learned for a species"""
        return [p for p in self.patterns() if p.species == species]

    def species(self) -> list[str]:
        return sorted({species for species, _ in self._store.keys()})

    def recommended_features(self, species: str, limit: int) -> list[str]:
        """Rank a species' established features by how often and how well they are found.

        Features need at least ``MIN_SAMPLES_FOR_PATTERN`` observations and
        are ranked by ``occurrence_rate * average_confidence``, ties broken
        by feature name.
        """
        patterns = self.patterns_for_species(species)
        species_observations = sum(p.observation_count for p in patterns)
        if species_observations == 0:
            return []

        scored = [
            (p.observation_count / species_observations * p.average_confidence, p.feature_type)
            for p in patterns
            if p.observation_count >= MIN_SAMPLES_FOR_PATTERN
        ]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [feature for _, feature in scored[:limit]]

    def decay(
        self,
        now: datetime,
        decay_factor: float,
        period_days: float,
        prune_threshold: float,
    ) -> tuple[int, int]:
        """Apply elapsed-time decay to every pattern and prune faded ones.

        The exponent is the number of decay periods since the pattern was
        last updated or last decayed, whichever is later.

        Returns:
            Tuple of (decayed_count, pruned_count)

        """
        decayed = 0
        pruned = 0

        def apply(pattern: LearnedPattern) -> None:
            nonlocal decayed
            reference = max(pattern.last_updated, pattern.last_decayed or pattern.last_updated)
            elapsed_days = (now - reference).total_seconds() / 86400
            if elapsed_days <= 0:
                return
            pattern.decay(decay_factor ** (elapsed_days / period_days), now)
            decayed += 1

        faded = []
        for key in self._store.keys():
            pattern = self._store.update(key, apply)
            if pattern is not None and pattern.effective_weight < prune_threshold:
                faded.append(key)

        return decayed, self.prune(faded, prune_threshold)

    def prune(self, keys: list[PatternKey], threshold: float) -> int:
        """Remove the given patterns whose effective weight is below threshold.

        The weight is re-checked under each key's lock, so a pattern that
        was reinforced after being selected survives.
        """
        pruned = 0
        for key in keys:
            if self._store.remove_if(key, lambda p: p.effective_weight < threshold):
                pruned += 1
                logger.info(f"Pruned faded pattern {key[0]}:{key[1]}")
        return pruned

    def clear(self) -> None:
        self._store.clear()

    def to_dict(self) -> list[dict[str, Any]]:
        """Convert store to a serializable list of patterns."""
        return [p.to_dict() for p in self.patterns()]

    def load(self, data: list[dict[str, Any]]) -> None:
        """Replace all patterns with the serialized ones."""
        patterns = [LearnedPattern.from_dict(item) for item in data]
        self._store.replace_all({p.key: p for p in patterns if p.observation_count >= 1})

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store
