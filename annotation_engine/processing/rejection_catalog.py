"""
Counted, categorized catalog of reviewer rejections.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..models.rejection import RejectionCategory, RejectionEntry
from .keyed_store import KeyedStore

logger = logging.getLogger(__name__)


@dataclass
class ReviewTally:
    """Number of reviewed annotations for one (species, feature)."""

    species: str
    feature_type: str
    total: int = 0


class RejectionCatalog:
    """Tracks why annotations are rejected and how many were reviewed.

    Rejection rates are computed against the review tally of the same
    (species, feature), which counts approvals, rejections and corrections.
    """

    def __init__(self) -> None:
        self._entries: KeyedStore[tuple[str, str, RejectionCategory], RejectionEntry] = KeyedStore()
        self._tallies: KeyedStore[tuple[str, str], ReviewTally] = KeyedStore()

    def record_rejection(
        self,
        species: str,
        feature_type: str,
        category: RejectionCategory,
        confidence: float,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> RejectionEntry:
        """Count one rejection under (species, feature, category)."""
        entry = self._entries.update(
            (species, feature_type, category),
            lambda e: e.add(confidence, notes, now),
            factory=lambda: RejectionEntry(species=species, feature_type=feature_type, category=category),
        )
        assert entry is not None
        return entry

    def record_review(self, species: str, feature_type: str) -> int:
        """Count one reviewed annotation for (species, feature).

        Returns:
            The new review total

        """

        def increment(tally: ReviewTally) -> None:
            tally.total += 1

        tally = self._tallies.update(
            (species, feature_type),
            increment,
            factory=lambda: ReviewTally(species=species, feature_type=feature_type),
        )
        assert tally is not None
        return tally.total

    def total_reviews(self, species: str, feature_type: str) -> int:
        tally = self._tallies.get((species, feature_type))
        return tally.total if tally else 0

    def entries(self) -> list[RejectionEntry]:
        """Get snapshots of all entries, most frequent first."""
        snapshot = self._entries.snapshot()
        return sorted(
            snapshot.values(),
            key=lambda e: (-e.count, e.species, e.feature_type, e.category.value),
        )

    def entries_for(self, species: str, feature_type: str) -> list[RejectionEntry]:
        return [e for e in self.entries() if e.species == species and e.feature_type == feature_type]

    def group_counts(self) -> dict[tuple[str, str], int]:
        """Total rejections per (species, feature)."""
        counts: dict[tuple[str, str], int] = defaultdict(int)
        for entry in self.entries():
            counts[(entry.species, entry.feature_type)] += entry.count
        return dict(counts)

    def total_rejections(self) -> int:
        return sum(e.count for e in self.entries())

    def clear(self) -> None:
        self._entries.clear()
        self._tallies.clear()

    def to_dict(self) -> dict[str, Any]:
        tallies = self._tallies.snapshot()
        return {
            "entries": [e.to_dict() for e in self.entries()],
            "review_totals": [
                {"species": t.species, "feature_type": t.feature_type, "total": t.total}
                for _, t in sorted(tallies.items())
            ],
        }

    def load(self, data: dict[str, Any]) -> None:
        entries = [RejectionEntry.from_dict(item) for item in data.get("entries", [])]
        self._entries.replace_all({e.key: e for e in entries})
        tallies = [
            ReviewTally(
                species=item["species"],
                feature_type=item["feature_type"],
                total=int(item["total"]),
            )
            for item in data.get("review_totals", [])
        ]
        self._tallies.replace_all({(t.species, t.feature_type): t for t in tallies})
        logger.info(f"Loaded rejection catalog with {len(entries)} entries")
