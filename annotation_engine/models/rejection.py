"""Rejection categories and catalog entries for failed annotations."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..constants import MAX_REPRESENTATIVE_NOTES


class RejectionCategory(str, Enum):
    """Why a reviewer rejected an annotation."""

    NOT_IN_IMAGE = "not_in_image"
    TOO_SMALL = "too_small"
    UNCLEAR_BLURRY = "unclear_blurry"
    OCCLUDED = "occluded"
    WRONG_ID = "wrong_id"
    WRONG_TERM = "wrong_term"
    DUPLICATE = "duplicate"
    NOT_REPRESENTATIVE = "not_representative"
    CONFUSING = "confusing"
    WRONG_DIFFICULTY = "wrong_difficulty"
    BAD_POSITION = "bad_position"
    BOX_TOO_LARGE = "box_too_large"
    BOX_TOO_SMALL = "box_too_small"
    INCORRECT_SPECIES = "incorrect_species"
    POOR_LOCALIZATION = "poor_localization"
    FALSE_POSITIVE = "false_positive"
    LOW_QUALITY = "low_quality"
    OTHER = "other"


# Recommendation emitted when a category is flagged as high-risk
RECOMMENDATIONS: dict[RejectionCategory, str] = {
    RejectionCategory.NOT_IN_IMAGE: "Only annotate {feature} when it is clearly visible in the photo of {species}.",
    RejectionCategory.TOO_SMALL: "Skip {feature} on {species} when it covers less than 2% of the image.",
    RejectionCategory.UNCLEAR_BLURRY: "Avoid annotating {feature} on {species} in blurry or low-detail regions.",
    RejectionCategory.OCCLUDED: "Do not annotate {feature} on {species} when it is hidden or obstructed.",
    RejectionCategory.WRONG_ID: "Verify that {feature} on {species} is not confused with nearby structures.",
    RejectionCategory.WRONG_TERM: "Double-check the Spanish and English terms used for {feature} on {species}.",
    RejectionCategory.DUPLICATE: "Annotate {feature} on {species} only once per image.",
    RejectionCategory.NOT_REPRESENTATIVE: "Prefer typical, well-lit views of {feature} on {species}.",
    RejectionCategory.CONFUSING: "Avoid unusual presentations of {feature} on {species} that may mislead learners.",
    RejectionCategory.WRONG_DIFFICULTY: "Re-assess the difficulty level assigned to {feature} on {species}.",
    RejectionCategory.BAD_POSITION: "Re-center boxes for {feature} on {species}; they are frequently misplaced.",
    RejectionCategory.BOX_TOO_LARGE: "Tighten boxes for {feature} on {species} to exclude surrounding area.",
    RejectionCategory.BOX_TOO_SMALL: "Enlarge boxes for {feature} on {species} so the whole feature is covered.",
    RejectionCategory.INCORRECT_SPECIES: "Confirm the species is {species} before annotating {feature}.",
    RejectionCategory.POOR_LOCALIZATION: "Improve localization of {feature} on {species}.",
    RejectionCategory.FALSE_POSITIVE: "Do not report {feature} on {species} unless it is present.",
    RejectionCategory.LOW_QUALITY: "Skip {feature} on {species} in low-quality images.",
    RejectionCategory.OTHER: "Review recent rejections of {feature} on {species} for recurring issues.",
}

# Keyword fallbacks, checked in order
_CATEGORY_KEYWORDS: list[tuple[RejectionCategory, tuple[str, ...]]] = [
    (RejectionCategory.INCORRECT_SPECIES, ("species", "wrong bird")),
    (RejectionCategory.WRONG_TERM, ("term", "translation")),
    (RejectionCategory.WRONG_ID, ("feature", "part", "anatomy")),
    (RejectionCategory.TOO_SMALL, ("too small", "tiny")),
    (RejectionCategory.POOR_LOCALIZATION, ("position", "localization", "bounding box", "box")),
    (RejectionCategory.FALSE_POSITIVE, ("false", "not found", "doesn't exist")),
    (RejectionCategory.DUPLICATE, ("duplicate", "already exists")),
    (RejectionCategory.LOW_QUALITY, ("quality", "blurry", "unclear")),
]

_EXPLICIT_CATEGORY = re.compile(r"^\s*\[([A-Za-z_]+)\]")


def parse_category(value: "str | RejectionCategory | None") -> RejectionCategory:
    """Resolve a category by enum value or name, falling back to OTHER."""
    if isinstance(value, RejectionCategory):
        return value
    if not value:
        return RejectionCategory.OTHER
    normalized = value.strip()
    try:
        return RejectionCategory(normalized.lower())
    except ValueError:
        pass
    try:
        return RejectionCategory[normalized.upper()]
    except KeyError:
        return RejectionCategory.OTHER


def extract_rejection_category(notes: str | None) -> RejectionCategory:
    """Derive a category from reviewer notes.

    An explicit ``[CATEGORY] notes`` prefix wins; otherwise the notes are
    matched against keyword lists.
    """
    if not notes:
        return RejectionCategory.OTHER

    match = _EXPLICIT_CATEGORY.match(notes)
    if match:
        return parse_category(match.group(1))

    lower_notes = notes.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lower_notes for keyword in keywords):
            return category
    return RejectionCategory.OTHER


@dataclass
class RejectionEntry:
    """Counted rejections for one (species, feature, category)."""

    species: str
    feature_type: str
    category: RejectionCategory
    count: int = 0
    avg_confidence_at_rejection: float = 0.0
    notes: list[str] = field(default_factory=list)
    last_rejected: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> tuple[str, str, RejectionCategory]:
        return self.species, self.feature_type, self.category

    def add(self, confidence: float, notes: str | None, now: datetime | None = None) -> None:
        """Count one more rejection."""
        self.count += 1
        self.avg_confidence_at_rejection += (confidence - self.avg_confidence_at_rejection) / self.count
        if notes and notes not in self.notes and len(self.notes) < MAX_REPRESENTATIVE_NOTES:
            self.notes.append(notes)
        self.last_rejected = now or datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "species": self.species,
            "feature_type": self.feature_type,
            "category": self.category.value,
            "count": self.count,
            "avg_confidence_at_rejection": self.avg_confidence_at_rejection,
            "notes": list(self.notes),
            "last_rejected": self.last_rejected.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RejectionEntry":
        return cls(
            species=data["species"],
            feature_type=data["feature_type"],
            category=parse_category(data["category"]),
            count=int(data["count"]),
            avg_confidence_at_rejection=float(data["avg_confidence_at_rejection"]),
            notes=list(data.get("notes", [])),
            last_rejected=datetime.fromisoformat(data["last_rejected"]),
        )


@dataclass(frozen=True)
class RejectionFlag:
    """A (species, feature, category) group whose rejection rate is too high."""

    species: str
    feature_type: str
    category: RejectionCategory
    rejection_count: int
    total_annotations: int
    rejection_rate: float
    high_risk: bool
    recommendation: str
