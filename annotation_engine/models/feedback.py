"""Feedback data models for learning from reviewer actions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union
from uuid import uuid4

from .annotation import AnnotationCandidate, BoundingBox
from .rejection import RejectionCategory, parse_category


class FeedbackType(str, Enum):
    """Kind of review action taken on an annotation."""

    APPROVE = "approve"
    REJECT = "reject"
    POSITION_FIX = "position_fix"


@dataclass(frozen=True)
class FeedbackEvent:
    """A reviewer's approve / reject / position-fix action on one annotation."""

    event_type: FeedbackType
    annotation_id: str
    user_id: str
    candidate: AnnotationCandidate
    category: str | None = None
    notes: str | None = None
    corrected_bounding_box: BoundingBox | None = None
    prompt: str | None = None
    image_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ApprovalRecord:
    """Represents a reviewer approving an AI annotation."""

    event_id: str
    annotation_id: str
    user_id: str
    candidate: AnnotationCandidate
    prompt: str | None = None
    image_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    feedback_type = FeedbackType.APPROVE

    @property
    def key(self) -> tuple[str, str]:
        return self.candidate.key

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.feedback_type.value,
            "event_id": self.event_id,
            "annotation_id": self.annotation_id,
            "user_id": self.user_id,
            "candidate": self.candidate.to_dict(),
            "prompt": self.prompt,
            "image_id": self.image_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class RejectionRecord:
    """Represents a reviewer rejecting an AI annotation."""

    event_id: str
    annotation_id: str
    user_id: str
    candidate: AnnotationCandidate
    category: RejectionCategory
    notes: str = ""
    image_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    feedback_type = FeedbackType.REJECT

    @property
    def key(self) -> tuple[str, str]:
        return self.candidate.key

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.feedback_type.value,
            "event_id": self.event_id,
            "annotation_id": self.annotation_id,
            "user_id": self.user_id,
            "candidate": self.candidate.to_dict(),
            "category": self.category.value,
            "notes": self.notes,
            "image_id": self.image_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class CorrectionRecord:
    """Represents a reviewer repositioning an AI bounding box."""

    event_id: str
    annotation_id: str
    user_id: str
    candidate: AnnotationCandidate
    corrected_bounding_box: BoundingBox
    image_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    feedback_type = FeedbackType.POSITION_FIX

    @property
    def key(self) -> tuple[str, str]:
        return self.candidate.key

    @property
    def delta(self) -> dict[str, float]:
        original = self.candidate.bounding_box
        corrected = self.corrected_bounding_box
        return {
            "x": corrected.x - original.x,
            "y": corrected.y - original.y,
            "width": corrected.width - original.width,
            "height": corrected.height - original.height,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.feedback_type.value,
            "event_id": self.event_id,
            "annotation_id": self.annotation_id,
            "user_id": self.user_id,
            "candidate": self.candidate.to_dict(),
            "corrected_bounding_box": self.corrected_bounding_box.to_dict(),
            "image_id": self.image_id,
            "created_at": self.created_at.isoformat(),
        }


FeedbackRecord = Union[ApprovalRecord, RejectionRecord, CorrectionRecord]


def record_from_dict(data: dict[str, Any]) -> FeedbackRecord:
    """Rebuild a feedback record from its serialized form."""
    feedback_type = FeedbackType(data["type"])
    common = {
        "event_id": data["event_id"],
        "annotation_id": data["annotation_id"],
        "user_id": data["user_id"],
        "candidate": AnnotationCandidate.from_dict(data["candidate"]),
        "image_id": data.get("image_id"),
        "created_at": datetime.fromisoformat(data["created_at"]),
    }

    if feedback_type is FeedbackType.APPROVE:
        return ApprovalRecord(prompt=data.get("prompt"), **common)
    if feedback_type is FeedbackType.REJECT:
        return RejectionRecord(
            category=parse_category(data.get("category")),
            notes=data.get("notes") or "",
            **common,
        )
    return CorrectionRecord(
        corrected_bounding_box=BoundingBox.from_dict(data["corrected_bounding_box"]),
        **common,
    )
