"""Bounding-box geometry helpers."""

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from annotation_engine.models.annotation import BoundingBox


def _corners(box: "BoundingBox") -> tuple[float, float, float, float]:
    return box.x, box.y, box.x + box.width, box.y + box.height


def calculate_iou(box_a: "BoundingBox", box_b: "BoundingBox") -> float:
    """Calculate Intersection over Union of two normalized boxes.

    Areas are computed from the same corner coordinates as the
    intersection so that a box compared with itself yields exactly 1.0.

    Args:
        box_a: First bounding box
        box_b: Second bounding box

    Returns:
        IoU in [0, 1]; 0.0 when both boxes are degenerate

    """
    ax1, ay1, ax2, ay2 = _corners(box_a)
    bx1, by1, bx2, by2 = _corners(box_b)

    inter_w = max(0.0, min(ax2, bx2) - max(ax1, bx1))
    inter_h = max(0.0, min(ay2, by2) - max(ay1, by1))
    intersection = inter_w * inter_h

    area_a = max(0.0, ax2 - ax1) * max(0.0, ay2 - ay1)
    area_b = max(0.0, bx2 - bx1) * max(0.0, by2 - by1)
    union = area_a + area_b - intersection

    if union <= 0:
        return 0.0
    return float(min(1.0, max(0.0, intersection / union)))


def pairwise_iou(boxes: list["BoundingBox"]) -> np.ndarray:
    """Compute the symmetric IoU matrix for a list of boxes.

    Args:
        boxes: Bounding boxes to compare

    Returns:
        (n, n) array where entry [i, j] is IoU(boxes[i], boxes[j])

    """
    n = len(boxes)
    if n == 0:
        return np.zeros((0, 0))

    corners = np.array([_corners(b) for b in boxes], dtype=float)
    x1, y1, x2, y2 = corners[:, 0], corners[:, 1], corners[:, 2], corners[:, 3]

    inter_w = np.clip(np.minimum(x2[:, None], x2[None, :]) - np.maximum(x1[:, None], x1[None, :]), 0.0, None)
    inter_h = np.clip(np.minimum(y2[:, None], y2[None, :]) - np.maximum(y1[:, None], y1[None, :]), 0.0, None)
    intersection = inter_w * inter_h

    areas = np.clip(x2 - x1, 0.0, None) * np.clip(y2 - y1, 0.0, None)
    union = areas[:, None] + areas[None, :] - intersection

    with np.errstate(divide="ignore", invalid="ignore"):
        iou = np.where(union > 0, intersection / union, 0.0)

    return np.clip(iou, 0.0, 1.0)


def normalized_distance(
    point: tuple[float, float],
    mean: tuple[float, float],
    variance: tuple[float, float],
    variance_floor: float,
) -> float:
    """Variance-normalized Euclidean distance between a point and a mean.

    Each axis is divided by the standard deviation, with the variance floored
    so a pattern that has seen identical samples still gives a finite score.
    """
    p = np.asarray(point, dtype=float)
    m = np.asarray(mean, dtype=float)
    v = np.maximum(np.asarray(variance, dtype=float), variance_floor)
    return float(np.linalg.norm((p - m) / np.sqrt(v)))
