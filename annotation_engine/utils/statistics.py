"""Online statistics used by the pattern and positioning models."""

import math
from dataclasses import dataclass


@dataclass
class RunningStat:
    """Weighted running mean and variance for one dimension.

    A sample with weight ``w`` counts as ``w`` pseudo-observations, so the
    classical Welford algorithm is the special case ``w == 1``.
    """

    count: int = 0
    weight: float = 0.0
    mean: float = 0.0
    m2: float = 0.0

    @property
    def variance(self) -> float:
        """Population variance of the weighted samples."""
        if self.weight <= 0:
            return 0.0
        return max(0.0, self.m2 / self.weight)

    @property
    def std_dev(self) -> float:
        return math.sqrt(self.variance)

    def update(self, value: float, weight: float = 1.0) -> None:
        """Fold one weighted sample into the running statistics."""
        self.weight, self.mean, self.m2 = weighted_welford_update(
            self.weight, self.mean, self.m2, value, weight
        )
        self.count += 1

    def decay(self, factor: float) -> None:
        """Scale down the accumulated weight, keeping mean and variance."""
        self.weight *= factor
        self.m2 *= factor

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "weight": self.weight,
            "mean": self.mean,
            "m2": self.m2,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunningStat":
        return cls(
            count=int(data.get("count", 0)),
            weight=float(data.get("weight", 0.0)),
            mean=float(data.get("mean", 0.0)),
            m2=float(data.get("m2", 0.0)),
        )


def weighted_welford_update(
    total_weight: float,
    mean: float,
    m2: float,
    value: float,
    weight: float = 1.0,
) -> tuple[float, float, float]:
    """Apply one weighted Welford step.

    ``W' = W + w``, ``delta = x - mean``, ``mean' = mean + (w / W') * delta``,
    ``M2' = M2 + w * delta * (x - mean')``.

    Args:
        total_weight: Accumulated weight before the sample
        mean: Current running mean
        m2: Current sum of weighted squared deviations
        value: The new sample
        weight: Pseudo-observation count of the sample

    Returns:
        Tuple of (new_total_weight, new_mean, new_m2)

    """
    if weight <= 0:
        raise ValueError(f"Sample weight must be positive, got {weight}")

    new_weight = total_weight + weight
    delta = value - mean
    new_mean = mean + (weight / new_weight) * delta
    new_m2 = m2 + weight * delta * (value - new_mean)

    # Rounding can push M2 fractionally below zero
    return new_weight, new_mean, max(0.0, new_m2)


def incremental_mean(current: float, value: float, weight: float, total_weight: float) -> float:
    """Move a running mean toward value by weight out of total_weight."""
    if total_weight <= 0:
        return value
    return current + (weight / total_weight) * (value - current)
