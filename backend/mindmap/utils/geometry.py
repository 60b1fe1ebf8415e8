"""Vector math for the layout engine."""
import math
from dataclasses import dataclass
from typing import Optional

_MIN_DISTANCE = 0.001


def is_finite(*values: float) -> bool:
    return all(math.isfinite(value) for value in values)


@dataclass(frozen=True)
class Vector:
    """2D point or displacement."""

    x: float = 0.0
    y: float = 0.0

    @property
    def is_finite(self) -> bool:
        return is_finite(self.x, self.y)

    @property
    def magnitude(self) -> float:
        return math.hypot(self.x, self.y)

    def add(self, other: "Vector") -> "Vector":
        return Vector(self.x + other.x, self.y + other.y)

    def scaled(self, factor: float) -> "Vector":
        return Vector(self.x * factor, self.y * factor)

    def distance_to(self, other: "Vector") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def direction_to(self, other: "Vector") -> Optional["Vector"]:
        """Unit vector towards `other`, zero when coincident, None when non-finite."""
        distance = self.distance_to(other)
        if not math.isfinite(distance):
            return None
        if distance <= _MIN_DISTANCE:
            return Vector()
        direction = Vector((other.x - self.x) / distance, (other.y - self.y) / distance)
        return direction if direction.is_finite else None


ZERO = Vector()


def centroid(points) -> Vector:
    points = list(points)
    if not points:
        return ZERO
    return Vector(
        sum(p.x for p in points) / len(points),
        sum(p.y for p in points) / len(points),
    )
