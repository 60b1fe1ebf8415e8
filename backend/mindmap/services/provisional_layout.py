"""
Cheap ring placement shown before the physics stage finishes.
"""
import math
import random
from typing import List, Optional, Tuple

CANVAS_RADIUS = 300.0
ANGLE_JITTER = 0.2
RADIUS_JITTER = 20.0


def nodes_per_ring(count: int) -> int:
    return max(6, min(12, count // 3))


def ring_layout(
    count: int,
    rng: Optional[random.Random] = None,
    canvas_radius: float = CANVAS_RADIUS,
) -> List[Tuple[float, float]]:
    """Positions for `count` items spread over concentric rings.

    Inner rings are smaller; each position gets a small angular and radial
    jitter from `rng` so no two nodes overlap exactly. Pass a seeded
    `random.Random` for reproducible output.
    """
    if count <= 0:
        return []
    rng = rng or random.Random()
    per_ring = nodes_per_ring(count)
    base_radius = canvas_radius / 3
    positions: List[Tuple[float, float]] = []
    for index in range(count):
        ring_index = index // per_ring
        position_in_ring = index % per_ring
        total_in_ring = min(per_ring, count - ring_index * per_ring)
        ring_radius = base_radius + ring_index * (base_radius * 0.8)
        angle = position_in_ring * (2.0 * math.pi / total_in_ring)
        angle += rng.uniform(-ANGLE_JITTER, ANGLE_JITTER)
        radius = ring_radius + rng.uniform(-RADIUS_JITTER, RADIUS_JITTER)
        positions.append((math.cos(angle) * radius, math.sin(angle) * radius))
    return positions


def ring_count(count: int) -> int:
    if count <= 0:
        return 0
    return max(1, math.ceil(count / nodes_per_ring(count)))
