"""
Layout configuration models.
"""
from pydantic import BaseModel, Field


class LayoutConfig(BaseModel):
    """Force-directed layout parameters."""
    repulsion_constant: float = 300.0
    attraction_constant: float = 0.08
    damping_factor: float = 0.9
    margin: float = 60.0
    max_distance: float = 250.0
    time_step: float = 0.016
    convergence_threshold: float = 0.05
    max_iterations: int = Field(default=50, ge=1)
    yield_interval: int = Field(default=5, ge=1)
    convergence_check_interval: int = Field(default=10, ge=1)

    def iteration_cap(self, node_count: int) -> int:
        """Hard cap: min(max_iterations, 2 * node_count)."""
        return min(self.max_iterations, 2 * node_count)


class Bounds(BaseModel):
    """Axis-aligned layout rectangle."""
    min_x: float = -400.0
    min_y: float = -400.0
    max_x: float = 400.0
    max_y: float = 400.0

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def clamp(self, x: float, y: float) -> tuple:
        if self.width <= 0 or self.height <= 0:
            return x, y
        return (
            max(self.min_x, min(self.max_x, x)),
            max(self.min_y, min(self.max_y, y)),
        )


class LayoutResult(BaseModel):
    """Outcome of one layout run."""
    iterations: int = 0
    converged: bool = False
    mean_velocity: float = 0.0
    skipped_updates: int = 0
