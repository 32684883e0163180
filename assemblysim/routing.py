"""Travel-time collaborator: straight-line distance at a constant speed."""

from __future__ import annotations

import math

from .models import Coordinate


class Router:
    """
    Turns two coordinates into a travel duration.

    Real path planning is out of scope; the hall is treated as open floor and
    every carrier drives at *speed* metres per second.
    """

    def __init__(self, speed: float = 1.0) -> None:
        if speed <= 0:
            raise ValueError("speed must be positive")
        self.speed = speed

    def distance(self, start: Coordinate, end: Coordinate) -> float:
        return math.dist(start, end)

    def duration(self, start: Coordinate, end: Coordinate) -> float:
        return self.distance(start, end) / self.speed

    def position_after(self, start: Coordinate, end: Coordinate, elapsed: float) -> Coordinate:
        """Where a carrier driving from *start* to *end* is after *elapsed* seconds."""
        total = self.duration(start, end)
        if total <= 0 or elapsed >= total:
            return end
        f = max(elapsed, 0.0) / total
        return (start[0] + (end[0] - start[0]) * f,
                start[1] + (end[1] - start[1]) * f)
