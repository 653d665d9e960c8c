"""Coarse 4×4 court grid used for telemetry."""
from __future__ import annotations

from bisect import bisect_right
from typing import Optional, Sequence, Tuple

from ball_launcher.common import Point
from ball_launcher.config import CourtConfig

GRID_SIZE = 4
# Fractions of the court width / length; rows are shallower near the net
X_DIVIDERS: Tuple[float, ...] = (0.0, 0.25, 0.5, 0.75, 1.0)
Y_DIVIDERS: Tuple[float, ...] = (0.0, 0.2, 0.4, 0.7, 1.0)


def _cell(value: float, extent: float, dividers: Sequence[float]) -> Optional[int]:
    if extent <= 0 or not 0.0 <= value < extent:
        return None
    return min(bisect_right(dividers, value / extent) - 1, GRID_SIZE - 1)


def zone_id(point: Point, court: CourtConfig) -> Optional[int]:
    """``row * 4 + col`` for a point on the court, ``None`` outside it."""
    col = _cell(point[0], court.width_m, X_DIVIDERS)
    row = _cell(point[1], court.length_m, Y_DIVIDERS)
    if col is None or row is None:
        return None
    return row * GRID_SIZE + col
