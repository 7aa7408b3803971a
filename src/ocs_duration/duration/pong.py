from __future__ import annotations

"""
pong.py
=======
Duration of one full coverage pass of a PONG (or Lissajous) scan.

A PONG pattern bounces the telescope at 45 degrees inside a box that
encloses the requested map. The box is divided into a grid of spacing
``g = dy / sqrt(2)`` so that adjacent parallel tracks are ``dy`` apart. With
``nx`` and ``ny`` grid cells along the two sides (both odd and coprime, so
the path closes only after visiting every vertex) the closed path is
``2 * sqrt(2) * nx * ny * g`` long.

ROUNDED_PONG and CURVY_PONG smooth the corners of the same track and
LISSAJOUS follows a sinusoidal track through the same vertices; all of
them are estimated with the square-track length.
"""

import math
from typing import Tuple

from ocs_duration.config_core.errors import InvalidParameter, UnsupportedPattern
from ocs_duration.config_core.model import PONG_PATTERNS


def _make_odd(n: int) -> int:
    return n if n % 2 == 1 else n + 1


def pong_vertices(width: float, height: float, dy: float) -> Tuple[int, int, float]:
    """Return ``(nx, ny, grid_spacing)`` for a PONG covering ``width x height``."""
    if width <= 0 or height <= 0:
        raise InvalidParameter(f"Map dimensions must be > 0 (got {width} x {height})")
    if dy <= 0:
        raise InvalidParameter(f"Scan spacing DY must be > 0 (got {dy})")
    grid = dy / math.sqrt(2.0)
    nx = _make_odd(max(1, int(math.ceil(width / grid))))
    ny = _make_odd(max(1, int(math.ceil(height / grid))))
    # Grow the shorter side until the path visits every vertex.
    while math.gcd(nx, ny) != 1:
        if nx <= ny:
            nx += 2
        else:
            ny += 2
    return nx, ny, grid


def pong_duration(
    width: float,
    height: float,
    dy: float,
    velocity: float,
    pattern: str = "SQUARE_PONG",
) -> float:
    """Return the time in seconds to complete one closed PONG path."""
    name = str(pattern).upper()
    if name not in PONG_PATTERNS:
        raise UnsupportedPattern(f"'{pattern}' is not a PONG-like scan pattern")
    if velocity <= 0:
        raise InvalidParameter(f"Scan velocity must be > 0 (got {velocity})")
    nx, ny, grid = pong_vertices(width, height, dy)
    path_length = 2.0 * math.sqrt(2.0) * nx * ny * grid
    return path_length / velocity


__all__ = ["pong_vertices", "pong_duration"]
