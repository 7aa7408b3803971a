"""Scan-pattern geometry: how many steps one pass of a scanned map takes.

A "step" is one fixed dwell interval of ``step_time`` seconds. The count is
derived from the map area, the scan spacing and velocity, and the pattern.

Patterns
--------
- RASTER, DISCRETE_BOUSTROPHEDON, CONTINUOUS_BOUSTROPHEDON:
  each step samples ``dy * velocity * step_time`` square arcsec. The longer
  map side is padded by the array diameter plus a 60 arcsec turnaround so
  that every receptor crosses the full map. The count is left fractional.
- SQUARE_PONG, ROUNDED_PONG, CURVY_PONG, LISSAJOUS: the pass duration comes
  from a scan-pattern-duration helper (``pong.pong_duration`` by default).
- ELLIPSE: a circle of radius ``sqrt((W^2 + H^2) / 2)`` traversed once.
- DAISY: one full revolution of the petal pattern.

An explicit ``jos_min > 1`` is a fixed step budget per map segment and
replaces the geometric count (see ``map_steps``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional

from ocs_duration.config_core.errors import (
    InvalidParameter,
    MissingCollaborator,
    UnsupportedPattern,
)
from ocs_duration.config_core.model import (
    InstrumentGeometry,
    MapArea,
    PONG_PATTERNS,
    RASTER_PATTERNS,
    ScanSpec,
    SequencingParameters,
)
from .pong import pong_duration

# Extra scan length for the telescope to turn around at each row end [arcsec].
TURNAROUND_ARCSEC = 60.0

# Empirical slow-down of the daisy angular rate.
DAISY_RATE_DIVISOR = 10.1

PatternDurationFn = Callable[[float, float, float, float, str], float]


def _check_inputs(map_area: MapArea, scan: ScanSpec, step_time: float) -> None:
    if map_area.width <= 0 or map_area.height <= 0:
        raise InvalidParameter(
            f"Map dimensions must be > 0 (got {map_area.width} x {map_area.height})"
        )
    if scan.velocity is None or scan.velocity <= 0:
        raise InvalidParameter(f"Scan velocity must be > 0 (got {scan.velocity})")
    if step_time is None or step_time <= 0:
        raise InvalidParameter(f"Step time must be > 0 (got {step_time})")


def _require_dy(scan: ScanSpec) -> float:
    if scan.dy is None or scan.dy <= 0:
        raise InvalidParameter(f"Scan spacing DY must be > 0 (got {scan.dy})")
    return float(scan.dy)


def _array_radius(instrument: Optional[InstrumentGeometry]) -> float:
    if instrument is None:
        raise MissingCollaborator(
            "Raster scans need the instrument array radius but no instrument "
            "geometry is available"
        )
    return float(instrument.array_radius_arcsec)


def _padded_dimensions(map_area: MapArea, radius: float) -> tuple[float, float]:
    """Return ``(row_length, cross_length)``; the row runs along the longer side."""
    pad = 2.0 * radius + TURNAROUND_ARCSEC
    long_side = max(map_area.width, map_area.height)
    short_side = min(map_area.width, map_area.height)
    return long_side + pad, short_side


def steps_per_map(
    pattern: str,
    map_area: MapArea,
    scan: ScanSpec,
    step_time: float,
    instrument: Optional[InstrumentGeometry] = None,
    pattern_duration: PatternDurationFn = pong_duration,
) -> float:
    """Return the number of steps for one pass over ``map_area``.

    Raster counts are fractional; ellipse and daisy counts are whole steps
    including the closing sample.
    """
    name = str(pattern).upper()
    _check_inputs(map_area, scan, step_time)

    if name in RASTER_PATTERNS:
        dy = _require_dy(scan)
        row_len, cross_len = _padded_dimensions(map_area, _array_radius(instrument))
        sample_area = dy * (scan.velocity * step_time)
        return (row_len * cross_len) / sample_area

    if name in PONG_PATTERNS:
        dy = _require_dy(scan)
        duration = pattern_duration(
            map_area.width, map_area.height, dy, scan.velocity, name
        )
        return duration / step_time

    if name == "ELLIPSE":
        radius = math.sqrt((map_area.width**2 + map_area.height**2) / 2.0)
        duration = 2.0 * math.pi * radius / scan.velocity
        return float(round(duration / step_time) + 1)

    if name == "DAISY":
        dy = _require_dy(scan)
        r0 = (map_area.width + map_area.height) / 4.0
        omega = (scan.velocity / dy) / r0
        big_omega = omega / DAISY_RATE_DIVISOR
        duration = 2.0 * math.pi / big_omega
        return float(round(duration / step_time) + 1)

    raise UnsupportedPattern(f"Scan pattern '{pattern}' is not from the supported list")


def map_steps(
    map_area: MapArea,
    jos: SequencingParameters,
    step_time: float,
    instrument: Optional[InstrumentGeometry] = None,
    pattern_duration: PatternDurationFn = pong_duration,
) -> float:
    """Steps for one map, honouring an explicit ``jos_min`` budget."""
    if jos.jos_min is not None and jos.jos_min > 1:
        return float(jos.jos_min)
    return steps_per_map(
        map_area.scan.pattern,
        map_area,
        map_area.scan,
        step_time,
        instrument=instrument,
        pattern_duration=pattern_duration,
    )


@dataclass(frozen=True)
class RasterLayout:
    # Total steps for one map.
    steps_per_map: float
    # Number of rows (or continuous-scan chunks) in one map.
    n_rows: int
    # Steps in one row.
    steps_per_row: float


def raster_layout(
    map_area: MapArea,
    total_steps: float,
    steps_btwn_refs: Optional[int] = None,
) -> RasterLayout:
    """Split one map of ``total_steps`` into rows.

    Raster-family patterns have ``ceil(short_side / dy)`` rows. Other
    patterns scan continuously and are cut into chunks no longer than
    ``steps_btwn_refs`` (one chunk when no interval is set).
    """
    if total_steps <= 0:
        raise InvalidParameter(f"Map step count must be > 0 (got {total_steps})")
    scan = map_area.scan
    if scan.pattern in RASTER_PATTERNS:
        dy = _require_dy(scan)
        short_side = min(map_area.width, map_area.height)
        n_rows = max(1, int(math.ceil(short_side / dy)))
    elif steps_btwn_refs:
        n_rows = max(1, int(math.ceil(total_steps / steps_btwn_refs)))
    else:
        n_rows = 1
    return RasterLayout(
        steps_per_map=total_steps,
        n_rows=n_rows,
        steps_per_row=total_steps / n_rows,
    )


__all__ = [
    "TURNAROUND_ARCSEC",
    "DAISY_RATE_DIVISOR",
    "steps_per_map",
    "map_steps",
    "RasterLayout",
    "raster_layout",
]
