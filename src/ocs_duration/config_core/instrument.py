from __future__ import annotations

"""
instrument.py
=============
Receptor-array footprint helpers.

A raster scan must be long enough for every receptor of the array to cross
the whole map, so the scan rows are padded by the array diameter. The array
radius is either configured directly or derived here from the focal-plane
offsets of the receptors.
"""

from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidParameter
from .model import InstrumentGeometry


def footprint(offsets_arcsec: Iterable[Sequence[float]]) -> Tuple[float, float, float]:
    """Return ``(x_centre, y_centre, radius)`` of the receptor footprint.

    The centre is the middle of the bounding box of the receptor positions
    and the radius is the distance from that centre to a box corner.
    All values are in arcsec.
    """
    xy = np.asarray(list(offsets_arcsec), dtype=float)
    if xy.ndim != 2 or xy.shape[0] == 0 or xy.shape[1] != 2:
        raise InvalidParameter("Receptor offsets must be a non-empty list of (x, y) pairs")
    if not np.all(np.isfinite(xy)):
        raise InvalidParameter("Receptor offsets must be finite")
    xmin, ymin = xy.min(axis=0)
    xmax, ymax = xy.max(axis=0)
    xcen = (xmax + xmin) / 2.0
    ycen = (ymax + ymin) / 2.0
    radius = float(np.hypot(xmax - xcen, ymax - ycen))
    return float(xcen), float(ycen), radius


def geometry_from_receptors(
    offsets_arcsec: Iterable[Sequence[float]], name: Optional[str] = None
) -> InstrumentGeometry:
    """Build an ``InstrumentGeometry`` whose radius is the receptor footprint."""
    _, _, radius = footprint(offsets_arcsec)
    return InstrumentGeometry(array_radius_arcsec=radius, name=name or "")


__all__ = ["footprint", "geometry_from_receptors"]
