"""Reference and calibration visit bookkeeping.

The same rule is used for sky references, darks and calibrations: an
observation made of ``total_units`` units of ``unit_len`` steps each gets an
extra visit every ``steps_btwn_x`` steps, rounded to whole units.

Shared OFF positions
--------------------
When one OFF integration serves ``n`` ON positions (``shareoff`` or the
jiggle patterns), the OFF is made longer than a single ON chunk, but only by
``sqrt(n)`` rather than ``n``. This is a heuristic for equal noise in the
difference spectra, not an exact law.
"""

from __future__ import annotations

import math
from typing import NamedTuple

from ocs_duration.config_core.errors import InvalidParameter


class Schedule(NamedTuple):
    n_visits: int
    visits_per_unit: int


def schedule(
    total_units: float,
    steps_btwn_x: float,
    unit_len: float,
    min_visits: int = 1,
) -> Schedule:
    """Return how many interleaved visits an observation needs.

    ``visits_per_unit`` is the number of units covered between two visits
    (never less than one, so a zero or unset interval means one visit per
    unit). ``n_visits`` is at least ``min_visits`` whenever there is any
    work to cover.
    """
    if unit_len is None or unit_len <= 0:
        raise InvalidParameter(f"Unit length must be > 0 (got {unit_len})")
    interval = steps_btwn_x or 0
    visits_per_unit = max(1, int(math.floor(interval / unit_len)))
    if total_units <= 0:
        return Schedule(0, visits_per_unit)
    n_visits = max(int(min_visits), int(math.ceil(total_units / visits_per_unit)))
    return Schedule(n_visits, visits_per_unit)


def reference_length(naive_len: float, n_shared: int, shared: bool) -> int:
    """Length in steps of one reference visit serving ``n_shared`` ON chunks."""
    n = max(1, int(n_shared))
    if shared:
        return int(math.ceil(math.sqrt(n) * naive_len))
    return int(math.ceil(naive_len * n))


__all__ = ["Schedule", "schedule", "reference_length"]
