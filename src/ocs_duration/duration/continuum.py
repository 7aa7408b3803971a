from __future__ import annotations

"""
continuum.py
============
Sequence and dark counts for a continuum (bolometer array) observation.

An observation is a series of sequences, each ``time_per_seq`` steps long,
interleaved with dark frames of ``n_calsamples`` steps. Which counts apply
depends on the observation type first (skydip, flatfield, noise, setup) and
then on the mapping mode (stare/dream or scan).

The step time is corrected once on entry: step times at or below 5.1 ms are
stretched by 16% to account for hardware sample quantization. The corrected
value is used for every count computed here and returned with the counts.
"""

import math
from dataclasses import dataclass
from typing import Optional

from ocs_duration.config_core.errors import (
    InvalidParameter,
    MissingCollaborator,
    UnrecognizedObservingMode,
)
from ocs_duration.config_core.model import (
    MapArea,
    ObservationConfig,
    OffsetsArea,
    SkydipArea,
    DiagnosticsFn,
)
from .geometry import map_steps
from .scheduler import schedule

FAST_STEP_THRESHOLD_S = 0.0051
FAST_STEP_FACTOR = 1.16

# Length of a setup observation [s].
SETUP_DURATION_S = 240.0


def effective_step_time(step_time: float) -> float:
    """Return the step time with the fast-sampling correction applied."""
    if step_time is None or step_time <= 0:
        raise InvalidParameter(f"Step time must be > 0 (got {step_time})")
    if step_time <= FAST_STEP_THRESHOLD_S:
        return step_time * FAST_STEP_FACTOR
    return step_time


@dataclass(frozen=True)
class ContinuumCounts:
    n_darks: int
    n_seq: int
    # Length of one sequence [steps].
    time_per_seq: float
    # Length of one dark [steps].
    dark_length: float
    # Corrected step time [s].
    step_time: float
    branch: str

    @property
    def total_steps(self) -> float:
        return self.time_per_seq * self.n_seq + self.dark_length * self.n_darks


def _positions(area) -> int:
    """Number of pointed positions (offsets x microsteps) for stare/dream."""
    if isinstance(area, OffsetsArea):
        return area.n_offsets * area.n_microsteps
    return 1


def _jos_min(cfg: ObservationConfig) -> int:
    return max(1, int(cfg.jos.jos_min or 1))


def continuum_counts(
    cfg: ObservationConfig, diagnostics: Optional[DiagnosticsFn] = None
) -> ContinuumCounts:
    """Return sequence/dark counts for a continuum observation.

    ``cfg`` must carry ``jos``, ``summary`` and ``area`` (checked by the
    dispatcher).
    """
    jos = cfg.jos
    summary = cfg.summary
    area = cfg.area
    step = effective_step_time(jos.step_time)
    obs_type = summary.type
    map_mode = summary.mapping_mode
    num_cycles = jos.cycles
    dark_length = float(jos.n_calsamples or 0)

    if obs_type.startswith("skydip"):
        if not isinstance(area, SkydipArea):
            raise MissingCollaborator(
                "Skydip observation requires a skydip observing area "
                f"(got '{area.kind}')"
            )
        if map_mode == "scan":
            if area.velocity is None or area.velocity <= 0:
                raise InvalidParameter(
                    f"Skydip velocity must be > 0 (got {area.velocity})"
                )
            branch = "skydip_scan"
            n_darks = 1
            n_seq = 1
            time_per_seq = area.elevation_range_deg / (area.velocity / 3600.0) / step
        else:
            branch = "skydip_stare"
            n_darks = len(area.elevations_deg)
            n_seq = n_darks
            time_per_seq = float(_jos_min(cfg))

    elif obs_type.startswith("flatfield"):
        branch = "flatfield"
        n_darks = 0
        n_seq = 2 * num_cycles + 1
        time_per_seq = float(jos.n_calsamples or 0)

    elif obs_type.startswith("noise") or obs_type == "array_tests":
        branch = "noise"
        n_seq = num_cycles
        n_darks = n_seq
        time_per_seq = float(_jos_min(cfg))

    elif obs_type.startswith("setup"):
        branch = "setup"
        n_darks = 1
        n_seq = 1
        time_per_seq = SETUP_DURATION_S / step

    elif map_mode in ("stare", "dream"):
        branch = map_mode
        jos_min = _jos_min(cfg)
        n_seq = _positions(area) * num_cycles
        n_darks = schedule(n_seq, jos.steps_btwn_dark, jos_min).n_visits
        time_per_seq = float(jos_min)

    elif map_mode == "scan":
        if not isinstance(area, MapArea):
            raise MissingCollaborator(
                f"Scan observation requires a map area (got '{area.kind}')"
            )
        branch = "scan"
        steps_map = map_steps(area, jos, step, instrument=cfg.instrument)
        n_maps = num_cycles
        sched = schedule(n_maps, jos.steps_btwn_dark, steps_map)
        n_darks = sched.n_visits
        n_seq = n_darks
        time_per_seq = steps_map * n_maps / n_seq
        if diagnostics is not None:
            diagnostics(
                "geometry",
                {
                    "pattern": area.scan.pattern,
                    "steps_per_map": steps_map,
                    "n_maps": n_maps,
                    "n_maps_per_dark": sched.visits_per_unit,
                },
            )

    else:
        raise UnrecognizedObservingMode(
            "No continuum duration calculation for mapping mode "
            f"'{map_mode}' with observation type '{obs_type}'"
        )

    if summary.is_focus:
        n_seq *= jos.focus_steps

    counts = ContinuumCounts(
        n_darks=int(n_darks),
        n_seq=int(n_seq),
        time_per_seq=float(time_per_seq),
        dark_length=dark_length,
        step_time=step,
        branch=branch,
    )
    if diagnostics is not None:
        diagnostics(
            "continuum",
            {
                "branch": branch,
                "n_darks": counts.n_darks,
                "n_seq": counts.n_seq,
                "time_per_seq": counts.time_per_seq,
                "step_time": step,
            },
        )
    return counts


__all__ = [
    "FAST_STEP_THRESHOLD_S",
    "FAST_STEP_FACTOR",
    "SETUP_DURATION_S",
    "effective_step_time",
    "ContinuumCounts",
    "continuum_counts",
]
