"""Step, reference and nod counts for a heterodyne (correlator) observation.

Branches
--------
The calculation is selected by ``(mapping_mode, switching_mode)``; a
``_spin`` suffix on the switching mode is ignored.

raster / scan (map area)
    Steps per map from the scan geometry. The map is split into rows and a
    sky reference is visited every ``steps_btwn_refs`` steps (whole rows).
    The telescope moves out to the reference and back, except after the
    last one: ``max(2, 2 * n_refs - 1)`` one-way moves per map.

jiggle + chop | freqsw
    The secondary mirror jiggles through ``jiggle_points`` positions. The
    SMU mode decides the OFF cost: ``chop_jiggle`` chops at every jiggle
    position (OFF equal to ON), ``jiggle_chop`` jiggles ``N_JIGS_ON``
    positions then spends ``N_CYC_OFF`` on the OFF, ``jiggle`` has no OFF.
    Chop observations nod the telescope (ABBA, or AB for focus);
    frequency-switched ones do not nod.

grid + freqsw
    One sequence of ``jos_min`` steps per offset per cycle.

grid + chop
    ABBA (AB for focus) nodding at each offset; two sequences per nod.

grid | jiggle + pssw
    Position switching. Each ON chunk is ``jos_min`` steps (times the jiggle
    points). Without ``shareoff`` every chunk gets its own reference; with
    it, references are spaced by ``steps_btwn_refs``. Shared references are
    lengthened by ``sqrt(n)`` of the ON chunk.

Calibrations
------------
Cals are scheduled between sequences every ``steps_btwn_cals`` steps. A cal
is taken at the reference position and is at least as long as a reference
visit; only the steps beyond the reference already counted are added.
Pointing and focus observations take no cals.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from ocs_duration.config_core.errors import (
    InvalidParameter,
    MissingCollaborator,
    UnrecognizedObservingMode,
)
from ocs_duration.config_core.model import (
    DiagnosticsFn,
    MapArea,
    ObservationConfig,
    OffsetsArea,
    SecondaryMirrorSpec,
)
from .continuum import effective_step_time
from .geometry import map_steps, raster_layout
from .scheduler import reference_length, schedule


@dataclass(frozen=True)
class HeterodyneCounts:
    # ON-source steps over all cycles, one SMU position.
    on_steps: float
    n_refs: int
    # Steps in one reference visit.
    ref_steps: float
    n_nods: int
    n_seq: int
    ntel_ref_moves: int
    n_smu: int
    n_cals: int
    # Steps added by each cal beyond the reference already counted.
    cal_extra_steps: float
    # Corrected step time [s].
    step_time: float
    branch: str

    @property
    def steps_per_smu(self) -> float:
        return self.on_steps + (self.n_refs + self.n_nods) * self.ref_steps

    @property
    def total_steps(self) -> float:
        return self.steps_per_smu * self.n_smu + self.n_cals * self.cal_extra_steps


@dataclass(frozen=True)
class _Branch:
    name: str
    on_steps: float
    n_refs: int = 0
    ref_steps: float = 0.0
    n_nods: int = 0
    n_seq: int = 0
    ntel_ref_moves: int = 0


def _n_offsets(area) -> int:
    if isinstance(area, OffsetsArea):
        return area.n_offsets
    return 1


def _jos_min(cfg: ObservationConfig) -> int:
    return max(1, int(cfg.jos.jos_min or 1))


def _nod_factor(cfg: ObservationConfig) -> int:
    # ABBA normally, AB for focus.
    return 1 if cfg.summary.is_focus else 2


def _require_smu(cfg: ObservationConfig) -> SecondaryMirrorSpec:
    if cfg.smu is None:
        raise MissingCollaborator(
            f"Jiggle observation '{cfg.obs_id}' requires a secondary mirror "
            "configuration"
        )
    return cfg.smu


def _jiggle_pattern_steps(smu: SecondaryMirrorSpec, jos_min: int) -> float:
    """Steps to go once through the jiggle pattern, OFF included."""
    on = smu.jiggle_points * jos_min
    if smu.mode == "chop_jiggle":
        return 2.0 * on
    if smu.mode == "jiggle_chop":
        if not smu.n_jigs_on or smu.n_jigs_on <= 0:
            raise InvalidParameter("jiggle_chop mode needs N_JIGS_ON > 0")
        n_cyc_off = smu.n_cyc_off or 0
        return on * (1.0 + n_cyc_off / smu.n_jigs_on)
    return float(on)


def _raster_branch(cfg: ObservationConfig, step: float, diagnostics) -> _Branch:
    area = cfg.area
    jos = cfg.jos
    if not isinstance(area, MapArea):
        raise MissingCollaborator(
            f"Raster requested but the observing area is '{area.kind}', not 'area'"
        )
    steps_map = map_steps(area, jos, step, instrument=cfg.instrument)
    layout = raster_layout(area, steps_map, jos.steps_btwn_refs)
    sched = schedule(layout.n_rows, jos.steps_btwn_refs, layout.steps_per_row)
    n_refs = sched.n_visits
    if jos.n_refsamples and jos.n_refsamples > 0:
        ref_steps = float(jos.n_refsamples)
    else:
        # One reference serves every sample of the rows between two refs.
        n_shared = int(math.ceil(layout.steps_per_row * sched.visits_per_unit))
        ref_steps = float(reference_length(1, n_shared, shared=True))
    if diagnostics is not None:
        diagnostics(
            "geometry",
            {
                "pattern": area.scan.pattern,
                "steps_per_map": steps_map,
                "n_rows": layout.n_rows,
                "steps_per_row": layout.steps_per_row,
                "rows_per_ref": sched.visits_per_unit,
            },
        )
    nc = jos.cycles
    return _Branch(
        name="raster",
        on_steps=steps_map * nc,
        n_refs=n_refs * nc,
        ref_steps=ref_steps,
        n_seq=(layout.n_rows + n_refs) * nc,
        ntel_ref_moves=max(2, 2 * n_refs - 1) * nc,
    )


def _jiggle_branch(cfg: ObservationConfig, sw_mode: str) -> _Branch:
    smu = _require_smu(cfg)
    jos = cfg.jos
    pattern = _jiggle_pattern_steps(smu, _jos_min(cfg))
    n_off = _n_offsets(cfg.area)
    nc = jos.cycles
    if sw_mode == "chop":
        positions = _nod_factor(cfg) * jos.nod_sets * n_off * nc
        return _Branch(
            name="jiggle_chop",
            on_steps=pattern * positions,
            n_nods=positions,
            n_seq=positions,
        )
    # Frequency switching: both frequencies, no nodding.
    return _Branch(
        name="jiggle_freqsw",
        on_steps=pattern * 2 * nc * n_off,
        n_seq=nc * n_off,
    )


def _grid_freqsw_branch(cfg: ObservationConfig) -> _Branch:
    n_seq = cfg.jos.cycles * _n_offsets(cfg.area)
    return _Branch(
        name="grid_freqsw",
        on_steps=float(n_seq * _jos_min(cfg)),
        n_seq=n_seq,
    )


def _grid_chop_branch(cfg: ObservationConfig) -> _Branch:
    jos = cfg.jos
    nnods = _nod_factor(cfg) * jos.nod_sets * _n_offsets(cfg.area) * jos.cycles
    n_seq = 2 * nnods
    return _Branch(
        name="grid_chop",
        on_steps=float(n_seq * _jos_min(cfg)),
        n_nods=nnods,
        n_seq=n_seq,
    )


def _pssw_branch(cfg: ObservationConfig) -> _Branch:
    jos = cfg.jos
    jiggle = cfg.summary.mapping_mode == "jiggle"
    jos_min = _jos_min(cfg)
    npts = _require_smu(cfg).jiggle_points if jiggle else 1
    chunk = jos_min * npts
    n_chunks = _n_offsets(cfg.area) * jos.cycles
    interval = jos.steps_btwn_refs if jos.shareoff else 0
    sched = schedule(n_chunks, interval, chunk)
    n_refs = sched.n_visits
    if jos.n_refsamples and jos.n_refsamples > 0:
        ref_steps = float(jos.n_refsamples)
    else:
        ref_steps = float(
            reference_length(
                jos_min,
                sched.visits_per_unit * npts,
                shared=bool(jos.shareoff) or jiggle,
            )
        )
    return _Branch(
        name="jiggle_pssw" if jiggle else "grid_pssw",
        on_steps=float(n_chunks * chunk),
        n_refs=n_refs,
        ref_steps=ref_steps,
        n_seq=n_refs + n_chunks,
        ntel_ref_moves=n_refs,
    )


def _select_branch(cfg: ObservationConfig, step: float, diagnostics) -> _Branch:
    map_mode = cfg.summary.mapping_mode
    sw_mode = cfg.summary.base_switching_mode

    if map_mode in ("raster", "scan"):
        return _raster_branch(cfg, step, diagnostics)
    if map_mode == "jiggle" and sw_mode in ("chop", "freqsw"):
        return _jiggle_branch(cfg, sw_mode)
    if map_mode == "grid" and sw_mode == "freqsw":
        return _grid_freqsw_branch(cfg)
    if map_mode == "grid" and sw_mode == "chop":
        return _grid_chop_branch(cfg)
    if map_mode in ("grid", "jiggle") and sw_mode == "pssw":
        return _pssw_branch(cfg)
    raise UnrecognizedObservingMode(
        "No heterodyne duration calculation for mapping mode "
        f"'{map_mode}' with switching mode '{cfg.summary.switching_mode}'"
    )


def _calibrations(cfg: ObservationConfig, branch: _Branch, n_smu: int) -> tuple[int, float]:
    """Return ``(n_cals, extra_steps_per_cal)``."""
    jos = cfg.jos
    summary = cfg.summary
    n_calsamples = jos.n_calsamples or 0
    if summary.is_pointing or summary.is_focus or n_calsamples <= 0:
        return 0, 0.0
    cal_len = max(float(n_calsamples), branch.ref_steps)
    extra = max(0.0, cal_len - branch.ref_steps)
    if not jos.steps_btwn_cals or jos.steps_btwn_cals <= 0:
        return 1, extra
    per_smu = branch.on_steps + (branch.n_refs + branch.n_nods) * branch.ref_steps
    n_seq = max(1, branch.n_seq)
    n_units = n_seq * n_smu
    unit_len = per_smu / n_seq
    n_cals = schedule(n_units, jos.steps_btwn_cals, unit_len).n_visits
    return n_cals, extra


def heterodyne_counts(
    cfg: ObservationConfig, diagnostics: Optional[DiagnosticsFn] = None
) -> HeterodyneCounts:
    """Return step/reference/nod counts for a heterodyne observation.

    ``cfg`` must carry ``jos``, ``summary`` and ``area`` (checked by the
    dispatcher).
    """
    step = effective_step_time(cfg.jos.step_time)
    branch = _select_branch(cfg, step, diagnostics)
    n_smu = cfg.jos.focus_steps if cfg.summary.is_focus else 1
    n_cals, cal_extra = _calibrations(cfg, branch, n_smu)

    counts = HeterodyneCounts(
        on_steps=float(branch.on_steps),
        n_refs=int(branch.n_refs),
        ref_steps=float(branch.ref_steps),
        n_nods=int(branch.n_nods),
        n_seq=int(branch.n_seq),
        ntel_ref_moves=int(branch.ntel_ref_moves),
        n_smu=int(n_smu),
        n_cals=int(n_cals),
        cal_extra_steps=float(cal_extra),
        step_time=step,
        branch=branch.name,
    )
    if diagnostics is not None:
        diagnostics(
            "heterodyne",
            {
                "branch": counts.branch,
                "on_steps": counts.on_steps,
                "n_refs": counts.n_refs,
                "ref_steps": counts.ref_steps,
                "n_nods": counts.n_nods,
                "n_seq": counts.n_seq,
                "ntel_ref_moves": counts.ntel_ref_moves,
                "n_smu": counts.n_smu,
                "n_cals": counts.n_cals,
            },
        )
    return counts


__all__ = ["HeterodyneCounts", "heterodyne_counts"]
