"""Estimate the wall-clock duration of an observation.

The dispatcher checks that the mandatory configuration objects are present,
picks the heterodyne or the continuum calculator depending on which backend
the observation uses, and converts the resulting step and sequence counts
into seconds using fixed per-event overheads.

The estimate is advisory (used for scheduling). It is a pure function of
its inputs and safe to call from several threads or processes at once.

Usage
-----
>>> est = estimate_duration(cfg)
>>> est.seconds, est.n_seq
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from joblib import Parallel, delayed

from ocs_duration.config_core.errors import (
    DurationError,
    InvalidParameter,
    MissingCollaborator,
)
from ocs_duration.config_core.model import DiagnosticsFn, ObservationConfig
from .continuum import ContinuumCounts, continuum_counts
from .heterodyne import HeterodyneCounts, heterodyne_counts


@dataclass(frozen=True)
class ContinuumOverheads:
    # Observation start-up [s].
    startup: float = 20.0
    # Start of every sequence or dark [s].
    seq_start: float = 2.0


@dataclass(frozen=True)
class HeterodyneOverheads:
    # Start of every sequence [s].
    seq: float = 5.0
    # Observation start and end [s].
    obs: float = 40.0
    # One-way telescope move to a reference [s].
    tel_ref: float = 5.0
    # One-way nod move [s].
    tel_nod: float = 2.0
    # SMU move between focus positions [s].
    smu: float = 2.0
    # Move for a cal; the reference move unless set.
    cal: Optional[float] = None

    @property
    def cal_move(self) -> float:
        return self.tel_ref if self.cal is None else self.cal


@dataclass(frozen=True)
class Overheads:
    continuum: ContinuumOverheads = ContinuumOverheads()
    heterodyne: HeterodyneOverheads = HeterodyneOverheads()

    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> "Overheads":
        """Build from an ``[overheads]`` configuration table."""
        d = d or {}
        cont = {k: float(v) for k, v in dict(d.get("continuum", {})).items()}
        het = {k: float(v) for k, v in dict(d.get("heterodyne", {})).items()}
        return cls(
            continuum=ContinuumOverheads(**cont),
            heterodyne=HeterodyneOverheads(**het),
        )


DEFAULT_OVERHEADS = Overheads()


@dataclass(frozen=True)
class DurationEstimate:
    seconds: float
    backend: str
    branch: str
    step_time: float
    total_steps: float
    n_seq: int
    n_darks: Optional[int] = None
    n_refs: Optional[int] = None
    n_cals: Optional[int] = None
    n_nods: Optional[int] = None
    n_smu: Optional[int] = None

    def __float__(self) -> float:
        return float(self.seconds)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def continuum_seconds(
    counts: ContinuumCounts, overheads: ContinuumOverheads = ContinuumOverheads()
) -> float:
    step = counts.step_time
    return (
        overheads.startup
        + (counts.n_darks + counts.n_seq) * overheads.seq_start
        + counts.time_per_seq * step * counts.n_seq
        + counts.n_darks * counts.dark_length * step
    )


def heterodyne_seconds(
    counts: HeterodyneCounts, overheads: HeterodyneOverheads = HeterodyneOverheads()
) -> float:
    step = counts.step_time
    per_smu = (
        counts.steps_per_smu * step
        + counts.ntel_ref_moves * overheads.tel_ref
        + counts.n_nods * overheads.tel_nod
        + counts.n_seq * overheads.seq
    )
    duration = per_smu * counts.n_smu
    duration += (counts.n_smu - 1) * overheads.smu
    duration += counts.n_cals * (counts.cal_extra_steps * step + overheads.cal_move)
    duration += overheads.obs
    return duration


def _check_collaborators(cfg: ObservationConfig) -> None:
    if cfg.jos is None:
        raise MissingCollaborator(
            "Unable to determine duration since there is no JOS configuration available"
        )
    if cfg.summary is None:
        raise MissingCollaborator(
            "Unable to determine duration since there is no observation summary available"
        )
    if cfg.area is None:
        raise MissingCollaborator(
            "Unable to determine duration since there is no observing area configuration"
        )
    if cfg.jos.step_time is None or cfg.jos.step_time <= 0:
        raise InvalidParameter(f"Step time must be > 0 (got {cfg.jos.step_time})")


def estimate_duration(
    cfg: ObservationConfig,
    diagnostics: Optional[DiagnosticsFn] = None,
    overheads: Optional[Overheads] = None,
) -> DurationEstimate:
    """Return the estimated duration of ``cfg``.

    Raises
    ------
    MissingCollaborator
        If a configuration object required by the selected path is absent,
        including when no backend is attached.
    UnsupportedPattern, UnrecognizedObservingMode, InvalidParameter
        As raised by the geometry and backend calculators.
    """
    _check_collaborators(cfg)
    if overheads is None:
        overheads = DEFAULT_OVERHEADS

    if cfg.heterodyne is not None:
        hc = heterodyne_counts(cfg, diagnostics=diagnostics)
        est = DurationEstimate(
            seconds=heterodyne_seconds(hc, overheads.heterodyne),
            backend="heterodyne",
            branch=hc.branch,
            step_time=hc.step_time,
            total_steps=hc.total_steps,
            n_seq=hc.n_seq,
            n_refs=hc.n_refs,
            n_cals=hc.n_cals,
            n_nods=hc.n_nods,
            n_smu=hc.n_smu,
        )
    elif cfg.continuum is not None:
        cc = continuum_counts(cfg, diagnostics=diagnostics)
        est = DurationEstimate(
            seconds=continuum_seconds(cc, overheads.continuum),
            backend="continuum",
            branch=cc.branch,
            step_time=cc.step_time,
            total_steps=cc.total_steps,
            n_seq=cc.n_seq,
            n_darks=cc.n_darks,
        )
    else:
        raise MissingCollaborator(
            f"Observation '{cfg.obs_id}' has neither a heterodyne nor a continuum backend"
        )

    if diagnostics is not None:
        diagnostics("total", {"seconds": est.seconds, "backend": est.backend})
    return est


def estimate_seconds(cfg: ObservationConfig, overheads: Overheads = DEFAULT_OVERHEADS) -> float:
    return estimate_duration(cfg, overheads=overheads).seconds


def _estimate_or_error(
    cfg: ObservationConfig, overheads: Overheads, skip_errors: bool
) -> Union[DurationEstimate, DurationError]:
    try:
        return estimate_duration(cfg, overheads=overheads)
    except DurationError as exc:
        if not skip_errors:
            raise
        return exc


def estimate_many(
    configs: Iterable[ObservationConfig],
    n_jobs: int = 1,
    skip_errors: bool = False,
    overheads: Overheads = DEFAULT_OVERHEADS,
) -> List[Union[DurationEstimate, DurationError]]:
    """Estimate several observations, optionally in parallel.

    Results keep the input order. With ``skip_errors`` a failed estimate is
    returned as the ``DurationError`` it raised instead of aborting the batch.
    """
    cfgs = list(configs)
    if n_jobs == 1 or len(cfgs) <= 1:
        return [_estimate_or_error(c, overheads, skip_errors) for c in cfgs]
    return Parallel(n_jobs=n_jobs)(
        delayed(_estimate_or_error)(c, overheads, skip_errors) for c in cfgs
    )


__all__ = [
    "ContinuumOverheads",
    "HeterodyneOverheads",
    "Overheads",
    "DEFAULT_OVERHEADS",
    "DurationEstimate",
    "continuum_seconds",
    "heterodyne_seconds",
    "estimate_duration",
    "estimate_seconds",
    "estimate_many",
]
