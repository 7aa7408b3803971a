from __future__ import annotations

"""
config_loader.py
================
Compose a run configuration from TOML files and build the observation
models the duration engine consumes.

Composition
-----------
A run file may reference ``include_defaults`` and ``include_instrument``
(paths relative to the project root). Merge order is
defaults -> instrument -> run, then ``--set key=value`` overrides.

Observations
------------
Each ``[[observations]]`` table describes one observation::

    [[observations]]
    id = "harp_raster"
    backend = "heterodyne"          # or "continuum"

    [observations.summary]
    mapping_mode = "raster"
    switching_mode = "pssw"
    type = "science"

    [observations.jos]
    step_time = 0.1
    steps_btwn_refs = 300

    [observations.area]
    kind = "area"                   # area | offsets | skydip | zenith | sky
    width = "2 arcmin"
    height = 120

    [observations.area.scan]
    velocity = "30 arcsec/s"
    dy = 2
    pattern = "raster"

A top-level ``[instrument]`` table is used by observations without their
own. Plain numbers are arcsec (angles), arcsec/s (velocities) and degrees
(skydip elevations and position angles); strings with units are parsed by
``astropy.units``.
"""

import os
import tomllib
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import astropy.units as u
import tomli_w

from .errors import DurationError, InvalidParameter, UnsupportedPattern
from .instrument import geometry_from_receptors
from .model import (
    SCAN_PATTERNS,
    BackendConfig,
    InstrumentGeometry,
    MapArea,
    ObservationConfig,
    ObservationSummary,
    ObservingArea,
    Offset,
    OffsetsArea,
    ScanSpec,
    SecondaryMirrorSpec,
    SequencingParameters,
    SkyArea,
    SkydipArea,
    ZenithArea,
    normalize_scan_pattern,
)


def load_toml(path: str) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = merge_dicts(out[k], v)
        else:
            out[k] = v
    return out


def apply_sets(cfg: Dict[str, Any], sets: Iterable[str]) -> Dict[str, Any]:
    for item in sets:
        if "=" not in item:
            raise ValueError(f"--set requires key=value, got: {item}")
        key, val = item.split("=", 1)
        path = key.strip().split(".")
        cursor = cfg
        for p in path[:-1]:
            if p not in cursor or not isinstance(cursor[p], dict):
                cursor[p] = {}
            cursor = cursor[p]
        cursor[path[-1]] = parse_scalar(val.strip())
    return cfg


def parse_scalar(s: str):
    sl = s.lower()
    if sl in ("true", "false"):
        return sl == "true"
    try:
        if "." in s or "e" in sl:
            return float(s)
        return int(s)
    except ValueError:
        return s


def _resolve_include(project_root: str, ref: str, label: str) -> str:
    path = ref if os.path.isabs(ref) else os.path.join(project_root, ref)
    if not os.path.exists(path):
        raise FileNotFoundError(f"{label} file not found: {path}")
    return path


def load_run_config(
    project_root: str,
    run_name: str | None,
    run_path: str | None,
    set_overrides: Iterable[str] = (),
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Load config by composing defaults, instrument and run, then apply --set.
    Returns (effective_cfg, summary_paths).
    summary_paths contains keys: run_path, defaults_path, instrument_path.
    """
    summary = {"run_path": None, "defaults_path": None, "instrument_path": None}

    if run_name and run_path:
        raise ValueError("Use either --run or --run-config, not both.")

    if run_name:
        run_path = os.path.join(project_root, "config", "runs", f"{run_name}.toml")

    if not run_path:
        raise ValueError("Missing --run or --run-config")

    if not os.path.isabs(run_path):
        run_path = os.path.normpath(os.path.join(project_root, run_path))

    if not os.path.exists(run_path):
        raise FileNotFoundError(
            f"Run file not found: {run_path}. Expected in config/runs for --run."
        )
    run_cfg = load_toml(run_path)
    summary["run_path"] = run_path

    defaults_cfg: Dict[str, Any] = {}
    instrument_cfg: Dict[str, Any] = {}

    defaults_ref = run_cfg.get("include_defaults")
    if defaults_ref:
        defaults_path = _resolve_include(project_root, defaults_ref, "Defaults")
        defaults_cfg = load_toml(defaults_path)
        summary["defaults_path"] = defaults_path

    instrument_ref = run_cfg.get("include_instrument")
    if instrument_ref:
        instrument_path = _resolve_include(project_root, instrument_ref, "Instrument")
        instrument_cfg = load_toml(instrument_path)
        summary["instrument_path"] = instrument_path

    # Merge order: defaults -> instrument -> run
    cfg = merge_dicts(defaults_cfg, instrument_cfg)
    cfg = merge_dicts(cfg, run_cfg)

    # Apply --set overrides last
    cfg = apply_sets(cfg, set_overrides)

    cfg.setdefault("observations", [])
    cfg.setdefault("overheads", {})
    cfg.setdefault("output", {})

    return cfg, summary


def dump_effective_config(cfg: Dict[str, Any]) -> str:
    return tomli_w.dumps(cfg)


# ----- Unit parsing -----

def _quantity(value: Any, default_unit: u.UnitBase, what: str) -> float:
    """Return ``value`` in ``default_unit``; numbers are taken as that unit."""
    if value is None:
        raise InvalidParameter(f"Missing value for {what}")
    if isinstance(value, bool):
        raise InvalidParameter(f"Invalid value for {what}: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    try:
        q = u.Quantity(str(value))
        if q.unit == u.dimensionless_unscaled:
            return float(q.value)
        return float(q.to_value(default_unit))
    except (TypeError, ValueError, u.UnitsError) as exc:
        raise InvalidParameter(f"Cannot parse {what} from {value!r}: {exc}") from exc


def to_arcsec(value: Any, what: str = "angle") -> float:
    return _quantity(value, u.arcsec, what)


def to_deg(value: Any, what: str = "angle") -> float:
    return _quantity(value, u.deg, what)


def to_arcsec_per_s(value: Any, what: str = "velocity") -> float:
    return _quantity(value, u.arcsec / u.s, what)


def _opt(value: Any, conv, what: str) -> Optional[float]:
    return None if value is None else conv(value, what)


# ----- Model builders -----

_JOS_INT_KEYS = (
    "num_cycles",
    "num_nod_sets",
    "jos_min",
    "jos_mult",
    "steps_btwn_refs",
    "steps_btwn_cals",
    "steps_btwn_dark",
    "n_calsamples",
    "n_refsamples",
    "num_focus_steps",
)


def build_jos(d: Mapping[str, Any]) -> SequencingParameters:
    d = {str(k).lower(): v for k, v in d.items()}
    if "step_time" not in d:
        raise InvalidParameter("JOS configuration requires step_time")
    kwargs: Dict[str, Any] = {"step_time": float(d["step_time"])}
    for k in _JOS_INT_KEYS:
        if d.get(k) is not None:
            kwargs[k] = int(d[k])
    if "shareoff" in d:
        kwargs["shareoff"] = bool(d["shareoff"])
    return SequencingParameters(**kwargs)


def build_summary(d: Mapping[str, Any]) -> ObservationSummary:
    if "mapping_mode" not in d:
        raise InvalidParameter("Observation summary requires mapping_mode")
    return ObservationSummary(
        mapping_mode=d["mapping_mode"],
        switching_mode=d.get("switching_mode", "none"),
        type=d.get("type", "science"),
    )


def _build_offset(item: Any) -> Offset:
    if isinstance(item, Mapping):
        return Offset(
            dc1=to_arcsec(item.get("dc1", 0.0), "offset DC1"),
            dc2=to_arcsec(item.get("dc2", 0.0), "offset DC2"),
            system=str(item.get("system", "TRACKING")).upper(),
        )
    if isinstance(item, (list, tuple)) and len(item) == 2:
        return Offset(dc1=to_arcsec(item[0], "offset DC1"), dc2=to_arcsec(item[1], "offset DC2"))
    raise InvalidParameter(f"Cannot interpret offset {item!r}")


def build_scan(d: Mapping[str, Any]) -> ScanSpec:
    d = {str(k).lower(): v for k, v in d.items()}
    reversal = d.get("reversal")
    if isinstance(reversal, str):
        reversal = reversal.strip().upper() in ("YES", "TRUE", "1")
    pas = d.get("pa", d.get("position_angles", ()))
    if not isinstance(pas, (list, tuple)):
        pas = [pas]
    pattern = normalize_scan_pattern(d.get("pattern"), reversal)
    if pattern not in SCAN_PATTERNS:
        raise UnsupportedPattern(
            f"Scan pattern '{pattern}' is not one of {list(SCAN_PATTERNS)}"
        )
    nterms = d.get("nterms")
    return ScanSpec(
        velocity=to_arcsec_per_s(d.get("velocity"), "scan velocity"),
        dy=_opt(d.get("dy"), to_arcsec, "scan DY"),
        pattern=pattern,
        position_angles=tuple(to_deg(pa, "position angle") for pa in pas),
        system=d.get("system"),
        type=d.get("type"),
        nterms=None if nterms is None else int(nterms),
    )


def build_area(d: Mapping[str, Any]) -> ObservingArea:
    kind = str(d.get("kind", "")).lower()
    if not kind:
        # Infer like the telescope configuration does: area, skydip, offsets.
        if "width" in d or "height" in d:
            kind = "area"
        elif "elevations" in d:
            kind = "skydip"
        elif "offsets" in d or "microsteps" in d:
            kind = "offsets"
        else:
            raise InvalidParameter("Observing area must be a map area, skydip or offsets")

    if kind == "area":
        if "scan" not in d:
            raise InvalidParameter("Map area requires a [scan] table")
        offset = d.get("offset")
        return MapArea(
            width=to_arcsec(d.get("width"), "map width"),
            height=to_arcsec(d.get("height"), "map height"),
            scan=build_scan(d["scan"]),
            offset=None if offset is None else _build_offset(offset),
        )
    if kind == "offsets":
        return OffsetsArea(
            offsets=tuple(_build_offset(o) for o in d.get("offsets", ())),
            microsteps=tuple(_build_offset(o) for o in d.get("microsteps", ())),
        )
    if kind == "skydip":
        return SkydipArea(
            elevations_deg=tuple(to_deg(e, "skydip elevation") for e in d.get("elevations", ())),
            velocity=_opt(d.get("velocity"), to_arcsec_per_s, "skydip velocity"),
            mode=d.get("mode", "DISCRETE"),
        )
    if kind == "zenith":
        return ZenithArea()
    if kind == "sky":
        return SkyArea()
    raise InvalidParameter(f"Unknown observing area kind '{kind}'")


def build_smu(d: Mapping[str, Any]) -> SecondaryMirrorSpec:
    d = {str(k).lower(): v for k, v in d.items()}
    timing = {str(k).lower(): v for k, v in dict(d.get("timing", {})).items()}
    n_jigs_on = d.get("n_jigs_on", timing.get("n_jigs_on"))
    n_cyc_off = d.get("n_cyc_off", timing.get("n_cyc_off"))
    return SecondaryMirrorSpec(
        jiggle_points=int(d.get("jiggle_points", 1)),
        mode=d.get("mode", "chop_jiggle"),
        n_jigs_on=None if n_jigs_on is None else int(n_jigs_on),
        n_cyc_off=None if n_cyc_off is None else int(n_cyc_off),
    )


def build_instrument(d: Mapping[str, Any]) -> InstrumentGeometry:
    name = str(d.get("name", ""))
    if d.get("array_radius") is not None:
        return InstrumentGeometry(
            array_radius_arcsec=to_arcsec(d["array_radius"], "array radius"), name=name
        )
    receptors = d.get("receptor_offsets")
    if receptors:
        pairs = [(to_arcsec(x, "receptor x"), to_arcsec(y, "receptor y")) for x, y in receptors]
        return geometry_from_receptors(pairs, name=name)
    raise InvalidParameter(
        f"Instrument '{name}' needs array_radius or receptor_offsets"
    )


def build_observation(
    d: Mapping[str, Any], default_instrument: Optional[Mapping[str, Any]] = None
) -> ObservationConfig:
    """Build one ``ObservationConfig`` from an ``[[observations]]`` table.

    Absent sub-tables become ``None``; the engine decides whether they were
    needed.
    """
    backend = str(d.get("backend", "")).lower()
    backend_name = d.get("backend_name")
    heterodyne = continuum = None
    if backend in ("heterodyne", "acsis"):
        heterodyne = BackendConfig(name=backend_name or "ACSIS")
    elif backend in ("continuum", "scuba2", "scuba-2"):
        continuum = BackendConfig(name=backend_name or "SCUBA-2")
    elif backend:
        raise InvalidParameter(f"Unknown backend '{backend}'")

    inst = d.get("instrument", default_instrument)
    known = {"id", "backend", "backend_name", "summary", "jos", "area", "smu", "instrument"}
    return ObservationConfig(
        obs_id=str(d.get("id", "")),
        jos=build_jos(d["jos"]) if d.get("jos") else None,
        summary=build_summary(d["summary"]) if d.get("summary") else None,
        area=build_area(d["area"]) if d.get("area") else None,
        smu=build_smu(d["smu"]) if d.get("smu") else None,
        instrument=build_instrument(inst) if inst else None,
        heterodyne=heterodyne,
        continuum=continuum,
        meta={k: v for k, v in d.items() if k not in known},
    )


def build_observation_entries(
    cfg: Mapping[str, Any],
) -> List[Tuple[str, Union[ObservationConfig, DurationError]]]:
    """Build every ``[[observations]]`` table, keeping failures in place.

    Returns ``(obs_id, config_or_error)`` pairs in file order. A table that
    fails model validation yields the ``DurationError`` it raised, so one
    bad observation does not stop the others from being built.
    """
    default_instrument = cfg.get("instrument")
    out: List[Tuple[str, Union[ObservationConfig, DurationError]]] = []
    for i, item in enumerate(cfg.get("observations", []), 1):
        obs_id = str(item.get("id") or f"obs{i:02d}")
        try:
            obs = build_observation(item, default_instrument=default_instrument)
        except DurationError as exc:
            out.append((obs_id, exc))
            continue
        out.append((obs_id, replace(obs, obs_id=obs_id)))
    return out


def build_observations(cfg: Mapping[str, Any]) -> List[ObservationConfig]:
    out = []
    for _, obs in build_observation_entries(cfg):
        if isinstance(obs, DurationError):
            raise obs
        out.append(obs)
    return out
