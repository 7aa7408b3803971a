from __future__ import annotations

"""
model.py
========
Read-only data models consumed by the duration engine.

Each object is a frozen snapshot built by the configuration loader (or by
hand in tests). The engine never mutates them.

The observing area is a tagged union: exactly one of ``MapArea``,
``OffsetsArea``, ``SkydipArea``, ``ZenithArea`` or ``SkyArea`` describes
where the telescope looks. Every variant exposes a class-level ``kind``.

Units
-----
- Map dimensions, scan spacing (``dy``), offsets and array radius: arcsec.
- Scan and skydip velocities: arcsec/s.
- Skydip elevations and position angles: degrees.
- Step time: seconds.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Dict, Optional, Protocol, Tuple, Union, Any, Mapping

from .errors import InvalidParameter


# Scan patterns accepted by the telescope control system.
RASTER_PATTERNS = (
    "RASTER",
    "DISCRETE_BOUSTROPHEDON",
    "CONTINUOUS_BOUSTROPHEDON",
)
PONG_PATTERNS = (
    "SQUARE_PONG",
    "ROUNDED_PONG",
    "CURVY_PONG",
    "LISSAJOUS",
)
SCAN_PATTERNS = RASTER_PATTERNS + PONG_PATTERNS + ("ELLIPSE", "DAISY")

DEFAULT_SCAN_PATTERN = "DISCRETE_BOUSTROPHEDON"

SMU_MODES = ("chop_jiggle", "jiggle_chop", "jiggle")


def normalize_scan_pattern(
    pattern: Optional[str], reversal: Optional[bool] = None
) -> str:
    """Return the canonical upper-case pattern name.

    Older configurations carry a ``REVERSAL`` flag instead of a pattern. When
    no pattern is given it maps to ``DISCRETE_BOUSTROPHEDON`` (reversal on)
    or ``RASTER`` (reversal off). With neither, the default applies.
    """
    if pattern is None or str(pattern).strip() == "":
        if reversal is None:
            return DEFAULT_SCAN_PATTERN
        return "DISCRETE_BOUSTROPHEDON" if reversal else "RASTER"
    return str(pattern).strip().upper()


# JOS: timing and repeat parameters of one observation.
@dataclass(frozen=True)
class SequencingParameters:
    # Seconds per atomic step.
    step_time: float
    # Number of repeats of the whole pattern. 0 means "not set" (one cycle).
    num_cycles: int = 1
    num_nod_sets: int = 1
    # Steps per sequence chunk; > 1 fixes the length of a scan map segment.
    jos_min: int = 1
    jos_mult: int = 1
    steps_btwn_refs: int = 0
    steps_btwn_cals: int = 0
    steps_btwn_dark: int = 0
    n_calsamples: int = 0
    n_refsamples: int = 0
    num_focus_steps: int = 0
    # Whether one OFF integration is shared by several ON positions.
    shareoff: bool = False

    @property
    def cycles(self) -> int:
        """Number of cycles actually executed (never less than one)."""
        return max(1, int(self.num_cycles or 1))

    @property
    def nod_sets(self) -> int:
        return max(1, int(self.num_nod_sets or 1))

    @property
    def focus_steps(self) -> int:
        return max(1, int(self.num_focus_steps or 1))


@dataclass(frozen=True)
class ObservationSummary:
    mapping_mode: str
    switching_mode: str = "none"
    type: str = "science"

    def __post_init__(self) -> None:
        object.__setattr__(self, "mapping_mode", str(self.mapping_mode).lower())
        object.__setattr__(self, "switching_mode", str(self.switching_mode).lower())
        object.__setattr__(self, "type", str(self.type).lower())

    @property
    def base_switching_mode(self) -> str:
        """Switching mode without the polarimeter ``_spin`` suffix."""
        sw = self.switching_mode
        if sw.endswith("_spin"):
            return sw[: -len("_spin")]
        return sw

    @property
    def is_focus(self) -> bool:
        return self.type.startswith("focus")

    @property
    def is_pointing(self) -> bool:
        return self.type.startswith("pointing")


# A single offset (tangent plane) in arcsec.
@dataclass(frozen=True)
class Offset:
    dc1: float
    dc2: float
    system: str = "TRACKING"


@dataclass(frozen=True)
class ScanSpec:
    # Scan speed along the row [arcsec/s].
    velocity: float
    # Spacing between rows [arcsec].
    dy: float
    pattern: str = DEFAULT_SCAN_PATTERN
    position_angles: Tuple[float, ...] = ()
    system: Optional[str] = None
    type: Optional[str] = None
    # Only meaningful for CURVY_PONG.
    nterms: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", normalize_scan_pattern(self.pattern))
        object.__setattr__(
            self, "position_angles", tuple(float(pa) for pa in self.position_angles)
        )


@dataclass(frozen=True)
class MapArea:
    kind: ClassVar[str] = "area"
    width: float
    height: float
    scan: ScanSpec
    offset: Optional[Offset] = None


@dataclass(frozen=True)
class OffsetsArea:
    kind: ClassVar[str] = "offsets"
    offsets: Tuple[Offset, ...] = ()
    microsteps: Tuple[Offset, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "offsets", tuple(self.offsets))
        object.__setattr__(self, "microsteps", tuple(self.microsteps))

    @property
    def n_offsets(self) -> int:
        return max(1, len(self.offsets))

    @property
    def n_microsteps(self) -> int:
        return max(1, len(self.microsteps))


@dataclass(frozen=True)
class SkydipArea:
    kind: ClassVar[str] = "skydip"
    elevations_deg: Tuple[float, ...]
    # Elevation speed of a continuous skydip [arcsec/s].
    velocity: Optional[float] = None
    mode: str = "DISCRETE"

    def __post_init__(self) -> None:
        els = [float(e) for e in self.elevations_deg]
        if len(els) < 2:
            raise InvalidParameter("Must provide at least 2 elevations to SKYDIP")
        for e in els:
            if e <= 0.0 or e > 90.0:
                raise InvalidParameter(
                    f"Elevation must be in range 0 < el <= 90 degrees (not '{e}' degrees)"
                )
        mode = str(self.mode).upper()
        if mode not in ("CONTINUOUS", "DISCRETE"):
            raise InvalidParameter(f"Skydip mode '{mode}' not supported")
        object.__setattr__(self, "elevations_deg", tuple(sorted(els)))
        object.__setattr__(self, "mode", mode)

    @property
    def elevation_range_deg(self) -> float:
        return self.elevations_deg[-1] - self.elevations_deg[0]


@dataclass(frozen=True)
class ZenithArea:
    kind: ClassVar[str] = "zenith"


@dataclass(frozen=True)
class SkyArea:
    kind: ClassVar[str] = "sky"


ObservingArea = Union[MapArea, OffsetsArea, SkydipArea, ZenithArea, SkyArea]


# Secondary mirror (SMU) jiggle/chop setup, heterodyne observations only.
@dataclass(frozen=True)
class SecondaryMirrorSpec:
    jiggle_points: int
    mode: str = "chop_jiggle"
    n_jigs_on: Optional[int] = None
    n_cyc_off: Optional[int] = None

    def __post_init__(self) -> None:
        mode = str(self.mode).lower()
        if mode not in SMU_MODES:
            raise InvalidParameter(
                f"Unsupported SMU mode '{self.mode}'. Use one of {list(SMU_MODES)}."
            )
        if int(self.jiggle_points) < 1:
            raise InvalidParameter("jiggle_points must be >= 1")
        object.__setattr__(self, "mode", mode)

    @property
    def timing(self) -> Dict[str, Optional[int]]:
        return {"N_JIGS_ON": self.n_jigs_on, "N_CYC_OFF": self.n_cyc_off}


@dataclass(frozen=True)
class InstrumentGeometry:
    # Angular radius of the receptor footprint [arcsec].
    array_radius_arcsec: float
    name: str = ""


# Marker for the backend attached to the observation.
@dataclass(frozen=True)
class BackendConfig:
    name: str


@dataclass(frozen=True)
class ObservationConfig:
    obs_id: str = ""
    jos: Optional[SequencingParameters] = None
    summary: Optional[ObservationSummary] = None
    area: Optional[ObservingArea] = None
    smu: Optional[SecondaryMirrorSpec] = None
    instrument: Optional[InstrumentGeometry] = None
    heterodyne: Optional[BackendConfig] = None
    continuum: Optional[BackendConfig] = None
    # Free-form extras carried from the configuration file.
    meta: Mapping[str, Any] = field(default_factory=dict)

    @property
    def backend(self) -> Optional[str]:
        if self.heterodyne is not None:
            return "heterodyne"
        if self.continuum is not None:
            return "continuum"
        return None


class DiagnosticsFn(Protocol):
    """Callable receiving intermediate counts of one estimate."""

    def __call__(self, stage: str, values: Mapping[str, Any]) -> None: ...


__all__ = [
    "RASTER_PATTERNS",
    "PONG_PATTERNS",
    "SCAN_PATTERNS",
    "DEFAULT_SCAN_PATTERN",
    "SMU_MODES",
    "normalize_scan_pattern",
    "SequencingParameters",
    "ObservationSummary",
    "Offset",
    "ScanSpec",
    "MapArea",
    "OffsetsArea",
    "SkydipArea",
    "ZenithArea",
    "SkyArea",
    "ObservingArea",
    "SecondaryMirrorSpec",
    "InstrumentGeometry",
    "BackendConfig",
    "ObservationConfig",
    "DiagnosticsFn",
]
