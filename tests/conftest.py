from __future__ import annotations
from pathlib import Path
import pytest

from ocs_duration.config_core.model import (
    BackendConfig,
    InstrumentGeometry,
    MapArea,
    ObservationConfig,
    ObservationSummary,
    Offset,
    OffsetsArea,
    ScanSpec,
    SequencingParameters,
)
from ocs_duration.duration_io.tsv import Metadata, EstimateRow

# ---------- Shared fixtures ----------


@pytest.fixture
def md() -> Metadata:
    """Provide a fixed Metadata object for reproducible tests."""
    return Metadata(
        config_file="config/runs/night1.toml",
        telescope="JCMT",
        software_version="0.1.0",
        created_at_iso="2025-08-05T11:00:00Z",
    )


@pytest.fixture
def sample_row() -> EstimateRow:
    """Provide a representative EstimateRow."""
    return EstimateRow(
        obs_id="harp_raster",
        backend="heterodyne",
        mapping_mode="raster",
        switching_mode="pssw",
        obs_type="science",
        duration_s=1834.25,
        n_seq=75,
        n_refs=15,
        n_cals=0,
    )


@pytest.fixture
def parse_noncomment_header_and_rows():
    """Return first non-comment header and data rows from TSV text."""

    def _parser(text: str) -> tuple[str, list[str]]:
        lines = [ln.rstrip("\r\n") for ln in text.splitlines()]
        header = None
        rows: list[str] = []
        for ln in lines:
            stripped = ln.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if header is None:
                header = stripped
            else:
                rows.append(stripped)
        if header is None:
            raise AssertionError("no header found in provided text")
        return header, rows

    return _parser


# ---------- Observation builders ----------


@pytest.fixture
def instrument() -> InstrumentGeometry:
    """Receptor array of 15 arcsec radius."""
    return InstrumentGeometry(array_radius_arcsec=15.0, name="HARP")


@pytest.fixture
def square_map():
    """Factory for a map area with a scan of the given pattern."""

    def _make(
        pattern: str = "RASTER",
        width: float = 120.0,
        height: float = 120.0,
        velocity: float = 30.0,
        dy: float = 2.0,
    ) -> MapArea:
        return MapArea(
            width=width,
            height=height,
            scan=ScanSpec(velocity=velocity, dy=dy, pattern=pattern),
        )

    return _make


@pytest.fixture
def offsets_area():
    """Factory for an offsets area with ``n`` offsets along DC1."""

    def _make(n: int = 1, microsteps: int = 0) -> OffsetsArea:
        return OffsetsArea(
            offsets=tuple(Offset(dc1=10.0 * i, dc2=0.0) for i in range(n)),
            microsteps=tuple(Offset(dc1=0.0, dc2=2.0 * i) for i in range(microsteps)),
        )

    return _make


@pytest.fixture
def heterodyne_obs(instrument):
    """Factory for a heterodyne observation."""

    def _make(mapping_mode, switching_mode, area, obs_type="science", smu=None, **jos):
        jos.setdefault("step_time", 0.2)
        return ObservationConfig(
            obs_id="het",
            jos=SequencingParameters(**jos),
            summary=ObservationSummary(mapping_mode, switching_mode, obs_type),
            area=area,
            smu=smu,
            instrument=instrument,
            heterodyne=BackendConfig("ACSIS"),
        )

    return _make


@pytest.fixture
def continuum_obs(instrument):
    """Factory for a continuum observation."""

    def _make(mapping_mode, area, obs_type="science", **jos):
        jos.setdefault("step_time", 0.1)
        return ObservationConfig(
            obs_id="cont",
            jos=SequencingParameters(**jos),
            summary=ObservationSummary(mapping_mode, "none", obs_type),
            area=area,
            instrument=instrument,
            continuum=BackendConfig("SCUBA-2"),
        )

    return _make


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).resolve().parents[1]
