"""
Duration-estimate TSV writer and reader.

The output is a text file with:
  1) A *commented* metadata block (lines starting with '#').
  2) A single *header* line with the column names.
  3) One data line per observation.

Columns
-------
  obs_id\tbackend\tmapping_mode\tswitching_mode\tobs_type\tduration_s\t
  n_seq\tn_darks\tn_refs\tn_cals

- duration_s: estimated wall-clock duration [s], one decimal, "NaN" when the
  duration could not be estimated.
- counts: integers, "NaN" when not applicable to the backend.

Append mode validates that the on-disk header matches exactly and raises
SchemaMismatchError otherwise. Overwrites are atomic (temporary file, then
replace).

Quickstart
----------
>>> md = Metadata(config_file="config/runs/night1.toml")
>>> rows = [
...     EstimateRow(
...         obs_id="harp_raster",
...         backend="heterodyne",
...         mapping_mode="raster",
...         switching_mode="pssw",
...         obs_type="science",
...         duration_s=1834.2,
...         n_seq=66,
...         n_refs=6,
...         n_cals=2,
...     )
... ]
>>> write_estimates_tsv("durations.tsv", md, rows, append=False)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, TextIO

import pandas as pd

from ocs_duration.config_core.model import ObservationConfig
from ocs_duration.duration.dispatcher import DurationEstimate


__all__ = [
    "Metadata",
    "EstimateRow",
    "SchemaMismatchError",
    "row_from_estimate",
    "write_estimates_tsv",
    "read_estimates_tsv",
]


class SchemaMismatchError(RuntimeError):
    """Raised when the on-disk header does not match the expected schema."""


@dataclass
class Metadata:
    """
    File-level metadata written as a commented block at the top of the file.

    Parameters
    ----------
    config_file : Optional[str]
        Run configuration the estimates were computed from.
    telescope : Optional[str]
        Telescope name.
    overheads : Optional[str]
        Human readable summary of the overhead constants used.
    software_version : Optional[str]
        Version of this package.
    created_at_iso : Optional[str]
        ISO-8601 UTC timestamp string for file creation. If None, current UTC is used.
    """

    config_file: Optional[str] = None
    telescope: Optional[str] = None
    overheads: Optional[str] = None
    software_version: Optional[str] = None
    created_at_iso: Optional[str] = None

    def created_iso_or_now(self) -> str:
        """Return created_at_iso if provided, else now in UTC as ISO-8601."""
        if self.created_at_iso:
            return self.created_at_iso
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class EstimateRow:
    """One observation's estimate. ``duration_s`` None means "not estimable"."""

    obs_id: str
    backend: str
    mapping_mode: str
    switching_mode: str
    obs_type: str
    duration_s: Optional[float] = None
    n_seq: Optional[int] = None
    n_darks: Optional[int] = None
    n_refs: Optional[int] = None
    n_cals: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.obs_id or not isinstance(self.obs_id, str):
            raise ValueError("obs_id must be a non-empty string")
        if self.duration_s is not None and self.duration_s < 0:
            raise ValueError("duration_s must be non-negative")


def row_from_estimate(
    cfg: ObservationConfig, est: Optional[DurationEstimate]
) -> EstimateRow:
    """Build a row for ``cfg``; ``est`` None records a failed estimate."""
    summary = cfg.summary
    return EstimateRow(
        obs_id=cfg.obs_id,
        backend=cfg.backend or "unknown",
        mapping_mode=summary.mapping_mode if summary else "unknown",
        switching_mode=summary.switching_mode if summary else "unknown",
        obs_type=summary.type if summary else "unknown",
        duration_s=None if est is None else est.seconds,
        n_seq=None if est is None else est.n_seq,
        n_darks=None if est is None else est.n_darks,
        n_refs=None if est is None else est.n_refs,
        n_cals=None if est is None else est.n_cals,
    )


def _write_metadata_block(f: TextIO, md: Metadata) -> None:
    """Write the commented metadata block."""
    metadata_title = "# === Metadata " + 70 * "=" + "\n"
    f.write(metadata_title)

    f.write("# [Telescope]\n")
    if md.telescope:
        f.write(f"#  Name: {md.telescope}\n")
    if md.overheads:
        f.write(f"#  Overheads: {md.overheads}\n")
    f.write("#\n")

    f.write("# [Software]\n")
    if md.software_version:
        f.write(f"#  Version: {md.software_version}\n")
    f.write("#\n")

    f.write("# [Run]\n")
    if md.config_file:
        f.write(f"#  Config file: {md.config_file}\n")
    f.write(f"#  Created at (UTC): {md.created_iso_or_now()}\n")
    f.write("# " + (len(metadata_title) - 2) * "=" + "\n")


def _expected_columns() -> List[str]:
    """Return the expected header token list."""
    return [
        "obs_id",
        "backend",
        "mapping_mode",
        "switching_mode",
        "obs_type",
        "duration_s",
        "n_seq",
        "n_darks",
        "n_refs",
        "n_cals",
    ]


def _write_column_header(f: TextIO) -> None:
    f.write("\t".join(_expected_columns()) + "\n")


def _fmt_1dec_or_nan(x: Optional[float]) -> str:
    if x is None:
        return "NaN"
    return f"{x:.1f}"


def _fmt_default_or_nan(x: Optional[float | str]) -> str:
    if x is None:
        return "NaN"
    return str(x)


def _row_to_line(r: EstimateRow) -> str:
    fields = [
        r.obs_id,
        r.backend,
        r.mapping_mode,
        r.switching_mode,
        r.obs_type,
        _fmt_1dec_or_nan(r.duration_s),
        _fmt_default_or_nan(r.n_seq),
        _fmt_default_or_nan(r.n_darks),
        _fmt_default_or_nan(r.n_refs),
        _fmt_default_or_nan(r.n_cals),
    ]
    return "\t".join(fields) + "\n"


def _read_header_tokens(path: Path) -> List[str]:
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.lstrip("\ufeff")
            if not line.strip():
                continue
            if line.lstrip().startswith("#"):
                continue
            return line.rstrip("\n").split("\t")
    raise SchemaMismatchError("No header line found in existing file")


def write_estimates_tsv(
    path: str | Path,
    metadata: Metadata,
    rows: Iterable[EstimateRow],
    append: bool = True,
) -> None:
    """
    Write (or append) a TSV file of duration estimates.

    Parameters
    ----------
    path : str or Path
        Output path.
    metadata : Metadata
        File-level metadata (written only when creating/overwriting the file).
    rows : Iterable[EstimateRow]
        Rows to write.
    append : bool, default True
        If True and the file exists, validate schema and append rows.
        If False, overwrite the file atomically.

    Raises
    ------
    SchemaMismatchError
        If in append mode the existing header does not match the expected one.
    """
    p = Path(path)

    if append and p.exists():
        try:
            on_disk = _read_header_tokens(p)
        except SchemaMismatchError:
            # Empty file or only comments: start over.
            append = False
        else:
            expected = _expected_columns()
            if on_disk != expected:
                raise SchemaMismatchError(
                    f"Header mismatch when appending. On disk: {on_disk} ; "
                    f"expected: {expected}"
                )
            with p.open("a", encoding="utf-8") as f:
                for r in rows:
                    f.write(_row_to_line(r))
            return

    tmp = p.with_suffix(p.suffix + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8", newline="\n") as f:
            _write_metadata_block(f, metadata)
            _write_column_header(f)
            for r in rows:
                f.write(_row_to_line(r))
        tmp.replace(p)
    finally:
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass


def read_estimates_tsv(path: str | Path) -> pd.DataFrame:
    """Read an estimates TSV back into a DataFrame (``NaN`` for missing values)."""
    df = pd.read_csv(path, sep="\t", comment="#", na_values=["NaN"])
    df.columns = [c.strip() for c in df.columns]
    missing = [c for c in _expected_columns() if c not in df.columns]
    if missing:
        raise SchemaMismatchError(
            f"Missing required columns {missing} in '{path}'. "
            f"Found columns: {list(df.columns)}"
        )
    return df
