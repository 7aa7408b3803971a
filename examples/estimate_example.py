"""
estimate_example.py
===================

Purpose
-------
This script demonstrates how to use the `ocs_duration` library to estimate
how long an observation will take, without going through TOML run files.
It builds the configuration objects by hand, asks the engine for an
estimate, and writes the results to a standard TSV file.

Requirements
------------
- Install the project (``pip install -e .``) so that ``ocs_duration`` is
  importable.

What this example does
----------------------
1. Builds two observations:
   - a heterodyne raster map of 2x2 arcmin with position switching;
   - a continuum DAISY scan of the same area.
2. Calls `estimate_duration()` for each and prints the duration together
   with the intermediate counts reported through the diagnostics callback.
3. Writes both estimates to ``output_estimate_example.tsv`` with
   `write_estimates_tsv()`.

How to run
----------

    python estimate_example.py
"""

from ocs_duration.config_core.model import (
    BackendConfig,
    InstrumentGeometry,
    MapArea,
    ObservationConfig,
    ObservationSummary,
    ScanSpec,
    SequencingParameters,
)
from ocs_duration.duration.dispatcher import estimate_duration
from ocs_duration.duration_io.tsv import Metadata, row_from_estimate, write_estimates_tsv


def print_stage(stage, values):
    print(f"  {stage}: " + ", ".join(f"{k}={v}" for k, v in values.items()))


harp = InstrumentGeometry(array_radius_arcsec=60.0, name="HARP")

raster = ObservationConfig(
    obs_id="harp_raster",
    jos=SequencingParameters(step_time=0.1, steps_btwn_refs=300, n_calsamples=50, steps_btwn_cals=3000),
    summary=ObservationSummary("raster", "pssw", "science"),
    area=MapArea(width=120.0, height=120.0, scan=ScanSpec(velocity=30.0, dy=7.3, pattern="RASTER")),
    instrument=harp,
    heterodyne=BackendConfig("ACSIS"),
)

daisy = ObservationConfig(
    obs_id="s2_daisy",
    jos=SequencingParameters(step_time=0.005, num_cycles=2, steps_btwn_dark=200000, n_calsamples=1000),
    summary=ObservationSummary("scan", "none", "science"),
    area=MapArea(width=120.0, height=120.0, scan=ScanSpec(velocity=155.0, dy=30.0, pattern="DAISY")),
    continuum=BackendConfig("SCUBA-2"),
)

rows = []
for obs in (raster, daisy):
    print(f"{obs.obs_id}:")
    est = estimate_duration(obs, diagnostics=print_stage)
    print(f"  -> {est.seconds:.1f} s")
    rows.append(row_from_estimate(obs, est))

md = Metadata(telescope="JCMT", software_version="0.1.0")
write_estimates_tsv("output_estimate_example.tsv", md, rows, append=False)
