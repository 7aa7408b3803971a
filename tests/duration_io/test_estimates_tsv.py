from __future__ import annotations
import math

import pandas as pd
import pytest

from ocs_duration.config_core.model import ZenithArea
from ocs_duration.duration.dispatcher import estimate_duration
from ocs_duration.duration_io.tsv import (
    EstimateRow,
    SchemaMismatchError,
    read_estimates_tsv,
    row_from_estimate,
    write_estimates_tsv,
)

_HEADER = (
    "obs_id\tbackend\tmapping_mode\tswitching_mode\tobs_type\tduration_s\t"
    "n_seq\tn_darks\tn_refs\tn_cals"
)


def test_write_new_file(tmp_path, md, sample_row, parse_noncomment_header_and_rows):
    p = tmp_path / "durations.tsv"
    write_estimates_tsv(p, md, [sample_row], append=False)
    text = p.read_text(encoding="utf-8")

    assert text.startswith("# === Metadata ")
    assert "#  Name: JCMT" in text
    assert "#  Config file: config/runs/night1.toml" in text
    assert "#  Created at (UTC): 2025-08-05T11:00:00Z" in text

    header, rows = parse_noncomment_header_and_rows(text)
    assert header == _HEADER
    assert rows == ["harp_raster\theterodyne\traster\tpssw\tscience\t1834.2\t75\tNaN\t15\t0"]
    assert not (tmp_path / "durations.tsv.tmp").exists()


def test_append_keeps_single_header(tmp_path, md, sample_row, parse_noncomment_header_and_rows):
    p = tmp_path / "durations.tsv"
    write_estimates_tsv(p, md, [sample_row], append=True)
    write_estimates_tsv(p, md, [sample_row], append=True)
    text = p.read_text(encoding="utf-8")
    assert text.count("# === Metadata") == 1
    _, rows = parse_noncomment_header_and_rows(text)
    assert len(rows) == 2


def test_append_header_mismatch(tmp_path, md, sample_row):
    p = tmp_path / "other.tsv"
    p.write_text("# foreign file\nmap_id\tazimuth\televation\n", encoding="utf-8")
    with pytest.raises(SchemaMismatchError):
        write_estimates_tsv(p, md, [sample_row], append=True)


def test_failed_replace_leaves_no_tmp_file(tmp_path, md, sample_row, monkeypatch):
    p = tmp_path / "new.tsv"

    def _fail(self, target):
        raise OSError("disk full")

    monkeypatch.setattr(type(p), "replace", _fail)
    with pytest.raises(OSError):
        write_estimates_tsv(p, md, [sample_row], append=False)
    assert not p.exists()
    assert not (tmp_path / "new.tsv.tmp").exists()


def test_append_to_comment_only_file_starts_over(tmp_path, md, sample_row, parse_noncomment_header_and_rows):
    p = tmp_path / "empty.tsv"
    p.write_text("# nothing yet\n", encoding="utf-8")
    write_estimates_tsv(p, md, [sample_row], append=True)
    header, rows = parse_noncomment_header_and_rows(p.read_text(encoding="utf-8"))
    assert header == _HEADER
    assert len(rows) == 1


def test_row_validation():
    with pytest.raises(ValueError):
        EstimateRow(obs_id="", backend="x", mapping_mode="x", switching_mode="x", obs_type="x")
    with pytest.raises(ValueError):
        EstimateRow(obs_id="a", backend="x", mapping_mode="x", switching_mode="x", obs_type="x", duration_s=-1.0)


def test_row_from_estimate_and_failure(continuum_obs):
    cfg = continuum_obs("stare", ZenithArea(), jos_min=100)
    ok = row_from_estimate(cfg, estimate_duration(cfg))
    assert ok.backend == "continuum"
    assert ok.n_darks == 1
    assert ok.n_refs is None

    failed = row_from_estimate(cfg, None)
    assert failed.duration_s is None
    assert failed.mapping_mode == "stare"


def test_read_back_as_dataframe(tmp_path, md, sample_row, continuum_obs):
    cfg = continuum_obs("stare", ZenithArea(), jos_min=100)
    rows = [sample_row, row_from_estimate(cfg, None)]
    p = tmp_path / "durations.tsv"
    write_estimates_tsv(p, md, rows, append=False)

    df = read_estimates_tsv(p)
    assert isinstance(df, pd.DataFrame)
    assert list(df["obs_id"]) == ["harp_raster", "cont"]
    assert df.loc[0, "duration_s"] == pytest.approx(1834.2)
    assert math.isnan(df.loc[1, "duration_s"])
    assert math.isnan(df.loc[0, "n_darks"])


def test_read_rejects_missing_columns(tmp_path):
    p = tmp_path / "bad.tsv"
    p.write_text("obs_id\tduration_s\na\t1.0\n", encoding="utf-8")
    with pytest.raises(SchemaMismatchError):
        read_estimates_tsv(p)
