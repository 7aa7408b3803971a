from dataclasses import replace

import pytest
from joblib import parallel_backend

from ocs_duration.config_core.errors import (
    DurationError,
    InvalidParameter,
    MissingCollaborator,
    UnsupportedPattern,
)
from ocs_duration.config_core.model import BackendConfig, SequencingParameters, ZenithArea
from ocs_duration.duration.dispatcher import (
    DurationEstimate,
    Overheads,
    estimate_duration,
    estimate_many,
    estimate_seconds,
)


@pytest.fixture
def pointing(heterodyne_obs, offsets_area):
    return heterodyne_obs(
        "grid", "pssw", offsets_area(1), obs_type="pointing",
        jos_min=10, num_cycles=3, steps_btwn_refs=100,
    )


def test_estimate_heterodyne(pointing):
    est = estimate_duration(pointing)
    assert isinstance(est, DurationEstimate)
    assert est.backend == "heterodyne"
    assert est.branch == "grid_pssw"
    assert est.seconds == pytest.approx(97.0)
    assert float(est) == pytest.approx(97.0)
    assert est.n_darks is None
    assert est.as_dict()["n_refs"] == 3
    assert estimate_seconds(pointing) == pytest.approx(97.0)


def test_estimate_continuum(continuum_obs):
    est = estimate_duration(continuum_obs("stare", ZenithArea(), jos_min=100))
    assert est.backend == "continuum"
    assert est.n_refs is None
    assert est.n_darks == 1


@pytest.mark.parametrize("missing", ["jos", "summary", "area"])
def test_missing_collaborators(pointing, missing):
    with pytest.raises(MissingCollaborator):
        estimate_duration(replace(pointing, **{missing: None}))


def test_missing_backend(pointing):
    with pytest.raises(MissingCollaborator):
        estimate_duration(replace(pointing, heterodyne=None))


def test_heterodyne_wins_over_continuum(pointing):
    both = replace(pointing, continuum=BackendConfig("SCUBA-2"))
    assert estimate_duration(both).backend == "heterodyne"


def test_step_time_must_be_positive(pointing):
    with pytest.raises(InvalidParameter):
        estimate_duration(replace(pointing, jos=SequencingParameters(step_time=0.0)))


def test_unsupported_pattern_propagates(continuum_obs, square_map):
    cfg = continuum_obs("scan", square_map("ZIGZAG"))
    with pytest.raises(UnsupportedPattern):
        estimate_duration(cfg)


def test_diagnostics_total_stage(pointing):
    seen = []
    est = estimate_duration(pointing, diagnostics=lambda stage, values: seen.append((stage, values)))
    assert seen[-1] == ("total", {"seconds": est.seconds, "backend": "heterodyne"})


def test_overheads_from_dict(pointing):
    oh = Overheads.from_dict({"heterodyne": {"obs": 0, "seq": 1}, "continuum": {"startup": 5}})
    assert oh.heterodyne.obs == 0.0
    assert oh.heterodyne.tel_ref == 5.0
    assert oh.continuum.startup == 5.0
    assert oh.heterodyne.cal_move == oh.heterodyne.tel_ref
    # 97 s with obs 40 -> 0 and seq 5 -> 1 for the six sequences
    assert estimate_duration(pointing, overheads=oh).seconds == pytest.approx(97.0 - 40.0 - 6 * 4.0)
    assert Overheads.from_dict(None) == Overheads()
    with pytest.raises(TypeError):
        Overheads.from_dict({"heterodyne": {"warp": 1.0}})


def test_estimate_many_keeps_order_and_collects_errors(pointing, continuum_obs):
    bad = replace(pointing, obs_id="bad", area=None)
    good2 = continuum_obs("stare", ZenithArea())
    out = estimate_many([pointing, bad, good2], skip_errors=True)
    assert out[0].seconds == pytest.approx(97.0)
    assert isinstance(out[1], MissingCollaborator)
    assert out[2].backend == "continuum"
    with pytest.raises(DurationError):
        estimate_many([pointing, bad])


def test_estimate_many_parallel_matches_serial(pointing, continuum_obs):
    cfgs = [pointing, continuum_obs("stare", ZenithArea()), replace(pointing, obs_id="p2")]
    serial = estimate_many(cfgs)
    with parallel_backend("threading"):
        parallel = estimate_many(cfgs, n_jobs=2)
    assert parallel == serial
