import math

import pytest

from ocs_duration.config_core.errors import (
    InvalidParameter,
    MissingCollaborator,
    UnrecognizedObservingMode,
)
from ocs_duration.config_core.model import SecondaryMirrorSpec
from ocs_duration.duration.dispatcher import HeterodyneOverheads, heterodyne_seconds
from ocs_duration.duration.heterodyne import heterodyne_counts


def test_grid_pssw_pointing_end_to_end(heterodyne_obs, offsets_area):
    cfg = heterodyne_obs(
        "grid",
        "pssw",
        offsets_area(1),
        obs_type="pointing",
        step_time=0.2,
        jos_min=10,
        num_cycles=3,
        shareoff=False,
        steps_btwn_refs=100,
        n_calsamples=0,
    )
    c = heterodyne_counts(cfg)
    assert c.branch == "grid_pssw"
    assert c.on_steps == 30.0
    assert (c.n_refs, c.n_seq, c.ntel_ref_moves) == (3, 6, 3)
    assert c.ref_steps == 10.0
    assert (c.n_nods, c.n_cals, c.n_smu) == (0, 0, 1)
    # obs + on + ref + tel_ref moves + sequence starts
    expected = 40 + 30 * 0.2 + 30 * 0.2 + 3 * 5 + 6 * 5
    assert heterodyne_seconds(c) == pytest.approx(expected)
    assert heterodyne_seconds(c) == pytest.approx(97.0)


def test_grid_pssw_shareoff(heterodyne_obs, offsets_area):
    cfg = heterodyne_obs("grid", "pssw", offsets_area(4), jos_min=10, shareoff=True, steps_btwn_refs=20)
    c = heterodyne_counts(cfg)
    assert c.n_refs == 2
    assert c.ref_steps == math.ceil(math.sqrt(2) * 10)
    assert c.n_seq == 6


def test_pssw_refsamples_override(heterodyne_obs, offsets_area):
    cfg = heterodyne_obs("grid", "pssw", offsets_area(2), jos_min=10, n_refsamples=7)
    assert heterodyne_counts(cfg).ref_steps == 7.0


def test_jiggle_pssw_shares_the_reference(heterodyne_obs, offsets_area):
    smu = SecondaryMirrorSpec(jiggle_points=9, mode="jiggle")
    cfg = heterodyne_obs("jiggle", "pssw", offsets_area(1), smu=smu, jos_min=2)
    c = heterodyne_counts(cfg)
    assert c.branch == "jiggle_pssw"
    assert c.on_steps == 18.0
    # one OFF serves the nine jiggle positions
    assert c.ref_steps == math.ceil(math.sqrt(9) * 2)


def test_raster_pssw(heterodyne_obs, square_map):
    cfg = heterodyne_obs("raster", "pssw", square_map("RASTER"), step_time=0.1, steps_btwn_refs=300)
    c = heterodyne_counts(cfg)
    assert c.branch == "raster"
    assert c.on_steps == pytest.approx(4200.0)
    # 60 rows of 70 steps, 4 rows per reference
    assert c.n_refs == 15
    assert c.n_seq == 75
    assert c.ntel_ref_moves == 29
    assert c.ref_steps == 17.0


def test_raster_cycles_scale_counts(heterodyne_obs, square_map):
    one = heterodyne_counts(heterodyne_obs("raster", "pssw", square_map(), step_time=0.1, steps_btwn_refs=300))
    two = heterodyne_counts(
        heterodyne_obs("raster", "pssw", square_map(), step_time=0.1, steps_btwn_refs=300, num_cycles=2)
    )
    assert two.n_refs == 2 * one.n_refs
    assert two.on_steps == pytest.approx(2 * one.on_steps)


def test_raster_requires_map_area(heterodyne_obs, offsets_area):
    with pytest.raises(MissingCollaborator):
        heterodyne_counts(heterodyne_obs("raster", "pssw", offsets_area(1)))


def test_jiggle_chop_modes(heterodyne_obs, offsets_area):
    chop_jiggle = SecondaryMirrorSpec(jiggle_points=9, mode="chop_jiggle")
    c = heterodyne_counts(heterodyne_obs("jiggle", "chop", offsets_area(1), smu=chop_jiggle))
    assert c.branch == "jiggle_chop"
    assert c.on_steps == 36.0
    assert (c.n_nods, c.n_seq) == (2, 2)

    jiggle_chop = SecondaryMirrorSpec(jiggle_points=8, mode="jiggle_chop", n_jigs_on=4, n_cyc_off=2)
    c = heterodyne_counts(heterodyne_obs("jiggle", "chop", offsets_area(1), smu=jiggle_chop))
    # 8 on + 4 off per pass, two nod positions
    assert c.on_steps == pytest.approx(24.0)


def test_jiggle_chop_needs_timing(heterodyne_obs, offsets_area):
    smu = SecondaryMirrorSpec(jiggle_points=8, mode="jiggle_chop")
    with pytest.raises(InvalidParameter):
        heterodyne_counts(heterodyne_obs("jiggle", "chop", offsets_area(1), smu=smu))


def test_jiggle_needs_smu(heterodyne_obs, offsets_area):
    with pytest.raises(MissingCollaborator):
        heterodyne_counts(heterodyne_obs("jiggle", "freqsw", offsets_area(1)))


def test_jiggle_freqsw(heterodyne_obs, offsets_area):
    smu = SecondaryMirrorSpec(jiggle_points=5, mode="jiggle")
    c = heterodyne_counts(heterodyne_obs("jiggle", "freqsw", offsets_area(2), smu=smu, num_cycles=3))
    assert c.branch == "jiggle_freqsw"
    assert c.on_steps == 5 * 2 * 3 * 2
    assert c.n_seq == 6
    assert c.n_nods == 0


def test_grid_freqsw(heterodyne_obs, offsets_area):
    c = heterodyne_counts(heterodyne_obs("grid", "freqsw", offsets_area(3), num_cycles=2, jos_min=4))
    assert (c.branch, c.n_seq, c.on_steps) == ("grid_freqsw", 6, 24.0)


def test_grid_chop_and_focus(heterodyne_obs, offsets_area):
    c = heterodyne_counts(heterodyne_obs("grid", "chop", offsets_area(1), num_cycles=2, jos_min=5))
    assert (c.n_nods, c.n_seq, c.on_steps) == (4, 8, 40.0)

    f = heterodyne_counts(
        heterodyne_obs("grid", "chop", offsets_area(1), obs_type="focus", num_focus_steps=5)
    )
    # AB nodding for focus, repeated at every SMU position
    assert f.n_nods == 1
    assert f.n_smu == 5
    assert f.n_cals == 0


def test_spin_suffix_is_ignored(heterodyne_obs, offsets_area):
    plain = heterodyne_counts(heterodyne_obs("grid", "pssw", offsets_area(2), jos_min=10))
    spin = heterodyne_counts(heterodyne_obs("grid", "pssw_spin", offsets_area(2), jos_min=10))
    assert plain == spin


def test_single_cal_when_no_interval(heterodyne_obs, offsets_area):
    c = heterodyne_counts(heterodyne_obs("grid", "pssw", offsets_area(1), jos_min=10, n_calsamples=20))
    assert c.n_cals == 1
    assert c.cal_extra_steps == 10.0
    no_cal = heterodyne_counts(heterodyne_obs("grid", "pssw", offsets_area(1), jos_min=10))
    base = heterodyne_seconds(no_cal)
    assert heterodyne_seconds(c) == pytest.approx(base + 10 * 0.2 + HeterodyneOverheads().cal_move)


def test_cals_follow_interval(heterodyne_obs, offsets_area):
    c = heterodyne_counts(
        heterodyne_obs(
            "grid", "pssw", offsets_area(10), jos_min=10, n_calsamples=5, steps_btwn_cals=40
        )
    )
    # 20 sequences of 10 steps, a cal every four sequences
    assert c.n_seq == 20
    assert c.n_cals == 5
    assert c.cal_extra_steps == 0.0


def test_pointing_takes_no_cals(heterodyne_obs, offsets_area):
    c = heterodyne_counts(
        heterodyne_obs("grid", "pssw", offsets_area(1), obs_type="pointing", n_calsamples=50)
    )
    assert c.n_cals == 0


def test_unrecognized_combination(heterodyne_obs, offsets_area):
    with pytest.raises(UnrecognizedObservingMode):
        heterodyne_counts(heterodyne_obs("stare", "none", offsets_area(1)))
    with pytest.raises(UnrecognizedObservingMode):
        heterodyne_counts(heterodyne_obs("grid", "none", offsets_area(1)))


def test_diagnostics_receive_counts(heterodyne_obs, square_map):
    seen = []
    cfg = heterodyne_obs("raster", "pssw", square_map(), step_time=0.1, steps_btwn_refs=300)
    heterodyne_counts(cfg, diagnostics=lambda stage, values: seen.append((stage, dict(values))))
    stages = [s for s, _ in seen]
    assert stages == ["geometry", "heterodyne"]
    assert seen[0][1]["n_rows"] == 60
    assert seen[1][1]["n_refs"] == 15
