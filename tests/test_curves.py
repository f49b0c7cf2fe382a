import pytest

from capacity_planner.curves import distribute_over_periods, resample_curve, resolve_curve


def test_uniform_split():
    assert distribute_over_periods("uniform", ["2026-Q1", "2026-Q2"]) == {"2026-Q1": 0.5, "2026-Q2": 0.5}


def test_named_curve_resampled_to_fewer_buckets():
    weights = resolve_curve("back_loaded", 2)
    assert sum(weights) == pytest.approx(1.0)
    assert weights[1] > weights[0]


def test_explicit_weights_are_normalized():
    assert resample_curve([1, 1, 2], 3) == [0.25, 0.25, 0.5]


@pytest.mark.parametrize("spec", ["zigzag", [0, 0], [-1, 2]])
def test_bad_curves_rejected(spec):
    with pytest.raises(ValueError):
        resolve_curve(spec, 2)


def test_distribution_needs_periods():
    with pytest.raises(ValueError):
        distribute_over_periods("uniform", [])
