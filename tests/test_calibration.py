import numpy as np
import pytest
import yaml

from fmd_density import Axis, DoubleHitCorrection, ELossFit, ELossFitTable, Ring
from fmd_density.calibration import landau_gaus


@pytest.fixture
def fit():
    w = np.array([0.05, 0.005, 5e-4, 5e-5])
    return ELossFit(1.0, 0.06, 0.08, weights=w, weight_errors=0.05 * w)


def test_landau_gaus_peak_and_norm():
    x = np.linspace(0.0, 20.0, 20001)
    y = landau_gaus(x, 1.0, 0.06, 0.08)
    assert abs(x[np.argmax(y)] - 1.0) < 0.1
    assert y.sum() * (x[1] - x[0]) == pytest.approx(1.0, abs=0.02)


def test_evaluate_weighted_counts_particles(fit):
    one = fit.evaluate_weighted(1.0, 5)
    two = fit.evaluate_weighted(2.1, 5)
    assert 1.0 <= one < 1.1
    assert two > 1.2
    assert two > one
    assert isinstance(one, float)

    arr = fit.evaluate_weighted(np.array([1.0, 2.1]), 5)
    np.testing.assert_allclose(arr, [one, two])


def test_evaluate_weighted_single_term_is_one(fit):
    assert fit.evaluate_weighted(3.0, 1) == pytest.approx(1.0)


def test_find_max_weight(fit):
    assert fit.n == 5
    assert fit.find_max_weight() == 5
    assert fit.find_max_weight(max_n=2) == 3

    small = ELossFit(1.0, 0.06, 0.08, weights=(0.05, 1e-9))
    assert small.find_max_weight() == 2

    noisy = ELossFit(1.0, 0.06, 0.08, weights=(0.05, 0.005, 5e-4),
                     weight_errors=(0.001, 0.004, 1e-5))
    assert noisy.find_max_weight() == 2


def test_lower_bounds(fit):
    assert fit.lower_bound_fraction(0.5) == pytest.approx(0.5)
    assert fit.lower_bound_nxi(2) == pytest.approx(0.88)
    assert fit.lower_bound_nxi(2, include_sigma=True) == pytest.approx(0.72)


def test_fit_round_trip(fit):
    again = ELossFit.from_dict(fit.to_dict())
    assert again.delta == fit.delta
    np.testing.assert_allclose(again.a, fit.a)
    np.testing.assert_allclose(again.ea, fit.ea)


def test_fit_table_lookup(fit):
    table = ELossFitTable(Axis(10, 0, 5), {(Ring(1, "I"), 3): fit})
    assert table.find_fit(Ring(1, "I"), 1.7) is fit
    assert table.find_fit(Ring(1, "I"), 0.2) is None
    assert table.find_fit(Ring(2, "I"), 1.7) is None
    assert table.get_lower_bound_fraction(Ring(2, "I"), 3, 0.5) == -1024
    assert table.get_lower_bound_nxi(Ring(1, "I"), 3, 1.0) == pytest.approx(0.94)
    with pytest.raises(ValueError):
        table.set_fit(Ring(1, "I"), 10, fit)


def test_fit_table_from_yaml(tmp_path):
    data = {
        "eta_axis": {"nbins": 10, "min": 0.0, "max": 5.0},
        "low_cut": 0.25,
        "fits": [
            {"ring": "FMD2i", "eta_bins": [2, 4], "delta": 1.0, "xi": 0.05, "sigma": 0.1,
             "weights": [0.04], "weight_errors": [0.002]},
            {"ring": "FMD3o", "eta": 4.2, "delta": 0.9, "xi": 0.05, "sigma": 0.1},
        ],
    }
    path = tmp_path / "fits.yaml"
    path.write_text(yaml.safe_dump(data))

    table = ELossFitTable.load(path)
    assert len(table) == 4
    assert table.low_cut == 0.25
    assert table.get_fit(Ring(2, "I"), 4).find_max_weight() == 2
    assert table.get_fit(Ring(3, "O"), 8).delta == 0.9


def test_fit_table_entry_without_bin():
    with pytest.raises(ValueError):
        ELossFitTable.from_dict({"fits": [{"ring": "FMD1i", "delta": 1, "xi": 0.1, "sigma": 0.1}]})


def test_double_hit_from_dict():
    dh = DoubleHitCorrection.from_dict({"FMD1i": {"nbins": 2, "min": 0, "max": 2,
                                                  "values": [0.9, 0.8]}})
    table = dh.get_correction(Ring(1, "I"))
    assert table.value_at(1.5) == 0.8
    assert table.value_at(5.0) == 0.0
    assert dh.get_correction(Ring(2, "I")) is None

    with pytest.raises(ValueError):
        DoubleHitCorrection.from_dict({"FMD1i": {"nbins": 3, "min": 0, "max": 2,
                                                 "values": [0.9]}})
