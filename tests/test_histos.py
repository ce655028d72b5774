import numpy as np
import pytest

from fmd_density import Axis, Hist1D, Hist2D, Profile1D


def test_axis_find_bin_edges():
    ax = Axis(10, 0, 10)
    assert ax.find_bin(0) == 0
    assert ax.find_bin(9.99) == 9
    assert ax.find_bin(10) == 10
    assert ax.find_bin(-0.1) == -1
    assert ax.find_bin(np.nan) == 10
    np.testing.assert_array_equal(ax.find_bin([0.5, 5.5, 11]), [0, 5, 10])


def test_axis_rejects_bad_binning():
    with pytest.raises(ValueError):
        Axis(0, 0, 1)
    with pytest.raises(ValueError):
        Axis(5, 1, 1)


def test_axis_centers_and_edges():
    ax = Axis(4, -2, 2)
    np.testing.assert_allclose(ax.edges, [-2, -1, 0, 1, 2])
    np.testing.assert_allclose(ax.centers, [-1.5, -0.5, 0.5, 1.5])
    assert ax == Axis(4, -2.0, 2.0)


def test_hist1d_drops_out_of_range():
    h = Hist1D("h", "", 10, 0, 10)
    h.fill([1.5, 1.5, 20, -3], w=2.0)
    assert h.values[1] == 4.0
    assert h.integral() == 4.0
    assert h.entries == 4
    assert h.value_at(1.2) == 4.0
    assert h.value_at(50) == 0.0


def test_hist2d_add_and_rebin():
    a = Hist2D("a", "", 4, 0, 4, 2, 0, 2)
    b = a.empty_like("b")
    a.fill([0.5, 3.5], [0.5, 1.5], [1.0, 2.0])
    b.add(a, 2.0)
    assert b.values[0, 0] == 2.0
    assert b.values[3, 1] == 4.0
    np.testing.assert_allclose(b.projection_x(), [2, 0, 0, 4])

    with pytest.raises(ValueError):
        b.add(Hist2D("c", "", 3, 0, 3, 2, 0, 2))

    b.set_bins(8, 0, 4, 1, 0, 1)
    assert b.values.shape == (8, 1)
    assert b.integral() == 0.0


def test_profile_mean():
    p = Profile1D("p", "", 2, 0, 2)
    p.fill([0.5, 0.5, 1.5], [1.0, 3.0, 5.0])
    np.testing.assert_allclose(p.mean, [2.0, 5.0])
    p.reset()
    np.testing.assert_allclose(p.mean, [0.0, 0.0])
