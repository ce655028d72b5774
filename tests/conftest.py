# conftest.py
import matplotlib
matplotlib.use("Agg")

import pytest

from fmd_density import (
    DensityCalculator,
    DensityConfig,
    DensityHistos,
    FMD_Geometry,
    FMDEvent,
    make_synthetic_calibration,
    make_synthetic_double_hit,
)


@pytest.fixture(scope="session")
def geom():
    return FMD_Geometry()


@pytest.fixture(scope="session")
def fits():
    return make_synthetic_calibration()


@pytest.fixture(scope="session")
def double_hit():
    return make_synthetic_double_hit()


@pytest.fixture
def make_calc(fits, double_hit, geom):
    """Factory: calculator with the synthetic calibrations, config overrides as kwargs."""
    def _make(**overrides):
        calc = DensityCalculator(DensityConfig(**overrides), fits=fits,
                                 double_hit=double_hit, geometry=geom)
        calc.init()
        return calc
    return _make


@pytest.fixture
def calc(make_calc):
    return make_calc()


@pytest.fixture
def event(geom):
    return FMDEvent.empty(geom)


@pytest.fixture
def hists(calc):
    return DensityHistos(calc.weights.axis)
