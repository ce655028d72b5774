import logging

import numpy as np
import pytest

from fmd_density import (
    RINGS,
    Axis,
    DensityCalculator,
    DensityConfig,
    DensityHistos,
    DoubleHitCorrection,
    ELossFit,
    ELossFitTable,
    FMDEvent,
    INVALID_MULT,
    Ring,
    make_synthetic_double_hit,
)

FMD2I = Ring(2, "I")
FMD2O = Ring(2, "O")


def _all_misses(calc, ring):
    p = calc.ring_histos[ring].poisson
    return p.total.sum() == ring.n_sectors * ring.n_strips and np.all(p.empty == p.total)


def test_invalid_strips_give_empty_map(calc, event, hists):
    assert calc.calculate(event, hists)
    for ring in RINGS:
        assert hists.get(ring).integral() == 0
        assert _all_misses(calc, ring)


def test_signal_at_cut_is_ignored(calc, event, hists):
    cut = calc.get_mult_cut(FMD2I, event.eta(FMD2I)[0, 0])
    assert cut == pytest.approx(0.3)
    event.set_multiplicity(FMD2I, 0, 0, cut)
    assert calc.calculate(event, hists)
    assert hists.get(FMD2I).integral() == 0
    assert _all_misses(calc, FMD2I)


def test_unphysical_signal_is_a_miss(calc, event, hists):
    event.set_multiplicity(FMD2I, 0, 0, 25.0)
    assert calc.calculate(event, hists)
    assert hists.get(FMD2I).integral() == 0
    assert _all_misses(calc, FMD2I)


def test_single_mip(calc, event, hists):
    eta = event.eta(FMD2O)[0, 0]
    event.set_multiplicity(FMD2O, 0, 0, 1.0)
    assert calc.calculate(event, hists)

    expected = calc.fits.find_fit(FMD2O, eta).evaluate_weighted(1.0, 5)
    h = hists.get(FMD2O)
    assert h.integral() == pytest.approx(expected)
    assert h.values[h.xaxis.find_bin(eta), 0] == pytest.approx(expected)
    assert hists.get(FMD2I).integral() == 0

    p = calc.ring_histos[FMD2O].poisson
    assert p.empty.sum() == p.total.sum() - 1


def test_strip_without_eta_never_passes(calc, event, hists):
    event.eta(FMD2O)[0, 0] = 1024.0
    event.set_multiplicity(FMD2O, 0, 0, 1.0)
    assert calc.calculate(event, hists)
    assert hists.get(FMD2O).integral() == 0


def test_acceptance_divides_estimate(calc, event, hists, geom):
    strip = 511
    acc = geom.acc_inner[strip]
    assert 0 < acc < 1
    eta = event.eta(FMD2I)[0, strip]
    event.set_multiplicity(FMD2I, 0, strip, 1.0)
    calc.calculate(event, hists)
    n = calc.fits.find_fit(FMD2I, eta).evaluate_weighted(1.0, 5)
    assert hists.get(FMD2I).integral() == pytest.approx(n / acc)


def test_acceptance_disabled(make_calc, event):
    calc = make_calc(phi_acceptance="disabled")
    hists = DensityHistos(calc.weights.axis)
    eta = event.eta(FMD2I)[0, 511]
    event.set_multiplicity(FMD2I, 0, 511, 1.0)
    calc.calculate(event, hists)
    n = calc.fits.find_fit(FMD2I, eta).evaluate_weighted(1.0, 5)
    assert hists.get(FMD2I).integral() == pytest.approx(n)


def test_eloss_mode_scales_signal_before_cut(make_calc, event, geom):
    strip = 511
    acc = geom.acc_inner[strip]
    signal = 0.29 / acc
    event.set_multiplicity(FMD2I, 0, strip, signal)

    nch = make_calc()
    h_nch = DensityHistos(nch.weights.axis)
    nch.calculate(event, h_nch)
    assert h_nch.get(FMD2I).integral() > 0

    eloss = make_calc(phi_acceptance="energy loss")
    h_eloss = DensityHistos(eloss.weights.axis)
    eloss.calculate(event, h_eloss)
    assert h_eloss.get(FMD2I).integral() == 0


def test_low_flux_counts_one_particle(calc, event, hists):
    eta = event.eta(FMD2O)[3, 0]
    assert calc.n_particles(2.5, FMD2O, eta, low_flux=True) == 1.0
    np.testing.assert_array_equal(calc.n_particles(np.array([0.5, 3.0]), FMD2O, eta, True), [1, 1])

    event.set_multiplicity(FMD2O, 3, 0, 2.5)
    calc.calculate(event, hists, low_flux=True)
    # strip 0 has full acceptance; double-hit correction is 0.97
    assert hists.get(FMD2O).integral() == pytest.approx(1 / 0.97)


def test_low_flux_from_config(make_calc, event):
    calc = make_calc(low_flux=True)
    hists = DensityHistos(calc.weights.axis)
    event.set_multiplicity(FMD2O, 3, 0, 2.5)
    calc.calculate(event, hists)
    assert hists.get(FMD2O).integral() == pytest.approx(1 / 0.97)


def test_low_flux_nothing_above_cut(calc, event, hists):
    event.set_multiplicity(FMD2O, 0, 0, 0.1)
    event.set_multiplicity(FMD2O, 1, 0, INVALID_MULT)
    assert calc.calculate(event, hists, low_flux=True)
    assert hists.get(FMD2O).integral() == 0
    assert _all_misses(calc, FMD2O)


def test_missing_double_hit_warns(fits, geom, event, caplog):
    calc = DensityCalculator(DensityConfig(), fits=fits,
                             double_hit=DoubleHitCorrection({}), geometry=geom)
    calc.init()
    eta = event.eta(FMD2I)[0, 0]
    with caplog.at_level(logging.WARNING):
        c = calc.correction(FMD2I, 0, eta, low_flux=True)
    assert c == 1.0
    assert "Missing double hit correction for FMD2i" in caplog.text


def test_no_fit_gives_zero(geom, event, caplog):
    calc = DensityCalculator(DensityConfig(cuts={"mult_cut": 0.3}), geometry=geom)
    calc.init()
    hists = DensityHistos(calc.weights.axis)
    event.set_multiplicity(FMD2O, 0, 0, 1.0)
    with caplog.at_level(logging.WARNING):
        assert calc.calculate(event, hists)
    assert hists.get(FMD2O).integral() == 0
    assert "No energy loss fit for FMD2o" in caplog.text


def test_missing_output_histogram_fails(calc, event, hists, monkeypatch, caplog):
    monkeypatch.setattr(hists, "get", lambda ring: None)
    with caplog.at_level(logging.ERROR):
        assert not calc.calculate(event, hists)
    assert "No ring histogram found" in caplog.text


def test_poisson_method(make_calc, event):
    event.set_multiplicity(FMD2O, 0, 0, 1.0)

    pois = make_calc(method="poisson")
    h_pois = DensityHistos(pois.weights.axis)
    pois.calculate(event, h_pois)
    assert h_pois.get(FMD2O).integral() == pytest.approx(128 * np.log(128 / 127))

    eloss = make_calc()
    h_eloss = DensityHistos(eloss.weights.axis)
    eloss.calculate(event, h_eloss)
    assert h_eloss.get(FMD2O).integral() == pytest.approx(
        eloss.fits.find_fit(FMD2O, event.eta(FMD2O)[0, 0]).evaluate_weighted(1.0, 5))

    rh = pois.ring_histos[FMD2O]
    assert rh.eloss_vs_poisson.entries > 0
    assert rh.eloss_used.integral() == 1


def test_output_accumulates_until_cleared(calc, event, hists):
    event.set_multiplicity(FMD2O, 0, 0, 1.0)
    calc.calculate(event, hists)
    once = hists.get(FMD2O).integral()
    calc.calculate(event, hists)
    assert hists.get(FMD2O).integral() == pytest.approx(2 * once)
    hists.clear()
    calc.calculate(event, hists)
    assert hists.get(FMD2O).integral() == pytest.approx(once)


def test_recalculate_eta(make_calc, geom):
    calc = make_calc(recalculate_eta=True)
    hists = DensityHistos(calc.weights.axis)
    # eta in the event is garbage; it must be recomputed from the vertex
    event = FMDEvent.empty(geom, zvtx=5.0)
    event.eta(FMD2O)[:] = 1024.0
    event.set_multiplicity(FMD2O, 0, 0, 1.0)
    calc.calculate(event, hists)
    assert hists.get(FMD2O).integral() > 0

    eta = geom.eta_from_strip(FMD2O, 0, 0, 5.0)
    h = hists.get(FMD2O)
    assert h.values[h.xaxis.find_bin(eta), 0] > 0


def test_scale_histograms(calc, event, hists):
    event.set_multiplicity(FMD2O, 0, 0, 1.0)
    for _ in range(4):
        hists.clear()
        calc.calculate(event, hists)
    per_event = hists.get(FMD2O).integral()

    sums = calc.scale_histograms(4)
    rh = calc.ring_histos[FMD2O]
    assert rh.density.integral() == pytest.approx(per_event)
    assert sums["FMD2o"].sum() * rh.density.xaxis.width == pytest.approx(per_event)
    assert calc.scale_histograms(0) == {}


def test_define_output_and_summary(calc):
    out = calc.define_output()
    assert out["maxParticle"] == 5
    assert out["method"] == "Energy loss"
    assert out["phiAcceptance"] == "particles"
    assert set(out["rings"]) == {r.name for r in RINGS}
    assert "inclDensity" in out["rings"]["FMD1i"]

    text = calc.summary()
    assert any(line.split() == ["Eta", "lumping:", "32"] for line in text.splitlines())
    assert "Max weights:" in text
    assert "Max weights:" not in calc.summary(show_max=False)


def test_calculate_initialises_on_demand(fits, double_hit, geom, event):
    calc = DensityCalculator(DensityConfig(), fits=fits, double_hit=double_hit, geometry=geom)
    hists = DensityHistos()
    event.set_multiplicity(FMD2O, 0, 0, 1.0)
    assert calc.calculate(event, hists)
    assert calc.weights.axis == fits.eta_axis
    assert hists.get(FMD2O).integral() > 0


@pytest.fixture
def short_fit():
    # a_3 is badly measured, so only a_1 and a_2 are usable
    w = np.array([0.05, 0.005, 5e-4, 5e-5])
    return ELossFit(1.0, 0.06, 0.08, weights=w, weight_errors=np.array([0.001, 0.004, 1e-5, 1e-6]))


def test_estimate_limited_by_fit_quality(short_fit, geom):
    assert short_fit.find_max_weight() == 2
    axis = Axis(200, -4, 6)
    table = ELossFitTable(axis, {(FMD2O, ibin): short_fit for ibin in range(axis.nbins)})
    calc = DensityCalculator(DensityConfig(), fits=table, geometry=geom)
    calc.init()
    assert calc.weights.max_weight_at(FMD2O, 2.0) == 2

    n = calc.n_particles(3.2, FMD2O, 2.0)
    assert n == pytest.approx(short_fit.evaluate_weighted(3.2, 2))
    assert abs(n - short_fit.evaluate_weighted(3.2, 5)) > 0.05


def test_estimate_limited_by_ceiling(short_fit, geom):
    axis = Axis(200, -4, 6)
    table = ELossFitTable(axis, {(FMD2O, ibin): short_fit for ibin in range(axis.nbins)})
    calc = DensityCalculator(DensityConfig(max_particles=1), fits=table, geometry=geom)
    calc.init()
    assert calc.weights.max_weight_at(FMD2O, 2.0) == 1
    assert calc.n_particles(3.2, FMD2O, 2.0) == pytest.approx(1.0)


def test_no_cached_weight_gives_zero(fits, geom, caplog):
    calc = DensityCalculator(DensityConfig(), fits=ELossFitTable(fits.eta_axis), geometry=geom)
    calc.init()
    # fits appear after the cache was built for an empty table
    calc.fits = fits
    with caplog.at_level(logging.WARNING):
        assert calc.n_particles(1.0, FMD2O, 2.0) == 0.0
    assert "No good fits for FMD2o" in caplog.text


def test_weight_diagnostics_differ(calc):
    x = np.array([1.0, 2.1])
    fit = calc.fits.find_fit(FMD2O, 2.0)
    calc.n_particles(x, FMD2O, 2.0)
    assert calc.weighted_sum.integral() == 2
    assert calc.sum_of_weights.integral() == 2
    assert not np.array_equal(calc.weighted_sum.values, calc.sum_of_weights.values)
    for v in fit.sum_of_weights(x, 5):
        assert calc.sum_of_weights.value_at(v) > 0


def test_correction_above_one_is_logged_not_clamped(fits, geom, event, caplog):
    calc = DensityCalculator(DensityConfig(low_flux=True), fits=fits,
                             double_hit=make_synthetic_double_hit(value=1.25), geometry=geom)
    calc.init()
    hists = DensityHistos(calc.weights.axis)
    event.set_multiplicity(FMD2O, 0, 0, 1.0)
    with caplog.at_level(logging.DEBUG, logger="fmd_density"):
        assert calc.calculate(event, hists)
    assert "FMD2o: 1 strips with correction above 1" in caplog.text
    assert hists.get(FMD2O).integral() == pytest.approx(1 / 1.25)
