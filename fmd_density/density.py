# density.py
from __future__ import annotations

import logging

import numpy as np

from .calibration import DoubleHitCorrection, ELossFitTable
from .config import DensityConfig, PhiAcceptance
from .cuts import MultCuts
from .event import INVALID_ETA, INVALID_MULT, FMDEvent
from .geometry import RINGS, FMD_Geometry, Ring
from .histos import Axis, Hist1D, Hist2D, Profile1D
from .poisson import PoissonCalculator
from .weights import WeightCache

logger = logging.getLogger(__name__)

DEFAULT_ETA_AXIS = (200, -4.0, 6.0)


def _scalar(x):
    x = np.asarray(x)
    return float(x) if x.ndim == 0 else x


class DensityHistos:
    """Per-event output: one eta x phi map per ring."""

    def __init__(self, eta_axis: Axis | None = None):
        eta_axis = eta_axis or Axis(*DEFAULT_ETA_AXIS)
        self.eta_axis = eta_axis
        self._maps = {
            ring: Hist2D(ring.name, f"Inclusive N_{{ch}} in {ring}",
                         eta_axis.nbins, eta_axis.xmin, eta_axis.xmax,
                         ring.n_sectors, 0, 2 * np.pi)
            for ring in RINGS
        }

    def get(self, ring: Ring) -> Hist2D | None:
        return self._maps.get(ring)

    def clear(self):
        for h in self._maps.values():
            h.reset()

    def items(self):
        return self._maps.items()


class RingHistos:
    """Diagnostics and the Poisson calculator of one ring."""

    def __init__(self, ring: Ring):
        self.ring = ring
        ns = ring.n_sectors

        self.evs_n = Hist2D("elossVsNnocorr", "#Delta E/#Delta E_{mip} vs uncorrected N_{ch}",
                            250, -0.5, 24.5, 250, -0.5, 24.5)
        self.evs_m = Hist2D("elossVsNcorr", "#Delta E/#Delta E_{mip} vs corrected N_{ch}",
                            250, -0.5, 24.5, 250, -0.5, 24.5)
        self.eta_vs_n = Profile1D("etaVsNnocorr", "Average N_{ch} vs #eta (uncorrected)", 200, -4, 6)
        self.eta_vs_m = Profile1D("etaVsNcorr", "Average N_{ch} vs #eta (corrected)", 200, -4, 6)
        self.corr = Profile1D("corr", "Average correction", 200, -4, 6)
        self.density = Hist2D("inclDensity", "Inclusive N_{ch} density",
                              200, -4, 6, ns, 0, 2 * np.pi)
        self.eloss_vs_poisson = Hist2D("elossVsPoisson", "N_{ch} from energy loss vs from Poisson",
                                       500, 0, 100, 500, 0, 100)
        self.eloss = Hist1D("eloss", "#Delta/#Delta_{mip} in all strips", 600, 0, 15)
        self.eloss_used = Hist1D("elossUsed", "#Delta/#Delta_{mip} in used strips", 600, 0, 15)
        self.poisson = PoissonCalculator()

    def init(self, eta_lumping: int, phi_lumping: int):
        self.poisson.set_lumping(eta_lumping, phi_lumping)
        self.poisson.init(self.ring.n_strips, self.ring.n_sectors)

    def output(self) -> dict:
        return {
            "elossVsNnocorr": self.evs_n,
            "elossVsNcorr": self.evs_m,
            "etaVsNnocorr": self.eta_vs_n,
            "etaVsNcorr": self.eta_vs_m,
            "corr": self.corr,
            "inclDensity": self.density,
            "elossVsPoisson": self.eloss_vs_poisson,
            "eloss": self.eloss,
            "elossUsed": self.eloss_used,
            "occupancy": self.poisson.occupancy,
            "mean": self.poisson.mean,
            "meanVsOcc": self.poisson.mean_vs_occupancy,
        }

    def scale_histograms(self, n_events: int):
        self.density.scale(1.0 / n_events)


class DensityCalculator:
    """
    Inclusive charged-particle density in each of the five FMD rings.

    For every strip the energy-loss signal is turned into a number of
    particles with the weighted sum of the energy-loss fits, corrected for
    the sensor-corner acceptance and (in low-flux events) double hits, and
    filled into an eta x phi map. An independent estimate from the strip
    occupancy is made in parallel; config.method picks which one ends up
    in the output.

    Calibrations are injected:
        fits        energy-loss fits (ELossFitTable)
        double_hit  double-hit correction (DoubleHitCorrection)
        cuts        multiplicity cuts (MultCuts); built from config.cuts
                    and the fits when not given
    """

    def __init__(self,
                 config: DensityConfig | None = None,
                 fits: ELossFitTable | None = None,
                 double_hit: DoubleHitCorrection | None = None,
                 cuts: MultCuts | None = None,
                 geometry: FMD_Geometry | None = None,
                 name: str = "fmdDensityCalculator"):
        self.name = name
        self.config = config or DensityConfig()
        self.fits = fits
        self.double_hit = double_hit
        self.cuts = cuts if cuts is not None else MultCuts.from_dict(self.config.cuts, fits)
        self.geom = geometry or FMD_Geometry()
        self.weights = WeightCache(self.config.max_particles, fits, self.cuts)
        self.ring_histos = {ring: RingHistos(ring) for ring in RINGS}

        self.sum_of_weights = Hist1D("sumOfWeights", "Sum of Landau weights", 200, 0, 20)
        self.weighted_sum = Hist1D("weightedSum", "Weighted sum of Landau propability", 200, 0, 20)
        self.corrections = Hist1D("corrections", "Distribution of corrections", 100, 0, 10)

    # ------------------------------------------
    # ------ Setup -----------------------------
    # ------------------------------------------
    def init(self, axis: Axis | None = None):
        """Build the weight cache and prepare the per-ring calculators."""
        self.weights.rebuild(axis or Axis(*DEFAULT_ETA_AXIS))
        for rh in self.ring_histos.values():
            rh.init(self.config.eta_lumping, self.config.phi_lumping)

    def get_ring_histos(self, ring: Ring) -> RingHistos | None:
        rh = self.ring_histos.get(ring)
        if rh is None:
            logger.warning(f"No ring histograms for {ring}")
        return rh

    def get_mult_cut(self, ring: Ring, eta: float) -> float:
        return self.cuts.get_mult_cut(ring, eta)

    def _mult_cuts(self, ring: Ring, eta: np.ndarray) -> np.ndarray:
        """get_mult_cut for an array of eta values."""
        if eta.size == 0:
            return np.zeros(0)
        uniq, inv = np.unique(eta, return_inverse=True)
        vals = np.array([self.get_mult_cut(ring, e) for e in uniq])
        return vals[inv.ravel()]

    # ------------------------------------------
    # ------ Acceptance ------------------------
    # ------------------------------------------
    def acceptance_correction(self, ring_type, strip):
        return self.geom.acceptance_at(ring_type, strip)

    # ------------------------------------------
    # ------ Number of particles ---------------
    # ------------------------------------------
    def n_particles(self, mult, ring: Ring, eta: float, low_flux: bool = False):
        """
        Particles behind signal(s) mult at a single eta.

        Low flux: exactly one particle. Otherwise the weighted sum of the
        fit at (ring, eta), limited to the cached max weight and
        config.max_particles. 0 when there is no usable fit.
        """
        mult = np.asarray(mult, dtype=float)
        if low_flux:
            return _scalar(np.ones_like(mult))

        fit = self.fits.find_fit(ring, eta) if self.fits is not None else None
        if fit is None:
            logger.warning(f"No energy loss fit for {ring} at eta={eta:f}")
            return _scalar(np.zeros_like(mult))

        m = self.weights.max_weight_at(ring, eta)
        if m < 1:
            logger.warning(f"No good fits for {ring} at eta={eta:f}")
            return _scalar(np.zeros_like(mult))

        n = min(self.config.max_particles, m)
        ret = fit.evaluate_weighted(mult, n)
        logger.debug(f"{ring}, eta={eta:7.4f}, using {n} terms")

        self.weighted_sum.fill(ret)
        self.sum_of_weights.fill(fit.sum_of_weights(mult, n))
        return ret

    def _n_particles_binned(self, mult, ring: Ring, eta, low_flux: bool):
        """n_particles for strips at many eta, one call per eta bin."""
        out = np.zeros(mult.shape)
        if mult.size == 0:
            return out
        if low_flux:
            return np.ones(mult.shape)
        axis = self.fits.eta_axis if self.fits is not None else self.weights.axis
        if axis is None:
            out[:] = self.n_particles(mult, ring, float(eta[0]), low_flux)
            return out
        bins = np.asarray(axis.find_bin(eta))
        for ibin in np.unique(bins):
            sel = bins == ibin
            out[sel] = self.n_particles(mult[sel], ring, float(eta[sel][0]), low_flux)
        return out

    # ------------------------------------------
    # ------ Correction ------------------------
    # ------------------------------------------
    def correction(self, ring: Ring, strip, eta, low_flux: bool = False):
        """
        Inverse correction: acceptance (phi mode NCH) times the double-hit
        correction (low flux). The estimate is divided by this.
        """
        strip = np.asarray(strip, int)
        eta = np.asarray(eta, float)
        corr = np.ones(np.broadcast(strip, eta).shape)
        if self.config.phi_acceptance is PhiAcceptance.NCH:
            corr = corr * self.acceptance_correction(ring.ring, strip)
        if low_flux:
            table = self.double_hit.get_correction(ring) if self.double_hit is not None else None
            if table is not None:
                dbl = np.broadcast_to(table.value_at(eta), corr.shape)
                corr = np.where(dbl > 0, corr * dbl, corr)
            else:
                logger.warning(f"Missing double hit correction for {ring}")
        return _scalar(corr)

    # ------------------------------------------
    # ------ Event loop ------------------------
    # ------------------------------------------
    def calculate(self, event: FMDEvent, hists: DensityHistos,
                  low_flux: bool | None = None, zvtx: float | None = None) -> bool:
        """
        Fill hists with the density of one event. Returns False only if a
        ring's output map or diagnostics are missing.
        """
        cfg = self.config
        low_flux = cfg.low_flux if low_flux is None else bool(low_flux)
        zvtx = event.zvtx if zvtx is None else float(zvtx)
        if self.weights.axis is None:
            logger.info("Calculator not initialised; using the default eta axis")
            self.init()

        for ring in RINGS:
            h = hists.get(ring)
            rh = self.ring_histos.get(ring)
            if h is None or rh is None:
                logger.error(f"No ring histogram found for {ring}")
                return False
            rh.poisson.reset()

            sec, strip = np.meshgrid(np.arange(ring.n_sectors), np.arange(ring.n_strips),
                                     indexing="ij")
            mult = np.array(event.multiplicity(ring), dtype=float)
            phi = np.asarray(event.phi(ring), float) / 180 * np.pi
            if cfg.recalculate_eta:
                eta = self.geom.eta_from_strip(ring, sec, strip, zvtx)
            else:
                eta = np.asarray(event.eta(ring), float)

            # 1) No signal or unphysical: a miss for the occupancy
            bad = (mult == INVALID_MULT) | (mult > cfg.max_signal)
            rh.poisson.fill(strip[bad], sec[bad], False)
            rh.evs_m.fill(mult[bad], 0)

            ok = ~bad
            m, e, p = mult[ok], eta[ok], phi[ok]
            s, t = sec[ok], strip[ok]

            # 2) Path-length scaling of the signal before the cut
            if cfg.phi_acceptance is PhiAcceptance.ELOSS:
                m = m * self.acceptance_correction(ring.ring, t)

            # 3) Cut; strips without eta can never pass
            cut = np.full(m.shape, INVALID_MULT)
            has_eta = e != INVALID_ETA
            cut[has_eta] = self._mult_cuts(ring, e[has_eta])

            # 4) Number of particles
            n = np.zeros(m.shape)
            sel = (cut > 0) & (m > cut)
            n[sel] = self._n_particles_binned(m[sel], ring, e[sel], low_flux)

            rh.eloss.fill(m)
            rh.evs_n.fill(m, n)
            rh.eta_vs_n.fill(e, n)

            # 5) Correction
            c = np.broadcast_to(self.correction(ring, t, e, low_flux), m.shape)
            if np.any(c > 1):
                logger.debug(f"{ring}: {int(np.count_nonzero(c > 1))} strips with correction "
                             f"above 1 (max {c.max():.4f}); estimate is lowered")
            self.corrections.fill(c)
            with np.errstate(divide="ignore", invalid="ignore"):
                nc = np.where(c > 0, n / c, n)
                w = np.where(c > 0, 1.0 / c, 1.0)
            rh.evs_m.fill(m, nc)
            rh.eta_vs_m.fill(e, nc)
            rh.corr.fill(e, c)

            # 6) Occupancy
            hit = (n > cfg.hit_threshold) & (c > 0)
            rh.eloss_used.fill(m[hit])
            rh.poisson.fill(t, s, hit, w)

            eloss_map = h.empty_like("eloss")
            eloss_map.fill(e, p, nc)
            if not cfg.use_poisson:
                rh.density.fill(e, p, nc)

            # 7) Reconcile with the occupancy estimate
            poisson_v = rh.poisson.result()
            poisson_map = h.empty_like("poisson")
            poisson_map.fill(eta.ravel(), phi.ravel(), poisson_v.ravel())
            if cfg.use_poisson:
                h.add(poisson_map)
                rh.density.fill(eta.ravel(), phi.ravel(), poisson_v.ravel())
            else:
                h.add(eloss_map)

            rh.eloss_vs_poisson.fill(eloss_map.values.ravel(), poisson_map.values.ravel())

        return True

    # ------------------------------------------
    # ------ Output ----------------------------
    # ------------------------------------------
    def scale_histograms(self, n_events: int) -> dict:
        """
        Normalise ring densities to the number of events.
        Returns dN/deta (summed over phi, per unit eta) for each ring.
        """
        if n_events <= 0:
            return {}
        sums = {}
        for ring, rh in self.ring_histos.items():
            rh.scale_histograms(n_events)
            sums[ring.name] = rh.density.projection_x() / rh.density.xaxis.width
        return sums

    def define_output(self) -> dict:
        return {
            "weightedSum": self.weighted_sum,
            "sumOfWeights": self.sum_of_weights,
            "corrections": self.corrections,
            "accI": self.geom.acc_inner,
            "accO": self.geom.acc_outer,
            "maxWeights": self.weights.max_weights_hist,
            "lowCuts": self.weights.low_cuts_hist,
            "maxParticle": self.config.max_particles,
            "method": "Poisson" if self.config.use_poisson else "Energy loss",
            "phiAcceptance": self.config.phi_acceptance.value,
            "etaLumping": self.config.eta_lumping,
            "phiLumping": self.config.phi_lumping,
            "cuts": self.cuts.method(),
            "rings": {ring.name: rh.output() for ring, rh in self.ring_histos.items()},
        }

    def summary(self, show_max: bool = True) -> str:
        cfg = self.config
        lines = [
            f"DensityCalculator: {self.name}",
            f" Max(particles):         {cfg.max_particles}",
            f" Poisson method:         {cfg.use_poisson}",
            f" Use phi acceptance:     {cfg.phi_acceptance.value}",
            f" Eta lumping:            {cfg.eta_lumping}",
            f" Phi lumping:            {cfg.phi_lumping}",
            f" Recalculate eta:        {cfg.recalculate_eta}",
            " Lower cut:",
            self.cuts.summary(),
        ]
        if show_max:
            lines.append(self.weights.summary())
        return "\n".join(lines)
