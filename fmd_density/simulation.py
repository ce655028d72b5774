# simulation.py
from __future__ import annotations

import numpy as np
from scipy import stats

from .calibration import MPSHIFT, DoubleHitCorrection, DoubleHitTable, ELossFit, ELossFitTable
from .event import INVALID_MULT, FMDEvent
from .geometry import RINGS, FMD_Geometry
from .histos import Axis


class FMDEventGenerator:
    """
    Generate FMD events with a flat dN/deta of primaries.
    Each strip gets a Poisson number of particles; each particle deposits
    a Landau-distributed energy loss (in MIP units), smeared by noise.
    """

    def __init__(self, geometry: FMD_Geometry, seed=None,
                 delta=1.0, xi=0.06, sigma=0.08, dead_fraction=0.0):
        self.geom = geometry
        self.rng = np.random.default_rng(seed)
        self.delta = delta
        self.xi = xi
        self.sigma = sigma
        self.dead_fraction = dead_fraction

    def mean_per_strip(self, ring, dndeta, zvtx=0.0):
        """
        Expected particles per (sector, strip): dN/deta * |d eta| / n_sectors,
        scaled by the active fraction of the strip.
        """
        sec, strip = np.meshgrid(np.arange(ring.n_sectors), np.arange(ring.n_strips + 1),
                                 indexing="ij")
        eta_edges = self.geom.eta_from_strip(ring, sec, strip, zvtx)
        deta = np.abs(np.diff(eta_edges, axis=1))                  # (n_sec, n_strips)
        acc = self.geom.acceptance_at(ring.ring, np.arange(ring.n_strips))
        return dndeta * deta / ring.n_sectors * acc[None, :]

    def sample_eloss(self, n_particles: np.ndarray) -> np.ndarray:
        """Summed energy loss for strips hit by n_particles (>= 1) each."""
        n_particles = np.asarray(n_particles, int)
        total = np.zeros(n_particles.shape)
        n_max = int(n_particles.max()) if n_particles.size else 0
        for k in range(1, n_max + 1):
            sel = n_particles >= k
            total[sel] += stats.landau.rvs(loc=self.delta - self.xi * MPSHIFT, scale=self.xi,
                                           size=int(sel.sum()), random_state=self.rng)
        total += self.rng.normal(0.0, self.sigma, size=total.shape)
        return total

    def generate(self, dndeta=2.0, zvtx=0.0):
        """
        Returns (event, truth) where truth maps ring -> (n_sectors, n_strips)
        numbers of particles.
        """
        event = FMDEvent.empty(self.geom, zvtx=zvtx)
        truth = {}
        for ring in RINGS:
            mu = self.mean_per_strip(ring, dndeta, zvtx)
            n = self.rng.poisson(mu)
            mult = np.zeros(n.shape)
            hit = n > 0
            mult[hit] = np.maximum(self.sample_eloss(n[hit]), 0.0)
            if self.dead_fraction > 0:
                dead = self.rng.random(n.shape) < self.dead_fraction
                mult[dead] = INVALID_MULT
            event.multiplicity(ring)[:] = mult
            truth[ring] = n
        return event, truth


# -----------------------------------------------------------
# --------------- Synthetic calibrations --------------------
# -----------------------------------------------------------
def make_synthetic_calibration(eta_axis: Axis | None = None,
                               delta=1.0, xi=0.06, sigma=0.08,
                               weights=(0.05, 0.005, 5e-4, 5e-5),
                               rel_error=0.05, low_cut=0.3,
                               rings=RINGS) -> ELossFitTable:
    """Same fit in every eta bin of every ring."""
    eta_axis = eta_axis or Axis(200, -4.0, 6.0, "#eta")
    weights = np.asarray(weights, float)
    fit = ELossFit(delta, xi, sigma, weights=weights, weight_errors=rel_error * weights)
    table = ELossFitTable(eta_axis, low_cut=low_cut)
    for ring in rings:
        for ibin in range(eta_axis.nbins):
            table.set_fit(ring, ibin, fit)
    return table


def make_synthetic_double_hit(eta_axis: Axis | None = None, value=0.97,
                              rings=RINGS) -> DoubleHitCorrection:
    eta_axis = eta_axis or Axis(200, -4.0, 6.0, "#eta")
    return DoubleHitCorrection({ring: DoubleHitTable(eta_axis, np.full(eta_axis.nbins, value))
                                for ring in rings})
