# weights.py
from __future__ import annotations

import logging

import numpy as np

from .calibration import ELossFitTable
from .cuts import MultCuts
from .geometry import RINGS, Ring
from .histos import Axis, Hist2D

logger = logging.getLogger(__name__)


class WeightCache:
    """
    Cached number of usable a_i's for every ring and eta bin.

    max_weights[ring][ibin] = min(max_particles, fit.find_max_weight()),
    or -1 where there is no fit. The multiplicity cut of every bin is kept
    next to it for reporting. Both tables follow the eta axis given to
    rebuild(); when a fit table is present its own axis takes precedence.
    """

    def __init__(self, max_particles: int = 5,
                 fits: ELossFitTable | None = None,
                 cuts: MultCuts | None = None):
        self.max_particles = int(max_particles)
        self.fits = fits
        self.cuts = cuts
        self.axis = None
        self.max_weights = {}
        self.low_cuts = {}

        # diagnostics: eta x ring
        self.max_weights_hist = Hist2D("maxWeights", "Maximum i of a_{i}'s to use",
                                       1, 0, 1, 1, 0, 1)
        self.low_cuts_hist = Hist2D("lowCuts", "Low cuts used", 1, 0, 1, 1, 0, 1)

    def find_max_weight(self, ring: Ring, ibin: int) -> int:
        if self.fits is None:
            return -1
        fit = self.fits.get_fit(ring, ibin)
        if fit is None:
            logger.debug(f"No energy loss fit for {ring} in eta bin {ibin}")
            return -1
        return min(self.max_particles, fit.find_max_weight())

    def rebuild(self, axis: Axis):
        """Recompute all tables for the binning (fit table axis wins)."""
        eta = axis
        if self.fits is not None:
            eta = Axis(self.fits.eta_axis.nbins, self.fits.eta_axis.xmin,
                       self.fits.eta_axis.xmax, "#eta")
        self.axis = eta
        n_eta = eta.nbins
        logger.info(f"Caching max weights on eta axis with {n_eta} bins "
                    f"from {eta.xmin} to {eta.xmax}")

        self.max_weights_hist.set_bins(n_eta, eta.xmin, eta.xmax, 5, 0.5, 5.5)
        self.low_cuts_hist.set_bins(n_eta, eta.xmin, eta.xmax, 5, 0.5, 5.5)

        for j, ring in enumerate(RINGS):
            w = np.array([self.find_max_weight(ring, i) for i in range(n_eta)], dtype=int)
            if self.cuts is not None:
                c = np.array([self.cuts.get_mult_cut_bin(ring, i) for i in range(n_eta)], dtype=float)
            else:
                c = np.zeros(n_eta)
            w.setflags(write=False)
            self.max_weights[ring] = w
            self.low_cuts[ring] = c

            good = w > 0
            self.max_weights_hist.values[good, j] = w[good]
            good = c > 0
            self.low_cuts_hist.values[good, j] = c[good]

    def max_weight(self, ring: Ring, ibin: int) -> int:
        """Cached max weight in 0-based eta bin; <= 0 on problems."""
        table = self.max_weights.get(ring)
        if table is None:
            logger.warning(f"No max weight array for {ring}")
            return -1
        if ibin < 0 or ibin >= table.size:
            logger.warning(f"Eta bin {ibin:3d} out of bounds [0,{table.size - 1}]")
            return -1
        return int(table[ibin])

    def max_weight_at(self, ring: Ring, eta: float) -> int:
        if self.axis is None:
            logger.warning("Max weights requested before the cache was built")
            return -1
        return self.max_weight(ring, self.axis.find_bin(eta))

    def summary(self, per_line: int = 6) -> str:
        lines = [" Max weights:"]
        for ring in RINGS:
            table = self.max_weights.get(ring, np.array([], dtype=int))
            lines.append(f"  {ring}:")
            cells = [f"  {i:3d}: {v}" for i, v in enumerate(table) if v >= 1]
            for k in range(0, len(cells), per_line):
                lines.append("   " + "".join(cells[k:k + per_line]))
        return "\n".join(lines)
