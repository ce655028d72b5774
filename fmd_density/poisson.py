# poisson.py
from __future__ import annotations

import numpy as np

from .histos import Hist1D, Hist2D


class PoissonCalculator:
    """
    Multiplicity from occupancy.

    Strips are lumped into cells of eta_lumping strips x phi_lumping
    sectors. With `empty` of `total` strips in a cell without a hit, and
    Poisson-distributed hits, the mean number of particles per strip is

        mu = -ln(empty / total)

    and a hit strip carries on average  mu / (1 - exp(-mu))  particles.
    result() returns that correction times the (weighted) hit of every
    strip, at full (sector, strip) resolution.
    """

    def __init__(self, eta_lumping: int = 32, phi_lumping: int = 4):
        self.eta_lumping = int(eta_lumping)
        self.phi_lumping = int(phi_lumping)
        self.n_strips = 0
        self.n_sectors = 0

        self.occupancy = Hist1D("occupancy", "Occupancy", 102, -1, 101)
        self.mean = Hist1D("mean", "Mean N_{ch} in lumped cell", 101, -0.05, 10.05)
        self.mean_vs_occupancy = Hist2D("meanVsOcc", "Mean N_{ch} vs occupancy",
                                        102, -1, 101, 101, -0.05, 10.05)

    def set_lumping(self, eta_lumping: int, phi_lumping: int):
        self.eta_lumping = int(eta_lumping)
        self.phi_lumping = int(phi_lumping)
        if self.n_strips:
            self.init(self.n_strips, self.n_sectors)

    def init(self, n_strips: int, n_sectors: int):
        if self.eta_lumping < 1 or self.phi_lumping < 1:
            raise ValueError("Lumping factors must be >= 1")
        self.n_strips = int(n_strips)
        self.n_sectors = int(n_sectors)
        self.n_eta = max(1, self.n_strips // self.eta_lumping)
        self.n_phi = max(1, self.n_sectors // self.phi_lumping)
        self.hits = np.zeros((self.n_sectors, self.n_strips))
        self.total = np.zeros((self.n_phi, self.n_eta))
        self.empty = np.zeros((self.n_phi, self.n_eta))

    def reset(self):
        self.hits[:] = 0
        self.total[:] = 0
        self.empty[:] = 0

    def _cell(self, sector, strip):
        ce = np.minimum(np.asarray(strip, int) // self.eta_lumping, self.n_eta - 1)
        cp = np.minimum(np.asarray(sector, int) // self.phi_lumping, self.n_phi - 1)
        return cp, ce

    def fill(self, strip, sector, hit, weight=1.0):
        """Record strips (scalars or arrays); weight counts only for hits."""
        strip = np.atleast_1d(np.asarray(strip, int))
        sector = np.broadcast_to(np.asarray(sector, int), strip.shape)
        hit = np.broadcast_to(np.asarray(hit, bool), strip.shape)
        weight = np.broadcast_to(np.asarray(weight, float), strip.shape)

        np.add.at(self.hits, (sector[hit], strip[hit]), weight[hit])
        cp, ce = self._cell(sector, strip)
        np.add.at(self.total, (cp, ce), 1)
        np.add.at(self.empty, (cp[~hit], ce[~hit]), 1)

    @staticmethod
    def calculate_mean(empty, total):
        empty = np.maximum(np.asarray(empty, float), 0.001)
        total = np.asarray(total, float)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(total > 0, -np.log(empty / total), 0.0)

    @classmethod
    def calculate_correction(cls, empty, total):
        empty = np.asarray(empty, float)
        total = np.asarray(total, float)
        empty = np.where(np.abs(empty - total) < 0.001, total - 0.001, empty)
        mean = cls.calculate_mean(empty, total)
        with np.errstate(divide="ignore", invalid="ignore"):
            corr = mean / (1 - np.exp(-mean))
        return np.where(total > 0, corr, 0.0)

    def result(self) -> np.ndarray:
        """Particles per strip, shape (n_sectors, n_strips)."""
        corr = self.calculate_correction(self.empty, self.total)

        filled = self.total > 0
        with np.errstate(divide="ignore", invalid="ignore"):
            occ = np.where(filled, 100 * (1 - self.empty / self.total), 0.0)
        mean = self.calculate_mean(self.empty, self.total)
        self.occupancy.fill(occ[filled])
        self.mean.fill(mean[filled])
        self.mean_vs_occupancy.fill(occ[filled], mean[filled])

        cp, ce = self._cell(*np.meshgrid(np.arange(self.n_sectors), np.arange(self.n_strips),
                                         indexing="ij"))
        return self.hits * corr[cp, ce]
