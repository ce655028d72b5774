# event.py
from __future__ import annotations

import numpy as np

from .geometry import RINGS, FMD_Geometry, Ring

# Sentinels used by the reconstruction for "no signal" and "no eta"
INVALID_MULT = 1024.0
INVALID_ETA = 1024.0


class FMDEvent:
    """
    Per-strip signals of one event.

    For every ring three (n_sectors, n_strips) arrays:
        multiplicity : energy loss in units of a MIP (INVALID_MULT if none)
        eta          : pseudorapidity of the strip (INVALID_ETA if unknown)
        phi          : azimuth in degrees
    """

    def __init__(self, multiplicity: dict, eta: dict, phi: dict, zvtx: float = 0.0):
        for ring in RINGS:
            for label, store in (("multiplicity", multiplicity), ("eta", eta), ("phi", phi)):
                if ring not in store:
                    raise ValueError(f"{label} missing for {ring}")
                shape = np.shape(store[ring])
                if shape != (ring.n_sectors, ring.n_strips):
                    raise ValueError(f"{label} for {ring} has shape {shape}, "
                                     f"expected {(ring.n_sectors, ring.n_strips)}")
        self._mult = {r: np.asarray(v, float) for r, v in multiplicity.items()}
        self._eta = {r: np.asarray(v, float) for r, v in eta.items()}
        self._phi = {r: np.asarray(v, float) for r, v in phi.items()}
        self.zvtx = float(zvtx)

    @classmethod
    def empty(cls, geometry: FMD_Geometry, zvtx: float = 0.0) -> "FMDEvent":
        """All strips invalid; eta and phi from the strip geometry."""
        mult, eta, phi = {}, {}, {}
        for ring in RINGS:
            sec, strip = np.meshgrid(np.arange(ring.n_sectors), np.arange(ring.n_strips),
                                     indexing="ij")
            mult[ring] = np.full((ring.n_sectors, ring.n_strips), INVALID_MULT)
            eta[ring] = geometry.eta_from_strip(ring, sec, strip, zvtx)
            phi[ring] = geometry.phi_from_strip(ring, sec)
        return cls(mult, eta, phi, zvtx=zvtx)

    def multiplicity(self, ring: Ring) -> np.ndarray:
        return self._mult[ring]

    def eta(self, ring: Ring) -> np.ndarray:
        return self._eta[ring]

    def phi(self, ring: Ring) -> np.ndarray:
        return self._phi[ring]

    def set_multiplicity(self, ring: Ring, sector: int, strip: int, value: float):
        self._mult[ring][sector, strip] = value
