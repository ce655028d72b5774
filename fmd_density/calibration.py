# calibration.py
from __future__ import annotations

import logging

import numpy as np
from scipy import stats

from .geometry import Ring
from .histos import Axis
from .utils import load_yaml

logger = logging.getLogger(__name__)

# Landau most-probable-value shift of the standard density
MPSHIFT = -0.22278298
CONVOLUTION_STEPS = 100
CONVOLUTION_NSIGMA = 5

# Defaults for deciding how many a_i's are trustworthy
MAX_REL_ERROR = 0.2
LEAST_WEIGHT = 1e-7
MAX_N = 20


# -----------------------------------------------------------
# --------------- Energy-loss response ----------------------
# -----------------------------------------------------------
def landau(x, delta, xi):
    """Landau density with most probable value delta and width xi."""
    return stats.landau.pdf(x, loc=delta - xi * MPSHIFT, scale=xi)


def landau_gaus(x, delta, xi, sigma, sigma_n=0.0):
    """
    Landau (MPV delta, width xi) folded with a Gaussian of width
    sqrt(sigma^2 + sigma_n^2). The fold is a midpoint sum over
    +/- CONVOLUTION_NSIGMA widths.
    """
    x = np.asarray(x, dtype=float)
    sigma1 = float(np.sqrt(sigma * sigma + sigma_n * sigma_n))
    if sigma1 <= 0:
        return landau(x, delta, xi)

    step = 2 * CONVOLUTION_NSIGMA * sigma1 / CONVOLUTION_STEPS
    i = np.arange(CONVOLUTION_STEPS // 2 + 1)
    xe = x[..., None]
    x1 = xe - CONVOLUTION_NSIGMA * sigma1 + (i - 0.5) * step
    x2 = xe + CONVOLUTION_NSIGMA * sigma1 - (i - 0.5) * step
    g1 = np.exp(-0.5 * ((xe - x1) / sigma1) ** 2)
    g2 = np.exp(-0.5 * ((xe - x2) / sigma1) ** 2)
    total = (landau(x1, delta, xi) * g1 + landau(x2, delta, xi) * g2).sum(axis=-1)
    return step * total / (np.sqrt(2 * np.pi) * sigma1)


def i_landau_gaus(x, delta, xi, sigma, sigma_n, i: int):
    """Response of i particles traversing the strip together."""
    if i <= 1:
        return landau_gaus(x, delta, xi, sigma, sigma_n)
    delta_i = i * (delta + xi * np.log(i))
    xi_i = i * xi
    sigma_i = np.sqrt(i) * sigma
    return landau_gaus(x, delta_i, xi_i, sigma_i, sigma_n)


class ELossFit:
    """
    Fitted energy-loss response of one ring in one eta bin:

        f(x) = C * sum_{i=1}^{N} a_i F_i(x; delta, xi, sigma, sigma_n)

    with a_1 = 1. `weights` holds a_2..a_N and `weight_errors` their errors.
    """

    def __init__(self, delta, xi, sigma, sigma_n=0.0,
                 weights=(), weight_errors=None,
                 constant=1.0, chi2=0.0, nu=0):
        self.delta = float(delta)
        self.xi = float(xi)
        self.sigma = float(sigma)
        self.sigma_n = float(sigma_n)
        self.a = np.asarray(weights, dtype=float)
        self.ea = (np.zeros_like(self.a) if weight_errors is None
                   else np.asarray(weight_errors, dtype=float))
        if self.ea.shape != self.a.shape:
            raise ValueError("weights and weight_errors must have the same length")
        self.constant = float(constant)
        self.chi2 = float(chi2)
        self.nu = int(nu)

    def __repr__(self):
        return (f"ELossFit(delta={self.delta:.4f}, xi={self.xi:.4f}, "
                f"sigma={self.sigma:.4f}, N={self.n})")

    @property
    def n(self) -> int:
        """Number of particle terms in the fit."""
        return 1 + self.a.size

    def weight(self, i: int) -> float:
        return 1.0 if i == 1 else float(self.a[i - 2])

    def _terms(self, max_n):
        n = self.n if max_n is None or max_n < 0 else min(int(max_n), self.n)
        for i in range(1, n + 1):
            a = self.weight(i)
            if a < 0:
                break
            yield i, a

    def sum_of_weights(self, x, max_n=None):
        """sum_i a_i F_i(x) over the first max_n terms, without the constant."""
        x = np.asarray(x, dtype=float)
        out = np.zeros_like(x)
        for i, a in self._terms(max_n):
            out = out + a * i_landau_gaus(x, self.delta, self.xi, self.sigma, self.sigma_n, i)
        return out

    def evaluate(self, x, max_n=None):
        """C * sum_i a_i F_i(x) over the first max_n terms."""
        return self.constant * self.sum_of_weights(x, max_n)

    def evaluate_weighted(self, x, max_n=None):
        """
        Expected number of particles for signal x:

            sum_i i a_i F_i(x) / sum_i a_i F_i(x)

        Returns 1 where the denominator vanishes.
        """
        x = np.asarray(x, dtype=float)
        num = np.zeros_like(x)
        den = np.zeros_like(x)
        for i, a in self._terms(max_n):
            f = i_landau_gaus(x, self.delta, self.xi, self.sigma, self.sigma_n, i)
            num = num + i * a * f
            den = den + a * f
        with np.errstate(divide="ignore", invalid="ignore"):
            ret = np.where(den > 0, num / den, 1.0)
        return float(ret) if ret.ndim == 0 else ret

    def find_max_weight(self, max_rel_error=MAX_REL_ERROR,
                        least_weight=LEAST_WEIGHT, max_n=MAX_N) -> int:
        """Largest i such that a_2..a_i are all significant and well measured."""
        n = min(int(max_n), self.a.size)
        max_weight = 1
        for i in range(n):
            if self.a[i] < least_weight:
                break
            if self.ea[i] / self.a[i] > max_rel_error:
                break
            max_weight += 1
        return max_weight

    def lower_bound_fraction(self, f: float) -> float:
        return f * self.delta

    def lower_bound_nxi(self, nxi: float, include_sigma: bool = False) -> float:
        return self.delta - nxi * (self.xi + (self.sigma if include_sigma else 0.0))

    # ----- (de)serialisation -------------------------------
    def to_dict(self) -> dict:
        return {"delta": self.delta, "xi": self.xi, "sigma": self.sigma,
                "sigma_n": self.sigma_n, "weights": self.a.tolist(),
                "weight_errors": self.ea.tolist(), "constant": self.constant,
                "chi2": self.chi2, "nu": self.nu}

    @classmethod
    def from_dict(cls, d: dict) -> "ELossFit":
        return cls(d["delta"], d["xi"], d["sigma"],
                   sigma_n=d.get("sigma_n", 0.0),
                   weights=d.get("weights", ()),
                   weight_errors=d.get("weight_errors"),
                   constant=d.get("constant", 1.0),
                   chi2=d.get("chi2", 0.0), nu=d.get("nu", 0))


class ELossFitTable:
    """
    Energy-loss fits for all rings, indexed by 0-based eta bin of eta_axis.

    low_cut is the lower edge of the fit range, used as the last-resort
    multiplicity cut.
    """

    def __init__(self, eta_axis: Axis, fits: dict | None = None, low_cut: float = 0.3):
        self.eta_axis = eta_axis
        self.low_cut = float(low_cut)
        self._fits = {}
        for (ring, ibin), fit in (fits or {}).items():
            self.set_fit(ring, ibin, fit)

    def __len__(self):
        return len(self._fits)

    def set_fit(self, ring: Ring, ibin: int, fit: ELossFit):
        if not self.eta_axis.in_range(ibin):
            raise ValueError(f"Eta bin {ibin} outside [0,{self.eta_axis.nbins - 1}]")
        self._fits[(ring, int(ibin))] = fit

    def get_fit(self, ring: Ring, ibin: int) -> ELossFit | None:
        return self._fits.get((ring, int(ibin)))

    def find_eta_bin(self, eta: float) -> int:
        return self.eta_axis.find_bin(eta)

    def find_fit(self, ring: Ring, eta: float) -> ELossFit | None:
        return self.get_fit(ring, self.find_eta_bin(eta))

    def get_lower_bound_fraction(self, ring: Ring, ibin: int, f: float) -> float:
        fit = self.get_fit(ring, ibin)
        if fit is None:
            return -1024.0
        return fit.lower_bound_fraction(f)

    def get_lower_bound_nxi(self, ring: Ring, ibin: int, nxi: float,
                            include_sigma: bool = False) -> float:
        fit = self.get_fit(ring, ibin)
        if fit is None:
            return -1024.0
        return fit.lower_bound_nxi(nxi, include_sigma)

    # ----- (de)serialisation -------------------------------
    @classmethod
    def from_dict(cls, d: dict) -> "ELossFitTable":
        """
        {eta_axis: {nbins, min, max}, low_cut, fits: [{ring, eta_bin | eta_bins | eta, ...}]}
        """
        ax = d.get("eta_axis", {})
        axis = Axis(ax.get("nbins", 200), ax.get("min", -4.0), ax.get("max", 6.0), "#eta")
        table = cls(axis, low_cut=d.get("low_cut", 0.3))
        for entry in d.get("fits", []):
            ring = Ring.from_name(entry["ring"])
            fit = ELossFit.from_dict(entry)
            if "eta_bins" in entry:
                bins = range(int(entry["eta_bins"][0]), int(entry["eta_bins"][1]) + 1)
            elif "eta_bin" in entry:
                bins = [int(entry["eta_bin"])]
            elif "eta" in entry:
                bins = [axis.find_bin(entry["eta"])]
            else:
                raise ValueError(f"Fit entry for {ring} has no eta_bin, eta_bins or eta")
            for ibin in bins:
                table.set_fit(ring, ibin, fit)
        logger.info(f"Loaded {len(table)} energy loss fits on {axis}")
        return table

    @classmethod
    def load(cls, path) -> "ELossFitTable":
        return cls.from_dict(load_yaml(path))


class DoubleHitTable:
    """Double-hit correction of one ring as a function of eta."""

    def __init__(self, axis: Axis, values):
        values = np.asarray(values, dtype=float)
        if values.shape != (axis.nbins,):
            raise ValueError(f"Expected {axis.nbins} values, got {values.shape}")
        self.axis = axis
        self.values = values

    def value_at(self, eta):
        """Correction in the bin of eta; 0 outside the axis."""
        idx = np.atleast_1d(self.axis.find_bin(eta))
        ok = self.axis.in_range(idx)
        out = np.zeros(idx.shape)
        out[ok] = self.values[idx[ok]]
        return out if np.ndim(eta) else float(out[0])


class DoubleHitCorrection:
    """Per-ring double-hit corrections. Rings may be missing."""

    def __init__(self, tables: dict | None = None):
        self._tables = dict(tables or {})

    def get_correction(self, ring: Ring) -> DoubleHitTable | None:
        return self._tables.get(ring)

    @classmethod
    def from_dict(cls, d: dict) -> "DoubleHitCorrection":
        """{FMD1i: {nbins, min, max, values: [...]}, ...}"""
        tables = {}
        for name, entry in d.items():
            axis = Axis(entry["nbins"], entry["min"], entry["max"], "#eta")
            tables[Ring.from_name(name)] = DoubleHitTable(axis, entry["values"])
        return cls(tables)

    @classmethod
    def load(cls, path) -> "DoubleHitCorrection":
        return cls.from_dict(load_yaml(path))
