# histos.py
from __future__ import annotations

import numpy as np


class Axis:
    """
    Fixed-width binning on [xmin, xmax).

    Bins are 0-based. find_bin returns -1 for underflow and nbins for
    overflow so callers can tell "out of range" from a valid bin.
    """

    def __init__(self, nbins: int, xmin: float, xmax: float, title: str = ""):
        if int(nbins) < 1:
            raise ValueError(f"Axis needs at least one bin, got {nbins}")
        if not xmax > xmin:
            raise ValueError(f"Axis max ({xmax}) must be above min ({xmin})")
        self.nbins = int(nbins)
        self.xmin = float(xmin)
        self.xmax = float(xmax)
        self.title = title

    def __repr__(self):
        return f"Axis({self.nbins}, {self.xmin}, {self.xmax})"

    def __eq__(self, other):
        if not isinstance(other, Axis):
            return NotImplemented
        return (self.nbins, self.xmin, self.xmax) == (other.nbins, other.xmin, other.xmax)

    @property
    def width(self) -> float:
        return (self.xmax - self.xmin) / self.nbins

    @property
    def edges(self) -> np.ndarray:
        return np.linspace(self.xmin, self.xmax, self.nbins + 1)

    @property
    def centers(self) -> np.ndarray:
        return self.xmin + (np.arange(self.nbins) + 0.5) * self.width

    def find_bin(self, x):
        """0-based bin of x (scalar or array); -1 below, nbins above."""
        x = np.asarray(x, dtype=float)
        with np.errstate(invalid="ignore"):
            idx = np.floor(np.nan_to_num((x - self.xmin) / self.width, nan=-1.0,
                                         posinf=self.nbins, neginf=-1.0)).astype(int)
        idx = np.where(x < self.xmin, -1, idx)
        idx = np.where(x >= self.xmax, self.nbins, idx)
        idx = np.where(np.isnan(x), self.nbins, idx)
        return int(idx) if idx.ndim == 0 else idx

    def in_range(self, ibin) -> np.ndarray | bool:
        ibin = np.asarray(ibin)
        ok = (ibin >= 0) & (ibin < self.nbins)
        return bool(ok) if ok.ndim == 0 else ok


class Hist1D:
    """Weighted 1D histogram. Out-of-range entries are dropped."""

    def __init__(self, name: str, title: str, nbins: int, xmin: float, xmax: float):
        self.name = name
        self.title = title
        self.axis = Axis(nbins, xmin, xmax)
        self.values = np.zeros(self.axis.nbins)
        self.sumw2 = np.zeros(self.axis.nbins)
        self.entries = 0

    def fill(self, x, w=1.0):
        x = np.atleast_1d(np.asarray(x, dtype=float))
        w = np.broadcast_to(np.asarray(w, dtype=float), x.shape)
        idx = self.axis.find_bin(x)
        ok = self.axis.in_range(idx)
        np.add.at(self.values, idx[ok], w[ok])
        np.add.at(self.sumw2, idx[ok], w[ok] ** 2)
        self.entries += int(x.size)

    def value_at(self, x):
        """Bin content at x; 0 outside the axis."""
        idx = np.atleast_1d(self.axis.find_bin(x))
        ok = self.axis.in_range(idx)
        out = np.zeros(idx.shape)
        out[ok] = self.values[idx[ok]]
        return out if np.ndim(x) else float(out[0])

    def reset(self):
        self.values[:] = 0
        self.sumw2[:] = 0
        self.entries = 0

    def scale(self, factor: float):
        self.values *= factor
        self.sumw2 *= factor * factor

    def integral(self) -> float:
        return float(self.values.sum())


class Hist2D:
    """Weighted 2D histogram, values indexed [ix, iy]."""

    def __init__(self, name: str, title: str,
                 nx: int, xmin: float, xmax: float,
                 ny: int, ymin: float, ymax: float):
        self.name = name
        self.title = title
        self.xaxis = Axis(nx, xmin, xmax)
        self.yaxis = Axis(ny, ymin, ymax)
        self.values = np.zeros((self.xaxis.nbins, self.yaxis.nbins))
        self.sumw2 = np.zeros_like(self.values)
        self.entries = 0

    def fill(self, x, y, w=1.0):
        x = np.atleast_1d(np.asarray(x, dtype=float))
        y = np.broadcast_to(np.asarray(y, dtype=float), x.shape)
        w = np.broadcast_to(np.asarray(w, dtype=float), x.shape)
        ix = self.xaxis.find_bin(x)
        iy = self.yaxis.find_bin(y)
        ok = self.xaxis.in_range(ix) & self.yaxis.in_range(iy)
        np.add.at(self.values, (ix[ok], iy[ok]), w[ok])
        np.add.at(self.sumw2, (ix[ok], iy[ok]), w[ok] ** 2)
        self.entries += int(x.size)

    def set_bin(self, ix: int, iy: int, value: float):
        self.values[ix, iy] = value

    def reset(self):
        self.values[:] = 0
        self.sumw2[:] = 0
        self.entries = 0

    def scale(self, factor: float):
        self.values *= factor
        self.sumw2 *= factor * factor

    def add(self, other: "Hist2D", factor: float = 1.0):
        if self.values.shape != other.values.shape:
            raise ValueError(f"Cannot add {other.name} to {self.name}: different binning")
        self.values += factor * other.values
        self.sumw2 += factor * factor * other.sumw2
        self.entries += other.entries

    def set_bins(self, nx, xmin, xmax, ny, ymin, ymax):
        """Rebin and clear."""
        self.xaxis = Axis(nx, xmin, xmax)
        self.yaxis = Axis(ny, ymin, ymax)
        self.values = np.zeros((self.xaxis.nbins, self.yaxis.nbins))
        self.sumw2 = np.zeros_like(self.values)
        self.entries = 0

    def empty_like(self, name: str | None = None) -> "Hist2D":
        return Hist2D(name or self.name, self.title,
                      self.xaxis.nbins, self.xaxis.xmin, self.xaxis.xmax,
                      self.yaxis.nbins, self.yaxis.xmin, self.yaxis.xmax)

    def projection_x(self) -> np.ndarray:
        return self.values.sum(axis=1)

    def integral(self) -> float:
        return float(self.values.sum())


class Profile1D:
    """Mean of y in bins of x."""

    def __init__(self, name: str, title: str, nbins: int, xmin: float, xmax: float):
        self.name = name
        self.title = title
        self.axis = Axis(nbins, xmin, xmax)
        self.sum_w = np.zeros(self.axis.nbins)
        self.sum_wy = np.zeros(self.axis.nbins)
        self.sum_wy2 = np.zeros(self.axis.nbins)

    def fill(self, x, y, w=1.0):
        x = np.atleast_1d(np.asarray(x, dtype=float))
        y = np.broadcast_to(np.asarray(y, dtype=float), x.shape)
        w = np.broadcast_to(np.asarray(w, dtype=float), x.shape)
        idx = self.axis.find_bin(x)
        ok = self.axis.in_range(idx)
        np.add.at(self.sum_w, idx[ok], w[ok])
        np.add.at(self.sum_wy, idx[ok], w[ok] * y[ok])
        np.add.at(self.sum_wy2, idx[ok], w[ok] * y[ok] ** 2)

    @property
    def mean(self) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(self.sum_w > 0, self.sum_wy / self.sum_w, 0.0)

    def reset(self):
        self.sum_w[:] = 0
        self.sum_wy[:] = 0
        self.sum_wy2[:] = 0
