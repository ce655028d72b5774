# cuts.py
from __future__ import annotations

from .calibration import ELossFitTable
from .geometry import Ring


class MultCuts:
    """
    Lower cut on the strip signal, per ring and eta bin.

    First match wins:
        1. fixed cut for the ring (ring_cuts)
        2. global fixed cut (mult_cut)
        3. mpv_fraction * delta of the fit
        4. delta - n_xi * (xi [+ sigma]) of the fit
        5. lower edge of the fit range (fits.low_cut)
    Without fits, 3-5 are not available and the cut is mult_cut.
    """

    def __init__(self, mult_cut=0.0, ring_cuts=None, mpv_fraction=0.0,
                 n_xi=0.0, include_sigma=False, fits: ELossFitTable | None = None):
        self.mult_cut = float(mult_cut)
        self.ring_cuts = {}
        for ring, cut in (ring_cuts or {}).items():
            ring = ring if isinstance(ring, Ring) else Ring.from_name(ring)
            self.ring_cuts[ring] = float(cut)
        self.mpv_fraction = float(mpv_fraction)
        self.n_xi = float(n_xi)
        self.include_sigma = bool(include_sigma)
        self.fits = fits

    @classmethod
    def from_dict(cls, d: dict | None, fits: ELossFitTable | None = None) -> "MultCuts":
        d = dict(d or {})
        return cls(mult_cut=d.get("mult_cut", 0.0),
                   ring_cuts=d.get("ring_cuts"),
                   mpv_fraction=d.get("mpv_fraction", 0.0),
                   n_xi=d.get("n_xi", 0.0),
                   include_sigma=d.get("include_sigma", False),
                   fits=fits)

    def get_fixed_cut(self, ring: Ring) -> float:
        cut = self.ring_cuts.get(ring, 0.0)
        return cut if cut > 0 else self.mult_cut

    def get_mult_cut_bin(self, ring: Ring, ibin: int) -> float:
        """Cut for 0-based eta bin ibin of the fit table."""
        cut = self.get_fixed_cut(ring)
        if cut > 0 or self.fits is None:
            return cut
        if self.mpv_fraction > 0:
            return self.fits.get_lower_bound_fraction(ring, ibin, self.mpv_fraction)
        if self.n_xi > 0:
            return self.fits.get_lower_bound_nxi(ring, ibin, self.n_xi, self.include_sigma)
        return self.fits.low_cut

    def get_mult_cut(self, ring: Ring, eta: float) -> float:
        ibin = self.fits.find_eta_bin(eta) if self.fits is not None else -1
        return self.get_mult_cut_bin(ring, ibin)

    def method(self) -> str:
        if self.ring_cuts or self.mult_cut > 0:
            return "fixed"
        if self.fits is None:
            return "none"
        if self.mpv_fraction > 0:
            return f"{self.mpv_fraction:g} x MPV"
        if self.n_xi > 0:
            return f"MPV - {self.n_xi:g} x xi" + (" (incl. sigma)" if self.include_sigma else "")
        return "fit range"

    def summary(self) -> str:
        lines = [f"  Method: {self.method()}"]
        if self.mult_cut > 0:
            lines.append(f"  Global cut: {self.mult_cut:g}")
        for ring, cut in sorted(self.ring_cuts.items()):
            lines.append(f"  {ring}: {cut:g}")
        return "\n".join(lines)
