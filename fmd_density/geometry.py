# geometry.py
from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, order=True)
class Ring:
    """
    One of the five FMD rings, e.g. Ring(2, "O") is FMD2o.
    Usable as a dict key everywhere (frozen).
    """
    detector: int
    ring: str

    def __post_init__(self):
        r = str(self.ring).upper()
        if r not in ("I", "O"):
            raise ValueError(f"ring must be 'I' or 'O', got {self.ring!r}")
        if self.detector not in (1, 2, 3):
            raise ValueError(f"detector must be 1, 2 or 3, got {self.detector!r}")
        if self.detector == 1 and r == "O":
            raise ValueError("FMD1 has no outer ring")
        object.__setattr__(self, "ring", r)

    @classmethod
    def from_name(cls, name: str) -> "Ring":
        """Parse 'FMD2o', 'fmd3I' or '2o'."""
        s = str(name).strip().upper()
        if s.startswith("FMD"):
            s = s[3:]
        if len(s) != 2 or not s[0].isdigit():
            raise ValueError(f"Cannot parse ring name {name!r}")
        return cls(int(s[0]), s[1])

    @property
    def inner(self) -> bool:
        return self.ring == "I"

    @property
    def n_sectors(self) -> int:
        return 20 if self.inner else 40

    @property
    def n_strips(self) -> int:
        return 512 if self.inner else 256

    @property
    def index(self) -> int:
        """Position 0..4 in RINGS."""
        return RINGS.index(self)

    @property
    def name(self) -> str:
        return f"FMD{self.detector}{self.ring.lower()}"

    def __str__(self):
        return self.name


RINGS = (Ring(1, "I"), Ring(2, "I"), Ring(2, "O"), Ring(3, "I"), Ring(3, "O"))


def _ring_type(ring_type) -> str:
    """Accept 'I'/'O' (any case) or a Ring; return 'I' or 'O'."""
    if isinstance(ring_type, Ring):
        return ring_type.ring
    r = str(ring_type).upper()
    if r not in ("I", "O"):
        raise ValueError(f"ring type must be 'I' or 'O', got {ring_type!r}")
    return r


class FMD_Geometry:
    """
    Geometry of the FMD ring sensors.
    All lengths in cm, angles in radians unless stated otherwise.

    Attributes:
        min_r, max_r (dict): Inner/outer active radius per ring type.
        corner1, corner2 (dict): Sensor corner (x, y) pairs per ring type.
            The chord corner1 -> corner2 bounds the active area of a sector.
        ring_z (dict): Nominal z of each ring.
        acc_inner, acc_outer (np.ndarray): phi acceptance per strip.
    """
    def __init__(self,
                 inner_r=(4.5213, 17.2),
                 outer_r=(15.4, 28.0),
                 inner_corners=((4.9895, 15.3560), (1.8007, 17.2000)),
                 outer_corners=((4.2231, 26.6638), (1.8357, 27.9500)),
                 ring_z=None,
                 hybrid_shift=0.5,
                 ):

        # -----------------------------------------------------------
        # --------------- Sensor geometry ---------------------------
        # -----------------------------------------------------------
        self.min_r = {"I": float(inner_r[0]), "O": float(outer_r[0])}
        self.max_r = {"I": float(inner_r[1]), "O": float(outer_r[1])}
        self.corner1 = {"I": np.asarray(inner_corners[0], float),
                        "O": np.asarray(outer_corners[0], float)}
        self.corner2 = {"I": np.asarray(inner_corners[1], float),
                        "O": np.asarray(outer_corners[1], float)}

        # z positions of the rings
        if ring_z is None:
            ring_z = {Ring(1, "I"): 320.0,
                      Ring(2, "I"): 83.4, Ring(2, "O"): 75.2,
                      Ring(3, "I"): -62.8, Ring(3, "O"): -75.2}
        self.ring_z = dict(ring_z)
        self.hybrid_shift = float(hybrid_shift)

        # -----------------------------------------------------------
        # --------------- Acceptance tables (built once) ------------
        # -----------------------------------------------------------
        self.acc_inner = self.build_acceptance_table("I")
        self.acc_outer = self.build_acceptance_table("O")
        self.acc_inner.setflags(write=False)
        self.acc_outer.setflags(write=False)

    # ----------------------------------------------------------
    # ----- Strip positions ------------------------------------
    # ----------------------------------------------------------
    def n_strips(self, ring_type) -> int:
        return 512 if _ring_type(ring_type) == "I" else 256

    def n_sectors(self, ring_type) -> int:
        return 20 if _ring_type(ring_type) == "I" else 40

    def strip_radius(self, ring_type, strip):
        """Radius of the lower edge of strip (scalar or array)."""
        r = _ring_type(ring_type)
        segment = (self.max_r[r] - self.min_r[r]) / self.n_strips(r)
        return self.min_r[r] + np.asarray(strip, float) * segment

    def eta_from_strip(self, ring: Ring, sector, strip, zvtx: float = 0.0):
        """
        Pseudorapidity of (sector, strip) seen from a vertex at zvtx.
        Even hybrids (pairs of sectors) sit hybrid_shift closer to the IP side.
        """
        if ring not in self.ring_z:
            raise ValueError(f"No z position for {ring}")
        rad = self.strip_radius(ring.ring, strip)
        hybrid = np.asarray(sector, int) // 2
        z = self.ring_z[ring] - np.where(hybrid % 2 == 0, self.hybrid_shift, 0.0)
        theta = np.arctan2(rad, z - zvtx)
        eta = -np.log(np.tan(0.5 * theta))
        return float(eta) if np.ndim(eta) == 0 else eta

    def phi_from_strip(self, ring: Ring, sector):
        """Azimuth of the sector centre in degrees."""
        phi = (np.asarray(sector, float) + 0.5) * 360.0 / ring.n_sectors
        return float(phi) if np.ndim(phi) == 0 else phi

    # ----------------------------------------------------------
    # ----- Phi acceptance of the sensor corners ---------------
    # ----------------------------------------------------------
    def build_acceptance_table(self, ring_type) -> np.ndarray:
        """
        Fraction of each strip's arc that lies on the active sensor.

        Strips inside the circle through the first corner span the full
        sector. Beyond it the strip ends where the chord corner1 -> corner2
        crosses the strip circle (circle-line intersection), and the
        acceptance is the opening angle of that end point over the sector
        opening angle.
        """
        r = _ring_type(ring_type)
        c1, c2 = self.corner1[r], self.corner2[r]
        n_strips = self.n_strips(r)
        basearc = 2 * np.pi / self.n_sectors(r)
        cr = np.hypot(c1[0], c1[1])

        # Line through c1, c2 (see mathworld Circle-LineIntersection)
        D = c1[0] * c2[1] - c1[1] * c2[0]
        dx = c2[0] - c1[0]
        dy = c2[1] - c1[1]
        dr = np.hypot(dx, dy)

        radius = self.strip_radius(r, np.arange(n_strips))
        det = radius * radius * dr * dr - D * D

        acc = np.ones(n_strips)
        cut = (radius > cr) & (det > 0)   # det <= 0: no crossing or tangent
        sq = np.sqrt(det[cut])
        x = (+D * dy + dx * sq) / dr / dr
        y = (-D * dx + dy * sq) / dr / dr
        th = np.arctan2(x, y)

        # corner constants put the first crossing a hair past the sector edge
        acc[cut] = np.clip(th / basearc, 0.0, 1.0)
        return acc

    def acceptance_at(self, ring_type, strip):
        """Inverse acceptance correction for strip (scalar or array)."""
        table = self.acc_inner if _ring_type(ring_type) == "I" else self.acc_outer
        out = table[np.asarray(strip, int)]
        return float(out) if np.ndim(out) == 0 else out
