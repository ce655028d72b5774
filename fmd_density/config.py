# config.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum

from .utils import load_yaml


class Method(Enum):
    """Which estimate goes into the output density."""
    ENERGY_LOSS = "energy loss"
    POISSON = "poisson"


class PhiAcceptance(Enum):
    """
    How the sensor-corner acceptance is applied:
        NONE  : not at all
        NCH   : divide the particle estimate (part of the correction factor)
        ELOSS : scale the signal before the cut
    """
    NONE = "disabled"
    NCH = "particles"
    ELOSS = "energy loss"


def _enum(cls, value):
    if isinstance(value, cls):
        return value
    key = str(value).strip()
    for member in cls:
        if key.upper() == member.name or key.lower() == member.value:
            return member
    raise ValueError(f"Unknown {cls.__name__} {value!r}; "
                     f"choose from {[m.name.lower() for m in cls]}")


@dataclass
class DensityConfig:
    """
    Settings of one density calculation, fixed for a pass over the events.

    Attributes:
        max_particles (int): Ceiling on the number of a_i terms used.
        method (Method): Estimate written to the output density.
        phi_acceptance (PhiAcceptance): Where the corner acceptance is applied.
        eta_lumping, phi_lumping (int): Strips and sectors per Poisson cell.
        recalculate_eta (bool): Recompute strip eta from the event vertex.
        low_flux (bool): Default low-flux flag when calculate() gets none.
        max_signal (float): Signals above are treated as no hit.
        hit_threshold (float): Uncorrected estimate above counts as a hit.
        cuts (dict): Keyword arguments for MultCuts.from_dict.
    """
    max_particles: int = 5
    method: Method = Method.ENERGY_LOSS
    phi_acceptance: PhiAcceptance = PhiAcceptance.NCH
    eta_lumping: int = 32
    phi_lumping: int = 4
    recalculate_eta: bool = False
    low_flux: bool = False
    max_signal: float = 20.0        # signals above are not physical
    hit_threshold: float = 0.9      # estimate above counts as a hit for Poisson
    cuts: dict = field(default_factory=dict)

    def __post_init__(self):
        self.method = _enum(Method, self.method)
        self.phi_acceptance = _enum(PhiAcceptance, self.phi_acceptance)
        self.max_particles = int(self.max_particles)
        if self.max_particles < 1:
            raise ValueError(f"max_particles must be >= 1, got {self.max_particles}")
        self.eta_lumping = int(self.eta_lumping)
        self.phi_lumping = int(self.phi_lumping)
        if self.eta_lumping < 1 or self.phi_lumping < 1:
            raise ValueError("eta_lumping and phi_lumping must be >= 1")
        self.max_signal = float(self.max_signal)
        self.hit_threshold = float(self.hit_threshold)
        self.cuts = dict(self.cuts or {})

    @property
    def use_poisson(self) -> bool:
        return self.method is Method.POISSON

    @classmethod
    def from_dict(cls, d: dict | None) -> "DensityConfig":
        d = dict(d or {})
        known = set(cls.__dataclass_fields__)
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**d)

    def to_dict(self) -> dict:
        out = asdict(self)
        out["method"] = self.method.name.lower()
        out["phi_acceptance"] = self.phi_acceptance.name.lower()
        return out


def load_config(path) -> DensityConfig:
    """Read the `density` section (or the whole file) of a YAML config."""
    data = load_yaml(path)
    return DensityConfig.from_dict(data.get("density", data))
