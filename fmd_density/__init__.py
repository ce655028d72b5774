# fmd_density: geometry, calibration, density calculation, simulation, plots
from .geometry import FMD_Geometry, Ring, RINGS
from .histos import Axis, Hist1D, Hist2D, Profile1D
from .calibration import ELossFit, ELossFitTable, DoubleHitCorrection, DoubleHitTable
from .cuts import MultCuts
from .config import DensityConfig, Method, PhiAcceptance, load_config
from .event import FMDEvent, INVALID_ETA, INVALID_MULT
from .weights import WeightCache
from .poisson import PoissonCalculator
from .density import DensityCalculator, DensityHistos, RingHistos
from .simulation import FMDEventGenerator, make_synthetic_calibration, make_synthetic_double_hit
from .plots import Plots
from .utils import setup_logger

__all__ = [
    "FMD_Geometry", "Ring", "RINGS",
    "Axis", "Hist1D", "Hist2D", "Profile1D",
    "ELossFit", "ELossFitTable", "DoubleHitCorrection", "DoubleHitTable",
    "MultCuts",
    "DensityConfig", "Method", "PhiAcceptance", "load_config",
    "FMDEvent", "INVALID_ETA", "INVALID_MULT",
    "WeightCache", "PoissonCalculator",
    "DensityCalculator", "DensityHistos", "RingHistos",
    "FMDEventGenerator", "make_synthetic_calibration", "make_synthetic_double_hit",
    "Plots", "setup_logger",
]
