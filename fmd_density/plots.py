# plots.py
from __future__ import annotations # incase of forward refs in type hints

from pathlib import Path as FsPath  # filesystem paths
from typing import Optional

import matplotlib.pyplot as plt # plotting
import numpy as np # numerical operations

from .geometry import RINGS, FMD_Geometry

RING_COLORS = {"FMD1i": "#d62728", "FMD2i": "#2ca02c", "FMD2o": "#17becf",
               "FMD3i": "#1f77b4", "FMD3o": "#9467bd"}


class Plots:
    """
    Plotting for the FMD density calculation:
        - phi acceptance per strip
        - per-ring eta x phi density maps
        - dN/deta per ring
        - cached max weights and low cuts
        - energy loss (all vs used strips)
        - energy loss vs Poisson correlation
    """

    def __init__(self, geometry: FMD_Geometry, output_dir: str | FsPath | None = None):
        self.geom = geometry
        self.output_dir = FsPath(output_dir) if output_dir else None
        if self.output_dir:
            self.output_dir.mkdir(parents=True, exist_ok=True) # ensure directory exists

    # ------------------------------------------
    # ------ Saver -----------------------------
    # ------------------------------------------

    def _save(self, fig, filename: str | None):
        if self.output_dir and filename:
            fig.savefig(self.output_dir / filename, dpi=200, bbox_inches="tight")
        plt.close(fig)

    # ------------------------------------------
    # ---------- Acceptance --------------------
    # ------------------------------------------

    def plot_acceptance(self, filename: Optional[str] = "acceptance.png"):
        fig, ax = plt.subplots(figsize=(7, 4), dpi=150)
        for r, acc, color in (("I", self.geom.acc_inner, "#d62728"),
                              ("O", self.geom.acc_outer, "#1f77b4")):
            ax.step(np.arange(acc.size), acc, where="mid", color=color,
                    label=f"FMDx{r.lower()}")
        ax.set_xlabel("Strip")
        ax.set_ylabel(r"$\varphi$ acceptance")
        ax.set_ylim(0, 1.05)
        ax.grid(alpha=0.3, linestyle=":")
        ax.legend(loc="lower left")
        fig.tight_layout()
        self._save(fig, filename)

    # ------------------------------------------
    # ---------- Density maps ------------------
    # ------------------------------------------

    def plot_density_maps(self, ring_histos: dict, filename: Optional[str] = "density_maps.png"):
        fig, axs = plt.subplots(1, len(RINGS), figsize=(4 * len(RINGS), 4), sharey=True)
        for ax, ring in zip(axs, RINGS):
            h = ring_histos[ring].density
            pcm = ax.pcolormesh(h.xaxis.edges, h.yaxis.edges, h.values.T,
                                cmap="viridis", shading="flat")
            filled = np.flatnonzero(h.projection_x())
            if filled.size:
                ax.set_xlim(h.xaxis.edges[filled[0]], h.xaxis.edges[filled[-1] + 1])
            ax.set_title(ring.name)
            ax.set_xlabel(r"$\eta$")
            fig.colorbar(pcm, ax=ax)
        axs[0].set_ylabel(r"$\varphi$ (rad)")
        fig.tight_layout()
        self._save(fig, filename)

    def plot_dndeta(self, sums: dict, eta_axis, filename: Optional[str] = "dndeta.png"):
        fig, ax = plt.subplots(figsize=(8, 4), dpi=150)
        for name, values in sums.items():
            nz = values != 0
            ax.plot(eta_axis.centers[nz], values[nz], "o", ms=3,
                    color=RING_COLORS.get(name), label=name)
        ax.set_xlabel(r"$\eta$")
        ax.set_ylabel(r"$dN_{ch}/d\eta$")
        ax.grid(alpha=0.3, linestyle=":")
        ax.legend()
        fig.tight_layout()
        self._save(fig, filename)

    # ------------------------------------------
    # ---------- Weight cache ------------------
    # ------------------------------------------

    def plot_max_weights(self, weights, filename: Optional[str] = "max_weights.png"):
        fig, axs = plt.subplots(1, 2, figsize=(12, 3.5), dpi=150)
        for ax, h, label in ((axs[0], weights.max_weights_hist, "max weight"),
                             (axs[1], weights.low_cuts_hist, "low cut")):
            pcm = ax.pcolormesh(h.xaxis.edges, h.yaxis.edges, h.values.T, cmap="magma_r")
            ax.set_yticks(np.arange(1, 6))
            ax.set_yticklabels([r.name for r in RINGS])
            ax.set_xlabel(r"$\eta$")
            ax.set_title(h.title)
            fig.colorbar(pcm, ax=ax, label=label)
        fig.tight_layout()
        self._save(fig, filename)

    # ------------------------------------------
    # ---------- Energy loss -------------------
    # ------------------------------------------

    def plot_eloss(self, ring_histos: dict, filename: Optional[str] = "eloss.png"):
        fig, axs = plt.subplots(1, len(RINGS), figsize=(4 * len(RINGS), 3.5), sharey=True)
        for ax, ring in zip(axs, RINGS):
            rh = ring_histos[ring]
            edges = rh.eloss.axis.edges
            ax.stairs(rh.eloss.values, edges, color="k", ls="--", label="all")
            ax.stairs(rh.eloss_used.values, edges, color=RING_COLORS[ring.name],
                      fill=True, alpha=0.5, label="used")
            ax.set_yscale("log")
            ax.set_xlim(0, 5)
            ax.set_title(ring.name)
            ax.set_xlabel(r"$\Delta/\Delta_{mip}$")
        axs[0].legend()
        fig.tight_layout()
        self._save(fig, filename)

    def plot_eloss_vs_poisson(self, ring_histos: dict, filename: Optional[str] = "eloss_vs_poisson.png"):
        fig, axs = plt.subplots(1, len(RINGS), figsize=(4 * len(RINGS), 4))
        for ax, ring in zip(axs, RINGS):
            h = ring_histos[ring].eloss_vs_poisson
            vals = np.ma.masked_equal(h.values.T, 0)
            ax.pcolormesh(h.xaxis.edges, h.yaxis.edges, vals, cmap="copper_r")
            hi = self._upper_edge(h)
            ax.plot([0, hi], [0, hi], color="deeppink", lw=0.8)
            ax.set_xlim(0, hi)
            ax.set_ylim(0, hi)
            ax.set_title(ring.name)
            ax.set_xlabel(r"$N_{ch}$ from $\Delta E$")
        axs[0].set_ylabel(r"$N_{ch}$ from Poisson")
        fig.tight_layout()
        self._save(fig, filename)

    @staticmethod
    def _upper_edge(h) -> float:
        ix, iy = np.nonzero(h.values)
        if ix.size == 0:
            return 1.0
        return float(max(h.xaxis.edges[ix.max() + 1], h.yaxis.edges[iy.max() + 1]))
