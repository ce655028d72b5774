# run.py: simulate events, compute the FMD density, save plots + a text summary
from pathlib import Path
from typing import Optional
import argparse
import logging

import numpy as np
import matplotlib.pyplot as plt

from fmd_density import (
    FMD_Geometry,
    DensityCalculator,
    DensityHistos,
    DensityConfig,
    DoubleHitCorrection,
    ELossFitTable,
    FMDEventGenerator,
    Plots,
    RINGS,
    load_config,
    make_synthetic_calibration,
    make_synthetic_double_hit,
    setup_logger,
)

logger = logging.getLogger("fmd_density.run")


def _try(step_name, fn, *args, **kwargs):
    """Run an optional output step; on error, log a short message and continue."""
    try:
        return fn(*args, **kwargs)
    except (OSError, ValueError, RuntimeError) as e:
        logger.warning(f"[skip] {step_name}: {e}")
        return None


def write_text_report(
    outdir: Path,
    calc: DensityCalculator,
    n_events: int,
    n_failed: int = 0,
    sums: Optional[dict] = None,
    truth_dndeta: Optional[float] = None,
    fname: str = "summary.txt",
):
    """Summary of the density calculation."""
    outdir.mkdir(parents=True, exist_ok=True)
    fp = outdir / fname

    with fp.open("w", encoding="utf-8") as f:
        # ---------- small helpers ----------
        def H(title: str):
            line = "=" * (len(title) + 8)
            f.write(f"\n{line}\n=== {title} ===\n{line}\n")

        def fmt_row(cols, widths, sep="  "):
            f.write(sep.join(f"{c:>{w}}" for c, w in zip(cols, widths)) + "\n")

        # ---------- header ----------
        H("FMD Density Summary")
        f.write(f"Events processed : {n_events}\n")
        f.write(f"Events failed    : {n_failed}\n")
        if truth_dndeta is not None:
            f.write(f"Generated dN/deta: {truth_dndeta:g}\n")

        # ---------- configuration ----------
        H("Configuration")
        f.write(calc.summary(show_max=False) + "\n")

        # ---------- per-ring table ----------
        H("Per-ring results")
        widths = (6, 12, 12, 12, 12)
        fmt_row(("Ring", "<Nch>/evt", "used strips", "<corr>", "<dN/deta>"), widths)
        fmt_row(("-" * 6, "-" * 12, "-" * 12, "-" * 12, "-" * 12), widths)
        n_corr = calc.corrections.values.sum()
        for ring in RINGS:
            rh = calc.ring_histos[ring]
            used = int(rh.eloss_used.values.sum())
            corr = rh.corr.mean[rh.corr.sum_w > 0]
            mean_corr = f"{corr.mean():.4f}" if corr.size else "-"
            dndeta = "-"
            if sums and ring.name in sums:
                s = sums[ring.name]
                s = s[s > 0]
                dndeta = f"{s.mean():.3f}" if s.size else "-"
            fmt_row((ring.name, f"{rh.density.integral():.2f}", used, mean_corr, dndeta), widths)
        f.write(f"\nCorrections filled: {int(n_corr)}\n")

        # ---------- cached max weights ----------
        H("Cached max weights")
        f.write(calc.weights.summary() + "\n")

    print(f"Summary written to: {fp.resolve()}")


def build_calculator(args) -> DensityCalculator:
    d = (load_config(args.config) if args.config else DensityConfig()).to_dict()
    if args.low_flux:
        d["low_flux"] = True
    if args.poisson:
        d["method"] = "poisson"
    if args.recalculate_eta:
        d["recalculate_eta"] = True
    if args.max_particles is not None:
        d["max_particles"] = args.max_particles
    cfg = DensityConfig.from_dict(d)

    fits = ELossFitTable.load(args.calibration) if args.calibration else make_synthetic_calibration()
    double_hit = (DoubleHitCorrection.load(args.double_hit) if args.double_hit
                  else make_synthetic_double_hit(fits.eta_axis))
    calc = DensityCalculator(cfg, fits=fits, double_hit=double_hit, geometry=FMD_Geometry())
    calc.init(fits.eta_axis)
    return calc


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--N", type=int, default=20,
                        help="Number of events to simulate (default: 20)")
    parser.add_argument("--dndeta", type=float, default=2.0,
                        help="Generated charged-particle dN/deta (default: 2)")
    parser.add_argument("--zvtx", type=float, default=0.0, help="Vertex z in cm")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--config", type=Path, help="YAML configuration")
    parser.add_argument("--calibration", type=Path, help="YAML energy-loss fits")
    parser.add_argument("--double-hit", type=Path, help="YAML double-hit correction")
    parser.add_argument("--low-flux", action="store_true", help="Treat events as low flux")
    parser.add_argument("--poisson", action="store_true", help="Use the Poisson estimate")
    parser.add_argument("--recalculate-eta", action="store_true")
    parser.add_argument("--max-particles", type=int)
    parser.add_argument("--outdir", type=Path, default=Path("Outputs"))
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    setup_logger("fmd_density", logging.DEBUG if args.verbose else logging.INFO)
    out = args.outdir
    out.mkdir(parents=True, exist_ok=True)

    # -- Geometry & calculator ------------------
    geom = FMD_Geometry()
    calc = build_calculator(args)
    gen = FMDEventGenerator(geom, seed=args.seed)
    hists = DensityHistos(calc.weights.axis)

    # -- Event loop ------------------------------
    n_ok = n_failed = 0
    for i in range(args.N):
        event, _ = gen.generate(dndeta=args.dndeta, zvtx=args.zvtx)
        hists.clear()
        if not calc.calculate(event, hists):
            n_failed += 1
            continue
        n_ok += 1
        if (i + 1) % 10 == 0:
            print(f"Processed {i + 1}/{args.N} events")

    sums = calc.scale_histograms(n_ok)

    # -- Outputs ---------------------------------
    np.savez_compressed(
        out / "density.npz",
        **{f"{name}_dndeta": s for name, s in sums.items()},
        **{f"{ring.name}_density": calc.ring_histos[ring].density.values for ring in RINGS},
        eta_edges=calc.ring_histos[RINGS[0]].density.xaxis.edges,
    )

    plots = Plots(geom, output_dir=out)
    _try("plot_acceptance", plots.plot_acceptance)
    _try("plot_density_maps", plots.plot_density_maps, calc.ring_histos)
    _try("plot_dndeta", plots.plot_dndeta, sums, calc.ring_histos[RINGS[0]].density.xaxis)
    _try("plot_max_weights", plots.plot_max_weights, calc.weights)
    _try("plot_eloss", plots.plot_eloss, calc.ring_histos)
    _try("plot_eloss_vs_poisson", plots.plot_eloss_vs_poisson, calc.ring_histos)

    # -- Write text summary --------------------
    write_text_report(out, calc, n_ok, n_failed, sums=sums, truth_dndeta=args.dndeta)

    plt.close("all")
    print(f"\nAll outputs saved to: {out.resolve()}")


if __name__ == "__main__":
    main()
