# src/growthtools/cli/fit_cli.py
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from growthtools.fitting.pipeline import (
    GrowthRatePipelineConfig,
    read_curves,
    run_growth_rate_pipeline,
    write_results,
)
from growthtools.fitting.types import ALL_SHAPES, FitControl


def add_fit_subcommand(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser(
        "fit",
        help="Estimate exponential growth rates for every group of a tidy ln(abundance) table.",
    )

    p.add_argument("curves", help="Input CSV/XLSX in long format (one row per observation).")
    p.add_argument("--out", required=True, help="Output CSV/XLSX with one row per group.")

    # columns
    p.add_argument("--time-col", default="time", help="Time column. Default 'time'.")
    p.add_argument("--value-col", default="ln.abundance", help="ln(abundance) column. Default 'ln.abundance'.")
    p.add_argument("--group-cols", nargs="*", default=[], help="Columns identifying one series (e.g. trt replicate).")

    # model selection
    p.add_argument("--methods", nargs="+", default=list(ALL_SHAPES), choices=list(ALL_SHAPES),
                   help="Shapes to fit. Default: all.")
    p.add_argument("--ic", default="AICc", choices=["AICc", "AIC", "BIC"], help="Information criterion. Default AICc.")
    p.add_argument("--min-exp-obs", type=int, default=3,
                   help="Minimum observations in the exponential phase. Default 3.")
    p.add_argument("--r2-cutoff", type=float, default=0.0,
                   help="Local R2 required when the exponential phase holds exactly --min-exp-obs points. Default 0.")
    p.add_argument("--no-zero-time", action="store_true", default=False,
                   help="Keep the time axis as is instead of starting each series at 0.")

    # solver
    p.add_argument("--smoothness", type=float, default=1e-10, help="Smoothness constant s. Default 1e-10.")
    p.add_argument("--max-nfev", type=int, default=1000, help="Function evaluation budget per attempt. Default 1000.")

    p.add_argument("--plot-dir", default=None, help="If set, write an HTML plot of each winning fit here.")
    p.add_argument("--verbose", action="store_true", default=False, help="Log per-shape diagnostics.")
    p.add_argument(
        "--loglevel",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level.",
    )

    p.set_defaults(_fn=_run_fit)


def _run_fit(args: argparse.Namespace) -> int:
    logging.basicConfig(level=getattr(logging, args.loglevel), format="%(levelname)s: %(message)s")

    cfg = GrowthRatePipelineConfig(
        time_col=args.time_col,
        value_col=args.value_col,
        group_cols=tuple(args.group_cols),
        methods=tuple(args.methods),
        model_selection=args.ic,
        min_exp_obs=int(args.min_exp_obs),
        internal_r2_cutoff=float(args.r2_cutoff),
        zero_time=not args.no_zero_time,
        verbose=bool(args.verbose),
        control=FitControl(s=float(args.smoothness), max_nfev=int(args.max_nfev)),
        plot_dir=None if args.plot_dir is None else Path(args.plot_dir),
    )

    curves = read_curves(args.curves)
    results = run_growth_rate_pipeline(curves, cfg)
    write_results(results, args.out)
    logging.info(f"Wrote growth rates for {len(results)} series to {args.out}")
    return 0
