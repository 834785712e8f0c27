# src/growthtools/fitting/growth_rate.py
"""
Growth-rate estimation from a time series of ln(abundance).

Every requested shape (linear, lag, sat, flr, lagsat) is fit to the series,
fits whose exponential phase is supported by too few observations are
discarded, and the survivors are compared with an information criterion
(AICc by default). The winning model's slope is the exponential growth rate.
"""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from .types import (
    ALL_SHAPES,
    Criterion,
    FitControl,
    FitOutcome,
    GrowthRateReport,
    ShapeName,
)
from .fit_model import fit_shape
from .qualify import get_r2, qualify_fit
from .selection import ic_table, select_best_model
from growthtools.viz.plot_fit import plot_growth_fit

_LOG = logging.getLogger(__name__)
_NAN = float("nan")


def clean_series(x, y, zero_time: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """Drop observations with missing values and optionally shift time to start at zero."""
    t = pd.to_numeric(pd.Series(list(x)), errors="coerce").to_numpy(dtype=float)
    v = pd.to_numeric(pd.Series(list(y)), errors="coerce").to_numpy(dtype=float)
    if t.shape != v.shape:
        raise ValueError(
            "Time axis and abundances must have the same length "
            f"(got {t.shape} vs {v.shape})."
        )
    mask = np.isfinite(t) & np.isfinite(v)
    t = t[mask]
    v = v[mask]
    if zero_time and t.size:
        t = t - np.min(t)
    return t, v


def resolve_methods(methods: Iterable[str], logger: Optional[logging.Logger] = None) -> list[ShapeName]:
    """Recognised shape names from ``methods``, in canonical order."""
    log = logger or _LOG
    requested = [methods] if isinstance(methods, str) else list(methods)
    unknown = [m for m in requested if m not in ALL_SHAPES]
    if unknown:
        log.warning("Ignoring unrecognised growth shape(s): %s (expected %s)", unknown, list(ALL_SHAPES))
    resolved = [name for name in ALL_SHAPES if name in requested]
    if not resolved:
        log.warning("None of the specified methods matched a currently implemented approach")
    return resolved


def _empty_report(id: str, criterion: Criterion, models: Optional[Dict[ShapeName, FitOutcome]] = None) -> GrowthRateReport:
    return GrowthRateReport(
        id=id,
        best_model=None,
        best_slope=_NAN,
        best_se=_NAN,
        best_model_rsqr=_NAN,
        best_model_slope_n=None,
        best_model_slope_r2=_NAN,
        best_model_pre_n=None,
        best_model_pre_r2=_NAN,
        best_model_post_n=None,
        best_model_post_r2=_NAN,
        best_model_contents=None,
        ictab=ic_table({}, criterion),
        criterion=criterion,
        models=dict(models or {}),
    )


def build_report(
    id: str,
    models: Dict[ShapeName, FitOutcome],
    y: np.ndarray,
    criterion: Criterion = "AICc",
) -> GrowthRateReport:
    """Select the winning model and package it with every attempted fit."""
    best, tab = select_best_model(models, criterion)
    fit = models[best]
    seg = fit.segments
    return GrowthRateReport(
        id=id,
        best_model=best,
        best_slope=fit.slope,
        best_se=fit.slope_se,
        best_model_rsqr=get_r2(fit.fitted, y),
        best_model_slope_n=seg.exp_n,
        best_model_slope_r2=seg.exp_r2,
        best_model_pre_n=seg.pre_n,
        best_model_pre_r2=seg.pre_r2,
        best_model_post_n=seg.post_n,
        best_model_post_r2=seg.post_r2,
        best_model_contents=fit,
        ictab=tab,
        criterion=criterion,
        models=models,
    )


def get_growth_rate(
    x,
    y,
    id: str = "",
    *,
    methods: Iterable[str] = ALL_SHAPES,
    model_selection: Criterion = "AICc",
    min_exp_obs: int = 3,
    internal_r2_cutoff: float = 0.0,
    zero_time: bool = True,
    plot_best: bool = False,
    fpath: Optional[str | Path] = None,
    verbose: bool = False,
    control: Optional[FitControl] = None,
    logger: Optional[logging.Logger] = None,
) -> GrowthRateReport:
    """
    Estimate the exponential growth rate of one series of ln(abundance).

    Args:
      x, y: time points and ln(abundance); rows with missing values are dropped.
      id: label of the population/strain; used in log messages and plot names.
      methods: shapes to try, any of "linear", "lag", "sat", "flr", "lagsat".
      model_selection: "AICc" (default), "AIC" or "BIC".
      min_exp_obs: minimum observations inside the estimated exponential phase
        for lag/sat/flr/lagsat fits to stay in contention.
      internal_r2_cutoff: local R² a fit with exactly ``min_exp_obs`` exponential
        observations must reach; 0 keeps all such fits.
      zero_time: shift the time axis so the series starts at 0.
      plot_best / fpath: plot the winning fit to ``<fpath><id>.html``, or on
        screen when ``fpath`` is None.
      verbose: log per-shape diagnostics at INFO.

    Returns a GrowthRateReport. Fewer than two distinct time points, or no
    recognised method, give a report of missing values. Raises
    AllFitsFailedError when every requested shape fails.
    """
    log = logger or _LOG
    control = control or FitControl()
    if model_selection not in ("AIC", "AICc", "BIC"):
        raise ValueError(f"Invalid information criterion '{model_selection}'. Expected AIC, AICc or BIC")

    t, v = clean_series(x, y, zero_time=zero_time)
    shapes = resolve_methods(methods, logger=log)

    if verbose:
        log.info("data set id = %s", id)

    n_unique = int(np.unique(t).size)
    if n_unique < 2:
        log.warning("Fewer than two unique time points provided (id=%s)", id)
        return _empty_report(id, model_selection)
    if n_unique == 2:
        log.warning(
            "Caution: only two unique time points (id=%s), high risk of over-fitting. "
            "Methods other than 'linear' are likely to fail",
            id,
        )
    if not shapes:
        return _empty_report(id, model_selection)

    models: Dict[ShapeName, FitOutcome] = {}
    for shape in shapes:
        fit = fit_shape(shape, t, v, control=control, logger=log)
        models[shape] = qualify_fit(
            fit, t, v,
            min_exp_obs=min_exp_obs,
            internal_r2_cutoff=internal_r2_cutoff,
            control=control,
            logger=log,
        )

    if verbose:
        for name, fit in models.items():
            log.info("  %-7s %s", name, "ok" if fit.success else f"failed ({fit.reason}): {fit.message}")

    report = build_report(id, models, v, criterion=model_selection)
    if verbose:
        log.info("%s table (id=%s):\n%s", model_selection, id, report.ictab.to_string(index=False))

    if plot_best:
        out_path = None if fpath is None else Path(f"{fpath}{id}.html")
        plot_growth_fit(report.best_model_contents, t, v, title=id, output_path=out_path, control=control)
    return report
