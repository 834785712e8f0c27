# src/growthtools/fitting/qualify.py
from __future__ import annotations
import logging
from dataclasses import replace
from typing import Optional, Tuple

import numpy as np

from .types import FitControl, FitOutcome, SegmentStats
from .piecewise_models import get_shape_spec

_LOG = logging.getLogger(__name__)


def get_r2(predicted, observed) -> float:
    """
    Coefficient of determination 1 - SS_res/SS_tot.

    NaN when there is nothing to compare or the observations are constant.
    """
    pred = np.asarray(predicted, dtype=float)
    obs = np.asarray(observed, dtype=float)
    if pred.shape != obs.shape:
        raise ValueError(f"Predictions and observations differ in length ({pred.shape} vs {obs.shape}).")
    if obs.size == 0:
        return float("nan")
    ss_tot = float(np.sum((obs - np.mean(obs)) ** 2))
    if ss_tot == 0.0:
        return float("nan")
    ss_res = float(np.sum((obs - pred) ** 2))
    return 1.0 - ss_res / ss_tot


def _count_r2(mask: Optional[np.ndarray], fitted: np.ndarray, y: np.ndarray) -> Tuple[Optional[int], float]:
    if mask is None:
        return None, float("nan")
    return int(np.count_nonzero(mask)), get_r2(fitted[mask], y[mask])


def segment_stats(fit: FitOutcome, x: np.ndarray, y: np.ndarray, margin: float = 0.1) -> SegmentStats:
    """Counts and local R² of the exponential segment and the flat regions around it."""
    spec = get_shape_spec(fit.shape)
    x = np.asarray(x, float)
    y = np.asarray(y, float)
    fitted = np.asarray(fit.fitted, float)

    exp_mask, pre_mask, post_mask = spec.segment_masks(x, fit.params, margin)
    exp_n, exp_r2 = _count_r2(exp_mask, fitted, y)
    pre_n, pre_r2 = _count_r2(pre_mask, fitted, y)
    post_n, post_r2 = _count_r2(post_mask, fitted, y)
    return SegmentStats(exp_n=exp_n, exp_r2=exp_r2, pre_n=pre_n, pre_r2=pre_r2, post_n=post_n, post_r2=post_r2)


def qualify_fit(
    fit: FitOutcome,
    x: np.ndarray,
    y: np.ndarray,
    min_exp_obs: int = 3,
    internal_r2_cutoff: float = 0.0,
    control: Optional[FitControl] = None,
    logger: Optional[logging.Logger] = None,
) -> FitOutcome:
    """
    Attach segment diagnostics to a successful fit and demote it to a failure
    when its exponential segment holds fewer than ``min_exp_obs`` points, or
    exactly ``min_exp_obs`` points with a local R² below ``internal_r2_cutoff``.

    Failed fits are returned unchanged. Linear fits are never demoted.
    """
    if not fit.success:
        return fit
    log = logger or _LOG
    control = control or FitControl()
    spec = get_shape_spec(fit.shape)

    stats = segment_stats(fit, x, y, margin=control.breakpoint_margin)
    out = replace(fit, segments=stats)
    if spec.lag_break is None and spec.sat_break is None:
        return out

    n = stats.exp_n if stats.exp_n is not None else 0
    too_few = n < min_exp_obs
    weak = n == min_exp_obs and stats.exp_r2 < internal_r2_cutoff
    if too_few or weak:
        message = (
            f"insufficient exponential support: {n} observation(s) in the exponential phase"
            f" (minimum {min_exp_obs}), local R2={stats.exp_r2:.3g}"
        )
        log.debug("%s fit disqualified: %s", fit.shape, message)
        return replace(out, success=False, reason="insufficient_exponential_support", message=message)
    return out
