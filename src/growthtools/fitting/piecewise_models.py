# src/growthtools/fitting/piecewise_models.py
from __future__ import annotations
import numpy as np
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .types import FitControl, ShapeName

# --------- Model functions ---------
# Smooth approximations to piecewise-linear curves in ln(abundance); see
# https://stats.stackexchange.com/questions/149627 . As s -> 0 each curve
# approaches its sharp-cornered counterpart.

def sqfunc(z, b, s):
    # smoothed hinge: 0.5 * sqrt(b * (4s + b z^2)) ~ 0.5 * b * |z|
    return 0.5 * np.sqrt(b * (4.0 * s + b * np.square(z)))

def linear(x, a, b):
    return a + b * np.asarray(x, dtype=float)

def lag(x, a, b, B1, s=1e-10):
    # flat at a until B1, then rising with slope b
    x = np.asarray(x, dtype=float)
    return sqfunc(B1 - x, b, s) - 0.5 * b * (B1 - x) + a

def sat(x, a, b, B2, s=1e-10):
    # rising with slope b from a at x=0 until B2, then flat
    x = np.asarray(x, dtype=float)
    return a + 0.5 * b * B2 + sqfunc(-x, b, s) - sqfunc(B2 - x, b, s)

def flr(x, a, b, B2, s=1e-10):
    # falling with slope b (< 0) from a at x=0 until B2, then flat
    x = np.asarray(x, dtype=float)
    b = -b
    return a - 0.5 * b * B2 - sqfunc(-x, b, s) + sqfunc(B2 - x, b, s)

def lagsat(x, a, b, B1, B2, s=1e-10):
    # flat, rising with slope b between B1 and B2, flat again
    x = np.asarray(x, dtype=float)
    return a + 0.5 * b * (B2 - B1) + sqfunc(B1 - x, b, s) - sqfunc(B2 - x, b, s)

# --------- Starting-value utilities ---------
def local_slopes(x: np.ndarray, y: np.ndarray, window: int = 3) -> np.ndarray:
    """
    Slopes of ordinary regressions over every run of ``window`` consecutive
    observations. Windows without time variance are dropped.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.size < window:
        return np.array([], dtype=float)
    xw = np.lib.stride_tricks.sliding_window_view(x, window)
    yw = np.lib.stride_tricks.sliding_window_view(y, window)
    keep = np.ptp(xw, axis=1) > 0
    xw, yw = xw[keep], yw[keep]
    xc = xw - xw.mean(axis=1, keepdims=True)
    yc = yw - yw.mean(axis=1, keepdims=True)
    return np.sum(xc * yc, axis=1) / np.sum(xc * xc, axis=1)

def ols_intercept(x: np.ndarray, y: np.ndarray) -> float:
    _slope, intercept = np.polyfit(np.asarray(x, float), np.asarray(y, float), 1)
    return float(intercept)

def _lag_midpoint(x: np.ndarray) -> float:
    return float(np.mean(x) - (np.mean(x) - np.min(x)) / 2.0)

def _sat_midpoint(x: np.ndarray) -> float:
    return float(np.mean(x) + (np.max(x) - np.mean(x)) / 2.0)

StartStrategy = Callable[[np.ndarray, np.ndarray, FitControl], Dict[str, float]]

def _lag_start(x, y, control):
    return {"a": float(np.min(y)), "b": 1.0, "B1": _lag_midpoint(x)}

def _lag_fallback(x, y, control):
    return {"a": float(np.min(y)), "b": 1.0, "B1": float(control.fallback_breakpoint)}

def _sat_slope_guess(x, y, control) -> float:
    slopes = local_slopes(x, y)
    return round(float(np.max(np.append(slopes, control.slope_lower))), 5)

def _sat_start(x, y, control):
    return {"a": ols_intercept(x, y), "b": _sat_slope_guess(x, y, control), "B2": _sat_midpoint(x)}

def _sat_fallback(x, y, control):
    return {"a": ols_intercept(x, y), "b": _sat_slope_guess(x, y, control),
            "B2": float(control.fallback_breakpoint)}

def _flr_start(x, y, control):
    slopes = local_slopes(x, y)
    steepest = round(float(np.min(slopes)), 5) if slopes.size else -0.1
    return {"a": ols_intercept(x, y), "b": min(-0.1, steepest), "B2": float(np.mean(x))}

def _lagsat_start(x, y, control):
    return {
        "a": float(np.min(y)) + control.lagsat_offset,
        "b": 1.0,
        "B1": _lag_midpoint(x),
        "B2": _sat_midpoint(x),
    }

@dataclass(frozen=True)
class ShapeSpec:
    name: ShapeName
    label: str
    func: Callable
    param_names: Tuple[str, ...]      # order of the func arguments after x
    starts: Tuple[StartStrategy, ...]  # tried in order until one converges
    slope_param: str = "b"
    slope_sign: int = 1                # +1 growth only, -1 decline only, 0 free
    lag_break: Optional[str] = None    # breakpoint closing the pre-exponential region
    sat_break: Optional[str] = None    # breakpoint opening the post-exponential region
    smooth: bool = True

    @property
    def n_params(self) -> int:
        return len(self.param_names)

    def bounds(self, control: FitControl) -> Tuple[np.ndarray, np.ndarray]:
        lower = np.full(self.n_params, -np.inf)
        upper = np.full(self.n_params, np.inf)
        idx = self.param_names.index(self.slope_param)
        if self.slope_sign < 0:
            upper[idx] = control.floor_slope_upper
        elif self.slope_sign > 0:
            lower[idx] = control.slope_lower
        return lower, upper

    def curve(self, control: Optional[FitControl] = None) -> Callable:
        """Return f(x, *params) with the smoothness constant bound in."""
        if not self.smooth:
            return self.func
        s = (control or FitControl()).s
        return lambda x, *p: self.func(x, *p, s=s)

    def predict(self, x: np.ndarray, params: Dict[str, float], control: Optional[FitControl] = None) -> np.ndarray:
        return self.curve(control)(x, *[params[name] for name in self.param_names])

    def start_vector(self, strategy: StartStrategy, x, y, control: FitControl) -> np.ndarray:
        guess = strategy(x, y, control)
        return np.array([guess[name] for name in self.param_names], dtype=float)

    def segment_masks(
        self, x: np.ndarray, params: Dict[str, float], margin: float
    ) -> Tuple[np.ndarray, Optional[np.ndarray], Optional[np.ndarray]]:
        """(exponential, pre-exponential, post-exponential) membership of each x."""
        x = np.asarray(x, dtype=float)
        exp_mask = np.ones(x.shape, dtype=bool)
        pre_mask = post_mask = None
        if self.lag_break is not None:
            b1 = params[self.lag_break]
            exp_mask &= x >= b1 - margin
            pre_mask = x <= b1
        if self.sat_break is not None:
            b2 = params[self.sat_break]
            exp_mask &= x <= b2 + margin
            post_mask = x >= b2
        return exp_mask, pre_mask, post_mask


SHAPE_SPECS: Dict[ShapeName, ShapeSpec] = {
    "linear": ShapeSpec("linear", "Linear", linear, ("a", "b"), starts=(), slope_sign=0, smooth=False),
    "lag": ShapeSpec("lag", "Lag", lag, ("a", "b", "B1"),
                     starts=(_lag_start, _lag_fallback), lag_break="B1"),
    "sat": ShapeSpec("sat", "Saturating", sat, ("a", "b", "B2"),
                     starts=(_sat_start, _sat_fallback), sat_break="B2"),
    "flr": ShapeSpec("flr", "Floor", flr, ("a", "b", "B2"),
                     starts=(_flr_start,), slope_sign=-1, sat_break="B2"),
    "lagsat": ShapeSpec("lagsat", "LagSaturating", lagsat, ("a", "b", "B1", "B2"),
                        starts=(_lagsat_start,), lag_break="B1", sat_break="B2"),
}

def get_shape_spec(name: str) -> ShapeSpec:
    try:
        return SHAPE_SPECS[name]  # type: ignore[index]
    except KeyError:
        raise ValueError(f"Unknown growth shape '{name}'. Expected one of {list(SHAPE_SPECS)}") from None
