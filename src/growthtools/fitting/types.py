# src/growthtools/fitting/types.py
from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional, Dict, Any, Literal, Mapping
import numpy as np
import pandas as pd

ShapeName = Literal["linear", "lag", "sat", "flr", "lagsat"]
FailureReason = Literal["nonconvergence", "singular_gradient", "insufficient_exponential_support"]
Criterion = Literal["AIC", "AICc", "BIC"]

ALL_SHAPES: tuple[ShapeName, ...] = ("linear", "lag", "sat", "flr", "lagsat")


class GrowthToolsError(RuntimeError):
    """Base class for errors raised by growthtools."""


class AllFitsFailedError(GrowthToolsError):
    """Every requested shape failed to produce a usable fit."""

    def __init__(self, message: str, models: Optional[Mapping[str, "FitOutcome"]] = None):
        super().__init__(message)
        self.models = dict(models or {})


@dataclass
class FitControl:
    """Solver constants shared by every shape."""

    s: float = 1e-10                 # smoothness of the piecewise corners
    breakpoint_margin: float = 0.1   # inclusion margin around fitted breakpoints
    max_nfev: int = 1000
    tol: float = 1.49012e-08         # relative cost and step tolerance of the solver
    rank_rtol: float = 1e-6          # singular values below rank_rtol * largest count as zero
    fallback_breakpoint: float = 10.0
    slope_lower: float = 1e-4        # lag / sat / lagsat
    floor_slope_upper: float = -1e-8  # flr
    lagsat_offset: float = 0.1

    def __post_init__(self) -> None:
        if not self.s > 0:
            raise ValueError(f"Smoothness constant s must be positive (got {self.s}).")
        if self.max_nfev < 1:
            raise ValueError("max_nfev must be at least 1")
        if not 0 < self.rank_rtol < 1:
            raise ValueError("rank_rtol must lie in (0, 1)")
        if self.breakpoint_margin < 0:
            raise ValueError("breakpoint_margin must be non-negative")
        if not self.slope_lower > 0 or not self.floor_slope_upper < 0:
            raise ValueError("slope bounds must keep lag/sat slopes positive and flr slopes negative")


@dataclass
class SegmentStats:
    # exponential segment
    exp_n: Optional[int] = None
    exp_r2: float = float("nan")
    # flat region before / after it (diagnostics only)
    pre_n: Optional[int] = None
    pre_r2: float = float("nan")
    post_n: Optional[int] = None
    post_r2: float = float("nan")


@dataclass
class FitOutcome:
    shape: ShapeName
    success: bool
    message: str
    reason: Optional[FailureReason] = None

    # estimates
    params: Dict[str, float] = field(default_factory=dict)
    cov: Optional[np.ndarray] = None
    fitted: Optional[np.ndarray] = None
    slope: float = float("nan")
    slope_se: float = float("nan")

    # fit quality
    rss: Optional[float] = None
    loglik: Optional[float] = None
    n: Optional[int] = None
    k: Optional[int] = None   # estimated curve parameters (residual variance excluded)
    attempts: int = 0

    segments: SegmentStats = field(default_factory=SegmentStats)
    extra: Optional[Dict[str, Any]] = None

    @property
    def failed(self) -> bool:
        return not self.success


@dataclass(frozen=True)
class GrowthRateReport:
    """
    Summary of one series: the winning shape, its growth rate and diagnostics,
    the ranked criterion table, and every attempted fit.
    """

    id: str
    best_model: Optional[ShapeName]
    best_slope: float
    best_se: float
    best_model_rsqr: float
    best_model_slope_n: Optional[int]
    best_model_slope_r2: float
    best_model_pre_n: Optional[int]
    best_model_pre_r2: float
    best_model_post_n: Optional[int]
    best_model_post_r2: float
    best_model_contents: Optional[FitOutcome]
    ictab: pd.DataFrame
    criterion: Criterion
    models: Mapping[ShapeName, FitOutcome]

    def __post_init__(self) -> None:
        # read-only view over a private copy
        object.__setattr__(self, "models", MappingProxyType(dict(self.models)))

    @property
    def is_degenerate(self) -> bool:
        return self.best_model is None

    def _successful(self) -> Dict[str, FitOutcome]:
        return {name: fit for name, fit in self.models.items() if fit.success}

    @property
    def slopes(self) -> Dict[str, float]:
        return {name: fit.slope for name, fit in self._successful().items()}

    @property
    def ses(self) -> Dict[str, float]:
        return {name: fit.slope_se for name, fit in self._successful().items()}

    @property
    def slope_ns(self) -> Dict[str, Optional[int]]:
        return {name: fit.segments.exp_n for name, fit in self._successful().items()}

    @property
    def slope_rs(self) -> Dict[str, float]:
        return {name: fit.segments.exp_r2 for name, fit in self._successful().items()}

    def to_dict(self) -> Dict[str, Any]:
        """Flat summary row (used by the batch pipeline)."""
        return {
            "id": self.id,
            "best.model": self.best_model if self.best_model is not None else "NA",
            "best.slope": self.best_slope,
            "best.se": self.best_se,
            "best.model.rsqr": self.best_model_rsqr,
            "best.model.slope.n": self.best_model_slope_n,
            "best.model.slope.r2": self.best_model_slope_r2,
            "best.model.pre.n": self.best_model_pre_n,
            "best.model.pre.r2": self.best_model_pre_r2,
            "best.model.post.n": self.best_model_post_n,
            "best.model.post.r2": self.best_model_post_r2,
            "n.models.ok": len(self._successful()),
            "n.models.tried": len(self.models),
        }
