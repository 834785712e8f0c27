# src/growthtools/fitting/fit_model.py
from __future__ import annotations
import logging
import warnings
from typing import Optional, Tuple

import numpy as np
import statsmodels.api as sm
from scipy.optimize import least_squares

from .types import FitControl, FitOutcome, FailureReason
from .piecewise_models import ShapeSpec, get_shape_spec

_LOG = logging.getLogger(__name__)

SINGULAR_GRADIENT_MESSAGE = "singular gradient matrix"


class SolverFailure(Exception):
    """One failed least-squares attempt, tagged with its cause."""

    def __init__(self, reason: FailureReason, message: str):
        super().__init__(message)
        self.reason = reason


def gaussian_loglik(rss: float, n: int) -> float:
    """Maximised normal log-likelihood of a least-squares fit with n residuals."""
    rss = max(float(rss), 1e-12)
    return float(-0.5 * n * (np.log(2.0 * np.pi) + 1.0 - np.log(n) + np.log(rss)))


def fit_linear(x: np.ndarray, y: np.ndarray) -> FitOutcome:
    x = np.asarray(x, float)
    y = np.asarray(y, float)

    X = sm.add_constant(x, has_constant="add")
    with warnings.catch_warnings(), np.errstate(divide="ignore", invalid="ignore"):
        # zero residual degrees of freedom leave the covariance undefined
        warnings.simplefilter("ignore", RuntimeWarning)
        res = sm.OLS(y, X).fit()
        cov = np.asarray(res.cov_params(), float)

    fitted = np.asarray(res.fittedvalues, float)
    rss = float(np.sum((y - fitted) ** 2))
    var_b = cov[1, 1]
    se = float(np.sqrt(var_b)) if np.isfinite(var_b) and var_b >= 0 else float("nan")
    n = int(len(x))
    return FitOutcome(
        shape="linear",
        success=True,
        message="ok",
        params={"a": float(res.params[0]), "b": float(res.params[1])},
        cov=cov,
        fitted=fitted,
        slope=float(res.params[1]),
        slope_se=se,
        rss=rss,
        loglik=gaussian_loglik(rss, n),
        n=n,
        k=2,
        attempts=1,
    )


def _singular(detail: str) -> SolverFailure:
    return SolverFailure("singular_gradient", f"{SINGULAR_GRADIENT_MESSAGE}: {detail}")


def _least_squares(
    spec: ShapeSpec,
    x: np.ndarray,
    y: np.ndarray,
    p0: np.ndarray,
    control: FitControl,
) -> Tuple[np.ndarray, np.ndarray]:
    lower, upper = spec.bounds(control)
    f = spec.curve(control)
    try:
        res = least_squares(
            lambda p: f(x, *p) - y, p0,
            bounds=(lower, upper),
            method="trf",
            ftol=control.tol,
            xtol=control.tol,
            gtol=None,  # cost and step tests only, like minpack.lm (gtol = 0)
            max_nfev=control.max_nfev,
        )
    except ValueError as e:
        raise SolverFailure("nonconvergence", str(e)) from e
    if not res.success:
        raise SolverFailure("nonconvergence", f"Optimal parameters not found: {res.message}")

    # the gradient must identify every parameter at the solution
    jac = np.asarray(res.jac, float)
    n, p = jac.shape
    if not np.all(np.isfinite(jac)):
        raise _singular("non-finite Jacobian")
    try:
        sv = np.linalg.svd(jac, compute_uv=False)
    except np.linalg.LinAlgError as e:
        raise _singular(str(e)) from e
    rank = int(np.sum(sv > control.rank_rtol * sv[0])) if sv.size and sv[0] > 0 else 0
    if rank < p:
        raise _singular(f"rank {rank} < {p} parameters")
    if n <= p:
        raise _singular(f"{n} observation(s) leave no residual degrees of freedom")

    try:
        pcov = np.linalg.inv(jac.T @ jac) * (2.0 * res.cost / (n - p))
    except np.linalg.LinAlgError as e:
        raise _singular(str(e)) from e
    if not np.all(np.isfinite(pcov)):
        raise _singular("covariance is not finite")
    return np.asarray(res.x, float), pcov


def fit_shape(
    shape: str,
    x: np.ndarray,
    y: np.ndarray,
    control: Optional[FitControl] = None,
    logger: Optional[logging.Logger] = None,
) -> FitOutcome:
    """
    Fit one growth shape to a cleaned series by least squares.

    Starting-value strategies registered for the shape are tried in order; the
    first attempt that converges is returned. When all of them fail the
    outcome carries the cause of the last failure. Singular-gradient failures
    (parameters not identifiable from the data) are only logged at DEBUG.
    """
    log = logger or _LOG
    control = control or FitControl()
    spec = get_shape_spec(shape)

    x = np.asarray(x, float)
    y = np.asarray(y, float)
    if x.shape != y.shape:
        raise ValueError(
            "Time axis and abundances must have the same length "
            f"(got {x.shape} vs {y.shape})."
        )

    if not spec.starts:
        return fit_linear(x, y)

    failure = SolverFailure("nonconvergence", "no starting values tried")
    for attempt, strategy in enumerate(spec.starts, start=1):
        p0 = spec.start_vector(strategy, x, y, control)
        try:
            popt, pcov = _least_squares(spec, x, y, p0, control)
        except SolverFailure as e:
            failure = e
            log.debug("%s fit attempt %d (start=%s) failed: %s", spec.name, attempt, p0, e)
            continue

        params = dict(zip(spec.param_names, (float(v) for v in popt)))
        fitted = spec.predict(x, params, control)
        rss = float(np.sum((y - fitted) ** 2))
        idx = spec.param_names.index(spec.slope_param)
        n = int(len(x))
        return FitOutcome(
            shape=spec.name,
            success=True,
            message="ok",
            params=params,
            cov=pcov,
            fitted=fitted,
            slope=params[spec.slope_param],
            slope_se=float(np.sqrt(pcov[idx, idx])),
            rss=rss,
            loglik=gaussian_loglik(rss, n),
            n=n,
            k=spec.n_params,
            attempts=attempt,
        )

    if failure.reason == "singular_gradient":
        log.debug("%s fit failed: %s", spec.name, failure)
    else:
        log.warning("%s fit failed after %d attempt(s): %s", spec.name, len(spec.starts), failure)
    return FitOutcome(
        shape=spec.name,
        success=False,
        message=str(failure),
        reason=failure.reason,
        n=int(len(x)),
        k=spec.n_params,
        attempts=len(spec.starts),
    )
