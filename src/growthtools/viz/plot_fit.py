# src/growthtools/viz/plot_fit.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import plotly.graph_objects as go

from growthtools.fitting.types import FitControl, FitOutcome
from growthtools.fitting.piecewise_models import get_shape_spec


def exponential_window(fit: FitOutcome, t_min: float, t_max: float) -> tuple[float, float]:
    """Time range of the fitted exponential phase, clipped to the data."""
    spec = get_shape_spec(fit.shape)
    lo, hi = t_min, t_max
    if spec.lag_break is not None:
        lo = fit.params[spec.lag_break]
    if spec.sat_break is not None:
        hi = fit.params[spec.sat_break]
    lo = float(np.clip(lo, t_min, t_max))
    hi = float(np.clip(hi, t_min, t_max))
    return lo, max(lo, hi)


def make_fit_figure(
    fit: FitOutcome,
    t: np.ndarray,
    y: np.ndarray,
    *,
    title: str = "",
    control: Optional[FitControl] = None,
    n_grid: int = 400,
) -> go.Figure:
    """Observed points, the full fitted curve (blue) and its exponential phase (red)."""
    spec = get_shape_spec(fit.shape)
    t = np.asarray(t, float)
    y = np.asarray(y, float)
    t_min, t_max = float(np.min(t)), float(np.max(t))

    fig = go.Figure()
    fig.add_trace(go.Scatter(x=t, y=y, mode="markers", name="observed", marker=dict(color="black")))

    t_grid = np.linspace(t_min, t_max, n_grid)
    fig.add_trace(
        go.Scatter(x=t_grid, y=spec.predict(t_grid, fit.params, control), mode="lines",
                   name=spec.label, line=dict(color="blue"))
    )

    lo, hi = exponential_window(fit, t_min, t_max)
    t_exp = np.linspace(lo, hi, n_grid)
    fig.add_trace(
        go.Scatter(x=t_exp, y=spec.predict(t_exp, fit.params, control), mode="lines",
                   name=f"growth rate = {fit.slope:.3g}", line=dict(color="red", width=3))
    )
    fig.update_layout(title=title, xaxis_title="Time (days)", yaxis_title="ln(fluorescence)")
    return fig


def plot_growth_fit(
    fit: FitOutcome,
    t: np.ndarray,
    y: np.ndarray,
    *,
    title: str = "",
    output_path: Optional[str | Path] = None,
    control: Optional[FitControl] = None,
) -> go.Figure:
    """
    Render a fitted growth model. Without ``output_path`` the figure is shown;
    ``.html`` paths are written as standalone pages, any other suffix is
    exported as a static image (requires kaleido).
    """
    if not fit.success and not fit.params:
        raise ValueError(f"Cannot plot a failed {fit.shape} fit without parameter estimates.")
    fig = make_fit_figure(fit, t, y, title=title, control=control)

    if output_path is None:
        fig.show()
        return fig

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix.lower() == ".html":
        fig.write_html(str(output_path))
    else:
        fig.write_image(str(output_path))
    return fig
