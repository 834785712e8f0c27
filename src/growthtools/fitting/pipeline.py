# src/growthtools/fitting/pipeline.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from growthtools.fitting.growth_rate import get_growth_rate
from growthtools.fitting.types import ALL_SHAPES, AllFitsFailedError, FitControl

_LOG = logging.getLogger(__name__)


# ============================================================
# Config
# ============================================================

@dataclass(frozen=True)
class GrowthRatePipelineConfig:
    # input columns
    time_col: str = "time"
    value_col: str = "ln.abundance"
    group_cols: Tuple[str, ...] = ()

    # model selection
    methods: Tuple[str, ...] = ALL_SHAPES
    model_selection: str = "AICc"
    min_exp_obs: int = 3
    internal_r2_cutoff: float = 0.0
    zero_time: bool = True
    verbose: bool = False

    # solver constants
    control: FitControl = field(default_factory=FitControl)

    # optional per-group plots (<plot_dir>/<group label>.html)
    plot_dir: Optional[Path] = None


# ============================================================
# I/O helpers
# ============================================================

def read_curves(path: Union[str, Path]) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(str(path))
    if path.suffix.lower() in (".xlsx", ".xls"):
        return pd.read_excel(path)
    return pd.read_csv(path)


def write_results(df: pd.DataFrame, path: Union[str, Path]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".xlsx", ".xls"):
        df.to_excel(path, index=False)
    else:
        df.to_csv(path, index=False)


def _ensure_columns(df: pd.DataFrame, cols: Sequence[str]) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def _group_label(keys: Tuple[Any, ...]) -> str:
    label = "_".join(str(k) for k in keys)
    cleaned = "".join(ch if ch.isalnum() or ch in "-." else "_" for ch in label)
    return cleaned.strip("_") or "series"


# ============================================================
# Pipeline
# ============================================================

def run_growth_rate_pipeline(
    curves_df: pd.DataFrame,
    cfg: Optional[GrowthRatePipelineConfig] = None,
) -> pd.DataFrame:
    """
    Estimate one growth rate per group of a tidy (long) table.

    Returns one row per group: the group labels, the summary of the
    GrowthRateReport, per-shape slopes/standard errors of the successful fits,
    and an ``error`` column. A group in which every requested shape fails is
    logged and kept as a row of missing values; it does not stop the run.
    """
    cfg = cfg or GrowthRatePipelineConfig()
    group_cols = list(cfg.group_cols)
    _ensure_columns(curves_df, [cfg.time_col, cfg.value_col, *group_cols])

    if group_cols:
        groups = curves_df.groupby(group_cols, dropna=False, sort=True)
    else:
        groups = [((), curves_df)]

    rows = []
    for keys, g in groups:
        keys = keys if isinstance(keys, tuple) else (keys,)
        label = _group_label(keys) if keys else "series"
        row: Dict[str, Any] = dict(zip(group_cols, keys))

        fpath = None
        if cfg.plot_dir is not None:
            fpath = f"{Path(cfg.plot_dir)}/"

        try:
            report = get_growth_rate(
                g[cfg.time_col].to_numpy(),
                g[cfg.value_col].to_numpy(),
                id=label,
                methods=cfg.methods,
                model_selection=cfg.model_selection,  # type: ignore[arg-type]
                min_exp_obs=cfg.min_exp_obs,
                internal_r2_cutoff=cfg.internal_r2_cutoff,
                zero_time=cfg.zero_time,
                plot_best=cfg.plot_dir is not None,
                fpath=fpath,
                verbose=cfg.verbose,
                control=cfg.control,
            )
        except AllFitsFailedError as e:
            _LOG.warning("Group %s: %s", label, e)
            row.update({"id": label, "best.model": "NA", "best.slope": np.nan, "best.se": np.nan, "error": str(e)})
            rows.append(row)
            continue

        row.update(report.to_dict())
        for name in ALL_SHAPES:
            fit = report.models.get(name)
            ok = fit is not None and fit.success
            row[f"slope.{name}"] = fit.slope if ok else np.nan
            row[f"se.{name}"] = fit.slope_se if ok else np.nan
        row["error"] = ""
        rows.append(row)

    out = pd.DataFrame(rows)
    _LOG.info("Estimated growth rates for %d group(s)", len(out))
    return out
