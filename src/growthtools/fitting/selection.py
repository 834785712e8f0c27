# src/growthtools/fitting/selection.py
from __future__ import annotations
from typing import Callable, Dict, Mapping, Tuple

import numpy as np
import pandas as pd
from statsmodels.tools import eval_measures

from .types import AllFitsFailedError, Criterion, FitOutcome, ShapeName


def _aicc(llf: float, nobs: int, df_modelwc: int) -> float:
    # small-sample correction is undefined without spare observations
    if nobs - df_modelwc - 1 <= 0:
        return float("inf")
    return float(eval_measures.aicc(llf, nobs, df_modelwc))


_CRITERIA: Dict[str, Callable[[float, int, int], float]] = {
    "AIC": lambda llf, n, k: float(eval_measures.aic(llf, n, k)),
    "AICc": _aicc,
    "BIC": lambda llf, n, k: float(eval_measures.bic(llf, n, k)),
}


def ic_table(models: Mapping[str, FitOutcome], criterion: Criterion = "AICc") -> pd.DataFrame:
    """
    Information-criterion table over the successful fits, best first.

    ``df`` counts the residual variance as a parameter. Rows are sorted with
    a stable sort, so exact ties keep the order of ``models``.
    """
    if criterion not in _CRITERIA:
        raise ValueError(f"Invalid information criterion '{criterion}'. Expected one of {list(_CRITERIA)}")
    score = _CRITERIA[criterion]

    rows = []
    for name, fit in models.items():
        if not fit.success:
            continue
        df_modelwc = int(fit.k) + 1
        rows.append(
            {
                "model": name,
                "df": df_modelwc,
                "logLik": float(fit.loglik),
                criterion: score(float(fit.loglik), int(fit.n), df_modelwc),
            }
        )

    cols = ["model", "df", "logLik", criterion, f"d{criterion}", "weight"]
    if not rows:
        return pd.DataFrame(columns=cols)

    tab = pd.DataFrame(rows)
    values = tab[criterion].to_numpy(dtype=float)
    finite = np.isfinite(values)
    if np.any(finite):
        delta = values - np.min(values[finite])
        rel = np.where(np.isfinite(delta), np.exp(-0.5 * delta), 0.0)
        weight = rel / np.sum(rel)
    else:
        delta = np.full(values.shape, np.nan)
        weight = np.full(values.shape, np.nan)
    tab[f"d{criterion}"] = delta
    tab["weight"] = weight

    tab = tab.sort_values(criterion, kind="stable", na_position="last").reset_index(drop=True)
    return tab[cols]


def select_best_model(
    models: Mapping[ShapeName, FitOutcome],
    criterion: Criterion = "AICc",
) -> Tuple[ShapeName, pd.DataFrame]:
    """Return the best-supported shape and the ranked criterion table."""
    if not any(fit.success for fit in models.values()):
        raise AllFitsFailedError("All results for requested methods failed!", models)
    tab = ic_table(models, criterion)
    return tab["model"].iloc[0], tab
