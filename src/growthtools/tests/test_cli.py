from __future__ import annotations

import numpy as np
import pandas as pd

from growthtools.cli.main import main


def test_fit_subcommand_writes_one_row_per_group(tmp_path):
    t = np.arange(8.0)
    frames = [
        pd.DataFrame({"trt": trt, "time": t + 100.0, "ln.abundance": rate * t + 1.0})
        for trt, rate in (("A", 0.2), ("B", 0.4), ("C", 0.6), ("D", 0.8))
    ]
    curves = tmp_path / "curves.csv"
    pd.concat(frames).to_csv(curves, index=False)
    out = tmp_path / "rates.csv"

    rc = main(["fit", str(curves), "--out", str(out), "--group-cols", "trt", "--methods", "linear"])

    assert rc == 0
    res = pd.read_csv(out)
    assert res["trt"].tolist() == ["A", "B", "C", "D"]
    assert (res["best.model"] == "linear").all()
    np.testing.assert_allclose(res["best.slope"], [0.2, 0.4, 0.6, 0.8])
