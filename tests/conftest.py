import numpy as np
import pandas as pd
import patsy
import pytest


@pytest.fixture
def count_data():
    """100 rows of Poisson counts with exposure, a factor and a numeric predictor."""
    rng = np.random.RandomState(42)
    n = 100
    group = rng.choice(["a", "b", "c"], n)
    x = rng.normal(0.0, 1.0, n)
    exposure = rng.uniform(0.5, 5.0, n)
    rate = np.exp(-1.0 + 0.5 * (group == "b") - 0.4 * (group == "c") + 0.3 * x)
    count = rng.poisson(rate * exposure)
    return pd.DataFrame(
        {
            "count": count,
            "group": group,
            "x": x,
            "exposure": exposure,
            "log_exposure": np.log(exposure),
        }
    )


@pytest.fixture
def count_frame(count_data):
    """Design matrix, response and offset built directly with patsy, for comparisons."""
    X = patsy.dmatrix("group + x", count_data, return_type="dataframe")
    y = count_data["count"].to_numpy(dtype=float)
    offset = count_data["log_exposure"].to_numpy()
    return X, y, offset
