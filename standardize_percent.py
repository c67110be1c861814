"""
Per-species standardization of the percent C, N, P responses.

%C sits around 50 while %N and %P sit near 1 and 0.1, so each response is
z-scored within its species group before modelling:

    R_std = (R - mean(R | species)) / sd(R | species)

sd is the sample standard deviation (ddof=1).
"""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

STD_SUFFIX = "_std"


class StandardizationError(ValueError):
    """A species group cannot be standardized (missing values or zero variance)."""


def std_column(response: str) -> str:
    return f"{response}{STD_SUFFIX}"


def standardize_group(values, label="group"):
    """Return (values - mean) / sd for one group. Never returns NaN."""
    x = np.asarray(values, dtype=float)
    if x.size < 2:
        raise StandardizationError(f"{label}: need at least 2 observations, got {x.size}")
    if not np.all(np.isfinite(x)):
        n_bad = int((~np.isfinite(x)).sum())
        raise StandardizationError(f"{label}: {n_bad} missing or non-finite values")

    mean = float(np.mean(x))
    sd = float(np.std(x, ddof=1))
    if not np.isfinite(sd) or sd <= 0.0:
        raise StandardizationError(f"{label}: zero variance (sd={sd}), cannot standardize")

    logger.debug("%s: mean=%.6g sd=%.6g n=%d", label, mean, sd, x.size)
    return (x - mean) / sd


def standardize_responses(df: pd.DataFrame, responses, group_col="Species") -> pd.DataFrame:
    """
    Add <response>_std columns computed within each group of `group_col`.

    Raises StandardizationError for the first degenerate (group, response);
    callers that want per-response isolation should call this once per response.
    """
    if df.empty:
        raise StandardizationError("no rows to standardize")
    out = df.copy()
    for response in responses:
        if response not in out.columns:
            raise ValueError(f"Missing response column: '{response}'")
        col = std_column(response)
        out[col] = np.nan
        for group, idx in out.groupby(group_col, observed=True).groups.items():
            out.loc[idx, col] = standardize_group(
                out.loc[idx, response].to_numpy(dtype=float),
                label=f"{group} {response}",
            )
    return out
