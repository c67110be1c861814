"""
Dredge the mechanism global model.

The global model (e.g. EVI + GDD + NDMI with all pairwise interactions) is
expanded into its marginality-respecting sub-models and ranked by AICc with
the same procedure as the structural set.
"""

import logging

import pandas as pd

from aicc_selection import rank_models
from model_sets import GlobalModel, full_global, mechanism_set

logger = logging.getLogger(__name__)


def dredge(global_model: GlobalModel, data: pd.DataFrame, fitter, name=None):
    specs = mechanism_set(global_model)
    name = name or f"dredge {global_model.formula}"
    logger.info("%s: %d sub-models", name, len(specs))
    return rank_models(specs, data, fitter, name=name)


def dredge_predictors(response: str, predictors, data: pd.DataFrame, fitter, name=None):
    """Dredge the full pairwise global model over `predictors`."""
    return dredge(full_global(response, predictors), data, fitter, name=name)


def top_model_summary(result) -> pd.DataFrame:
    """Top model coefficients with estimate, SE and confidence interval."""
    coef = result.top_coefficients()
    coef.insert(0, "model", result.top_label)
    return coef
