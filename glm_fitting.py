"""
GLM fitting behind a small capability interface.

    fitter.fit(spec, data) -> FittedModel
    fitter.aicc(fitted)    -> float

Ranking, dredging and the pretending-variable policies only talk to this
interface, so they can be exercised with hand-built FittedModel stubs.
StatsmodelsFitter is the real implementation (statsmodels formula GLM,
Gaussian family with identity link unless the ModelSpec names another).

Parameter count k includes the intercept and, for families with a free
dispersion (Gaussian, Gamma), the dispersion parameter.
"""

import logging
import warnings
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from patsy import PatsyError
from statsmodels.tools.sm_exceptions import ConvergenceWarning, MissingDataError

logger = logging.getLogger(__name__)

COEF_COLS = ["term", "estimate", "std_error", "statistic", "p_value", "conf_low", "conf_high"]

FAMILIES = {
    "gaussian": sm.families.Gaussian,
    "gamma": sm.families.Gamma,
}
# families whose scale is estimated and therefore counts as a parameter
DISPERSION_FAMILIES = {"gaussian", "gamma"}


class FitError(RuntimeError):
    """A single candidate model could not be fit (or has no defined AICc)."""


# ----------------------------
# Fitted model record
# ----------------------------
@dataclass(frozen=True, eq=False)
class FittedModel:
    spec: object
    nobs: int
    k: int
    llf: float
    llf_null: float = float("nan")
    coefficients: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=COEF_COLS))
    fitted: np.ndarray = None
    resid: np.ndarray = None
    std_resid: np.ndarray = None
    hat: np.ndarray = None
    cooks: np.ndarray = None

    @property
    def label(self):
        return self.spec.label

    @property
    def aic(self) -> float:
        return -2.0 * self.llf + 2.0 * self.k

    def coef_terms(self):
        return [t for t in self.coefficients["term"].tolist() if t != "Intercept"]


def aicc_value(llf, k, n):
    """AICc = AIC + 2k(k+1)/(n-k-1)."""
    k = int(k)
    n = int(n)
    if n - k - 1 <= 0:
        raise FitError(f"AICc undefined: n={n} too small for k={k} parameters")
    aic = -2.0 * float(llf) + 2.0 * k
    return aic + (2.0 * k * (k + 1)) / (n - k - 1)


def pseudo_r2_nagelkerke(fitted: FittedModel) -> float:
    """Cox-Snell R2 rescaled to a maximum of 1 (Nagelkerke)."""
    n = float(fitted.nobs)
    if not np.isfinite(fitted.llf_null) or n <= 0:
        return float("nan")
    cox_snell = 1.0 - np.exp(2.0 * (fitted.llf_null - fitted.llf) / n)
    r2_max = 1.0 - np.exp(2.0 * fitted.llf_null / n)
    if r2_max <= 0:
        return float("nan")
    return float(cox_snell / r2_max)


# ----------------------------
# Capability interface
# ----------------------------
class ModelFitter:
    def fit(self, spec, data: pd.DataFrame) -> FittedModel:
        raise NotImplementedError

    def aicc(self, fitted: FittedModel) -> float:
        return aicc_value(fitted.llf, fitted.k, fitted.nobs)


def coefficient_table(res, conf_level=0.95) -> pd.DataFrame:
    ci = res.conf_int(alpha=1.0 - conf_level)
    out = pd.DataFrame({
        "term": list(res.params.index),
        "estimate": res.params.to_numpy(dtype=float),
        "std_error": res.bse.to_numpy(dtype=float),
        "statistic": res.tvalues.to_numpy(dtype=float),
        "p_value": res.pvalues.to_numpy(dtype=float),
        "conf_low": ci.iloc[:, 0].to_numpy(dtype=float),
        "conf_high": ci.iloc[:, 1].to_numpy(dtype=float),
    })
    return out[COEF_COLS]


class StatsmodelsFitter(ModelFitter):
    def __init__(self, conf_level=0.95, with_influence=True):
        self.conf_level = conf_level
        self.with_influence = with_influence

    def _family(self, spec):
        try:
            return FAMILIES[spec.family]()
        except KeyError:
            raise ValueError(f"Unknown family {spec.family!r}; expected one of {sorted(FAMILIES)}")

    def fit(self, spec, data: pd.DataFrame) -> FittedModel:
        try:
            model = smf.glm(spec.formula, data, family=self._family(spec), missing="raise")
        except (PatsyError, MissingDataError, ValueError) as e:
            raise FitError(f"{spec.label}: cannot build design for '{spec.formula}': {e}") from e

        exog = np.asarray(model.exog, dtype=float)
        rank = np.linalg.matrix_rank(exog)
        if rank < exog.shape[1]:
            raise FitError(
                f"{spec.label}: rank-deficient design (rank {rank} < {exog.shape[1]} columns)"
            )

        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            try:
                res = model.fit()
            except (ConvergenceWarning, np.linalg.LinAlgError, ValueError) as e:
                raise FitError(f"{spec.label}: fit failed: {e}") from e

        if not getattr(res, "converged", True):
            raise FitError(f"{spec.label}: IRLS did not converge")

        k = int(len(res.params)) + (1 if spec.family in DISPERSION_FAMILIES else 0)
        llf = float(res.llf)
        if not np.isfinite(llf):
            raise FitError(f"{spec.label}: non-finite log-likelihood")

        fitted_vals = np.asarray(res.fittedvalues, dtype=float)
        resid = np.asarray(res.resid_response, dtype=float)
        std_resid = hat = cooks = None
        if self.with_influence:
            infl = res.get_influence()
            hat = np.asarray(infl.hat_matrix_diag, dtype=float)
            std_resid = np.asarray(infl.resid_studentized, dtype=float)
            cooks = np.asarray(infl.cooks_distance[0], dtype=float)

        logger.debug("Fitted %s: n=%d k=%d llf=%.4f", spec.formula, int(res.nobs), k, llf)
        return FittedModel(
            spec=spec,
            nobs=int(res.nobs),
            k=k,
            llf=llf,
            llf_null=float(res.llnull),
            coefficients=coefficient_table(res, self.conf_level),
            fitted=fitted_vals,
            resid=resid,
            std_resid=std_resid,
            hat=hat,
            cooks=cooks,
        )
