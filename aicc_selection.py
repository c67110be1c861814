"""
AICc ranking of a candidate set.

For every spec the fitter is called once; failures are logged, recorded and
left out of the table. The table is sorted by ascending AICc with

    delta_AICc = AICc - min(AICc)
    weight     = exp(-delta/2) / sum(exp(-delta/2))

The first row is the selected (top) model. A simpler model within
delta_AICc <= 2 of the top one is reported as ambiguous support; nothing is
decided automatically from it.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from glm_fitting import FitError

logger = logging.getLogger(__name__)

DELTA_COMPETITIVE = 2.0
TABLE_COLS = ["model", "formula", "df", "logLik", "AICc", "delta_AICc", "weight", "cum_weight"]


class SelectionError(RuntimeError):
    """No candidate in the set could be ranked."""


@dataclass
class RankingResult:
    table: pd.DataFrame
    fitted: dict
    failures: dict = field(default_factory=dict)
    terms: tuple = ()

    @property
    def top_label(self) -> str:
        return str(self.table.iloc[0]["model"])

    @property
    def top_fitted(self):
        return self.fitted[self.top_label]

    @property
    def top(self):
        return self.top_fitted.spec

    def delta(self, label) -> float:
        row = self.table[self.table["model"] == label]
        if row.empty:
            raise KeyError(f"{label!r} is not in the ranking table")
        return float(row.iloc[0]["delta_AICc"])

    def within(self, threshold=DELTA_COMPETITIVE) -> pd.DataFrame:
        return self.table[self.table["delta_AICc"] <= threshold]

    def ranked_models(self):
        """Fitted models in table order."""
        return [self.fitted[m] for m in self.table["model"]]

    @property
    def coefficients(self) -> pd.DataFrame:
        """Per-model coefficient table, models in ranking order."""
        frames = []
        for rank, row in enumerate(self.table.itertuples(index=False), start=1):
            coef = self.fitted[row.model].coefficients.copy()
            coef.insert(0, "delta_AICc", float(row.delta_AICc))
            coef.insert(0, "rank", rank)
            coef.insert(0, "model", row.model)
            frames.append(coef)
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)

    def top_coefficients(self) -> pd.DataFrame:
        return self.top_fitted.coefficients.copy()


def akaike_weights(aicc_values):
    aicc_values = np.asarray(aicc_values, dtype=float)
    delta = aicc_values - np.min(aicc_values)
    rel = np.exp(-0.5 * delta)
    return delta, rel / rel.sum()


def rank_models(specs, data: pd.DataFrame, fitter, name="candidate set") -> RankingResult:
    rows = []
    fitted = {}
    failures = {}
    terms = []

    for spec in specs:
        for t in spec.terms:
            if t not in terms:
                terms.append(t)
        if spec.label in fitted or spec.label in failures:
            raise ValueError(f"{name}: duplicate model label {spec.label!r}")
        try:
            fm = fitter.fit(spec, data)
            score = float(fitter.aicc(fm))
        except FitError as e:
            logger.warning("%s: excluding %s (%s)", name, spec.label, e)
            failures[spec.label] = str(e)
            continue

        if not np.isfinite(score):
            logger.warning("%s: excluding %s (non-finite AICc)", name, spec.label)
            failures[spec.label] = "non-finite AICc"
            continue

        fitted[spec.label] = fm
        rows.append({
            "model": spec.label,
            "formula": spec.formula,
            "df": int(fm.k),
            "logLik": float(fm.llf),
            "AICc": score,
        })

    if not rows:
        raise SelectionError(f"{name}: all {len(failures)} candidate fits failed: {failures}")

    table = pd.DataFrame(rows)
    table = table.sort_values("AICc", kind="mergesort").reset_index(drop=True)
    table["delta_AICc"], table["weight"] = akaike_weights(table["AICc"].to_numpy())
    table["cum_weight"] = table["weight"].cumsum()

    for t in terms:
        table[t] = [t in fitted[m].spec.terms for m in table["model"]]

    table = table[TABLE_COLS + terms]
    logger.info(
        "%s: %d models ranked, %d failed, top=%s (w=%.3f)",
        name, len(table), len(failures), table.iloc[0]["model"], float(table.iloc[0]["weight"]),
    )
    return RankingResult(table=table, fitted=fitted, failures=failures, terms=tuple(terms))


def competitive_simpler_models(result: RankingResult, threshold=DELTA_COMPETITIVE):
    """Models with fewer parameters than the top model within `threshold` AICc."""
    top_df = int(result.table.iloc[0]["df"])
    sub = result.within(threshold)
    sub = sub[sub["df"] < top_df]
    return sub["model"].tolist()


def is_ambiguous(result: RankingResult, threshold=DELTA_COMPETITIVE) -> bool:
    return len(competitive_simpler_models(result, threshold)) > 0


def year_is_supported(result: RankingResult, year_term="Year") -> bool:
    """Mechanism search only follows when the top structural model has a Year term."""
    return year_term in result.top.predictors
