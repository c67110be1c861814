"""
Pretending-variable detection and the single re-dredge pass.

A pretending variable sits in AICc-competitive models without carrying a
real effect (Leroux 2019). Which terms to drop is decided by a policy: any
callable taking the per-model coefficient table

    model, rank, delta_AICc, term, estimate, std_error, ..., conf_low, conf_high

and returning the list of terms to remove from the global model.
"""

import logging
from dataclasses import dataclass

import pandas as pd

from aicc_selection import DELTA_COMPETITIVE
from mechanism_dredge import dredge
from model_sets import GlobalModel, is_interaction, term_parts

logger = logging.getLogger(__name__)

INTERCEPT = "Intercept"


def _competitive(coef: pd.DataFrame, delta: float) -> pd.DataFrame:
    if coef.empty:
        return coef
    return coef[coef["delta_AICc"] <= delta]


class ConfidenceIntervalPolicy:
    """
    Flag a term that appears in at least one model with delta_AICc <= delta
    and whose confidence interval contains zero in every such model.

    With uncentered predictors a main effect's interval can span zero only
    because one of its interactions is present. Dropping that main effect
    would also drop the interaction, so a main effect is kept whenever a
    competitive interaction containing it is not itself flagged.
    """

    name = "confidence_interval"

    def __init__(self, delta=DELTA_COMPETITIVE):
        self.delta = float(delta)

    def __call__(self, coef: pd.DataFrame):
        comp = _competitive(coef, self.delta)
        flagged = []
        informative = []
        for term, rows in comp.groupby("term", sort=False):
            if term == INTERCEPT:
                continue
            spans_zero = (rows["conf_low"] <= 0.0) & (rows["conf_high"] >= 0.0)
            if bool(spans_zero.all()):
                flagged.append(term)
            else:
                informative.append(term)

        protected = {p for t in informative if is_interaction(t) for p in term_parts(t)}
        for t in flagged:
            if t in protected:
                logger.info("%s spans zero but is kept for an informative interaction", t)
        return [t for t in flagged if t not in protected]

    def __repr__(self):
        return f"ConfidenceIntervalPolicy(delta={self.delta})"


class UninformativeParameterPolicy:
    """
    Flag a term when a competitive model containing it ranks below the same
    model without it: the extra parameter buys no AICc improvement.
    """

    name = "uninformative"

    def __init__(self, delta=DELTA_COMPETITIVE):
        self.delta = float(delta)

    def __call__(self, coef: pd.DataFrame):
        if coef.empty:
            return []
        model_terms = {}
        model_delta = {}
        for model, rows in coef.groupby("model", sort=False):
            model_terms[model] = frozenset(t for t in rows["term"] if t != INTERCEPT)
            model_delta[model] = float(rows["delta_AICc"].iloc[0])
        by_terms = {terms: m for m, terms in model_terms.items()}

        flagged = []
        for model, terms in model_terms.items():
            if model_delta[model] > self.delta:
                continue
            for t in terms:
                simpler = by_terms.get(terms - {t})
                if simpler is not None and model_delta[simpler] < model_delta[model] and t not in flagged:
                    flagged.append(t)
        return flagged

    def __repr__(self):
        return f"UninformativeParameterPolicy(delta={self.delta})"


POLICIES = {
    ConfidenceIntervalPolicy.name: ConfidenceIntervalPolicy,
    UninformativeParameterPolicy.name: UninformativeParameterPolicy,
}


def make_policy(name: str, delta=DELTA_COMPETITIVE):
    try:
        return POLICIES[name](delta=delta)
    except KeyError:
        raise ValueError(f"Unknown pretending-variable policy {name!r}; expected one of {sorted(POLICIES)}")


# ----------------------------
# Refinement
# ----------------------------
@dataclass
class Refinement:
    flagged: list
    global_model: GlobalModel
    result: object
    refined: bool


def refine(global_model: GlobalModel, result, data: pd.DataFrame, fitter, policy, name=None) -> Refinement:
    """
    Apply `policy` once. If it flags nothing the original dredge result is
    returned as is; otherwise the flagged terms are removed from the global
    model and it is dredged exactly once more.
    """
    flagged = list(policy(result.coefficients))
    droppable = [t for t in flagged if t in global_model.terms]
    for t in flagged:
        if t not in droppable:
            logger.warning("Flagged term %s is not a global model term %s; ignored", t, global_model.terms)

    if not droppable:
        logger.info("No pretending variables flagged by %r", policy)
        return Refinement(flagged=[], global_model=global_model, result=result, refined=False)

    reduced = global_model.without_terms(droppable)
    logger.info("Pretending variables %s; re-dredging %s", droppable, reduced.formula)
    refined = dredge(reduced, data, fitter, name=name)
    return Refinement(flagged=droppable, global_model=reduced, result=refined, refined=True)
