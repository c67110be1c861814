import numpy as np
import pandas as pd
import pytest

from glm_fitting import COEF_COLS, FitError, FittedModel, ModelFitter


class StubFitter(ModelFitter):
    """
    Fitter that never runs a regression.

    llf = base + sum(gain[t] for t in spec.terms); k = terms + intercept + dispersion.
    Confidence intervals default to (0.2, 0.5) and can be set per term.
    """

    def __init__(self, gains=None, ci=None, base=-60.0, nobs=40, fail=()):
        self.gains = dict(gains or {})
        self.ci = dict(ci or {})
        self.base = base
        self.nobs = nobs
        self.fail = set(fail)
        self.calls = []

    def fit(self, spec, data):
        self.calls.append(spec.label)
        if spec.label in self.fail:
            raise FitError(f"{spec.label}: forced failure")
        llf = self.base + sum(self.gains.get(t, 0.0) for t in spec.terms)
        rows = []
        for term in ("Intercept",) + tuple(spec.terms):
            lo, hi = self.ci.get(term, (0.2, 0.5))
            rows.append({
                "term": term,
                "estimate": (lo + hi) / 2.0,
                "std_error": (hi - lo) / 3.92,
                "statistic": 1.0,
                "p_value": 0.5,
                "conf_low": lo,
                "conf_high": hi,
            })
        return FittedModel(
            spec=spec,
            nobs=self.nobs,
            k=len(spec.terms) + 2,
            llf=llf,
            llf_null=self.base,
            coefficients=pd.DataFrame(rows, columns=COEF_COLS),
        )


@pytest.fixture
def stub_fitter():
    return StubFitter


def make_species_frame(species="ABBA", n_per_cell=10, year_effect=3.0, seed=0, mechanism=True):
    """
    2 years x 2 sites x n_per_cell observations for one species.

    C carries a strong year effect and a GDD effect; N and P are noise.
    """
    rng = np.random.default_rng(seed)
    rows = []
    plot = 0
    for year in ("2016", "2017"):
        for site in ("Site1", "Site2"):
            for _ in range(n_per_cell):
                plot += 1
                gdd = rng.normal(1000.0, 100.0) + (150.0 if year == "2017" else 0.0)
                evi = rng.normal(0.5, 0.05)
                ndmi = rng.normal(0.2, 0.05)
                c = 48.0 + (year_effect if year == "2017" else 0.0) + rng.normal(0.0, 0.5)
                if mechanism:
                    c += 0.004 * (gdd - 1000.0)
                rows.append({
                    "PlotName": f"P{plot:03d}",
                    "Species": species,
                    "Site": site,
                    "Year": year,
                    "C": c,
                    "N": 1.2 + rng.normal(0.0, 0.1),
                    "P": 0.12 + rng.normal(0.0, 0.01),
                    "GDD": gdd,
                    "EVI": evi,
                    "NDMI": ndmi,
                })
    df = pd.DataFrame(rows)
    df["Year"] = df["Year"].astype("category")
    return df


@pytest.fixture
def species_frame():
    return make_species_frame()
