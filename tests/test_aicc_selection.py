import math

import numpy as np
import pytest

from aicc_selection import (
    SelectionError,
    akaike_weights,
    competitive_simpler_models,
    is_ambiguous,
    rank_models,
    year_is_supported,
)
from conftest import StubFitter
from glm_fitting import FitError, aicc_value
from model_sets import full_global, mechanism_set, structural_set


def test_aicc_formula():
    # AIC = -2*(-50) + 2*3 = 106; correction 2*3*4/(40-3-1) = 24/36
    assert aicc_value(-50.0, 3, 40) == pytest.approx(106.0 + 24.0 / 36.0)


def test_aicc_undefined_for_tiny_samples():
    with pytest.raises(FitError):
        aicc_value(-10.0, 4, 5)


def test_akaike_weights():
    delta, w = akaike_weights([10.0, 12.0, 20.0])
    np.testing.assert_allclose(delta, [0.0, 2.0, 10.0])
    assert w.sum() == pytest.approx(1.0)
    assert w[0] / w[1] == pytest.approx(math.e)


def test_ranking_table_sorted_with_weights_summing_to_one():
    fitter = StubFitter(gains={"GDD": 12.0, "NDMI": 4.0, "GDD:NDMI": 0.3, "EVI": 0.2})
    specs = mechanism_set(full_global("C_std", ["EVI", "GDD", "NDMI"]))
    result = rank_models(specs, None, fitter)

    table = result.table
    assert len(table) == 18
    assert (np.diff(table["AICc"].to_numpy()) >= 0).all()
    assert table["delta_AICc"].iloc[0] == 0.0
    assert table["weight"].sum() == pytest.approx(1.0)
    assert table["cum_weight"].iloc[-1] == pytest.approx(1.0)
    assert result.top.terms == ("GDD", "NDMI")
    # one indicator column per global term
    for t in ("EVI", "GDD", "NDMI", "EVI:GDD", "EVI:NDMI", "GDD:NDMI"):
        assert t in table.columns
    assert bool(table.iloc[0]["GDD"]) and not bool(table.iloc[0]["EVI"])


def test_failed_fits_are_excluded_not_fatal():
    fitter = StubFitter(gains={"Year": 10.0}, fail={"Year*Site"})
    result = rank_models(structural_set("C_std"), None, fitter)

    assert "Year*Site" not in result.table["model"].tolist()
    assert "Year*Site" in result.failures
    assert len(result.table) == 3
    assert result.table["weight"].sum() == pytest.approx(1.0)


def test_all_fits_failing_raises():
    fitter = StubFitter(fail={"Year*Site", "Year", "Site", "Null"})
    with pytest.raises(SelectionError):
        rank_models(structural_set("C_std"), None, fitter)


def test_competitive_simpler_model_is_flagged():
    # Year*Site top, Null within 2 AICc
    fitter = StubFitter(gains={"Year": 1.0, "Site": 1.0, "Year:Site": 2.0})
    result = rank_models(structural_set("C_std"), None, fitter)

    assert result.top_label == "Year*Site"
    simpler = competitive_simpler_models(result)
    assert simpler
    assert all(int(result.table.set_index("model").loc[m, "df"]) < 5 for m in simpler)
    assert is_ambiguous(result)


def test_clear_winner_is_not_ambiguous():
    fitter = StubFitter(gains={"Year": 15.0})
    result = rank_models(structural_set("C_std"), None, fitter)
    assert result.top_label == "Year"
    assert competitive_simpler_models(result) == []
    assert year_is_supported(result)


def test_null_or_site_top_stops_mechanism_search():
    result = rank_models(structural_set("C_std"), None, StubFitter(gains={"Site": 15.0}))
    assert result.top_label == "Site"
    assert not year_is_supported(result)

    result = rank_models(structural_set("C_std"), None, StubFitter())
    assert result.top_label == "Null"
    assert not year_is_supported(result)


def test_coefficient_table_follows_ranking():
    fitter = StubFitter(gains={"Year": 15.0})
    result = rank_models(structural_set("C_std"), None, fitter)
    coef = result.coefficients
    assert coef.iloc[0]["model"] == "Year"
    assert set(coef.columns) >= {"model", "rank", "delta_AICc", "term", "conf_low", "conf_high"}
    assert result.top_coefficients()["term"].tolist() == ["Intercept", "Year"]


def test_duplicate_labels_rejected():
    specs = structural_set("C_std") + structural_set("C_std")[:1]
    with pytest.raises(ValueError, match="duplicate"):
        rank_models(specs, None, StubFitter())
