import pandas as pd
import pytest

from conftest import StubFitter, make_species_frame
from stoich_models import (
    STATUS_FAILED,
    STATUS_MECHANISM,
    STATUS_STOPPED,
    Settings,
    build_settings,
    get_config,
    parse_args,
    run_all,
    run_one,
)


def make_settings(outdir, **kw):
    base = dict(
        stoich_path=outdir / "stoich.csv",
        gdd_path=outdir / "gdd.csv",
        evi_path=outdir / "evi.csv",
        ndmi_path=outdir / "ndmi.csv",
        outdir=outdir,
        species=("ABBA",),
        responses=("C",),
        predictors=("EVI", "GDD", "NDMI"),
        make_plots=False,
    )
    base.update(kw)
    return Settings(**base)


def test_year_supported_run_reaches_mechanism(tmp_path):
    result = run_one("ABBA", "C", make_species_frame(seed=5), make_settings(tmp_path))

    assert result.status == STATUS_MECHANISM
    assert result.structural.top_label in ("Year", "Year*Site")
    assert result.mechanism is not None
    assert len(result.mechanism.table) == 18
    expected = result.refined if result.refined is not None else result.mechanism
    assert result.selected is expected
    assert list(result.selected_summary.columns[:2]) == ["model", "term"]
    assert 0.0 <= result.pseudo_r2_selected <= 1.0


def test_site_top_model_stops_before_dredge(tmp_path):
    fitter = StubFitter(gains={"Site": 15.0})
    result = run_one("ABBA", "N", make_species_frame(), make_settings(tmp_path), fitter=fitter)

    assert result.status == STATUS_STOPPED
    assert result.mechanism is None
    assert fitter.calls == ["Year*Site", "Year", "Site", "Null"]
    assert result.summary_row()["selected_top"] == ""


def test_failed_run_is_isolated(tmp_path):
    good = make_species_frame("ABBA", seed=5)
    flat = make_species_frame("VAAN", seed=6)
    flat["C"] = 50.0
    settings = make_settings(tmp_path, species=("ABBA", "VAAN", "ACRU"))

    results, summary = run_all({"ABBA": good, "VAAN": flat}, settings)

    status = dict(zip(summary["species"], summary["status"]))
    assert status["ABBA"] == STATUS_MECHANISM
    assert status["VAAN"] == STATUS_FAILED
    assert status["ACRU"] == STATUS_FAILED
    assert "zero variance" in summary.set_index("species").loc["VAAN", "error"]

    assert (tmp_path / "run_summary.csv").exists()
    assert (tmp_path / "AIC" / "ABBA_C.csv").exists()
    assert (tmp_path / "AIC" / "ABBA_C_mech.csv").exists()
    assert (tmp_path / "Summary" / "ABBA_C.csv").exists()
    assert not (tmp_path / "AIC" / "VAAN_C.csv").exists()

    saved = pd.read_csv(tmp_path / "run_summary.csv")
    assert len(saved) == 3


def test_outputs_with_plots(tmp_path):
    settings = make_settings(tmp_path, make_plots=True)
    results, _ = run_all({"ABBA": make_species_frame(seed=5)}, settings)

    assert results[0].status == STATUS_MECHANISM
    assert (tmp_path / "graphics" / "ModelDiagnostics" / "ABBA_C.pdf").exists()
    assert (tmp_path / "graphics" / "ModelDiagnostics" / "ABBA_C_mech.pdf").exists()
    assert (tmp_path / "graphics" / "AIC" / "ABBA_C.pdf").exists()


def test_settings_from_config_and_flags(tmp_path):
    ini = tmp_path / "models.ini"
    ini.write_text(
        "[Input]\nstoich = data/s.csv\n"
        "[Output]\noutdir = results\nmake_plots = yes\n"
        "[Models]\nspecies = ABBA, BEPA\nresponses = N\ndelta_competitive = 4\njobs = 3\n"
    )
    args = parse_args(["--config", str(ini), "--responses", "C", "P", "--no-plots", "--policy", "uninformative"])
    settings = build_settings(get_config(args.config), args)

    assert settings.species == ("ABBA", "BEPA")
    assert settings.responses == ("C", "P")
    assert str(settings.stoich_path) == "data/s.csv"
    assert str(settings.outdir) == "results"
    assert settings.delta == 4.0
    assert settings.jobs == 3
    assert settings.policy == "uninformative"
    assert not settings.make_plots
    assert settings.predictors == ("EVI", "GDD", "NDMI")


def test_settings_defaults_without_config(tmp_path):
    args = parse_args(["--config", str(tmp_path / "absent.ini")])
    settings = build_settings(get_config(args.config), args)
    assert settings.species == ("ABBA", "ACRU", "BEPA", "VAAN")
    assert settings.responses == ("C", "N", "P")
    assert settings.jobs == 1
    assert settings.make_plots


def test_settings_are_frozen(tmp_path):
    settings = make_settings(tmp_path)
    with pytest.raises(AttributeError):
        settings.delta = 4.0


def test_parallel_runs_match_sequential_layout(tmp_path):
    data = {"ABBA": make_species_frame("ABBA", seed=5), "BEPA": make_species_frame("BEPA", seed=7)}
    settings = make_settings(tmp_path, species=("ABBA", "BEPA"), responses=("C", "N"), jobs=2)

    results, summary = run_all(data, settings)

    assert [(r.species, r.response) for r in results] == [
        ("ABBA", "C"), ("ABBA", "N"), ("BEPA", "C"), ("BEPA", "N"),
    ]
    assert len(summary) == 4
    assert (summary["status"] != STATUS_FAILED).all()
    assert (tmp_path / "run_summary.csv").exists()
    assert (tmp_path / "AIC" / "BEPA_N.csv").exists()
