#!/usr/bin/env python3
"""
stoich_models.py

Standardized percent C, N, P models for four boreal plant species.

For every (species, response) pair:
  1) z-score the response within the species
  2) rank the structural set (Year*Site, Year, Site, Null) by AICc
  3) if the top structural model contains Year, dredge the mechanism global
     model (EVI + GDD + NDMI with pairwise interactions)
  4) flag pretending variables with the configured policy, drop them from the
     global model and dredge once more
  5) write ranking tables, coefficient summaries and diagnostic PDFs

Runs are independent; a failure in one is logged and recorded in
run_summary.csv without stopping the others.

Outputs (under --outdir):
- AIC/<SP>_<R>.csv, AIC/<SP>_<R>_mech.csv, AIC/<SP>_<R>_mech_pretend.csv
- Summary/<SP>_<R>.csv, Summary/<SP>_<R>_mech.csv, Summary/<SP>_<R>_mech_pretend.csv
- graphics/ModelDiagnostics/<SP>_<R>[_mech[_pretend]].pdf
- graphics/AIC/<SP>_<R>[_pretend].pdf
- run_summary.csv
"""

import argparse
import configparser
import logging
import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from aicc_selection import (
    competitive_simpler_models,
    rank_models,
    year_is_supported,
)
from glm_fitting import StatsmodelsFitter, pseudo_r2_nagelkerke
from mechanism_dredge import dredge, top_model_summary
from model_sets import full_global, structural_set
from prep_stoich_data import load_stoich_table, split_by_species
from pretending_variables import make_policy, refine
from standardize_percent import standardize_responses, std_column

logger = logging.getLogger("stoich_models")

STATUS_MECHANISM = "mechanism"
STATUS_STOPPED = "stopped_structural"
STATUS_FAILED = "failed"


# ----------------------------
# Config / CLI
# ----------------------------
@dataclass(frozen=True)
class Settings:
    stoich_path: Path
    gdd_path: Path
    evi_path: Path
    ndmi_path: Path
    outdir: Path
    species: tuple
    responses: tuple
    predictors: tuple
    delta: float = 2.0
    conf_level: float = 0.95
    policy: str = "confidence_interval"
    make_plots: bool = True
    jobs: int = 1


def _csv_list(raw):
    return tuple(s.strip() for s in raw.split(",") if s.strip())


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="AICc model selection for standardized percent C, N, P.")
    p.add_argument("--config", type=str, default="stoich_models.ini", help="INI file with [Input]/[Output]/[Models]")
    p.add_argument("--species", nargs="*", default=None, help="Species codes to run (default: from config)")
    p.add_argument("--responses", nargs="*", default=None, help="Responses to run, e.g. C N P")
    p.add_argument("--outdir", type=str, default=None)
    p.add_argument("--jobs", type=int, default=None, help="Run (species, response) pairs in N processes")
    p.add_argument("--policy", type=str, default=None, help="Pretending-variable policy name")
    p.add_argument("--no-plots", action="store_true", help="Skip diagnostic and AICc-table PDFs")
    p.add_argument("--verbose", action="store_true")
    return p.parse_args(argv)


def get_config(path):
    config = configparser.ConfigParser()
    read = config.read(path)
    if not read:
        logger.warning("Config file %s not found; using defaults", path)
    return config


def build_settings(config: configparser.ConfigParser, args) -> Settings:
    species = args.species or _csv_list(config.get("Models", "species", fallback="ABBA,ACRU,BEPA,VAAN"))
    responses = args.responses or _csv_list(config.get("Models", "responses", fallback="C,N,P"))
    jobs = args.jobs if args.jobs is not None else config.getint("Models", "jobs", fallback=1)
    make_plots = config.getboolean("Output", "make_plots", fallback=True) and not args.no_plots

    return Settings(
        stoich_path=Path(config.get("Input", "stoich", fallback="input/Stoich_2016_2017.csv")),
        gdd_path=Path(config.get("Input", "gdd", fallback="input/GDD_2016_2017_R.csv")),
        evi_path=Path(config.get("Input", "evi", fallback="input/EVI_2016_2017_R.csv")),
        ndmi_path=Path(config.get("Input", "ndmi", fallback="input/NDMI_2016_2017_R.csv")),
        outdir=Path(args.outdir or config.get("Output", "outdir", fallback="output")),
        species=tuple(species),
        responses=tuple(responses),
        predictors=_csv_list(config.get("Models", "predictors", fallback="EVI,GDD,NDMI")),
        delta=config.getfloat("Models", "delta_competitive", fallback=2.0),
        conf_level=config.getfloat("Models", "conf_level", fallback=0.95),
        policy=args.policy or config.get("Models", "pretending_policy", fallback="confidence_interval"),
        make_plots=make_plots,
        jobs=max(1, int(jobs)),
    )


# ----------------------------
# One run
# ----------------------------
@dataclass
class RunResult:
    species: str
    response: str
    status: str = STATUS_FAILED
    structural: object = None
    structural_summary: pd.DataFrame = None
    ambiguous_with: list = field(default_factory=list)
    mechanism: object = None
    flagged: list = field(default_factory=list)
    refined: object = None
    selected_summary: pd.DataFrame = None
    pseudo_r2_structural: float = float("nan")
    pseudo_r2_selected: float = float("nan")
    error: str = ""

    @property
    def tag(self):
        return f"{self.species}_{self.response}"

    @property
    def selected(self):
        if self.refined is not None:
            return self.refined
        return self.mechanism

    def summary_row(self) -> dict:
        return {
            "species": self.species,
            "response": self.response,
            "status": self.status,
            "structural_top": self.structural.top_label if self.structural is not None else "",
            "ambiguous_with": ";".join(self.ambiguous_with),
            "pseudo_r2_structural": self.pseudo_r2_structural,
            "mechanism_top": self.mechanism.top_label if self.mechanism is not None else "",
            "pretending": ";".join(self.flagged),
            "selected_top": self.selected.top_label if self.selected is not None else "",
            "pseudo_r2_selected": self.pseudo_r2_selected,
            "error": self.error,
        }


def structural_summary(result) -> pd.DataFrame:
    """Coefficient tables of every ranked structural model, stacked."""
    frames = []
    for fm in result.ranked_models():
        coef = fm.coefficients.copy()
        coef.insert(0, "model", fm.label)
        frames.append(coef)
    return pd.concat(frames, ignore_index=True)


def run_one(species: str, response: str, data: pd.DataFrame, settings: Settings, fitter=None, policy=None) -> RunResult:
    """
    Standardize -> structural ranking -> (if Year wins) dredge -> refine.

    Errors propagate; `execute_run` is the isolating wrapper.
    """
    fitter = fitter or StatsmodelsFitter(conf_level=settings.conf_level)
    policy = policy or make_policy(settings.policy, settings.delta)
    out = RunResult(species=species, response=response)
    tag = out.tag

    std = standardize_responses(data, [response])
    col = std_column(response)

    out.structural = rank_models(structural_set(col), std, fitter, name=f"{tag} structural")
    out.structural_summary = structural_summary(out.structural)
    out.ambiguous_with = competitive_simpler_models(out.structural, settings.delta)
    out.pseudo_r2_structural = pseudo_r2_nagelkerke(out.structural.top_fitted)
    if out.ambiguous_with:
        logger.warning(
            "[%s] top structural model %s has simpler models within %.1f AICc: %s",
            tag, out.structural.top_label, settings.delta, out.ambiguous_with,
        )

    if not year_is_supported(out.structural):
        logger.info("[%s] %s is the top structural model, stopping here", tag, out.structural.top_label)
        out.status = STATUS_STOPPED
        return out

    global_model = full_global(col, settings.predictors)
    out.mechanism = dredge(global_model, std, fitter, name=f"{tag} mechanism")

    refinement = refine(global_model, out.mechanism, std, fitter, policy, name=f"{tag} mechanism pretend")
    out.flagged = refinement.flagged
    if refinement.refined:
        out.refined = refinement.result

    out.selected_summary = top_model_summary(out.selected)
    out.pseudo_r2_selected = pseudo_r2_nagelkerke(out.selected.top_fitted)
    out.status = STATUS_MECHANISM
    return out


# ----------------------------
# Outputs
# ----------------------------
def output_dirs(outdir: Path) -> dict:
    dirs = {
        "aic": outdir / "AIC",
        "summary": outdir / "Summary",
        "diagnostics": outdir / "graphics" / "ModelDiagnostics",
        "aic_plots": outdir / "graphics" / "AIC",
    }
    for d in dirs.values():
        d.mkdir(parents=True, exist_ok=True)
    return dirs


def write_run_outputs(result: RunResult, settings: Settings):
    dirs = output_dirs(settings.outdir)
    tag = result.tag

    result.structural.table.to_csv(dirs["aic"] / f"{tag}.csv", index=False)
    result.structural_summary.to_csv(dirs["summary"] / f"{tag}.csv", index=False)

    if result.mechanism is not None:
        result.mechanism.table.to_csv(dirs["aic"] / f"{tag}_mech.csv", index=False)
        top_model_summary(result.mechanism).to_csv(dirs["summary"] / f"{tag}_mech.csv", index=False)
    if result.refined is not None:
        result.refined.table.to_csv(dirs["aic"] / f"{tag}_mech_pretend.csv", index=False)
        result.selected_summary.to_csv(dirs["summary"] / f"{tag}_mech_pretend.csv", index=False)

    if not settings.make_plots:
        return

    # imported lazily so --no-plots runs never touch matplotlib
    from model_diagnostics import plot_ranking_table, save_diagnostics_pdf

    save_diagnostics_pdf(result.structural.ranked_models(), str(dirs["diagnostics"] / f"{tag}.pdf"), prefix=f"{tag} ")
    if result.mechanism is not None:
        save_diagnostics_pdf(
            result.mechanism.ranked_models(), str(dirs["diagnostics"] / f"{tag}_mech.pdf"), prefix=f"{tag} "
        )
        plot_ranking_table(result.mechanism, str(dirs["aic_plots"] / f"{tag}.pdf"), title=f"{tag} mechanism models")
    if result.refined is not None:
        save_diagnostics_pdf(
            result.refined.ranked_models(), str(dirs["diagnostics"] / f"{tag}_mech_pretend.pdf"), prefix=f"{tag} "
        )
        plot_ranking_table(
            result.refined, str(dirs["aic_plots"] / f"{tag}_pretend.pdf"),
            title=f"{tag} mechanism models, pretending variables removed",
        )


def execute_run(species: str, response: str, data: pd.DataFrame, settings: Settings) -> RunResult:
    """run_one + write_run_outputs, with any failure contained to this run."""
    try:
        result = run_one(species, response, data, settings)
        write_run_outputs(result, settings)
        return result
    except Exception as e:
        logger.exception("[%s_%s] run failed", species, response)
        return RunResult(species=species, response=response, status=STATUS_FAILED,
                         error=f"{type(e).__name__}: {e}")


def run_all(data_by_species: dict, settings: Settings):
    tasks = [(sp, r) for sp in settings.species for r in settings.responses]
    results = []

    if settings.jobs > 1:
        with ProcessPoolExecutor(max_workers=settings.jobs) as ex:
            futures = [
                ex.submit(execute_run, sp, r, data_by_species.get(sp, pd.DataFrame()), settings)
                for sp, r in tasks
            ]
            results = [f.result() for f in futures]
    else:
        for sp, r in tasks:
            print("\n====================================")
            print(f"   MODELLING: {sp} %{r}")
            print("====================================\n")
            results.append(execute_run(sp, r, data_by_species.get(sp, pd.DataFrame()), settings))

    summary = pd.DataFrame([res.summary_row() for res in results])
    settings.outdir.mkdir(parents=True, exist_ok=True)
    summary.to_csv(settings.outdir / "run_summary.csv", index=False)
    return results, summary


# ----------------------------
# Main
# ----------------------------
def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    settings = build_settings(get_config(args.config), args)
    logger.info("Settings: %s", settings)

    df = load_stoich_table(settings.stoich_path, settings.gdd_path, settings.evi_path, settings.ndmi_path)
    data_by_species = split_by_species(df, settings.species)

    results, summary = run_all(data_by_species, settings)

    print("\n=== Run summary ===")
    print(summary[["species", "response", "status", "structural_top", "selected_top", "pretending"]].to_string(index=False))
    print("\nSaved to:", os.path.abspath(settings.outdir))

    n_failed = sum(1 for r in results if r.status == STATUS_FAILED)
    if n_failed:
        logger.warning("%d of %d runs failed; see run_summary.csv", n_failed, len(results))
    return 1 if n_failed == len(results) else 0


if __name__ == "__main__":
    raise SystemExit(main())
