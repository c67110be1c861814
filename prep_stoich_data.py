#!/usr/bin/env python3
"""
Assemble the stoichiometry modelling table.

Inputs:
- stoichiometry CSV:  PlotName, Species, Site, Year, C, N, P
- GDD CSV:            PlotName, Species, Year, GDD
- EVI CSV:            PlotName, Year, EVI
- NDMI CSV:           PlotName, Year, NDMI

GDD is left-joined on (PlotName, Species, Year) because it is species specific.
EVI and NDMI are inner-joined on (PlotName, Year); the index rasters were
sampled once per plot so several species share the same value.

Rows without a GDD match are dropped before any modelling and the count is
logged. Year is converted to a categorical (two field seasons, not a trend).
"""

import argparse
import logging
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

STOICH_COLS = ["PlotName", "Species", "Site", "Year", "C", "N", "P"]
GDD_COLS = ["PlotName", "Species", "Year", "GDD"]
EVI_COLS = ["PlotName", "Year", "EVI"]
NDMI_COLS = ["PlotName", "Year", "NDMI"]

RESPONSES = ["C", "N", "P"]
COVARIATES = ["GDD", "EVI", "NDMI"]


def require_cols(df, cols, name="dataframe"):
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"{name}: missing required columns: {missing}\nFound: {list(df.columns)}")


def _dedupe(df: pd.DataFrame, key, name) -> pd.DataFrame:
    dup = df.duplicated(subset=key, keep="last")
    if dup.any():
        logger.warning("%s: %d duplicated %s rows, keeping the last", name, int(dup.sum()), key)
        df = df[~dup]
    return df


def join_covariates(stoich: pd.DataFrame, gdd: pd.DataFrame, evi: pd.DataFrame, ndmi: pd.DataFrame) -> pd.DataFrame:
    """
    Join GDD, EVI and NDMI onto the stoichiometry rows.

    The output has at most as many rows as `stoich`; rows lose their place only
    through the inner joins (plot missing from a raster) or the GDD filter.
    """
    require_cols(stoich, STOICH_COLS, name="stoich")
    require_cols(gdd, GDD_COLS, name="gdd")
    require_cols(evi, EVI_COLS, name="evi")
    require_cols(ndmi, NDMI_COLS, name="ndmi")

    # join keys must agree in dtype, year is compared as an integer season
    frames = []
    for df in (stoich, gdd, evi, ndmi):
        df = df.copy()
        df["Year"] = pd.to_numeric(df["Year"], errors="coerce").astype("Int64")
        df["PlotName"] = df["PlotName"].astype(str)
        if "Species" in df.columns:
            df["Species"] = df["Species"].astype(str)
        frames.append(df)
    stoich, gdd, evi, ndmi = frames

    bad_year = stoich["Year"].isna()
    if bad_year.any():
        logger.warning("stoich: dropped %d rows with a non-numeric Year", int(bad_year.sum()))
        stoich = stoich[~bad_year]

    gdd = _dedupe(gdd[GDD_COLS], ["PlotName", "Species", "Year"], "gdd")
    evi = _dedupe(evi[EVI_COLS], ["PlotName", "Year"], "evi")
    ndmi = _dedupe(ndmi[NDMI_COLS], ["PlotName", "Year"], "ndmi")

    n_in = len(stoich)
    out = (
        stoich[STOICH_COLS]
        .merge(gdd, on=["PlotName", "Species", "Year"], how="left")
        .merge(evi, on=["PlotName", "Year"], how="inner")
        .merge(ndmi, on=["PlotName", "Year"], how="inner")
    )
    n_joined = len(out)
    if n_joined < n_in:
        logger.info("Dropped %d rows with no EVI/NDMI match for their plot", n_in - n_joined)

    # unparseable tokens ("n/a", ".") must become NaN before the covariate filter
    for col in RESPONSES + COVARIATES:
        was_na = out[col].isna()
        out[col] = pd.to_numeric(out[col], errors="coerce")
        n_bad = int((out[col].isna() & ~was_na).sum())
        if n_bad:
            logger.warning("%s: %d non-numeric values treated as missing", col, n_bad)

    out = drop_missing_covariates(out)

    out["Year"] = out["Year"].astype(int).astype(str).astype("category")
    out["Site"] = out["Site"].astype(str)
    return out.reset_index(drop=True)


def drop_missing_covariates(df: pd.DataFrame, cols=None) -> pd.DataFrame:
    cols = cols or COVARIATES
    mask = df[cols].isna().any(axis=1)
    if mask.any():
        logger.info(
            "Dropped %d of %d rows missing covariates %s",
            int(mask.sum()), len(df), cols,
        )
    return df[~mask].copy()


def load_stoich_table(stoich_path, gdd_path, evi_path, ndmi_path) -> pd.DataFrame:
    paths = {"stoich": stoich_path, "gdd": gdd_path, "evi": evi_path, "ndmi": ndmi_path}
    tables = {}
    for name, path in paths.items():
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"{name} input not found: {path}")
        tables[name] = pd.read_csv(path)
        logger.debug("Read %s: %d rows from %s", name, len(tables[name]), path)

    df = join_covariates(tables["stoich"], tables["gdd"], tables["evi"], tables["ndmi"])
    logger.info("Modelling table: %d rows, species %s", len(df), sorted(df["Species"].unique()))
    return df


def split_by_species(df: pd.DataFrame, species=None) -> dict:
    """Return {species code: rows}, in the order requested."""
    present = sorted(df["Species"].unique())
    species = list(species) if species else present
    out = {}
    for sp in species:
        sub = df[df["Species"] == sp].copy()
        if sub.empty:
            logger.warning("No rows for species %s (present: %s)", sp, present)
        out[sp] = sub.reset_index(drop=True)
    return out


def main():
    ap = argparse.ArgumentParser(description="Join stoichiometry data with GDD/EVI/NDMI covariates.")
    ap.add_argument("--stoich", type=str, default="input/Stoich_2016_2017.csv")
    ap.add_argument("--gdd", type=str, default="input/GDD_2016_2017_R.csv")
    ap.add_argument("--evi", type=str, default="input/EVI_2016_2017_R.csv")
    ap.add_argument("--ndmi", type=str, default="input/NDMI_2016_2017_R.csv")
    ap.add_argument("--out", type=str, default="output/stoich_joined.csv", help="Output CSV path")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    df = load_stoich_table(args.stoich, args.gdd, args.evi, args.ndmi)

    outpath = Path(args.out)
    outpath.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(outpath, index=False)

    print("\nWrote:", outpath.resolve())
    print("Rows:", len(df))
    print(df.groupby(["Species", "Year"], observed=True).size().to_string())


if __name__ == "__main__":
    main()
