"""
Diagnostic figures for fitted candidate models.

One page per model, four panels:
    1) residuals vs fitted (with lowess smooth)
    2) normal Q-Q of standardized residuals
    3) Cook's distance by observation
    4) standardized residuals vs leverage, point size = Cook's distance

plus a dredge-table figure (models x terms, shaded by Akaike weight).
These are visual checks only; nothing downstream reads them.
"""

import logging
import os

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from matplotlib.backends.backend_pdf import PdfPages
from scipy import stats

logger = logging.getLogger(__name__)

TITLE_SIZE = 9
LABEL_SIZE = 8


def _style(ax, title, xlabel, ylabel):
    ax.set_title(title, fontsize=TITLE_SIZE)
    ax.set_xlabel(xlabel, fontsize=LABEL_SIZE)
    ax.set_ylabel(ylabel, fontsize=LABEL_SIZE)
    ax.tick_params(labelsize=LABEL_SIZE)


def diagnostic_figure(fitted, title=None):
    """Four-panel diagnostic figure for one FittedModel."""
    if fitted.fitted is None or fitted.resid is None:
        raise ValueError(f"{fitted.label}: no residuals stored, fit with influence enabled")

    fv = np.asarray(fitted.fitted, dtype=float)
    resid = np.asarray(fitted.resid, dtype=float)
    std_resid = np.asarray(fitted.std_resid if fitted.std_resid is not None else resid, dtype=float)
    hat = np.asarray(fitted.hat if fitted.hat is not None else np.zeros_like(fv), dtype=float)
    cooks = np.asarray(fitted.cooks if fitted.cooks is not None else np.zeros_like(fv), dtype=float)
    cooks = np.nan_to_num(cooks)

    fig, axes = plt.subplots(2, 2, figsize=(8.5, 7.5))
    ax1, ax2, ax3, ax4 = axes.ravel()

    # residuals vs fitted; lowess needs variation in x
    if np.ptp(fv) > 0:
        sns.regplot(x=fv, y=resid, lowess=True, ax=ax1,
                    scatter_kws={"s": 12, "color": "black"}, line_kws={"color": "tab:blue"})
    else:
        ax1.scatter(fv, resid, s=12, color="black")
    ax1.axhline(0, color="red", linestyle="--", linewidth=1)
    _style(ax1, "Residual vs Fitted Plot", "Fitted values", "Residuals")

    stats.probplot(std_resid[np.isfinite(std_resid)], dist="norm", plot=ax2)
    ax2.get_lines()[1].set_color("red")
    _style(ax2, "Normal Q-Q", "Theoretical Quantiles", "Stdized Residuals")

    ax3.bar(np.arange(1, cooks.size + 1), cooks, color="0.3")
    _style(ax3, "Cook's distance", "Obs. Number", "Cook's distance")

    sizes = 10 + 140 * (cooks / cooks.max() if np.nanmax(cooks) > 0 else np.zeros_like(cooks))
    ax4.scatter(hat, std_resid, s=sizes, color="black", alpha=0.7)
    ax4.axhline(0, color="0.6", linewidth=0.8)
    _style(ax4, "Residual vs Leverage Plot", "Leverage", "Stdized Residuals")

    fig.suptitle(title or f"Diagnostic plots {fitted.label}", fontsize=11)
    fig.tight_layout()
    return fig


def save_diagnostics_pdf(fitted_models, out_pdf, prefix=""):
    """Write one diagnostic page per fitted model to a single PDF."""
    os.makedirs(os.path.dirname(out_pdf) or ".", exist_ok=True)
    n = 0
    with PdfPages(out_pdf) as pdf:
        for fm in fitted_models:
            fig = diagnostic_figure(fm, title=f"Diagnostic plots {prefix}{fm.label}")
            pdf.savefig(fig)
            plt.close(fig)
            n += 1
    logger.info("Saved %d diagnostic pages: %s", n, out_pdf)
    return out_pdf


def plot_ranking_table(result, out_pdf, title=None, top_n=None):
    """
    Model-by-term grid of a ranking table: a filled cell marks a term in the
    model, shaded by the model's Akaike weight; rows in AICc order.
    """
    table = result.table if top_n is None else result.table.head(top_n)
    terms = list(result.terms)
    if not terms:
        terms = ["(Intercept only)"]

    mat = np.full((len(table), len(terms)), np.nan, dtype=float)
    for i, row in enumerate(table.itertuples(index=False)):
        spec_terms = result.fitted[row.model].spec.terms
        for j, t in enumerate(terms):
            if t in spec_terms:
                mat[i, j] = float(row.weight)

    height = max(3.0, 0.28 * len(table) + 1.8)
    fig, ax = plt.subplots(figsize=(max(5.0, 1.1 * len(terms) + 3.0), height))
    cmap = plt.get_cmap("viridis").copy()
    cmap.set_bad("white")
    im = ax.imshow(np.ma.masked_invalid(mat), aspect="auto", cmap=cmap, vmin=0.0,
                   vmax=max(1e-9, float(table["weight"].max())))
    ax.set_xticks(np.arange(len(terms)))
    ax.set_xticklabels(terms, rotation=45, ha="right", fontsize=8)
    ax.set_yticks(np.arange(len(table)))
    ax.set_yticklabels(["{:.2f}".format(d) for d in table["delta_AICc"]], fontsize=7)
    ax.set_ylabel("delta AICc")
    ax.set_title(title or "Model selection table")
    fig.colorbar(im, ax=ax, shrink=0.9, label="Akaike weight")
    fig.tight_layout()

    os.makedirs(os.path.dirname(out_pdf) or ".", exist_ok=True)
    fig.savefig(out_pdf, bbox_inches="tight")
    plt.close(fig)
    logger.info("Saved model selection figure: %s", out_pdf)
    return out_pdf
