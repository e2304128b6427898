"""
Plots of cross-group summaries and per-group results.

plot_tier_counts:
    "Which clusters respond to the knockout, and in which direction?"
    Mirrored bars per group: features up above zero, down below zero, at
    one significance tier. Failed and degenerate groups are marked so that
    a missing bar is never mistaken for "no effect".

plot_volcano:
    "What drives the response in this cluster?"
    Effect size against -log10 adjusted p-value, top hits labelled with
    display names.
"""

from __future__ import annotations

from typing import Mapping, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from pbsummary.core.names import map_names
from pbsummary.core.results import FeatureResult, results_to_frame, tier_column
from pbsummary.viz.core import Figure
from pbsummary.viz.styles import Palette, configure_style

__all__ = ['plot_tier_counts', 'plot_volcano']


def plot_tier_counts(
    summary: pd.DataFrame,
    threshold: float,
    basis: str = "padj",
    title: str | None = None,
    palette: str | Palette = "default",
    figsize: tuple[float, float] | None = None,
) -> Figure:
    """
    Up/down feature counts per group at one threshold.

    Args:
        summary: Output of ``AggregationResult.to_dataframe()``
        threshold: Tier to show; must be one of the summarized thresholds
        basis: "padj" for adjusted p-value tiers, "pvalue" for raw
        title: Plot title
        palette: Palette name or instance

    Raises:
        KeyError: If the summary has no columns for ``threshold``
    """
    palette = configure_style("paper", palette=palette)
    stem = tier_column(basis, threshold)
    up_col, down_col = f"{stem}_up", f"{stem}_down"
    if up_col not in summary.columns or down_col not in summary.columns:
        raise KeyError(f"Summary has no tier columns for {basis} < {threshold:g}")

    labels = summary['group_id'].astype(str).tolist()
    up = pd.to_numeric(summary[up_col], errors='coerce').fillna(0).to_numpy()
    down = pd.to_numeric(summary[down_col], errors='coerce').fillna(0).to_numpy()
    failed = (summary['status'] != 'ok').to_numpy()

    if figsize is None:
        figsize = (max(4.0, 0.45 * len(labels) + 1.5), 4.0)
    fig, ax = plt.subplots(figsize=figsize)

    x = np.arange(len(labels))
    ax.bar(x, up, color=palette.up, edgecolor="white", label="Up")
    ax.bar(x, -down, color=palette.down, edgecolor="white", label="Down")
    ax.axhline(0, color=palette.threshold, linewidth=0.8)

    if failed.any():
        ax.scatter(x[failed], np.zeros(failed.sum()), marker="x", color=palette.failed,
                   zorder=3, label="Failed / degenerate")

    ax.set_xticks(x)
    ax.set_xticklabels(labels, rotation=45, ha="right")
    ax.set_xlim(-0.75, len(labels) - 0.25)
    ax.set_ylabel(f"Features ({basis} < {threshold:g})")
    ax.set_title(title or f"Significant features per group ({basis} < {threshold:g})")
    ax.legend(loc="upper right")
    fig.tight_layout()

    return Figure(
        fig=fig,
        title=title or "Tier counts",
        description=f"Features up/down at {basis} < {threshold:g} per group",
        metadata={
            "threshold": threshold,
            "basis": basis,
            "n_groups": len(labels),
            "n_failed": int(failed.sum()),
        },
    )


def plot_volcano(
    details: Sequence[FeatureResult] | pd.DataFrame,
    threshold: float = 0.05,
    names: Mapping[str, str] | None = None,
    label_top: int = 10,
    title: str | None = None,
    palette: str | Palette = "default",
    figsize: tuple[float, float] = (5.0, 4.5),
) -> Figure:
    """Volcano plot of one group's normalized results."""
    palette = configure_style("paper", palette=palette)
    df = details.copy() if isinstance(details, pd.DataFrame) else results_to_frame(details)

    df['neg_log10_padj'] = -np.log10(df['adjusted_p_value'].astype(float))
    significant = df['adjusted_p_value'] < threshold
    df['category'] = np.where(
        significant & (df['effect_size'] > 0), "Up",
        np.where(significant & (df['effect_size'] < 0), "Down", "n.s."),
    )

    fig, ax = plt.subplots(figsize=figsize)
    sns.scatterplot(
        data=df,
        x='effect_size',
        y='neg_log10_padj',
        hue='category',
        hue_order=["Up", "Down", "n.s."],
        palette={"Up": palette.up, "Down": palette.down, "n.s.": palette.neutral},
        s=12,
        linewidth=0,
        ax=ax,
    )
    ax.axhline(-np.log10(threshold), color=palette.threshold, linestyle="--", linewidth=1)
    ax.axvline(0, color=palette.threshold, linestyle=":", linewidth=1)

    top = df[significant].nsmallest(label_top, 'adjusted_p_value')
    for label, (_, row) in zip(map_names(top['feature_id'], names), top.iterrows()):
        ax.annotate(label, (row['effect_size'], row['neg_log10_padj']),
                    xytext=(3, 3), textcoords="offset points", fontsize=7)

    ax.set_xlabel("Effect size")
    ax.set_ylabel("-log10 adjusted p-value")
    if title:
        ax.set_title(title)
    ax.legend(title=None, loc="upper left")
    fig.tight_layout()

    return Figure(
        fig=fig,
        title=title or "Volcano",
        description=f"Effect size vs adjusted p-value, threshold {threshold:g}",
        metadata={
            "threshold": threshold,
            "n_features": len(df),
            "n_significant": int(significant.sum()),
        },
    )
