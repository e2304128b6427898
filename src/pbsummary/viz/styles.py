"""
Consistent visual styles for summary plots.

Domain Conventions
------------------
- Up in the test condition = Teal (#0d9488), down = Orange (#f97316)
- Not significant = Slate (#94a3b8)
- Failed / degenerate groups = Gray hatching
- All colorblind-safe palettes
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import matplotlib.pyplot as plt
import seaborn as sns


@dataclass(frozen=True)
class Palette:
    """
    Color palette for summary plots.

    Attributes
    ----------
    up : str
        Features with positive effect (higher in the test condition)
    down : str
        Features with negative effect
    neutral : str
        Features above the threshold
    failed : str
        Groups whose test failed or was degenerate
    threshold : str
        Threshold reference lines
    """
    up: str = "#0d9488"          # Teal-600
    down: str = "#f97316"        # Orange-500
    neutral: str = "#94a3b8"     # Slate-400
    failed: str = "#9ca3af"      # Gray-400
    threshold: str = "#64748b"   # Slate-500


PALETTES = {
    "default": Palette(),
    "colorblind": Palette(
        up="#0077bb",
        down="#ee7733",
        neutral="#bbbbbb",
        failed="#999999",
        threshold="#555555",
    ),
}


def configure_style(
    style: Literal["paper", "notebook"] = "paper",
    palette: str | Palette = "default",
    font_scale: float = 1.0
) -> Palette:
    """
    Configure matplotlib and seaborn for consistent visualization style.

    Parameters
    ----------
    style : {"paper", "notebook"}
        Target medium: publication figures or interactive exploration.
    palette : str or Palette
        Color palette name or Palette instance.
    font_scale : float
        Multiplier for all font sizes.

    Returns
    -------
    Palette
        The configured color palette.
    """
    if isinstance(palette, str):
        palette = PALETTES.get(palette, PALETTES["default"])

    base_params = {
        "figure.facecolor": "white",
        "axes.facecolor": "white",
        "axes.edgecolor": "#333333",
        "axes.labelcolor": "#333333",
        "text.color": "#333333",
        "xtick.color": "#333333",
        "ytick.color": "#333333",
        "axes.spines.top": False,
        "axes.spines.right": False,
        "legend.frameon": False,
    }

    if style == "paper":
        style_params = {
            "font.size": 10 * font_scale,
            "axes.titlesize": 11 * font_scale,
            "axes.labelsize": 10 * font_scale,
            "xtick.labelsize": 9 * font_scale,
            "ytick.labelsize": 9 * font_scale,
            "legend.fontsize": 9 * font_scale,
            "savefig.dpi": 300,
        }
        context = "paper"
    else:  # notebook
        style_params = {
            "font.size": 11 * font_scale,
            "axes.titlesize": 12 * font_scale,
            "axes.labelsize": 11 * font_scale,
            "xtick.labelsize": 10 * font_scale,
            "ytick.labelsize": 10 * font_scale,
            "legend.fontsize": 10 * font_scale,
            "savefig.dpi": 150,
        }
        context = "notebook"

    sns.set_theme(style="whitegrid", context=context, font_scale=font_scale)
    plt.rcParams.update({**base_params, **style_params})

    return palette
