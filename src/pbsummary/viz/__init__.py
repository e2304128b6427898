"""
Plotting for summary tables and per-group results (matplotlib + seaborn).
"""

from pbsummary.viz.core import Figure
from pbsummary.viz.styles import PALETTES, Palette, configure_style
from pbsummary.viz.summary import plot_tier_counts, plot_volcano

__all__ = [
    'Figure',
    'Palette',
    'PALETTES',
    'configure_style',
    'plot_tier_counts',
    'plot_volcano',
]
