"""
Figure wrapper used by all pbsummary plots.

Plot functions return a Figure so that callers save, close and annotate
figures the same way regardless of what is drawn.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

import matplotlib.figure
import matplotlib.pyplot as plt

OutputFormat = Literal["png", "pdf", "svg"]


@dataclass
class Figure:
    """
    Matplotlib figure with a title, description and metadata.

    Attributes
    ----------
    fig : matplotlib.figure.Figure
        The underlying figure object
    title : str
        Human-readable title for the figure
    description : str
        Longer description explaining what the figure shows
    metadata : dict
        Plot parameters and counts. Written into PNG files as text chunks

    Examples
    --------
    >>> fig = plot_tier_counts(result.to_dataframe(), 0.05)
    >>> fig.save("leiden_0_5_tiers.pdf")
    """
    fig: matplotlib.figure.Figure
    title: str
    description: str = ""
    metadata: dict = field(default_factory=dict)

    def save(
        self,
        path: Path | str,
        format: Optional[OutputFormat] = None,
        dpi: int = 300,
        **kwargs
    ) -> Path:
        """
        Save figure to file.

        Parameters
        ----------
        path : Path or str
            Output file path. Format inferred from extension if not specified.
        format : str, optional
            Output format. If None, inferred from path extension (png when
            the extension is not recognized).
        dpi : int, default 300
            DPI for raster formats. Ignored for vector formats.

        Returns
        -------
        Path
            The path where the figure was saved.
        """
        path = Path(path)

        if format is None:
            format = path.suffix.lstrip(".").lower()
            if format not in ("png", "pdf", "svg"):
                format = "png"

        path.parent.mkdir(parents=True, exist_ok=True)
        save_kwargs = {
            "dpi": dpi,
            "bbox_inches": "tight",
            "facecolor": "white",
            "metadata": {**self._file_metadata(format), **kwargs.pop("metadata", {})},
            **kwargs
        }
        self.fig.savefig(path, format=format, **save_kwargs)
        return path

    def _file_metadata(self, format: str) -> dict:
        # pdf and svg backends reject keys outside their fixed vocabulary
        if format == "pdf":
            return {"Title": self.title, "Subject": self.description}
        info = {"Title": self.title, "Description": self.description}
        if format == "png":
            info.update({str(k): str(v) for k, v in self.metadata.items()})
        return info

    def close(self):
        """Close the figure to free memory."""
        plt.close(self.fig)
