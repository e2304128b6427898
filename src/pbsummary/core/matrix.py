"""
Immutable snapshot of a single-cell count matrix and its cell annotations.

Analyses receive a CountMatrix explicitly instead of reading labels from a
shared, mutable object. Clustering resolutions, sample (hashtag) labels and
knockout conditions are all columns of ``cell_metadata``.

Shape Invariants:
    - counts.shape[0] == len(feature_ids)
    - counts.shape[1] == len(cell_ids)
    - cell_metadata.index equals cell_ids

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> cells = pd.Index(["AAAC-1", "AAAG-1"])
    >>> matrix = CountMatrix(
    ...     counts=np.array([[3, 0], [1, 5]]),
    ...     feature_ids=pd.Index(["Actb", "Cd3e"]),
    ...     cell_ids=cells,
    ...     cell_metadata=pd.DataFrame({'sample': ['S1', 'S2']}, index=cells),
    ... )
    >>> matrix.select_cells(matrix.cell_metadata['sample'] == 'S2').n_cells
    1
"""

from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd
from scipy import sparse

from pbsummary.core.errors import InputStructureError

__all__ = ['CountMatrix']


class CountMatrix:
    """
    Counts (features × cells) with per-cell metadata.

    ``counts`` may be a dense numpy array or a scipy sparse matrix; sparse
    input is converted to CSC so that column subsetting stays cheap.
    Operations return new instances and never modify the original.
    """

    def __init__(
        self,
        counts: np.ndarray | sparse.spmatrix,
        feature_ids: pd.Index,
        cell_ids: pd.Index,
        cell_metadata: pd.DataFrame,
    ):
        if sparse.issparse(counts):
            counts = sparse.csc_matrix(counts)
        elif not isinstance(counts, np.ndarray):
            raise TypeError(f"counts must be np.ndarray or sparse matrix, got {type(counts)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(cell_ids, pd.Index):
            raise TypeError(f"cell_ids must be pd.Index, got {type(cell_ids)}")
        if not isinstance(cell_metadata, pd.DataFrame):
            raise TypeError(f"cell_metadata must be pd.DataFrame, got {type(cell_metadata)}")

        if counts.ndim != 2:
            raise ValueError(f"counts must be 2D, got shape {counts.shape}")

        n_features, n_cells = counts.shape
        if len(feature_ids) != n_features:
            raise ValueError(
                f"feature_ids length ({len(feature_ids)}) must match counts rows ({n_features})"
            )
        if len(cell_ids) != n_cells:
            raise ValueError(
                f"cell_ids length ({len(cell_ids)}) must match counts columns ({n_cells})"
            )
        if not cell_metadata.index.equals(cell_ids):
            raise ValueError(
                "cell_metadata.index must match cell_ids exactly. "
                f"Got {len(cell_metadata.index)} metadata rows for {len(cell_ids)} cells."
            )

        self._counts = counts
        self._feature_ids = feature_ids
        self._cell_ids = cell_ids
        self._cell_metadata = cell_metadata

    @property
    def counts(self) -> np.ndarray | sparse.spmatrix:
        return self._counts

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def cell_ids(self) -> pd.Index:
        return self._cell_ids

    @property
    def cell_metadata(self) -> pd.DataFrame:
        return self._cell_metadata

    @property
    def shape(self) -> tuple[int, int]:
        return self._counts.shape

    @property
    def n_features(self) -> int:
        return self._counts.shape[0]

    @property
    def n_cells(self) -> int:
        return self._counts.shape[1]

    def require_columns(self, columns: Iterable[str]) -> None:
        """Fail fast if metadata lacks any of ``columns``."""
        missing = [c for c in columns if c not in self._cell_metadata.columns]
        if missing:
            raise InputStructureError(
                f"Cell metadata is missing required columns: {missing}. "
                f"Available: {list(self._cell_metadata.columns)}"
            )

    def select_cells(self, mask: np.ndarray | pd.Series) -> CountMatrix:
        """
        Subset by cells (columns), preserving metadata alignment.

        Args:
            mask: Boolean array/Series with one entry per cell. Series
                values are used positionally.
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)
        if len(mask) != self.n_cells:
            raise ValueError(f"mask length ({len(mask)}) must match n_cells ({self.n_cells})")

        cell_ids = self._cell_ids[mask]
        return CountMatrix(
            counts=self._counts[:, mask],
            feature_ids=self._feature_ids,
            cell_ids=cell_ids,
            cell_metadata=self._cell_metadata.loc[cell_ids],
        )

    def __repr__(self) -> str:
        return f"CountMatrix({self.n_features} features x {self.n_cells} cells)"
