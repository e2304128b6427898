"""
Pytest configuration and shared fixtures.

Synthetic single-cell data mimicking a hashtag-pooled knockout experiment:
samples (hashtags) belong to one condition and one sequencing lane, cells
carry a cluster label.
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from pbsummary.core.matrix import CountMatrix

# Genes 0-4 are 4x higher in KO than WT, but only in cluster "0".
N_DE_GENES = 5


def generate_count_matrix(
    n_genes: int = 60,
    n_low: int = 5,
    samples_per_condition: int = 3,
    cells_per_sample: int = 20,
    clusters: tuple[str, ...] = ("0", "1"),
    seed: int = 42,
) -> CountMatrix:
    """
    Generate a features × cells Poisson count matrix with cell metadata.

    Args:
        n_genes: Number of genes; the last ``n_low`` are barely expressed
            and fail the default expression filter
        samples_per_condition: Samples (hashtags) per condition, KO and WT
        cells_per_sample: Cells per sample within each cluster
        clusters: Cluster labels
        seed: Random seed for reproducibility

    Design:
        - Base rate per gene drawn uniformly from [3, 8] counts per cell
        - Genes 0..N_DE_GENES-1 are 4x up in KO within cluster "0" only
        - Pseudobulk counts of expressed genes are roughly 60-160
    """
    rng = np.random.RandomState(seed)

    base = rng.uniform(3, 8, size=n_genes)
    base[n_genes - n_low:] = 0.01

    samples = []
    for cond in ("KO", "WT"):
        for i in range(samples_per_condition):
            samples.append((f"{cond}{i + 1}", cond, f"L{i % 2 + 1}"))

    columns = []
    rows = []
    for cluster in clusters:
        for sample, cond, lane in samples:
            rate = base.copy()
            if cluster == "0" and cond == "KO":
                rate[:N_DE_GENES] *= 4
            for c in range(cells_per_sample):
                columns.append(rng.poisson(rate))
                rows.append({
                    'cell_id': f"{sample}_{cluster}_{c:03d}",
                    'sample': sample,
                    'condition': cond,
                    'lane': lane,
                    'leiden_0.5': cluster,
                    'leiden_0.1': "all",
                })

    metadata = pd.DataFrame(rows).set_index('cell_id')
    return CountMatrix(
        counts=np.column_stack(columns).astype(float),
        feature_ids=pd.Index([f"ENSG{i:05d}" for i in range(n_genes)]),
        cell_ids=metadata.index,
        cell_metadata=metadata,
    )


def generate_cell_metadata(
    conditions: tuple[str, ...] = ("WT", "KO1", "KO2"),
    samples_per_condition: int = 4,
    n_lanes: int = 2,
    cells_per_sample: int = 400,
    seed: int = 7,
) -> pd.DataFrame:
    """
    Generate per-cell metadata with cluster labels for abundance tests.

    Cluster "A" makes up 10% of WT cells and 35% of KO1 cells; KO2 matches
    WT. Lanes shift all proportions so that the batch effect is visible.
    """
    rng = np.random.RandomState(seed)
    clusters = np.array(["A", "B", "C", "D"])
    base = {
        "WT": np.array([0.10, 0.30, 0.30, 0.30]),
        "KO1": np.array([0.35, 0.25, 0.20, 0.20]),
        "KO2": np.array([0.10, 0.30, 0.30, 0.30]),
    }

    rows = []
    for cond in conditions:
        for i in range(samples_per_condition):
            sample = f"{cond}_{i + 1}"
            lane = f"L{i % n_lanes + 1}"
            probs = base[cond] * np.exp(rng.normal(0, 0.15, size=4))
            if lane == "L2":
                probs = probs * np.array([1.4, 1.0, 0.8, 1.0])
            probs = probs / probs.sum()
            labels = rng.choice(clusters, size=cells_per_sample, p=probs)
            for c, label in enumerate(labels):
                rows.append({
                    'cell_id': f"{sample}_{c:04d}",
                    'sample': sample,
                    'condition': cond,
                    'lane': lane,
                    'cluster': label,
                })
    return pd.DataFrame(rows).set_index('cell_id')


@pytest.fixture
def count_matrix():
    """Two clusters, 3 KO + 3 WT samples, 20 cells per sample and cluster."""
    return generate_count_matrix()


@pytest.fixture
def cell_metadata():
    """Three conditions × 4 samples across 2 lanes, 400 cells per sample."""
    return generate_cell_metadata()


@pytest.fixture
def raw_records():
    """Raw per-feature records as a test oracle would return them."""
    return [
        {'feature_id': 'g1', 'p_value': 0.0, 'adjusted_p_value': 0.0, 'effect_size': 2.0},
        {'feature_id': 'g2', 'p_value': 0.2, 'adjusted_p_value': 0.3, 'effect_size': -0.5},
        {'feature_id': 'g3', 'p_value': 0.001, 'adjusted_p_value': 0.008, 'effect_size': -1.2},
        {'feature_id': 'g4', 'p_value': 0.03, 'adjusted_p_value': 0.07, 'effect_size': 0.8},
    ]
