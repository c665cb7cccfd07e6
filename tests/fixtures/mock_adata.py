"""Mock AnnData generators for testing.

Provides small PBMC-like count matrices with planted marker genes so tests
run without downloading real data.
"""

from typing import Dict, List

import numpy as np
import pandas as pd

# Population -> marker genes highly expressed only in that population
PLANTED_MARKERS: Dict[str, List[str]] = {
    "T cells": ["CD3E", "CD3D", "IL7R"],
    "B cells": ["MS4A1", "CD79A", "CD19"],
    "Monocytes": ["CD14", "LYZ", "S100A8"],
    "NK cells": ["GNLY", "NKG7", "GZMB"],
}

MITO_GENES = ["MT-CO1", "MT-ND1"]
SHARED_GENES = ["ISG15", "ACTB"]


def create_mock_counts(
    n_cells: int = 200,
    n_background: int = 60,
    seed: int = 0,
    marker_mean: float = 30.0,
) -> "AnnData":
    """Create a raw-count AnnData with four planted populations.

    Parameters
    ----------
    n_cells : int
        Number of cells (split evenly over the populations)
    n_background : int
        Number of background genes (``GENE0``, ``GENE1``, ...)
    seed : int
        Random seed for reproducibility
    marker_mean : float
        Mean count of a marker gene inside its population

    Returns
    -------
    AnnData
        Counts in X (float32), the true population in ``obs["population"]``
    """
    import anndata as ad

    np.random.seed(seed)

    populations = list(PLANTED_MARKERS)
    marker_genes = [g for genes in PLANTED_MARKERS.values() for g in genes]
    var_names = marker_genes + MITO_GENES + SHARED_GENES + [f"GENE{i}" for i in range(n_background)]

    truth = np.array(populations)[np.arange(n_cells) % len(populations)]
    X = np.zeros((n_cells, len(var_names)), dtype=np.float32)

    col = 0
    for population, genes in PLANTED_MARKERS.items():
        inside = truth == population
        for _ in genes:
            X[inside, col] = np.random.poisson(marker_mean, size=inside.sum())
            X[~inside, col] = np.random.poisson(0.2, size=(~inside).sum())
            col += 1
    for _ in MITO_GENES:
        X[:, col] = np.random.poisson(2.0, size=n_cells)
        col += 1
    for _ in SHARED_GENES:
        X[:, col] = np.random.poisson(5.0, size=n_cells)
        col += 1
    X[:, col:] = np.random.negative_binomial(2, 0.5, size=(n_cells, n_background))

    obs = pd.DataFrame(
        {"population": pd.Categorical(truth, categories=populations)},
        index=[f"cell_{i}" for i in range(n_cells)],
    )
    var = pd.DataFrame(index=var_names)
    return ad.AnnData(X=X, obs=obs, var=var)


def create_processed_adata(
    n_cells: int = 200,
    n_background: int = 60,
    seed: int = 0,
) -> "AnnData":
    """Create a normalized, scaled and clustered AnnData.

    Layers: ``counts``, ``lognorm`` (log1p of counts per 10k) and ``scaled``
    (z-scored lognorm, also in X); ``raw`` holds lognorm. Clusters in
    ``obs["leiden"]`` ("0".."3") follow the planted populations; conditions
    in ``obs["group_id"]`` alternate Ctrl/Tx within every cluster;
    ``obs["cell_type"]`` is the population name. ``obsm`` holds random
    ``X_pca`` (10 dims) and ``X_umap`` embeddings.
    """
    adata = create_mock_counts(n_cells=n_cells, n_background=n_background, seed=seed)
    counts = adata.X.copy()
    adata.layers["counts"] = counts

    lognorm = np.log1p(counts / counts.sum(axis=1, keepdims=True) * 1e4).astype(np.float32)
    adata.layers["lognorm"] = lognorm
    adata.X = lognorm.copy()
    adata.raw = adata

    std = lognorm.std(axis=0)
    std[std == 0] = 1.0
    scaled = ((lognorm - lognorm.mean(axis=0)) / std).astype(np.float32)
    adata.layers["scaled"] = scaled
    adata.X = scaled.copy()

    codes = adata.obs["population"].cat.codes.to_numpy()
    adata.obs["leiden"] = pd.Categorical(codes.astype(str), categories=["0", "1", "2", "3"])
    rank_in_cluster = pd.Series(codes).groupby(codes).cumcount().to_numpy()
    adata.obs["group_id"] = pd.Categorical(
        np.where(rank_in_cluster % 2 == 0, "Ctrl", "Tx"), categories=["Ctrl", "Tx"]
    )
    adata.obs["cell_type"] = adata.obs["population"].astype(str)

    np.random.seed(seed + 1)
    centers = np.random.normal(scale=10, size=(4, 10))
    adata.obsm["X_pca"] = (centers[codes] + np.random.normal(size=(n_cells, 10))).astype(np.float32)
    adata.obsm["X_umap"] = adata.obsm["X_pca"][:, :2].copy()
    return adata


def create_score_matrix(
    cells: List[str],
    clusters: List[str],
    best: Dict[str, str],
    types: List[str],
    high: float = 5.0,
    low: float = 0.0,
) -> pd.DataFrame:
    """Cell type x cell score matrix where each cluster's ``best`` type scores ``high``."""
    frame = pd.DataFrame(low, index=types, columns=cells, dtype=float)
    for cell, cluster in zip(cells, clusters):
        if cluster in best:
            frame.loc[best[cluster], cell] = high
    return frame
