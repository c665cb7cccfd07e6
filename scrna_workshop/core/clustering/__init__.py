"""Clustering module for cell population identification.

Provides PCA, Leiden clustering, parameter sweeps and cluster marker
detection.

Example Usage
-------------
>>> from scrna_workshop.core.clustering import (
...     ClusteringEngine, MarkerRunner, ClusteringConfig, MarkerConfig,
... )
>>> engine = ClusteringEngine(ClusteringConfig())
>>> engine.run_pca(adata)
>>> result = engine.run_clustering(adata)
>>> markers = MarkerRunner(MarkerConfig()).find_all_markers(adata, "leiden")
"""

from .config import ClusteringConfig, MarkerConfig
from .engine import ClusteringEngine, ClusteringResult
from .markers import MARKER_COLUMNS, MarkerRunner, rank_genes, tidy_rank_genes

__all__ = [
    # Config
    "ClusteringConfig",
    "MarkerConfig",
    # Engine
    "ClusteringEngine",
    "ClusteringResult",
    # Markers
    "MARKER_COLUMNS",
    "MarkerRunner",
    "rank_genes",
    "tidy_rank_genes",
]
