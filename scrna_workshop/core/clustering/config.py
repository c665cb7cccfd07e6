"""Configuration classes for clustering and marker detection."""

from dataclasses import dataclass


@dataclass
class ClusteringConfig:
    """Configuration for PCA, neighbors and Leiden clustering.

    Attributes
    ----------
    n_comps : int
        Principal components computed (for the elbow plot)
    n_pcs : int
        Principal components used for the neighborhood graph
    neighbors_k : int
        k for the neighborhood graph
    resolution : float
        Leiden resolution for clustering
    cluster_key : str
        obs column receiving the cluster labels
    random_seed : int
        Random seed for reproducibility
    compute_umap : bool
        Compute UMAP embeddings for visualization
    """

    n_comps: int = 50
    n_pcs: int = 10
    neighbors_k: int = 20
    resolution: float = 0.5
    cluster_key: str = "leiden"
    random_seed: int = 0
    compute_umap: bool = True


@dataclass
class MarkerConfig:
    """Configuration for cluster marker detection.

    Attributes
    ----------
    method : str
        Test used by rank_genes_groups (wilcoxon, t-test, ...)
    layer : str
        Layer with log-normalized expression
    only_pos : bool
        Keep only genes up-regulated in the cluster
    tie_correct : bool
        Apply tie correction for the Wilcoxon test
    n_top : int
        Markers per cluster kept for heatmaps
    min_log2fc : float
        Log2 fold-change a top marker must exceed
    """

    method: str = "wilcoxon"
    layer: str = "lognorm"
    only_pos: bool = True
    tie_correct: bool = True
    n_top: int = 5
    min_log2fc: float = 1.0
