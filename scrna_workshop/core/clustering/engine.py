"""Clustering engine for cell population identification.

Provides PCA with an elbow table, Leiden clustering on the PCA (or an
integrated) representation, and parameter sweeps over resolution and the
number of principal components.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence
import logging

import numpy as np
import pandas as pd

from .config import ClusteringConfig


@dataclass
class ClusteringResult:
    """Result from clustering operation.

    Attributes
    ----------
    n_clusters : int
        Number of clusters found
    cluster_key : str
        Key in adata.obs containing cluster assignments
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count
    use_rep : str
        Representation the neighborhood graph was built on
    """

    n_clusters: int = 0
    cluster_key: str = "leiden"
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    use_rep: str = "X_pca"


class ClusteringEngine:
    """PCA, neighbors and Leiden clustering.

    Parameters
    ----------
    config : ClusteringConfig, optional
        Clustering configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> engine = ClusteringEngine(ClusteringConfig(n_pcs=10, resolution=0.5))
    >>> engine.run_pca(adata)
    >>> result = engine.run_clustering(adata)
    >>> result.n_clusters
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy  # noqa: F401
            import igraph  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Clustering requires scanpy and igraph. "
                "Install with: pip install scanpy igraph"
            )

    def run_pca(self, adata: Any, n_comps: Optional[int] = None) -> int:
        """Run PCA on the (highly variable genes of the) scaled matrix.

        Returns
        -------
        int
            Number of components computed
        """
        import scanpy as sc

        cfg = self.config
        n_comps = n_comps if n_comps is not None else cfg.n_comps
        n_comps = min(n_comps, adata.n_obs - 1, adata.n_vars - 1)
        sc.tl.pca(
            adata, n_comps=n_comps, svd_solver="arpack", random_state=cfg.random_seed
        )
        ratios = adata.uns["pca"]["variance_ratio"]
        self.logger.info(
            "Computed %d PCs; first %d explain %.1f%% of variance",
            n_comps,
            min(cfg.n_pcs, n_comps),
            100 * float(np.sum(ratios[: cfg.n_pcs])),
        )
        return n_comps

    def elbow_table(self, adata: Any) -> pd.DataFrame:
        """Per-component standard deviation and variance ratio."""
        if "pca" not in adata.uns:
            raise KeyError("PCA not found in adata.uns; run run_pca first")
        pca = adata.uns["pca"]
        ratios = np.asarray(pca["variance_ratio"], dtype=float)
        return pd.DataFrame(
            {
                "pc": np.arange(1, len(ratios) + 1),
                "stdev": np.sqrt(np.asarray(pca["variance"], dtype=float)),
                "variance_ratio": ratios,
                "cumulative_ratio": np.cumsum(ratios),
            }
        )

    def run_clustering(
        self,
        adata: Any,
        use_rep: Optional[str] = None,
        cluster_key: Optional[str] = None,
        n_pcs: Optional[int] = None,
        resolution: Optional[float] = None,
        compute_umap: Optional[bool] = None,
    ) -> ClusteringResult:
        """Build the neighborhood graph and run Leiden clustering.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object with PCA (modified in place)
        use_rep : str, optional
            obsm key to build the graph on (e.g. ``X_pca_harmony``).
            Defaults to ``X_pca``.
        cluster_key : str, optional
            Key in adata.obs to store cluster assignments
        n_pcs : int, optional
            Number of leading components used. Uses config default if None.
        resolution : float, optional
            Leiden resolution. Uses config default if None.
        compute_umap : bool, optional
            Compute UMAP embeddings. Uses config default if None.

        Returns
        -------
        ClusteringResult
            Clustering result with cluster statistics
        """
        import scanpy as sc

        cfg = self.config
        use_rep = use_rep or "X_pca"
        cluster_key = cluster_key or cfg.cluster_key
        n_pcs = n_pcs if n_pcs is not None else cfg.n_pcs
        resolution = resolution if resolution is not None else cfg.resolution
        compute_umap = compute_umap if compute_umap is not None else cfg.compute_umap

        if use_rep not in adata.obsm:
            raise KeyError(f"Representation '{use_rep}' not found in adata.obsm")
        n_pcs = min(n_pcs, adata.obsm[use_rep].shape[1])

        self.logger.info(
            "Clustering on %s: n_pcs=%d, neighbors_k=%d, resolution=%.3f",
            use_rep,
            n_pcs,
            cfg.neighbors_k,
            resolution,
        )
        sc.pp.neighbors(
            adata,
            n_neighbors=cfg.neighbors_k,
            n_pcs=n_pcs,
            use_rep=use_rep,
            random_state=cfg.random_seed,
        )
        sc.tl.leiden(
            adata,
            resolution=resolution,
            random_state=cfg.random_seed,
            key_added=cluster_key,
            flavor="igraph",
            n_iterations=2,
            directed=False,
        )
        if compute_umap:
            sc.tl.umap(adata, random_state=cfg.random_seed)

        result = ClusteringResult(cluster_key=cluster_key, use_rep=use_rep)
        result.n_clusters = adata.obs[cluster_key].nunique()
        result.cluster_sizes = {
            str(k): int(v) for k, v in adata.obs[cluster_key].value_counts().items()
        }

        self.logger.info("Computed Leiden clustering with %d clusters", result.n_clusters)
        return result

    def resolution_sweep(
        self,
        adata: Any,
        resolutions: Sequence[float],
        use_rep: Optional[str] = None,
    ) -> pd.DataFrame:
        """Number of clusters at each Leiden resolution.

        Runs on a copy; the input's clustering is unchanged.
        """
        work = adata.copy()
        rows = []
        for resolution in resolutions:
            result = self.run_clustering(
                work,
                use_rep=use_rep,
                cluster_key="_sweep",
                resolution=resolution,
                compute_umap=False,
            )
            rows.append({"resolution": float(resolution), "n_clusters": result.n_clusters})
        return pd.DataFrame(rows, columns=["resolution", "n_clusters"])

    def dims_sweep(
        self,
        adata: Any,
        dims: Sequence[int],
        use_rep: Optional[str] = None,
    ) -> pd.DataFrame:
        """Number of clusters when using each number of leading PCs.

        Runs on a copy; the input's clustering is unchanged.
        """
        work = adata.copy()
        rows = []
        for n_pcs in dims:
            result = self.run_clustering(
                work,
                use_rep=use_rep,
                cluster_key="_sweep",
                n_pcs=n_pcs,
                compute_umap=False,
            )
            rows.append({"n_pcs": int(n_pcs), "n_clusters": result.n_clusters})
        return pd.DataFrame(rows, columns=["n_pcs", "n_clusters"])
