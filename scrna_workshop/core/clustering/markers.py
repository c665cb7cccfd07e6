"""Cluster marker detection.

Wraps ``scanpy.tl.rank_genes_groups`` (one group vs the rest) and turns
its result into long tables with one row per cluster and gene.
"""

from typing import Any, Optional
import logging

import pandas as pd

from .config import MarkerConfig

MARKER_COLUMNS = [
    "cluster",
    "gene",
    "score",
    "avg_log2FC",
    "pval",
    "pval_adj",
    "pct_in",
    "pct_out",
]

_RENAME = {
    "names": "gene",
    "scores": "score",
    "logfoldchanges": "avg_log2FC",
    "pvals": "pval",
    "pvals_adj": "pval_adj",
    "pct_nz_group": "pct_in",
    "pct_nz_reference": "pct_out",
}


def tidy_rank_genes(adata: Any, key: str, group: str) -> pd.DataFrame:
    """rank_genes_groups result for one group with marker column names."""
    import scanpy as sc

    df = sc.get.rank_genes_groups_df(adata, group=str(group), key=key)
    df = df.dropna(subset=["names"]).rename(columns=_RENAME)
    df["gene"] = df["gene"].astype(str)
    return df[[c for c in MARKER_COLUMNS if c in df.columns]].reset_index(drop=True)


def rank_genes(
    adata: Any,
    groupby: str,
    groups: Any = "all",
    reference: str = "rest",
    layer: Optional[str] = "lognorm",
    method: str = "wilcoxon",
    tie_correct: bool = True,
    key_added: str = "rank_genes_groups",
) -> str:
    """Run rank_genes_groups over every gene and return its uns key."""
    import scanpy as sc

    if layer and layer not in adata.layers:
        raise KeyError(f"Layer '{layer}' not found in adata.layers")

    kwargs = {"tie_correct": tie_correct} if method == "wilcoxon" else {}
    sc.tl.rank_genes_groups(
        adata,
        groupby=groupby,
        groups=groups,
        reference=reference,
        method=method,
        n_genes=adata.n_vars,
        layer=layer,
        use_raw=False,
        pts=True,
        key_added=key_added,
        **kwargs,
    )
    return key_added


class MarkerRunner:
    """Find marker genes for every cluster.

    Parameters
    ----------
    config : MarkerConfig, optional
        Marker configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> runner = MarkerRunner(MarkerConfig(only_pos=True))
    >>> markers = runner.find_all_markers(adata, cluster_key="leiden")
    >>> heatmap_genes = runner.top_markers(markers)["gene"].unique()
    """

    def __init__(
        self,
        config: Optional[MarkerConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MarkerConfig()
        self.logger = logger or logging.getLogger(__name__)

    def find_all_markers(self, adata: Any, cluster_key: str) -> pd.DataFrame:
        """Test every cluster against all other cells.

        Parameters
        ----------
        adata : AnnData
            AnnData with log-normalized expression and cluster labels
        cluster_key : str
            Column name in adata.obs with cluster labels

        Returns
        -------
        pd.DataFrame
            Long table with MARKER_COLUMNS, sorted by cluster then by
            descending test statistic
        """
        if cluster_key not in adata.obs:
            raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")

        cfg = self.config
        clusters = adata.obs[cluster_key].astype("category").cat.categories
        self.logger.info(
            "Finding markers for %d clusters (%s on layer %s)",
            len(clusters),
            cfg.method,
            cfg.layer,
        )

        key = rank_genes(
            adata,
            groupby=cluster_key,
            layer=cfg.layer,
            method=cfg.method,
            tie_correct=cfg.tie_correct,
            key_added=f"markers_{cluster_key}",
        )

        frames = []
        for cluster in clusters:
            df = tidy_rank_genes(adata, key, cluster)
            if cfg.only_pos:
                df = df[df["avg_log2FC"] > 0]
            df.insert(0, "cluster", str(cluster))
            frames.append(df)

        markers = pd.concat(frames, ignore_index=True)
        markers["cluster"] = pd.Categorical(
            markers["cluster"], categories=[str(c) for c in clusters]
        )
        self.logger.info("Found %d marker rows", len(markers))
        return markers

    def top_markers(
        self,
        markers: pd.DataFrame,
        n: Optional[int] = None,
        min_log2fc: Optional[float] = None,
    ) -> pd.DataFrame:
        """First ``n`` markers per cluster with avg_log2FC above ``min_log2fc``."""
        n = n if n is not None else self.config.n_top
        min_log2fc = min_log2fc if min_log2fc is not None else self.config.min_log2fc

        strong = markers[markers["avg_log2FC"] > min_log2fc]
        top = strong.groupby("cluster", observed=True, sort=True).head(n)
        return top.reset_index(drop=True)
