"""Normalization, variable-gene selection and scaling.

Layers written to the AnnData:

- ``counts``: raw counts (kept from loading)
- ``lognorm``: library-size normalized, log1p transformed (also ``.raw``)
- ``scaled``: per-gene z-scores (also ``X``)
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import NormalizationConfig


class Normalizer:
    """Log-normalize, select variable genes and scale.

    Parameters
    ----------
    config : NormalizationConfig
        Normalization configuration

    Example
    -------
    >>> norm = Normalizer(NormalizationConfig(n_top_genes=2000))
    >>> norm.normalize(adata)
    >>> hvgs = norm.select_variable_genes(adata)
    >>> norm.scale(adata)
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NormalizationConfig()
        self.logger = logger or logging.getLogger(__name__)

    def normalize(self, adata) -> None:
        """Normalize each cell to ``target_sum`` counts and log1p transform."""
        import scanpy as sc

        if "counts" not in adata.layers:
            adata.layers["counts"] = adata.X.copy()

        sc.pp.normalize_total(adata, target_sum=self.config.target_sum)
        sc.pp.log1p(adata)
        adata.layers["lognorm"] = adata.X.copy()
        adata.raw = adata
        self.logger.info(
            "Log-normalized %d cells to %.0f counts per cell",
            adata.n_obs,
            self.config.target_sum,
        )

    def select_variable_genes(self, adata) -> List[str]:
        """Flag highly variable genes in ``var["highly_variable"]``.

        Returns
        -------
        List[str]
            Variable genes, most variable first
        """
        import scanpy as sc

        cfg = self.config
        n_top = min(cfg.n_top_genes, adata.n_vars)
        if cfg.flavor.startswith("seurat_v3"):
            if "counts" not in adata.layers:
                raise KeyError(f"flavor '{cfg.flavor}' needs raw counts in layers['counts']")
            sc.pp.highly_variable_genes(
                adata, flavor=cfg.flavor, n_top_genes=n_top, layer="counts"
            )
            rank_col = "variances_norm"
        else:
            sc.pp.highly_variable_genes(adata, flavor=cfg.flavor, n_top_genes=n_top)
            rank_col = "dispersions_norm"

        hvg = adata.var[adata.var["highly_variable"]]
        ordered = hvg.sort_values(rank_col, ascending=False, kind="stable").index.tolist()
        self.logger.info(
            "Selected %d variable genes (%s); top 10: %s",
            len(ordered),
            cfg.flavor,
            ", ".join(ordered[:10]),
        )
        return ordered

    def scale(self, adata) -> None:
        """Z-score every gene; result stored in ``layers["scaled"]`` and X."""
        import scanpy as sc

        sc.pp.scale(adata, max_value=self.config.max_value)
        adata.layers["scaled"] = adata.X.copy()
        self.logger.info("Scaled %d genes", adata.n_vars)

    def run(self, adata) -> List[str]:
        """Normalize, select variable genes and scale."""
        self.normalize(adata)
        genes = self.select_variable_genes(adata)
        self.scale(adata)
        return genes
