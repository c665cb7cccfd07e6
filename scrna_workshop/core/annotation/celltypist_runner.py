"""Annotation with pre-trained CellTypist models.

CellTypist expects log-normalized (10k) expression; the engine builds a
temporary AnnData from the configured layer (or ``.raw``) so the caller's
object is never modified.
"""

from __future__ import annotations

import logging
from typing import Optional

import pandas as pd

from .config import CellTypistConfig


class CellTypistAnnotator:
    """Predict cell types with a pre-trained CellTypist model.

    Example:
        >>> annotator = CellTypistAnnotator(CellTypistConfig(model="Immune_All_Low.pkl"))
        >>> table = annotator.annotate(adata, over_clustering="leiden")
        >>> table["majority_voting"].value_counts()
    """

    def __init__(
        self,
        config: Optional[CellTypistConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or CellTypistConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._model = None

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import celltypist  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "CellTypist annotation requires celltypist. "
                "Install with: pip install celltypist"
            )

    def load_model(self):
        """Download (if not cached) and load the configured model."""
        self._check_dependencies()
        from celltypist import models

        if self._model is None:
            self.logger.info("Loading CellTypist model %s", self.config.model)
            models.download_models(model=self.config.model, force_update=False)
            self._model = models.Model.load(model=self.config.model)
        return self._model

    def _query(self, adata):
        """AnnData holding log-normalized expression in X."""
        import anndata as ad

        layer = self.config.layer
        if layer and layer in adata.layers:
            X = adata.layers[layer]
            var = adata.var[[]].copy()
        elif adata.raw is not None:
            self.logger.warning(
                "Layer '%s' not found; using adata.raw for CellTypist", layer
            )
            X = adata.raw.X
            var = adata.raw.var[[]].copy()
        else:
            raise KeyError(
                f"CellTypist needs log-normalized expression: layer '{layer}' "
                "not found and adata.raw is empty"
            )
        return ad.AnnData(X=X, obs=adata.obs.copy(), var=var)

    def annotate(self, adata, over_clustering: Optional[str] = None) -> pd.DataFrame:
        """Run CellTypist on every cell.

        Args:
            adata: AnnData with log-normalized expression
            over_clustering: obs column used for majority voting

        Returns:
            DataFrame indexed by cell with ``predicted_labels``,
            ``majority_voting`` (when voting ran) and ``conf_score``.
        """
        import celltypist

        model = self.load_model()
        query = self._query(adata)

        majority_voting = self.config.majority_voting
        if majority_voting and over_clustering and over_clustering not in query.obs:
            raise KeyError(f"Cluster key '{over_clustering}' not found in adata.obs")

        self.logger.info(
            "Running CellTypist on %d cells (majority_voting=%s)",
            query.n_obs,
            majority_voting,
        )
        predictions = celltypist.annotate(
            query,
            model=model,
            majority_voting=majority_voting,
            over_clustering=over_clustering if majority_voting else None,
        )

        labels = predictions.predicted_labels
        table = pd.DataFrame(index=adata.obs_names)
        table["predicted_labels"] = labels["predicted_labels"].astype(str).to_numpy()
        if "majority_voting" in labels:
            table["majority_voting"] = labels["majority_voting"].astype(str).to_numpy()
        table["conf_score"] = predictions.probability_matrix.max(axis=1).to_numpy()

        self.logger.info(
            "CellTypist predicted %d distinct labels", table["predicted_labels"].nunique()
        )
        return table
