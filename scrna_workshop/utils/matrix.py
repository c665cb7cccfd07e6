"""Expression-matrix helpers shared by the annotation methods."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse

logger = logging.getLogger(__name__)


def to_dense(matrix: Any) -> np.ndarray:
    """Return a dense float array from a dense or sparse matrix."""
    if sparse.issparse(matrix):
        return matrix.toarray().astype(float)
    return np.asarray(matrix, dtype=float)


def gene_variance(matrix: Any) -> np.ndarray:
    """Per-column variance of a dense or sparse cells x genes matrix."""
    if sparse.issparse(matrix):
        mean = np.asarray(matrix.mean(axis=0)).ravel()
        mean_sq = np.asarray(matrix.multiply(matrix).mean(axis=0)).ravel()
        return mean_sq - mean**2
    return np.asarray(matrix, dtype=float).var(axis=0)


def select_matrix(adata: Any, layer: Optional[str] = None, use_raw: bool = False):
    """Pick the expression matrix and its gene names from an AnnData.

    Parameters
    ----------
    adata : AnnData
        Input AnnData object
    layer : str, optional
        Layer to use. Falls back to X (with a warning) if absent.
    use_raw : bool
        Use adata.raw when present (takes precedence over layer)

    Returns
    -------
    Tuple[matrix, pd.Index]
        Cells x genes matrix and the matching gene names
    """
    if use_raw and adata.raw is not None:
        return adata.raw.X, adata.raw.var_names
    if layer:
        if layer in adata.layers:
            return adata.layers[layer], adata.var_names
        logger.warning("Layer '%s' not found; falling back to AnnData.X", layer)
    return adata.X, adata.var_names


def expression_frame(
    adata: Any,
    genes: Sequence[str],
    layer: Optional[str] = None,
    use_raw: bool = False,
) -> pd.DataFrame:
    """Dense genes x cells DataFrame for a subset of genes."""
    matrix, var_names = select_matrix(adata, layer=layer, use_raw=use_raw)
    positions = var_names.get_indexer(list(genes))
    if (positions < 0).any():
        absent = [g for g, p in zip(genes, positions) if p < 0]
        raise KeyError(f"Genes not found in expression matrix: {absent[:5]}")
    values = to_dense(matrix[:, positions])
    return pd.DataFrame(values.T, index=list(genes), columns=adata.obs_names)
