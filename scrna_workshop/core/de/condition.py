"""Per-cell-type differential expression between two conditions.

Cells of each type are compared across conditions with a cell-level test.
This ignores replicate structure; see ``pseudobulk`` for the replicate-aware
alternative.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from ..clustering.markers import rank_genes, tidy_rank_genes

logger = logging.getLogger(__name__)


def subset_cells(adata: Any, mask: np.ndarray, keys) -> Any:
    """Copy of the masked cells with ``keys`` re-coded as clean categoricals."""
    sub = adata[mask].copy()
    for key in keys:
        sub.obs[key] = pd.Categorical(sub.obs[key].astype(str))
    return sub


def condition_markers(
    adata: Any,
    cell_type_key: str = "cell_type",
    condition_key: str = "group_id",
    ident_1: str = "Ctrl",
    ident_2: str = "Tx",
    layer: Optional[str] = "lognorm",
    method: str = "wilcoxon",
    min_cells_per_group: int = 3,
) -> Dict[str, pd.DataFrame]:
    """Test ``ident_1`` vs ``ident_2`` within every cell type.

    Parameters
    ----------
    adata : AnnData
        AnnData with cell-type and condition labels
    cell_type_key : str
        obs column with cell-type labels
    condition_key : str
        obs column with conditions
    ident_1, ident_2 : str
        Conditions compared (fold changes are ident_1 over ident_2)
    layer : str, optional
        Layer with log-normalized expression
    method : str
        rank_genes_groups test
    min_cells_per_group : int
        Cell types with fewer cells in either condition are skipped

    Returns
    -------
    Dict[str, pd.DataFrame]
        Cell type -> gene table sorted by p-value
    """
    for key in (cell_type_key, condition_key):
        if key not in adata.obs:
            raise KeyError(f"Column '{key}' not found in adata.obs")

    conditions = adata.obs[condition_key].astype(str)
    cell_types = adata.obs[cell_type_key].astype(str)

    results: Dict[str, pd.DataFrame] = {}
    for cell_type in pd.unique(cell_types):
        mask = (cell_types == cell_type).to_numpy()
        n_1 = int(((conditions == ident_1).to_numpy() & mask).sum())
        n_2 = int(((conditions == ident_2).to_numpy() & mask).sum())
        if min(n_1, n_2) < min_cells_per_group:
            logger.warning(
                "Skipping %s: %d %s / %d %s cells (need %d each)",
                cell_type,
                n_1,
                ident_1,
                n_2,
                ident_2,
                min_cells_per_group,
            )
            continue

        sub = subset_cells(adata, mask, [condition_key])
        key = rank_genes(
            sub,
            groupby=condition_key,
            groups=[ident_1],
            reference=ident_2,
            layer=layer,
            method=method,
            key_added="condition_de",
        )
        table = tidy_rank_genes(sub, key, ident_1)
        if "pct_out" not in table:
            pts = sub.uns[key]["pts"]
            table["pct_out"] = pts[ident_2].reindex(table["gene"]).to_numpy()
        results[cell_type] = table.sort_values("pval", kind="stable").reset_index(drop=True)
        logger.info(
            "%s: %d genes tested (%d %s vs %d %s)",
            cell_type,
            len(table),
            n_1,
            ident_1,
            n_2,
            ident_2,
        )

    return results
