"""Markers of one cluster that are conserved across conditions.

The cluster is tested against all other cells separately within each
condition; genes tested in every condition are combined with the
minimum-p method.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import pandas as pd

from ...utils.stats import bh_adjust, minimump
from ..clustering.markers import rank_genes, tidy_rank_genes
from .condition import subset_cells

logger = logging.getLogger(__name__)


def find_conserved_markers(
    adata: Any,
    ident: str,
    cluster_key: str = "leiden",
    condition_key: str = "group_id",
    layer: Optional[str] = "lognorm",
    method: str = "wilcoxon",
    min_cells_per_group: int = 3,
) -> pd.DataFrame:
    """Conserved markers of cluster ``ident`` across conditions.

    Parameters
    ----------
    adata : AnnData
        AnnData with cluster and condition labels
    ident : str
        Cluster to characterise
    cluster_key : str
        obs column with cluster labels
    condition_key : str
        obs column with conditions
    layer : str, optional
        Layer with log-normalized expression
    method : str
        rank_genes_groups test
    min_cells_per_group : int
        Conditions where the cluster or the rest has fewer cells are skipped

    Returns
    -------
    pd.DataFrame
        Indexed by gene with ``<condition>_<statistic>`` columns,
        ``max_pval``, ``minimump_p`` and its BH adjustment
        ``minimump_padj``; sorted by ``minimump_p``
    """
    for key in (cluster_key, condition_key):
        if key not in adata.obs:
            raise KeyError(f"Column '{key}' not found in adata.obs")

    ident = str(ident)
    clusters = adata.obs[cluster_key].astype(str)
    if ident not in set(clusters):
        raise ValueError(f"Cluster '{ident}' not found in adata.obs['{cluster_key}']")

    conditions = adata.obs[condition_key].astype(str)
    per_condition = {}
    for condition in sorted(conditions.unique()):
        mask = (conditions == condition).to_numpy()
        n_in = int(((clusters == ident).to_numpy() & mask).sum())
        n_out = int(mask.sum()) - n_in
        if min(n_in, n_out) < min_cells_per_group:
            logger.warning(
                "Skipping condition %s: %d cells in cluster %s, %d outside",
                condition,
                n_in,
                ident,
                n_out,
            )
            continue

        sub = subset_cells(adata, mask, [cluster_key])
        key = rank_genes(
            sub,
            groupby=cluster_key,
            groups=[ident],
            layer=layer,
            method=method,
            key_added="conserved_markers",
        )
        table = tidy_rank_genes(sub, key, ident).set_index("gene")
        per_condition[condition] = table.add_prefix(f"{condition}_")

    if not per_condition:
        raise ValueError(f"Cluster '{ident}' has too few cells in every condition")

    combined = pd.concat(per_condition.values(), axis=1, join="inner")
    pval_cols = [f"{condition}_pval" for condition in per_condition]
    combined["max_pval"] = combined[pval_cols].max(axis=1)
    combined["minimump_p"] = minimump(combined[pval_cols].to_numpy())
    combined["minimump_padj"] = bh_adjust(combined["minimump_p"])
    combined.index.name = "gene"

    logger.info(
        "Cluster %s: %d genes tested in %d condition(s)",
        ident,
        len(combined),
        len(per_condition),
    )
    return combined.sort_values("minimump_p", kind="stable")
