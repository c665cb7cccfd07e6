"""Pseudo-bulk differential expression with DESeq2.

Raw counts are summed per combination of condition, cell type and
replicate; each sum is one pseudo-bulk sample. DESeq2 (pydeseq2) then
compares conditions within a cell type, using replicates as the unit of
variation.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse

from .config import ConditionDEConfig


def aggregate_pseudobulk(
    adata: Any,
    group_keys: Sequence[str],
    layer: Optional[str] = "counts",
) -> Any:
    """Sum counts of the cells in every combination of ``group_keys``.

    Parameters
    ----------
    adata : AnnData
        AnnData with raw counts
    group_keys : Sequence[str]
        obs columns defining the pseudo-bulk samples
    layer : str, optional
        Layer with raw counts; X if None

    Returns
    -------
    AnnData
        One observation per non-empty group, named by joining the group
        values with ``_``; obs holds the group values and ``n_cells``
    """
    import anndata as ad

    group_keys = list(group_keys)
    missing = [key for key in group_keys if key not in adata.obs]
    if missing:
        raise KeyError(f"Columns not found in adata.obs: {missing}")
    if layer and layer not in adata.layers:
        raise KeyError(f"Layer '{layer}' not found in adata.layers")

    counts = adata.layers[layer] if layer else adata.X
    keys = adata.obs[group_keys].astype(str)
    sample = keys.agg("_".join, axis=1)
    names = pd.Index(sorted(sample.unique()))
    codes = names.get_indexer(sample)

    n = adata.n_obs
    indicator = sparse.csr_matrix(
        (np.ones(n), (codes, np.arange(n))), shape=(len(names), n)
    )
    summed = sparse.csr_matrix(indicator @ counts)

    obs = keys.groupby(sample.to_numpy()).first().loc[names]
    obs["n_cells"] = np.bincount(codes, minlength=len(names))
    obs.index = names.astype(str)

    return ad.AnnData(X=summed, obs=obs, var=pd.DataFrame(index=adata.var_names.copy()))


class PseudobulkDE:
    """Compare conditions within a cell type using DESeq2.

    Example
    -------
    >>> pseudo = aggregate_pseudobulk(adata, ["group_id", "cell_type", "sample_id"])
    >>> results = PseudobulkDE().run(pseudo, "Classical Monocytes")
    >>> results.head()
    """

    def __init__(
        self,
        config: Optional[ConditionDEConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ConditionDEConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import pydeseq2  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Pseudo-bulk DE requires pydeseq2. Install with: pip install pydeseq2"
            )

    def testable_cell_types(self, pseudo: Any) -> List[str]:
        """Cell types with enough pseudo-bulk samples in both conditions."""
        cfg = self.config
        obs = pseudo.obs
        counts = (
            obs[obs[cfg.condition_key].isin([cfg.ident_1, cfg.ident_2])]
            .groupby([cfg.cell_type_key, cfg.condition_key], observed=True)
            .size()
            .unstack(fill_value=0)
        )
        for level in (cfg.ident_1, cfg.ident_2):
            if level not in counts:
                counts[level] = 0
        ok = (counts[[cfg.ident_1, cfg.ident_2]] >= cfg.min_samples_per_level).all(axis=1)
        return [str(c) for c in counts.index[ok]]

    def run(
        self,
        pseudo: Any,
        cell_type: str,
        contrast: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
        """Run DESeq2 on the pseudo-bulk samples of one cell type.

        Parameters
        ----------
        pseudo : AnnData
            Output of aggregate_pseudobulk
        cell_type : str
            Cell type to test
        contrast : Sequence[str], optional
            ``[factor, numerator, denominator]``; defaults to
            ``[condition_key, ident_1, ident_2]``

        Returns
        -------
        pd.DataFrame
            DESeq2 results (baseMean, log2FoldChange, lfcSE, stat, pvalue,
            padj) indexed by gene, sorted by adjusted p-value
        """
        self._check_dependencies()
        from pydeseq2.dds import DeseqDataSet
        from pydeseq2.default_inference import DefaultInference
        from pydeseq2.ds import DeseqStats

        cfg = self.config
        factor, numerator, denominator = contrast or (
            cfg.condition_key,
            cfg.ident_1,
            cfg.ident_2,
        )
        for key in (cfg.cell_type_key, factor):
            if key not in pseudo.obs:
                raise KeyError(f"Column '{key}' not found in pseudo-bulk obs")

        sub = pseudo[(pseudo.obs[cfg.cell_type_key].astype(str) == cell_type).to_numpy()]
        levels = sub.obs[factor].astype(str)
        for level in (numerator, denominator):
            n = int((levels == level).sum())
            if n < cfg.min_samples_per_level:
                raise ValueError(
                    f"{cell_type}: {n} pseudo-bulk sample(s) for {factor}={level}; "
                    f"DESeq2 needs at least {cfg.min_samples_per_level}"
                )

        keep = levels.isin([numerator, denominator]).to_numpy()
        sub = sub[keep]
        matrix = sub.X.toarray() if sparse.issparse(sub.X) else np.asarray(sub.X)
        counts = pd.DataFrame(
            np.rint(matrix).astype(np.int64), index=sub.obs_names, columns=sub.var_names
        )
        counts = counts.loc[:, counts.sum(axis=0) > 0]
        metadata = pd.DataFrame({factor: levels[keep].to_numpy()}, index=sub.obs_names)

        self.logger.info(
            "DESeq2 for %s: %d samples x %d genes, %s vs %s",
            cell_type,
            counts.shape[0],
            counts.shape[1],
            numerator,
            denominator,
        )
        dds = DeseqDataSet(
            counts=counts,
            metadata=metadata,
            design=f"~{factor}",
            refit_cooks=True,
            inference=DefaultInference(n_cpus=1),
            quiet=True,
        )
        dds.deseq2()
        stats = DeseqStats(
            dds,
            contrast=[factor, numerator, denominator],
            inference=DefaultInference(n_cpus=1),
            quiet=True,
        )
        stats.summary()

        results = stats.results_df.sort_values("padj", kind="stable", na_position="last")
        results.index.name = "gene"
        self.logger.info(
            "%s: %d genes with padj < 0.05", cell_type, int((results["padj"] < 0.05).sum())
        )
        return results
