"""Cell-level quality control.

Computes per-cell QC metrics and removes cells with too few or too many
detected genes or a high mitochondrial fraction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from .config import QCConfig

# Reason columns for tracking removal causes
REASON_COLUMNS = ["low_genes", "high_genes", "high_mito"]


@dataclass
class QCResult:
    """Result from QC filtering.

    Attributes
    ----------
    adata : AnnData
        Filtered copy
    cells_total : int
        Total cells before filtering
    cells_removed : int
        Number of cells removed
    reason_counts : Dict[str, int]
        Cells failing each criterion; a cell can fail several
    """

    adata: Any
    cells_total: int = 0
    cells_removed: int = 0
    reason_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def removal_fraction(self) -> float:
        return self.cells_removed / self.cells_total if self.cells_total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "cells_total": self.cells_total,
            "cells_removed": self.cells_removed,
            "removal_fraction": round(self.removal_fraction, 4),
        }
        for reason in REASON_COLUMNS:
            result[f"removed_{reason}"] = self.reason_counts.get(reason, 0)
        return result


class CellQC:
    """Cell-level quality control filter.

    Parameters
    ----------
    config : QCConfig
        QC configuration

    Example
    -------
    >>> qc = CellQC(QCConfig(max_pct_mt=5))
    >>> qc.compute_metrics(adata)
    >>> result = qc.filter(adata)
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QCConfig()
        self.logger = logger or logging.getLogger(__name__)

    def compute_metrics(self, adata) -> None:
        """Add ``n_genes_by_counts``, ``total_counts`` and ``pct_counts_mt`` to obs."""
        import scanpy as sc

        adata.var["mt"] = adata.var_names.str.upper().str.startswith(
            self.config.mito_prefix.upper()
        )
        sc.pp.calculate_qc_metrics(
            adata, qc_vars=["mt"], percent_top=None, log1p=False, inplace=True
        )
        self.logger.info(
            "QC metrics: %d mitochondrial genes; median genes/cell %.0f, median %%mt %.2f",
            int(adata.var["mt"].sum()),
            float(np.median(adata.obs["n_genes_by_counts"])),
            float(np.median(adata.obs["pct_counts_mt"])),
        )

    def filter(self, adata) -> QCResult:
        """Keep cells with min_genes < n_genes < max_genes and pct_mt < max_pct_mt.

        Metrics are computed first if absent. The input is not modified
        beyond the metric columns.
        """
        if "n_genes_by_counts" not in adata.obs or "pct_counts_mt" not in adata.obs:
            self.compute_metrics(adata)

        cfg = self.config
        n_genes = adata.obs["n_genes_by_counts"].to_numpy()
        pct_mt = adata.obs["pct_counts_mt"].to_numpy()

        reasons = {
            "low_genes": n_genes <= cfg.min_genes,
            "high_genes": n_genes >= cfg.max_genes,
            "high_mito": pct_mt >= cfg.max_pct_mt,
        }
        remove = np.logical_or.reduce(list(reasons.values()))

        result = QCResult(
            adata=adata[~remove].copy(),
            cells_total=adata.n_obs,
            cells_removed=int(remove.sum()),
            reason_counts={name: int(mask.sum()) for name, mask in reasons.items()},
        )
        self.logger.info(
            "QC removed %d/%d cells (%.1f%%): %s",
            result.cells_removed,
            result.cells_total,
            100 * result.removal_fraction,
            result.reason_counts,
        )
        if result.adata.n_obs == 0:
            raise ValueError("No cells passed QC; check the QC thresholds")
        return result
