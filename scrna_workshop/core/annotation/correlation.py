"""Reference correlation labelling.

Each reference label is summarised by its mean log-expression profile.
Marker genes are chosen per pair of labels (genes most up in one label
relative to the other), and every query cell is assigned the label whose
profile it correlates with best (Spearman) over the union of markers.
Calls whose margin over the median score is an outlier within the label
are pruned.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.stats import rankdata

from ...utils.matrix import select_matrix, to_dense
from ...utils.stats import robust_zscore
from .config import CorrelationConfig


def default_n_de_genes(n_labels: int) -> int:
    """Markers kept per label pair: 500 * (2/3) ** log2(n_labels)."""
    return int(round(500 * (2 / 3) ** np.log2(max(n_labels, 1))))


def _row_ranks(values: np.ndarray) -> np.ndarray:
    """Rank each row, centre it and scale it to unit norm."""
    ranks = rankdata(values, axis=1)
    ranks = ranks - ranks.mean(axis=1, keepdims=True)
    norms = np.linalg.norm(ranks, axis=1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        scaled = ranks / norms
    return np.nan_to_num(scaled, nan=0.0)


class CorrelationAnnotator:
    """Label cells by Spearman correlation to reference label profiles.

    Example:
        >>> annotator = CorrelationAnnotator().fit(reference, label_key="louvain")
        >>> table = annotator.predict(adata, layer="lognorm")
        >>> table[["labels", "delta", "pruned_labels"]].head()
    """

    def __init__(
        self,
        config: Optional[CorrelationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or CorrelationConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.labels_: List[str] = []
        self.markers_: List[str] = []
        self.profiles_: Optional[pd.DataFrame] = None

    def fit(self, reference, label_key: str = "louvain") -> "CorrelationAnnotator":
        """Build label profiles and marker genes from the reference's X."""
        if label_key not in reference.obs:
            raise KeyError(f"Reference has no obs column '{label_key}'")

        labels = reference.obs[label_key]
        keep = labels.notna().to_numpy()
        labels = labels[keep].astype(str).to_numpy()
        self.labels_ = sorted(set(labels))
        if len(self.labels_) < 2:
            raise ValueError("Reference must contain at least two labels")

        # labels x cells averaging matrix
        codes = pd.Categorical(labels, categories=self.labels_).codes.astype(np.int64)
        counts = np.bincount(codes, minlength=len(self.labels_)).astype(float)
        indicator = sparse.csr_matrix(
            (1.0 / counts[codes], (codes, np.arange(len(codes)))),
            shape=(len(self.labels_), len(codes)),
        )
        means = to_dense(indicator @ reference.X[keep])
        profiles = pd.DataFrame(
            means.T, index=reference.var_names, columns=self.labels_
        )

        n_de = self.config.n_de_genes or default_n_de_genes(len(self.labels_))
        markers = []
        for first in self.labels_:
            for second in self.labels_:
                if first == second:
                    continue
                diff = profiles[first] - profiles[second]
                diff = diff[diff > 0].sort_values(ascending=False, kind="stable")
                markers.extend(diff.index[:n_de])
        self.markers_ = list(dict.fromkeys(markers))
        self.profiles_ = profiles.loc[self.markers_]

        self.logger.info(
            "Built %d label profiles over %d marker genes (%d per pair)",
            len(self.labels_),
            len(self.markers_),
            n_de,
        )
        return self

    def score(self, adata, layer: Optional[str] = "lognorm") -> pd.DataFrame:
        """Spearman correlation of every cell to every label profile."""
        if self.profiles_ is None:
            raise RuntimeError("CorrelationAnnotator.fit must be called before score")

        matrix, var_names = select_matrix(adata, layer=layer)
        positions = var_names.get_indexer(self.markers_)
        present = positions >= 0
        if not present.any():
            raise ValueError("None of the reference marker genes are in the query")
        if not present.all():
            self.logger.warning(
                "%d of %d marker genes missing from query; correlating on the rest",
                int((~present).sum()),
                len(self.markers_),
            )

        query = _row_ranks(to_dense(matrix[:, positions[present]]))
        reference = _row_ranks(self.profiles_.to_numpy()[present].T)
        return pd.DataFrame(
            query @ reference.T, index=adata.obs_names, columns=self.labels_
        )

    def predict(self, adata, layer: Optional[str] = "lognorm") -> pd.DataFrame:
        """Assign and prune labels.

        Returns
        -------
        pd.DataFrame
            Per-label scores plus ``labels``, ``delta`` (best minus median
            score) and ``pruned_labels`` (NaN for pruned calls).
        """
        scores = self.score(adata, layer=layer)
        values = scores.to_numpy()

        table = scores.copy()
        table["labels"] = np.asarray(self.labels_, dtype=object)[values.argmax(axis=1)]
        table["delta"] = values.max(axis=1) - np.median(values, axis=1)

        pruned = pd.Series(False, index=table.index)
        for label, rows in table.groupby("labels").groups.items():
            z = robust_zscore(table.loc[rows, "delta"])
            pruned.loc[rows] = z < -self.config.nmads
        table["pruned_labels"] = table["labels"].where(~pruned, np.nan)

        self.logger.info(
            "Correlation labels assigned to %d cells (%d pruned)",
            len(table),
            int(pruned.sum()),
        )
        return table
