"""Reference-trained SVM classifier.

A labelled reference (by default scanpy's processed PBMC 3k with its
``louvain`` labels) is reduced to its most variable genes, projected onto
principal components and used to train a support vector machine with
probability estimates. Query cells are projected into the same space;
predictions whose top class probability falls below a threshold are
reported as unassigned.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC

from ...utils.matrix import gene_variance, select_matrix, to_dense
from .config import ReferenceConfig

logger = logging.getLogger(__name__)

BUILTIN_REFERENCES = ("pbmc3k_processed",)


def load_reference(name: str = "pbmc3k_processed", label_key: str = "louvain"):
    """Load a labelled reference AnnData with log-normalized expression in X.

    Parameters
    ----------
    name : str
        A built-in reference name or a path to an ``.h5ad`` file
    label_key : str
        obs column holding the reference labels

    Returns
    -------
    AnnData
        Reference whose X holds log-normalized expression for all genes
        (taken from ``.raw`` when present)
    """
    import anndata as ad
    import scanpy as sc

    if name == "pbmc3k_processed":
        reference = sc.datasets.pbmc3k_processed()
    elif str(name).endswith(".h5ad"):
        path = Path(name)
        if not path.exists():
            raise FileNotFoundError(f"Reference not found: {path}")
        reference = sc.read_h5ad(path)
    else:
        raise ValueError(
            f"Unknown reference '{name}'; use one of {list(BUILTIN_REFERENCES)} "
            "or a path to an .h5ad file"
        )

    if label_key not in reference.obs:
        raise KeyError(f"Reference has no obs column '{label_key}'")

    if reference.raw is not None:
        reference = ad.AnnData(
            X=reference.raw.X,
            obs=reference.obs.copy(),
            var=reference.raw.var[[]].copy(),
        )

    logger.info(
        "Loaded reference '%s': %d cells, %d genes, %d labels",
        name,
        reference.n_obs,
        reference.n_vars,
        reference.obs[label_key].nunique(),
    )
    return reference


class ReferenceClassifier:
    """SVM cell-type classifier trained on a labelled reference.

    Example:
        >>> clf = ReferenceClassifier(ReferenceConfig(threshold=0.55))
        >>> clf.fit(load_reference(), label_key="louvain")
        >>> table = clf.predict(adata, layer="lognorm")
        >>> table["prediction"].value_counts()
    """

    def __init__(
        self,
        config: Optional[ReferenceConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ReferenceConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.genes_: List[str] = []
        self.gene_means_: Optional[np.ndarray] = None
        self.model_ = None

    @property
    def classes_(self) -> List[str]:
        if self.model_ is None:
            return []
        return list(self.model_.classes_)

    def fit(self, reference, label_key: str = "louvain") -> "ReferenceClassifier":
        """Train the classifier on the reference's X.

        Cells without a label are ignored. At least two labels are required.
        """
        cfg = self.config
        if label_key not in reference.obs:
            raise KeyError(f"Reference has no obs column '{label_key}'")

        labels = reference.obs[label_key]
        keep = labels.notna().to_numpy()
        labels = labels[keep].astype(str)
        if labels.nunique() < 2:
            raise ValueError("Reference must contain at least two labels")

        X = reference.X[keep]
        variance = gene_variance(X)
        n_features = min(cfg.n_features, reference.n_vars)
        top = np.sort(np.argsort(-variance, kind="stable")[:n_features])
        self.genes_ = list(reference.var_names[top])

        features = to_dense(X[:, top])
        self.gene_means_ = features.mean(axis=0)

        n_components = min(cfg.n_components, features.shape[0] - 1, features.shape[1])
        self.model_ = make_pipeline(
            StandardScaler(),
            PCA(n_components=n_components, random_state=cfg.random_seed),
            SVC(kernel=cfg.kernel, probability=True, random_state=cfg.random_seed),
        )
        self.model_.fit(features, labels.to_numpy())

        self.logger.info(
            "Trained SVM on %d reference cells: %d genes, %d PCs, %d classes",
            features.shape[0],
            len(self.genes_),
            n_components,
            len(self.classes_),
        )
        return self

    def _query_features(self, adata, layer: Optional[str]) -> np.ndarray:
        """Query expression for the training genes.

        Genes absent from the query take the reference mean.
        """
        matrix, var_names = select_matrix(adata, layer=layer)
        positions = var_names.get_indexer(self.genes_)
        present = positions >= 0

        features = np.tile(self.gene_means_, (adata.n_obs, 1))
        if present.any():
            features[:, present] = to_dense(matrix[:, positions[present]])

        n_missing = int((~present).sum())
        if n_missing:
            self.logger.warning(
                "%d of %d reference genes missing from query; using reference means",
                n_missing,
                len(self.genes_),
            )
        return features

    def predict(self, adata, layer: Optional[str] = "lognorm") -> pd.DataFrame:
        """Classify query cells.

        Returns
        -------
        pd.DataFrame
            Indexed by cell with one probability column per class plus
            ``max_prob``, ``prediction_no_rejection`` and ``prediction``
            (``unassigned_label`` below ``threshold``).
        """
        if self.model_ is None:
            raise RuntimeError("ReferenceClassifier.fit must be called before predict")

        cfg = self.config
        features = self._query_features(adata, layer)
        proba = self.model_.predict_proba(features)

        table = pd.DataFrame(proba, index=adata.obs_names, columns=self.classes_)
        best = proba.argmax(axis=1)
        table["max_prob"] = proba.max(axis=1)
        table["prediction_no_rejection"] = np.asarray(self.classes_, dtype=object)[best]
        table["prediction"] = table["prediction_no_rejection"].where(
            table["max_prob"] >= cfg.threshold, cfg.unassigned_label
        )

        n_unassigned = int((table["prediction"] == cfg.unassigned_label).sum())
        self.logger.info(
            "Predicted %d cells (%d below probability threshold %.2f)",
            len(table),
            n_unassigned,
            cfg.threshold,
        )
        return table
