"""Annotation engine for cell-type classification.

This module provides the AnnotationEngine class that runs the configured
annotation methods on a clustered AnnData:

- ``sctype``: marker-gene enrichment scores consolidated per cluster
- ``celltypist``: pre-trained CellTypist model with majority voting
- ``reference``: SVM trained on a labelled reference
- ``correlation``: Spearman correlation to reference label profiles

Each method yields one label per cell. Nothing is written to the AnnData;
``AnnotationResult.attach`` copies the labels onto a caller-owned object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from .celltypist_runner import CellTypistAnnotator
from .config import AnnotationConfig
from .correlation import CorrelationAnnotator
from .reference import ReferenceClassifier, load_reference
from .sctype import ScTypeAnnotator, ScTypeResult


@dataclass
class AnnotationResult:
    """Result from the annotation engine.

    Attributes:
        labels: One label column per method, indexed by cell
        primary: Method whose labels become ``cell_type``
        sctype: ScType scores and cluster tables (if ScType ran)
        details: Per-method prediction tables (probabilities, scores)
    """

    labels: pd.DataFrame
    primary: str
    sctype: Optional[ScTypeResult] = None
    details: Dict[str, pd.DataFrame] = field(default_factory=dict)

    @property
    def cell_type(self) -> pd.Series:
        """Labels of the primary method."""
        return self.labels[self.primary].rename("cell_type")

    def attach(self, adata, key: str = "cell_type") -> None:
        """Write the primary labels to ``obs[key]`` and the others to
        ``obs["<method>_cell_type"]``."""
        for method in self.labels.columns:
            column = key if method == self.primary else f"{method}_cell_type"
            adata.obs[column] = pd.Categorical(
                self.labels[method].reindex(adata.obs_names).astype(str)
            )

    def write(self, output_dir: Path) -> None:
        """Write label and detail tables as CSV."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        self.labels.to_csv(output_dir / "cell_labels.csv", index_label="cell")
        if self.sctype is not None:
            self.sctype.candidates.to_csv(output_dir / "sctype_candidates.csv", index=False)
            self.sctype.clusters.to_csv(output_dir / "sctype_clusters.csv", index=False)
        for method, table in self.details.items():
            table.to_csv(output_dir / f"{method}_predictions.csv", index_label="cell")


class AnnotationEngine:
    """Run one or more annotation methods on a clustered AnnData.

    Example:
        >>> engine = AnnotationEngine(AnnotationConfig(methods=["sctype", "celltypist"]))
        >>> result = engine.run(adata, cluster_key="leiden")
        >>> result.attach(adata)
    """

    def __init__(
        self,
        config: Optional[AnnotationConfig] = None,
        logger: Optional[logging.Logger] = None,
        reference: Optional[Any] = None,
    ):
        """Initialize annotation engine.

        Args:
            config: Annotation configuration (uses defaults if None)
            logger: Logger instance
            reference: Pre-loaded reference AnnData; loaded from
                ``config.reference`` on first use otherwise
        """
        self.config = config or AnnotationConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._reference = reference

    @property
    def reference(self):
        if self._reference is None:
            self._reference = load_reference(
                self.config.reference, label_key=self.config.reference_label_key
            )
        return self._reference

    def _run_sctype(self, adata, cluster_key: str) -> ScTypeResult:
        annotator = ScTypeAnnotator(self.config.sctype, logger=self.logger)
        return annotator.annotate(adata, cluster_key=cluster_key)

    def _run_celltypist(self, adata, cluster_key: str) -> pd.DataFrame:
        annotator = CellTypistAnnotator(self.config.celltypist, logger=self.logger)
        return annotator.annotate(adata, over_clustering=cluster_key)

    def _run_reference(self, adata) -> pd.DataFrame:
        classifier = ReferenceClassifier(self.config.reference_model, logger=self.logger)
        classifier.fit(self.reference, label_key=self.config.reference_label_key)
        return classifier.predict(adata, layer=self.config.celltypist.layer)

    def _run_correlation(self, adata) -> pd.DataFrame:
        annotator = CorrelationAnnotator(self.config.correlation, logger=self.logger)
        annotator.fit(self.reference, label_key=self.config.reference_label_key)
        return annotator.predict(adata, layer=self.config.celltypist.layer)

    def run(self, adata, cluster_key: str = "leiden") -> AnnotationResult:
        """Run every configured method.

        Args:
            adata: AnnData with ``scaled`` and ``lognorm`` layers and
                cluster assignments in ``obs[cluster_key]``
            cluster_key: obs column with cluster labels

        Returns:
            AnnotationResult with one label column per method
        """
        if cluster_key not in adata.obs:
            raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")

        self.logger.info("Annotating %d cells with %s", adata.n_obs, self.config.methods)

        labels = pd.DataFrame(index=adata.obs_names)
        details: Dict[str, pd.DataFrame] = {}
        sctype_result = None

        for method in self.config.methods:
            self.logger.info("Running annotation method: %s", method)
            if method == "sctype":
                sctype_result = self._run_sctype(adata, cluster_key)
                labels[method] = sctype_result.labels.astype(str)
            elif method == "celltypist":
                table = self._run_celltypist(adata, cluster_key)
                column = "majority_voting" if "majority_voting" in table else "predicted_labels"
                labels[method] = table[column]
                details[method] = table
            elif method == "reference":
                table = self._run_reference(adata)
                labels[method] = table["prediction"]
                details[method] = table
            elif method == "correlation":
                table = self._run_correlation(adata)
                labels[method] = table["pruned_labels"].fillna("pruned")
                details[method] = table

        for method in labels.columns:
            self.logger.info(
                "  %s: %d distinct labels", method, labels[method].nunique()
            )

        return AnnotationResult(
            labels=labels,
            primary=self.config.primary,
            sctype=sctype_result,
            details=details,
        )
