"""scrna-workshop: single-cell RNA-seq analysis of the 10x PBMC 3k dataset.

This package provides tools for:
- Loading, quality control and normalization of 10x count matrices
- PCA, Harmony integration, Leiden clustering and cluster markers
- Cell-type annotation with ScType marker scores consolidated per cluster,
  CellTypist models, and reference-trained classifiers
- Differential expression across simulated conditions, per cell and
  pseudo-bulk (DESeq2)

Example usage:
    >>> from scrna_workshop.config import WorkshopConfig
    >>> from scrna_workshop.pipeline import WorkshopRun
    >>>
    >>> run = WorkshopRun(WorkshopConfig.default(), output_dir="results")
    >>> results = run.run()
    >>>
    >>> from scrna_workshop.core.annotation import consolidate_cluster_scores
    >>> table = consolidate_cluster_scores(scores, clusters)
"""

__version__ = "0.1.0"
