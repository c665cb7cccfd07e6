"""Core computational modules for scrna-workshop.

This package contains the main analysis engines:
- preprocessing: Data loading, QC, normalization and variable genes
- integration: Simulated conditions/replicates and Harmony integration
- clustering: PCA, Leiden clustering, parameter sweeps and marker genes
- annotation: ScType scoring and cluster consolidation, CellTypist,
  reference classifiers
- de: Conserved markers, per cell type condition DE, pseudo-bulk DESeq2
"""
