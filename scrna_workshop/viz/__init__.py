"""Figures for the workshop run.

All figures are written to disk as PNG files; nothing is shown
interactively. Requires matplotlib and seaborn.
"""

from .plots import (
    dotplot_table,
    plot_elbow,
    plot_features,
    plot_marker_heatmap,
    plot_pca,
    plot_pca_loadings,
    plot_qc_scatter,
    plot_qc_violin,
    plot_resolution_sweep,
    plot_split_dotplot,
    plot_umap,
    plot_variable_genes,
)
from .style import get_color_palette, save_figure, set_publication_style

__all__ = [
    "dotplot_table",
    "get_color_palette",
    "plot_elbow",
    "plot_features",
    "plot_marker_heatmap",
    "plot_pca",
    "plot_pca_loadings",
    "plot_qc_scatter",
    "plot_qc_violin",
    "plot_resolution_sweep",
    "plot_split_dotplot",
    "plot_umap",
    "plot_variable_genes",
    "save_figure",
    "set_publication_style",
]
