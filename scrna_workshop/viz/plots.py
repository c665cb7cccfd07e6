"""Figures of the workshop run.

Every function draws one figure, saves it as a PNG under ``output_path`` and
returns the saved path. Figures are never shown interactively.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from ..utils.matrix import expression_frame
from .style import CONDITION_COLORS, get_color_palette, save_figure, set_publication_style

logger = logging.getLogger(__name__)

QC_METRICS = ("n_genes_by_counts", "total_counts", "pct_counts_mt")

PathLike = Union[str, Path]


def _require_obs(adata, keys: Sequence[str]) -> None:
    missing = [key for key in keys if key not in adata.obs.columns]
    if missing:
        raise KeyError(f"Columns {missing} not found in adata.obs")


def plot_qc_violin(adata, output_path: PathLike, metrics: Sequence[str] = QC_METRICS) -> Path:
    """Violin plot of per-cell QC metrics, one panel per metric."""
    import matplotlib.pyplot as plt
    import seaborn as sns

    _require_obs(adata, metrics)
    set_publication_style()

    fig, axes = plt.subplots(1, len(metrics), figsize=(4 * len(metrics), 4))
    axes = np.atleast_1d(axes)
    for ax, metric in zip(axes, metrics):
        values = adata.obs[metric].to_numpy(dtype=float)
        sns.violinplot(y=values, ax=ax, color="#95a5a6", inner=None, cut=0)
        sns.stripplot(y=values, ax=ax, color="black", size=1, alpha=0.3, jitter=0.4)
        ax.set_title(metric)
        ax.set_ylabel("")
    fig.tight_layout()
    return save_figure(fig, output_path)


def plot_qc_scatter(adata, output_path: PathLike) -> Path:
    """Total counts against mitochondrial percentage and detected genes."""
    import matplotlib.pyplot as plt

    _require_obs(adata, QC_METRICS)
    set_publication_style()

    fig, axes = plt.subplots(1, 2, figsize=(9, 4))
    for ax, metric in zip(axes, ("pct_counts_mt", "n_genes_by_counts")):
        x = adata.obs["total_counts"].to_numpy(dtype=float)
        y = adata.obs[metric].to_numpy(dtype=float)
        ax.scatter(x, y, s=2, alpha=0.5, color="#34495e", rasterized=True)
        r = np.corrcoef(x, y)[0, 1] if len(x) > 1 else np.nan
        ax.set_title(f"r = {r:.2f}")
        ax.set_xlabel("total_counts")
        ax.set_ylabel(metric)
    fig.tight_layout()
    return save_figure(fig, output_path)


def plot_variable_genes(adata, output_path: PathLike, n_labels: int = 10) -> Path:
    """Mean expression against (normalised) variance, variable genes highlighted.

    The ``n_labels`` highest ranked variable genes are annotated.
    """
    import matplotlib.pyplot as plt

    var = adata.var
    if "highly_variable" not in var.columns:
        raise KeyError("adata.var['highly_variable'] missing; select variable genes first")
    y_col = "variances_norm" if "variances_norm" in var.columns else "dispersions_norm"
    if y_col not in var.columns or "means" not in var.columns:
        raise KeyError(f"adata.var is missing 'means' or '{y_col}'")

    set_publication_style()
    hv = var["highly_variable"].to_numpy(dtype=bool)
    means = var["means"].to_numpy(dtype=float)
    spread = var[y_col].to_numpy(dtype=float)

    fig, ax = plt.subplots(figsize=(6, 4.5))
    ax.scatter(means[~hv], spread[~hv], s=3, color="#bdc3c7", label="other", rasterized=True)
    ax.scatter(means[hv], spread[hv], s=3, color="#c0392b", label="variable", rasterized=True)

    top = var.loc[hv, y_col].sort_values(ascending=False).head(n_labels)
    for gene in top.index:
        ax.annotate(gene, (var.at[gene, "means"], var.at[gene, y_col]), fontsize=7)

    if np.all(means[np.isfinite(means)] > 0):
        ax.set_xscale("log")
    ax.set_xlabel("mean expression")
    ax.set_ylabel(y_col)
    ax.legend(frameon=False, markerscale=3)
    fig.tight_layout()
    return save_figure(fig, output_path)


def plot_pca_loadings(
    adata,
    output_path: PathLike,
    components: Sequence[int] = (1, 2),
    n_genes: int = 15,
) -> Path:
    """Top-loading genes of the given (1-based) principal components."""
    import matplotlib.pyplot as plt

    if "PCs" not in adata.varm:
        raise KeyError("adata.varm['PCs'] missing; run PCA first")
    set_publication_style()
    loadings = adata.varm["PCs"]

    fig, axes = plt.subplots(1, len(components), figsize=(4 * len(components), 0.25 * n_genes + 1.5))
    axes = np.atleast_1d(axes)
    for ax, pc in zip(axes, components):
        values = pd.Series(loadings[:, pc - 1], index=adata.var_names)
        top = values.reindex(values.abs().sort_values(ascending=False).index[:n_genes])
        top = top.iloc[::-1]
        colors = np.where(top.to_numpy() > 0, "#c0392b", "#1f4e9c")
        ax.barh(top.index, top.to_numpy(), color=colors)
        ax.set_title(f"PC{pc}")
        ax.set_xlabel("loading")
    fig.tight_layout()
    return save_figure(fig, output_path)


def _embedding_scatter(ax, coords, labels, title: str) -> None:
    labels = pd.Series(labels).astype(str).to_numpy()
    palette = get_color_palette(pd.unique(labels))
    for label, color in palette.items():
        mask = labels == label
        ax.scatter(coords[mask, 0], coords[mask, 1], s=3, color=color, label=label, rasterized=True)
    ax.set_title(title)
    ax.set_xticks([])
    ax.set_yticks([])


def plot_pca(adata, output_path: PathLike, color: Optional[str] = None, basis: str = "X_pca") -> Path:
    """PC1 against PC2, optionally coloured by an obs column."""
    import matplotlib.pyplot as plt

    if basis not in adata.obsm:
        raise KeyError(f"adata.obsm['{basis}'] missing; run PCA first")
    set_publication_style()
    coords = np.asarray(adata.obsm[basis])[:, :2]

    fig, ax = plt.subplots(figsize=(5.5, 4.5))
    if color is None:
        ax.scatter(coords[:, 0], coords[:, 1], s=3, color="#34495e", rasterized=True)
        ax.set_title(basis)
    else:
        _require_obs(adata, [color])
        _embedding_scatter(ax, coords, adata.obs[color], color)
        ax.legend(frameon=False, markerscale=3, bbox_to_anchor=(1.02, 1), loc="upper left")
    ax.set_xlabel("PC1")
    ax.set_ylabel("PC2")
    return save_figure(fig, output_path)


def plot_elbow(elbow: pd.DataFrame, output_path: PathLike) -> Path:
    """Standard deviation of each principal component.

    ``elbow`` is the table from ``ClusteringEngine.elbow_table``.
    """
    import matplotlib.pyplot as plt

    set_publication_style()
    fig, ax = plt.subplots(figsize=(5, 4))
    ax.plot(elbow["pc"], elbow["stdev"], marker="o", markersize=3, color="#34495e")
    ax.set_xlabel("PC")
    ax.set_ylabel("standard deviation")
    return save_figure(fig, output_path)


def plot_umap(adata, output_path: PathLike, color: Union[str, List[str]], legend_loc: str = "right margin") -> Path:
    """UMAP coloured by one or more obs columns or genes."""
    import scanpy as sc

    if "X_umap" not in adata.obsm:
        raise KeyError("adata.obsm['X_umap'] missing; compute UMAP first")
    set_publication_style()
    fig = sc.pl.umap(adata, color=color, legend_loc=legend_loc, show=False, return_fig=True)
    return save_figure(fig, output_path)


def _group_means(adata, genes: Sequence[str], groupby: str, layer: Optional[str]) -> pd.DataFrame:
    expr = expression_frame(adata, genes, layer=layer)
    groups = adata.obs[groupby].astype(str).to_numpy()
    return expr.T.groupby(groups, sort=False).mean()


def plot_marker_heatmap(
    adata,
    genes: Sequence[str],
    groupby: str,
    output_path: PathLike,
    layer: Optional[str] = "lognorm",
) -> Path:
    """Heatmap of gene means per group, each gene z-scored across groups."""
    import matplotlib.pyplot as plt
    import seaborn as sns

    _require_obs(adata, [groupby])
    genes = list(dict.fromkeys(genes))
    set_publication_style()

    means = _group_means(adata, genes, groupby, layer)
    if isinstance(adata.obs[groupby].dtype, pd.CategoricalDtype):
        order = [str(c) for c in adata.obs[groupby].cat.categories if str(c) in means.index]
        means = means.loc[order]
    std = means.std(axis=0).replace(0, 1)
    z = (means - means.mean(axis=0)) / std

    fig, ax = plt.subplots(figsize=(max(4, 0.3 * len(genes) + 2), max(3, 0.35 * len(z) + 1.5)))
    sns.heatmap(z, cmap="RdBu_r", center=0, ax=ax, cbar_kws={"label": "z-score"})
    ax.set_xlabel("")
    ax.set_ylabel(groupby)
    fig.tight_layout()
    return save_figure(fig, output_path)


def dotplot_table(
    adata,
    genes: Sequence[str],
    groupby: str,
    split_by: Optional[str] = None,
    layer: Optional[str] = "lognorm",
) -> pd.DataFrame:
    """Per group (and condition) mean expression and fraction of expressing cells.

    Returns a long table with columns ``group``, ``condition``, ``gene``,
    ``mean`` and ``pct``. ``condition`` is empty when ``split_by`` is None.
    """
    keys = [groupby] + ([split_by] if split_by else [])
    _require_obs(adata, keys)
    expr = expression_frame(adata, list(dict.fromkeys(genes)), layer=layer).T

    group = adata.obs[groupby].astype(str).to_numpy()
    condition = adata.obs[split_by].astype(str).to_numpy() if split_by else np.full(len(group), "")
    index = pd.MultiIndex.from_arrays([group, condition], names=["group", "condition"])
    expr.index = index

    mean = expr.groupby(level=[0, 1], sort=False).mean()
    pct = (expr > 0).groupby(level=[0, 1], sort=False).mean()
    table = (
        mean.stack().rename("mean").to_frame()
        .join(pct.stack().rename("pct"))
        .reset_index()
        .rename(columns={"level_2": "gene"})
    )
    table.columns = ["group", "condition", "gene", "mean", "pct"]
    return table


def plot_split_dotplot(
    adata,
    genes: Sequence[str],
    groupby: str,
    split_by: str,
    output_path: PathLike,
    layer: Optional[str] = "lognorm",
) -> Path:
    """Dot plot with one row per group and condition.

    Dot size is the fraction of expressing cells, colour intensity the mean
    expression, hue the condition.
    """
    import matplotlib.pyplot as plt
    from matplotlib.colors import LinearSegmentedColormap

    table = dotplot_table(adata, genes, groupby, split_by=split_by, layer=layer)
    set_publication_style()

    genes = list(dict.fromkeys(genes))
    conditions = list(pd.unique(table["condition"]))
    rows = table[["group", "condition"]].drop_duplicates().sort_values(["group", "condition"])
    row_pos = {(g, c): i for i, (g, c) in enumerate(rows.itertuples(index=False))}
    max_mean = table.groupby("gene")["mean"].transform("max").replace(0, 1)
    table = table.assign(scaled=table["mean"] / max_mean)

    fig, ax = plt.subplots(figsize=(max(4, 0.5 * len(genes) + 2.5), max(3, 0.3 * len(row_pos) + 1.5)))
    for i, condition in enumerate(conditions):
        base = CONDITION_COLORS[i % len(CONDITION_COLORS)]
        cmap = LinearSegmentedColormap.from_list(f"cond{i}", ["#f0f0f0", base])
        sub = table[table["condition"] == condition]
        ax.scatter(
            [genes.index(g) for g in sub["gene"]],
            [row_pos[(g, c)] for g, c in zip(sub["group"], sub["condition"])],
            s=sub["pct"] * 120,
            c=cmap(sub["scaled"].to_numpy()),
            edgecolors="none",
            label=condition,
        )
    ax.set_xticks(range(len(genes)))
    ax.set_xticklabels(genes, rotation=90)
    ax.set_yticks(range(len(row_pos)))
    ax.set_yticklabels([f"{g}_{c}" for g, c in row_pos])
    ax.grid(False)
    ax.legend(frameon=False, bbox_to_anchor=(1.02, 1), loc="upper left")
    fig.tight_layout()
    return save_figure(fig, output_path)


def plot_features(
    adata,
    genes: Sequence[str],
    output_path: PathLike,
    basis: str = "X_umap",
    split_by: Optional[str] = None,
    layer: Optional[str] = "lognorm",
) -> Path:
    """Embedding coloured by gene expression, one row per gene.

    With ``split_by`` each condition gets its own column sharing the colour
    scale of the gene.
    """
    import matplotlib.pyplot as plt

    if basis not in adata.obsm:
        raise KeyError(f"adata.obsm['{basis}'] missing")
    genes = list(dict.fromkeys(genes))
    expr = expression_frame(adata, genes, layer=layer)
    coords = np.asarray(adata.obsm[basis])[:, :2]

    if split_by:
        _require_obs(adata, [split_by])
        split = adata.obs[split_by].astype(str).to_numpy()
        panels = list(pd.unique(split))
    else:
        split = np.full(adata.n_obs, "")
        panels = [""]

    set_publication_style()
    fig, axes = plt.subplots(
        len(genes), len(panels), figsize=(3.5 * len(panels), 3.2 * len(genes)), squeeze=False
    )
    for row, gene in enumerate(genes):
        values = expr.loc[gene].to_numpy(dtype=float)
        vmax = values.max() if values.max() > 0 else 1.0
        for col, panel in enumerate(panels):
            ax = axes[row, col]
            mask = split == panel
            order = np.argsort(values[mask])
            points = ax.scatter(
                coords[mask][order, 0],
                coords[mask][order, 1],
                c=values[mask][order],
                cmap="Reds",
                vmin=0,
                vmax=vmax,
                s=3,
                rasterized=True,
            )
            ax.set_title(f"{gene} {panel}".strip())
            ax.set_xticks([])
            ax.set_yticks([])
        fig.colorbar(points, ax=axes[row, -1])
    return save_figure(fig, output_path)


def plot_resolution_sweep(sweep: pd.DataFrame, output_path: PathLike) -> Path:
    """Cluster count per resolution (or per PC count)."""
    import matplotlib.pyplot as plt

    x_col = "resolution" if "resolution" in sweep.columns else "n_pcs"
    set_publication_style()
    fig, ax = plt.subplots(figsize=(5, 4))
    ax.plot(sweep[x_col], sweep["n_clusters"], marker="o", color="#34495e")
    ax.set_xlabel(x_col)
    ax.set_ylabel("number of clusters")
    return save_figure(fig, output_path)
