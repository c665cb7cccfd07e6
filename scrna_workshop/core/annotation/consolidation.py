"""Cluster-level consolidation of per-cell cell-type scores.

A cell-scoring method (e.g. ScType) produces a cell type x cell score
matrix. This module sums those scores within each cluster, keeps the best
matching cell type per cluster, and demotes low-confidence matches to
"Unknown". The per-cluster table is then joined back onto the cells.

All functions are pure: inputs are never modified and each call returns a
new table.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .errors import EmptyClusterError, MissingDataError

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"
DEFAULT_CONFIDENCE_FRACTION = 0.25
CLUSTER_TABLE_COLUMNS = ["cluster", "type", "score", "n_cells"]

ScoreInput = Union[pd.DataFrame, Mapping[Any, Mapping[Any, float]]]
ClusterInput = Union[pd.Series, Mapping[Any, Any]]


def _as_score_frame(scores: ScoreInput) -> pd.DataFrame:
    """Return scores as a float DataFrame (cell types x cells)."""
    if isinstance(scores, pd.DataFrame):
        frame = scores.astype(float)
    else:
        frame = pd.DataFrame(
            {
                cell_type: pd.Series(dict(per_cell), dtype=float)
                for cell_type, per_cell in scores.items()
            }
        ).T
    if frame.index.has_duplicates:
        dupes = frame.index[frame.index.duplicated()].unique().tolist()
        raise ValueError(f"Score matrix has duplicated cell types: {dupes}")
    if frame.columns.has_duplicates:
        raise ValueError("Score matrix has duplicated cell identifiers")
    return frame


def _as_cluster_series(clusters: ClusterInput) -> pd.Series:
    """Return the cluster assignment as a Series indexed by cell id."""
    if isinstance(clusters, pd.Series):
        series = clusters
    else:
        series = pd.Series(dict(clusters), dtype=object)
    if series.index.has_duplicates:
        raise ValueError("Cluster assignment has duplicated cell identifiers")

    assigned = series.notna().to_numpy()
    if not assigned.all():
        logger.warning(
            "Ignoring %d cell(s) without a cluster assignment", int((~assigned).sum())
        )
        series = series[assigned]
    return series


def _cluster_order(series: pd.Series) -> List[Any]:
    """Categorical order for categorical assignments, sorted labels otherwise.

    Labels of mixed, mutually unorderable types (e.g. 0 and "x") are sorted
    by their string form.
    """
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    unique = pd.Index(series.unique())
    try:
        return list(unique.sort_values())
    except TypeError:
        return sorted(unique, key=str)


def _cluster_totals(
    frame: pd.DataFrame, series: pd.Series
) -> Tuple[List[Any], List[Tuple[Any, np.ndarray, int]]]:
    """Sum scores per cluster and cell type.

    Returns the lexicographically ordered cell types and, per cluster,
    ``(cluster, totals aligned to the types, n_cells)``.
    """
    missing = series.index.difference(frame.columns)
    if len(missing):
        raise MissingDataError(missing, "absent from the score matrix")

    values = frame.loc[:, series.index]
    incomplete = values.columns[values.isna().any(axis=0).to_numpy()]
    if len(incomplete):
        raise MissingDataError(incomplete, "missing for at least one cell type")
    if values.shape[0] == 0:
        raise MissingDataError(series.index, "score matrix has no cell types")

    types = sorted(values.index, key=str)
    matrix = values.loc[types].to_numpy(dtype=float)
    labels = series.to_numpy()

    totals: List[Tuple[Any, np.ndarray, int]] = []
    empty: List[Any] = []
    for cluster in _cluster_order(series):
        positions = np.flatnonzero(labels == cluster)
        if positions.size == 0:
            empty.append(cluster)
            continue
        totals.append((cluster, matrix[:, positions].sum(axis=1), int(positions.size)))

    if empty:
        raise EmptyClusterError(empty)
    return types, totals


def rank_cluster_types(
    scores: ScoreInput,
    clusters: ClusterInput,
    top_n: Optional[int] = 10,
) -> pd.DataFrame:
    """Rank candidate cell types for every cluster by aggregate score.

    Args:
        scores: Cell type x cell score matrix, as a DataFrame (index = cell
            types, columns = cell ids) or a ``{cell_type: {cell: score}}``
            mapping.
        clusters: Cluster label per cell, as a Series indexed by cell id or
            a ``{cell: cluster}`` mapping.
        top_n: Number of candidates kept per cluster (None keeps all).

    Returns:
        Long table with columns ``cluster``, ``type``, ``score``, ``n_cells``,
        ordered by cluster and then by descending score. Equal scores are
        ordered by cell-type name.

    Raises:
        MissingDataError: A clustered cell has no score for some cell type.
        EmptyClusterError: A cluster has no member cells.
    """
    if top_n is not None and top_n < 1:
        raise ValueError(f"top_n must be at least 1, got {top_n}")

    frame = _as_score_frame(scores)
    series = _as_cluster_series(clusters)
    types, totals = _cluster_totals(frame, series)
    type_rank = np.arange(len(types))

    records = []
    for cluster, cluster_totals, n_cells in totals:
        order = np.lexsort((type_rank, -cluster_totals))
        if top_n is not None:
            order = order[:top_n]
        for idx in order:
            records.append((cluster, types[idx], float(cluster_totals[idx]), n_cells))

    table = pd.DataFrame.from_records(records, columns=CLUSTER_TABLE_COLUMNS)
    if isinstance(series.dtype, pd.CategoricalDtype):
        table["cluster"] = pd.Categorical(
            table["cluster"], categories=series.cat.categories
        )
    table["n_cells"] = table["n_cells"].astype(int)
    return table


def consolidate_cluster_scores(
    scores: ScoreInput,
    clusters: ClusterInput,
    confidence_fraction: float = DEFAULT_CONFIDENCE_FRACTION,
    unknown_label: str = UNKNOWN_LABEL,
) -> pd.DataFrame:
    """Assign one cell type per cluster from per-cell scores.

    The winning type is the one with the largest summed score over the
    cluster's cells. Because such sums grow with cluster size, a winner
    whose score is below ``n_cells * confidence_fraction`` is replaced with
    ``unknown_label``. A score exactly at the threshold is kept.

    Args:
        scores: Cell type x cell score matrix (see ``rank_cluster_types``).
        clusters: Cluster label per cell.
        confidence_fraction: Per-cell score needed for a confident call.
        unknown_label: Label given to low-confidence clusters.

    Returns:
        One row per cluster with columns ``cluster``, ``type``, ``score``,
        ``n_cells``.

    Raises:
        MissingDataError: A clustered cell has no score for some cell type.
        EmptyClusterError: A cluster has no member cells.

    Example:
        >>> scores = {"B": {"c1": 3, "c2": 3, "c3": 0.1},
        ...           "T": {"c1": 0, "c2": 0, "c3": 5}}
        >>> consolidate_cluster_scores(scores, {"c1": 0, "c2": 0, "c3": 1})
           cluster type  score  n_cells
        0        0    B    6.0        2
        1        1    T    5.0        1
    """
    if confidence_fraction < 0:
        raise ValueError(
            f"confidence_fraction must be non-negative, got {confidence_fraction}"
        )

    table = rank_cluster_types(scores, clusters, top_n=1)
    low_confidence = table["score"] < table["n_cells"] * confidence_fraction
    table.loc[low_confidence, "type"] = unknown_label

    logger.info(
        "Consolidated %d clusters (%d below confidence threshold %.2f x n_cells)",
        len(table),
        int(low_confidence.sum()),
        confidence_fraction,
    )
    return table.reset_index(drop=True)


def label_cells(
    clusters: ClusterInput,
    cluster_annotation: pd.DataFrame,
    unknown_label: str = UNKNOWN_LABEL,
    name: str = "cell_type",
) -> pd.Series:
    """Join a per-cluster annotation back onto cells.

    Args:
        clusters: Cluster label per cell.
        cluster_annotation: Table with ``cluster`` and ``type`` columns.
        unknown_label: Label for cells whose cluster is not in the table.
        name: Name of the returned Series.

    Returns:
        Categorical Series of cell-type labels indexed like ``clusters``.
    """
    missing_cols = {"cluster", "type"} - set(cluster_annotation.columns)
    if missing_cols:
        raise KeyError(f"Cluster annotation missing columns: {sorted(missing_cols)}")

    if isinstance(clusters, pd.Series):
        series = clusters
    else:
        series = pd.Series(dict(clusters), dtype=object)

    table_clusters = cluster_annotation["cluster"].astype(object)
    types = cluster_annotation["type"].astype(str)
    mapping = dict(zip(table_clusters, types))
    labels = series.astype(object).map(mapping)

    # Cells whose label has no exact match fall back to string matching,
    # e.g. integer clusters against a table read from CSV.
    unmatched = labels.isna() & series.notna()
    if unmatched.any():
        by_string = dict(zip(table_clusters.astype(str), types))
        labels[unmatched] = series[unmatched].astype(str).map(by_string)
    labels = labels.fillna(unknown_label)

    categories = list(dict.fromkeys(types))
    if (labels == unknown_label).any() and unknown_label not in categories:
        categories.append(unknown_label)
    return pd.Series(
        pd.Categorical(labels, categories=categories),
        index=series.index,
        name=name,
    )
