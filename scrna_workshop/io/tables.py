"""Table and download I/O for scrna-workshop.

Reads the score matrix and cluster assignment tables consumed by the
consolidator, writes result tables, and downloads remote inputs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import pandas as pd
import requests

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CHUNK_SIZE = 1 << 20


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    logger.debug("Wrote %d rows to %s", len(df), output_path)
    return output_path


def read_score_matrix(path: PathLike) -> pd.DataFrame:
    """Read a cell type x cell score matrix.

    The first column holds cell-type names; every other column is a cell.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Score matrix not found: {path}")
    frame = pd.read_csv(path, index_col=0)
    frame.index = frame.index.astype(str)
    frame.columns = frame.columns.astype(str)
    if frame.empty:
        raise ValueError(f"Score matrix is empty: {path}")
    return frame.apply(pd.to_numeric, errors="raise")


def read_cluster_assignment(
    path: PathLike,
    cell_col: str = "cell",
    cluster_col: str = "cluster",
) -> pd.Series:
    """Read a two-column cell -> cluster table.

    Cluster labels are read as strings and returned as a categorical.
    Categories are in numeric order when every label is an integer, in
    lexicographic order otherwise.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Cluster assignment not found: {path}")
    table = pd.read_csv(path, dtype=str)
    missing = [col for col in (cell_col, cluster_col) if col not in table.columns]
    if missing:
        raise KeyError(f"Cluster assignment {path} missing columns: {missing}")

    clusters = table[cluster_col]
    labels = sorted(clusters.dropna().unique())
    if all(label.lstrip("-").isdigit() for label in labels):
        labels = sorted(labels, key=int)
    series = pd.Series(
        pd.Categorical(clusters, categories=labels),
        index=table[cell_col].to_numpy(),
        name=cluster_col,
    )
    series.index.name = cell_col
    return series


def download_file(url: str, destination: PathLike, timeout: int = 60) -> Path:
    """Download ``url`` to ``destination`` unless it already exists.

    The file is streamed to a temporary ``.part`` path and renamed on
    success, so an interrupted download never leaves a truncated file.
    """
    destination = Path(destination)
    if destination.exists():
        logger.info("Using cached download: %s", destination)
        return destination

    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".part")

    logger.info("Downloading %s", url)
    with requests.get(url, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        with partial.open("wb") as handle:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                handle.write(chunk)
    partial.replace(destination)

    logger.info("Saved %s (%.1f MB)", destination, destination.stat().st_size / 1e6)
    return destination
