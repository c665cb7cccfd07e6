"""ScType marker-based cell-type scoring.

Gene sets come from the ScType marker database (Excel) or a YAML file with
the same columns. Each cell gets an enrichment score per cell type from its
z-scored expression of the type's positive and negative markers; the
per-cell scores are then consolidated per cluster.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import yaml

from ...io.tables import download_file
from ...utils.matrix import expression_frame
from .config import ScTypeConfig
from .consolidation import consolidate_cluster_scores, label_cells, rank_cluster_types

logger = logging.getLogger(__name__)

GENE_SET_COLUMNS = ["tissueType", "cellName", "geneSymbolmore1", "geneSymbolmore2"]
DEFAULT_DB_PATH = Path(__file__).resolve().parents[2] / "data" / "pbmc_markers.yaml"

_EMPTY_SYMBOLS = {"", "NONE", "NA", "NAN"}


@dataclass
class GeneSets:
    """Positive and negative marker genes per cell type.

    Attributes:
        positive: Cell type -> genes expected to be expressed
        negative: Cell type -> genes expected to be absent
        tissue: Tissue the gene sets were taken from
    """

    positive: Dict[str, List[str]] = field(default_factory=dict)
    negative: Dict[str, List[str]] = field(default_factory=dict)
    tissue: str = ""

    @property
    def cell_types(self) -> List[str]:
        return list(self.positive)

    def genes(self) -> List[str]:
        """All positive and negative genes, in first-seen order."""
        seen = [g for genes in self.positive.values() for g in genes]
        seen += [g for genes in self.negative.values() for g in genes]
        return list(dict.fromkeys(seen))


def load_sctype_db(source: Optional[str] = None, cache_dir: str = "data") -> pd.DataFrame:
    """Load a ScType marker database.

    Args:
        source: Path or URL of the Excel database, or a local YAML file with
            a ``gene_sets`` list. None loads the bundled PBMC marker sets.
        cache_dir: Where a URL source is downloaded; an existing copy is
            reused.

    Returns:
        DataFrame with columns tissueType, cellName, geneSymbolmore1,
        geneSymbolmore2.
    """
    source = str(source) if source is not None else str(DEFAULT_DB_PATH)
    if source.startswith(("http://", "https://")):
        source = str(download_file(source, Path(cache_dir) / source.rsplit("/", 1)[-1]))

    if source.endswith((".yaml", ".yml")):
        with open(source) as f:
            data = yaml.safe_load(f) or {}
        records = data.get("gene_sets", []) if isinstance(data, dict) else data
        db = pd.DataFrame.from_records(records)
    elif source.endswith((".xlsx", ".xls")):
        db = pd.read_excel(source)
    else:
        raise ValueError(f"Unsupported marker database format: {source}")

    missing = [col for col in GENE_SET_COLUMNS if col not in db.columns]
    if missing:
        raise ValueError(f"Marker database {source} missing columns: {missing}")

    logger.info("Loaded %d marker gene set rows from %s", len(db), source)
    return db


def _split_symbols(value) -> List[str]:
    """Split a comma-separated gene list into clean upper-case symbols."""
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return []
    symbols = [s.strip().upper() for s in str(value).split(",")]
    return list(dict.fromkeys(s for s in symbols if s not in _EMPTY_SYMBOLS))


def prepare_gene_sets(db: pd.DataFrame, tissue: str) -> GeneSets:
    """Build positive/negative gene sets for one tissue.

    Rows sharing a cell-type name are merged.
    """
    rows = db[db["tissueType"].astype(str) == tissue]
    if rows.empty:
        available = sorted(db["tissueType"].astype(str).unique())
        raise ValueError(
            f"Tissue '{tissue}' not found in marker database; available: {available}"
        )

    gene_sets = GeneSets(tissue=tissue)
    for _, row in rows.iterrows():
        name = str(row["cellName"]).strip()
        positive = gene_sets.positive.get(name, []) + _split_symbols(row["geneSymbolmore1"])
        negative = gene_sets.negative.get(name, []) + _split_symbols(row["geneSymbolmore2"])
        gene_sets.positive[name] = list(dict.fromkeys(positive))
        gene_sets.negative[name] = list(dict.fromkeys(negative))

    logger.info("Prepared %d gene sets for tissue '%s'", len(gene_sets.positive), tissue)
    return gene_sets


def marker_sensitivity(positive: Dict[str, List[str]]) -> pd.Series:
    """Weight each positive marker by how specific it is.

    A gene found in one gene set gets weight 1, a gene found in every set
    gets 0, linearly in between. With a single gene set every weight is 0.5.
    """
    genes = [g for markers in positive.values() for g in markers]
    if not genes:
        return pd.Series(dtype=float)

    counts = pd.Series(genes).value_counts()
    n_sets = len(positive)
    if n_sets > 1:
        return (n_sets - counts).astype(float) / (n_sets - 1)
    return pd.Series(0.5, index=counts.index)


def sctype_score(
    expr: pd.DataFrame,
    positive: Dict[str, List[str]],
    negative: Optional[Dict[str, List[str]]] = None,
    scaled: bool = True,
) -> pd.DataFrame:
    """Compute ScType enrichment scores.

    Args:
        expr: Genes x cells expression. Z-scored per gene when ``scaled``.
        positive: Cell type -> positive marker genes.
        negative: Cell type -> negative marker genes.
        scaled: If False, z-score each gene across cells first. Genes with
            zero variance get z = 0.

    Returns:
        Cell types x cells score matrix. Cell types with no positive marker
        present in ``expr`` are dropped.
    """
    negative = negative or {}

    if scaled:
        z = expr.astype(float)
    else:
        centered = expr.sub(expr.mean(axis=1), axis=0)
        z = centered.div(expr.std(axis=1, ddof=1), axis=0)
        z = z.replace([np.inf, -np.inf], np.nan).fillna(0.0)

    weights = marker_sensitivity(positive)
    weighted = weights.index.intersection(z.index)
    z = z.copy()
    z.loc[weighted] = z.loc[weighted].mul(weights.loc[weighted], axis=0)

    available = set(z.index)
    rows = {}
    for cell_type, genes in positive.items():
        pos = [g for g in genes if g in available]
        if not pos:
            logger.debug("No positive markers of '%s' in data; skipping", cell_type)
            continue
        score = z.loc[pos].sum(axis=0) / np.sqrt(len(pos))
        neg = [g for g in negative.get(cell_type, []) if g in available]
        if neg:
            score = score - z.loc[neg].sum(axis=0) / np.sqrt(len(neg))
        rows[cell_type] = score

    if not rows:
        raise ValueError("None of the positive marker genes are present in the data")

    return pd.DataFrame(rows).T


@dataclass
class ScTypeResult:
    """Result from ScType annotation.

    Attributes:
        scores: Cell types x cells enrichment scores
        candidates: Top candidate types per cluster
        clusters: One consolidated row per cluster
        labels: Cell-type label per cell
    """

    scores: pd.DataFrame
    candidates: pd.DataFrame
    clusters: pd.DataFrame
    labels: pd.Series


class ScTypeAnnotator:
    """Annotate clusters with ScType marker scores.

    Example:
        >>> annotator = ScTypeAnnotator(ScTypeConfig(tissue="Immune system"))
        >>> result = annotator.annotate(adata, cluster_key="leiden")
        >>> result.clusters.head()
    """

    def __init__(
        self,
        config: Optional[ScTypeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ScTypeConfig()
        self.logger = logger or logging.getLogger(__name__)

    def load_gene_sets(self) -> GeneSets:
        """Load gene sets for the configured tissue."""
        db = load_sctype_db(self.config.db_source, cache_dir=self.config.db_cache_dir)
        return prepare_gene_sets(db, self.config.tissue)

    def score_cells(self, adata, gene_sets: GeneSets) -> pd.DataFrame:
        """Score every cell against every gene set."""
        present = set(adata.var_names)
        genes = [g for g in gene_sets.genes() if g in present]
        if not genes:
            raise ValueError(
                f"None of the {len(gene_sets.genes())} marker genes are in adata.var_names"
            )
        self.logger.info(
            "Scoring %d cells with %d gene sets (%d marker genes present)",
            adata.n_obs,
            len(gene_sets.positive),
            len(genes),
        )
        expr = expression_frame(adata, genes, layer=self.config.layer)
        return sctype_score(
            expr, gene_sets.positive, gene_sets.negative, scaled=self.config.scaled
        )

    def annotate(
        self,
        adata,
        cluster_key: str = "leiden",
        gene_sets: Optional[GeneSets] = None,
    ) -> ScTypeResult:
        """Score cells and assign one cell type per cluster.

        Args:
            adata: AnnData with scaled expression and cluster assignments
            cluster_key: obs column with cluster labels
            gene_sets: Gene sets to use; loaded from the config if None

        Returns:
            ScTypeResult with scores, candidate and consolidated tables, and
            per-cell labels. The AnnData is not modified.
        """
        if cluster_key not in adata.obs:
            raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")

        cfg = self.config
        if gene_sets is None:
            gene_sets = self.load_gene_sets()

        scores = self.score_cells(adata, gene_sets)
        clusters = adata.obs[cluster_key]
        candidates = rank_cluster_types(scores, clusters, top_n=cfg.top_n)
        table = consolidate_cluster_scores(
            scores,
            clusters,
            confidence_fraction=cfg.confidence_fraction,
            unknown_label=cfg.unknown_label,
        )
        labels = label_cells(
            clusters, table, unknown_label=cfg.unknown_label, name="sctype_cell_type"
        )

        for row in table.itertuples(index=False):
            self.logger.info(
                "Cluster %s -> %s (score=%.1f, n_cells=%d)",
                row.cluster,
                row.type,
                row.score,
                row.n_cells,
            )

        return ScTypeResult(
            scores=scores, candidates=candidates, clusters=table, labels=labels
        )
