"""Command-line interface for scrna-workshop.

Provides CLI commands for the full workshop run, cluster consolidation of
cell-type scores, and annotation of an existing AnnData.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from ..core.annotation.config import ANNOTATION_METHODS


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("scrna_workshop")


@click.group()
@click.version_option(version="0.1.0", prog_name="scrna-workshop")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """scrna-workshop: single-cell RNA-seq analysis of PBMC 3k.

    QC, normalization, clustering, cell-type annotation and differential
    expression across simulated conditions.

    Examples:

        # Run the whole workshop with default settings
        scrna-workshop run --out results/

        # Consolidate per-cell scores into one label per cluster
        scrna-workshop consolidate --scores scores.csv --clusters clusters.csv --out types.csv

        # Annotate a clustered AnnData
        scrna-workshop annotate --input clustered.h5ad --method sctype --out annotated/
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Workshop configuration file (YAML)")
@click.option("--out", "-o", "output_path", type=click.Path(),
              help="Output directory (overrides the config)")
@click.option("--input", "-i", "input_path", type=click.Path(exists=True),
              help="Raw-count AnnData (.h5ad) to use instead of downloading PBMC 3k")
@click.option("--skip-plots", is_flag=True, help="Do not write figures")
@click.option("--skip", "skip_stages", multiple=True, help="Stage to skip (repeatable)")
@click.option("--dry-run", is_flag=True, help="Show execution plan without running")
@click.pass_context
def run(
    ctx: click.Context,
    config: Optional[str],
    output_path: Optional[str],
    input_path: Optional[str],
    skip_plots: bool,
    skip_stages: Tuple[str, ...],
    dry_run: bool,
) -> None:
    """Run the full workshop pipeline.

    Stages: load, qc, normalize, pca, integrate, cluster, markers, annotate,
    conserved, condition_de, pseudobulk.
    """
    logger = ctx.obj["logger"]

    import matplotlib

    matplotlib.use("Agg")
    from ..config import WorkshopConfig
    from ..pipeline import STAGES, PipelineLogger, WorkshopRun

    cfg = WorkshopConfig.from_yaml(Path(config)) if config else WorkshopConfig.default()
    if skip_stages:
        cfg.skip_stages = list(skip_stages)

    click.echo(f"Pipeline stages: {' -> '.join(stage_id for stage_id, _, _ in STAGES)}")
    if dry_run:
        click.echo("Dry run - no stages will be executed")
        for stage_id, name, _ in STAGES:
            mark = " (skipped)" if stage_id in cfg.skip_stages else ""
            click.echo(f"  {stage_id}: {name}{mark}")
        return

    adata = None
    if input_path:
        import anndata as ad

        logger.info("Loading AnnData from %s", input_path)
        adata = ad.read_h5ad(input_path)

    out_dir = Path(output_path or cfg.output_dir)
    pipeline_logger = PipelineLogger(
        str(out_dir / "logs"), log_level="DEBUG" if ctx.obj["debug"] else "INFO"
    )
    pipeline_logger.setup()
    workshop = WorkshopRun(
        cfg,
        output_dir=str(out_dir),
        plots=False if skip_plots else None,
        adata=adata,
        pipeline_logger=pipeline_logger,
    )
    try:
        results = workshop.run()
    except Exception as e:
        click.echo(f"Pipeline failed: {e}", err=True)
        sys.exit(1)
    finally:
        pipeline_logger.close()

    cluster = results.get("cluster") or {}
    click.echo(f"Pipeline completed: {workshop.adata.n_obs} cells, "
               f"{cluster.get('n_clusters', 0)} clusters")
    click.echo(f"Output saved to: {workshop.output_dir}")


@cli.command()
@click.option("--scores", "-s", "scores_path", required=True, type=click.Path(exists=True),
              help="Cell type x cell score matrix (CSV, cell types in the first column)")
@click.option("--clusters", "-k", "clusters_path", required=True, type=click.Path(exists=True),
              help="Cell to cluster table (CSV)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output CSV (one row per cluster)")
@click.option("--confidence-fraction", type=float, default=0.25, show_default=True,
              help="Per-cell score a cluster's best type needs to be kept")
@click.option("--unknown-label", default="Unknown", show_default=True,
              help="Label for low-confidence clusters")
@click.option("--cell-col", default="cell", show_default=True, help="Cell column of --clusters")
@click.option("--cluster-col", default="cluster", show_default=True,
              help="Cluster column of --clusters")
@click.option("--cell-labels", type=click.Path(),
              help="Also write per-cell labels to this CSV")
@click.pass_context
def consolidate(
    ctx: click.Context,
    scores_path: str,
    clusters_path: str,
    output_path: str,
    confidence_fraction: float,
    unknown_label: str,
    cell_col: str,
    cluster_col: str,
    cell_labels: Optional[str],
) -> None:
    """Assign one cell type per cluster from per-cell scores.

    The type with the largest summed score in a cluster wins; clusters whose
    best score is below n_cells x confidence-fraction are labelled Unknown.
    """
    logger = ctx.obj["logger"]

    from ..core.annotation import AnnotationError, consolidate_cluster_scores, label_cells
    from ..io.tables import read_cluster_assignment, read_score_matrix, write_dataframe

    try:
        scores = read_score_matrix(scores_path)
        clusters = read_cluster_assignment(clusters_path, cell_col=cell_col, cluster_col=cluster_col)
        logger.info("Loaded %d cell types x %d cells", scores.shape[0], scores.shape[1])
        table = consolidate_cluster_scores(
            scores,
            clusters,
            confidence_fraction=confidence_fraction,
            unknown_label=unknown_label,
        )
    except (AnnotationError, KeyError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    write_dataframe(table, output_path)
    if cell_labels:
        labels = label_cells(clusters, table, unknown_label=unknown_label)
        write_dataframe(labels.rename_axis(cell_col).reset_index(), cell_labels)

    n_unknown = int((table["type"] == unknown_label).sum())
    click.echo(f"Consolidated {len(table)} clusters ({n_unknown} {unknown_label})")
    click.echo(f"Output saved to: {output_path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Clustered AnnData file (.h5ad)")
@click.option("--method", "-m", "methods", multiple=True, default=("sctype",), show_default=True,
              type=click.Choice(list(ANNOTATION_METHODS)),
              help="Annotation method (repeatable; the first is primary)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--cluster-key", default="leiden", show_default=True, help="Cluster column name")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Workshop configuration (YAML); its annotation section is used")
@click.pass_context
def annotate(
    ctx: click.Context,
    input_path: str,
    methods: Tuple[str, ...],
    output_path: str,
    cluster_key: str,
    config: Optional[str],
) -> None:
    """Annotate cells of a clustered AnnData.

    Writes one label table per method and annotated.h5ad with the primary
    labels in obs["cell_type"].
    """
    logger = ctx.obj["logger"]
    logger.info("Running annotation on: %s", input_path)

    import anndata as ad
    from ..config import WorkshopConfig
    from ..core.annotation import AnnotationConfig, AnnotationEngine

    annotation = WorkshopConfig.from_yaml(Path(config)).annotation if config else AnnotationConfig()
    annotation.methods = list(dict.fromkeys(methods))
    annotation.primary = annotation.methods[0]

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)

    adata = ad.read_h5ad(input_path)
    logger.info("Loaded %d cells", adata.n_obs)

    try:
        result = AnnotationEngine(annotation).run(adata, cluster_key=cluster_key)
    except (KeyError, ValueError, RuntimeError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    result.attach(adata)
    result.write(out_dir)
    output_file = out_dir / "annotated.h5ad"
    adata.write_h5ad(output_file)

    for method in result.labels.columns:
        click.echo(f"{method}: {result.labels[method].nunique()} labels")
    click.echo(f"Output saved to: {output_file}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
