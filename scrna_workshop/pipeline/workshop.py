"""The workshop analysis as a stage pipeline.

``WorkshopRun`` registers one stage per analysis step on an
``InMemoryExecutor``:

    load -> qc -> normalize -> pca -> integrate -> cluster -> markers
         -> annotate -> conserved -> condition_de -> pseudobulk

The AnnData travels on the run object (``run.adata``); each stage returns a
small result used by later stages and by the run summary. Tables go to
``<output_dir>/tables``, figures to ``<output_dir>/figures``, logs to
``<output_dir>/logs``, and the final AnnData to ``<output_dir>/workshop.h5ad``.
"""

import logging
import re
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..config import WorkshopConfig
from ..core.annotation import AnnotationEngine
from ..core.clustering import ClusteringEngine, MarkerRunner
from ..core.de import PseudobulkDE, aggregate_pseudobulk, condition_markers, find_conserved_markers
from ..core.integration import IntegrationEngine, simulate_conditions, simulate_replicates
from ..core.preprocessing import CellQC, DataLoader, Normalizer
from ..io.logging import log_json, log_yaml
from ..io.tables import ensure_output_dir, write_dataframe
from .executor import InMemoryExecutor
from .logger import PipelineLogger

logger = logging.getLogger(__name__)

STAGES = (
    ("load", "Load 10x matrices", []),
    ("qc", "Cell quality control", ["load"]),
    ("normalize", "Normalization and variable genes", ["qc"]),
    ("pca", "Principal component analysis", ["normalize"]),
    ("integrate", "Simulated conditions and integration", ["pca"]),
    ("cluster", "Neighbors, Leiden and UMAP", ["integrate"]),
    ("markers", "Cluster marker genes", ["cluster"]),
    ("annotate", "Cell-type annotation", ["cluster"]),
    ("conserved", "Conserved markers", ["annotate"]),
    ("condition_de", "Per cell type condition DE", ["annotate"]),
    ("pseudobulk", "Pseudo-bulk DESeq2", ["condition_de"]),
)


def _slug(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", str(value)).strip("_") or "unnamed"


class WorkshopRun:
    """Run the full workshop analysis.

    Parameters
    ----------
    config : WorkshopConfig, optional
        Run configuration. Defaults reproduce the workshop.
    output_dir : str, optional
        Overrides ``config.output_dir``
    plots : bool, optional
        Overrides ``config.plots``
    adata : AnnData, optional
        Raw-count AnnData to start from instead of downloading the dataset.
        It is copied; the caller's object is not modified.
    pipeline_logger : PipelineLogger, optional
        Stage logger. Created under ``<output_dir>/logs`` if None.

    Example
    -------
    >>> run = WorkshopRun(WorkshopConfig.from_yaml("workshop.yaml"))
    >>> results = run.run()
    >>> run.adata.obs["cell_type"].value_counts()
    """

    def __init__(
        self,
        config: Optional[WorkshopConfig] = None,
        output_dir: Optional[str] = None,
        plots: Optional[bool] = None,
        adata: Optional[Any] = None,
        pipeline_logger: Optional[PipelineLogger] = None,
    ):
        self.config = config or WorkshopConfig.default()
        self.output_dir = Path(output_dir or self.config.output_dir)
        self.plots = self.config.plots if plots is None else plots
        self.tables_dir = self.output_dir / "tables"
        self.figures_dir = self.output_dir / "figures"
        self.logs_dir = self.output_dir / "logs"
        self._input = adata
        self._owns_logger = pipeline_logger is None
        self.pipeline_logger = pipeline_logger
        self.adata: Any = None
        self.executor = InMemoryExecutor()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _load(self, stage_results):
        if self._input is not None:
            adata = self._input.copy()
            if "counts" not in adata.layers:
                adata.layers["counts"] = adata.X.copy()
            self.adata = adata
            logger.info("Using provided AnnData: %d cells x %d genes", adata.n_obs, adata.n_vars)
            return {"n_cells": adata.n_obs, "n_genes": adata.n_vars, "source": "in-memory"}

        result = DataLoader(self.config.loader).load()
        self.adata = result.adata
        return result.to_dict()

    def _qc(self, stage_results):
        qc = CellQC(self.config.qc)
        qc.compute_metrics(self.adata)
        if self.plots:
            from ..viz import plot_qc_scatter, plot_qc_violin

            plot_qc_violin(self.adata, self.figures_dir / "qc_violin.png")
            plot_qc_scatter(self.adata, self.figures_dir / "qc_scatter.png")

        result = qc.filter(self.adata)
        self.adata = result.adata
        return result.to_dict()

    def _normalize(self, stage_results):
        genes = Normalizer(self.config.normalization).run(self.adata)
        write_dataframe(
            pd.DataFrame({"gene": genes, "rank": range(1, len(genes) + 1)}),
            self.tables_dir / "variable_genes.csv",
        )
        if self.plots:
            from ..viz import plot_variable_genes

            plot_variable_genes(self.adata, self.figures_dir / "variable_genes.png")
        return {"n_variable_genes": len(genes), "top_variable_genes": genes[:10]}

    def _pca(self, stage_results):
        engine = ClusteringEngine(self.config.clustering)
        n_comps = engine.run_pca(self.adata)
        elbow = engine.elbow_table(self.adata)
        write_dataframe(elbow, self.tables_dir / "pca_elbow.csv")

        if self.plots:
            from ..viz import plot_elbow, plot_pca, plot_pca_loadings

            plot_pca_loadings(self.adata, self.figures_dir / "pca_loadings.png")
            plot_pca(self.adata, self.figures_dir / "pca.png")
            plot_elbow(elbow, self.figures_dir / "pca_elbow.png")
        return {"n_comps": n_comps}

    def _integrate(self, stage_results):
        cfg = self.config.integration
        conditions = simulate_conditions(
            self.adata,
            labels=cfg.condition_labels,
            prob=cfg.condition_prob,
            seed=cfg.random_seed,
            name=cfg.condition_key,
        )
        self.adata.obs[cfg.condition_key] = conditions
        result = IntegrationEngine(cfg).integrate(self.adata, batch_key=cfg.condition_key)
        return asdict(result)

    def _cluster(self, stage_results):
        integration = stage_results.get("integrate") or {}
        use_rep = integration.get("use_rep", "X_pca")
        cluster_key = self.config.clustering.cluster_key

        engine = ClusteringEngine(self.config.clustering)
        summary: Dict[str, Any] = {}
        if self.config.dims:
            dims = engine.dims_sweep(self.adata, self.config.dims, use_rep=use_rep)
            write_dataframe(dims, self.tables_dir / "dims_sweep.csv")
            summary["dims_sweep"] = dims.to_dict(orient="records")
        if self.config.resolutions:
            sweep = engine.resolution_sweep(self.adata, self.config.resolutions, use_rep=use_rep)
            write_dataframe(sweep, self.tables_dir / "resolution_sweep.csv")
            summary["resolution_sweep"] = sweep.to_dict(orient="records")
            if self.plots:
                from ..viz import plot_resolution_sweep

                plot_resolution_sweep(sweep, self.figures_dir / "resolution_sweep.png")

        result = engine.run_clustering(self.adata, use_rep=use_rep, cluster_key=cluster_key)
        sizes = pd.DataFrame(
            list(result.cluster_sizes.items()), columns=["cluster", "n_cells"]
        )
        write_dataframe(sizes, self.tables_dir / "cluster_sizes.csv")

        if self.plots and "X_umap" in self.adata.obsm:
            from ..viz import plot_umap

            plot_umap(self.adata, self.figures_dir / "umap_clusters.png", color=cluster_key, legend_loc="on data")
            plot_umap(
                self.adata,
                self.figures_dir / "umap_condition.png",
                color=self.config.integration.condition_key,
            )
        summary.update(asdict(result))
        return summary

    def _markers(self, stage_results):
        cluster_key = self.config.clustering.cluster_key
        runner = MarkerRunner(self.config.markers)
        markers = runner.find_all_markers(self.adata, cluster_key)
        top = runner.top_markers(markers)
        write_dataframe(markers, self.tables_dir / "cluster_markers.csv")
        write_dataframe(top, self.tables_dir / "top_markers.csv")

        genes = list(dict.fromkeys(top["gene"]))
        if self.plots and genes:
            from ..viz import plot_marker_heatmap

            plot_marker_heatmap(
                self.adata, genes, cluster_key, self.figures_dir / "marker_heatmap.png", layer="scaled"
            )
        return {"n_markers": len(markers), "heatmap_genes": genes}

    def _annotate(self, stage_results):
        cluster_key = self.config.clustering.cluster_key
        result = AnnotationEngine(self.config.annotation).run(self.adata, cluster_key=cluster_key)
        result.attach(self.adata, key=self.config.de.cell_type_key)
        result.write(self.tables_dir / "annotation")

        if self.plots and "X_umap" in self.adata.obsm:
            from ..viz import plot_umap

            plot_umap(
                self.adata,
                self.figures_dir / "umap_cell_type.png",
                color=self.config.de.cell_type_key,
            )
        counts = result.cell_type.value_counts()
        return {"primary": result.primary, "cell_types": {str(k): int(v) for k, v in counts.items()}}

    def _conserved(self, stage_results):
        cfg = self.config.de
        cluster_key = self.config.clustering.cluster_key
        clusters = set(self.adata.obs[cluster_key].astype(str))
        if cfg.conserved_ident not in clusters:
            logger.warning(
                "Cluster '%s' not present (%d clusters); skipping conserved markers",
                cfg.conserved_ident,
                len(clusters),
            )
            return {"n_genes": 0}

        table = find_conserved_markers(
            self.adata,
            ident=cfg.conserved_ident,
            cluster_key=cluster_key,
            condition_key=cfg.condition_key,
            layer=cfg.layer,
            method=cfg.method,
            min_cells_per_group=cfg.min_cells_per_group,
        )
        write_dataframe(
            table,
            self.tables_dir / f"conserved_markers_{_slug(cfg.conserved_ident)}.csv",
            index=True,
        )
        return {"ident": cfg.conserved_ident, "n_genes": len(table)}

    def _condition_de(self, stage_results):
        cfg = self.config.de
        if cfg.cell_type_key not in self.adata.obs:
            logger.warning("No '%s' labels; skipping condition DE", cfg.cell_type_key)
            return {}

        tables = condition_markers(
            self.adata,
            cell_type_key=cfg.cell_type_key,
            condition_key=cfg.condition_key,
            ident_1=cfg.ident_1,
            ident_2=cfg.ident_2,
            layer=cfg.layer,
            method=cfg.method,
            min_cells_per_group=cfg.min_cells_per_group,
        )
        out_dir = ensure_output_dir(self.tables_dir / "condition_de")
        for cell_type, table in tables.items():
            write_dataframe(table, out_dir / f"{_slug(cell_type)}.csv")

        if self.plots:
            self._plot_condition_figures(stage_results)
        return {cell_type: len(table) for cell_type, table in tables.items()}

    def _plot_condition_figures(self, stage_results) -> None:
        from ..viz import plot_features, plot_split_dotplot

        cfg = self.config.de
        markers = (stage_results.get("markers") or {}).get("heatmap_genes", [])
        genes = [g for g in list(cfg.feature_genes) + list(markers) if g in self.adata.var_names]
        genes = list(dict.fromkeys(genes))[:20]
        if not genes:
            logger.warning("None of the dot plot genes are present; skipping condition figures")
            return
        plot_split_dotplot(
            self.adata,
            genes,
            cfg.cell_type_key,
            cfg.condition_key,
            self.figures_dir / "dotplot_by_condition.png",
            layer=cfg.layer,
        )
        features = [g for g in cfg.feature_genes if g in self.adata.var_names]
        if features and "X_umap" in self.adata.obsm:
            plot_features(
                self.adata,
                features,
                self.figures_dir / "features_by_condition.png",
                split_by=cfg.condition_key,
                layer=cfg.layer,
            )

    def _pseudobulk(self, stage_results):
        cfg = self.config.de
        icfg = self.config.integration
        if cfg.cell_type_key not in self.adata.obs:
            logger.warning("No '%s' labels; skipping pseudo-bulk DE", cfg.cell_type_key)
            return {}

        self.adata.obs[cfg.replicate_key] = simulate_replicates(
            self.adata,
            n_replicates=icfg.n_replicates,
            seed=icfg.random_seed,
            name=cfg.replicate_key,
        )
        pseudo = aggregate_pseudobulk(
            self.adata,
            [cfg.condition_key, cfg.cell_type_key, cfg.replicate_key],
            layer=cfg.counts_layer,
        )
        write_dataframe(pseudo.obs, self.tables_dir / "pseudobulk_samples.csv", index=True)

        de = PseudobulkDE(cfg)
        testable = de.testable_cell_types(pseudo)
        requested = list(cfg.pseudobulk_cell_types) or testable
        out_dir = ensure_output_dir(self.tables_dir / "pseudobulk_de")

        summary: Dict[str, Any] = {}
        for cell_type in requested:
            if cell_type not in testable:
                logger.warning(
                    "Skipping pseudo-bulk DE for %s: fewer than %d samples per condition",
                    cell_type,
                    cfg.min_samples_per_level,
                )
                continue
            table = de.run(pseudo, cell_type)
            write_dataframe(table, out_dir / f"{_slug(cell_type)}.csv", index=True)
            summary[cell_type] = int((table["padj"] < 0.05).sum())
        return summary

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def _register(self) -> None:
        for stage_id, name, depends_on in STAGES:
            self.executor.register_stage(
                stage_id, getattr(self, f"_{stage_id}"), depends_on=depends_on, name=name
            )

    def run(self, skip: Optional[List[str]] = None) -> Dict[str, Any]:
        """Run every stage not listed in ``skip`` (or ``config.skip_stages``).

        Returns
        -------
        Dict[str, Any]
            Stage id -> stage summary (None for skipped stages)
        """
        skip = list(skip if skip is not None else self.config.skip_stages)
        stage_ids = [stage_id for stage_id, _, _ in STAGES]
        unknown = [s for s in skip if s not in stage_ids]
        if unknown:
            raise ValueError(f"Unknown stage(s) to skip: {unknown}")
        if "load" in skip:
            raise ValueError("The 'load' stage cannot be skipped")

        ensure_output_dir(self.output_dir)
        if self.pipeline_logger is None:
            self.pipeline_logger = PipelineLogger(str(self.logs_dir))
            self.pipeline_logger.setup()
        self.executor.logger = self.pipeline_logger
        if not self.executor.stages:
            self._register()

        self.results: Dict[str, Any] = {}
        try:
            self.results = self.executor.run(skip=skip)
            h5ad_path = self.output_dir / "workshop.h5ad"
            self.adata.write_h5ad(h5ad_path)
            logger.info("Wrote %s", h5ad_path)
            self._write_summary(h5ad_path)
        finally:
            self._write_stage_records(skip)
            if self._owns_logger:
                self.pipeline_logger.close()
        return self.results

    def _write_stage_records(self, skip: List[str]) -> None:
        """Append one JSON line per stage to logs/stages.jsonl."""
        path = self.logs_dir / "stages.jsonl"
        for stage_id, name, _ in STAGES:
            if stage_id in self.executor.completed_stages:
                status = "completed"
            elif stage_id in skip:
                status = "skipped"
            else:
                status = "not_run"
            log_json(path, {
                "stage": stage_id,
                "name": name,
                "status": status,
                "duration_s": round(self.executor.durations.get(stage_id, 0.0), 3),
            })

    def _write_summary(self, h5ad_path: Path) -> Path:
        summary = {
            "output_dir": str(self.output_dir),
            "h5ad": str(h5ad_path),
            "n_cells": int(self.adata.n_obs),
            "n_genes": int(self.adata.n_vars),
            "durations": {k: round(v, 2) for k, v in self.executor.durations.items()},
            "stages": self.results,
            "config": self.config.to_dict(),
        }
        path = self.output_dir / "run_summary.yaml"
        if path.exists():
            path.unlink()
        log_yaml(path, _plain(summary))
        logger.info("Wrote run summary %s", path)
        return path


def _plain(value: Any) -> Any:
    """Convert numpy scalars and tuples to YAML-safe builtins."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, np.generic):
        return value.item()
    return value
