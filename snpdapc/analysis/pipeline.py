from dataclasses import dataclass
from logging import Logger
from typing import Any, Callable, Dict

import numpy as np
import pandas as pd

from snpdapc.analysis.clustering import ClusterAssignment, ClusterSelector
from snpdapc.analysis.cross_validation import CrossValidationResult, CrossValidator
from snpdapc.analysis.dapc import DAPC, DAPCModel
from snpdapc.filtering.qc_filter import QCFilter
from snpdapc.read_input.genotype_data import GenotypeData
from snpdapc.utils.containers import DAPCConfig
from snpdapc.utils.logging import LoggerManager


@dataclass(frozen=True)
class DAPCResult:
    """Everything a complete DAPC run produces.

    Attributes:
        config (DAPCConfig): Configuration used for the run.
        genotype_data (GenotypeData): Genotypes after QC.
        kept_samples (np.ndarray): Indices of retained individuals into the input matrix.
        kept_markers (np.ndarray): Indices of retained markers into the input matrix.
        qc_report (pd.DataFrame): Per-step filtering summary.
        clusters (ClusterAssignment): Selected K and group labels.
        xval (CrossValidationResult): PC-count cross-validation.
        model (DAPCModel): Final discriminant model.
    """

    config: DAPCConfig
    genotype_data: GenotypeData
    kept_samples: np.ndarray
    kept_markers: np.ndarray
    qc_report: pd.DataFrame
    clusters: ClusterAssignment
    xval: CrossValidationResult
    model: DAPCModel

    def results_table(self) -> pd.DataFrame:
        """Sample, assigned cluster and one posterior column per cluster.

        Posterior columns are named ``Posterior_<group>``; each row sums to 1.
        """
        post = pd.DataFrame(
            self.model.posterior,
            columns=[f"Posterior_{g}" for g in self.model.groups],
        )
        post.insert(0, "Assigned_Cluster", self.model.assignment)
        post.insert(0, "Sample", self.genotype_data.samples)
        return post

    def bic_table(self) -> pd.DataFrame:
        """Goodness-of-fit statistic per tested K."""
        return self.clusters.stat_table()

    def xval_table(self) -> pd.DataFrame:
        """MSA, MSE and RMSE per tested PC count."""
        return self.xval.table()

    def summary(self) -> Dict[str, Any]:
        """Scalar summary of the run."""
        return {
            "n_individuals": self.genotype_data.n_individuals,
            "n_markers": self.genotype_data.n_markers,
            "k_selected": int(self.clusters.k),
            "k_min_statistic": int(self.clusters.k_min_stat),
            "criterion": self.clusters.criterion,
            "selection_rule": self.clusters.selection_rule,
            "n_pca_clustering": int(self.clusters.n_pca),
            "n_pca": int(self.model.n_pca),
            "n_da": int(self.model.n_da),
            "mean_successful_assignment": float(self.xval.msa_at_optimum),
            "variance_retained": float(self.model.var_retained),
            "regularized": bool(self.model.regularized),
            "seed": int(self.config.seed),
        }


class DAPCPipeline:
    """End-to-end DAPC: QC, K selection, PC cross-validation and the final fit.

    Stages run strictly in sequence, each consuming the previous stage's output. A failing stage is logged with its name and the original exception propagates; nothing is exported by the pipeline itself.

    Example:
        >>> pipe = DAPCPipeline(DAPCConfig(seed=999))
        >>> res = pipe.run(gd)
        >>> res.results_table().head()
        >>> res.summary()

    Attributes:
        config (DAPCConfig): Run configuration.
        logger (Logger): Logger for this object.
    """

    def __init__(self, config: DAPCConfig | None = None) -> None:
        """Initialize the pipeline.

        Args:
            config (DAPCConfig | None): Run configuration. Defaults to ``DAPCConfig()``.
        """
        self.config = config or DAPCConfig()

        logman = LoggerManager(
            __name__,
            prefix=self.config.prefix,
            verbose=self.config.verbose,
            debug=self.config.debug,
            to_file=self.config.log_to_file,
        )
        self.logger: Logger = logman.get_logger()

    def _stage(self, name: str, func: Callable, *args, **kwargs):
        self.logger.info(f"Starting stage '{name}'.")
        try:
            return func(*args, **kwargs)
        except Exception as e:
            self.logger.error(f"Stage '{name}' failed: {e}")
            raise

    def _qc(self, genotype_data: GenotypeData):
        cfg = self.config
        qc = QCFilter(genotype_data)
        filtered = qc.run(cfg.max_ind_missing, cfg.max_locus_missing, cfg.min_maf)
        return filtered, qc

    def _clustering(self, gd: GenotypeData) -> ClusterAssignment:
        cfg = self.config
        n = gd.n_individuals
        max_k = cfg.max_k or min(10, int(np.floor(np.sqrt(n))))
        n_pca = cfg.n_pca_clustering or max(1, n // 3)

        selector = ClusterSelector(
            n_iter=cfg.n_iter,
            n_starts=cfg.n_starts,
            seed=cfg.seed,
            n_jobs=cfg.n_jobs,
            center=cfg.center,
            scale=cfg.scale,
            prefix=cfg.prefix,
            verbose=cfg.verbose,
            debug=cfg.debug,
        )
        return selector.select_k(
            gd,
            max_k,
            n_pca,
            criterion=cfg.criterion,
            selection_rule=cfg.selection_rule,
        )

    def _cross_validation(
        self, gd: GenotypeData, clusters: ClusterAssignment
    ) -> CrossValidationResult:
        cfg = self.config
        validator = CrossValidator(
            training_fraction=cfg.training_fraction,
            n_replicates=cfg.n_replicates,
            seed=cfg.seed,
            result=cfg.xval_result,
            center=cfg.center,
            scale=cfg.scale,
            n_jobs=cfg.n_jobs,
            prefix=cfg.prefix,
            verbose=cfg.verbose,
            debug=cfg.debug,
        )
        return validator.cross_validate(gd, clusters.labels, n_pca_max=cfg.n_pca_max)

    def _final_fit(
        self, gd: GenotypeData, clusters: ClusterAssignment, n_pca: int
    ) -> DAPCModel:
        cfg = self.config
        n_da = min(clusters.k - 1, cfg.max_n_da)
        engine = DAPC(
            center=cfg.center,
            scale=cfg.scale,
            prefix=cfg.prefix,
            verbose=cfg.verbose,
            debug=cfg.debug,
        )
        return engine.fit(gd, clusters.labels, n_pca, n_da)

    def run(self, genotype_data: GenotypeData) -> DAPCResult:
        """Run every stage on ``genotype_data``.

        Args:
            genotype_data (GenotypeData): Unfiltered genotypes.

        Returns:
            DAPCResult: Filtered data, cluster assignment, cross-validation and final model.

        Raises:
            SNPDAPCError: Any fatal error raised by a stage, after it is logged.
        """
        self.logger.info(f"Running DAPC on {genotype_data!r} with seed {self.config.seed}.")

        gd_filt, qc = self._stage("qc", self._qc, genotype_data)
        clusters = self._stage("clustering", self._clustering, gd_filt)
        xval = self._stage("cross_validation", self._cross_validation, gd_filt, clusters)
        model = self._stage(
            "dapc", self._final_fit, gd_filt, clusters, xval.best_n_pca
        )

        result = DAPCResult(
            config=self.config,
            genotype_data=gd_filt,
            kept_samples=qc.kept_samples,
            kept_markers=qc.kept_markers,
            qc_report=qc.report,
            clusters=clusters,
            xval=xval,
            model=model,
        )

        s = result.summary()
        self.logger.info(
            f"DAPC complete: K={s['k_selected']}, {s['n_pca']} PCs, {s['n_da']} DA axes, MSA={s['mean_successful_assignment']:.3f}."
        )
        return result


def run_dapc(
    genotype_data: GenotypeData, config: DAPCConfig | None = None
) -> DAPCResult:
    """Functional wrapper around ``DAPCPipeline.run``."""
    return DAPCPipeline(config).run(genotype_data)
