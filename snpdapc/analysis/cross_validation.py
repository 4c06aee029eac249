import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from functools import partial
from logging import Logger
from typing import Hashable, List, Literal, Sequence, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

import snpdapc.utils.custom_exceptions as exceptions
from snpdapc.analysis.dapc import fit_from_projection
from snpdapc.analysis.pca import project
from snpdapc.read_input.genotype_data import GenotypeData
from snpdapc.utils.containers import XVAL_RESULTS
from snpdapc.utils.logging import LoggerManager
from snpdapc.utils.misc import derive_seed, pretty_breaks, resolve_n_jobs

# Tag mixed into replicate seeds so they never coincide with K-means seeds.
_XVAL_TAG = 7919


@dataclass(frozen=True)
class CrossValidationResult:
    """Outcome of repeated stratified cross-validation over PC counts.

    Attributes:
        n_pca_values (np.ndarray): Tested PC counts.
        mean_success (np.ndarray): Mean successful assignment (MSA) per PC count.
        mse (np.ndarray): Mean of ``(1 - success)**2`` over replicates per PC count.
        rmse (np.ndarray): Square root of ``mse``.
        best_n_pca (int): PC count with the lowest MSE.
        best_n_pca_msa (int): PC count with the highest MSA.
        n_da (int): Discriminant axes requested for every fit.
        result (str): "groupMean" or "overall".
        replicates (pd.DataFrame): Columns ``n_pca``, ``replicate``, ``success``.
    """

    n_pca_values: np.ndarray
    mean_success: np.ndarray
    mse: np.ndarray
    rmse: np.ndarray
    best_n_pca: int
    best_n_pca_msa: int
    n_da: int
    result: str
    replicates: pd.DataFrame

    @property
    def msa_at_optimum(self) -> float:
        """Mean successful assignment at ``best_n_pca``."""
        idx = int(np.flatnonzero(self.n_pca_values == self.best_n_pca)[0])
        return float(self.mean_success[idx])

    def table(self) -> pd.DataFrame:
        """Per-PC-count summary for diagnostic plots and reports."""
        return pd.DataFrame(
            {
                "n_pca": self.n_pca_values,
                "mean_successful_assignment": self.mean_success,
                "mse": self.mse,
                "rmse": self.rmse,
            }
        )


def stratified_split(
    labels: np.ndarray, training_fraction: float, rng: np.random.Generator
) -> Tuple[np.ndarray, np.ndarray]:
    """Draw training and held-out indices with every group in both sets.

    Each group contributes ``round(training_fraction * size)`` individuals to training, clamped to ``[1, size - 1]``.

    Args:
        labels (np.ndarray): Group per individual.
        training_fraction (float): Target training fraction per group.
        rng (np.random.Generator): Generator owned by the replicate.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Sorted training and held-out indices.
    """
    train = []
    for g in np.unique(labels):
        members = np.flatnonzero(labels == g)
        n_train = int(np.floor(training_fraction * members.size + 0.5))
        n_train = min(max(n_train, 1), members.size - 1)
        train.append(rng.choice(members, size=n_train, replace=False))

    train_idx = np.sort(np.concatenate(train))
    test_mask = np.ones(labels.size, dtype=bool)
    test_mask[train_idx] = False
    return train_idx, np.flatnonzero(test_mask)


def _success_rate(truth: np.ndarray, predicted: np.ndarray, result: str) -> float:
    correct = truth == predicted
    if result == "overall":
        return float(correct.mean())
    return float(np.mean([correct[truth == g].mean() for g in np.unique(truth)]))


def _xval_replicate(
    X: np.ndarray,
    labels: np.ndarray,
    pc_candidates: np.ndarray,
    training_fraction: float,
    n_da: int,
    center: bool,
    scale: bool,
    result: str,
    seed: int,
) -> Tuple[List[float], List[str]]:
    """One replicate: a single stratified split scored at every PC count."""
    log = logging.getLogger(__name__)
    rng = np.random.default_rng(seed)
    train_idx, test_idx = stratified_split(labels, training_fraction, rng)

    successes = [np.nan] * len(pc_candidates)
    errors = []
    try:
        pca = project(X[train_idx], int(max(pc_candidates)), center=center, scale=scale)
    except (ValueError, np.linalg.LinAlgError, exceptions.SNPDAPCError) as e:
        return successes, [f"PCA failed: {e}"]

    for i, n_pca in enumerate(pc_candidates):
        if n_pca > pca.n_components:
            errors.append(
                f"n_pca={n_pca}: training set supports only {pca.n_components} PCs"
            )
            continue
        try:
            model = fit_from_projection(
                pca, labels[train_idx], int(n_pca), n_da, logger=log
            )
            _, _, predicted = model.predict(X[test_idx])
        except (ValueError, np.linalg.LinAlgError, exceptions.SNPDAPCError) as e:
            errors.append(f"n_pca={n_pca}: {e}")
            continue
        successes[i] = _success_rate(labels[test_idx], predicted, result)

    return successes, errors


def default_pc_candidates(n_pca_max: int, n_training: int) -> np.ndarray:
    """PC counts tested when none are given: ``pretty(1:n_pca_max)`` below ``n_training - 1``."""
    cands = pretty_breaks(max(n_pca_max, 1), 10)
    cands = cands[(cands > 0) & (cands < n_training - 1)]
    if cands.size == 0:
        cands = np.array([max(1, min(n_pca_max, n_training - 2))])
    return cands


class CrossValidator:
    """Choose the number of retained PCs for DAPC by repeated stratified cross-validation.

    Each replicate splits individuals into training and held-out sets within every group, fits DAPC on the training set at each candidate PC count, and predicts the held-out individuals. Success rates are aggregated into the mean successful assignment (MSA) and the mean squared error ``mean((1 - success)**2)``; the PC count with the lowest MSE is optimal.

    Example:
        >>> xval = CrossValidator(n_replicates=30, seed=999)
        >>> res = xval.cross_validate(gd_filt, clusters.labels, n_pca_max=300)
        >>> res.best_n_pca, res.msa_at_optimum

    Attributes:
        training_fraction (float): Fraction of each group used for training.
        n_replicates (int): Number of random splits.
        seed (int): Global seed; each replicate uses a seed derived from (seed, replicate).
        result (str): "groupMean" averages per-group success; "overall" pools individuals.
        n_jobs (int): Worker processes (-1 = all CPUs).
        logger (Logger): Logger for this object.
    """

    def __init__(
        self,
        training_fraction: float = 0.9,
        n_replicates: int = 30,
        seed: int = 999,
        result: Literal["groupMean", "overall"] = "groupMean",
        center: bool = True,
        scale: bool = False,
        n_jobs: int = 1,
        prefix: str = "snpdapc",
        verbose: bool = True,
        debug: bool = False,
    ) -> None:
        """Initialize the CrossValidator.

        Args:
            training_fraction (float): Fraction of each group used for training. Defaults to 0.9.
            n_replicates (int): Number of replicates. Defaults to 30.
            seed (int): Global random seed. Defaults to 999.
            result (Literal["groupMean", "overall"]): Success-rate definition. Defaults to "groupMean".
            center (bool): Center markers before PCA. Defaults to True.
            scale (bool): Scale markers before PCA. Defaults to False.
            n_jobs (int): Worker processes (-1 = all CPUs). Defaults to 1.
            prefix (str): Prefix for output directories.
            verbose (bool): Whether to enable verbose logging.
            debug (bool): Whether to enable debug logging.

        Raises:
            InvalidThresholdError: If ``training_fraction`` is not in (0, 1).
            ValueError: If ``n_replicates`` < 1 or ``result`` is unknown.
        """
        logman = LoggerManager(__name__, prefix=prefix, verbose=verbose, debug=debug)
        self.logger: Logger = logman.get_logger()

        if not 0.0 < training_fraction < 1.0:
            msg = f"training_fraction must be in (0.0, 1.0), but got: {training_fraction}"
            self.logger.error(msg)
            raise exceptions.InvalidThresholdError(training_fraction, msg)

        if n_replicates < 1:
            msg = f"n_replicates must be a positive integer, but got: {n_replicates}"
            self.logger.error(msg)
            raise ValueError(msg)

        if result not in XVAL_RESULTS:
            msg = f"Invalid result: {result}. Supported: {XVAL_RESULTS}"
            self.logger.error(msg)
            raise ValueError(msg)

        self.training_fraction = training_fraction
        self.n_replicates = n_replicates
        self.seed = seed
        self.result = result
        self.center = center
        self.scale = scale
        self.n_jobs = resolve_n_jobs(n_jobs)
        self.verbose = verbose

    def _check_groups(self, labels: np.ndarray) -> None:
        groups, counts = np.unique(labels, return_counts=True)
        for g, size in zip(groups, counts):
            if size < 2:
                err = exceptions.InsufficientSamplesError(g, int(size))
                self.logger.error(str(err))
                raise err

    def cross_validate(
        self,
        genotype_data: GenotypeData | np.ndarray,
        group_labels: Sequence[Hashable] | np.ndarray,
        pc_candidates: Sequence[int] | None = None,
        n_pca_max: int = 300,
        n_da: int | None = None,
    ) -> CrossValidationResult:
        """Run repeated stratified cross-validation.

        Args:
            genotype_data (GenotypeData | np.ndarray): Filtered genotypes (NaN for missing in arrays).
            group_labels (Sequence[Hashable] | np.ndarray): Group per individual.
            pc_candidates (Sequence[int] | None): PC counts to test. Defaults to ``pretty(1:n_pca_max)`` below the training-set size.
            n_pca_max (int): Upper bound for default candidates; clamped to the PCA rank and ``n_training - 1``. Defaults to 300.
            n_da (int | None): Discriminant axes per fit. Defaults to ``groups - 1``.

        Returns:
            CrossValidationResult: MSA and MSE per PC count and the optimal PC count.

        Raises:
            InsufficientSamplesError: If a group has fewer than 2 individuals.
            CrossValidationError: If no replicate succeeds at any PC count.
        """
        X = (
            genotype_data.to_float()
            if isinstance(genotype_data, GenotypeData)
            else np.asarray(genotype_data, dtype=float)
        )
        labels = np.asarray(group_labels)
        if labels.shape[0] != X.shape[0]:
            msg = f"Got {labels.shape[0]} group labels for {X.shape[0]} individuals."
            self.logger.error(msg)
            raise ValueError(msg)

        self._check_groups(labels)

        n_groups = len(np.unique(labels))
        if n_da is None:
            n_da = max(n_groups - 1, 0)

        n = X.shape[0]
        n_training = int(np.floor(n * self.training_fraction + 0.5))
        if pc_candidates is not None:
            pc_candidates = np.unique(np.asarray(pc_candidates, dtype=int))
            n_pca_max = int(pc_candidates.max()) if pc_candidates.size else 1

        # Training sets cannot support more PCs than this.
        rank = project(
            X, max(n_pca_max, 1), center=self.center, scale=self.scale, logger=self.logger
        ).n_components
        pc_limit = max(1, min(rank, n_training - 1))

        if pc_candidates is None:
            pc_candidates = default_pc_candidates(min(n_pca_max, pc_limit), n_training)
        else:
            too_many = pc_candidates[pc_candidates > pc_limit]
            if too_many.size:
                self.logger.warning(
                    f"Dropping PC counts {too_many.tolist()}: training sets support at most {pc_limit} PCs."
                )
            pc_candidates = pc_candidates[pc_candidates <= pc_limit]

        pc_candidates = pc_candidates[pc_candidates > 0]
        if pc_candidates.size == 0:
            msg = f"No PC counts between 1 and {pc_limit} to cross-validate."
            self.logger.error(msg)
            raise ValueError(msg)

        self.logger.info(
            f"Cross-validating PC counts {pc_candidates.tolist()} with {self.n_replicates} replicates."
        )

        seeds = [derive_seed(self.seed, _XVAL_TAG, r) for r in range(self.n_replicates)]
        worker = partial(
            _xval_replicate,
            X,
            labels,
            pc_candidates,
            self.training_fraction,
            n_da,
            self.center,
            self.scale,
            self.result,
        )

        if self.n_jobs > 1:
            with ProcessPoolExecutor(max_workers=self.n_jobs) as pool:
                outputs = list(
                    tqdm(
                        pool.map(worker, seeds),
                        desc="Cross-validation: ",
                        total=self.n_replicates,
                        unit="rep",
                        disable=not self.verbose,
                    )
                )
        else:
            outputs = [
                worker(s)
                for s in tqdm(
                    seeds,
                    desc="Cross-validation: ",
                    unit="rep",
                    disable=not self.verbose,
                )
            ]

        # Barrier: all replicates are in before aggregating.
        success = np.array([out[0] for out in outputs], dtype=float)
        for rep, (_, errors) in enumerate(outputs):
            for err in errors:
                self.logger.warning(f"Replicate {rep} discarded a trial: {err}")

        valid = ~np.isnan(success)
        if not valid.any():
            msg = "Cross-validation failed: no replicate succeeded at any PC count."
            self.logger.error(msg)
            raise exceptions.CrossValidationError(msg)

        counts = valid.sum(axis=0)
        with np.errstate(invalid="ignore"):
            msa = np.where(counts > 0, np.nansum(success, axis=0) / counts, np.nan)
            mse = np.where(
                counts > 0, np.nansum((1.0 - success) ** 2, axis=0) / counts, np.nan
            )
        rmse = np.sqrt(mse)

        for n_pca, c in zip(pc_candidates, counts):
            if c == 0:
                self.logger.warning(f"Every replicate failed at n_pca={n_pca}.")

        best = int(pc_candidates[np.nanargmin(mse)])
        best_msa = int(pc_candidates[np.nanargmax(msa)])

        replicates = pd.DataFrame(
            {
                "n_pca": np.tile(pc_candidates, self.n_replicates),
                "replicate": np.repeat(np.arange(self.n_replicates), pc_candidates.size),
                "success": success.ravel(),
            }
        )

        self.logger.info(
            f"Lowest MSE at {best} PCs (MSA={msa[pc_candidates == best][0]:.4f}); highest MSA at {best_msa} PCs."
        )

        return CrossValidationResult(
            n_pca_values=pc_candidates,
            mean_success=msa,
            mse=mse,
            rmse=rmse,
            best_n_pca=best,
            best_n_pca_msa=best_msa,
            n_da=int(n_da),
            result=self.result,
            replicates=replicates,
        )


def cross_validate(
    genotype_data: GenotypeData | np.ndarray,
    group_labels: Sequence[Hashable] | np.ndarray,
    pc_candidates: Sequence[int] | None = None,
    training_fraction: float = 0.9,
    n_replicates: int = 30,
    seed: int = 999,
    n_pca_max: int = 300,
    n_da: int | None = None,
    result: Literal["groupMean", "overall"] = "groupMean",
    n_jobs: int = 1,
) -> CrossValidationResult:
    """Functional wrapper around ``CrossValidator.cross_validate``."""
    validator = CrossValidator(
        training_fraction=training_fraction,
        n_replicates=n_replicates,
        seed=seed,
        result=result,
        n_jobs=n_jobs,
    )
    return validator.cross_validate(
        genotype_data, group_labels, pc_candidates, n_pca_max=n_pca_max, n_da=n_da
    )
