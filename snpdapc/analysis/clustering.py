import warnings
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from logging import Logger
from typing import List, Literal, Tuple

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, linkage
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning
from tqdm import tqdm

import snpdapc.utils.custom_exceptions as exceptions
from snpdapc.analysis.pca import project
from snpdapc.read_input.genotype_data import GenotypeData
from snpdapc.utils.containers import CRITERIA, SELECTION_RULES
from snpdapc.utils.logging import LoggerManager
from snpdapc.utils.misc import derive_seed, relabel_by_first_appearance, resolve_n_jobs


@dataclass(frozen=True)
class ClusterAssignment:
    """Group labels found by K-means plus the goodness-of-fit curve.

    Attributes:
        labels (np.ndarray): Group label (1..K) per individual.
        k (int): Selected number of clusters.
        k_values (np.ndarray): Tested numbers of clusters.
        stats (np.ndarray): Statistic per tested K (NaN where K was unusable).
        wss (np.ndarray): Within-cluster sum of squares of the best start per K (NaN where unusable).
        k_min_stat (int): K at the global minimum of the statistic.
        criterion (str): Name of the statistic ("BIC", "AIC" or "WSS").
        selection_rule (str): Rule used to pick ``k``.
        n_pca (int): Principal components used for clustering.
        samples (List[str]): Sample IDs aligned with ``labels``.
    """

    labels: np.ndarray
    k: int
    k_values: np.ndarray
    stats: np.ndarray
    wss: np.ndarray
    k_min_stat: int
    criterion: str
    selection_rule: str
    n_pca: int
    samples: List[str] = field(default_factory=list)

    @property
    def group_sizes(self) -> pd.Series:
        return pd.Series(self.labels).value_counts().sort_index()

    def stat_table(self) -> pd.DataFrame:
        """Statistic per tested K, for diagnostic plots and reports."""
        return pd.DataFrame(
            {
                "K": self.k_values,
                self.criterion: self.stats,
                "WSS": self.wss,
                "Usable": ~np.isnan(self.stats),
            }
        )


def _kmeans_start(
    scores: np.ndarray, k: int, n_iter: int, random_state: int
) -> Tuple[bool, float, np.ndarray | None, str | None]:
    """Run one K-means start. Returns (converged, wss, labels, error)."""
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            km = KMeans(
                n_clusters=k,
                init="k-means++",
                n_init=1,
                max_iter=n_iter,
                tol=0.0,
                algorithm="lloyd",
                random_state=random_state,
            )
            labels = km.fit_predict(scores)
    except (ValueError, np.linalg.LinAlgError) as e:
        return False, np.nan, None, str(e)

    if len(np.unique(labels)) < k:
        return False, np.nan, None, "empty cluster"

    if km.n_iter_ >= n_iter:
        return False, np.nan, None, f"no convergence after {n_iter} iterations"

    return True, _within_ss(scores, labels), labels, None


def _within_ss(scores: np.ndarray, labels: np.ndarray) -> float:
    wss = 0.0
    for lab in np.unique(labels):
        members = scores[labels == lab]
        wss += float(((members - members.mean(axis=0)) ** 2).sum())
    return wss


def compute_statistic(
    wss: np.ndarray, k_values: np.ndarray, n: int, criterion: str
) -> np.ndarray:
    """Goodness-of-fit statistic per K from within-cluster sums of squares.

    ``BIC = n log(WSS / n) + K log(n)`` and ``AIC = n log(WSS / n) + 2K``. Zero WSS values are floored to a tiny fraction of the K = 1 (total) sum of squares so that perfectly separated data yield a finite statistic.

    Args:
        wss (np.ndarray): WSS per K, NaN where K is unusable.
        k_values (np.ndarray): K for each entry of ``wss``.
        n (int): Number of individuals.
        criterion (str): "BIC", "AIC" or "WSS".

    Returns:
        np.ndarray: Statistic per K (NaN preserved).
    """
    if criterion == "WSS":
        return wss.astype(float)

    tss = np.nanmax(wss) if np.any(~np.isnan(wss)) else 0.0
    floor = max(tss * 1e-12, np.finfo(float).tiny)
    wss_f = np.where(np.isnan(wss), np.nan, np.maximum(wss, floor))

    fit = n * np.log(wss_f / n)
    if criterion == "BIC":
        return fit + k_values * np.log(n)
    return fit + 2.0 * k_values


def choose_k(
    k_values: np.ndarray,
    stats: np.ndarray,
    rule: str = "diffNgroup",
    improvement_threshold: float = 0.05,
) -> int:
    """Pick the number of clusters from a statistic curve.

    Only usable (non-NaN) K values take part. Rules:

    - ``min``: K at the lowest statistic.
    - ``diffNgroup``: split successive differences into two groups by Ward clustering; the group with the most negative mean holds the worthwhile steps, and the K following its last step is chosen.
    - ``goesup``: the last K before the statistic first increases.
    - ``smoothNgoesup``: ``goesup`` on a 3-point moving average.
    - ``goodfit``: the smallest K whose statistic is within 10% of the curve's range from the minimum.
    - ``diminishing``: the smallest K whose improvement to the next K is below ``improvement_threshold`` times the curve's range.

    Args:
        k_values (np.ndarray): Tested K values in increasing order.
        stats (np.ndarray): Statistic per K.
        rule (str): Selection rule.
        improvement_threshold (float): Relative cutoff for the ``diminishing`` rule.

    Returns:
        int: Selected K.
    """
    usable = ~np.isnan(stats)
    ks = np.asarray(k_values)[usable]
    st = np.asarray(stats, dtype=float)[usable]

    if ks.size == 1:
        return int(ks[0])

    if rule == "min" or ks.size == 2:
        return int(ks[np.argmin(st)])

    diffs = np.diff(st)
    span = st.max() - st.min()

    if rule == "diffNgroup":
        if np.allclose(diffs, diffs[0]):
            return int(ks[np.argmin(st)])
        tree = linkage(diffs.reshape(-1, 1), method="ward")
        groups = fcluster(tree, t=2, criterion="maxclust")
        means = {g: diffs[groups == g].mean() for g in np.unique(groups)}
        good = min(means, key=means.get)
        last = int(np.flatnonzero(groups == good).max())
        return int(ks[last + 1])

    if rule in {"goesup", "smoothNgoesup"}:
        curve = st.copy()
        if rule == "smoothNgoesup":
            curve[1:-1] = np.convolve(st, np.ones(3) / 3.0, mode="valid")
        up = np.flatnonzero(np.diff(curve) > 0)
        return int(ks[up[0]]) if up.size else int(ks[-1])

    if rule == "goodfit":
        threshold = st.min() + 0.1 * span
        return int(ks[np.flatnonzero(st <= threshold)[0]])

    if rule == "diminishing":
        small = np.flatnonzero(-diffs < improvement_threshold * span)
        return int(ks[small[0]]) if small.size else int(ks[-1])

    raise ValueError(f"Unknown selection rule: {rule}")


class ClusterSelector:
    """Unsupervised discovery of genetic clusters with repeated K-means on principal components.

    For each K from 1 to ``max_k``, K-means is started ``n_starts`` times from independently seeded centroids; the converged start with the lowest within-cluster sum of squares is kept. A BIC-like statistic is computed per K and a selection rule picks the number of clusters.

    Example:
        >>> selector = ClusterSelector(seed=999)
        >>> clusters = selector.select_k(gd, max_k=7, n_pca=20)
        >>> clusters.k, clusters.labels[:5]

    Attributes:
        n_iter (int): Maximum Lloyd iterations per start.
        n_starts (int): K-means starts per K.
        seed (int): Global seed; each start uses a seed derived from (seed, K, start).
        n_jobs (int): Worker processes (-1 = all CPUs).
        logger (Logger): Logger for this object.
    """

    def __init__(
        self,
        n_iter: int = 100000,
        n_starts: int = 10,
        seed: int = 999,
        n_jobs: int = 1,
        center: bool = True,
        scale: bool = False,
        prefix: str = "snpdapc",
        verbose: bool = True,
        debug: bool = False,
    ) -> None:
        """Initialize the ClusterSelector.

        Args:
            n_iter (int): Maximum iterations per K-means start. Defaults to 100000.
            n_starts (int): Number of K-means starts per K. Defaults to 10.
            seed (int): Global random seed. Defaults to 999.
            n_jobs (int): Worker processes (-1 = all CPUs). Defaults to 1.
            center (bool): Center markers before PCA. Defaults to True.
            scale (bool): Scale markers before PCA. Defaults to False.
            prefix (str): Prefix for output directories.
            verbose (bool): Whether to enable verbose logging.
            debug (bool): Whether to enable debug logging.
        """
        if n_iter < 1 or n_starts < 1:
            raise ValueError("n_iter and n_starts must be positive integers.")

        self.n_iter = n_iter
        self.n_starts = n_starts
        self.seed = seed
        self.n_jobs = resolve_n_jobs(n_jobs)
        self.center = center
        self.scale = scale
        self.verbose = verbose

        logman = LoggerManager(__name__, prefix=prefix, verbose=verbose, debug=debug)
        self.logger: Logger = logman.get_logger()

    def select_k(
        self,
        genotype_data: GenotypeData | np.ndarray,
        max_k: int,
        n_pca: int,
        criterion: Literal["BIC", "AIC", "WSS"] = "BIC",
        selection_rule: str = "diffNgroup",
    ) -> ClusterAssignment:
        """Find the number of clusters and assign individuals to them.

        Args:
            genotype_data (GenotypeData | np.ndarray): Filtered genotypes (NaN for missing in arrays).
            max_k (int): Largest K tested (clamped to the number of individuals).
            n_pca (int): Principal components retained for clustering.
            criterion (Literal["BIC", "AIC", "WSS"]): Goodness-of-fit statistic. Defaults to "BIC".
            selection_rule (str): Rule used to pick K. Defaults to "diffNgroup".

        Returns:
            ClusterAssignment: Labels 1..K (numbered by first appearance) and the statistic curve.

        Raises:
            ClusteringError: If no tested K yields a converged K-means solution.
            ValueError: If ``max_k`` < 1 or the criterion / rule is unknown.
        """
        if criterion not in CRITERIA:
            msg = f"Invalid criterion: {criterion}. Supported: {CRITERIA}"
            self.logger.error(msg)
            raise ValueError(msg)

        if selection_rule not in SELECTION_RULES:
            msg = f"Invalid selection rule: {selection_rule}."
            self.logger.error(msg)
            raise ValueError(msg)

        if max_k < 1:
            msg = f"max_k must be a positive integer, but got: {max_k}"
            self.logger.error(msg)
            raise ValueError(msg)

        samples = (
            genotype_data.samples if isinstance(genotype_data, GenotypeData) else []
        )

        pca = project(
            genotype_data,
            n_pca,
            center=self.center,
            scale=self.scale,
            logger=self.logger,
        )
        scores = pca.scores
        n = scores.shape[0]
        max_k = min(max_k, n)

        self.logger.info(
            f"Testing K from 1 to {max_k} using {pca.n_components} PCs and {self.n_starts} starts per K."
        )

        k_values = np.arange(1, max_k + 1)
        if max_k == 1:
            tss = _within_ss(scores, np.zeros(n, dtype=int))
            return ClusterAssignment(
                labels=np.ones(n, dtype=int),
                k=1,
                k_values=k_values,
                stats=compute_statistic(np.array([tss]), k_values, n, criterion),
                wss=np.array([tss]),
                k_min_stat=1,
                criterion=criterion,
                selection_rule=selection_rule,
                n_pca=pca.n_components,
                samples=list(samples),
            )

        wss = np.full(max_k, np.nan)
        best_labels: List[np.ndarray | None] = [None] * max_k
        wss[0] = _within_ss(scores, np.zeros(n, dtype=int))
        best_labels[0] = np.zeros(n, dtype=int)

        executor = ProcessPoolExecutor(self.n_jobs) if self.n_jobs > 1 else None
        try:
            for k in tqdm(
                k_values[1:], desc="K-means: ", unit="K", disable=not self.verbose
            ):
                seeds = [derive_seed(self.seed, k, s) for s in range(self.n_starts)]
                worker = partial(_kmeans_start, scores, int(k), self.n_iter)
                mapper = executor.map if executor is not None else map
                results = list(mapper(worker, seeds))

                # Barrier: every start for this K has finished.
                best = None
                for start, (ok, start_wss, labels, err) in enumerate(results):
                    if not ok:
                        self.logger.debug(f"K={k}, start {start} discarded: {err}")
                        continue
                    if best is None or start_wss < best[0]:
                        best = (start_wss, labels)

                if best is None:
                    self.logger.warning(
                        f"K-means failed for every start at K={k}; K={k} is unusable."
                    )
                    continue

                wss[k - 1], best_labels[k - 1] = best
        finally:
            if executor is not None:
                executor.shutdown()

        usable = ~np.isnan(wss)
        if not usable[1:].any():
            err = exceptions.ClusteringError(k_values[1:])
            self.logger.error(str(err))
            raise err

        stats = compute_statistic(wss, k_values, n, criterion)
        k_min = int(k_values[np.nanargmin(stats)])
        k_sel = choose_k(k_values, stats, selection_rule)

        labels, _ = relabel_by_first_appearance(best_labels[k_sel - 1])

        self.logger.info(
            f"Lowest {criterion} at K={k_min}; selected K={k_sel} ({selection_rule})."
        )

        return ClusterAssignment(
            labels=labels,
            k=k_sel,
            k_values=k_values,
            stats=stats,
            wss=wss,
            k_min_stat=k_min,
            criterion=criterion,
            selection_rule=selection_rule,
            n_pca=pca.n_components,
            samples=list(samples),
        )


def select_k(
    genotype_data: GenotypeData | np.ndarray,
    max_k: int,
    n_pca: int,
    criterion: Literal["BIC", "AIC", "WSS"] = "BIC",
    n_iter: int = 100000,
    n_starts: int = 10,
    seed: int = 999,
    selection_rule: str = "diffNgroup",
    n_jobs: int = 1,
) -> ClusterAssignment:
    """Functional wrapper around ``ClusterSelector.select_k``."""
    selector = ClusterSelector(n_iter=n_iter, n_starts=n_starts, seed=seed, n_jobs=n_jobs)
    return selector.select_k(
        genotype_data, max_k, n_pca, criterion=criterion, selection_rule=selection_rule
    )
