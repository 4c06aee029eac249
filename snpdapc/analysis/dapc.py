import logging
from dataclasses import dataclass, field
from logging import Logger
from typing import Hashable, List, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import linalg
from scipy.special import logsumexp

import snpdapc.utils.custom_exceptions as exceptions
from snpdapc.analysis.pca import EIGEN_TOL, PCAProjection, project
from snpdapc.read_input.genotype_data import GenotypeData
from snpdapc.utils.logging import LoggerManager

# Relative ridge added to a degenerate or singular within-group covariance.
RIDGE = 1e-6


@dataclass(frozen=True)
class DAPCModel:
    """Discriminant analysis of principal components fitted to a set of groups.

    Discriminant axes solve the generalized eigenproblem ``Sb v = lambda Sw v`` in PC space and are normalized so the pooled within-group covariance is the identity along them. Posterior membership probabilities are ``prior_g * exp(-d_g**2 / 2)`` normalized over groups, where ``d_g`` is the Euclidean distance to the group centroid in discriminant space (the Gaussian discriminant density with pooled covariance). Prediction uses the same transform.

    Attributes:
        groups (np.ndarray): Group labels, in the column order of ``posterior``.
        n_pca (int): Principal components used.
        n_da (int): Discriminant axes retained.
        pca (PCAProjection): The projection the model was fitted on (truncated to ``n_pca``).
        axes (np.ndarray): Discriminant coefficients on the PC scores, shape (n_pca, n_da).
        eigenvalues (np.ndarray): Between/within variance ratio of each axis.
        grand_mean (np.ndarray): Mean PC score of the fitting individuals.
        centroids (np.ndarray): Group means in discriminant space, shape (n_groups, n_da).
        priors (np.ndarray): Group proportions among the fitting individuals.
        coordinates (np.ndarray): Individual coordinates on the discriminant axes.
        posterior (np.ndarray): Posterior membership probabilities, shape (n, n_groups).
        assignment (np.ndarray): Group with the highest posterior per individual.
        regularized (bool): Whether the within-group covariance had to be regularized.
        samples (List[str]): Sample IDs aligned with the rows of ``coordinates``.
    """

    groups: np.ndarray
    n_pca: int
    n_da: int
    pca: PCAProjection
    axes: np.ndarray
    eigenvalues: np.ndarray
    grand_mean: np.ndarray
    centroids: np.ndarray
    priors: np.ndarray
    coordinates: np.ndarray
    posterior: np.ndarray
    assignment: np.ndarray
    regularized: bool = False
    samples: List[str] = field(default_factory=list)

    @property
    def var_retained(self) -> float:
        """Proportion of the genotype variance kept by the retained PCs."""
        return float(self.pca.explained_variance_ratio.sum())

    @property
    def axis_proportions(self) -> np.ndarray:
        """Share of the between-group discriminant variance carried by each axis."""
        total = self.eigenvalues.sum()
        if total <= 0:
            return np.zeros_like(self.eigenvalues)
        return self.eigenvalues / total

    def discriminant_coordinates(self, scores: np.ndarray) -> np.ndarray:
        """Project PC scores onto the discriminant axes."""
        return (scores[:, : self.n_pca] - self.grand_mean[None, :]) @ self.axes

    def posterior_from_coordinates(self, coords: np.ndarray) -> np.ndarray:
        """Posterior group probabilities for discriminant coordinates."""
        return _posterior(coords, self.centroids, self.priors)

    def predict(
        self, genotypes: np.ndarray | GenotypeData
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Place new individuals in the fitted discriminant space.

        Args:
            genotypes (np.ndarray | GenotypeData): Dosages for the same markers, NaN for missing calls.

        Returns:
            Tuple[np.ndarray, np.ndarray, np.ndarray]: Coordinates, posterior probabilities and assigned groups.
        """
        scores = self.pca.transform(genotypes)
        coords = self.discriminant_coordinates(scores)
        post = self.posterior_from_coordinates(coords)
        return coords, post, self.groups[np.argmax(post, axis=1)]

    def posterior_frame(self) -> pd.DataFrame:
        """Posterior probabilities with samples as rows and groups as columns."""
        index = self.samples if self.samples else None
        return pd.DataFrame(
            self.posterior, index=index, columns=[str(g) for g in self.groups]
        )


def _posterior(
    coords: np.ndarray, centroids: np.ndarray, priors: np.ndarray
) -> np.ndarray:
    sq_dist = ((coords[:, None, :] - centroids[None, :, :]) ** 2).sum(axis=2)
    log_post = np.log(priors)[None, :] - 0.5 * sq_dist
    log_post -= logsumexp(log_post, axis=1, keepdims=True)
    post = np.exp(log_post)
    return post / post.sum(axis=1, keepdims=True)


def _scatter_matrices(
    scores: np.ndarray, labels: np.ndarray, groups: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, List[Hashable]]:
    """Pooled within-group and between-group covariance of PC scores.

    Returns the two matrices and the groups whose own scatter is zero.
    """
    n, d = scores.shape
    k = len(groups)
    grand = scores.mean(axis=0)
    total_trace = float(((scores - grand) ** 2).sum())
    tol = 1e-12 * max(total_trace, np.finfo(float).tiny)

    sw = np.zeros((d, d))
    sb = np.zeros((d, d))
    collapsed = []
    for g in groups:
        members = scores[labels == g]
        centered = members - members.mean(axis=0)
        scatter = centered.T @ centered
        if np.trace(scatter) <= tol:
            collapsed.append(g)
        sw += scatter
        diff = (members.mean(axis=0) - grand)[:, None]
        sb += members.shape[0] * (diff @ diff.T)

    sw /= max(n - k, 1)
    sb /= max(k - 1, 1)
    return sw, sb, collapsed


def _is_singular(sw: np.ndarray, n: int, k: int) -> bool:
    """True if the pooled within-group covariance has no full-rank inverse.

    With more PCs than within-group degrees of freedom (``d > n - k``) the matrix is rank-deficient by construction, even when round-off lets a Cholesky factorization through.
    """
    d = sw.shape[0]
    if d > n - k:
        return True
    w = np.linalg.eigvalsh(sw)
    return bool(w[0] <= EIGEN_TOL * max(w[-1], np.finfo(float).tiny))


def _discriminant_axes(
    sw: np.ndarray, sb: np.ndarray, n_da: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Solve ``sb v = lambda sw v``; top ``n_da`` axes with sw-orthonormal columns."""
    evals, evecs = linalg.eigh(sb, sw)
    order = np.argsort(evals)[::-1][:n_da]
    axes = evecs[:, order]
    evals = np.clip(evals[order], 0.0, None)

    idx = np.argmax(np.abs(axes), axis=0)
    signs = np.sign(axes[idx, np.arange(axes.shape[1])])
    signs[signs == 0] = 1.0
    return axes * signs, evals


def fit_from_projection(
    pca: PCAProjection,
    group_labels: Sequence[Hashable] | np.ndarray,
    n_pca: int,
    n_da: int,
    samples: Sequence[str] | None = None,
    logger: logging.Logger | None = None,
) -> DAPCModel:
    """Fit the discriminant step on an existing PCA projection.

    Args:
        pca (PCAProjection): Projection of the fitting individuals.
        group_labels (Sequence[Hashable] | np.ndarray): Group per individual.
        n_pca (int): Leading PCs to use (clamped to the components available).
        n_da (int): Requested discriminant axes (clamped to ``groups - 1`` and ``n_pca``).
        samples (Sequence[str] | None): Sample IDs for the output table.
        logger (logging.Logger | None): Logger for warnings.

    Returns:
        DAPCModel: The fitted model.
    """
    log = logger or logging.getLogger(__name__)

    labels = np.asarray(group_labels)
    if labels.shape[0] != pca.scores.shape[0]:
        raise ValueError(
            f"Got {labels.shape[0]} group labels for {pca.scores.shape[0]} individuals."
        )

    pca = pca.truncate(n_pca)
    scores = pca.scores
    groups = np.unique(labels)
    d = scores.shape[1]
    n_da = max(0, min(int(n_da), len(groups) - 1, d))

    sw, sb, collapsed = _scatter_matrices(scores, labels, groups)
    reason = None
    try:
        if collapsed:
            raise exceptions.DegenerateGroupError(collapsed)
        if _is_singular(sw, labels.shape[0], len(groups)):
            raise exceptions.DegenerateGroupError(
                [],
                f"Singular within-group covariance at {d} PCs "
                f"({labels.shape[0]} individuals, {len(groups)} groups).",
            )
        axes, evals = _discriminant_axes(sw, sb, n_da)
    except exceptions.DegenerateGroupError as e:
        reason = str(e)
    except np.linalg.LinAlgError as e:
        log.debug(f"Generalized eigensolver failed at {d} PCs: {e}")
        reason = f"Generalized eigensolver failed at {d} PCs."

    regularized = reason is not None
    if regularized:
        ridge = RIDGE * max(np.trace(sw) / d, np.trace(sb) / d, 1.0)
        log.warning(f"{reason} Regularizing the within-group covariance (ridge={ridge:.3g}).")
        axes, evals = _discriminant_axes(sw + ridge * np.eye(d), sb, n_da)

    grand = scores.mean(axis=0)
    coords = (scores - grand[None, :]) @ axes
    centroids = np.vstack([coords[labels == g].mean(axis=0) for g in groups])
    priors = np.array([np.mean(labels == g) for g in groups])
    post = _posterior(coords, centroids, priors)

    return DAPCModel(
        groups=groups,
        n_pca=pca.n_components,
        n_da=n_da,
        pca=pca,
        axes=axes,
        eigenvalues=evals,
        grand_mean=grand,
        centroids=centroids,
        priors=priors,
        coordinates=coords,
        posterior=post,
        assignment=groups[np.argmax(post, axis=1)],
        regularized=regularized,
        samples=list(samples) if samples is not None else [],
    )


class DAPC:
    """Discriminant Analysis of Principal Components.

    The genotype matrix is reduced to ``n_pca`` principal components, then linear discriminant analysis finds up to ``n_da`` axes that maximise between-group variance relative to within-group variance. Every individual is projected onto these axes and receives posterior membership probabilities.

    Example:
        >>> dapc = DAPC()
        >>> model = dapc.fit(gd_filt, clusters.labels, n_pca=20, n_da=2)
        >>> model.posterior_frame().head()

    Attributes:
        center (bool): Center markers before PCA.
        scale (bool): Scale markers before PCA.
        logger (Logger): Logger for this object.
    """

    def __init__(
        self,
        center: bool = True,
        scale: bool = False,
        prefix: str = "snpdapc",
        verbose: bool = True,
        debug: bool = False,
    ) -> None:
        """Initialize the DAPC engine.

        Args:
            center (bool): Center markers before PCA. Defaults to True.
            scale (bool): Scale markers before PCA. Defaults to False.
            prefix (str): Prefix for output directories.
            verbose (bool): Whether to enable verbose logging.
            debug (bool): Whether to enable debug logging.
        """
        self.center = center
        self.scale = scale

        logman = LoggerManager(__name__, prefix=prefix, verbose=verbose, debug=debug)
        self.logger: Logger = logman.get_logger()

    def fit(
        self,
        genotype_data: GenotypeData | np.ndarray,
        group_labels: Sequence[Hashable] | np.ndarray,
        n_pca: int,
        n_da: int,
    ) -> DAPCModel:
        """Fit DAPC to genotypes and group labels.

        Args:
            genotype_data (GenotypeData | np.ndarray): Filtered genotypes (NaN for missing in arrays).
            group_labels (Sequence[Hashable] | np.ndarray): Group per individual.
            n_pca (int): Principal components retained.
            n_da (int): Discriminant axes retained (at most ``groups - 1``).

        Returns:
            DAPCModel: The fitted model.

        Raises:
            ValueError: If the number of labels does not match the number of individuals.
        """
        samples = (
            genotype_data.samples if isinstance(genotype_data, GenotypeData) else None
        )
        n_groups = len(np.unique(np.asarray(group_labels)))
        self.logger.info(
            f"Fitting DAPC with {n_pca} PCs and up to {n_da} discriminant axes on {n_groups} groups."
        )

        pca = project(
            genotype_data, n_pca, center=self.center, scale=self.scale, logger=self.logger
        )
        try:
            model = fit_from_projection(
                pca, group_labels, n_pca, n_da, samples=samples, logger=self.logger
            )
        except ValueError as e:
            self.logger.error(str(e))
            raise

        self.logger.info(
            f"DAPC retained {model.n_pca} PCs ({model.var_retained:.1%} of variance) and {model.n_da} discriminant axes."
        )
        return model


def fit(
    genotype_data: GenotypeData | np.ndarray,
    group_labels: Sequence[Hashable] | np.ndarray,
    n_pca: int,
    n_da: int,
    center: bool = True,
    scale: bool = False,
) -> DAPCModel:
    """Functional wrapper around ``DAPC.fit``."""
    return DAPC(center=center, scale=scale).fit(genotype_data, group_labels, n_pca, n_da)
