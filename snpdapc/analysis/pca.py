import logging
from dataclasses import dataclass

import numpy as np
from scipy import linalg
from sklearn.preprocessing import StandardScaler

import snpdapc.utils.custom_exceptions as exceptions
from snpdapc.read_input.genotype_data import GenotypeData

# Relative size below which an eigenvalue is treated as zero.
EIGEN_TOL = 1e-10


@dataclass(frozen=True)
class PCAProjection:
    """Principal component projection of a genotype matrix.

    Attributes:
        scores (np.ndarray): Individual scores, shape (n_individuals, n_components).
        loadings (np.ndarray): Unit-norm component vectors, shape (n_markers, n_components).
        eigenvalues (np.ndarray): Variance along each component, non-increasing.
        means (np.ndarray): Per-marker mean dosage used for imputation and centering.
        scales (np.ndarray): Per-marker divisor applied after centering (ones unless ``scale``).
        total_variance (float): Sum of all eigenvalues of the processed matrix.
        center (bool): Whether markers were centered.
        scale (bool): Whether markers were scaled to unit variance.
    """

    scores: np.ndarray
    loadings: np.ndarray
    eigenvalues: np.ndarray
    means: np.ndarray
    scales: np.ndarray
    total_variance: float
    center: bool
    scale: bool

    @property
    def n_components(self) -> int:
        return int(self.scores.shape[1])

    @property
    def explained_variance_ratio(self) -> np.ndarray:
        if self.total_variance <= 0:
            return np.zeros_like(self.eigenvalues)
        return self.eigenvalues / self.total_variance

    def truncate(self, n_components: int) -> "PCAProjection":
        """Keep the leading ``n_components`` components.

        Components are nested, so truncation equals re-projecting with fewer components.
        """
        k = max(1, min(int(n_components), self.n_components))
        return PCAProjection(
            scores=self.scores[:, :k],
            loadings=self.loadings[:, :k],
            eigenvalues=self.eigenvalues[:k],
            means=self.means,
            scales=self.scales,
            total_variance=self.total_variance,
            center=self.center,
            scale=self.scale,
        )

    def transform(self, X: np.ndarray | GenotypeData) -> np.ndarray:
        """Project new individuals onto the fitted components.

        Missing values are imputed with the means of the fitting data.

        Args:
            X (np.ndarray | GenotypeData): Dosages with NaN for missing calls, shape (n, n_markers).

        Returns:
            np.ndarray: Scores of shape (n, n_components).
        """
        X = _as_float(X)
        X = np.where(np.isnan(X), self.means[None, :], X)
        if self.center:
            X = X - self.means[None, :]
        X = X / self.scales[None, :]
        return X @ self.loadings


def _as_float(X: np.ndarray | GenotypeData) -> np.ndarray:
    if isinstance(X, GenotypeData):
        return X.to_float()
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, but got shape {X.shape}")
    return X


def impute_mean(X: np.ndarray) -> tuple:
    """Replace missing values with the per-marker mean dosage.

    Args:
        X (np.ndarray): Dosage matrix with NaN for missing calls.

    Returns:
        tuple: The imputed matrix and the per-marker means (0 for markers with no observed call).
    """
    with np.errstate(invalid="ignore"):
        observed = np.count_nonzero(~np.isnan(X), axis=0)
        sums = np.nansum(X, axis=0)
        means = np.divide(
            sums, observed, out=np.zeros(X.shape[1], dtype=float), where=observed > 0
        )
    return np.where(np.isnan(X), means[None, :], X), means


def project(
    genotypes: np.ndarray | GenotypeData,
    n_components: int,
    center: bool = True,
    scale: bool = False,
    logger: logging.Logger | None = None,
) -> PCAProjection:
    """Compute a principal component projection of a genotype matrix.

    The workflow is:

    1. **Impute** missing dosages with the per-marker mean.
    2. **Center / scale** markers (``StandardScaler``); zero-variance markers are left at zero when scaling.
    3. **Decompose** the processed matrix with a thin SVD; eigenvalues are ``s**2 / n``.
    4. **Fix signs** so the largest-magnitude loading of each component is positive.

    ``n_components`` is clamped to ``min(n_individuals, n_markers) - 1`` and to the numerical rank of the processed matrix (at least one component is always returned). No randomness is involved.

    Args:
        genotypes (np.ndarray | GenotypeData): Dosages, NaN for missing calls.
        n_components (int): Requested number of components.
        center (bool): Subtract the mean per marker. Defaults to True.
        scale (bool): Divide by the standard deviation per marker. Defaults to False.
        logger (logging.Logger | None): Logger for debug messages.

    Returns:
        PCAProjection: Scores, loadings and eigenvalues in descending order.

    Raises:
        InsufficientDataError: If fewer than two individuals or no markers are supplied.
        ValueError: If ``n_components`` is not positive.
    """
    log = logger or logging.getLogger(__name__)

    X = _as_float(genotypes)
    n, p = X.shape

    if n < 2 or p < 1:
        raise exceptions.InsufficientDataError(
            n, p, f"PCA requires at least 2 individuals and 1 marker, got {n} x {p}."
        )

    if n_components < 1:
        raise ValueError(f"n_components must be positive, but got: {n_components}")

    X_imp, means = impute_mean(X)

    if center or scale:
        scaler = StandardScaler(with_mean=center, with_std=scale)
        X_proc = scaler.fit_transform(X_imp)
        scales = scaler.scale_ if scale else np.ones(p)
    else:
        X_proc = X_imp
        scales = np.ones(p)

    X_proc = np.nan_to_num(X_proc, nan=0.0, posinf=0.0, neginf=0.0)

    U, s, Vt = linalg.svd(X_proc, full_matrices=False, lapack_driver="gesdd")
    eigenvalues = s**2 / n
    total_variance = float(eigenvalues.sum())

    k = min(int(n_components), min(n, p) - 1) if min(n, p) > 1 else 1
    if eigenvalues.size and eigenvalues[0] > 0:
        rank = int(np.count_nonzero(eigenvalues > EIGEN_TOL * eigenvalues[0]))
        k = min(k, rank)
    k = max(k, 1)

    if k < n_components:
        log.debug(f"Requested {n_components} principal components; using {k}.")

    loadings = Vt[:k].T.copy()
    scores = U[:, :k] * s[:k]

    # Deterministic sign: largest |loading| positive.
    idx = np.argmax(np.abs(loadings), axis=0)
    signs = np.sign(loadings[idx, np.arange(k)])
    signs[signs == 0] = 1.0
    loadings *= signs
    scores *= signs

    return PCAProjection(
        scores=scores,
        loadings=loadings,
        eigenvalues=eigenvalues[:k],
        means=means,
        scales=np.asarray(scales, dtype=float),
        total_variance=total_variance,
        center=center,
        scale=scale,
    )
