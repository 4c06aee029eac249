from logging import Logger
from typing import List, Sequence

import numpy as np
import pandas as pd

import snpdapc.utils.custom_exceptions as exceptions
from snpdapc.utils.logging import LoggerManager
from snpdapc.utils.missing_stats import MissingStats

MISSING = -9


class GenotypeData:
    """Individuals x markers matrix of alternate-allele dosages for diploid, biallelic SNPs.

    Genotypes are stored as ``int8`` values in {0, 1, 2}, with ``-9`` marking a missing call. The sample and marker identifiers are index-aligned with the rows and columns of the matrix. The stored array is read-only; filtering produces a new GenotypeData through ``subset``.

    Example:
        >>> gd = GenotypeData([[0, 1, 2], [2, -9, 0]], samples=["S1", "S2"])
        >>> gd.n_individuals, gd.n_markers
        (2, 3)
        >>> gd.calc_missing().per_individual.tolist()
        [0.0, 0.3333333333333333]

    Attributes:
        snp_data (np.ndarray): Read-only ``int8`` matrix of shape (n_individuals, n_markers).
        samples (List[str]): Sample identifiers (SampleSet).
        markers (List[str]): Marker identifiers (MarkerSet).
        prefix (str): Prefix for output directories.
        logger (Logger): Logger for this object.
    """

    def __init__(
        self,
        genotypes: np.ndarray | pd.DataFrame | Sequence[Sequence[float]],
        samples: Sequence[str] | None = None,
        markers: Sequence[str] | None = None,
        prefix: str = "snpdapc",
        verbose: bool = True,
        debug: bool = False,
    ) -> None:
        """Initialize the GenotypeData object.

        Missing calls may be given as ``-9`` or ``NaN``. When ``genotypes`` is a DataFrame and identifiers are not supplied, the index and columns are used.

        Args:
            genotypes (np.ndarray | pd.DataFrame | Sequence[Sequence[float]]): Allele dosages with shape (n_individuals, n_markers).
            samples (Sequence[str] | None): Sample identifiers. Defaults to ``Sample1..SampleN``.
            markers (Sequence[str] | None): Marker identifiers. Defaults to ``Locus1..LocusM``.
            prefix (str): Prefix for output directories. Defaults to "snpdapc".
            verbose (bool): Whether to enable verbose logging. Defaults to True.
            debug (bool): Whether to enable debug logging. Defaults to False.

        Raises:
            InputFormatError: If the matrix is not two-dimensional, contains values outside {0, 1, 2, missing}, or the identifiers do not align with the matrix.
        """
        self.prefix = prefix
        self.verbose = verbose
        self.debug = debug

        logman = LoggerManager(__name__, prefix=prefix, verbose=verbose, debug=debug)
        self.logger: Logger = logman.get_logger()

        if isinstance(genotypes, pd.DataFrame):
            if samples is None:
                samples = [str(s) for s in genotypes.index]
            if markers is None:
                markers = [str(m) for m in genotypes.columns]
            genotypes = genotypes.to_numpy()

        self.snp_data: np.ndarray = self._validate_matrix(genotypes)
        n_ind, n_loc = self.snp_data.shape

        if samples is None:
            samples = [f"Sample{i + 1}" for i in range(n_ind)]
        if markers is None:
            markers = [f"Locus{j + 1}" for j in range(n_loc)]

        self.samples: List[str] = [str(s) for s in samples]
        self.markers: List[str] = [str(m) for m in markers]

        if len(self.samples) != n_ind:
            msg = f"Got {len(self.samples)} sample IDs for {n_ind} genotype rows."
            self.logger.error(msg)
            raise exceptions.InputFormatError(msg)

        if len(self.markers) != n_loc:
            msg = f"Got {len(self.markers)} marker IDs for {n_loc} genotype columns."
            self.logger.error(msg)
            raise exceptions.InputFormatError(msg)

        if len(set(self.samples)) != n_ind:
            msg = "Sample IDs must be unique."
            self.logger.error(msg)
            raise exceptions.InputFormatError(msg)

    def _validate_matrix(self, genotypes) -> np.ndarray:
        try:
            arr = np.asarray(genotypes, dtype=float)
        except (TypeError, ValueError) as e:
            msg = f"Genotype matrix could not be converted to numbers: {e}"
            self.logger.error(msg)
            raise exceptions.InputFormatError(msg) from e

        if arr.ndim != 2:
            msg = f"Genotype matrix must be two-dimensional, but got shape {arr.shape}."
            self.logger.error(msg)
            raise exceptions.InputFormatError(msg)

        arr = np.where(np.isnan(arr), MISSING, arr)
        valid = np.isin(arr, [0, 1, 2, MISSING])
        if not valid.all():
            bad = np.unique(arr[~valid])[:5]
            msg = (
                "Genotypes must be diploid alternate-allele dosages in {0, 1, 2} "
                f"or missing (-9/NaN), but found: {bad.tolist()}"
            )
            self.logger.error(msg)
            raise exceptions.InputFormatError(msg)

        out = arr.astype(np.int8)
        out.flags.writeable = False
        return out

    @property
    def n_individuals(self) -> int:
        return int(self.snp_data.shape[0])

    @property
    def n_markers(self) -> int:
        return int(self.snp_data.shape[1])

    @property
    def shape(self) -> tuple:
        return self.snp_data.shape

    @property
    def missing_mask(self) -> np.ndarray:
        """Boolean matrix, True where the genotype call is missing."""
        return self.snp_data == MISSING

    def to_float(self) -> np.ndarray:
        """Return the dosages as a float64 matrix with NaN for missing calls."""
        X = self.snp_data.astype(np.float64)
        X[self.missing_mask] = np.nan
        return X

    def allele_frequencies(self) -> np.ndarray:
        """Alternate-allele frequency per marker, ignoring missing calls.

        Markers without any observed call get NaN.
        """
        X = self.to_float()
        observed = np.count_nonzero(~np.isnan(X), axis=0)
        with np.errstate(divide="ignore", invalid="ignore"):
            p = np.nansum(X, axis=0) / (2.0 * observed)
        p[observed == 0] = np.nan
        return p

    def minor_allele_frequencies(self) -> np.ndarray:
        """Allele frequencies folded to at most 0.5."""
        p = self.allele_frequencies()
        return np.minimum(p, 1.0 - p)

    def calc_missing(self) -> MissingStats:
        """Compute per-marker and per-individual missing proportions.

        Returns:
            MissingStats: Missing proportions indexed by marker and sample IDs.
        """
        mask = self.missing_mask
        per_locus = mask.mean(axis=0) if self.n_individuals else np.zeros(self.n_markers)
        per_ind = mask.mean(axis=1) if self.n_markers else np.zeros(self.n_individuals)

        return MissingStats(
            per_locus=pd.Series(per_locus, index=self.markers, name="Missing Prop."),
            per_individual=pd.Series(
                per_ind, index=self.samples, name="Missing Prop."
            ),
        )

    def subset(
        self,
        sample_indices: Sequence[int] | np.ndarray | None = None,
        marker_indices: Sequence[int] | np.ndarray | None = None,
    ) -> "GenotypeData":
        """Return a new GenotypeData restricted to the given rows and columns.

        Args:
            sample_indices (Sequence[int] | np.ndarray | None): Row indices or boolean mask. None keeps all rows.
            marker_indices (Sequence[int] | np.ndarray | None): Column indices or boolean mask. None keeps all columns.

        Returns:
            GenotypeData: The subset, with identifiers kept aligned.
        """
        rows = np.arange(self.n_individuals)
        cols = np.arange(self.n_markers)
        if sample_indices is not None:
            rows = rows[np.asarray(sample_indices)]
        if marker_indices is not None:
            cols = cols[np.asarray(marker_indices)]

        return GenotypeData(
            self.snp_data[np.ix_(rows, cols)],
            samples=[self.samples[i] for i in rows],
            markers=[self.markers[j] for j in cols],
            prefix=self.prefix,
            verbose=self.verbose,
            debug=self.debug,
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Return the genotypes as a DataFrame (index = samples, columns = markers)."""
        return pd.DataFrame(
            np.asarray(self.snp_data), index=self.samples, columns=self.markers
        )

    def __repr__(self) -> str:
        return (
            f"GenotypeData(n_individuals={self.n_individuals}, "
            f"n_markers={self.n_markers})"
        )
