from logging import Logger
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd

import snpdapc.utils.custom_exceptions as exceptions
from snpdapc.read_input.genotype_data import GenotypeData
from snpdapc.utils.logging import LoggerManager


class QCFilter:
    """Missing-data and minor-allele-frequency filtering of a GenotypeData object.

    Filters are applied to boolean masks over the original rows and columns and never re-admit a removed individual or marker. Each filter is computed once on the current state; nothing is recomputed iteratively. The standard order is individuals first (on the full matrix), then markers by missingness, then markers by MAF, which is what ``run`` does.

    Example:
        >>> qc = QCFilter(gd)
        >>> gd_filt = (
        ...     qc.filter_missing_sample(0.5)
        ...     .filter_missing(0.1)
        ...     .filter_maf(0.05)
        ...     .resolve()
        ... )
        >>> qc.report

    Attributes:
        genotype_data (GenotypeData): The unfiltered input.
        sample_indices (np.ndarray): Boolean mask of retained individuals.
        loci_indices (np.ndarray): Boolean mask of retained markers.
        removed_per_step (Dict[str, Tuple[str, int, int]]): Axis, number removed and number remaining per filtering step.
        logger (Logger): Logger for this object.
    """

    def __init__(self, genotype_data: GenotypeData) -> None:
        """Initialize the QCFilter.

        Args:
            genotype_data (GenotypeData): Genotypes to filter.
        """
        self.genotype_data = genotype_data

        logman = LoggerManager(
            __name__,
            prefix=genotype_data.prefix,
            verbose=genotype_data.verbose,
            debug=genotype_data.debug,
        )
        self.logger: Logger = logman.get_logger()

        self._missing: np.ndarray = genotype_data.missing_mask
        self.sample_indices: np.ndarray = np.ones(genotype_data.n_individuals, bool)
        self.loci_indices: np.ndarray = np.ones(genotype_data.n_markers, bool)
        self.removed_per_step: Dict[str, Tuple[str, int, int]] = {}

    def _check_threshold(self, threshold: float) -> None:
        if not isinstance(threshold, (float, int)) or isinstance(threshold, bool):
            msg = f"Threshold must be a float value, but got: {type(threshold)}"
            self.logger.error(msg)
            raise TypeError(msg)

        if threshold < 0.0 or threshold > 1.0:
            msg = f"Threshold must be between [0.0, 1.0], but got: {threshold:.3f}"
            self.logger.error(msg)
            raise exceptions.InvalidThresholdError(threshold, msg)

    def filter_missing_sample(self, threshold: float) -> "QCFilter":
        """Remove individuals whose missing-call fraction is at or above ``threshold``.

        The fraction is computed across all markers of the original matrix.

        Args:
            threshold (float): Maximum allowable missing proportion (0.0 to 1.0).

        Returns:
            QCFilter: self, for chaining.
        """
        self._check_threshold(threshold)
        self.logger.info(
            f"Filtering individuals with missing data proportion >= {threshold:.3f}"
        )

        if self.genotype_data.n_markers == 0:
            props = np.ones(self.genotype_data.n_individuals)
        else:
            props = self._missing.mean(axis=1)

        keep = self.sample_indices & (props < threshold)
        self._record("filter_missing_sample", "individuals", self.sample_indices, keep)
        self.sample_indices = keep
        return self

    def filter_missing(self, threshold: float) -> "QCFilter":
        """Remove markers whose missing-call fraction over retained individuals is at or above ``threshold``.

        Args:
            threshold (float): Maximum allowable missing proportion (0.0 to 1.0).

        Returns:
            QCFilter: self, for chaining.
        """
        self._check_threshold(threshold)
        self.logger.info(
            f"Filtering loci with missing data proportion >= {threshold:.3f}"
        )

        missing = self._missing[self.sample_indices]
        if missing.shape[0] == 0:
            self.logger.warning("No individuals remain; every locus will be removed.")
            props = np.ones(self.genotype_data.n_markers)
        else:
            props = missing.mean(axis=0)

        keep = self.loci_indices & (props < threshold)
        self._record("filter_missing", "loci", self.loci_indices, keep)
        self.loci_indices = keep
        return self

    def filter_maf(self, threshold: float) -> "QCFilter":
        """Remove markers whose minor allele frequency is at or below ``threshold``.

        Frequencies are computed over retained individuals, ignoring missing calls. Markers with no observed call have an undefined frequency and are removed.

        Args:
            threshold (float): Minimum minor allele frequency (0.0 to 1.0).

        Returns:
            QCFilter: self, for chaining.
        """
        self._check_threshold(threshold)
        self.logger.info(f"Filtering loci with MAF <= {threshold:.3f}")

        X = self.genotype_data.to_float()[self.sample_indices]
        observed = np.count_nonzero(~np.isnan(X), axis=0)
        with np.errstate(divide="ignore", invalid="ignore"):
            p = np.nansum(X, axis=0) / (2.0 * observed)
        maf = np.minimum(p, 1.0 - p)
        maf[observed == 0] = np.nan

        keep = self.loci_indices & (np.nan_to_num(maf, nan=-1.0) > threshold)
        self._record("filter_maf", "loci", self.loci_indices, keep)
        self.loci_indices = keep
        return self

    def _record(
        self, step: str, axis: str, before: np.ndarray, after: np.ndarray
    ) -> None:
        n_removed = int(np.count_nonzero(before) - np.count_nonzero(after))
        n_kept = int(np.count_nonzero(after))
        self.removed_per_step[step] = (axis, n_removed, n_kept)
        self.logger.info(f"{step}: removed {n_removed} {axis}, {n_kept} remain.")

        if n_kept == 0:
            self.logger.warning(
                f"No {axis} remain after {step}. Adjust filtering parameters."
            )

    def run(
        self,
        max_ind_missing: float = 0.5,
        max_locus_missing: float = 0.1,
        min_maf: float = 0.05,
    ) -> GenotypeData:
        """Apply the three filters in their standard order and resolve.

        Args:
            max_ind_missing (float): Individual missingness threshold.
            max_locus_missing (float): Marker missingness threshold.
            min_maf (float): Minor allele frequency threshold.

        Returns:
            GenotypeData: The filtered genotypes.
        """
        return (
            self.filter_missing_sample(max_ind_missing)
            .filter_missing(max_locus_missing)
            .filter_maf(min_maf)
            .resolve()
        )

    def resolve(self) -> GenotypeData:
        """Build the filtered GenotypeData from the current masks.

        Returns:
            GenotypeData: A new object holding the retained individuals and markers.

        Raises:
            InsufficientDataError: If zero individuals or zero markers remain.
        """
        n_ind = int(np.count_nonzero(self.sample_indices))
        n_loc = int(np.count_nonzero(self.loci_indices))

        if n_ind == 0 or n_loc == 0:
            err = exceptions.InsufficientDataError(n_ind, n_loc)
            self.logger.error(str(err))
            raise err

        self.logger.info(f"Data after QC: {n_ind} individuals, {n_loc} loci.")
        return self.genotype_data.subset(self.kept_samples, self.kept_markers)

    @property
    def kept_samples(self) -> np.ndarray:
        """Indices of retained individuals into the original matrix."""
        return np.flatnonzero(self.sample_indices)

    @property
    def kept_markers(self) -> np.ndarray:
        """Indices of retained markers into the original matrix."""
        return np.flatnonzero(self.loci_indices)

    @property
    def report(self) -> pd.DataFrame:
        """Per-step filtering summary (Step, Axis, Removed, Remaining)."""
        rows: List[tuple] = [
            (step, axis, removed, kept)
            for step, (axis, removed, kept) in self.removed_per_step.items()
        ]
        return pd.DataFrame(rows, columns=["Step", "Axis", "Removed", "Remaining"])


def filter_genotypes(
    genotype_data: GenotypeData,
    max_ind_missing_frac: float = 0.5,
    max_locus_missing_frac: float = 0.1,
    min_maf: float = 0.05,
) -> Tuple[GenotypeData, np.ndarray, np.ndarray]:
    """Run the standard QC filters on a GenotypeData object.

    Args:
        genotype_data (GenotypeData): Unfiltered genotypes.
        max_ind_missing_frac (float): Individuals at or above this missing fraction are removed.
        max_locus_missing_frac (float): Markers at or above this missing fraction are removed.
        min_maf (float): Markers at or below this minor allele frequency are removed.

    Returns:
        Tuple[GenotypeData, np.ndarray, np.ndarray]: Filtered genotypes, indices of kept samples and indices of kept markers (both into the input matrix).

    Raises:
        InsufficientDataError: If no individuals or no markers survive.
    """
    qc = QCFilter(genotype_data)
    filtered = qc.run(max_ind_missing_frac, max_locus_missing_frac, min_maf)
    return filtered, qc.kept_samples, qc.kept_markers
