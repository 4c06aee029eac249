from __future__ import annotations

from dataclasses import dataclass

import pandas as pd


@dataclass(slots=True)
class MissingStats:
    """Container for the missing-data statistics computed by ``GenotypeData.calc_missing``.

    Attributes:
        per_locus (pd.Series): Proportion of missing calls for each marker (index = marker ID).
        per_individual (pd.Series): Proportion of missing calls for each individual (index = sample ID).
    """

    per_locus: pd.Series
    per_individual: pd.Series

    def summary(self) -> pd.DataFrame:
        """Return a compact, human-readable summary table.

        Returns:
            pd.DataFrame: Mean, median and maximum missing proportions for markers and individuals.
        """
        rows = [
            ("Loci (mean)", self.per_locus.mean()),
            ("Loci (median)", self.per_locus.median()),
            ("Loci (max)", self.per_locus.max()),
            ("Individuals (mean)", self.per_individual.mean()),
            ("Individuals (median)", self.per_individual.median()),
            ("Individuals (max)", self.per_individual.max()),
        ]

        return (
            pd.DataFrame(rows, columns=["Statistic", "Missing Proportion"])
            .set_index("Statistic")
            .round(4)
        )
