from pathlib import Path

import numpy as np
import pandas as pd

from snpdapc.read_input.genotype_data import MISSING, GenotypeData
from snpdapc.utils.custom_exceptions import InputFormatError
from snpdapc.utils.logging import LoggerManager

NA_VALUES = ["", "NA", "NaN", "nan", ".", "-9", "-9.0"]


class TableReader(GenotypeData):
    """Read a 0/1/2-coded genotype table into a GenotypeData object.

    Rows are individuals and columns are markers. The first column holds the sample IDs and the header row holds the marker IDs. Missing calls may be empty, ``NA``, ``.`` or ``-9``.

    Example:
        >>> gd = TableReader("genotypes.csv")
        >>> gd.n_individuals, gd.n_markers
        (60, 500)

    Attributes:
        filename (str): Path to the genotype table.
        sep (str): Column delimiter.
    """

    def __init__(
        self,
        filename: str | Path,
        sep: str | None = None,
        prefix: str = "snpdapc",
        verbose: bool = True,
        debug: bool = False,
    ) -> None:
        """Initialize the TableReader and load the table.

        Args:
            filename (str | Path): Path to a CSV or tab-delimited table (optionally compressed).
            sep (str | None): Delimiter. Defaults to tab for ``.tsv``/``.txt`` files and comma otherwise.
            prefix (str): Prefix for output directories.
            verbose (bool): Whether to enable verbose logging.
            debug (bool): Whether to enable debug logging.

        Raises:
            InputFormatError: If the file is missing, unreadable or holds non-dosage values.
        """
        self.filename = str(filename)
        self.sep = sep or self._infer_sep(self.filename)

        logger = LoggerManager(
            __name__, prefix=prefix, verbose=verbose, debug=debug
        ).get_logger()

        df = self._load(logger)

        super().__init__(
            df.to_numpy(dtype=float),
            samples=[str(s) for s in df.index],
            markers=[str(m) for m in df.columns],
            prefix=prefix,
            verbose=verbose,
            debug=debug,
        )
        self.logger.info(
            f"Loaded {self.n_individuals} individuals and {self.n_markers} markers from {self.filename}."
        )

    @staticmethod
    def _infer_sep(filename: str) -> str:
        stem = filename[:-3] if filename.endswith(".gz") else filename
        return "\t" if stem.endswith((".tsv", ".txt", ".tab")) else ","

    def _load(self, logger) -> pd.DataFrame:
        path = Path(self.filename)
        if not path.is_file():
            msg = f"Genotype table not found: {self.filename}"
            logger.error(msg)
            raise InputFormatError(msg, filename=self.filename)

        logger.info(f"Reading genotype table {self.filename}...")

        try:
            df = pd.read_csv(
                path, sep=self.sep, index_col=0, na_values=NA_VALUES, dtype=str
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            logger.error(f"Could not parse {self.filename}: {e}")
            raise InputFormatError(str(e), filename=self.filename) from e

        if df.shape[0] == 0 or df.shape[1] == 0:
            msg = "Genotype table has no individuals or no markers."
            logger.error(msg)
            raise InputFormatError(msg, filename=self.filename)

        numeric = df.apply(pd.to_numeric, errors="coerce")
        bad = numeric.isna() & df.notna()
        if bad.to_numpy().any():
            row, col = np.argwhere(bad.to_numpy())[0]
            msg = (
                f"Non-numeric genotype '{df.iat[row, col]}' for sample "
                f"'{df.index[row]}' at marker '{df.columns[col]}'."
            )
            logger.error(msg)
            raise InputFormatError(msg, filename=self.filename)

        return numeric.fillna(MISSING)


def read_genotype_table(
    filename: str | Path,
    sep: str | None = None,
    prefix: str = "snpdapc",
    verbose: bool = True,
    debug: bool = False,
) -> GenotypeData:
    """Read a 0/1/2-coded genotype table. See ``TableReader``."""
    return TableReader(filename, sep=sep, prefix=prefix, verbose=verbose, debug=debug)
