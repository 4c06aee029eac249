from functools import lru_cache
from pathlib import Path
from typing import List, Tuple

import numpy as np
import pysam
from tqdm import tqdm

from snpdapc.read_input.genotype_data import MISSING, GenotypeData
from snpdapc.utils.custom_exceptions import InputFormatError
from snpdapc.utils.logging import LoggerManager


class VCFReader(GenotypeData):
    """Read the GT field of a biallelic, diploid VCF file into a GenotypeData object.

    Records are read with ``pysam.VariantFile``. Genotypes are converted to alternate-allele dosages (``0/0`` -> 0, ``0/1`` or ``1|0`` -> 1, ``1/1`` -> 2); calls with any missing allele become missing. Plain, gzip and bgzip-compressed files are supported and no index is required. Marker IDs come from the ID column, or ``CHROM:POS`` where the ID is ``.``.

    Example:
        >>> gd = VCFReader("example.vcf.gz")
        >>> gd.samples[:3]
        ['ind1', 'ind2', 'ind3']

    Attributes:
        filename (str): Path to the VCF file.
        chrom (List[str]): Chromosome of each marker.
        pos (List[int]): Position of each marker.
    """

    def __init__(
        self,
        filename: str | Path,
        prefix: str = "snpdapc",
        verbose: bool = True,
        debug: bool = False,
    ) -> None:
        """Initialize the VCFReader and load the genotypes.

        Args:
            filename (str | Path): Path to a ``.vcf`` or ``.vcf.gz`` file.
            prefix (str): Prefix for output directories.
            verbose (bool): Whether to enable verbose logging.
            debug (bool): Whether to enable debug logging.

        Raises:
            InputFormatError: If the file is missing or malformed, or contains multi-allelic or non-diploid calls.
        """
        self.filename = str(filename)
        self.verbose = verbose
        self.logger = LoggerManager(
            __name__, prefix=prefix, verbose=verbose, debug=debug
        ).get_logger()

        dosages, samples, markers = self.load_aln()

        super().__init__(
            dosages,
            samples=samples,
            markers=markers,
            prefix=prefix,
            verbose=verbose,
            debug=debug,
        )
        self.logger.info(
            f"Loaded {self.n_individuals} individuals and {self.n_markers} markers from {self.filename}."
        )

    def _fail(self, msg: str) -> InputFormatError:
        self.logger.error(f"{self.filename}: {msg}")
        return InputFormatError(msg, filename=self.filename)

    def load_aln(self) -> Tuple[np.ndarray, List[str], List[str]]:
        """Parse the VCF file.

        Returns:
            Tuple[np.ndarray, List[str], List[str]]: Dosage matrix (individuals x markers), sample IDs and marker IDs.

        Raises:
            InputFormatError: If the file cannot be parsed as a biallelic, diploid VCF.
        """
        if not Path(self.filename).is_file():
            raise self._fail("VCF file not found.")

        self.logger.info(f"Reading VCF file {self.filename}...")

        try:
            vcf = pysam.VariantFile(self.filename, mode="r")
        except (OSError, ValueError) as e:
            raise self._fail(f"Could not open VCF file: {e}") from e

        with vcf:
            samples = [str(s) for s in vcf.header.samples]
            if not samples:
                raise self._fail("VCF file contains no samples.")

            self.chrom: List[str] = []
            self.pos: List[int] = []
            markers: List[str] = []
            rows: List[List[int]] = []

            try:
                for record in tqdm(
                    vcf,
                    desc="Reading VCF: ",
                    unit=" records",
                    disable=not self.verbose,
                ):
                    rows.append(self._record_dosages(record, samples))
                    self.chrom.append(str(record.chrom))
                    self.pos.append(int(record.pos))
                    markers.append(record.id or f"{record.chrom}:{record.pos}")
            except (OSError, ValueError) as e:
                raise self._fail(f"Could not parse VCF record: {e}") from e

        if not rows:
            raise self._fail("VCF file contains no variant records.")

        self.logger.debug(f"Read {len(rows)} records for {len(samples)} samples.")

        dosages = np.array(rows, dtype=np.int8).T
        return dosages, samples, markers

    def _record_dosages(
        self, record: pysam.libcbcf.VariantRecord, samples: List[str]
    ) -> List[int]:
        """Alternate-allele dosage of every sample at one record."""
        site = f"{record.chrom}:{record.pos}"
        if record.alts is not None and len(record.alts) > 1:
            raise self._fail(
                f"Multi-allelic site at {site}; only biallelic SNPs are supported."
            )

        if "GT" not in record.format:
            raise self._fail(f"No GT field at {site}.")

        dosages = []
        for sample in samples:
            gt = record.samples[sample].get("GT", (None, None))
            try:
                dosages.append(_gt_to_dosage(gt))
            except ValueError as e:
                raise self._fail(f"{e} at {site}, sample {sample}.") from e
        return dosages


@lru_cache(maxsize=64)
def _gt_to_dosage(gt: Tuple[int | None, ...]) -> int:
    """Alternate-allele dosage of a pysam GT tuple, or MISSING if any allele is missing."""
    if gt is None or len(gt) == 0 or gt == (None,):
        return MISSING
    if len(gt) != 2:
        raise ValueError(
            f"Genotype {gt} is not diploid; only diploid calls are supported"
        )
    if None in gt:
        return MISSING
    if any(a > 1 for a in gt):
        raise ValueError(f"Genotype {gt} references a non-biallelic allele index")
    return int(gt[0] + gt[1])


def read_vcf(
    filename: str | Path,
    prefix: str = "snpdapc",
    verbose: bool = True,
    debug: bool = False,
) -> GenotypeData:
    """Read a biallelic, diploid VCF file. See ``VCFReader``."""
    return VCFReader(filename, prefix=prefix, verbose=verbose, debug=debug)
