# Description: Main entry point for the snpdapc package. Imports the public classes and functions and defines the package version number.

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("snpdapc")
except PackageNotFoundError:
    __version__ = "unknown"  # Default if package is not installed

# Defines the public API for the package
__all__ = [
    "GenotypeData",
    "TableReader",
    "VCFReader",
    "read_genotype_table",
    "read_vcf",
    "QCFilter",
    "filter_genotypes",
    "project",
    "ClusterSelector",
    "select_k",
    "CrossValidator",
    "cross_validate",
    "DAPC",
    "fit",
    "DAPCConfig",
    "DAPCPipeline",
    "DAPCResult",
    "run_dapc",
    "Plotting",
    "ResultsExporter",
    "simulate_structured_genotypes",
    "__version__",
]

from snpdapc.analysis.clustering import ClusterSelector, select_k
from snpdapc.analysis.cross_validation import CrossValidator, cross_validate
from snpdapc.analysis.dapc import DAPC, fit
from snpdapc.analysis.pca import project
from snpdapc.analysis.pipeline import DAPCPipeline, DAPCResult, run_dapc
from snpdapc.filtering.qc_filter import QCFilter, filter_genotypes
from snpdapc.io.table_reader import TableReader, read_genotype_table
from snpdapc.io.vcf_reader import VCFReader, read_vcf
from snpdapc.plotting.plotting import Plotting
from snpdapc.read_input.genotype_data import GenotypeData
from snpdapc.simulators.simulate_data import simulate_structured_genotypes
from snpdapc.utils.containers import DAPCConfig
from snpdapc.utils.results_exporter import ResultsExporter
