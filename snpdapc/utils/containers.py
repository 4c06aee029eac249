from dataclasses import asdict, dataclass
from typing import Literal

from snpdapc.utils.custom_exceptions import InvalidThresholdError

CRITERIA = ("BIC", "AIC", "WSS")
SELECTION_RULES = (
    "diffNgroup",
    "min",
    "goesup",
    "smoothNgoesup",
    "goodfit",
    "diminishing",
)
XVAL_RESULTS = ("groupMean", "overall")


@dataclass(frozen=True)
class DAPCConfig:
    """Immutable configuration for a full DAPC run.

    ``None`` for ``max_k`` or ``n_pca_clustering`` means the value is derived from the number of individuals that survive QC: ``min(10, floor(sqrt(N)))`` and ``floor(N / 3)`` respectively.

    Attributes:
        max_ind_missing (float): Individuals with a missing-call fraction at or above this value are removed.
        max_locus_missing (float): Markers with a missing-call fraction at or above this value are removed.
        min_maf (float): Markers with a minor allele frequency at or below this value are removed.
        max_k (int | None): Largest number of clusters tested.
        n_pca_clustering (int | None): Principal components retained for K-means.
        n_pca_max (int): Largest PC count tested in cross-validation.
        training_fraction (float): Fraction of each group used for training in cross-validation.
        n_replicates (int): Cross-validation replicate count.
        max_n_da (int): Maximum number of discriminant axes retained.
        seed (int): Global random seed.
        n_iter (int): Maximum K-means iterations per start.
        n_starts (int): K-means starts per K.
        criterion (str): Goodness-of-fit statistic: "BIC", "AIC" or "WSS".
        selection_rule (str): Rule used to pick K from the statistic curve.
        xval_result (str): "groupMean" or "overall" success rate in cross-validation.
        center (bool): Center markers before PCA.
        scale (bool): Scale markers to unit variance before PCA.
        n_jobs (int): Worker processes for K-means starts and CV replicates (-1 = all CPUs).
        prefix (str): Prefix for output directories.
        verbose (bool): Whether to enable verbose logging.
        debug (bool): Whether to enable debug logging.
        log_to_file (bool): Whether to also write log files under ``<prefix>_output/logs``.
    """

    max_ind_missing: float = 0.5
    max_locus_missing: float = 0.1
    min_maf: float = 0.05
    max_k: int | None = None
    n_pca_clustering: int | None = None
    n_pca_max: int = 300
    training_fraction: float = 0.9
    n_replicates: int = 30
    max_n_da: int = 3
    seed: int = 999
    n_iter: int = 100000
    n_starts: int = 10
    criterion: Literal["BIC", "AIC", "WSS"] = "BIC"
    selection_rule: Literal[
        "diffNgroup", "min", "goesup", "smoothNgoesup", "goodfit", "diminishing"
    ] = "diffNgroup"
    xval_result: Literal["groupMean", "overall"] = "groupMean"
    center: bool = True
    scale: bool = False
    n_jobs: int = 1
    prefix: str = "snpdapc"
    verbose: bool = True
    debug: bool = False
    log_to_file: bool = False

    def __post_init__(self):
        for name in ("max_ind_missing", "max_locus_missing", "min_maf"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidThresholdError(
                    value, f"{name} must be between [0.0, 1.0], but got: {value}"
                )

        if not 0.0 < self.training_fraction < 1.0:
            raise InvalidThresholdError(
                self.training_fraction,
                f"training_fraction must be in (0.0, 1.0), but got: {self.training_fraction}",
            )

        for name in ("n_pca_max", "n_replicates", "max_n_da", "n_iter", "n_starts"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be a positive integer.")

        if self.max_k is not None and self.max_k < 1:
            raise ValueError("max_k must be a positive integer or None.")

        if self.n_pca_clustering is not None and self.n_pca_clustering < 1:
            raise ValueError("n_pca_clustering must be a positive integer or None.")

        if self.seed < 0:
            raise ValueError("seed must be a non-negative integer.")

        if self.n_jobs == 0 or self.n_jobs < -1:
            raise ValueError("n_jobs must be -1 or a positive integer.")

        if self.criterion not in CRITERIA:
            raise ValueError(
                f"Invalid criterion: {self.criterion}. Supported: {CRITERIA}"
            )

        if self.selection_rule not in SELECTION_RULES:
            raise ValueError(
                f"Invalid selection rule: {self.selection_rule}. Supported: {SELECTION_RULES}"
            )

        if self.xval_result not in XVAL_RESULTS:
            raise ValueError(
                f"Invalid xval_result: {self.xval_result}. Supported: {XVAL_RESULTS}"
            )

    def to_dict(self) -> dict:
        """Convert the DAPCConfig to a dictionary."""
        return asdict(self)
