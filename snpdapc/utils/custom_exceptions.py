from typing import List, Sequence


class SNPDAPCError(Exception):
    """Base exception class for all snpdapc errors."""

    def __init__(self, message: str = "An snpdapc-related error occurred.") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class InputFormatError(SNPDAPCError):
    """Raised when a genotype source is malformed or unreadable."""

    def __init__(self, message: str = None, filename: str | None = None) -> None:
        self.filename = filename
        msg = message or "Malformed or unreadable genotype input."
        if filename is not None and message is not None:
            msg = f"{filename}: {message}"
        super().__init__(msg)


class InvalidThresholdError(SNPDAPCError):
    """Raised when an invalid threshold is provided for filtering."""

    def __init__(self, threshold: float, message: str = None) -> None:
        self.threshold = threshold
        msg = (
            message or f"Invalid threshold value: {threshold}. Must be between 0 and 1."
        )
        super().__init__(msg)


class InsufficientDataError(SNPDAPCError):
    """Raised when no individuals or no markers remain to analyse."""

    def __init__(
        self, n_individuals: int, n_markers: int, message: str = None
    ) -> None:
        self.n_individuals = n_individuals
        self.n_markers = n_markers
        msg = message or (
            f"Insufficient data after filtering: {n_individuals} individuals and "
            f"{n_markers} markers remain. Try relaxing the QC thresholds."
        )
        super().__init__(msg)


class ClusteringError(SNPDAPCError):
    """Raised when K-means yields no usable solution for any tested K."""

    def __init__(self, k_values: Sequence[int], message: str = None) -> None:
        self.k_values: List[int] = list(k_values)
        msg = message or (
            f"K-means failed to converge for every start at every tested K "
            f"({', '.join(str(k) for k in self.k_values)})."
        )
        super().__init__(msg)


class InsufficientSamplesError(SNPDAPCError):
    """Raised when a group is too small for stratified cross-validation."""

    def __init__(self, group: str | int, size: int, message: str = None) -> None:
        self.group = group
        self.size = size
        msg = message or (
            f"Group '{group}' has {size} individual(s); at least 2 are required "
            "to draw stratified training and held-out sets."
        )
        super().__init__(msg)


class CrossValidationError(SNPDAPCError):
    """Raised when no cross-validation replicate succeeds for any PC count."""

    pass


class DegenerateGroupError(SNPDAPCError):
    """Raised when a group has zero within-group variance or the pooled within-group covariance is singular.

    The DAPC engine recovers from this error locally by regularizing the within-group covariance, so it never escapes a call to ``DAPC.fit``.
    """

    def __init__(self, groups: Sequence[str | int], message: str = None) -> None:
        self.groups = list(groups)
        msg = message or (
            "Zero within-group variance for group(s): "
            f"{', '.join(str(g) for g in self.groups)}."
        )
        super().__init__(msg)
