import json
from pathlib import Path
from typing import Any, Dict

import numpy as np
import pandas as pd


def _to_builtin(obj: Any) -> Any:
    """``json.dump`` fallback for numpy scalars and arrays."""
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class ResultsExporter:
    """Writes DAPC results to CSV, JSON and plain-text files.

    Files are written under ``<output_dir>/analysis``. Nothing is written until a complete result is handed over, so a failed run leaves no partial output.

    Example:
        >>> exporter = ResultsExporter("run1_output")
        >>> paths = exporter.export_dapc(result)
        >>> paths["results"]
        PosixPath('run1_output/analysis/DAPC_results.csv')
    """

    def __init__(self, output_dir: str | Path = "snpdapc_output"):
        """Initialize the ResultsExporter object.

        Args:
            output_dir (str | Path): Directory where results will be saved.
        """
        self.output_dir = output_dir

    def save_results(self, data: Any, filename: str) -> Path:
        """Save a DataFrame as CSV, or anything else JSON-serializable as JSON.

        Args:
            data (Any): DataFrame, Series, dictionary or list.
            filename (str): Base filename without extension.

        Returns:
            Path: The written file.
        """
        if isinstance(data, (pd.DataFrame, pd.Series)):
            path = self.output_dir / f"{filename}.csv"
            data.to_csv(path, index=False)
            return path

        path = self.output_dir / f"{filename}.json"
        with open(path, "w") as f:
            json.dump(data, f, indent=4, default=_to_builtin)
        return path

    def save_text_summary(
        self, summary: Dict[str, Any], qc_report: pd.DataFrame, filename: str
    ) -> Path:
        """Write a human-readable run summary.

        Args:
            summary (Dict[str, Any]): Scalar summary of the run.
            qc_report (pd.DataFrame): Per-step filtering summary.
            filename (str): Base filename without extension.

        Returns:
            Path: The written file.
        """
        path = self.output_dir / f"{filename}.txt"
        width = max(len(k) for k in summary)

        lines = ["DAPC summary", "============", ""]
        for key, value in summary.items():
            if isinstance(value, float):
                value = f"{value:.4f}"
            lines.append(f"{key.ljust(width)} : {value}")

        lines += ["", "Quality control", "---------------", qc_report.to_string(index=False)]

        path.write_text("\n".join(lines) + "\n")
        return path

    def export_dapc(self, result) -> Dict[str, Path]:
        """Write every table and summary of a finished DAPC run.

        Args:
            result (DAPCResult): Output of ``DAPCPipeline.run``.

        Returns:
            Dict[str, Path]: Written files keyed by content.
        """
        summary = result.summary()
        return {
            "results": self.save_results(result.results_table(), "DAPC_results"),
            "bic": self.save_results(result.bic_table(), "BIC_K_selection"),
            "xval": self.save_results(result.xval_table(), "cross_validation_PCs"),
            "summary_json": self.save_results(
                {"summary": summary, "config": result.config.to_dict()}, "DAPC_summary"
            ),
            "summary_txt": self.save_text_summary(
                summary, result.qc_report, "DAPC_summary"
            ),
        }

    @property
    def output_dir(self) -> Path:
        """Returns the directory where results are saved."""
        self._output_dir.mkdir(parents=True, exist_ok=True)
        return self._output_dir

    @output_dir.setter
    def output_dir(self, value: str | Path) -> None:
        """Sets the directory where results will be saved.

        Args:
            value (str | Path): Directory where results will be saved.
        """
        value = Path(value)
        if value.name != "analysis":
            value = value / "analysis"
        self._output_dir = value
