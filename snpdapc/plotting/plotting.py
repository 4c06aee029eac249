from logging import Logger
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List

import matplotlib as mpl

mpl.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from snpdapc.utils.logging import LoggerManager

if TYPE_CHECKING:
    from snpdapc.analysis.clustering import ClusterAssignment
    from snpdapc.analysis.cross_validation import CrossValidationResult
    from snpdapc.analysis.dapc import DAPCModel
    from snpdapc.analysis.pipeline import DAPCResult


class Plotting:
    """Diagnostic figures for a DAPC run.

    Figures are saved to ``<prefix>_output/plots`` in ``plot_format`` and closed after saving unless ``show`` is True. Colors come from the viridis palette, one per group.

    Example:
        >>> plotter = Plotting(prefix="run1")
        >>> plotter.plot_bic(result.clusters)
        >>> plotter.plot_compoplot(result.model)

    Attributes:
        prefix (str): Prefix string for output directories and files.
        output_dir (Path): Output directory for saving plots.
        show (bool): Whether to display the plots.
        plot_format (str): Format in which to save the plots.
        dpi (int): Resolution of the saved plots.
        plot_fontsize (int): Font size for the plot labels.
        plot_title_fontsize (int): Font size for the plot titles.
        despine (bool): Whether to remove the top and right plot axis spines.
        logger (Logger): Logger object for logging messages.
        mpl_params (dict): Matplotlib parameters applied to every plot.
    """

    def __init__(
        self,
        prefix: str = "snpdapc",
        output_dir: str | Path | None = None,
        show: bool = False,
        plot_format: str = "png",
        dpi: int = 300,
        plot_fontsize: int = 18,
        plot_title_fontsize: int = 22,
        despine: bool = True,
        verbose: bool = True,
        debug: bool = False,
    ) -> None:
        """Initialize the Plotting class.

        Args:
            prefix (str): Prefix for output directories. Defaults to "snpdapc".
            output_dir (str | Path | None): Base output directory. Defaults to ``<prefix>_output``.
            show (bool): Whether to display the plots. Defaults to False.
            plot_format (str): Image format, e.g. 'png', 'pdf' or 'svg'. Defaults to 'png'.
            dpi (int): Resolution of raster plots. Defaults to 300.
            plot_fontsize (int): Font size for labels. Defaults to 18.
            plot_title_fontsize (int): Font size for titles. Defaults to 22.
            despine (bool): Remove the top and right spines. Defaults to True.
            verbose (bool): Whether to enable verbose logging.
            debug (bool): Whether to enable debug logging.
        """
        self.prefix = prefix
        base = Path(output_dir) if output_dir is not None else Path(f"{prefix}_output")
        self.output_dir: Path = base / "plots"
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.show = show
        self.plot_format = plot_format
        self.dpi = dpi
        self.plot_fontsize = plot_fontsize
        self.plot_title_fontsize = plot_title_fontsize
        self.despine = despine

        logman = LoggerManager(__name__, prefix=prefix, debug=debug, verbose=verbose)
        self.logger: Logger = logman.get_logger()

        self.mpl_params = {
            "xtick.labelsize": self.plot_fontsize,
            "ytick.labelsize": self.plot_fontsize,
            "legend.fontsize": self.plot_fontsize,
            "figure.titlesize": self.plot_title_fontsize,
            "figure.facecolor": "white",
            "figure.dpi": self.dpi,
            "font.size": self.plot_fontsize,
            "axes.titlesize": self.plot_title_fontsize,
            "axes.labelsize": self.plot_fontsize,
            "axes.grid": False,
            "axes.edgecolor": "black",
            "axes.facecolor": "white",
            "axes.spines.top": not self.despine,
            "axes.spines.right": not self.despine,
            "savefig.facecolor": "white",
            "savefig.dpi": self.dpi,
            "savefig.bbox": "tight",
            "pdf.fonttype": 42,
            "ps.fonttype": 42,
        }

        mpl.rcParams.update(self.mpl_params)

    def _save(self, fig: plt.Figure, name: str) -> Path:
        of = self.output_dir / f"{name}.{self.plot_format}"
        fig.savefig(of)
        self.logger.info(f"Saved plot: {of}")

        if self.show:
            plt.show()

        plt.close(fig)
        return of

    @staticmethod
    def _palette(groups) -> Dict[str, tuple]:
        labels = [str(g) for g in groups]
        return dict(zip(labels, sns.color_palette("viridis", len(labels))))

    def plot_bic(self, clusters: "ClusterAssignment") -> Path:
        """Plot the goodness-of-fit statistic against K, marking the selected K.

        Args:
            clusters (ClusterAssignment): Output of the cluster selector.

        Returns:
            Path: The saved figure.
        """
        df = clusters.stat_table()
        crit = clusters.criterion

        fig, ax = plt.subplots(figsize=(10, 7))
        sns.lineplot(data=df, x="K", y=crit, marker="o", color="#440154", ax=ax)

        sel = df[df["K"] == clusters.k]
        ax.scatter(sel["K"], sel[crit], s=250, facecolors="none", edgecolors="red", linewidths=2, zorder=3, label=f"Selected K={clusters.k}")

        ax.set_xticks(df["K"])
        ax.set_xlabel("Number of clusters (K)")
        ax.set_ylabel(crit)
        ax.set_title(f"{crit} by K ({clusters.selection_rule})")
        ax.legend(loc="upper right")

        return self._save(fig, "BIC_K_selection")

    def plot_cross_validation(self, xval: "CrossValidationResult") -> Path:
        """Plot per-replicate success, mean successful assignment and RMSE against PC count.

        Args:
            xval (CrossValidationResult): Output of the cross-validator.

        Returns:
            Path: The saved figure.
        """
        table = xval.table()
        reps = xval.replicates.dropna()

        fig, axs = plt.subplots(1, 2, figsize=(18, 7))

        ax = axs[0]
        sns.stripplot(data=reps, x="n_pca", y="success", native_scale=True, color="#21918c", alpha=0.4, jitter=0.2, ax=ax)
        ax.plot(table["n_pca"], table["mean_successful_assignment"], marker="o", color="#440154", label="MSA")
        ax.axvline(xval.best_n_pca, color="red", linestyle="--", label=f"Optimal: {xval.best_n_pca} PCs")
        ax.set_ylim(-0.05, 1.05)
        ax.set_xlabel("Number of PCs retained")
        ax.set_ylabel("Successful assignment")
        ax.set_title("DAPC cross-validation")
        ax.legend(loc="lower right")

        ax = axs[1]
        ax.plot(table["n_pca"], table["rmse"], marker="o", color="#fde725")
        ax.axvline(xval.best_n_pca, color="red", linestyle="--")
        ax.set_xlabel("Number of PCs retained")
        ax.set_ylabel("RMSE")
        ax.set_title("Root mean squared error")

        return self._save(fig, "cross_validation_PCs")

    def plot_dapc_scatter(self, model: "DAPCModel") -> Path | None:
        """Scatter individuals on the first two discriminant axes.

        With a single axis, per-group densities along it are drawn instead. Nothing is drawn for a one-group model.

        Args:
            model (DAPCModel): Fitted DAPC model.

        Returns:
            Path | None: The saved figure, or None when there are no discriminant axes.
        """
        if model.n_da == 0:
            self.logger.warning("No discriminant axes to plot (single group).")
            return None

        palette = self._palette(model.groups)
        props = model.axis_proportions
        df = pd.DataFrame(model.coordinates, columns=[f"LD{i + 1}" for i in range(model.n_da)])
        df["Cluster"] = [str(g) for g in model.assignment]

        fig, ax = plt.subplots(figsize=(10, 8))
        if model.n_da == 1:
            sns.histplot(data=df, x="LD1", hue="Cluster", palette=palette, element="step", stat="density", common_norm=False, ax=ax)
            ax.set_xlabel(f"LD1 ({props[0]:.1%})")
        else:
            sns.scatterplot(data=df, x="LD1", y="LD2", hue="Cluster", palette=palette, s=80, edgecolor="black", alpha=0.8, ax=ax)
            cents = model.centroids
            ax.scatter(cents[:, 0], cents[:, 1], marker="X", s=300, c=[palette[str(g)] for g in model.groups], edgecolors="black", zorder=3)
            ax.set_xlabel(f"LD1 ({props[0]:.1%})")
            ax.set_ylabel(f"LD2 ({props[1]:.1%})")
            ax.legend(title="Cluster", bbox_to_anchor=(1.02, 1), loc="upper left")

        ax.set_title(f"DAPC ({model.n_pca} PCs, {model.n_da} DA axes)")

        return self._save(fig, "DAPC_scatter")

    def plot_compoplot(self, model: "DAPCModel", samples: List[str] | None = None) -> Path:
        """Stacked bars of posterior membership probabilities per individual.

        Individuals are ordered by assigned group, then by decreasing posterior for that group.

        Args:
            model (DAPCModel): Fitted DAPC model.
            samples (List[str] | None): Sample labels. Defaults to ``model.samples``.

        Returns:
            Path: The saved figure.
        """
        samples = samples or model.samples or [str(i + 1) for i in range(model.posterior.shape[0])]
        post = pd.DataFrame(model.posterior, index=samples, columns=[str(g) for g in model.groups])

        col_idx = {c: i for i, c in enumerate(post.columns)}
        assigned = np.array([col_idx[str(g)] for g in model.assignment])
        own = post.to_numpy()[np.arange(len(post)), assigned]
        post = post.iloc[np.lexsort((-own, assigned))]

        palette = self._palette(model.groups)
        width = max(10.0, 0.15 * len(samples))
        fig, ax = plt.subplots(figsize=(width, 6))

        bottom = np.zeros(len(post))
        x = np.arange(len(post))
        for col in post.columns:
            ax.bar(x, post[col].to_numpy(), bottom=bottom, width=1.0, color=palette[col], edgecolor="none", label=col)
            bottom += post[col].to_numpy()

        ax.set_xlim(-0.5, len(post) - 0.5)
        ax.set_ylim(0, 1)
        ax.set_ylabel("Membership probability")
        ax.set_title("DAPC posterior membership")
        if len(post) <= 100:
            ax.set_xticks(x)
            ax.set_xticklabels(post.index, rotation=90, fontsize=max(6, self.plot_fontsize // 3))
        else:
            ax.set_xticks([])
        ax.legend(title="Cluster", bbox_to_anchor=(1.02, 1), loc="upper left")

        return self._save(fig, "DAPC_compoplot")

    def plot_all(self, result: "DAPCResult") -> Dict[str, Path | None]:
        """Render every diagnostic figure for a finished run."""
        return {
            "bic": self.plot_bic(result.clusters),
            "xval": self.plot_cross_validation(result.xval),
            "scatter": self.plot_dapc_scatter(result.model),
            "compoplot": self.plot_compoplot(result.model),
        }
