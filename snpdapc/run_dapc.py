import argparse
import sys
from pathlib import Path

import snpdapc
from snpdapc.analysis.pipeline import DAPCPipeline
from snpdapc.io.table_reader import read_genotype_table
from snpdapc.io.vcf_reader import read_vcf
from snpdapc.plotting.plotting import Plotting
from snpdapc.simulators.simulate_data import simulate_structured_genotypes
from snpdapc.utils.containers import CRITERIA, SELECTION_RULES, XVAL_RESULTS, DAPCConfig
from snpdapc.utils.custom_exceptions import SNPDAPCError
from snpdapc.utils.logging import LoggerManager
from snpdapc.utils.results_exporter import ResultsExporter


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="snpdapc",
        description="Discriminant Analysis of Principal Components on SNP genotypes.",
    )

    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--input", type=Path, help="Genotype file (012 table or VCF)")
    src.add_argument(
        "--simulate",
        action="store_true",
        help="Run on simulated data (3 populations x 20 individuals x 500 SNPs)",
    )
    parser.add_argument(
        "--format",
        choices=["auto", "table", "vcf"],
        default="auto",
        help="Input format; 'auto' picks VCF for .vcf/.vcf.gz files",
    )
    parser.add_argument("--outdir", type=Path, default=None, help="Output directory (default: <prefix>_output)")
    parser.add_argument("--plots", action="store_true", help="Save diagnostic plots")
    parser.add_argument("--plot-format", default="png", help="Plot file format")

    qc = parser.add_argument_group("quality control")
    qc.add_argument("--max-ind-missing", type=float, default=0.5)
    qc.add_argument("--max-locus-missing", type=float, default=0.1)
    qc.add_argument("--min-maf", type=float, default=0.05)

    km = parser.add_argument_group("cluster selection")
    km.add_argument("--max-k", type=int, default=None, help="Default: min(10, floor(sqrt(N)))")
    km.add_argument("--n-pca-clustering", type=int, default=None, help="Default: floor(N / 3)")
    km.add_argument("--n-iter", type=int, default=100000)
    km.add_argument("--n-starts", type=int, default=10)
    km.add_argument("--criterion", choices=CRITERIA, default="BIC")
    km.add_argument("--selection-rule", choices=SELECTION_RULES, default="diffNgroup")

    xv = parser.add_argument_group("cross-validation")
    xv.add_argument("--n-pca-max", type=int, default=300)
    xv.add_argument("--training-fraction", type=float, default=0.9)
    xv.add_argument("--n-replicates", type=int, default=30)
    xv.add_argument("--xval-result", choices=XVAL_RESULTS, default="groupMean")

    da = parser.add_argument_group("discriminant analysis")
    da.add_argument("--max-n-da", type=int, default=3)
    da.add_argument("--scale", action="store_true", help="Scale markers to unit variance")
    da.add_argument("--no-center", action="store_true", help="Do not center markers")

    run = parser.add_argument_group("run")
    run.add_argument("--seed", type=int, default=999)
    run.add_argument("--n-jobs", type=int, default=1)
    run.add_argument("--prefix", default="snpdapc")
    run.add_argument("--quiet", action="store_true", help="Only log errors")
    run.add_argument("--debug", action="store_true")
    run.add_argument("--log-file", action="store_true", help="Also write log files")
    run.add_argument("--version", action="version", version=f"%(prog)s {snpdapc.__version__}")

    return parser.parse_args(argv)


def build_config(args) -> DAPCConfig:
    return DAPCConfig(
        max_ind_missing=args.max_ind_missing,
        max_locus_missing=args.max_locus_missing,
        min_maf=args.min_maf,
        max_k=args.max_k,
        n_pca_clustering=args.n_pca_clustering,
        n_pca_max=args.n_pca_max,
        training_fraction=args.training_fraction,
        n_replicates=args.n_replicates,
        max_n_da=args.max_n_da,
        seed=args.seed,
        n_iter=args.n_iter,
        n_starts=args.n_starts,
        criterion=args.criterion,
        selection_rule=args.selection_rule,
        xval_result=args.xval_result,
        center=not args.no_center,
        scale=args.scale,
        n_jobs=args.n_jobs,
        prefix=args.prefix,
        verbose=not args.quiet,
        debug=args.debug,
        log_to_file=args.log_file,
    )


def load_genotypes(args, config: DAPCConfig):
    kwargs = dict(prefix=config.prefix, verbose=config.verbose, debug=config.debug)

    if args.simulate:
        gd, _ = simulate_structured_genotypes(
            seed=config.seed, prefix=config.prefix, verbose=config.verbose
        )
        return gd

    fmt = args.format
    if fmt == "auto":
        name = args.input.name.lower()
        fmt = "vcf" if name.endswith((".vcf", ".vcf.gz", ".vcf.bgz")) else "table"

    if fmt == "vcf":
        return read_vcf(args.input, **kwargs)
    return read_genotype_table(args.input, **kwargs)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except (SNPDAPCError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    logger = LoggerManager(
        "snpdapc.run_dapc",
        prefix=config.prefix,
        verbose=config.verbose,
        debug=config.debug,
        to_file=config.log_to_file,
    ).get_logger()
    logger.info(f"Using snpdapc version: {snpdapc.__version__}")

    outdir = args.outdir or Path(f"{config.prefix}_output")

    try:
        gd = load_genotypes(args, config)
        result = DAPCPipeline(config).run(gd)
    except SNPDAPCError as e:
        logger.error(f"DAPC run aborted: {e}")
        return 1

    paths = ResultsExporter(outdir).export_dapc(result)
    for path in paths.values():
        logger.info(f"Wrote {path}")

    if args.plots:
        plotter = Plotting(
            prefix=config.prefix,
            output_dir=outdir,
            plot_format=args.plot_format,
            verbose=config.verbose,
            debug=config.debug,
        )
        plotter.plot_all(result)

    return 0


if __name__ == "__main__":
    sys.exit(main())
