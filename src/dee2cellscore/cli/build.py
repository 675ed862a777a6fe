"""
dee2cellscore build command - Build the CellScore reference datasets.

Usage:
    dee2cellscore build --curated hsapiens_colData_transitions_v3.5.csv --output out/
    dee2cellscore build --config build.yaml --build-raw --no-build-tsne
"""

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

from dee2cellscore.io.fetch import DEE2Fetcher, DEE2_SPECIES
from dee2cellscore.io.loaders import read_dataset_folder, read_dataset_zip
from dee2cellscore.io.metadata import load_curated_metadata
from dee2cellscore.pipeline import (
    DEFAULT_NAME_PREFIX,
    BuildConfig,
    Pipeline,
    build_summary,
    output_file_bases,
    write_outputs,
)
from dee2cellscore.stats.embedding import EmbeddingAdapter
from dee2cellscore.stats.normalization import SizeFactorNormalizer
from dee2cellscore.utils.fileio import atomic_write_json

logger = logging.getLogger(__name__)

SUMMARY_NAME = "build_summary.json"


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the build subcommand."""
    parser = subparsers.add_parser(
        "build",
        help="Build quality-filtered, aggregated and normalized datasets",
        description="Fetch DEE2 runs, attach curated metadata and build the "
                    "raw/agg/deseq2/rank/tsne outputs per quality tier",
    )

    # Configuration file support
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")

    parser.add_argument("--curated", type=Path, default=None,
                        help="Curated per-run metadata CSV (SRR_accession, SRX_accession, QC_summary, ...)")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory (omit to build without writing)")
    parser.add_argument("--name-prefix", default=DEFAULT_NAME_PREFIX,
                        help=f"Output file name prefix (default: {DEFAULT_NAME_PREFIX})")
    parser.add_argument("--species", choices=DEE2_SPECIES, default="hsapiens",
                        help="DEE2 species (default: hsapiens)")

    # Input selection
    parser.add_argument("--accessions", nargs="+", default=None,
                        help="Run accessions to build from (default: every run in --curated)")
    parser.add_argument("--accessions-file", type=Path, default=None,
                        help="File with one run accession per line")
    parser.add_argument("--metadata", type=Path, default=None,
                        help="Cached DEE2 species metadata TSV (skips the metadata download)")
    parser.add_argument("--input", type=Path, default=None,
                        help="Previously saved raw run dataset (.zip or folder); skips fetching")
    parser.add_argument("--batch-size", type=int, default=50,
                        help="Accessions per DEE2 download request (default: 50)")

    # Output kinds
    kinds = parser.add_argument_group("output kinds")
    defaults = BuildConfig()
    for kind, help_text in (
        ("raw", "per-run counts"),
        ("agg", "experiment-aggregated counts"),
        ("deseq2", "size-factor normalized log2 counts"),
        ("tsne", "2-D t-SNE coordinates"),
        ("rank", "column-wise rank normalized counts"),
    ):
        kinds.add_argument(f"--build-{kind}", dest=f"build_{kind}",
                           action=argparse.BooleanOptionalAction,
                           default=getattr(defaults, f"build_{kind}"),
                           help=f"Build {help_text}")

    tiers = parser.add_argument_group("quality tiers")
    tiers.add_argument("--generate-qc-pass", dest="generate_qc_pass",
                       action=argparse.BooleanOptionalAction, default=True,
                       help="Build outputs from PASS runs")
    tiers.add_argument("--generate-qc-warn", dest="generate_qc_warn",
                       action=argparse.BooleanOptionalAction, default=True,
                       help="Build outputs from PASS + WARN runs")

    parser.add_argument("--counts-cutoff", type=float, default=defaults.counts_cutoff,
                        help="Keep genes whose total count exceeds this (default: 10)")
    parser.add_argument("--design", default=defaults.design,
                        help="Design formula for size factors (default: '~ 1')")
    parser.add_argument("--strict-metadata", action="store_true", default=False,
                        help="Fail if any run has no curated metadata (default: warn)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for t-SNE")

    # Writing
    parser.add_argument("--zip", action="store_true", default=False,
                        help="Write each dataset as a zip archive instead of a folder")
    parser.add_argument("--workers", type=int, default=1,
                        help="Parallel output writers (default: 1)")
    parser.add_argument("--quiet", "-q", action="store_true", default=False,
                        help="Only log warnings and errors")

    parser.set_defaults(func=run_build)


def _read_accessions(args: argparse.Namespace):
    if args.accessions:
        return list(args.accessions)
    if args.accessions_file:
        if not args.accessions_file.exists():
            raise FileNotFoundError(f"Accessions file not found: {args.accessions_file}")
        lines = args.accessions_file.read_text().splitlines()
        return [line.strip() for line in lines if line.strip() and not line.startswith('#')]
    return None


def _read_input(path: Path):
    if path.suffix.lower() == '.zip':
        return read_dataset_zip(path)
    return read_dataset_folder(path)


def config_from_args(args: argparse.Namespace) -> BuildConfig:
    """BuildConfig from (merged) CLI arguments."""
    return BuildConfig(
        build_raw=args.build_raw,
        build_agg=args.build_agg,
        build_deseq2=args.build_deseq2,
        build_tsne=args.build_tsne,
        build_rank=args.build_rank,
        generate_qc_pass=args.generate_qc_pass,
        generate_qc_warn=args.generate_qc_warn,
        counts_cutoff=args.counts_cutoff,
        design=args.design,
        species=args.species,
        strict_metadata=args.strict_metadata,
    )


def run_build(args: argparse.Namespace) -> int:
    """Execute the build command."""
    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    # Load and merge config file if provided
    if args.config:
        from dee2cellscore.cli.config import load_config, merge_config_with_args, validate_config

        logger.info(f"Loading configuration from: {args.config}")
        try:
            config = load_config(args.config)
            validate_config(config)
            # argv starts with the command name
            cli_args = getattr(args, "argv", sys.argv[1:])[1:]
            args = merge_config_with_args(config, args, cli_args)
        except (FileNotFoundError, ValueError) as e:
            print(f"ERROR: Config file error: {e}")
            return 1

    if not args.curated:
        print("ERROR: --curated is required (via CLI or config file)")
        return 1

    build_config = config_from_args(args)
    if build_config.is_empty():
        logger.info("Nothing requested: every output kind or every quality tier is disabled")
        return 0

    try:
        curated = load_curated_metadata(args.curated)
        accessions = _read_accessions(args)
        metadata = pd.read_csv(args.metadata, sep="\t", dtype=str) if args.metadata else None
        in_data = _read_input(args.input) if args.input else None
    except (FileNotFoundError, KeyError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    pipeline = Pipeline(
        build_config,
        curated,
        fetcher=DEE2Fetcher(batch_size=args.batch_size),
        normalizer=SizeFactorNormalizer(design=build_config.design),
        embedding=EmbeddingAdapter(random_state=args.seed),
    )

    try:
        outputs = pipeline.run(accessions=accessions, in_data=in_data, metadata=metadata)
    except (OSError, KeyError, ValueError) as e:
        logger.error(f"Build failed: {e}")
        return 1

    if args.output:
        bases = output_file_bases(build_config, args.name_prefix)
        logger.info(f"Writing {len(outputs)} outputs: {', '.join(bases[n] for n in outputs)}")
        try:
            write_outputs(
                outputs,
                args.output,
                name_prefix=args.name_prefix,
                zip=args.zip,
                workers=args.workers,
            )
            atomic_write_json(
                args.output / SUMMARY_NAME,
                build_summary(build_config, outputs, pipeline.failures),
            )
        except OSError as e:
            logger.error(f"Writing outputs failed: {e}")
            return 1

    if pipeline.failures:
        for name, message in pipeline.failures.items():
            logger.warning(f"{name} not built: {message}")
        return 1
    return 0
