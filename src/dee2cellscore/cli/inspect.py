"""
dee2cellscore inspect command - Summarize serialized datasets.

Usage:
    dee2cellscore inspect out/homosapienDEE2Data_PASS_rank.zip
    dee2cellscore inspect --catalogue archives/
"""

import argparse
import logging
from pathlib import Path

import numpy as np

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.io.catalogue import CATALOGUE, DirectoryResolver, download_all
from dee2cellscore.io.loaders import read_dataset_folder, read_dataset_zip

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the inspect subcommand."""
    parser = subparsers.add_parser(
        "inspect",
        help="Summarize serialized datasets (zip archives or folders)",
        description="Read datasets written by 'build' and print their dimensions and annotations",
    )
    parser.add_argument("paths", nargs="*", type=Path,
                        help="Dataset archives (.zip) or folders")
    parser.add_argument("--catalogue", type=Path, default=None,
                        help="Directory holding the published catalogue archives")
    parser.add_argument("--list-catalogue", action="store_true", default=False,
                        help="List catalogue names and archive file names, then exit")
    parser.set_defaults(func=run_inspect)


def describe(name: str, dataset: CountDataset) -> str:
    """Multi-line human-readable summary of a dataset."""
    lines = [f"{name}", f"  {dataset.n_genes} genes × {dataset.n_samples} samples"]
    if not dataset.is_empty:
        lines.append(f"  genes:   {', '.join(map(str, dataset.gene_ids[:3]))}, ...")
        lines.append(f"  samples: {', '.join(map(str, dataset.sample_ids[:3]))}, ...")
        counts = dataset.counts
        lines.append(f"  values:  min={np.min(counts):.4g} max={np.max(counts):.4g}")
    if dataset.calls is not None and not dataset.is_empty:
        lines.append(f"  calls:   {100 * dataset.calls.mean():.1f}% present")
    lines.append(f"  column metadata: {list(dataset.col_metadata.columns)}")
    lines.append(f"  row metadata:    {list(dataset.row_metadata.columns)}")
    return "\n".join(lines)


def run_inspect(args: argparse.Namespace) -> int:
    """Execute the inspect command."""
    logging.basicConfig(level=logging.WARNING,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if args.list_catalogue:
        for entry in CATALOGUE.values():
            print(f"{entry.name:32s} {entry.archive_name:40s} {entry.description}")
        return 0

    if not args.paths and not args.catalogue:
        print("ERROR: give dataset paths or --catalogue")
        return 1

    try:
        datasets = {}
        for path in args.paths:
            datasets[str(path)] = read_dataset_zip(path) if path.suffix.lower() == '.zip' else read_dataset_folder(path)
        if args.catalogue:
            datasets.update(download_all(DirectoryResolver(args.catalogue)))
    except (FileNotFoundError, KeyError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    for name, dataset in datasets.items():
        print(describe(name, dataset))
    return 0
