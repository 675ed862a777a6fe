"""
CSV writers for count datasets.

A dataset is serialized as five flat CSV tables plus a manifest:

    {base}_metadata.csv       extra metadata (key, value)
    {base}_assay_counts.csv   counts, gene IDs in the first column
    {base}_assay_calls.csv    calls, same layout as counts
    {base}_colData.csv        sample annotations, sample IDs first
    {base}_rowData.csv        gene annotations, gene IDs first
    manifest.csv              one row naming the five files

File and manifest names match the SummarizedExperiment export of the R
CellScore data package, so archives are interchangeable with it. The zip
form bundles the manifest and the five tables at the archive root.

Examples:
    >>> from dee2cellscore.io.writers import write_dataset, write_dataset_zip
    >>>
    >>> write_dataset(qc_pass_rank, Path("out"), base="homosapienDEE2Data_PASS_rank")
    >>> write_dataset_zip(qc_pass_rank, Path("out"), base="homosapienDEE2Data_PASS_rank")
"""

from __future__ import annotations

import logging
import tempfile
import zipfile
from pathlib import Path
from typing import Optional

import pandas as pd

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.utils.fileio import atomic_write_csv

logger = logging.getLogger(__name__)

__all__ = [
    'MANIFEST_NAME',
    'TABLE_KEYS',
    'dataset_filenames',
    'write_dataset',
    'write_dataset_zip',
    'write_embedding',
]

MANIFEST_NAME = 'manifest.csv'

# Manifest keys, in archive order
TABLE_KEYS = ['metadata', 'assay_counts', 'assay_calls', 'colData', 'rowData']


def dataset_filenames(base: str = "SE_out", ext: str = ".csv") -> dict[str, str]:
    """File name per manifest key, e.g. {'assay_counts': 'SE_out_assay_counts.csv', ...}."""
    return {key: f"{base}_{key}{ext}" for key in TABLE_KEYS}


def _tables(dataset: CountDataset) -> dict[str, pd.DataFrame]:
    if dataset.calls is None:
        raise ValueError(
            "Dataset has no calls matrix; derive calls before writing "
            "(see dee2cellscore.stats.calls.finish_dataset)"
        )

    extra = dataset.extra_metadata
    metadata = pd.DataFrame(
        {"value": [str(v) for v in extra.values()]},
        index=pd.Index([str(k) for k in extra.keys()], dtype=object),
    )

    return {
        'metadata': metadata,
        'assay_counts': dataset.counts_frame(),
        'assay_calls': dataset.calls_frame(),
        'colData': dataset.col_metadata,
        'rowData': dataset.row_metadata,
    }


def write_dataset(
    dataset: CountDataset,
    directory: Path,
    base: str = "SE_out",
    ext: str = ".csv",
    filenames: Optional[dict[str, str]] = None,
    manifest: bool = True,
) -> dict[str, Path]:
    """
    Write a dataset as five CSV tables (and a manifest) into a directory.

    Args:
        dataset: Dataset to write (must carry calls)
        directory: Output directory (created if missing)
        base: File name prefix
        ext: File name extension
        filenames: Override file names per manifest key
        manifest: Also write manifest.csv

    Returns:
        Mapping of manifest key to written path

    Raises:
        ValueError: If the dataset has no calls
        OSError: If a file cannot be written
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    names = dataset_filenames(base, ext)
    if filenames:
        names.update(filenames)

    written: dict[str, Path] = {}
    for key, table in _tables(dataset).items():
        path = directory / names[key]
        try:
            atomic_write_csv(path, table, index=True, index_label="")
        except OSError as e:
            raise OSError(f"Failed to write {key} table {path}: {e}") from e
        written[key] = path

    if manifest:
        manifest_path = directory / MANIFEST_NAME
        atomic_write_csv(
            manifest_path,
            pd.DataFrame([{key: names[key] for key in TABLE_KEYS}], index=["1"]),
            index=True,
            index_label="",
        )
        written['manifest'] = manifest_path

    logger.info(f"Wrote {dataset.n_genes} genes × {dataset.n_samples} samples to {directory}/{base}_*{ext}")
    return written


def write_dataset_zip(
    dataset: CountDataset,
    directory: Path,
    base: str = "SE_out",
    ext: str = ".csv",
    zip_name: Optional[str] = None,
) -> Path:
    """
    Write a dataset as a zip archive holding the manifest and five tables.

    Returns:
        Path of the written archive ({directory}/{base}.zip by default)
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    zip_path = directory / (zip_name or f"{base}.zip")

    with tempfile.TemporaryDirectory() as staging:
        written = write_dataset(dataset, Path(staging), base=base, ext=ext)
        tmp_zip = zip_path.with_suffix(zip_path.suffix + ".tmp")
        try:
            with zipfile.ZipFile(tmp_zip, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                archive.write(written['manifest'], arcname=MANIFEST_NAME)
                for key in reversed(TABLE_KEYS):
                    archive.write(written[key], arcname=written[key].name)
            tmp_zip.replace(zip_path)
        except BaseException:
            tmp_zip.unlink(missing_ok=True)
            raise

    logger.info(f"Wrote archive {zip_path}")
    return zip_path


def write_embedding(coordinates, path: Path) -> Path:
    """
    Write embedding coordinates as a CSV with columns V1, V2.

    Rows are numbered from 1 in deduplicated sample order; no sample IDs are
    written because the coordinates carry none.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = pd.DataFrame(coordinates, columns=["V1", "V2"])
    frame.index = frame.index + 1
    atomic_write_csv(path, frame, index=True, index_label="")
    logger.info(f"Wrote {len(frame)} embedding coordinates to {path}")
    return path
