"""
Readers for serialized count datasets.

Reads the five-table CSV layout written by dee2cellscore.io.writers (or by
the R CellScore data package) back into a CountDataset. The manifest names
the table files; tables are matched to each other by identifier, not by
position.

Round-trip guarantees:
    - counts, calls, row and column metadata are reproduced (identifiers
      come back as strings)
    - extra metadata is NOT restored; the metadata table is ignored
    - a row-metadata table with no columns comes back with no columns

Examples:
    >>> from dee2cellscore.io.loaders import read_dataset_zip, read_dataset_folder
    >>>
    >>> dataset = read_dataset_zip(Path("homosapienDEE2Data_PASS_rank.zip"))
    >>> dataset = read_dataset_folder(Path("ExampleSummarisedExperimentFolder"))
"""

from __future__ import annotations

import logging
import warnings
import zipfile
from pathlib import Path
from typing import IO, Mapping, Union

import pandas as pd

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.io.writers import MANIFEST_NAME

logger = logging.getLogger(__name__)

__all__ = ['read_dataset', 'read_dataset_folder', 'read_dataset_zip', 'read_manifest']

# Accepted spellings of each table key in a manifest or file mapping
_KEY_ALIASES = {
    'assay_counts': ('assay_counts', 'counts'),
    'assay_calls': ('assay_calls', 'calls'),
    'colData': ('colData', 'col_metadata'),
    'rowData': ('rowData', 'row_metadata'),
}

Source = Union[str, Path, IO]


def _read_table(source: Source, label: str) -> pd.DataFrame:
    try:
        table = pd.read_csv(source, index_col=0, float_precision="round_trip")
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"{label} table is empty: {source}") from e
    except FileNotFoundError:
        raise
    except Exception as e:
        raise ValueError(f"Failed to read {label} table {source}: {e}") from e

    table.index = table.index.astype(str)
    table.index.name = None
    return table


def _resolve_keys(files: Mapping[str, Source]) -> dict[str, Source]:
    resolved = {}
    for key, aliases in _KEY_ALIASES.items():
        for alias in aliases:
            if alias in files:
                resolved[key] = files[alias]
                break
        else:
            raise KeyError(f"No '{key}' entry in file mapping (have: {sorted(files)})")
    return resolved


def read_manifest(source: Source) -> dict[str, str]:
    """
    Read a manifest (one row naming the table files) into a key -> file mapping.

    Raises:
        ValueError: If the manifest has no rows
    """
    manifest = pd.read_csv(source, index_col=0, dtype=str)
    if manifest.empty:
        raise ValueError(f"Manifest has no entries: {source}")
    if len(manifest) > 1:
        warnings.warn(
            f"Manifest has {len(manifest)} rows, using the first",
            UserWarning,
        )
    return {str(k): str(v) for k, v in manifest.iloc[0].items() if pd.notna(v)}


def read_dataset(files: Mapping[str, Source]) -> CountDataset:
    """
    Read a dataset from its table files.

    Args:
        files: Mapping of table key ('assay_counts', 'assay_calls',
            'colData', 'rowData'; 'metadata' is accepted and ignored) to a
            path or open file

    Returns:
        CountDataset with counts, calls and both annotation tables

    Raises:
        FileNotFoundError: If a table file doesn't exist
        KeyError: If a required table key is missing
        ValueError: If a table can't be parsed or tables disagree on
            identifiers
    """
    sources = _resolve_keys(files)
    for key, source in sources.items():
        if isinstance(source, (str, Path)) and not Path(source).exists():
            raise FileNotFoundError(f"{key} table not found: {source}")

    counts = _read_table(sources['assay_counts'], 'assay_counts')
    calls = _read_table(sources['assay_calls'], 'assay_calls')
    col_metadata = _read_table(sources['colData'], 'colData')
    row_metadata = _read_table(sources['rowData'], 'rowData')

    counts.columns = counts.columns.astype(str)
    calls.columns = calls.columns.astype(str)

    try:
        dataset = CountDataset.from_frame(
            counts,
            col_metadata=col_metadata,
            row_metadata=row_metadata,
            calls=calls,
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Inconsistent dataset tables: {e}") from e

    logger.info(f"Read {dataset.n_genes} genes × {dataset.n_samples} samples")
    return dataset


def read_dataset_folder(folder: Path, manifest: str = MANIFEST_NAME) -> CountDataset:
    """
    Read a dataset from a folder holding a manifest and its table files.

    Raises:
        FileNotFoundError: If the folder or manifest doesn't exist
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Dataset folder not found: {folder}")
    manifest_path = folder / manifest
    if not manifest_path.exists():
        raise FileNotFoundError(f"Manifest not found: {manifest_path}")

    names = read_manifest(manifest_path)
    return read_dataset({key: folder / name for key, name in names.items()})


def read_dataset_zip(path: Path, manifest: str = MANIFEST_NAME) -> CountDataset:
    """
    Read a dataset from a zip archive holding a manifest and its table files.

    Tables are read straight from the archive; nothing is extracted to disk.

    Raises:
        FileNotFoundError: If the archive doesn't exist
        ValueError: If the file is not a zip archive
        KeyError: If the archive lacks the manifest or a listed table
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset archive not found: {path}")
    if not zipfile.is_zipfile(path):
        raise ValueError(f"Not a zip archive: {path}")

    with zipfile.ZipFile(path) as archive:
        members = set(archive.namelist())
        if manifest not in members:
            raise KeyError(f"Archive {path} has no {manifest}")
        with archive.open(manifest) as handle:
            names = read_manifest(handle)

        missing = [name for key, name in names.items() if key != 'metadata' and name not in members]
        if missing:
            raise KeyError(f"Archive {path} is missing tables listed in the manifest: {missing}")

        handles = {key: archive.open(name) for key, name in names.items() if key != 'metadata'}
        try:
            return read_dataset(handles)
        finally:
            for handle in handles.values():
                handle.close()
