"""
I/O for count datasets: DEE2 fetching, curated metadata, serialization.

Key Functions:
    - DEE2Fetcher: download per-run counts and run metadata from dee2.io
    - load_curated_metadata / join_curated_metadata: attach curated sample
      annotations to a fetched dataset
    - write_dataset / write_dataset_zip: five-table CSV layout + manifest
    - read_dataset_folder / read_dataset_zip: read that layout back
    - download_all: read the eight published archives through a resolver

Examples:
    >>> from dee2cellscore.io import write_dataset_zip, read_dataset_zip
    >>> from pathlib import Path
    >>>
    >>> archive = write_dataset_zip(dataset, Path("out"), base="SE_out")
    >>> restored = read_dataset_zip(archive)
"""

from dee2cellscore.io.metadata import (
    RUN_ID_COLUMN,
    EXPERIMENT_ID_COLUMN,
    QC_COLUMN,
    CuratedMetadataJoin,
    JoinSummary,
    accessions_from_curated,
    join_curated_metadata,
    load_curated_metadata,
)
from dee2cellscore.io.fetch import Fetcher, DEE2Fetcher, DEE2_SPECIES
from dee2cellscore.io.writers import write_dataset, write_dataset_zip, write_embedding
from dee2cellscore.io.loaders import read_dataset, read_dataset_folder, read_dataset_zip
from dee2cellscore.io.catalogue import (
    CATALOGUE,
    CATALOGUE_NAMES,
    DirectoryResolver,
    URLResolver,
    download_all,
)

__all__ = [
    'RUN_ID_COLUMN',
    'EXPERIMENT_ID_COLUMN',
    'QC_COLUMN',
    'CuratedMetadataJoin',
    'JoinSummary',
    'accessions_from_curated',
    'join_curated_metadata',
    'load_curated_metadata',
    'Fetcher',
    'DEE2Fetcher',
    'DEE2_SPECIES',
    'write_dataset',
    'write_dataset_zip',
    'write_embedding',
    'read_dataset',
    'read_dataset_folder',
    'read_dataset_zip',
    'CATALOGUE',
    'CATALOGUE_NAMES',
    'DirectoryResolver',
    'URLResolver',
    'download_all',
]
