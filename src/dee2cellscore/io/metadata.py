"""
Curated sample metadata and its join onto count datasets.

The curated table describes every run used to build the CellScore reference
data: run accession, experiment accession, DEE2 QC summary, cell type and
the cell-transition classification fields. It is reference data supplied by
the caller (a CSV shipped alongside the build), never a process-wide global.

Join semantics:
    1. Restrict the curated table to runs present in the dataset
    2. Deduplicate by run accession, first occurrence wins (table order)
    3. Replace the dataset's column metadata with the result, reindexed to
       the dataset's column order

Runs without a curated row keep all-missing fields. By default this is
reported through MetadataKeyMissingWarning and logged; strict joins raise
MetadataKeyMissing instead.

Examples:
    >>> from dee2cellscore.io.metadata import load_curated_metadata, CuratedMetadataJoin
    >>>
    >>> curated = load_curated_metadata("hsapiens_colData_transitions_v3.5.csv")
    >>> joiner = CuratedMetadataJoin(curated)
    >>> annotated = joiner.join(raw_dataset)
    >>> print(joiner.summary)
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.core.errors import MetadataKeyMissing, MetadataKeyMissingWarning

logger = logging.getLogger(__name__)

__all__ = [
    'RUN_ID_COLUMN',
    'EXPERIMENT_ID_COLUMN',
    'QC_COLUMN',
    'REQUIRED_CURATED_COLUMNS',
    'JoinSummary',
    'CuratedMetadataJoin',
    'join_curated_metadata',
    'load_curated_metadata',
    'accessions_from_curated',
    'dedupe_curated',
]

RUN_ID_COLUMN = 'SRR_accession'
EXPERIMENT_ID_COLUMN = 'SRX_accession'
QC_COLUMN = 'QC_summary'

REQUIRED_CURATED_COLUMNS = [RUN_ID_COLUMN, EXPERIMENT_ID_COLUMN, QC_COLUMN]


def load_curated_metadata(
    path: Path | str,
    required_columns: Optional[list[str]] = None,
) -> pd.DataFrame:
    """
    Load the curated per-run metadata table from CSV.

    Accession columns are read as strings so identifiers are never coerced
    to numbers.

    Args:
        path: Path to the curated CSV
        required_columns: Columns that must be present
            (default: SRR_accession, SRX_accession, QC_summary)

    Returns:
        DataFrame in file order with a default RangeIndex

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If required columns are missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Curated metadata not found: {path}")

    required = REQUIRED_CURATED_COLUMNS if required_columns is None else required_columns
    curated = pd.read_csv(path, dtype={col: str for col in required})

    missing = [col for col in required if col not in curated.columns]
    if missing:
        raise ValueError(f"Curated metadata {path} is missing required columns: {missing}")

    logger.info(
        f"Loaded curated metadata: {len(curated)} rows, "
        f"{curated[RUN_ID_COLUMN].nunique() if RUN_ID_COLUMN in curated else 0} unique runs"
    )
    return curated


def accessions_from_curated(curated: pd.DataFrame, id_column: str = RUN_ID_COLUMN) -> list[str]:
    """Unique run accessions in curated table order."""
    if id_column not in curated.columns:
        raise ValueError(f"Curated metadata has no '{id_column}' column")
    return curated[id_column].dropna().drop_duplicates().astype(str).tolist()


def dedupe_curated(curated: pd.DataFrame, id_column: str) -> pd.DataFrame:
    """
    Index the curated table by id_column, keeping the first row per id.

    The id column itself is kept as a regular column.
    """
    if id_column not in curated.columns:
        raise ValueError(f"Curated metadata has no '{id_column}' column")

    indexed = curated[curated[id_column].notna()].set_index(id_column, drop=False)
    if indexed.index.duplicated().any():
        n_dup = int(indexed.index.duplicated().sum())
        logger.info(f"Curated metadata has {n_dup} duplicate '{id_column}' rows, using first")
        indexed = indexed[~indexed.index.duplicated(keep='first')]
    indexed.index.name = None
    return indexed


@dataclass
class JoinSummary:
    """Summary of a curated metadata join."""
    n_samples: int
    n_matched: int
    n_curated_rows: int
    n_curated_duplicates: int
    columns_added: list[str] = field(default_factory=list)
    unmatched_samples: list[str] = field(default_factory=list)

    @property
    def n_unmatched(self) -> int:
        return self.n_samples - self.n_matched

    @property
    def match_rate(self) -> float:
        return self.n_matched / self.n_samples if self.n_samples > 0 else 0.0

    def __repr__(self) -> str:
        return (
            f"JoinSummary(\n"
            f"  samples: {self.n_samples}\n"
            f"  matched: {self.n_matched} ({100*self.match_rate:.1f}%)\n"
            f"  curated rows: {self.n_curated_rows} ({self.n_curated_duplicates} duplicates)\n"
            f"  columns: {len(self.columns_added)}\n"
            f")"
        )


class CuratedMetadataJoin:
    """
    Replace a dataset's column metadata with curated per-run annotations.

    Attributes:
        curated: Curated metadata table (any index; keyed by id_column)
        id_column: Curated column holding the sample identifier
        strict: Raise MetadataKeyMissing instead of warning when a sample
            has no curated row
    """

    def __init__(
        self,
        curated: pd.DataFrame,
        id_column: str = RUN_ID_COLUMN,
        strict: bool = False,
    ):
        if id_column not in curated.columns:
            raise ValueError(f"Identifier column '{id_column}' not in curated metadata")

        self.curated = curated
        self.id_column = id_column
        self.strict = strict
        self._summary: Optional[JoinSummary] = None

    def join(self, dataset: CountDataset) -> CountDataset:
        """
        Join curated metadata onto dataset columns.

        Args:
            dataset: Dataset whose sample IDs are run accessions

        Returns:
            New CountDataset with curated col_metadata in column order

        Raises:
            MetadataKeyMissing: If strict and any sample lacks a curated row
        """
        sample_ids = dataset.sample_ids.astype(str)

        restricted = self.curated[self.curated[self.id_column].astype(str).isin(sample_ids)]
        restricted = restricted.assign(**{self.id_column: restricted[self.id_column].astype(str)})
        n_duplicates = int(restricted[self.id_column].duplicated().sum())
        deduped = dedupe_curated(restricted, self.id_column)

        missing = [sid for sid in sample_ids if sid not in deduped.index]

        self._summary = JoinSummary(
            n_samples=len(sample_ids),
            n_matched=len(sample_ids) - len(missing),
            n_curated_rows=len(restricted),
            n_curated_duplicates=n_duplicates,
            columns_added=list(deduped.columns),
            unmatched_samples=missing[:20],
        )
        logger.info(
            f"Curated metadata join: {self._summary.n_matched}/{len(sample_ids)} samples matched, "
            f"{n_duplicates} duplicate curated rows dropped"
        )

        if missing:
            if self.strict:
                raise MetadataKeyMissing(missing)
            message = (
                f"{len(missing)} sample(s) have no curated metadata; "
                f"their fields are left empty: {missing[:5]}"
            )
            logger.warning(message)
            warnings.warn(message, MetadataKeyMissingWarning)

        col_metadata = deduped.reindex(sample_ids)
        col_metadata[self.id_column] = sample_ids.to_numpy()
        col_metadata.index = dataset.sample_ids

        return dataset.with_col_metadata(col_metadata)

    @property
    def summary(self) -> Optional[JoinSummary]:
        """Join summary (available after join() called)."""
        return self._summary

    def __repr__(self) -> str:
        return (
            f"CuratedMetadataJoin(\n"
            f"  curated_rows: {len(self.curated)}\n"
            f"  id_column: {self.id_column}\n"
            f"  strict: {self.strict}\n"
            f")"
        )


def join_curated_metadata(
    dataset: CountDataset,
    curated: pd.DataFrame,
    id_column: str = RUN_ID_COLUMN,
    strict: bool = False,
) -> CountDataset:
    """Functional form of CuratedMetadataJoin(curated, id_column, strict).join(dataset)."""
    return CuratedMetadataJoin(curated, id_column=id_column, strict=strict).join(dataset)
