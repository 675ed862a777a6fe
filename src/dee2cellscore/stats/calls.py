"""
Presence/absence calls and probe identifiers.

CellScore works on microarray-style inputs: a value matrix, a 0/1 "calls"
matrix saying whether each gene was detected in each sample, and per-gene
probe identifiers. For RNA-seq any count above the threshold (default 0)
is a call.

Both operations are idempotent: re-running with the same threshold yields
the same calls, and probe identifiers are simply overwritten with the same
values.
"""

from __future__ import annotations

import logging

import numpy as np

from dee2cellscore.core.dataset import CountDataset

logger = logging.getLogger(__name__)

__all__ = ['derive_calls', 'compute_calls', 'annotate_probe_ids', 'finish_dataset']

PROBE_ID_COLUMN = 'probe_id'
FEATURE_ID_COLUMN = 'feature_id'


def compute_calls(counts: np.ndarray, threshold: float = 0) -> np.ndarray:
    """calls[i, j] = 1 if counts[i, j] > threshold else 0 (integer matrix)."""
    return (counts > threshold).astype(np.int64)


def derive_calls(dataset: CountDataset, threshold: float = 0) -> CountDataset:
    """
    Attach a presence/absence matrix derived from the dataset's counts.

    Any existing calls are replaced.

    Examples:
        >>> derive_calls(dataset).calls      # counts [[0, 3], [5, 0]]
        array([[0, 1],
               [1, 0]])
    """
    return dataset.with_calls(compute_calls(dataset.counts, threshold))


def annotate_probe_ids(dataset: CountDataset) -> CountDataset:
    """
    Add probe_id and feature_id row-metadata columns, both equal to the gene ID.

    CellScore historically reads probe_id and newer versions read the more
    general feature_id; both are written so either works.
    """
    row_metadata = dataset.row_metadata.copy()
    gene_ids = dataset.gene_ids.astype(str).to_numpy()
    row_metadata[PROBE_ID_COLUMN] = gene_ids
    row_metadata[FEATURE_ID_COLUMN] = gene_ids
    return dataset.with_row_metadata(row_metadata)


def finish_dataset(dataset: CountDataset, threshold: float = 0) -> CountDataset:
    """Terminal annotation step: probe identifiers, then calls from current counts."""
    return derive_calls(annotate_probe_ids(dataset), threshold=threshold)
