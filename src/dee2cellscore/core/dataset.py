"""
Core data structure for RNA-seq count datasets.

CountDataset couples a gene x sample count matrix with synchronized gene
(row) and sample (column) annotation tables, an optional presence/absence
("calls") matrix and a free-form metadata bag.

Biological Context:
    DEE2 delivers raw STAR gene counts per sequencing run:
    - Rows = genes (Ensembl gene IDs)
    - Columns = runs (SRR accessions) or, after aggregation, experiments
      (SRX accessions)
    - Values = non-negative integer counts, or non-negative reals once
      normalized or ranked

    Every derived dataset (raw, aggregated, size-factor normalized, ranked)
    must keep its annotations aligned with the matrix, otherwise
    downstream cell-transition scoring silently compares the wrong samples.

Engineering Design:
    - Immutable: operations return new instances
    - Validated: the constructor checks every shape/index invariant
    - Metadata tables are the source of identifiers: gene IDs are the
      row_metadata index, sample IDs are the col_metadata index

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from dee2cellscore.core.dataset import CountDataset
    >>>
    >>> counts = np.array([[0, 3], [5, 0]])
    >>> dataset = CountDataset(
    ...     counts=counts,
    ...     row_metadata=pd.DataFrame(index=pd.Index(["ENSG01", "ENSG02"])),
    ...     col_metadata=pd.DataFrame(
    ...         {"QC_summary": ["PASS", "WARN"]},
    ...         index=pd.Index(["SRR1", "SRR2"]),
    ...     ),
    ... )
    >>> passing = dataset.subset_columns(lambda md: md["QC_summary"] == "PASS")
    >>> passing.sample_ids.tolist()
    ['SRR1']
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Union

import numpy as np
import pandas as pd

from dee2cellscore.core.errors import ShapeMismatch

__all__ = ['CountDataset', 'concat_columns']

Selector = Union[np.ndarray, pd.Series, list, Callable[[pd.DataFrame], Any]]


class CountDataset:
    """
    Immutable container for counts + calls + row/column annotations.

    Attributes:
        counts: Numerical matrix (genes x samples)
        calls: Optional 0/1 presence matrix, same shape and ids as counts
        row_metadata: Gene annotations, indexed by gene ID
        col_metadata: Sample annotations, indexed by sample ID
        extra_metadata: Free-form key/value bag carried through transforms

    Shape Invariants:
        - counts.shape[0] == len(row_metadata)
        - counts.shape[1] == len(col_metadata)
        - col_metadata index is unique
        - calls is None or calls.shape == counts.shape
    """

    def __init__(
        self,
        counts: np.ndarray,
        row_metadata: pd.DataFrame,
        col_metadata: pd.DataFrame,
        calls: Optional[np.ndarray] = None,
        extra_metadata: Optional[dict] = None,
    ):
        """
        Initialize CountDataset with validation.

        Args:
            counts: Count matrix (genes x samples)
            row_metadata: DataFrame indexed by gene ID, one row per matrix row
            col_metadata: DataFrame indexed by sample ID, one row per column
            calls: Optional presence/absence matrix (same shape as counts)
            extra_metadata: Optional free-form metadata (copied shallowly)

        Raises:
            TypeError: If components have the wrong type
            ShapeMismatch: If shapes or identifiers are inconsistent
        """
        if not isinstance(counts, np.ndarray):
            raise TypeError(f"counts must be np.ndarray, got {type(counts)}")
        if not isinstance(row_metadata, pd.DataFrame):
            raise TypeError(f"row_metadata must be pd.DataFrame, got {type(row_metadata)}")
        if not isinstance(col_metadata, pd.DataFrame):
            raise TypeError(f"col_metadata must be pd.DataFrame, got {type(col_metadata)}")
        if calls is not None and not isinstance(calls, np.ndarray):
            raise TypeError(f"calls must be np.ndarray or None, got {type(calls)}")
        if extra_metadata is not None and not isinstance(extra_metadata, dict):
            raise TypeError(f"extra_metadata must be dict or None, got {type(extra_metadata)}")

        if counts.ndim != 2:
            raise ShapeMismatch(f"counts must be 2D, got shape {counts.shape}")

        n_genes, n_samples = counts.shape

        if len(row_metadata) != n_genes:
            raise ShapeMismatch(
                f"row_metadata length ({len(row_metadata)}) must match counts rows ({n_genes})"
            )
        if len(col_metadata) != n_samples:
            raise ShapeMismatch(
                f"col_metadata length ({len(col_metadata)}) must match counts columns ({n_samples})"
            )
        if not col_metadata.index.is_unique:
            duplicated = col_metadata.index[col_metadata.index.duplicated()].unique().tolist()
            raise ShapeMismatch(f"Sample identifiers must be unique, duplicated: {duplicated[:5]}")
        if not row_metadata.index.is_unique:
            duplicated = row_metadata.index[row_metadata.index.duplicated()].unique().tolist()
            raise ShapeMismatch(f"Gene identifiers must be unique, duplicated: {duplicated[:5]}")
        if calls is not None and calls.shape != counts.shape:
            raise ShapeMismatch(
                f"calls shape {calls.shape} must match counts shape {counts.shape}"
            )

        self._counts = counts
        self._calls = calls
        self._row_metadata = row_metadata
        self._col_metadata = col_metadata
        self._extra_metadata = dict(extra_metadata) if extra_metadata else {}

    @classmethod
    def from_frame(
        cls,
        counts: pd.DataFrame,
        col_metadata: Optional[pd.DataFrame] = None,
        row_metadata: Optional[pd.DataFrame] = None,
        calls: Optional[pd.DataFrame] = None,
        extra_metadata: Optional[dict] = None,
    ) -> CountDataset:
        """
        Build a dataset from a labelled genes x samples DataFrame.

        Missing annotation tables are created empty, indexed by the frame's
        row/column labels. Supplied tables are reindexed to the frame order;
        calls, if given, are aligned on both axes.
        """
        gene_ids = pd.Index(counts.index)
        sample_ids = pd.Index(counts.columns)

        if row_metadata is None:
            row_metadata = pd.DataFrame(index=gene_ids)
        else:
            _require_same_ids(row_metadata.index, gene_ids, "row_metadata", "counts rows")
            row_metadata = row_metadata.loc[gene_ids]

        if col_metadata is None:
            col_metadata = pd.DataFrame(index=sample_ids)
        else:
            _require_same_ids(col_metadata.index, sample_ids, "col_metadata", "counts columns")
            col_metadata = col_metadata.loc[sample_ids]

        calls_values = None
        if calls is not None:
            _require_same_ids(calls.index, gene_ids, "calls rows", "counts rows")
            _require_same_ids(calls.columns, sample_ids, "calls columns", "counts columns")
            calls_values = calls.loc[gene_ids, sample_ids].to_numpy()

        return cls(
            counts=counts.to_numpy(),
            row_metadata=row_metadata,
            col_metadata=col_metadata,
            calls=calls_values,
            extra_metadata=extra_metadata,
        )

    @property
    def counts(self) -> np.ndarray:
        """Count matrix (genes x samples)."""
        return self._counts

    @property
    def calls(self) -> Optional[np.ndarray]:
        """Presence/absence matrix, or None if calls were never derived."""
        return self._calls

    @property
    def row_metadata(self) -> pd.DataFrame:
        """Gene annotations indexed by gene ID."""
        return self._row_metadata

    @property
    def col_metadata(self) -> pd.DataFrame:
        """Sample annotations indexed by sample ID."""
        return self._col_metadata

    @property
    def extra_metadata(self) -> dict:
        """Free-form metadata (a copy; the dataset's own bag is not exposed)."""
        return dict(self._extra_metadata)

    @property
    def gene_ids(self) -> pd.Index:
        return self._row_metadata.index

    @property
    def sample_ids(self) -> pd.Index:
        return self._col_metadata.index

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_genes, n_samples)."""
        return self._counts.shape

    @property
    def n_genes(self) -> int:
        return self._counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self._counts.shape[1]

    @property
    def is_empty(self) -> bool:
        return self._counts.size == 0

    def counts_frame(self) -> pd.DataFrame:
        """Counts as a labelled DataFrame (genes x samples)."""
        return pd.DataFrame(self._counts, index=self.gene_ids, columns=self.sample_ids)

    def calls_frame(self) -> Optional[pd.DataFrame]:
        """Calls as a labelled DataFrame, or None."""
        if self._calls is None:
            return None
        return pd.DataFrame(self._calls, index=self.gene_ids, columns=self.sample_ids)

    def subset_columns(self, predicate: Selector) -> CountDataset:
        """
        Restrict to samples (columns) satisfying a predicate.

        Args:
            predicate: Boolean mask over samples, or a callable receiving
                col_metadata and returning such a mask

        Returns:
            New CountDataset with the selected samples in their original order

        Raises:
            ShapeMismatch: If the mask length doesn't match n_samples

        Examples:
            >>> passing = dataset.subset_columns(
            ...     lambda md: md["QC_summary"].str.startswith("PASS")
            ... )
        """
        mask = _resolve_mask(predicate, self._col_metadata, self.n_samples, "n_samples")

        return CountDataset(
            counts=self._counts[:, mask],
            row_metadata=self._row_metadata,
            col_metadata=self._col_metadata.iloc[np.flatnonzero(mask)],
            calls=None if self._calls is None else self._calls[:, mask],
            extra_metadata=self._extra_metadata,
        )

    def subset_rows(self, predicate: Selector) -> CountDataset:
        """
        Restrict to genes (rows) satisfying a predicate.

        Args:
            predicate: Boolean mask over genes, or a callable receiving
                row_metadata and returning such a mask

        Returns:
            New CountDataset with the selected genes in their original order

        Raises:
            ShapeMismatch: If the mask length doesn't match n_genes
        """
        mask = _resolve_mask(predicate, self._row_metadata, self.n_genes, "n_genes")

        return CountDataset(
            counts=self._counts[mask, :],
            row_metadata=self._row_metadata.iloc[np.flatnonzero(mask)],
            col_metadata=self._col_metadata,
            calls=None if self._calls is None else self._calls[mask, :],
            extra_metadata=self._extra_metadata,
        )

    def with_counts(self, counts: np.ndarray, keep_calls: bool = True) -> CountDataset:
        """New dataset with replaced counts and the same annotations."""
        return CountDataset(
            counts=counts,
            row_metadata=self._row_metadata,
            col_metadata=self._col_metadata,
            calls=self._calls if keep_calls else None,
            extra_metadata=self._extra_metadata,
        )

    def with_calls(self, calls: Optional[np.ndarray]) -> CountDataset:
        """New dataset with replaced (or removed) calls."""
        return CountDataset(
            counts=self._counts,
            row_metadata=self._row_metadata,
            col_metadata=self._col_metadata,
            calls=calls,
            extra_metadata=self._extra_metadata,
        )

    def with_row_metadata(self, row_metadata: pd.DataFrame) -> CountDataset:
        """New dataset with a replacement gene annotation table."""
        return CountDataset(
            counts=self._counts,
            row_metadata=row_metadata,
            col_metadata=self._col_metadata,
            calls=self._calls,
            extra_metadata=self._extra_metadata,
        )

    def with_col_metadata(self, col_metadata: pd.DataFrame) -> CountDataset:
        """New dataset with a replacement sample annotation table."""
        return CountDataset(
            counts=self._counts,
            row_metadata=self._row_metadata,
            col_metadata=col_metadata,
            calls=self._calls,
            extra_metadata=self._extra_metadata,
        )

    def with_extra_metadata(self, extra_metadata: Optional[dict]) -> CountDataset:
        return CountDataset(
            counts=self._counts,
            row_metadata=self._row_metadata,
            col_metadata=self._col_metadata,
            calls=self._calls,
            extra_metadata=extra_metadata,
        )

    def copy(self, deep: bool = True) -> CountDataset:
        """
        Create a copy of this dataset.

        Args:
            deep: If True, copy all arrays and tables. If False, share them.
        """
        if deep:
            return CountDataset(
                counts=self._counts.copy(),
                row_metadata=self._row_metadata.copy(),
                col_metadata=self._col_metadata.copy(),
                calls=None if self._calls is None else self._calls.copy(),
                extra_metadata=dict(self._extra_metadata),
            )
        return CountDataset(
            counts=self._counts,
            row_metadata=self._row_metadata,
            col_metadata=self._col_metadata,
            calls=self._calls,
            extra_metadata=self._extra_metadata,
        )

    def equals(self, other: CountDataset) -> bool:
        """Value equality of counts, calls and both annotation tables."""
        if not isinstance(other, CountDataset):
            return False
        if self.shape != other.shape:
            return False
        if (self._calls is None) != (other.calls is None):
            return False
        if self._calls is not None and not np.array_equal(self._calls, other.calls):
            return False
        return (
            np.array_equal(self._counts, other.counts)
            and self._row_metadata.equals(other.row_metadata)
            and self._col_metadata.equals(other.col_metadata)
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        if self.is_empty:
            return f"CountDataset({self.n_genes} genes × {self.n_samples} samples, empty)"
        return (
            f"CountDataset({self.n_genes} genes × {self.n_samples} samples)\n"
            f"  Genes: {self.gene_ids[0]}...{self.gene_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}\n"
            f"  Calls: {'yes' if self._calls is not None else 'no'}\n"
            f"  Column metadata: {list(self.col_metadata.columns)}"
        )

    def __str__(self) -> str:
        return self.__repr__()


def concat_columns(a: CountDataset, b: CountDataset) -> CountDataset:
    """
    Column-wise union of two datasets with identical genes.

    The result keeps a's samples followed by b's. Column metadata tables are
    concatenated (fields missing from one side become NaN). Extra metadata
    is merged with b's keys taking precedence.

    Raises:
        ShapeMismatch: If gene identifiers differ, sample identifiers
            collide, or only one operand carries calls
    """
    if not a.gene_ids.equals(b.gene_ids):
        raise ShapeMismatch(
            f"Cannot concatenate datasets with different genes "
            f"({a.n_genes} vs {b.n_genes} rows, or different order)"
        )
    overlap = a.sample_ids.intersection(b.sample_ids)
    if len(overlap) > 0:
        raise ShapeMismatch(f"Sample identifiers occur in both datasets: {overlap[:5].tolist()}")
    if (a.calls is None) != (b.calls is None):
        raise ShapeMismatch("Cannot concatenate a dataset with calls and one without")

    calls = None
    if a.calls is not None:
        calls = np.concatenate([a.calls, b.calls], axis=1)

    extra = a.extra_metadata
    extra.update(b.extra_metadata)

    return CountDataset(
        counts=np.concatenate([a.counts, b.counts], axis=1),
        row_metadata=a.row_metadata,
        col_metadata=pd.concat([a.col_metadata, b.col_metadata], axis=0, sort=False),
        calls=calls,
        extra_metadata=extra,
    )


def _resolve_mask(predicate: Selector, table: pd.DataFrame, expected: int, label: str) -> np.ndarray:
    if callable(predicate):
        predicate = predicate(table)
    if isinstance(predicate, pd.Series):
        # NaN in a predicate (e.g. missing metadata) never selects
        predicate = predicate.eq(True).to_numpy()
    mask = np.asarray(predicate, dtype=bool)

    if mask.ndim != 1 or len(mask) != expected:
        raise ShapeMismatch(f"mask length ({mask.size}) must match {label} ({expected})")
    return mask


def _require_same_ids(actual: pd.Index, expected: pd.Index, actual_label: str, expected_label: str) -> None:
    if len(actual) != len(expected) or not pd.Index(actual).sort_values().equals(expected.sort_values()):
        raise ShapeMismatch(f"{actual_label} identifiers must match {expected_label} identifiers")
