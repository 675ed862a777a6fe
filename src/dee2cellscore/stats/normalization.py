"""
Normalization methods for RNA-seq count datasets.

Two alternative transforms of filtered (and usually experiment-aggregated)
counts:

- Size-factor + log: library-size normalization with DESeq2-style size
  factors followed by log2(x + 1). The size-factor estimator is injectable;
  the default is DESeq2's median-of-ratios.
- Rank: each sample is ranked independently against its own gene-count
  distribution, ties receive the average rank, ranks are scaled to (0, 1].

References:
    - Anders & Huber (2010) Genome Biology 11:R106 (median-of-ratios)
    - Love, Huber & Anders (2014) Genome Biology 15:550 (DESeq2)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.stats import rankdata

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.core.transform import Transform
from dee2cellscore.stats.calls import compute_calls
from dee2cellscore.stats.design import build_design_matrix

logger = logging.getLogger(__name__)

__all__ = [
    'NormalizationResult',
    'SizeFactorEstimator',
    'median_of_ratios',
    'size_factor_log_normalization',
    'rank_normalization',
    'SizeFactorNormalizer',
    'RankNormalizer',
]

SizeFactorEstimator = Callable[[NDArray, pd.DataFrame, pd.DataFrame, str], NDArray]
"""(counts, col_metadata, row_metadata, design) -> per-sample size factors."""


@dataclass(frozen=True)
class NormalizationResult:
    """Result of a normalization procedure.

    Attributes:
        data: Normalized matrix (genes × samples)
        method: Normalization method used
        normalization_factors: Per-sample factors applied (size factors for
            the log method; the row count for ranks)
    """

    data: NDArray[np.float64]
    method: str
    normalization_factors: NDArray[np.float64]


def median_of_ratios(
    counts: NDArray,
    col_metadata: Optional[pd.DataFrame] = None,
    row_metadata: Optional[pd.DataFrame] = None,
    design: str = "~ 1",
) -> NDArray[np.float64]:
    """
    DESeq2 median-of-ratios size factors (estimateSizeFactorsForMatrix, type "ratio").

    For each gene: log geometric mean across samples. Genes with a zero in
    any sample have an infinite log geometric mean and are ignored. For each
    sample: size factor = exp(median(log(count) - log geometric mean)) over
    the usable genes where that sample's count is positive.

    The metadata and design arguments are accepted for interface
    compatibility; the ratio method does not use them.

    Args:
        counts: 2D array (n_genes, n_samples) of non-negative counts.

    Returns:
        Size factors, one per sample.

    Raises:
        ValueError: If the matrix is empty or every gene contains a zero.
    """
    counts = np.asarray(counts, dtype=np.float64)
    if counts.ndim != 2:
        raise ValueError(f"Expected 2D array, got {counts.ndim}D")
    if counts.size == 0:
        raise ValueError(
            f"Cannot estimate size factors for an empty matrix (shape {counts.shape})"
        )

    with np.errstate(divide='ignore'):
        log_counts = np.log(counts)
    log_geomeans = log_counts.mean(axis=1)

    usable = np.isfinite(log_geomeans)
    if not usable.any():
        raise ValueError(
            "every gene contains at least one zero, cannot compute log geometric means"
        )

    size_factors = np.empty(counts.shape[1], dtype=np.float64)
    for j in range(counts.shape[1]):
        keep = usable & (counts[:, j] > 0)
        size_factors[j] = np.exp(np.median(log_counts[keep, j] - log_geomeans[keep]))

    return size_factors


def size_factor_log_normalization(
    counts: NDArray,
    size_factors: NDArray,
) -> NormalizationResult:
    """
    log2(counts / size_factor + 1), size factors applied per column.

    Raises:
        ValueError: If size factors don't match the columns or are not
            positive and finite.
    """
    counts = np.asarray(counts, dtype=np.float64)
    size_factors = np.asarray(size_factors, dtype=np.float64)

    if size_factors.shape != (counts.shape[1],):
        raise ValueError(
            f"Expected {counts.shape[1]} size factors, got shape {size_factors.shape}"
        )
    if not np.all(np.isfinite(size_factors)) or np.any(size_factors <= 0):
        raise ValueError(f"Size factors must be positive and finite, got {size_factors}")

    normalized = np.log2(counts / size_factors[np.newaxis, :] + 1)
    return NormalizationResult(
        data=normalized,
        method="size_factor_log2",
        normalization_factors=size_factors,
    )


def rank_normalization(counts: NDArray, descending: bool = True) -> NormalizationResult:
    """
    Column-wise fractional ranks with average tie handling.

    Each column is ranked independently; ranks are divided by the number of
    rows so every value lies in (0, 1].

    Args:
        counts: 2D array (n_genes, n_samples)
        descending: If True (default) the highest count gets rank 1, so the
            most expressed gene maps to 1/n. If False the lowest count gets
            rank 1 (ascending, as matrixStats::colRanks).

    Examples:
        >>> rank_normalization(np.array([[10], [5], [5], [1]])).data.ravel()
        array([0.25 , 0.625, 0.625, 1.   ])
    """
    counts = np.asarray(counts, dtype=np.float64)
    if counts.ndim != 2:
        raise ValueError(f"Expected 2D array, got {counts.ndim}D")

    n_genes = counts.shape[0]
    if counts.size == 0:
        return NormalizationResult(
            data=np.empty(counts.shape, dtype=np.float64),
            method="rank",
            normalization_factors=np.full(counts.shape[1], float(n_genes)),
        )

    values = -counts if descending else counts
    ranks = rankdata(values, method='average', axis=0)

    return NormalizationResult(
        data=ranks / n_genes,
        method="rank_descending" if descending else "rank_ascending",
        normalization_factors=np.full(counts.shape[1], float(n_genes)),
    )


class SizeFactorNormalizer(Transform):
    """
    Size-factor normalization followed by log2(x + 1).

    Row, column and extra metadata of the input are kept unchanged; only the
    counts change (raw counts become log-normalized counts).

    Params:
        design: One-sided design formula, default "~ 1" (intercept only)
        estimator: Size-factor routine, default median_of_ratios

    Examples:
        >>> normalizer = SizeFactorNormalizer(design="~ 1")
        >>> normalized = normalizer.apply(filtered)
        >>> normalizer.estimate(filtered)   # size factors per sample
    """

    def __init__(
        self,
        design: str = "~ 1",
        estimator: Optional[SizeFactorEstimator] = None,
    ):
        estimator = estimator or median_of_ratios
        super().__init__(
            name="SizeFactorNormalizer",
            params={"design": design, "estimator": getattr(estimator, "__name__", repr(estimator))},
        )
        self.design = design
        self.estimator = estimator

    def estimate(self, dataset: CountDataset) -> pd.Series:
        """Size factors for a dataset, indexed by sample ID."""
        build_design_matrix(dataset.col_metadata, self.design)
        size_factors = np.asarray(
            self.estimator(dataset.counts, dataset.col_metadata, dataset.row_metadata, self.design),
            dtype=np.float64,
        )
        return pd.Series(size_factors, index=dataset.sample_ids, name="size_factor")

    def apply(self, dataset: CountDataset) -> CountDataset:
        errors = self.validate(dataset)
        if errors:
            raise ValueError(f"Cannot apply {self}: {'; '.join(errors)}")

        size_factors = self.estimate(dataset)
        result = size_factor_log_normalization(dataset.counts, size_factors.to_numpy())

        logger.info(
            f"Size-factor normalized {dataset.n_genes} genes × {dataset.n_samples} samples "
            f"(size factors {size_factors.min():.3f}-{size_factors.max():.3f})"
        )
        return dataset.with_counts(result.data)

    def validate(self, dataset: CountDataset) -> list[str]:
        errors = super().validate(dataset)
        if dataset.is_empty:
            errors.append(
                f"Cannot normalize an empty dataset ({dataset.n_genes} genes × {dataset.n_samples} samples)"
            )
        return errors


class RankNormalizer(Transform):
    """
    Column-wise rank normalization with presence calls from the input counts.

    Ranks alone lose presence/absence (a zero still gets a rank), so calls
    are computed from the pre-rank counts and attached to the output.

    Params:
        descending: Highest count gets rank 1 (default True)
        call_threshold: Count threshold for presence calls (default 0)
    """

    def __init__(self, descending: bool = True, call_threshold: float = 0):
        super().__init__(
            name="RankNormalizer",
            params={"descending": descending, "call_threshold": call_threshold},
        )
        self.descending = descending
        self.call_threshold = call_threshold

    def apply(self, dataset: CountDataset) -> CountDataset:
        calls = compute_calls(dataset.counts, self.call_threshold)
        result = rank_normalization(dataset.counts, descending=self.descending)

        logger.info(
            f"Rank normalized {dataset.n_genes} genes × {dataset.n_samples} samples "
            f"({'descending' if self.descending else 'ascending'})"
        )
        return dataset.with_counts(result.data).with_calls(calls)
