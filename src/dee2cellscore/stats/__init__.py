"""
Dataset transforms: experiment aggregation, calls, normalization, embedding.

Exports:
- ExperimentAggregator: collapse runs into experiments
- derive_calls / annotate_probe_ids / finish_dataset: CellScore annotations
- SizeFactorNormalizer / RankNormalizer: the two normalizations
- EmbeddingAdapter: 2-D t-SNE embedding of samples
"""

from .aggregation import (
    PROVENANCE_COLUMN,
    ExperimentAggregator,
    aggregate_experiments,
)
from .calls import (
    annotate_probe_ids,
    compute_calls,
    derive_calls,
    finish_dataset,
)
from .design import DesignMatrix, build_design_matrix, parse_design
from .normalization import (
    NormalizationResult,
    RankNormalizer,
    SizeFactorNormalizer,
    median_of_ratios,
    rank_normalization,
    size_factor_log_normalization,
)
from .embedding import EmbeddingAdapter, deduplicate_samples, tsne_embedder

__all__ = [
    "PROVENANCE_COLUMN",
    "ExperimentAggregator",
    "aggregate_experiments",
    "annotate_probe_ids",
    "compute_calls",
    "derive_calls",
    "finish_dataset",
    "DesignMatrix",
    "build_design_matrix",
    "parse_design",
    "NormalizationResult",
    "RankNormalizer",
    "SizeFactorNormalizer",
    "median_of_ratios",
    "rank_normalization",
    "size_factor_log_normalization",
    "EmbeddingAdapter",
    "deduplicate_samples",
    "tsne_embedder",
]
