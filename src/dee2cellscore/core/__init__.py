"""
Core data structures and abstractions for the DEE2 dataset builder.

1. CountDataset: count matrix with synchronized gene/sample annotations
2. QCStatus / QualityTier: run quality severities and inclusion tiers
3. Transform: abstract base class for pure dataset transformations
4. Errors: ShapeMismatch, MetadataKeyMissing, InconsistentGrouping

All operations return new instances; nothing is mutated in place.
"""

from dee2cellscore.core.dataset import CountDataset, concat_columns
from dee2cellscore.core.errors import (
    DatasetError,
    InconsistentGrouping,
    MetadataKeyMissing,
    MetadataKeyMissingWarning,
    ShapeMismatch,
)
from dee2cellscore.core.quality import QCStatus, QualityTier
from dee2cellscore.core.transform import Transform

__all__ = [
    'CountDataset',
    'concat_columns',
    'DatasetError',
    'InconsistentGrouping',
    'MetadataKeyMissing',
    'MetadataKeyMissingWarning',
    'ShapeMismatch',
    'QCStatus',
    'QualityTier',
    'Transform',
]
