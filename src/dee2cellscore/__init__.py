"""
dee2cellscore - CellScore reference datasets from DEE2 RNA-seq counts

Fetches per-run gene counts from DEE2, attaches curated sample metadata and
builds quality-filtered, experiment-aggregated, size-factor normalized,
rank normalized and embedded datasets for cell-transition scoring.
"""

__version__ = "0.1.0"

from dee2cellscore.core.dataset import CountDataset, concat_columns
from dee2cellscore.core.transform import Transform
from dee2cellscore.core.quality import QCStatus, QualityTier

__all__ = [
    "CountDataset",
    "concat_columns",
    "Transform",
    "QCStatus",
    "QualityTier",
]
