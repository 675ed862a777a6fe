"""
Quality control for DEE2 count datasets.

Components:
    QCStatusFilter: Keep runs whose DEE2 QC summary falls in a quality tier
    GeneActivityFilter: Drop genes with too few total counts

Quality control workflow:
    1. Split annotated runs into the PASS and PASS+WARN tiers
    2. Drop inactive genes (row sum <= cutoff)
    3. (Optionally) aggregate runs into experiments

Examples:
    >>> from dee2cellscore.quality import split_quality_tiers, GeneActivityFilter
    >>>
    >>> qc_pass, qc_warn = split_quality_tiers(annotated)
    >>> filtered = GeneActivityFilter(cutoff=10).apply(qc_pass)
"""

from dee2cellscore.quality.filtering import (
    GeneActivityFilter,
    GeneFilterResult,
    QCStatusFilter,
    filter_qc,
    split_quality_tiers,
)

__all__ = [
    'GeneActivityFilter',
    'GeneFilterResult',
    'QCStatusFilter',
    'filter_qc',
    'split_quality_tiers',
]
