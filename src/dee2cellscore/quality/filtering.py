"""
Quality filtering transformations for count datasets.

Two independent filters:

    QCStatusFilter      keeps runs (columns) whose DEE2 QC summary falls in
                        a quality tier (PASS, or PASS + WARN)
    GeneActivityFilter  keeps genes (rows) whose total count across all
                        samples strictly exceeds a cutoff

Both are pure Transforms. Filtering an already-filtered dataset with the
same parameters returns an identical dataset.

Examples:
    >>> from dee2cellscore.quality.filtering import split_quality_tiers, GeneActivityFilter
    >>>
    >>> qc_pass, qc_warn = split_quality_tiers(annotated)
    >>> active = GeneActivityFilter(cutoff=10).apply(qc_pass)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.core.quality import QualityTier
from dee2cellscore.core.transform import Transform
from dee2cellscore.io.metadata import QC_COLUMN

logger = logging.getLogger(__name__)

__all__ = [
    'QCStatusFilter',
    'GeneActivityFilter',
    'GeneFilterResult',
    'filter_qc',
    'split_quality_tiers',
]


class QCStatusFilter(Transform):
    """
    Keep samples whose QC summary is accepted by a quality tier.

    Samples with a missing QC summary never pass.

    Params:
        tier: QualityTier (or its key, "qc_pass" / "qc_warn")
        qc_column: Column metadata field holding the QC summary
    """

    def __init__(self, tier: QualityTier | str = QualityTier.PASS, qc_column: str = QC_COLUMN):
        if isinstance(tier, str):
            tier = QualityTier.from_key(tier)
        super().__init__(
            name="QCStatusFilter",
            params={"tier": tier.key, "qc_column": qc_column},
        )
        self.tier = tier
        self.qc_column = qc_column

    def apply(self, dataset: CountDataset) -> CountDataset:
        errors = self.validate(dataset)
        if errors:
            raise ValueError(f"Cannot apply {self}: {'; '.join(errors)}")

        statuses = dataset.col_metadata[self.qc_column]
        mask = np.array([self.tier.accepts(status) for status in statuses], dtype=bool)

        logger.info(
            f"{self.tier.label} tier: kept {int(mask.sum())}/{dataset.n_samples} samples"
        )
        return dataset.subset_columns(mask)

    def validate(self, dataset: CountDataset) -> list[str]:
        errors: list[str] = []
        if self.qc_column not in dataset.col_metadata.columns:
            errors.append(f"column metadata has no '{self.qc_column}' field")
        return errors


def filter_qc(dataset: CountDataset, tier: QualityTier | str, qc_column: str = QC_COLUMN) -> CountDataset:
    """Restrict a dataset to the samples of one quality tier."""
    return QCStatusFilter(tier, qc_column=qc_column).apply(dataset)


def split_quality_tiers(
    dataset: CountDataset,
    qc_column: str = QC_COLUMN,
) -> tuple[CountDataset, CountDataset]:
    """
    Split into the two quality tiers.

    Returns:
        (pass, pass_or_warn) datasets; samples keep their original order
    """
    return (
        filter_qc(dataset, QualityTier.PASS, qc_column=qc_column),
        filter_qc(dataset, QualityTier.PASS_OR_WARN, qc_column=qc_column),
    )


@dataclass
class GeneFilterResult:
    """Genes kept and removed by a gene-activity filter."""
    kept: list[str]
    removed: list[str]
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_kept(self) -> int:
        return len(self.kept)

    @property
    def n_removed(self) -> int:
        return len(self.removed)

    @property
    def pass_rate(self) -> float:
        total = self.n_kept + self.n_removed
        return self.n_kept / total if total > 0 else 0.0


class GeneActivityFilter(Transform):
    """
    Drop genes whose summed count across all samples does not exceed a cutoff.

    The comparison is strict: a gene summing to exactly the cutoff is removed.
    An empty sample set sums to zero, so every gene fails any cutoff >= 0.

    Params:
        cutoff: Minimum total count (exclusive), default 10
    """

    def __init__(self, cutoff: float = 10):
        super().__init__(name="GeneActivityFilter", params={"cutoff": cutoff})
        self.cutoff = cutoff

    def _keep_mask(self, dataset: CountDataset) -> np.ndarray:
        return dataset.counts.sum(axis=1) > self.cutoff

    def apply(self, dataset: CountDataset) -> CountDataset:
        keep_mask = self._keep_mask(dataset)
        n_kept = int(keep_mask.sum())

        if dataset.n_genes:
            logger.info(
                f"Gene activity filter (row sum > {self.cutoff}): kept {n_kept}/{dataset.n_genes} genes "
                f"({100*n_kept/dataset.n_genes:.1f}%), removed {dataset.n_genes - n_kept}"
            )
        return dataset.subset_rows(keep_mask)

    def get_passing_genes(self, dataset: CountDataset) -> GeneFilterResult:
        """Report kept/removed genes without transforming the dataset."""
        keep_mask = self._keep_mask(dataset)
        return GeneFilterResult(
            kept=dataset.gene_ids[keep_mask].tolist(),
            removed=dataset.gene_ids[~keep_mask].tolist(),
            parameters={"cutoff": self.cutoff},
        )
