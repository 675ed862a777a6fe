"""
Run-to-experiment aggregation.

An SRA experiment (SRX accession) is one biological library that may have
been sequenced as several runs (SRR accessions). DEE2 quantifies each run
separately; CellScore compares experiments. Aggregation collapses runs of
the same experiment into one column by summing their counts.

Algorithm:
    1. Group columns by experiment ID in order of first appearance
    2. Multi-run groups: element-wise sum of member columns
       Single-run groups: member column unchanged
    3. Column metadata: one row per experiment, indexed by experiment ID,
       holding the space-joined contributing run IDs (Aggregated_From)
       followed by the curated per-experiment fields

Gene annotations and extra metadata pass through unchanged. Calls are not
carried over; they describe runs, not experiments, and are re-derived
downstream.

Examples:
    >>> from dee2cellscore.stats.aggregation import ExperimentAggregator
    >>>
    >>> aggregator = ExperimentAggregator(curated)
    >>> experiments = aggregator.apply(runs)
    >>> experiments.col_metadata["Aggregated_From"].tolist()
    ['SRR001 SRR002', 'SRR003']
"""

from __future__ import annotations

import logging
import warnings
from typing import Optional

import numpy as np
import pandas as pd

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.core.errors import InconsistentGrouping, MetadataKeyMissingWarning
from dee2cellscore.core.transform import Transform
from dee2cellscore.io.metadata import EXPERIMENT_ID_COLUMN, RUN_ID_COLUMN, dedupe_curated

logger = logging.getLogger(__name__)

__all__ = ['ExperimentAggregator', 'aggregate_experiments', 'PROVENANCE_COLUMN']

PROVENANCE_COLUMN = 'Aggregated_From'


def _group_runs(experiment_ids: pd.Series) -> dict[str, list[int]]:
    """Column positions per experiment, experiments in first-appearance order."""
    groups: dict[str, list[int]] = {}
    for position, experiment in enumerate(experiment_ids):
        groups.setdefault(experiment, []).append(position)
    return groups


class ExperimentAggregator(Transform):
    """
    Collapse runs sharing an experiment ID into one summed column.

    Params:
        curated: Curated metadata table with one or more rows per experiment.
            If None, per-experiment fields are taken from the first run of
            each experiment in the input's own column metadata.
        experiment_column: Field holding the experiment ID
        run_column: Curated field holding the run ID (kept as-is in the
            per-experiment fields; it names the first curated run)
    """

    def __init__(
        self,
        curated: Optional[pd.DataFrame] = None,
        experiment_column: str = EXPERIMENT_ID_COLUMN,
        run_column: str = RUN_ID_COLUMN,
    ):
        super().__init__(
            name="ExperimentAggregator",
            params={"experiment_column": experiment_column, "run_column": run_column},
        )
        if curated is not None and experiment_column not in curated.columns:
            raise ValueError(f"Curated metadata has no '{experiment_column}' column")
        self.curated = curated
        self.experiment_column = experiment_column
        self.run_column = run_column

    def _experiment_ids(self, dataset: CountDataset) -> pd.Series:
        if self.experiment_column not in dataset.col_metadata.columns:
            raise InconsistentGrouping(
                f"Column metadata has no '{self.experiment_column}' field to aggregate on"
            )
        experiment_ids = dataset.col_metadata[self.experiment_column]
        missing = experiment_ids.isna() | (experiment_ids.astype(str).str.strip() == "")
        if missing.any():
            runs = dataset.sample_ids[missing.to_numpy()].tolist()
            raise InconsistentGrouping(
                f"{len(runs)} run(s) have no '{self.experiment_column}': {runs[:5]}"
            )
        return experiment_ids.astype(str)

    def _experiment_fields(self, dataset: CountDataset, experiments: list[str]) -> pd.DataFrame:
        """Per-experiment curated fields, indexed by experiment ID in group order."""
        if self.curated is not None:
            source = self.curated.assign(
                **{self.experiment_column: self.curated[self.experiment_column].astype(str)}
            )
        else:
            source = dataset.col_metadata.assign(
                **{self.experiment_column: dataset.col_metadata[self.experiment_column].astype(str)}
            )

        source = source[source[self.experiment_column].isin(experiments)]
        per_experiment = dedupe_curated(source, self.experiment_column)

        missing = [exp for exp in experiments if exp not in per_experiment.index]
        if missing:
            message = (
                f"{len(missing)} experiment(s) have no curated metadata; "
                f"their fields are left empty: {missing[:5]}"
            )
            logger.warning(message)
            warnings.warn(message, MetadataKeyMissingWarning)

        fields = per_experiment.reindex(experiments)
        fields[self.experiment_column] = experiments
        return fields.drop(columns=[PROVENANCE_COLUMN], errors='ignore')

    def apply(self, dataset: CountDataset) -> CountDataset:
        """
        Aggregate runs into experiments.

        Raises:
            InconsistentGrouping: If any run lacks an experiment ID
        """
        experiment_ids = self._experiment_ids(dataset)
        groups = _group_runs(experiment_ids)
        experiments = list(groups)

        counts = dataset.counts
        aggregated = np.empty((dataset.n_genes, len(experiments)), dtype=counts.dtype)
        provenance = []
        for j, experiment in enumerate(experiments):
            positions = groups[experiment]
            if len(positions) > 1:
                aggregated[:, j] = counts[:, positions].sum(axis=1)
            else:
                aggregated[:, j] = counts[:, positions[0]]
            provenance.append(" ".join(str(dataset.sample_ids[p]) for p in positions))

        fields = self._experiment_fields(dataset, experiments)
        col_metadata = pd.concat(
            [pd.DataFrame({PROVENANCE_COLUMN: provenance}, index=pd.Index(experiments)), fields],
            axis=1,
        )

        n_merged = sum(1 for positions in groups.values() if len(positions) > 1)
        logger.info(
            f"Aggregated {dataset.n_samples} runs into {len(experiments)} experiments "
            f"({n_merged} with multiple runs)"
        )

        return CountDataset(
            counts=aggregated,
            row_metadata=dataset.row_metadata,
            col_metadata=col_metadata,
            calls=None,
            extra_metadata=dataset.extra_metadata,
        )


def aggregate_experiments(
    dataset: CountDataset,
    curated: Optional[pd.DataFrame] = None,
    experiment_column: str = EXPERIMENT_ID_COLUMN,
) -> CountDataset:
    """Functional form of ExperimentAggregator(curated, experiment_column).apply(dataset)."""
    return ExperimentAggregator(curated, experiment_column=experiment_column).apply(dataset)
