"""
Pipeline orchestration: from raw DEE2 runs to the named CellScore datasets.

Flow (one fetch, then one pass per quality tier):

    fetch runs ─→ join curated metadata ─→ split quality tiers
        for each tier:
            gene-activity filter
            ├─ raw     (runs)         ─→ probe ids + calls
            └─ aggregate into experiments
                 ├─ agg               ─→ probe ids + calls
                 ├─ deseq2            ─→ probe ids + calls ─→ size factors + log2
                 ├─ rank              ─→ probe ids + calls ─→ column ranks
                 └─ tsne              ─→ bare 2-D coordinates (no calls)

Outputs are named "<tier>_<kind>", e.g. "qc_pass_rank" or "qc_warn_deseq2".

Failure policy:
    - Fetch errors (and strict metadata join errors) abort the whole run;
      every branch shares the fetched input.
    - Structural errors inside a branch (ShapeMismatch, InconsistentGrouping,
      ValueError from normalization or embedding) abort that branch only.
      The output is omitted and its name recorded in Pipeline.failures.

Examples:
    >>> from dee2cellscore.pipeline import BuildConfig, Pipeline, write_outputs
    >>>
    >>> config = BuildConfig(build_raw=True, build_tsne=False, counts_cutoff=10)
    >>> pipeline = Pipeline(config, curated)
    >>> outputs = pipeline.run(accessions=["SRR1043440", "SRR1043441"])
    >>> write_outputs(outputs, Path("out"), zip=True)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import numpy as np
import pandas as pd

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.core.errors import InconsistentGrouping, ShapeMismatch
from dee2cellscore.core.quality import QualityTier
from dee2cellscore.io.fetch import DEE2Fetcher, Fetcher
from dee2cellscore.io.metadata import (
    RUN_ID_COLUMN,
    accessions_from_curated,
    join_curated_metadata,
)
from dee2cellscore.io.writers import write_dataset, write_dataset_zip, write_embedding
from dee2cellscore.quality.filtering import GeneActivityFilter, filter_qc
from dee2cellscore.stats.aggregation import ExperimentAggregator
from dee2cellscore.stats.calls import finish_dataset
from dee2cellscore.stats.embedding import EmbeddingAdapter
from dee2cellscore.stats.normalization import RankNormalizer, SizeFactorNormalizer

logger = logging.getLogger(__name__)

__all__ = [
    'OUTPUT_KINDS',
    'AGGREGATED_KINDS',
    'BuildConfig',
    'Pipeline',
    'PipelineOutput',
    'output_file_bases',
    'write_outputs',
    'build_summary',
]

OUTPUT_KINDS = ('raw', 'agg', 'deseq2', 'rank', 'tsne')

# Kinds built from experiment-level (aggregated) data
AGGREGATED_KINDS = frozenset({'agg', 'deseq2', 'rank', 'tsne'})

DEFAULT_NAME_PREFIX = "homosapienDEE2Data"

# Errors that abort a single (tier, kind) branch
BRANCH_ERRORS = (ShapeMismatch, InconsistentGrouping, ValueError)

PipelineOutput = Union[CountDataset, np.ndarray]


@dataclass
class BuildConfig:
    """
    Which outputs to build and how.

    Attributes:
        build_raw: Per-run counts after filtering
        build_agg: Experiment-aggregated counts
        build_deseq2: Size-factor normalized, log2(x + 1) counts
        build_tsne: 2-D t-SNE coordinates
        build_rank: Column-wise rank normalized counts
        generate_qc_pass: Build outputs from runs whose QC summary is PASS
        generate_qc_warn: Build outputs from runs whose QC summary is PASS or WARN
        counts_cutoff: Keep genes whose total count exceeds this
        design: Design formula for size-factor estimation
        species: DEE2 species name
        strict_metadata: Fail when a run has no curated metadata
    """
    build_raw: bool = False
    build_agg: bool = False
    build_deseq2: bool = True
    build_tsne: bool = True
    build_rank: bool = True
    generate_qc_pass: bool = True
    generate_qc_warn: bool = True
    counts_cutoff: float = 10
    design: str = "~ 1"
    species: str = "hsapiens"
    strict_metadata: bool = False

    @property
    def kinds(self) -> list[str]:
        """Requested output kinds, in canonical order."""
        return [kind for kind in OUTPUT_KINDS if getattr(self, f"build_{kind}")]

    @property
    def tiers(self) -> list[QualityTier]:
        """Requested quality tiers, PASS first."""
        tiers = []
        if self.generate_qc_pass:
            tiers.append(QualityTier.PASS)
        if self.generate_qc_warn:
            tiers.append(QualityTier.PASS_OR_WARN)
        return tiers

    @property
    def output_names(self) -> list[str]:
        """Names of every output this configuration produces."""
        return [f"{tier.key}_{kind}" for tier in self.tiers for kind in self.kinds]

    def is_empty(self) -> bool:
        """True if no (tier, kind) pair is requested."""
        return not self.kinds or not self.tiers

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> BuildConfig:
        """
        Build from a mapping (e.g. a config file section).

        Raises:
            ValueError: If the mapping has keys that are not config fields
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown build options: {unknown}. Valid options: {sorted(known)}")
        return cls(**values)


class Pipeline:
    """
    Build the requested (tier, kind) outputs from raw DEE2 runs.

    Collaborators are injected; defaults are the DEE2 HTTP fetcher, DESeq2
    median-of-ratios size factors, descending ranks and scikit-learn t-SNE.

    Attributes:
        config: Build configuration
        curated: Curated per-run metadata table
        failures: Output name -> error message for branches that failed in
            the last run()
    """

    def __init__(
        self,
        config: Optional[BuildConfig] = None,
        curated: Optional[pd.DataFrame] = None,
        fetcher: Optional[Fetcher] = None,
        normalizer: Optional[SizeFactorNormalizer] = None,
        rank_normalizer: Optional[RankNormalizer] = None,
        embedding: Optional[EmbeddingAdapter] = None,
    ):
        if curated is None:
            raise ValueError("A curated metadata table is required")
        self.config = config or BuildConfig()
        self.curated = curated
        self._fetcher = fetcher
        self.normalizer = normalizer or SizeFactorNormalizer(design=self.config.design)
        self.rank_normalizer = rank_normalizer or RankNormalizer()
        self.embedding = embedding or EmbeddingAdapter()
        self.failures: dict[str, str] = {}

    @property
    def fetcher(self) -> Fetcher:
        """Data source; the DEE2 HTTP fetcher unless one was injected."""
        if self._fetcher is None:
            self._fetcher = DEE2Fetcher()
        return self._fetcher

    def run(
        self,
        accessions: Optional[Sequence[str]] = None,
        in_data: Optional[CountDataset] = None,
        metadata: Optional[pd.DataFrame] = None,
    ) -> dict[str, PipelineOutput]:
        """
        Build every requested output.

        Args:
            accessions: Runs to fetch (default: every run in the curated table)
            in_data: Already-fetched raw runs; skips the fetcher entirely
            metadata: Already-fetched DEE2 species metadata for the fetcher

        Returns:
            Output name -> dataset (or coordinate array for "tsne"), in
            tier-then-kind order. Failed branches are absent; see failures.
        """
        self.failures = {}
        config = self.config

        if config.is_empty():
            logger.info("No output kind or quality tier requested; nothing to build")
            return {}

        if in_data is None:
            if accessions is None:
                accessions = accessions_from_curated(self.curated, RUN_ID_COLUMN)
            if metadata is None:
                metadata = self.fetcher.fetch_metadata(config.species)
            in_data = self.fetcher.fetch(config.species, list(accessions), metadata)

        logger.info(f"Input: {in_data.n_genes} genes × {in_data.n_samples} runs")
        annotated = join_curated_metadata(
            in_data, self.curated, id_column=RUN_ID_COLUMN, strict=config.strict_metadata
        )

        outputs: dict[str, PipelineOutput] = {}
        for tier in config.tiers:
            outputs.update(self._run_tier(annotated, tier))

        logger.info(
            f"Built {len(outputs)}/{len(config.output_names)} outputs"
            + (f"; failed: {sorted(self.failures)}" if self.failures else "")
        )
        return outputs

    def _run_tier(self, annotated: CountDataset, tier: QualityTier) -> dict[str, PipelineOutput]:
        config = self.config
        outputs: dict[str, PipelineOutput] = {}

        selected = filter_qc(annotated, tier)
        filtered = GeneActivityFilter(cutoff=config.counts_cutoff).apply(selected)
        logger.info(f"[{tier.key}] {filtered.n_genes} genes × {filtered.n_samples} runs after filtering")

        if config.build_raw:
            self._branch(outputs, f"{tier.key}_raw", lambda: finish_dataset(filtered))

        aggregated_kinds = [kind for kind in config.kinds if kind in AGGREGATED_KINDS]
        if not aggregated_kinds:
            return outputs

        try:
            aggregated = ExperimentAggregator(self.curated).apply(filtered)
        except BRANCH_ERRORS as e:
            for kind in aggregated_kinds:
                self._record_failure(f"{tier.key}_{kind}", e)
            return outputs

        if config.build_agg:
            self._branch(outputs, f"{tier.key}_agg", lambda: finish_dataset(aggregated))
        if config.build_deseq2:
            self._branch(
                outputs, f"{tier.key}_deseq2",
                lambda: self.normalizer.apply(finish_dataset(aggregated)),
            )
        if config.build_rank:
            # Rank calls come from the pre-rank counts
            self._branch(
                outputs, f"{tier.key}_rank",
                lambda: self.rank_normalizer.apply(finish_dataset(aggregated)),
            )
        if config.build_tsne:
            self._branch(outputs, f"{tier.key}_tsne", lambda: self.embedding.embed(aggregated))
        return outputs

    def _branch(self, outputs: dict[str, PipelineOutput], name: str, build) -> None:
        try:
            result = build()
        except BRANCH_ERRORS as e:
            self._record_failure(name, e)
            return
        outputs[name] = result
        shape = result.shape
        logger.info(f"Built {name}: {shape[0]} × {shape[1]}")

    def _record_failure(self, name: str, error: Exception) -> None:
        message = f"{type(error).__name__}: {error}"
        self.failures[name] = message
        logger.error(f"Failed to build {name}: {message}")


def output_file_bases(
    config: BuildConfig,
    name_prefix: str = DEFAULT_NAME_PREFIX,
) -> dict[str, str]:
    """
    File base name per output, e.g. qc_pass_raw -> "homosapienDEE2Data_PASS_raw".
    """
    return {
        f"{tier.key}_{kind}": f"{name_prefix}_{tier.label}_{kind}"
        for tier in config.tiers
        for kind in config.kinds
    }


def _base_for(name: str, name_prefix: str) -> str:
    tier_key, _, kind = name.rpartition('_')
    tier = QualityTier.from_key(tier_key)
    return f"{name_prefix}_{tier.label}_{kind}"


def _write_one(
    result: PipelineOutput,
    directory: Path,
    base: str,
    ext: str,
    zip: bool,
) -> Path:
    if isinstance(result, np.ndarray):
        return write_embedding(result, directory / f"{base}{ext}")
    if zip:
        return write_dataset_zip(result, directory, base=base, ext=ext)
    # One folder per output so each keeps its own manifest
    folder = directory / base
    write_dataset(result, folder, base=base, ext=ext)
    return folder


def write_outputs(
    results: dict[str, PipelineOutput],
    directory: Path,
    name_prefix: str = DEFAULT_NAME_PREFIX,
    ext: str = ".csv",
    zip: bool = False,
    workers: int = 1,
) -> dict[str, Path]:
    """
    Serialize pipeline outputs.

    Datasets are written as "<base>.zip" archives (zip=True) or as
    "<base>/" folders of CSV tables with a manifest; embedding coordinates
    are written as a single "<base>.csv". Outputs are independent, so with
    workers > 1 they are written concurrently.

    Returns:
        Output name -> written archive, folder or file path

    Raises:
        OSError: If any output fails to write (after all writes finish)
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    bases = {name: _base_for(name, name_prefix) for name in results}

    written: dict[str, Path] = {}
    errors: dict[str, Exception] = {}

    if workers > 1 and len(results) > 1:
        with ThreadPoolExecutor(max_workers=min(workers, len(results))) as executor:
            future_to_name = {
                executor.submit(_write_one, result, directory, bases[name], ext, zip): name
                for name, result in results.items()
            }
            for future in as_completed(future_to_name):
                name = future_to_name[future]
                try:
                    written[name] = future.result()
                except OSError as e:
                    errors[name] = e
                    logger.error(f"Failed to write {name}: {e}")
    else:
        for name, result in results.items():
            try:
                written[name] = _write_one(result, directory, bases[name], ext, zip)
            except OSError as e:
                errors[name] = e
                logger.error(f"Failed to write {name}: {e}")

    if errors:
        raise OSError(f"Failed to write {len(errors)} output(s): {sorted(errors)}")

    logger.info(f"Wrote {len(written)} outputs to {directory}")
    return {name: written[name] for name in results}


def build_summary(
    config: BuildConfig,
    results: dict[str, PipelineOutput],
    failures: dict[str, str],
) -> dict[str, Any]:
    """JSON-serializable record of a build: config, output shapes and failures."""
    outputs = {}
    for name, result in results.items():
        entry: dict[str, Any] = {"shape": list(result.shape)}
        if isinstance(result, CountDataset):
            entry["kind"] = "dataset"
            entry["samples"] = [str(s) for s in result.sample_ids[:5]]
        else:
            entry["kind"] = "embedding"
        outputs[name] = entry
    return {
        "config": config.to_dict(),
        "outputs": outputs,
        "failures": dict(failures),
    }
