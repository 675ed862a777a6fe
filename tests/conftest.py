"""
Pytest configuration and shared fixtures.

This module provides synthetic DEE2-shaped datasets and curated metadata
tables shared by all test suites.
"""

import numpy as np
import pandas as pd
import pytest

from dee2cellscore.core.dataset import CountDataset


GENE_IDS = [
    "ENSG00000000003",
    "ENSG00000000005",
    "ENSG00000000419",
    "ENSG00000000457",
    "ENSG00000000460",
]

# genes x runs; ENSG00000000005 is never expressed
SMALL_COUNTS = np.array([
    [10, 20, 5],
    [0, 0, 0],
    [3, 0, 7],
    [100, 50, 80],
    [1, 2, 0],
])

SMALL_RUNS = ["SRR001", "SRR002", "SRR003"]


def make_runs(counts, run_ids, gene_ids=None) -> CountDataset:
    """Raw run dataset as a fetcher returns it: run IDs only in column metadata."""
    counts = np.asarray(counts)
    if gene_ids is None:
        gene_ids = [f"ENSG{i:011d}" for i in range(counts.shape[0])]
    return CountDataset(
        counts=counts,
        row_metadata=pd.DataFrame(index=pd.Index(gene_ids)),
        col_metadata=pd.DataFrame({"SRR_accession": run_ids}, index=pd.Index(run_ids)),
    )


def make_curated(rows) -> pd.DataFrame:
    """Curated table from (run, experiment, qc_summary, cell_type) tuples."""
    return pd.DataFrame(
        rows,
        columns=["SRR_accession", "SRX_accession", "QC_summary", "cell_type"],
    )


def generate_run_counts(
    n_genes: int,
    n_runs: int,
    zero_fraction: float = 0.2,
    seed: int = 42,
) -> CountDataset:
    """
    Random negative-binomial-like counts with some zeros.

    Args:
        n_genes: Number of genes
        n_runs: Number of runs
        zero_fraction: Fraction of entries forced to zero
        seed: Random seed for reproducibility
    """
    rng = np.random.RandomState(seed)
    means = rng.lognormal(mean=3, sigma=1.5, size=(n_genes, 1))
    library = rng.uniform(0.5, 2.0, size=(1, n_runs))
    counts = rng.poisson(means * library)
    counts[rng.rand(n_genes, n_runs) < zero_fraction] = 0
    run_ids = [f"SRR{1000 + j}" for j in range(n_runs)]
    return make_runs(counts, run_ids)


@pytest.fixture
def small_runs():
    """Three runs, five genes."""
    return make_runs(SMALL_COUNTS, SMALL_RUNS, GENE_IDS)


@pytest.fixture
def small_curated():
    """
    Curated table for small_runs.

    SRR001 and SRR002 belong to SRX01, SRR003 to SRX02. SRR002 has a QC
    warning. SRR001 appears twice (first row wins) and SRR999 is not in the
    data.
    """
    return make_curated([
        ("SRR001", "SRX01", "PASS", "fibroblast"),
        ("SRR002", "SRX01", "WARN(3,4)", "fibroblast"),
        ("SRR001", "SRX01", "PASS", "duplicate-row"),
        ("SRR003", "SRX02", "PASS", "iPSC"),
        ("SRR999", "SRX99", "FAIL(1)", "hepatocyte"),
    ])


@pytest.fixture
def all_pass_curated():
    """Curated table with every small run passing QC."""
    return make_curated([
        ("SRR001", "SRX01", "PASS", "fibroblast"),
        ("SRR002", "SRX01", "PASS", "fibroblast"),
        ("SRR003", "SRX02", "PASS", "iPSC"),
    ])


@pytest.fixture
def random_runs():
    """Larger random run dataset (200 genes x 12 runs)."""
    return generate_run_counts(200, 12, zero_fraction=0.05)


@pytest.fixture
def random_curated(random_runs):
    """Curated table for random_runs: pairs of runs per experiment, every 4th run warns."""
    rows = []
    for j, run in enumerate(random_runs.sample_ids):
        qc = "WARN(2)" if j % 4 == 3 else "PASS"
        rows.append((run, f"SRX{j // 2:03d}", qc, "fibroblast" if j < 6 else "neuron"))
    return make_curated(rows)
