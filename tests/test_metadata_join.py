"""
Tests for curated metadata loading and the metadata join.
"""

import warnings

import pandas as pd
import pytest

from dee2cellscore.core.errors import MetadataKeyMissing, MetadataKeyMissingWarning
from dee2cellscore.io.metadata import (
    CuratedMetadataJoin,
    accessions_from_curated,
    dedupe_curated,
    join_curated_metadata,
    load_curated_metadata,
)

from conftest import make_runs


class TestLoadCuratedMetadata:
    """Reading the curated CSV."""

    def test_load(self, tmp_path, small_curated):
        path = tmp_path / "curated.csv"
        small_curated.to_csv(path, index=False)

        curated = load_curated_metadata(path)

        assert len(curated) == 5
        assert curated["SRR_accession"].tolist()[:2] == ["SRR001", "SRR002"]

    def test_accessions_read_as_strings(self, tmp_path):
        path = tmp_path / "curated.csv"
        pd.DataFrame({
            "SRR_accession": ["001", "002"],
            "SRX_accession": ["10", "10"],
            "QC_summary": ["PASS", "PASS"],
        }).to_csv(path, index=False)

        curated = load_curated_metadata(path)

        assert curated["SRR_accession"].tolist() == ["001", "002"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Curated metadata not found"):
            load_curated_metadata(tmp_path / "absent.csv")

    def test_missing_required_column(self, tmp_path):
        path = tmp_path / "curated.csv"
        pd.DataFrame({"SRR_accession": ["SRR1"], "QC_summary": ["PASS"]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="SRX_accession"):
            load_curated_metadata(path)

    def test_accessions_unique_in_table_order(self, small_curated):
        assert accessions_from_curated(small_curated) == ["SRR001", "SRR002", "SRR003", "SRR999"]


class TestDedupeCurated:
    def test_first_row_wins(self, small_curated):
        deduped = dedupe_curated(small_curated, "SRR_accession")
        assert deduped.loc["SRR001", "cell_type"] == "fibroblast"
        assert deduped.index.is_unique
        assert "SRR_accession" in deduped.columns


class TestCuratedMetadataJoin:
    """Join semantics: restrict, dedupe, reindex to column order."""

    def test_join_in_column_order(self, small_curated):
        runs = make_runs([[1, 2, 3]], ["SRR003", "SRR001", "SRR002"], gene_ids=["G0"])

        joined = join_curated_metadata(runs, small_curated)

        assert joined.sample_ids.tolist() == ["SRR003", "SRR001", "SRR002"]
        assert joined.col_metadata["SRX_accession"].tolist() == ["SRX02", "SRX01", "SRX01"]
        assert joined.col_metadata["QC_summary"].tolist() == ["PASS", "PASS", "WARN(3,4)"]

    def test_duplicate_curated_rows_first_wins(self, small_runs, small_curated):
        joined = join_curated_metadata(small_runs, small_curated)
        assert joined.col_metadata.loc["SRR001", "cell_type"] == "fibroblast"

    def test_curated_rows_outside_data_ignored(self, small_runs, small_curated):
        joined = join_curated_metadata(small_runs, small_curated)
        assert "SRR999" not in joined.sample_ids
        assert len(joined.col_metadata) == 3

    def test_counts_unchanged(self, small_runs, small_curated):
        joined = join_curated_metadata(small_runs, small_curated)
        assert (joined.counts == small_runs.counts).all()
        assert joined.gene_ids.equals(small_runs.gene_ids)

    def test_missing_run_warns_and_keeps_empty_fields(self, small_curated):
        runs = make_runs([[1, 2]], ["SRR001", "SRR404"], gene_ids=["G0"])

        with pytest.warns(MetadataKeyMissingWarning, match="SRR404"):
            joined = join_curated_metadata(runs, small_curated)

        assert joined.sample_ids.tolist() == ["SRR001", "SRR404"]
        assert joined.col_metadata.loc["SRR404", "SRR_accession"] == "SRR404"
        assert pd.isna(joined.col_metadata.loc["SRR404", "QC_summary"])

    def test_missing_run_strict_raises(self, small_curated):
        runs = make_runs([[1, 2]], ["SRR001", "SRR404"], gene_ids=["G0"])

        with pytest.raises(MetadataKeyMissing) as excinfo:
            join_curated_metadata(runs, small_curated, strict=True)

        assert excinfo.value.missing == ["SRR404"]
        assert "SRR404" in str(excinfo.value)

    def test_no_warning_when_complete(self, small_runs, small_curated):
        with warnings.catch_warnings():
            warnings.simplefilter("error", MetadataKeyMissingWarning)
            join_curated_metadata(small_runs, small_curated)

    def test_summary(self, small_runs, small_curated):
        joiner = CuratedMetadataJoin(small_curated)
        joiner.join(small_runs)

        summary = joiner.summary
        assert summary.n_samples == 3
        assert summary.n_matched == 3
        assert summary.n_curated_duplicates == 1
        assert summary.match_rate == 1.0

    def test_unknown_id_column(self, small_curated):
        with pytest.raises(ValueError, match="Identifier column"):
            CuratedMetadataJoin(small_curated, id_column="run")
