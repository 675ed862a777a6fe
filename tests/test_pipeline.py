"""
End-to-end tests for the build pipeline and output writing.
"""

from unittest.mock import Mock

import numpy as np
import pandas as pd
import pytest

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.core.errors import MetadataKeyMissing, MetadataKeyMissingWarning
from dee2cellscore.io.loaders import read_dataset_folder, read_dataset_zip
from dee2cellscore.pipeline import (
    BuildConfig,
    Pipeline,
    build_summary,
    output_file_bases,
    write_outputs,
)
from dee2cellscore.stats.aggregation import PROVENANCE_COLUMN
from dee2cellscore.stats.embedding import EmbeddingAdapter

from conftest import make_curated


def first_two_genes(samples):
    return samples[:, :2].astype(float)


ALL_KINDS = dict(build_raw=True, build_agg=True, build_deseq2=True, build_rank=True, build_tsne=True)


@pytest.fixture
def fake_embedding():
    return EmbeddingAdapter(embedder=first_two_genes)


class TestBuildConfig:
    def test_defaults(self):
        config = BuildConfig()
        assert config.kinds == ["deseq2", "rank", "tsne"]
        assert [t.key for t in config.tiers] == ["qc_pass", "qc_warn"]
        assert config.counts_cutoff == 10

    def test_output_names(self):
        config = BuildConfig(build_raw=True, build_deseq2=False, build_tsne=False, generate_qc_warn=False)
        assert config.output_names == ["qc_pass_raw", "qc_pass_rank"]

    def test_empty(self):
        assert BuildConfig(generate_qc_pass=False, generate_qc_warn=False).is_empty()
        assert BuildConfig(build_deseq2=False, build_rank=False, build_tsne=False).is_empty()
        assert not BuildConfig().is_empty()

    def test_from_dict_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown build options"):
            BuildConfig.from_dict({"build_raw": True, "build_everything": True})

    def test_dict_round_trip(self):
        config = BuildConfig(build_raw=True, counts_cutoff=0)
        assert BuildConfig.from_dict(config.to_dict()) == config

    def test_file_bases(self):
        config = BuildConfig(build_raw=True, build_deseq2=False, build_rank=False, build_tsne=False)
        assert output_file_bases(config) == {
            "qc_pass_raw": "homosapienDEE2Data_PASS_raw",
            "qc_warn_raw": "homosapienDEE2Data_WARN_raw",
        }


class TestPipelineRun:
    """Branches built from in-memory input."""

    def test_all_kinds(self, small_runs, all_pass_curated, fake_embedding):
        config = BuildConfig(**ALL_KINDS, counts_cutoff=0, generate_qc_warn=False)
        pipeline = Pipeline(config, all_pass_curated, embedding=fake_embedding)

        outputs = pipeline.run(in_data=small_runs)

        assert list(outputs) == ["qc_pass_raw", "qc_pass_agg", "qc_pass_deseq2", "qc_pass_rank", "qc_pass_tsne"]
        assert pipeline.failures == {}

        raw = outputs["qc_pass_raw"]
        assert raw.shape == (4, 3)
        assert "ENSG00000000005" not in raw.gene_ids
        assert raw.row_metadata["probe_id"].tolist() == raw.gene_ids.tolist()

        agg = outputs["qc_pass_agg"]
        assert agg.sample_ids.tolist() == ["SRX01", "SRX02"]
        assert agg.col_metadata[PROVENANCE_COLUMN].tolist() == ["SRR001 SRR002", "SRR003"]
        np.testing.assert_array_equal(agg.calls, (agg.counts > 0).astype(int))

        deseq2 = outputs["qc_pass_deseq2"]
        np.testing.assert_array_equal(deseq2.calls, agg.calls)
        assert deseq2.shape == agg.shape

        rank = outputs["qc_pass_rank"]
        np.testing.assert_array_equal(rank.calls, agg.calls)
        assert rank.counts.max() <= 1

        assert outputs["qc_pass_tsne"].shape == (2, 2)

    def test_tiers_differ(self, small_runs, small_curated):
        config = BuildConfig(build_raw=True, build_deseq2=False, build_rank=False, build_tsne=False, counts_cutoff=0)

        outputs = Pipeline(config, small_curated).run(in_data=small_runs)

        assert outputs["qc_pass_raw"].sample_ids.tolist() == ["SRR001", "SRR003"]
        assert outputs["qc_warn_raw"].sample_ids.tolist() == ["SRR001", "SRR002", "SRR003"]

    def test_default_tsne_needs_three_experiments(self, small_runs, all_pass_curated):
        config = BuildConfig(build_deseq2=False, build_rank=False, counts_cutoff=0, generate_qc_warn=False)
        pipeline = Pipeline(config, all_pass_curated)

        outputs = pipeline.run(in_data=small_runs)

        assert outputs == {}
        assert "at least 3" in pipeline.failures["qc_pass_tsne"]

    def test_nothing_requested_never_fetches(self, all_pass_curated):
        fetcher = Mock()
        config = BuildConfig(build_deseq2=False, build_rank=False, build_tsne=False)

        assert Pipeline(config, all_pass_curated, fetcher=fetcher).run() == {}
        fetcher.fetch.assert_not_called()
        fetcher.fetch_metadata.assert_not_called()

    def test_fetches_curated_accessions(self, small_runs, all_pass_curated):
        species_metadata = pd.DataFrame({"SRR_accession": ["SRR001", "SRR002", "SRR003"]})
        fetcher = Mock()
        fetcher.fetch_metadata.return_value = species_metadata
        fetcher.fetch.return_value = small_runs
        config = BuildConfig(build_raw=True, build_deseq2=False, build_rank=False, build_tsne=False)

        outputs = Pipeline(config, all_pass_curated, fetcher=fetcher).run()

        fetcher.fetch_metadata.assert_called_once_with("hsapiens")
        fetcher.fetch.assert_called_once_with("hsapiens", ["SRR001", "SRR002", "SRR003"], species_metadata)
        assert set(outputs) == {"qc_pass_raw", "qc_warn_raw"}

    def test_explicit_accessions_and_metadata(self, small_runs, all_pass_curated):
        fetcher = Mock()
        fetcher.fetch.return_value = small_runs
        metadata = pd.DataFrame({"SRR_accession": ["SRR001"]})
        config = BuildConfig(build_raw=True, build_deseq2=False, build_rank=False, build_tsne=False)

        Pipeline(config, all_pass_curated, fetcher=fetcher).run(accessions=["SRR001"], metadata=metadata)

        fetcher.fetch_metadata.assert_not_called()
        fetcher.fetch.assert_called_once_with("hsapiens", ["SRR001"], metadata)

    def test_curated_required(self):
        with pytest.raises(ValueError, match="curated"):
            Pipeline(BuildConfig())


class TestBranchIsolation:
    def test_grouping_failure_spares_raw(self, small_runs, fake_embedding):
        curated = make_curated([
            ("SRR001", "SRX01", "PASS", "fibroblast"),
            ("SRR002", None, "PASS", "fibroblast"),
            ("SRR003", "SRX02", "PASS", "iPSC"),
        ])
        config = BuildConfig(**ALL_KINDS, counts_cutoff=0, generate_qc_warn=False)
        pipeline = Pipeline(config, curated, embedding=fake_embedding)

        outputs = pipeline.run(in_data=small_runs)

        assert list(outputs) == ["qc_pass_raw"]
        assert sorted(pipeline.failures) == [
            "qc_pass_agg", "qc_pass_deseq2", "qc_pass_rank", "qc_pass_tsne",
        ]
        assert pipeline.failures["qc_pass_agg"].startswith("InconsistentGrouping")

    def test_normalizer_failure_spares_siblings(self, small_runs, all_pass_curated, fake_embedding):
        normalizer = Mock()
        normalizer.apply.side_effect = ValueError("size factors failed")
        config = BuildConfig(**ALL_KINDS, counts_cutoff=0, generate_qc_warn=False)
        pipeline = Pipeline(config, all_pass_curated, normalizer=normalizer, embedding=fake_embedding)

        outputs = pipeline.run(in_data=small_runs)

        assert "qc_pass_deseq2" not in outputs
        assert {"qc_pass_raw", "qc_pass_agg", "qc_pass_rank", "qc_pass_tsne"} <= set(outputs)
        assert pipeline.failures == {"qc_pass_deseq2": "ValueError: size factors failed"}

    def test_missing_metadata_warns(self, small_runs):
        curated = make_curated([
            ("SRR001", "SRX01", "PASS", "fibroblast"),
            ("SRR002", "SRX01", "PASS", "fibroblast"),
        ])
        config = BuildConfig(build_raw=True, build_deseq2=False, build_rank=False, build_tsne=False, counts_cutoff=0)

        with pytest.warns(MetadataKeyMissingWarning, match="SRR003"):
            outputs = Pipeline(config, curated).run(in_data=small_runs)

        # no QC status, so SRR003 is in neither tier
        assert outputs["qc_warn_raw"].sample_ids.tolist() == ["SRR001", "SRR002"]

    def test_strict_metadata_aborts(self, small_runs):
        curated = make_curated([("SRR001", "SRX01", "PASS", "fibroblast")])
        config = BuildConfig(build_raw=True, strict_metadata=True)

        with pytest.raises(MetadataKeyMissing):
            Pipeline(config, curated).run(in_data=small_runs)


class TestWriteOutputs:
    @pytest.fixture
    def outputs(self, small_runs, all_pass_curated, fake_embedding):
        config = BuildConfig(build_raw=True, build_deseq2=False, counts_cutoff=0, generate_qc_warn=False)
        return Pipeline(config, all_pass_curated, embedding=fake_embedding).run(in_data=small_runs)

    def test_folders(self, outputs, tmp_path):
        written = write_outputs(outputs, tmp_path)

        assert written["qc_pass_raw"] == tmp_path / "homosapienDEE2Data_PASS_raw"
        assert written["qc_pass_tsne"] == tmp_path / "homosapienDEE2Data_PASS_tsne.csv"
        raw = read_dataset_folder(written["qc_pass_raw"])
        np.testing.assert_array_equal(raw.counts, outputs["qc_pass_raw"].counts)
        tsne = pd.read_csv(written["qc_pass_tsne"], index_col=0)
        assert list(tsne.columns) == ["V1", "V2"]

    def test_zip(self, outputs, tmp_path):
        written = write_outputs(outputs, tmp_path, name_prefix="test", zip=True)

        assert written["qc_pass_rank"] == tmp_path / "test_PASS_rank.zip"
        rank = read_dataset_zip(written["qc_pass_rank"])
        np.testing.assert_allclose(rank.counts, outputs["qc_pass_rank"].counts)

    def test_concurrent(self, outputs, tmp_path):
        written = write_outputs(outputs, tmp_path, zip=True, workers=3)

        assert list(written) == list(outputs)
        assert all(path.exists() for path in written.values())

    def test_dataset_without_calls_fails(self, small_runs, tmp_path):
        with pytest.raises(ValueError, match="no calls"):
            write_outputs({"qc_pass_raw": small_runs}, tmp_path)

    def test_summary(self, outputs):
        summary = build_summary(BuildConfig(), outputs, {"qc_warn_rank": "ValueError: boom"})

        assert summary["outputs"]["qc_pass_raw"]["kind"] == "dataset"
        assert summary["outputs"]["qc_pass_tsne"] == {"shape": [2, 2], "kind": "embedding"}
        assert summary["failures"] == {"qc_warn_rank": "ValueError: boom"}
        assert isinstance(outputs["qc_pass_raw"], CountDataset)
