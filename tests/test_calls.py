"""
Tests for presence/absence calls and probe identifiers.
"""

import numpy as np

from dee2cellscore.stats.calls import (
    annotate_probe_ids,
    compute_calls,
    derive_calls,
    finish_dataset,
)


class TestCalls:
    def test_any_positive_count_is_a_call(self, small_runs):
        calls = derive_calls(small_runs).calls
        np.testing.assert_array_equal(calls, (small_runs.counts > 0).astype(int))
        assert set(np.unique(calls)) <= {0, 1}

    def test_threshold(self):
        np.testing.assert_array_equal(
            compute_calls(np.array([[0, 1, 2, 3]]), threshold=1),
            [[0, 0, 1, 1]],
        )

    def test_idempotent(self, small_runs):
        once = derive_calls(small_runs)
        twice = derive_calls(once)
        np.testing.assert_array_equal(once.calls, twice.calls)

    def test_counts_unchanged(self, small_runs):
        called = derive_calls(small_runs)
        np.testing.assert_array_equal(called.counts, small_runs.counts)
        assert small_runs.calls is None


class TestProbeIds:
    def test_probe_and_feature_ids_equal_gene_ids(self, small_runs):
        annotated = annotate_probe_ids(small_runs)
        genes = small_runs.gene_ids.tolist()
        assert annotated.row_metadata["probe_id"].tolist() == genes
        assert annotated.row_metadata["feature_id"].tolist() == genes

    def test_idempotent(self, small_runs):
        once = annotate_probe_ids(small_runs)
        twice = annotate_probe_ids(once)
        assert list(twice.row_metadata.columns) == ["probe_id", "feature_id"]
        assert twice.row_metadata.equals(once.row_metadata)

    def test_input_row_metadata_untouched(self, small_runs):
        annotate_probe_ids(small_runs)
        assert list(small_runs.row_metadata.columns) == []


class TestFinishDataset:
    def test_adds_both(self, small_runs):
        finished = finish_dataset(small_runs)
        assert finished.calls is not None
        assert "probe_id" in finished.row_metadata.columns
