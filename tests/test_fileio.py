"""
Tests for atomic table and summary writes.
"""

import json

import pandas as pd
import pytest

from dee2cellscore.utils.fileio import atomic_write_csv, atomic_write_json


def test_json_written(tmp_path):
    path = tmp_path / "summary.json"
    atomic_write_json(path, {"outputs": ["qc_pass_rank"], "failures": {}})

    assert json.loads(path.read_text()) == {"outputs": ["qc_pass_rank"], "failures": {}}
    assert [p.name for p in tmp_path.iterdir()] == ["summary.json"]


def test_csv_written(tmp_path):
    path = tmp_path / "counts.csv"
    atomic_write_csv(path, pd.DataFrame({"S0": [1, 2]}, index=["G0", "G1"]), index_label="")

    assert path.read_text().splitlines() == [",S0", "G0,1", "G1,2"]


def test_failed_write_keeps_previous_file(tmp_path):
    path = tmp_path / "summary.json"
    path.write_text('{"previous": true}')

    with pytest.raises(TypeError):
        atomic_write_json(path, {"unserializable": object()})

    assert json.loads(path.read_text()) == {"previous": True}
    assert [p.name for p in tmp_path.iterdir()] == ["summary.json"]
