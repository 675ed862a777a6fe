"""
Atomic file writes for dataset outputs.

Each writer serializes into a temporary file next to the destination and
moves it into place with ``os.replace()``, so an interrupted build never
leaves a half-written table, manifest or summary behind.
"""

from __future__ import annotations

import json
import os
import tempfile
from typing import Any, Callable, IO

import pandas as pd


def _replace_atomically(path: str | os.PathLike, write: Callable[[IO[str]], None]) -> None:
    directory = os.path.dirname(os.fspath(path)) or "."
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", newline="") as handle:
            write(handle)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write a JSON-serializable object to *path* atomically."""
    _replace_atomically(path, lambda handle: json.dump(data, handle, indent=indent))


def atomic_write_csv(path: str | os.PathLike, frame: pd.DataFrame, **to_csv_kwargs: Any) -> None:
    """Write a DataFrame as CSV atomically.

    Keyword arguments are passed to ``DataFrame.to_csv``.
    """
    _replace_atomically(path, lambda handle: frame.to_csv(handle, **to_csv_kwargs))
