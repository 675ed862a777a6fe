"""Utility modules for dataset building."""

from dee2cellscore.utils.fileio import (
    atomic_write_csv,
    atomic_write_json,
)

__all__ = [
    # Atomic file-write utilities
    'atomic_write_csv',
    'atomic_write_json',
]
