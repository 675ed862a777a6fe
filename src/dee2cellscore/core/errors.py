"""
Error taxonomy for dataset construction and pipeline transforms.

Structural errors (ShapeMismatch, InconsistentGrouping) abort the single
output branch in which they occur. Missing curated metadata is recoverable
by default and surfaces as MetadataKeyMissingWarning; MetadataKeyMissing is
raised only when a caller asks for strict joins.

Empty filter results are not errors: an empty CountDataset is a valid
value and is passed downstream until a stage that cannot handle it raises
a ValueError of its own.
"""

from __future__ import annotations

__all__ = [
    'DatasetError',
    'ShapeMismatch',
    'MetadataKeyMissing',
    'MetadataKeyMissingWarning',
    'InconsistentGrouping',
]


class DatasetError(Exception):
    """Base class for all dataset structure errors."""


class ShapeMismatch(DatasetError, ValueError):
    """Row or column identifiers disagree between operands expected to align."""


class MetadataKeyMissing(DatasetError, KeyError):
    """
    A sample has no curated metadata row.

    Attributes:
        missing: Identifiers that could not be matched
    """

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        preview = ", ".join(self.missing[:5])
        if len(self.missing) > 5:
            preview += ", ..."
        super().__init__(
            f"{len(self.missing)} sample(s) have no curated metadata: {preview}"
        )

    def __str__(self) -> str:
        # KeyError quotes its message by default
        return self.args[0]


class MetadataKeyMissingWarning(UserWarning):
    """Curated metadata was missing for some samples; their fields are left empty."""


class InconsistentGrouping(DatasetError, ValueError):
    """A run cannot be assigned to an experiment (missing aggregation key)."""
