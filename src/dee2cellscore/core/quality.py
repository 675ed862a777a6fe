"""
Quality-control status and tier definitions.

DEE2 assigns every run a QC summary string. The base severities are
PASS, WARN and FAIL; DEE2 appends package-specific details after the
severity (e.g. "WARN(3,4)"), so membership is decided by prefix rather than
by equality.

Tiers are the two inclusion policies every output kind is generated under:

    QualityTier.PASS          runs whose status starts with "PASS"
    QualityTier.PASS_OR_WARN  runs whose status starts with "PASS" or "WARN"

Examples:
    >>> from dee2cellscore.core.quality import QCStatus, QualityTier
    >>> QCStatus.from_summary("WARN(3,4)")
    <QCStatus.WARN: 'WARN'>
    >>> QualityTier.PASS_OR_WARN.accepts("WARN(3,4)")
    True
    >>> QualityTier.PASS.accepts("WARN(3,4)")
    False
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

__all__ = ['QCStatus', 'QualityTier']


class QCStatus(str, Enum):
    """Base severity of a DEE2 QC summary."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"

    @classmethod
    def from_summary(cls, summary: object) -> Optional[QCStatus]:
        """
        Parse the severity prefix of a QC summary.

        Returns None for missing values or unrecognised prefixes.
        """
        if not isinstance(summary, str):
            return None
        for status in cls:
            if summary.startswith(status.value):
                return status
        return None


class QualityTier(Enum):
    """Quality inclusion policy used to select runs for an output."""

    PASS = ("qc_pass", "PASS", (QCStatus.PASS,))
    PASS_OR_WARN = ("qc_warn", "WARN", (QCStatus.PASS, QCStatus.WARN))

    def __init__(self, key: str, label: str, statuses: tuple[QCStatus, ...]):
        self.key = key
        self.label = label
        self.statuses = statuses

    def accepts(self, summary: object) -> bool:
        """True if a QC summary string is included in this tier."""
        return QCStatus.from_summary(summary) in self.statuses

    @classmethod
    def from_key(cls, key: str) -> QualityTier:
        for tier in cls:
            if tier.key == key:
                return tier
        raise ValueError(f"Unknown quality tier: {key!r}")
