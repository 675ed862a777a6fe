"""
Named catalogue of published dataset archives.

The eight canonical outputs of a full human build are published as zip
archives (one per quality tier and processing kind). A resolver maps a
catalogue name to a local archive path: either a directory that already
holds the archives, or a base URL from which archives are downloaded into a
local cache.

Examples:
    >>> from dee2cellscore.io.catalogue import DirectoryResolver, download_all
    >>>
    >>> datasets = download_all(DirectoryResolver(Path("archives")))
    >>> datasets["HomosapienDEE2_QC_PASS_Rank"].shape
"""

from __future__ import annotations

import logging
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from dee2cellscore.core.dataset import CountDataset
from dee2cellscore.core.quality import QualityTier
from dee2cellscore.io.loaders import read_dataset_zip

logger = logging.getLogger(__name__)

__all__ = [
    'CatalogueEntry',
    'CATALOGUE',
    'CATALOGUE_NAMES',
    'Resolver',
    'DirectoryResolver',
    'URLResolver',
    'download_all',
]

DEFAULT_NAME_PREFIX = "homosapienDEE2Data"


@dataclass(frozen=True)
class CatalogueEntry:
    """
    One published archive.

    Attributes:
        name: Catalogue name, e.g. "HomosapienDEE2_QC_PASS_Rank"
        tier: Quality tier the archive was built from
        kind: Processing kind ("raw", "agg", "deseq2", "rank")
        description: Human-readable summary
    """

    name: str
    tier: QualityTier
    kind: str
    description: str

    @property
    def archive_name(self) -> str:
        """Archive file name, e.g. "homosapienDEE2Data_PASS_rank.zip"."""
        return f"{DEFAULT_NAME_PREFIX}_{self.tier.label}_{self.kind}.zip"


_KIND_TITLES = {
    'raw': ("Raw", "Raw data"),
    'agg': ("Agg", "Aggregated data"),
    'deseq2': ("Deseq2", "DESeq2 normalised data"),
    'rank': ("Rank", "Rank normalised data"),
}
_TIER_DESCRIPTIONS = {
    QualityTier.PASS: "without any quality control warnings",
    QualityTier.PASS_OR_WARN: "including data that has quality control warnings",
}


def _build_catalogue() -> dict[str, CatalogueEntry]:
    entries = {}
    for tier in (QualityTier.PASS, QualityTier.PASS_OR_WARN):
        for kind, (title, summary) in _KIND_TITLES.items():
            name = f"HomosapienDEE2_QC_{tier.label}_{title}"
            entries[name] = CatalogueEntry(
                name=name,
                tier=tier,
                kind=kind,
                description=f"{summary} {_TIER_DESCRIPTIONS[tier]}",
            )
    return entries


CATALOGUE: dict[str, CatalogueEntry] = _build_catalogue()
CATALOGUE_NAMES: list[str] = list(CATALOGUE)


class Resolver(ABC):
    """Maps a catalogue entry to a local archive path."""

    @abstractmethod
    def resolve(self, entry: CatalogueEntry) -> Path:
        """Return the local path of the entry's archive."""
        pass


class DirectoryResolver(Resolver):
    """Archives already present in a local directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def resolve(self, entry: CatalogueEntry) -> Path:
        path = self.directory / entry.archive_name
        if not path.exists():
            raise FileNotFoundError(f"Archive for {entry.name} not found: {path}")
        return path


class URLResolver(Resolver):
    """
    Archives downloaded from a base URL into a local cache.

    Archives already in the cache are not downloaded again.

    Args:
        base_url: URL prefix; the archive name is appended
        cache_dir: Download directory
            Default: ~/.cache/dee2cellscore/archives/
    """

    def __init__(self, base_url: str, cache_dir: Optional[Path] = None):
        if cache_dir is None:
            cache_dir = Path.home() / '.cache' / 'dee2cellscore' / 'archives'
        cache_dir = Path(cache_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)

        self.base_url = base_url.rstrip('/')
        self.cache_dir = cache_dir

    def resolve(self, entry: CatalogueEntry) -> Path:
        cached_path = self.cache_dir / entry.archive_name
        if cached_path.exists():
            return cached_path

        url = f"{self.base_url}/{entry.archive_name}"
        logger.info(f"Downloading {entry.name} from {url}")
        partial = cached_path.with_suffix(cached_path.suffix + ".part")
        try:
            urllib.request.urlretrieve(url, partial)
            partial.replace(cached_path)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        logger.info(f"Downloaded to {cached_path}")
        return cached_path


def download_all(
    resolver: Resolver,
    names: Optional[Iterable[str]] = None,
) -> dict[str, CountDataset]:
    """
    Resolve and read catalogue archives.

    Args:
        resolver: Supplies a local path per entry
        names: Catalogue names to fetch (default: all eight)

    Returns:
        Mapping of catalogue name to dataset, in the order requested

    Raises:
        KeyError: If a name is not in the catalogue
    """
    selected = CATALOGUE_NAMES if names is None else list(names)
    unknown = [n for n in selected if n not in CATALOGUE]
    if unknown:
        raise KeyError(f"Unknown catalogue names: {unknown}. Available: {CATALOGUE_NAMES}")

    datasets = {}
    for name in selected:
        entry = CATALOGUE[name]
        datasets[name] = read_dataset_zip(resolver.resolve(entry))
        logger.info(f"Loaded {name}: {datasets[name].n_genes} genes × {datasets[name].n_samples} samples")
    return datasets
