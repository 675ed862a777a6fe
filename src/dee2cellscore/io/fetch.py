"""
Fetching per-run gene counts and run metadata from DEE2.

The pipeline depends only on the Fetcher interface; DEE2Fetcher is the
concrete HTTP implementation against the public dee2.io endpoints:

    Metadata:  https://dee2.io/metadata/<species>_metadata.tsv.cut
    Counts:    https://dee2.io/cgi-bin/request.sh?org=<species>&x=SRR1&x=SRR2...

The counts endpoint returns a zip bundle holding GeneCountMatrix.tsv (genes
as rows, runs as columns, gene ID in the first column) and, when available,
GeneInfo.tsv with per-gene annotations.

Accessions missing from the species metadata are not requested; they are
dropped with a warning. Requests are sent in batches and the per-batch
matrices are concatenated column-wise in request order. Failed downloads
are not retried.

Examples:
    >>> from dee2cellscore.io.fetch import DEE2Fetcher
    >>>
    >>> fetcher = DEE2Fetcher(batch_size=50)
    >>> metadata = fetcher.fetch_metadata("hsapiens")
    >>> raw = fetcher.fetch("hsapiens", ["SRR1043440", "SRR1043441"], metadata)
"""

from __future__ import annotations

import io
import logging
import urllib.error
import urllib.parse
import urllib.request
import warnings
import zipfile
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import pandas as pd

from dee2cellscore.core.dataset import CountDataset, concat_columns
from dee2cellscore.io.metadata import RUN_ID_COLUMN

logger = logging.getLogger(__name__)

__all__ = ['Fetcher', 'DEE2Fetcher', 'DEE2_SPECIES', 'DEE2_BASE_URL']

DEE2_BASE_URL = "https://dee2.io"

DEE2_SPECIES = (
    "athaliana",
    "celegans",
    "dmelanogaster",
    "drerio",
    "ecoli",
    "hsapiens",
    "mmusculus",
    "rnorvegicus",
    "scerevisiae",
)

COUNTS_MEMBER = "GeneCountMatrix.tsv"
GENE_INFO_MEMBER = "GeneInfo.tsv"


class Fetcher(ABC):
    """
    Source of raw per-run count datasets.

    Implementations return a CountDataset whose columns are runs (indexed by
    run accession) and whose rows are genes.
    """

    @abstractmethod
    def fetch(
        self,
        species: str,
        accessions: Sequence[str],
        metadata: Optional[pd.DataFrame] = None,
    ) -> CountDataset:
        """
        Fetch raw counts for the given runs.

        Args:
            species: Species name as used by the source
            accessions: Run accessions, in the desired column order
            metadata: Previously fetched species metadata (fetched if None)
        """
        pass

    @abstractmethod
    def fetch_metadata(self, species: str) -> pd.DataFrame:
        """Fetch per-run metadata for a species."""
        pass


class DEE2Fetcher(Fetcher):
    """
    HTTP fetcher for the DEE2 (Digital Expression Explorer 2) service.

    Args:
        base_url: Service root (default https://dee2.io)
        batch_size: Accessions per counts request
        timeout: Socket timeout in seconds per request
    """

    def __init__(
        self,
        base_url: str = DEE2_BASE_URL,
        batch_size: int = 50,
        timeout: float = 300.0,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.base_url = base_url.rstrip('/')
        self.batch_size = batch_size
        self.timeout = timeout

    def _download(self, url: str) -> bytes:
        """GET a URL and return the response body."""
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as response:
                return response.read()
        except urllib.error.URLError as e:
            raise OSError(f"Failed to download {url}: {e}") from e

    @staticmethod
    def _check_species(species: str) -> None:
        if species not in DEE2_SPECIES:
            raise ValueError(
                f"Unknown DEE2 species: {species!r}. Supported: {', '.join(DEE2_SPECIES)}"
            )

    def metadata_url(self, species: str) -> str:
        return f"{self.base_url}/metadata/{species}_metadata.tsv.cut"

    def counts_url(self, species: str, accessions: Sequence[str]) -> str:
        query = urllib.parse.urlencode([("org", species)] + [("x", a) for a in accessions])
        return f"{self.base_url}/cgi-bin/request.sh?{query}"

    def fetch_metadata(self, species: str) -> pd.DataFrame:
        """
        Download the per-run metadata table for a species.

        Raises:
            ValueError: If the species is unknown or the table lacks the run
                accession column
            OSError: If the download fails
        """
        self._check_species(species)
        url = self.metadata_url(species)
        logger.info(f"Fetching DEE2 metadata for {species}")

        metadata = pd.read_csv(io.BytesIO(self._download(url)), sep="\t", dtype=str)
        if RUN_ID_COLUMN not in metadata.columns:
            raise ValueError(
                f"DEE2 metadata for {species} has no {RUN_ID_COLUMN} column "
                f"(columns: {list(metadata.columns)})"
            )
        logger.info(f"Fetched metadata for {len(metadata)} {species} runs")
        return metadata

    def fetch(
        self,
        species: str,
        accessions: Sequence[str],
        metadata: Optional[pd.DataFrame] = None,
    ) -> CountDataset:
        """
        Download gene counts for runs, batch by batch.

        Returns:
            CountDataset (genes × runs) with run metadata from DEE2 as column
            metadata and GeneInfo.tsv (if present) as row metadata

        Raises:
            ValueError: If the species is unknown or no accession is available
            OSError: If a download fails
        """
        self._check_species(species)
        if metadata is None:
            metadata = self.fetch_metadata(species)

        requested = list(dict.fromkeys(str(a) for a in accessions))
        known = set(metadata[RUN_ID_COLUMN].astype(str))
        absent = [a for a in requested if a not in known]
        if absent:
            warnings.warn(
                f"{len(absent)} accession(s) not found in DEE2 {species} metadata "
                f"and will be skipped: {absent[:5]}",
                UserWarning,
            )
        present = [a for a in requested if a in known]
        if not present:
            raise ValueError(f"None of the {len(requested)} requested accessions are available in DEE2")

        run_metadata = (
            metadata.drop_duplicates(subset=RUN_ID_COLUMN, keep='first')
            .set_index(RUN_ID_COLUMN, drop=False)
        )
        run_metadata.index = run_metadata.index.astype(str)
        run_metadata.index.name = None

        result: Optional[CountDataset] = None
        for start in range(0, len(present), self.batch_size):
            batch = present[start:start + self.batch_size]
            logger.info(
                f"Fetching counts for runs {start + 1}-{start + len(batch)} of {len(present)}"
            )
            part = self._fetch_batch(species, batch, run_metadata)
            result = part if result is None else concat_columns(result, part)

        logger.info(f"Fetched {result.n_genes} genes × {result.n_samples} runs from DEE2")
        return result

    def _fetch_batch(
        self,
        species: str,
        batch: list[str],
        run_metadata: pd.DataFrame,
    ) -> CountDataset:
        payload = self._download(self.counts_url(species, batch))
        try:
            bundle = zipfile.ZipFile(io.BytesIO(payload))
        except zipfile.BadZipFile as e:
            raise ValueError(f"DEE2 returned an invalid bundle for {batch[:5]}: {e}") from e

        with bundle:
            members = set(bundle.namelist())
            if COUNTS_MEMBER not in members:
                raise ValueError(f"DEE2 bundle for {batch[:5]} has no {COUNTS_MEMBER}")
            with bundle.open(COUNTS_MEMBER) as handle:
                counts = pd.read_csv(handle, sep="\t", index_col=0)
            gene_info = None
            if GENE_INFO_MEMBER in members:
                with bundle.open(GENE_INFO_MEMBER) as handle:
                    gene_info = pd.read_csv(handle, sep="\t", index_col=0)

        counts.index = counts.index.astype(str)
        counts.index.name = None
        counts.columns = counts.columns.astype(str)

        returned = [a for a in batch if a in counts.columns]
        not_returned = [a for a in batch if a not in counts.columns]
        if not_returned:
            warnings.warn(
                f"DEE2 returned no counts for {len(not_returned)} run(s): {not_returned[:5]}",
                UserWarning,
            )
        counts = counts[returned]

        row_metadata = None
        if gene_info is not None:
            gene_info.index = gene_info.index.astype(str)
            gene_info.index.name = None
            row_metadata = gene_info.reindex(counts.index)

        return CountDataset.from_frame(
            counts,
            col_metadata=run_metadata.loc[returned],
            row_metadata=row_metadata,
        )
