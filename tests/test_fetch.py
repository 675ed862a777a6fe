"""
Tests for the DEE2 fetcher against canned HTTP responses.
"""

import io
import zipfile

import numpy as np
import pandas as pd
import pytest

from dee2cellscore.io.fetch import DEE2Fetcher


METADATA_TSV = (
    "SRR_accession\tQC_summary\tSRX_accession\n"
    "SRR001\tPASS\tSRX01\n"
    "SRR002\tWARN(3,4)\tSRX01\n"
    "SRR003\tPASS\tSRX02\n"
)


def bundle(counts: pd.DataFrame, gene_info: pd.DataFrame = None) -> bytes:
    """A counts bundle as the DEE2 request endpoint returns it."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("GeneCountMatrix.tsv", counts.to_csv(sep="\t"))
        if gene_info is not None:
            archive.writestr("GeneInfo.tsv", gene_info.to_csv(sep="\t"))
    return buffer.getvalue()


def counts_for(runs, genes=("ENSG01", "ENSG02")):
    values = np.arange(len(genes) * len(runs)).reshape(len(genes), len(runs)) + 1
    return pd.DataFrame(values, index=pd.Index(genes, name="GeneID"), columns=runs)


class CannedFetcher(DEE2Fetcher):
    """Serves responses from a url -> bytes mapping and records requests."""

    def __init__(self, responses, **kwargs):
        super().__init__(**kwargs)
        self.responses = responses
        self.requested = []

    def _download(self, url):
        self.requested.append(url)
        if url not in self.responses:
            raise OSError(f"Failed to download {url}: 404")
        return self.responses[url]


@pytest.fixture
def metadata():
    return pd.read_csv(io.StringIO(METADATA_TSV), sep="\t", dtype=str)


class TestUrls:
    def test_metadata_url(self):
        assert DEE2Fetcher().metadata_url("hsapiens") == "https://dee2.io/metadata/hsapiens_metadata.tsv.cut"

    def test_counts_url(self):
        url = DEE2Fetcher(base_url="https://mirror.example/").counts_url("mmusculus", ["SRR1", "SRR2"])
        assert url == "https://mirror.example/cgi-bin/request.sh?org=mmusculus&x=SRR1&x=SRR2"

    def test_bad_batch_size(self):
        with pytest.raises(ValueError, match="batch_size"):
            DEE2Fetcher(batch_size=0)


class TestFetchMetadata:
    def test_parsed_as_strings(self):
        fetcher = CannedFetcher({
            DEE2Fetcher().metadata_url("hsapiens"): METADATA_TSV.encode(),
        })
        metadata = fetcher.fetch_metadata("hsapiens")
        assert metadata["SRR_accession"].tolist() == ["SRR001", "SRR002", "SRR003"]

    def test_unknown_species(self):
        with pytest.raises(ValueError, match="Unknown DEE2 species"):
            DEE2Fetcher().fetch_metadata("hsapien")

    def test_missing_accession_column(self):
        fetcher = CannedFetcher({
            DEE2Fetcher().metadata_url("hsapiens"): b"run\tQC\nSRR001\tPASS\n",
        })
        with pytest.raises(ValueError, match="SRR_accession"):
            fetcher.fetch_metadata("hsapiens")

    def test_download_failure_propagates(self):
        with pytest.raises(OSError):
            CannedFetcher({}).fetch_metadata("hsapiens")


class TestFetch:
    def test_single_batch(self, metadata):
        url = DEE2Fetcher().counts_url("hsapiens", ["SRR001", "SRR003"])
        gene_info = pd.DataFrame(
            {"GeneSymbol": ["TP53", "MYC"]}, index=pd.Index(["ENSG01", "ENSG02"], name="GeneID")
        )
        fetcher = CannedFetcher({url: bundle(counts_for(["SRR001", "SRR003"]), gene_info)})

        dataset = fetcher.fetch("hsapiens", ["SRR001", "SRR003"], metadata)

        assert dataset.sample_ids.tolist() == ["SRR001", "SRR003"]
        assert dataset.gene_ids.tolist() == ["ENSG01", "ENSG02"]
        np.testing.assert_array_equal(dataset.counts, [[1, 2], [3, 4]])
        assert dataset.row_metadata["GeneSymbol"].tolist() == ["TP53", "MYC"]
        assert dataset.col_metadata["SRX_accession"].tolist() == ["SRX01", "SRX02"]

    def test_batches_concatenated_in_order(self, metadata):
        fetcher_urls = DEE2Fetcher()
        responses = {
            fetcher_urls.counts_url("hsapiens", ["SRR003", "SRR001"]): bundle(counts_for(["SRR003", "SRR001"])),
            fetcher_urls.counts_url("hsapiens", ["SRR002"]): bundle(counts_for(["SRR002"])),
        }
        fetcher = CannedFetcher(responses, batch_size=2)

        dataset = fetcher.fetch("hsapiens", ["SRR003", "SRR001", "SRR002"], metadata)

        assert len(fetcher.requested) == 2
        assert dataset.sample_ids.tolist() == ["SRR003", "SRR001", "SRR002"]
        assert dataset.n_genes == 2

    def test_duplicate_accessions_requested_once(self, metadata):
        url = DEE2Fetcher().counts_url("hsapiens", ["SRR001"])
        fetcher = CannedFetcher({url: bundle(counts_for(["SRR001"]))})

        dataset = fetcher.fetch("hsapiens", ["SRR001", "SRR001"], metadata)

        assert dataset.sample_ids.tolist() == ["SRR001"]

    def test_unknown_accessions_skipped_with_warning(self, metadata):
        url = DEE2Fetcher().counts_url("hsapiens", ["SRR001"])
        fetcher = CannedFetcher({url: bundle(counts_for(["SRR001"]))})

        with pytest.warns(UserWarning, match="SRR404"):
            dataset = fetcher.fetch("hsapiens", ["SRR001", "SRR404"], metadata)

        assert dataset.sample_ids.tolist() == ["SRR001"]

    def test_no_available_accessions(self, metadata):
        with pytest.warns(UserWarning):
            with pytest.raises(ValueError, match="None of the"):
                CannedFetcher({}).fetch("hsapiens", ["SRR404"], metadata)

    def test_runs_not_returned_warn(self, metadata):
        url = DEE2Fetcher().counts_url("hsapiens", ["SRR001", "SRR002"])
        fetcher = CannedFetcher({url: bundle(counts_for(["SRR001"]))})

        with pytest.warns(UserWarning, match="SRR002"):
            dataset = fetcher.fetch("hsapiens", ["SRR001", "SRR002"], metadata)

        assert dataset.sample_ids.tolist() == ["SRR001"]

    def test_bundle_without_counts(self, metadata):
        url = DEE2Fetcher().counts_url("hsapiens", ["SRR001"])
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("README", "nothing here")
        fetcher = CannedFetcher({url: buffer.getvalue()})

        with pytest.raises(ValueError, match="GeneCountMatrix"):
            fetcher.fetch("hsapiens", ["SRR001"], metadata)

    def test_invalid_bundle(self, metadata):
        url = DEE2Fetcher().counts_url("hsapiens", ["SRR001"])
        fetcher = CannedFetcher({url: b"<html>error</html>"})

        with pytest.raises(ValueError, match="invalid bundle"):
            fetcher.fetch("hsapiens", ["SRR001"], metadata)
