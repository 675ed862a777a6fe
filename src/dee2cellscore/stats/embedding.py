"""
Two-dimensional sample embedding.

Samples are embedded from their filtered count profiles. t-SNE cannot place
two identical points, so identical sample vectors are collapsed to their
first occurrence before embedding.

The output is a bare (n_unique_samples, 2) coordinate array keyed by
position to the deduplicated sample order; it carries no metadata. Use
EmbeddingAdapter.unique_samples() to recover which sample each row belongs
to.

Examples:
    >>> from dee2cellscore.stats.embedding import EmbeddingAdapter
    >>>
    >>> adapter = EmbeddingAdapter(random_state=0)
    >>> coordinates = adapter.embed(filtered)
    >>> samples = adapter.unique_samples(filtered)
    >>> assert len(samples) == coordinates.shape[0]
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from sklearn.manifold import TSNE

from dee2cellscore.core.dataset import CountDataset

logger = logging.getLogger(__name__)

__all__ = ['EmbeddingAdapter', 'Embedder', 'tsne_embedder', 'deduplicate_samples']

Embedder = Callable[[NDArray], NDArray]
"""samples × features matrix in, samples × 2 coordinates out."""


def deduplicate_samples(dataset: CountDataset) -> pd.DataFrame:
    """
    Samples × genes matrix with repeated sample vectors removed.

    The first occurrence of each distinct vector is kept; order of first
    occurrence is preserved.
    """
    samples = dataset.counts_frame().T
    return samples[~samples.duplicated(keep='first')]


def tsne_embedder(
    perplexity: float = 30.0,
    random_state: Optional[int] = None,
) -> Embedder:
    """
    Build a t-SNE embedder (scikit-learn) with Rtsne-compatible defaults.

    The perplexity is lowered when needed so that 3 * perplexity < n - 1,
    the constraint Rtsne enforces.
    """

    def embed(samples: NDArray) -> NDArray:
        n_samples = samples.shape[0]
        if n_samples < 3:
            raise ValueError(
                f"t-SNE needs at least 3 distinct samples, got {n_samples}"
            )
        max_perplexity = (n_samples - 1) / 3
        effective = min(perplexity, max_perplexity - 1e-6)
        if effective < perplexity:
            logger.info(
                f"Lowering t-SNE perplexity from {perplexity} to {effective:.2f} "
                f"for {n_samples} samples"
            )

        tsne = TSNE(
            n_components=2,
            perplexity=effective,
            init="pca",
            learning_rate="auto",
            random_state=random_state,
        )
        return tsne.fit_transform(np.asarray(samples, dtype=np.float64))

    embed.__name__ = "tsne"
    return embed


class EmbeddingAdapter:
    """
    Deduplicate samples and embed them in two dimensions.

    Attributes:
        embedder: Embedding routine; defaults to scikit-learn t-SNE
    """

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        perplexity: float = 30.0,
        random_state: Optional[int] = None,
    ):
        self.embedder = embedder or tsne_embedder(perplexity=perplexity, random_state=random_state)

    def unique_samples(self, dataset: CountDataset) -> pd.Index:
        """Sample IDs matching the rows of embed(), in order."""
        return deduplicate_samples(dataset).index

    def embed(self, dataset: CountDataset) -> NDArray[np.float64]:
        """
        Embed deduplicated samples.

        Returns:
            Array (n_unique_samples, 2)

        Raises:
            ValueError: If the embedder returns the wrong shape, or the
                dataset has no samples
        """
        samples = deduplicate_samples(dataset)
        if samples.shape[0] == 0:
            raise ValueError("Cannot embed a dataset with no samples")

        n_dropped = dataset.n_samples - samples.shape[0]
        if n_dropped:
            logger.info(f"Collapsed {n_dropped} duplicate sample profile(s) before embedding")

        coordinates = np.asarray(self.embedder(samples.to_numpy()))
        if coordinates.shape != (samples.shape[0], 2):
            raise ValueError(
                f"Embedder returned shape {coordinates.shape}, expected ({samples.shape[0]}, 2)"
            )

        logger.info(f"Embedded {samples.shape[0]} samples in 2 dimensions")
        return coordinates
