"""
Base transformation framework for immutable dataset operations.

Every pipeline stage (quality filter, gene-activity filter, experiment
aggregation, normalization) is a Transform: a pure function from one
CountDataset to a new CountDataset. Inputs are never modified, so
independent output branches can share an upstream dataset safely.

Examples:
    >>> from dee2cellscore.core.transform import Transform
    >>>
    >>> class DropEmptySamples(Transform):
    ...     def __init__(self):
    ...         super().__init__(name="DropEmptySamples", params={})
    ...
    ...     def apply(self, dataset):
    ...         return dataset.subset_columns(dataset.counts.sum(axis=0) > 0)
    >>>
    >>> cleaned = DropEmptySamples()(dataset)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from dee2cellscore.core.dataset import CountDataset

__all__ = ['Transform']


class Transform(ABC):
    """
    Abstract base class for all dataset transformations.

    Attributes:
        name: Human-readable transformation name (e.g., "GeneActivityFilter")
        params: Parameters used for this transformation (JSON-serializable)
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params

    @abstractmethod
    def apply(self, dataset: CountDataset) -> CountDataset:
        """
        Execute transformation and return a new dataset.

        Must never modify the input dataset.

        Raises:
            ValueError: If the transformation cannot be applied
        """

    def validate(self, dataset: CountDataset) -> list[str]:
        """
        Check preconditions before applying the transformation.

        Subclasses should override and call super().validate() first.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []

        if dataset.counts.size and (dataset.counts < 0).any():
            errors.append("Counts contain negative values")

        return errors

    def __call__(self, dataset: CountDataset) -> CountDataset:
        return self.apply(dataset)

    def __repr__(self) -> str:
        """
        String representation for logging.

        Examples:
            >>> print(GeneActivityFilter(cutoff=10))
            GeneActivityFilter(cutoff=10)
        """
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
