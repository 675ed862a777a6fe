"""
Design formulas for size-factor estimation.

Formulas follow the R convention used by DESeq2: "~ 1" is intercept-only,
"~ cell_type + batch" adds one-hot covariates. Median-of-ratios size factors
do not depend on the design; it is validated anyway so that an estimator
which does use it (and a user typo) fails before any numbers are produced.

Design matrix structure:
    X = [intercept | covariate_1 dummies | covariate_2 dummies | ...]

    Categorical covariates use treatment coding (first level dropped);
    numeric covariates enter as a single column.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.typing import NDArray

__all__ = ['DesignMatrix', 'parse_design', 'build_design_matrix']

_TERM_PATTERN = re.compile(r"^[A-Za-z_.][A-Za-z0-9_.]*$")


@dataclass(frozen=True)
class DesignMatrix:
    """Design matrix built from a formula and column metadata.

    Attributes:
        X: Design matrix (n_samples, n_params), full column rank.
        col_names: Human-readable names for all columns.
        covariates: Covariates named in the formula.
    """

    X: NDArray[np.float64]
    col_names: list[str]
    covariates: list[str]

    @property
    def n_params(self) -> int:
        return self.X.shape[1]

    @property
    def n_samples(self) -> int:
        return self.X.shape[0]


def parse_design(design: str) -> list[str]:
    """
    Parse a one-sided formula into its covariates.

    Examples:
        >>> parse_design("~ 1")
        []
        >>> parse_design("~ cell_type + batch")
        ['cell_type', 'batch']

    Raises:
        ValueError: If the formula is not of the form "~ term + term ..."
    """
    text = design.strip()
    if not text.startswith("~"):
        raise ValueError(f"Design formula must start with '~', got {design!r}")

    body = text[1:].strip()
    if not body:
        raise ValueError(f"Design formula has no terms: {design!r}")

    covariates: list[str] = []
    for term in (t.strip() for t in body.split("+")):
        if term == "":
            raise ValueError(f"Empty term in design formula: {design!r}")
        if term == "1":
            continue
        if not _TERM_PATTERN.match(term):
            raise ValueError(
                f"Unsupported term {term!r} in design formula {design!r}; "
                "only additive main effects are supported"
            )
        if term not in covariates:
            covariates.append(term)
    return covariates


def build_design_matrix(col_metadata: pd.DataFrame, design: str = "~ 1") -> DesignMatrix:
    """
    Build an intercept + covariate design matrix.

    Raises:
        ValueError: If a covariate is missing from col_metadata, has missing
            values, or the resulting design is rank deficient
    """
    covariates = parse_design(design)
    n_samples = len(col_metadata)

    missing = [c for c in covariates if c not in col_metadata.columns]
    if missing:
        raise ValueError(f"Design covariates not found in column metadata: {missing}")

    columns = [np.ones(n_samples)]
    names = ["Intercept"]

    for covariate in covariates:
        values = col_metadata[covariate]
        if values.isna().any():
            raise ValueError(f"Design covariate '{covariate}' has missing values")

        if pd.api.types.is_numeric_dtype(values):
            columns.append(values.to_numpy(dtype=float))
            names.append(covariate)
            continue

        levels = pd.unique(values.astype(str))
        for level in levels[1:]:
            columns.append((values.astype(str) == level).to_numpy(dtype=float))
            names.append(f"{covariate}[T.{level}]")

    X = np.column_stack(columns) if n_samples else np.empty((0, len(columns)))

    if n_samples and np.linalg.matrix_rank(X) < X.shape[1]:
        raise ValueError(
            f"Design {design!r} is not full rank for these samples "
            f"({X.shape[1]} parameters, rank {np.linalg.matrix_rank(X)})"
        )

    return DesignMatrix(X=X, col_names=names, covariates=covariates)
