"""
Design-matrix construction for Cox regression.

Translates a SurvivalDesign's named covariates into the numeric matrix the
Cox fitter consumes, keeping the estimator itself formula-agnostic.

Key concepts:
    - Treatment coding: k-1 indicator columns against a reference level
      (first sorted level unless re-leveled explicitly)
    - Numeric covariates enter as a single column
    - Interaction: element-wise products of every column pair of two terms
    - DesignMatrix: the numeric matrix plus column names, term slices and
      the level/reference maps needed to encode new covariate profiles
    - No intercept column: the Cox baseline hazard absorbs it
"""

from __future__ import annotations

import warnings
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Sequence

import numpy as np
from numpy.typing import NDArray

from pysurvstat.core.exceptions import DesignError
from pysurvstat.survival.design import SurvivalDesign


@dataclass(frozen=True)
class DesignMatrix:
    """
    Encoded covariate matrix with naming metadata.

    Attributes:
        X: (n, p) float64 design matrix
        column_names: label of each column, e.g. 'age', 'stage[III]',
            'stage[III]:age'
        term_names: ordered term names (main effects, then interactions)
        term_slices: term name -> column slice in X
        factor_levels: factor name -> sorted level labels
        reference_levels: factor name -> reference (dropped) level
        interactions: (term_a, term_b) pairs that were expanded
        dropped: columns removed as constant (drop_constant=True)
    """
    X: NDArray
    column_names: tuple[str, ...]
    term_names: tuple[str, ...]
    term_slices: Mapping[str, slice]
    factor_levels: Mapping[str, tuple[str, ...]]
    reference_levels: Mapping[str, str]
    interactions: tuple[tuple[str, str], ...]
    dropped: tuple[str, ...] = ()

    @property
    def n(self) -> int:
        return self.X.shape[0]

    @property
    def p(self) -> int:
        return self.X.shape[1]

    def encode(self, profile: Mapping[str, Any]) -> NDArray:
        """Encode one covariate profile into a (p,) design row.

        ``profile`` maps each main-effect term to a value: a number for a
        numeric covariate, a level label for a factor.
        """
        main_terms = [t for t in self.term_names if ":" not in t]
        missing = [t for t in main_terms if t not in profile]
        if missing:
            raise DesignError(f"profile is missing terms {missing}")

        blocks: dict[str, NDArray] = {}
        for term in main_terms:
            blocks[term] = _main_effect(
                np.asarray([profile[term]]),
                self.factor_levels.get(term),
                self.reference_levels.get(term),
            )
        for a, b in self.interactions:
            blocks[f"{a}:{b}"] = interaction_columns(blocks[a], blocks[b])

        labels = _labels_by_term(
            self.term_names, self.factor_levels, self.reference_levels,
            self.interactions,
        )
        full_names = [c for t in self.term_names for c in labels[t]]
        row = np.concatenate([blocks[t].ravel() for t in self.term_names])
        keep = [i for i, c in enumerate(full_names) if c not in self.dropped]
        return row[keep]


def encode_treatment(
    factor: NDArray,
    reference: str | None = None,
    levels: Sequence[str] | None = None,
) -> tuple[NDArray, list[str], str]:
    """
    Treatment (dummy) coding for a single factor.

    Drops the reference level and creates k-1 indicator columns.

    Args:
        factor: 1D array of group labels
        reference: level to drop (default: first sorted level)
        levels: full level set (default: levels observed in ``factor``)

    Returns:
        (X_coded, level_names, reference) where:
            X_coded: (n, k-1) float64 indicator matrix
            level_names: the k-1 non-reference level names
            reference: the dropped reference level name
    """
    factor_str = np.array([str(v) for v in factor])
    if levels is None:
        levels = sorted(set(factor_str))
    levels = [str(v) for v in levels]

    if reference is None:
        reference = levels[0]
    reference = str(reference)
    if reference not in levels:
        raise DesignError(
            f"reference level {reference!r} not among levels {levels}"
        )

    unknown = sorted(set(factor_str) - set(levels))
    if unknown:
        raise DesignError(f"unknown levels {unknown}; expected one of {levels}")

    contrasts = [lv for lv in levels if lv != reference]
    X = np.zeros((len(factor_str), len(contrasts)), dtype=np.float64)
    for j, level in enumerate(contrasts):
        X[:, j] = (factor_str == level).astype(np.float64)

    return X, contrasts, reference


def interaction_columns(X_a: NDArray, X_b: NDArray) -> NDArray:
    """
    Element-wise products of all column pairs from X_a and X_b.

    Args:
        X_a: (n, p_a) columns for term A
        X_b: (n, p_b) columns for term B

    Returns:
        (n, p_a * p_b) interaction columns, A-major order
    """
    n = X_a.shape[0]
    return (X_a[:, :, np.newaxis] * X_b[:, np.newaxis, :]).reshape(n, -1)


def _main_effect(
    values: NDArray,
    levels: Sequence[str] | None,
    reference: str | None,
) -> NDArray:
    if levels is not None:
        X, _, _ = encode_treatment(values, reference, levels)
        return X
    return np.asarray(values, dtype=np.float64).reshape(-1, 1)


def _term_labels(
    term: str,
    factor_levels: Mapping[str, Sequence[str]],
    reference_levels: Mapping[str, str],
) -> list[str]:
    if term in factor_levels:
        ref = reference_levels[term]
        return [f"{term}[{lv}]" for lv in factor_levels[term] if lv != ref]
    return [term]


def _labels_by_term(
    term_names: Sequence[str],
    factor_levels: Mapping[str, Sequence[str]],
    reference_levels: Mapping[str, str],
    interactions: Sequence[tuple[str, str]],
) -> dict[str, list[str]]:
    labels: dict[str, list[str]] = {}
    for term in term_names:
        if ":" not in term:
            labels[term] = _term_labels(term, factor_levels, reference_levels)
    for a, b in interactions:
        labels[f"{a}:{b}"] = [
            f"{la}:{lb}" for la in labels[a] for lb in labels[b]
        ]
    return labels


def build_design_matrix(
    design: SurvivalDesign,
    terms: Sequence[str] | None = None,
    *,
    reference_levels: Mapping[str, str] | None = None,
    interactions: Sequence[tuple[str, str]] | None = None,
    drop_constant: bool = False,
) -> DesignMatrix:
    """
    Build the Cox design matrix from a SurvivalDesign's covariates.

    Args:
        design: validated survival data
        terms: main-effect covariate names in column order
            (default: all covariates in insertion order)
        reference_levels: factor name -> reference level, for re-leveling
        interactions: (term_a, term_b) pairs to expand as products;
            both must be in ``terms``
        drop_constant: remove zero-variance columns (with a warning)
            instead of leaving them for the fitter to reject

    Returns:
        DesignMatrix

    Raises:
        DesignError: unknown terms, unknown reference levels, or
            interactions of terms not in the model
    """
    if terms is None:
        terms = list(design.covariate_names)
    terms = [str(t) for t in terms]
    reference_levels = dict(reference_levels or {})
    interactions = [tuple(pair) for pair in (interactions or [])]

    unknown = [t for t in terms if t not in design.covariate_names]
    if unknown:
        raise DesignError(
            f"unknown covariates {unknown}; available: "
            f"{list(design.covariate_names)}"
        )
    if len(set(terms)) != len(terms):
        raise DesignError(f"duplicate terms in {terms}")

    not_factors = [
        name for name in reference_levels
        if name not in terms or not design.is_categorical(name)
    ]
    if not_factors:
        raise DesignError(
            f"reference_levels given for non-factor terms {not_factors}"
        )

    factor_levels: dict[str, tuple[str, ...]] = {}
    references: dict[str, str] = {}
    blocks: dict[str, NDArray] = {}

    for term in terms:
        values = design.column(term)
        if design.is_categorical(term):
            X_coded, _, ref = encode_treatment(
                values, reference_levels.get(term),
            )
            factor_levels[term] = tuple(sorted(set(values.tolist())))
            references[term] = ref
            blocks[term] = X_coded
        else:
            blocks[term] = values.reshape(-1, 1).astype(np.float64)

    term_names = list(terms)
    for a, b in interactions:
        if a not in blocks or b not in blocks:
            raise DesignError(
                f"interaction ({a!r}, {b!r}) uses terms not in {terms}"
            )
        if a == b:
            raise DesignError(f"interaction of {a!r} with itself")
        name = f"{a}:{b}"
        blocks[name] = interaction_columns(blocks[a], blocks[b])
        term_names.append(name)

    labels = _labels_by_term(
        term_names, factor_levels, references, interactions,
    )
    column_names = [c for t in term_names for c in labels[t]]
    X = (
        np.hstack([blocks[t] for t in term_names])
        if term_names else np.empty((design.n, 0), dtype=np.float64)
    )

    dropped: list[str] = []
    if drop_constant and X.shape[1] > 0:
        constant = np.all(X == X[0], axis=0)
        if np.any(constant):
            dropped = [c for c, k in zip(column_names, constant) if k]
            warnings.warn(
                f"Dropped constant design columns {dropped}",
                RuntimeWarning,
                stacklevel=2,
            )
            X = X[:, ~constant]

    term_slices: dict[str, slice] = {}
    offset = 0
    for term in term_names:
        width = sum(1 for c in labels[term] if c not in dropped)
        term_slices[term] = slice(offset, offset + width)
        offset += width
    kept = [c for c in column_names if c not in dropped]

    return DesignMatrix(
        X=X,
        column_names=tuple(kept),
        term_names=tuple(term_names),
        term_slices=MappingProxyType(term_slices),
        factor_levels=MappingProxyType(factor_levels),
        reference_levels=MappingProxyType(references),
        interactions=tuple(interactions),
        dropped=tuple(dropped),
    )
