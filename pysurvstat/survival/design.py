"""
SurvivalDesign: immutable container for time-to-event data.

Wraps time, event indicator, optional named covariates, and optional strata.
Validates inputs at construction time; all downstream code trusts clean data.
Filtering never mutates: subset() and split_strata() build new designs.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Sequence

import numpy as np
from numpy.typing import NDArray

from pysurvstat.core.exceptions import DataValidationError, DesignError
from pysurvstat.core.validation import (
    check_array,
    check_binary,
    check_consistent_length,
    check_finite,
    check_min_samples,
    check_positive,
)


@dataclass(frozen=True)
class Observation:
    """One subject: follow-up time, event flag, covariate values."""

    time: float
    event: bool
    covariates: tuple = field(default_factory=tuple)


@dataclass(frozen=True)
class RiskTable:
    """Risk-set bookkeeping at each distinct event time.

    n_censored counts censorings at exactly that time; they are still in
    the risk set at that time and leave it afterwards.
    """

    time: NDArray          # (m,) unique event times, ascending
    n_risk: NDArray        # (m,) #{i : time_i >= t}
    n_events: NDArray      # (m,) events at t
    n_censored: NDArray    # (m,) censorings at t

    def __len__(self) -> int:
        return len(self.time)


def _readonly(arr: NDArray) -> NDArray:
    arr = np.array(arr, copy=True)
    arr.setflags(write=False)
    return arr


def _is_categorical(values: NDArray) -> bool:
    if values.dtype == object:
        return any(isinstance(v, str) for v in values)
    return values.dtype.kind in ("U", "S")


def _validate_column(name: str, values: Any, n: int) -> NDArray:
    """Coerce one covariate column to float64 or to string labels."""
    raw = np.asarray(values)
    if raw.ndim != 1:
        raw = raw.ravel()
    if len(raw) != n:
        raise DataValidationError(
            f"covariate {name!r} has {len(raw)} values, expected {n}",
            field=name,
        )
    if _is_categorical(raw):
        return np.array([str(v) for v in raw])
    col = check_array(raw, name)
    check_finite(col, name)
    return col


@dataclass(frozen=True)
class SurvivalDesign:
    """Immutable survival data container.

    Parameters
    ----------
    time : NDArray
        Time to event or censoring. Strictly positive.
    event : NDArray
        Event indicator: 1 = event observed, 0 = censored.
    covariates : Mapping[str, NDArray] or None
        Read-only, insertion-ordered covariate columns. Numeric columns are float64,
        categorical columns hold string labels.
    strata : NDArray or None
        Strata labels for stratified analyses.
    """

    time: NDArray
    event: NDArray
    covariates: Mapping[str, NDArray] | None
    strata: NDArray | None

    @classmethod
    def for_survival(
        cls,
        time,
        event,
        covariates=None,
        *,
        strata=None,
        names: Sequence[str] | None = None,
    ) -> SurvivalDesign:
        """Create and validate survival data from arrays.

        Parameters
        ----------
        time : array-like
            Time to event or censoring.
        event : array-like
            Event indicator (0/1 or False/True).
        covariates : array-like, mapping or None
            Either a (n,) / (n, p) array (columns named ``x0, x1, ...`` or
            by ``names``) or a mapping ``name -> column``.
        strata : array-like or None
            Optional strata labels.
        names : sequence of str or None
            Column names for an array of covariates.

        Returns
        -------
        SurvivalDesign

        Raises
        ------
        DataValidationError
            If inputs are invalid.
        """
        time = check_array(time, "time").ravel()
        event = check_array(event, "event").ravel()

        check_min_samples(time, 1, "time")
        n = len(time)

        check_consistent_length(time, event, names=("time", "event"))
        check_finite(time, "time")
        check_positive(time, "time")
        check_finite(event, "event")
        check_binary(event, "event")

        columns: dict[str, NDArray] | None = None
        if covariates is not None:
            columns = {}
            if isinstance(covariates, Mapping):
                items = list(covariates.items())
            else:
                X = np.asarray(covariates)
                if X.ndim == 1:
                    X = X.reshape(-1, 1)
                if X.ndim != 2:
                    raise DataValidationError(
                        f"covariates must be 1D or 2D, got {X.ndim}D",
                        field="covariates",
                    )
                if X.shape[0] != n:
                    raise DataValidationError(
                        f"covariates must have {n} rows to match time, "
                        f"got {X.shape[0]}",
                        field="covariates",
                    )
                if names is None:
                    names = [f"x{j}" for j in range(X.shape[1])]
                if len(names) != X.shape[1]:
                    raise DataValidationError(
                        f"names has {len(names)} entries for "
                        f"{X.shape[1]} covariate columns",
                        field="covariates",
                    )
                items = [(names[j], X[:, j]) for j in range(X.shape[1])]

            for name, values in items:
                name = str(name)
                if name in columns:
                    raise DataValidationError(
                        f"duplicate covariate name {name!r}", field=name
                    )
                columns[name] = _readonly(_validate_column(name, values, n))

        strata_arr = None
        if strata is not None:
            strata_arr = np.asarray(strata).ravel()
            if len(strata_arr) != n:
                raise DataValidationError(
                    f"strata must have {n} elements to match time, "
                    f"got {len(strata_arr)}",
                    field="strata",
                )
            strata_arr = _readonly(strata_arr)

        return cls(
            time=_readonly(time),
            event=_readonly(event),
            covariates=(
                MappingProxyType(columns) if columns is not None else None
            ),
            strata=strata_arr,
        )

    @classmethod
    def from_records(
        cls,
        records: Iterable,
        *,
        names: Sequence[str] | None = None,
        strata=None,
    ) -> SurvivalDesign:
        """Create survival data from per-subject records.

        Each record is an ``Observation`` or a ``(time, event)`` /
        ``(time, event, covariates)`` tuple. All records must carry the same
        number of covariate values.

        Raises
        ------
        DataValidationError
            On non-positive times, non-boolean events or covariate vectors
            of inconsistent length.
        """
        times: list = []
        events: list = []
        rows: list[tuple] = []

        for i, rec in enumerate(records):
            if isinstance(rec, Observation):
                t, e, cov = rec.time, rec.event, tuple(rec.covariates)
            else:
                rec = tuple(rec)
                if len(rec) == 2:
                    t, e = rec
                    cov = ()
                elif len(rec) == 3:
                    t, e, cov = rec[0], rec[1], tuple(rec[2])
                else:
                    raise DataValidationError(
                        f"record {i}: expected (time, event[, covariates]), "
                        f"got {len(rec)} fields",
                        index=i,
                    )
            if rows and len(cov) != len(rows[0]):
                raise DataValidationError(
                    f"record {i}: has {len(cov)} covariate values, "
                    f"expected {len(rows[0])}",
                    field="covariates",
                    index=i,
                )
            times.append(t)
            events.append(e)
            rows.append(cov)

        p = len(rows[0]) if rows else 0
        covariates = None
        if p > 0:
            if names is None:
                names = [f"x{j}" for j in range(p)]
            if len(names) != p:
                raise DataValidationError(
                    f"names has {len(names)} entries for {p} covariates",
                    field="covariates",
                )
            covariates = {
                names[j]: np.array([row[j] for row in rows], dtype=object)
                for j in range(p)
            }
            for name, col in covariates.items():
                if not any(isinstance(v, str) for v in col):
                    covariates[name] = check_array(col.tolist(), name)

        if any(isinstance(e, str) for e in events):
            raise DataValidationError(
                "event: must be boolean-coercible, got string values",
                field="event",
            )

        return cls.for_survival(times, events, covariates, strata=strata)

    # -- Size ---------------------------------------------------------------

    @property
    def n(self) -> int:
        """Number of observations."""
        return len(self.time)

    @property
    def p(self) -> int | None:
        """Number of covariate columns (None if no covariates)."""
        return len(self.covariates) if self.covariates is not None else None

    @property
    def n_events(self) -> int:
        """Number of observed events."""
        return int(np.sum(self.event))

    @property
    def n_censored(self) -> int:
        """Number of right-censored observations."""
        return self.n - self.n_events

    @property
    def covariate_names(self) -> tuple[str, ...]:
        return tuple(self.covariates) if self.covariates is not None else ()

    def column(self, name: str) -> NDArray:
        """Return one covariate column by name."""
        if self.covariates is None or name not in self.covariates:
            raise KeyError(f"no covariate named {name!r}")
        return self.covariates[name]

    def is_categorical(self, name: str) -> bool:
        return self.column(name).dtype.kind == "U"

    def numeric_matrix(self) -> NDArray:
        """All covariates as an (n, p) float64 matrix.

        Raises
        ------
        DesignError
            If any column is categorical; expand it with
            build_design_matrix() first.
        """
        if not self.covariates:
            return np.empty((self.n, 0), dtype=np.float64)
        categorical = [c for c in self.covariates if self.is_categorical(c)]
        if categorical:
            raise DesignError(
                f"categorical covariates {categorical} must be expanded "
                f"with build_design_matrix()",
                column_names=self.covariate_names,
            )
        return np.column_stack(
            [self.covariates[c] for c in self.covariates]
        )

    # -- Risk-set index -----------------------------------------------------

    @property
    def event_times(self) -> NDArray:
        """Unique event times in ascending order."""
        return np.unique(self.time[self.event == 1])

    def n_at_risk(self, t) -> NDArray | int:
        """Risk-set size #{i : time_i >= t} (scalar or array of t)."""
        sorted_time = np.sort(self.time)
        counts = self.n - np.searchsorted(sorted_time, t, side="left")
        return int(counts) if np.ndim(counts) == 0 else counts

    def events_at(self, t: float) -> int:
        """Number of events at exactly time t."""
        return int(np.sum((self.time == t) & (self.event == 1)))

    def censored_at(self, t: float) -> int:
        """Number of censorings at exactly time t."""
        return int(np.sum((self.time == t) & (self.event == 0)))

    def risk_table(self) -> RiskTable:
        """Risk-set sizes and tie counts at every distinct event time."""
        order = np.argsort(self.time, kind="stable")
        t_sorted = self.time[order]
        e_sorted = self.event[order]

        unique_t, first_idx, counts = np.unique(
            t_sorted, return_index=True, return_counts=True,
        )
        d = np.add.reduceat(e_sorted, first_idx)
        at_risk = (self.n - first_idx).astype(np.float64)
        mask = d > 0

        return RiskTable(
            time=unique_t[mask],
            n_risk=at_risk[mask],
            n_events=d[mask],
            n_censored=(counts - d)[mask].astype(np.float64),
        )

    # -- Immutable derivations -----------------------------------------------

    def subset(self, mask) -> SurvivalDesign:
        """New design restricted to the selected rows.

        ``mask`` is a boolean array of length n or an array of row indices.
        """
        idx = np.asarray(mask)
        if idx.dtype == np.bool_ and len(idx) != self.n:
            raise DataValidationError(
                f"mask must have {self.n} elements, got {len(idx)}",
                field="mask",
            )
        covariates = None
        if self.covariates is not None:
            covariates = {k: v[idx] for k, v in self.covariates.items()}
        return SurvivalDesign.for_survival(
            self.time[idx],
            self.event[idx],
            covariates,
            strata=self.strata[idx] if self.strata is not None else None,
        )

    def with_strata(self, strata) -> SurvivalDesign:
        """New design stratified by labels or by a covariate name.

        A covariate used as the stratifier is removed from the covariates.
        """
        covariates = self.covariates
        if isinstance(strata, str):
            labels = self.column(strata)
            covariates = {
                k: v for k, v in self.covariates.items() if k != strata
            } or None
        else:
            labels = strata
        return SurvivalDesign.for_survival(
            self.time, self.event, covariates, strata=labels,
        )

    def split_strata(self) -> dict[Any, SurvivalDesign]:
        """Disjoint per-stratum designs keyed by stratum label."""
        if self.strata is None:
            raise DataValidationError(
                "design has no strata to split", field="strata"
            )
        out: dict[Any, SurvivalDesign] = {}
        for label in np.unique(self.strata):
            part = self.subset(self.strata == label)
            out[label.item() if hasattr(label, "item") else label] = (
                SurvivalDesign(
                    time=part.time,
                    event=part.event,
                    covariates=part.covariates,
                    strata=None,
                )
            )
        return out

    def describe(self) -> dict[str, float]:
        """Descriptive follow-up summary."""
        return {
            "n": self.n,
            "n_events": self.n_events,
            "n_censored": self.n_censored,
            "event_proportion": self.n_events / self.n,
            "min_time": float(np.min(self.time)),
            "median_time": float(np.median(self.time)),
            "max_time": float(np.max(self.time)),
            "total_time": float(np.sum(self.time)),
        }
