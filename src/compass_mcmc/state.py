"""
Iteration state containers for a single MCMC chain.

The sampler never keeps state at module level: every chain owns one
:class:`IterationState` and passes it explicitly through each update step.

Classes
-------
SufficientStats
    Read-only count matrices and their per-subject totals.
ActiveSet
    A set of categories (sorted indices plus a membership mask), used for
    the categories in which any subject responds.
AcceptanceCounters
    Running proposal/acceptance tallies of the MH steps.
IterationState
    Everything that changes from one iteration to the next.

Functions
---------
indicator_matrix
    Per-subject response indicators from a matrix or a shared category set.
check_indicators
    Reject indicators that activate ineligible categories.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np

from .errors import InvalidActiveSetError, InvalidParameterError, ShapeMismatchError


def _as_count_matrix(x, name: str) -> np.ndarray:
    arr = np.asarray(x)
    if arr.ndim != 2:
        raise ShapeMismatchError(f"{name} must be a 2-D (subjects x categories) matrix, got {arr.ndim}-D.")
    if arr.size and not np.all(np.isfinite(arr.astype(float))):
        raise InvalidParameterError(f"{name} contains non-finite values.")
    if np.any(arr < 0):
        raise InvalidParameterError(f"{name} contains negative counts.")
    as_int = arr.astype(np.int64)
    if np.any(as_int != arr):
        raise InvalidParameterError(f"{name} must contain integer counts.")
    return as_int


@dataclass(frozen=True)
class SufficientStats:
    """Count matrices consumed by the sampler.

    Attributes
    ----------
    n_s : np.ndarray
        Stimulated counts, shape (n_subjects, n_categories).
    n_u : np.ndarray
        Unstimulated counts, same shape as ``n_s``.
    N_s : np.ndarray
        Per-subject stimulated totals, shape (n_subjects,).
    N_u : np.ndarray
        Per-subject unstimulated totals, shape (n_subjects,).
    eligible : np.ndarray
        Boolean mask of categories the activation sampler may propose.
    """
    n_s: np.ndarray
    n_u: np.ndarray
    N_s: np.ndarray
    N_u: np.ndarray
    eligible: np.ndarray

    @classmethod
    def from_counts(cls, n_s, n_u, eligible: Optional[Iterable[bool]] = None) -> "SufficientStats":
        """Validate a pair of count matrices and freeze them.

        A category is eligible for activation only if at least one subject
        has stimulated cells in it; ``eligible`` narrows this further.
        """
        n_s = _as_count_matrix(n_s, "n_s")
        n_u = _as_count_matrix(n_u, "n_u")
        if n_s.shape != n_u.shape:
            raise ShapeMismatchError(f"n_s has shape {n_s.shape} but n_u has shape {n_u.shape}.")
        if n_s.shape[0] == 0 or n_s.shape[1] == 0:
            raise ShapeMismatchError(
                f"Count matrices must have at least one subject and one category, got {n_s.shape}."
            )

        has_evidence = n_s.sum(axis=0) > 0
        if eligible is None:
            mask = has_evidence
        else:
            mask = np.asarray(list(eligible), dtype=bool)
            if mask.shape != (n_s.shape[1],):
                raise ShapeMismatchError(f"eligible must have length {n_s.shape[1]}, got {mask.shape}.")
            mask = mask & has_evidence

        for arr in (n_s, n_u, mask):
            arr.setflags(write=False)
        N_s = n_s.sum(axis=1)
        N_u = n_u.sum(axis=1)
        N_s.setflags(write=False)
        N_u.setflags(write=False)
        return cls(n_s=n_s, n_u=n_u, N_s=N_s, N_u=N_u, eligible=mask)

    @property
    def n_subjects(self) -> int:
        return self.n_s.shape[0]

    @property
    def n_categories(self) -> int:
        return self.n_s.shape[1]

    @property
    def eligible_indices(self) -> np.ndarray:
        return np.flatnonzero(self.eligible)


class ActiveSet:
    """Active categories as a sorted index array plus a membership mask.

    Both views are kept in sync on every mutation, so samplers can address
    the full ``[0, K)`` space through :attr:`mask` and iterate the active
    subset through :attr:`indices`.
    """

    __slots__ = ("_mask", "_indices")

    def __init__(self, mask):
        mask = np.array(mask, dtype=bool)
        if mask.ndim != 1:
            raise InvalidActiveSetError("Active-set mask must be one-dimensional.")
        self._mask = mask
        self._indices = np.flatnonzero(mask)

    @classmethod
    def empty(cls, n_categories: int) -> "ActiveSet":
        return cls(np.zeros(n_categories, dtype=bool))

    @classmethod
    def from_indices(cls, indices, n_categories: int, size: Optional[int] = None) -> "ActiveSet":
        """Build an active set from category indices.

        Parameters
        ----------
        indices : array-like of int
            0-based category indices (``Istar``).
        n_categories : int
            Size of the category space ``K``.
        size : int, optional
            Declared set size (``mKstar``). If given it must equal the number
            of indices.

        Raises
        ------
        InvalidActiveSetError
            On size mismatch, duplicate indices or indices outside ``[0, K)``.
        """
        idx = np.asarray(indices, dtype=np.int64).ravel()
        if size is not None and int(size) != idx.size:
            raise InvalidActiveSetError(f"Declared active-set size {size} does not match {idx.size} indices.")
        if np.unique(idx).size != idx.size:
            raise InvalidActiveSetError(f"Active-set indices contain duplicates: {idx.tolist()}")
        if idx.size and (idx.min() < 0 or idx.max() >= n_categories):
            raise InvalidActiveSetError(
                f"Active-set indices must lie in [0, {n_categories}), got {idx.tolist()}"
            )
        mask = np.zeros(n_categories, dtype=bool)
        mask[idx] = True
        return cls(mask)

    @property
    def mask(self) -> np.ndarray:
        view = self._mask.view()
        view.setflags(write=False)
        return view

    @property
    def indices(self) -> np.ndarray:
        view = self._indices.view()
        view.setflags(write=False)
        return view

    @property
    def size(self) -> int:
        return int(self._indices.size)

    @property
    def n_categories(self) -> int:
        return int(self._mask.size)

    def __len__(self) -> int:
        return self.size

    def __contains__(self, k) -> bool:
        return 0 <= int(k) < self._mask.size and bool(self._mask[int(k)])

    def __eq__(self, other) -> bool:
        if not isinstance(other, ActiveSet):
            return NotImplemented
        return np.array_equal(self._mask, other._mask)

    def __repr__(self) -> str:
        return f"ActiveSet(indices={self._indices.tolist()}, K={self._mask.size})"

    def add(self, k: int) -> None:
        self._mask[k] = True
        self._indices = np.flatnonzero(self._mask)

    def remove(self, k: int) -> None:
        self._mask[k] = False
        self._indices = np.flatnonzero(self._mask)

    def toggled(self, *ks: int) -> np.ndarray:
        """Return a copy of the mask with the given categories flipped."""
        mask = self._mask.copy()
        for k in ks:
            mask[k] = not mask[k]
        return mask

    def copy(self) -> "ActiveSet":
        return ActiveSet(self._mask.copy())

    def validate(self, n_categories: int, eligible: Optional[np.ndarray] = None) -> None:
        """Check the set against the category space it is used with."""
        if self._mask.size != n_categories:
            raise InvalidActiveSetError(
                f"Active set is defined over {self._mask.size} categories, expected {n_categories}."
            )
        if not np.array_equal(self._indices, np.flatnonzero(self._mask)):
            raise InvalidActiveSetError("Active-set indices are out of sync with its membership mask.")
        if eligible is not None:
            bad = np.flatnonzero(self._mask & ~np.asarray(eligible, dtype=bool))
            if bad.size:
                raise InvalidActiveSetError(f"Categories {bad.tolist()} are active but not eligible for activation.")

    @classmethod
    def from_indicators(cls, indicators) -> "ActiveSet":
        """Categories in which at least one subject responds."""
        indicators = np.asarray(indicators, dtype=bool)
        if indicators.ndim != 2:
            raise ShapeMismatchError(f"Response indicators must be a 2-D matrix, got {indicators.ndim}-D.")
        return cls(indicators.any(axis=0))


def indicator_matrix(active, n_subjects: int, n_categories: int) -> np.ndarray:
    """Per-subject response indicators as a new boolean matrix.

    Parameters
    ----------
    active : array-like of bool, ActiveSet or array-like of int
        Either an (n_subjects, n_categories) boolean matrix, or a set of
        categories shared by every subject: a length-K boolean mask, an
        :class:`ActiveSet` or a sequence of category indices.
    n_subjects, n_categories : int
        Shape of the count matrices.

    Returns
    -------
    np.ndarray
        Boolean matrix of shape (n_subjects, n_categories).
    """
    if isinstance(active, ActiveSet):
        mask = np.array(active.mask)
    else:
        mask = np.asarray(active)
        if mask.dtype != bool:
            mask = np.array(ActiveSet.from_indices(mask, n_categories).mask)
    if mask.ndim == 1:
        if mask.shape != (n_categories,):
            raise ShapeMismatchError(f"Active mask must have length {n_categories}, got shape {mask.shape}.")
        return np.tile(mask, (n_subjects, 1))
    if mask.shape != (n_subjects, n_categories):
        raise ShapeMismatchError(
            f"Response indicators must have shape {(n_subjects, n_categories)}, got {mask.shape}."
        )
    return mask.copy()


@dataclass
class AcceptanceCounters:
    """Proposal and acceptance tallies for one chain.

    ``pb1``/``pb2`` count activation proposals and acceptances over all
    subjects; ``subject_proposed``/``subject_accepted`` split them by
    subject. The alpha tallies count coordinate updates of the concentration
    vectors.
    """
    pb1: int = 0
    pb2: int = 0
    alpha_s_proposed: int = 0
    alpha_s_accepted: int = 0
    alpha_u_proposed: int = 0
    alpha_u_accepted: int = 0
    subject_proposed: Optional[np.ndarray] = None
    subject_accepted: Optional[np.ndarray] = None

    @classmethod
    def for_subjects(cls, n_subjects: int) -> "AcceptanceCounters":
        return cls(subject_proposed=np.zeros(n_subjects, dtype=np.int64),
                   subject_accepted=np.zeros(n_subjects, dtype=np.int64))

    def copy(self) -> "AcceptanceCounters":
        values = dict(vars(self))
        for name in ("subject_proposed", "subject_accepted"):
            if values[name] is not None:
                values[name] = values[name].copy()
        return AcceptanceCounters(**values)

    def ensure_subjects(self, n_subjects: int) -> None:
        """Allocate the per-subject tallies, or check their length."""
        for name in ("subject_proposed", "subject_accepted"):
            value = getattr(self, name)
            if value is None:
                setattr(self, name, np.zeros(n_subjects, dtype=np.int64))
            elif np.shape(value) != (n_subjects,):
                raise ShapeMismatchError(f"{name} must have length {n_subjects}, got shape {np.shape(value)}.")

    @property
    def activation_rate(self) -> float:
        return self.pb2 / self.pb1 if self.pb1 else float("nan")

    @property
    def alpha_s_rate(self) -> float:
        return self.alpha_s_accepted / self.alpha_s_proposed if self.alpha_s_proposed else float("nan")

    @property
    def alpha_u_rate(self) -> float:
        return self.alpha_u_accepted / self.alpha_u_proposed if self.alpha_u_proposed else float("nan")

    @property
    def subject_rates(self) -> Optional[np.ndarray]:
        """Activation acceptance rate of every subject (NaN without proposals)."""
        if self.subject_proposed is None:
            return None
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(self.subject_proposed > 0,
                            self.subject_accepted / np.maximum(self.subject_proposed, 1), np.nan)


def _check_concentration(x, n_categories: int, name: str) -> np.ndarray:
    arr = np.asarray(x, dtype=float)
    if arr.ndim == 0:
        arr = np.full(n_categories, float(arr))
    if arr.shape != (n_categories,):
        raise ShapeMismatchError(f"{name} must have length {n_categories}, got shape {arr.shape}.")
    if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
        raise InvalidParameterError(f"{name} must be finite and strictly positive.")
    return arr


def check_indicators(indicators: np.ndarray, stats: "SufficientStats") -> None:
    """Raise if any subject responds in a category that cannot be activated."""
    bad = np.flatnonzero((indicators & ~stats.eligible).any(axis=0))
    if bad.size:
        raise InvalidActiveSetError(f"Categories {bad.tolist()} are active but not eligible for activation.")


@dataclass
class IterationState:
    """Mutable state of one chain at the end of an iteration.

    Attributes
    ----------
    alpha_s, alpha_u : np.ndarray
        Per-category Dirichlet concentrations, shape (K,).
    gamma : float
        Mass parameter; every eligible (subject, category) pair responds a
        priori with probability ``gamma / K``.
    indicators : np.ndarray
        Boolean response indicators, shape (I, K). ``indicators[i, k]`` is
        True when subject ``i`` responds to the stimulus in category ``k``.
    ps, pu : np.ndarray
        Latest category-probability draws, shape (I, K).
    counters : AcceptanceCounters
        MH tallies since chain start.
    iteration : int
        Number of completed iterations.
    """
    alpha_s: np.ndarray
    alpha_u: np.ndarray
    gamma: float
    indicators: np.ndarray
    ps: np.ndarray
    pu: np.ndarray
    counters: AcceptanceCounters = field(default_factory=AcceptanceCounters)
    iteration: int = 0

    @property
    def mk(self) -> np.ndarray:
        """Number of responding subjects per category."""
        return self.indicators.sum(axis=0)

    @property
    def active(self) -> ActiveSet:
        """Categories with at least one responding subject (``Istar``)."""
        return ActiveSet.from_indicators(self.indicators)

    def copy(self) -> "IterationState":
        return IterationState(
            alpha_s=self.alpha_s.copy(),
            alpha_u=self.alpha_u.copy(),
            gamma=float(self.gamma),
            indicators=self.indicators.copy(),
            ps=self.ps.copy(),
            pu=self.pu.copy(),
            counters=self.counters.copy(),
            iteration=int(self.iteration),
        )

    def validate(self, stats: SufficientStats) -> None:
        """Check every precondition the update steps rely on."""
        n_subjects, n_categories = stats.n_subjects, stats.n_categories
        self.alpha_s = _check_concentration(self.alpha_s, n_categories, "alpha_s")
        self.alpha_u = _check_concentration(self.alpha_u, n_categories, "alpha_u")
        if not (np.isfinite(self.gamma) and 0.0 < self.gamma < n_categories):
            raise InvalidActiveSetError(f"gamma must lie in (0, {n_categories}), got {self.gamma}.")
        indicators = np.asarray(self.indicators)
        if indicators.shape != (n_subjects, n_categories) or indicators.dtype != bool:
            raise ShapeMismatchError(
                f"indicators must be a boolean matrix of shape {(n_subjects, n_categories)}, "
                f"got {indicators.dtype} {indicators.shape}."
            )
        check_indicators(indicators, stats)
        for name in ("ps", "pu"):
            arr = getattr(self, name)
            if arr.shape != (n_subjects, n_categories):
                raise ShapeMismatchError(f"{name} must have shape {(n_subjects, n_categories)}, got {arr.shape}.")
        self.counters.ensure_subjects(n_subjects)
