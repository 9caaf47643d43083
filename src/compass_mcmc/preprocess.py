"""
From per-cell marker tables to paired count matrices.

This module turns per-subject cell tables (one row per cell, one boolean
column per marker) for a stimulated and an unstimulated condition into the
count matrices the sampler runs on. The last category is always the null
(all-negative) category; it absorbs every cell that is not counted in one
of the other categories.

Functions
---------
default_category_filter
    Keep categories with more than five stimulated cells in more than two
    subjects.
generate_categories
    Observed marker combinations, ordered by degree.
build_count_matrices
    Pair subjects, filter markers and categories, and count cells.

Classes
-------
CompassData
    Count matrices plus the bookkeeping needed to interpret them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .counts import cell_counts, combination_label, positivity_frame
from .errors import CellCountError

logger = logging.getLogger(__name__)

NULL_CATEGORY = "null"

CategoryFilter = Callable[[pd.DataFrame], Iterable[bool]]


@dataclass
class CompassData:
    """Preprocessed input of the sampler.

    Attributes
    ----------
    n_s, n_u : pd.DataFrame
        Stimulated and unstimulated counts (subjects x categories). The last
        column is the null category.
    categories : pd.DataFrame
        Boolean category definitions (categories x markers), indexed like
        the count columns, with a ``degree`` column.
    counts_s, counts_u : pd.Series
        Total cells per subject in each condition.
    markers : list of str
        Markers the categories are defined over.
    """
    n_s: pd.DataFrame
    n_u: pd.DataFrame
    categories: pd.DataFrame
    counts_s: pd.Series
    counts_u: pd.Series
    markers: List[str]

    @property
    def null_category(self) -> str:
        return self.n_s.columns[-1]

    @property
    def eligible(self) -> np.ndarray:
        """Categories that may be activated (every category but the null)."""
        mask = np.ones(self.n_s.shape[1], dtype=bool)
        mask[-1] = False
        return mask

    @property
    def subjects(self) -> List:
        return list(self.n_s.index)


def default_category_filter(n_s: pd.DataFrame) -> np.ndarray:
    """Keep categories in which more than two subjects have more than five cells."""
    return ((n_s > 5).sum(axis=0) > 2).to_numpy()


def _as_subject_table(value, where: str) -> pd.DataFrame:
    # several samples of one subject are pooled
    if isinstance(value, (list, tuple)):
        frames = [positivity_frame(v, where=where) for v in value]
        if not frames:
            raise CellCountError(f"{where}: no samples.")
        return pd.concat(frames, ignore_index=True)
    return positivity_frame(value, where=where)


def generate_categories(tables: Iterable[pd.DataFrame], markers: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Enumerate the observed marker combinations.

    Parameters
    ----------
    tables : iterable of pd.DataFrame
        Boolean per-cell tables.
    markers : sequence of str, optional
        Marker columns to use; defaults to the columns of the first table.

    Returns
    -------
    pd.DataFrame
        One boolean row per observed non-null combination, sorted by degree
        and then by marker pattern, followed by the all-negative null row.
        Indexed by category label, with a ``degree`` column.
    """
    tables = list(tables)
    if not tables:
        raise CellCountError("No cell tables to generate categories from.")
    if markers is None:
        markers = list(tables[0].columns)
    markers = list(markers)

    cells = np.concatenate([positivity_frame(t, markers).to_numpy() for t in tables], axis=0)
    observed = np.unique(cells, axis=0) if cells.shape[0] else np.zeros((0, len(markers)), dtype=bool)
    observed = observed[observed.any(axis=1)]

    degree = observed.sum(axis=1)
    # primary key degree, then markers from last to first
    order = np.lexsort(tuple(observed[:, j] for j in range(len(markers))) + (degree,))
    observed = observed[order]

    definitions = np.vstack([observed, np.zeros((1, len(markers)), dtype=bool)])
    labels = [combination_label(row, markers) for row in observed] + [NULL_CATEGORY]
    out = pd.DataFrame(definitions, index=pd.Index(labels, name="category"), columns=markers)
    out["degree"] = definitions.sum(axis=1)
    return out


def _move_to_null(n: pd.DataFrame, drop: np.ndarray) -> pd.DataFrame:
    n = n.copy()
    null = n.columns[-1]
    n[null] = n[null] + n.loc[:, drop].sum(axis=1)
    return n.loc[:, ~drop]


def build_count_matrices(
    stimulated: Mapping,
    unstimulated: Mapping,
    *,
    totals_s: Optional[Mapping] = None,
    totals_u: Optional[Mapping] = None,
    category_filter: Optional[CategoryFilter] = default_category_filter,
    filter_lowest_frequency: int = 0,
    filter_specific_markers: Optional[Sequence[str]] = None,
    drop_degree_one: Union[bool, str, Sequence[str]] = False,
) -> CompassData:
    """Build paired count matrices from per-cell tables.

    Parameters
    ----------
    stimulated, unstimulated : mapping
        Subject -> per-cell table (or list of tables, pooled) with one
        column per marker.
    totals_s, totals_u : mapping, optional
        Subject -> total number of cells, including cells that are negative
        for every marker. Defaults to the number of rows of each table.
    category_filter : callable, optional
        Applied to the stimulated counts; returns a boolean keep-mask over
        the categories. Cells of removed categories are moved to the null
        category, which is never removed. ``None`` disables filtering.
    filter_lowest_frequency : int
        Drop this many of the least frequently expressed markers (ignored
        unless it is positive and less than the number of markers minus 2).
    filter_specific_markers : sequence of str, optional
        Markers to drop by name.
    drop_degree_one : bool, str or sequence of str
        True drops every degree-one category; marker names drop only the
        degree-one categories of those markers.

    Returns
    -------
    CompassData

    Raises
    ------
    CellCountError
        If no paired subjects remain, counts turn negative, fewer than two
        categories remain, or ``drop_degree_one`` names unknown markers.
    """
    # pair subjects
    subjects = [s for s in stimulated if s in unstimulated]
    unpaired = [s for s in stimulated if s not in unstimulated] + [s for s in unstimulated if s not in stimulated]
    if unpaired:
        logger.warning(f"Dropping {len(unpaired)} subject(s) without data in both conditions: {unpaired}")
    if not subjects:
        raise CellCountError("Filtering has removed all samples.")

    y_s = {s: _as_subject_table(stimulated[s], f"stimulated subject {s!r}") for s in subjects}
    y_u = {s: _as_subject_table(unstimulated[s], f"unstimulated subject {s!r}") for s in subjects}

    markers = list(next(iter(y_s.values())).columns)
    for s in subjects:
        for table in (y_s[s], y_u[s]):
            if set(table.columns) != set(markers):
                raise CellCountError(f"Subject {s!r} has markers {list(table.columns)}, expected {markers}.")

    totals_s = pd.Series({s: len(y_s[s]) if totals_s is None else totals_s[s] for s in subjects}, dtype=np.int64)
    totals_u = pd.Series({s: len(y_u[s]) if totals_u is None else totals_u[s] for s in subjects}, dtype=np.int64)

    # drop rarely expressed and named markers
    all_s = pd.concat([y_s[s].loc[:, markers] for s in subjects], ignore_index=True)
    proportions = all_s.mean(axis=0) if len(all_s) else pd.Series(0.0, index=markers)
    drop_markers = []
    if 0 < filter_lowest_frequency < len(markers) - 2:
        drop_markers = list(proportions.sort_values(kind="mergesort").index[:filter_lowest_frequency])
    if filter_specific_markers is not None:
        drop_markers += [m for m in filter_specific_markers if m not in drop_markers]
    keep_markers = [m for m in markers if m not in drop_markers]
    if drop_markers:
        logger.info(f"Dropping markers {drop_markers}")
    if not keep_markers:
        raise CellCountError("Marker filtering has removed all markers.")

    # remove cells negative for every kept marker
    for y in (y_s, y_u):
        for s in subjects:
            table = y[s].loc[:, keep_markers]
            y[s] = table.loc[table.any(axis=1)].reset_index(drop=True)

    categories = generate_categories(list(y_s.values()) + list(y_u.values()), keep_markers)
    definitions = categories.loc[:, keep_markers]
    counted = definitions.iloc[:-1]

    def _counts(y, totals):
        if len(counted) and any(len(t) for t in y.values()):
            n = cell_counts(y, counted)
        else:
            n = pd.DataFrame(0, index=pd.Index(subjects, name="subject"), columns=counted.index, dtype=np.int64)
        n[NULL_CATEGORY] = totals.loc[subjects].to_numpy() - n.sum(axis=1).to_numpy()
        return n

    n_s = _counts(y_s, totals_s)
    n_u = _counts(y_u, totals_u)
    for name, n in (("n_s", n_s), ("n_u", n_u)):
        if (n.to_numpy() < 0).any():
            raise CellCountError(f"Negative counts in {name}; totals are smaller than the number of counted cells.")

    # subjects without cells in either condition
    empty = n_s.index[(n_s.sum(axis=1) < 1) | (n_u.sum(axis=1) < 1)]
    if len(empty):
        logger.warning(f"The following subject(s) had no cells available and are removed: {list(empty)}")
        n_s, n_u = n_s.drop(index=empty), n_u.drop(index=empty)
        totals_s, totals_u = totals_s.drop(index=empty), totals_u.drop(index=empty)
        if n_s.shape[0] == 0:
            raise CellCountError("Filtering has removed all samples.")
    logger.info(f"The model will be run on {n_s.shape[0]} paired samples.")

    if category_filter is not None:
        keep = np.asarray(list(category_filter(n_s)), dtype=bool)
        if keep.shape != (n_s.shape[1],):
            raise CellCountError(f"category_filter returned {keep.shape[0]} values for {n_s.shape[1]} categories.")
        drop = ~keep
        drop[-1] = False
        if drop.any():
            logger.info(f"The category filter has removed {drop.sum()} of {len(categories)} categories.")
            n_s, n_u = _move_to_null(n_s, drop), _move_to_null(n_u, drop)
            categories = categories.loc[~drop]
        else:
            logger.info("The category filter did not remove any categories.")

    if len(categories) < 2:
        raise CellCountError("There must be at least 2 categories (including the null category) for testing.")

    if drop_degree_one is not False:
        drop = (categories["degree"] == 1).to_numpy()
        if drop_degree_one is not True:
            names = [drop_degree_one] if isinstance(drop_degree_one, str) else list(drop_degree_one)
            unknown = [m for m in names if m not in keep_markers]
            if unknown:
                raise CellCountError(f"Invalid marker name(s): {','.join(unknown)}")
            drop &= (categories.loc[:, names].sum(axis=1) == 1).to_numpy()
        if drop.any():
            logger.info(f"Dropping {drop.sum()} degree-one categories")
            n_s, n_u = _move_to_null(n_s, drop), _move_to_null(n_u, drop)
            categories = categories.loc[~drop]

    logger.info(f"There are a total of {len(categories)} categories to be tested.")
    return CompassData(
        n_s=n_s.astype(np.int64),
        n_u=n_u.astype(np.int64),
        categories=categories,
        counts_s=totals_s.rename("counts_s"),
        counts_u=totals_u.rename("counts_u"),
        markers=keep_markers,
    )
