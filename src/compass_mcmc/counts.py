"""
Combinatorial cell counting.

Each cell carries a positivity vector over a fixed list of markers. A
category is one complete assignment of positive/negative to every marker,
and a cell belongs to a category only if its vector matches the definition
exactly. The numeric and character entry points build the same boolean
definition matrix and share one matcher, so equivalent inputs give
identical counts.

Functions
---------
cell_counts
    Count cells per subject for boolean (or 0/1) category definitions.
cell_counts_character
    Count cells per subject for labels such as ``"IFNg&!IL2&TNFa"``.
combination_label
    Label of a boolean category definition.
parse_combination
    Split a label into (marker, positive) pairs.
positivity_frame
    Coerce a per-cell table to a boolean marker frame.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import CellCountError

logger = logging.getLogger(__name__)

NEGATION = "!"
SEPARATOR = "&"

_POSITIVE_LABELS = {"+", "pos", "positive", "true", "t", "1", "yes"}
_NEGATIVE_LABELS = {"-", "neg", "negative", "false", "f", "0", "no"}

CellTables = Union[Mapping[str, Union[pd.DataFrame, np.ndarray]], Sequence[Union[pd.DataFrame, np.ndarray]]]


def combination_label(definition, markers: Sequence[str]) -> str:
    """Build the label of a category definition.

    >>> combination_label([True, False, True], ["IFNg", "IL2", "TNFa"])
    'IFNg&!IL2&TNFa'
    """
    definition = np.asarray(definition, dtype=bool)
    if definition.shape != (len(markers),):
        raise CellCountError(f"Definition of length {definition.size} does not match {len(markers)} markers.")
    return SEPARATOR.join(m if positive else f"{NEGATION}{m}" for m, positive in zip(markers, definition))


def parse_combination(label: str) -> List[Tuple[str, bool]]:
    """Split ``"IFNg&!IL2"`` into ``[("IFNg", True), ("IL2", False)]``."""
    if not isinstance(label, str) or not label.strip():
        raise CellCountError(f"Malformed category label: {label!r}")
    parsed = []
    for token in label.split(SEPARATOR):
        token = token.strip()
        positive = not token.startswith(NEGATION)
        marker = token[len(NEGATION):].strip() if not positive else token
        if not marker or NEGATION in marker:
            raise CellCountError(f"Malformed category label: {label!r}")
        parsed.append((marker, positive))
    markers = [m for m, _ in parsed]
    if len(set(markers)) != len(markers):
        raise CellCountError(f"Category label {label!r} names a marker more than once.")
    return parsed


def _to_positivity(values: np.ndarray, where: str) -> np.ndarray:
    values = np.asarray(values)
    if values.dtype == bool:
        return values
    if values.dtype.kind in "OUS":
        lowered = np.char.lower(np.char.strip(values.astype(str)))
        positive = np.isin(lowered, list(_POSITIVE_LABELS))
        negative = np.isin(lowered, list(_NEGATIVE_LABELS))
        if not np.all(positive | negative):
            bad = sorted(set(lowered[~(positive | negative)].tolist()))[:5]
            raise CellCountError(f"{where}: unrecognized positivity labels {bad}")
        return positive
    if values.dtype.kind in "iuf":
        if values.size and not np.all(np.isfinite(values)):
            raise CellCountError(f"{where}: missing or non-finite marker values.")
        return values != 0
    raise CellCountError(f"{where}: cannot interpret values of dtype {values.dtype} as marker positivity.")


def positivity_frame(table, markers: Sequence[str] = None, where: str = "cell table") -> pd.DataFrame:
    """Coerce one per-cell table to a boolean frame with one column per marker.

    Parameters
    ----------
    table : pd.DataFrame or array-like
        Cells in rows, markers in columns. Arrays are labeled with
        ``markers`` positionally.
    markers : sequence of str, optional
        Marker names. For a DataFrame, the columns are selected (and ordered)
        by these names.
    where : str
        Context for error messages.
    """
    if isinstance(table, pd.DataFrame):
        if markers is not None:
            missing = [m for m in markers if m not in table.columns]
            if missing:
                raise CellCountError(f"{where}: markers {missing} are not present in the data.")
            table = table.loc[:, list(markers)]
        columns = [str(c) for c in table.columns]
        values = table.to_numpy()
    else:
        values = np.asarray(table)
        if values.ndim != 2:
            raise CellCountError(f"{where}: expected a 2-D (cells x markers) table, got {values.ndim}-D.")
        if markers is None:
            columns = [f"M{j}" for j in range(values.shape[1])]
        else:
            if len(markers) != values.shape[1]:
                raise CellCountError(
                    f"{where}: table has {values.shape[1]} columns but {len(markers)} markers were given."
                )
            columns = [str(m) for m in markers]
    if len(set(columns)) != len(columns):
        raise CellCountError(f"{where}: duplicated marker columns.")
    if values.shape[0] == 0:
        return pd.DataFrame(np.zeros((0, len(columns)), dtype=bool), columns=columns)
    return pd.DataFrame(_to_positivity(values, where), columns=columns)


def _subject_tables(data: CellTables) -> Tuple[List, List]:
    if isinstance(data, Mapping):
        names = list(data.keys())
        tables = list(data.values())
    elif isinstance(data, (pd.DataFrame, np.ndarray)):
        raise CellCountError("Expected a mapping or sequence of per-subject cell tables, got a single table.")
    else:
        tables = list(data)
        names = list(range(len(tables)))
    if not tables:
        raise CellCountError("No subjects to count.")
    return names, tables


def _count_matches(tables: Sequence[np.ndarray], definitions: np.ndarray) -> np.ndarray:
    """Core matcher: rows are subjects, columns are definitions."""
    definitions = np.ascontiguousarray(definitions, dtype=bool)
    keys = [row.tobytes() for row in definitions]
    counts = np.zeros((len(tables), len(keys)), dtype=np.int64)
    for i, cells in enumerate(tables):
        cells = np.ascontiguousarray(cells, dtype=bool)
        if cells.shape[0] == 0:
            continue
        patterns, n = np.unique(cells, axis=0, return_counts=True)
        observed: Dict[bytes, int] = {row.tobytes(): int(c) for row, c in zip(patterns, n)}
        counts[i] = [observed.get(key, 0) for key in keys]
    return counts


def _count(data: CellTables, definitions: pd.DataFrame) -> pd.DataFrame:
    names, tables = _subject_tables(data)
    markers = list(definitions.columns)

    cells = []
    for name, table in zip(names, tables):
        where = f"subject {name!r}"
        if isinstance(table, pd.DataFrame):
            frame = positivity_frame(table.rename(columns=str), markers, where)
            extra = [c for c in table.columns if str(c) not in markers]
            if extra:
                raise CellCountError(f"{where}: markers {extra} are not assigned by the category definitions.")
        else:
            frame = positivity_frame(table, markers, where)
        cells.append(frame.to_numpy())

    if sum(c.shape[0] for c in cells) == 0:
        raise CellCountError("Cell tables contain no cells.")

    counts = _count_matches(cells, definitions.to_numpy(dtype=bool))
    out = pd.DataFrame(counts, index=pd.Index(names, name="subject"), columns=pd.Index(definitions.index))
    logger.debug(f"Counted {out.to_numpy().sum():,} cells in {out.shape[1]} categories for {out.shape[0]} subjects")
    return out


def cell_counts(data: CellTables, combinations) -> pd.DataFrame:
    """Count cells per subject and category (boolean encoding).

    Parameters
    ----------
    data : mapping or sequence
        Subject -> per-cell table (``pd.DataFrame`` with one column per
        marker, or a 2-D array ordered like the definition columns). Values
        may be bool, 0/1 or ``"+"``/``"-"``.
    combinations : pd.DataFrame or array-like
        One row per category, one column per marker, True for positive.
        DataFrame columns name the markers; a default integer index is
        replaced by the category labels.

    Returns
    -------
    pd.DataFrame
        Integer counts; rows are subjects in input order, columns are
        categories in the supplied order.

    Raises
    ------
    CellCountError
        If a category references a marker missing from the data, or there
        are no subjects or no cells.
    """
    if isinstance(combinations, pd.DataFrame):
        definitions = combinations.rename(columns=str)
        values = _to_positivity(definitions.to_numpy(), "category definitions")
        markers = list(definitions.columns)
        index = definitions.index
        if isinstance(index, pd.RangeIndex):
            index = pd.Index([combination_label(row, markers) for row in values])
    else:
        values = np.asarray(combinations)
        if values.ndim != 2:
            raise CellCountError(f"Category definitions must be 2-D (categories x markers), got {values.ndim}-D.")
        values = _to_positivity(values, "category definitions")
        first = next(iter(_subject_tables(data)[1]))
        if isinstance(first, pd.DataFrame):
            markers = [str(c) for c in first.columns]
            if len(markers) != values.shape[1]:
                raise CellCountError(
                    f"Category definitions have {values.shape[1]} columns but the data has {len(markers)} markers."
                )
        else:
            markers = [f"M{j}" for j in range(values.shape[1])]
        index = pd.Index([combination_label(row, markers) for row in values])

    if len(set(markers)) != len(markers):
        raise CellCountError("Category definitions name a marker more than once.")
    definitions = pd.DataFrame(values, index=index, columns=markers)
    return _count(data, definitions)


def cell_counts_character(data: CellTables, combinations: Sequence[str]) -> pd.DataFrame:
    """Count cells per subject and category (label encoding).

    Parameters
    ----------
    data : mapping or sequence
        Subject -> per-cell table with one column per marker.
    combinations : sequence of str
        Labels such as ``"IFNg&!IL2&TNFa"``; each must name every marker
        exactly once, ``!`` marking negativity.

    Returns
    -------
    pd.DataFrame
        Integer counts with the labels as columns.
    """
    if isinstance(combinations, str):
        combinations = [combinations]
    labels = list(combinations)
    if not labels:
        raise CellCountError("No category labels given.")

    parsed = [dict(parse_combination(label)) for label in labels]
    markers = list(parsed[0].keys())
    for label, assignment in zip(labels, parsed):
        if set(assignment) != set(markers):
            raise CellCountError(f"Category label {label!r} does not assign exactly the markers {markers}.")
    values = np.array([[assignment[m] for m in markers] for assignment in parsed], dtype=bool)
    definitions = pd.DataFrame(values, index=pd.Index(labels), columns=markers)
    return _count(data, definitions)
