from __future__ import annotations

import itertools

import numpy as np
import pandas as pd
import pytest

from compass_mcmc import (
    CellCountError,
    cell_counts,
    cell_counts_character,
    combination_label,
    parse_combination,
)

MARKERS = ["IFNg", "IL2", "TNFa"]


def _all_combinations():
    rows = list(itertools.product([False, True], repeat=len(MARKERS)))
    return pd.DataFrame(rows, columns=MARKERS)


def test_label_and_parse_are_inverse():
    label = combination_label([True, False, True], MARKERS)
    assert label == "IFNg&!IL2&TNFa"
    assert parse_combination(label) == [("IFNg", True), ("IL2", False), ("TNFa", True)]


@pytest.mark.parametrize("label", ["", "IFNg&&IL2", "IFNg&!", "IFNg&!!IL2", "IFNg&IFNg"])
def test_parse_rejects_malformed_labels(label):
    with pytest.raises(CellCountError):
        parse_combination(label)


def test_counts_conserve_cells_when_all_combinations_listed(cell_tables):
    counts = cell_counts(cell_tables, _all_combinations())
    assert counts.shape == (2, 8)
    assert counts.loc["donor_a"].sum() == 400
    assert counts.loc["donor_b"].sum() == 250


def test_numeric_and_character_encodings_agree(cell_tables):
    combos = _all_combinations()
    numeric = cell_counts(cell_tables, combos)
    labels = [combination_label(row, MARKERS) for row in combos.to_numpy()]
    character = cell_counts_character(cell_tables, labels)
    np.testing.assert_array_equal(numeric.to_numpy(), character.to_numpy())
    assert list(character.columns) == labels


def test_character_encoding_accepts_plus_minus_cells(cell_tables):
    signed = {k: pd.DataFrame(np.where(v.to_numpy(), "+", "-"), columns=v.columns) for k, v in cell_tables.items()}
    labels = ["IFNg&IL2&TNFa", "!IFNg&!IL2&TNFa"]
    np.testing.assert_array_equal(
        cell_counts_character(signed, labels).to_numpy(),
        cell_counts_character(cell_tables, labels).to_numpy(),
    )


def test_rows_and_columns_follow_input_order(cell_tables):
    labels = ["TNFa&IL2&IFNg", "!IFNg&IL2&!TNFa", "IFNg&!IL2&!TNFa"]
    reversed_tables = {"donor_b": cell_tables["donor_b"], "donor_a": cell_tables["donor_a"]}
    counts = cell_counts_character(reversed_tables, labels)
    assert list(counts.index) == ["donor_b", "donor_a"]
    assert list(counts.columns) == labels

    expected = (cell_tables["donor_a"].to_numpy() == [False, True, False]).all(axis=1).sum()
    assert counts.loc["donor_a", "!IFNg&IL2&!TNFa"] == expected


def test_exact_match_not_subset():
    table = pd.DataFrame({"A": [True, True, False], "B": [True, False, False]})
    counts = cell_counts_character({"s": table}, ["A&!B", "A&B", "!A&!B"])
    assert counts.loc["s"].tolist() == [1, 1, 1]


def test_array_tables_with_positional_markers():
    tables = [np.array([[1, 0], [1, 0], [0, 1]]), np.array([[0, 0]])]
    counts = cell_counts(tables, np.array([[1, 0], [0, 1], [0, 0]]))
    assert counts.to_numpy().tolist() == [[2, 1, 0], [0, 0, 1]]
    assert list(counts.columns) == ["M0&!M1", "!M0&M1", "!M0&!M1"]


def test_missing_marker_raises(cell_tables):
    with pytest.raises(CellCountError, match="not present"):
        cell_counts_character(cell_tables, ["IFNg&IL2&CD154"])


def test_unassigned_marker_raises(cell_tables):
    with pytest.raises(CellCountError, match="not assigned"):
        cell_counts_character(cell_tables, ["IFNg&IL2"])


def test_empty_input_raises():
    with pytest.raises(CellCountError):
        cell_counts({}, _all_combinations())
    empty = pd.DataFrame(np.zeros((0, 3), dtype=bool), columns=MARKERS)
    with pytest.raises(CellCountError, match="no cells"):
        cell_counts({"s": empty}, _all_combinations())


def test_inconsistent_label_markers_raise(cell_tables):
    with pytest.raises(CellCountError, match="exactly the markers"):
        cell_counts_character(cell_tables, ["IFNg&IL2&TNFa", "IFNg&IL2&!CD154"])
