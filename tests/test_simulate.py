from __future__ import annotations

import numpy as np
import pytest

from compass_mcmc import InvalidParameterError, simulate_compass_data


def test_shapes_and_truth():
    stimulated, unstimulated, truth = simulate_compass_data(n_subjects=4, markers=["A", "B"], n_cells_s=300,
                                                            n_cells_u=200, response_categories=[("A",)], seed=0)
    assert list(stimulated) == list(unstimulated) == ["subject_01", "subject_02", "subject_03", "subject_04"]
    assert all(t.shape == (300, 2) for t in stimulated.values())
    assert all(t.shape == (200, 2) for t in unstimulated.values())
    assert truth["response_categories"] == ["A&!B"]
    assert set(truth["responders"]) <= set(stimulated)


def test_responders_show_induced_cells():
    stimulated, unstimulated, truth = simulate_compass_data(n_subjects=10, markers=["A", "B", "C"],
                                                            response_categories=[("A", "C")],
                                                            responder_fraction=1.0, response_rate=0.05,
                                                            background_rate=0.01, seed=2)
    assert len(truth["responders"]) == 10
    pattern = np.array([True, False, True])
    for subject in stimulated:
        n_s = (stimulated[subject].to_numpy() == pattern).all(axis=1).sum()
        n_u = (unstimulated[subject].to_numpy() == pattern).all(axis=1).sum()
        assert n_s > n_u


def test_seed_reproduces_tables():
    first = simulate_compass_data(n_subjects=2, n_cells_s=100, n_cells_u=100, seed=9)
    second = simulate_compass_data(n_subjects=2, n_cells_s=100, n_cells_u=100, seed=9)
    for subject in first[0]:
        assert first[0][subject].equals(second[0][subject])


@pytest.mark.parametrize(
    "kwargs",
    [{"n_subjects": 0}, {"background_rate": 1.5}, {"response_rate": -0.1}, {"response_categories": [("X",)]}],
)
def test_invalid_arguments_raise(kwargs):
    with pytest.raises(InvalidParameterError):
        simulate_compass_data(**kwargs)
