from __future__ import annotations

import numpy as np
import pytest

from compass_mcmc import (
    ActiveSet,
    InvalidActiveSetError,
    InvalidParameterError,
    SufficientStats,
    sample_pu_ps,
    sample_pu_ps_full,
)


@pytest.fixture
def alphas(stats):
    K = stats.n_categories
    return np.linspace(1.0, 3.0, K), np.linspace(2.0, 0.5, K)


@pytest.mark.parametrize("indices", [[], [0], [0, 1, 3], [0, 1, 2, 3]])
def test_full_draw_rows_are_simplices(stats, alphas, indices):
    alpha_u, alpha_s = alphas
    active = ActiveSet.from_indices(indices, stats.n_categories)
    draw = sample_pu_ps_full(alpha_u, alpha_s, 1.5, active, stats, np.random.default_rng(2))
    for p in (draw.ps, draw.pu):
        assert p.shape == (stats.n_subjects, stats.n_categories)
        assert np.all(p > 0)
        np.testing.assert_allclose(p.sum(axis=1), 1.0, atol=1e-9)


def test_restricted_draw_is_zero_outside_active_set(stats, alphas):
    alpha_u, alpha_s = alphas
    active = ActiveSet.from_indices([0, 2], stats.n_categories)
    draw = sample_pu_ps(alpha_u, alpha_s, 1.5, active, stats, np.random.default_rng(2))
    for p in (draw.ps, draw.pu):
        np.testing.assert_array_equal(p[:, [1, 3]], 0.0)
        np.testing.assert_allclose(p.sum(axis=1), 1.0, atol=1e-9)


def test_restricted_draw_with_empty_set_falls_back_to_full(stats, alphas):
    alpha_u, alpha_s = alphas
    empty = ActiveSet.empty(stats.n_categories)
    restricted = sample_pu_ps(alpha_u, alpha_s, 1.5, empty, stats, np.random.default_rng(4))
    full = sample_pu_ps_full(alpha_u, alpha_s, 1.5, empty, stats, np.random.default_rng(4))
    np.testing.assert_array_equal(restricted.ps, full.ps)
    np.testing.assert_array_equal(restricted.pu, full.pu)


@pytest.mark.parametrize("indices", [[0], [1, 2], [0, 1, 2, 3]])
def test_full_draw_restricted_to_active_set_reproduces_restricted_draw(stats, alphas, indices):
    alpha_u, alpha_s = alphas
    active = ActiveSet.from_indices(indices, stats.n_categories)
    full = sample_pu_ps_full(alpha_u, alpha_s, 2.0, active, stats, np.random.default_rng(9))
    restricted = sample_pu_ps(alpha_u, alpha_s, 2.0, active, stats, np.random.default_rng(9))

    mask = active.mask
    for f, r in ((full.ps, restricted.ps), (full.pu, restricted.pu)):
        sub = f[:, mask] / f[:, mask].sum(axis=1, keepdims=True)
        np.testing.assert_allclose(sub, r[:, mask], rtol=1e-12)


def test_each_subject_is_conditioned_on_its_own_indicators(stats, alphas):
    alpha_u, alpha_s = alphas
    indicators = np.zeros((stats.n_subjects, stats.n_categories), dtype=bool)
    indicators[0, 0] = True
    indicators[2, [0, 1]] = True
    full = sample_pu_ps_full(alpha_u, alpha_s, 2.0, indicators, stats, np.random.default_rng(9))
    restricted = sample_pu_ps(alpha_u, alpha_s, 2.0, indicators, stats, np.random.default_rng(9))

    for i in (0, 2):
        mask = indicators[i]
        for f, r in ((full.ps, restricted.ps), (full.pu, restricted.pu)):
            np.testing.assert_array_equal(r[i, ~mask], 0.0)
            np.testing.assert_allclose(f[i, mask] / f[i, mask].sum(), r[i, mask], rtol=1e-12)
    # subject 1 has no responses and keeps its full row
    np.testing.assert_array_equal(restricted.ps[1], full.ps[1])
    np.testing.assert_array_equal(restricted.pu[1], full.pu[1])


def test_floor_bounds_inactive_entries():
    n_s = np.array([[0, 0, 100], [0, 0, 80]])
    n_u = np.array([[0, 0, 100], [0, 0, 90]])
    stats = SufficientStats.from_counts(n_s, n_u, eligible=[True, True, True])
    alpha = np.full(3, 1e-3)
    gamma, floor_scale = 1.5, 2.0
    draw = sample_pu_ps_full(alpha, alpha, gamma, ActiveSet.from_indices([2], 3), stats,
                             np.random.default_rng(0), floor_scale=floor_scale)
    floor_s = floor_scale * gamma / 3 / (stats.N_s + alpha.sum())
    # renormalization can only shrink entries by the row total of the floored draw
    assert np.all(draw.ps[:, :2] >= floor_s[:, None] / (1 + 2 * floor_s[:, None]) - 1e-15)


def test_subject_without_cells_gets_prior_draw():
    n_s = np.array([[10, 5, 5], [0, 0, 0]])
    n_u = np.array([[1, 9, 10], [0, 0, 0]])
    stats = SufficientStats.from_counts(n_s, n_u)
    draw = sample_pu_ps_full(np.ones(3), np.ones(3), 1.0, ActiveSet.from_indices([0], 3), stats,
                             np.random.default_rng(5))
    np.testing.assert_allclose(draw.ps.sum(axis=1), 1.0, atol=1e-9)
    assert np.all(np.isfinite(draw.pu))


def test_draws_reject_bad_state(stats, alphas):
    alpha_u, alpha_s = alphas
    active = ActiveSet.from_indices([0], stats.n_categories)
    rng = np.random.default_rng(0)
    with pytest.raises(InvalidActiveSetError):
        sample_pu_ps_full(alpha_u, alpha_s, float(stats.n_categories), active, stats, rng)
    with pytest.raises(InvalidActiveSetError):
        sample_pu_ps(alpha_u, alpha_s, 1.0, [7], stats, rng)
    with pytest.raises(InvalidParameterError):
        sample_pu_ps_full(-alpha_u, alpha_s, 1.0, active, stats, rng)
    with pytest.raises(InvalidParameterError):
        sample_pu_ps_full(alpha_u, alpha_s, 1.0, active, stats, rng, floor_scale=-1.0)
