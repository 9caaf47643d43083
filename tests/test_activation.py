from __future__ import annotations

import numpy as np
import pytest

from compass_mcmc import (
    AcceptanceCounters,
    ActiveSet,
    InvalidActiveSetError,
    InvalidParameterError,
    SufficientStats,
    update_active_set,
)


def _run(stats, n_rounds, seed=0, **kwargs):
    rng = np.random.default_rng(seed)
    K = stats.n_categories
    alpha = np.full(K, 5.0)
    indicators = np.zeros((stats.n_subjects, K), dtype=bool)
    gamma, counters = K / 2, AcceptanceCounters.for_subjects(stats.n_subjects)
    history = []
    for _ in range(n_rounds):
        update = update_active_set(stats, gamma, alpha, alpha, indicators, counters, rng, **kwargs)
        indicators, gamma, counters = update.indicators, update.gamma, update.counters
        history.append(update)
    return history


def test_enriched_category_is_activated():
    n_s = np.array([[200, 400, 400], [150, 420, 430], [180, 410, 410]])
    n_u = np.array([[0, 500, 500], [2, 490, 508], [1, 505, 494]])
    stats = SufficientStats.from_counts(n_s, n_u)
    history = _run(stats, 30)
    assert 0 in history[-1].active
    assert history[-1].mk[0] > 0


def test_responder_and_non_responder_are_told_apart():
    n_s = np.array([[300, 50, 650], [5, 50, 945]])
    n_u = np.array([[5, 50, 945], [5, 50, 945]])
    stats = SufficientStats.from_counts(n_s, n_u)
    history = _run(stats, 200, seed=3)
    mean_indicators = np.mean([u.indicators for u in history[50:]], axis=0)
    assert mean_indicators[0, 0] > 0.9
    assert mean_indicators[1, 0] < 0.3


def test_category_without_evidence_is_never_active():
    n_s = np.array([[30, 0, 5], [25, 0, 6]])
    n_u = np.array([[2, 0, 5], [1, 0, 7]])
    stats = SufficientStats.from_counts(n_s, n_u)
    history = _run(stats, 50, flip_probability=0.8)
    assert all(1 not in update.active for update in history)
    assert not any(update.indicators[:, 1].any() for update in history)
    assert history[-1].mk[1] == 0


def test_summaries_follow_the_indicators(stats):
    for update in _run(stats, 25, gamma_prior_a=2.0, gamma_prior_b=3.0):
        assert update.indicators.shape == (stats.n_subjects, stats.n_categories)
        np.testing.assert_array_equal(update.mk, update.indicators.sum(axis=0))
        np.testing.assert_array_equal(update.active.mask, update.indicators.any(axis=0))
        assert 0 < update.gamma < stats.n_categories


def test_counters_are_monotone_and_consistent(stats):
    history = _run(stats, 40)
    pb1 = [u.counters.pb1 for u in history]
    pb2 = [u.counters.pb2 for u in history]
    assert all(b >= a for a, b in zip(pb1, pb1[1:]))
    assert all(b >= a for a, b in zip(pb2, pb2[1:]))
    assert all(p1 >= p2 >= 0 for p1, p2 in zip(pb1, pb2))

    last = history[-1].counters
    assert last.subject_proposed.sum() == last.pb1
    assert last.subject_accepted.sum() == last.pb2
    assert np.all(last.subject_proposed >= last.subject_accepted)


def test_inputs_are_not_mutated(stats, rng):
    K = stats.n_categories
    indicators = np.zeros((stats.n_subjects, K), dtype=bool)
    indicators[0, 0] = True
    counters = AcceptanceCounters.for_subjects(stats.n_subjects)
    update_active_set(stats, 1.0, np.ones(K), np.ones(K), indicators, counters, rng)
    assert indicators.sum() == 1 and indicators[0, 0]
    assert counters.pb1 == 0
    assert counters.subject_proposed.sum() == 0


def test_shared_mask_starts_every_subject(stats, rng):
    K = stats.n_categories
    update = update_active_set(stats, 1.0, np.ones(K), np.ones(K), ActiveSet.from_indices([0], K),
                               AcceptanceCounters(), rng, n_proposals=0)
    np.testing.assert_array_equal(update.indicators[:, 0], True)
    np.testing.assert_array_equal(update.mk, [stats.n_subjects, 0, 0, 0])
    assert update.counters.subject_proposed.shape == (stats.n_subjects,)


def test_same_seed_same_result(stats):
    first = _run(stats, 10, seed=5)
    second = _run(stats, 10, seed=5)
    for a, b in zip(first, second):
        np.testing.assert_array_equal(a.indicators, b.indicators)
        assert a.gamma == b.gamma


def test_swap_only_moves_preserve_each_subjects_responses(stats, rng):
    K = stats.n_categories
    indicators = np.zeros((stats.n_subjects, K), dtype=bool)
    indicators[0, 1] = True
    indicators[2, [0, 2]] = True
    update = update_active_set(stats, 1.0, np.ones(K), np.ones(K), indicators, AcceptanceCounters(), rng,
                               flip_probability=0.0, n_proposals=20)
    np.testing.assert_array_equal(update.indicators.sum(axis=1), [1, 0, 2])


def test_impossible_swaps_are_not_counted(stats, rng):
    K = stats.n_categories
    update = update_active_set(stats, 1.0, np.ones(K), np.ones(K), ActiveSet.empty(K),
                               AcceptanceCounters(), rng, flip_probability=0.0)
    assert update.counters.pb1 == 0
    assert update.active.size == 0


@pytest.mark.parametrize(
    "mk, active, size, gamma",
    [
        (None, None, 3, 1.0),
        ([3, 1, 0, 0], None, None, 1.0),
        (None, [0], None, 1.0),
        (None, [0, 1], 3, 1.0),
        (None, [9], None, 1.0),
        (None, None, None, 0.0),
        (None, None, None, 4.0),
    ],
)
def test_inconsistent_state_is_fatal(stats, rng, mk, active, size, gamma):
    K = stats.n_categories
    indicators = np.zeros((stats.n_subjects, K), dtype=bool)
    indicators[[0, 1], 0] = True
    indicators[1, 1] = True
    with pytest.raises(InvalidActiveSetError):
        update_active_set(stats, gamma, np.ones(K), np.ones(K), indicators, AcceptanceCounters(), rng,
                          mk=mk, active=active, size=size)


def test_consistent_summaries_are_accepted(stats, rng):
    K = stats.n_categories
    indicators = np.zeros((stats.n_subjects, K), dtype=bool)
    indicators[[0, 1], 0] = True
    indicators[1, 1] = True
    update = update_active_set(stats, 1.0, np.ones(K), np.ones(K), indicators, AcceptanceCounters(), rng,
                               mk=[2, 1, 0, 0], active=[0, 1], size=2, n_proposals=0)
    np.testing.assert_array_equal(update.mk, [2, 1, 0, 0])


def test_ineligible_active_category_is_fatal(rng):
    stats = SufficientStats.from_counts(np.array([[3, 0]]), np.array([[1, 1]]))
    with pytest.raises(InvalidActiveSetError, match="not eligible"):
        update_active_set(stats, 1.0, np.ones(2), np.ones(2), [1], AcceptanceCounters(), rng)


def test_bad_prior_is_rejected(stats, rng):
    K = stats.n_categories
    with pytest.raises(InvalidParameterError):
        update_active_set(stats, 1.0, np.ones(K), np.ones(K), [], AcceptanceCounters(), rng,
                          gamma_prior_a=0.0)
