"""Ballot casting, duel tallies and dominance graphs."""

import numpy as np
import pytest

from maximal_lotteries import (
    PreorderBallot,
    build_pairwise_preferences,
    cast_ballot,
    empty_duels,
    make_dominance_graph,
    optimal_strategy,
)


def test_empty_duels_are_wide_integers():
    duels = empty_duels(3)
    assert duels.shape == (3, 3)
    assert duels.dtype == np.int64
    assert not duels.any()


class TestCastBallot:
    def test_prefers_lower_indices(self):
        duels = empty_duels(3)
        cast_ballot(duels, lambda i, j: j - i)
        assert duels.tolist() == [[0, 1, 1], [0, 0, 1], [0, 0, 0]]

    def test_ties_add_nothing(self):
        duels = empty_duels(4)
        cast_ballot(duels, lambda i, j: 0)
        assert not duels.any()

    def test_accumulates(self):
        duels = empty_duels(2)
        for _ in range(3):
            cast_ballot(duels, lambda i, j: 1)
        cast_ballot(duels, lambda i, j: -1)
        assert duels.tolist() == [[0, 1], [3, 0]]

    def test_failing_comparison_leaves_tally_untouched(self):
        duels = empty_duels(3)
        cast_ballot(duels, lambda i, j: 1)
        before = duels.copy()

        def comparison(i, j):
            if (i, j) == (2, 1):
                raise RuntimeError("unreadable ballot")
            return -1

        with pytest.raises(RuntimeError):
            cast_ballot(duels, comparison)
        assert np.array_equal(duels, before)


class TestPreorderBallot:
    def test_compare(self):
        ballot = PreorderBallot({0: (3, 3), 1: (1, 2)})
        ballot.rank(2, 2)
        assert ballot.compare(0, 1) == 1
        assert ballot.compare(1, 0) == -1
        assert ballot.compare(1, 2) == 0
        assert ballot.compare(0, 3) == 0

    def test_cast_into(self):
        ballot = PreorderBallot({0: (3, 3), 1: (1, 2), 2: (2, 2)})
        duels = empty_duels(4)
        ballot.cast_into(duels)
        assert duels.tolist() == [
            [0, 1, 1, 0],
            [0, 0, 0, 0],
            [0, 0, 0, 0],
            [0, 0, 0, 0],
        ]

    def test_invalid_bounds(self):
        with pytest.raises(ValueError, match="invalid rank bounds"):
            PreorderBallot().rank(0, 3, 1)

    def test_unrank(self):
        ballot = PreorderBallot({0: (1, 1)})
        assert ballot.is_ranked(0)
        ballot.unrank(0)
        ballot.unrank(5)
        assert not ballot.is_ranked(0)


class TestRankings:
    def test_complete_rankings(self):
        rankings = [np.array([0, 1, 2]), np.array([1, 2, 0]), np.array([2, 0, 1])]
        duels = build_pairwise_preferences(rankings)
        assert duels.dtype == np.int64
        assert duels.tolist() == [[0, 2, 1], [1, 0, 2], [2, 1, 0]]

    def test_incomplete_ranking_beats_unranked(self):
        duels = build_pairwise_preferences([np.array([2])], num_candidates=3)
        assert duels.tolist() == [[0, 0, 0], [0, 0, 0], [1, 1, 0]]

    def test_candidate_count_is_inferred(self):
        duels = build_pairwise_preferences([[3, 1]])
        assert duels.shape == (4, 4)
        assert duels[3].tolist() == [1, 1, 1, 0]
        assert duels[1].tolist() == [1, 0, 1, 0]

    @pytest.mark.parametrize(
        "ranking",
        [np.array([0, 5]), np.array([3]), np.array([-1, 0])],
        ids=["past-the-end", "just-past-the-end", "negative"],
    )
    def test_rejects_unknown_candidates(self, ranking):
        with pytest.raises(ValueError, match="outside"):
            build_pairwise_preferences([np.array([0, 1, 2]), ranking], num_candidates=3)

    def test_negative_index_rejected_when_count_is_inferred(self):
        with pytest.raises(ValueError, match="outside"):
            build_pairwise_preferences([[2, -1]])

    def test_empty_ranking_is_accepted(self):
        duels = build_pairwise_preferences([np.array([], dtype=np.int64)], num_candidates=2)
        assert not duels.any()

    def test_matches_comparison_ballots(self):
        rng = np.random.default_rng(11)
        rankings = [rng.permutation(6) for _ in range(25)]
        duels = empty_duels(6)
        for ranking in rankings:
            position = np.argsort(ranking)
            cast_ballot(duels, lambda i, j: int(position[j] - position[i]))
        assert np.array_equal(build_pairwise_preferences(rankings), duels)


class TestDominanceGraph:
    def test_strict_majorities_only(self):
        duels = np.array([[0, 5, 2], [3, 0, 4], [2, 4, 0]])
        graph = make_dominance_graph(duels)
        assert graph.tolist() == [
            [False, True, False],
            [False, False, False],
            [False, False, False],
        ]

    def test_condorcet_paradox_end_to_end(self):
        rankings = [np.array([0, 1, 2]), np.array([1, 2, 0]), np.array([2, 0, 1])]
        strategy = optimal_strategy(make_dominance_graph(build_pairwise_preferences(rankings)))
        assert strategy.is_mixed
        assert np.abs(strategy.probabilities - 1 / 3).sum() < 1e-6

    def test_condorcet_winner_end_to_end(self):
        rankings = [np.array([1, 0, 2]), np.array([1, 2, 0]), np.array([0, 1, 2])]
        strategy = optimal_strategy(make_dominance_graph(build_pairwise_preferences(rankings)))
        assert strategy.is_pure
        assert strategy.candidate == 1
