"""
tests/test_reconciler.py - Chronological replay of the match history.
"""

import pytest

from conftest import at, make_match
from league.data_models.rating import (
    LeagueMatch, MatchStatus, Participant, ParticipantKind, RatingHistoryRecord,
    Side, SkillTier, won_side
)
from league.operations.reconciler import (
    ReconcilerState, SequentialReconciler, check_ledger_consistency, order_matches
)
from league.utils.elo import RatingModel


@pytest.fixture
def reconciler():
    return SequentialReconciler()


@pytest.fixture
def players():
    return [Participant(participant_id=pid, name=f"P{pid}") for pid in (1, 2, 3, 4)]


# ======================================================================
# Basic replay
# ======================================================================


class TestReplay:
    def test_single_match_example(self, reconciler, players):
        result = reconciler.replay([make_match(1, [1], [2], 21, 15)], players[:2])

        assert result.state is ReconcilerState.FINALIZED
        assert result.matches_processed == 1
        assert result.final_ratings == {1: 1516, 2: 1484}
        records = {(r.participant_id, r.match_id): r for r in result.history_records}
        a = records[(1, 1)]
        b = records[(2, 1)]
        assert (a.old_rating, a.new_rating, a.delta) == (1500, 1516, 16)
        assert (b.old_rating, b.new_rating, b.delta) == (1500, 1484, -16)

    def test_each_match_uses_previous_output(self, reconciler, players):
        matches = [
            make_match(1, [1], [2], 21, 15),
            make_match(2, [1], [2], 21, 15),
        ]
        result = reconciler.replay(matches, players[:2])

        second = [r for r in result.history_records if r.match_id == 2]
        by_player = {r.participant_id: r for r in second}
        assert by_player[1].old_rating == 1516
        assert by_player[2].old_rating == 1484
        assert by_player[1].new_rating == 1516 + by_player[1].delta

    def test_input_order_does_not_matter(self, reconciler, players):
        matches = [
            make_match(1, [1], [2], 21, 15),
            make_match(2, [2], [3], 21, 19),
            make_match(3, [3], [1], 21, 10),
        ]
        forward = reconciler.replay(matches, players)
        backward = reconciler.replay(list(reversed(matches)), players)
        assert forward.final_ratings == backward.final_ratings
        assert forward.history_records == backward.history_records

    def test_deterministic(self, reconciler, players):
        matches = [make_match(i, [1 + i % 2], [3 + i % 2], 21, 10 + i) for i in range(1, 9)]
        first = reconciler.replay(matches, players)
        second = reconciler.replay(matches, players)
        assert first.final_ratings == second.final_ratings
        assert first.history_records == second.history_records

    def test_stored_ratings_are_ignored(self, reconciler):
        stale = [Participant(1, rating=1900), Participant(2, rating=1100)]
        result = reconciler.replay([make_match(1, [1], [2], 21, 15)], stale)
        assert result.final_ratings == {1: 1516, 2: 1484}

    def test_skill_tier_seeds_first_rating(self, reconciler):
        seeded = [
            Participant(1, skill_tier=SkillTier.ADVANCED),
            Participant(2, skill_tier=SkillTier.BEGINNER),
        ]
        result = reconciler.replay([make_match(1, [2], [1], 21, 19)], seeded)
        records = {r.participant_id: r for r in result.history_records}
        assert records[1].old_rating == 1800
        assert records[2].old_rating == 1200
        assert records[2].delta == 31

    def test_participant_without_matches_keeps_starting_rating(self, reconciler, players):
        result = reconciler.replay([make_match(1, [1], [2], 21, 15)], players)
        assert result.final_ratings[3] == 1500
        assert result.participants[3].matches_played == 0
        assert result.participants[3].recent_form == "N/A"

    def test_non_completed_matches_are_skipped(self, reconciler, players):
        scheduled = LeagueMatch(2, (1,), (2,), None, None, status=MatchStatus.SCHEDULED, created_at=at(5))
        result = reconciler.replay([make_match(1, [1], [2], 21, 15), scheduled], players[:2])
        assert result.matches_processed == 1
        assert result.matches_skipped == 1
        assert result.failed_matches == []

    def test_doubles_match(self, reconciler, players):
        result = reconciler.replay([make_match(1, [1, 2], [3, 4], 21, 17)], players)
        assert result.final_ratings == {1: 1516, 2: 1516, 3: 1484, 4: 1484}
        assert len(result.history_records) == 4


# ======================================================================
# Statistics
# ======================================================================


class TestStatistics:
    def test_points_and_counts(self, reconciler, players):
        matches = [
            make_match(1, [1], [2], 21, 15),
            make_match(2, [1], [2], 18, 21),
            make_match(3, [1], [2], 21, 9),
        ]
        result = reconciler.replay(matches, players[:2])
        alice = result.participants[1]
        bob = result.participants[2]

        assert (alice.matches_played, alice.matches_won, alice.matches_lost) == (3, 2, 1)
        assert alice.league_points == 3 + 1 + 3
        assert bob.league_points == 1 + 3 + 1
        assert alice.total_points_scored == 21 + 18 + 21
        assert bob.total_points_scored == 15 + 21 + 9
        assert alice.games_played == 3
        assert alice.win_percentage == 67
        assert bob.win_percentage == 33

    def test_peak_rating(self, reconciler, players):
        matches = [
            make_match(1, [1], [2], 21, 15),
            make_match(2, [1], [2], 5, 21),
            make_match(3, [1], [2], 5, 21),
        ]
        result = reconciler.replay(matches, players[:2])
        assert result.participants[1].peak_rating == 1516
        assert result.participants[1].current_rating < 1516
        assert result.participants[2].peak_rating == result.participants[2].current_rating

    def test_recent_form_uses_last_five(self, reconciler, players):
        # Alice: L L W W W L W W (oldest first)
        outcomes = [False, False, True, True, True, False, True, True]
        matches = [
            make_match(i + 1, [1], [2], 21 if won else 10, 10 if won else 21)
            for i, won in enumerate(outcomes)
        ]
        result = reconciler.replay(matches, players[:2])
        alice = result.participants[1]
        assert alice.recent_results == tuple(outcomes)
        assert alice.recent_form == "4/5"
        assert result.participants[2].recent_form == "1/5"

    def test_recent_results_window_is_ten(self, reconciler, players):
        matches = [make_match(i, [1], [2], 21, 10) for i in range(1, 13)]
        result = reconciler.replay(matches, players[:2])
        assert len(result.participants[1].recent_results) == 10


# ======================================================================
# Failures and divergences
# ======================================================================


class TestFailures:
    def test_unknown_participant_fails_only_that_match(self, reconciler, players):
        matches = [
            make_match(1, [1], [2], 21, 15),
            make_match(2, [1], [99], 21, 15),
            make_match(3, [2], [1], 21, 15),
        ]
        result = reconciler.replay(matches, players[:2])

        assert result.matches_processed == 2
        assert [f.match_id for f in result.failed_matches] == [2]
        assert "99" in result.failed_matches[0].reason
        # Match 2 changed nothing, so match 3 starts from match 1's output
        third = {r.participant_id: r for r in result.history_records if r.match_id == 3}
        assert third[1].old_rating == 1516

    def test_tied_score_is_reported_not_raised(self, reconciler, players):
        result = reconciler.replay([make_match(1, [1], [2], 15, 15)], players[:2])
        assert result.matches_processed == 0
        assert result.failed_matches[0].match_id == 1
        assert result.final_ratings == {1: 1500, 2: 1500}

    @pytest.mark.parametrize("side_a,side_b,score_a,score_b", [
        ([], [2], 21, 15),
        ([1], [1], 21, 15),
        ([1, 1], [2], 21, 15),
        ([1], [2], -3, 21),
        ([1], [2], None, 21),
    ])
    def test_malformed_matches_fail(self, reconciler, players, side_a, side_b, score_a, score_b):
        result = reconciler.replay([make_match(1, side_a, side_b, score_a, score_b)], players[:2])
        assert result.matches_failed == 1
        assert result.history_records == []

    def test_declared_winner_divergence(self, reconciler, players):
        match = make_match(1, [1], [2], 21, 15, declared_winner=Side.B)
        result = reconciler.replay([match], players[:2])

        assert len(result.divergences) == 1
        divergence = result.divergences[0]
        assert divergence.expected_winner is Side.A
        assert divergence.declared_winner is Side.B
        # The score decides the outcome, not the declared winner
        assert result.final_ratings == {1: 1516, 2: 1484}

    def test_matching_declared_winner_is_clean(self, reconciler, players):
        match = make_match(1, [1], [2], 21, 15, declared_winner=Side.A)
        result = reconciler.replay([match], players[:2])
        assert result.divergences == []
        assert result.computation_divergences == []

    def test_broken_model_is_flagged(self, players):
        class InvertedModel(RatingModel):
            def calculate_rating_change(self, expected_score, actual_score):
                return -super().calculate_rating_change(expected_score, actual_score)

        result = SequentialReconciler(InvertedModel()).replay(
            [make_match(1, [1], [2], 21, 15)], players[:2]
        )
        assert result.has_computation_divergences
        assert {d.participant_id for d in result.computation_divergences} == {1, 2}


# ======================================================================
# Drift against stored state
# ======================================================================


class TestDrift:
    def test_ledger_drift(self, reconciler, players):
        stored = [RatingHistoryRecord(1, 1, 1500, 1520, 20, 1500)]
        result = reconciler.replay([make_match(1, [1], [2], 21, 15)], players[:2], stored)

        assert len(result.ledger_drift) == 1
        drift = result.ledger_drift[0]
        assert drift.stored.delta == 20
        assert drift.recomputed.delta == 16

    def test_matching_ledger_has_no_drift(self, reconciler, players):
        first = reconciler.replay([make_match(1, [1], [2], 21, 15)], players[:2])
        second = reconciler.replay(
            [make_match(1, [1], [2], 21, 15)], players[:2], first.history_records
        )
        assert second.ledger_drift == []

    def test_rating_drift(self, reconciler):
        stored = [Participant(1, rating=1530), Participant(2, rating=1484)]
        result = reconciler.replay([make_match(1, [1], [2], 21, 15)], stored)

        assert len(result.rating_drift) == 1
        drift = result.rating_drift[0]
        assert (drift.participant_id, drift.stored_rating, drift.expected_rating) == (1, 1530, 1516)
        assert drift.difference == -14

    def test_skill_recommendations(self, reconciler):
        participants = [
            Participant(1, skill_tier=SkillTier.BEGINNER),
            Participant(2, skill_tier=SkillTier.ADVANCED),
        ]
        matches = [make_match(i, [1], [2], 21, 5) for i in range(1, 31)]
        result = reconciler.replay(matches, participants)
        recommended = {r.participant_id: r.recommended_tier for r in result.skill_recommendations}
        assert recommended[1] is SkillTier.INTERMEDIATE
        assert recommended[2] is SkillTier.BEGINNER


class TestLedgerConsistency:
    def test_newest_row_wins(self):
        history = [
            RatingHistoryRecord(1, 1, 1500, 1516, 16, 1500, created_at=at(1)),
            RatingHistoryRecord(1, 2, 1516, 1530, 14, 1490, created_at=at(2)),
        ]
        assert check_ledger_consistency([Participant(1, rating=1530)], history) == []
        drift = check_ledger_consistency([Participant(1, rating=1516)], history)
        assert drift[0].expected_rating == 1530

    def test_participants_without_history_are_skipped(self):
        assert check_ledger_consistency([Participant(7, rating=1234)], []) == []


class TestHelpers:
    def test_won_side_uses_score_only(self):
        match = make_match(1, [1, 2], [3, 4], 15, 21, declared_winner=Side.A)
        assert won_side(match, 3)
        assert not won_side(match, 1)

    def test_won_side_rejects_outsiders(self):
        with pytest.raises(ValueError):
            won_side(make_match(1, [1], [2], 21, 15), 5)

    def test_order_matches_falls_back_to_created_at(self):
        late = LeagueMatch(1, (1,), (2,), 21, 15, created_at=at(10))
        early = LeagueMatch(2, (1,), (2,), 21, 15, created_at=at(20), completed_at=at(5))
        tie = LeagueMatch(3, (1,), (2,), 21, 15, completed_at=at(5))
        assert [m.match_id for m in order_matches([late, early, tie])] == [2, 3, 1]

    def test_team_replay_uses_team_bounds(self):
        teams = [
            Participant(10, rating=1500, kind=ParticipantKind.TEAM),
            Participant(20, rating=1500, kind=ParticipantKind.TEAM),
        ]
        reconciler = SequentialReconciler(kind=ParticipantKind.TEAM)
        matches = [make_match(i, [10], [20], 21, 5) for i in range(1, 200)]
        result = reconciler.replay(matches, teams)
        assert result.final_ratings[10] <= 2500
        assert all(r.kind is ParticipantKind.TEAM for r in result.history_records)
