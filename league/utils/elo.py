import math
from dataclasses import dataclass
from typing import Sequence

from league.config import Config
from league.constants import SkillTierConstants
from league.data_models.rating import (
    MatchRatingResult, Participant, ParticipantKind, ParticipantRatingChange,
    Side, SkillTier, score_winner
)


@dataclass(frozen=True)
class RatingConfig:
    """K-factor and clamp bounds for one rating path"""
    name: str = "player"
    k_factor: int = Config.K_FACTOR
    min_rating: int = Config.PLAYER_MIN_RATING
    max_rating: int = Config.PLAYER_MAX_RATING

    def clamp(self, rating: int) -> int:
        return max(self.min_rating, min(self.max_rating, rating))


@dataclass(frozen=True)
class PlayerRatingConfig(RatingConfig):
    name: str = "player"
    min_rating: int = Config.PLAYER_MIN_RATING
    max_rating: int = Config.PLAYER_MAX_RATING


@dataclass(frozen=True)
class TeamRatingConfig(RatingConfig):
    name: str = "team"
    min_rating: int = Config.TEAM_MIN_RATING
    max_rating: int = Config.TEAM_MAX_RATING


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity"""
    return int(math.floor(value + 0.5))


def skill_tier_for_rating(rating: int) -> SkillTier:
    """Skill tier a rating falls into"""
    if rating >= SkillTierConstants.ADVANCED_MIN_RATING:
        return SkillTier.ADVANCED
    if rating >= SkillTierConstants.INTERMEDIATE_MIN_RATING:
        return SkillTier.INTERMEDIATE
    return SkillTier.BEGINNER


class RatingModel:
    """Handles Elo rating calculations for a single match between two sides"""

    def __init__(self, config: RatingConfig = None):
        self.config = config or PlayerRatingConfig()

    @classmethod
    def for_kind(cls, kind: ParticipantKind) -> 'RatingModel':
        """Model with the named configuration for players or teams"""
        if kind is ParticipantKind.TEAM:
            return cls(TeamRatingConfig())
        return cls(PlayerRatingConfig())

    @staticmethod
    def calculate_expected_score(rating_a: float, rating_b: float) -> float:
        """
        Calculate the expected score for side A against side B

        Args:
            rating_a: Side A's rating
            rating_b: Side B's rating

        Returns:
            Expected score (0.0 to 1.0) for side A
        """
        return 1 / (1 + math.pow(10, (rating_b - rating_a) / 400))

    @staticmethod
    def side_rating(participants: Sequence[Participant]) -> float:
        """Arithmetic mean of the current ratings on one side"""
        return sum(p.rating for p in participants) / len(participants)

    def calculate_rating_change(self, expected_score: float, actual_score: float) -> int:
        """
        Calculate the rating change for one side

        A decided match always moves the winner up and the loser down by at
        least one point, even when the expected score rounds the change away.

        Args:
            expected_score: Side-level expected score
            actual_score: 1.0 for the winning side, 0.0 for the losing side

        Returns:
            Integer rating change (positive for a win, negative for a loss)
        """
        change = round_half_up(self.config.k_factor * (actual_score - expected_score))
        if actual_score > expected_score:
            return max(1, change)
        if actual_score < expected_score:
            return min(-1, change)
        return change

    def compute_match_deltas(self, side_a: Sequence[Participant], side_b: Sequence[Participant],
                             score_a: int, score_b: int) -> MatchRatingResult:
        """
        Compute every participant's rating change for one match.

        Actual scores are binary (1 for the winner, 0 for the loser); the
        margin of victory does not matter. Every participant on a side gets
        the same delta. Clamping is applied to the new rating only.

        Args:
            side_a: Participants on side A with their current ratings
            side_b: Participants on side B with their current ratings
            score_a: Side A's score
            score_b: Side B's score

        Returns:
            MatchRatingResult with one change per participant

        Raises:
            ValueError: If a side is empty, a score is negative or the scores are equal
        """
        if not side_a or not side_b:
            raise ValueError("Each side must have at least one participant")
        if score_a < 0 or score_b < 0:
            raise ValueError(f"Scores must be non-negative, got {score_a}-{score_b}")
        ids_a = {p.participant_id for p in side_a}
        if ids_a & {p.participant_id for p in side_b}:
            raise ValueError("A participant cannot play on both sides")

        winner = score_winner(score_a, score_b)

        rating_a = self.side_rating(side_a)
        rating_b = self.side_rating(side_b)
        expected_a = self.calculate_expected_score(rating_a, rating_b)
        expected_b = 1.0 - expected_a

        actual_a = 1.0 if winner is Side.A else 0.0
        actual_b = 1.0 - actual_a

        delta_a = self.calculate_rating_change(expected_a, actual_a)
        delta_b = self.calculate_rating_change(expected_b, actual_b)

        changes = []
        for side, players, delta, expected, opponent_rating in (
            (Side.A, side_a, delta_a, expected_a, rating_b),
            (Side.B, side_b, delta_b, expected_b, rating_a),
        ):
            for player in players:
                changes.append(ParticipantRatingChange(
                    participant_id=player.participant_id,
                    side=side,
                    old_rating=player.rating,
                    new_rating=self.config.clamp(player.rating + delta),
                    delta=delta,
                    opponent_avg_rating=round_half_up(opponent_rating),
                    expected_score=expected,
                    won=side is winner
                ))

        return MatchRatingResult(
            side_a_rating=rating_a,
            side_b_rating=rating_b,
            expected_score_a=expected_a,
            winning_side=winner,
            changes=tuple(changes)
        )

