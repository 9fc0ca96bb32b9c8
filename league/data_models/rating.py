"""
Rating data models for the sequential reconciliation engine.

Provides immutable records for participants, completed matches and the rating
history ledger, plus the divergence records surfaced by a replay. Field
requirements are checked at this boundary so that the rating engine only ever
sees well-formed inputs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from league.config import Config
from league.constants import StatsConstants
from league.utils.exceptions import DataIntegrityError


class ParticipantKind(Enum):
    PLAYER = "player"
    TEAM = "team"


class SkillTier(Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value) -> Optional['SkillTier']:
        """Parse a free-form tier label, returning None when unrecognized"""
        if value is None or isinstance(value, SkillTier):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class MatchStatus(Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Side(Enum):
    A = "a"
    B = "b"


@dataclass(frozen=True)
class Participant:
    """A player or team as read from the record store."""
    participant_id: int
    name: str = ""
    rating: int = Config.DEFAULT_RATING
    skill_tier: Optional[SkillTier] = None
    kind: ParticipantKind = ParticipantKind.PLAYER
    games_played: int = 0  # Games played at the current rating
    matches_played: int = 0
    matches_won: int = 0
    league_points: int = 0
    total_points_scored: int = 0
    is_active: bool = True

    @property
    def starting_rating(self) -> int:
        """Rating to seed a replay with when no history exists"""
        return Config.starting_rating_for_tier(self.skill_tier)


def score_winner(score_a: int, score_b: int) -> Side:
    """Side that won according to the score alone."""
    if score_a == score_b:
        raise ValueError(f"Scores must not be equal, got {score_a}-{score_b}")
    return Side.A if score_a > score_b else Side.B


@dataclass(frozen=True)
class LeagueMatch:
    """A match between two sides, each a set of participant ids."""
    match_id: int
    side_a: Tuple[int, ...]
    side_b: Tuple[int, ...]
    score_a: Optional[int]
    score_b: Optional[int]
    status: MatchStatus = MatchStatus.COMPLETED
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    declared_winner: Optional[Side] = None

    def __post_init__(self):
        object.__setattr__(self, 'side_a', tuple(self.side_a))
        object.__setattr__(self, 'side_b', tuple(self.side_b))

    @property
    def effective_timestamp(self) -> Optional[datetime]:
        """When the result was recorded, falling back to creation time"""
        return self.completed_at or self.created_at

    @property
    def winning_side(self) -> Side:
        return score_winner(self.score_a, self.score_b)

    def side_of(self, participant_id: int) -> Optional[Side]:
        if participant_id in self.side_a:
            return Side.A
        if participant_id in self.side_b:
            return Side.B
        return None

    def roster(self, side: Side) -> Tuple[int, ...]:
        return self.side_a if side is Side.A else self.side_b

    def score_for(self, side: Side) -> int:
        return self.score_a if side is Side.A else self.score_b

    def validate(self) -> None:
        """
        Check the completed-match invariants.

        Raises:
            DataIntegrityError: If the match cannot be rated
        """
        if self.status is not MatchStatus.COMPLETED:
            raise DataIntegrityError(self.match_id, f"status is {self.status.value}, not completed")
        if not self.side_a or not self.side_b:
            raise DataIntegrityError(self.match_id, "both sides need at least one participant")
        if len(set(self.side_a)) != len(self.side_a) or len(set(self.side_b)) != len(self.side_b):
            raise DataIntegrityError(self.match_id, "a participant is listed twice on one side")
        if set(self.side_a) & set(self.side_b):
            raise DataIntegrityError(self.match_id, "a participant appears on both sides")
        if self.score_a is None or self.score_b is None:
            raise DataIntegrityError(self.match_id, "scores are missing")
        if self.score_a < 0 or self.score_b < 0:
            raise DataIntegrityError(self.match_id, f"negative score {self.score_a}-{self.score_b}")
        if self.score_a == self.score_b:
            raise DataIntegrityError(self.match_id, f"tied score {self.score_a}-{self.score_b} has no winner")


def won_side(match: LeagueMatch, participant_id: int) -> bool:
    """
    Whether a participant won a match, derived only from side membership
    and the score comparison. A stored winner field is never consulted.
    """
    side = match.side_of(participant_id)
    if side is None:
        raise ValueError(f"Participant {participant_id} did not play in match {match.match_id}")
    return side is match.winning_side


@dataclass(frozen=True)
class ParticipantRatingChange:
    """Rating outcome of one match for one participant."""
    participant_id: int
    side: Side
    old_rating: int
    new_rating: int
    delta: int  # Computed change before clamping
    opponent_avg_rating: int
    expected_score: float
    won: bool

    @property
    def applied_change(self) -> int:
        return self.new_rating - self.old_rating


@dataclass(frozen=True)
class MatchRatingResult:
    """Result of rating a single match."""
    side_a_rating: float
    side_b_rating: float
    expected_score_a: float
    winning_side: Side
    changes: Tuple[ParticipantRatingChange, ...]

    def for_participant(self, participant_id: int) -> Optional[ParticipantRatingChange]:
        return next((c for c in self.changes if c.participant_id == participant_id), None)


@dataclass(frozen=True)
class RatingHistoryRecord:
    """One ledger row: a participant's rating change for one match."""
    participant_id: int
    match_id: int
    old_rating: int
    new_rating: int
    delta: int
    opponent_avg_rating: int
    created_at: Optional[datetime] = None
    kind: ParticipantKind = ParticipantKind.PLAYER

    @property
    def key(self) -> Tuple[int, int]:
        return (self.participant_id, self.match_id)

    def same_rating_values(self, other: 'RatingHistoryRecord') -> bool:
        return (
            self.old_rating == other.old_rating and
            self.new_rating == other.new_rating and
            self.delta == other.delta
        )


@dataclass(frozen=True)
class ParticipantUpdate:
    """Recomputed aggregates written back over a participant's stored fields."""
    participant_id: int
    current_rating: int
    games_played: int
    matches_played: int
    matches_won: int
    league_points: int
    total_points_scored: int
    peak_rating: int
    kind: ParticipantKind = ParticipantKind.PLAYER
    recent_results: Tuple[bool, ...] = field(default=(), compare=False)

    @property
    def matches_lost(self) -> int:
        return self.matches_played - self.matches_won

    @property
    def win_percentage(self) -> int:
        if self.matches_played == 0:
            return 0
        return int(self.matches_won * 100 / self.matches_played + 0.5)

    @property
    def recent_form(self) -> str:
        """Wins over the most recent matches, e.g. '3/5'"""
        if not self.recent_results:
            return StatsConstants.RECENT_FORM_EMPTY
        recent = self.recent_results[-StatsConstants.RECENT_FORM_DISPLAY:]
        return f"{sum(1 for won in recent if won)}/{len(recent)}"


@dataclass(frozen=True)
class Divergence:
    """Declared winner disagrees with the score-derived winner."""
    match_id: int
    expected_winner: Side
    declared_winner: Side


@dataclass(frozen=True)
class ComputationDivergence:
    """Rating delta sign disagrees with the win/loss outcome."""
    match_id: int
    participant_id: int
    won: bool
    delta: int


@dataclass(frozen=True)
class LedgerDrift:
    """A stored history row differs from the recomputed one."""
    participant_id: int
    match_id: int
    stored: RatingHistoryRecord
    recomputed: RatingHistoryRecord


@dataclass(frozen=True)
class RatingDrift:
    """A participant's stored rating differs from the authoritative value."""
    participant_id: int
    stored_rating: int
    expected_rating: int

    @property
    def difference(self) -> int:
        return self.expected_rating - self.stored_rating


@dataclass(frozen=True)
class FailedMatch:
    """A match that could not be replayed."""
    match_id: int
    reason: str


@dataclass(frozen=True)
class SkillTierRecommendation:
    """A participant whose rating suggests a different skill tier."""
    participant_id: int
    current_tier: Optional[SkillTier]
    recommended_tier: SkillTier
    rating: int
