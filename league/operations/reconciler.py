"""
Sequential Reconciler

Rebuilds authoritative ratings by replaying the full match history in
chronological order. Each match is rated against the ratings produced by
the previous matches (never against stale stored values), so the replay
reproduces exactly the sequence of changes the league went through.

Key functionality:
- SequentialReconciler.replay(): replay matches, accumulate statistics,
  emit one history record per (participant, match)
- Divergence detection: declared winner vs score, delta sign vs outcome
- Drift detection: stored history rows and stored ratings vs recomputed state
- check_ledger_consistency(): current rating vs newest ledger row

The reconciler owns no state between calls. Everything a replay mutates
lives in a ReplayContext created for that call.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Dict, Iterable, List, Optional, Sequence

from league.constants import StatsConstants
from league.data_models.rating import (
    ComputationDivergence, Divergence, FailedMatch, LeagueMatch, LedgerDrift,
    MatchStatus, Participant, ParticipantKind, ParticipantRatingChange,
    ParticipantUpdate, RatingDrift, RatingHistoryRecord, Side,
    SkillTierRecommendation, won_side
)
from league.utils.elo import RatingModel, skill_tier_for_rating
from league.utils.exceptions import DataIntegrityError
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


class ReconcilerState(Enum):
    INITIALIZED = "initialized"
    REPLAYING = "replaying"
    FINALIZED = "finalized"


@dataclass
class ParticipantTracker:
    """Running rating and statistics for one participant during a replay"""
    participant: Participant
    rating: int
    peak_rating: int
    games_played: int = 0
    matches_played: int = 0
    matches_won: int = 0
    league_points: int = 0
    total_points_scored: int = 0
    recent_results: Deque[bool] = field(
        default_factory=lambda: deque(maxlen=StatsConstants.RECENT_RESULTS_WINDOW)
    )

    @classmethod
    def start(cls, participant: Participant) -> 'ParticipantTracker':
        rating = participant.starting_rating
        return cls(participant=participant, rating=rating, peak_rating=rating)

    def current(self) -> Participant:
        """The participant as it stands at this point of the replay"""
        return Participant(
            participant_id=self.participant.participant_id,
            name=self.participant.name,
            rating=self.rating,
            skill_tier=self.participant.skill_tier,
            kind=self.participant.kind,
            games_played=self.games_played
        )

    def apply(self, change: ParticipantRatingChange, won: bool, points_scored: int) -> None:
        self.rating = change.new_rating
        self.peak_rating = max(self.peak_rating, change.new_rating)
        self.games_played += 1
        self.matches_played += 1
        if won:
            self.matches_won += 1
            self.league_points += StatsConstants.WIN_POINTS
        else:
            self.league_points += StatsConstants.PARTICIPATION_POINTS
        self.total_points_scored += points_scored
        self.recent_results.append(won)

    def to_update(self, kind: ParticipantKind) -> ParticipantUpdate:
        return ParticipantUpdate(
            participant_id=self.participant.participant_id,
            current_rating=self.rating,
            games_played=self.games_played,
            matches_played=self.matches_played,
            matches_won=self.matches_won,
            league_points=self.league_points,
            total_points_scored=self.total_points_scored,
            peak_rating=self.peak_rating,
            kind=kind,
            recent_results=tuple(self.recent_results)
        )


class ReplayContext:
    """Mutable arena owned by a single replay() call"""

    def __init__(self, participants: Iterable[Participant], kind: ParticipantKind):
        self.kind = kind
        self.state = ReconcilerState.INITIALIZED
        self.trackers: Dict[int, ParticipantTracker] = {}
        for participant in participants:
            if participant.participant_id in self.trackers:
                logger.warning(f"Duplicate participant {participant.participant_id} ignored")
                continue
            self.trackers[participant.participant_id] = ParticipantTracker.start(participant)

        self.history_records: List[RatingHistoryRecord] = []
        self.divergences: List[Divergence] = []
        self.computation_divergences: List[ComputationDivergence] = []
        self.failed_matches: List[FailedMatch] = []
        self.matches_processed = 0
        self.matches_skipped = 0

    def resolve_side(self, match: LeagueMatch, side: Side) -> List[Participant]:
        """
        Participants on one side with their current tracked ratings.

        Raises:
            DataIntegrityError: If any participant on the side is unknown
        """
        missing = [pid for pid in match.roster(side) if pid not in self.trackers]
        if missing:
            raise DataIntegrityError(
                match.match_id,
                f"side {side.value.upper()} references unknown participants {missing}"
            )
        return [self.trackers[pid].current() for pid in match.roster(side)]


@dataclass
class ReconciliationResult:
    """Terminal output of a replay"""
    kind: ParticipantKind
    state: ReconcilerState
    participants: Dict[int, ParticipantUpdate]
    history_records: List[RatingHistoryRecord]
    divergences: List[Divergence]
    computation_divergences: List[ComputationDivergence]
    failed_matches: List[FailedMatch]
    matches_processed: int
    matches_skipped: int = 0
    ledger_drift: List[LedgerDrift] = field(default_factory=list)
    rating_drift: List[RatingDrift] = field(default_factory=list)
    skill_recommendations: List[SkillTierRecommendation] = field(default_factory=list)

    @property
    def matches_failed(self) -> int:
        return len(self.failed_matches)

    @property
    def final_ratings(self) -> Dict[int, int]:
        return {pid: update.current_rating for pid, update in self.participants.items()}

    @property
    def has_computation_divergences(self) -> bool:
        return bool(self.computation_divergences)

    def summary(self) -> Dict[str, int]:
        return {
            'matches_processed': self.matches_processed,
            'matches_failed': self.matches_failed,
            'matches_skipped': self.matches_skipped,
            'history_records': len(self.history_records),
            'participants': len(self.participants),
            'divergences': len(self.divergences),
            'computation_divergences': len(self.computation_divergences),
            'ledger_drift': len(self.ledger_drift),
            'rating_drift': len(self.rating_drift),
        }


def _timestamp_key(timestamp: Optional[datetime]):
    if timestamp is None:
        return (0, 0.0)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (1, timestamp.timestamp())


def order_matches(matches: Iterable[LeagueMatch]) -> List[LeagueMatch]:
    """Oldest first by effective timestamp; ties keep their input order"""
    return sorted(matches, key=lambda match: _timestamp_key(match.effective_timestamp))


class SequentialReconciler:
    """
    Replays a match history through the RatingModel.

    Uses the player or team rating configuration depending on the kind of
    participant being reconciled.
    """

    def __init__(self, model: RatingModel = None, kind: ParticipantKind = ParticipantKind.PLAYER):
        self.kind = kind
        self.model = model or RatingModel.for_kind(kind)

    def replay(
        self,
        matches: Iterable[LeagueMatch],
        participants: Iterable[Participant],
        existing_history: Optional[Sequence[RatingHistoryRecord]] = None
    ) -> ReconciliationResult:
        """
        Replay every completed match from the oldest to the newest.

        Args:
            matches: Matches to replay, in any order
            participants: Every participant that may appear in the matches
            existing_history: Stored history rows to compare against

        Returns:
            ReconciliationResult with final standings, history records and findings
        """
        participants = list(participants)
        context = ReplayContext(participants, self.kind)
        ordered = order_matches(matches)

        logger.info(
            f"Replaying {len(ordered)} {self.kind.value} matches "
            f"for {len(context.trackers)} participants"
        )

        context.state = ReconcilerState.REPLAYING
        for match in ordered:
            if match.status is not MatchStatus.COMPLETED:
                context.matches_skipped += 1
                continue
            try:
                self._replay_match(context, match)
            except DataIntegrityError as e:
                logger.warning(str(e))
                context.failed_matches.append(FailedMatch(match.match_id, e.reason))

        context.state = ReconcilerState.FINALIZED
        result = self._finalize(context, participants, existing_history)

        logger.info(f"Replay finished: {result.summary()}")
        if result.computation_divergences:
            logger.error(
                f"{len(result.computation_divergences)} rating changes disagree with match outcomes"
            )
        return result

    def _replay_match(self, context: ReplayContext, match: LeagueMatch) -> None:
        """Rate one match and fold it into the context"""
        match.validate()
        side_a = context.resolve_side(match, Side.A)
        side_b = context.resolve_side(match, Side.B)

        rating_result = self.model.compute_match_deltas(side_a, side_b, match.score_a, match.score_b)

        expected_winner = match.winning_side
        if match.declared_winner is not None and match.declared_winner is not expected_winner:
            logger.warning(
                f"Match {match.match_id}: declared winner {match.declared_winner.value.upper()} "
                f"but score {match.score_a}-{match.score_b} says {expected_winner.value.upper()}"
            )
            context.divergences.append(Divergence(
                match_id=match.match_id,
                expected_winner=expected_winner,
                declared_winner=match.declared_winner
            ))

        for change in rating_result.changes:
            won = won_side(match, change.participant_id)
            direction_ok = change.delta > 0 if won else change.delta < 0
            if change.won != won or not direction_ok:
                context.computation_divergences.append(ComputationDivergence(
                    match_id=match.match_id,
                    participant_id=change.participant_id,
                    won=won,
                    delta=change.delta
                ))

            context.trackers[change.participant_id].apply(
                change, won, match.score_for(change.side)
            )
            context.history_records.append(RatingHistoryRecord(
                participant_id=change.participant_id,
                match_id=match.match_id,
                old_rating=change.old_rating,
                new_rating=change.new_rating,
                delta=change.delta,
                opponent_avg_rating=change.opponent_avg_rating,
                created_at=match.effective_timestamp,
                kind=self.kind
            ))

        context.matches_processed += 1

    def _finalize(
        self,
        context: ReplayContext,
        participants: List[Participant],
        existing_history: Optional[Sequence[RatingHistoryRecord]]
    ) -> ReconciliationResult:
        updates = {pid: tracker.to_update(self.kind) for pid, tracker in context.trackers.items()}

        ledger_drift = []
        if existing_history:
            stored = {record.key: record for record in existing_history}
            for record in context.history_records:
                stored_record = stored.get(record.key)
                if stored_record is not None and not stored_record.same_rating_values(record):
                    ledger_drift.append(LedgerDrift(
                        participant_id=record.participant_id,
                        match_id=record.match_id,
                        stored=stored_record,
                        recomputed=record
                    ))

        rating_drift = []
        recommendations = []
        for participant in participants:
            update = updates.get(participant.participant_id)
            if update is None:
                continue
            if participant.rating != update.current_rating:
                rating_drift.append(RatingDrift(
                    participant_id=participant.participant_id,
                    stored_rating=participant.rating,
                    expected_rating=update.current_rating
                ))
            if participant.skill_tier is not None:
                recommended = skill_tier_for_rating(update.current_rating)
                if recommended is not participant.skill_tier:
                    recommendations.append(SkillTierRecommendation(
                        participant_id=participant.participant_id,
                        current_tier=participant.skill_tier,
                        recommended_tier=recommended,
                        rating=update.current_rating
                    ))

        return ReconciliationResult(
            kind=self.kind,
            state=context.state,
            participants=updates,
            history_records=context.history_records,
            divergences=context.divergences,
            computation_divergences=context.computation_divergences,
            failed_matches=context.failed_matches,
            matches_processed=context.matches_processed,
            matches_skipped=context.matches_skipped,
            ledger_drift=ledger_drift,
            rating_drift=rating_drift,
            skill_recommendations=recommendations
        )


def check_ledger_consistency(
    participants: Iterable[Participant],
    history: Iterable[RatingHistoryRecord]
) -> List[RatingDrift]:
    """
    Verify that each participant's current rating equals the new rating of
    their newest history record. Participants without history are skipped.

    Newest means latest created_at; rows with equal timestamps are ordered
    by their position in ``history``.
    """
    newest: Dict[int, RatingHistoryRecord] = {}
    newest_key = {}
    for position, record in enumerate(history):
        key = (_timestamp_key(record.created_at), position)
        if record.participant_id not in newest or key > newest_key[record.participant_id]:
            newest[record.participant_id] = record
            newest_key[record.participant_id] = key

    drift = []
    for participant in participants:
        record = newest.get(participant.participant_id)
        if record is not None and record.new_rating != participant.rating:
            drift.append(RatingDrift(
                participant_id=participant.participant_id,
                stored_rating=participant.rating,
                expected_rating=record.new_rating
            ))
    return drift
