from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from league.config import Config
from league.data_models.bracket import (
    BracketMatch, BracketParticipant, SeededBracket, Tournament
)
from league.data_models.rating import (
    LeagueMatch, MatchStatus, Participant, ParticipantKind, ParticipantUpdate,
    RatingHistoryRecord, Side, SkillTier
)
from league.database.models import (
    Base, BracketMatchRecord, Match, Player, RatingHistory, Team, TeamMember,
    TournamentEntry, TournamentRecord, TournamentStatus
)
from league.utils.logger import setup_logger

class Database:
    """
    Async SQLAlchemy record store.

    Serves the three paths the reconciliation engine needs (load participants
    and matches, insert history rows, overwrite participant aggregates) plus
    bracket persistence.
    """

    def __init__(self, database_url: str = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        engine_options = {'echo': Config.DEBUG, 'future': True}
        if ':memory:' in database_url:
            # Every session must see the same in-memory database
            engine_options['poolclass'] = StaticPool
            engine_options['connect_args'] = {'check_same_thread': False}

        self.engine = create_async_engine(database_url, **engine_options)

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Creation helpers
    async def create_player(self, name: str, skill_tier=None, rating: int = None) -> Player:
        """Create a new player, seeded from their skill tier when no rating is given"""
        tier = SkillTier.parse(skill_tier)
        starting = rating if rating is not None else Config.starting_rating_for_tier(tier)
        async with self.get_session() as session:
            player = Player(
                name=name,
                skill_tier=tier.value if tier else None,
                elo_rating=starting,
                peak_elo=starting
            )
            session.add(player)
            await session.commit()
            await session.refresh(player)
            return player

    async def create_team(self, name: str, member_ids: Iterable[int] = (), rating: int = None) -> Team:
        """Create a team with an optional initial roster"""
        starting = rating if rating is not None else Config.DEFAULT_RATING
        async with self.transaction() as session:
            team = Team(name=name, elo_rating=starting, peak_elo=starting)
            session.add(team)
            await session.flush()
            for player_id in member_ids:
                session.add(TeamMember(team_id=team.id, player_id=player_id))
        return team

    async def create_match(self, team1_id: int, team2_id: int, team1_score: int = None,
                           team2_score: int = None, status: MatchStatus = MatchStatus.COMPLETED,
                           winner_team_id: int = None, created_at: datetime = None,
                           completed_at: datetime = None) -> Match:
        """Create a match. The winner defaults to the higher-scoring team."""
        if winner_team_id is None and team1_score is not None and team2_score is not None:
            if team1_score > team2_score:
                winner_team_id = team1_id
            elif team2_score > team1_score:
                winner_team_id = team2_id

        async with self.get_session() as session:
            match = Match(
                team1_id=team1_id,
                team2_id=team2_id,
                team1_score=team1_score,
                team2_score=team2_score,
                status=status,
                winner_team_id=winner_team_id,
                completed_at=completed_at
            )
            if created_at is not None:
                match.created_at = created_at
            session.add(match)
            await session.commit()
            await session.refresh(match)
            return match

    # Reconciliation reads
    async def get_participants(self, kind: ParticipantKind) -> List[Participant]:
        """All players or teams as immutable participant records"""
        model = Player if kind is ParticipantKind.PLAYER else Team
        async with self.get_session() as session:
            result = await session.execute(select(model).order_by(model.id))
            rows = result.scalars().all()

        return [
            Participant(
                participant_id=row.id,
                name=row.name,
                rating=row.elo_rating,
                skill_tier=SkillTier.parse(row.skill_tier) if kind is ParticipantKind.PLAYER else None,
                kind=kind,
                games_played=row.games_played or 0,
                matches_played=row.matches_played or 0,
                matches_won=row.matches_won or 0,
                league_points=row.league_points or 0,
                total_points_scored=row.total_points_scored or 0,
                is_active=row.is_active
            )
            for row in rows
        ]

    async def get_completed_matches(self, kind: ParticipantKind) -> List[LeagueMatch]:
        """
        Completed matches, oldest first.

        For players each side is the roster of that side's team; for teams
        each side is the team itself.
        """
        effective = func.coalesce(Match.completed_at, Match.created_at)
        async with self.get_session() as session:
            result = await session.execute(
                select(Match)
                .where(Match.status == MatchStatus.COMPLETED)
                .order_by(effective, Match.id)
            )
            matches = result.scalars().all()

            rosters: Dict[int, List[int]] = defaultdict(list)
            if kind is ParticipantKind.PLAYER:
                members = await session.execute(
                    select(TeamMember.team_id, TeamMember.player_id)
                    .order_by(TeamMember.team_id, TeamMember.player_id)
                )
                for team_id, player_id in members.all():
                    rosters[team_id].append(player_id)

        league_matches = []
        for match in matches:
            if kind is ParticipantKind.PLAYER:
                side_a = tuple(rosters.get(match.team1_id, ()))
                side_b = tuple(rosters.get(match.team2_id, ()))
            else:
                side_a = (match.team1_id,)
                side_b = (match.team2_id,)

            league_matches.append(LeagueMatch(
                match_id=match.id,
                side_a=side_a,
                side_b=side_b,
                score_a=match.team1_score,
                score_b=match.team2_score,
                status=match.status,
                completed_at=match.completed_at,
                created_at=match.created_at,
                declared_winner=self._declared_winner(match)
            ))
        return league_matches

    def _declared_winner(self, match: Match) -> Optional[Side]:
        if match.winner_team_id is None:
            return None
        if match.winner_team_id == match.team1_id:
            return Side.A
        if match.winner_team_id == match.team2_id:
            return Side.B
        self.logger.warning(
            f"Match {match.id} declares winner {match.winner_team_id}, which did not play in it"
        )
        return None

    async def get_history_records(self, kind: ParticipantKind) -> List[RatingHistoryRecord]:
        async with self.get_session() as session:
            result = await session.execute(
                select(RatingHistory)
                .where(RatingHistory.participant_kind == kind.value)
                .order_by(RatingHistory.created_at, RatingHistory.id)
            )
            rows = result.scalars().all()

        return [
            RatingHistoryRecord(
                participant_id=row.participant_id,
                match_id=row.match_id,
                old_rating=row.old_rating,
                new_rating=row.new_rating,
                delta=row.rating_change,
                opponent_avg_rating=row.opponent_avg_rating,
                created_at=row.created_at,
                kind=kind
            )
            for row in rows
        ]

    # Reconciliation writes
    async def insert_history_record(self, record: RatingHistoryRecord) -> bool:
        """
        Insert a ledger row unless one already exists for (participant, match).

        Returns:
            True if a row was written, False if the key already existed
        """
        async with self.get_session() as session:
            existing = await session.execute(
                select(RatingHistory.id).where(
                    RatingHistory.participant_kind == record.kind.value,
                    RatingHistory.participant_id == record.participant_id,
                    RatingHistory.match_id == record.match_id
                )
            )
            if existing.scalar_one_or_none() is not None:
                return False

            row = RatingHistory(
                participant_kind=record.kind.value,
                participant_id=record.participant_id,
                match_id=record.match_id,
                old_rating=record.old_rating,
                new_rating=record.new_rating,
                rating_change=record.delta,
                opponent_avg_rating=record.opponent_avg_rating
            )
            if record.created_at is not None:
                row.created_at = record.created_at
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                # Another writer inserted the same key first
                await session.rollback()
                return False
            return True

    async def update_participant(self, participant_update: ParticipantUpdate) -> bool:
        """
        Overwrite a participant's rating and statistics.

        Returns:
            False when the participant no longer exists
        """
        model = Player if participant_update.kind is ParticipantKind.PLAYER else Team
        recent = "".join("W" if won else "L" for won in participant_update.recent_results)
        async with self.get_session() as session:
            result = await session.execute(
                update(model)
                .where(model.id == participant_update.participant_id)
                .values(
                    elo_rating=participant_update.current_rating,
                    peak_elo=participant_update.peak_rating,
                    games_played=participant_update.games_played,
                    matches_played=participant_update.matches_played,
                    matches_won=participant_update.matches_won,
                    matches_lost=participant_update.matches_lost,
                    league_points=participant_update.league_points,
                    total_points_scored=participant_update.total_points_scored,
                    win_percentage=participant_update.win_percentage,
                    recent_results=recent,
                    recent_form=participant_update.recent_form
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def get_player(self, player_id: int) -> Optional[Player]:
        async with self.get_session() as session:
            result = await session.execute(select(Player).where(Player.id == player_id))
            return result.scalar_one_or_none()

    async def get_team(self, team_id: int) -> Optional[Team]:
        async with self.get_session() as session:
            result = await session.execute(select(Team).where(Team.id == team_id))
            return result.scalar_one_or_none()

    async def get_participants_by_ids(self, kind: ParticipantKind, participant_ids: Iterable[int]) -> List[Participant]:
        """Participants for the given ids, in the order the ids were given"""
        wanted = list(participant_ids)
        by_id = {p.participant_id: p for p in await self.get_participants(kind)}
        return [by_id[pid] for pid in wanted if pid in by_id]

    # Bracket persistence
    async def create_tournament(self, tournament: Tournament,
                                kind: ParticipantKind = ParticipantKind.PLAYER) -> int:
        """
        Persist a new tournament with its entries and every bracket match.

        Stamps the new id onto the tournament and its matches.
        """
        async with self.transaction() as session:
            record = TournamentRecord(
                name=tournament.name or "Tournament",
                participant_kind=kind.value,
                placement=tournament.seeded.placement,
                total_rounds=tournament.total_rounds
            )
            session.add(record)
            await session.flush()

            for slot, entrant in enumerate(tournament.seeded.slots):
                if entrant.is_bye:
                    continue
                session.add(TournamentEntry(
                    tournament_id=record.id,
                    participant_id=entrant.participant_id,
                    name=entrant.name,
                    rating=entrant.rating,
                    seed=entrant.seed,
                    slot=slot
                ))

            tournament.tournament_id = record.id
            for match in tournament.all_matches():
                match.tournament_id = record.id
                session.add(BracketMatchRecord(tournament_id=record.id, round=match.round,
                                               match_index=match.match_index, **self._bracket_values(match)))

            self._apply_tournament_status(record, tournament)

        self.logger.info(f"Created tournament {record.id} '{record.name}'")
        return record.id

    async def save_bracket(self, tournament: Tournament) -> None:
        """Write the current state of every bracket match and the tournament status"""
        async with self.transaction() as session:
            record = await session.get(TournamentRecord, tournament.tournament_id)
            if record is None:
                raise ValueError(f"Tournament {tournament.tournament_id} is not persisted")

            for match in tournament.all_matches():
                await session.execute(
                    update(BracketMatchRecord)
                    .where(
                        BracketMatchRecord.tournament_id == tournament.tournament_id,
                        BracketMatchRecord.round == match.round,
                        BracketMatchRecord.match_index == match.match_index
                    )
                    .values(**self._bracket_values(match))
                )

            self._apply_tournament_status(record, tournament)

    async def load_bracket(self, tournament_id: int) -> Optional[Tournament]:
        """Rebuild a tournament from its stored entries and matches"""
        async with self.get_session() as session:
            record = await session.get(TournamentRecord, tournament_id)
            if record is None:
                return None

            entries_result = await session.execute(
                select(TournamentEntry).where(TournamentEntry.tournament_id == tournament_id)
            )
            entries = entries_result.scalars().all()

            matches_result = await session.execute(
                select(BracketMatchRecord)
                .where(BracketMatchRecord.tournament_id == tournament_id)
                .order_by(BracketMatchRecord.round, BracketMatchRecord.match_index)
            )
            match_rows = matches_result.scalars().all()

        entrants = {
            entry.participant_id: BracketParticipant(
                participant_id=entry.participant_id,
                name=entry.name,
                rating=entry.rating,
                seed=entry.seed
            )
            for entry in entries
        }
        slots = [BracketParticipant.bye() for _ in range(2 ** record.total_rounds)]
        for entry in entries:
            slots[entry.slot] = entrants[entry.participant_id]

        def side(participant_id, is_bye):
            if is_bye:
                return BracketParticipant.bye()
            return entrants.get(participant_id) if participant_id is not None else None

        rounds: Dict[int, List[BracketMatch]] = defaultdict(list)
        for row in match_rows:
            rounds[row.round].append(BracketMatch(
                round=row.round,
                match_index=row.match_index,
                side1=side(row.side1_participant_id, row.side1_is_bye),
                side2=side(row.side2_participant_id, row.side2_is_bye),
                status=row.status,
                score1=row.score1,
                score2=row.score2,
                winner=entrants.get(row.winner_participant_id),
                tournament_id=tournament_id,
                skipped=bool(row.skipped)
            ))

        return Tournament(
            seeded=SeededBracket(slots=tuple(slots), placement=record.placement),
            total_rounds=record.total_rounds,
            rounds=dict(rounds),
            tournament_id=tournament_id,
            name=record.name
        )

    async def get_tournament_record(self, tournament_id: int) -> Optional[TournamentRecord]:
        async with self.get_session() as session:
            return await session.get(TournamentRecord, tournament_id)

    @staticmethod
    def _bracket_values(match: BracketMatch) -> dict:
        return {
            'side1_participant_id': match.side1.participant_id if match.side1 else None,
            'side2_participant_id': match.side2.participant_id if match.side2 else None,
            'side1_is_bye': bool(match.side1 and match.side1.is_bye),
            'side2_is_bye': bool(match.side2 and match.side2.is_bye),
            'status': match.status,
            'score1': match.score1,
            'score2': match.score2,
            'winner_participant_id': match.winner.participant_id if match.winner else None,
            'skipped': match.skipped,
        }

    @staticmethod
    def _apply_tournament_status(record: TournamentRecord, tournament: Tournament) -> None:
        if tournament.is_complete:
            record.status = TournamentStatus.COMPLETED
            record.champion_id = tournament.champion.participant_id
            if record.completed_at is None:
                record.completed_at = datetime.now(timezone.utc).replace(tzinfo=None)
        else:
            record.status = TournamentStatus.ACTIVE
