from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum

from league.config import Config
from league.data_models.bracket import BracketMatchStatus
from league.data_models.rating import MatchStatus

Base = declarative_base()

class TournamentStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"

class Player(Base):
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    skill_tier = Column(String(20), nullable=True)  # beginner / intermediate / advanced

    # Rating (materialized view of rating_history)
    elo_rating = Column(Integer, default=Config.DEFAULT_RATING, nullable=False)
    peak_elo = Column(Integer, default=Config.DEFAULT_RATING, nullable=False)
    games_played = Column(Integer, default=0)

    # League stats
    matches_played = Column(Integer, default=0)
    matches_won = Column(Integer, default=0)
    matches_lost = Column(Integer, default=0)
    league_points = Column(Integer, default=0)
    total_points_scored = Column(Integer, default=0)
    win_percentage = Column(Integer, default=0)
    recent_results = Column(String(20), default="")  # Oldest first, e.g. "WWLW"
    recent_form = Column(String(10), default="N/A")

    # Metadata
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    memberships = relationship("TeamMember", back_populates="player", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Player(id={self.id}, name='{self.name}', elo={self.elo_rating})>"

class Team(Base):
    __tablename__ = 'teams'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)

    elo_rating = Column(Integer, default=Config.DEFAULT_RATING, nullable=False)
    peak_elo = Column(Integer, default=Config.DEFAULT_RATING, nullable=False)
    games_played = Column(Integer, default=0)

    matches_played = Column(Integer, default=0)
    matches_won = Column(Integer, default=0)
    matches_lost = Column(Integer, default=0)
    league_points = Column(Integer, default=0)
    total_points_scored = Column(Integer, default=0)
    win_percentage = Column(Integer, default=0)
    recent_results = Column(String(20), default="")
    recent_form = Column(String(10), default="N/A")

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Team(id={self.id}, name='{self.name}', elo={self.elo_rating})>"

class TeamMember(Base):
    __tablename__ = 'team_members'

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey('teams.id'), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    joined_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('team_id', 'player_id', name='uq_team_member'),
    )

    team = relationship("Team", back_populates="members")
    player = relationship("Player", back_populates="memberships")

class Match(Base):
    __tablename__ = 'matches'

    id = Column(Integer, primary_key=True)
    team1_id = Column(Integer, ForeignKey('teams.id'), nullable=False)
    team2_id = Column(Integer, ForeignKey('teams.id'), nullable=False)
    team1_score = Column(Integer, nullable=True)
    team2_score = Column(Integer, nullable=True)
    status = Column(SQLEnum(MatchStatus), default=MatchStatus.SCHEDULED, nullable=False)
    winner_team_id = Column(Integer, nullable=True)  # Declared winner as entered; never trusted for ratings

    created_at = Column(DateTime, default=func.now())
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return (f"<Match(id={self.id}, {self.team1_id} vs {self.team2_id}, "
                f"{self.team1_score}-{self.team2_score}, status={self.status.value if self.status else None})>")

class RatingHistory(Base):
    __tablename__ = 'rating_history'

    id = Column(Integer, primary_key=True)
    participant_kind = Column(String(10), nullable=False)  # player / team
    participant_id = Column(Integer, nullable=False, index=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False, index=True)

    old_rating = Column(Integer, nullable=False)
    new_rating = Column(Integer, nullable=False)
    rating_change = Column(Integer, nullable=False)
    opponent_avg_rating = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=func.now())

    # One ledger row per participant per match
    __table_args__ = (
        UniqueConstraint('participant_kind', 'participant_id', 'match_id', name='uq_rating_history_entry'),
    )

    def __repr__(self):
        return (f"<RatingHistory({self.participant_kind} {self.participant_id}, match={self.match_id}, "
                f"change={self.rating_change}, new={self.new_rating})>")

class TournamentRecord(Base):
    __tablename__ = 'tournaments'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    participant_kind = Column(String(10), nullable=False, default="player")
    placement = Column(String(20), nullable=False, default="adjacent")
    total_rounds = Column(Integer, nullable=False)
    status = Column(SQLEnum(TournamentStatus), default=TournamentStatus.ACTIVE, nullable=False)
    champion_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=func.now())
    completed_at = Column(DateTime, nullable=True)

    entries = relationship("TournamentEntry", back_populates="tournament", cascade="all, delete-orphan")
    matches = relationship("BracketMatchRecord", back_populates="tournament", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<TournamentRecord(id={self.id}, name='{self.name}', status={self.status.value if self.status else None})>"

class TournamentEntry(Base):
    __tablename__ = 'tournament_entries'

    id = Column(Integer, primary_key=True)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False, index=True)
    participant_id = Column(Integer, nullable=False)
    name = Column(String(100), nullable=False)
    rating = Column(Integer, nullable=True)  # Rating at seeding time
    seed = Column(Integer, nullable=False)
    slot = Column(Integer, nullable=False)  # Round-one slot position

    __table_args__ = (
        UniqueConstraint('tournament_id', 'participant_id', name='uq_tournament_entry'),
        UniqueConstraint('tournament_id', 'slot', name='uq_tournament_slot'),
    )

    tournament = relationship("TournamentRecord", back_populates="entries")

class BracketMatchRecord(Base):
    __tablename__ = 'bracket_matches'

    id = Column(Integer, primary_key=True)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False, index=True)
    round = Column(Integer, nullable=False)
    match_index = Column(Integer, nullable=False)

    side1_participant_id = Column(Integer, nullable=True)
    side2_participant_id = Column(Integer, nullable=True)
    side1_is_bye = Column(Boolean, default=False)
    side2_is_bye = Column(Boolean, default=False)

    status = Column(SQLEnum(BracketMatchStatus), default=BracketMatchStatus.WAITING, nullable=False)
    score1 = Column(Integer, nullable=True)
    score2 = Column(Integer, nullable=True)
    winner_participant_id = Column(Integer, nullable=True)
    skipped = Column(Boolean, default=False)

    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('tournament_id', 'round', 'match_index', name='uq_bracket_match_position'),
        CheckConstraint('round >= 1', name='ck_bracket_round_positive'),
        CheckConstraint('score1 IS NULL OR score1 >= 0', name='ck_bracket_score1_non_negative'),
        CheckConstraint('score2 IS NULL OR score2 >= 0', name='ck_bracket_score2_non_negative'),
    )

    tournament = relationship("TournamentRecord", back_populates="matches")

    def __repr__(self):
        return (f"<BracketMatchRecord(tournament={self.tournament_id}, r{self.round}-m{self.match_index + 1}, "
                f"status={self.status.value if self.status else None})>")
