"""
Shared fixtures: an in-memory SQLite Database and a fake record store that can
be told to fail writes.
"""

import os
from datetime import datetime, timedelta

os.environ.setdefault("LOG_TO_FILE", "false")

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from league.config import Config
from league.data_models.rating import (
    LeagueMatch, MatchStatus, Participant, ParticipantKind
)
from league.database.database import Database

Config.REDIS_URL = None
Config.PERSISTENCE_RETRY_BASE_DELAY = 0

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def at(minutes: int) -> datetime:
    """Timestamp a fixed number of minutes after the base time"""
    return BASE_TIME + timedelta(minutes=minutes)


def make_match(match_id, side_a, side_b, score_a, score_b, minutes=None, **kwargs) -> LeagueMatch:
    return LeagueMatch(
        match_id=match_id,
        side_a=tuple(side_a),
        side_b=tuple(side_b),
        score_a=score_a,
        score_b=score_b,
        completed_at=at(match_id if minutes is None else minutes),
        **kwargs
    )


class FakeStore:
    """In-memory record store with the same methods the runner uses."""

    def __init__(self, participants=(), matches=(), kind=ParticipantKind.PLAYER):
        self.kind = kind
        self.participants = {p.participant_id: p for p in participants}
        self.matches = list(matches)
        self.history = {}
        self.updates = {}
        self.fail_history_for = set()      # participant ids whose history insert always fails
        self.fail_update_for = set()       # participant ids whose update always fails
        self.transient_failures = 0        # next N writes fail once each
        self.insert_calls = 0
        self.update_calls = 0

    def _maybe_fail(self, always: bool):
        if always:
            raise OperationalError("write", {}, Exception("database is locked"))
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise OperationalError("write", {}, Exception("database is locked"))

    async def get_participants(self, kind):
        return list(self.participants.values())

    async def get_completed_matches(self, kind):
        return [m for m in self.matches if m.status is MatchStatus.COMPLETED]

    async def get_history_records(self, kind):
        return list(self.history.values())

    async def insert_history_record(self, record):
        self.insert_calls += 1
        self._maybe_fail(record.participant_id in self.fail_history_for)
        if record.key in self.history:
            return False
        self.history[record.key] = record
        return True

    async def update_participant(self, update):
        self.update_calls += 1
        self._maybe_fail(update.participant_id in self.fail_update_for)
        if update.participant_id not in self.participants:
            return False
        self.updates[update.participant_id] = update
        stored = self.participants[update.participant_id]
        self.participants[update.participant_id] = Participant(
            participant_id=stored.participant_id,
            name=stored.name,
            rating=update.current_rating,
            skill_tier=stored.skill_tier,
            kind=stored.kind,
            games_played=update.games_played,
            matches_played=update.matches_played,
            matches_won=update.matches_won,
            league_points=update.league_points,
            total_points_scored=update.total_points_scored
        )
        return True


@pytest.fixture
def two_players():
    return [
        Participant(participant_id=1, name="Alice"),
        Participant(participant_id=2, name="Bob"),
    ]


@pytest.fixture
def fake_store(two_players):
    return FakeStore(
        participants=two_players,
        matches=[make_match(1, [1], [2], 21, 15)]
    )


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database for each test."""
    database = Database("sqlite+aiosqlite:///:memory:")
    await database.initialize()
    yield database
    await database.close()
