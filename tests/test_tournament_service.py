"""
tests/test_tournament_service.py - Persisted brackets.
"""

import asyncio

import pytest

from league.data_models.bracket import BracketMatchStatus
from league.database.models import TournamentStatus
from league.operations.bracket_seeder import SlotPlacement
from league.services.tournament_service import TournamentService
from league.utils.exceptions import InvalidStateError, TournamentNotFoundError
from league.utils.locks import KeyedLocks


async def create_players(db, ratings):
    return [await db.create_player(f"P{i}", rating=rating) for i, rating in enumerate(ratings, start=1)]


@pytest.fixture
def service(db):
    return TournamentService(db, locks=KeyedLocks())


class TestTournamentService:
    @pytest.mark.asyncio
    async def test_create_persists_bracket(self, db, service):
        players = await create_players(db, [1200, 1800, 1500])
        tournament = await service.create_tournament("Spring Open", [p.id for p in players])

        assert tournament.tournament_id is not None
        loaded = await service.get_tournament(tournament.tournament_id)
        assert loaded.total_rounds == 2
        assert loaded.seeded.bye_count == 1
        assert [s.rating for s in loaded.seeded.entrants] == [1800, 1500, 1200]

        first, second = loaded.get_round(1)
        assert first.status is BracketMatchStatus.PENDING
        assert second.status is BracketMatchStatus.COMPLETED
        assert second.winner.rating == 1200
        assert loaded.final.side2.rating == 1200

    @pytest.mark.asyncio
    async def test_results_flow_to_champion(self, db, service):
        players = await create_players(db, [1800, 1700, 1600, 1500])
        tournament = await service.create_tournament("Cup", [p.id for p in players])
        tid = tournament.tournament_id

        await service.record_result(tid, 1, 0, 21, 12)
        pending = await service.get_pending_matches(tid)
        assert [m.match_id for m in pending] == ["r1-m2"]

        await service.record_result(tid, 1, 1, 21, 19)
        updated = await service.record_result(tid, 2, 0, 21, 18)

        assert updated.is_complete
        assert updated.champion.participant_id == players[0].id
        record = await db.get_tournament_record(tid)
        assert record.status is TournamentStatus.COMPLETED
        assert record.champion_id == players[0].id
        assert record.completed_at is not None
        assert record.completed_at.tzinfo is None

    @pytest.mark.asyncio
    async def test_waiting_match_is_rejected(self, db, service):
        players = await create_players(db, [1800, 1700, 1600, 1500])
        tournament = await service.create_tournament("Cup", [p.id for p in players])

        with pytest.raises(InvalidStateError):
            await service.record_result(tournament.tournament_id, 2, 0, 21, 10)

    @pytest.mark.asyncio
    async def test_unknown_tournament(self, service):
        with pytest.raises(TournamentNotFoundError):
            await service.get_tournament(12345)

    @pytest.mark.asyncio
    async def test_unknown_participant(self, db, service):
        players = await create_players(db, [1800])
        with pytest.raises(ValueError):
            await service.create_tournament("Cup", [players[0].id, 999])

    @pytest.mark.asyncio
    async def test_standard_placement(self, db):
        players = await create_players(db, [1800, 1500, 1200])
        service = TournamentService(db, placement=SlotPlacement.STANDARD, locks=KeyedLocks())
        tournament = await service.create_tournament("Seeded", [p.id for p in players])

        loaded = await service.get_tournament(tournament.tournament_id)
        bye_match, open_match = loaded.get_round(1)
        assert bye_match.winner.seed == 1
        assert open_match.status is BracketMatchStatus.PENDING
        assert loaded.seeded.placement == "standard"

    @pytest.mark.asyncio
    async def test_advance_on_settled_bracket_is_noop(self, db, service):
        players = await create_players(db, [1800, 1700])
        tournament = await service.create_tournament("Duel", [p.id for p in players])
        assert await service.advance(tournament.tournament_id) == []

    @pytest.mark.asyncio
    async def test_concurrent_results_are_serialized(self, db, service):
        players = await create_players(db, [1800, 1700, 1600, 1500])
        tournament = await service.create_tournament("Cup", [p.id for p in players])
        tid = tournament.tournament_id

        await asyncio.gather(
            service.record_result(tid, 1, 0, 21, 10),
            service.record_result(tid, 1, 1, 21, 10),
        )

        loaded = await service.get_tournament(tid)
        assert loaded.is_round_complete(1)
        assert loaded.final.status is BracketMatchStatus.PENDING

    @pytest.mark.asyncio
    async def test_overview_uses_round_titles(self, db, service):
        players = await create_players(db, [1800, 1700, 1600, 1500, 1400])
        tournament = await service.create_tournament("Big", [p.id for p in players])

        overview = await service.get_bracket_overview(tournament.tournament_id)
        assert list(overview) == ["Quarterfinals", "Semifinals", "Final"]
        assert len(overview["Quarterfinals"]) == 3
