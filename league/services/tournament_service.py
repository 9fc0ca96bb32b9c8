"""
Tournament service.

Creates persisted single-elimination tournaments and records their results.
Work on one tournament is serialized through a per-tournament lock; different
tournaments advance independently.
"""

import logging
from typing import Dict, List, Sequence

from league.data_models.bracket import BracketMatch, BracketMatchStatus, Tournament
from league.data_models.rating import ParticipantKind
from league.operations.bracket_rounds import BracketRoundGenerator, round_title
from league.operations.bracket_seeder import BracketSeeder, SlotPlacement
from league.services.base import BaseService
from league.utils.exceptions import TournamentNotFoundError
from league.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

_tournament_locks = KeyedLocks()


class TournamentService(BaseService):
    """Persisted bracket lifecycle: create, record results, advance"""

    def __init__(self, store, kind: ParticipantKind = ParticipantKind.PLAYER,
                 placement: SlotPlacement = SlotPlacement.ADJACENT,
                 generator: BracketRoundGenerator = None, locks: KeyedLocks = None):
        super().__init__(store)
        self.kind = kind
        self.seeder = BracketSeeder(placement)
        self.generator = generator or BracketRoundGenerator()
        self.locks = locks or _tournament_locks

    async def create_tournament(self, name: str, participant_ids: Sequence[int]) -> Tournament:
        """
        Seed participants by their current rating and persist the bracket.

        Raises:
            ValueError: If an id is unknown or fewer than two participants are given
        """
        participants = await self.store.get_participants_by_ids(self.kind, participant_ids)
        found = {p.participant_id for p in participants}
        missing = [pid for pid in participant_ids if pid not in found]
        if missing:
            raise ValueError(f"Unknown {self.kind.value}s: {missing}")

        seeded = self.seeder.seed(participants)
        tournament = self.generator.create_tournament(seeded, name=name)
        await self.execute_with_retry(
            lambda: self.store.create_tournament(tournament, self.kind),
            operation=f"create tournament '{name}'"
        )

        logger.info(
            f"Tournament {tournament.tournament_id} '{name}' created with "
            f"{len(participants)} entrants, {seeded.bye_count} byes"
        )
        return tournament

    async def get_tournament(self, tournament_id: int) -> Tournament:
        tournament = await self.store.load_bracket(tournament_id)
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)
        return tournament

    async def record_result(self, tournament_id: int, round_number: int, match_index: int,
                            score1: int, score2: int) -> Tournament:
        """
        Record a pending match result and advance the bracket.

        Raises:
            TournamentNotFoundError: If the tournament does not exist
            InvalidStateError: If the match is not pending
            InvalidResultError: If the scores cannot produce a winner
        """
        async with self.locks.hold(tournament_id):
            tournament = await self.get_tournament(tournament_id)
            self.generator.record_result(tournament, round_number, match_index, score1, score2)
            self.generator.advance(tournament)
            await self.execute_with_retry(
                lambda: self.store.save_bracket(tournament),
                operation=f"save tournament {tournament_id}"
            )

        if tournament.is_complete:
            logger.info(f"Tournament {tournament_id} complete; champion {tournament.champion}")
        return tournament

    async def advance(self, tournament_id: int) -> List[BracketMatch]:
        """Re-run advancement for a stored tournament; returns the matches that changed"""
        async with self.locks.hold(tournament_id):
            tournament = await self.get_tournament(tournament_id)
            changed = self.generator.advance(tournament)
            if changed:
                await self.execute_with_retry(
                    lambda: self.store.save_bracket(tournament),
                    operation=f"save tournament {tournament_id}"
                )
        return changed

    async def get_pending_matches(self, tournament_id: int) -> List[BracketMatch]:
        tournament = await self.get_tournament(tournament_id)
        return tournament.matches_with_status(BracketMatchStatus.PENDING)

    async def get_bracket_overview(self, tournament_id: int) -> Dict[str, List[str]]:
        """Round title -> printable matches, in round order"""
        tournament = await self.get_tournament(tournament_id)
        return {
            round_title(round_number, tournament.total_rounds): [
                str(match) for match in tournament.get_round(round_number) if not match.skipped
            ]
            for round_number in range(1, tournament.total_rounds + 1)
        }
