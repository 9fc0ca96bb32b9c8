"""
Bracket Round Generator

Builds every round of a single-elimination tournament from a SeededBracket and
advances winners through it as results arrive.

Match lifecycle: waiting -> pending -> completed
- waiting: at least one side still depends on an unfinished feeder match
- pending: both sides known, result not yet recorded
- completed: result recorded (or a bye auto-win)

Round k match i is fed by round k-1 matches 2i and 2i+1. A round-one pairing
of two byes is skipped, and a skipped feeder counts as a bye for the round
it feeds.
"""

import math
from typing import List, Optional

from league.config import Config
from league.constants import BracketConstants
from league.data_models.bracket import (
    BracketMatch, BracketMatchStatus, BracketParticipant, SeededBracket, Tournament
)
from league.utils.exceptions import InvalidResultError, InvalidStateError
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


def round_title(round_number: int, total_rounds: int) -> str:
    """Display title for a round, e.g. 'Final' or 'Round of 16'"""
    remaining = total_rounds - round_number
    if remaining == 0:
        return BracketConstants.FINAL_TITLE
    elif remaining == 1:
        return BracketConstants.SEMIFINAL_TITLE
    elif remaining == 2:
        return BracketConstants.QUARTERFINAL_TITLE
    return BracketConstants.ROUND_OF_TITLE.format(size=2 ** (remaining + 1))


class BracketRoundGenerator:
    """Creates tournaments and moves them forward one result at a time"""

    def __init__(self, bye_win_score: int = None):
        self.bye_win_score = Config.BYE_WIN_SCORE if bye_win_score is None else bye_win_score

    def create_tournament(self, seeded: SeededBracket, tournament_id: Optional[int] = None,
                          name: str = "") -> Tournament:
        """
        Build all rounds for a seeded bracket and resolve round-one byes.

        Args:
            seeded: Round-one slot order from BracketSeeder
            tournament_id: Identifier stamped onto every match
            name: Display name

        Returns:
            Tournament with round one populated and later rounds waiting
        """
        if seeded.size < BracketConstants.MIN_PARTICIPANTS:
            raise ValueError("A bracket needs at least two slots")

        total_rounds = int(math.log2(seeded.size))
        rounds = {}
        for round_number in range(1, total_rounds + 1):
            rounds[round_number] = [
                BracketMatch(round=round_number, match_index=index, tournament_id=tournament_id)
                for index in range(seeded.size >> round_number)
            ]

        for index, (side1, side2) in enumerate(seeded.pairs()):
            match = rounds[1][index]
            if side1.is_bye and side2.is_bye:
                match.skipped = True
                continue
            match.side1 = side1
            match.side2 = side2

        tournament = Tournament(
            seeded=seeded,
            total_rounds=total_rounds,
            rounds=rounds,
            tournament_id=tournament_id,
            name=name
        )
        self.advance(tournament)

        logger.info(
            f"Created tournament {tournament_id or name or ''} with {len(seeded.entrants)} "
            f"entrants over {total_rounds} rounds"
        )
        return tournament

    def advance(self, tournament: Tournament) -> List[BracketMatch]:
        """
        Fill every slot whose feeder has finished and settle what can be settled.

        Safe to call after every single result. Calling it when nothing has
        changed is a no-op.

        Returns:
            Matches whose sides or status changed in this call
        """
        changed = []
        for round_number in range(1, tournament.total_rounds + 1):
            for match in tournament.get_round(round_number):
                if match.skipped or match.status is BracketMatchStatus.COMPLETED:
                    continue

                before = (match.side1, match.side2, match.status, match.skipped)
                if round_number > 1:
                    match.side1 = self._feeder_result(tournament, round_number - 1, match.match_index * 2)
                    match.side2 = self._feeder_result(tournament, round_number - 1, match.match_index * 2 + 1)

                if match.side1 is not None and match.side2 is not None:
                    self._settle(match)

                if (match.side1, match.side2, match.status, match.skipped) != before:
                    changed.append(match)

        if changed:
            logger.debug(f"Advanced {len(changed)} bracket matches")
        return changed

    def record_result(self, tournament: Tournament, round_number: int, match_index: int,
                      score1: int, score2: int) -> BracketMatch:
        """
        Record the result of a pending match.

        Call advance() afterwards to move the winner into the next round.

        Raises:
            ValueError: If the match does not exist
            InvalidStateError: If the match is waiting or already completed
            InvalidResultError: If the scores are negative or equal
        """
        match = tournament.get_match(round_number, match_index)
        if match is None:
            raise ValueError(f"Bracket match r{round_number}-m{match_index + 1} does not exist")
        if match.status is not BracketMatchStatus.PENDING:
            raise InvalidStateError(match.match_id, match.status)

        self.validate_scores(score1, score2)

        match.score1 = score1
        match.score2 = score2
        match.winner = match.side1 if score1 > score2 else match.side2
        match.status = BracketMatchStatus.COMPLETED

        logger.info(f"Recorded {match}; winner {match.winner}")
        return match

    @staticmethod
    def validate_scores(score1, score2) -> None:
        for score in (score1, score2):
            if isinstance(score, bool) or not isinstance(score, int):
                raise InvalidResultError(score1, score2, "Scores must be whole numbers")
        if score1 < 0 or score2 < 0:
            raise InvalidResultError(score1, score2, "Scores cannot be negative")
        if score1 == score2:
            raise InvalidResultError(score1, score2, "Scores cannot be equal; a match needs a winner")

    @staticmethod
    def _feeder_result(tournament: Tournament, round_number: int,
                       match_index: int) -> Optional[BracketParticipant]:
        feeder = tournament.get_match(round_number, match_index)
        if feeder is None or feeder.skipped:
            return BracketParticipant.bye()
        if feeder.status is BracketMatchStatus.COMPLETED:
            return feeder.winner
        return None

    def _settle(self, match: BracketMatch) -> None:
        """Resolve a match whose two sides are known"""
        if match.side1.is_bye and match.side2.is_bye:
            match.skipped = True
        elif match.side2.is_bye:
            self._complete_bye(match, match.side1, self.bye_win_score, 0)
        elif match.side1.is_bye:
            self._complete_bye(match, match.side2, 0, self.bye_win_score)
        else:
            match.status = BracketMatchStatus.PENDING

    @staticmethod
    def _complete_bye(match: BracketMatch, winner: BracketParticipant, score1: int, score2: int) -> None:
        match.score1 = score1
        match.score2 = score2
        match.winner = winner
        match.status = BracketMatchStatus.COMPLETED
        logger.debug(f"{match.match_id}: {winner} advances on a bye")
