"""
Bracket Seeder

Turns a list of rated participants into the round-one slot order of a
single-elimination bracket. The bracket is padded with byes up to the next
power of two.

Placement:
- ADJACENT (default): slots follow seed order, so seed 1 meets seed 2,
  seed 3 meets seed 4, and byes collect at the bottom of the bracket.
  This is a known limitation: the top seeds can meet in round one.
- STANDARD: classic 1-vs-N, 2-vs-(N-1) placement so that, if every
  favourite wins, seeds 1 and 2 meet in the final.
"""

import math
from enum import Enum
from typing import List, Sequence

from league.constants import BracketConstants
from league.data_models.bracket import BracketParticipant, SeededBracket
from league.data_models.rating import Participant
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


class SlotPlacement(Enum):
    ADJACENT = "adjacent"
    STANDARD = "standard"


def calculate_bracket_size(participant_count: int) -> int:
    """Next power of two that holds every participant"""
    if participant_count <= 1:
        return participant_count
    return 2 ** math.ceil(math.log2(participant_count))


def standard_bracket_order(bracket_size: int) -> List[int]:
    """
    Seed numbers in standard bracket slot order.

    For 8 slots: [1, 8, 4, 5, 2, 7, 3, 6]
    """
    if bracket_size == 2:
        return [1, 2]

    upper_half = standard_bracket_order(bracket_size // 2)
    lower_half = [bracket_size + 1 - seed for seed in upper_half]

    order = []
    for upper, lower in zip(upper_half, lower_half):
        order.extend([upper, lower])
    return order


class BracketSeeder:
    """Seeds participants into bracket slots by current rating"""

    def __init__(self, placement: SlotPlacement = SlotPlacement.ADJACENT):
        self.placement = placement

    def seed(self, participants: Sequence[Participant]) -> SeededBracket:
        """
        Build the round-one slot order.

        Args:
            participants: Entrants with their current ratings

        Returns:
            SeededBracket whose slot count is a power of two

        Raises:
            ValueError: If fewer than two participants are given or an id repeats
        """
        if len(participants) < BracketConstants.MIN_PARTICIPANTS:
            raise ValueError(
                f"A bracket needs at least {BracketConstants.MIN_PARTICIPANTS} participants, "
                f"got {len(participants)}"
            )
        ids = [p.participant_id for p in participants]
        if len(set(ids)) != len(ids):
            raise ValueError("Participants must not repeat")

        # sorted() is stable: equal ratings keep their input order
        ranked = sorted(participants, key=lambda p: p.rating, reverse=True)
        entrants = [
            BracketParticipant(
                participant_id=p.participant_id,
                name=p.name,
                rating=p.rating,
                seed=seed
            )
            for seed, p in enumerate(ranked, start=1)
        ]

        size = calculate_bracket_size(len(entrants))
        padded = entrants + [BracketParticipant.bye() for _ in range(size - len(entrants))]

        if self.placement is SlotPlacement.STANDARD:
            slots = tuple(padded[seed - 1] for seed in standard_bracket_order(size))
        else:
            slots = tuple(padded)

        logger.debug(
            f"Seeded {len(entrants)} participants into {size} slots "
            f"({size - len(entrants)} byes, {self.placement.value} placement)"
        )
        return SeededBracket(slots=slots, placement=self.placement.value)
