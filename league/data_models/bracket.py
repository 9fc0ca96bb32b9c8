"""
Bracket data models for single-elimination tournaments.

A SeededBracket is the ordered slot list produced by the seeder. A Tournament
holds every round of matches, built up front, with later-round slots filled
as feeder matches complete.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from league.constants import BracketConstants


class BracketMatchStatus(Enum):
    WAITING = "waiting"      # At least one slot still depends on an earlier match
    PENDING = "pending"      # Both slots known, result not yet recorded
    COMPLETED = "completed"


@dataclass(frozen=True)
class BracketParticipant:
    """An entrant occupying a bracket slot, or a bye."""
    participant_id: Optional[int]
    name: str
    rating: Optional[int] = None
    seed: Optional[int] = None
    is_bye: bool = False

    @classmethod
    def bye(cls) -> 'BracketParticipant':
        return cls(participant_id=None, name=BracketConstants.BYE_NAME, is_bye=True)

    def __str__(self) -> str:
        if self.is_bye:
            return self.name
        return f"({self.seed}) {self.name}" if self.seed else self.name


@dataclass(frozen=True)
class SeededBracket:
    """Slot order for round one; length is always a power of two."""
    slots: Tuple[BracketParticipant, ...]
    placement: str = "adjacent"

    @property
    def size(self) -> int:
        return len(self.slots)

    @property
    def entrants(self) -> List[BracketParticipant]:
        """Real entrants in seed order"""
        return sorted((s for s in self.slots if not s.is_bye), key=lambda s: s.seed)

    @property
    def bye_count(self) -> int:
        return sum(1 for s in self.slots if s.is_bye)

    def pairs(self) -> List[Tuple[BracketParticipant, BracketParticipant]]:
        """Adjacent slot pairs (0,1), (2,3), ..."""
        return [(self.slots[i], self.slots[i + 1]) for i in range(0, len(self.slots), 2)]


@dataclass
class BracketMatch:
    """One match in a tournament round."""
    round: int
    match_index: int
    side1: Optional[BracketParticipant] = None
    side2: Optional[BracketParticipant] = None
    status: BracketMatchStatus = BracketMatchStatus.WAITING
    score1: Optional[int] = None
    score2: Optional[int] = None
    winner: Optional[BracketParticipant] = None
    tournament_id: Optional[int] = None
    skipped: bool = False  # Both feeders empty; the match never takes place

    @property
    def match_id(self) -> str:
        return f"r{self.round}-m{self.match_index + 1}"

    @property
    def loser(self) -> Optional[BracketParticipant]:
        if self.winner is None:
            return None
        return self.side2 if self.winner == self.side1 else self.side1

    def __str__(self) -> str:
        side1 = self.side1 or "TBD"
        side2 = self.side2 or "TBD"
        if self.status is BracketMatchStatus.COMPLETED:
            return f"{self.match_id}: {side1} {self.score1}-{self.score2} {side2}"
        return f"{self.match_id}: {side1} vs {side2}"


@dataclass
class Tournament:
    """A single-elimination tournament with all of its rounds."""
    seeded: SeededBracket
    total_rounds: int
    rounds: Dict[int, List[BracketMatch]] = field(default_factory=dict)
    tournament_id: Optional[int] = None
    name: str = ""

    def get_round(self, round_number: int) -> List[BracketMatch]:
        return self.rounds.get(round_number, [])

    def get_match(self, round_number: int, match_index: int) -> Optional[BracketMatch]:
        matches = self.get_round(round_number)
        if 0 <= match_index < len(matches):
            return matches[match_index]
        return None

    def all_matches(self) -> List[BracketMatch]:
        return [m for r in sorted(self.rounds) for m in self.rounds[r]]

    def matches_with_status(self, status: BracketMatchStatus) -> List[BracketMatch]:
        return [m for m in self.all_matches() if m.status is status and not m.skipped]

    def is_round_complete(self, round_number: int) -> bool:
        return all(
            m.skipped or m.status is BracketMatchStatus.COMPLETED
            for m in self.get_round(round_number)
        )

    @property
    def final(self) -> Optional[BracketMatch]:
        return self.get_match(self.total_rounds, 0)

    @property
    def is_complete(self) -> bool:
        final = self.final
        return final is not None and final.status is BracketMatchStatus.COMPLETED

    @property
    def champion(self) -> Optional[BracketParticipant]:
        return self.final.winner if self.is_complete else None
