from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from shared.errors import TransitionError


class TournamentPhase(str, Enum):
    SETUP = "setup"
    REGISTERING = "registering"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TournamentPhase.COMPLETED, TournamentPhase.ERROR)


# Phases only move forward; error absorbs any failure before completion
TRANSITIONS: Dict[TournamentPhase, Tuple[TournamentPhase, ...]] = {
    TournamentPhase.SETUP: (TournamentPhase.REGISTERING, TournamentPhase.ERROR),
    TournamentPhase.REGISTERING: (TournamentPhase.RUNNING, TournamentPhase.ERROR),
    TournamentPhase.RUNNING: (TournamentPhase.COMPLETED, TournamentPhase.ERROR),
    TournamentPhase.COMPLETED: (),
    TournamentPhase.ERROR: (),
}


@dataclass
class PhaseTracker:
    phase: TournamentPhase = TournamentPhase.SETUP
    history: List[Tuple[TournamentPhase, TournamentPhase]] = field(default_factory=list)

    def can_transition(self, to_phase: TournamentPhase) -> bool:
        return to_phase in TRANSITIONS[self.phase]

    def transition(self, to_phase: TournamentPhase) -> TournamentPhase:
        if not self.can_transition(to_phase):
            raise TransitionError(self.phase.value, to_phase.value)
        self.history.append((self.phase, to_phase))
        self.phase = to_phase
        return self.phase


@dataclass(frozen=True)
class GameOutcome:
    """One game of a round, exactly as reported by the server."""
    game: Any
    status: str
    winners: Tuple[Any, ...] = ()
    eliminated: Tuple[Any, ...] = ()    # in elimination order
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameOutcome":
        return cls(
            game=data.get("game"),
            status=str(data.get("status", "")),
            winners=tuple(data.get("winners") or ()),
            eliminated=tuple(data.get("eliminated") or ()),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class RoundResult:
    round: Any
    games: Tuple[GameOutcome, ...]


class TournamentResults:
    """
    Read-only view over the start-tournament response body.

    The body is kept verbatim in ``raw``; accessors only reshape it for
    display and never recompute winners or scores.
    """

    def __init__(self, raw: Dict[str, Any]) -> None:
        self.raw = raw

    @property
    def results(self) -> List[Any]:
        return self.raw.get("results") or []

    @property
    def scores(self) -> Dict[str, int]:
        return self.raw.get("scores") or {}

    @property
    def rounds(self) -> List[RoundResult]:
        rounds = []
        for index, entry in enumerate(self.results, start=1):
            if isinstance(entry, dict):
                number, games = entry.get("round", index), entry.get("games") or []
            else:
                number, games = index, entry
            rounds.append(RoundResult(round=number, games=tuple(GameOutcome.from_dict(g) for g in games)))
        return rounds

    def ranking(self) -> List[Tuple[str, int]]:
        """Players ordered by score, highest first (stable for ties)."""
        return sorted(self.scores.items(), key=lambda item: item[1], reverse=True)

    def __repr__(self) -> str:
        return f"<TournamentResults rounds={len(self.results)} players={len(self.scores)}>"
