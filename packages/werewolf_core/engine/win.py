"""Win-condition checks consulted after every elimination."""

from __future__ import annotations

from typing import Optional

from .state import MatchState
from .types import Team


def _alive_counts(state: MatchState) -> tuple[int, int]:
    wolves = len(state.alive_werewolves())
    return wolves, len(state.alive_players()) - wolves


def evaluate_win_condition(state: MatchState) -> Optional[Team]:
    wolves, others = _alive_counts(state)
    if wolves == 0:
        return Team.VILLAGERS
    if wolves >= others:
        return Team.WEREWOLVES
    return None


def forced_winner(state: MatchState) -> Team:
    """Parity decision used when the round limit is hit without a natural winner."""
    wolves, others = _alive_counts(state)
    return Team.WEREWOLVES if wolves >= others else Team.VILLAGERS
