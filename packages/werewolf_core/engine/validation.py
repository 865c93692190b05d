"""Shared actor checks applied before any match action."""

from __future__ import annotations

from typing import Optional

from .errors import ForbiddenError, PhaseExpiredError, ValidationError
from .state import MatchState, PlayerState
from .types import ActionType, allowed_in_phase, can_perform


def deadline_passed(state: MatchState, now: int) -> bool:
    """True once the phase deadline is reached and time has moved since phase entry."""
    return int(now) >= int(state.phase_ends_at) and int(now) > int(state.phase_started_at)


def require_actor(
    state: MatchState,
    *,
    player_id: str,
    action_type: ActionType,
    now: int,
    round_number: Optional[int] = None,
) -> PlayerState:
    """Validate seat, liveness, capability and timing in a fixed order."""
    actor = state.player(player_id)
    if actor is None:
        raise ValidationError(f"Player {player_id} is not seated in match {state.match_id}")
    if state.is_ended:
        raise PhaseExpiredError(f"Match {state.match_id} has ended")
    if not actor.alive:
        raise ForbiddenError("Eliminated players cannot act")
    if not can_perform(actor.role, action_type):
        raise ForbiddenError(f"Role {actor.role.value} cannot perform {action_type.value}")
    if not allowed_in_phase(action_type, state.phase):
        raise PhaseExpiredError(f"{action_type.value} is not accepted during {state.phase.value}")
    if round_number is not None and int(round_number) != int(state.round_number):
        raise PhaseExpiredError(
            f"Action targets round {int(round_number)} but match is in round {state.round_number}"
        )
    if deadline_passed(state, now):
        raise PhaseExpiredError(f"{state.phase.value} deadline has passed")
    return actor


def require_living_target(state: MatchState, target_id: Optional[str], *, label: str) -> PlayerState:
    if not target_id:
        raise ValidationError(f"{label} target is required")
    target = state.player(target_id)
    if target is None:
        raise ValidationError(f"{label} target {target_id} is not seated in this match")
    if not target.alive:
        raise ValidationError(f"{label} target {target_id} is not alive")
    return target


def clean_text(text: Optional[str], *, max_length: int, label: str) -> str:
    value = str(text or "").strip()
    if not value:
        raise ValidationError(f"{label} must not be empty")
    if len(value) > max_length:
        raise ValidationError(f"{label} must be at most {max_length} characters")
    return value
