"""Werewolf match engine: pure state transitions, resolvers and read filters."""

from .config import EngineConfig
from .errors import (
    ForbiddenError,
    IdempotencyConflictError,
    InternalError,
    NotFoundError,
    PhaseExpiredError,
    RateLimitedError,
    ValidationError,
    WerewolfError,
)
from .idempotency import IdempotencyOutcome, IdempotencyRecord, IdempotencyStore, run_with_idempotency
from .roles import assign_roles, role_distribution
from .state import MatchState, PlayerState, create_match_state
from .transitions import PhaseAdvance, advance_match_phase, can_advance_early, mark_ready, phase_expired
from .types import ActionType, Phase, Role, Team, Visibility
from .visibility import build_state_view, filter_entries, resolve_viewer
from .win import evaluate_win_condition

__all__ = [
    "EngineConfig",
    "ForbiddenError",
    "IdempotencyConflictError",
    "InternalError",
    "NotFoundError",
    "PhaseExpiredError",
    "RateLimitedError",
    "ValidationError",
    "WerewolfError",
    "IdempotencyOutcome",
    "IdempotencyRecord",
    "IdempotencyStore",
    "run_with_idempotency",
    "assign_roles",
    "role_distribution",
    "MatchState",
    "PlayerState",
    "create_match_state",
    "PhaseAdvance",
    "advance_match_phase",
    "can_advance_early",
    "mark_ready",
    "phase_expired",
    "ActionType",
    "Phase",
    "Role",
    "Team",
    "Visibility",
    "build_state_view",
    "filter_entries",
    "resolve_viewer",
    "evaluate_win_condition",
]
