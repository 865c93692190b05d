"""Enumerations and capability tables shared by the match engine."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    VILLAGER = "VILLAGER"
    WEREWOLF = "WEREWOLF"
    SEER = "SEER"
    DOCTOR = "DOCTOR"


class Team(str, Enum):
    VILLAGERS = "VILLAGERS"
    WEREWOLVES = "WEREWOLVES"


class Phase(str, Enum):
    QUEUED = "QUEUED"
    READY_CHECK = "READY_CHECK"
    NIGHT = "NIGHT"
    DAY_DISCUSSION = "DAY_DISCUSSION"
    VOTING = "VOTING"
    RESOLUTION = "RESOLUTION"
    ENDED = "ENDED"


class ActionType(str, Enum):
    READY = "READY"
    SAY_PUBLIC = "SAY_PUBLIC"
    VOTE = "VOTE"
    WOLF_CHAT = "WOLF_CHAT"
    KILL = "KILL"
    INSPECT = "INSPECT"
    PROTECT = "PROTECT"


class Visibility(str, Enum):
    PUBLIC = "public"
    WOLVES = "wolves"
    ROLE_SEER = "role:seer"
    DEAD_OR_ENDED = "dead-or-ended"


class EntryKind(str, Enum):
    MESSAGE = "message"
    VOTE = "vote"
    PHASE_CHANGE = "phase-change"
    SYSTEM = "system"


NIGHT_ACTION_TYPES = frozenset({ActionType.KILL, ActionType.INSPECT, ActionType.PROTECT})

_COMMON_ACTIONS = frozenset({ActionType.READY, ActionType.SAY_PUBLIC, ActionType.VOTE})

ROLE_CAPABILITIES: dict[Role, frozenset[ActionType]] = {
    Role.VILLAGER: _COMMON_ACTIONS,
    Role.WEREWOLF: _COMMON_ACTIONS | {ActionType.WOLF_CHAT, ActionType.KILL},
    Role.SEER: _COMMON_ACTIONS | {ActionType.INSPECT},
    Role.DOCTOR: _COMMON_ACTIONS | {ActionType.PROTECT},
}

ACTION_PHASES: dict[ActionType, frozenset[Phase]] = {
    ActionType.READY: frozenset({Phase.READY_CHECK}),
    ActionType.SAY_PUBLIC: frozenset({Phase.DAY_DISCUSSION, Phase.VOTING}),
    ActionType.VOTE: frozenset({Phase.VOTING}),
    ActionType.WOLF_CHAT: frozenset({Phase.NIGHT}),
    ActionType.KILL: frozenset({Phase.NIGHT}),
    ActionType.INSPECT: frozenset({Phase.NIGHT}),
    ActionType.PROTECT: frozenset({Phase.NIGHT}),
}

# The single night action each role owes before the night can close early.
REQUIRED_NIGHT_ACTION: dict[Role, ActionType] = {
    Role.WEREWOLF: ActionType.KILL,
    Role.SEER: ActionType.INSPECT,
    Role.DOCTOR: ActionType.PROTECT,
}


def can_perform(role: Role, action_type: ActionType) -> bool:
    return action_type in ROLE_CAPABILITIES.get(role, frozenset())


def allowed_in_phase(action_type: ActionType, phase: Phase) -> bool:
    return phase in ACTION_PHASES.get(action_type, frozenset())
