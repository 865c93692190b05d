"""Match state document and its JSON round trip."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import EngineConfig
from .errors import ValidationError
from .roles import assign_roles
from .types import ActionType, Phase, Role, Team


@dataclass
class SubmittedAction:
    action_type: ActionType
    target_id: Optional[str]
    round_number: int
    seq: int
    submitted_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "target_id": self.target_id,
            "round_number": int(self.round_number),
            "seq": int(self.seq),
            "submitted_at": int(self.submitted_at),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SubmittedAction":
        target = raw.get("target_id")
        return cls(
            action_type=ActionType(str(raw["action_type"])),
            target_id=str(target) if target is not None else None,
            round_number=int(raw.get("round_number") or 0),
            seq=int(raw.get("seq") or 0),
            submitted_at=int(raw.get("submitted_at") or 0),
        )


@dataclass
class PlayerState:
    player_id: str
    seat: int
    role: Role
    alive: bool = True
    ready: bool = False
    eliminated_at: Optional[int] = None
    eliminated_round: Optional[int] = None
    elimination_cause: Optional[str] = None
    doctor_last_protected: Optional[str] = None
    seer_history: list[dict[str, Any]] = field(default_factory=list)
    last_public_message_at: Optional[int] = None
    last_wolf_chat_at: Optional[int] = None

    @property
    def is_werewolf(self) -> bool:
        return self.role == Role.WEREWOLF

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "seat": int(self.seat),
            "role": self.role.value,
            "alive": bool(self.alive),
            "ready": bool(self.ready),
            "eliminated_at": self.eliminated_at,
            "eliminated_round": self.eliminated_round,
            "elimination_cause": self.elimination_cause,
            "doctor_last_protected": self.doctor_last_protected,
            "seer_history": [dict(item) for item in self.seer_history],
            "last_public_message_at": self.last_public_message_at,
            "last_wolf_chat_at": self.last_wolf_chat_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "PlayerState":
        return cls(
            player_id=str(raw["player_id"]),
            seat=int(raw.get("seat") or 0),
            role=Role(str(raw["role"])),
            alive=bool(raw.get("alive", True)),
            ready=bool(raw.get("ready", False)),
            eliminated_at=_optional_int(raw.get("eliminated_at")),
            eliminated_round=_optional_int(raw.get("eliminated_round")),
            elimination_cause=raw.get("elimination_cause"),
            doctor_last_protected=raw.get("doctor_last_protected"),
            seer_history=[dict(item) for item in (raw.get("seer_history") or [])],
            last_public_message_at=_optional_int(raw.get("last_public_message_at")),
            last_wolf_chat_at=_optional_int(raw.get("last_wolf_chat_at")),
        )


@dataclass
class MatchState:
    match_id: str
    phase: Phase
    round_number: int
    players: list[PlayerState]
    created_at: int
    phase_started_at: int
    phase_ends_at: int
    ended_at: Optional[int] = None
    winner: Optional[Team] = None
    end_reason: Optional[str] = None
    pending_winner: Optional[Team] = None
    votes: dict[str, SubmittedAction] = field(default_factory=dict)
    night_actions: dict[str, SubmittedAction] = field(default_factory=dict)
    action_seq: int = 0
    public_summary: str = ""

    @property
    def is_ended(self) -> bool:
        return self.phase == Phase.ENDED

    def copy(self) -> "MatchState":
        return copy.deepcopy(self)

    def player(self, player_id: Optional[str]) -> Optional[PlayerState]:
        if not player_id:
            return None
        for item in self.players:
            if item.player_id == player_id:
                return item
        return None

    def require_player(self, player_id: str) -> PlayerState:
        player = self.player(player_id)
        if player is None:
            raise ValidationError(f"Player {player_id} is not seated in match {self.match_id}")
        return player

    def alive_players(self) -> list[PlayerState]:
        return [item for item in self.players if item.alive]

    def alive_werewolves(self) -> list[PlayerState]:
        return [item for item in self.players if item.alive and item.is_werewolf]

    def alive_with_role(self, role: Role) -> list[PlayerState]:
        return [item for item in self.players if item.alive and item.role == role]

    def next_seq(self) -> int:
        self.action_seq += 1
        return self.action_seq

    def eliminate(self, player_id: str, *, now: int, cause: str) -> None:
        player = self.require_player(player_id)
        if not player.alive:
            return
        player.alive = False
        player.eliminated_at = int(now)
        player.eliminated_round = int(self.round_number)
        player.elimination_cause = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "match_id": self.match_id,
            "phase": self.phase.value,
            "round_number": int(self.round_number),
            "players": [item.to_dict() for item in self.players],
            "created_at": int(self.created_at),
            "phase_started_at": int(self.phase_started_at),
            "phase_ends_at": int(self.phase_ends_at),
            "ended_at": self.ended_at,
            "winner": self.winner.value if self.winner else None,
            "end_reason": self.end_reason,
            "pending_winner": self.pending_winner.value if self.pending_winner else None,
            "votes": {pid: action.to_dict() for pid, action in self.votes.items()},
            "night_actions": {pid: action.to_dict() for pid, action in self.night_actions.items()},
            "action_seq": int(self.action_seq),
            "public_summary": self.public_summary,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "MatchState":
        winner = raw.get("winner")
        pending = raw.get("pending_winner")
        return cls(
            match_id=str(raw["match_id"]),
            phase=Phase(str(raw["phase"])),
            round_number=int(raw.get("round_number") or 0),
            players=[PlayerState.from_dict(item) for item in (raw.get("players") or [])],
            created_at=int(raw.get("created_at") or 0),
            phase_started_at=int(raw.get("phase_started_at") or 0),
            phase_ends_at=int(raw.get("phase_ends_at") or 0),
            ended_at=_optional_int(raw.get("ended_at")),
            winner=Team(str(winner)) if winner else None,
            end_reason=raw.get("end_reason"),
            pending_winner=Team(str(pending)) if pending else None,
            votes={
                str(pid): SubmittedAction.from_dict(action)
                for pid, action in (raw.get("votes") or {}).items()
            },
            night_actions={
                str(pid): SubmittedAction.from_dict(action)
                for pid, action in (raw.get("night_actions") or {}).items()
            },
            action_seq=int(raw.get("action_seq") or 0),
            public_summary=str(raw.get("public_summary") or ""),
        )


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def create_match_state(
    *,
    match_id: str,
    player_ids: list[str],
    now: int,
    config: EngineConfig,
    role_seed: Optional[str] = None,
) -> MatchState:
    """Seat players in the given order and open the ready check."""
    roles = assign_roles(player_ids=list(player_ids), seed=role_seed or match_id)
    players = [
        PlayerState(player_id=pid, seat=idx + 1, role=roles[pid])
        for idx, pid in enumerate(player_ids)
    ]
    return MatchState(
        match_id=match_id,
        phase=Phase.READY_CHECK,
        round_number=0,
        players=players,
        created_at=int(now),
        phase_started_at=int(now),
        phase_ends_at=config.deadline_for(Phase.READY_CHECK, now),
        public_summary="Match formed. Waiting for every player to ready up.",
    )
