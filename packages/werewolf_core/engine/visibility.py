"""Read-time filtering of the transcript and per-viewer state snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .state import MatchState, PlayerState
from .types import ActionType, Phase, REQUIRED_NIGHT_ACTION, Role, Visibility


def ms_to_iso(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    stamp = datetime.fromtimestamp(int(value) / 1000.0, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Viewer:
    player: Optional[PlayerState]
    sees_all: bool

    @property
    def kind(self) -> str:
        if self.player is None:
            return "spectator"
        return "player" if self.player.alive else "eliminated"

    @property
    def player_id(self) -> Optional[str]:
        return self.player.player_id if self.player else None


def resolve_viewer(state: MatchState, viewer_id: Optional[str]) -> Viewer:
    """Unknown or missing ids read as spectators."""
    player = state.player(viewer_id)
    sees_all = state.is_ended or (player is not None and not player.alive)
    return Viewer(player=player, sees_all=sees_all)


def is_entry_visible(entry: dict[str, Any], viewer: Viewer) -> bool:
    if viewer.sees_all:
        return True
    scope = str(entry.get("visibility") or "")
    if scope == Visibility.PUBLIC.value:
        return True
    player = viewer.player
    if player is None or not player.alive:
        return False
    if scope == Visibility.WOLVES.value:
        return player.role == Role.WEREWOLF
    if scope == Visibility.ROLE_SEER.value:
        return entry.get("audience_id") == player.player_id
    return False


def filter_entries(entries: Iterable[dict[str, Any]], viewer: Viewer) -> list[dict[str, Any]]:
    return [entry for entry in entries if is_entry_visible(entry, viewer)]


def _allowed_targets(state: MatchState, player: PlayerState, action: ActionType) -> list[str]:
    alive = state.alive_players()
    if action == ActionType.KILL:
        return [item.player_id for item in alive if not item.is_werewolf]
    if action == ActionType.INSPECT:
        return [item.player_id for item in alive if item.player_id != player.player_id]
    if action == ActionType.PROTECT:
        return [item.player_id for item in alive if item.player_id != player.doctor_last_protected]
    if action == ActionType.VOTE:
        return [item.player_id for item in alive]
    return []


def required_action(state: MatchState, player: PlayerState) -> Optional[dict[str, Any]]:
    """What the engine is waiting on from this player, if anything."""
    if state.is_ended or not player.alive:
        return None
    if state.phase == Phase.READY_CHECK:
        return {"action": ActionType.READY.value, "allowed_targets": [], "submitted": bool(player.ready)}
    if state.phase == Phase.NIGHT:
        action = REQUIRED_NIGHT_ACTION.get(player.role)
        if action is None:
            return None
        submitted = state.night_actions.get(player.player_id)
        return {
            "action": action.value,
            "allowed_targets": _allowed_targets(state, player, action),
            "submitted": bool(
                submitted is not None
                and submitted.action_type == action
                and submitted.round_number == state.round_number
            ),
        }
    if state.phase == Phase.VOTING:
        vote = state.votes.get(player.player_id)
        return {
            "action": ActionType.VOTE.value,
            "allowed_targets": _allowed_targets(state, player, ActionType.VOTE),
            "submitted": bool(vote is not None and vote.round_number == state.round_number),
        }
    return None


def _player_view(state: MatchState, player: PlayerState) -> dict[str, Any]:
    revealed = state.is_ended or not player.alive
    return {
        "player_id": player.player_id,
        "seat": player.seat,
        "alive": player.alive,
        "ready": player.ready,
        "role": player.role.value if revealed else None,
        "eliminated_round": player.eliminated_round,
        "elimination_cause": player.elimination_cause,
    }


def _you_view(state: MatchState, player: PlayerState) -> dict[str, Any]:
    you: dict[str, Any] = {
        "player_id": player.player_id,
        "seat": player.seat,
        "role": player.role.value,
        "alive": player.alive,
        "required_action": required_action(state, player),
    }
    if player.role == Role.WEREWOLF:
        you["known_wolves"] = [
            {"player_id": item.player_id, "alive": item.alive}
            for item in state.players
            if item.is_werewolf
        ]
    if player.role == Role.SEER:
        you["seer_results"] = [dict(item) for item in player.seer_history]
    if player.role == Role.DOCTOR:
        you["last_protected"] = player.doctor_last_protected
    return you


def build_state_view(
    state: MatchState,
    *,
    entries: Iterable[dict[str, Any]],
    viewer_id: Optional[str] = None,
) -> dict[str, Any]:
    viewer = resolve_viewer(state, viewer_id)
    view: dict[str, Any] = {
        "match_id": state.match_id,
        "phase": state.phase.value,
        "round_number": state.round_number,
        "created_at": state.created_at,
        "created_at_iso": ms_to_iso(state.created_at),
        "phase_started_at": state.phase_started_at,
        "phase_ends_at": state.phase_ends_at,
        "phase_ends_at_iso": ms_to_iso(state.phase_ends_at),
        "ended_at": state.ended_at,
        "ended_at_iso": ms_to_iso(state.ended_at),
        "winner": state.winner.value if state.winner else None,
        "end_reason": state.end_reason,
        "public_summary": state.public_summary,
        "players_alive": len(state.alive_players()),
        "players": [_player_view(state, player) for player in state.players],
        "viewer": {"kind": viewer.kind, "player_id": viewer.player_id},
        "events": filter_entries(entries, viewer),
    }
    if viewer.player is not None:
        view["you"] = _you_view(state, viewer.player)
    return view
