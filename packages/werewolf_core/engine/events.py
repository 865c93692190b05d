"""Transcript entry drafts.

The engine only builds drafts; the storage layer assigns the per-match
sequence number when it appends them. Seq doubles as the public event id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .types import EntryKind, Phase, Role, Team, Visibility


EVENT_MATCH_CREATED = "match_created"
EVENT_PLAYER_READY = "player_ready"
EVENT_PHASE_CHANGED = "phase_changed"
EVENT_PUBLIC_MESSAGE = "public_message"
EVENT_WOLF_CHAT = "wolf_chat_message"
EVENT_VOTE_CAST = "vote_cast"
EVENT_VOTE_RESULT = "vote_result"
EVENT_NIGHT_ACTION = "night_action_submitted"
EVENT_NIGHT_RESULT = "night_result"
EVENT_SEER_RESULT = "seer_result"
EVENT_PLAYER_ELIMINATED = "player_eliminated"
EVENT_GAME_ENDED = "game_ended"
EVENT_NARRATOR = "narrator"


@dataclass(frozen=True)
class TranscriptDraft:
    kind: EntryKind
    event_type: str
    visibility: Visibility
    payload: dict[str, Any]
    round_number: int
    phase: Phase
    created_at: int
    audience_id: Optional[str] = None
    actor_id: Optional[str] = None

    def to_row(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "event_type": self.event_type,
            "visibility": self.visibility.value,
            "audience_id": self.audience_id,
            "actor_id": self.actor_id,
            "payload": dict(self.payload),
            "round_number": int(self.round_number),
            "phase": self.phase.value,
            "created_at": int(self.created_at),
        }


def match_created(*, players: list[dict[str, Any]], phase_ends_at: int, now: int) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_MATCH_CREATED,
        visibility=Visibility.PUBLIC,
        payload={"players": players, "phase_ends_at": int(phase_ends_at)},
        round_number=0,
        phase=Phase.READY_CHECK,
        created_at=now,
    )


def player_ready(*, player_id: str, auto: bool, now: int) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_PLAYER_READY,
        visibility=Visibility.PUBLIC,
        payload={"player_id": player_id, "auto": bool(auto)},
        round_number=0,
        phase=Phase.READY_CHECK,
        created_at=now,
        actor_id=player_id,
    )


def phase_changed(
    *,
    from_phase: Phase,
    to_phase: Phase,
    round_number: int,
    phase_ends_at: int,
    now: int,
) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.PHASE_CHANGE,
        event_type=EVENT_PHASE_CHANGED,
        visibility=Visibility.PUBLIC,
        payload={
            "from": from_phase.value,
            "to": to_phase.value,
            "round_number": int(round_number),
            "phase_ends_at": int(phase_ends_at),
        },
        round_number=round_number,
        phase=to_phase,
        created_at=now,
    )


def public_message(*, player_id: str, text: str, round_number: int, phase: Phase, now: int) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.MESSAGE,
        event_type=EVENT_PUBLIC_MESSAGE,
        visibility=Visibility.PUBLIC,
        payload={"player_id": player_id, "text": text},
        round_number=round_number,
        phase=phase,
        created_at=now,
        actor_id=player_id,
    )


def wolf_chat(*, player_id: str, text: str, round_number: int, now: int) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.MESSAGE,
        event_type=EVENT_WOLF_CHAT,
        visibility=Visibility.WOLVES,
        payload={"player_id": player_id, "text": text},
        round_number=round_number,
        phase=Phase.NIGHT,
        created_at=now,
        actor_id=player_id,
    )


def vote_cast(
    *,
    voter_id: str,
    target_id: Optional[str],
    reason: Optional[str],
    round_number: int,
    now: int,
) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.VOTE,
        event_type=EVENT_VOTE_CAST,
        visibility=Visibility.PUBLIC,
        payload={"voter_id": voter_id, "target_id": target_id, "reason": reason},
        round_number=round_number,
        phase=Phase.VOTING,
        created_at=now,
        actor_id=voter_id,
    )


def vote_result(
    *,
    tally: dict[str, int],
    eliminated_id: Optional[str],
    tied: bool,
    round_number: int,
    now: int,
) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_VOTE_RESULT,
        visibility=Visibility.PUBLIC,
        payload={"tally": dict(tally), "eliminated_id": eliminated_id, "tied": bool(tied)},
        round_number=round_number,
        phase=Phase.RESOLUTION,
        created_at=now,
    )


_ACK_VISIBILITY = {
    "KILL": Visibility.WOLVES,
    "INSPECT": Visibility.ROLE_SEER,
    "PROTECT": Visibility.DEAD_OR_ENDED,
}


def night_action_submitted(
    *,
    actor_id: str,
    action_type: str,
    target_id: str,
    round_number: int,
    now: int,
) -> TranscriptDraft:
    visibility = _ACK_VISIBILITY[action_type]
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_NIGHT_ACTION,
        visibility=visibility,
        payload={"actor_id": actor_id, "action_type": action_type, "target_id": target_id},
        round_number=round_number,
        phase=Phase.NIGHT,
        created_at=now,
        audience_id=actor_id if visibility == Visibility.ROLE_SEER else None,
        actor_id=actor_id,
    )


def night_result(
    *,
    killed_id: Optional[str],
    saved_by_doctor: bool,
    round_number: int,
    now: int,
) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_NIGHT_RESULT,
        visibility=Visibility.PUBLIC,
        payload={"killed_id": killed_id, "saved_by_doctor": bool(saved_by_doctor)},
        round_number=round_number,
        phase=Phase.DAY_DISCUSSION,
        created_at=now,
    )


def seer_result(
    *,
    seer_id: str,
    target_id: str,
    target_role: Role,
    round_number: int,
    now: int,
) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_SEER_RESULT,
        visibility=Visibility.ROLE_SEER,
        payload={
            "target_id": target_id,
            "role": target_role.value,
            "is_werewolf": target_role == Role.WEREWOLF,
        },
        round_number=round_number,
        phase=Phase.DAY_DISCUSSION,
        created_at=now,
        audience_id=seer_id,
    )


def player_eliminated(
    *,
    player_id: str,
    role: Role,
    cause: str,
    round_number: int,
    phase: Phase,
    now: int,
) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_PLAYER_ELIMINATED,
        visibility=Visibility.PUBLIC,
        payload={"player_id": player_id, "role_revealed": role.value, "cause": cause},
        round_number=round_number,
        phase=phase,
        created_at=now,
    )


def game_ended(*, winner: Team, reason: str, roles: dict[str, str], round_number: int, now: int) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_GAME_ENDED,
        visibility=Visibility.PUBLIC,
        payload={"winner": winner.value, "reason": reason, "roles": dict(roles)},
        round_number=round_number,
        phase=Phase.ENDED,
        created_at=now,
    )


def narrator(*, text: str, round_number: int, phase: Phase, now: int) -> TranscriptDraft:
    return TranscriptDraft(
        kind=EntryKind.SYSTEM,
        event_type=EVENT_NARRATOR,
        visibility=Visibility.PUBLIC,
        payload={"text": text},
        round_number=round_number,
        phase=phase,
        created_at=now,
    )
