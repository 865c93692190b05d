"""Night submissions and their simultaneous resolution at dawn."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from . import events
from .config import EngineConfig
from .errors import RateLimitedError, ValidationError
from .events import TranscriptDraft
from .state import MatchState, SubmittedAction
from .types import NIGHT_ACTION_TYPES, REQUIRED_NIGHT_ACTION, ActionType, Phase, Role
from .validation import clean_text, require_actor, require_living_target


WOLF_CHAT_MAX_LENGTH = 400

ELIMINATION_CAUSE_NIGHT = "night_kill"


@dataclass
class NightOutcome:
    kill_target_id: Optional[str] = None
    protected_id: Optional[str] = None
    eliminated_id: Optional[str] = None
    seer_id: Optional[str] = None
    inspected_id: Optional[str] = None
    inspected_role: Optional[Role] = None
    drafts: list[TranscriptDraft] = field(default_factory=list)

    @property
    def saved_by_doctor(self) -> bool:
        return bool(self.kill_target_id) and self.kill_target_id == self.protected_id


def submit_night_action(
    state: MatchState,
    *,
    player_id: str,
    action_type: ActionType,
    target_id: Optional[str],
    now: int,
    round_number: Optional[int] = None,
) -> list[TranscriptDraft]:
    """Record (or overwrite) the actor's choice for this night."""
    if action_type not in NIGHT_ACTION_TYPES:
        raise ValidationError(f"{action_type.value} is not a night action")
    actor = require_actor(
        state,
        player_id=player_id,
        action_type=action_type,
        now=now,
        round_number=round_number,
    )
    if action_type == ActionType.KILL:
        target = require_living_target(state, target_id, label="Kill")
        if target.is_werewolf:
            raise ValidationError("Werewolves can only target non-werewolves")
    elif action_type == ActionType.INSPECT:
        target = require_living_target(state, target_id, label="Inspect")
        if target.player_id == actor.player_id:
            raise ValidationError("The seer cannot inspect themself")
    elif action_type == ActionType.PROTECT:
        target = require_living_target(state, target_id, label="Protect")
        if actor.doctor_last_protected == target.player_id:
            raise ValidationError("The doctor cannot protect the same player on consecutive nights")

    state.night_actions[actor.player_id] = SubmittedAction(
        action_type=action_type,
        target_id=target.player_id,
        round_number=state.round_number,
        seq=state.next_seq(),
        submitted_at=int(now),
    )
    return [
        events.night_action_submitted(
            actor_id=actor.player_id,
            action_type=action_type.value,
            target_id=target.player_id,
            round_number=state.round_number,
            now=now,
        )
    ]


def apply_wolf_chat(
    state: MatchState,
    *,
    player_id: str,
    text: str,
    now: int,
    config: EngineConfig,
    round_number: Optional[int] = None,
) -> list[TranscriptDraft]:
    actor = require_actor(
        state,
        player_id=player_id,
        action_type=ActionType.WOLF_CHAT,
        now=now,
        round_number=round_number,
    )
    body = clean_text(text, max_length=WOLF_CHAT_MAX_LENGTH, label="Wolf chat message")
    last = actor.last_wolf_chat_at
    if last is not None and int(now) - int(last) < int(config.wolf_chat_cooldown_ms):
        raise RateLimitedError("Wolf chat cooldown active; wait before sending again")
    actor.last_wolf_chat_at = int(now)
    return [events.wolf_chat(player_id=actor.player_id, text=body, round_number=state.round_number, now=now)]


def _current(state: MatchState, player_id: str, action_type: ActionType) -> Optional[SubmittedAction]:
    action = state.night_actions.get(player_id)
    if action is None or action.action_type != action_type:
        return None
    if action.round_number != state.round_number:
        return None
    return action


def select_kill_target(state: MatchState) -> Optional[str]:
    """Plurality of living wolves' latest picks; ties go to the most recently backed target."""
    counts: dict[str, int] = {}
    latest_seq: dict[str, int] = {}
    for wolf in state.alive_werewolves():
        action = _current(state, wolf.player_id, ActionType.KILL)
        if action is None or not action.target_id:
            continue
        target = state.player(action.target_id)
        if target is None or not target.alive or target.is_werewolf:
            continue
        counts[action.target_id] = counts.get(action.target_id, 0) + 1
        latest_seq[action.target_id] = max(latest_seq.get(action.target_id, 0), action.seq)
    if not counts:
        return None
    top = max(counts.values())
    tied = [target_id for target_id, count in counts.items() if count == top]
    return max(tied, key=lambda target_id: latest_seq[target_id])


def night_actions_complete(state: MatchState) -> bool:
    """True once every living wolf, seer and doctor has submitted for this night."""
    if state.phase != Phase.NIGHT:
        return False
    for player in state.alive_players():
        required = REQUIRED_NIGHT_ACTION.get(player.role)
        if required is None:
            continue
        if _current(state, player.player_id, required) is None:
            return False
    return True


def resolve_night(state: MatchState, *, now: int) -> NightOutcome:
    """Apply the night's kill, protection and inspection exactly once."""
    outcome = NightOutcome()
    outcome.kill_target_id = select_kill_target(state)

    doctor = next(iter(state.alive_with_role(Role.DOCTOR)), None)
    if doctor is not None:
        protect = _current(state, doctor.player_id, ActionType.PROTECT)
        outcome.protected_id = protect.target_id if protect else None
        doctor.doctor_last_protected = outcome.protected_id

    seer = next(iter(state.alive_with_role(Role.SEER)), None)
    if seer is not None:
        inspect = _current(state, seer.player_id, ActionType.INSPECT)
        target = state.player(inspect.target_id) if inspect else None
        if target is not None:
            outcome.seer_id = seer.player_id
            outcome.inspected_id = target.player_id
            outcome.inspected_role = target.role
            seer.seer_history.append(
                {
                    "round_number": state.round_number,
                    "target_id": target.player_id,
                    "role": target.role.value,
                    "is_werewolf": target.is_werewolf,
                }
            )

    if outcome.kill_target_id and not outcome.saved_by_doctor:
        outcome.eliminated_id = outcome.kill_target_id
        state.eliminate(outcome.eliminated_id, now=now, cause=ELIMINATION_CAUSE_NIGHT)

    outcome.drafts.append(
        events.night_result(
            killed_id=outcome.eliminated_id,
            saved_by_doctor=outcome.saved_by_doctor,
            round_number=state.round_number,
            now=now,
        )
    )
    if outcome.eliminated_id:
        victim = state.require_player(outcome.eliminated_id)
        outcome.drafts.append(
            events.player_eliminated(
                player_id=victim.player_id,
                role=victim.role,
                cause=ELIMINATION_CAUSE_NIGHT,
                round_number=state.round_number,
                phase=Phase.DAY_DISCUSSION,
                now=now,
            )
        )
    if outcome.seer_id and outcome.inspected_id and outcome.inspected_role:
        outcome.drafts.append(
            events.seer_result(
                seer_id=outcome.seer_id,
                target_id=outcome.inspected_id,
                target_role=outcome.inspected_role,
                round_number=state.round_number,
                now=now,
            )
        )

    state.night_actions = {}
    return outcome
