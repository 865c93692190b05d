"""Phase state machine for a single match.

`advance_match_phase` is a pure function of `(state, now, config)`: it never
mutates its input, performs at most one transition per call and returns the
transcript drafts that must be appended together with the new state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from . import events
from .config import READY_TIMEOUT_FORFEIT, EngineConfig
from .day import resolve_votes, votes_complete
from .events import TranscriptDraft
from .night import night_actions_complete, resolve_night
from .state import MatchState
from .types import ActionType, Phase, Team
from .validation import deadline_passed, require_actor
from .win import evaluate_win_condition, forced_winner


logger = logging.getLogger("werewolf_core.engine.transitions")

END_REASON_WIN = "win_condition"
END_REASON_MAX_ROUNDS = "max_rounds"
ELIMINATION_CAUSE_FORFEIT = "forfeit"


@dataclass
class PhaseAdvance:
    state: MatchState
    changed: bool
    from_phase: Phase
    to_phase: Phase
    drafts: list[TranscriptDraft] = field(default_factory=list)
    eliminated_ids: list[str] = field(default_factory=list)

    @property
    def winner(self) -> Optional[Team]:
        return self.state.winner


def mark_ready(
    state: MatchState,
    *,
    player_id: str,
    now: int,
    round_number: Optional[int] = None,
) -> list[TranscriptDraft]:
    actor = require_actor(
        state,
        player_id=player_id,
        action_type=ActionType.READY,
        now=now,
        round_number=round_number,
    )
    if actor.ready:
        return []
    actor.ready = True
    return [events.player_ready(player_id=actor.player_id, auto=False, now=now)]


def all_ready(state: MatchState) -> bool:
    return all(player.ready for player in state.alive_players())


def phase_expired(state: MatchState, now: int) -> bool:
    if state.is_ended:
        return False
    return deadline_passed(state, now)


def can_advance_early(state: MatchState) -> bool:
    if state.phase == Phase.READY_CHECK:
        return all_ready(state)
    if state.phase == Phase.NIGHT:
        return night_actions_complete(state)
    if state.phase == Phase.VOTING:
        return votes_complete(state)
    return False


def _summary(state: MatchState, *, eliminated_id: Optional[str] = None, saved: bool = False) -> str:
    remaining = f"{len(state.alive_players())} players remain."
    if state.phase == Phase.NIGHT:
        return f"Night {state.round_number} begins. {remaining}"
    if state.phase == Phase.DAY_DISCUSSION:
        if eliminated_id:
            outcome = f"{eliminated_id} was killed overnight."
        elif saved:
            outcome = "No one died overnight. A life was saved."
        else:
            outcome = "No one died overnight."
        return f"Day {state.round_number} dawns. {outcome} {remaining}"
    if state.phase == Phase.VOTING:
        return f"Day {state.round_number} voting begins. {remaining}"
    if state.phase == Phase.RESOLUTION:
        outcome = f"{eliminated_id} was voted out." if eliminated_id else "No one was voted out."
        return f"Votes are in. {outcome} {remaining}"
    if state.phase == Phase.ENDED:
        return f"Game ended. {state.winner.value} win." if state.winner else "Game ended."
    return state.public_summary


def _enter(state: MatchState, phase: Phase, *, now: int, config: EngineConfig) -> TranscriptDraft:
    from_phase = state.phase
    state.phase = phase
    state.phase_started_at = int(now)
    state.phase_ends_at = config.deadline_for(phase, now)
    return events.phase_changed(
        from_phase=from_phase,
        to_phase=phase,
        round_number=state.round_number,
        phase_ends_at=state.phase_ends_at,
        now=now,
    )


def _end(state: MatchState, *, winner: Team, reason: str, now: int, config: EngineConfig) -> list[TranscriptDraft]:
    drafts = [_enter(state, Phase.ENDED, now=now, config=config)]
    state.ended_at = int(now)
    state.winner = winner
    state.end_reason = reason
    state.pending_winner = None
    state.votes = {}
    state.night_actions = {}
    state.public_summary = _summary(state)
    drafts.append(
        events.game_ended(
            winner=winner,
            reason=reason,
            roles={player.player_id: player.role.value for player in state.players},
            round_number=state.round_number,
            now=now,
        )
    )
    return drafts


def _narrate(state: MatchState, now: int) -> TranscriptDraft:
    return events.narrator(text=state.public_summary, round_number=state.round_number, phase=state.phase, now=now)


def _from_ready_check(state: MatchState, *, now: int, config: EngineConfig, advance: PhaseAdvance) -> None:
    for player in state.alive_players():
        if player.ready:
            continue
        if config.ready_timeout_policy == READY_TIMEOUT_FORFEIT:
            state.eliminate(player.player_id, now=now, cause=ELIMINATION_CAUSE_FORFEIT)
            advance.eliminated_ids.append(player.player_id)
            advance.drafts.append(
                events.player_eliminated(
                    player_id=player.player_id,
                    role=player.role,
                    cause=ELIMINATION_CAUSE_FORFEIT,
                    round_number=state.round_number,
                    phase=Phase.READY_CHECK,
                    now=now,
                )
            )
        else:
            player.ready = True
            advance.drafts.append(events.player_ready(player_id=player.player_id, auto=True, now=now))

    if advance.eliminated_ids:
        winner = evaluate_win_condition(state)
        if winner is not None:
            advance.drafts.extend(_end(state, winner=winner, reason=END_REASON_WIN, now=now, config=config))
            return

    state.round_number = 1
    advance.drafts.append(_enter(state, Phase.NIGHT, now=now, config=config))
    state.public_summary = _summary(state)
    advance.drafts.append(_narrate(state, now))


def _from_night(state: MatchState, *, now: int, config: EngineConfig, advance: PhaseAdvance) -> None:
    outcome = resolve_night(state, now=now)
    if outcome.eliminated_id:
        advance.eliminated_ids.append(outcome.eliminated_id)
    winner = evaluate_win_condition(state)
    if winner is not None:
        advance.drafts.extend(outcome.drafts)
        advance.drafts.extend(_end(state, winner=winner, reason=END_REASON_WIN, now=now, config=config))
        return
    advance.drafts.append(_enter(state, Phase.DAY_DISCUSSION, now=now, config=config))
    advance.drafts.extend(outcome.drafts)
    state.public_summary = _summary(state, eliminated_id=outcome.eliminated_id, saved=outcome.saved_by_doctor)
    advance.drafts.append(_narrate(state, now))


def _from_day_discussion(state: MatchState, *, now: int, config: EngineConfig, advance: PhaseAdvance) -> None:
    state.votes = {}
    advance.drafts.append(_enter(state, Phase.VOTING, now=now, config=config))
    state.public_summary = _summary(state)
    advance.drafts.append(_narrate(state, now))


def _from_voting(state: MatchState, *, now: int, config: EngineConfig, advance: PhaseAdvance) -> None:
    outcome = resolve_votes(state, now=now)
    if outcome.eliminated_id:
        advance.eliminated_ids.append(outcome.eliminated_id)
    advance.drafts.append(_enter(state, Phase.RESOLUTION, now=now, config=config))
    advance.drafts.extend(outcome.drafts)
    state.pending_winner = evaluate_win_condition(state)
    state.public_summary = _summary(state, eliminated_id=outcome.eliminated_id)
    advance.drafts.append(_narrate(state, now))


def _from_resolution(state: MatchState, *, now: int, config: EngineConfig, advance: PhaseAdvance) -> None:
    if state.pending_winner is not None:
        advance.drafts.extend(
            _end(state, winner=state.pending_winner, reason=END_REASON_WIN, now=now, config=config)
        )
        return
    if config.max_rounds is not None and state.round_number >= int(config.max_rounds):
        advance.drafts.extend(
            _end(state, winner=forced_winner(state), reason=END_REASON_MAX_ROUNDS, now=now, config=config)
        )
        return
    state.round_number += 1
    advance.drafts.append(_enter(state, Phase.NIGHT, now=now, config=config))
    state.public_summary = _summary(state)
    advance.drafts.append(_narrate(state, now))


_HANDLERS = {
    Phase.READY_CHECK: _from_ready_check,
    Phase.NIGHT: _from_night,
    Phase.DAY_DISCUSSION: _from_day_discussion,
    Phase.VOTING: _from_voting,
    Phase.RESOLUTION: _from_resolution,
}


def advance_match_phase(state: MatchState, *, now: int, config: EngineConfig) -> PhaseAdvance:
    """Apply the next transition if the phase expired or completed early."""
    current = state.phase
    handler = _HANDLERS.get(current)
    if handler is None or not (phase_expired(state, now) or can_advance_early(state)):
        return PhaseAdvance(state=state, changed=False, from_phase=current, to_phase=current)

    next_state = state.copy()
    advance = PhaseAdvance(state=next_state, changed=True, from_phase=current, to_phase=current)
    handler(next_state, now=int(now), config=config, advance=advance)
    advance.to_phase = next_state.phase
    logger.info(
        "[PHASE] match=%s %s -> %s round=%s eliminated=%s winner=%s",
        next_state.match_id,
        current.value,
        next_state.phase.value,
        next_state.round_number,
        ",".join(advance.eliminated_ids) or "-",
        next_state.winner.value if next_state.winner else "-",
    )
    return advance
