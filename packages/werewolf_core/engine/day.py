"""Day discussion messages, votes and vote resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from . import events
from .config import EngineConfig
from .errors import RateLimitedError, ValidationError
from .events import TranscriptDraft
from .state import MatchState, SubmittedAction
from .types import ActionType, Phase
from .validation import clean_text, require_actor, require_living_target


PUBLIC_MESSAGE_MAX_LENGTH = 500
VOTE_REASON_MAX_LENGTH = 200

ELIMINATION_CAUSE_VOTE = "vote"


@dataclass
class VoteOutcome:
    tally: dict[str, int] = field(default_factory=dict)
    eliminated_id: Optional[str] = None
    tied: bool = False
    drafts: list[TranscriptDraft] = field(default_factory=list)


def apply_public_message(
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
        action_type=ActionType.SAY_PUBLIC,
        now=now,
        round_number=round_number,
    )
    body = clean_text(text, max_length=PUBLIC_MESSAGE_MAX_LENGTH, label="Public message")
    last = actor.last_public_message_at
    if last is not None and int(now) - int(last) < int(config.public_message_cooldown_ms):
        raise RateLimitedError("Public message cooldown active; wait before speaking again")
    actor.last_public_message_at = int(now)
    return [
        events.public_message(
            player_id=actor.player_id,
            text=body,
            round_number=state.round_number,
            phase=state.phase,
            now=now,
        )
    ]


def apply_vote(
    state: MatchState,
    *,
    player_id: str,
    target_id: Optional[str],
    now: int,
    reason: Optional[str] = None,
    round_number: Optional[int] = None,
) -> list[TranscriptDraft]:
    """Cast or replace a vote; `target_id=None` abstains."""
    actor = require_actor(
        state,
        player_id=player_id,
        action_type=ActionType.VOTE,
        now=now,
        round_number=round_number,
    )
    target = require_living_target(state, target_id, label="Vote") if target_id else None
    cleaned_reason = None
    if reason is not None and str(reason).strip():
        cleaned_reason = str(reason).strip()
        if len(cleaned_reason) > VOTE_REASON_MAX_LENGTH:
            raise ValidationError(f"Vote reason must be at most {VOTE_REASON_MAX_LENGTH} characters")

    state.votes[actor.player_id] = SubmittedAction(
        action_type=ActionType.VOTE,
        target_id=target.player_id if target else None,
        round_number=state.round_number,
        seq=state.next_seq(),
        submitted_at=int(now),
    )
    return [
        events.vote_cast(
            voter_id=actor.player_id,
            target_id=target.player_id if target else None,
            reason=cleaned_reason,
            round_number=state.round_number,
            now=now,
        )
    ]


def tally_votes(state: MatchState) -> dict[str, int]:
    tally: dict[str, int] = {}
    for voter in state.alive_players():
        vote = state.votes.get(voter.player_id)
        if vote is None or vote.round_number != state.round_number or not vote.target_id:
            continue
        target = state.player(vote.target_id)
        if target is None or not target.alive:
            continue
        tally[vote.target_id] = tally.get(vote.target_id, 0) + 1
    return tally


def votes_complete(state: MatchState) -> bool:
    if state.phase != Phase.VOTING:
        return False
    for voter in state.alive_players():
        vote = state.votes.get(voter.player_id)
        if vote is None or vote.round_number != state.round_number:
            return False
    return True


def resolve_votes(state: MatchState, *, now: int) -> VoteOutcome:
    """Strict plurality eliminates; a tie at the top or no votes eliminates no one."""
    outcome = VoteOutcome(tally=tally_votes(state))
    if outcome.tally:
        top = max(outcome.tally.values())
        leaders = sorted(target_id for target_id, count in outcome.tally.items() if count == top)
        if len(leaders) == 1:
            outcome.eliminated_id = leaders[0]
        else:
            outcome.tied = True

    if outcome.eliminated_id:
        state.eliminate(outcome.eliminated_id, now=now, cause=ELIMINATION_CAUSE_VOTE)

    outcome.drafts.append(
        events.vote_result(
            tally=outcome.tally,
            eliminated_id=outcome.eliminated_id,
            tied=outcome.tied,
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
                cause=ELIMINATION_CAUSE_VOTE,
                round_number=state.round_number,
                phase=Phase.RESOLUTION,
                now=now,
            )
        )
    state.votes = {}
    return outcome
