"""Werewolf engine service: queue, match mutations, phase advancement and reads."""

from __future__ import annotations

import logging
import time
import uuid
from functools import lru_cache
from typing import Any, Callable, Optional

from packages.werewolf_core.engine import events
from packages.werewolf_core.engine.config import EngineConfig
from packages.werewolf_core.engine.day import apply_public_message, apply_vote
from packages.werewolf_core.engine.errors import (
    ForbiddenError,
    IdempotencyConflictError,
    InternalError,
    NotFoundError,
    PhaseExpiredError,
    ValidationError,
    WerewolfError,
)
from packages.werewolf_core.engine.events import TranscriptDraft
from packages.werewolf_core.engine.idempotency import (
    SCOPE_DOCTOR_PROTECT,
    SCOPE_PUBLIC_MESSAGE,
    SCOPE_QUEUE_JOIN,
    SCOPE_READY,
    SCOPE_SEER_INSPECT,
    SCOPE_VOTE,
    SCOPE_WOLF_CHAT,
    SCOPE_WOLF_KILL,
    IdempotencyOutcome,
    run_with_idempotency,
)
from packages.werewolf_core.engine.night import apply_wolf_chat, submit_night_action
from packages.werewolf_core.engine.state import MatchState, create_match_state
from packages.werewolf_core.engine.transitions import advance_match_phase, mark_ready
from packages.werewolf_core.engine.types import ActionType
from packages.werewolf_core.engine.visibility import build_state_view, filter_entries, ms_to_iso, resolve_viewer

from ..config import config_from_env
from ..storage.werewolf import MATCH_STATUSES, WerewolfStore, get_store


logger = logging.getLogger("werewolf_api.engine")

Clock = Callable[[], int]
ApplyFn = Callable[[MatchState, int], list[TranscriptDraft]]

MAX_EVENTS_LIMIT = 200
IDEMPOTENCY_KEY_MIN_LENGTH = 8
IDEMPOTENCY_KEY_MAX_LENGTH = 128


def _system_clock() -> int:
    return int(time.time() * 1000)


def _uuid(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _require_id(value: Optional[str], *, label: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required")
    return text


def _check_idempotency_key(key: Optional[str]) -> Optional[str]:
    value = str(key or "").strip()
    if not value:
        return None
    if not IDEMPOTENCY_KEY_MIN_LENGTH <= len(value) <= IDEMPOTENCY_KEY_MAX_LENGTH:
        raise ValidationError(
            f"idempotency_key must be between {IDEMPOTENCY_KEY_MIN_LENGTH} and "
            f"{IDEMPOTENCY_KEY_MAX_LENGTH} characters"
        )
    return value


def _render_entry(entry: dict[str, Any]) -> dict[str, Any]:
    out = dict(entry)
    out["created_at_iso"] = ms_to_iso(out.get("created_at"))
    return out


class WerewolfEngine:
    """Synchronous engine facade; every mutation runs inside one store transaction."""

    def __init__(
        self,
        *,
        store: WerewolfStore,
        config: EngineConfig,
        clock: Optional[Clock] = None,
        match_id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.store = store
        self.config = config.validate()
        self._clock = clock or _system_clock
        self._match_id_factory = match_id_factory or (lambda: _uuid("match"))

    def _now(self, now: Optional[int] = None) -> int:
        return int(now) if now is not None else int(self._clock())

    # Queue

    def _queue_status(self, player_id: str) -> dict[str, Any]:
        seat = self.store.get_player_active_seat(player_id=player_id)
        queue = self.store.list_queue()
        status: dict[str, Any] = {
            "player_id": player_id,
            "state": "idle",
            "position": None,
            "queue_size": len(queue),
            "required_players": int(self.config.seat_count),
            "match_id": None,
            "seat": None,
        }
        if seat is not None:
            status.update({"state": "seated", "match_id": seat["match_id"], "seat": seat["seat"]})
            return status
        for idx, entry in enumerate(queue):
            if entry["player_id"] == player_id:
                status.update({"state": "queued", "position": idx + 1})
                break
        return status

    def _create_match(self, player_ids: list[str], now: int) -> str:
        match_id = self._match_id_factory()
        state = create_match_state(match_id=match_id, player_ids=player_ids, now=now, config=self.config)
        self.store.create_match(
            state=state.to_dict(),
            seats=[{"player_id": p.player_id, "seat": p.seat} for p in state.players],
            now=now,
        )
        drafts = [
            events.match_created(
                players=[{"player_id": p.player_id, "seat": p.seat} for p in state.players],
                phase_ends_at=state.phase_ends_at,
                now=now,
            ),
            events.narrator(text=state.public_summary, round_number=0, phase=state.phase, now=now),
        ]
        self.store.append_events(match_id=match_id, entries=[draft.to_row() for draft in drafts])
        logger.info("[MATCH] Formed match %s with players=%s", match_id, ",".join(player_ids))
        return match_id

    def _form_matches(self, now: int) -> list[str]:
        formed: list[str] = []
        seat_count = int(self.config.seat_count)
        queue = self.store.list_queue()
        while len(queue) >= seat_count:
            chosen = [entry["player_id"] for entry in queue[:seat_count]]
            self.store.remove_queue_entries(player_ids=chosen)
            formed.append(self._create_match(chosen, now))
            queue = queue[seat_count:]
        return formed

    def queue_join(self, *, player_id: str, idempotency_key: Optional[str] = None) -> dict[str, Any]:
        pid = _require_id(player_id, label="player_id")
        now = self._now()

        def run() -> dict[str, Any]:
            if self.store.get_player_active_seat(player_id=pid) is not None:
                logger.info("[QUEUE] Player %s is already seated; join ignored", pid)
                return self._queue_status(pid)
            if self.store.get_queue_entry(player_id=pid) is None:
                self.store.add_queue_entry(player_id=pid, joined_at=now)
                logger.info("[QUEUE] Player %s joined the queue", pid)
            formed = self._form_matches(now)
            status = self._queue_status(pid)
            status["formed_match_ids"] = formed
            return status

        outcome = self._guarded(
            scope=SCOPE_QUEUE_JOIN,
            key=idempotency_key,
            player_id=pid,
            match_id=None,
            now=now,
            run=run,
        )
        return {**outcome.result, "reused": outcome.reused}

    def queue_leave(self, *, player_id: str) -> dict[str, Any]:
        pid = _require_id(player_id, label="player_id")
        with self.store.transaction():
            removed = self.store.remove_queue_entries(player_ids=[pid]) > 0
            status = self._queue_status(pid)
        if removed:
            logger.info("[QUEUE] Player %s left the queue", pid)
        status["removed"] = removed
        return status

    def queue_status(self, *, player_id: str) -> dict[str, Any]:
        return self._queue_status(_require_id(player_id, label="player_id"))

    # Reads

    def _load(self, match_id: str) -> MatchState:
        row = self.store.get_match(match_id=str(match_id))
        if not row:
            raise NotFoundError(f"Match not found: {match_id}")
        return MatchState.from_dict(row["state_json"])

    def list_matches(self, *, status: str = "active", limit: int = 50) -> list[dict[str, Any]]:
        if status not in MATCH_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(MATCH_STATUSES)}")
        items = []
        for row in self.store.list_matches(status=status, limit=limit):
            state = MatchState.from_dict(row["state_json"])
            items.append(
                {
                    "match_id": state.match_id,
                    "phase": state.phase.value,
                    "round_number": state.round_number,
                    "created_at": state.created_at,
                    "created_at_iso": ms_to_iso(state.created_at),
                    "phase_ends_at": state.phase_ends_at,
                    "ended_at": state.ended_at,
                    "winner": state.winner.value if state.winner else None,
                    "player_count": len(state.players),
                    "players_alive": len(state.alive_players()),
                    "public_summary": state.public_summary,
                }
            )
        return items

    def get_state(self, *, match_id: str, viewer_id: Optional[str] = None) -> dict[str, Any]:
        state = self._load(match_id)
        entries = [_render_entry(entry) for entry in self.store.list_events(match_id=state.match_id)]
        return build_state_view(state, entries=entries, viewer_id=viewer_id)

    def events_get(
        self,
        *,
        match_id: str,
        viewer_id: Optional[str] = None,
        since_seq: Optional[int] = None,
        limit: int = 50,
    ) -> dict[str, Any]:
        state = self._load(match_id)
        bounded = max(1, min(MAX_EVENTS_LIMIT, int(limit)))
        viewer = resolve_viewer(state, viewer_id)
        visible = filter_entries(self.store.list_events(match_id=state.match_id), viewer)
        if since_seq is not None:
            page = [entry for entry in visible if int(entry["seq"]) > int(since_seq)][:bounded]
        else:
            page = visible[-bounded:]
        next_seq = int(page[-1]["seq"]) if page else (int(since_seq) if since_seq is not None else 0)
        return {
            "match_id": state.match_id,
            "phase": state.phase.value,
            "viewer": {"kind": viewer.kind, "player_id": viewer.player_id},
            "count": len(page),
            "next_seq": next_seq,
            "events": [_render_entry(entry) for entry in page],
        }

    # Mutations

    def _guarded(
        self,
        *,
        scope: str,
        key: Optional[str],
        player_id: str,
        match_id: Optional[str],
        now: int,
        run: Callable[[], Any],
    ) -> IdempotencyOutcome:
        try:
            key = _check_idempotency_key(key)
            with self.store.transaction():
                return run_with_idempotency(
                    store=self.store,
                    scope=scope,
                    key=key,
                    player_id=player_id,
                    match_id=match_id,
                    now=now,
                    run=run,
                )
        except (ForbiddenError, PhaseExpiredError) as exc:
            logger.info("[ACTION] Rejected %s player=%s match=%s: %s", scope, player_id, match_id, exc)
            raise
        except IdempotencyConflictError:
            raise
        except WerewolfError as exc:
            logger.debug("[ACTION] Rejected %s player=%s match=%s: %s", scope, player_id, match_id, exc)
            raise
        except Exception as exc:
            logger.exception("[ACTION] Unexpected failure in %s player=%s match=%s", scope, player_id, match_id)
            raise InternalError(f"Unexpected failure while handling {scope}") from exc

    def _mutate_match(
        self,
        *,
        match_id: str,
        player_id: str,
        scope: str,
        idempotency_key: Optional[str],
        apply: ApplyFn,
    ) -> dict[str, Any]:
        mid = _require_id(match_id, label="match_id")
        pid = _require_id(player_id, label="player_id")
        now = self._now()

        def run() -> dict[str, Any]:
            working = self._load(mid).copy()
            drafts = list(apply(working, now))
            advance = advance_match_phase(working, now=now, config=self.config)
            if advance.changed:
                working = advance.state
                drafts.extend(advance.drafts)
            self.store.save_match(state=working.to_dict(), now=now)
            stored = self.store.append_events(match_id=mid, entries=[draft.to_row() for draft in drafts])
            return {
                "ok": True,
                "match_id": mid,
                "phase": working.phase.value,
                "round_number": working.round_number,
                "event_id": stored[0]["event_id"] if stored else None,
                "event_ids": [entry["event_id"] for entry in stored],
                "advanced": bool(advance.changed),
            }

        outcome = self._guarded(scope=scope, key=idempotency_key, player_id=pid, match_id=mid, now=now, run=run)
        return {**outcome.result, "reused": outcome.reused}

    def ready(
        self,
        *,
        match_id: str,
        player_id: str,
        idempotency_key: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> dict[str, Any]:
        return self._mutate_match(
            match_id=match_id,
            player_id=player_id,
            scope=SCOPE_READY,
            idempotency_key=idempotency_key,
            apply=lambda state, now: mark_ready(
                state, player_id=player_id, now=now, round_number=round_number
            ),
        )

    def say_public(
        self,
        *,
        match_id: str,
        player_id: str,
        text: str,
        idempotency_key: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> dict[str, Any]:
        return self._mutate_match(
            match_id=match_id,
            player_id=player_id,
            scope=SCOPE_PUBLIC_MESSAGE,
            idempotency_key=idempotency_key,
            apply=lambda state, now: apply_public_message(
                state,
                player_id=player_id,
                text=text,
                now=now,
                config=self.config,
                round_number=round_number,
            ),
        )

    def vote(
        self,
        *,
        match_id: str,
        player_id: str,
        target_id: Optional[str],
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> dict[str, Any]:
        return self._mutate_match(
            match_id=match_id,
            player_id=player_id,
            scope=SCOPE_VOTE,
            idempotency_key=idempotency_key,
            apply=lambda state, now: apply_vote(
                state,
                player_id=player_id,
                target_id=target_id,
                reason=reason,
                now=now,
                round_number=round_number,
            ),
        )

    def wolf_chat(
        self,
        *,
        match_id: str,
        player_id: str,
        text: str,
        idempotency_key: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> dict[str, Any]:
        return self._mutate_match(
            match_id=match_id,
            player_id=player_id,
            scope=SCOPE_WOLF_CHAT,
            idempotency_key=idempotency_key,
            apply=lambda state, now: apply_wolf_chat(
                state,
                player_id=player_id,
                text=text,
                now=now,
                config=self.config,
                round_number=round_number,
            ),
        )

    def _night_action(
        self,
        *,
        match_id: str,
        player_id: str,
        target_id: str,
        action_type: ActionType,
        scope: str,
        idempotency_key: Optional[str],
        round_number: Optional[int],
    ) -> dict[str, Any]:
        return self._mutate_match(
            match_id=match_id,
            player_id=player_id,
            scope=scope,
            idempotency_key=idempotency_key,
            apply=lambda state, now: submit_night_action(
                state,
                player_id=player_id,
                action_type=action_type,
                target_id=target_id,
                now=now,
                round_number=round_number,
            ),
        )

    def wolf_kill(
        self,
        *,
        match_id: str,
        player_id: str,
        target_id: str,
        idempotency_key: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> dict[str, Any]:
        return self._night_action(
            match_id=match_id,
            player_id=player_id,
            target_id=target_id,
            action_type=ActionType.KILL,
            scope=SCOPE_WOLF_KILL,
            idempotency_key=idempotency_key,
            round_number=round_number,
        )

    def seer_inspect(
        self,
        *,
        match_id: str,
        player_id: str,
        target_id: str,
        idempotency_key: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> dict[str, Any]:
        return self._night_action(
            match_id=match_id,
            player_id=player_id,
            target_id=target_id,
            action_type=ActionType.INSPECT,
            scope=SCOPE_SEER_INSPECT,
            idempotency_key=idempotency_key,
            round_number=round_number,
        )

    def doctor_protect(
        self,
        *,
        match_id: str,
        player_id: str,
        target_id: str,
        idempotency_key: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> dict[str, Any]:
        return self._night_action(
            match_id=match_id,
            player_id=player_id,
            target_id=target_id,
            action_type=ActionType.PROTECT,
            scope=SCOPE_DOCTOR_PROTECT,
            idempotency_key=idempotency_key,
            round_number=round_number,
        )

    # Phase advancement

    def advance(self, *, match_id: str, now: Optional[int] = None) -> dict[str, Any]:
        mid = _require_id(match_id, label="match_id")
        at = self._now(now)
        try:
            with self.store.transaction():
                state = self._load(mid)
                at = max(at, int(state.phase_started_at))
                advance = advance_match_phase(state, now=at, config=self.config)
                stored: list[dict[str, Any]] = []
                if advance.changed:
                    self.store.save_match(state=advance.state.to_dict(), now=at)
                    stored = self.store.append_events(
                        match_id=mid,
                        entries=[draft.to_row() for draft in advance.drafts],
                    )
        except WerewolfError:
            raise
        except Exception as exc:
            logger.exception("[PHASE] Unexpected failure advancing match %s", mid)
            raise InternalError(f"Unexpected failure while advancing match {mid}") from exc
        result = advance.state
        return {
            "match_id": mid,
            "changed": bool(advance.changed),
            "from_phase": advance.from_phase.value,
            "to_phase": advance.to_phase.value,
            "phase": result.phase.value,
            "round_number": result.round_number,
            "phase_ends_at": result.phase_ends_at,
            "winner": result.winner.value if result.winner else None,
            "eliminated_ids": list(advance.eliminated_ids),
            "event_ids": [entry["event_id"] for entry in stored],
        }

    def advance_all(self, *, now: Optional[int] = None) -> dict[str, Any]:
        at = self._now(now)
        due = self.store.list_due_match_ids(now=at)
        advanced: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for match_id in due:
            try:
                result = self.advance(match_id=match_id, now=at)
            except WerewolfError as exc:
                logger.warning("[PHASE] Advance failed for match %s: %s", match_id, exc)
                failed.append({"match_id": match_id, "error": exc.as_dict()})
                continue
            if result["changed"]:
                advanced.append(result)
        return {"checked": len(due), "advanced": advanced, "failed": failed, "now": at}


@lru_cache(maxsize=1)
def get_engine() -> WerewolfEngine:
    return WerewolfEngine(store=get_store(), config=config_from_env())


def reset_engine_cache_for_tests() -> None:
    get_engine.cache_clear()
