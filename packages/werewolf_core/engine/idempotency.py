"""Exactly-once wrapper for externally retried mutations."""

from __future__ import annotations

import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from .errors import IdempotencyConflictError, ValidationError


logger = logging.getLogger("werewolf_core.engine.idempotency")

SCOPE_QUEUE_JOIN = "queue.join"
SCOPE_READY = "match.ready"
SCOPE_PUBLIC_MESSAGE = "match.public_message"
SCOPE_VOTE = "match.vote"
SCOPE_WOLF_CHAT = "match.night.wolf_chat"
SCOPE_WOLF_KILL = "match.night.wolf_kill"
SCOPE_SEER_INSPECT = "match.night.seer_inspect"
SCOPE_DOCTOR_PROTECT = "match.night.doctor_protect"

IDEMPOTENCY_SCOPES = (
    SCOPE_QUEUE_JOIN,
    SCOPE_READY,
    SCOPE_PUBLIC_MESSAGE,
    SCOPE_VOTE,
    SCOPE_WOLF_CHAT,
    SCOPE_WOLF_KILL,
    SCOPE_SEER_INSPECT,
    SCOPE_DOCTOR_PROTECT,
)

@dataclass(frozen=True)
class IdempotencyRecord:
    scope: str
    key: str
    player_id: str
    match_id: Optional[str]
    result: Any
    created_at: int


@dataclass(frozen=True)
class IdempotencyOutcome:
    result: Any
    reused: bool


class IdempotencyStore(ABC):
    @abstractmethod
    def get_idempotency(self, *, scope: str, key: str) -> Optional[IdempotencyRecord]:
        raise NotImplementedError

    @abstractmethod
    def put_idempotency(self, record: IdempotencyRecord) -> None:
        raise NotImplementedError

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        yield


class MemoryIdempotencyStore(IdempotencyStore):
    """Dict-backed store for callers without a database."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], IdempotencyRecord] = {}

    def get_idempotency(self, *, scope: str, key: str) -> Optional[IdempotencyRecord]:
        return self.records.get((scope, key))

    def put_idempotency(self, record: IdempotencyRecord) -> None:
        self.records[(record.scope, record.key)] = record


def normalize_idempotency_key(key: Optional[str]) -> Optional[str]:
    if key is None:
        return None
    value = str(key).strip()
    return value or None


def assert_record_matches(record: IdempotencyRecord, *, player_id: str, match_id: Optional[str]) -> None:
    if record.player_id != player_id:
        raise IdempotencyConflictError("Idempotency key already used by another player.")
    if (record.match_id or None) != (match_id or None):
        raise IdempotencyConflictError("Idempotency key already used for another match.")


def run_with_idempotency(
    *,
    store: IdempotencyStore,
    scope: str,
    key: Optional[str],
    player_id: str,
    match_id: Optional[str],
    now: int,
    run: Callable[[], Any],
) -> IdempotencyOutcome:
    """Apply `run` at most once per (scope, key).

    The lookup, the effect and the record insert share one store transaction,
    so a concurrent duplicate either waits and then sees the record or rolls
    back with the effect. Without a key the call is never deduplicated.
    """
    if scope not in IDEMPOTENCY_SCOPES:
        raise ValidationError(f"Unknown idempotency scope: {scope}")
    normalized = normalize_idempotency_key(key)
    if normalized is None:
        return IdempotencyOutcome(result=run(), reused=False)

    with store.transaction():
        existing = store.get_idempotency(scope=scope, key=normalized)
        if existing is not None:
            try:
                assert_record_matches(existing, player_id=player_id, match_id=match_id)
            except IdempotencyConflictError as exc:
                logger.error(
                    "[IDEMPOTENCY] Conflict scope=%s key=%s player=%s match=%s: %s",
                    scope,
                    normalized,
                    player_id,
                    match_id,
                    exc,
                )
                raise
            logger.debug("[IDEMPOTENCY] Reused scope=%s key=%s player=%s", scope, normalized, player_id)
            return IdempotencyOutcome(result=existing.result, reused=True)

        result = run()
        store.put_idempotency(
            IdempotencyRecord(
                scope=scope,
                key=normalized,
                player_id=player_id,
                match_id=match_id,
                result=result,
                created_at=int(now),
            )
        )
        return IdempotencyOutcome(result=result, reused=False)
