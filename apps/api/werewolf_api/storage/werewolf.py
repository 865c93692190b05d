"""Storage for werewolf matches, transcripts, the waiting queue and idempotency records."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterator, Optional
import json
import logging
import os
import sqlite3
import threading

from packages.werewolf_core.engine.idempotency import IdempotencyRecord, IdempotencyStore


WORKSPACE_ROOT = Path(__file__).resolve().parents[4]
logger = logging.getLogger("werewolf_api.storage")

MATCH_STATUSES = ("active", "ended", "all")


def _json_dumps(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=True)
    except Exception:
        return "{}"


def _json_loads(raw: Any, default: Any) -> Any:
    if isinstance(raw, (dict, list)):
        return raw
    text = str(raw or "").strip()
    if not text:
        return default
    try:
        return json.loads(text)
    except Exception:
        return default


class WerewolfStore(IdempotencyStore, ABC):
    @abstractmethod
    def init_db(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def ping(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def create_match(self, *, state: dict[str, Any], seats: list[dict[str, Any]], now: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_match(self, *, match_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def save_match(self, *, state: dict[str, Any], now: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_matches(self, *, status: str = "active", limit: int = 50) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_due_match_ids(self, *, now: int) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def get_player_active_seat(self, *, player_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def append_events(self, *, match_id: str, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_events(self, *, match_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def get_queue_entry(self, *, player_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def add_queue_entry(self, *, player_id: str, joined_at: int) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def remove_queue_entries(self, *, player_ids: list[str]) -> int:
        raise NotImplementedError

    @abstractmethod
    def list_queue(self) -> list[dict[str, Any]]:
        raise NotImplementedError


class SQLiteWerewolfStore(WerewolfStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._initialized = False
        self._init_lock = threading.Lock()
        self._local = threading.local()

    def _connect(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; writes are grouped by transaction() below.
        conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        self._local.conn = conn
        self._local.depth = 0
        return conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Reentrant write transaction; the outermost level holds the write lock."""
        self.init_db()
        conn = self._connect()
        depth = int(getattr(self._local, "depth", 0))
        if depth == 0:
            conn.execute("BEGIN IMMEDIATE")
        self._local.depth = depth + 1
        try:
            yield
        except BaseException:
            self._local.depth = depth
            if depth == 0:
                conn.execute("ROLLBACK")
            raise
        self._local.depth = depth
        if depth == 0:
            conn.execute("COMMIT")

    @staticmethod
    def _match_row(row: dict[str, Any]) -> dict[str, Any]:
        out = dict(row)
        for key in ("round_number", "created_at", "updated_at", "phase_ends_at"):
            out[key] = int(out.get(key) or 0)
        if out.get("ended_at") is not None:
            out["ended_at"] = int(out["ended_at"])
        out["state_json"] = _json_loads(out.get("state_json"), {})
        return out

    @staticmethod
    def _event_row(row: dict[str, Any]) -> dict[str, Any]:
        out = dict(row)
        out["seq"] = int(out.get("seq") or 0)
        out["event_id"] = str(out["seq"])
        out["round_number"] = int(out.get("round_number") or 0)
        out["created_at"] = int(out.get("created_at") or 0)
        out["payload"] = _json_loads(out.pop("payload_json", None), {})
        return out

    def init_db(self) -> None:
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return
            conn = self._connect()
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS werewolf_matches (
                  match_id TEXT PRIMARY KEY,
                  phase TEXT NOT NULL,
                  round_number INTEGER NOT NULL DEFAULT 0,
                  winner TEXT,
                  created_at INTEGER NOT NULL,
                  updated_at INTEGER NOT NULL,
                  phase_ends_at INTEGER NOT NULL,
                  ended_at INTEGER,
                  state_json TEXT NOT NULL DEFAULT '{}'
                );
                CREATE INDEX IF NOT EXISTS idx_werewolf_matches_phase
                  ON werewolf_matches(phase, created_at);
                CREATE INDEX IF NOT EXISTS idx_werewolf_matches_deadline
                  ON werewolf_matches(phase_ends_at);

                CREATE TABLE IF NOT EXISTS werewolf_match_seats (
                  match_id TEXT NOT NULL REFERENCES werewolf_matches(match_id) ON DELETE CASCADE,
                  player_id TEXT NOT NULL,
                  seat INTEGER NOT NULL,
                  PRIMARY KEY (match_id, player_id)
                );
                CREATE INDEX IF NOT EXISTS idx_werewolf_match_seats_player
                  ON werewolf_match_seats(player_id);

                CREATE TABLE IF NOT EXISTS werewolf_match_events (
                  match_id TEXT NOT NULL REFERENCES werewolf_matches(match_id) ON DELETE CASCADE,
                  seq INTEGER NOT NULL,
                  kind TEXT NOT NULL,
                  event_type TEXT NOT NULL,
                  visibility TEXT NOT NULL,
                  audience_id TEXT,
                  actor_id TEXT,
                  payload_json TEXT NOT NULL DEFAULT '{}',
                  round_number INTEGER NOT NULL DEFAULT 0,
                  phase TEXT NOT NULL,
                  created_at INTEGER NOT NULL,
                  PRIMARY KEY (match_id, seq)
                );

                CREATE TABLE IF NOT EXISTS werewolf_queue_entries (
                  player_id TEXT PRIMARY KEY,
                  joined_at INTEGER NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_werewolf_queue_joined
                  ON werewolf_queue_entries(joined_at);

                CREATE TABLE IF NOT EXISTS werewolf_idempotency (
                  scope TEXT NOT NULL,
                  key TEXT NOT NULL,
                  player_id TEXT NOT NULL,
                  match_id TEXT,
                  result_json TEXT NOT NULL DEFAULT 'null',
                  created_at INTEGER NOT NULL,
                  PRIMARY KEY (scope, key)
                );
                """
            )
            self._initialized = True
            logger.info("[STORAGE] Werewolf tables ready at %s", self.db_path)

    def ping(self) -> None:
        self._connect().execute("SELECT 1").fetchone()

    def create_match(self, *, state: dict[str, Any], seats: list[dict[str, Any]], now: int) -> None:
        self.init_db()
        with self.transaction():
            conn = self._connect()
            conn.execute(
                """
                INSERT INTO werewolf_matches (
                  match_id, phase, round_number, winner, created_at, updated_at,
                  phase_ends_at, ended_at, state_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(state["match_id"]),
                    str(state["phase"]),
                    int(state.get("round_number") or 0),
                    state.get("winner"),
                    int(state.get("created_at") or now),
                    int(now),
                    int(state.get("phase_ends_at") or now),
                    state.get("ended_at"),
                    _json_dumps(state),
                ),
            )
            conn.executemany(
                "INSERT INTO werewolf_match_seats (match_id, player_id, seat) VALUES (?, ?, ?)",
                [(str(state["match_id"]), str(seat["player_id"]), int(seat["seat"])) for seat in seats],
            )

    def get_match(self, *, match_id: str) -> dict[str, Any] | None:
        self.init_db()
        row = self._connect().execute(
            "SELECT * FROM werewolf_matches WHERE match_id = ?",
            (str(match_id),),
        ).fetchone()
        return self._match_row(dict(row)) if row else None

    def save_match(self, *, state: dict[str, Any], now: int) -> None:
        self.init_db()
        self._connect().execute(
            """
            UPDATE werewolf_matches
            SET phase = ?, round_number = ?, winner = ?, updated_at = ?,
                phase_ends_at = ?, ended_at = ?, state_json = ?
            WHERE match_id = ?
            """,
            (
                str(state["phase"]),
                int(state.get("round_number") or 0),
                state.get("winner"),
                int(now),
                int(state.get("phase_ends_at") or 0),
                state.get("ended_at"),
                _json_dumps(state),
                str(state["match_id"]),
            ),
        )

    def list_matches(self, *, status: str = "active", limit: int = 50) -> list[dict[str, Any]]:
        self.init_db()
        bounded = max(1, min(500, int(limit)))
        where = ""
        if status == "active":
            where = "WHERE phase != 'ENDED'"
        elif status == "ended":
            where = "WHERE phase = 'ENDED'"
        rows = self._connect().execute(
            f"""
            SELECT * FROM werewolf_matches
            {where}
            ORDER BY created_at DESC, match_id ASC
            LIMIT ?
            """,
            (bounded,),
        ).fetchall()
        return [self._match_row(dict(row)) for row in rows]

    def list_due_match_ids(self, *, now: int) -> list[str]:
        """Every unfinished match whose deadline is at or before `now`, earliest deadline first."""
        self.init_db()
        rows = self._connect().execute(
            """
            SELECT match_id FROM werewolf_matches
            WHERE phase != 'ENDED' AND phase_ends_at <= ?
            ORDER BY phase_ends_at ASC, match_id ASC
            """,
            (int(now),),
        ).fetchall()
        return [str(row["match_id"]) for row in rows]

    def get_player_active_seat(self, *, player_id: str) -> dict[str, Any] | None:
        self.init_db()
        row = self._connect().execute(
            """
            SELECT s.match_id, s.player_id, s.seat, m.phase
            FROM werewolf_match_seats s
            JOIN werewolf_matches m ON m.match_id = s.match_id
            WHERE s.player_id = ? AND m.phase != 'ENDED'
            ORDER BY m.created_at DESC
            LIMIT 1
            """,
            (str(player_id),),
        ).fetchone()
        if not row:
            return None
        out = dict(row)
        out["seat"] = int(out.get("seat") or 0)
        return out

    def append_events(self, *, match_id: str, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not entries:
            return []
        self.init_db()
        out: list[dict[str, Any]] = []
        with self.transaction():
            conn = self._connect()
            row = conn.execute(
                "SELECT COALESCE(MAX(seq), 0) AS seq FROM werewolf_match_events WHERE match_id = ?",
                (str(match_id),),
            ).fetchone()
            seq = int(row["seq"] if row else 0)
            for entry in entries:
                seq += 1
                conn.execute(
                    """
                    INSERT INTO werewolf_match_events (
                      match_id, seq, kind, event_type, visibility, audience_id, actor_id,
                      payload_json, round_number, phase, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(match_id),
                        seq,
                        str(entry["kind"]),
                        str(entry["event_type"]),
                        str(entry["visibility"]),
                        entry.get("audience_id"),
                        entry.get("actor_id"),
                        _json_dumps(entry.get("payload") or {}),
                        int(entry.get("round_number") or 0),
                        str(entry["phase"]),
                        int(entry["created_at"]),
                    ),
                )
                stored = dict(entry)
                stored["match_id"] = str(match_id)
                stored["seq"] = seq
                stored["event_id"] = str(seq)
                out.append(stored)
        return out

    def list_events(self, *, match_id: str) -> list[dict[str, Any]]:
        self.init_db()
        rows = self._connect().execute(
            "SELECT * FROM werewolf_match_events WHERE match_id = ? ORDER BY seq ASC",
            (str(match_id),),
        ).fetchall()
        return [self._event_row(dict(row)) for row in rows]

    def get_queue_entry(self, *, player_id: str) -> dict[str, Any] | None:
        self.init_db()
        row = self._connect().execute(
            "SELECT player_id, joined_at FROM werewolf_queue_entries WHERE player_id = ?",
            (str(player_id),),
        ).fetchone()
        if not row:
            return None
        return {"player_id": str(row["player_id"]), "joined_at": int(row["joined_at"])}

    def add_queue_entry(self, *, player_id: str, joined_at: int) -> dict[str, Any]:
        self.init_db()
        self._connect().execute(
            "INSERT OR IGNORE INTO werewolf_queue_entries (player_id, joined_at) VALUES (?, ?)",
            (str(player_id), int(joined_at)),
        )
        entry = self.get_queue_entry(player_id=player_id)
        return entry or {"player_id": str(player_id), "joined_at": int(joined_at)}

    def remove_queue_entries(self, *, player_ids: list[str]) -> int:
        if not player_ids:
            return 0
        self.init_db()
        placeholders = ",".join("?" for _ in player_ids)
        cur = self._connect().execute(
            f"DELETE FROM werewolf_queue_entries WHERE player_id IN ({placeholders})",
            [str(pid) for pid in player_ids],
        )
        return int(cur.rowcount or 0)

    def list_queue(self) -> list[dict[str, Any]]:
        self.init_db()
        rows = self._connect().execute(
            "SELECT player_id, joined_at FROM werewolf_queue_entries ORDER BY joined_at ASC, rowid ASC"
        ).fetchall()
        return [{"player_id": str(row["player_id"]), "joined_at": int(row["joined_at"])} for row in rows]

    def get_idempotency(self, *, scope: str, key: str) -> Optional[IdempotencyRecord]:
        self.init_db()
        row = self._connect().execute(
            "SELECT * FROM werewolf_idempotency WHERE scope = ? AND key = ?",
            (str(scope), str(key)),
        ).fetchone()
        if not row:
            return None
        return IdempotencyRecord(
            scope=str(row["scope"]),
            key=str(row["key"]),
            player_id=str(row["player_id"]),
            match_id=row["match_id"],
            result=_json_loads(row["result_json"], None),
            created_at=int(row["created_at"]),
        )

    def put_idempotency(self, record: IdempotencyRecord) -> None:
        self.init_db()
        self._connect().execute(
            """
            INSERT INTO werewolf_idempotency (scope, key, player_id, match_id, result_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.scope,
                record.key,
                record.player_id,
                record.match_id,
                _json_dumps(record.result),
                int(record.created_at),
            ),
        )


def _sqlite_path() -> Path:
    configured = str(os.environ.get("WEREWOLF_DB_PATH") or "").strip()
    if configured:
        return Path(configured)
    return WORKSPACE_ROOT / "data" / "werewolf.db"


@lru_cache(maxsize=1)
def _backend() -> WerewolfStore:
    return SQLiteWerewolfStore(_sqlite_path())


def reset_backend_cache_for_tests() -> None:
    _backend.cache_clear()


def get_store() -> WerewolfStore:
    return _backend()


def init_db() -> None:
    _backend().init_db()


def ping() -> None:
    _backend().ping()
