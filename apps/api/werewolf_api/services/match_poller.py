"""Background poller that advances expired match phases."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from packages.werewolf_core.engine.visibility import ms_to_iso

from .werewolf_engine import WerewolfEngine, get_engine


logger = logging.getLogger("werewolf_api.match_poller")

MIN_INTERVAL_SECONDS = 0.05


@dataclass
class PollerStats:
    polls: int = 0
    last_polled_at: Optional[int] = None
    last_checked: int = 0
    last_advanced: int = 0
    last_failed: int = 0
    last_error: Optional[str] = None


class MatchPhasePoller:
    """Calls `advance_all` every interval on one daemon thread."""

    def __init__(
        self,
        *,
        engine_factory: Callable[[], WerewolfEngine] = get_engine,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self._engine_factory = engine_factory
        self._interval_seconds = interval_seconds
        self._lock = threading.Lock()
        self._worker: Optional[tuple[threading.Thread, threading.Event]] = None
        self.stats = PollerStats()

    def poll_once(self) -> int:
        result = self._engine_factory().advance_all()
        advanced = len(result["advanced"])
        self.stats.polls += 1
        self.stats.last_polled_at = int(result["now"])
        self.stats.last_checked = int(result["checked"])
        self.stats.last_advanced = advanced
        self.stats.last_failed = len(result["failed"])
        if advanced:
            logger.info("[POLLER] Advanced %d of %d due matches", advanced, result["checked"])
        return advanced

    def _interval(self) -> float:
        seconds = self._interval_seconds
        if seconds is None:
            seconds = self._engine_factory().config.poll_interval_seconds
        return max(MIN_INTERVAL_SECONDS, float(seconds))

    def _loop(self, stop: threading.Event) -> None:
        while True:
            try:
                self.poll_once()
                self.stats.last_error = None
            except Exception as exc:
                self.stats.last_error = f"{exc.__class__.__name__}: {exc}"
                logger.exception("[POLLER] Poll failed")
            if stop.wait(self._interval()):
                return

    def start(self) -> bool:
        with self._lock:
            if self._worker is not None and self._worker[0].is_alive():
                return False
            stop = threading.Event()
            thread = threading.Thread(target=self._loop, args=(stop,), name="werewolf-match-poller", daemon=True)
            self._worker = (thread, stop)
            thread.start()
        logger.info("[POLLER] Started with interval %.2fs", self._interval())
        return True

    def stop(self, *, timeout_seconds: float = 3.0) -> bool:
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is None:
            return False
        thread, stop = worker
        stop.set()
        thread.join(timeout=timeout_seconds)
        logger.info("[POLLER] Stopped after %d polls", self.stats.polls)
        return True

    def status(self) -> dict[str, object]:
        with self._lock:
            running = self._worker is not None and self._worker[0].is_alive()
        out: dict[str, object] = {"running": running, **asdict(self.stats)}
        out["last_polled_at_iso"] = ms_to_iso(self.stats.last_polled_at)
        return out


_POLLER = MatchPhasePoller()


def start_match_poller() -> bool:
    return _POLLER.start()


def stop_match_poller() -> bool:
    return _POLLER.stop()


def match_poller_status() -> dict[str, object]:
    return _POLLER.status()
