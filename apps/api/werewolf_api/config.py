"""Environment-driven settings for the API process."""

from __future__ import annotations

import logging
import os
from typing import Optional

from packages.werewolf_core.engine.config import DEFAULT_PHASE_DURATIONS_MS, EngineConfig


logger = logging.getLogger("werewolf_api.config")


def _truthy_env(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = str(os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[CONFIG] Ignoring non-integer %s=%r", name, raw)
        return default


def _float_env(name: str, default: float) -> float:
    raw = str(os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[CONFIG] Ignoring non-numeric %s=%r", name, raw)
        return default


def config_from_env() -> EngineConfig:
    """Build and validate the engine config from WEREWOLF_* variables."""
    defaults = EngineConfig()
    durations = {
        phase: int(_int_env(f"WEREWOLF_PHASE_MS_{phase}", default) or 0)
        for phase, default in DEFAULT_PHASE_DURATIONS_MS.items()
    }
    config = EngineConfig(
        seat_count=int(_int_env("WEREWOLF_SEAT_COUNT", defaults.seat_count) or defaults.seat_count),
        phase_durations_ms=durations,
        processing_buffer_ms=int(_int_env("WEREWOLF_BUFFER_MS", defaults.processing_buffer_ms) or 0),
        ready_timeout_policy=str(
            os.environ.get("WEREWOLF_READY_TIMEOUT_POLICY") or defaults.ready_timeout_policy
        ).strip().lower(),
        public_message_cooldown_ms=int(
            _int_env("WEREWOLF_PUBLIC_MESSAGE_COOLDOWN_MS", defaults.public_message_cooldown_ms) or 0
        ),
        wolf_chat_cooldown_ms=int(_int_env("WEREWOLF_WOLF_CHAT_COOLDOWN_MS", defaults.wolf_chat_cooldown_ms) or 0),
        max_rounds=_int_env("WEREWOLF_MAX_ROUNDS", None),
        poll_interval_seconds=_float_env("WEREWOLF_POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds),
        log_level=str(os.environ.get("WEREWOLF_LOG_LEVEL") or defaults.log_level).strip().upper(),
    )
    return config.validate()


def autostart_poller() -> bool:
    return _truthy_env("WEREWOLF_AUTOSTART_POLLER", default=False)


def cors_origins() -> list[str]:
    return [o.strip() for o in os.environ.get("WEREWOLF_CORS_ORIGINS", "*").split(",") if o.strip()]
