"""Explicit, injectable tunables for the match engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .errors import ValidationError
from .types import Phase


READY_TIMEOUT_AUTO_READY = "auto_ready"
READY_TIMEOUT_FORFEIT = "forfeit"
READY_TIMEOUT_POLICIES = (READY_TIMEOUT_AUTO_READY, READY_TIMEOUT_FORFEIT)
MIN_SEAT_COUNT = 4
MAX_SEAT_COUNT = 16

DEFAULT_PHASE_DURATIONS_MS: dict[str, int] = {
    Phase.READY_CHECK.value: 30_000,
    Phase.NIGHT.value: 60_000,
    Phase.DAY_DISCUSSION.value: 45_000,
    Phase.VOTING.value: 20_000,
    Phase.RESOLUTION.value: 10_000,
}


@dataclass(frozen=True)
class EngineConfig:
    """Engine settings; phase deadlines are `now + duration + processing buffer`."""

    seat_count: int = 8
    phase_durations_ms: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_PHASE_DURATIONS_MS))
    processing_buffer_ms: int = 2_000
    ready_timeout_policy: str = READY_TIMEOUT_AUTO_READY
    public_message_cooldown_ms: int = 3_000
    wolf_chat_cooldown_ms: int = 2_000
    max_rounds: Optional[int] = None
    poll_interval_seconds: float = 1.0
    log_level: str = "INFO"

    def phase_duration_ms(self, phase: Phase) -> int:
        if phase == Phase.ENDED:
            return 0
        raw = self.phase_durations_ms.get(phase.value)
        if raw is None:
            raw = DEFAULT_PHASE_DURATIONS_MS.get(phase.value, 0)
        return max(0, int(raw))

    def deadline_for(self, phase: Phase, now: int) -> int:
        if phase == Phase.ENDED:
            return int(now)
        return int(now) + self.phase_duration_ms(phase) + max(0, int(self.processing_buffer_ms))

    def validate(self) -> "EngineConfig":
        if not MIN_SEAT_COUNT <= int(self.seat_count) <= MAX_SEAT_COUNT:
            raise ValidationError(f"seat_count must be between {MIN_SEAT_COUNT} and {MAX_SEAT_COUNT}")
        if self.ready_timeout_policy not in READY_TIMEOUT_POLICIES:
            raise ValidationError(f"ready_timeout_policy must be one of {', '.join(READY_TIMEOUT_POLICIES)}")
        for key, value in self.phase_durations_ms.items():
            if key not in DEFAULT_PHASE_DURATIONS_MS:
                raise ValidationError(f"Unknown phase duration key: {key}")
            if int(value) < 0:
                raise ValidationError(f"Phase duration for {key} must be >= 0")
        if int(self.processing_buffer_ms) < 0:
            raise ValidationError("processing_buffer_ms must be >= 0")
        if self.max_rounds is not None and int(self.max_rounds) < 1:
            raise ValidationError("max_rounds must be >= 1 when set")
        if float(self.poll_interval_seconds) <= 0:
            raise ValidationError("poll_interval_seconds must be > 0")
        return self

    def as_dict(self) -> dict[str, Any]:
        return {
            "seat_count": int(self.seat_count),
            "phase_durations_ms": {
                phase.value: self.phase_duration_ms(phase)
                for phase in (Phase.READY_CHECK, Phase.NIGHT, Phase.DAY_DISCUSSION, Phase.VOTING, Phase.RESOLUTION)
            },
            "processing_buffer_ms": int(self.processing_buffer_ms),
            "ready_timeout_policy": self.ready_timeout_policy,
            "max_rounds": self.max_rounds,
        }
