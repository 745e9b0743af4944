# proofmeet/schemas/activity.py
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActivityKind(str, Enum):
    """
    Canonical kinds of signal observed during an attendance session.
    """

    ACTIVE = "ACTIVE"
    IDLE = "IDLE"
    LEAVE = "LEAVE"
    REJOIN = "REJOIN"
    VIDEO_ON = "VIDEO_ON"
    VIDEO_OFF = "VIDEO_OFF"
    REACTION = "REACTION"


# Metadata keys the in-meeting monitor has used over time for the same signal.
FOCUS_KEYS = ("tab_focused", "tabFocused")
AUDIO_KEYS = ("audio_active", "audioActive")
VIDEO_KEYS = ("video_active", "videoActive")


def _metadata_flag(metadata: dict[str, Any], keys: tuple[str, ...]) -> bool:
    return any(metadata.get(key) is True for key in keys)


class ActivityEvent(BaseModel):
    """
    One observed signal on the canonical timeline. Immutable once recorded.

    `source` is optional: heartbeats from the in-meeting monitor usually carry
    `FRONTEND_MONITOR`, but older clients omit it and the event still counts.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="UTC time at which the signal was observed.")
    kind: ActivityKind = Field(..., description="Canonical kind of the signal.")
    source: str | None = Field(
        default=None,
        description="Provenance tag, e.g. FRONTEND_MONITOR. May be absent.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_focus_signal(self) -> bool:
        return _metadata_flag(self.metadata, FOCUS_KEYS)

    @property
    def is_audio_signal(self) -> bool:
        return _metadata_flag(self.metadata, AUDIO_KEYS)

    @property
    def is_video_signal(self) -> bool:
        return self.kind is ActivityKind.VIDEO_ON or _metadata_flag(self.metadata, VIDEO_KEYS)


class ActivityEventIn(BaseModel):
    """
    Payload accepted by POST /sessions/{id}/events.

    `kind` is kept as a free string so that unknown kinds are stored as
    received and dropped later by the normalizer instead of being rejected.
    """

    kind: str = Field(..., examples=["ACTIVE"])
    timestamp: datetime | None = Field(
        default=None,
        description="Client observation time. Defaults to the server receive time.",
    )
    source: str | None = Field(default=None, examples=["FRONTEND_MONITOR"])
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        examples=[{"tabFocused": True, "videoActive": True}],
    )


class NormalizedTimeline(BaseModel):
    """
    Output of the event log normalizer: ordered, de-duplicated events plus
    diagnostic counters for what was discarded.
    """

    events: list[ActivityEvent] = Field(default_factory=list)
    dropped_unrecognized: int = Field(0, description="Events with an unknown kind.")
    dropped_invalid_timestamp: int = Field(0, description="Events without a usable timestamp.")
    duplicates_removed: int = Field(0)
