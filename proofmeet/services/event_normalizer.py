# proofmeet/services/event_normalizer.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from proofmeet.schemas.activity import ActivityEvent, ActivityKind, NormalizedTimeline
from proofmeet.utils.timestamps import coerce_timestamp

logger = logging.getLogger(__name__)


# Fine-grained kinds emitted by older monitor builds, folded into canonical ones.
KIND_ALIASES: Dict[str, ActivityKind] = {
    "MOUSE_MOVE": ActivityKind.ACTIVE,
    "MOUSE_MOVEMENT": ActivityKind.ACTIVE,
    "KEYBOARD": ActivityKind.ACTIVE,
    "KEYBOARD_ACTIVITY": ActivityKind.ACTIVE,
    "CLICK": ActivityKind.ACTIVE,
    "SCROLL": ActivityKind.ACTIVE,
    "ZOOM_REACTION": ActivityKind.REACTION,
}


class EventLogNormalizer:
    """
    Turns a heterogeneous activity log into the canonical ordered timeline.

    Rules
    -----
    - The log may be a plain list of events or an ``{"events": [...]}`` wrapper.
    - ``type`` is accepted for ``kind`` and ``data`` for ``metadata``.
    - Events missing a ``source`` tag are kept: under-counting activity hurts
      the participant more than over-counting.
    - Events with an unknown kind are dropped and counted, never raised.
    - Events whose timestamp cannot be parsed are dropped and counted.
    - Exact duplicates (same timestamp, kind, source, metadata) collapse to one.
    - Ordering is by timestamp; ties keep insertion order.
    """

    @staticmethod
    def normalize(raw_log: Any) -> NormalizedTimeline:
        raw_events = EventLogNormalizer._unwrap(raw_log)

        events: List[ActivityEvent] = []
        seen: set[tuple] = set()
        dropped_unrecognized = 0
        dropped_invalid_timestamp = 0
        duplicates = 0

        for raw in raw_events:
            if isinstance(raw, ActivityEvent):
                event: Optional[ActivityEvent] = raw
            else:
                if not isinstance(raw, Mapping):
                    dropped_unrecognized += 1
                    continue

                kind = EventLogNormalizer._resolve_kind(raw.get("kind", raw.get("type")))
                if kind is None:
                    dropped_unrecognized += 1
                    continue

                timestamp = coerce_timestamp(raw.get("timestamp"))
                if timestamp is None:
                    dropped_invalid_timestamp += 1
                    continue

                metadata = raw.get("metadata")
                if metadata is None:
                    metadata = raw.get("data")
                source = raw.get("source")

                event = ActivityEvent(
                    timestamp=timestamp,
                    kind=kind,
                    source=str(source) if source is not None else None,
                    metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
                )

            key = EventLogNormalizer._dedup_key(event)
            if key in seen:
                duplicates += 1
                continue
            seen.add(key)
            events.append(event)

        # sorted() is stable, so equal timestamps keep insertion order.
        events = sorted(events, key=lambda e: e.timestamp)

        if dropped_unrecognized or dropped_invalid_timestamp:
            logger.warning(
                "Dropped %d event(s) with unrecognized kind and %d with invalid timestamp",
                dropped_unrecognized,
                dropped_invalid_timestamp,
            )

        return NormalizedTimeline(
            events=events,
            dropped_unrecognized=dropped_unrecognized,
            dropped_invalid_timestamp=dropped_invalid_timestamp,
            duplicates_removed=duplicates,
        )

    @staticmethod
    def _unwrap(raw_log: Any) -> Iterable[Any]:
        if raw_log is None:
            return []
        if isinstance(raw_log, Mapping):
            events = raw_log.get("events")
            if isinstance(events, list):
                return events
            logger.warning("Unexpected activity timeline shape with keys %s", sorted(raw_log.keys()))
            return []
        if isinstance(raw_log, (list, tuple)):
            return raw_log
        logger.warning("Unexpected activity timeline type %s", type(raw_log).__name__)
        return []

    @staticmethod
    def _resolve_kind(value: Any) -> Optional[ActivityKind]:
        if isinstance(value, ActivityKind):
            return value
        if not isinstance(value, str):
            return None
        name = value.strip().upper()
        try:
            return ActivityKind(name)
        except ValueError:
            return KIND_ALIASES.get(name)

    @staticmethod
    def _dedup_key(event: ActivityEvent) -> tuple:
        return (
            event.timestamp,
            event.kind,
            event.source,
            json.dumps(event.metadata, sort_keys=True, default=str),
        )
