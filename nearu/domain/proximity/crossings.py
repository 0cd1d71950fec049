"""Path-crossing bookkeeping for a pair of users.

A pair's state is a time-ordered log of crossing events plus the timestamp of
the last processed evaluation. ``process_crossing`` is the only transition:

- evaluations closer together than the debounce interval are ignored;
- events at or before ``now - retention`` are evicted on every processed call;
- an event is appended only when the two locations are within the crossing
  distance.

The pair starts in ``NO_HISTORY``, moves to ``BELOW_THRESHOLD`` once a record
exists, and is ``UNLOCKED`` once a participant reaches the required count or
the pair has been unlocked before (``unlocked_at_ms`` is sticky).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Optional, Sequence

from nearu.domain.proximity.geo import distance_meters
from nearu.domain.proximity.models import Location

DEFAULT_DEBOUNCE_MS = 5000
DEFAULT_RETENTION_MS = 3_600_000
REQUIRED_CROSSINGS = 3


class CrossingPhase(str, enum.Enum):
    NO_HISTORY = "no_history"
    BELOW_THRESHOLD = "below_threshold"
    UNLOCKED = "unlocked"


@dataclass(frozen=True, slots=True)
class CrossingPolicy:
    max_crossing_distance_m: float
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    retention_ms: int = DEFAULT_RETENTION_MS
    required_crossings: int = REQUIRED_CROSSINGS


@dataclass(frozen=True, slots=True)
class CrossingEvent:
    subject_user_id: str
    timestamp_ms: int
    location: Location

    def to_document(self) -> dict[str, Any]:
        return {
            "subjectUserId": self.subject_user_id,
            "timestampMs": self.timestamp_ms,
            "location": self.location.to_document(),
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "CrossingEvent":
        return cls(
            subject_user_id=str(data["subjectUserId"]),
            timestamp_ms=int(data["timestampMs"]),
            location=Location.from_document(data["location"]),
        )


@dataclass(frozen=True, slots=True)
class CrossingState:
    events: tuple[CrossingEvent, ...] = field(default_factory=tuple)
    last_processed_timestamp_ms: int = 0
    unlocked_at_ms: Optional[int] = None
    exists: bool = True

    @classmethod
    def empty(cls) -> "CrossingState":
        """State for a pair with no stored record."""
        return cls(exists=False)

    def to_document(self) -> dict[str, Any]:
        return {
            "events": [event.to_document() for event in self.events],
            "lastProcessedTimestampMs": self.last_processed_timestamp_ms,
            "unlockedAtMs": self.unlocked_at_ms,
        }

    @classmethod
    def from_document(cls, data: Optional[Mapping[str, Any]]) -> "CrossingState":
        if not data:
            return cls.empty()
        unlocked = data.get("unlockedAtMs")
        return cls(
            events=tuple(CrossingEvent.from_document(raw) for raw in data.get("events") or []),
            last_processed_timestamp_ms=int(data.get("lastProcessedTimestampMs") or 0),
            unlocked_at_ms=int(unlocked) if unlocked is not None else None,
        )


def _escape_user_id(user_id: str) -> str:
    return user_id.replace("%", "%25").replace("_", "%5F")


def pair_id(user_a: str, user_b: str) -> str:
    """Canonical id for an unordered pair of users.

    Ids are escaped so the separator only ever appears once; ``("a_b", "c")``
    and ``("a", "b_c")`` map to different pairs.
    """
    first, second = sorted((str(user_a), str(user_b)))
    return f"{_escape_user_id(first)}_{_escape_user_id(second)}"


def crossing_count(events: Iterable[CrossingEvent], user_id: str) -> int:
    return sum(1 for event in events if event.subject_user_id == user_id)


def can_unlock_chat(
    events: Iterable[CrossingEvent], user_id: str, required: int = REQUIRED_CROSSINGS
) -> bool:
    return crossing_count(events, user_id) >= required


def _any_participant_unlocked(events: Sequence[CrossingEvent], required: int) -> bool:
    counts: dict[str, int] = {}
    for event in events:
        counts[event.subject_user_id] = counts.get(event.subject_user_id, 0) + 1
    return any(count >= required for count in counts.values())


def process_crossing(
    subject_user_id: str,
    counterparty_user_id: str,
    subject_location: Location,
    counterparty_location: Location,
    state: CrossingState,
    *,
    now_ms: int,
    policy: CrossingPolicy,
) -> CrossingState:
    """Apply one proximity evaluation to ``state`` and return the new state."""
    if subject_user_id == counterparty_user_id:
        raise ValueError("a user cannot cross paths with themselves")
    if state.exists and now_ms - state.last_processed_timestamp_ms < policy.debounce_ms:
        return state

    cutoff = now_ms - policy.retention_ms
    recent = tuple(event for event in state.events if event.timestamp_ms > cutoff)

    distance = distance_meters(subject_location, counterparty_location)
    if distance > policy.max_crossing_distance_m:
        return replace(state, events=recent, last_processed_timestamp_ms=now_ms, exists=True)

    events = recent + (CrossingEvent(subject_user_id, now_ms, subject_location),)
    unlocked_at = state.unlocked_at_ms
    if unlocked_at is None and _any_participant_unlocked(events, policy.required_crossings):
        unlocked_at = now_ms
    return CrossingState(
        events=events,
        last_processed_timestamp_ms=now_ms,
        unlocked_at_ms=unlocked_at,
    )


def crossing_phase(
    state: CrossingState, user_id: str, required: int = REQUIRED_CROSSINGS
) -> CrossingPhase:
    if not state.exists:
        return CrossingPhase.NO_HISTORY
    if state.unlocked_at_ms is not None or can_unlock_chat(state.events, user_id, required):
        return CrossingPhase.UNLOCKED
    return CrossingPhase.BELOW_THRESHOLD


def is_unlocked(state: CrossingState, required: int = REQUIRED_CROSSINGS) -> bool:
    """Pair-level unlock: sticky flag, or any participant currently at the threshold."""
    return state.unlocked_at_ms is not None or _any_participant_unlocked(state.events, required)
