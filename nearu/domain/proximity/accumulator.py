"""Persistent path-crossing accumulator backed by the document store."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from nearu.domain.proximity import crossings
from nearu.domain.proximity.crossings import CrossingPhase, CrossingPolicy, CrossingState
from nearu.domain.proximity.models import Location
from nearu.infra.documents import DocumentStore
from nearu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

COLLECTION = "pathCrossings"

Clock = Callable[[], int]


def _now_ms() -> int:
    return int(time.time() * 1000)


class PathCrossingAccumulator:
    """Reads, advances and writes back the crossing log of a user pair.

    Storage errors propagate unchanged; nothing is retried here. Concurrent
    writers for the same pair overwrite each other's log (last write wins).
    """

    def __init__(self, store: DocumentStore, policy: CrossingPolicy, *, clock: Optional[Clock] = None) -> None:
        self.store = store
        self.policy = policy
        self._clock = clock or _now_ms

    async def get_state(self, user_a: str, user_b: str) -> CrossingState:
        data = await self.store.get(COLLECTION, crossings.pair_id(user_a, user_b))
        return CrossingState.from_document(data)

    async def record(
        self,
        subject_user_id: str,
        counterparty_user_id: str,
        subject_location: Location,
        counterparty_location: Location,
    ) -> CrossingState:
        pair = crossings.pair_id(subject_user_id, counterparty_user_id)
        state = CrossingState.from_document(await self.store.get(COLLECTION, pair))
        new_state = crossings.process_crossing(
            subject_user_id,
            counterparty_user_id,
            subject_location,
            counterparty_location,
            state,
            now_ms=self._clock(),
            policy=self.policy,
        )
        if new_state is state:
            obs_metrics.inc_crossing_evaluation("debounced")
            return state

        # Surviving events keep their identity; only a fresh append is a new object.
        appended = bool(new_state.events) and all(new_state.events[-1] is not event for event in state.events)
        obs_metrics.inc_crossing_evaluation("crossed" if appended else "apart")
        await self.store.set(COLLECTION, pair, new_state.to_document())
        if state.unlocked_at_ms is None and new_state.unlocked_at_ms is not None:
            obs_metrics.inc_chat_unlock()
            logger.info("chat unlocked pair=%s", pair)
        return new_state

    async def crossing_count(self, user_a: str, user_b: str, user_id: str) -> int:
        state = await self.get_state(user_a, user_b)
        return crossings.crossing_count(state.events, user_id)

    async def phase(self, user_id: str, other_user_id: str) -> CrossingPhase:
        state = await self.get_state(user_id, other_user_id)
        return crossings.crossing_phase(state, user_id, self.policy.required_crossings)

    async def is_chat_unlocked(self, user_a: str, user_b: str) -> bool:
        state = await self.get_state(user_a, user_b)
        return crossings.is_unlocked(state, self.policy.required_crossings)
