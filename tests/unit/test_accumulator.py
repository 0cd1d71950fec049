import pytest

from nearu.domain.proximity.accumulator import COLLECTION, PathCrossingAccumulator
from nearu.domain.proximity.crossings import CrossingPhase, CrossingPolicy
from nearu.domain.proximity.exceptions import StorageUnavailable
from nearu.domain.proximity.models import Location
from nearu.infra.documents import InMemoryDocumentStore
from nearu.settings import Settings

HERE = Location(latitude=43.4723, longitude=-80.5449, timestamp_ms=0)
NEAR = Location(latitude=43.47233, longitude=-80.5449, timestamp_ms=0)
FAR = Location(latitude=43.4741, longitude=-80.5449, timestamp_ms=0)


class Clock:
    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _accumulator(store=None, clock=None, **policy):
    policy.setdefault("max_crossing_distance_m", 20.0)
    return PathCrossingAccumulator(store or InMemoryDocumentStore(), CrossingPolicy(**policy), clock=clock or Clock())


@pytest.mark.asyncio
async def test_record_persists_pair_document():
    store = InMemoryDocumentStore()
    clock = Clock()
    accumulator = _accumulator(store, clock)
    state = await accumulator.record("bob", "alice", HERE, NEAR)
    assert len(state.events) == 1
    document = await store.get(COLLECTION, "alice_bob")
    assert document["lastProcessedTimestampMs"] == clock.now
    assert document["events"][0]["subjectUserId"] == "bob"
    assert await accumulator.crossing_count("alice", "bob", "bob") == 1
    assert await accumulator.phase("alice", "bob") is CrossingPhase.BELOW_THRESHOLD


@pytest.mark.asyncio
async def test_debounced_record_does_not_write():
    store = InMemoryDocumentStore()
    clock = Clock()
    accumulator = _accumulator(store, clock, debounce_ms=5_000)
    await accumulator.record("alice", "bob", HERE, NEAR)
    clock.now += 1_000
    state = await accumulator.record("alice", "bob", HERE, NEAR)
    assert len(state.events) == 1
    document = await store.get(COLLECTION, "alice_bob")
    assert document["lastProcessedTimestampMs"] == clock.now - 1_000


@pytest.mark.asyncio
async def test_apart_record_still_advances_timestamp():
    store = InMemoryDocumentStore()
    clock = Clock()
    accumulator = _accumulator(store, clock)
    state = await accumulator.record("alice", "bob", HERE, FAR)
    assert state.events == ()
    assert (await store.get(COLLECTION, "alice_bob"))["lastProcessedTimestampMs"] == clock.now
    assert await accumulator.phase("alice", "bob") is CrossingPhase.BELOW_THRESHOLD


@pytest.mark.asyncio
async def test_three_crossings_unlock_chat():
    clock = Clock()
    accumulator = _accumulator(clock=clock, debounce_ms=5_000)
    assert await accumulator.phase("alice", "bob") is CrossingPhase.NO_HISTORY
    for _ in range(3):
        await accumulator.record("alice", "bob", HERE, NEAR)
        clock.now += 5_000
    assert await accumulator.is_chat_unlocked("bob", "alice")
    assert await accumulator.phase("alice", "bob") is CrossingPhase.UNLOCKED
    assert await accumulator.phase("bob", "alice") is CrossingPhase.UNLOCKED


@pytest.mark.asyncio
async def test_unlock_survives_event_expiry():
    clock = Clock()
    accumulator = _accumulator(clock=clock, debounce_ms=0, retention_ms=60_000)
    for _ in range(3):
        await accumulator.record("alice", "bob", HERE, NEAR)
        clock.now += 1
    clock.now += 120_000
    state = await accumulator.record("alice", "bob", HERE, FAR)
    assert state.events == ()
    assert await accumulator.is_chat_unlocked("alice", "bob")


class _FailingStore(InMemoryDocumentStore):
    async def get(self, collection, doc_id):
        raise StorageUnavailable("storage_unavailable:get")


@pytest.mark.asyncio
async def test_storage_errors_propagate():
    accumulator = _accumulator(_FailingStore())
    with pytest.raises(StorageUnavailable):
        await accumulator.record("alice", "bob", HERE, NEAR)


def test_test_mode_uses_short_timings():
    policy = Settings(NEARU_TEST_MODE=True).crossing_policy()
    assert policy.debounce_ms == 500
    assert policy.retention_ms == 360_000
    default = Settings(NEARU_TEST_MODE=False).crossing_policy()
    assert default.debounce_ms == 5_000
    assert default.retention_ms == 3_600_000
    assert default.required_crossings == 3
