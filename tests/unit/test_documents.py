import asyncio

import pytest
import redis.asyncio as redis

from nearu.domain.proximity.exceptions import StorageUnavailable
from nearu.infra.documents import (
	InMemoryDocumentStore,
	RedisDocumentStore,
	deep_merge,
	get_store,
	set_store,
)
from nearu.settings import settings


@pytest.fixture(params=["memory", "redis"])
def store(request, fake_redis):
	if request.param == "memory":
		return InMemoryDocumentStore()
	return RedisDocumentStore(fake_redis)


@pytest.mark.asyncio
async def test_get_missing_document_returns_none(store):
	assert await store.get("users", "nobody") is None


@pytest.mark.asyncio
async def test_set_replaces_and_merge_deep_merges(store):
	await store.set("users", "u1", {"name": "Ada", "location": {"latitude": 1.0, "longitude": 2.0}})
	await store.set("users", "u1", {"location": {"latitude": 3.0}}, merge=True)
	assert await store.get("users", "u1") == {"name": "Ada", "location": {"latitude": 3.0, "longitude": 2.0}}

	await store.set("users", "u1", {"program": "CS"})
	assert await store.get("users", "u1") == {"program": "CS"}


@pytest.mark.asyncio
async def test_merge_creates_missing_document(store):
	await store.set("userTokens", "u1", {"token": "abc"}, merge=True)
	assert await store.get("userTokens", "u1") == {"token": "abc"}


@pytest.mark.asyncio
async def test_add_assigns_unique_ids(store):
	first = await store.add("messages", {"text": "hi"})
	second = await store.add("messages", {"text": "there"})
	assert first != second
	assert (await store.get("messages", first)) == {"text": "hi"}


@pytest.mark.asyncio
async def test_query_filters_on_equality(store):
	await store.set("users", "u1", {"isActive": True, "name": "a"})
	await store.set("users", "u2", {"isActive": False, "name": "b"})
	await store.set("users", "u3", {"isActive": True, "name": "c"})
	docs = await store.query("users", isActive=True)
	assert sorted(doc.id for doc in docs) == ["u1", "u3"]
	assert len(await store.query("users")) == 3


@pytest.mark.asyncio
async def test_returned_documents_are_copies(store):
	await store.set("users", "u1", {"tags": ["x"]})
	data = await store.get("users", "u1")
	data["tags"].append("y")
	assert await store.get("users", "u1") == {"tags": ["x"]}


@pytest.mark.asyncio
async def test_memory_subscription_sees_changes():
	store = InMemoryDocumentStore()
	snapshots: list[list[str]] = []

	def on_change(documents):
		snapshots.append(sorted(doc.id for doc in documents))

	await store.set("users", "u1", {"isActive": True})
	subscription = await store.subscribe("users", on_change, isActive=True)
	await store.set("users", "u2", {"isActive": True})
	await store.set("users", "u1", {"isActive": False})
	await subscription.close()
	await store.set("users", "u3", {"isActive": True})
	assert snapshots == [["u1"], ["u1", "u2"], ["u2"]]


@pytest.mark.asyncio
async def test_memory_subscription_callback_errors_do_not_break_writes():
	store = InMemoryDocumentStore()

	def on_change(documents):
		if documents:
			raise RuntimeError("boom")

	await store.subscribe("users", on_change)
	await store.set("users", "u1", {"name": "a"})
	assert await store.get("users", "u1") == {"name": "a"}


@pytest.mark.asyncio
async def test_redis_subscription_sees_published_changes(fake_redis):
	store = RedisDocumentStore(fake_redis)
	seen: asyncio.Queue = asyncio.Queue()

	async def on_change(documents):
		await seen.put(sorted(doc.id for doc in documents))

	subscription = await store.subscribe("users", on_change)
	assert await seen.get() == []
	await store.set("users", "u1", {"name": "a"})
	assert await asyncio.wait_for(seen.get(), timeout=5) == ["u1"]
	assert subscription in store._subscriptions
	await subscription.close()
	assert subscription not in store._subscriptions
	await store.close()


class _BrokenClient:
	async def hget(self, *args, **kwargs):
		raise redis.ConnectionError("down")

	async def hgetall(self, *args, **kwargs):
		raise redis.ConnectionError("down")


@pytest.mark.asyncio
async def test_redis_errors_surface_as_storage_unavailable():
	store = RedisDocumentStore(_BrokenClient())
	with pytest.raises(StorageUnavailable) as excinfo:
		await store.get("users", "u1")
	assert excinfo.value.reason == "storage_unavailable:get"
	with pytest.raises(StorageUnavailable):
		await store.query("users")


def test_deep_merge_leaves_inputs_untouched():
	existing = {"a": {"b": 1, "c": 2}}
	merged = deep_merge(existing, {"a": {"b": 5}, "d": 1})
	assert merged == {"a": {"b": 5, "c": 2}, "d": 1}
	assert existing == {"a": {"b": 1, "c": 2}}


def test_get_store_follows_settings():
	set_store(None)
	settings.document_store = "memory"
	assert isinstance(get_store(), InMemoryDocumentStore)
	assert get_store() is get_store()
	set_store(None)
	settings.document_store = "redis"
	assert isinstance(get_store(), RedisDocumentStore)
	set_store(None)
