"""Document store used for users, path crossings, chats and match requests.

Documents are JSON-compatible dicts addressed by ``collection`` + ``doc_id``.
Nested paths such as ``users/{uid}/notifications`` are plain collection names.
Writes with ``merge=True`` deep-merge into the existing document; there is no
transaction or compare-and-set, the last writer wins on the whole document.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import json
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

import redis.asyncio as redis
import ulid

from nearu.domain.proximity.exceptions import StorageUnavailable
from nearu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Document:
	id: str
	data: Dict[str, Any]


ChangeCallback = Callable[[List[Document]], Union[None, Awaitable[None]]]


class Subscription(Protocol):
	async def close(self) -> None: ...


class DocumentStore(Protocol):
	async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

	async def set(
		self, collection: str, doc_id: str, data: Dict[str, Any], *, merge: bool = False
	) -> None: ...

	async def add(self, collection: str, data: Dict[str, Any]) -> str: ...

	async def query(self, collection: str, **equals: Any) -> List[Document]: ...

	async def subscribe(
		self, collection: str, callback: ChangeCallback, **equals: Any
	) -> Subscription: ...

	async def close(self) -> None: ...


def new_document_id() -> str:
	return str(ulid.new())


def deep_merge(existing: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
	merged = dict(existing)
	for key, value in patch.items():
		current = merged.get(key)
		if isinstance(current, dict) and isinstance(value, dict):
			merged[key] = deep_merge(current, value)
		else:
			merged[key] = value
	return merged


def matches(data: Dict[str, Any], equals: Dict[str, Any]) -> bool:
	return all(data.get(field) == expected for field, expected in equals.items())


async def _invoke(callback: ChangeCallback, documents: List[Document]) -> None:
	result = callback(documents)
	if inspect.isawaitable(result):
		await result


class _MemorySubscription:
	def __init__(self, store: "InMemoryDocumentStore", collection: str, callback: ChangeCallback, equals: Dict[str, Any]) -> None:
		self.store = store
		self.collection = collection
		self.callback = callback
		self.equals = equals
		self.closed = False

	async def close(self) -> None:
		self.closed = True
		self.store._subscriptions.discard(self)


class InMemoryDocumentStore:
	"""Process-local store for development and tests."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
		self._subscriptions: set[_MemorySubscription] = set()

	async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
		async with self._lock:
			data = self._collections.get(collection, {}).get(doc_id)
			return copy.deepcopy(data) if data is not None else None

	async def set(self, collection: str, doc_id: str, data: Dict[str, Any], *, merge: bool = False) -> None:
		async with self._lock:
			docs = self._collections.setdefault(collection, {})
			if merge and doc_id in docs:
				docs[doc_id] = deep_merge(docs[doc_id], copy.deepcopy(data))
			else:
				docs[doc_id] = copy.deepcopy(data)
		await self._notify(collection)

	async def add(self, collection: str, data: Dict[str, Any]) -> str:
		doc_id = new_document_id()
		await self.set(collection, doc_id, data)
		return doc_id

	async def query(self, collection: str, **equals: Any) -> List[Document]:
		async with self._lock:
			docs = self._collections.get(collection, {})
			return [
				Document(id=doc_id, data=copy.deepcopy(data))
				for doc_id, data in docs.items()
				if matches(data, equals)
			]

	async def subscribe(self, collection: str, callback: ChangeCallback, **equals: Any) -> Subscription:
		subscription = _MemorySubscription(self, collection, callback, equals)
		self._subscriptions.add(subscription)
		await _invoke(callback, await self.query(collection, **equals))
		return subscription

	async def _notify(self, collection: str) -> None:
		for subscription in list(self._subscriptions):
			if subscription.closed or subscription.collection != collection:
				continue
			try:
				await _invoke(subscription.callback, await self.query(collection, **subscription.equals))
			except Exception:
				logger.exception("document subscription callback failed collection=%s", collection)

	async def close(self) -> None:
		self._subscriptions.clear()


def _hash_key(collection: str) -> str:
	return f"doc:{collection}"


def _channel(collection: str) -> str:
	return f"doc:changed:{collection}"


class _RedisSubscription:
	def __init__(self, store: "RedisDocumentStore", pubsub, task: asyncio.Task) -> None:
		self.store = store
		self._pubsub = pubsub
		self._task = task

	async def close(self) -> None:
		self.store._subscriptions.discard(self)
		self._task.cancel()
		with suppress(asyncio.CancelledError):
			await self._task
		with suppress(redis.RedisError):
			await self._pubsub.aclose()


class RedisDocumentStore:
	"""Documents stored as JSON values in one Redis hash per collection."""

	def __init__(self, client) -> None:
		self._client = client
		self._subscriptions: set[_RedisSubscription] = set()

	async def _call(self, operation: str, awaitable):
		try:
			return await awaitable
		except redis.RedisError as exc:
			obs_metrics.inc_storage_error(operation)
			raise StorageUnavailable(f"storage_unavailable:{operation}") from exc

	async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
		raw = await self._call("get", self._client.hget(_hash_key(collection), doc_id))
		return json.loads(raw) if raw else None

	async def set(self, collection: str, doc_id: str, data: Dict[str, Any], *, merge: bool = False) -> None:
		payload = data
		if merge:
			existing = await self.get(collection, doc_id)
			if existing is not None:
				payload = deep_merge(existing, data)
		await self._call("set", self._client.hset(_hash_key(collection), doc_id, json.dumps(payload)))
		await self._call("publish", self._client.publish(_channel(collection), doc_id))

	async def add(self, collection: str, data: Dict[str, Any]) -> str:
		doc_id = new_document_id()
		await self.set(collection, doc_id, data)
		return doc_id

	async def query(self, collection: str, **equals: Any) -> List[Document]:
		raw = await self._call("query", self._client.hgetall(_hash_key(collection)))
		documents: List[Document] = []
		for doc_id, value in raw.items():
			data = json.loads(value)
			if matches(data, equals):
				documents.append(Document(id=str(doc_id), data=data))
		return documents

	async def subscribe(self, collection: str, callback: ChangeCallback, **equals: Any) -> Subscription:
		pubsub = self._client.pubsub()
		await self._call("subscribe", pubsub.subscribe(_channel(collection)))
		await _invoke(callback, await self.query(collection, **equals))
		task = asyncio.create_task(
			self._listen(pubsub, collection, callback, equals),
			name=f"doc-subscription:{collection}",
		)
		subscription = _RedisSubscription(self, pubsub, task)
		self._subscriptions.add(subscription)
		return subscription

	async def _listen(self, pubsub, collection: str, callback: ChangeCallback, equals: Dict[str, Any]) -> None:
		try:
			while True:
				message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
				if message is None:
					continue
				try:
					await _invoke(callback, await self.query(collection, **equals))
				except StorageUnavailable:
					logger.warning("document subscription refresh failed collection=%s", collection)
				except Exception:
					logger.exception("document subscription callback failed collection=%s", collection)
		except asyncio.CancelledError:
			raise
		except redis.RedisError:
			obs_metrics.inc_storage_error("subscribe")
			logger.warning("document subscription lost collection=%s", collection, exc_info=True)

	async def close(self) -> None:
		subscriptions = list(self._subscriptions)
		self._subscriptions.clear()
		for subscription in subscriptions:
			await subscription.close()


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
	global _store
	if _store is None:
		from nearu.infra.redis import redis_client
		from nearu.settings import settings

		if settings.document_store == "memory":
			_store = InMemoryDocumentStore()
		else:
			_store = RedisDocumentStore(redis_client)
	return _store


def set_store(store: Optional[DocumentStore]) -> None:
	global _store
	_store = store
