"""Nearby-user listing and the live nearby feed."""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from nearu.domain.proximity.exceptions import InvalidLocation
from nearu.domain.proximity.geo import distance_meters
from nearu.domain.proximity.models import Location, NearbyUser
from nearu.infra.documents import Document, DocumentStore, Subscription
from nearu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

USERS = "users"
DEFAULT_RADIUS_M = 500.0
DEFAULT_ACTIVE_WINDOW_MS = 60 * 60 * 1000

NearbyCallback = Callable[[List[NearbyUser]], Union[None, Awaitable[None]]]


def _now_ms() -> int:
	return int(time.time() * 1000)


def _stored_location(data: Dict[str, Any]) -> Optional[Location]:
	raw = data.get("location")
	if not isinstance(raw, dict):
		return None
	try:
		return Location.from_document(raw)
	except (KeyError, TypeError, ValueError):
		return None


def rank_nearby(
	documents: Iterable[Document],
	user_id: str,
	location: Location,
	*,
	radius_m: float = DEFAULT_RADIUS_M,
	active_window_ms: int = DEFAULT_ACTIVE_WINDOW_MS,
	now_ms: Optional[int] = None,
) -> List[NearbyUser]:
	"""Filter active user documents down to those within ``radius_m``, closest first."""
	now_ms = now_ms if now_ms is not None else _now_ms()
	users: List[NearbyUser] = []
	for doc in documents:
		if doc.id == user_id:
			continue
		data = doc.data
		if data.get("ghostMode"):
			continue
		other = _stored_location(data)
		if other is None:
			continue
		last_active = int(data.get("lastActive") or 0)
		if now_ms - last_active > active_window_ms:
			continue
		try:
			distance = distance_meters(other, location)
		except InvalidLocation:
			if logger.isEnabledFor(logging.DEBUG):
				logger.debug("nearby skip uid=%s reason=invalid_location", doc.id)
			continue
		if distance > radius_m:
			continue
		users.append(
			NearbyUser(
				user_id=doc.id,
				display_name=str(data.get("name") or "Unknown"),
				program=str(data.get("program") or "Unknown"),
				distance_m=distance,
				location=other,
			)
		)
	users.sort(key=lambda user: user.distance_m)
	return users


async def find_nearby(
	store: DocumentStore,
	user_id: str,
	location: Location,
	*,
	radius_m: float = DEFAULT_RADIUS_M,
	active_window_ms: int = DEFAULT_ACTIVE_WINDOW_MS,
	now_ms: Optional[int] = None,
) -> List[NearbyUser]:
	documents = await store.query(USERS, isActive=True)
	users = rank_nearby(
		documents,
		user_id,
		location,
		radius_m=radius_m,
		active_window_ms=active_window_ms,
		now_ms=now_ms,
	)
	obs_metrics.observe_nearby(len(users))
	return users


class NearbyFeed:
	"""Keeps a user's nearby list current and reports it to ``on_change``.

	The feed subscribes to the active-users live query; every change, location
	update or manual ``refresh()`` recomputes the list and invokes the callback.
	"""

	def __init__(
		self,
		store: DocumentStore,
		user_id: str,
		on_change: NearbyCallback,
		*,
		radius_m: float = DEFAULT_RADIUS_M,
		active_window_ms: int = DEFAULT_ACTIVE_WINDOW_MS,
	) -> None:
		self.store = store
		self.user_id = user_id
		self.on_change = on_change
		self.radius_m = radius_m
		self.active_window_ms = active_window_ms
		self.location: Optional[Location] = None
		self.nearby: List[NearbyUser] = []
		self._documents: List[Document] = []
		self._subscription: Optional[Subscription] = None

	async def start(self) -> None:
		if self._subscription is None:
			self._subscription = await self.store.subscribe(USERS, self._on_documents, isActive=True)

	async def _on_documents(self, documents: List[Document]) -> None:
		self._documents = documents
		await self._publish()

	async def _publish(self) -> None:
		if self.location is None:
			return
		self.nearby = rank_nearby(
			self._documents,
			self.user_id,
			self.location,
			radius_m=self.radius_m,
			active_window_ms=self.active_window_ms,
		)
		result = self.on_change(self.nearby)
		if inspect.isawaitable(result):
			await result

	async def update_location(self, location: Location) -> None:
		self.location = location
		await self._publish()

	async def refresh(self) -> List[NearbyUser]:
		"""Re-read active users from the store and republish."""
		self._documents = await self.store.query(USERS, isActive=True)
		await self._publish()
		return self.nearby

	async def close(self) -> None:
		subscription, self._subscription = self._subscription, None
		if subscription is not None:
			await subscription.close()
