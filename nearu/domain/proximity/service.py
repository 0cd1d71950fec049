"""Proximity service: location updates, nearby listing and crossing tracking."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from nearu.domain.notifications.push import PushNotifier
from nearu.domain.proximity.accumulator import PathCrossingAccumulator
from nearu.domain.proximity.crossings import CrossingState
from nearu.domain.proximity.geo import validate_location
from nearu.domain.proximity.models import Location, NearbyUser
from nearu.domain.proximity.nearby import USERS, find_nearby
from nearu.infra.documents import DocumentStore

logger = logging.getLogger(__name__)

UNLOCK_TITLE = "You keep crossing paths!"


def _now_ms() -> int:
	return int(time.time() * 1000)


@dataclass(slots=True)
class LocationCycle:
	"""Outcome of processing one accepted location sample."""

	nearby: List[NearbyUser] = field(default_factory=list)
	crossings: Dict[str, CrossingState] = field(default_factory=dict)
	newly_unlocked: List[str] = field(default_factory=list)


class ProximityService:
	def __init__(
		self,
		store: DocumentStore,
		accumulator: PathCrossingAccumulator,
		*,
		notifier: Optional[PushNotifier] = None,
		nearby_radius_m: float = 500.0,
		active_window_ms: int = 60 * 60 * 1000,
		clock: Optional[Callable[[], int]] = None,
	) -> None:
		self.store = store
		self.accumulator = accumulator
		self.notifier = notifier
		self.nearby_radius_m = nearby_radius_m
		self.active_window_ms = active_window_ms
		self._clock = clock or _now_ms

	async def is_ghost(self, user_id: str) -> bool:
		data = await self.store.get(USERS, user_id)
		return bool((data or {}).get("ghostMode"))

	async def set_ghost_mode(self, user_id: str, enabled: bool) -> None:
		await self.store.set(
			USERS,
			user_id,
			{"ghostMode": bool(enabled), "isActive": not enabled, "lastActive": self._clock()},
			merge=True,
		)
		logger.info("ghost mode updated user=%s enabled=%s", user_id, enabled)

	async def update_location(self, user_id: str, location: Location) -> None:
		validate_location(location)
		ghost = await self.is_ghost(user_id)
		await self.store.set(
			USERS,
			user_id,
			{"location": location.to_document(), "lastActive": self._clock(), "isActive": not ghost},
			merge=True,
		)

	async def stored_location(self, user_id: str) -> Optional[Location]:
		data = await self.store.get(USERS, user_id)
		raw = (data or {}).get("location")
		if not isinstance(raw, dict):
			return None
		return Location.from_document(raw)

	async def nearby(self, user_id: str, location: Location, *, radius_m: Optional[float] = None) -> List[NearbyUser]:
		return await find_nearby(
			self.store,
			user_id,
			location,
			radius_m=radius_m if radius_m is not None else self.nearby_radius_m,
			active_window_ms=self.active_window_ms,
			now_ms=self._clock(),
		)

	async def report_location(self, user_id: str, location: Location) -> LocationCycle:
		"""Persist an accepted sample, list nearby users and record crossings."""
		await self.update_location(user_id, location)
		cycle = LocationCycle(nearby=await self.nearby(user_id, location))
		max_distance = self.accumulator.policy.max_crossing_distance_m
		for other in cycle.nearby:
			if other.distance_m > max_distance:
				continue
			before = await self.accumulator.get_state(user_id, other.user_id)
			state = await self.accumulator.record(user_id, other.user_id, location, other.location)
			cycle.crossings[other.user_id] = state
			if before.unlocked_at_ms is None and state.unlocked_at_ms is not None:
				cycle.newly_unlocked.append(other.user_id)
				self._announce_unlock(user_id, other)
		if logger.isEnabledFor(logging.DEBUG):
			logger.debug(
				"location cycle user=%s nearby=%s crossings=%s",
				user_id,
				len(cycle.nearby),
				len(cycle.crossings),
			)
		return cycle

	def _announce_unlock(self, user_id: str, other: NearbyUser) -> None:
		if self.notifier is None:
			return
		body = "You've crossed paths enough times to start chatting."
		self.notifier.notify_later(user_id, UNLOCK_TITLE, body, {"type": "chat_unlocked", "userId": other.user_id})
		self.notifier.notify_later(other.user_id, UNLOCK_TITLE, body, {"type": "chat_unlocked", "userId": user_id})
