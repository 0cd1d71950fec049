"""Wiring of the store, domain services and live tracking for one process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from nearu.domain.chat.service import ChatService
from nearu.domain.matches.service import MatchRequestService
from nearu.domain.notifications.push import (
	FcmPushGateway,
	LoggingPushGateway,
	PushGateway,
	PushNotifier,
)
from nearu.domain.proximity.accumulator import PathCrossingAccumulator
from nearu.domain.proximity.live_tracking import LiveTrackingRegistry
from nearu.domain.proximity.service import ProximityService
from nearu.infra.documents import DocumentStore, get_store
from nearu.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


@dataclass
class Services:
	store: DocumentStore
	notifier: PushNotifier
	accumulator: PathCrossingAccumulator
	proximity: ProximityService
	tracking: LiveTrackingRegistry
	matches: MatchRequestService
	chat: ChatService
	http: Optional[httpx.AsyncClient] = None

	async def aclose(self) -> None:
		await self.tracking.shutdown()
		await self.notifier.drain()
		if self.http is not None:
			await self.http.aclose()
		await self.store.close()


def build_services(
	*,
	store: Optional[DocumentStore] = None,
	gateway: Optional[PushGateway] = None,
	config: Optional[Settings] = None,
) -> Services:
	config = config or default_settings
	store = store or get_store()
	http: Optional[httpx.AsyncClient] = None
	if gateway is None:
		if config.fcm_server_key:
			http = httpx.AsyncClient()
			gateway = FcmPushGateway(
				http=http,
				server_key=config.fcm_server_key,
				endpoint=config.fcm_endpoint,
				request_timeout=config.push_timeout_seconds,
			)
		else:
			logger.info("FCM_SERVER_KEY not set; push notifications are logged only")
			gateway = LoggingPushGateway()
	notifier = PushNotifier(store, gateway)
	accumulator = PathCrossingAccumulator(store, config.crossing_policy())
	proximity = ProximityService(
		store,
		accumulator,
		notifier=notifier,
		nearby_radius_m=config.nearby_radius_m,
		active_window_ms=config.nearby_active_window_ms,
	)
	tracking = LiveTrackingRegistry(
		proximity.report_location,
		accuracy_threshold_m=config.location_accuracy_threshold_m,
		min_delta_deg=config.location_min_delta_deg,
		idle_seconds=config.tracking_idle_seconds,
	)
	matches = MatchRequestService(store, notifier=notifier)
	chat = ChatService(store, accumulator, matches, notifier=notifier)
	return Services(
		store=store,
		notifier=notifier,
		accumulator=accumulator,
		proximity=proximity,
		tracking=tracking,
		matches=matches,
		chat=chat,
		http=http,
	)
