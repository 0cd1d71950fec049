"""Server-side tracking sessions fed by client heartbeats.

Each user gets a heartbeat position source, a sampler session filtering it, and
a worker task that feeds accepted locations, in order, into the proximity
pipeline. A failed cycle is logged and counted; the next accepted sample simply
runs the pipeline again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

from nearu.domain.proximity.exceptions import LocationError, NearUError
from nearu.domain.proximity.models import Location, PositionSample
from nearu.domain.proximity.sampler import LocationSampler, TrackingSession
from nearu.domain.proximity.sources import HeartbeatPositionSource
from nearu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

LocationHandler = Callable[[str, Location], Awaitable[object]]


@dataclass
class LiveTracker:
    user_id: str
    source: HeartbeatPositionSource
    session: TrackingSession
    queue: "asyncio.Queue[Location]"
    last_sample_at: float
    last_error: Optional[LocationError] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class LiveTrackingRegistry:
    def __init__(
        self,
        handler: LocationHandler,
        *,
        accuracy_threshold_m: float,
        min_delta_deg: float,
        idle_seconds: float = 600.0,
    ) -> None:
        self._handler = handler
        self._accuracy_threshold_m = accuracy_threshold_m
        self._min_delta_deg = min_delta_deg
        self.idle_seconds = idle_seconds
        self._trackers: Dict[str, LiveTracker] = {}
        self._lock = asyncio.Lock()

    def get(self, user_id: str) -> Optional[LiveTracker]:
        return self._trackers.get(user_id)

    def _create(self, user_id: str) -> LiveTracker:
        source = HeartbeatPositionSource()
        sampler = LocationSampler(
            source,
            accuracy_threshold_m=self._accuracy_threshold_m,
            min_delta_deg=self._min_delta_deg,
        )
        queue: asyncio.Queue[Location] = asyncio.Queue()

        def on_error(error: LocationError) -> None:
            tracker.last_error = error

        session = sampler.start_tracking(queue.put_nowait, on_error)
        tracker = LiveTracker(
            user_id=user_id,
            source=source,
            session=session,
            queue=queue,
            last_sample_at=time.monotonic(),
        )
        tracker.task = asyncio.create_task(self._run(tracker), name=f"live-tracking:{user_id}")
        return tracker

    async def ingest(self, user_id: str, sample: PositionSample) -> bool:
        """Feed a raw sample; returns True when the sampler accepted it."""
        async with self._lock:
            tracker = self._trackers.get(user_id)
            if tracker is None or tracker.task is None or tracker.task.done():
                tracker = self._create(user_id)
                self._trackers[user_id] = tracker
                obs_metrics.set_tracking_sessions(len(self._trackers))
            tracker.last_sample_at = time.monotonic()
            before = tracker.session.last_location
            tracker.source.push(sample)
            return tracker.session.last_location is not before

    async def report_error(self, user_id: str, code: int, message: str = "") -> Optional[LocationError]:
        tracker = self._trackers.get(user_id)
        if tracker is None:
            return None
        tracker.source.push_error(code, message)
        return tracker.last_error

    async def _run(self, tracker: LiveTracker) -> None:
        try:
            while tracker.session.active:
                remaining = self.idle_seconds - (time.monotonic() - tracker.last_sample_at)
                if remaining <= 0 and tracker.queue.empty():
                    async with self._lock:
                        if self._trackers.get(tracker.user_id) is not tracker:
                            return
                        if tracker.queue.empty():
                            self._trackers.pop(tracker.user_id, None)
                            logger.debug("live tracking stopping for user=%s (idle)", tracker.user_id)
                            return
                    continue
                try:
                    location = await asyncio.wait_for(tracker.queue.get(), timeout=max(remaining, 0.01))
                except asyncio.TimeoutError:
                    continue
                if not tracker.session.active:
                    # Cancellation can be lost when the get completes first.
                    tracker.queue.task_done()
                    return
                try:
                    await self._handler(tracker.user_id, location)
                except NearUError as exc:
                    obs_metrics.inc_location_cycle_failure(exc.reason)
                    logger.warning("location cycle failed user=%s reason=%s", tracker.user_id, exc.reason)
                except Exception:
                    obs_metrics.inc_location_cycle_failure("unexpected")
                    logger.exception("location cycle failed user=%s", tracker.user_id)
                finally:
                    tracker.queue.task_done()
        finally:
            tracker.session.stop()
            if self._trackers.get(tracker.user_id) is tracker:
                self._trackers.pop(tracker.user_id, None)
            obs_metrics.set_tracking_sessions(len(self._trackers))

    async def wait_idle(self, user_id: str) -> None:
        """Wait until every accepted location for ``user_id`` has been processed."""
        tracker = self._trackers.get(user_id)
        if tracker is not None:
            await tracker.queue.join()

    async def end_session(self, user_id: str) -> None:
        async with self._lock:
            tracker = self._trackers.pop(user_id, None)
        if tracker is None:
            return
        tracker.session.stop()
        if tracker.task:
            tracker.task.cancel()
            with suppress(asyncio.CancelledError):
                await tracker.task
        obs_metrics.set_tracking_sessions(len(self._trackers))

    async def shutdown(self) -> None:
        async with self._lock:
            trackers = list(self._trackers.values())
            self._trackers.clear()
        for tracker in trackers:
            tracker.session.stop()
            if tracker.task:
                tracker.task.cancel()
        for tracker in trackers:
            if tracker.task:
                with suppress(asyncio.CancelledError):
                    await tracker.task
        obs_metrics.set_tracking_sessions(0)
