"""Geolocation sampler: filters a live position source into accepted locations.

Each ``TrackingSession`` owns its watch id and last accepted sample, so several
sessions (one per user on the server, or several under test) never collide.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol

from nearu.domain.proximity.exceptions import (
    LocationError,
    PositionTimeout,
    Unsupported,
    error_for_code,
)
from nearu.domain.proximity.models import Location, PositionError, PositionOptions, PositionSample
from nearu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

LOCATION_ACCURACY_THRESHOLD = 20.0  # meters
MIN_ANGULAR_DELTA = 0.0001  # degrees, roughly 11m at mid-latitudes
MAX_LOCATION_AGE_MS = 60_000
DEFAULT_OPTIONS = PositionOptions(high_accuracy=True, timeout_ms=5000, maximum_age_ms=0)

SampleCallback = Callable[[PositionSample], None]
ErrorCallback = Callable[[PositionError], None]
UpdateCallback = Callable[[Location], None]
FailureCallback = Callable[[LocationError], None]


class PositionSource(Protocol):
    def watch_position(
        self, on_sample: SampleCallback, on_error: ErrorCallback, options: PositionOptions
    ) -> int: ...

    def clear_watch(self, watch_id: int) -> None: ...

    async def get_current_position(self, options: PositionOptions) -> PositionSample: ...


class TrackingSession:
    """Handle returned by ``LocationSampler.start_tracking``."""

    def __init__(
        self,
        source: Optional[PositionSource],
        on_update: UpdateCallback,
        on_error: FailureCallback,
        *,
        accuracy_threshold_m: float,
        min_delta_deg: float,
    ) -> None:
        self._source = source
        self._on_update = on_update
        self._on_error = on_error
        self._accuracy_threshold_m = accuracy_threshold_m
        self._min_delta_deg = min_delta_deg
        self.watch_id: Optional[int] = None
        self.last_location: Optional[Location] = None
        self._stopped = False

    @property
    def active(self) -> bool:
        return self.watch_id is not None and not self._stopped

    def _start(self, options: PositionOptions) -> None:
        if self._source is None:
            self._stopped = True
            self._on_error(Unsupported("unsupported: no position source"))
            return
        self.watch_id = self._source.watch_position(self._handle_sample, self._handle_error, options)

    def _moved_enough(self, location: Location) -> bool:
        last = self.last_location
        if last is None:
            return True
        return (
            abs(location.latitude - last.latitude) > self._min_delta_deg
            or abs(location.longitude - last.longitude) > self._min_delta_deg
        )

    def _handle_sample(self, sample: PositionSample) -> None:
        if self._stopped:
            return
        if sample.accuracy_m > self._accuracy_threshold_m:
            obs_metrics.inc_location_sample("inaccurate")
            return
        location = sample.to_location()
        if not self._moved_enough(location):
            obs_metrics.inc_location_sample("unmoved")
            return
        self.last_location = location
        obs_metrics.inc_location_sample("accepted")
        self._on_update(location)

    def _handle_error(self, error: PositionError) -> None:
        if self._stopped:
            return
        logger.info("position source error code=%s", error.code)
        self._on_error(error_for_code(error.code, error.message))

    def stop(self) -> None:
        """Release the underlying watch. Safe to call repeatedly."""
        self._stopped = True
        watch_id, self.watch_id = self.watch_id, None
        if watch_id is not None and self._source is not None:
            self._source.clear_watch(watch_id)


class LocationSampler:
    def __init__(
        self,
        source: Optional[PositionSource],
        *,
        accuracy_threshold_m: float = LOCATION_ACCURACY_THRESHOLD,
        min_delta_deg: float = MIN_ANGULAR_DELTA,
        options: PositionOptions = DEFAULT_OPTIONS,
    ) -> None:
        self.source = source
        self.accuracy_threshold_m = accuracy_threshold_m
        self.min_delta_deg = min_delta_deg
        self.options = options

    def start_tracking(self, on_update: UpdateCallback, on_error: FailureCallback) -> TrackingSession:
        session = TrackingSession(
            self.source,
            on_update,
            on_error,
            accuracy_threshold_m=self.accuracy_threshold_m,
            min_delta_deg=self.min_delta_deg,
        )
        session._start(self.options)
        return session

    @staticmethod
    def stop_tracking(session: Optional[TrackingSession]) -> None:
        if session is not None:
            session.stop()

    async def get_current_location(self) -> Location:
        if self.source is None:
            raise Unsupported("unsupported: no position source")
        timeout_s = self.options.timeout_ms / 1000
        try:
            sample = await asyncio.wait_for(self.source.get_current_position(self.options), timeout_s)
        except asyncio.TimeoutError:
            raise PositionTimeout() from None
        return sample.to_location()


def is_location_fresh(
    location: Location,
    *,
    now_ms: Optional[int] = None,
    accuracy_threshold_m: float = LOCATION_ACCURACY_THRESHOLD,
    max_age_ms: int = MAX_LOCATION_AGE_MS,
) -> bool:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    accuracy = location.accuracy if location.accuracy is not None else float("inf")
    return accuracy <= accuracy_threshold_m and now_ms - location.timestamp_ms <= max_age_ms
