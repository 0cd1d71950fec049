"""Position sources consumed by the sampler."""

from __future__ import annotations

import asyncio
import itertools
import time
from typing import Dict, Optional, Tuple

from nearu.domain.proximity.exceptions import POSITION_UNAVAILABLE_CODE, error_for_code
from nearu.domain.proximity.models import PositionError, PositionOptions, PositionSample
from nearu.domain.proximity.sampler import ErrorCallback, SampleCallback

# Test spots around the UWaterloo campus.
CAMPUS_SPOTS: Dict[str, Tuple[float, float]] = {
    "DC Library": (43.4723, -80.5449),
    "MC": (43.4721, -80.5447),
    "SLC": (43.4719, -80.5445),
    "DP Library": (43.4725, -80.5451),
    "PAC": (43.4717, -80.5443),
}
DEFAULT_SPOT = "DC Library"


def _now_ms() -> int:
    return int(time.time() * 1000)


class HeartbeatPositionSource:
    """Position source fed by samples that clients push to the server."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._watches: Dict[int, Tuple[SampleCallback, ErrorCallback]] = {}
        self._latest: Optional[PositionSample] = None
        self._waiters: list[asyncio.Future] = []

    @property
    def watch_count(self) -> int:
        return len(self._watches)

    def watch_position(
        self, on_sample: SampleCallback, on_error: ErrorCallback, options: PositionOptions
    ) -> int:
        watch_id = next(self._ids)
        self._watches[watch_id] = (on_sample, on_error)
        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        self._watches.pop(watch_id, None)

    def push(self, sample: PositionSample) -> None:
        self._latest = sample
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(sample)
        for on_sample, _ in list(self._watches.values()):
            on_sample(sample)

    def push_error(self, code: int, message: str = "") -> None:
        error = PositionError(code=code, message=message)
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(error_for_code(code, message))
        for _, on_error in list(self._watches.values()):
            on_error(error)

    async def get_current_position(self, options: PositionOptions) -> PositionSample:
        # maximum_age_ms == 0 means a cached sample is never acceptable.
        latest = self._latest
        if latest is not None and options.maximum_age_ms > 0:
            if _now_ms() - latest.timestamp_ms <= options.maximum_age_ms:
                return latest
        waiter: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)


class SimulatedPositionSource(HeartbeatPositionSource):
    """Moves a simulated device between named campus spots (dev/test mode)."""

    def __init__(self, accuracy_m: float = 5.0, spots: Optional[Dict[str, Tuple[float, float]]] = None) -> None:
        super().__init__()
        self.accuracy_m = accuracy_m
        self.spots = dict(spots or CAMPUS_SPOTS)

    def locate(self, spot: str) -> Tuple[float, float]:
        return self.spots.get(spot) or self.spots[DEFAULT_SPOT]

    def sample_at(self, spot: str, *, timestamp_ms: Optional[int] = None) -> PositionSample:
        lat, lon = self.locate(spot)
        return PositionSample(
            latitude=lat,
            longitude=lon,
            accuracy_m=self.accuracy_m,
            timestamp_ms=timestamp_ms if timestamp_ms is not None else _now_ms(),
        )

    def move_to(self, spot: str, *, timestamp_ms: Optional[int] = None) -> PositionSample:
        sample = self.sample_at(spot, timestamp_ms=timestamp_ms)
        self.push(sample)
        return sample

    def lose_signal(self) -> None:
        self.push_error(POSITION_UNAVAILABLE_CODE, "simulated signal loss")
