"""Domain models used by the proximity service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True, slots=True)
class Location:
	"""One geodetic sample accepted by the sampler."""

	latitude: float
	longitude: float
	timestamp_ms: int
	accuracy: Optional[float] = None

	def to_document(self) -> dict[str, Any]:
		payload: dict[str, Any] = {
			"latitude": self.latitude,
			"longitude": self.longitude,
			"timestamp": self.timestamp_ms,
		}
		if self.accuracy is not None:
			payload["accuracy"] = self.accuracy
		return payload

	@classmethod
	def from_document(cls, data: Mapping[str, Any]) -> "Location":
		accuracy = data.get("accuracy")
		return cls(
			latitude=float(data["latitude"]),
			longitude=float(data["longitude"]),
			timestamp_ms=int(data.get("timestamp", data.get("timestampMs", 0)) or 0),
			accuracy=float(accuracy) if accuracy is not None else None,
		)


@dataclass(frozen=True, slots=True)
class PositionSample:
	"""Raw reading delivered by a position source."""

	latitude: float
	longitude: float
	accuracy_m: float
	timestamp_ms: int

	def to_location(self) -> Location:
		return Location(
			latitude=self.latitude,
			longitude=self.longitude,
			timestamp_ms=self.timestamp_ms,
			accuracy=self.accuracy_m,
		)


@dataclass(frozen=True, slots=True)
class PositionOptions:
	high_accuracy: bool = True
	timeout_ms: int = 5000
	maximum_age_ms: int = 0


@dataclass(frozen=True, slots=True)
class PositionError:
	"""Error reported by a position source (W3C geolocation codes)."""

	code: int
	message: str = ""


@dataclass(slots=True)
class NearbyUser:
	"""Derived view of another active user close to the caller. Never stored."""

	user_id: str
	display_name: str
	program: str
	distance_m: float
	location: Location

	def to_dict(self) -> dict[str, Any]:
		return {
			"user_id": self.user_id,
			"display_name": self.display_name,
			"program": self.program,
			"distance_m": round(self.distance_m, 1),
			"location": self.location.to_document(),
		}
