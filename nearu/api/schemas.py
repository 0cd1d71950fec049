"""Pydantic schemas for the HTTP API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class HeartbeatPayload(BaseModel):
	"""Raw position reading reported by the client device."""

	latitude: float = Field(..., ge=-90.0, le=90.0)
	longitude: float = Field(..., ge=-180.0, le=180.0)
	accuracy_m: float = Field(..., ge=0.0)
	ts_client: Optional[int] = Field(default=None, ge=0, description="Epoch milliseconds from the client device")


class HeartbeatResponse(BaseModel):
	accepted: bool
	ts: int


class GhostModePayload(BaseModel):
	enabled: bool


class CrossingStatusResponse(BaseModel):
	other_user_id: str
	my_count: int
	their_count: int
	required: int
	phase: str
	unlocked: bool


class MatchRequestPayload(BaseModel):
	to_user_id: str = Field(..., min_length=1)
	message: Optional[str] = Field(default=None, max_length=500)


class MessagePayload(BaseModel):
	text: str = Field(..., min_length=1, max_length=2000)


class DeviceTokenPayload(BaseModel):
	token: str = Field(..., min_length=1)


class SimulatedSpotPayload(BaseModel):
	spot: str = Field(..., min_length=1, description="Campus test spot name, e.g. 'DC Library'")


class LocationErrorPayload(BaseModel):
	"""Geolocation failure reported by the client (W3C error codes)."""

	code: int = Field(..., ge=1, description="1 permission denied, 2 unavailable, 3 timeout")
	message: str = Field(default="", max_length=500)
