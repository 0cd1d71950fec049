"""REST API surface for location, nearby users and path crossings."""

from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from nearu.api.deps import get_services
from nearu.api.schemas import (
    CrossingStatusResponse,
    GhostModePayload,
    HeartbeatPayload,
    HeartbeatResponse,
    LocationErrorPayload,
    SimulatedSpotPayload,
)
from nearu.domain.proximity import crossings
from nearu.domain.proximity.exceptions import error_for_code
from nearu.domain.proximity.models import PositionSample
from nearu.domain.proximity.sampler import is_location_fresh
from nearu.domain.proximity.sources import CAMPUS_SPOTS, SimulatedPositionSource
from nearu.infra.auth import AuthenticatedUser, get_current_user
from nearu.services import Services
from nearu.settings import settings

router = APIRouter()


@router.post("/location/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    payload: HeartbeatPayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    now_ms = int(time.time() * 1000)
    sample = PositionSample(
        latitude=payload.latitude,
        longitude=payload.longitude,
        accuracy_m=payload.accuracy_m,
        timestamp_ms=payload.ts_client or now_ms,
    )
    accepted = await services.tracking.ingest(auth_user.id, sample)
    return HeartbeatResponse(accepted=accepted, ts=now_ms)


@router.post("/location/simulate", response_model=HeartbeatResponse)
async def simulate_heartbeat(
    payload: SimulatedSpotPayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Report one of the campus test spots as the caller's position (dev/test mode only)."""
    if not (settings.is_dev() or settings.test_mode):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Not Found")
    if payload.spot not in CAMPUS_SPOTS:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "unknown_spot")
    now_ms = int(time.time() * 1000)
    sample = SimulatedPositionSource().sample_at(payload.spot, timestamp_ms=now_ms)
    accepted = await services.tracking.ingest(auth_user.id, sample)
    return HeartbeatResponse(accepted=accepted, ts=now_ms)


@router.post("/location/error")
async def report_location_error(
    payload: LocationErrorPayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    error = await services.tracking.report_error(auth_user.id, payload.code, payload.message)
    tracking = error is not None
    if error is None:
        error = error_for_code(payload.code, payload.message)
    return {"reason": error.reason, "tracking": tracking}


@router.put("/location/ghost-mode")
async def ghost_mode(
    payload: GhostModePayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.proximity.set_ghost_mode(auth_user.id, payload.enabled)
    return {"ghost_mode": payload.enabled}


@router.get("/proximity/nearby")
async def nearby(
    radius_m: Optional[float] = Query(default=None, gt=0, le=50_000),
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    location = await services.proximity.stored_location(auth_user.id)
    if location is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "location_unavailable")
    users = await services.proximity.nearby(auth_user.id, location, radius_m=radius_m)
    fresh = is_location_fresh(
        location,
        accuracy_threshold_m=settings.location_accuracy_threshold_m,
        max_age_ms=settings.location_max_age_ms,
    )
    return {"items": [user.to_dict() for user in users], "location_fresh": fresh}


@router.get("/crossings/{other_user_id}", response_model=CrossingStatusResponse)
async def crossing_status(
    other_user_id: str,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    if other_user_id == auth_user.id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "self_pair")
    accumulator = services.accumulator
    required = accumulator.policy.required_crossings
    state = await accumulator.get_state(auth_user.id, other_user_id)
    return CrossingStatusResponse(
        other_user_id=other_user_id,
        my_count=crossings.crossing_count(state.events, auth_user.id),
        their_count=crossings.crossing_count(state.events, other_user_id),
        required=required,
        phase=crossings.crossing_phase(state, auth_user.id, required).value,
        unlocked=crossings.is_unlocked(state, required),
    )
