"""Match request endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from nearu.api.deps import get_services
from nearu.api.schemas import MatchRequestPayload
from nearu.infra.auth import AuthenticatedUser, get_current_user
from nearu.services import Services

router = APIRouter(prefix="/match-requests")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_match_request(
    payload: MatchRequestPayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    request = await services.matches.create_request(auth_user.id, payload.to_user_id, payload.message)
    return request.to_dict()


@router.get("/pending")
async def pending_match_requests(
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    requests = await services.matches.pending_for(auth_user.id)
    return {"items": [request.to_dict() for request in requests]}


@router.post("/{request_id}/accept")
async def accept_match_request(
    request_id: str,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    request = await services.matches.accept(request_id, auth_user.id)
    return request.to_dict()


@router.post("/{request_id}/reject")
async def reject_match_request(
    request_id: str,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    request = await services.matches.reject(request_id, auth_user.id)
    return request.to_dict()
