"""Device registration for push notifications."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from nearu.api.deps import get_services
from nearu.api.schemas import DeviceTokenPayload
from nearu.infra.auth import AuthenticatedUser, get_current_user
from nearu.services import Services

router = APIRouter()


@router.post("/devices/token", status_code=status.HTTP_204_NO_CONTENT)
async def register_device_token(
    payload: DeviceTokenPayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> None:
    await services.notifier.register_token(auth_user.id, payload.token)
