"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from nearu import __version__
from nearu.api.deps import get_services
from nearu.domain.proximity.exceptions import StorageUnavailable
from nearu.services import Services
from nearu.settings import settings

router = APIRouter(prefix="", tags=["ops"])


@router.get("/health")
async def health(services: Services = Depends(get_services)) -> Response:
	payload = {
		"service": settings.service_name,
		"version": __version__,
		"commit": settings.git_commit,
		"test_mode": settings.test_mode,
	}
	try:
		await services.store.get("health", "ping")
	except StorageUnavailable:
		payload["status"] = "degraded"
		return JSONResponse(content=payload, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
	payload["status"] = "ok"
	return JSONResponse(content=payload)


@router.get("/metrics")
async def prometheus_metrics() -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
