"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nearu.api import chat, devices, matches, ops, proximity
from nearu.api.errors import install_error_handlers
from nearu.obs import init as obs_init
from nearu.services import Services, build_services
from nearu.settings import settings


def create_app(services: Optional[Services] = None) -> FastAPI:
	@asynccontextmanager
	async def lifespan(app: FastAPI):
		if getattr(app.state, "services", None) is None:
			app.state.services = build_services()
		try:
			yield
		finally:
			await app.state.services.aclose()

	app = FastAPI(title="NearU", lifespan=lifespan)
	# Injected services are available without running the lifespan (tests).
	app.state.services = services
	install_error_handlers(app)
	obs_init(app)

	allow_origins = ["*"] if settings.is_dev() else []
	if allow_origins:
		app.add_middleware(
			CORSMiddleware,
			allow_origins=allow_origins,
			allow_methods=["*"],
			allow_headers=["*"],
		)

	app.include_router(ops.router)
	app.include_router(proximity.router)
	app.include_router(matches.router)
	app.include_router(chat.router)
	app.include_router(devices.router)
	return app


app = create_app()
