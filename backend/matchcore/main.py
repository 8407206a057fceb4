"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from matchcore.api import matching, ops
from matchcore.api.errors import install_error_handlers
from matchcore.infra import postgres
from matchcore.infra.redis import redis_client
from matchcore.infra.store import close_client
from matchcore.obs import init as obs_init
from matchcore.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	logger.info(
		"startup",
		extra={
			"environment": settings.environment,
			"git_commit": settings.git_commit,
			"fallback_enabled": bool(settings.store_rest_url) and settings.store_enable_fallback,
		},
	)
	try:
		yield
	finally:
		await close_client()
		await redis_client.aclose()
		await postgres.close_pool()


def create_app() -> FastAPI:
	application = FastAPI(title=settings.service_name, lifespan=lifespan)
	obs_init(application)
	install_error_handlers(application)
	application.include_router(ops.router)
	application.include_router(matching.router)
	return application


app = create_app()
