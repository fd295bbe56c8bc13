"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from beatguard.api import ops
from beatguard.infra import postgres
from beatguard.infra.redis import store
from beatguard.moderation import configure_postgres as configure_moderation
from beatguard.moderation.domain import container
from beatguard.obs import init as obs_init
from beatguard.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	obs_init()
	store_task: asyncio.Task | None = None
	if settings.enable_redis:
		# Requests are served while the store connects; callers see get() -> None until then.
		store_task = asyncio.create_task(store.connect(), name="shared-store-connect")
	pool = await postgres.init_pool()
	configure_moderation(pool)

	dispatcher = container.get_dispatcher()
	if dispatcher is not None:
		dispatcher.start()
	scheduler = None
	if settings.enable_redis and settings.moderation_workers_enabled:
		scheduler = container.get_scheduler()
		scheduler.start()
	app.state.moderation_scheduler = scheduler
	logger.info(
		"Moderation service started",
		extra={"redis_enabled": settings.enable_redis, "workers_enabled": settings.moderation_workers_enabled},
	)
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		if dispatcher is not None:
			await dispatcher.stop()
		if store_task is not None and not store_task.done():
			store_task.cancel()
			await asyncio.gather(store_task, return_exceptions=True)
		await store.disconnect()
		await container.aclose()
		await postgres.close_pool()


app = FastAPI(title="Beatguard Moderation", lifespan=lifespan)
app.include_router(ops.router)
