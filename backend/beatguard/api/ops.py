"""Operations endpoints providing health checks, metrics, and moderation controls."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.asyncio import Redis

from beatguard.infra.redis import get_redis
from beatguard.moderation.domain import container
from beatguard.moderation.exceptions import ModerationError, StoreUnavailableError
from beatguard.moderation.infra import rate_limit
from beatguard.obs import health
from beatguard.settings import settings

router = APIRouter(prefix="", tags=["ops"])


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_admin(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	token = settings.obs_admin_token
	if not token:
		# Fail closed: if no token is configured, no admin access is allowed.
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	provided = _resolve_token(X_Admin_Token, authorization)
	if provided != token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def require_metrics_access(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	await require_admin(X_Admin_Token=X_Admin_Token, authorization=authorization)


def _http_error(exc: ModerationError) -> HTTPException:
	return HTTPException(exc.status_code, detail=exc.detail)


def _require_store() -> Redis:
	redis = get_redis()
	if redis is None:
		raise _http_error(StoreUnavailableError("shared_store_unavailable"))
	return redis


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready() -> Response:
	status_code, payload = await health.readiness()
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


@router.get("/ops/moderation/quota")
async def moderation_quota(_: None = Depends(require_admin)) -> dict[str, Any]:
	quota = await rate_limit.status(_require_store())
	if quota is None:
		raise _http_error(StoreUnavailableError("quota_status_unavailable"))
	return quota.as_dict()


@router.post("/ops/moderation/quota/reset")
async def moderation_quota_reset(_: None = Depends(require_admin)) -> dict[str, str]:
	await rate_limit.reset(_require_store())
	return {"status": "reset"}


@router.post("/ops/moderation/retry", status_code=status.HTTP_202_ACCEPTED)
async def moderation_retry(_: None = Depends(require_admin)) -> dict[str, str]:
	try:
		await container.get_scheduler().run_now()
	except ModerationError as exc:
		raise _http_error(exc) from exc
	return {"status": "started"}


@router.get("/ops/moderation/pending")
async def moderation_pending(_: None = Depends(require_admin)) -> dict[str, int]:
	return await container.get_sweeper().pending_stats()


@router.post("/ops/moderation/scheduler/pause")
async def moderation_scheduler_pause(_: None = Depends(require_admin)) -> dict[str, str]:
	scheduler = container.get_scheduler()
	if not scheduler.running:
		raise HTTPException(status.HTTP_409_CONFLICT, detail="scheduler_not_running")
	scheduler.pause()
	return {"status": "paused"}


@router.post("/ops/moderation/scheduler/resume")
async def moderation_scheduler_resume(_: None = Depends(require_admin)) -> dict[str, str]:
	scheduler = container.get_scheduler()
	if not scheduler.running:
		raise HTTPException(status.HTTP_409_CONFLICT, detail="scheduler_not_running")
	scheduler.resume()
	return {"status": "running"}
