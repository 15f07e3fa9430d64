"""API routes for the progression engine"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse, Response

from progression.api.middleware import limiter
from progression.api.models import (
    AchievementListResponse,
    HealthCheckResponse,
    PurgeResponse,
    RetryRewardsResponse,
    SettleStreaksRequest,
    SettleStreaksResponse,
    StreakResponse,
)
from progression.config import ENABLE_PROMETHEUS
from progression.models import AchievementView, StatsSummary, SubmitStatus
from progression.services.container import get_container
from progression.services.progression_service import ProgressionService

logger = logging.getLogger(__name__)

router = APIRouter()

_SUBMIT_STATUS_CODES = {
    SubmitStatus.ACCEPTED: status.HTTP_202_ACCEPTED,
    SubmitStatus.DUPLICATE: status.HTTP_200_OK,
    SubmitStatus.REJECTED: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def get_progression_service() -> ProgressionService:
    return get_container().progression_service


@router.post("/api/v1/events")
@limiter.limit("120/minute")
async def submit_event(
    request: Request,
    event: Dict[str, Any] = Body(...),
    service: ProgressionService = Depends(get_progression_service)
):
    """
    Submit an activity event

    202 accepted, 200 duplicate, 422 rejected. Storage failures surface as
    503 through the ProgressionError handler; the caller should resubmit the
    same event (same idempotencyKey).
    """
    result = await service.submit_event(event)
    return JSONResponse(
        status_code=_SUBMIT_STATUS_CODES[result.status],
        content=result.model_dump(mode="json")
    )


@router.get("/api/v1/users/{user_id}/achievements", response_model=AchievementListResponse)
@limiter.limit("60/minute")
async def get_achievements_endpoint(
    request: Request,
    user_id: str,
    service: ProgressionService = Depends(get_progression_service)
):
    """Get all achievements with the user's progress (Rate limit: 60/minute)"""
    achievements = await service.get_achievements(user_id)
    return AchievementListResponse(
        user_id=user_id,
        catalog_version=service.catalog.version,
        achievements=achievements
    )


@router.get("/api/v1/users/{user_id}/achievements/{achievement_id}", response_model=AchievementView)
@limiter.limit("60/minute")
async def get_achievement_endpoint(
    request: Request,
    user_id: str,
    achievement_id: str,
    service: ProgressionService = Depends(get_progression_service)
):
    """Get one achievement (404 for unknown ids)"""
    return await service.get_achievement(user_id, achievement_id)


@router.get("/api/v1/users/{user_id}/streak", response_model=StreakResponse)
@limiter.limit("60/minute")
async def get_streak_endpoint(
    request: Request,
    user_id: str,
    service: ProgressionService = Depends(get_progression_service)
):
    """Get user streak (Rate limit: 60/minute)"""
    streak = await service.get_streak_info(user_id)
    return StreakResponse(user_id=user_id, streak=streak)


@router.get("/api/v1/users/{user_id}/stats", response_model=StatsSummary)
@limiter.limit("60/minute")
async def get_stats_endpoint(
    request: Request,
    user_id: str,
    service: ProgressionService = Depends(get_progression_service)
):
    """Get achievement stats (Rate limit: 60/minute)"""
    return await service.get_stats(user_id)


@router.post("/api/v1/admin/rewards/retry", response_model=RetryRewardsResponse)
@limiter.limit("10/minute")
async def retry_rewards_endpoint(
    request: Request,
    service: ProgressionService = Depends(get_progression_service)
):
    """Re-dispatch every pending reward and undelivered notification"""
    totals = await service.retry_pending_rewards()
    return RetryRewardsResponse(**totals)


@router.post("/api/v1/admin/streaks/settle", response_model=SettleStreaksResponse)
@limiter.limit("10/minute")
async def settle_streaks_endpoint(
    request: Request,
    body: Optional[SettleStreaksRequest] = None,
    service: ProgressionService = Depends(get_progression_service)
):
    """End streaks that can no longer be saved (day-boundary job)"""
    today = (body.today if body else None) or service.streak_tracker.today()
    ended = await service.settle_streaks(today)
    return SettleStreaksResponse(today=today, streaks_ended=ended)


@router.post("/api/v1/admin/events/purge", response_model=PurgeResponse)
@limiter.limit("10/minute")
async def purge_events_endpoint(
    request: Request,
    service: ProgressionService = Depends(get_progression_service)
):
    """Forget idempotency keys older than DEDUP_RETENTION_HOURS"""
    purged = await service.purge_expired_events()
    return PurgeResponse(purged=purged)


@router.get("/api/health", response_model=HealthCheckResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint (Rate limit: 60/minute for monitoring systems)"""
    container = get_container()
    storage_status = "memory"

    db = getattr(container.store, "db", None)
    if db is not None:
        try:
            async with db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
                    await cur.fetchone()
            storage_status = "connected"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            storage_status = "disconnected"

    return HealthCheckResponse(
        status="degraded" if storage_status == "disconnected" else "healthy",
        storage=storage_status,
        catalog_version=container.catalog.version,
        timestamp=datetime.now()
    )


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes all application metrics in Prometheus text format.
    """
    if not ENABLE_PROMETHEUS:
        return Response(content="Prometheus metrics disabled", status_code=404)

    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
