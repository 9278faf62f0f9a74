from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from dayssupply.billing.repositories import (
    InMemorySubscriptionRepository,
    SubscriptionRepository,
    get_subscription_repository,
)
from dayssupply.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check(
    repository: SubscriptionRepository = Depends(get_subscription_repository),
):
    """Readiness check endpoint that includes subscription store connectivity."""
    if not await run_in_threadpool(repository.ping):
        logger.warning("health.store_unavailable")
        raise HTTPException(status_code=503, detail="Subscription store is not available")

    in_memory = isinstance(repository, InMemorySubscriptionRepository)
    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "not configured" if in_memory else "connected",
        "stripe": "configured" if settings.stripe_configured else "not configured",
    }
