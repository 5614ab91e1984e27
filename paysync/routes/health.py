from __future__ import annotations

import os
import platform
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends

from paysync.container import Container, get_container

router = APIRouter()

SERVICE_STARTED_AT = datetime.now(timezone.utc)


@router.get("/health")
async def health(container: Container = Depends(get_container)) -> dict[str, str]:
    """Simple health check endpoint for load balancers."""
    return {"status": "ok", "store": container.store.name}


@router.get("/health/metrics")
async def health_metrics(container: Container = Depends(get_container)) -> dict[str, Any]:
    """Service details: store backend and which integrations are configured."""

    captured_at = datetime.now(timezone.utc)
    settings = container.settings
    processors = {
        "crypto": bool(settings.nowpayments_ipn_secret),
        "card": bool(settings.paystack_secret_key),
    }
    status = "ok" if all(processors.values()) else "degraded"
    return {
        "status": status,
        "timestamp": captured_at.isoformat(),
        "uptime_seconds": int((captured_at - SERVICE_STARTED_AT).total_seconds()),
        "service": {
            "host": platform.node(),
            "pid": os.getpid(),
        },
        "store": container.store.name,
        "processors": processors,
        "integrations": {
            "payouts": settings.payout_enabled,
            "notifications": bool(settings.notify_webhook_url),
        },
    }
