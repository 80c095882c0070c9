"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app accept new games?)
- /metrics - Room and seat counts for monitoring
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

from game import ACTIVE_PHASES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_manager = None
_shutting_down = False


def set_health_dependencies(room_manager=None):
    """Set dependencies for health checks."""
    global _room_manager, _shutting_down
    _room_manager = room_manager
    _shutting_down = False


def mark_shutting_down() -> None:
    """Report not-ready from now on so load balancers stop routing here."""
    global _shutting_down
    _shutting_down = True


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app host games?

    Returns 503 before the room registry is wired up and during shutdown.
    """
    checks = {}
    ready = True

    if _room_manager is None:
        checks["rooms"] = {"status": "not_configured"}
        ready = False
    else:
        checks["rooms"] = {"status": "ok"}

    if _shutting_down:
        checks["lifecycle"] = {"status": "shutting_down"}
        ready = False

    return Response(
        content=json.dumps({
            "status": "ok" if ready else "unavailable",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=200 if ready else 503,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """
    Expose room metrics for dashboards and alerting.
    """
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _room_manager is not None:
        rooms = list(_room_manager.rooms.values())
        metrics_data.update({
            "active_rooms": len(rooms),
            "seated_players": sum(len(r.players) for r in rooms),
            "games_in_progress": sum(1 for r in rooms if r.game.phase in ACTIVE_PHASES),
            "disconnected_seats": sum(len(r.disconnected) for r in rooms),
        })

    return metrics_data
