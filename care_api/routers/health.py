"""Liveness endpoint (unauthenticated)."""

from fastapi import APIRouter, Request

from care_api.envelope import ok

router = APIRouter()


@router.get("/health", summary="Liveness check")
async def health(request: Request):
    queue = getattr(request.app.state, "audit_queue", None)
    return ok({
        "status": "ok",
        "audit_queue_running": bool(queue and queue.is_running),
        "audit_events_pending": queue.pending() if queue else 0,
    })
