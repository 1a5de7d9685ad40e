"""Admin and maintenance routes."""

from datetime import datetime

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import Application
from ...logging_config import get_logger

logger = get_logger(__name__)


class CleanupResponse(BaseModel):
    deleted: int


class ProcessPendingResponse(BaseModel):
    due: int
    placed: int


class WorkItemResponse(BaseModel):
    """Response model for a work item."""

    id: str
    identity: str
    storyteller_name: str
    status: str
    scheduled_for: datetime


def create_admin_router(app: Application) -> APIRouter:
    """Create admin router."""
    router = APIRouter(tags=["admin"])

    @router.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @router.post("/api/admin/cleanup", response_model=CleanupResponse)
    async def cleanup() -> dict:
        """Delete durable sessions past expiry."""
        try:
            deleted = await app.orchestrator.cleanup_expired()
        except Exception as e:
            logger.error("Cleanup failed: %s", e, exc_info=True)
            raise HTTPException(status_code=500, detail=str(e))
        return {"deleted": deleted}

    @router.post("/api/admin/process-pending", response_model=ProcessPendingResponse)
    async def process_pending() -> dict:
        """Place calls for every due pending work item."""
        try:
            items = await app.dispatcher.list_due_work_items()
            placed = 0
            for item in items:
                if await app.dispatcher.process_work_item(item):
                    placed += 1
        except Exception as e:
            logger.error("Pending sweep failed: %s", e, exc_info=True)
            raise HTTPException(status_code=500, detail=str(e))
        return {"due": len(items), "placed": placed}

    @router.get("/api/admin/work-items/due", response_model=list[WorkItemResponse])
    async def due_work_items() -> list[dict]:
        try:
            items = await app.dispatcher.list_due_work_items()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return [
            {
                "id": item.id,
                "identity": item.identity,
                "storyteller_name": item.storyteller_name,
                "status": item.status.value,
                "scheduled_for": item.scheduled_for,
            }
            for item in items
        ]

    return router
