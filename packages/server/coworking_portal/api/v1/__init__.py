"""
API v1 Router
"""

from fastapi import APIRouter

from . import cron, records, tasks

router = APIRouter()

router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(cron.router, prefix="/cron", tags=["Cron"])
router.include_router(records.router, prefix="/records", tags=["Records"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/tasks",
            "/tasks/{taskId}/comments",
            "/tasks/{taskId}/attachments",
            "/cron/task-management",
            "/records/{collection}",
        ],
    }
